"""
Balances derived from the ledger.

Nothing here writes or caches: every figure is re-read from the unsettled
expense splits of a group. A split whose owner is also the expense payer is
money the payer owes themselves and counts on neither side.
"""
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Tuple

from django.db.models import F, Sum

from .exceptions import AuthorizationDenied, InvalidArgument
from .models import ExpenseSplit, Membership
from .permissions import is_member, require_caller, require_member

ZERO = Decimal('0.00')


@dataclass(frozen=True)
class BalanceSummary:
    user_id: int
    amount_owed: Decimal
    amount_owes: Decimal

    @property
    def net_balance(self) -> Decimal:
        return self.amount_owed - self.amount_owes

    def as_dict(self):
        return {
            'user_id': self.user_id,
            'amount_owed': f"{self.amount_owed:.2f}",
            'amount_owes': f"{self.amount_owes:.2f}",
            'net_balance': f"{self.net_balance:.2f}",
        }


@dataclass(frozen=True)
class PairwiseDebt:
    from_user_id: int
    to_user_id: int
    amount: Decimal

    def as_dict(self):
        return {
            'from_user_id': self.from_user_id,
            'to_user_id': self.to_user_id,
            'amount': f"{self.amount:.2f}",
        }


def _outstanding(group_id):
    return ExpenseSplit.objects.filter(expense__group_id=group_id, is_settled=False).exclude(
        user_id=F('expense__payer_id')
    )


def compute_balance(group_id, user_id) -> BalanceSummary:
    """Balance of ``user_id`` in ``group_id`` without any access check."""
    # What others owe this user (unsettled shares of expenses this user paid)
    owed = _outstanding(group_id).filter(expense__payer_id=user_id).aggregate(total=Sum('amount'))['total']

    # What this user owes others (unsettled shares where this user is the debtor)
    owes = _outstanding(group_id).filter(user_id=user_id).aggregate(total=Sum('amount'))['total']

    return BalanceSummary(user_id=user_id, amount_owed=owed or ZERO, amount_owes=owes or ZERO)


def get_user_balance(group_id, user_id, caller) -> BalanceSummary:
    """
    Balance of ``user_id`` in ``group_id`` as seen by ``caller``.

    Anyone may read their own balance; reading somebody else's requires
    membership of the group.
    """
    caller = require_caller(caller)
    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        raise InvalidArgument("Choose whose balance to show.", field='user_id') from None
    if caller.id != user_id and not is_member(group_id, caller):
        raise AuthorizationDenied("You're not a member of this group.")
    return compute_balance(group_id, user_id)


def pairwise_debts(group_id) -> List[PairwiseDebt]:
    """Outstanding debt per (debtor, creditor) pair, largest first."""
    rows = (
        _outstanding(group_id)
        .values('user_id', 'expense__payer_id')
        .annotate(total=Sum('amount'))
        .order_by('user_id', 'expense__payer_id')
    )
    debts = [
        PairwiseDebt(from_user_id=row['user_id'], to_user_id=row['expense__payer_id'], amount=row['total'])
        for row in rows
        if row['total']
    ]
    debts.sort(key=lambda debt: debt.amount, reverse=True)
    return debts


def group_balances(group_id, caller) -> Tuple[List[BalanceSummary], List[PairwiseDebt]]:
    """Every member's balance plus the pairwise debts behind them."""
    require_member(group_id, caller)
    debts = pairwise_debts(group_id)

    owed: Dict[int, Decimal] = defaultdict(lambda: ZERO)
    owes: Dict[int, Decimal] = defaultdict(lambda: ZERO)
    for debt in debts:
        owed[debt.to_user_id] += debt.amount
        owes[debt.from_user_id] += debt.amount

    member_ids = Membership.objects.filter(group_id=group_id).values_list('user_id', flat=True)
    summaries = [
        BalanceSummary(user_id=user_id, amount_owed=owed[user_id], amount_owes=owes[user_id])
        for user_id in member_ids
    ]
    return summaries, debts
