"""
Debt settlement.

A payment from a debtor to a creditor retires the debtor's unsettled splits
on expenses the creditor paid, oldest split first, and only whole splits:
the walk stops at the first split the remaining payment cannot cover, and
whatever is left over is handed back unapplied.

Concurrent settlements for the same (group, debtor, creditor) serialize on
an advisory lock. Candidate rows are read with ``FOR UPDATE SKIP LOCKED``
and every row is flipped with a conditional update that only matches while
it is still unsettled, so a split can never be settled twice.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from django.conf import settings
from django.utils import timezone

from . import notifications
from .exceptions import AuthorizationDenied, InvalidArgument
from .ledger import to_decimal
from .locks import advisory_lock
from .models import ExpenseSplit, Notification, Settlement
from .permissions import is_member, require_caller, require_member

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SettlementResult:
    requested_amount: Decimal
    settled_amount: Decimal
    remaining_amount: Decimal
    settled_split_ids: List[int] = field(default_factory=list)
    settlement_id: Optional[int] = None

    def as_dict(self):
        return {
            'settled_splits': list(self.settled_split_ids),
            'settled_amount': f"{self.settled_amount:.2f}",
            'remaining_amount': f"{self.remaining_amount:.2f}",
            'settlement_id': self.settlement_id,
        }


def _candidates(group_id, from_user_id, to_user_id):
    return (
        ExpenseSplit.objects.select_for_update(skip_locked=True, of=('self',))
        .filter(
            user_id=from_user_id,
            is_settled=False,
            expense__payer_id=to_user_id,
            expense__group_id=group_id,
        )
        .order_by('created_at', 'id')
    )


def settle_debt(group_id, from_user_id, to_user_id, amount, caller, description=None) -> SettlementResult:
    """
    Apply a payment of ``amount`` from ``from_user_id`` to ``to_user_id``.

    Only the debtor or the creditor may record it. Settling less than was
    requested, or nothing at all, is a normal outcome reported through
    ``remaining_amount``; a receipt is written only when something settled.
    """
    caller = require_caller(caller)

    requested = to_decimal(amount)
    if requested <= 0:
        raise InvalidArgument("Settlement amount must be greater than zero.", field='amount')

    try:
        from_user_id, to_user_id = int(from_user_id), int(to_user_id)
    except (TypeError, ValueError):
        raise InvalidArgument("Choose who paid and who was paid.") from None
    if from_user_id == to_user_id:
        raise InvalidArgument("Payer and receiver cannot be the same user.")

    if caller.id not in (from_user_id, to_user_id):
        logger.warning(f"User {caller.id} tried to settle a debt between {from_user_id} and {to_user_id}")
        raise AuthorizationDenied("Only the people involved can record a settlement.")

    if not is_member(group_id, from_user_id):
        raise AuthorizationDenied("The paying user is not a member of this group.")
    if not is_member(group_id, to_user_id):
        raise AuthorizationDenied("The receiving user is not a member of this group.")

    remaining = requested
    settled_total = Decimal('0.00')
    settled_ids = []
    receipt = None

    with advisory_lock('settle', group_id, from_user_id, to_user_id):
        now = timezone.now()
        for split in _candidates(group_id, from_user_id, to_user_id):
            if remaining <= 0 or remaining < split.amount:
                break
            updated = ExpenseSplit.objects.filter(pk=split.pk, is_settled=False).update(
                is_settled=True,
                settled_at=now,
            )
            if not updated:
                # Settled by someone else since it was read.
                continue
            settled_ids.append(split.pk)
            remaining -= split.amount
            settled_total += split.amount

        if settled_total > 0:
            receipt = Settlement.objects.create(
                group_id=group_id,
                payer_id=from_user_id,
                receiver_id=to_user_id,
                amount=settled_total,
                description=description or settings.CHAIPAANI['SETTLEMENT_DESCRIPTION'],
            )
            counterparty_id = to_user_id if caller.id == from_user_id else from_user_id
            notifications.notify(
                counterparty_id,
                Notification.Type.SETTLEMENT_RECORDED,
                "Settlement recorded",
                f"A payment of {settled_total} was recorded between you and {caller.email or caller.username}.",
                group_id=group_id,
                settlement_id=receipt.id,
            )
            counterparty = receipt.payer if counterparty_id == from_user_id else receipt.receiver
            notifications.send_settlement_email(receipt, counterparty)

    logger.info(
        f"Settlement in group {group_id} from {from_user_id} to {to_user_id}: requested {requested}, "
        f"settled {settled_total} across {len(settled_ids)} split(s), {remaining} unapplied"
    )
    return SettlementResult(
        requested_amount=requested,
        settled_amount=settled_total,
        remaining_amount=remaining,
        settled_split_ids=settled_ids,
        settlement_id=receipt.id if receipt else None,
    )


def list_settlements(group_id, caller):
    require_member(group_id, caller)
    return list(Settlement.objects.filter(group_id=group_id).select_related('payer', 'receiver'))
