import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, List, Tuple

from django.conf import settings
from django.db import transaction

from . import notifications
from .exceptions import InvalidArgument
from .models import Expense, ExpenseSplit, Membership, Notification
from .permissions import require_member

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')


def to_decimal(value: Any, field: str = 'amount') -> Decimal:
    """Parse ``value`` into a two-place Decimal, rejecting anything that isn't a finite number."""
    if isinstance(value, bool) or value is None:
        raise InvalidArgument("Enter a valid amount.", field=field)
    try:
        if isinstance(value, float):
            value = str(value)
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidArgument("Enter a valid amount.", field=field) from None
    if not amount.is_finite():
        raise InvalidArgument("Enter a valid amount.", field=field)
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def amounts_close(a: Decimal, b: Decimal, tolerance: Decimal = None) -> bool:
    if tolerance is None:
        tolerance = Decimal(settings.CHAIPAANI['SPLIT_TOLERANCE'])
    return abs(a - b) <= tolerance


def equal_splits(amount: Decimal, user_ids: List[int]) -> List[Tuple[int, Decimal]]:
    """Divide ``amount`` evenly, giving the rounding remainder to the last user."""
    count = len(user_ids)
    if count == 0:
        raise InvalidArgument("Select at least one member to split with.", field='splits')

    per_person = (amount / count).quantize(CENT, rounding=ROUND_HALF_UP)
    shares = [(user_id, per_person) for user_id in user_ids[:-1]]
    shares.append((user_ids[-1], amount - per_person * (count - 1)))
    return shares


def normalize_splits(splits: Iterable[Any]) -> List[Tuple[int, Decimal]]:
    """Accept ``{"user_id", "amount"}`` dicts or ``(user_id, amount)`` pairs."""
    normalized: List[Tuple[int, Decimal]] = []
    seen = set()
    for item in splits or []:
        try:
            if isinstance(item, dict):
                user_id, raw_amount = item['user_id'], item['amount']
            else:
                user_id, raw_amount = item
            user_id = int(user_id)
        except (KeyError, TypeError, ValueError):
            raise InvalidArgument("Each split needs a user_id and an amount.", field='splits') from None

        share = to_decimal(raw_amount, field='splits')
        if share < 0:
            raise InvalidArgument("Split amounts cannot be negative.", field='splits')
        if user_id in seen:
            raise InvalidArgument("A member appears more than once in the split.", field='splits')
        seen.add(user_id)
        normalized.append((user_id, share))

    if not normalized:
        raise InvalidArgument("Select at least one member to split with.", field='splits')
    return normalized


def record_expense(group_id, payer_id, description, amount, splits, caller,
                   category='general', notes='') -> Expense:
    """
    Record an expense and its splits as one unit and return the expense.

    The split amounts must add up to ``amount`` (within the configured
    tolerance), and the payer and every split member must belong to the
    group. Nothing is written unless all of that holds.
    """
    caller = require_member(group_id, caller)

    description = (description or '').strip()
    if not description:
        raise InvalidArgument("Add a description for the expense.", field='description')

    amount_decimal = to_decimal(amount)
    if amount_decimal <= 0:
        raise InvalidArgument("Expense amount must be greater than zero.", field='amount')

    shares = normalize_splits(splits)

    payer_id = caller.id if payer_id is None else payer_id
    member_ids = set(Membership.objects.filter(group_id=group_id).values_list('user_id', flat=True))
    try:
        payer_id = int(payer_id)
    except (TypeError, ValueError):
        raise InvalidArgument("Choose who paid.", field='payer_id') from None
    if payer_id not in member_ids:
        raise InvalidArgument("The payer is not a member of this group.", field='payer_id')
    if any(user_id not in member_ids for user_id, _ in shares):
        raise InvalidArgument("Every split member must belong to the group.", field='splits')

    share_total = sum((share for _, share in shares), Decimal('0.00'))
    if not amounts_close(share_total, amount_decimal):
        raise InvalidArgument(
            "Split amounts must add up to the expense amount.",
            field='splits',
            expected=str(amount_decimal),
            got=str(share_total),
        )

    with transaction.atomic():
        expense = Expense.objects.create(
            group_id=group_id,
            payer_id=payer_id,
            description=description,
            amount=amount_decimal,
            category=(category or 'general').strip() or 'general',
            notes=notes or '',
        )
        for user_id, share in shares:
            ExpenseSplit.objects.create(expense=expense, user_id=user_id, amount=share)

        for user_id, share in shares:
            if user_id == payer_id:
                continue
            notifications.notify(
                user_id,
                Notification.Type.EXPENSE_ADDED,
                f"New expense: {description}",
                f"You owe {share} for {description}.",
                group_id=group_id,
                expense_id=expense.id,
            )
        notifications.send_expense_emails(expense)

    logger.info(
        f"Expense {expense.id} recorded in group {group_id}: {amount_decimal} paid by {payer_id}, "
        f"{len(shares)} split(s)"
    )
    return expense


def list_expenses(group_id, caller):
    require_member(group_id, caller)
    return list(
        Expense.objects.filter(group_id=group_id)
        .select_related('payer')
        .prefetch_related('splits')
    )
