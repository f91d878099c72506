import logging

from django.conf import settings
from django.db import transaction
from django.db.models import Count, Q, Sum
from django.utils import timezone

from .exceptions import ConflictingState, InvalidArgument
from .models import Expense, ExpenseSplit, Group, Invitation, Membership
from .permissions import member_groups, require_caller, require_member, require_owner

logger = logging.getLogger(__name__)


def create_group(name, caller, description='', category='general', currency=None):
    """Create a group; the creator's owner membership is added by a post-save signal."""
    caller = require_caller(caller)
    name = (name or '').strip()
    if not name:
        raise InvalidArgument("Give the group a name.", field='name')
    currency = (currency or settings.CHAIPAANI['DEFAULT_CURRENCY']).strip().upper()
    if len(currency) != 3 or not currency.isalpha():
        raise InvalidArgument("Currency must be a three-letter code.", field='currency')

    group = Group.objects.create(
        name=name,
        description=description or '',
        category=category or 'general',
        currency=currency,
        created_by=caller,
    )
    logger.info(f"Group {group.id} created by user {caller.id}")
    return group


def list_groups(caller):
    caller = require_caller(caller)
    return list(member_groups(caller).select_related('created_by'))


def leave_group(group_id, caller):
    caller = require_member(group_id, caller)
    if Group.objects.filter(pk=group_id, created_by=caller).exists():
        raise ConflictingState(
            "Group owner cannot leave the group. Transfer ownership or delete the group instead."
        )
    Membership.objects.filter(group_id=group_id, user=caller).delete()
    logger.info(f"User {caller.id} left group {group_id}")


def delete_group(group_id, caller):
    caller = require_owner(group_id, caller)
    Group.objects.filter(pk=group_id).delete()
    logger.info(f"Group {group_id} deleted by user {caller.id}")


def transfer_ownership(group_id, new_owner_id, caller):
    """Hand the group to an existing member; the old owner stays on as a member."""
    caller = require_owner(group_id, caller)
    with transaction.atomic():
        group = Group.objects.select_for_update().get(pk=group_id)
        try:
            new_owner = Membership.objects.select_related('user').get(group=group, user_id=new_owner_id)
        except (Membership.DoesNotExist, TypeError, ValueError):
            raise InvalidArgument("The new owner must already be a member of the group.") from None
        if new_owner.user_id == caller.id:
            raise ConflictingState("You already own this group.")

        Membership.objects.filter(group=group, user=caller).update(role=Membership.Role.MEMBER)
        new_owner.role = Membership.Role.OWNER
        new_owner.save(update_fields=['role'])
        group.created_by = new_owner.user
        group.save(update_fields=['created_by', 'updated_at'])

    logger.info(f"Group {group_id} ownership moved from {caller.id} to {new_owner.user_id}")
    return group


def group_summary(group_id, caller):
    require_member(group_id, caller)
    group = Group.objects.get(pk=group_id)
    expenses = Expense.objects.filter(group_id=group_id).aggregate(
        total=Sum('amount'),
        count=Count('id'),
    )
    unsettled = ExpenseSplit.objects.filter(expense__group_id=group_id).aggregate(
        count=Count('id', filter=Q(is_settled=False)),
        total=Sum('amount', filter=Q(is_settled=False)),
    )
    return {
        'id': group.id,
        'name': group.name,
        'currency': group.currency,
        'created_by': group.created_by_id,
        'total_expenses': f"{expenses['total'] or 0:.2f}",
        'expense_count': expenses['count'],
        'member_count': group.get_member_count(),
        'unsettled_splits': unsettled['count'],
        'total_unsettled_amount': f"{unsettled['total'] or 0:.2f}",
    }


def members_with_status(group_id, caller):
    """Active members followed by people with a pending, unexpired invitation."""
    require_member(group_id, caller)
    rows = []
    memberships = Membership.objects.filter(group_id=group_id).select_related('user', 'user__profile')
    for membership in memberships:
        user = membership.user
        profile = getattr(user, 'profile', None)
        rows.append({
            'user_id': user.id,
            'display_name': profile.get_display_name() if profile else user.username,
            'email': user.email,
            'role': membership.role,
            'status': 'active',
            'source': 'member',
        })

    pending = Invitation.objects.filter(
        group_id=group_id,
        status=Invitation.Status.PENDING,
        expires_at__gt=timezone.now(),
    )
    for invitation in pending:
        rows.append({
            'user_id': None,
            'display_name': invitation.invitee_email.split('@')[0],
            'email': invitation.invitee_email,
            'role': Membership.Role.MEMBER,
            'status': 'pending',
            'source': 'invitation',
        })
    return rows
