import json
import logging
from functools import wraps

from django.http import JsonResponse
from django.views.decorators.http import require_http_methods

from . import balances, groups, invitations, ledger, notifications, settlement
from .exceptions import AuthenticationRequired, InvalidArgument, LedgerError
from .forms import (
    AcceptInvitationForm,
    ExpenseForm,
    GroupCreationForm,
    InvitationForm,
    SettlementForm,
    TransferOwnershipForm,
    validated,
)
from .permissions import require_member

logger = logging.getLogger(__name__)


def api_view(*methods):
    """JSON endpoint: enforce methods and sign-in, and report ledger errors as JSON."""
    def decorator(view):
        @require_http_methods(list(methods))
        @wraps(view)
        def wrapper(request, *args, **kwargs):
            try:
                if not request.user.is_authenticated:
                    raise AuthenticationRequired("You need to be signed in to do that.")
                return view(request, *args, **kwargs)
            except LedgerError as exc:
                logger.info(f"{request.method} {request.path} -> {exc.status} {exc.code}")
                return JsonResponse(exc.as_dict(), status=exc.status)
        return wrapper
    return decorator


def _payload(request):
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (UnicodeDecodeError, ValueError):
        raise InvalidArgument("Request body must be valid JSON.") from None
    if not isinstance(data, dict):
        raise InvalidArgument("Request body must be a JSON object.")
    return data


def _money(value):
    return f"{value:.2f}"


def _group_json(group):
    return {
        'id': group.id,
        'name': group.name,
        'description': group.description,
        'category': group.category,
        'currency': group.currency,
        'created_by': group.created_by_id,
        'created_at': group.created_at.isoformat(),
    }


def _invitation_json(invitation, with_token=False):
    data = {
        'id': invitation.id,
        'group_id': invitation.group_id,
        'invitee_email': invitation.invitee_email,
        'status': invitation.status,
        'created_at': invitation.created_at.isoformat(),
        'expires_at': invitation.expires_at.isoformat(),
    }
    if with_token:
        data['token'] = str(invitation.token)
    return data


def _expense_json(expense):
    return {
        'id': expense.id,
        'group_id': expense.group_id,
        'payer_id': expense.payer_id,
        'description': expense.description,
        'amount': _money(expense.amount),
        'category': expense.category,
        'notes': expense.notes,
        'created_at': expense.created_at.isoformat(),
        'splits': [
            {
                'id': split.id,
                'user_id': split.user_id,
                'amount': _money(split.amount),
                'is_settled': split.is_settled,
                'settled_at': split.settled_at.isoformat() if split.settled_at else None,
            }
            for split in expense.splits.all()
        ],
    }


def _settlement_json(receipt):
    return {
        'id': receipt.id,
        'group_id': receipt.group_id,
        'payer_id': receipt.payer_id,
        'receiver_id': receipt.receiver_id,
        'amount': _money(receipt.amount),
        'description': receipt.description,
        'settled_at': receipt.settled_at.isoformat(),
    }


def _notification_json(notification):
    return {
        'id': notification.id,
        'type': notification.type,
        'title': notification.title,
        'message': notification.message,
        'is_read': notification.is_read,
        'metadata': notification.metadata,
        'created_at': notification.created_at.isoformat(),
    }


# Groups

@api_view('GET', 'POST')
def group_list(request):
    if request.method == 'POST':
        data = validated(GroupCreationForm(_payload(request)))
        group = groups.create_group(
            data['name'],
            request.user,
            description=data['description'],
            category=data['category'],
            currency=data['currency'] or None,
        )
        return JsonResponse(_group_json(group), status=201)

    return JsonResponse({'groups': [_group_json(group) for group in groups.list_groups(request.user)]})


@api_view('GET')
def group_detail(request, group_id):
    return JsonResponse(groups.group_summary(group_id, request.user))


@api_view('POST')
def delete_group(request, group_id):
    groups.delete_group(group_id, request.user)
    return JsonResponse({'deleted': True})


@api_view('POST')
def leave_group(request, group_id):
    groups.leave_group(group_id, request.user)
    return JsonResponse({'left': True})


@api_view('POST')
def transfer_ownership(request, group_id):
    data = validated(TransferOwnershipForm(_payload(request)))
    group = groups.transfer_ownership(group_id, data['new_owner_id'], request.user)
    return JsonResponse(_group_json(group))


@api_view('GET')
def group_members(request, group_id):
    return JsonResponse({'members': groups.members_with_status(group_id, request.user)})


# Invitations

@api_view('GET', 'POST')
def group_invitations(request, group_id):
    if request.method == 'POST':
        data = validated(InvitationForm(_payload(request)))
        invitation = invitations.create_invitation(group_id, data['email'], request.user)
        return JsonResponse(_invitation_json(invitation, with_token=True), status=201)

    pending = invitations.list_pending_invitations(group_id, request.user)
    return JsonResponse({'invitations': [_invitation_json(invitation) for invitation in pending]})


@api_view('POST')
def resend_invitation(request, group_id):
    data = validated(InvitationForm(_payload(request)))
    invitation = invitations.resend_invitation(group_id, data['email'], request.user)
    return JsonResponse(_invitation_json(invitation))


@api_view('POST')
def revoke_invitation(request, invitation_id):
    invitation = invitations.revoke_invitation(invitation_id, request.user)
    return JsonResponse(_invitation_json(invitation))


@api_view('POST')
def accept_invitation(request):
    data = validated(AcceptInvitationForm(_payload(request)))
    result = invitations.accept_invitation(data['token'], request.user)
    return JsonResponse({
        'group_id': result.group_id,
        'invitation_id': result.invitation_id,
        'membership_created': result.membership_created,
        'already_accepted': result.already_accepted,
    })


# Expenses

@api_view('GET', 'POST')
def group_expenses(request, group_id):
    if request.method == 'POST':
        require_member(group_id, request.user)
        payload = _payload(request)
        data = validated(ExpenseForm(payload))
        if 'splits' in payload:
            splits = payload['splits']
        else:
            split_among = payload.get('split_among')
            if not isinstance(split_among, list):
                raise InvalidArgument("Provide either splits or split_among.", field='splits')
            try:
                user_ids = [int(user_id) for user_id in split_among]
            except (TypeError, ValueError):
                raise InvalidArgument("split_among must list user ids.", field='split_among') from None
            splits = ledger.equal_splits(ledger.to_decimal(data['amount']), user_ids)

        expense = ledger.record_expense(
            group_id,
            data['payer_id'],
            data['description'],
            data['amount'],
            splits,
            request.user,
            category=data['category'],
            notes=data['notes'],
        )
        return JsonResponse(_expense_json(expense), status=201)

    expenses = ledger.list_expenses(group_id, request.user)
    return JsonResponse({'expenses': [_expense_json(expense) for expense in expenses]})


# Balances

@api_view('GET')
def group_balances(request, group_id):
    summaries, debts = balances.group_balances(group_id, request.user)
    return JsonResponse({
        'balances': [summary.as_dict() for summary in summaries],
        'debts': [debt.as_dict() for debt in debts],
    })


@api_view('GET')
def user_balance(request, group_id, user_id):
    return JsonResponse(balances.get_user_balance(group_id, user_id, request.user).as_dict())


# Settlements

@api_view('GET', 'POST')
def group_settlements(request, group_id):
    if request.method == 'POST':
        data = validated(SettlementForm(_payload(request)))
        result = settlement.settle_debt(
            group_id,
            data['from_user_id'],
            data['to_user_id'],
            data['amount'],
            request.user,
            description=data['description'] or None,
        )
        return JsonResponse(result.as_dict())

    receipts = settlement.list_settlements(group_id, request.user)
    return JsonResponse({'settlements': [_settlement_json(receipt) for receipt in receipts]})


# Notifications

@api_view('GET')
def notification_list(request):
    items = notifications.list_notifications(request.user)
    return JsonResponse({
        'notifications': [_notification_json(item) for item in items],
        'unread_count': notifications.unread_count(request.user),
    })


@api_view('POST')
def mark_notification_read(request, notification_id):
    is_read = _payload(request).get('is_read', True)
    if not isinstance(is_read, bool):
        raise InvalidArgument("is_read must be true or false.", field='is_read')
    notifications.mark_read(notification_id, request.user, is_read=is_read)
    return JsonResponse({'id': notification_id, 'is_read': is_read})
