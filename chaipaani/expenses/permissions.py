"""
Membership and ownership predicates.

Every access rule in the app is phrased through ``is_member`` / ``is_owner``.
Each is a single indexed lookup against the membership or group table and
never consults another access rule, so checks cannot recurse into each
other no matter how they are combined.
"""
from .exceptions import AuthenticationRequired, AuthorizationDenied
from .models import Group, Membership


def _user_id(user):
    if user is None:
        return None
    return getattr(user, 'pk', user)


def is_member(group_id, user) -> bool:
    """True iff ``user`` (a User or a user id) has a membership in ``group_id``."""
    user_id = _user_id(user)
    if group_id is None or user_id is None:
        return False
    try:
        return Membership.objects.filter(group_id=group_id, user_id=user_id).exists()
    except (TypeError, ValueError):
        return False


def is_owner(group_id, user) -> bool:
    """True iff ``user`` created ``group_id``."""
    user_id = _user_id(user)
    if group_id is None or user_id is None:
        return False
    try:
        return Group.objects.filter(pk=group_id, created_by_id=user_id).exists()
    except (TypeError, ValueError):
        return False


def member_groups(user):
    """Groups visible to ``user``: those with a membership row for them."""
    group_ids = Membership.objects.filter(user_id=_user_id(user)).values('group_id')
    return Group.objects.filter(pk__in=group_ids)


def require_caller(caller):
    """Return the authenticated caller or raise ``AuthenticationRequired``."""
    if caller is None or not getattr(caller, 'is_authenticated', False):
        raise AuthenticationRequired("You need to be signed in to do that.")
    return caller


def require_member(group_id, caller, message="You're not a member of this group."):
    caller = require_caller(caller)
    if not is_member(group_id, caller):
        raise AuthorizationDenied(message)
    return caller


def require_owner(group_id, caller, message="Group not found or you are not its owner."):
    caller = require_caller(caller)
    if not is_owner(group_id, caller):
        raise AuthorizationDenied(message)
    return caller
