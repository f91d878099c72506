"""
Group invitations: pending -> accepted | expired | revoked.

Only the group owner can invite. An invitation is addressed to one email
address and can be accepted only by a caller whose verified email matches
it (case-insensitively). Expiry is checked lazily on acceptance and by the
``expire_invitations`` sweep.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import validate_email
from django.db import IntegrityError, transaction
from django.utils import timezone

from . import notifications
from .exceptions import AuthorizationDenied, ConflictingState, Expired, InvalidArgument, NotFound
from .models import Group, Invitation, Membership, Notification
from .permissions import is_owner, require_caller, require_member, require_owner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AcceptResult:
    group_id: int
    invitation_id: int
    membership_created: bool
    already_accepted: bool = False


def normalize_email(email):
    email = (email or '').strip().lower()
    try:
        validate_email(email)
    except ValidationError:
        raise InvalidArgument("Enter a valid email address.", field='email') from None
    return email


def _expire_stale(queryset, now):
    return queryset.filter(status=Invitation.Status.PENDING, expires_at__lte=now).update(
        status=Invitation.Status.EXPIRED
    )


def create_invitation(group_id, invitee_email, caller, expires_in=None):
    """
    Invite ``invitee_email`` to ``group_id`` and return the new invitation.

    The returned row carries the id and the single-use token the caller
    needs to build the accept link; the invitation email itself is sent
    after commit.
    """
    caller = require_owner(group_id, caller)
    email = normalize_email(invitee_email)
    if expires_in is None:
        expires_in = timedelta(days=settings.CHAIPAANI['INVITATION_EXPIRY_DAYS'])

    with transaction.atomic():
        # Serializes invitation creation per group.
        group = Group.objects.select_for_update().get(pk=group_id)

        if Membership.objects.filter(group=group, user__email__iexact=email).exists():
            raise ConflictingState("This person is already a member of the group.", email=email)

        now = timezone.now()
        pair = Invitation.objects.filter(group=group, invitee_email=email)
        _expire_stale(pair, now)
        if pair.filter(status=Invitation.Status.PENDING).exists():
            raise ConflictingState("An active invitation already exists for this email.", email=email)

        try:
            with transaction.atomic():
                invitation = Invitation.objects.create(
                    group=group,
                    inviter=caller,
                    invitee_email=email,
                    created_at=now,
                    expires_at=now + expires_in,
                )
        except IntegrityError:
            raise ConflictingState("An active invitation already exists for this email.", email=email) from None

        notifications.send_invitation_email(invitation)

    logger.info(f"Invitation {invitation.id} created for group {group.id} by user {caller.id}")
    return invitation


def _parse_token(token):
    if isinstance(token, uuid.UUID):
        return token
    try:
        return uuid.UUID(str(token))
    except (TypeError, ValueError):
        return None


def accept_invitation(token, caller):
    """
    Accept the invitation identified by ``token`` on behalf of ``caller``.

    Accepting an already accepted invitation succeeds again without touching
    memberships. An invitation found past its expiry is marked expired before
    ``Expired`` is raised.
    """
    caller = require_caller(caller)
    caller_email = (caller.email or '').strip().lower()
    if not caller_email:
        raise AuthorizationDenied("Your account has no verified email address.")

    parsed = _parse_token(token)
    if parsed is None:
        raise NotFound("Invitation not found.")

    expired = False
    with transaction.atomic():
        invitation = (
            Invitation.objects.select_for_update()
            .select_related('group', 'inviter')
            .filter(token=parsed)
            .first()
        )
        if invitation is None:
            raise NotFound("Invitation not found.")

        if invitation.invitee_email != caller_email:
            logger.warning(f"User {caller.id} tried to accept invitation {invitation.id} addressed to another email")
            raise NotFound(f"This invitation is for {invitation.invitee_email}.")

        if invitation.status == Invitation.Status.ACCEPTED:
            return AcceptResult(
                group_id=invitation.group_id,
                invitation_id=invitation.id,
                membership_created=False,
                already_accepted=True,
            )
        if invitation.status == Invitation.Status.REVOKED:
            raise ConflictingState("This invitation has been revoked.")
        if invitation.status == Invitation.Status.EXPIRED:
            raise Expired("This invitation has expired.")

        now = timezone.now()
        if invitation.is_expired(now):
            invitation.status = Invitation.Status.EXPIRED
            invitation.save(update_fields=['status'])
            expired = True
        else:
            _, created = Membership.objects.get_or_create(
                group_id=invitation.group_id,
                user=caller,
                defaults={'role': Membership.Role.MEMBER, 'joined_at': now},
            )
            invitation.status = Invitation.Status.ACCEPTED
            invitation.accepted_at = now
            invitation.save(update_fields=['status', 'accepted_at'])

            notifications.notify(
                invitation.inviter,
                Notification.Type.INVITATION_ACCEPTED,
                "Invitation accepted",
                f"Your invitation to {invitation.invitee_email} has been accepted.",
                group_id=invitation.group_id,
                invitee_email=invitation.invitee_email,
            )

    if expired:
        raise Expired("This invitation has expired.")

    logger.info(f"User {caller.id} joined group {invitation.group_id} via invitation {invitation.id}")
    return AcceptResult(
        group_id=invitation.group_id,
        invitation_id=invitation.id,
        membership_created=created,
    )


def revoke_invitation(invitation_id, caller):
    caller = require_caller(caller)
    with transaction.atomic():
        invitation = Invitation.objects.select_for_update().filter(pk=invitation_id).first()
        if invitation is None or not (
            invitation.inviter_id == caller.id or is_owner(invitation.group_id, caller)
        ):
            raise NotFound("Invitation not found.")
        if invitation.status != Invitation.Status.PENDING:
            raise ConflictingState(f"Invitation is already {invitation.status}.")
        invitation.status = Invitation.Status.REVOKED
        invitation.save(update_fields=['status'])
    logger.info(f"Invitation {invitation.id} revoked by user {caller.id}")
    return invitation


def resend_invitation(group_id, invitee_email, caller):
    caller = require_owner(group_id, caller)
    email = normalize_email(invitee_email)
    invitation = (
        Invitation.objects.select_related('group', 'inviter')
        .filter(
            group_id=group_id,
            invitee_email=email,
            status=Invitation.Status.PENDING,
            expires_at__gt=timezone.now(),
        )
        .first()
    )
    if invitation is None:
        raise NotFound("No pending invitation found for this email.")
    notifications.send_invitation_email(invitation, reminder=True)
    return invitation


def list_pending_invitations(group_id, caller):
    require_member(group_id, caller)
    return list(
        Invitation.objects.filter(
            group_id=group_id,
            status=Invitation.Status.PENDING,
            expires_at__gt=timezone.now(),
        )
    )


def expire_stale_invitations(now=None):
    """Mark every pending invitation past its expiry as expired; returns the count."""
    count = _expire_stale(Invitation.objects.all(), now or timezone.now())
    if count:
        logger.info(f"Expired {count} stale invitation(s)")
    return count
