"""
Outgoing notifications.

In-app notifications are rows written inside the caller's transaction.
Email goes through Django's mail framework and is strictly best-effort:
it is queued with ``transaction.on_commit`` so nothing is sent for a
rolled-back operation, and a delivery failure is logged and reported but
never raised back into the operation that triggered it.
"""
import logging
import smtplib
from dataclasses import dataclass
from typing import Optional

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.db import transaction
from django.utils.html import escape, strip_tags

from .exceptions import NotFound
from .models import Notification
from .permissions import require_caller

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
    ok: bool
    error: Optional[str] = None


def send_email(to, subject, html, text=None) -> DeliveryResult:
    """Hand one message to the SMTP relay and report whether it was accepted."""
    recipients = [to] if isinstance(to, str) else list(to)
    subject = ' '.join((subject or '').split())
    if not recipients or not subject:
        return DeliveryResult(ok=False, error="Missing 'to' or 'subject'")

    message = EmailMultiAlternatives(
        subject=subject,
        body=text or strip_tags(html),
        from_email=settings.DEFAULT_FROM_EMAIL,
        to=recipients,
    )
    message.attach_alternative(html, 'text/html')
    try:
        message.send()
    except (smtplib.SMTPException, OSError, ValueError) as exc:  # BadHeaderError is a ValueError
        logger.warning(f"Email delivery to {len(recipients)} recipient(s) failed: {exc}")
        return DeliveryResult(ok=False, error=str(exc))
    return DeliveryResult(ok=True)


def send_after_commit(to, subject, html, text=None):
    transaction.on_commit(lambda: send_email(to, subject, html, text), robust=True)


def _app_url(path=''):
    return settings.CHAIPAANI['PUBLIC_APP_URL'].rstrip('/') + path


def _wrap(title, body):
    return (
        '<div style="font-family: system-ui, sans-serif; line-height:1.6;">'
        f'<h3>{escape(title)}</h3>{body}</div>'
    )


def invitation_link(invitation):
    return _app_url(f'/#token={invitation.token}')


def send_invitation_email(invitation, reminder=False):
    title = "ChaiPaani invitation reminder" if reminder else f"You're invited to join {invitation.group.name}"
    link = invitation_link(invitation)
    html = _wrap(title, (
        f'<p>{escape(invitation.inviter.email)} invited you to share expenses in '
        f'<strong>{escape(invitation.group.name)}</strong>.</p>'
        f'<p><a href="{escape(link)}">Accept invitation</a></p>'
        f'<p>This link expires on {invitation.expires_at:%B %d, %Y}.</p>'
    ))
    send_after_commit(invitation.invitee_email, title, html)


def send_expense_emails(expense):
    title = f"New expense in {expense.group.name}"
    for split in expense.splits.select_related('user'):
        if split.user_id == expense.payer_id or not split.user.email:
            continue
        html = _wrap(title, (
            f'<p>{escape(expense.payer.email)} added <strong>{escape(expense.description)}</strong> '
            f'for {expense.amount} {expense.group.currency}.</p>'
            f'<p>Your share: {split.amount} {expense.group.currency}</p>'
        ))
        send_after_commit(split.user.email, title, html)


def send_settlement_email(settlement, recipient):
    if not recipient.email:
        return
    title = f"Settlement recorded in {settlement.group.name}"
    html = _wrap(title, (
        f'<p>{escape(settlement.payer.email)} paid {escape(settlement.receiver.email)} '
        f'{settlement.amount} {settlement.group.currency}.</p>'
    ))
    send_after_commit(recipient.email, title, html)


def notify(user, type, title, message, **metadata):
    """Write an in-app notification for ``user`` (a User or a user id)."""
    return Notification.objects.create(
        user_id=getattr(user, 'pk', user),
        type=type,
        title=title,
        message=message,
        metadata=metadata,
    )


def list_notifications(caller, limit=30):
    caller = require_caller(caller)
    return list(Notification.objects.filter(user=caller)[:limit])


def unread_count(caller):
    caller = require_caller(caller)
    return Notification.objects.filter(user=caller, is_read=False).count()


def mark_read(notification_id, caller, is_read=True):
    caller = require_caller(caller)
    updated = Notification.objects.filter(pk=notification_id, user=caller).update(is_read=is_read)
    if not updated:
        raise NotFound("Notification not found.")
    return updated
