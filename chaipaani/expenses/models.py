# expenses/models.py
import uuid
from datetime import timedelta

from django.conf import settings
from django.contrib.auth.models import User
from django.db import models
from django.db.models import Q
from django.utils import timezone


def default_currency():
    return settings.CHAIPAANI['DEFAULT_CURRENCY']


def default_invitation_expiry():
    return timezone.now() + timedelta(days=settings.CHAIPAANI['INVITATION_EXPIRY_DAYS'])


class Group(models.Model):
    name = models.CharField(max_length=100)
    description = models.TextField(blank=True)
    category = models.CharField(max_length=50, default='general')
    currency = models.CharField(max_length=3, default=default_currency)
    created_by = models.ForeignKey(User, on_delete=models.CASCADE, related_name='created_groups')
    members = models.ManyToManyField(User, through='Membership', related_name='joined_groups', blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name', 'id']

    def __str__(self):
        return self.name

    def get_member_count(self):
        return self.memberships.count()


class Membership(models.Model):
    class Role(models.TextChoices):
        OWNER = 'owner', 'Owner'
        MEMBER = 'member', 'Member'

    group = models.ForeignKey(Group, on_delete=models.CASCADE, related_name='memberships')
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='memberships')
    role = models.CharField(max_length=10, choices=Role.choices, default=Role.MEMBER)
    joined_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['group', 'user'], name='unique_group_membership'),
        ]
        ordering = ['joined_at', 'id']

    def __str__(self):
        return f"{self.user.username} in {self.group.name} ({self.role})"


class UserProfile(models.Model):
    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='profile')
    display_name = models.CharField(max_length=150, blank=True)

    def __str__(self):
        return f"{self.user.username}'s Profile"

    def get_display_name(self):
        """Display name, falling back to the full name and then the email local part."""
        if self.display_name:
            return self.display_name
        full_name = self.user.get_full_name()
        if full_name:
            return full_name
        if self.user.email:
            return self.user.email.split('@')[0]
        return self.user.username

    def get_balance(self, group):
        """Net balance of this user within ``group`` computed from unsettled splits."""
        from .balances import compute_balance

        return compute_balance(group.id, self.user_id).net_balance


class Invitation(models.Model):
    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        ACCEPTED = 'accepted', 'Accepted'
        EXPIRED = 'expired', 'Expired'
        REVOKED = 'revoked', 'Revoked'

    group = models.ForeignKey(Group, on_delete=models.CASCADE, related_name='invitations')
    inviter = models.ForeignKey(User, on_delete=models.CASCADE, related_name='invitations_sent')
    invitee_email = models.EmailField()
    token = models.UUIDField(default=uuid.uuid4, unique=True, editable=False)
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.PENDING)
    created_at = models.DateTimeField(default=timezone.now)
    expires_at = models.DateTimeField(default=default_invitation_expiry)
    accepted_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        constraints = [
            # At most one pending invitation per (group, email). Pending rows
            # past expires_at are flipped to expired before a new one is made.
            models.UniqueConstraint(
                fields=['group', 'invitee_email'],
                condition=Q(status='pending'),
                name='unique_pending_invitation',
            ),
        ]
        indexes = [
            models.Index(fields=['group', 'status', 'expires_at'], name='invitation_group_status_idx'),
        ]
        ordering = ['-created_at', '-id']

    def __str__(self):
        return f"{self.invitee_email} -> {self.group.name} ({self.status})"

    def save(self, *args, **kwargs):
        self.invitee_email = (self.invitee_email or '').strip().lower()
        super().save(*args, **kwargs)

    def is_expired(self, now=None):
        return (now or timezone.now()) >= self.expires_at

    def is_active(self, now=None):
        return self.status == self.Status.PENDING and not self.is_expired(now)


class Expense(models.Model):
    group = models.ForeignKey(Group, on_delete=models.CASCADE, related_name='expenses')
    payer = models.ForeignKey(User, on_delete=models.CASCADE, related_name='expenses_paid')
    description = models.CharField(max_length=200)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    category = models.CharField(max_length=50, default='general')
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-id']
        constraints = [
            models.CheckConstraint(condition=Q(amount__gt=0), name='expense_amount_positive'),
        ]

    def __str__(self):
        return f"{self.description} ({self.amount})"


class ExpenseSplit(models.Model):
    """One member's share of an expense; the unit the settlement engine retires."""
    expense = models.ForeignKey(Expense, on_delete=models.CASCADE, related_name='splits')
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='expense_splits')
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    is_settled = models.BooleanField(default=False)
    settled_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['expense', 'user'], name='unique_expense_split'),
            models.CheckConstraint(condition=Q(amount__gte=0), name='split_amount_non_negative'),
        ]
        indexes = [
            models.Index(fields=['user', 'is_settled'], name='split_user_settled_idx'),
        ]
        ordering = ['created_at', 'id']

    def __str__(self):
        status = "Settled" if self.is_settled else "Unsettled"
        return f"{self.user.username} - {self.amount} ({status})"


class Settlement(models.Model):
    """Append-only receipt of a debt payment from ``payer`` to ``receiver``."""
    group = models.ForeignKey(Group, on_delete=models.CASCADE, related_name='settlements')
    payer = models.ForeignKey(User, on_delete=models.CASCADE, related_name='settlements_paid')
    receiver = models.ForeignKey(User, on_delete=models.CASCADE, related_name='settlements_received')
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    description = models.CharField(max_length=200, blank=True)
    settled_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-settled_at', '-id']
        constraints = [
            models.CheckConstraint(condition=Q(amount__gt=0), name='settlement_amount_positive'),
            models.CheckConstraint(condition=~Q(payer=models.F('receiver')), name='settlement_distinct_parties'),
        ]

    def __str__(self):
        return f"{self.payer.username} paid {self.receiver.username} {self.amount}"


class Notification(models.Model):
    class Type(models.TextChoices):
        INVITATION_ACCEPTED = 'invitation_accepted', 'Invitation accepted'
        EXPENSE_ADDED = 'expense_added', 'Expense added'
        SETTLEMENT_RECORDED = 'settlement_recorded', 'Settlement recorded'

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='notifications')
    type = models.CharField(max_length=30, choices=Type.choices)
    title = models.CharField(max_length=200)
    message = models.TextField()
    is_read = models.BooleanField(default=False)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['user', 'is_read'], name='notification_user_read_idx'),
        ]

    def __str__(self):
        return f"{self.title} -> {self.user.username}"
