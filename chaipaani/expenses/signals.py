# expenses/signals.py
from django.contrib.auth.models import User
from django.db.models.signals import post_save, pre_save
from django.dispatch import receiver

from .models import Group, Membership, UserProfile


@receiver(post_save, sender=User)
def create_profile(sender, instance, created, **kwargs):
    """Create a UserProfile for every new User"""
    if created:
        UserProfile.objects.get_or_create(user=instance)


@receiver(pre_save, sender=User)
def normalize_user_email(sender, instance, **kwargs):
    """Emails are matched case-insensitively; store them lowercased."""
    if instance.email:
        instance.email = instance.email.strip().lower()


@receiver(post_save, sender=Group)
def add_creator_membership(sender, instance, created, **kwargs):
    """The creator of a group always holds its owner membership"""
    if created:
        Membership.objects.update_or_create(
            group=instance,
            user=instance.created_by,
            defaults={'role': Membership.Role.OWNER},
        )
