from django.core.management.base import BaseCommand

from expenses.invitations import expire_stale_invitations


class Command(BaseCommand):
    help = 'Mark pending invitations past their expiry date as expired'

    def handle(self, *args, **options):
        self.stdout.write('⏳ Expiring stale invitations...')
        count = expire_stale_invitations()
        self.stdout.write(self.style.SUCCESS(f'✅ Expired {count} invitation(s)'))
