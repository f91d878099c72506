from decimal import Decimal

from django.core.management.base import BaseCommand, CommandError
from django.db.models import Q, Sum

from expenses.ledger import amounts_close
from expenses.models import Expense, ExpenseSplit


class Command(BaseCommand):
    help = 'Check that every expense is fully split and every split settlement is consistent'

    def add_arguments(self, parser):
        parser.add_argument(
            '--group',
            type=int,
            help='Only audit the expenses of this group',
        )

    def handle(self, *args, **options):
        group_id = options.get('group')
        expenses = Expense.objects.annotate(split_total=Sum('splits__amount'))
        splits = ExpenseSplit.objects.all()
        if group_id is not None:
            expenses = expenses.filter(group_id=group_id)
            splits = splits.filter(expense__group_id=group_id)

        self.stdout.write('🔍 Auditing expense splits...')
        problems = []
        for expense in expenses:
            split_total = expense.split_total or Decimal('0.00')
            if not amounts_close(split_total, expense.amount):
                problems.append(
                    f'Expense {expense.id} "{expense.description}": splits add up to '
                    f'{split_total}, expected {expense.amount}'
                )

        inconsistent = splits.filter(
            Q(is_settled=True, settled_at__isnull=True) | Q(is_settled=False, settled_at__isnull=False)
        )
        for split in inconsistent:
            problems.append(
                f'Split {split.id} on expense {split.expense_id}: is_settled={split.is_settled} '
                f'but settled_at={split.settled_at}'
            )

        for problem in problems:
            self.stdout.write(self.style.WARNING(f'   ✗ {problem}'))

        if problems:
            raise CommandError(f'Ledger check failed with {len(problems)} problem(s)')
        self.stdout.write(self.style.SUCCESS(f'✅ Ledger is consistent ({expenses.count()} expense(s) checked)'))
