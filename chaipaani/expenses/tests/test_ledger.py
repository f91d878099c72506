from decimal import Decimal
from unittest import mock

from django.core import mail
from django.test import SimpleTestCase

from expenses import ledger
from expenses.exceptions import AuthorizationDenied, InvalidArgument
from expenses.models import Expense, ExpenseSplit, Notification

from .base import GroupTestCase


class AmountParsingTests(SimpleTestCase):
    def test_to_decimal_quantizes(self):
        self.assertEqual(ledger.to_decimal('10.005'), Decimal('10.01'))
        self.assertEqual(ledger.to_decimal(12), Decimal('12.00'))
        self.assertEqual(ledger.to_decimal(0.1), Decimal('0.10'))

    def test_to_decimal_rejects_garbage(self):
        for value in (None, True, 'abc', 'NaN', 'Infinity', [1]):
            with self.subTest(value=value):
                with self.assertRaises(InvalidArgument):
                    ledger.to_decimal(value)

    def test_equal_splits_gives_remainder_to_last(self):
        shares = ledger.equal_splits(Decimal('100.00'), [1, 2, 3])
        self.assertEqual(shares, [(1, Decimal('33.33')), (2, Decimal('33.33')), (3, Decimal('33.34'))])
        self.assertEqual(sum(share for _, share in shares), Decimal('100.00'))

    def test_equal_splits_needs_someone(self):
        with self.assertRaises(InvalidArgument):
            ledger.equal_splits(Decimal('10.00'), [])

    def test_normalize_splits_accepts_dicts_and_pairs(self):
        self.assertEqual(
            ledger.normalize_splits([{'user_id': '1', 'amount': '5'}, (2, 7.5)]),
            [(1, Decimal('5.00')), (2, Decimal('7.50'))],
        )

    def test_normalize_splits_rejects_bad_input(self):
        cases = [
            [],
            [{'user_id': 1}],
            [{'user_id': 1, 'amount': '-1'}],
            [(1, '5'), (1, '5')],
        ]
        for splits in cases:
            with self.subTest(splits=splits):
                with self.assertRaises(InvalidArgument):
                    ledger.normalize_splits(splits)


class RecordExpenseTests(GroupTestCase):
    def test_dinner_split_evenly(self):
        expense = ledger.record_expense(
            self.group.id, self.alice.id, 'Dinner', '100',
            [(self.alice.id, '50'), (self.bob.id, '50')], self.alice,
        )

        self.assertEqual(expense.amount, Decimal('100.00'))
        self.assertEqual(expense.payer, self.alice)
        splits = {split.user_id: split for split in expense.splits.all()}
        self.assertEqual(set(splits), {self.alice.id, self.bob.id})
        for split in splits.values():
            self.assertEqual(split.amount, Decimal('50.00'))
            self.assertFalse(split.is_settled)
            self.assertIsNone(split.settled_at)

    def test_payer_defaults_to_caller(self):
        expense = ledger.record_expense(self.group.id, None, 'Milk', '4', [(self.alice.id, '4')], self.bob)
        self.assertEqual(expense.payer, self.bob)

    def test_sum_within_tolerance_is_accepted(self):
        expense = ledger.record_expense(
            self.group.id, self.alice.id, 'Pizza', '10.00',
            [(self.alice.id, '3.33'), (self.bob.id, '6.66')], self.alice,
        )
        self.assertEqual(expense.splits.count(), 2)

    def test_mismatched_sum_writes_nothing(self):
        with self.assertRaises(InvalidArgument) as ctx:
            ledger.record_expense(
                self.group.id, self.alice.id, 'Dinner', '100',
                [(self.alice.id, '50'), (self.bob.id, '40')], self.alice,
            )
        self.assertEqual(ctx.exception.detail['expected'], '100.00')
        self.assertEqual(ctx.exception.detail['got'], '90.00')
        self.assertFalse(Expense.objects.exists())
        self.assertFalse(ExpenseSplit.objects.exists())

    def test_failure_midway_rolls_back_expense_and_splits(self):
        with mock.patch('expenses.ledger.notifications.notify', side_effect=RuntimeError('boom')):
            with self.assertRaises(RuntimeError):
                ledger.record_expense(
                    self.group.id, self.alice.id, 'Dinner', '100',
                    [(self.alice.id, '50'), (self.bob.id, '50')], self.alice,
                )
        self.assertFalse(Expense.objects.exists())
        self.assertFalse(ExpenseSplit.objects.exists())

    def test_non_positive_amount(self):
        for amount in ('0', '-5'):
            with self.subTest(amount=amount):
                with self.assertRaises(InvalidArgument):
                    ledger.record_expense(self.group.id, None, 'Nothing', amount, [(self.alice.id, amount)], self.alice)

    def test_blank_description(self):
        with self.assertRaises(InvalidArgument):
            ledger.record_expense(self.group.id, None, '  ', '5', [(self.alice.id, '5')], self.alice)

    def test_caller_must_be_member(self):
        with self.assertRaises(AuthorizationDenied):
            ledger.record_expense(self.group.id, None, 'Taxi', '5', [(self.carol.id, '5')], self.carol)

    def test_payer_and_split_members_must_belong_to_group(self):
        with self.assertRaises(InvalidArgument):
            ledger.record_expense(self.group.id, self.carol.id, 'Taxi', '5', [(self.alice.id, '5')], self.alice)
        with self.assertRaises(InvalidArgument):
            ledger.record_expense(self.group.id, self.alice.id, 'Taxi', '5', [(self.carol.id, '5')], self.alice)
        self.assertFalse(Expense.objects.exists())

    def test_debtors_are_notified_and_emailed(self):
        with self.captureOnCommitCallbacks(execute=True):
            ledger.record_expense(
                self.group.id, self.alice.id, 'Groceries', '30',
                [(self.alice.id, '10'), (self.bob.id, '20')], self.alice,
            )

        notification = Notification.objects.get()
        self.assertEqual(notification.user, self.bob)
        self.assertEqual(notification.type, Notification.Type.EXPENSE_ADDED)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ['bob@example.com'])

    def test_list_expenses_is_member_only(self):
        ledger.record_expense(self.group.id, None, 'Milk', '4', [(self.bob.id, '4')], self.alice)
        self.assertEqual(len(ledger.list_expenses(self.group.id, self.bob)), 1)
        with self.assertRaises(AuthorizationDenied):
            ledger.list_expenses(self.group.id, self.carol)
