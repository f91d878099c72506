from datetime import timedelta
from decimal import Decimal
from unittest import mock

from django.contrib.auth.models import AnonymousUser
from django.core import mail
from django.utils import timezone

from expenses import balances, ledger, settlement
from expenses.exceptions import AuthenticationRequired, AuthorizationDenied, InvalidArgument
from expenses.locks import advisory_lock
from expenses.models import ExpenseSplit, Notification, Settlement

from .base import GroupTestCase


class SettlementTestCase(GroupTestCase):
    def setUp(self):
        self.base_time = timezone.now() - timedelta(days=10)

    def owe(self, amount, age_rank, debtor=None, creditor=None):
        """Record a debt of ``amount`` from debtor to creditor created at base_time + age_rank hours."""
        debtor = debtor or self.bob
        creditor = creditor or self.alice
        expense = ledger.record_expense(
            self.group.id, creditor.id, f'Debt {amount}', amount, [(debtor.id, amount)], creditor,
        )
        split = expense.splits.get()
        ExpenseSplit.objects.filter(pk=split.pk).update(created_at=self.base_time + timedelta(hours=age_rank))
        return split


class SettleDebtTests(SettlementTestCase):
    def test_full_settlement_of_a_single_split(self):
        ledger.record_expense(
            self.group.id, self.alice.id, 'Dinner', '100',
            [(self.alice.id, '50'), (self.bob.id, '50')], self.alice,
        )
        bob_split = ExpenseSplit.objects.get(user=self.bob)

        result = settlement.settle_debt(self.group.id, self.bob.id, self.alice.id, '50', self.bob)

        self.assertEqual(result.settled_split_ids, [bob_split.id])
        self.assertMoney(result.settled_amount, '50.00')
        self.assertMoney(result.remaining_amount, '0.00')
        bob = balances.get_user_balance(self.group.id, self.bob.id, self.bob)
        self.assertMoney(bob.net_balance, '0.00')

        # The payer's own share is never a debt to settle
        alice_split = ExpenseSplit.objects.get(user=self.alice)
        self.assertFalse(alice_split.is_settled)

    def test_stops_at_first_split_it_cannot_cover(self):
        older = self.owe('30', 1)
        newer = self.owe('40', 2)

        result = settlement.settle_debt(self.group.id, self.bob.id, self.alice.id, '50', self.bob)

        self.assertEqual(result.settled_split_ids, [older.id])
        self.assertMoney(result.settled_amount, '30.00')
        self.assertMoney(result.remaining_amount, '20.00')
        newer.refresh_from_db()
        self.assertFalse(newer.is_settled)
        self.assertIsNone(newer.settled_at)

    def test_oldest_debt_first_regardless_of_insertion_order(self):
        third = self.owe('5', 3)
        first = self.owe('10', 1)
        second = self.owe('20', 2)

        result = settlement.settle_debt(self.group.id, self.bob.id, self.alice.id, '30', self.alice)

        self.assertEqual(result.settled_split_ids, [first.id, second.id])
        third.refresh_from_db()
        self.assertFalse(third.is_settled)

    def test_smaller_later_split_is_not_skipped_to(self):
        first = self.owe('10', 1)
        self.owe('30', 2)
        last = self.owe('5', 3)

        result = settlement.settle_debt(self.group.id, self.bob.id, self.alice.id, '20', self.bob)

        self.assertEqual(result.settled_split_ids, [first.id])
        self.assertMoney(result.remaining_amount, '10.00')
        last.refresh_from_db()
        self.assertFalse(last.is_settled)

    def test_amount_too_small_for_any_split_settles_nothing(self):
        self.owe('30', 1)

        result = settlement.settle_debt(self.group.id, self.bob.id, self.alice.id, '10', self.bob)

        self.assertEqual(result.settled_split_ids, [])
        self.assertMoney(result.settled_amount, '0.00')
        self.assertMoney(result.remaining_amount, '10.00')
        self.assertIsNone(result.settlement_id)
        self.assertFalse(Settlement.objects.exists())

    def test_overpayment_is_returned_unapplied(self):
        self.owe('30', 1)
        self.owe('40', 2)

        result = settlement.settle_debt(self.group.id, self.bob.id, self.alice.id, '100', self.bob)

        self.assertMoney(result.settled_amount, '70.00')
        self.assertMoney(result.remaining_amount, '30.00')
        self.assertFalse(ExpenseSplit.objects.filter(is_settled=False).exists())

    def test_conservation_and_flag_consistency(self):
        for rank, amount in enumerate(['12.50', '7.25', '30', '0.75', '9.99']):
            self.owe(amount, rank)

        for requested in ('20', '15.50', '40', '1'):
            result = settlement.settle_debt(self.group.id, self.bob.id, self.alice.id, requested, self.bob)
            self.assertEqual(result.settled_amount + result.remaining_amount, Decimal(requested))

        self.assertFalse(ExpenseSplit.objects.filter(is_settled=True, settled_at__isnull=True).exists())
        self.assertFalse(ExpenseSplit.objects.filter(is_settled=False, settled_at__isnull=False).exists())

    def test_only_debts_towards_the_creditor_in_this_group(self):
        self.add_member(self.carol)
        to_carol = self.owe('10', 1, creditor=self.carol)
        to_alice = self.owe('10', 2)

        result = settlement.settle_debt(self.group.id, self.bob.id, self.alice.id, '20', self.bob)

        self.assertEqual(result.settled_split_ids, [to_alice.id])
        to_carol.refresh_from_db()
        self.assertFalse(to_carol.is_settled)

    def test_settling_twice_does_not_double_count(self):
        self.owe('25', 1)
        first = settlement.settle_debt(self.group.id, self.bob.id, self.alice.id, '25', self.bob)
        second = settlement.settle_debt(self.group.id, self.bob.id, self.alice.id, '25', self.bob)

        self.assertMoney(first.settled_amount, '25.00')
        self.assertMoney(second.settled_amount, '0.00')
        self.assertEqual(Settlement.objects.count(), 1)

    def test_split_settled_after_it_was_read_is_skipped(self):
        taken = self.owe('10', 1)
        free = self.owe('10', 2)
        stale = list(ExpenseSplit.objects.filter(pk__in=[taken.pk, free.pk]).order_by('created_at'))
        ExpenseSplit.objects.filter(pk=taken.pk).update(is_settled=True, settled_at=timezone.now())

        with mock.patch('expenses.settlement._candidates', return_value=stale):
            result = settlement.settle_debt(self.group.id, self.bob.id, self.alice.id, '20', self.bob)

        self.assertEqual(result.settled_split_ids, [free.id])
        self.assertMoney(result.settled_amount, '10.00')
        self.assertMoney(result.remaining_amount, '10.00')

    def test_runs_under_the_pair_lock(self):
        self.owe('10', 1)
        with mock.patch('expenses.settlement.advisory_lock', wraps=advisory_lock) as lock:
            settlement.settle_debt(self.group.id, self.bob.id, self.alice.id, '10', self.bob)
        lock.assert_called_once_with('settle', self.group.id, self.bob.id, self.alice.id)


class SettlementReceiptTests(SettlementTestCase):
    def test_receipt_records_the_settled_amount(self):
        self.owe('30', 1)
        self.owe('40', 2)

        result = settlement.settle_debt(
            self.group.id, self.bob.id, self.alice.id, '50', self.bob, description='Cash',
        )

        receipt = Settlement.objects.get()
        self.assertEqual(result.settlement_id, receipt.id)
        self.assertEqual(receipt.payer, self.bob)
        self.assertEqual(receipt.receiver, self.alice)
        self.assertMoney(receipt.amount, '30.00')
        self.assertEqual(receipt.description, 'Cash')

    def test_default_description(self):
        self.owe('30', 1)
        settlement.settle_debt(self.group.id, self.bob.id, self.alice.id, '30', self.bob)
        self.assertEqual(Settlement.objects.get().description, 'Settle up')

    def test_counterparty_is_notified_and_emailed(self):
        self.owe('30', 1)
        Notification.objects.all().delete()

        with self.captureOnCommitCallbacks(execute=True):
            settlement.settle_debt(self.group.id, self.bob.id, self.alice.id, '30', self.bob)

        notification = Notification.objects.get()
        self.assertEqual(notification.user, self.alice)
        self.assertEqual(notification.type, Notification.Type.SETTLEMENT_RECORDED)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ['alice@example.com'])

    def test_creditor_recording_notifies_debtor(self):
        self.owe('30', 1)
        Notification.objects.all().delete()
        settlement.settle_debt(self.group.id, self.bob.id, self.alice.id, '30', self.alice)
        self.assertEqual(Notification.objects.get().user, self.bob)

    def test_list_settlements_is_member_only(self):
        self.owe('30', 1)
        settlement.settle_debt(self.group.id, self.bob.id, self.alice.id, '30', self.bob)
        self.assertEqual(len(settlement.list_settlements(self.group.id, self.alice)), 1)
        with self.assertRaises(AuthorizationDenied):
            settlement.list_settlements(self.group.id, self.carol)


class SettlementValidationTests(SettlementTestCase):
    def test_rejects_anonymous_caller(self):
        with self.assertRaises(AuthenticationRequired):
            settlement.settle_debt(self.group.id, self.bob.id, self.alice.id, '10', AnonymousUser())

    def test_rejects_non_positive_amount(self):
        for amount in ('0', '-10', 'ten'):
            with self.subTest(amount=amount):
                with self.assertRaises(InvalidArgument):
                    settlement.settle_debt(self.group.id, self.bob.id, self.alice.id, amount, self.bob)

    def test_rejects_same_user(self):
        with self.assertRaises(InvalidArgument):
            settlement.settle_debt(self.group.id, self.bob.id, self.bob.id, '10', self.bob)

    def test_third_party_cannot_settle(self):
        self.add_member(self.carol)
        self.owe('10', 1)
        with self.assertRaises(AuthorizationDenied):
            settlement.settle_debt(self.group.id, self.bob.id, self.alice.id, '10', self.carol)
        self.assertFalse(ExpenseSplit.objects.filter(is_settled=True).exists())

    def test_parties_must_be_members(self):
        with self.assertRaises(AuthorizationDenied):
            settlement.settle_debt(self.group.id, self.dave.id, self.alice.id, '10', self.dave)
        with self.assertRaises(AuthorizationDenied):
            settlement.settle_debt(self.group.id, self.bob.id, self.dave.id, '10', self.bob)

    def test_rejections_happen_before_locking(self):
        with mock.patch('expenses.settlement.advisory_lock') as lock:
            with self.assertRaises(InvalidArgument):
                settlement.settle_debt(self.group.id, self.bob.id, self.alice.id, '0', self.bob)
            with self.assertRaises(AuthorizationDenied):
                settlement.settle_debt(self.group.id, self.bob.id, self.alice.id, '10', self.carol)
        lock.assert_not_called()

    def test_result_as_dict(self):
        split = self.owe('10', 1)
        result = settlement.settle_debt(self.group.id, self.bob.id, self.alice.id, '15', self.bob)
        self.assertEqual(result.as_dict(), {
            'settled_splits': [split.id],
            'settled_amount': '10.00',
            'remaining_amount': '5.00',
            'settlement_id': Settlement.objects.get().id,
        })
