import threading
import uuid
from decimal import Decimal
from io import StringIO
from unittest import skipUnless

from django.contrib.auth import get_user_model
from django.core.management import CommandError, call_command
from django.db import IntegrityError, connection, transaction
from django.test import SimpleTestCase, TestCase, TransactionTestCase, override_settings
from rest_framework.test import APITestCase

from apps.audit.models import AuditLog
from apps.audit.services import audit_trail
from apps.ledger.breakdown import PaymentBreakdown, PaymentEntry, expected_total, validate_breakdown
from apps.ledger.choices import CreditNoteStatus, OrderType, PaymentLabel, PaymentMethod
from apps.ledger.classifier import classify, method_totals
from apps.ledger.exceptions import (
    AlreadyIssued,
    CreditNoteCancelled,
    CreditNoteNotFound,
    ExceedsPaidAmount,
    ExceedsRemaining,
    InsufficientBalance,
    InvalidAmount,
    InvalidBreakdown,
    OrderNotFound,
    OriginNotFound,
)
from apps.ledger.models import CreditNote, CreditNoteRedemption, Installment, Order
from apps.ledger.money import AmountTooLarge, Money
from apps.ledger.services import (
    apply_installment,
    cancel_credit_note,
    compute_total,
    issue_credit_note,
    minimum_deposit,
    open_order,
    redeem_credit_note,
    remaining_of,
)

User = get_user_model()


def m(value):
    return Money.from_decimal_string(value)


def note_entry(note, amount):
    return PaymentEntry(method=PaymentMethod.CREDIT_NOTE, amount=m(amount), credit_note_id=note.pk)


def open_layaway(total="2000.00", deposit="0.00", breakdown=None, customer_id="C-1"):
    if breakdown is None:
        breakdown = PaymentBreakdown.of(cash=deposit) if deposit != "0.00" else PaymentBreakdown()
    return open_order(
        order_type=OrderType.LAYAWAY,
        subtotal=total,
        breakdown=breakdown,
        declared_amount=deposit,
        employee_id="E-01",
        customer_id=customer_id,
    )


class MoneyTests(SimpleTestCase):
    def test_decimal_strings_add_without_drift(self):
        self.assertEqual(m("0.10") + m("0.20"), m("0.30"))
        self.assertEqual(str(m("$1,234.5")), "1234.50")

    def test_floats_and_extra_decimals_are_rejected(self):
        with self.assertRaises(TypeError):
            Money.from_decimal(0.1)
        with self.assertRaises(TypeError):
            Money.coerce(10)
        with self.assertRaises(ValueError):
            m("1.005")
        with self.assertRaises(ValueError):
            m("abc")

    def test_amounts_are_bounded_by_the_stored_columns(self):
        self.assertEqual(str(m("9999999999.99")), "9999999999.99")
        with self.assertRaises(AmountTooLarge):
            m("1e30")
        with self.assertRaises(ValueError):
            m("12345678901.00")
        with self.assertRaises(AmountTooLarge):
            Money.from_decimal(Decimal("-10000000000.00"))

    def test_integer_cents(self):
        self.assertEqual(Money.from_cents(15000), m("150.00"))
        with self.assertRaises(TypeError):
            Money.from_cents(True)
        with self.assertRaises(AmountTooLarge):
            Money.from_cents(1000000000000)

    def test_percentage_rounds_half_up_once(self):
        self.assertEqual(m("0.05").percentage_of(50), m("0.03"))
        self.assertEqual(m("2000.00").percentage_of(10), m("200.00"))
        self.assertEqual(m("999.99").percentage_of("12.5"), m("125.00"))

    def test_saturating_subtract(self):
        self.assertEqual(m("100.00").subtract(m("150.00"), saturate=True), Money.zero())
        self.assertTrue((m("100.00") - m("150.00")).is_negative())

    def test_compute_total_applies_discount(self):
        discount, total = compute_total("1000.00", Decimal("10"))
        self.assertEqual(discount, m("100.00"))
        self.assertEqual(total, m("900.00"))
        with self.assertRaises(InvalidAmount):
            compute_total("1000.00", Decimal("120"))


class BreakdownTests(SimpleTestCase):
    def test_sum_must_match_declared_total_exactly(self):
        validate_breakdown(PaymentBreakdown.of(cash="300.00", card="200.00"), m("500.00"))
        with self.assertRaises(InvalidBreakdown) as ctx:
            validate_breakdown(PaymentBreakdown.of(cash="300.00", card="199.99"), m("500.00"))
        self.assertIn("499.99", ctx.exception.detail)

    def test_zero_entry_is_accepted(self):
        validate_breakdown(PaymentBreakdown.of(card="0.00"), Money.zero())

    def test_negative_entry_is_rejected(self):
        with self.assertRaises(InvalidBreakdown):
            validate_breakdown(PaymentBreakdown.of(cash="600.00", card="-100.00"), m("500.00"))

    def test_credit_note_entries_need_one_unique_id(self):
        missing = PaymentBreakdown([PaymentEntry(method=PaymentMethod.CREDIT_NOTE, amount=m("10.00"))])
        with self.assertRaises(InvalidBreakdown):
            validate_breakdown(missing, m("10.00"))
        duplicated = PaymentBreakdown(
            [
                PaymentEntry(method=PaymentMethod.CREDIT_NOTE, amount=m("10.00"), credit_note_id=4),
                PaymentEntry(method=PaymentMethod.CREDIT_NOTE, amount=m("5.00"), credit_note_id=4),
            ]
        )
        with self.assertRaises(InvalidBreakdown):
            validate_breakdown(duplicated, m("15.00"))
        stray = PaymentBreakdown([PaymentEntry(method=PaymentMethod.CASH, amount=m("10.00"), credit_note_id=4)])
        with self.assertRaises(InvalidBreakdown):
            validate_breakdown(stray, m("10.00"))

    def test_payload_parsing_accepts_folio_form(self):
        breakdown = PaymentBreakdown.from_payload([{"method": "credit_note", "amount": "50.00", "credit_note_id": "NC-8"}])
        self.assertEqual(breakdown.credit_note_ids(), [8])
        with self.assertRaises(InvalidBreakdown):
            PaymentBreakdown.from_payload([{"method": "CHEQUE", "amount": "50.00"}])

    def test_expected_total_per_order_type(self):
        self.assertEqual(expected_total(OrderType.SALE, m("1000.00")), m("1000.00"))
        with self.assertRaises(InvalidBreakdown):
            expected_total(OrderType.SALE, m("1000.00"), m("900.00"))
        self.assertEqual(expected_total(OrderType.LAYAWAY, m("1000.00"), m("0.00")), Money.zero())
        with self.assertRaises(InvalidBreakdown):
            expected_total(OrderType.CUSTOM_WORK, m("1000.00"))
        with self.assertRaises(InvalidBreakdown):
            expected_total(OrderType.WATCH_SERVICE, m("1000.00"), m("1000.01"))


class ClassifierTests(SimpleTestCase):
    def test_labels(self):
        self.assertEqual(classify([]), PaymentLabel.NONE)
        self.assertEqual(classify(PaymentBreakdown.of(card="0.00")), PaymentLabel.NONE)
        self.assertEqual(classify(PaymentBreakdown.of(cash="10.00", card="0.00")), PaymentLabel.CASH)
        self.assertEqual(classify(PaymentBreakdown.of(cash="10.00", card="5.00")), PaymentLabel.MIXED)

    def test_all_three_methods_relabel_only_on_request(self):
        entries = list(PaymentBreakdown.of(cash="10.00", card="5.00")) + [
            PaymentEntry(method=PaymentMethod.CREDIT_NOTE, amount=m("1.00"), credit_note_id=1)
        ]
        self.assertEqual(classify(entries), PaymentLabel.MIXED)
        self.assertEqual(classify(entries, combined_when_all=True), PaymentLabel.COMBINED)

    def test_method_totals(self):
        totals = method_totals(PaymentBreakdown.of(cash="10.00", card="5.50"))
        self.assertEqual(totals["CASH"], m("10.00"))
        self.assertEqual(totals["CARD"], m("5.50"))
        self.assertEqual(totals["CREDIT_NOTE"], Money.zero())


class OrderLedgerTests(TestCase):
    def test_sale_paid_in_full_has_nothing_remaining(self):
        order = open_order(
            order_type=OrderType.SALE,
            subtotal="1000.00",
            breakdown=PaymentBreakdown.of(cash="1000.00"),
            employee_id="E-01",
        )
        self.assertEqual(remaining_of(order), Money.zero())
        self.assertEqual(order.payment_method_label, PaymentLabel.CASH)
        self.assertEqual(order.installments.get().is_founding, True)
        self.assertEqual(AuditLog.objects.filter(action="order.open", entity_id=str(order.id)).count(), 1)

    def test_sale_must_be_paid_in_full(self):
        with self.assertRaises(InvalidBreakdown):
            open_order(
                order_type=OrderType.SALE,
                subtotal="1000.00",
                breakdown=PaymentBreakdown.of(cash="900.00"),
                employee_id="E-01",
            )
        self.assertFalse(Order.objects.exists())

    def test_sale_with_discount(self):
        order = open_order(
            order_type=OrderType.SALE,
            subtotal="1000.00",
            discount_pct=Decimal("10"),
            breakdown=PaymentBreakdown.of(card="900.00"),
            employee_id="E-01",
        )
        self.assertEqual(order.total_money, m("900.00"))
        self.assertEqual(order.discount_amount, Decimal("100.00"))

    def test_layaway_opened_without_payment(self):
        order = open_layaway()
        self.assertEqual(remaining_of(order), m("2000.00"))
        self.assertEqual(order.collected_money, Money.zero())
        fresh = Order.objects.get(pk=order.pk)
        self.assertEqual(fresh.payment_method_label, PaymentLabel.NONE)
        self.assertEqual(fresh.founding_installment.amount, Decimal("0.00"))

    def test_deposit_cannot_exceed_total(self):
        with self.assertRaises(InvalidBreakdown):
            open_layaway(total="500.00", deposit="500.01")

    def test_custom_ring_requires_kind(self):
        with self.assertRaises(InvalidBreakdown) as ctx:
            open_order(
                order_type=OrderType.CUSTOM_RING,
                subtotal="3000.00",
                breakdown=PaymentBreakdown(),
                declared_amount="0.00",
                employee_id="E-01",
            )
        self.assertIn("ring_kind", ctx.exception.fields)
        with self.assertRaises(InvalidBreakdown):
            open_order(
                order_type=OrderType.CUSTOM_RING,
                ring_kind="BACKORDER",
                subtotal="3000.00",
                breakdown=PaymentBreakdown(),
                declared_amount="0.00",
                employee_id="E-01",
            )
        with self.assertRaises(InvalidBreakdown):
            open_order(
                order_type=OrderType.LAYAWAY,
                ring_kind="MADE_TO_ORDER",
                subtotal="3000.00",
                breakdown=PaymentBreakdown(),
                declared_amount="0.00",
                employee_id="E-01",
            )
        order = open_order(
            order_type=OrderType.CUSTOM_RING,
            ring_kind="MADE_TO_ORDER",
            subtotal="3000.00",
            breakdown=PaymentBreakdown.of(cash="1000.00"),
            declared_amount="1000.00",
            employee_id="E-01",
        )
        self.assertEqual(order.remaining, m("2000.00"))

    def test_unknown_order_type_and_blank_employee_are_rejected(self):
        with self.assertRaises(InvalidBreakdown) as ctx:
            open_order(
                order_type="RENTAL",
                subtotal="1000.00",
                breakdown=PaymentBreakdown.of(cash="1000.00"),
                employee_id="E-01",
            )
        self.assertEqual(ctx.exception.fields["order_type"], "RENTAL")
        with self.assertRaises(InvalidBreakdown) as ctx:
            open_order(
                order_type=OrderType.SALE,
                subtotal="1000.00",
                breakdown=PaymentBreakdown.of(cash="1000.00"),
                employee_id="   ",
            )
        self.assertIn("employee_id", ctx.exception.fields)
        self.assertFalse(Order.objects.exists())

    def test_sale_paid_with_all_three_methods_is_combined(self):
        origin = open_layaway(total="1000.00", deposit="500.00")
        note = issue_credit_note(
            origin_order_type=OrderType.LAYAWAY,
            origin_order_id=origin.pk,
            requested_amount="500.00",
            employee_id="E-01",
        )
        sale = open_order(
            order_type=OrderType.SALE,
            subtotal="900.00",
            breakdown=PaymentBreakdown(list(PaymentBreakdown.of(cash="300.00", card="400.00")) + [note_entry(note, "200.00")]),
            employee_id="E-01",
        )
        self.assertEqual(Order.objects.get(pk=sale.pk).payment_method_label, PaymentLabel.COMBINED)

    def test_minimum_deposit_is_advisory(self):
        self.assertEqual(minimum_deposit(OrderType.LAYAWAY, m("2000.00")), m("200.00"))
        self.assertEqual(minimum_deposit(OrderType.SALE, m("2000.00")), Money.zero())
        with override_settings(LEDGER_LAYAWAY_MIN_DEPOSIT_PCT=15):
            self.assertEqual(minimum_deposit(OrderType.LAYAWAY, m("1000.00")), m("150.00"))
        order = open_layaway(deposit="50.00")
        self.assertEqual(order.collected_money, m("50.00"))


class InstallmentTests(TestCase):
    def setUp(self):
        self.order = open_layaway()

    def test_mixed_installment_updates_collected(self):
        installment = apply_installment(
            order_type=OrderType.LAYAWAY,
            order_id=self.order.pk,
            amount="500.00",
            breakdown=PaymentBreakdown.of(cash="300.00", card="200.00"),
            employee_id="E-02",
        )
        order = Order.objects.get(pk=self.order.pk)
        self.assertEqual(order.collected_money, m("500.00"))
        self.assertEqual(order.remaining, m("1500.00"))
        self.assertEqual(installment.payment_method_label, PaymentLabel.MIXED)
        self.assertEqual(order.payment_method_label, PaymentLabel.MIXED)
        self.assertEqual(list(audit_trail("order", order.pk).values_list("action", flat=True)), ["order.open", "installment.apply"])

    def test_installment_cannot_exceed_remaining(self):
        with self.assertRaises(ExceedsRemaining) as ctx:
            apply_installment(
                order_type=OrderType.LAYAWAY,
                order_id=self.order.pk,
                amount="2000.01",
                breakdown=PaymentBreakdown.of(cash="2000.01"),
                employee_id="E-02",
            )
        self.assertEqual(ctx.exception.fields["remaining"], "2000.00")

    def test_exact_remaining_settles_order(self):
        apply_installment(
            order_type=OrderType.LAYAWAY,
            order_id=self.order.pk,
            amount="2000.00",
            breakdown=PaymentBreakdown.of(card="2000.00"),
            employee_id="E-02",
        )
        self.assertEqual(Order.objects.get(pk=self.order.pk).remaining, Money.zero())

    def test_breakdown_must_match_amount(self):
        with self.assertRaises(InvalidBreakdown):
            apply_installment(
                order_type=OrderType.LAYAWAY,
                order_id=self.order.pk,
                amount="500.00",
                breakdown=PaymentBreakdown.of(cash="300.00"),
                employee_id="E-02",
            )

    def test_negative_amount_is_rejected(self):
        with self.assertRaises(InvalidBreakdown):
            apply_installment(
                order_type=OrderType.LAYAWAY,
                order_id=self.order.pk,
                amount="-1.00",
                breakdown=PaymentBreakdown.of(cash="-1.00"),
                employee_id="E-02",
            )

    def test_zero_installment_needs_single_zero_entry(self):
        apply_installment(
            order_type=OrderType.LAYAWAY,
            order_id=self.order.pk,
            amount="0.00",
            breakdown=PaymentBreakdown.of(card="0.00"),
            employee_id="E-02",
        )
        self.assertEqual(Order.objects.get(pk=self.order.pk).collected_money, Money.zero())
        with self.assertRaises(InvalidBreakdown):
            apply_installment(
                order_type=OrderType.LAYAWAY,
                order_id=self.order.pk,
                amount="0.00",
                breakdown=PaymentBreakdown(),
                employee_id="E-02",
            )

    def test_unknown_order_or_wrong_type(self):
        with self.assertRaises(OrderNotFound):
            apply_installment(
                order_type=OrderType.LAYAWAY,
                order_id=uuid.uuid4(),
                amount="10.00",
                breakdown=PaymentBreakdown.of(cash="10.00"),
                employee_id="E-02",
            )
        with self.assertRaises(OrderNotFound):
            apply_installment(
                order_type=OrderType.CUSTOM_WORK,
                order_id=self.order.pk,
                amount="10.00",
                breakdown=PaymentBreakdown.of(cash="10.00"),
                employee_id="E-02",
            )
        with self.assertRaises(OrderNotFound):
            apply_installment(
                order_type=OrderType.LAYAWAY,
                order_id="not-a-uuid",
                amount="10.00",
                breakdown=PaymentBreakdown.of(cash="10.00"),
                employee_id="E-02",
            )

    def test_rejection_is_logged(self):
        with self.assertLogs("apps.ledger.services", level="WARNING") as logs:
            with self.assertRaises(ExceedsRemaining):
                apply_installment(
                    order_type=OrderType.LAYAWAY,
                    order_id=self.order.pk,
                    amount="5000.00",
                    breakdown=PaymentBreakdown.of(cash="5000.00"),
                    employee_id="E-02",
                )
        self.assertIn("exceeds_remaining", logs.output[0])


class CreditNoteTests(TestCase):
    def setUp(self):
        self.origin = open_layaway(total="2000.00", deposit="800.00", customer_id="C-9")

    def issue(self, amount="800.00"):
        return issue_credit_note(
            origin_order_type=OrderType.LAYAWAY,
            origin_order_id=self.origin.pk,
            requested_amount=amount,
            employee_id="E-01",
        )

    def test_issue_and_redeem_until_exhausted(self):
        note = self.issue()
        self.assertEqual(note.total_available, m("800.00"))
        self.assertEqual(note.customer_id, "C-9")
        self.assertEqual(note.folio, f"NC-{note.pk}")

        with self.assertRaises(InsufficientBalance):
            redeem_credit_note(credit_note_id=note.pk, amount="900.00")
        note = redeem_credit_note(credit_note_id=note.pk, amount="800.00")
        self.assertEqual(note.total_available, Money.zero())
        self.assertEqual(note.status, CreditNoteStatus.USED)
        with self.assertRaises(InsufficientBalance):
            redeem_credit_note(credit_note_id=note.pk, amount="0.01")
        self.assertEqual(CreditNoteRedemption.objects.filter(credit_note=note).count(), 1)

    def test_second_issue_against_same_origin_fails(self):
        self.issue("100.00")
        with self.assertRaises(AlreadyIssued):
            self.issue("100.00")

    def test_issue_is_capped_by_collected(self):
        with self.assertRaises(ExceedsPaidAmount) as ctx:
            self.issue("800.01")
        self.assertEqual(ctx.exception.fields["cap"], "800.00")
        with self.assertRaises(ExceedsPaidAmount):
            self.issue("0.00")
        with self.assertRaises(OriginNotFound):
            issue_credit_note(
                origin_order_type=OrderType.SALE,
                origin_order_id=self.origin.pk,
                requested_amount="10.00",
                employee_id="E-01",
            )

    def test_partial_unique_constraint_backs_the_locked_check(self):
        CreditNote.objects.create(origin_order=self.origin, employee_id="E-01", total_original=Decimal("10.00"))
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                CreditNote.objects.create(origin_order=self.origin, employee_id="E-01", total_original=Decimal("10.00"))

    def test_redeem_validations(self):
        with self.assertRaises(CreditNoteNotFound):
            redeem_credit_note(credit_note_id=9999, amount="1.00")
        note = self.issue()
        with self.assertRaises(InvalidAmount):
            redeem_credit_note(credit_note_id=note.pk, amount="0.00")
        note = redeem_credit_note(credit_note_id=f"NC-{note.pk}", amount="1.00", reference_type="manual", reference_id="T-1")
        self.assertEqual(note.total_used, Decimal("1.00"))

    def test_cancel_is_idempotent_and_blocks_redemption(self):
        note = self.issue()
        redeem_credit_note(credit_note_id=note.pk, amount="300.00")
        cancel_credit_note(credit_note_id=note.pk)
        note = cancel_credit_note(credit_note_id=note.pk)
        self.assertEqual(note.status, CreditNoteStatus.CANCELLED)
        self.assertEqual(note.total_used, Decimal("300.00"))
        self.assertEqual(AuditLog.objects.filter(action="credit_note.cancel").count(), 1)
        with self.assertRaises(CreditNoteCancelled):
            redeem_credit_note(credit_note_id=note.pk, amount="1.00")
        with self.assertRaises(CreditNoteNotFound):
            cancel_credit_note(credit_note_id=4242)

    def test_reissue_after_cancel_is_capped_by_collected_only(self):
        sale = open_order(
            order_type=OrderType.SALE,
            subtotal="800.00",
            breakdown=PaymentBreakdown.of(cash="800.00"),
            employee_id="E-01",
        )
        note = issue_credit_note(
            origin_order_type=OrderType.SALE, origin_order_id=sale.pk, requested_amount="800.00", employee_id="E-01"
        )
        redeem_credit_note(credit_note_id=note.pk, amount="300.00")
        cancel_credit_note(credit_note_id=note.pk)
        with self.assertRaises(ExceedsPaidAmount):
            issue_credit_note(
                origin_order_type=OrderType.SALE, origin_order_id=sale.pk, requested_amount="800.01", employee_id="E-01"
            )
        reissued = issue_credit_note(
            origin_order_type=OrderType.SALE, origin_order_id=sale.pk, requested_amount="800.00", employee_id="E-01"
        )
        self.assertEqual(reissued.total_available, m("800.00"))
        self.assertEqual(CreditNote.objects.filter(origin_order=sale).count(), 2)

    def test_issue_requires_employee(self):
        with self.assertRaises(InvalidAmount) as ctx:
            issue_credit_note(
                origin_order_type=OrderType.LAYAWAY,
                origin_order_id=self.origin.pk,
                requested_amount="100.00",
                employee_id="",
            )
        self.assertIn("employee_id", ctx.exception.fields)
        self.assertFalse(CreditNote.objects.exists())

    def test_credit_note_pays_an_installment_on_another_order(self):
        note = self.issue()
        target = open_layaway(total="1000.00", customer_id="C-9")
        installment = apply_installment(
            order_type=OrderType.LAYAWAY,
            order_id=target.pk,
            amount="400.00",
            breakdown=PaymentBreakdown(list(PaymentBreakdown.of(cash="100.00")) + [note_entry(note, "300.00")]),
            employee_id="E-03",
        )
        note.refresh_from_db()
        self.assertEqual(note.total_available, m("500.00"))
        redemption = note.redemptions.get()
        self.assertEqual(redemption.installment_id, installment.pk)
        self.assertEqual(redemption.reference_id, str(target.pk))
        self.assertEqual(installment.payments.get(method=PaymentMethod.CREDIT_NOTE).credit_note_id, note.pk)
        self.assertEqual(Order.objects.get(pk=target.pk).collected_money, m("400.00"))

    def test_failed_credit_note_rolls_back_whole_installment(self):
        note = self.issue()
        target = open_layaway(total="1000.00")
        with self.assertRaises(InsufficientBalance):
            apply_installment(
                order_type=OrderType.LAYAWAY,
                order_id=target.pk,
                amount="1000.00",
                breakdown=PaymentBreakdown(list(PaymentBreakdown.of(cash="100.00")) + [note_entry(note, "900.00")]),
                employee_id="E-03",
            )
        self.assertEqual(Order.objects.get(pk=target.pk).collected_money, Money.zero())
        self.assertEqual(Installment.objects.filter(order=target).count(), 1)
        note.refresh_from_db()
        self.assertEqual(note.total_used, Decimal("0.00"))

    def test_credit_note_cannot_pay_its_own_origin(self):
        note = self.issue("100.00")
        with self.assertRaises(InvalidBreakdown):
            apply_installment(
                order_type=OrderType.LAYAWAY,
                order_id=self.origin.pk,
                amount="100.00",
                breakdown=PaymentBreakdown([note_entry(note, "100.00")]),
                employee_id="E-03",
            )

    def test_founding_payment_can_use_credit_note(self):
        note = self.issue()
        sale = open_order(
            order_type=OrderType.SALE,
            subtotal="500.00",
            breakdown=PaymentBreakdown([note_entry(note, "500.00")]),
            employee_id="E-01",
        )
        note.refresh_from_db()
        self.assertEqual(note.total_available, m("300.00"))
        self.assertEqual(Order.objects.get(pk=sale.pk).payment_method_label, PaymentLabel.CREDIT_NOTE)

    def test_founding_payment_with_cancelled_note_creates_nothing(self):
        note = self.issue()
        cancel_credit_note(credit_note_id=note.pk)
        with self.assertRaises(CreditNoteCancelled):
            open_order(
                order_type=OrderType.SALE,
                subtotal="500.00",
                breakdown=PaymentBreakdown([note_entry(note, "500.00")]),
                employee_id="E-01",
            )
        self.assertEqual(Order.objects.count(), 1)


class ReconcileLedgerCommandTests(TestCase):
    def test_consistent_ledger_and_drift(self):
        order = open_layaway(deposit="300.00")
        apply_installment(
            order_type=OrderType.LAYAWAY,
            order_id=order.pk,
            amount="200.00",
            breakdown=PaymentBreakdown.of(card="200.00"),
            employee_id="E-01",
        )
        out, err = StringIO(), StringIO()
        call_command("reconcile_ledger", "--strict", stdout=out, stderr=err)
        self.assertIn("Ledger consistent", out.getvalue())

        Order.objects.filter(pk=order.pk).update(collected=Decimal("100.00"))
        with self.assertRaises(CommandError):
            call_command("reconcile_ledger", "--strict", stdout=StringIO(), stderr=err)
        self.assertIn("collected vs installments", err.getvalue())


class LedgerApiTests(APITestCase):
    def setUp(self):
        self.admin = User.objects.create_user(username="admin_joy", password="admin123", role="ADMIN")
        self.cashier = User.objects.create_user(
            username="cajero_joy", password="cashier123", role="CASHIER", employee_code="EMP-7"
        )

    def auth_as(self, username, password):
        token = self.client.post(
            "/api/v1/auth/token/",
            {"username": username, "password": password},
            format="json",
        ).data["access"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")

    def open_layaway(self, deposit_payments=None, declared="0.00"):
        self.auth_as("cajero_joy", "cashier123")
        response = self.client.post(
            "/api/v1/orders/",
            {
                "order_type": "LAYAWAY",
                "subtotal": "2000.00",
                "declared_amount": declared,
                "payments": deposit_payments or [],
                "customer_id": "C-1",
            },
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        return response

    def test_requires_authentication(self):
        response = self.client.get("/api/v1/orders/")
        self.assertEqual(response.status_code, 401)

    def test_open_layaway_and_apply_installment(self):
        created = self.open_layaway()
        self.assertEqual(created.data["remaining"], "2000.00")
        self.assertEqual(created.data["employee_id"], "EMP-7")
        self.assertEqual(created.data["minimum_deposit"], "200.00")
        self.assertTrue(created.data["below_minimum_deposit"])
        self.assertEqual(created.data["payment_method_label"], "NONE")

        response = self.client.post(
            "/api/v1/installments/",
            {
                "order_type": "LAYAWAY",
                "order": created.data["id"],
                "amount": "500.00",
                "payments": [{"method": "CASH", "amount": "300.00"}, {"method": "CARD", "amount": "200.00"}],
            },
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["payment_method_label"], "MIXED")

        detail = self.client.get(f"/api/v1/orders/{created.data['id']}/")
        self.assertEqual(detail.data["collected"], "500.00")
        self.assertEqual(detail.data["remaining"], "1500.00")
        self.assertEqual(detail.data["method_totals"]["CARD"], "200.00")

        history = self.client.get(f"/api/v1/orders/{created.data['id']}/installments/")
        self.assertEqual(len(history.data), 2)

        with_balance = self.client.get("/api/v1/orders/", {"with_balance": "true"})
        self.assertEqual(with_balance.status_code, 200)
        self.assertEqual(with_balance.data["results"][0]["id"], created.data["id"])

    def test_error_envelope_for_ledger_errors(self):
        created = self.open_layaway()
        response = self.client.post(
            "/api/v1/installments/",
            {
                "order_type": "LAYAWAY",
                "order": created.data["id"],
                "amount": "2500.00",
                "payments": [{"method": "CASH", "amount": "2500.00"}],
            },
            format="json",
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "exceeds_remaining")
        self.assertEqual(response.data["fields"]["remaining"], "2000.00")

        missing = self.client.post(
            "/api/v1/installments/",
            {
                "order_type": "LAYAWAY",
                "order": str(uuid.uuid4()),
                "amount": "10.00",
                "payments": [{"method": "CASH", "amount": "10.00"}],
            },
            format="json",
        )
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.data["code"], "order_not_found")

    def test_float_amounts_are_rejected(self):
        self.auth_as("cajero_joy", "cashier123")
        response = self.client.post(
            "/api/v1/orders/",
            {"order_type": "SALE", "subtotal": 100.5, "payments": [{"method": "CASH", "amount": 100.5}]},
            format="json",
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("subtotal", response.data["fields"])

    def test_integer_amounts_are_cents(self):
        self.auth_as("cajero_joy", "cashier123")
        response = self.client.post(
            "/api/v1/orders/",
            {"order_type": "LAYAWAY", "subtotal": 15000, "declared_amount": 0},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["total"], "150.00")
        self.assertEqual(response.data["remaining"], "150.00")

    def test_oversized_amounts_are_rejected(self):
        self.auth_as("cajero_joy", "cashier123")
        for subtotal in ("1e30", "12345678901.00", 1000000000000):
            response = self.client.post(
                "/api/v1/orders/",
                {"order_type": "LAYAWAY", "subtotal": subtotal, "declared_amount": "0.00"},
                format="json",
            )
            self.assertEqual(response.status_code, 400)
            self.assertIn("subtotal", response.data["fields"])
        self.assertFalse(Order.objects.exists())

    def test_credit_note_flow_and_cancel_permissions(self):
        created = self.open_layaway(deposit_payments=[{"method": "CASH", "amount": "800.00"}], declared="800.00")
        issued = self.client.post(
            "/api/v1/credit-notes/",
            {"origin_order_type": "LAYAWAY", "origin_order": created.data["id"], "amount": "800.00"},
            format="json",
        )
        self.assertEqual(issued.status_code, 201)
        self.assertEqual(issued.data["folio"], f"NC-{issued.data['id']}")
        self.assertEqual(issued.data["status"], "AVAILABLE")
        note_id = issued.data["id"]

        again = self.client.post(
            "/api/v1/credit-notes/",
            {"origin_order_type": "LAYAWAY", "origin_order": created.data["id"], "amount": "10.00"},
            format="json",
        )
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.data["code"], "already_issued")

        too_much = self.client.post(f"/api/v1/credit-notes/{note_id}/redeem/", {"amount": "900.00"}, format="json")
        self.assertEqual(too_much.status_code, 400)
        self.assertEqual(too_much.data["code"], "insufficient_balance")

        redeemed = self.client.post(f"/api/v1/credit-notes/{note_id}/redeem/", {"amount": "250.00"}, format="json")
        self.assertEqual(redeemed.status_code, 200)
        self.assertEqual(redeemed.data["total_available"], "550.00")

        available = self.client.get("/api/v1/credit-notes/", {"status": "AVAILABLE", "customer_id": "C-1"})
        self.assertEqual([row["id"] for row in available.data["results"]], [note_id])

        forbidden = self.client.post(f"/api/v1/credit-notes/{note_id}/cancel/")
        self.assertEqual(forbidden.status_code, 403)

        self.auth_as("admin_joy", "admin123")
        cancelled = self.client.post(f"/api/v1/credit-notes/{note_id}/cancel/")
        self.assertEqual(cancelled.status_code, 200)
        self.assertEqual(cancelled.data["status"], "CANCELLED")
        self.assertEqual(cancelled.data["total_used"], "250.00")

        blocked = self.client.post(f"/api/v1/credit-notes/{note_id}/redeem/", {"amount": "1.00"}, format="json")
        self.assertEqual(blocked.status_code, 409)
        self.assertEqual(blocked.data["code"], "credit_note_cancelled")

    def test_installment_paid_with_credit_note_over_api(self):
        origin = self.open_layaway(deposit_payments=[{"method": "CASH", "amount": "800.00"}], declared="800.00")
        note_id = self.client.post(
            "/api/v1/credit-notes/",
            {"origin_order_type": "LAYAWAY", "origin_order": origin.data["id"], "amount": "800.00"},
            format="json",
        ).data["id"]
        target = self.open_layaway()
        response = self.client.post(
            "/api/v1/installments/",
            {
                "order_type": "LAYAWAY",
                "order": target.data["id"],
                "amount": "300.00",
                "payments": [{"method": "CREDIT_NOTE", "amount": "300.00", "credit_note_id": f"NC-{note_id}"}],
            },
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["payment_method_label"], "CREDIT_NOTE")
        self.assertEqual(response.data["payments"][0]["credit_note_folio"], f"NC-{note_id}")


@skipUnless(connection.vendor == "postgresql", "row locks need PostgreSQL")
class ConcurrentRedemptionTests(TransactionTestCase):
    def test_only_one_of_two_competing_redemptions_succeeds(self):
        origin = open_layaway(total="1000.00", deposit="800.00")
        note = issue_credit_note(
            origin_order_type=OrderType.LAYAWAY,
            origin_order_id=origin.pk,
            requested_amount="800.00",
            employee_id="E-01",
        )
        barrier = threading.Barrier(2)
        results = []

        def worker():
            try:
                barrier.wait()
                redeem_credit_note(credit_note_id=note.pk, amount="500.00")
                results.append("ok")
            except InsufficientBalance:
                results.append("rejected")
            finally:
                connection.close()

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(sorted(results), ["ok", "rejected"])
        note.refresh_from_db()
        self.assertEqual(note.total_used, Decimal("500.00"))


@skipUnless(connection.vendor == "postgresql", "row locks need PostgreSQL")
class ConcurrentInstallmentTests(TransactionTestCase):
    def test_only_one_of_two_installments_settling_the_balance_succeeds(self):
        order = open_layaway(total="1000.00")
        barrier = threading.Barrier(2)
        results = []

        def worker():
            try:
                barrier.wait()
                apply_installment(
                    order_type=OrderType.LAYAWAY,
                    order_id=order.pk,
                    amount="1000.00",
                    breakdown=PaymentBreakdown.of(cash="1000.00"),
                    employee_id="E-02",
                )
                results.append("ok")
            except ExceedsRemaining:
                results.append("rejected")
            finally:
                connection.close()

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(sorted(results), ["ok", "rejected"])
        order.refresh_from_db()
        self.assertEqual(order.collected_money, m("1000.00"))
        self.assertEqual(order.installments.filter(is_founding=False).count(), 1)
