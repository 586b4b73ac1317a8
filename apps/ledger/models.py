import uuid

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models

from apps.ledger.choices import CreditNoteStatus, OrderType, PaymentMethod, RingOrderKind
from apps.ledger.classifier import classify, method_totals
from apps.ledger.money import Money


class Order(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order_type = models.CharField(max_length=20, choices=OrderType.choices)
    ring_kind = models.CharField(max_length=16, choices=RingOrderKind.choices, blank=True, default="")
    customer_id = models.CharField(max_length=64, blank=True, default="")
    employee_id = models.CharField(max_length=64)
    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    discount_pct = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total = models.DecimalField(max_digits=12, decimal_places=2)
    collected = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    notes = models.CharField(max_length=255, blank=True)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, null=True, blank=True, related_name="orders")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["order_type", "created_at"], name="order_type_created_idx"),
            models.Index(fields=["customer_id"], name="order_customer_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(total__gte=0), name="order_total_gte_zero"),
            models.CheckConstraint(condition=models.Q(collected__gte=0), name="order_collected_gte_zero"),
            models.CheckConstraint(condition=models.Q(collected__lte=models.F("total")), name="order_collected_lte_total"),
        ]

    def clean(self):
        if self.order_type == OrderType.CUSTOM_RING and not self.ring_kind:
            raise ValidationError("Las hechuras de argolla requieren tipo (sobrepedido o stock).")
        if self.order_type != OrderType.CUSTOM_RING and self.ring_kind:
            raise ValidationError("Solo las hechuras de argolla llevan tipo de argolla.")

    @property
    def total_money(self):
        return Money.from_decimal(self.total)

    @property
    def collected_money(self):
        return Money.from_decimal(self.collected)

    @property
    def remaining(self):
        return self.total_money.subtract(self.collected_money, saturate=True)

    def payment_entries(self):
        return [line for installment in self.installments.all() for line in installment.payments.all()]

    @property
    def founding_installment(self):
        return next((installment for installment in self.installments.all() if installment.is_founding), None)

    @property
    def payment_method_label(self):
        return classify(self.payment_entries(), combined_when_all=self.order_type in (OrderType.LAYAWAY, OrderType.SALE))

    def method_totals(self):
        return method_totals(self.payment_entries())

    def __str__(self):
        return f"{self.get_order_type_display()} {self.id}"


class Installment(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(Order, on_delete=models.PROTECT, related_name="installments")
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    is_founding = models.BooleanField(default=False)
    employee_id = models.CharField(max_length=64)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.PROTECT, null=True, blank=True, related_name="installments"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["order", "created_at"], name="installment_order_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(amount__gte=0), name="installment_amount_gte_zero"),
        ]

    @property
    def payment_method_label(self):
        return classify(self.payments.all())


class PaymentLine(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    installment = models.ForeignKey(Installment, on_delete=models.PROTECT, related_name="payments")
    position = models.PositiveSmallIntegerField(default=0)
    method = models.CharField(max_length=20, choices=PaymentMethod.choices)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    credit_note = models.ForeignKey(
        "ledger.CreditNote", on_delete=models.PROTECT, null=True, blank=True, related_name="payment_lines"
    )

    class Meta:
        ordering = ["installment", "position"]
        indexes = [
            models.Index(fields=["method"], name="paymentline_method_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(amount__gte=0), name="paymentline_amount_gte_zero"),
        ]


class CreditNote(models.Model):
    origin_order = models.ForeignKey(Order, on_delete=models.PROTECT, related_name="credit_notes")
    customer_id = models.CharField(max_length=64, blank=True, default="")
    employee_id = models.CharField(max_length=64)
    total_original = models.DecimalField(max_digits=12, decimal_places=2)
    total_used = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    cancelled = models.BooleanField(default=False)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.PROTECT, null=True, blank=True, related_name="credit_notes"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["customer_id"], name="creditnote_customer_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["origin_order"],
                condition=models.Q(cancelled=False),
                name="creditnote_one_active_per_origin",
            ),
            models.CheckConstraint(condition=models.Q(total_original__gt=0), name="creditnote_original_gt_zero"),
            models.CheckConstraint(condition=models.Q(total_used__gte=0), name="creditnote_used_gte_zero"),
            models.CheckConstraint(
                condition=models.Q(total_used__lte=models.F("total_original")), name="creditnote_used_lte_original"
            ),
        ]

    @property
    def folio(self):
        return f"NC-{self.pk}"

    @property
    def origin_order_type(self):
        return self.origin_order.order_type

    @property
    def total_available(self):
        return Money.from_decimal(self.total_original).subtract(Money.from_decimal(self.total_used), saturate=True)

    @property
    def status(self):
        if self.cancelled:
            return CreditNoteStatus.CANCELLED
        if self.total_available.is_zero():
            return CreditNoteStatus.USED
        return CreditNoteStatus.AVAILABLE

    def __str__(self):
        return self.folio


class CreditNoteRedemption(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    credit_note = models.ForeignKey(CreditNote, on_delete=models.PROTECT, related_name="redemptions")
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    installment = models.ForeignKey(
        Installment, on_delete=models.PROTECT, null=True, blank=True, related_name="credit_note_redemptions"
    )
    reference_type = models.CharField(max_length=64, blank=True, default="")
    reference_id = models.CharField(max_length=64, blank=True, default="")
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.PROTECT, null=True, blank=True, related_name="credit_note_redemptions"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at"]
        constraints = [
            models.CheckConstraint(condition=models.Q(amount__gt=0), name="redemption_amount_gt_zero"),
        ]
