from decimal import Decimal

from rest_framework import serializers

from apps.ledger.breakdown import PaymentBreakdown, PaymentEntry, parse_credit_note_id
from apps.ledger.choices import CreditNoteStatus, OrderType, PaymentMethod, RingOrderKind
from apps.ledger.exceptions import InvalidBreakdown
from apps.ledger.models import CreditNote, CreditNoteRedemption, Installment, Order, PaymentLine
from apps.ledger.money import MAX_AMOUNT, AmountTooLarge, Money
from apps.ledger.services import minimum_deposit


class MoneyField(serializers.Field):
    """Money as a decimal string ("150.00") or as integer cents (15000). JSON floats are refused."""

    default_error_messages = {
        "invalid": "Monto invalido. Usa una cadena decimal con maximo dos decimales (\"150.00\") o centavos enteros (15000).",
        "too_large": "El monto excede el maximo permitido (${max_amount}).",
    }

    def to_internal_value(self, data):
        if isinstance(data, (bool, float)):
            self.fail("invalid")
        try:
            if isinstance(data, int):
                return Money.from_cents(data)
            return Money.coerce(data)
        except TypeError:
            self.fail("invalid")
        except AmountTooLarge:
            self.fail("too_large", max_amount=MAX_AMOUNT)
        except ValueError:
            self.fail("invalid")

    def to_representation(self, value):
        return str(Money.coerce(value))


class PaymentEntrySerializer(serializers.Serializer):
    method = serializers.ChoiceField(choices=PaymentMethod.choices)
    amount = MoneyField()
    credit_note_id = serializers.CharField(required=False, allow_blank=True, allow_null=True)

    def validate_credit_note_id(self, value):
        if value in (None, ""):
            return None
        try:
            return parse_credit_note_id(value)
        except InvalidBreakdown as exc:
            raise serializers.ValidationError(exc.detail) from exc


def build_breakdown(payments):
    return PaymentBreakdown(
        PaymentEntry(method=payment["method"], amount=payment["amount"], credit_note_id=payment.get("credit_note_id"))
        for payment in payments
    )


class PaymentLineSerializer(serializers.ModelSerializer):
    amount = MoneyField(read_only=True)
    credit_note_folio = serializers.SerializerMethodField()

    class Meta:
        model = PaymentLine
        fields = ["id", "position", "method", "amount", "credit_note", "credit_note_folio"]
        read_only_fields = fields

    def get_credit_note_folio(self, obj):
        return f"NC-{obj.credit_note_id}" if obj.credit_note_id else None


class InstallmentSerializer(serializers.ModelSerializer):
    order_type = serializers.CharField(source="order.order_type", read_only=True)
    amount = MoneyField(read_only=True)
    payments = PaymentLineSerializer(many=True, read_only=True)
    payment_method_label = serializers.CharField(read_only=True)

    class Meta:
        model = Installment
        fields = [
            "id",
            "order",
            "order_type",
            "amount",
            "is_founding",
            "employee_id",
            "payment_method_label",
            "payments",
            "created_by",
            "created_at",
        ]
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    subtotal = MoneyField(read_only=True)
    discount_amount = MoneyField(read_only=True)
    total = MoneyField(read_only=True)
    collected = MoneyField(read_only=True)
    remaining = MoneyField(read_only=True)
    payment_method_label = serializers.CharField(read_only=True)
    method_totals = serializers.SerializerMethodField()
    minimum_deposit = serializers.SerializerMethodField()
    below_minimum_deposit = serializers.SerializerMethodField()
    installments = InstallmentSerializer(many=True, read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "order_type",
            "ring_kind",
            "customer_id",
            "employee_id",
            "subtotal",
            "discount_pct",
            "discount_amount",
            "total",
            "collected",
            "remaining",
            "payment_method_label",
            "method_totals",
            "minimum_deposit",
            "below_minimum_deposit",
            "notes",
            "installments",
            "created_by",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_method_totals(self, obj):
        return {method: str(amount) for method, amount in obj.method_totals().items()}

    def get_minimum_deposit(self, obj):
        return str(minimum_deposit(obj.order_type, obj.total_money))

    def get_below_minimum_deposit(self, obj):
        founding = obj.founding_installment
        if founding is None:
            return False
        return Money.coerce(founding.amount) < minimum_deposit(obj.order_type, obj.total_money)


class OrderOpenSerializer(serializers.Serializer):
    order_type = serializers.ChoiceField(choices=OrderType.choices)
    ring_kind = serializers.ChoiceField(choices=RingOrderKind.choices, required=False, allow_blank=True)
    subtotal = MoneyField()
    discount_pct = serializers.DecimalField(
        max_digits=5, decimal_places=2, min_value=Decimal("0"), max_value=Decimal("100"), required=False
    )
    declared_amount = MoneyField(required=False, allow_null=True)
    payments = PaymentEntrySerializer(many=True, required=False)
    customer_id = serializers.CharField(required=False, allow_blank=True, max_length=64)
    employee_id = serializers.CharField(required=False, allow_blank=True, max_length=64)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=255)

    def validate(self, attrs):
        ring_kind = attrs.get("ring_kind") or ""
        if attrs["order_type"] == OrderType.CUSTOM_RING and not ring_kind:
            raise serializers.ValidationError({"ring_kind": "Las hechuras de argolla requieren tipo: sobrepedido o stock."})
        if attrs["order_type"] != OrderType.CUSTOM_RING and ring_kind:
            raise serializers.ValidationError({"ring_kind": "Solo las hechuras de argolla llevan tipo de argolla."})
        attrs["ring_kind"] = ring_kind
        attrs["breakdown"] = build_breakdown(attrs.pop("payments", []))
        return attrs


class InstallmentApplySerializer(serializers.Serializer):
    order_type = serializers.ChoiceField(choices=OrderType.choices)
    order = serializers.CharField()
    amount = MoneyField()
    payments = PaymentEntrySerializer(many=True, required=False)
    employee_id = serializers.CharField(required=False, allow_blank=True, max_length=64)

    def validate(self, attrs):
        attrs["breakdown"] = build_breakdown(attrs.pop("payments", []))
        return attrs


class CreditNoteRedemptionSerializer(serializers.ModelSerializer):
    amount = MoneyField(read_only=True)

    class Meta:
        model = CreditNoteRedemption
        fields = ["id", "amount", "installment", "reference_type", "reference_id", "created_by", "created_at"]
        read_only_fields = fields


class CreditNoteSerializer(serializers.ModelSerializer):
    folio = serializers.CharField(read_only=True)
    origin_order_type = serializers.CharField(read_only=True)
    total_original = MoneyField(read_only=True)
    total_used = MoneyField(read_only=True)
    total_available = MoneyField(read_only=True)
    status = serializers.ChoiceField(choices=CreditNoteStatus.choices, read_only=True)
    redemptions = CreditNoteRedemptionSerializer(many=True, read_only=True)

    class Meta:
        model = CreditNote
        fields = [
            "id",
            "folio",
            "origin_order",
            "origin_order_type",
            "customer_id",
            "employee_id",
            "total_original",
            "total_used",
            "total_available",
            "status",
            "cancelled",
            "cancelled_at",
            "redemptions",
            "created_at",
        ]
        read_only_fields = fields


class CreditNoteIssueSerializer(serializers.Serializer):
    origin_order_type = serializers.ChoiceField(choices=OrderType.choices)
    origin_order = serializers.CharField()
    amount = MoneyField()
    customer_id = serializers.CharField(required=False, allow_blank=True, max_length=64)
    employee_id = serializers.CharField(required=False, allow_blank=True, max_length=64)


class CreditNoteRedeemSerializer(serializers.Serializer):
    amount = MoneyField()
    reference_type = serializers.CharField(required=False, allow_blank=True, max_length=64)
    reference_id = serializers.CharField(required=False, allow_blank=True, max_length=64)
