import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


ORDER_TYPES = [
    ("SALE", "Venta"),
    ("LAYAWAY", "Apartado"),
    ("CUSTOM_WORK", "Hechura"),
    ("CUSTOM_RING", "Hechura de argolla"),
    ("WATCH_SERVICE", "Reloj"),
]
RING_KINDS = [("MADE_TO_ORDER", "Sobrepedido"), ("FROM_STOCK", "Stock")]
PAYMENT_METHODS = [("CASH", "Efectivo"), ("CARD", "Tarjeta"), ("CREDIT_NOTE", "Nota de credito")]


def _user_fk(related_name):
    return models.ForeignKey(
        blank=True,
        null=True,
        on_delete=django.db.models.deletion.PROTECT,
        related_name=related_name,
        to=settings.AUTH_USER_MODEL,
    )


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Order",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("order_type", models.CharField(choices=ORDER_TYPES, max_length=20)),
                ("ring_kind", models.CharField(blank=True, choices=RING_KINDS, default="", max_length=16)),
                ("customer_id", models.CharField(blank=True, default="", max_length=64)),
                ("employee_id", models.CharField(max_length=64)),
                ("subtotal", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("discount_pct", models.DecimalField(decimal_places=2, default=0, max_digits=5)),
                ("discount_amount", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("total", models.DecimalField(decimal_places=2, max_digits=12)),
                ("collected", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("notes", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("created_by", _user_fk("orders")),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["order_type", "created_at"], name="order_type_created_idx"),
                    models.Index(fields=["customer_id"], name="order_customer_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(total__gte=0), name="order_total_gte_zero"),
                    models.CheckConstraint(condition=models.Q(collected__gte=0), name="order_collected_gte_zero"),
                    models.CheckConstraint(
                        condition=models.Q(collected__lte=models.F("total")), name="order_collected_lte_total"
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Installment",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("is_founding", models.BooleanField(default=False)),
                ("employee_id", models.CharField(max_length=64)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT, related_name="installments", to="ledger.order"
                    ),
                ),
                ("created_by", _user_fk("installments")),
            ],
            options={
                "ordering": ["created_at"],
                "indexes": [models.Index(fields=["order", "created_at"], name="installment_order_created_idx")],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(amount__gte=0), name="installment_amount_gte_zero"),
                ],
            },
        ),
        migrations.CreateModel(
            name="CreditNote",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("customer_id", models.CharField(blank=True, default="", max_length=64)),
                ("employee_id", models.CharField(max_length=64)),
                ("total_original", models.DecimalField(decimal_places=2, max_digits=12)),
                ("total_used", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("cancelled", models.BooleanField(default=False)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "origin_order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT, related_name="credit_notes", to="ledger.order"
                    ),
                ),
                ("created_by", _user_fk("credit_notes")),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [models.Index(fields=["customer_id"], name="creditnote_customer_idx")],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(cancelled=False),
                        fields=("origin_order",),
                        name="creditnote_one_active_per_origin",
                    ),
                    models.CheckConstraint(condition=models.Q(total_original__gt=0), name="creditnote_original_gt_zero"),
                    models.CheckConstraint(condition=models.Q(total_used__gte=0), name="creditnote_used_gte_zero"),
                    models.CheckConstraint(
                        condition=models.Q(total_used__lte=models.F("total_original")),
                        name="creditnote_used_lte_original",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PaymentLine",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("position", models.PositiveSmallIntegerField(default=0)),
                ("method", models.CharField(choices=PAYMENT_METHODS, max_length=20)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                (
                    "installment",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT, related_name="payments", to="ledger.installment"
                    ),
                ),
                (
                    "credit_note",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payment_lines",
                        to="ledger.creditnote",
                    ),
                ),
            ],
            options={
                "ordering": ["installment", "position"],
                "indexes": [models.Index(fields=["method"], name="paymentline_method_idx")],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(amount__gte=0), name="paymentline_amount_gte_zero"),
                ],
            },
        ),
        migrations.CreateModel(
            name="CreditNoteRedemption",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("reference_type", models.CharField(blank=True, default="", max_length=64)),
                ("reference_id", models.CharField(blank=True, default="", max_length=64)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "credit_note",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT, related_name="redemptions", to="ledger.creditnote"
                    ),
                ),
                (
                    "installment",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="credit_note_redemptions",
                        to="ledger.installment",
                    ),
                ),
                ("created_by", _user_fk("credit_note_redemptions")),
            ],
            options={
                "ordering": ["created_at"],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(amount__gt=0), name="redemption_amount_gt_zero"),
                ],
            },
        ),
    ]
