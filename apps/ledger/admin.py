from django.contrib import admin

from apps.ledger.models import CreditNote, CreditNoteRedemption, Installment, Order, PaymentLine


class InstallmentInline(admin.TabularInline):
    model = Installment
    extra = 0
    can_delete = False
    readonly_fields = ("amount", "is_founding", "employee_id", "created_by", "created_at")


class PaymentLineInline(admin.TabularInline):
    model = PaymentLine
    extra = 0
    can_delete = False
    readonly_fields = ("position", "method", "amount", "credit_note")


class CreditNoteRedemptionInline(admin.TabularInline):
    model = CreditNoteRedemption
    extra = 0
    can_delete = False
    readonly_fields = ("amount", "installment", "reference_type", "reference_id", "created_by", "created_at")


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("id", "order_type", "customer_id", "employee_id", "total", "collected", "created_at")
    list_filter = ("order_type", "ring_kind")
    search_fields = ("id", "customer_id", "employee_id", "notes")
    readonly_fields = ("subtotal", "discount_pct", "discount_amount", "total", "collected", "created_by")
    inlines = [InstallmentInline]


@admin.register(Installment)
class InstallmentAdmin(admin.ModelAdmin):
    list_display = ("id", "order", "amount", "is_founding", "employee_id", "created_at")
    list_filter = ("is_founding", "order__order_type")
    search_fields = ("order__id", "employee_id")
    readonly_fields = ("order", "amount", "is_founding", "employee_id", "created_by")
    inlines = [PaymentLineInline]


@admin.register(CreditNote)
class CreditNoteAdmin(admin.ModelAdmin):
    list_display = ("folio", "origin_order", "customer_id", "total_original", "total_used", "cancelled", "created_at")
    list_filter = ("cancelled",)
    search_fields = ("id", "customer_id", "origin_order__id")
    readonly_fields = ("origin_order", "total_original", "total_used", "cancelled_at", "created_by")
    inlines = [CreditNoteRedemptionInline]
