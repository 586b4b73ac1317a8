from decimal import Decimal

from django.core.management.base import BaseCommand, CommandError
from django.db.models import DecimalField, Sum, Value
from django.db.models.functions import Coalesce

from apps.ledger.models import CreditNote, Installment, Order
from apps.ledger.money import CENT

ZERO = Value(Decimal("0.00"), output_field=DecimalField(max_digits=12, decimal_places=2))


def _sum_of(path):
    return Coalesce(Sum(path), ZERO, output_field=DecimalField(max_digits=12, decimal_places=2))


def _q(value):
    return Decimal(value or 0).quantize(CENT)


class Command(BaseCommand):
    help = "Check that stored ledger totals match the rows they summarize."

    def add_arguments(self, parser):
        parser.add_argument("--order-type", dest="order_type", help="Only check orders of this type")
        parser.add_argument("--strict", action="store_true", help="Exit with an error if any drift is found.")
        parser.add_argument("--limit", type=int, default=10, help="How many example ids to print per check")

    def handle(self, *args, **options):
        limit = options["limit"]
        orders = Order.objects.all()
        installments = Installment.objects.all()
        if options.get("order_type"):
            orders = orders.filter(order_type=options["order_type"])
            installments = installments.filter(order__order_type=options["order_type"])

        self.stdout.write(self.style.MIGRATE_HEADING("Ledger reconciliation"))
        self.stdout.write(f"Orders: {orders.count()}  Installments: {installments.count()}  Credit notes: {CreditNote.objects.count()}")

        problems = []

        drift = [
            (str(order.pk), _q(order.collected), _q(order.installment_sum))
            for order in orders.annotate(installment_sum=_sum_of("installments__amount"))
            if _q(order.collected) != _q(order.installment_sum)
        ]
        problems += self._report("collected vs installments", "order", drift, limit)

        overpaid = [
            (str(order.pk), _q(order.collected), _q(order.total))
            for order in orders
            if _q(order.collected) > _q(order.total)
        ]
        problems += self._report("collected above total", "order", overpaid, limit)

        split = [
            (str(installment.pk), _q(installment.amount), _q(installment.line_sum))
            for installment in installments.annotate(line_sum=_sum_of("payments__amount"))
            if _q(installment.amount) != _q(installment.line_sum)
        ]
        problems += self._report("installment vs payment lines", "installment", split, limit)

        redeemed = [
            (note.folio, _q(note.total_used), _q(note.redeemed_sum))
            for note in CreditNote.objects.annotate(redeemed_sum=_sum_of("redemptions__amount"))
            if _q(note.total_used) != _q(note.redeemed_sum)
        ]
        problems += self._report("credit note used vs redemptions", "credit_note", redeemed, limit)

        self.stdout.write("")
        if not problems:
            self.stdout.write(self.style.SUCCESS("Ledger consistent"))
            return

        self.stderr.write(self.style.ERROR(f"Ledger drift found: {len(problems)} problem(s)"))
        if options["strict"]:
            raise CommandError(f"{len(problems)} ledger problem(s)")

    def _report(self, label, entity, rows, limit):
        if not rows:
            self.stdout.write(self.style.SUCCESS(f"[OK] {label}"))
            return []
        self.stderr.write(self.style.ERROR(f"[FAIL] {label}: {len(rows)}"))
        for entity_id, stored, expected in rows[:limit]:
            self.stderr.write(f"  {entity}={entity_id} stored={stored} expected={expected}")
        return rows
