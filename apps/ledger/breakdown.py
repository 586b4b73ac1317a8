from dataclasses import dataclass

from apps.ledger.choices import OrderType, PaymentMethod
from apps.ledger.exceptions import InvalidBreakdown
from apps.ledger.money import Money


@dataclass(frozen=True)
class PaymentEntry:
    method: str
    amount: Money
    credit_note_id: int | None = None

    @classmethod
    def from_payload(cls, payload):
        method = str(payload.get("method", "")).strip().upper()
        if method not in PaymentMethod.values:
            raise InvalidBreakdown(f"Metodo de pago invalido: {method or '-'}.", fields={"method": method})
        try:
            amount = Money.coerce(payload.get("amount", "0.00"))
        except (TypeError, ValueError) as exc:
            raise InvalidBreakdown(str(exc), fields={"amount": str(payload.get("amount"))}) from exc
        credit_note_id = payload.get("credit_note_id", payload.get("credit_note"))
        if credit_note_id in ("", None):
            credit_note_id = None
        else:
            credit_note_id = parse_credit_note_id(credit_note_id)
        return cls(method=method, amount=amount, credit_note_id=credit_note_id)


def parse_credit_note_id(value):
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    text = str(value).strip().upper()
    if text.startswith("NC-"):
        text = text[3:]
    if not text.isdigit():
        raise InvalidBreakdown("ID de nota de credito invalido.", fields={"credit_note_id": str(value)})
    return int(text)


class PaymentBreakdown:
    """Ordered payment entries attached to a single payment event."""

    def __init__(self, entries=()):
        self.entries = tuple(entries)

    @classmethod
    def from_payload(cls, payments):
        return cls(PaymentEntry.from_payload(payment) for payment in payments or [])

    @classmethod
    def of(cls, **amounts):
        """Shorthand for tests and scripts: PaymentBreakdown.of(cash="300.00", card="200.00")."""
        entries = []
        for key, value in amounts.items():
            entries.append(PaymentEntry(method=key.upper(), amount=Money.coerce(value)))
        return cls(entries)

    @property
    def total(self):
        return Money.sum(entry.amount for entry in self.entries)

    def is_empty(self):
        return not self.entries

    def credit_note_entries(self):
        return [entry for entry in self.entries if entry.method == PaymentMethod.CREDIT_NOTE]

    def credit_note_ids(self):
        return sorted({entry.credit_note_id for entry in self.credit_note_entries()})

    def __iter__(self):
        return iter(self.entries)

    def __len__(self):
        return len(self.entries)

    def __repr__(self):
        return f"PaymentBreakdown({list(self.entries)!r})"


def validate_breakdown(breakdown, declared_total):
    """
    Check entry shape and that the entries add up to `declared_total` exactly.

    A zero-amount entry is a selected-but-unpaid instrument and is accepted; the
    sum rule still applies with no tolerance.
    """
    declared_total = Money.coerce(declared_total)
    seen_notes = set()
    for entry in breakdown:
        if entry.method not in PaymentMethod.values:
            raise InvalidBreakdown(f"Metodo de pago invalido: {entry.method}.")
        if entry.amount.is_negative():
            raise InvalidBreakdown("Cada pago debe ser mayor o igual a 0.", fields={"amount": str(entry.amount)})
        if entry.method == PaymentMethod.CREDIT_NOTE:
            if entry.credit_note_id is None:
                raise InvalidBreakdown("Los pagos con nota de credito requieren el ID de la nota.")
            if entry.credit_note_id in seen_notes:
                raise InvalidBreakdown("No puedes usar la misma nota de credito dos veces en un pago.")
            seen_notes.add(entry.credit_note_id)
        elif entry.credit_note_id is not None:
            raise InvalidBreakdown("Solo los pagos con nota de credito llevan ID de nota.")

    payments_sum = breakdown.total
    if payments_sum != declared_total:
        raise InvalidBreakdown(
            f"La suma de metodos (${payments_sum}) debe igualar el monto declarado (${declared_total}).",
            fields={"payments": str(payments_sum), "declared": str(declared_total)},
        )


def expected_total(order_type, total, declared_amount=None):
    """
    Amount the founding breakdown of a new order must add up to.

    Sales are paid in full when opened; every other order type may be opened
    with any declared deposit between 0 and the total.
    """
    total = Money.coerce(total)
    if order_type == OrderType.SALE:
        if declared_amount is not None and Money.coerce(declared_amount) != total:
            raise InvalidBreakdown("La suma de pagos debe coincidir con el total de la venta.")
        return total
    if declared_amount is None:
        raise InvalidBreakdown("Debes declarar el monto del anticipo (puede ser 0).", fields={"declared_amount": None})
    declared_amount = Money.coerce(declared_amount)
    if declared_amount.is_negative():
        raise InvalidBreakdown("El anticipo no puede ser negativo.")
    if declared_amount > total:
        raise InvalidBreakdown("El anticipo no puede exceder el total de la nota.")
    return declared_amount
