# apps/ledger/exceptions.py

"""
LEDGER ERRORS

One class per error kind. Services raise them, views translate them into the
API error envelope ({"code", "detail", "fields"}) using `code` and
`status_code`. Nothing in the ledger catches these to retry or to log-and-continue.
"""


class LedgerError(Exception):
    """Base exception for every payment ledger failure."""

    code = "ledger_error"
    status_code = 400
    default_detail = "No se pudo completar la operacion."

    def __init__(self, detail=None, fields=None):
        self.detail = detail or self.default_detail
        self.fields = fields or {}
        super().__init__(self.detail)


class InvalidBreakdown(LedgerError):
    """Payment entries are malformed or do not add up to the declared total."""

    code = "invalid_breakdown"
    default_detail = "El desglose de pagos no es valido."


class ExceedsRemaining(LedgerError):
    """An installment is larger than what the order still owes."""

    code = "exceeds_remaining"
    default_detail = "El abono excede el saldo pendiente."


class OrderNotFound(LedgerError):
    code = "order_not_found"
    status_code = 404
    default_detail = "No encontramos la nota indicada."


class OriginNotFound(LedgerError):
    code = "origin_not_found"
    status_code = 404
    default_detail = "No encontramos la nota de origen."


class CreditNoteNotFound(LedgerError):
    code = "credit_note_not_found"
    status_code = 404
    default_detail = "No encontramos la nota de credito."


class AlreadyIssued(LedgerError):
    """The origin order already has an active credit note."""

    code = "already_issued"
    status_code = 409
    default_detail = "Esta nota ya tiene una nota de credito registrada. No puedes generar otra."


class ExceedsPaidAmount(LedgerError):
    """A credit note was requested above what the customer actually paid."""

    code = "exceeds_paid_amount"
    default_detail = "El monto debe ser mayor a 0 y menor o igual a lo pagado."


class CreditNoteCancelled(LedgerError):
    code = "credit_note_cancelled"
    status_code = 409
    default_detail = "La nota de credito esta cancelada."


class InsufficientBalance(LedgerError):
    code = "insufficient_balance"
    default_detail = "El monto excede el saldo disponible de la nota de credito."


class InvalidAmount(LedgerError):
    code = "invalid_amount"
    default_detail = "El monto debe ser mayor a 0."
