import functools
import logging
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.audit.services import record_audit
from apps.ledger.breakdown import expected_total, parse_credit_note_id, validate_breakdown
from apps.ledger.choices import OrderType, RingOrderKind
from apps.ledger.exceptions import (
    AlreadyIssued,
    CreditNoteCancelled,
    CreditNoteNotFound,
    ExceedsPaidAmount,
    ExceedsRemaining,
    InsufficientBalance,
    InvalidAmount,
    InvalidBreakdown,
    LedgerError,
    OrderNotFound,
    OriginNotFound,
)
from apps.ledger.models import CreditNote, CreditNoteRedemption, Installment, Order, PaymentLine
from apps.ledger.money import CENT, Money, min_money

logger = logging.getLogger(__name__)


def _logged(operation):
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except LedgerError as exc:
                logger.warning("%s rejected: %s - %s", operation, exc.code, exc.detail)
                raise

        return wrapper

    return decorator


def _as_money(value):
    return Money.from_decimal(Decimal(value or 0).quantize(CENT))


def _parse_amount(value, error=InvalidBreakdown):
    try:
        return Money.coerce(value)
    except (TypeError, ValueError) as exc:
        raise error(f"Monto invalido: {value!r}.") from exc


def _credit_note_pk(value):
    try:
        return parse_credit_note_id(value)
    except InvalidBreakdown:
        return None


def _clean_employee(employee_id, error=InvalidBreakdown):
    employee_id = str(employee_id or "").strip()
    if not employee_id:
        raise error("Indica el empleado que registra la operacion.", fields={"employee_id": ""})
    return employee_id


def _order_type(value):
    try:
        return OrderType(value)
    except ValueError as exc:
        raise InvalidBreakdown(f"Tipo de nota invalido: {value!r}.", fields={"order_type": str(value)}) from exc


def _ring_kind(order_type, value):
    if order_type != OrderType.CUSTOM_RING:
        if value:
            raise InvalidBreakdown("Solo las hechuras de argolla llevan tipo de argolla.", fields={"ring_kind": str(value)})
        return ""
    try:
        return RingOrderKind(value)
    except ValueError as exc:
        raise InvalidBreakdown(
            "Las hechuras de argolla requieren tipo: sobrepedido o stock.", fields={"ring_kind": str(value or "")}
        ) from exc


def compute_total(subtotal, discount_pct=Decimal("0")):
    """Return (discount, total) for a subtotal and a 0-100 discount percentage."""
    subtotal = _parse_amount(subtotal, error=InvalidAmount)
    try:
        discount_pct = Decimal(str(discount_pct or "0"))
    except InvalidOperation as exc:
        raise InvalidAmount("El descuento no es valido.") from exc
    if subtotal.is_negative():
        raise InvalidAmount("El subtotal no puede ser negativo.")
    if discount_pct < 0 or discount_pct > 100:
        raise InvalidAmount("El descuento debe estar entre 0 y 100.")
    discount = subtotal.percentage_of(discount_pct)
    return discount, subtotal - discount


def remaining_of(order):
    return order.remaining


def minimum_deposit(order_type, total):
    """Recommended first deposit. Only layaways carry one and it is never enforced."""
    if order_type != OrderType.LAYAWAY:
        return Money.zero()
    return Money.coerce(total).percentage_of(settings.LEDGER_LAYAWAY_MIN_DEPOSIT_PCT)


def issuable_amount(order):
    """What a new credit note against `order` may be worth: the money actually collected, never above the total."""
    return min_money(order.collected_money, order.total_money)


def _lock_order(order_type, order_id, error=OrderNotFound):
    try:
        return Order.objects.select_for_update().get(pk=order_id, order_type=order_type)
    except (Order.DoesNotExist, ValidationError, ValueError) as exc:
        raise error(f"No encontramos la nota {order_type} #{order_id}. Verifica el numero.") from exc


def _lock_credit_notes(credit_note_ids):
    if not credit_note_ids:
        return {}
    notes = CreditNote.objects.select_for_update().filter(pk__in=credit_note_ids).order_by("pk")
    return {note.pk: note for note in notes}


def _check_redemption(note, amount, credit_note_id, order=None):
    if note is None:
        raise CreditNoteNotFound(f"No se encontro la nota de credito NC-{credit_note_id}.")
    if note.cancelled:
        raise CreditNoteCancelled(f"La nota de credito {note.folio} esta cancelada.")
    if order is not None and note.origin_order_id == order.pk:
        raise InvalidBreakdown("Una nota de credito no puede pagar su propia nota de origen.")
    available = note.total_available
    if amount > available:
        raise InsufficientBalance(
            f"El monto (${amount}) excede el saldo disponible de {note.folio} (${available}).",
            fields={"credit_note_id": note.pk, "available": str(available)},
        )


def _consume(note, amount, *, installment=None, reference_type, reference_id, actor=None):
    note.total_used = (_as_money(note.total_used) + amount).amount
    note.save(update_fields=["total_used", "updated_at"])
    return CreditNoteRedemption.objects.create(
        credit_note=note,
        amount=amount.amount,
        installment=installment,
        reference_type=reference_type,
        reference_id=reference_id,
        created_by=actor,
    )


def _record_installment(order, amount, breakdown, notes_by_id, *, employee_id, actor, is_founding):
    installment = Installment.objects.create(
        order=order,
        amount=amount.amount,
        is_founding=is_founding,
        employee_id=employee_id,
        created_by=actor,
    )
    for position, entry in enumerate(breakdown):
        note = notes_by_id.get(entry.credit_note_id) if entry.credit_note_id is not None else None
        PaymentLine.objects.create(
            installment=installment,
            position=position,
            method=entry.method,
            amount=entry.amount.amount,
            credit_note=note,
        )
        if note is not None and not entry.amount.is_zero():
            _consume(
                note,
                entry.amount,
                installment=installment,
                reference_type=order.order_type.lower(),
                reference_id=str(order.pk),
                actor=actor,
            )
    return installment


@_logged("order.open")
def open_order(
    *,
    order_type,
    subtotal,
    breakdown,
    employee_id,
    declared_amount=None,
    discount_pct=Decimal("0"),
    ring_kind="",
    customer_id="",
    notes="",
    actor=None,
):
    order_type = _order_type(order_type)
    employee_id = _clean_employee(employee_id)
    ring_kind = _ring_kind(order_type, ring_kind)

    discount, total = compute_total(subtotal, discount_pct)
    target = expected_total(order_type, total, declared_amount)
    validate_breakdown(breakdown, target)

    with transaction.atomic():
        notes_by_id = _lock_credit_notes(breakdown.credit_note_ids())
        for entry in breakdown.credit_note_entries():
            _check_redemption(notes_by_id.get(entry.credit_note_id), entry.amount, entry.credit_note_id)

        collected = breakdown.total
        order = Order.objects.create(
            order_type=order_type,
            ring_kind=ring_kind or "",
            customer_id=str(customer_id or "").strip(),
            employee_id=employee_id,
            subtotal=Money.coerce(subtotal).amount,
            discount_pct=Decimal(str(discount_pct or "0")),
            discount_amount=discount.amount,
            total=total.amount,
            collected=collected.amount,
            notes=notes,
            created_by=actor,
        )
        _record_installment(
            order, collected, breakdown, notes_by_id, employee_id=employee_id, actor=actor, is_founding=True
        )
        record_audit(
            actor=actor,
            action="order.open",
            entity_type="order",
            entity_id=order.id,
            payload={
                "order_type": order.order_type,
                "total": str(total),
                "deposit": str(collected),
                "employee_id": employee_id,
            },
        )

    logger.info("order.open %s %s total=%s collected=%s", order.order_type, order.pk, total, collected)
    return order


@_logged("installment.apply")
def apply_installment(*, order_type, order_id, amount, breakdown, employee_id, actor=None):
    employee_id = _clean_employee(employee_id)
    amount = _parse_amount(amount)

    with transaction.atomic():
        # Credit notes are always locked before the order they pay for.
        notes_by_id = _lock_credit_notes(breakdown.credit_note_ids())
        order = _lock_order(order_type, order_id)

        if amount.is_negative():
            raise InvalidBreakdown("El monto del abono no puede ser negativo.")
        if amount.is_zero():
            if breakdown.is_empty():
                raise InvalidBreakdown("Un abono sin pago debe indicar el metodo seleccionado con monto 0.")
            if len(breakdown) != 1 or not breakdown.entries[0].amount.is_zero():
                raise InvalidBreakdown("Un abono en 0 solo admite un metodo seleccionado con monto 0.")
        validate_breakdown(breakdown, amount)

        remaining = order.remaining
        if amount > remaining:
            raise ExceedsRemaining(
                f"El monto no puede exceder el pendiente (${remaining}).",
                fields={"amount": str(amount), "remaining": str(remaining)},
            )

        for entry in breakdown.credit_note_entries():
            _check_redemption(notes_by_id.get(entry.credit_note_id), entry.amount, entry.credit_note_id, order=order)

        order.collected = (order.collected_money + amount).amount
        order.save(update_fields=["collected", "updated_at"])
        installment = _record_installment(
            order, amount, breakdown, notes_by_id, employee_id=employee_id, actor=actor, is_founding=False
        )
        record_audit(
            actor=actor,
            action="installment.apply",
            entity_type="order",
            entity_id=order.id,
            payload={
                "installment_id": str(installment.id),
                "amount": str(amount),
                "new_collected": str(order.collected_money),
                "employee_id": employee_id,
            },
        )

    logger.info("installment.apply %s %s amount=%s remaining=%s", order.order_type, order.pk, amount, order.remaining)
    return installment


@_logged("credit_note.issue")
def issue_credit_note(*, origin_order_type, origin_order_id, requested_amount, employee_id, customer_id=None, actor=None):
    employee_id = _clean_employee(employee_id, error=InvalidAmount)
    requested = _parse_amount(requested_amount, error=ExceedsPaidAmount)

    with transaction.atomic():
        origin = _lock_order(origin_order_type, origin_order_id, error=OriginNotFound)
        if CreditNote.objects.filter(origin_order=origin, cancelled=False).exists():
            raise AlreadyIssued()

        cap = issuable_amount(origin)
        if requested <= Money.zero() or requested > cap:
            raise ExceedsPaidAmount(
                f"El monto debe ser mayor a 0 y menor o igual a lo pagado: ${cap}.",
                fields={"requested": str(requested), "cap": str(cap)},
            )

        try:
            with transaction.atomic():
                note = CreditNote.objects.create(
                    origin_order=origin,
                    customer_id=str(customer_id or origin.customer_id or "").strip(),
                    employee_id=employee_id,
                    total_original=requested.amount,
                    total_used=Decimal("0.00"),
                    created_by=actor,
                )
        except IntegrityError as exc:
            raise AlreadyIssued() from exc

        record_audit(
            actor=actor,
            action="credit_note.issue",
            entity_type="credit_note",
            entity_id=note.pk,
            payload={
                "origin_order_type": origin.order_type,
                "origin_order_id": str(origin.pk),
                "amount": str(requested),
                "employee_id": employee_id,
            },
        )

    logger.info("credit_note.issue %s origin=%s amount=%s", note.folio, origin.pk, requested)
    return note


@_logged("credit_note.redeem")
def redeem_credit_note(*, credit_note_id, amount, reference_type="manual", reference_id="", actor=None):
    amount = _parse_amount(amount, error=InvalidAmount)
    if amount <= Money.zero():
        raise InvalidAmount("El monto a aplicar debe ser mayor a 0.")
    pk = _credit_note_pk(credit_note_id)
    if pk is None:
        raise CreditNoteNotFound(f"ID de nota de credito invalido: {credit_note_id!r}.")

    with transaction.atomic():
        note = _lock_credit_notes([pk]).get(pk)
        _check_redemption(note, amount, pk)
        redemption = _consume(
            note,
            amount,
            reference_type=str(reference_type or "manual").strip() or "manual",
            reference_id=str(reference_id or "").strip() or "-",
            actor=actor,
        )
        record_audit(
            actor=actor,
            action="credit_note.redeem",
            entity_type="credit_note",
            entity_id=note.pk,
            payload={
                "amount": str(amount),
                "redemption_id": str(redemption.id),
                "reference_type": redemption.reference_type,
                "reference_id": redemption.reference_id,
            },
        )

    logger.info("credit_note.redeem %s amount=%s available=%s", note.folio, amount, note.total_available)
    return note


@_logged("credit_note.cancel")
def cancel_credit_note(*, credit_note_id, actor=None):
    pk = _credit_note_pk(credit_note_id)
    with transaction.atomic():
        note = _lock_credit_notes([pk]).get(pk) if pk is not None else None
        if note is None:
            raise CreditNoteNotFound(f"No se encontro la nota de credito {credit_note_id}.")
        if note.cancelled:
            return note
        note.cancelled = True
        note.cancelled_at = timezone.now()
        note.save(update_fields=["cancelled", "cancelled_at", "updated_at"])
        record_audit(
            actor=actor,
            action="credit_note.cancel",
            entity_type="credit_note",
            entity_id=note.pk,
            payload={"total_used": str(_as_money(note.total_used)), "total_original": str(_as_money(note.total_original))},
        )

    logger.info("credit_note.cancel %s", note.folio)
    return note
