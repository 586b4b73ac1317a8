"""
Fixed-precision currency amounts.

Money keeps an integer number of cents. Decimal strings and Decimal values are
accepted at the boundary; binary floats are refused outright so no drift can
enter the ledger. Percentages are rounded half-up to the cent exactly once.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from functools import total_ordering

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
# Largest value a DecimalField(max_digits=12, decimal_places=2) column holds.
MAX_AMOUNT = Decimal("9999999999.99")
MAX_CENTS = 999999999999


class AmountTooLarge(ValueError):
    pass


@total_ordering
class Money:
    __slots__ = ("_cents",)

    def __init__(self, cents=0):
        if isinstance(cents, bool) or not isinstance(cents, int):
            raise TypeError("Money expects an integer amount of cents.")
        self._cents = cents

    @classmethod
    def zero(cls):
        return cls(0)

    @classmethod
    def from_decimal(cls, value):
        if isinstance(value, float):
            raise TypeError("Money does not accept binary floats.")
        try:
            if not isinstance(value, Decimal):
                value = Decimal(value)
            if not value.is_finite():
                raise ValueError("El monto no es un numero valido.")
            quantized = value.quantize(CENT)
        except InvalidOperation as exc:
            raise AmountTooLarge(f"El monto no es valido o excede el maximo permitido (${MAX_AMOUNT}).") from exc
        if value != quantized:
            raise ValueError("El monto no puede tener mas de dos decimales.")
        if abs(quantized) > MAX_AMOUNT:
            raise AmountTooLarge(f"El monto excede el maximo permitido (${MAX_AMOUNT}).")
        return cls(int(quantized * HUNDRED))

    @classmethod
    def from_cents(cls, cents):
        """Integer minor units, bounded like the stored columns."""
        if isinstance(cents, bool) or not isinstance(cents, int):
            raise TypeError("Money.from_cents expects an integer.")
        if abs(cents) > MAX_CENTS:
            raise AmountTooLarge(f"El monto excede el maximo permitido (${MAX_AMOUNT}).")
        return cls(cents)

    @classmethod
    def from_decimal_string(cls, value):
        if isinstance(value, float):
            raise TypeError("Money does not accept binary floats.")
        text = str(value).strip().replace("$", "").replace(",", "").replace(" ", "")
        if not text:
            raise ValueError("El monto es obligatorio.")
        try:
            parsed = Decimal(text)
        except InvalidOperation as exc:
            raise ValueError(f"Monto invalido: {value!r}.") from exc
        return cls.from_decimal(parsed)

    @classmethod
    def coerce(cls, value):
        """Accept Money, Decimal or a decimal string. Integers are rejected as ambiguous."""
        if isinstance(value, Money):
            return value
        if isinstance(value, Decimal):
            return cls.from_decimal(value)
        if isinstance(value, str):
            return cls.from_decimal_string(value)
        raise TypeError(f"Cannot build Money from {type(value).__name__}; use a decimal string or Money(cents).")

    @classmethod
    def sum(cls, values):
        total = 0
        for value in values:
            total += cls.coerce(value)._cents
        return cls(total)

    @property
    def cents(self):
        return self._cents

    @property
    def amount(self):
        return (Decimal(self._cents) / HUNDRED).quantize(CENT)

    def is_zero(self):
        return self._cents == 0

    def is_negative(self):
        return self._cents < 0

    def add(self, other):
        return Money(self._cents + Money.coerce(other)._cents)

    def subtract(self, other, saturate=False):
        result = self._cents - Money.coerce(other)._cents
        if saturate and result < 0:
            result = 0
        return Money(result)

    def percentage_of(self, pct):
        if isinstance(pct, float):
            raise TypeError("Percentages must be Decimal, int or a decimal string.")
        pct = Decimal(str(pct))
        cents = (Decimal(self._cents) * pct / HUNDRED).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return Money(int(cents))

    def __add__(self, other):
        if not isinstance(other, Money):
            return NotImplemented
        return self.add(other)

    def __sub__(self, other):
        if not isinstance(other, Money):
            return NotImplemented
        return self.subtract(other)

    def __neg__(self):
        return Money(-self._cents)

    def __eq__(self, other):
        if not isinstance(other, Money):
            return NotImplemented
        return self._cents == other._cents

    def __lt__(self, other):
        if not isinstance(other, Money):
            return NotImplemented
        return self._cents < other._cents

    def __hash__(self):
        return hash(("Money", self._cents))

    def __bool__(self):
        return self._cents != 0

    def __str__(self):
        return str(self.amount)

    def __repr__(self):
        return f"Money('{self.amount}')"


def min_money(*values):
    return min(Money.coerce(value) for value in values)
