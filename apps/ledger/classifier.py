from apps.ledger.choices import PaymentLabel, PaymentMethod
from apps.ledger.money import Money

METHOD_ORDER = (PaymentMethod.CASH, PaymentMethod.CARD, PaymentMethod.CREDIT_NOTE)


def method_totals(entries):
    totals = {method.value: Money.zero() for method in METHOD_ORDER}
    for entry in entries:
        totals[entry.method] = totals[entry.method] + Money.coerce(entry.amount)
    return totals


def classify(entries, combined_when_all=False):
    """Derive the "forma de pago" label from the instruments that actually moved money."""
    totals = method_totals(entries)
    funded = [method for method in METHOD_ORDER if totals[method.value] > Money.zero()]
    if not funded:
        return PaymentLabel.NONE
    if len(funded) == 1:
        return PaymentLabel(funded[0].value)
    if combined_when_all and len(funded) == len(METHOD_ORDER):
        return PaymentLabel.COMBINED
    return PaymentLabel.MIXED
