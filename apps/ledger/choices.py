from django.db import models


class OrderType(models.TextChoices):
    SALE = "SALE", "Venta"
    LAYAWAY = "LAYAWAY", "Apartado"
    CUSTOM_WORK = "CUSTOM_WORK", "Hechura"
    CUSTOM_RING = "CUSTOM_RING", "Hechura de argolla"
    WATCH_SERVICE = "WATCH_SERVICE", "Reloj"


class RingOrderKind(models.TextChoices):
    MADE_TO_ORDER = "MADE_TO_ORDER", "Sobrepedido"
    FROM_STOCK = "FROM_STOCK", "Stock"


class PaymentMethod(models.TextChoices):
    CASH = "CASH", "Efectivo"
    CARD = "CARD", "Tarjeta"
    CREDIT_NOTE = "CREDIT_NOTE", "Nota de credito"


class PaymentLabel(models.TextChoices):
    NONE = "NONE", "Sin pago"
    CASH = "CASH", "Efectivo"
    CARD = "CARD", "Tarjeta"
    CREDIT_NOTE = "CREDIT_NOTE", "Nota de credito"
    MIXED = "MIXED", "Mixto"
    COMBINED = "COMBINED", "Combinado"


class CreditNoteStatus(models.TextChoices):
    AVAILABLE = "AVAILABLE", "Disponible"
    USED = "USED", "Utilizada"
    CANCELLED = "CANCELLED", "Cancelada"
