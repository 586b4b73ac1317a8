from django.contrib.auth.models import AbstractUser
from django.db import models


class UserRole(models.TextChoices):
    ADMIN = "ADMIN", "Administrador"
    CASHIER = "CASHIER", "Cajero"


class User(AbstractUser):
    role = models.CharField(max_length=20, choices=UserRole.choices, default=UserRole.CASHIER)
    employee_code = models.CharField(max_length=64, blank=True, default="")

    @property
    def employee_id(self):
        """Identifier stamped on ledger rows; falls back to the username."""
        return self.employee_code or self.username
