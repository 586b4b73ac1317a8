from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as DjangoUserAdmin

from .models import User


@admin.register(User)
class UserAdmin(DjangoUserAdmin):
    fieldsets = DjangoUserAdmin.fieldsets + (("Joyeria", {"fields": ("role", "employee_code")}),)
    list_display = DjangoUserAdmin.list_display + ("role", "employee_code")
    list_filter = DjangoUserAdmin.list_filter + ("role",)
