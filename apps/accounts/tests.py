from io import StringIO

from django.contrib.auth.models import Group
from django.core.management import call_command
from django.test import TestCase

from apps.accounts.models import User, UserRole
from apps.common.permissions import ROLE_CAPABILITIES, resolve_role


class RoleTests(TestCase):
    def test_seed_roles_creates_groups_and_syncs_users(self):
        user = User.objects.create_user(username="ana", password="x", role=UserRole.ADMIN)
        call_command("seed_roles", "--sync-users", stdout=StringIO())
        self.assertEqual(set(Group.objects.values_list("name", flat=True)), {"ADMIN", "CASHIER"})
        self.assertTrue(user.groups.filter(name="ADMIN").exists())

    def test_group_membership_wins_over_role_field(self):
        user = User.objects.create_user(username="luis", password="x", role=UserRole.ADMIN)
        self.assertEqual(resolve_role(user), UserRole.ADMIN)
        user.groups.add(Group.objects.create(name=UserRole.CASHIER))
        self.assertEqual(resolve_role(user), UserRole.CASHIER)

    def test_only_admin_cancels_credit_notes(self):
        self.assertIn("credit_notes.cancel", ROLE_CAPABILITIES[UserRole.ADMIN])
        self.assertNotIn("credit_notes.cancel", ROLE_CAPABILITIES[UserRole.CASHIER])

    def test_employee_id_defaults_to_username(self):
        self.assertEqual(User(username="caja1").employee_id, "caja1")
        self.assertEqual(User(username="caja1", employee_code="E-9").employee_id, "E-9")
