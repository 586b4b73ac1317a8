from django.contrib.auth.models import Group
from django.core.management.base import BaseCommand

from apps.accounts.models import User, UserRole


class Command(BaseCommand):
    help = "Create the ADMIN and CASHIER groups and sync existing users into them"

    def add_arguments(self, parser):
        parser.add_argument("--sync-users", action="store_true", help="Add every user to the group of its role")

    def handle(self, *args, **options):
        groups = {}
        for role in UserRole.values:
            group, created = Group.objects.get_or_create(name=role)
            groups[role] = group
            action = "created" if created else "exists"
            self.stdout.write(self.style.SUCCESS(f"{group.name}: {action}"))

        if options["sync_users"]:
            synced = 0
            for user in User.objects.all():
                group = groups.get(user.role)
                if group and not user.groups.filter(pk=group.pk).exists():
                    user.groups.add(group)
                    synced += 1
            self.stdout.write(self.style.SUCCESS(f"users synced: {synced}"))
