from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from dive import services
from dive.defaults import DEFAULT_CONFIG
from dive.errors import DiveError
from dive.models import GameConfig, HouseVault


class Command(BaseCommand):
    help = "Create the game config (if missing) and a house vault owned by AUTHORITY"

    def add_arguments(self, parser):
        parser.add_argument("authority", help="Username of the vault authority / config admin")
        parser.add_argument("--liquidity", type=int, default=0, help="Initial vault deposit")
        parser.add_argument("--name", default="main", help="Vault name")

    @transaction.atomic
    def handle(self, *args, **options):
        User = get_user_model()
        try:
            authority = User.objects.get(username=options["authority"])
        except User.DoesNotExist:
            raise CommandError(f"No user named {options['authority']!r}")

        if not authority.is_staff:
            authority.is_staff = True
            authority.save(update_fields=["is_staff"])

        try:
            if not GameConfig.objects.exists():
                services.replace_config(authority, **DEFAULT_CONFIG)
                self.stdout.write(self.style.SUCCESS("Game config created with defaults"))
            else:
                self.stdout.write("Game config already present, left unchanged")

            vault, created = HouseVault.objects.get_or_create(
                name=options["name"], defaults={"authority": authority}
            )
            if options["liquidity"] > 0:
                vault = services.deposit(vault.pk, vault.authority, options["liquidity"])
        except DiveError as e:
            raise CommandError(f"{e.code.value}: {e.detail}")

        verb = "created" if created else "found"
        self.stdout.write(self.style.SUCCESS(
            f"Vault {vault.name} {verb}: available={vault.available} reserved={vault.reserved}"
        ))
