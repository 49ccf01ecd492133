from django.core.management.base import BaseCommand

from core.models import Tenant
from recycle_bin.services import purge_expired_entries


class Command(BaseCommand):
    help = "Permanently delete recycle bin entries whose retention period has passed."

    def add_arguments(self, parser):
        parser.add_argument("--tenant-code", dest="tenant_code", help="Optional tenant code; defaults to every tenant.")

    def handle(self, *args, **options):
        tenant = None
        tenant_code = options.get("tenant_code")
        if tenant_code:
            tenant = Tenant.objects.filter(code=tenant_code).first()
            if tenant is None:
                self.stdout.write(self.style.ERROR(f"Tenant {tenant_code} not found."))
                return

        purged, skipped = purge_expired_entries(tenant=tenant)
        if skipped:
            self.stdout.write(self.style.WARNING(f"Skipped {skipped} entries still referenced by other records."))
        self.stdout.write(self.style.SUCCESS(f"Recycle bin purge complete. Purged entries: {purged}."))
