from django.core.management.base import BaseCommand

from services.container import get_ride_services


class Command(BaseCommand):
    help = "Delete expired pickup codes."

    def handle(self, *args, **options):
        deleted = get_ride_services().otp.purge_expired()
        self.stdout.write(self.style.SUCCESS(f"Deleted {deleted} expired pickup code(s)."))
