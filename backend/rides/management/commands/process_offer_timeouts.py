from datetime import timedelta

from django.conf import settings
from django.core.management.base import BaseCommand
from django.utils import timezone

from rides.models import Ride, RideStatus
from services.container import get_ride_services


class Command(BaseCommand):
    help = "Run the offer timeout handler for waiting rides whose offer outlived its window."

    def add_arguments(self, parser):
        parser.add_argument(
            "--timeout",
            type=int,
            default=getattr(settings, "RIDE_OFFER_TIMEOUT_SECONDS", 45),
            help="Seconds an offer may stay unanswered (default: RIDE_OFFER_TIMEOUT_SECONDS).",
        )

    def handle(self, *args, **options):
        timeout = options["timeout"]
        services = get_ride_services()
        cutoff = timezone.now() - timedelta(seconds=timeout)

        handled = escalated = 0
        waiting = Ride.objects.filter(status=RideStatus.REQUESTED, requested_at__lt=cutoff)
        for ride_id in waiting.values_list("id", flat=True):
            offer = services.offers.get(ride_id)
            if offer is None or offer.issued_at > cutoff:
                continue
            handled += 1
            if services.dispatch.handle_offer_timeout(ride_id, offer.attempt) is not None:
                escalated += 1

        self.stdout.write(
            self.style.SUCCESS(
                f"Handled {handled} timed out offer(s); escalated {escalated} ride(s)."
            )
        )
