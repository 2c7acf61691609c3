"""Celery tasks for ride-related background processing."""

import logging

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task
def expire_ride_offer_task(ride_id: int, attempt: int):
    """
    Celery task run when a ride offer attempt times out.

    Scheduled when an offer is broadcast. If the ride is still waiting for a
    driver the search radius is escalated once, after that the rider is told
    no drivers are available.
    """
    from services.container import get_ride_services

    logger.info("Offer attempt %s for ride %s timed out", attempt, ride_id)
    offer = get_ride_services().dispatch.handle_offer_timeout(ride_id, attempt)
    return offer.attempt if offer else None


@shared_task
def purge_expired_otps_task():
    """Delete pickup codes that expired without being checked again."""
    from services.container import get_ride_services

    return get_ride_services().otp.purge_expired()
