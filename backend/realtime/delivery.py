"""
Out-of-band notification delivery (SMS / push).

The backend is picked with the ``NOTIFICATION_DELIVERY_BACKEND`` setting, a
dotted path to a class with ``send(subject, message)``. Delivery is best
effort: failures are logged and never reach the caller.
"""

import logging

from django.conf import settings
from django.utils.module_loading import import_string

logger = logging.getLogger(__name__)

DEFAULT_BACKEND = "realtime.delivery.LoggingBackend"


class LoggingBackend:
    """Writes messages to the log instead of sending them. Used in development."""

    def send(self, subject: str, message: str) -> None:
        logger.info("Notification to %s: %s", subject, message)


class LocmemBackend:
    """
    Keeps sent messages in memory, for tests.

    Like ``django.core.mail.outbox``, the ``outbox`` list lives on the class
    and is shared by every instance. Clear it in each test's ``setUp``.
    """

    outbox = []

    def send(self, subject: str, message: str) -> None:
        self.outbox.append((subject, message))


class NotificationDelivery:
    def __init__(self, backend=None):
        if backend is None:
            backend_path = getattr(settings, "NOTIFICATION_DELIVERY_BACKEND", DEFAULT_BACKEND)
            backend = import_string(backend_path)()
        self.backend = backend

    def deliver(self, subject: str, message: str) -> bool:
        try:
            self.backend.send(subject, message)
            return True
        except Exception:
            logger.exception("Failed to deliver notification to %s", subject)
            return False
