"""Outbound notifications (password reset mail).

Delivery mechanics are outside this service; the default notifier records the
message server-side only, the same way reset tokens were handled before a mail
provider was wired in.
"""

import logging

from processor.errors import DeliveryError

logger = logging.getLogger("pubmarket.notifier")


class Notifier:
    async def send(self, to: str, subject: str, body: str):
        """Deliver one message. Raises DeliveryError on failure."""
        raise NotImplementedError


class LoggingNotifier(Notifier):
    async def send(self, to: str, subject: str, body: str):
        if not to:
            raise DeliveryError("Missing recipient")
        logger.info("Mail to %s: %s\n%s", to, subject, body)
