import logging
from typing import List, Tuple

logger = logging.getLogger(__name__)


class Notifier:
    """
    Delivery side of payment notices.

    Implementations decide how a template reaches the client (WhatsApp,
    e-mail, ...). `send` returns True when the notice was accepted and
    either returns False or raises when it was not.
    """

    def send(self, template: str, client_id: str, unit_id: str) -> bool:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    """Writes each notice to the log and keeps it in `sent`"""

    def __init__(self):
        self.sent: List[Tuple[str, str, str]] = []

    def send(self, template: str, client_id: str, unit_id: str) -> bool:
        logger.info(f"Notice {template} → client {client_id}, unit {unit_id}")
        self.sent.append((template, client_id, unit_id))
        return True
