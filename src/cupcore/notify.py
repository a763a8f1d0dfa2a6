"""Change notifications for interested observers.

Engine operations announce committed state changes through a ``Notifier``.
Delivery is best effort: a failing notifier is logged and never affects the
operation that triggered it.
"""

import logging
from typing import Optional

from cupcore.storage import on_commit

logger = logging.getLogger(__name__)

TOPIC_TIE_UPDATED = "tie:updated"
TOPIC_MATCH_UPDATED = "tmatch:updated"
TOPIC_MATCH_LINEUP = "tmatch:lineup"
TOPIC_DISCIPLINE_UPDATED = "discipline:updated"


class Notifier:
    """Notifier port. Subclasses deliver ``(topic, payload)`` somewhere."""

    def publish(self, topic: str, payload: dict) -> None:
        raise NotImplementedError


class NullNotifier(Notifier):
    """Notifier that drops every message."""

    def publish(self, topic: str, payload: dict) -> None:
        pass


class LoggingNotifier(Notifier):
    """Notifier that writes every message to the log at INFO level."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def publish(self, topic: str, payload: dict) -> None:
        self.log.info("%s %s", topic, payload)


def safe_publish(notifier: Optional[Notifier], topic: str, payload: dict) -> None:
    """Publish a message, logging and discarding any notifier failure."""
    if notifier is None:
        return
    try:
        notifier.publish(topic, payload)
    except Exception:
        logger.warning("Notification %s discarded", topic, exc_info=True)


def publish_after_commit(session, notifier: Optional[Notifier], topic: str, payload: dict) -> None:
    """Queue a notification for delivery once the current transaction commits.

    Nothing is delivered if the transaction rolls back.
    """
    if notifier is None:
        return
    on_commit(session, lambda: safe_publish(notifier, topic, payload))
