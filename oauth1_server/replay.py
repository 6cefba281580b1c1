"""
Replay protection: a timestamp must fall inside the window around "now", and a
nonce may be used once per consumer while it is inside that window.
"""
import logging
import time
from typing import Callable

from oauth1_server.config import TIMESTAMP_WINDOW_SECONDS
from oauth1_server.errors import InvalidTimestamp, NonceReused
from oauth1_server.stores import Consumer, ConsumerStore, ledger_contains

logger = logging.getLogger(__name__)


class ReplayGuard:
    def __init__(
        self,
        consumers: ConsumerStore,
        window: int = TIMESTAMP_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.consumers = consumers
        self.window = window
        self.clock = clock

    def check(self, consumer: Consumer, timestamp, nonce: str) -> int:
        """Validate freshness and uniqueness without recording anything. Returns the parsed timestamp."""
        now = int(self.clock())
        try:
            ts = int(str(timestamp).strip())
        except (TypeError, ValueError):
            raise InvalidTimestamp()
        if ts < now - self.window or ts > now + self.window:
            logger.debug("Timestamp outside window for consumer=%s", consumer.id)
            raise InvalidTimestamp()

        if ledger_contains(consumer.nonces, nonce):
            logger.debug("Nonce reuse for consumer=%s", consumer.id)
            raise NonceReused()
        return ts

    def commit(self, consumer: Consumer, timestamp, nonce: str) -> dict[str, list[str]]:
        """
        Record the nonce and drop timestamps older than the window. The store does the
        check-and-set, so a nonce recorded concurrently since check() still counts as reused.
        """
        cutoff = int(self.clock()) - self.window
        nonces = self.consumers.record_nonce(consumer.id, int(str(timestamp).strip()), nonce, cutoff)
        if nonces is None:
            logger.debug("Nonce recorded concurrently for consumer=%s", consumer.id)
            raise NonceReused()
        consumer.nonces = nonces
        return nonces

    def verify(self, consumer: Consumer, timestamp, nonce: str) -> None:
        self.check(consumer, timestamp, nonce)
        self.commit(consumer, timestamp, nonce)
