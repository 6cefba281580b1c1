"""
Collaborator interfaces the OAuth engine depends on, plus in-memory reference
implementations (used by tests and for embedding without a database).

The engine takes no locks itself. Check-and-set steps (nonce recording, request token
claiming) are single store calls so each store can make them atomic per key.
"""
import threading
from dataclasses import dataclass, field
from typing import Iterator, Protocol

from oauth1_server.config import CONSUMER_TYPE
from oauth1_server.context import RequestContext


@dataclass
class Consumer:
    """A registered API client."""

    id: int
    key: str
    secret: str
    callback: str | None = None
    type: str = CONSUMER_TYPE
    name: str = ""
    # {str(timestamp): [nonce, ...]} for replay detection
    nonces: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class UserProfile:
    id: int
    login: str
    email: str = ""
    display_name: str = ""


def ledger_contains(nonces: dict[str, list[str]] | None, nonce: str) -> bool:
    return any(nonce in used for used in (nonces or {}).values())


def ledger_with(nonces: dict[str, list[str]] | None, timestamp: int, nonce: str, cutoff: int) -> dict[str, list[str]]:
    """Copy of the ledger with nonce added under timestamp and entries older than cutoff dropped."""
    updated = {ts: list(used) for ts, used in (nonces or {}).items() if int(ts) >= cutoff}
    updated.setdefault(str(timestamp), []).append(nonce)
    return updated


class OptionStore(Protocol):
    """Generic key-value store holding serialized token records."""

    def get(self, name: str) -> bytes | None:
        ...

    def set(self, name: str, value: bytes, autoload: bool = False) -> None:
        ...

    def delete(self, name: str) -> bool:
        """Remove a record. True only for the caller that actually removed it."""
        ...

    def iter_prefix(self, prefix: str) -> Iterator[tuple[str, bytes]]:
        """Yield (name, value) for every record whose name starts with prefix."""
        ...


class ConsumerStore(Protocol):
    """Consumer registry.

    get_by_key is called with skip_authentication=True while a request is itself
    being authenticated; registries that resolve consumers through an
    authenticated path must not re-enter OAuth authentication in that case.
    """

    def get_by_key(self, key: str, *, skip_authentication: bool = False) -> Consumer | None:
        ...

    def get_by_id(self, consumer_id: int) -> Consumer | None:
        ...

    def record_nonce(self, consumer_id: int, timestamp: int, nonce: str, cutoff: int) -> dict[str, list[str]] | None:
        """
        Atomically add nonce to the stored ledger and drop timestamps older than cutoff.
        Returns the new ledger, or None if the stored ledger already holds the nonce.
        """
        ...


class UserDirectory(Protocol):
    def resolve_current_user(self, context: RequestContext | None) -> int | None:
        ...

    def get_user(self, user_id: int) -> UserProfile | None:
        ...


class InMemoryOptionStore:
    def __init__(self):
        self._values: dict[str, bytes] = {}
        self._autoload: dict[str, bool] = {}

    def get(self, name: str) -> bytes | None:
        return self._values.get(name)

    def set(self, name: str, value: bytes, autoload: bool = False) -> None:
        self._values[name] = value
        self._autoload[name] = autoload

    def delete(self, name: str) -> bool:
        self._autoload.pop(name, None)
        return self._values.pop(name, None) is not None

    def iter_prefix(self, prefix: str) -> Iterator[tuple[str, bytes]]:
        # Snapshot so callers may delete while iterating
        for name, value in list(self._values.items()):
            if name.startswith(prefix):
                yield name, value

    def __contains__(self, name: str) -> bool:
        return name in self._values


class InMemoryConsumerStore:
    def __init__(self, consumers: list[Consumer] | None = None):
        self._consumers: dict[int, Consumer] = {}
        self._lock = threading.Lock()
        for consumer in consumers or []:
            self.add(consumer)

    def add(self, consumer: Consumer) -> Consumer:
        self._consumers[consumer.id] = consumer
        return consumer

    def get_by_key(self, key: str, *, skip_authentication: bool = False) -> Consumer | None:
        for consumer in self._consumers.values():
            if consumer.key == key:
                return consumer
        return None

    def get_by_id(self, consumer_id: int) -> Consumer | None:
        return self._consumers.get(consumer_id)

    def record_nonce(self, consumer_id: int, timestamp: int, nonce: str, cutoff: int) -> dict[str, list[str]] | None:
        with self._lock:
            consumer = self._consumers.get(consumer_id)
            if consumer is None:
                return ledger_with(None, timestamp, nonce, cutoff)
            if ledger_contains(consumer.nonces, nonce):
                return None
            consumer.nonces = ledger_with(consumer.nonces, timestamp, nonce, cutoff)
            return consumer.nonces


class InMemoryUserDirectory:
    def __init__(self, users: list[UserProfile] | None = None, current_user_id: int | None = None):
        self._users = {u.id: u for u in users or []}
        self.current_user_id = current_user_id

    def add(self, user: UserProfile) -> UserProfile:
        self._users[user.id] = user
        return user

    def resolve_current_user(self, context: RequestContext | None) -> int | None:
        if context is not None and context.user_id is not None:
            return context.user_id
        return self.current_user_id

    def get_user(self, user_id: int) -> UserProfile | None:
        return self._users.get(user_id)
