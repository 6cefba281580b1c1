"""
SQLAlchemy implementations of the engine's collaborators (option store, consumer
registry, user directory). One session per HTTP request; every write commits on its own.
"""
import json
import logging
from typing import Iterator

from sqlalchemy.orm import Session

from oauth1_server.context import RequestContext
from oauth1_server.models import OAuthConsumer, Option, User
from oauth1_server.stores import Consumer, UserProfile, ledger_contains, ledger_with

logger = logging.getLogger(__name__)

NONCE_WRITE_ATTEMPTS = 5


class SqlOptionStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, name: str) -> bytes | None:
        row = self.db.get(Option, name)
        return row.value if row else None

    def set(self, name: str, value: bytes, autoload: bool = False) -> None:
        self.db.merge(Option(name=name, value=value, autoload=autoload))
        self.db.commit()

    def delete(self, name: str) -> bool:
        # Rowcount decides which of several concurrent deleters won
        deleted = self.db.query(Option).filter(Option.name == name).delete(synchronize_session=False)
        self.db.commit()
        self.db.expire_all()
        return deleted == 1

    def iter_prefix(self, prefix: str) -> Iterator[tuple[str, bytes]]:
        rows = (
            self.db.query(Option.name, Option.value)
            .filter(Option.name.like(prefix.replace("%", r"\%").replace("_", r"\_") + "%", escape="\\"))
            .all()
        )
        for name, value in rows:
            yield name, value


def _to_consumer(row: OAuthConsumer) -> Consumer:
    return Consumer(
        id=row.id,
        key=row.key,
        secret=row.secret,
        callback=row.callback,
        type=row.type,
        name=row.name,
        nonces=row.get_nonces(),
    )


class SqlConsumerStore:
    def __init__(self, db: Session):
        self.db = db

    def get_by_key(self, key: str, *, skip_authentication: bool = False) -> Consumer | None:
        # Plain table lookup: never re-enters request authentication, whatever skip_authentication says
        row = self.db.query(OAuthConsumer).filter(OAuthConsumer.key == key).first()
        return _to_consumer(row) if row else None

    def get_by_id(self, consumer_id: int) -> Consumer | None:
        row = self.db.get(OAuthConsumer, consumer_id)
        return _to_consumer(row) if row else None

    def record_nonce(self, consumer_id: int, timestamp: int, nonce: str, cutoff: int) -> dict[str, list[str]] | None:
        for _ in range(NONCE_WRITE_ATTEMPTS):
            row = (
                self.db.query(OAuthConsumer.nonces, OAuthConsumer.nonce_version)
                .filter(OAuthConsumer.id == consumer_id)
                .first()
            )
            if row is None:
                logger.warning("Nonce recorded for unknown consumer id=%s", consumer_id)
                return ledger_with(None, timestamp, nonce, cutoff)
            stored = json.loads(row.nonces or "{}")
            if ledger_contains(stored, nonce):
                return None
            nonces = ledger_with(stored, timestamp, nonce, cutoff)
            updated = (
                self.db.query(OAuthConsumer)
                .filter(OAuthConsumer.id == consumer_id, OAuthConsumer.nonce_version == row.nonce_version)
                .update(
                    {OAuthConsumer.nonces: json.dumps(nonces), OAuthConsumer.nonce_version: row.nonce_version + 1},
                    synchronize_session=False,
                )
            )
            if updated == 1:
                self.db.commit()
                return nonces
            # Another writer got in between the read and the update; reload and retry
            self.db.rollback()
        logger.warning("Nonce ledger for consumer id=%s kept changing; rejecting nonce", consumer_id)
        return None


class SqlUserDirectory:
    def __init__(self, db: Session):
        self.db = db

    def resolve_current_user(self, context: RequestContext | None) -> int | None:
        # No server-side sessions: the host passes the signed-in user on the context
        if context is None:
            return None
        return context.user_id

    def get_user(self, user_id: int) -> UserProfile | None:
        user = self.db.get(User, user_id)
        if not user:
            return None
        return UserProfile(
            id=user.id,
            login=user.username,
            email=user.email or "",
            display_name=user.display_name or user.username,
        )

    def get_by_username(self, username: str) -> User | None:
        return self.db.query(User).filter(User.username == username).first()
