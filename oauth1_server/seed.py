"""
Seed users and OAuth 1 consumers from environment. No hardcoded credentials.
Optional: OAUTH1_SEED_USER + OAUTH1_SEED_PASSWORD [+ OAUTH1_SEED_EMAIL],
OAUTH1_SEED_CONSUMER_KEY + OAUTH1_SEED_CONSUMER_SECRET [+ OAUTH1_SEED_CONSUMER_CALLBACK].
"""
import logging
import os

import bcrypt
from sqlalchemy.orm import Session

from oauth1_server.config import CONSUMER_TYPE, TOKEN_KEY_LENGTH, TOKEN_SECRET_LENGTH
from oauth1_server.models import OAuthConsumer, User
from oauth1_server.tokens import generate_token_string

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    # Bcrypt has a 72-byte limit
    raw = password.encode("utf-8")
    if len(raw) > 72:
        raw = raw[:72]
    return bcrypt.hashpw(raw, bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    raw = plain.encode("utf-8")[:72]
    return bcrypt.checkpw(raw, hashed.encode("utf-8"))


def create_user(
    db: Session,
    username: str,
    password: str,
    *,
    email: str | None = None,
    display_name: str | None = None,
) -> User:
    user = User(
        username=username,
        password_hash=hash_password(password),
        email=email,
        display_name=display_name,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def create_consumer(
    db: Session,
    name: str,
    callback: str | None = None,
    key: str | None = None,
    secret: str | None = None,
) -> OAuthConsumer:
    """Register a consumer; key and secret are generated when not given."""
    consumer = OAuthConsumer(
        key=key or generate_token_string(TOKEN_KEY_LENGTH),
        secret=secret or generate_token_string(TOKEN_SECRET_LENGTH),
        name=name,
        callback=callback,
        type=CONSUMER_TYPE,
    )
    db.add(consumer)
    db.commit()
    db.refresh(consumer)
    logger.info("Registered consumer id=%s name=%s", consumer.id, name)
    return consumer


def seed_from_env(db: Session) -> None:
    """Create one user and/or one consumer from env if set."""
    seed_user = os.environ.get("OAUTH1_SEED_USER")
    seed_password = os.environ.get("OAUTH1_SEED_PASSWORD")
    if seed_user and seed_password:
        if db.query(User).filter(User.username == seed_user).first() is None:
            create_user(db, seed_user, seed_password, email=os.environ.get("OAUTH1_SEED_EMAIL"))
            logger.info("Seeded user: %s", seed_user)
        else:
            logger.debug("User already exists: %s", seed_user)

    consumer_key = os.environ.get("OAUTH1_SEED_CONSUMER_KEY")
    consumer_secret = os.environ.get("OAUTH1_SEED_CONSUMER_SECRET")
    if consumer_key and consumer_secret:
        if db.query(OAuthConsumer).filter(OAuthConsumer.key == consumer_key).first() is None:
            create_consumer(
                db,
                name=consumer_key,
                callback=os.environ.get("OAUTH1_SEED_CONSUMER_CALLBACK") or None,
                key=consumer_key,
                secret=consumer_secret,
            )
            logger.info("Seeded consumer: %s", consumer_key)
        else:
            logger.debug("Consumer already exists: %s", consumer_key)
