"""
Token records and the request-token / access-token lifecycle.

Request token: created -> (callback set) -> authorized -> exchanged (deleted).
Expired request tokens are deleted lazily when read. Access tokens live until revoked
or superseded by a new token for the same (user, consumer, source_url).
"""
import hmac
import json
import logging
import secrets
import string
from contextlib import contextmanager
from dataclasses import asdict, dataclass, fields
from typing import Any, Iterator, Mapping

from oauth1_server.callbacks import CallbackValidator
from oauth1_server.config import (
    TOKEN_KEY_LENGTH,
    TOKEN_SECRET_LENGTH,
    VERIFIER_LENGTH,
    OAuth1Settings,
)
from oauth1_server.context import RequestContext
from oauth1_server.errors import (
    ConsumerMismatch,
    ExpiredToken,
    InvalidCallback,
    InvalidConsumer,
    InvalidToken,
    InvalidUser,
    OAuth1Error,
    UnauthorizedToken,
    VerifierMismatch,
)
from oauth1_server.replay import ReplayGuard
from oauth1_server.signature import check_request_signature
from oauth1_server.stores import Consumer, ConsumerStore, OptionStore, UserDirectory, UserProfile

logger = logging.getLogger(__name__)

REQUEST_PREFIX = "request:"
ACCESS_PREFIX = "access:"

_TOKEN_ALPHABET = string.ascii_letters + string.digits


def generate_token_string(length: int) -> str:
    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))


@contextmanager
def attributed_to(consumer: Consumer):
    """Tag OAuth errors raised inside the block with the consumer that signed the request."""
    try:
        yield
    except OAuth1Error as exc:
        if exc.consumer_id is None:
            exc.consumer_id = consumer.id
        raise


class _Record:
    """JSON (de)serialization shared by token records; unknown keys are ignored on load."""

    def to_bytes(self) -> bytes:
        return json.dumps(asdict(self)).encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes):
        data = json.loads(raw.decode("utf-8"))
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class RequestToken(_Record):
    key: str
    secret: str
    consumer: int
    expiration: int
    authorized: bool = False
    callback: str | None = None
    verifier: str | None = None
    user: int | None = None


@dataclass
class AccessToken(_Record):
    key: str
    secret: str
    consumer: int
    user: int
    source_url: str = ""
    issued_at: int = 0


class TokenStore:
    """Token records kept in an option store under request:<key> / access:<key>."""

    def __init__(self, options: OptionStore):
        self.options = options

    def load_request(self, key: str) -> RequestToken | None:
        raw = self.options.get(REQUEST_PREFIX + key)
        return RequestToken.from_bytes(raw) if raw else None

    def save_request(self, token: RequestToken) -> None:
        self.options.set(REQUEST_PREFIX + token.key, token.to_bytes(), autoload=False)

    def delete_request(self, key: str) -> bool:
        return self.options.delete(REQUEST_PREFIX + key)

    def claim_request(self, key: str) -> bool:
        """Remove the request token; True for exactly one of any concurrent claimers."""
        return self.delete_request(key)

    def load_access(self, key: str) -> AccessToken | None:
        raw = self.options.get(ACCESS_PREFIX + key)
        return AccessToken.from_bytes(raw) if raw else None

    def save_access(self, token: AccessToken) -> None:
        self.options.set(ACCESS_PREFIX + token.key, token.to_bytes(), autoload=False)

    def delete_access(self, key: str) -> bool:
        return self.options.delete(ACCESS_PREFIX + key)

    def find_access_tokens(self, user: int, consumer: int, source_url: str) -> Iterator[AccessToken]:
        for _, raw in self.options.iter_prefix(ACCESS_PREFIX):
            token = AccessToken.from_bytes(raw)
            if token.user == user and token.consumer == consumer and token.source_url == source_url:
                yield token


class TokenLifecycle:
    def __init__(
        self,
        tokens: TokenStore,
        consumers: ConsumerStore,
        users: UserDirectory,
        settings: OAuth1Settings | None = None,
    ):
        self.tokens = tokens
        self.consumers = consumers
        self.users = users
        self.settings = settings or OAuth1Settings()
        self.replay_guard = ReplayGuard(consumers, window=self.settings.timestamp_window, clock=self.settings.clock)
        self.callbacks = CallbackValidator(consumers, self.settings)

    # --- shared checks ---

    def resolve_consumer(self, key: str, *, skip_authentication: bool = False) -> Consumer:
        consumer = self.consumers.get_by_key(key, skip_authentication=skip_authentication)
        if consumer is None:
            raise InvalidConsumer()
        return consumer

    def check_request(
        self,
        context: RequestContext,
        params: Mapping[str, Any],
        consumer: Consumer,
        token_secret: str | None = None,
    ) -> None:
        """Signature first, then timestamp/nonce. The nonce is only recorded for correctly signed requests."""
        check_request_signature(context, params, consumer.secret, token_secret, self.settings.site_url)
        self.replay_guard.verify(consumer, params.get("oauth_timestamp"), params.get("oauth_nonce"))

    # --- request tokens ---

    def get_request_token(self, key: str) -> RequestToken:
        token = self.tokens.load_request(key) if key else None
        if token is None:
            raise InvalidToken()
        if token.expiration < self.settings.now():
            self.tokens.delete_request(key)
            logger.info("Deleted expired request token for consumer=%s", token.consumer)
            raise ExpiredToken()
        return token

    def create_request_token(self, params: Mapping[str, Any], context: RequestContext) -> RequestToken:
        consumer = self.resolve_consumer(params["oauth_consumer_key"])
        with attributed_to(consumer):
            return self._issue_request_token(params, context, consumer)

    def _issue_request_token(self, params: Mapping[str, Any], context: RequestContext, consumer: Consumer) -> RequestToken:
        self.check_request(context, params, consumer)

        token = RequestToken(
            key=generate_token_string(TOKEN_KEY_LENGTH),
            secret=generate_token_string(TOKEN_SECRET_LENGTH),
            consumer=consumer.id,
            expiration=self.settings.now() + self.settings.request_token_ttl,
        )
        if self.settings.request_token_filter is not None:
            token = self.settings.request_token_filter(token)
        self.tokens.save_request(token)

        callback = params.get("oauth_callback")
        if callback:
            try:
                self.set_callback(token.key, callback)
            except InvalidCallback:
                self.tokens.delete_request(token.key)
                raise
            token = self.tokens.load_request(token.key)

        logger.info("Request token issued for consumer=%s", consumer.id)
        return token

    def set_callback(self, key: str, callback: str) -> str | None:
        """Attach a validated callback. Returns the current verifier (None before authorization)."""
        token = self.get_request_token(key)
        if not callback:
            raise InvalidCallback()
        if token.callback is not None and token.callback != callback:
            raise InvalidCallback("Callback URL has already been set")
        if not self.callbacks.check(callback, token.consumer):
            raise InvalidCallback()

        token.callback = callback
        self.tokens.save_request(token)
        return token.verifier

    def authorize_token(self, key: str, user_id: int | None = None, context: RequestContext | None = None) -> str:
        """
        Mark the request token as authorized by a user and return a fresh verifier.
        Re-authorizing overwrites the previous verifier and user.
        """
        token = self.get_request_token(key)
        if not user_id:
            user_id = self.users.resolve_current_user(context)
        if not user_id or self.users.get_user(user_id) is None:
            raise InvalidUser()

        token.authorized = True
        token.verifier = generate_token_string(VERIFIER_LENGTH)
        token.user = user_id
        if self.settings.authorized_token_filter is not None:
            token = self.settings.authorized_token_filter(token)
        self.tokens.save_request(token)
        logger.info("Request token authorized for consumer=%s user=%s", token.consumer, user_id)
        return token.verifier

    # --- access tokens ---

    def get_access_token(self, key: str) -> AccessToken:
        token = self.tokens.load_access(key) if key else None
        if token is None:
            raise InvalidToken("Access token does not exist", status=401)
        return token

    def exchange_for_access_token(
        self, params: Mapping[str, Any], context: RequestContext
    ) -> tuple[AccessToken, UserProfile]:
        consumer = self.resolve_consumer(params["oauth_consumer_key"])
        with attributed_to(consumer):
            return self._exchange(params, context, consumer)

    def _exchange(
        self, params: Mapping[str, Any], context: RequestContext, consumer: Consumer
    ) -> tuple[AccessToken, UserProfile]:
        request_token = self.get_request_token(params["oauth_token"])

        self.check_request(context, params, consumer, request_token.secret)

        if not hmac.compare_digest(str(request_token.consumer), str(consumer.id)):
            raise ConsumerMismatch()
        if request_token.authorized is not True:
            raise UnauthorizedToken()
        if not hmac.compare_digest(
            str(params.get("oauth_verifier") or "").encode("utf-8"),
            str(request_token.verifier or "").encode("utf-8"),
        ):
            raise VerifierMismatch()

        profile = self.users.get_user(request_token.user) if request_token.user else None
        if profile is None:
            raise InvalidUser("Could not get the user details")

        # Single use: only the request that removes the token may mint from it
        if not self.tokens.claim_request(request_token.key):
            logger.info("Request token already exchanged for consumer=%s", consumer.id)
            raise InvalidToken()

        token = AccessToken(
            key=generate_token_string(TOKEN_KEY_LENGTH),
            secret=generate_token_string(TOKEN_SECRET_LENGTH),
            consumer=consumer.id,
            user=request_token.user,
            source_url=context.source_url(self.settings.source_url_strip_markers),
            issued_at=self.settings.now(),
        )
        if self.settings.access_token_filter is not None:
            token = self.settings.access_token_filter(token)

        self.revoke_old_tokens(token.user, token.consumer, token.source_url)
        self.tokens.save_access(token)

        logger.info("Access token issued for consumer=%s user=%s", token.consumer, token.user)
        return token, profile

    def revoke_access_token(self, key: str) -> AccessToken:
        token = self.get_access_token(key)
        if not self.tokens.delete_access(key):
            raise InvalidToken("Access token does not exist", status=401)
        logger.info("Access token revoked for consumer=%s user=%s", token.consumer, token.user)
        if self.settings.on_access_token_revoked is not None:
            self.settings.on_access_token_revoked(token)
        return token

    def revoke_old_tokens(self, user: int, consumer: int, source_url: str) -> int:
        """Revoke every access token for the same user, consumer and source URL."""
        revoked = 0
        for token in list(self.tokens.find_access_tokens(user, consumer, source_url)):
            self.revoke_access_token(token.key)
            revoked += 1
        return revoked

