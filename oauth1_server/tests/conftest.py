"""
Pytest configuration for oauth1_server. Use in-memory SQLite so tests don't touch the filesystem.
Engine fixtures run on the in-memory collaborators with a fixed clock.
"""
import itertools
import os

# In-memory SQLite; database.py uses StaticPool so all connections share the same DB
os.environ["OAUTH1_DATABASE_URL"] = "sqlite:///:memory:"
# Keep seeding and strict callback checks out of the way unless a test asks for them
for _name in (
    "OAUTH1_SEED_USER",
    "OAUTH1_SEED_PASSWORD",
    "OAUTH1_SEED_CONSUMER_KEY",
    "OAUTH1_SEED_CONSUMER_SECRET",
    "OAUTH1_VALIDATE_CALLBACK",
    "OAUTH1_SITE_URL",
):
    os.environ.pop(_name, None)

from urllib.parse import quote, urlencode

import pytest

from oauth1_server.config import OAuth1Settings
from oauth1_server.context import RequestContext
from oauth1_server.dispatcher import RequestDispatcher
from oauth1_server.signature import sign_request
from oauth1_server.stores import (
    Consumer,
    InMemoryConsumerStore,
    InMemoryOptionStore,
    InMemoryUserDirectory,
    UserProfile,
)
from oauth1_server.tokens import TokenLifecycle, TokenStore

NOW = 1_700_000_000

CONSUMER_KEY = "ck4Jd92kLq0"
CONSUMER_SECRET = "cs8Hw3mZp5tR7vN1"
CALLBACK = "https://client.example/callback"


@pytest.fixture
def settings():
    return OAuth1Settings(
        clock=lambda: NOW,
        validate_callback=False,
        site_url="",
        authorize_url="/oauth1/login",
        source_url_strip_markers=(),
    )


@pytest.fixture
def consumer():
    return Consumer(id=1, key=CONSUMER_KEY, secret=CONSUMER_SECRET, callback=CALLBACK, name="Test client")


@pytest.fixture
def consumers(consumer):
    return InMemoryConsumerStore([consumer])


@pytest.fixture
def user():
    return UserProfile(id=7, login="alice", email="alice@example.com", display_name="Alice")


@pytest.fixture
def users(user):
    return InMemoryUserDirectory([user])


@pytest.fixture
def options():
    return InMemoryOptionStore()


@pytest.fixture
def lifecycle(options, consumers, users, settings):
    return TokenLifecycle(TokenStore(options), consumers, users, settings)


@pytest.fixture
def dispatcher(lifecycle):
    return RequestDispatcher(lifecycle)


def authorization_header(params: dict) -> str:
    return "OAuth " + ", ".join(f'{k}="{quote(str(v), safe="")}"' for k, v in params.items())


@pytest.fixture
def make_signed_context(consumer):
    """
    Build a RequestContext signed the way a client would: oauth_* parameters in the
    Authorization header, signature over query + body + oauth parameters.
    """
    nonces = itertools.count()

    def _make(
        method: str,
        url: str,
        oauth: dict | None = None,
        *,
        token_secret: str = "",
        signer: Consumer | None = None,
        query: dict | None = None,
        body: dict | None = None,
        headers: dict | None = None,
        timestamp: int = NOW,
        nonce: str | None = None,
        signature_method: str = "HMAC-SHA1",
        user_id: int | None = None,
    ) -> RequestContext:
        signer = signer or consumer
        params = {
            "oauth_consumer_key": signer.key,
            "oauth_timestamp": str(timestamp),
            "oauth_nonce": nonce or f"n{next(nonces)}x",
            "oauth_signature_method": signature_method,
            "oauth_version": "1.0",
        }
        params.update(oauth or {})
        if query:
            url = f"{url}?{urlencode(query)}"
        signed = {**(query or {}), **(body or {}), **params}
        params["oauth_signature"] = sign_request(method, url, signed, signer.secret, token_secret, signature_method)

        all_headers = {"Authorization": authorization_header(params)}
        all_headers.update(headers or {})
        return RequestContext(
            method=method,
            url=url,
            headers=all_headers,
            query_params=dict(query or {}),
            body_params=dict(body or {}),
            user_id=user_id,
        )

    return _make
