"""
OAuth 1.0a provider configuration.
No secrets in this file; consumer and user credentials come from env or DB.
"""
import os
import time
from dataclasses import dataclass
from typing import Any, Callable

# SQLite DB for development
DATABASE_URL = os.environ.get("OAUTH1_DATABASE_URL", "sqlite:///./oauth1_server.db")

# Public site URL used to rebuild the signed base URL behind proxies. Empty = use the request URL as-is.
SITE_URL = os.environ.get("OAUTH1_SITE_URL", "").strip().rstrip("/")

# Accepted clock skew for oauth_timestamp, and lifetime of used nonces (seconds)
TIMESTAMP_WINDOW_SECONDS = int(os.environ.get("OAUTH1_TIMESTAMP_WINDOW", str(15 * 60)))

# Strict callback validation (registered vs supplied URL). Off unless explicitly enabled.
VALIDATE_CALLBACK = os.environ.get("OAUTH1_VALIDATE_CALLBACK", "").strip().lower() in ("1", "true", "yes", "on")

# Login/consent page the `authorize` operation redirects the browser to
AUTHORIZE_URL = os.environ.get("OAUTH1_AUTHORIZE_URL", "/oauth1/login")

# Path markers cut from derived source URLs (e.g. an admin area of the client site)
SOURCE_URL_STRIP_MARKERS = tuple(
    m.strip() for m in os.environ.get("OAUTH1_SOURCE_URL_STRIP_MARKERS", "").split(",") if m.strip()
)

# Request tokens live for 24 hours
REQUEST_TOKEN_TTL_SECONDS = 24 * 60 * 60

TOKEN_KEY_LENGTH = 24
TOKEN_SECRET_LENGTH = 48
VERIFIER_LENGTH = 24

# Consumer type tag handled by this engine
CONSUMER_TYPE = "oauth1"


@dataclass
class OAuth1Settings:
    """
    Engine settings plus injected extension points.

    Filters receive a token record and return the (possibly replaced) record to persist.
    callback_filter(valid, url, consumer) may override the callback decision.
    on_access_token_revoked(token) runs after an access token is deleted.
    """

    timestamp_window: int = TIMESTAMP_WINDOW_SECONDS
    request_token_ttl: int = REQUEST_TOKEN_TTL_SECONDS
    validate_callback: bool = VALIDATE_CALLBACK
    site_url: str = SITE_URL
    authorize_url: str = AUTHORIZE_URL
    source_url_strip_markers: tuple[str, ...] = SOURCE_URL_STRIP_MARKERS
    clock: Callable[[], float] = time.time

    request_token_filter: Callable[[Any], Any] | None = None
    authorized_token_filter: Callable[[Any], Any] | None = None
    access_token_filter: Callable[[Any], Any] | None = None
    callback_filter: Callable[[bool, str, Any], bool] | None = None
    on_access_token_revoked: Callable[[Any], None] | None = None

    def now(self) -> int:
        return int(self.clock())
