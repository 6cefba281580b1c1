"""
Entry point for OAuth 1.0a traffic: parameter extraction, the three handshake
operations (request, authorize, access) and per-request authentication.
"""
import hmac
import logging
import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import unquote_plus

from oauth1_server.canonical import urlencode_rfc3986
from oauth1_server.context import RequestContext
from oauth1_server.errors import ConsumerMismatch, MissingParameters, UnknownOperation
from oauth1_server.stores import UserProfile
from oauth1_server.tokens import AccessToken, RequestToken, TokenLifecycle, attributed_to

logger = logging.getLogger(__name__)

OPERATIONS = ("request", "authorize", "access")

BASE_PARAMETERS = (
    "oauth_consumer_key",
    "oauth_timestamp",
    "oauth_nonce",
    "oauth_signature",
    "oauth_signature_method",
)

# oauth_name="quoted value" or oauth_name=bare-value
_HEADER_PARAM = re.compile(r'(oauth_[a-z_-]*)=(?:"([^"]*)"|([^,]*))')


def parse_authorization_header(header: str | None) -> dict[str, str] | None:
    """
    Parse 'OAuth oauth_consumer_key="...", oauth_nonce="..."' into a dict.
    Values are URL-decoded; realm is dropped. None if this is not an OAuth header.
    """
    if not header:
        return None
    header = header.strip()
    if not header.startswith("OAuth "):
        return None

    params: dict[str, str] = {}
    for match in _HEADER_PARAM.finditer(header):
        name, quoted, bare = match.groups()
        params[name] = unquote_plus(quoted if quoted else (bare or "").strip())
    params.pop("realm", None)
    return params


def merge_parameters(context: RequestContext) -> dict[str, Any]:
    """Query, then body, then Authorization header; later sources win."""
    params: dict[str, Any] = dict(context.query_params)
    params.update(context.body_params)
    header_params = parse_authorization_header(context.authorization)
    if header_params:
        params.update(header_params)
    return params


def extract_parameters(
    context: RequestContext,
    require_token: bool = True,
    extra: tuple[str, ...] = (),
) -> dict[str, Any] | None:
    """
    Merged parameters if every required OAuth parameter is present.
    None when none of them is present (not an OAuth request, let other schemes try).
    Raises MissingParameters when only some are present.
    """
    params = merge_parameters(context)

    names = list(BASE_PARAMETERS)
    if require_token:
        names.append("oauth_token")
    names.extend(extra)

    missing = [name for name in names if not params.get(name)]
    if len(missing) == len(names):
        return None
    if missing:
        raise MissingParameters(missing)
    return params


@dataclass(frozen=True)
class AuthorizeRedirect:
    """Send the browser to the host's login/consent page."""

    url: str


def request_token_payload(token: RequestToken) -> dict[str, str]:
    return {
        "oauth_token": urlencode_rfc3986(token.key),
        "oauth_token_secret": urlencode_rfc3986(token.secret),
        "oauth_callback_confirmed": "true",
    }


def access_token_payload(token: AccessToken, user: UserProfile) -> dict[str, Any]:
    return {
        "oauth_token": urlencode_rfc3986(token.key),
        "oauth_token_secret": urlencode_rfc3986(token.secret),
        "user_ID": user.id,
        "user_login": user.login,
        "user_email": user.email,
        "display_name": user.display_name,
    }


class RequestDispatcher:
    def __init__(self, lifecycle: TokenLifecycle):
        self.lifecycle = lifecycle
        self.settings = lifecycle.settings

    def dispatch(self, operation: str, context: RequestContext) -> dict[str, Any] | AuthorizeRedirect:
        result, _ = self.dispatch_with_token(operation, context)
        return result

    def dispatch_with_token(
        self, operation: str, context: RequestContext
    ) -> tuple[dict[str, Any] | AuthorizeRedirect, RequestToken | AccessToken | None]:
        """Like dispatch, but also returns the token issued by the step (None for authorize)."""
        if operation == "authorize":
            return self._authorize_redirect(context), None

        if operation == "request":
            params = extract_parameters(context, require_token=False)
            if not params:
                raise MissingParameters(message="No OAuth parameters supplied", status=400)
            token = self.lifecycle.create_request_token(params, context)
            return request_token_payload(token), token

        if operation == "access":
            params = extract_parameters(context, require_token=True, extra=("oauth_verifier",))
            if not params:
                raise MissingParameters(message="No OAuth parameters supplied", status=400)
            token, user = self.lifecycle.exchange_for_access_token(params, context)
            return access_token_payload(token, user), token

        raise UnknownOperation()

    def _authorize_redirect(self, context: RequestContext) -> AuthorizeRedirect:
        url = self.settings.authorize_url
        query = context.query_string
        if query:
            url += ("&" if "?" in url else "?") + query
        return AuthorizeRedirect(url=url)

    def authenticate(self, context: RequestContext) -> int | None:
        """
        Authenticate a signed API request with an access token.
        Returns the token's user id, None if the request carries no OAuth parameters,
        raises OAuth1Error when OAuth was attempted and failed.
        """
        params = extract_parameters(context)
        if params is None:
            return None

        token = self.lifecycle.get_access_token(params["oauth_token"])
        # Resolving the consumer must not trigger another authentication attempt
        consumer = self.lifecycle.resolve_consumer(params["oauth_consumer_key"], skip_authentication=True)
        with attributed_to(consumer):
            if not hmac.compare_digest(str(token.consumer), str(consumer.id)):
                raise ConsumerMismatch()
            self.lifecycle.check_request(context, params, consumer, token.secret)
        logger.debug("Authenticated consumer=%s user=%s", consumer.id, token.user)
        return token.user
