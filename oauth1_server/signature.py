"""
HMAC request signatures (RFC 5849 §3.4.2): HMAC-SHA1 and HMAC-SHA256.
Key is consumer_secret&token_secret; signatures are base64 and compared in constant time.
"""
import base64
import hashlib
import hmac
import logging
from typing import Any, Mapping
from urllib.parse import unquote

from oauth1_server.canonical import base_request_url, signature_base_string
from oauth1_server.context import RequestContext
from oauth1_server.errors import InvalidSignatureMethod, SignatureMismatch, UnknownHttpMethod

logger = logging.getLogger(__name__)

SIGNATURE_METHODS = {
    "HMAC-SHA1": hashlib.sha1,
    "HMAC-SHA256": hashlib.sha256,
}

SIGNED_HTTP_METHODS = ("GET", "HEAD", "DELETE", "POST", "PUT")

# Never part of the signed parameter set
EXCLUDED_PARAMETERS = ("oauth_signature", "realm")


def sign(base_string: str, consumer_secret: str, token_secret: str = "", signature_method: str = "HMAC-SHA1") -> str:
    """Return the base64 HMAC of base_string. Raises InvalidSignatureMethod for anything but HMAC-SHA1/256."""
    digestmod = SIGNATURE_METHODS.get(signature_method)
    if digestmod is None:
        raise InvalidSignatureMethod()
    key = f"{consumer_secret}&{token_secret or ''}"
    digest = hmac.new(key.encode("utf-8"), base_string.encode("utf-8"), digestmod).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(
    consumer_secret: str,
    token_secret: str | None,
    signature_method: str | None,
    base_string: str,
    supplied_signature: str,
) -> bool:
    """True if supplied_signature matches; raises InvalidSignatureMethod or SignatureMismatch otherwise."""
    expected = sign(base_string, consumer_secret, token_secret or "", signature_method or "")
    if not hmac.compare_digest(expected.encode("utf-8"), (supplied_signature or "").encode("utf-8")):
        raise SignatureMismatch()
    return True


def _signed_parameters(params: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in params.items() if k not in EXCLUDED_PARAMETERS}


def sign_request(
    method: str,
    url: str,
    params: Mapping[str, Any],
    consumer_secret: str,
    token_secret: str = "",
    signature_method: str = "HMAC-SHA1",
    site_url: str = "",
) -> str:
    """Signature a client sends for this request (query + body + oauth_* parameters)."""
    base_string = signature_base_string(method, base_request_url(url, site_url), _signed_parameters(params))
    return sign(base_string, consumer_secret, token_secret, signature_method)


def check_request_signature(
    context: RequestContext,
    params: Mapping[str, Any],
    consumer_secret: str,
    token_secret: str | None = None,
    site_url: str = "",
) -> bool:
    """
    Verify the oauth_signature carried in params against the request described by context.
    params is the merged parameter set (query, body and Authorization header).
    """
    http_method = context.method.upper()
    if http_method not in SIGNED_HTTP_METHODS:
        raise UnknownHttpMethod(f"Unknown http method: {http_method}")

    supplied = unquote(str(params.get("oauth_signature") or ""))
    base_string = signature_base_string(
        http_method,
        base_request_url(context.url, site_url),
        _signed_parameters(params),
    )
    try:
        return verify_signature(
            consumer_secret,
            token_secret,
            params.get("oauth_signature_method"),
            base_string,
            supplied,
        )
    except SignatureMismatch:
        logger.debug("Signature mismatch for consumer_key=%s", params.get("oauth_consumer_key"))
        raise
