"""
Callback URL validation for the authorization handshake.

"oob" (out-of-band) is only valid when both the registered and the supplied callback
are "oob". With strict validation enabled the supplied URL must match the registered one
on scheme, host, port, user, password and path; query and fragment may differ.
Strict validation is off unless configured (OAUTH1_VALIDATE_CALLBACK).
"""
import logging
from urllib.parse import urlsplit

from oauth1_server.config import CONSUMER_TYPE, OAuth1Settings
from oauth1_server.stores import Consumer, ConsumerStore

logger = logging.getLogger(__name__)

OUT_OF_BAND = "oob"

_COMPARED_PARTS = ("scheme", "host", "port", "user", "pass", "path")
_FORBIDDEN_HOST_CHARS = set(":#?[]")


def url_components(url: str) -> dict[str, str] | None:
    """
    Split a URL into the components that are present, case preserved.
    Absent components are missing from the dict (not empty strings). None if unparsable.
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return None

    components: dict[str, str] = {}
    if parts.scheme:
        components["scheme"] = url.strip()[: len(parts.scheme)]

    netloc = parts.netloc
    if "@" in netloc:
        userinfo, _, netloc = netloc.rpartition("@")
        user, sep, password = userinfo.partition(":")
        components["user"] = user
        if sep:
            components["pass"] = password

    host, port = netloc, ""
    if netloc.startswith("["):
        end = netloc.find("]")
        if end != -1:
            host, rest = netloc[: end + 1], netloc[end + 1:]
            port = rest[1:] if rest.startswith(":") else ""
    elif ":" in netloc:
        candidate_host, _, candidate_port = netloc.rpartition(":")
        if candidate_port.isdigit() or candidate_port == "":
            host, port = candidate_host, candidate_port
    if host:
        components["host"] = host
    if port:
        components["port"] = port

    if parts.path:
        components["path"] = parts.path
    return components


def is_valid_callback_url(url: str) -> bool:
    """Syntax check: needs a scheme separator and a host, no userinfo, no ':#?[]' in the host."""
    if not url or ":" not in url:
        return False
    components = url_components(url)
    if not components or not components.get("host"):
        return False
    if "user" in components or "pass" in components:
        return False
    if _FORBIDDEN_HOST_CHARS & set(components["host"]):
        return False
    return True


def callbacks_match(registered: str, supplied: str) -> bool:
    """Compare everything except query and fragment, including presence/absence of each part."""
    reg = url_components(registered) or {}
    sup = url_components(supplied) or {}
    for part in _COMPARED_PARTS:
        if (part in reg) != (part in sup):
            return False
        if part in reg and reg[part] != sup[part]:
            return False
    return True


class CallbackValidator:
    def __init__(self, consumers: ConsumerStore, settings: OAuth1Settings):
        self.consumers = consumers
        self.settings = settings

    def check(self, url: str, consumer: Consumer | int | None) -> bool:
        if not isinstance(consumer, Consumer) and consumer is not None:
            consumer = self.consumers.get_by_id(consumer)
        if consumer is None or consumer.type != CONSUMER_TYPE:
            return False

        strict = self.settings.validate_callback
        registered = consumer.callback

        if not registered and strict:
            return False

        if registered == OUT_OF_BAND or url == OUT_OF_BAND:
            return registered == url

        if strict and not is_valid_callback_url(url):
            return False

        valid = True
        if strict:
            valid = callbacks_match(registered, url)

        if self.settings.callback_filter is not None:
            valid = bool(self.settings.callback_filter(valid, url, consumer))
        if not valid:
            logger.debug("Callback rejected for consumer=%s", consumer.id)
        return valid
