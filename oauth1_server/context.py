"""
Immutable description of the incoming HTTP request handed to every engine operation.
The engine never reads ambient request state; the host builds a RequestContext instead.
"""
import re
from dataclasses import dataclass, field
from typing import Any, Mapping
from urllib.parse import urlsplit

_WWW_PREFIX = re.compile(r"^www\.", re.IGNORECASE)


@dataclass(frozen=True)
class RequestContext:
    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    query_params: Mapping[str, Any] = field(default_factory=dict)
    body_params: Mapping[str, Any] = field(default_factory=dict)
    # Host user already signed in for this request, if the host knows one
    user_id: int | None = None

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None

    @property
    def authorization(self) -> str | None:
        return self.header("Authorization")

    @property
    def query_string(self) -> str:
        return urlsplit(self.url).query

    def source_url(self, strip_markers: tuple[str, ...] = ()) -> str:
        """
        Site the client is calling from, reduced to host[:port]/path without scheme,
        query, trailing slashes or a leading "www.".
        Taken from Referer, then Origin, then the first URL found in the User-Agent.
        """
        source = ""
        referer = (self.header("Referer") or "").strip()
        origin = (self.header("Origin") or "").strip()
        if referer:
            source = referer
        elif origin:
            source = origin
        else:
            # e.g. "SomeClient/4.4.2; https://client.example/blog"
            for part in (self.header("User-Agent") or "").split(";"):
                part = part.strip()
                if _is_absolute_url(part):
                    source = part
                    break

        try:
            parts = urlsplit(source)
            host = parts.hostname
            port = parts.port
        except ValueError:
            host, port = None, None
        if host:
            reduced = host
            if port:
                reduced += f":{port}"
            path = parts.path
            for marker in strip_markers:
                if marker in path:
                    path = path[: path.index(marker)]
            source = reduced + path

        source = source.strip().strip("/")
        return _WWW_PREFIX.sub("", source)


def _is_absolute_url(value: str) -> bool:
    try:
        parts = urlsplit(value)
    except ValueError:
        return False
    return bool(parts.scheme and parts.netloc)
