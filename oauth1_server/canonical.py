"""
Signature base string construction (RFC 5849 §3.4.1).

Parameters are decoded then re-encoded before signing, and each key=value pair is
encoded again as a unit. Existing client libraries sign exactly this form, so the
double encoding must not be "fixed".
"""
from typing import Any, Mapping
from urllib.parse import quote, unquote, urlsplit, urlunsplit


def urlencode_rfc3986(value: Any) -> str:
    """Percent-encode per RFC 3986: space is %20, '~' stays literal."""
    return quote(str(value), safe="").replace("+", " ").replace("%7E", "~")


def flatten_parameters(params: Mapping[str, Any]) -> list[tuple[str, str]]:
    """
    Collapse nested values into flat entries:
    {"a": {"b": "1", "c": ["x"]}} -> [("a[b]", "1"), ("a[c][0]", "x")].
    Empty values and empty containers sign as "".
    """
    flat: list[tuple[str, str]] = []
    for key, value in params.items():
        _flatten_into(str(key), value, flat)
    return flat


def _flatten_into(key: str, value: Any, out: list[tuple[str, str]]) -> None:
    if isinstance(value, Mapping):
        items = list(value.items())
    elif isinstance(value, (list, tuple)):
        items = list(enumerate(value))
    else:
        out.append((key, "" if value is None else str(value)))
        return
    if not items:
        out.append((key, ""))
        return
    for subkey, subvalue in items:
        _flatten_into(f"{key}[{subkey}]", subvalue, out)


def normalize_parameters(params: Mapping[str, Any]) -> list[tuple[str, str]]:
    """Flatten, decode/re-encode every key and value, then stable-sort by encoded key."""
    encoded = [
        (urlencode_rfc3986(unquote(key)), urlencode_rfc3986(unquote(value)))
        for key, value in flatten_parameters(params)
    ]
    # sorted() is stable: identical keys keep their relative order
    return sorted(encoded, key=lambda kv: kv[0])


def join_parameters(pairs: list[tuple[str, str]]) -> str:
    return "%26".join(urlencode_rfc3986(f"{key}={value}") for key, value in pairs)


def base_request_url(url: str, site_url: str = "") -> str:
    """
    Scheme, host and path of the request, without query or fragment.
    With a site URL configured, the site's own path prefix is stripped from the
    request path and the rest is re-rooted on the site URL.
    """
    parts = urlsplit(url)
    path = parts.path or "/"
    if not site_url:
        return urlunsplit((parts.scheme, parts.netloc, path, "", ""))

    site_path = urlsplit(site_url).path.rstrip("/") + "/"
    if path.startswith(site_path):
        path = path[len(site_path):]
    return site_url.rstrip("/") + "/" + path.lstrip("/")


def signature_base_string(method: str, base_url: str, params: Mapping[str, Any]) -> str:
    """METHOD&enc(base_url)&enc(k1=v1)%26enc(k2=v2)..."""
    joined = join_parameters(normalize_parameters(params))
    return f"{method.upper()}&{urlencode_rfc3986(base_url)}&{joined}"
