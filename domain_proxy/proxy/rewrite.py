"""
Response rewriting for proxied transactions.

All functions here are pure: they take the upstream values together with the
``ProxyTarget``/``ProxyContext`` of the request and return rewritten values.
Body rewriting is a textual substitution, not HTML parsing, so it can touch
URLs inside comments or strings and will miss URLs that are built at runtime
or that use another spelling of the host (CDN aliases, subdomains).
"""

import logging
import re
from typing import Iterable, List, Tuple

from domain_proxy.models import ProxyContext, ProxyTarget
from domain_proxy.vars import (
    REWRITE_CSS_URLS,
    REWRITE_HTML_URLS,
    REWRITE_JS_URLS,
    REWRITE_JSON_URLS,
)

logger = logging.getLogger("uvicorn.error")

# Hop-by-hop headers that should NOT be forwarded (RFC 2616)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

SECURITY_POLICY_HEADERS = {
    "content-security-policy",
    "content-security-policy-report-only",
}

# Always replaced with the proxy's own values
CORS_RESPONSE_HEADERS = {
    "access-control-allow-origin",
    "access-control-allow-credentials",
}

# Only meaningful for the original encoded body
BODY_FRAMING_HEADERS = {"content-length", "content-encoding"}

# Encodings httpx decodes without optional packages
REWRITABLE_ENCODINGS = {"gzip", "deflate", "identity"}

_CHARSET_PATTERN = re.compile(r"charset=[\"']?([\w.:-]+)", re.IGNORECASE)
_INSECURE_ATTRIBUTE_PATTERN = re.compile(r"\b(src|href)=([\"'])http:", re.IGNORECASE)


def target_origin_pattern(domain: str) -> "re.Pattern[str]":
    """
    Match ``http://domain`` or ``https://domain`` as a whole host.

    ``github.com`` must not match inside ``github.com.cn`` or
    ``github.company``; an explicit port is left alone.
    """
    return re.compile(
        rf"https?://{re.escape(domain)}(?![\w.-]|:\d)",
        re.IGNORECASE,
    )


def _is_under_base_path(path: str, base_path: str) -> bool:
    if not path.startswith(base_path):
        return False
    return len(path) == len(base_path) or path[len(base_path)] in "/?#"


def rewrite_location_header(
    location: str, target: ProxyTarget, ctx: ProxyContext
) -> str:
    """
    Rewrite a redirect target so the browser follows it through the proxy.

    - ``https://<domain>/x`` becomes ``<proxy_url>/x``
    - ``/x`` becomes ``<base_path>/x`` unless already under the base path
    - any remaining ``http:`` scheme is upgraded to ``https:``
    """
    if not location:
        return location

    match = target_origin_pattern(target.domain).match(location)
    if match:
        location = ctx.proxy_url + location[match.end():]
    elif (
        location.startswith("/")
        and not location.startswith("//")
        and not _is_under_base_path(location, ctx.proxy_base_path)
    ):
        location = ctx.proxy_base_path + location

    if location[:5].lower() == "http:":
        location = "https:" + location[5:]
    return location


def rewrite_cookie_path(set_cookie: str, ctx: ProxyContext) -> str:
    """
    Scope a ``Set-Cookie`` value to the proxied site.

    The ``Domain`` attribute names the target host, which the browser would
    reject for the proxy host, so it is dropped. ``Path`` is moved under the
    proxy base path.
    """
    parts = set_cookie.split(";")
    rewritten = [parts[0].strip()]
    has_path = False

    for attribute in parts[1:]:
        attribute = attribute.strip()
        if not attribute:
            continue
        name, _, value = attribute.partition("=")
        key = name.strip().lower()
        if key == "domain":
            continue
        if key == "path":
            has_path = True
            value = value.strip() or "/"
            if value == "/":
                value = ctx.proxy_base_path
            elif not _is_under_base_path(value, ctx.proxy_base_path):
                value = f"{ctx.proxy_base_path}{value}"
            rewritten.append(f"{name.strip()}={value}")
            continue
        rewritten.append(attribute)

    if not has_path:
        rewritten.append(f"Path={ctx.proxy_base_path}")
    return "; ".join(rewritten)


def should_rewrite(content_type: str, content_encoding: str = "") -> bool:
    """
    Only textual bodies are buffered and rewritten; everything else streams.

    A body compressed with an encoding outside ``REWRITABLE_ENCODINGS`` is
    also streamed, since it may reach us still compressed and its framing
    headers must then be kept.
    """
    encodings = {e.strip().lower() for e in content_encoding.split(",") if e.strip()}
    if not encodings <= REWRITABLE_ENCODINGS:
        return False

    media_type = content_type.split(";", 1)[0].strip().lower()
    if not media_type:
        return False

    if REWRITE_HTML_URLS and media_type in ("text/html", "application/xhtml+xml"):
        return True
    if REWRITE_CSS_URLS and media_type == "text/css":
        return True
    if REWRITE_JS_URLS and (
        "javascript" in media_type or "ecmascript" in media_type
    ):
        return True
    if REWRITE_JSON_URLS and (
        media_type == "application/json" or media_type.endswith("+json")
    ):
        return True
    return False


def rewrite_text(text: str, target: ProxyTarget, ctx: ProxyContext) -> str:
    """
    Point absolute target URLs in ``text`` back at the proxy.

    Applying it twice is a no-op: rewritten URLs start with the proxy host,
    which the target pattern does not match.
    """
    text = target_origin_pattern(target.domain).sub(lambda _: ctx.proxy_url, text)
    return _INSECURE_ATTRIBUTE_PATTERN.sub(r"\1=\2https:", text)


def rewrite_content_urls(
    content: bytes, content_type: str, target: ProxyTarget, ctx: ProxyContext
) -> bytes:
    """
    Rewrite URLs in an already decoded HTML/CSS/JS/JSON body.

    Bodies that cannot be decoded with their declared charset are returned
    unchanged.
    """
    if not content:
        return content

    match = _CHARSET_PATTERN.search(content_type or "")
    charset = match.group(1) if match else "utf-8"

    try:
        text = content.decode(charset)
    except (UnicodeDecodeError, LookupError) as e:
        logger.debug(f"Skipping body rewrite for {target.domain}: {e}")
        return content

    return rewrite_text(text, target, ctx).encode(charset)


def rewrite_response_headers(
    headers: Iterable[Tuple[str, str]],
    target: ProxyTarget,
    ctx: ProxyContext,
    body_rewritten: bool = False,
) -> List[Tuple[str, str]]:
    """
    Rewrite upstream response headers for the client.

    ``headers`` is a sequence of (name, value) pairs so repeated headers such
    as ``Set-Cookie`` survive. When the body was rewritten its length and
    encoding no longer match the upstream framing headers, so those are
    dropped and recomputed by the response.
    """
    rewritten = []
    for name, value in headers:
        key = name.lower()
        if key in HOP_BY_HOP_HEADERS:
            continue
        if key in SECURITY_POLICY_HEADERS or key in CORS_RESPONSE_HEADERS:
            continue
        if body_rewritten and key in BODY_FRAMING_HEADERS:
            continue

        if key == "location":
            value = rewrite_location_header(value, target, ctx)
        elif key == "set-cookie":
            value = rewrite_cookie_path(value, ctx)

        rewritten.append((name, value))

    rewritten.append(("access-control-allow-origin", ctx.proxy_origin))
    rewritten.append(("access-control-allow-credentials", "true"))
    return rewritten
