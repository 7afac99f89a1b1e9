import asyncio
import logging
import ssl
from typing import AsyncIterator, Dict, Iterable, Optional, Tuple

import httpx
from fastapi import APIRouter, Request
from fastapi.responses import Response, StreamingResponse
from opentelemetry import trace
from starlette.background import BackgroundTask

from domain_proxy.errors import (
    InvalidDomainError,
    ProxyError,
    ProxyInternalError,
    UpstreamTimeoutError,
    UpstreamTLSError,
    UpstreamUnreachableError,
)
from domain_proxy.models import ProxyContext, ProxyTarget
from domain_proxy.proxy.resolver import build_context, resolve
from domain_proxy.proxy.rewrite import (
    HOP_BY_HOP_HEADERS,
    rewrite_content_urls,
    rewrite_response_headers,
    should_rewrite,
)
from domain_proxy.utils.exception_logging import find_cause, log_exception_with_details
from domain_proxy.utils.traced_requests import traced_request
from domain_proxy.vars import (
    PROXY_TIMEOUT,
    PROXY_USER_AGENT,
    PROXY_VERIFY_TLS,
    PUBLIC_HOST,
    PUBLIC_SCHEME,
)

router = APIRouter()
tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

# Client identity is not passed on to the target
IDENTITY_HEADERS = {"x-forwarded-for", "x-real-ip", "forwarded"}

# Replaced with values that impersonate a direct browser visit
SYNTHESIZED_HEADERS = {
    "host",
    "user-agent",
    "referer",
    "origin",
    "x-forwarded-proto",
    "accept-encoding",
}

# Encodings httpx can always decode, so textual bodies stay rewritable
DECODABLE_ENCODINGS = "gzip, deflate"


def get_proxy_host(request: Request) -> str:
    return PUBLIC_HOST or request.headers.get("host") or request.url.netloc


def get_proxy_origin(request: Request) -> str:
    """``{scheme}://{host}`` of the proxy as the client addressed it."""
    return f"{PUBLIC_SCHEME}://{get_proxy_host(request)}"


def get_proxy_context(request: Request, target: ProxyTarget) -> ProxyContext:
    """Describe how the client addressed the proxy for this request."""
    return build_context(target, get_proxy_host(request), PUBLIC_SCHEME)


def get_request_path(request: Request) -> str:
    """
    The inbound path exactly as sent, percent-encoding intact.

    ``request.url.path`` is decoded, which would turn ``%23`` into a fragment
    and ``%3F`` into a query separator on the outbound URL.
    """
    raw_path = request.scope.get("raw_path")
    if not raw_path:
        return request.url.path
    return raw_path.decode("latin-1").split("?", 1)[0]


def prepare_headers(
    request: Request, target: ProxyTarget, ctx: ProxyContext
) -> Dict[str, str]:
    """
    Prepare headers for forwarding to the target.

    Client headers are copied except hop-by-hop, identity and framing headers;
    the request is then made to look like a browser navigating the target.
    """
    headers = {}
    for name, value in request.headers.items():
        name_lower = name.lower()
        if (
            name_lower in HOP_BY_HOP_HEADERS
            or name_lower in IDENTITY_HEADERS
            or name_lower in SYNTHESIZED_HEADERS
            or name_lower == "content-length"
        ):
            continue
        headers[name] = value

    headers["host"] = target.domain
    headers["user-agent"] = PROXY_USER_AGENT
    headers["referer"] = ctx.proxy_url
    headers["origin"] = ctx.proxy_url
    headers["x-forwarded-proto"] = "https"
    headers["accept-encoding"] = DECODABLE_ENCODINGS
    return headers


def to_proxy_error(exc: Exception, target: ProxyTarget) -> Exception:
    """Map a failure during the outbound transaction onto the error taxonomy."""
    target_url = target.url
    if isinstance(exc, (ProxyError, InvalidDomainError)):
        return exc
    if isinstance(exc, httpx.InvalidURL):
        return InvalidDomainError(target.domain)
    if isinstance(exc, httpx.TimeoutException):
        return UpstreamTimeoutError(target_url, exc)
    if isinstance(exc, httpx.ConnectError) and find_cause(exc, ssl.SSLError):
        return UpstreamTLSError(target_url, exc)
    if isinstance(exc, httpx.TransportError):
        return UpstreamUnreachableError(target_url, exc)
    return ProxyInternalError(target_url, exc)


async def close_upstream(
    upstream: Optional[httpx.Response], client: httpx.AsyncClient
) -> None:
    if upstream is not None:
        await upstream.aclose()
    await client.aclose()


async def stream_response(
    upstream: httpx.Response, client: httpx.AsyncClient
) -> AsyncIterator[bytes]:
    """
    Pass the upstream body through unchanged.

    Raw bytes are forwarded so the original Content-Encoding stays valid. If
    the client goes away the iterator is cancelled and the upstream request is
    closed.
    """
    try:
        async for chunk in upstream.aiter_raw():
            yield chunk
    except httpx.TransportError as e:
        log_exception_with_details(
            logger, f"[Proxy] Upstream body interrupted ({upstream.url}):", e,
            level=logging.WARNING,
        )
        raise
    finally:
        await asyncio.shield(close_upstream(upstream, client))


def _with_headers(response: Response, headers: Iterable[Tuple[str, str]]) -> Response:
    for name, value in headers:
        response.headers.append(name, value)
    return response


async def forward_to_target(request: Request) -> Response:
    """
    Forward an inbound ``/<domain>/<path>`` request to ``https://<domain>/<path>``.

    Textual responses are buffered and rewritten in one pass, everything else
    is streamed back. Any failure is raised as a ``RouteError`` or
    ``ProxyError`` for the app's exception handlers to render.
    """
    target = resolve(get_request_path(request), str(request.url.query))
    ctx = get_proxy_context(request, target)
    target_url = target.url

    with traced_request(
        tracer,
        operation="proxy_request",
        target_domain=target.domain,
        start_message=f"[Proxy] {request.method} {request.url.path} -> {target_url}",
        extra_attrs={"proxy.target_url": target_url, "proxy.method": request.method},
    ) as span:
        headers = prepare_headers(request, target, ctx)
        client = httpx.AsyncClient(
            timeout=httpx.Timeout(PROXY_TIMEOUT),
            verify=PROXY_VERIFY_TLS,
            follow_redirects=False,  # Handle redirects manually for rewriting
        )
        upstream = None
        try:
            body = await request.body()
            outbound = client.build_request(
                request.method, target_url, headers=headers, content=body
            )
            upstream = await client.send(outbound, stream=True)
            span.set_attribute("proxy.status_code", upstream.status_code)

            content_type = upstream.headers.get("content-type", "")
            content_encoding = upstream.headers.get("content-encoding", "")
            if should_rewrite(content_type, content_encoding):
                try:
                    content = await upstream.aread()
                finally:
                    await close_upstream(upstream, client)
                content = rewrite_content_urls(content, content_type, target, ctx)
                span.set_attribute("proxy.body_rewritten", True)
                return _with_headers(
                    Response(content=content, status_code=upstream.status_code),
                    rewrite_response_headers(
                        upstream.headers.multi_items(), target, ctx, body_rewritten=True
                    ),
                )

            return _with_headers(
                StreamingResponse(
                    stream_response(upstream, client),
                    status_code=upstream.status_code,
                    background=BackgroundTask(close_upstream, upstream, client),
                ),
                rewrite_response_headers(upstream.headers.multi_items(), target, ctx),
            )

        except asyncio.CancelledError:
            await asyncio.shield(close_upstream(upstream, client))
            raise

        except Exception as e:
            await close_upstream(upstream, client)
            error = to_proxy_error(e, target)
            span.set_attribute("proxy.error", type(error).__name__)
            log_exception_with_details(
                logger,
                f"[Proxy] {request.method} {target_url} failed:",
                e,
                level=(
                    logging.ERROR
                    if isinstance(error, ProxyInternalError)
                    else logging.WARNING
                ),
            )
            if error is e:
                raise
            raise error from e


# Register catch-all route for proxying
@router.api_route(
    "/{path:path}",
    methods=["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"],
)
async def proxy_all(request: Request, path: str):
    """Catch-all route that proxies every request to the domain named in its path."""
    return await forward_to_target(request)
