"""
Exception taxonomy for proxy transactions.

Every error carries the HTTP status it is answered with and the usage hint
shown to the client. The FastAPI app turns them into ``ErrorResponse`` bodies.
"""

USAGE_EXAMPLE = "/github.com or /bilibili.com/video/BV1xx411c7mG"


class RouteError(Exception):
    """The inbound path does not name a usable target."""

    status_code = 400


class InvalidDomainError(RouteError):
    def __init__(self, domain: str):
        self.domain = domain
        super().__init__(
            f"Please enter a valid website domain, for example: {USAGE_EXAMPLE}"
        )


class ProxyError(Exception):
    """The outbound transaction with the target failed."""

    status_code = 502
    message = "Proxy request failed"
    tip = "Check that the domain is correct, for example: /github.com or /baidu.com"

    def __init__(self, target_url: str, cause: BaseException = None):
        self.target_url = target_url
        self.cause = cause
        super().__init__(f"{self.message}: {target_url}")


class UpstreamUnreachableError(ProxyError):
    message = "Could not connect to the target site"


class UpstreamTimeoutError(ProxyError):
    message = "The target site did not respond in time"


class UpstreamTLSError(ProxyError):
    message = "TLS handshake with the target site failed"


class ProxyInternalError(ProxyError):
    status_code = 500
    message = "Unexpected error while proxying the request"
