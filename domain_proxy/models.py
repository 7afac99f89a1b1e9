from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel


@dataclass(frozen=True)
class ProxyTarget:
    """Where a single inbound request is forwarded to."""

    domain: str
    remote_path: str = "/"

    @property
    def url(self) -> str:
        return f"https://{self.domain}{self.remote_path}"


@dataclass(frozen=True)
class ProxyContext:
    """How the proxy itself is addressed by the client for this request."""

    proxy_host: str
    proxy_base_path: str
    proxy_scheme: str = "https"

    @property
    def proxy_origin(self) -> str:
        return f"{self.proxy_scheme}://{self.proxy_host}"

    @property
    def proxy_url(self) -> str:
        return f"{self.proxy_origin}{self.proxy_base_path}"


class ErrorResponse(BaseModel):
    success: bool = False
    message: str
    error: Optional[str] = None
    tip: Optional[str] = None
