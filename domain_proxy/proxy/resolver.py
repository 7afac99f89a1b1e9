from domain_proxy.errors import InvalidDomainError
from domain_proxy.models import ProxyContext, ProxyTarget


def resolve(request_path: str, query: str = "") -> ProxyTarget:
    """
    Split an inbound path of the form ``/<domain>[/<path>]`` into a target.

    The domain is only checked for shape (non-empty, contains a dot); it is
    never looked up or matched against an allowlist.

    Raises:
        InvalidDomainError: if the first path segment does not look like a host.
    """
    remainder = request_path[1:] if request_path.startswith("/") else request_path

    domain, slash, rest = remainder.partition("/")
    remote_path = slash + rest if slash else "/"

    if not domain or "." not in domain:
        raise InvalidDomainError(domain)

    if query:
        remote_path = f"{remote_path}?{query}"

    return ProxyTarget(domain=domain, remote_path=remote_path)


def build_context(target: ProxyTarget, proxy_host: str, proxy_scheme: str = "https") -> ProxyContext:
    return ProxyContext(
        proxy_host=proxy_host,
        proxy_base_path=f"/{target.domain}",
        proxy_scheme=proxy_scheme,
    )
