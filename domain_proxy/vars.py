import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "domain-proxy")
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "info").lower()

PROXY_TIMEOUT = float(os.getenv("PROXY_TIMEOUT", "30"))
# Upstream certificates are not verified unless explicitly enabled
PROXY_VERIFY_TLS = os.getenv("PROXY_VERIFY_TLS", "false").lower() == "true"
PROXY_USER_AGENT = os.getenv(
    "PROXY_USER_AGENT",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
)

# Public-facing address used when rewriting URLs back to the proxy
PUBLIC_SCHEME = os.getenv("PUBLIC_SCHEME", "https").lower()
PUBLIC_HOST = os.getenv("PUBLIC_HOST", "")

# "*" for wildcard, "reflect" to echo the request origin, or a comma separated list
CORS_ALLOW_ORIGINS = os.getenv("CORS_ALLOW_ORIGINS", "*").strip()

REWRITE_HTML_URLS = os.getenv("REWRITE_HTML_URLS", "true").lower() == "true"
REWRITE_CSS_URLS = os.getenv("REWRITE_CSS_URLS", "true").lower() == "true"
REWRITE_JS_URLS = os.getenv("REWRITE_JS_URLS", "true").lower() == "true"
REWRITE_JSON_URLS = os.getenv("REWRITE_JSON_URLS", "true").lower() == "true"

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
