HTTP_PORT: int = 80
HTTPS_PORT: int = 443
LISTEN_HOST: str = ""
MAX_CONNECTIONS: int = 128
BUFFER_SIZE: int = 4096

CONFIG_FILE: str = "config.json"
MIMES_FILE: str = "mimes.json"
CERTIFICATE_FILE: str = "certs/server.crt"
KEY_FILE: str = "certs/server.key"
STATIC_ROOT: str = "/var/www/html"
INDEX_FILE: str = "index.html"

DNS_SERVER: str = "8.8.8.8"
DNS_PORT: int = 53
DNS_TIMEOUT: float = 2.0  # per exchange, same as the usual DNS client default

DIAL_TIMEOUT: float = 30.0
DIAL_KEEPALIVE: int = 30  # seconds

# Never copied between client and upstream, in either direction.
FORBIDDEN_HEADERS = frozenset({
    "x-frame-options",
    "access-control-allow-origin",
    "upgrade-insecure-requests",
    "content-security-policy",
})

# RFC 7230 section 6.1
HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-connection",
    "transfer-encoding",
    "te",
    "trailer",
    "upgrade",
})
