import logging
import ssl
import sys

from .config import ProxyConfig
from .constants import CERTIFICATE_FILE, KEY_FILE
from .forwarder import ProxyForwarder
from .handler import RequestHandler, local_hostnames
from .resolver import DNSOverrideResolver, ResolvingDialer
from .server import DualListener
from .static import StaticFiles

logger = logging.getLogger("hostproxy")


def create_ssl_context(certfile: str = CERTIFICATE_FILE, keyfile: str = KEY_FILE) -> ssl.SSLContext:
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(certfile, keyfile)
    return context


def build_handler(config) -> RequestHandler:
    """Wire the router, the static site and the forwarder around one config."""
    dialer = ResolvingDialer(DNSOverrideResolver())
    return RequestHandler(
        config=config,
        forwarder=ProxyForwarder(dialer),
        static=StaticFiles(config.mimes),
        local_hosts=local_hostnames()
    )


def main() -> int:
    logging.basicConfig(level=logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        config = ProxyConfig().config
        handler = build_handler(config)
        listener = DualListener(handler, create_ssl_context())
        listener.bind()
    except (ValueError, OSError) as e:
        logger.critical(f"Startup failed: {e}")
        return 1

    try:
        listener.serve_forever()
    except KeyboardInterrupt:
        listener.shutdown()
        return 0
    # Either listener stopping takes the process down
    return 1


if __name__ == '__main__':
    sys.exit(main())
