"""
A host-routed reverse proxy that resolves upstreams through a fixed DNS server.
"""

from .server import ProxyServer, DualListener
from .handler import RequestHandler
from .forwarder import ProxyForwarder
from .resolver import DNSOverrideResolver, ResolvingDialer, ResolutionError
from .static import StaticFiles
from .models import BasicAuth, Config, HTTPRequest, HTTPResponse, RedirectEntry
from .config import ProxyConfig

__all__ = [
    'ProxyServer', 'DualListener', 'RequestHandler', 'ProxyForwarder',
    'DNSOverrideResolver', 'ResolvingDialer', 'ResolutionError', 'StaticFiles',
    'BasicAuth', 'Config', 'HTTPRequest', 'HTTPResponse', 'RedirectEntry',
    'ProxyConfig'
]
