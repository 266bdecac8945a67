"""
Outbound HTTP through the resolving dialer.

The dialer is wired into a ``requests`` adapter instead of any global
transport, so only sessions built here bypass the system resolver.
"""
import socket

import requests
from requests.adapters import HTTPAdapter
from urllib3.connection import HTTPConnection, HTTPSConnection
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool
from urllib3.exceptions import ConnectTimeoutError, NewConnectionError

from .resolver import ResolutionError, ResolvingDialer


class DialingConnectionMixin:
    """Replaces urllib3's socket creation with ``dialer.dial``."""
    dialer: ResolvingDialer = None

    def _new_conn(self) -> socket.socket:
        address = f"{self.host}:{self.port}"
        try:
            return self.dialer.dial(
                address,
                source_address=self.source_address,
                socket_options=self.socket_options
            )
        except socket.timeout as e:
            raise ConnectTimeoutError(
                self, f"Connection to {address} timed out (connect timeout={self.dialer.timeout})"
            ) from e
        except (ResolutionError, OSError) as e:
            raise NewConnectionError(self, f"Failed to establish a new connection: {e}") from e


def pool_classes(dialer: ResolvingDialer) -> dict:
    """Connection pool classes, keyed by scheme, whose sockets go through ``dialer``."""

    class ResolvingHTTPConnection(DialingConnectionMixin, HTTPConnection):
        pass

    class ResolvingHTTPSConnection(DialingConnectionMixin, HTTPSConnection):
        pass

    ResolvingHTTPConnection.dialer = dialer
    ResolvingHTTPSConnection.dialer = dialer

    class ResolvingHTTPConnectionPool(HTTPConnectionPool):
        ConnectionCls = ResolvingHTTPConnection

    class ResolvingHTTPSConnectionPool(HTTPSConnectionPool):
        ConnectionCls = ResolvingHTTPSConnection

    return {
        'http': ResolvingHTTPConnectionPool,
        'https': ResolvingHTTPSConnectionPool,
    }


class ResolvingAdapter(HTTPAdapter):
    """Transport adapter that dials every upstream through a ResolvingDialer."""

    def __init__(self, dialer: ResolvingDialer, **kwargs):
        # HTTPAdapter.__init__ builds the pool manager, so the dialer goes first.
        self._dialer = dialer
        super().__init__(**kwargs)

    @property
    def dialer(self) -> ResolvingDialer:
        return self._dialer

    def init_poolmanager(self, connections, maxsize, block=False, **pool_kwargs):
        super().init_poolmanager(connections, maxsize, block=block, **pool_kwargs)
        self.poolmanager.pool_classes_by_scheme = pool_classes(self._dialer)


def new_session(dialer: ResolvingDialer) -> requests.Session:
    """
    A fresh session for a single proxied request.

    Default headers are cleared so only the client's (sanitized) headers go
    upstream, and the environment is ignored so proxies and netrc entries
    cannot reroute or re-authenticate the request.
    """
    session = requests.Session()
    session.headers.clear()
    session.trust_env = False
    adapter = ResolvingAdapter(dialer, max_retries=0)
    session.mount('http://', adapter)
    session.mount('https://', adapter)
    return session
