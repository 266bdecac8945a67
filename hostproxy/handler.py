import socket
import logging
from typing import Callable, Iterable, Optional, Tuple

from .forwarder import ProxyForwarder
from .models import BadRequestError, Config, HTTPRequest, HTTPResponse
from .static import StaticFiles

logger = logging.getLogger(__name__)


def local_hostnames(hostname: str = None) -> frozenset:
    """Host values that address this machine's static site."""
    hostname = hostname or socket.gethostname()
    return frozenset({"localhost", hostname, f"{hostname}.local"})


class RequestHandler:
    """Handles processing of individual HTTP requests."""

    def __init__(self, config: Config, forwarder: ProxyForwarder,
                 static: StaticFiles, local_hosts: Iterable[str] = None,
                 timeout: Optional[float] = None):
        """
        Initialize the request handler.

        Args:
            config: Redirect map and MIME table
            forwarder: Relays requests for configured hosts
            static: Serves requests addressed to this machine
            local_hosts: Host values served from the static root
            timeout: Client socket timeout in seconds, None to block
        """
        self._config = config
        self._forwarder = forwarder
        self._static = static
        self._local_hosts = frozenset(local_hosts) if local_hosts is not None else local_hostnames()
        self._timeout = timeout

    def route(self, request: HTTPRequest,
              before_forward: Optional[Callable[[], None]] = None) -> HTTPResponse:
        """
        Pick the static site or the configured upstream from the Host header.

        ``before_forward`` runs only when the request goes upstream.
        """
        host = request.host
        if host in self._local_hosts:
            return self._static.serve(request)

        entry = self._config.redirects.get(host)
        if entry is None:
            logger.warning(f"Unknown host {host}")
            return HTTPResponse.create_error(404, "Not Found")

        if before_forward is not None:
            before_forward()
        return self._forwarder.forward(request, entry)

    def handle_client(self, client_socket: socket.socket,
                      client_address: Tuple[str, int]) -> None:
        """
        Handle an individual client connection.

        One request is served per connection.

        Args:
            client_socket: Socket object for client connection
            client_address: Tuple of client's IP and port
        """
        client_socket.settimeout(self._timeout)
        rfile = client_socket.makefile('rb')
        wfile = client_socket.makefile('wb')
        response_started = False

        try:
            try:
                request = HTTPRequest.from_stream(rfile)
            except BadRequestError as e:
                logger.warning(f"Bad request from {client_address}: {e}")
                HTTPResponse.create_error(400, str(e)).write_to(wfile)
                return
            if not request:
                return

            logger.info(f"{client_address[0]} {request.method} {request.host}{request.path}")

            def send_continue():
                if request.expects_continue:
                    wfile.write(b'HTTP/1.1 100 Continue\r\n\r\n')
                    wfile.flush()

            response = self.route(request, before_forward=send_continue)
            try:
                response_started = True
                response.write_to(wfile, include_body=request.method != 'HEAD')
            finally:
                response.close()

        except (BrokenPipeError, ConnectionResetError) as e:
            logger.debug(f"Client {client_address} went away: {e}")
        except Exception as e:
            logger.error(f"Error handling client {client_address}: {e}")
            if not response_started:
                self._send_internal_error(wfile)
        finally:
            for f in (wfile, rfile):
                try:
                    f.close()
                except OSError:
                    pass
            client_socket.close()

    def _send_internal_error(self, wfile) -> None:
        try:
            HTTPResponse.create_error(500).write_to(wfile)
        except OSError as e:
            logger.debug(f"Could not send error response: {e}")
