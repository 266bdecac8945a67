import socket
import ssl
import threading
import logging
from typing import Optional, Tuple

from .constants import HTTP_PORT, HTTPS_PORT, LISTEN_HOST, MAX_CONNECTIONS
from .handler import RequestHandler

logger = logging.getLogger(__name__)


class ProxyServer:
    """One listening socket feeding connections to a RequestHandler."""

    def __init__(self, host: str, port: int, handler: RequestHandler,
                 ssl_context: Optional[ssl.SSLContext] = None):
        """
        Initialize the proxy server.

        Args:
            host: Host address to bind the proxy, empty for all interfaces
            port: Port number to listen on, 0 for any free port
            handler: Shared request handler
            ssl_context: Server-side TLS context, None for plain HTTP
        """
        self._host = host
        self._port = port
        self._handler = handler
        self._ssl_context = ssl_context

        # Initialize server socket
        self._server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        self._bound = False
        self._running = False

    @property
    def host(self) -> str:
        """Get the host address."""
        return self._host

    @property
    def port(self) -> int:
        """Get the port number, the real one once bound."""
        if self._bound:
            return self._server_socket.getsockname()[1]
        return self._port

    @property
    def scheme(self) -> str:
        return "https" if self._ssl_context else "http"

    @property
    def server_socket(self) -> socket.socket:
        """Get the server socket."""
        return self._server_socket

    def bind(self) -> None:
        """Bind and listen. Raises OSError if the address is unavailable."""
        if self._bound:
            return
        self._server_socket.bind((self._host, self._port))
        self._server_socket.listen(MAX_CONNECTIONS)
        self._bound = True
        logger.info(f"Reverse proxy listening for {self.scheme} on {self._host or '*'}:{self.port}")

    def start(self) -> None:
        """Accept connections until shutdown."""
        self.bind()
        self._running = True
        try:
            while self._running:
                try:
                    client_socket, client_address = self._server_socket.accept()
                    if not self._running:
                        client_socket.close()
                        break

                    # Handle each client in a separate thread
                    thread = threading.Thread(
                        target=self._serve_client,
                        args=(client_socket, client_address)
                    )
                    thread.daemon = True
                    thread.start()
                except Exception as e:
                    if self._server_socket.fileno() == -1:
                        break
                    if self._running:  # Only log if we're still meant to be running
                        logger.error(f"Server error: {e}")

        finally:
            self._server_socket.close()

    def _serve_client(self, client_socket: socket.socket,
                      client_address: Tuple[str, int]) -> None:
        if self._ssl_context is not None:
            try:
                client_socket = self._ssl_context.wrap_socket(client_socket, server_side=True)
            except (ssl.SSLError, OSError) as e:
                logger.warning(f"TLS handshake with {client_address} failed: {e}")
                client_socket.close()
                return
        self._handler.handle_client(client_socket, client_address)

    def shutdown(self) -> None:
        """Shutdown the proxy server gracefully."""
        was_running = self._running
        self._running = False
        if was_running:
            # Create a dummy connection to unblock accept()
            try:
                with socket.create_connection((self._host or "127.0.0.1", self.port), timeout=1):
                    pass
            except OSError:
                pass
        self._server_socket.close()


class DualListener:
    """Runs the plain HTTP and the TLS listener side by side."""

    def __init__(self, handler: RequestHandler, ssl_context: ssl.SSLContext,
                 host: str = LISTEN_HOST, http_port: int = HTTP_PORT,
                 https_port: int = HTTPS_PORT):
        self._servers = [
            ProxyServer(host, http_port, handler),
            ProxyServer(host, https_port, handler, ssl_context=ssl_context),
        ]
        self._stopped = threading.Event()

    @property
    def servers(self):
        return list(self._servers)

    def bind(self) -> None:
        """Bind both sockets. Any failure is fatal to the pair."""
        for server in self._servers:
            server.bind()

    def _run(self, server: ProxyServer) -> None:
        try:
            server.start()
        except Exception as e:
            logger.critical(f"{server.scheme} listener failed: {e}")
        finally:
            self._stopped.set()

    def serve_forever(self) -> None:
        """Block until either listener stops."""
        self.bind()
        for server in self._servers:
            thread = threading.Thread(target=self._run, args=(server,), name=f"{server.scheme}-listener")
            thread.daemon = True
            thread.start()
        self._stopped.wait()

    def shutdown(self) -> None:
        for server in self._servers:
            server.shutdown()
        self._stopped.set()
