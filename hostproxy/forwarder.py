import logging
from typing import Iterator

import requests
from urllib3.exceptions import HTTPError as URLLib3Error

from .constants import BUFFER_SIZE
from .headers import sanitize_request_headers, sanitize_response_headers
from .models import HTTPRequest, HTTPResponse, RedirectEntry
from .resolver import ResolvingDialer
from .transport import new_session

logger = logging.getLogger(__name__)


class ProxyForwarder:
    """Forwards a request to its configured upstream and relays the answer."""

    def __init__(self, dialer: ResolvingDialer, clear_site_data: bool = False,
                 chunk_size: int = BUFFER_SIZE):
        """
        Initialize the forwarder.

        Args:
            dialer: Opens upstream connections through the override DNS server
            clear_site_data: Add ``Clear-Site-Data: *`` to every proxied response
            chunk_size: Size of the reads relayed from upstream to the client
        """
        self._dialer = dialer
        self._clear_site_data = clear_site_data
        self._chunk_size = chunk_size

    @staticmethod
    def build_url(request: HTTPRequest, entry: RedirectEntry) -> str:
        """The upstream is addressed by the client's own Host."""
        return f"{entry.scheme}://{request.host}{request.request_uri}"

    def forward(self, request: HTTPRequest, entry: RedirectEntry) -> HTTPResponse:
        url = self.build_url(request, entry)
        headers = sanitize_request_headers(request.headers)
        # The upstream sees the authority the request was routed on
        for name in [name for name in headers if name.lower() == 'host']:
            del headers[name]
        headers['Host'] = request.host
        auth = None
        if entry.auth is not None and entry.auth.is_set():
            auth = (entry.auth.username, entry.auth.password)

        session = new_session(self._dialer)
        try:
            upstream = session.request(
                request.method,
                url,
                headers=headers,
                data=request.body,
                auth=auth,
                stream=True,
                allow_redirects=False,
                timeout=(self._dialer.timeout, None)
            )
        except requests.RequestException as e:
            session.close()
            logger.error(f"Error forwarding {request.method} {url}: {e}")
            return HTTPResponse.create_error(500)

        logger.info(f"{request.method} {url} -> {upstream.status_code}")
        logger.debug(f"Upstream Cookie header: {upstream.headers.get('Cookie')}")

        response_headers = sanitize_response_headers(upstream.raw.headers)
        if self._clear_site_data:
            response_headers.append(('Clear-Site-Data', '*'))

        def close():
            upstream.close()
            session.close()

        return HTTPResponse(
            status_code=upstream.status_code,
            status_message=upstream.reason or '',
            headers=response_headers,
            body=self._relay(upstream),
            on_close=close
        )

    def _relay(self, upstream: requests.Response) -> Iterator[bytes]:
        """Yield the upstream body as received, content encoding untouched."""
        try:
            for chunk in upstream.raw.stream(self._chunk_size, decode_content=False):
                if chunk:
                    yield chunk
        except (URLLib3Error, OSError) as e:
            logger.debug(f"Upstream body relay from {upstream.url} ended early: {e}")
