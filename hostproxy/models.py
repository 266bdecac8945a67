import http.client
from dataclasses import dataclass, field
from http import HTTPStatus
from types import MappingProxyType
from typing import Callable, Iterable, Iterator, List, Mapping, Optional, Tuple, Union
from urllib.parse import unquote, urlsplit

from .constants import BUFFER_SIZE

MAX_LINE = 65536


class BadRequestError(Exception):
    """Raised when an incoming request cannot be parsed."""


@dataclass(frozen=True)
class BasicAuth:
    """Credentials sent upstream as HTTP Basic authentication."""
    username: str = ""
    password: str = ""

    def is_set(self) -> bool:
        return bool(self.username) and bool(self.password)


@dataclass(frozen=True)
class RedirectEntry:
    """How to reach the upstream origin for one host."""
    scheme: str
    auth: Optional[BasicAuth] = None


@dataclass(frozen=True)
class Config:
    """Redirect map and MIME table, read-only once built."""
    redirects: Mapping[str, RedirectEntry] = field(default_factory=dict)
    mimes: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'redirects', MappingProxyType(dict(self.redirects)))
        object.__setattr__(self, 'mimes', MappingProxyType(dict(self.mimes)))


class LengthBodyReader:
    """Reads a request body delimited by Content-Length."""

    def __init__(self, rfile, length: int):
        self._rfile = rfile
        self._length = length
        self._remaining = length

    def __len__(self) -> int:
        return self._length

    def read(self, size: int = -1) -> bytes:
        if self._remaining <= 0:
            return b''
        if size is None or size < 0 or size > self._remaining:
            size = self._remaining
        data = self._rfile.read(size)
        if not data:
            raise ConnectionError("Client closed the connection before sending the full body")
        self._remaining -= len(data)
        return data

    def __iter__(self) -> Iterator[bytes]:
        while True:
            chunk = self.read(BUFFER_SIZE)
            if not chunk:
                return
            yield chunk


class ChunkedBodyReader:
    """
    Reads a request body sent with chunked transfer coding.

    Has no length on purpose so that the outbound request is chunked too.
    """

    def __init__(self, rfile):
        self._rfile = rfile
        self._chunk_left = 0
        self._done = False

    def _readline(self) -> bytes:
        line = self._rfile.readline(MAX_LINE + 1)
        if not line:
            raise ConnectionError("Client closed the connection inside a chunked body")
        if len(line) > MAX_LINE:
            raise BadRequestError("Chunk header line too long")
        return line

    def _next_chunk(self) -> None:
        line = self._readline().split(b';', 1)[0].strip()
        try:
            self._chunk_left = int(line, 16)
        except ValueError:
            raise BadRequestError(f"Invalid chunk size: {line!r}")
        if self._chunk_left == 0:
            # Trailers are discarded
            while self._readline() not in (b'\r\n', b'\n'):
                pass
            self._done = True

    def read(self, size: int = -1) -> bytes:
        if self._done:
            return b''
        if self._chunk_left == 0:
            self._next_chunk()
            if self._done:
                return b''
        if size is None or size < 0 or size > self._chunk_left:
            size = self._chunk_left
        data = self._rfile.read(size)
        if not data:
            raise ConnectionError("Client closed the connection inside a chunked body")
        self._chunk_left -= len(data)
        if self._chunk_left == 0:
            self._readline()  # CRLF after chunk data
        return data

    def __iter__(self) -> Iterator[bytes]:
        while True:
            chunk = self.read(BUFFER_SIZE)
            if not chunk:
                return
            yield chunk


@dataclass
class HTTPRequest:
    """Model representing an incoming HTTP request."""
    method: str
    target: str
    protocol: str
    headers: http.client.HTTPMessage
    body: Optional[Union[LengthBodyReader, ChunkedBodyReader]] = None

    @classmethod
    def from_stream(cls, rfile) -> Optional['HTTPRequest']:
        """
        Parse the request line and headers from a binary file object.

        Returns None if the client closed the connection before sending
        anything. The body is left on the stream behind a reader.
        """
        line = rfile.readline(MAX_LINE + 1)
        if line in (b'\r\n', b'\n'):
            line = rfile.readline(MAX_LINE + 1)
        if not line:
            return None
        if len(line) > MAX_LINE:
            raise BadRequestError("Request line too long")

        request_line = line.decode('iso-8859-1').rstrip('\r\n')
        parts = request_line.split()
        if len(parts) != 3:
            raise BadRequestError(f"Malformed request line: {request_line!r}")
        method, target, protocol = parts
        if not protocol.startswith('HTTP/1.'):
            raise BadRequestError(f"Unsupported protocol: {protocol}")

        try:
            headers = http.client.parse_headers(rfile)
        except http.client.HTTPException as e:
            raise BadRequestError(f"Invalid headers: {e}")

        return cls(
            method=method,
            target=target,
            protocol=protocol,
            headers=headers,
            body=cls._body_reader(rfile, headers)
        )

    @staticmethod
    def _body_reader(rfile, headers: http.client.HTTPMessage):
        transfer_encoding = headers.get('Transfer-Encoding', '')
        if 'chunked' in transfer_encoding.lower():
            return ChunkedBodyReader(rfile)

        content_length = headers.get('Content-Length')
        if content_length is None:
            return None
        try:
            length = int(content_length)
        except ValueError:
            raise BadRequestError(f"Invalid Content-Length: {content_length!r}")
        if length < 0:
            raise BadRequestError(f"Invalid Content-Length: {content_length!r}")
        return LengthBodyReader(rfile, length) if length else None

    @property
    def is_absolute_form(self) -> bool:
        return self.target.lower().startswith(('http://', 'https://'))

    @property
    def host(self) -> str:
        """Authority of the request; an absolute-form target wins over Host."""
        if self.is_absolute_form:
            return urlsplit(self.target).netloc
        return self.headers.get('Host', '')

    @property
    def request_uri(self) -> str:
        """Raw path and query, without scheme or authority."""
        if not self.is_absolute_form:
            return self.target
        parts = urlsplit(self.target)
        uri = parts.path or '/'
        if parts.query:
            uri += '?' + parts.query
        return uri

    @property
    def path(self) -> str:
        """Percent-decoded path component."""
        return unquote(self.request_uri.split('?', 1)[0])

    @property
    def expects_continue(self) -> bool:
        return (self.protocol == 'HTTP/1.1'
                and self.headers.get('Expect', '').lower() == '100-continue')


@dataclass
class HTTPResponse:
    """Model representing an HTTP response on its way to the client."""
    status_code: int
    status_message: str
    headers: List[Tuple[str, str]]
    body: Union[bytes, Iterable[bytes]] = b''
    on_close: Optional[Callable[[], None]] = None

    def head_bytes(self) -> bytes:
        """Status line and headers, terminated by the blank line."""
        reason = self.status_message or _reason(self.status_code)
        lines = [f"HTTP/1.1 {self.status_code} {reason}"]
        lines.extend(f"{name}: {value}" for name, value in self.headers)
        lines.append("Connection: close")
        return ('\r\n'.join(lines) + '\r\n\r\n').encode('iso-8859-1', errors='replace')

    def write_to(self, wfile, include_body: bool = True) -> None:
        wfile.write(self.head_bytes())
        if include_body:
            if isinstance(self.body, bytes):
                wfile.write(self.body)
            else:
                wfile.flush()
                for chunk in self.body:
                    wfile.write(chunk)
                    wfile.flush()
        wfile.flush()

    def close(self) -> None:
        if self.on_close is not None:
            self.on_close()
            self.on_close = None

    @classmethod
    def create_error(cls, status_code: int, message: str = None) -> 'HTTPResponse':
        """Create an error response."""
        message = message or _reason(status_code)
        body = message.encode('utf-8')
        return cls(
            status_code=status_code,
            status_message=_reason(status_code),
            headers=[
                ('Content-Type', 'text/plain; charset=utf-8'),
                ('Content-Length', str(len(body)))
            ],
            body=body
        )


def _reason(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return ''
