import logging
import os
import stat
from email.utils import formatdate, parsedate_to_datetime
from typing import Iterator, Mapping, Optional

from .constants import BUFFER_SIZE, INDEX_FILE, STATIC_ROOT
from .models import HTTPRequest, HTTPResponse

logger = logging.getLogger(__name__)


class StaticFiles:
    """Serves files from a fixed root directory."""

    def __init__(self, mimes: Mapping[str, str], root: str = STATIC_ROOT):
        """
        Args:
            mimes: Extension (with leading dot) to MIME type
            root: Directory files are served from
        """
        self._mimes = mimes
        self._root = root

    def resolve_path(self, url_path: str) -> str:
        """URL path of the file to serve; directories map to their index file."""
        if url_path == '' or url_path.endswith('/'):
            return url_path + INDEX_FILE
        return url_path

    def content_type(self, path: str) -> Optional[str]:
        return self._mimes.get(extension(path))

    def serve(self, request: HTTPRequest) -> HTTPResponse:
        url_path = request.path
        if '..' in url_path.split('/'):
            return HTTPResponse.create_error(400, "invalid URL path")

        path = self.resolve_path(url_path)
        file_path = os.path.join(self._root, path.lstrip('/'))

        try:
            st = os.stat(file_path)
        except (FileNotFoundError, NotADirectoryError):
            return HTTPResponse.create_error(404, "404 page not found")
        except PermissionError:
            return HTTPResponse.create_error(403, "403 Forbidden")
        except OSError as e:
            logger.error(f"Error reading {file_path}: {e}")
            return HTTPResponse.create_error(500, "500 Internal Server Error")

        if stat.S_ISDIR(st.st_mode):
            return HTTPResponse(
                status_code=301,
                status_message="Moved Permanently",
                headers=[('Location', url_path + '/'), ('Content-Length', '0')]
            )

        headers = []
        mime = self.content_type(path)
        if mime:
            headers.append(('Content-Type', mime))
        headers.append(('Last-Modified', formatdate(st.st_mtime, usegmt=True)))

        if _not_modified(request.headers.get('If-Modified-Since'), st.st_mtime):
            return HTTPResponse(status_code=304, status_message="Not Modified", headers=headers)

        try:
            f = open(file_path, 'rb')
        except PermissionError:
            return HTTPResponse.create_error(403, "403 Forbidden")
        except OSError as e:
            logger.error(f"Error opening {file_path}: {e}")
            return HTTPResponse.create_error(500, "500 Internal Server Error")

        headers.append(('Content-Length', str(st.st_size)))
        return HTTPResponse(
            status_code=200,
            status_message="OK",
            headers=headers,
            body=_read_chunks(f),
            on_close=f.close
        )


def extension(path: str) -> str:
    """Suffix from the last dot of the final path element, dotfiles included."""
    name = path.rsplit('/', 1)[-1]
    dot = name.rfind('.')
    return name[dot:] if dot >= 0 else ''


def _read_chunks(f) -> Iterator[bytes]:
    while True:
        chunk = f.read(BUFFER_SIZE)
        if not chunk:
            return
        yield chunk


def _not_modified(if_modified_since: Optional[str], mtime: float) -> bool:
    if not if_modified_since:
        return False
    try:
        since = parsedate_to_datetime(if_modified_since)
    except (TypeError, ValueError):
        return False
    if since is None:
        return False
    # HTTP dates have one-second resolution
    return int(mtime) <= since.timestamp()
