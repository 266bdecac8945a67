from typing import Dict, Iterable, List, Tuple

from .constants import FORBIDDEN_HEADERS, HOP_BY_HOP_HEADERS

# The client's expectation is answered by the proxy itself.
REQUEST_ONLY_HEADERS = frozenset({'expect'})


def is_forbidden(name: str) -> bool:
    """Whether ``name`` must never be copied between client and upstream."""
    return name.lower() in FORBIDDEN_HEADERS


def _connection_tokens(pairs: List[Tuple[str, str]]) -> set:
    tokens = set()
    for name, value in pairs:
        if name.lower() == 'connection':
            tokens.update(t.strip().lower() for t in value.split(',') if t.strip())
    return tokens


def sanitize(pairs: Iterable[Tuple[str, str]], extra: Iterable[str] = ()) -> List[Tuple[str, str]]:
    """
    Drop forbidden and hop-by-hop headers, keeping the order and repeats
    of everything else.
    """
    pairs = list(pairs)
    dropped = FORBIDDEN_HEADERS | HOP_BY_HOP_HEADERS | _connection_tokens(pairs) | set(extra)
    return [(name, value) for name, value in pairs if name.lower() not in dropped]


def sanitize_request_headers(message) -> Dict[str, str]:
    """
    Headers to send upstream, from the client's parsed headers.

    Repeated headers are folded into one value since the outbound client
    takes a mapping.
    """
    folded: Dict[str, str] = {}
    names: Dict[str, str] = {}
    for name, value in sanitize(message.items(), extra=REQUEST_ONLY_HEADERS):
        key = name.lower()
        if key in names:
            separator = '; ' if key == 'cookie' else ', '
            folded[names[key]] += separator + value
        else:
            names[key] = name
            folded[name] = value
    return folded


def sanitize_response_headers(headers) -> List[Tuple[str, str]]:
    """Headers to send back to the client, from the upstream's header dict."""
    pairs = [(name, value) for name in headers.keys() for value in headers.getlist(name)]
    return sanitize(pairs)
