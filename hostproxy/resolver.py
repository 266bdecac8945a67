"""
DNS resolution through one fixed name server.

Outbound connections never use the system resolver for the upstream host:
the host is looked up with a single A query against ``DNS_SERVER`` and the
first answer record decides where the socket goes.
"""
import logging
import socket
from typing import NamedTuple, Optional, Sequence, Tuple, Union

import dns.exception
import dns.message
import dns.query
import dns.rdatatype
from urllib3.util import connection

from .constants import DIAL_KEEPALIVE, DIAL_TIMEOUT, DNS_PORT, DNS_SERVER, DNS_TIMEOUT

logger = logging.getLogger(__name__)


class ResolutionError(Exception):
    """Raised when a host cannot be resolved through the override server."""


class ARecord(NamedTuple):
    address: str


class CNAMERecord(NamedTuple):
    target: str


class UnsupportedRecord(NamedTuple):
    rdtype: str


AnswerRecord = Union[ARecord, CNAMERecord, UnsupportedRecord]


class ResolvedAddress(NamedTuple):
    target: str
    port: str

    def __str__(self) -> str:
        return f"{self.target}:{self.port}"


class DNSOverrideResolver:
    """Resolves host names with one query to a fixed DNS server."""

    def __init__(self, nameserver: str = DNS_SERVER, port: int = DNS_PORT,
                 timeout: float = DNS_TIMEOUT):
        self._nameserver = nameserver
        self._port = port
        self._timeout = timeout

    @property
    def nameserver(self) -> str:
        return f"{self._nameserver}:{self._port}"

    def first_answer(self, host: str) -> AnswerRecord:
        """
        Query the A record of ``host`` and classify the first answer record.

        Raises:
            ResolutionError: If the exchange fails or the answer section is empty
        """
        qname = host if host.endswith('.') else host + '.'
        try:
            query = dns.message.make_query(qname, dns.rdatatype.A)
            response = dns.query.udp(query, self._nameserver, timeout=self._timeout,
                                     port=self._port)
        except (dns.exception.DNSException, OSError) as e:
            logger.error(f"DNS query for {qname} via {self.nameserver} failed: {e}")
            raise ResolutionError(f"{host} not found: {e}") from e

        for rrset in response.answer:
            for rdata in rrset:
                return _classify(rdata)

        logger.error(f"No DNS answer for {qname} via {self.nameserver}")
        raise ResolutionError(f"{host} not found")

    def resolve(self, host: str) -> str:
        """Return the address (or CNAME target) to connect to for ``host``."""
        record = self.first_answer(host)
        if isinstance(record, ARecord):
            logger.info(f"Resolved {host} to {record.address}")
            return record.address
        if isinstance(record, CNAMERecord):
            # The target is handed to the socket layer as-is.
            logger.info(f"Resolved {host} to CNAME {record.target}")
            return record.target
        logger.error(f"Unsupported {record.rdtype} record for {host}")
        raise ResolutionError(f"{host} not found: unsupported {record.rdtype} record")


def _classify(rdata) -> AnswerRecord:
    if rdata.rdtype == dns.rdatatype.A:
        return ARecord(rdata.address)
    if rdata.rdtype == dns.rdatatype.CNAME:
        return CNAMERecord(rdata.target.to_text(omit_final_dot=True))
    return UnsupportedRecord(dns.rdatatype.to_text(rdata.rdtype))


def split_address(address: str) -> Tuple[str, str]:
    """Split ``host:port`` into its parts."""
    host, sep, port = address.rpartition(':')
    if not sep or not host or not port.isdigit():
        raise ResolutionError(f"Invalid dial address: {address!r}")
    return host.strip('[]'), port


def keepalive_options(idle: int) -> list:
    """Socket options enabling TCP keep-alive probes every ``idle`` seconds."""
    options = [(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)]
    if hasattr(socket, 'TCP_KEEPIDLE'):
        options.append((socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, idle))
    if hasattr(socket, 'TCP_KEEPINTVL'):
        options.append((socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, idle))
    return options


class ResolvingDialer:
    """Opens TCP connections to addresses resolved by a DNSOverrideResolver."""

    def __init__(self, resolver: DNSOverrideResolver = None,
                 timeout: float = DIAL_TIMEOUT, keepalive: int = DIAL_KEEPALIVE):
        self._resolver = resolver or DNSOverrideResolver()
        self._timeout = timeout
        self._keepalive = keepalive

    @property
    def timeout(self) -> float:
        return self._timeout

    def resolve_address(self, address: str) -> ResolvedAddress:
        host, port = split_address(address)
        return ResolvedAddress(self._resolver.resolve(host), port)

    def dial(self, address: str, source_address: Optional[Tuple[str, int]] = None,
             socket_options: Optional[Sequence[tuple]] = None) -> socket.socket:
        """
        Resolve ``address`` and connect to the result.

        Raises:
            ResolutionError: If the host cannot be resolved
            OSError: If the connection cannot be established
        """
        resolved = self.resolve_address(address)
        logger.info(f"Dialing {address} at {resolved}")
        options = list(socket_options or []) + keepalive_options(self._keepalive)
        return connection.create_connection(
            (resolved.target, int(resolved.port)),
            timeout=self._timeout,
            source_address=source_address,
            socket_options=options
        )
