import unittest
from unittest import mock
import logging
import sys
import os

import dns.exception
import dns.message
import dns.rdatatype
import dns.rrset
from urllib3.exceptions import NewConnectionError

# Add the parent directory to the Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from hostproxy.resolver import (
    ARecord, CNAMERecord, DNSOverrideResolver, ResolutionError, ResolvedAddress,
    ResolvingDialer, UnsupportedRecord, split_address
)
from hostproxy.transport import ResolvingAdapter, new_session, pool_classes

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def dns_response(name, *records):
    """Build a DNS response to an A query for ``name`` carrying ``records``."""
    query = dns.message.make_query(name, dns.rdatatype.A)
    response = dns.message.make_response(query)
    for rdtype, value in records:
        response.answer.append(dns.rrset.from_text(name, 300, 'IN', rdtype, value))
    return response


class TestDNSOverrideResolver(unittest.TestCase):
    """Test cases for the fixed-server DNS resolver."""

    def setUp(self):
        self.resolver = DNSOverrideResolver()

    @mock.patch('dns.query.udp')
    def test_a_record_gives_address(self, udp):
        # Arrange
        udp.return_value = dns_response('example.com.', ('A', '93.184.216.34'))

        # Act
        target = self.resolver.resolve('example.com')

        # Assert
        self.assertEqual(target, '93.184.216.34')
        query, where = udp.call_args[0]
        self.assertEqual(where, '8.8.8.8')
        self.assertEqual(udp.call_args[1]['port'], 53)
        self.assertEqual(query.question[0].name.to_text(), 'example.com.')
        self.assertEqual(query.question[0].rdtype, dns.rdatatype.A)
        logger.info("[PASSED] test_a_record_gives_address")

    @mock.patch('dns.query.udp')
    def test_trailing_dot_not_doubled(self, udp):
        # Arrange
        udp.return_value = dns_response('example.com.', ('A', '10.0.0.1'))

        # Act
        self.resolver.resolve('example.com.')

        # Assert
        query = udp.call_args[0][0]
        self.assertEqual(query.question[0].name.to_text(), 'example.com.')

    @mock.patch('dns.query.udp')
    def test_cname_gives_bare_target(self, udp):
        # Arrange
        udp.return_value = dns_response('www.example.com.', ('CNAME', 'edge.example.net.'))

        # Act
        record = self.resolver.first_answer('www.example.com')
        target = self.resolver.resolve('www.example.com')

        # Assert
        self.assertEqual(record, CNAMERecord('edge.example.net'))
        self.assertEqual(target, 'edge.example.net')
        logger.info("[PASSED] test_cname_gives_bare_target")

    @mock.patch('dns.query.udp')
    def test_only_first_record_counts(self, udp):
        # Arrange
        udp.return_value = dns_response(
            'example.com.', ('A', '10.0.0.1'), ('CNAME', 'other.example.net.')
        )

        # Act
        record = self.resolver.first_answer('example.com')

        # Assert
        self.assertEqual(record, ARecord('10.0.0.1'))

    @mock.patch('dns.query.udp')
    def test_unsupported_record_is_an_error(self, udp):
        # Arrange
        udp.return_value = dns_response('example.com.', ('MX', '10 mail.example.com.'))

        # Act
        record = self.resolver.first_answer('example.com')

        # Assert
        self.assertEqual(record, UnsupportedRecord('MX'))
        with self.assertRaises(ResolutionError):
            self.resolver.resolve('example.com')

    @mock.patch('dns.query.udp')
    def test_empty_answer_is_not_found(self, udp):
        # Arrange
        udp.return_value = dns_response('example.com.')

        # Act and Assert
        with self.assertRaises(ResolutionError) as ctx:
            self.resolver.resolve('example.com')
        self.assertIn('not found', str(ctx.exception))
        logger.info("[PASSED] test_empty_answer_is_not_found")

    @mock.patch('dns.query.udp')
    def test_exchange_failure_propagates(self, udp):
        # Arrange
        udp.side_effect = dns.exception.Timeout()

        # Act and Assert
        with self.assertRaises(ResolutionError) as ctx:
            self.resolver.resolve('example.com')
        self.assertIsInstance(ctx.exception.__cause__, dns.exception.Timeout)

    @mock.patch('dns.query.udp')
    def test_network_error_propagates(self, udp):
        # Arrange
        udp.side_effect = OSError("Network is unreachable")

        # Act and Assert
        with self.assertRaises(ResolutionError):
            self.resolver.resolve('example.com')


class StaticResolver:
    """Resolver double answering every host with one address."""

    def __init__(self, target):
        self.target = target
        self.calls = []

    def resolve(self, host):
        self.calls.append(host)
        return self.target


class FailingResolver:
    def resolve(self, host):
        raise ResolutionError(f"{host} not found")


class TestResolvingDialer(unittest.TestCase):
    """Test cases for the dialer that swaps in resolved addresses."""

    def test_split_address(self):
        self.assertEqual(split_address('example.com:443'), ('example.com', '443'))
        self.assertEqual(split_address('[::1]:80'), ('::1', '80'))
        for bad in ('example.com', 'example.com:', ':80', 'example.com:http'):
            with self.assertRaises(ResolutionError):
                split_address(bad)

    def test_resolve_address_keeps_port(self):
        # Arrange
        resolver = StaticResolver('93.184.216.34')
        dialer = ResolvingDialer(resolver)

        # Act
        resolved = dialer.resolve_address('example.com:8443')

        # Assert
        self.assertEqual(resolved, ResolvedAddress('93.184.216.34', '8443'))
        self.assertEqual(str(resolved), '93.184.216.34:8443')
        self.assertEqual(resolver.calls, ['example.com'])

    def test_every_dial_resolves_again(self):
        # Arrange
        resolver = StaticResolver('10.0.0.1')
        dialer = ResolvingDialer(resolver)

        # Act
        dialer.resolve_address('example.com:80')
        dialer.resolve_address('example.com:80')

        # Assert
        self.assertEqual(resolver.calls, ['example.com', 'example.com'])

    @mock.patch('hostproxy.resolver.connection.create_connection')
    def test_dial_connects_to_resolved_address(self, create_connection):
        # Arrange
        dialer = ResolvingDialer(StaticResolver('10.0.0.1'), timeout=30.0)

        # Act
        sock = dialer.dial('example.com:443')

        # Assert
        self.assertIs(sock, create_connection.return_value)
        args, kwargs = create_connection.call_args
        self.assertEqual(args[0], ('10.0.0.1', 443))
        self.assertEqual(kwargs['timeout'], 30.0)
        self.assertTrue(kwargs['socket_options'])
        logger.info("[PASSED] test_dial_connects_to_resolved_address")

    @mock.patch('hostproxy.resolver.connection.create_connection')
    def test_dial_does_not_connect_when_resolution_fails(self, create_connection):
        dialer = ResolvingDialer(FailingResolver())

        with self.assertRaises(ResolutionError):
            dialer.dial('example.com:443')
        create_connection.assert_not_called()


class TestTransport(unittest.TestCase):
    """Test cases for the requests adapter built on the dialer."""

    def test_resolution_failure_becomes_connection_error(self):
        # Arrange
        dialer = ResolvingDialer(FailingResolver())
        connection_cls = pool_classes(dialer)['http'].ConnectionCls
        conn = connection_cls('example.com', 80)

        # Act and Assert
        with self.assertRaises(NewConnectionError):
            conn._new_conn()

    def test_connections_use_given_dialer(self):
        dialer = ResolvingDialer(StaticResolver('10.0.0.1'))
        classes = pool_classes(dialer)

        self.assertIs(classes['http'].ConnectionCls.dialer, dialer)
        self.assertIs(classes['https'].ConnectionCls.dialer, dialer)

    def test_new_session_is_isolated(self):
        # Arrange
        dialer = ResolvingDialer(StaticResolver('10.0.0.1'))

        # Act
        session = new_session(dialer)

        # Assert
        self.assertEqual(len(session.headers), 0)
        self.assertFalse(session.trust_env)
        for prefix in ('http://', 'https://'):
            adapter = session.get_adapter(prefix + 'example.com/')
            self.assertIsInstance(adapter, ResolvingAdapter)
            self.assertIs(adapter.dialer, dialer)
        session.close()


if __name__ == '__main__':
    unittest.main()
