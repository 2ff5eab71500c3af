import asyncio
import logging
import os
from urllib.parse import urlparse

import grpc

from hfgw.fabric.errors import (ChannelConnectionError, InvalidEndpoint, Phase, TrustAnchorInvalid,
                                TrustAnchorNotFound)
from hfgw.util.crypto.crypto import ecies

MAX_SEND = 'grpc.max_send_message_length'
MAX_RECEIVE = 'grpc.max_receive_message_length'
KEEPALIVE_TIME = 'grpc.keepalive_time_ms'
KEEPALIVE_TIMEOUT = 'grpc.keepalive_timeout_ms'
KEEPALIVE_PERMIT_WITHOUT_CALLS = 'grpc.keepalive_permit_without_calls'
MAX_PINGS_WITHOUT_DATA = 'grpc.http2.max_pings_without_data'
SSL_TARGET_NAME_OVERRIDE = 'grpc.ssl_target_name_override'
DEFAULT_AUTHORITY = 'grpc.default_authority'

DEFAULT_CONNECTION_OPTIONS = {
    KEEPALIVE_TIME: 120000,
    KEEPALIVE_TIMEOUT: 20000,
    KEEPALIVE_PERMIT_WITHOUT_CALLS: 1,
    MAX_PINGS_WITHOUT_DATA: 0,
    MAX_SEND: -1,  # unlimited
    MAX_RECEIVE: -1,
}

DEFAULT_CLOSE_GRACE = 5  # seconds

SECURE_SCHEMES = ('grpcs', 'secure')
PLAINTEXT_SCHEMES = ('grpc', 'plaintext')

_logger = logging.getLogger(__name__)


class Endpoint(object):
    """``scheme://host:port`` where scheme selects TLS (grpcs, secure) or
    plaintext (grpc, plaintext)."""

    def __init__(self, url):
        if not isinstance(url, str) or '://' not in url:
            raise InvalidEndpoint(f'Invalid endpoint: {url!r}. Expected scheme://host:port', phase=Phase.CONNECT)

        purl = urlparse(url)
        self.protocol = purl.scheme.lower()

        if self.protocol not in SECURE_SCHEMES + PLAINTEXT_SCHEMES:
            raise InvalidEndpoint(f'Invalid protocol: {purl.scheme}. URLs must begin with grpc://, grpcs://,'
                                  f' plaintext:// or secure://', phase=Phase.CONNECT)

        try:
            port = purl.port
        except ValueError as e:
            raise InvalidEndpoint(f'Invalid port in endpoint {url}', phase=Phase.CONNECT) from e

        if not purl.hostname or port is None:
            raise InvalidEndpoint(f'Invalid endpoint format: {url}. Expected format like grpcs://host:port',
                                  phase=Phase.CONNECT)
        if purl.path not in ('', '/') or purl.query:
            raise InvalidEndpoint(f'Unexpected path in endpoint {url}', phase=Phase.CONNECT)

        self.url = url
        self.host = purl.hostname
        self.port = port
        if ':' in self.host:
            self.addr = f'[{self.host}]:{port}'
        else:
            self.addr = f'{self.host}:{port}'

    def isTLS(self):
        return self.protocol in SECURE_SCHEMES

    def __str__(self):
        return self.url


class ChannelHandle(object):
    """One long-lived gRPC channel. Safe for concurrent calls; only the
    :class:`ChannelManager` that opened it closes it."""

    def __init__(self, endpoint, channel, options):
        self._endpoint = endpoint
        self._channel = channel
        self._options = options
        self._closed = False

    @property
    def endpoint(self):
        return self._endpoint

    @property
    def options(self):
        return dict(self._options)

    @property
    def closed(self):
        return self._closed

    @property
    def channel(self):
        if self._closed:
            raise ChannelConnectionError(f'Channel to {self._endpoint} is closed', phase=Phase.CONNECT)
        return self._channel

    async def wait_ready(self, timeout):
        try:
            await asyncio.wait_for(self.channel.channel_ready(), timeout)
        except asyncio.TimeoutError as e:
            raise ChannelConnectionError(f'{self._endpoint} not ready after {timeout}s', phase=Phase.CONNECT) from e

    async def _close(self, grace):
        if self._closed:
            return
        self._closed = True
        _logger.debug(f'close - closing connection {self._endpoint.addr} grace: {grace}')
        try:
            # in-flight calls get `grace` seconds, then are cancelled
            await asyncio.wait_for(self._channel.close(grace), grace + 1)
        except asyncio.TimeoutError:
            _logger.warning(f'close - {self._endpoint.addr} did not drain in {grace}s, forcing')
            await self._channel.close(None)

    def __str__(self):
        return f'ChannelHandle: {self._endpoint}'


class ChannelManager(object):
    """Opens and closes the channels to peers and ordering nodes.

    Args:
        options: grpc channel options merged over DEFAULT_CONNECTION_OPTIONS
        cryptoSuite: used to check trust anchors parse before use
    """

    def __init__(self, options=None, cryptoSuite=None):
        self._options = dict(DEFAULT_CONNECTION_OPTIONS)
        for key, value in (options or {}).items():
            if value is not None and not isinstance(value, (str, int)):
                raise ValueError(f'invalid grpc option value:{key}-> {value} expected string|integer')
            self._options[key] = value
        self._cryptoSuite = cryptoSuite or ecies()
        self._handles = []

    @property
    def handles(self):
        return list(self._handles)

    def open(self, endpoint, trust_anchor=None, authority_override=None, client_cert=None, client_key=None):
        """Create a channel. No network traffic happens here.

        Args:
            endpoint: ``scheme://host:port``
            trust_anchor: path of the peer's TLS CA certificate, required for
                secure endpoints
            authority_override: host name expected in the peer certificate,
                for when the endpoint is an IP address
            client_cert: PEM bytes of a TLS client certificate (mutual TLS)
            client_key: PEM bytes of the matching key
        Returns: ChannelHandle
        """
        if not isinstance(endpoint, Endpoint):
            endpoint = Endpoint(endpoint)

        options = dict(self._options)
        if authority_override:
            options[DEFAULT_AUTHORITY] = authority_override
            if endpoint.isTLS():
                options[SSL_TARGET_NAME_OVERRIDE] = authority_override

        if endpoint.isTLS():
            credentials = grpc.ssl_channel_credentials(
                self._load_trust_anchor(trust_anchor),
                private_key=client_key if client_cert and client_key else None,
                certificate_chain=client_cert if client_cert and client_key else None)
            channel = grpc.aio.secure_channel(endpoint.addr, credentials, list(options.items()))
        else:
            channel = grpc.aio.insecure_channel(endpoint.addr, list(options.items()))

        handle = ChannelHandle(endpoint, channel, options)
        self._handles.append(handle)
        _logger.debug(f'open - {endpoint.addr} tls: {endpoint.isTLS()}, options loaded are:: {options}')
        return handle

    async def close(self, handle, grace=DEFAULT_CLOSE_GRACE):
        """Idempotent; waits at most about ``grace`` seconds for in-flight calls."""
        await handle._close(grace)
        if handle in self._handles:
            self._handles.remove(handle)

    async def close_all(self, grace=DEFAULT_CLOSE_GRACE):
        handles, self._handles = self._handles, []
        await asyncio.gather(*(handle._close(grace) for handle in handles))

    def _load_trust_anchor(self, path):
        if not path or not os.path.isfile(path):
            raise TrustAnchorNotFound(f'TLS certificate file not found at: {path}', phase=Phase.CONNECT)

        with open(path, 'rb') as f:
            pem = f.read()

        try:
            self._cryptoSuite.load_certificate(pem)
        except ValueError as e:
            raise TrustAnchorInvalid(f'TLS certificate at {path} does not parse: {e}', phase=Phase.CONNECT) from e
        return pem


class Remote(object):
    """A named node reached over a :class:`ChannelHandle`."""

    def __init__(self, name, handle, mspid=None, request_timeout=None):
        if not handle:
            raise ValueError('Missing channel handle')
        self._name = name or handle.endpoint.addr
        self._handle = handle
        self._mspid = mspid
        self._request_timeout = request_timeout

        _logger.debug(f' ** Remote instance url: {handle.endpoint}, name: {self._name}')

    @property
    def name(self):
        return self._name

    @property
    def url(self):
        return self._handle.endpoint.url

    @property
    def mspid(self):
        return self._mspid

    @property
    def handle(self):
        return self._handle

    def _timeout(self, timeout):
        return timeout if timeout is not None else self._request_timeout

    def isTLS(self):
        return self._handle.endpoint.isTLS()

    def __str__(self):
        return f'Remote: {self.url}'
