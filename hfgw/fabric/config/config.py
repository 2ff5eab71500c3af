import collections
import copy
import logging
import os

import yaml

try:
    from yaml import CSafeLoader as Loader
except ImportError:
    from yaml import SafeLoader as Loader

from hfgw.fabric.errors import InvalidEndpoint
from hfgw.fabric.remote import Endpoint

ENV_PEER_ENDPOINT = 'FABRIC_PEERENDPOINT'
ENV_MSPID = 'FABRIC_MSPID'

_logger = logging.getLogger(__name__)

Timeouts = collections.namedtuple('Timeouts', ['evaluate', 'endorse', 'submit', 'commit_status'])

# seconds; evaluate is one short round trip, commit-wait spans block cutting
DEFAULT_TIMEOUTS = Timeouts(evaluate=5, endorse=15, submit=5, commit_status=60)

DEFAULT_SETTINGS = {
    'client': {
        'channel': 'mychannel',
        'timeouts': DEFAULT_TIMEOUTS._asdict(),
        'wait_for_ready': False,
        'wait_for_ready_timeout': 3,
        'close_timeout': 5,
    },
    'peers': {},
    'orderers': {},
    'organizations': {},
    'policy': None,
    'connection-options': {},
}

# keys holding file paths, resolved against the directory of the profile
_PEER_PATH_KEYS = ('tls_ca_cert', 'client_cert', 'client_key')


def _merge(base, override):
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def _resolve(path, base_dir):
    if not path or os.path.isabs(path) or base_dir is None:
        return path
    return os.path.normpath(os.path.join(base_dir, path))


class Config(object):
    """Client settings: defaults, then profile files in load order, then
    environment overrides (FABRIC_PEERENDPOINT, FABRIC_MSPID).

    Profile layout (YAML)::

        client:
          mspid: Org1MSP
          channel: mychannel
          credentials: {keystore: ..., signcerts: ...}
          evaluate_peer: peer0.org1.example.com
          timeouts: {evaluate: 5, endorse: 15, submit: 5, commit_status: 60}
        peers:
          peer0.org1.example.com:
            url: grpcs://34.100.239.129:7051
            mspid: Org1MSP
            tls_ca_cert: tls/ca.crt
            ssl-target-name-override: peer0.org1.example.com
        orderers:
          orderer.example.com: {url: grpcs://..., tls_ca_cert: ...}
        organizations:
          Org1MSP: {root_certs: [msp/cacerts/ca.pem]}
        policy: {min_endorsements: 1}
        connection-options:
          grpc.keepalive_time_ms: 120000
    """

    def __init__(self, settings=None, environ=None):
        self._fileStores = []
        self._config = copy.deepcopy(DEFAULT_SETTINGS)
        self._environ = os.environ if environ is None else environ
        if settings:
            _merge(self._config, copy.deepcopy(settings))

    @classmethod
    def from_file(cls, path, environ=None):
        config = cls(environ=environ)
        config.file(path)
        return config

    def file(self, path):
        if not isinstance(path, str):
            raise TypeError('The "path" parameter must be a string')

        with open(path, 'r') as f:
            settings = yaml.load(f, Loader=Loader) or {}

        if not isinstance(settings, dict):
            raise ValueError(f'Network profile {path} must be a mapping')

        self._resolve_paths(settings, os.path.dirname(os.path.abspath(path)))
        _merge(self._config, settings)
        self._fileStores.append(path)
        _logger.debug(f'file - loaded {path}')

    @staticmethod
    def _resolve_paths(settings, base_dir):
        credentials = settings.get('client', {}).get('credentials') or {}
        for key in ('keystore', 'signcerts'):
            if key in credentials:
                credentials[key] = _resolve(credentials[key], base_dir)

        for section in ('peers', 'orderers'):
            for node in (settings.get(section) or {}).values():
                for key in _PEER_PATH_KEYS:
                    if key in node:
                        node[key] = _resolve(node[key], base_dir)

        for org in (settings.get('organizations') or {}).values():
            if org and 'root_certs' in org:
                org['root_certs'] = [_resolve(path, base_dir) for path in org['root_certs']]

    def get(self, name, default_value=None):
        """Look up a setting by dotted path, e.g. ``client.timeouts.endorse``."""
        node = self._config
        for part in name.split('.'):
            if not isinstance(node, dict) or part not in node:
                return default_value
            node = node[part]
        return node

    def set(self, name, value):
        parts = name.split('.')
        node = self._config
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        node[parts[-1]] = value

    @property
    def files(self):
        return list(self._fileStores)

    @property
    def mspid(self):
        return self._environ.get(ENV_MSPID) or self.get('client.mspid')

    @property
    def channel(self):
        return self.get('client.channel')

    @property
    def timeouts(self):
        values = dict(DEFAULT_TIMEOUTS._asdict())
        values.update(self.get('client.timeouts') or {})
        return Timeouts(**{field: float(values[field]) for field in Timeouts._fields})

    @property
    def credentials(self):
        credentials = self.get('client.credentials') or {}
        return credentials.get('keystore'), credentials.get('signcerts')

    @property
    def evaluate_peer(self):
        return self.get('client.evaluate_peer') or next(iter(self.get('peers')), None)

    @property
    def commit_peer(self):
        return self.get('client.commit_peer') or self.evaluate_peer

    @property
    def connection_options(self):
        return dict(self.get('connection-options') or {})

    def peers(self):
        """Peer settings by name; FABRIC_PEERENDPOINT replaces the url of the
        evaluate peer."""
        peers = copy.deepcopy(self.get('peers') or {})
        override = self._environ.get(ENV_PEER_ENDPOINT)
        if override and self.evaluate_peer in peers:
            peers[self.evaluate_peer]['url'] = override
        return peers

    def orderers(self):
        return copy.deepcopy(self.get('orderers') or {})

    def root_certs(self):
        """``{mspid: [PEM bytes, ...]}`` read from the configured files."""
        msps = {}
        for mspid, org in (self.get('organizations') or {}).items():
            pems = []
            for path in (org or {}).get('root_certs', []):
                with open(path, 'rb') as f:
                    pems.append(f.read())
            msps[mspid] = pems
        return msps

    def validate(self):
        if not self.mspid:
            raise ValueError('client.mspid must be configured')
        if not self.channel:
            raise ValueError('client.channel must be configured')
        peers = self.peers()
        if not peers:
            raise ValueError('at least one peer must be configured')
        if self.evaluate_peer not in peers:
            raise ValueError(f'evaluate peer {self.evaluate_peer} is not a configured peer')
        if self.commit_peer not in peers:
            raise ValueError(f'commit peer {self.commit_peer} is not a configured peer')
        if not self.orderers():
            raise ValueError('at least one orderer must be configured')
        for name, node in list(peers.items()) + list(self.orderers().items()):
            if not node or not node.get('url'):
                raise InvalidEndpoint(f'{name} has no url')
            Endpoint(node['url'])
        keystore, signcerts = self.credentials
        if not keystore or not signcerts:
            raise ValueError('client.credentials.keystore and client.credentials.signcerts must be configured')
