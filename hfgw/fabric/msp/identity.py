import logging

from hfgw.protos.utils import create_serialized_identity
from hfgw.util.crypto.crypto import ecies

_logger = logging.getLogger(__name__)
_logger.setLevel(logging.DEBUG)


class Identity(object):
    """X.509 identity of a member of an MSP. Immutable once built."""

    __slots__ = ('_certificate', '_x509', '_publicKey', '_mspId', '_cryptoSuite', '_serialized')

    def __init__(self, certificate, mspId, cryptoSuite=None):

        if not certificate:
            raise ValueError('Missing required parameter "certificate".')

        if not mspId:
            raise ValueError('Missing required parameter "mspId".')

        self._cryptoSuite = cryptoSuite or ecies()
        self._certificate = certificate
        self._x509 = self._cryptoSuite.load_certificate(certificate)
        self._publicKey = self._x509.public_key()
        self._mspId = mspId
        self._serialized = create_serialized_identity(mspId, certificate)

    def __setattr__(self, name, value):
        if hasattr(self, '_serialized'):
            raise AttributeError('Identity is immutable')
        object.__setattr__(self, name, value)

    @property
    def mspid(self):
        return self._mspId

    @property
    def certificate(self):
        """PEM bytes of the certificate."""
        return self._certificate

    @property
    def x509(self):
        return self._x509

    @property
    def public_key(self):
        return self._publicKey

    def verify(self, digest, signature):
        return self._cryptoSuite.verify(self._publicKey, signature, digest)

    def serialize(self):
        return self._serialized

    def __eq__(self, other):
        return isinstance(other, Identity) and self._serialized == other._serialized

    def __hash__(self):
        return hash(self._serialized)

    def __repr__(self):
        return f'Identity(mspid={self._mspId}, subject={self._x509.subject.rfc4514_string()})'


class Signer(object):
    """Signing capability over a private key that only lives in memory."""

    def __init__(self, cryptoSuite, key):
        if not cryptoSuite:
            raise ValueError('Missing required parameter "cryptoSuite"')

        if not key:
            raise ValueError('Missing required parameter "key" for private key')

        self._cryptoSuite = cryptoSuite
        self._key = key

    @property
    def closed(self):
        return self._key is None

    def sign(self, digest):
        if self._key is None:
            raise RuntimeError('Signer has been closed')
        return self._cryptoSuite.sign(self._key, digest)

    def close(self):
        # drops the only reference to the key object
        self._key = None

    def __repr__(self):
        return f'Signer(closed={self.closed})'

    def __reduce__(self):
        raise TypeError('Signer cannot be serialized')


class SigningIdentity(object):
    """Pairs an :class:`Identity` with its :class:`Signer`.

    The gateway swaps the whole pair on credential reload, so a call that
    started with one pair finishes with it.
    """

    __slots__ = ('identity', 'signer')

    def __init__(self, identity, signer):
        if not identity:
            raise ValueError('Missing required parameter "identity".')
        if not signer:
            raise ValueError('Missing required parameter "signer".')
        self.identity = identity
        self.signer = signer

    @property
    def mspid(self):
        return self.identity.mspid

    def serialize(self):
        return self.identity.serialize()

    def sign(self, digest):
        return self.signer.sign(digest)
