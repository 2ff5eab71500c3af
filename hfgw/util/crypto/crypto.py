import hashlib
import logging
import os

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed, decode_dss_signature, encode_dss_signature

CURVE_P_256_Size = 256
SHA2 = 'SHA2'
DEFAULT_NONCE_SIZE = 24

# group order of P-256, used for low-S normalisation
_P256_ORDER = 0xFFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551
_HALF_ORDER = _P256_ORDER >> 1

_logger = logging.getLogger(__name__)


class Ecies(object):
    """ECDSA over P-256 with SHA-256, the suite used for every signature the
    client produces or checks.

    Signatures are DER encoded and normalised to low-S so that a signature has
    exactly one valid encoding; verification rejects high-S signatures.
    """

    def __init__(self, security_level=CURVE_P_256_Size, hash_algorithm=SHA2):
        if security_level != CURVE_P_256_Size or hash_algorithm != SHA2:
            raise ValueError(f'Unsupported security level {security_level} / hash {hash_algorithm}')
        self._curve = ec.SECP256R1
        self._security_level = security_level
        self._hash_algorithm = hash_algorithm

    @property
    def curve(self):
        return self._curve

    def hash(self, message):
        return hashlib.sha256(message).digest()

    def sign(self, private_key, digest):
        """Sign an already computed SHA-256 digest.

        Returns: DER encoded low-S signature
        """
        signature = private_key.sign(digest, ec.ECDSA(Prehashed(hashes.SHA256())))
        return _prevent_malleability(signature)

    def verify(self, public_key, signature, digest):
        if not isinstance(public_key, ec.EllipticCurvePublicKey):
            return False
        try:
            _, s = decode_dss_signature(signature)
        except ValueError:
            return False
        if s > _HALF_ORDER:
            _logger.debug('verify - rejecting high-S signature')
            return False
        try:
            public_key.verify(signature, digest, ec.ECDSA(Prehashed(hashes.SHA256())))
        except InvalidSignature:
            return False
        return True

    @staticmethod
    def generate_nonce(size=DEFAULT_NONCE_SIZE):
        return os.urandom(size)

    @staticmethod
    def load_certificate(pem):
        """Parse a PEM certificate; raises ValueError when it does not parse."""
        return x509.load_pem_x509_certificate(pem)

    @staticmethod
    def load_private_key(pem):
        """Parse an unencrypted PEM private key; only EC keys are accepted."""
        try:
            key = serialization.load_pem_private_key(pem, password=None)
        except (TypeError, UnsupportedAlgorithm) as e:
            raise ValueError(str(e)) from e
        if not isinstance(key, ec.EllipticCurvePrivateKey):
            raise ValueError(f'Expected an EC private key, got {type(key).__name__}')
        return key

    @staticmethod
    def public_key_matches(private_key, public_key):
        fmt = serialization.PublicFormat.SubjectPublicKeyInfo
        mine = private_key.public_key().public_bytes(serialization.Encoding.DER, fmt)
        theirs = public_key.public_bytes(serialization.Encoding.DER, fmt)
        return mine == theirs


def _prevent_malleability(signature):
    r, s = decode_dss_signature(signature)
    if s > _HALF_ORDER:
        s = _P256_ORDER - s
    return encode_dss_signature(r, s)


def ecies(security_level=CURVE_P_256_Size, hash_algorithm=SHA2):
    return Ecies(security_level, hash_algorithm)
