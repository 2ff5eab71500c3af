import logging

from hfgw.util.crypto.crypto import DEFAULT_NONCE_SIZE, ecies
from hfgw.util.utils import current_timestamp, timestamp_bytes

_logger = logging.getLogger(__name__)
_logger.setLevel(logging.DEBUG)


class TransactionID(object):
    """Transaction id derived from the creator, a fresh nonce and the
    proposal timestamp: ``sha256(nonce || creator || timestamp)`` in hex.

    Args:
        creator: serialized identity bytes of the proposal creator
        nonce_source: callable returning nonce bytes, defaults to random
        clock: callable returning a common_pb2.Timestamp
        cryptoSuite: provides hash and nonce generation
    """

    def __init__(self, creator, nonce_source=None, clock=None, cryptoSuite=None):
        _logger.debug('constructor - start')

        if not creator:
            raise ValueError('Missing creator identity parameter')

        crypto = cryptoSuite or ecies()
        self._nonce = nonce_source() if nonce_source else crypto.generate_nonce(DEFAULT_NONCE_SIZE)
        self._timestamp = clock() if clock else current_timestamp()
        trans_bytes = self._nonce + creator + timestamp_bytes(self._timestamp)
        self._transaction_id = crypto.hash(trans_bytes).hex()
        _logger.debug(f'const - transaction_id {self._transaction_id}')

    @property
    def transactionID(self):
        return self._transaction_id

    @property
    def nonce(self):
        return self._nonce

    @property
    def timestamp(self):
        return self._timestamp

    def __str__(self):
        return self._transaction_id
