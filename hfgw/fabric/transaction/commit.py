import asyncio
import enum
import logging

import grpc

from hfgw.fabric.errors import CommitStatusError, Phase, rpc_status
from hfgw.protos import gateway_pb2, peer_pb2
from hfgw.util.crypto.crypto import ecies

_logger = logging.getLogger(__name__)


class CommitCode(enum.Enum):
    VALID = 'VALID'
    INVALID = 'INVALID'
    TIMED_OUT = 'TIMED_OUT'


class CommitStatus(object):
    """Outcome of waiting for a transaction to commit.

    ``validation_code`` is the peer's validation code name (e.g.
    ``MVCC_READ_CONFLICT``) when the peer reported one.
    """

    __slots__ = ('tx_id', 'code', 'block_number', 'validation_code')

    def __init__(self, tx_id, code, block_number=None, validation_code=None):
        self.tx_id = tx_id
        self.code = code
        self.block_number = block_number
        self.validation_code = validation_code

    @property
    def successful(self):
        return self.code == CommitCode.VALID

    def __eq__(self, other):
        return isinstance(other, CommitStatus) and (self.tx_id, self.code, self.block_number,
                                                    self.validation_code) == (
            other.tx_id, other.code, other.block_number, other.validation_code)

    def __repr__(self):
        return (f'CommitStatus(tx_id={self.tx_id}, code={self.code.value}, block_number={self.block_number},'
                f' validation_code={self.validation_code})')


class CommitObserver(object):
    """Waits for the commit outcome of a transaction on one peer.

    A timeout is a result (TIMED_OUT), not an error: the transaction may
    still commit. Cancelling the waiting task stops the wait only.
    """

    def __init__(self, peer, channel_id, signing_identity=None, cryptoSuite=None):
        if not peer:
            raise ValueError('Missing peer')
        self._peer = peer
        self._channel_id = channel_id
        self._signing_identity = signing_identity
        self._cryptoSuite = cryptoSuite or ecies()

    @property
    def peer(self):
        return self._peer

    def _signed_request(self, tx_id, signing_identity):
        request = gateway_pb2.CommitStatusRequest()
        request.transaction_id = tx_id
        request.channel_id = self._channel_id
        request.identity = signing_identity.serialize()

        signed = gateway_pb2.SignedCommitStatusRequest()
        signed.request = request.SerializeToString()
        signed.signature = signing_identity.sign(self._cryptoSuite.hash(signed.request))
        return signed

    async def await_commit(self, tx_id, deadline, signing_identity=None):
        """Block until ``tx_id`` commits or ``deadline`` seconds elapse.

        Returns: CommitStatus
        Raises: CommitStatusError when the peer cannot be asked
        """
        method = 'await_commit'
        _logger.debug(f'{method} - start tx_id: {tx_id} peer: {self._peer.name} deadline: {deadline}')

        signing_identity = signing_identity or self._signing_identity
        if signing_identity is None:
            raise ValueError('Missing signing identity for the commit status request')
        signed_request = self._signed_request(tx_id, signing_identity)
        try:
            response = await asyncio.wait_for(self._peer.commit_status(signed_request, deadline), deadline)
        except asyncio.TimeoutError:
            _logger.debug(f'{method} - stopped waiting for {tx_id} after {deadline}s')
            return CommitStatus(tx_id, CommitCode.TIMED_OUT)
        except asyncio.CancelledError:
            _logger.debug(f'{method} - wait for {tx_id} cancelled')
            raise
        except Exception as e:
            code, details = rpc_status(e)
            if code == grpc.StatusCode.DEADLINE_EXCEEDED:
                _logger.debug(f'{method} - stopped waiting for {tx_id} after {deadline}s')
                return CommitStatus(tx_id, CommitCode.TIMED_OUT)
            _logger.error(f'{method} - commit status of {tx_id} unavailable: {details or e}')
            raise CommitStatusError(f'Failed to obtain commit status from {self._peer.name}: {details or e}',
                                    phase=Phase.COMMIT, code=code) from e

        validation_code = peer_pb2.TxValidationCode.Name(response.result) \
            if response.result in peer_pb2.TxValidationCode.values() else str(response.result)
        code = CommitCode.VALID if response.result == peer_pb2.VALID else CommitCode.INVALID
        _logger.debug(f'{method} - {tx_id} committed in block {response.block_number}: {validation_code}')
        return CommitStatus(tx_id, code, response.block_number, validation_code)
