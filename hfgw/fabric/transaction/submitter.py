import asyncio
import logging

from hfgw.fabric.errors import Phase, SubmissionError, SubmissionRejected, rpc_status
from hfgw.protos import common_pb2

_logger = logging.getLogger(__name__)


class OrderingSubmitter(object):
    """Broadcasts assembled transactions to the ordering service.

    Never retries: a failed broadcast may still have reached the orderer,
    and a blind resend could order the transaction twice.
    """

    def __init__(self, orderer):
        if not orderer:
            raise ValueError('Missing orderer')
        self._orderer = orderer

    @property
    def orderer(self):
        return self._orderer

    async def submit(self, transaction, deadline):
        """Send ``transaction`` and wait for the ordering service to accept it.

        Acceptance is not commit; see CommitObserver.
        Raises:
            SubmissionError: transport failure or no acknowledgement in time
            SubmissionRejected: the ordering service answered with an error status
        """
        method = 'submit'
        _logger.debug(f'{method} - start tx_id: {transaction.tx_id} orderer: {self._orderer.name}')

        try:
            response = await asyncio.wait_for(self._orderer.broadcast(transaction.envelope(), deadline), deadline)
        except asyncio.TimeoutError as e:
            raise SubmissionError(f'No acknowledgement from {self._orderer.name} within {deadline}s',
                                  phase=Phase.SUBMIT) from e
        except Exception as e:
            code, details = rpc_status(e)
            _logger.error(f'{method} - broadcast of {transaction.tx_id} failed: {details or e}')
            raise SubmissionError(f'Broadcast to {self._orderer.name} failed: {details or e}',
                                  phase=Phase.SUBMIT, code=code) from e

        if response is None:
            raise SubmissionError(f'{self._orderer.name} closed the broadcast stream without a response',
                                  phase=Phase.SUBMIT)

        if response.status != common_pb2.SUCCESS:
            status = common_pb2.Status.Name(response.status) if response.status in common_pb2.Status.values() \
                else str(response.status)
            _logger.error(f'{method} - {transaction.tx_id} rejected: {status} {response.info}')
            raise SubmissionRejected(f'Ordering service rejected the transaction: {status} {response.info}'.strip(),
                                     phase=Phase.SUBMIT, details=[{'status': status, 'info': response.info}])

        _logger.debug(f'{method} - {transaction.tx_id} accepted by {self._orderer.name}')
