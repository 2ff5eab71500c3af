import logging

import grpc

from hfgw.fabric.remote import Remote
from hfgw.protos import ab_pb2_grpc
from hfgw.util.utils import stream_envelope

_logger = logging.getLogger(__name__)


class Orderer(Remote):

    def __init__(self, name, handle, mspid=None, request_timeout=None):

        super(Orderer, self).__init__(name, handle, mspid, request_timeout)

        _logger.debug(f'Orderer.const - url: {self.url} timeout: {self._request_timeout}')

    async def broadcast(self, envelope, timeout=None):
        """Send one envelope on the Broadcast stream and return the ordering
        service's acknowledgement.

        Returns: BroadcastResponse, or None if the stream closed without one
        """
        _logger.debug('broadcast - start')

        if not envelope:
            _logger.debug('broadcast ERROR - missing envelope')
            raise ValueError('Missing data - Nothing to broadcast')

        orderer_client = ab_pb2_grpc.AtomicBroadcastStub(self._handle.channel)

        # this is a stream response
        call = orderer_client.Broadcast(stream_envelope(envelope), timeout=self._timeout(timeout))
        try:
            response = await call.read()
        finally:
            call.cancel()

        if response is grpc.aio.EOF:
            return None
        return response

    def __str__(self):
        return f'Orderer: {self.url}'
