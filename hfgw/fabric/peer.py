import logging

from hfgw.fabric.remote import Remote
from hfgw.protos import gateway_pb2_grpc, peer_pb2_grpc

_logger = logging.getLogger(__name__)


class Peer(Remote):
    """Endorsing / committing peer.

    Stubs are built per call from the shared handle, so concurrent calls
    share only the underlying connection.
    """

    def __init__(self, name, handle, mspid=None, request_timeout=None):

        super(Peer, self).__init__(name, handle, mspid, request_timeout)

        _logger.debug(f'Peer.const - url: {self.url} timeout: {self._request_timeout} name: {self.name}')

    async def send_proposal(self, signed_proposal, timeout=None):
        """Send a SignedProposal to the endorser service.

        Returns: ProposalResponse
        """
        _logger.debug(f'send_proposal - {self.name}')

        if not signed_proposal:
            raise ValueError('Missing proposal to send to peer')

        endorser_client = peer_pb2_grpc.EndorserStub(self._handle.channel)
        return await endorser_client.ProcessProposal(signed_proposal, timeout=self._timeout(timeout))

    async def commit_status(self, signed_request, timeout=None):
        """Ask the peer for the validation result of a transaction; the peer
        answers once the transaction is in a committed block.

        Returns: CommitStatusResponse
        """
        _logger.debug(f'commit_status - {self.name}')

        if not signed_request:
            raise ValueError('Missing commit status request')

        gateway_client = gateway_pb2_grpc.GatewayStub(self._handle.channel)
        return await gateway_client.CommitStatus(signed_request, timeout=self._timeout(timeout))

    def __str__(self):
        return f'Peer: {self.url}'
