import grpc
import pytest

from conftest import CHANNEL, FakeOrderer, FakeRpcError, endorse
from hfgw.fabric.errors import ErrorKind, Phase, SubmissionError, SubmissionRejected
from hfgw.fabric.transaction.assembler import TransactionAssembler
from hfgw.fabric.transaction.endorsement import Endorsement, EndorsementSet
from hfgw.fabric.transaction.proposal import ProposalBuilder
from hfgw.fabric.transaction.submitter import OrderingSubmitter
from hfgw.protos import common_pb2


@pytest.fixture
def transaction(crypto, signing_identity, ca):
    proposal = ProposalBuilder(crypto).build(CHANNEL, 'basic', 'CreateAsset', ['asset1'],
                                             signing_identity.identity, signing_identity.signer)
    key, pem = ca.issue('peer0.org1.example.com')
    endorsements = EndorsementSet([Endorsement.from_proposal_response(endorse(proposal, key, pem))])
    return TransactionAssembler().assemble(proposal, endorsements)


async def test_accepted(transaction):
    orderer = FakeOrderer()
    await OrderingSubmitter(orderer).submit(transaction, 1)

    assert len(orderer.envelopes) == 1
    assert orderer.envelopes[0].SerializeToString() == transaction.to_bytes()


async def test_rejected_status(transaction):
    orderer = FakeOrderer(status=common_pb2.SERVICE_UNAVAILABLE, info='no leader')
    with pytest.raises(SubmissionRejected) as excinfo:
        await OrderingSubmitter(orderer).submit(transaction, 1)

    error = excinfo.value
    assert error.kind == ErrorKind.SUBMISSION_REJECTED
    assert error.phase == Phase.SUBMIT
    assert error.details == [{'status': 'SERVICE_UNAVAILABLE', 'info': 'no leader'}]
    assert not error.retryable


async def test_transport_failure_is_not_retried(transaction):
    orderer = FakeOrderer(error=FakeRpcError(grpc.StatusCode.UNAVAILABLE, 'connection refused'))
    with pytest.raises(SubmissionError) as excinfo:
        await OrderingSubmitter(orderer).submit(transaction, 1)

    assert excinfo.value.code == grpc.StatusCode.UNAVAILABLE
    assert len(orderer.envelopes) == 1


async def test_no_acknowledgement_in_time(transaction):
    orderer = FakeOrderer(delay=5)
    with pytest.raises(SubmissionError) as excinfo:
        await OrderingSubmitter(orderer).submit(transaction, 0.1)
    assert 'within 0.1s' in excinfo.value.message


async def test_stream_closed_without_response(transaction):
    orderer = FakeOrderer()

    async def broadcast(envelope, timeout=None):
        return None

    orderer.broadcast = broadcast
    with pytest.raises(SubmissionError):
        await OrderingSubmitter(orderer).submit(transaction, 1)


def test_requires_orderer():
    with pytest.raises(ValueError):
        OrderingSubmitter(None)
