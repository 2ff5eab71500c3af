import pytest

from conftest import CHANNEL, endorse
from hfgw.fabric.errors import AssemblyError, ErrorKind
from hfgw.fabric.policy import EndorsementPolicy
from hfgw.fabric.transaction.assembler import TransactionAssembler, decode_envelope
from hfgw.fabric.transaction.endorsement import Endorsement, EndorsementSet
from hfgw.fabric.transaction.proposal import ProposalBuilder
from hfgw.protos import common_pb2, peer_pb2


@pytest.fixture
def builder(crypto):
    return ProposalBuilder(crypto)


@pytest.fixture
def proposal(builder, signing_identity):
    return builder.build(CHANNEL, 'basic', 'CreateAsset', ['asset1', 'blue', '10', 'Tom', '100'],
                         signing_identity.identity, signing_identity.signer)


@pytest.fixture
def endorsers(ca):
    return [ca.issue('peer0.org1.example.com'), ca.issue('peer1.org1.example.com')]


def endorsement_set(proposal, endorsers, **kwargs):
    return EndorsementSet(Endorsement.from_proposal_response(endorse(proposal, key, pem, **kwargs))
                          for key, pem in endorsers)


def test_assemble_builds_single_action_envelope(proposal, endorsers):
    endorsements = endorsement_set(proposal, endorsers)
    transaction = TransactionAssembler().assemble(proposal, endorsements, EndorsementPolicy.min_count(2))

    assert transaction.tx_id == proposal.tx_id
    assert transaction.channel_id == CHANNEL
    assert transaction.client_signature == proposal.signature

    envelope = transaction.envelope()
    assert envelope.signature == proposal.signature
    payload = common_pb2.Payload()
    payload.ParseFromString(envelope.payload)
    assert payload.header == proposal.header

    tx = peer_pb2.Transaction()
    tx.ParseFromString(payload.data)
    assert len(tx.actions) == 1
    assert tx.actions[0].header == proposal.signature_header

    action_payload = peer_pb2.ChaincodeActionPayload()
    action_payload.ParseFromString(tx.actions[0].payload)
    assert action_payload.chaincode_proposal_payload == proposal.payload
    assert len(action_payload.action.endorsements) == 2


def test_envelope_round_trip(proposal, endorsers):
    endorsements = endorsement_set(proposal, endorsers)
    transaction = TransactionAssembler().assemble(proposal, endorsements)

    decoded = decode_envelope(transaction.to_bytes())

    assert decoded.proposal == proposal
    assert decoded.endorsements == endorsements
    assert decoded.to_bytes() == transaction.to_bytes()
    assert decode_envelope(transaction.envelope()).tx_id == proposal.tx_id


def test_transient_data_is_not_ordered(builder, signing_identity, endorsers):
    proposal = builder.build(CHANNEL, 'basic', 'CreateAsset', ['asset1'], signing_identity.identity,
                             signing_identity.signer, transient_map={'secret': b'42'})
    transaction = TransactionAssembler().assemble(proposal, endorsement_set(proposal, endorsers))

    assert b'secret' not in transaction.to_bytes()
    decoded = decode_envelope(transaction.to_bytes())
    assert decoded.proposal.payload == proposal.ordered_payload
    assert decoded.proposal.hash() == proposal.hash()


def test_transaction_is_immutable(proposal, endorsers):
    transaction = TransactionAssembler().assemble(proposal, endorsement_set(proposal, endorsers))
    with pytest.raises(AttributeError):
        transaction._envelope = None
    transaction.envelope().signature = b''
    assert transaction.envelope().signature == proposal.signature


def test_empty_endorsement_set(proposal):
    with pytest.raises(AssemblyError) as excinfo:
        TransactionAssembler().assemble(proposal, EndorsementSet())
    assert excinfo.value.kind == ErrorKind.ASSEMBLY


def test_policy_recheck(proposal, endorsers):
    endorsements = endorsement_set(proposal, endorsers[:1])
    with pytest.raises(AssemblyError):
        TransactionAssembler().assemble(proposal, endorsements, EndorsementPolicy.min_count(2))


def test_inconsistent_endorsements(proposal, endorsers):
    (key0, pem0), (key1, pem1) = endorsers
    endorsements = EndorsementSet([
        Endorsement.from_proposal_response(endorse(proposal, key0, pem0, results=b'a')),
        Endorsement.from_proposal_response(endorse(proposal, key1, pem1, results=b'b')),
    ])
    with pytest.raises(AssemblyError):
        TransactionAssembler().assemble(proposal, endorsements)


def test_endorsements_of_another_proposal(builder, signing_identity, proposal, endorsers):
    other = builder.build(CHANNEL, 'basic', 'DeleteAsset', ['asset1'], signing_identity.identity,
                          signing_identity.signer)
    with pytest.raises(AssemblyError):
        TransactionAssembler().assemble(proposal, endorsement_set(other, endorsers))


@pytest.mark.parametrize('data', [b'\xff\xff\xff', common_pb2.Envelope(payload=b'').SerializeToString()])
def test_decode_rejects_malformed_envelopes(data):
    with pytest.raises(ValueError):
        decode_envelope(data)
