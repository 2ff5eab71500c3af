import logging

from google.protobuf.message import DecodeError

from hfgw.fabric.errors import AssemblyError, Phase
from hfgw.fabric.transaction.endorsement import Endorsement, EndorsementSet
from hfgw.fabric.transaction.proposal import Proposal
from hfgw.protos import common_pb2, peer_pb2
from hfgw.protos.utils import create_envelope

_logger = logging.getLogger(__name__)


class Transaction(object):
    """Proposal plus the endorsements that make it eligible for ordering.

    The client signature is the proposal's own signature, which covers the
    header and payload carried in the envelope.
    """

    __slots__ = ('_proposal', '_endorsements', '_envelope')

    def __init__(self, proposal, endorsements, envelope):
        object.__setattr__(self, '_proposal', proposal)
        object.__setattr__(self, '_endorsements', endorsements)
        object.__setattr__(self, '_envelope', envelope)

    def __setattr__(self, name, value):
        raise AttributeError('Transaction is immutable once assembled')

    @property
    def tx_id(self):
        return self._proposal.tx_id

    @property
    def channel_id(self):
        return self._proposal.channel_id

    @property
    def proposal(self):
        return self._proposal

    @property
    def header(self):
        return self._proposal.header

    @property
    def payload(self):
        return self._proposal.ordered_payload

    @property
    def endorsements(self):
        return self._endorsements

    @property
    def client_signature(self):
        return self._proposal.signature

    def envelope(self):
        envelope = common_pb2.Envelope()
        envelope.CopyFrom(self._envelope)
        return envelope

    def to_bytes(self):
        return self._envelope.SerializeToString()

    def __repr__(self):
        return f'Transaction(tx_id={self.tx_id}, endorsements={len(self._endorsements)})'


class TransactionAssembler(object):
    """Packages a proposal and its endorsement set into the envelope sent to
    the ordering service. Pure."""

    def assemble(self, proposal, endorsements, policy=None):
        """
        Args:
            proposal: the signed Proposal that was endorsed
            endorsements: EndorsementSet collected for it
            policy: when given, re-checked against the set
        Returns: Transaction
        Raises: AssemblyError
        """
        method = 'assemble'
        _logger.debug(f'{method} - start tx_id: {proposal.tx_id}')

        if not endorsements or not len(endorsements):
            _logger.error(f'{method} - no valid endorsements found')
            raise AssemblyError('no valid endorsements found', phase=Phase.ASSEMBLE)
        if policy is not None and not policy.is_satisfied_by(endorsements):
            raise AssemblyError(f'endorsements do not satisfy {policy}', phase=Phase.ASSEMBLE)
        if not endorsements.is_consistent():
            raise AssemblyError('endorsements do not agree on the proposal response', phase=Phase.ASSEMBLE)

        proposal_hash = proposal.hash()
        if any(endorsement.proposal_hash != proposal_hash for endorsement in endorsements):
            raise AssemblyError('endorsement set belongs to a different proposal', phase=Phase.ASSEMBLE)

        endorsed_action = peer_pb2.ChaincodeEndorsedAction()
        endorsed_action.proposal_response_payload = endorsements.members[0].payload
        endorsed_action.endorsements.extend(endorsement.to_proto() for endorsement in endorsements)

        action_payload = peer_pb2.ChaincodeActionPayload()
        action_payload.chaincode_proposal_payload = proposal.ordered_payload
        action_payload.action.CopyFrom(endorsed_action)

        transaction_action = peer_pb2.TransactionAction()
        transaction_action.header = proposal.signature_header
        transaction_action.payload = action_payload.SerializeToString()

        transaction = peer_pb2.Transaction()
        transaction.actions.append(transaction_action)

        payload = common_pb2.Payload()
        payload.header = proposal.header
        payload.data = transaction.SerializeToString()

        envelope = create_envelope(proposal.signature, payload.SerializeToString())
        return Transaction(proposal, endorsements, envelope)


def decode_envelope(envelope):
    """Recover the Transaction (proposal and endorsement set) from an
    envelope or its serialized bytes.

    Raises: ValueError if the envelope is not a single-action endorser
    transaction.
    """
    if isinstance(envelope, (bytes, bytearray)):
        parsed = common_pb2.Envelope()
        try:
            parsed.ParseFromString(bytes(envelope))
        except DecodeError as e:
            raise ValueError(f'Malformed envelope: {e}') from e
        envelope = parsed

    try:
        payload = common_pb2.Payload()
        payload.ParseFromString(envelope.payload)
        transaction = peer_pb2.Transaction()
        transaction.ParseFromString(payload.data)
        if len(transaction.actions) != 1:
            raise ValueError(f'Expected one transaction action, found {len(transaction.actions)}')
        action_payload = peer_pb2.ChaincodeActionPayload()
        action_payload.ParseFromString(transaction.actions[0].payload)

        proposal = Proposal(payload.header, action_payload.chaincode_proposal_payload, envelope.signature)
        response_payload = action_payload.action.proposal_response_payload
        endorsements = EndorsementSet(Endorsement(response_payload, e.endorser, e.signature)
                                      for e in action_payload.action.endorsements)
    except DecodeError as e:
        raise ValueError(f'Malformed transaction envelope: {e}') from e

    if transaction.actions[0].header != proposal.signature_header:
        raise ValueError('Transaction action header does not match the proposal header')

    copy = common_pb2.Envelope()
    copy.CopyFrom(envelope)
    return Transaction(proposal, endorsements, copy)
