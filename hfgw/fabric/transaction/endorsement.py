import asyncio
import collections
import logging

import grpc
from google.protobuf.message import DecodeError

from hfgw.fabric.errors import EndorsementMismatch, EndorsementPolicyUnmet, Phase, rpc_status
from hfgw.fabric.msp.mspManager import MSPManager
from hfgw.protos import common_pb2, peer_pb2
from hfgw.util.crypto.crypto import ecies

ERROR_STATUS_THRESHOLD = 400

ENDORSED = 'endorsed'
REJECTED = 'rejected'
INVALID = 'invalid'
TIMEOUT = 'timeout'
ERROR = 'error'

_logger = logging.getLogger(__name__)

PeerOutcome = collections.namedtuple('PeerOutcome', ['peer', 'status', 'message', 'code'])


class Endorsement(object):
    """A peer's signed attestation over a proposal's execution result.

    Built from the three byte strings a peer returns (response payload,
    serialized endorser identity, signature); the other attributes are
    decoded from them. The signature covers ``payload || endorser``, and the
    payload carries the proposal hash, the response and the read/write set.
    """

    __slots__ = ('_payload', '_endorser', '_signature', '_fields')

    def __init__(self, payload, endorser, signature):
        object.__setattr__(self, '_payload', bytes(payload))
        object.__setattr__(self, '_endorser', bytes(endorser))
        object.__setattr__(self, '_signature', bytes(signature))
        object.__setattr__(self, '_fields', _decode_endorsement(self._payload, self._endorser))

    def __setattr__(self, name, value):
        raise AttributeError('Endorsement is immutable')

    @classmethod
    def from_proposal_response(cls, proposal_response):
        return cls(proposal_response.payload, proposal_response.endorsement.endorser,
                   proposal_response.endorsement.signature)

    @property
    def payload(self):
        return self._payload

    @property
    def endorser(self):
        """Serialized identity of the endorser; also the set key."""
        return self._endorser

    @property
    def signature(self):
        return self._signature

    @property
    def endorser_msp(self):
        return self._fields['endorser_msp']

    @property
    def endorser_certificate(self):
        return self._fields['endorser_certificate']

    @property
    def proposal_hash(self):
        return self._fields['proposal_hash']

    @property
    def response_status(self):
        return self._fields['response_status']

    @property
    def response_message(self):
        return self._fields['response_message']

    @property
    def response_payload(self):
        return self._fields['response_payload']

    @property
    def read_write_set(self):
        return self._fields['read_write_set']

    @property
    def signed_bytes(self):
        return self._payload + self._endorser

    def to_proto(self):
        endorsement = peer_pb2.Endorsement()
        endorsement.endorser = self._endorser
        endorsement.signature = self._signature
        return endorsement

    def __eq__(self, other):
        return (isinstance(other, Endorsement) and self._payload == other._payload
                and self._endorser == other._endorser and self._signature == other._signature)

    def __hash__(self):
        return hash((self._payload, self._endorser, self._signature))

    def __repr__(self):
        return f'Endorsement(endorser_msp={self.endorser_msp}, status={self.response_status})'


def _decode_endorsement(payload, endorser):
    identity = common_pb2.SerializedIdentity()
    identity.ParseFromString(endorser)
    response_payload = peer_pb2.ProposalResponsePayload()
    response_payload.ParseFromString(payload)
    action = peer_pb2.ChaincodeAction()
    action.ParseFromString(response_payload.extension)

    return {
        'endorser_msp': identity.mspid,
        'endorser_certificate': identity.id_bytes,
        'proposal_hash': response_payload.proposal_hash,
        'response_status': action.response.status,
        'response_message': action.response.message,
        'response_payload': action.response.payload,
        'read_write_set': action.results,
    }


class EndorsementSet(object):
    """Endorsements keyed by endorser identity, at most one per endorser.
    Members are kept in endorser order so equal sets encode identically."""

    def __init__(self, endorsements=()):
        members = {}
        for endorsement in endorsements:
            members.setdefault(endorsement.endorser, endorsement)
        self._members = tuple(members[key] for key in sorted(members))

    @property
    def members(self):
        return self._members

    @property
    def endorser_msps(self):
        return sorted({endorsement.endorser_msp for endorsement in self._members})

    def is_consistent(self):
        """True when every member reports the same read/write set and the
        same response payload bytes."""
        if not self._members:
            return True
        first = self._members[0]
        return all(endorsement.read_write_set == first.read_write_set and endorsement.payload == first.payload
                   for endorsement in self._members[1:])

    def __len__(self):
        return len(self._members)

    def __iter__(self):
        return iter(self._members)

    def __contains__(self, endorsement):
        return endorsement in self._members

    def __eq__(self, other):
        return isinstance(other, EndorsementSet) and self._members == other._members

    def __hash__(self):
        return hash(self._members)

    def __repr__(self):
        return f'EndorsementSet({list(self._members)})'


class EndorsementCollector(object):
    """Fans a proposal out to endorsing peers and keeps the endorsements that
    verify.

    Peer failures are recorded, never retried, and never abort the other
    peers' calls.
    """

    def __init__(self, msp_manager=None, cryptoSuite=None):
        self._cryptoSuite = cryptoSuite or ecies()
        self._msp_manager = msp_manager or MSPManager(self._cryptoSuite)

    async def collect(self, proposal, peers, policy, deadline):
        """Collect endorsements for ``proposal``.

        Args:
            proposal: signed Proposal
            peers: endorsing peers (objects with ``name``, ``mspid`` and
                ``send_proposal(signed_proposal, timeout)``)
            policy: EndorsementPolicy the result must satisfy
            deadline: seconds shared by all peer calls
        Returns: EndorsementSet satisfying ``policy``
        Raises:
            EndorsementPolicyUnmet: not enough valid endorsements in time
            EndorsementMismatch: endorsers disagree on the execution result
        """
        method = 'collect'
        _logger.debug(f'{method} - start tx_id: {proposal.tx_id} peers: {[peer.name for peer in peers]}')

        if not peers:
            raise EndorsementPolicyUnmet('No endorsing peers configured', phase=Phase.ENDORSE)

        signed_proposal = proposal.signed_proposal()
        proposal_hash = proposal.hash(self._cryptoSuite)

        tasks = [asyncio.ensure_future(peer.send_proposal(signed_proposal, deadline)) for peer in peers]
        try:
            await asyncio.wait(tasks, timeout=deadline)
        finally:
            await _cancel_pending(tasks)

        accepted = []
        outcomes = []
        for peer, task in zip(peers, tasks):
            outcome, endorsement = self._outcome(peer, task, proposal_hash)
            outcomes.append(outcome)
            if endorsement is not None:
                accepted.append(endorsement)
            _logger.debug(f'{method} - {peer.name}: {outcome.status} {outcome.message}')

        endorsements = EndorsementSet(accepted)

        if not policy.is_satisfied_by(endorsements):
            timed_out = [outcome.peer for outcome in outcomes if outcome.status == TIMEOUT]
            message = f'{len(endorsements)} valid endorsement(s) do not satisfy {policy}'
            if timed_out:
                message += f'; no response in {deadline}s from {", ".join(timed_out)}'
            _logger.error(f'{method} - {message}')
            raise EndorsementPolicyUnmet(message, phase=Phase.ENDORSE, details=outcomes)

        if not endorsements.is_consistent():
            _logger.error(f'{method} - read/write result sets do not match for tx_id: {proposal.tx_id}')
            raise EndorsementMismatch('Endorsing peers returned different read/write sets or responses',
                                      phase=Phase.ENDORSE, details=outcomes)

        return endorsements

    def _outcome(self, peer, task, proposal_hash):
        if not task.done() or task.cancelled():
            return PeerOutcome(peer.name, TIMEOUT, 'no response before deadline', None), None

        exc = task.exception()
        if exc is not None:
            code, details = rpc_status(exc)
            if code == grpc.StatusCode.DEADLINE_EXCEEDED or isinstance(exc, asyncio.TimeoutError):
                return PeerOutcome(peer.name, TIMEOUT, details or 'deadline exceeded', code), None
            return PeerOutcome(peer.name, ERROR, details or str(exc) or type(exc).__name__, code), None

        response = task.result()
        if response.response.status >= ERROR_STATUS_THRESHOLD:
            return PeerOutcome(peer.name, REJECTED, response.response.message or
                               f'status {response.response.status}', None), None

        reason, endorsement = self._verify(peer, response, proposal_hash)
        if reason:
            _logger.warning(f'_outcome - discarding endorsement from {peer.name}: {reason}')
            return PeerOutcome(peer.name, INVALID, reason, None), None
        return PeerOutcome(peer.name, ENDORSED, '', None), endorsement

    def _verify(self, peer, response, proposal_hash):
        """Returns (reason the endorsement is invalid or None, Endorsement)."""
        if not response.HasField('endorsement') or not response.endorsement.signature:
            return 'response carries no endorsement', None

        try:
            endorsement = Endorsement.from_proposal_response(response)
        except DecodeError as e:
            return f'malformed endorsement: {e}', None

        if endorsement.proposal_hash != proposal_hash:
            return 'endorsement is for a different proposal', None

        if endorsement.response_status >= ERROR_STATUS_THRESHOLD:
            return f'endorsed response has error status {endorsement.response_status}', None

        if peer.mspid and endorsement.endorser_msp != peer.mspid:
            return f'endorser belongs to {endorsement.endorser_msp}, peer advertises {peer.mspid}', None

        try:
            identity = self._msp_manager.deserializeIdentity(endorsement.endorser_msp,
                                                             endorsement.endorser_certificate)
        except ValueError as e:
            return f'endorser certificate does not parse: {e}', None
        if identity is None:
            return f'endorser certificate is not trusted by {endorsement.endorser_msp}', None

        digest = self._cryptoSuite.hash(endorsement.signed_bytes)
        if not identity.verify(digest, endorsement.signature):
            return 'endorsement signature is not valid', None

        return None, endorsement


async def _cancel_pending(tasks):
    pending = [task for task in tasks if not task.done()]
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
