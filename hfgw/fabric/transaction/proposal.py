import logging

from hfgw.fabric.transaction.transaction_id import TransactionID
from hfgw.protos import common_pb2, peer_pb2
from hfgw.protos.utils import create_cc_spec
from hfgw.util.crypto.crypto import ecies
from hfgw.util.utils import proto_b, proto_str

_logger = logging.getLogger(__name__)


class Proposal(object):
    """A signed transaction proposal.

    The header and payload bytes are the canonical encoding; every other
    attribute is decoded from them, so a Proposal rebuilt from the same three
    byte strings is equal to the original. Immutable.
    """

    __slots__ = ('_header', '_payload', '_signature', '_fields')

    def __init__(self, header, payload, signature):
        object.__setattr__(self, '_header', bytes(header))
        object.__setattr__(self, '_payload', bytes(payload))
        object.__setattr__(self, '_signature', bytes(signature))
        object.__setattr__(self, '_fields', _decode_fields(self._header, self._payload))

    def __setattr__(self, name, value):
        raise AttributeError('Proposal is immutable once signed')

    @classmethod
    def from_signed_proposal(cls, signed_proposal):
        proposal = peer_pb2.Proposal()
        proposal.ParseFromString(signed_proposal.proposal_bytes)
        return cls(proposal.header, proposal.payload, signed_proposal.signature)

    @property
    def header(self):
        return self._header

    @property
    def payload(self):
        return self._payload

    @property
    def signature(self):
        return self._signature

    @property
    def channel_id(self):
        return self._fields['channel_id']

    @property
    def tx_id(self):
        return self._fields['tx_id']

    @property
    def timestamp(self):
        return self._fields['timestamp']

    @property
    def creator(self):
        """Serialized identity bytes of the creator."""
        return self._fields['creator']

    @property
    def creator_mspid(self):
        return self._fields['creator_mspid']

    @property
    def nonce(self):
        return self._fields['nonce']

    @property
    def signature_header(self):
        return self._fields['signature_header']

    @property
    def chaincode_id(self):
        return self._fields['chaincode_id']

    @property
    def function(self):
        return self._fields['function']

    @property
    def args(self):
        return self._fields['args']

    @property
    def proposal_bytes(self):
        proposal = peer_pb2.Proposal()
        proposal.header = self._header
        proposal.payload = self._payload
        return proposal.SerializeToString()

    def signed_proposal(self):
        signed = peer_pb2.SignedProposal()
        signed.proposal_bytes = self.proposal_bytes
        signed.signature = self._signature
        return signed

    @property
    def ordered_payload(self):
        """The payload as sent for ordering.

        The transient map is only meant for the endorsers and must be taken
        out before the transaction goes to the orderer, otherwise validators
        computing the proposal hash would not match the endorsers' hash.
        """
        cc_payload = peer_pb2.ChaincodeProposalPayload()
        cc_payload.ParseFromString(self._payload)
        if not cc_payload.TransientMap:
            return self._payload
        cc_payload.ClearField('TransientMap')
        return cc_payload.SerializeToString()

    def hash(self, cryptoSuite=None):
        """Digest endorsers attest to: sha256(header || ordered payload)."""
        return (cryptoSuite or ecies()).hash(self._header + self.ordered_payload)

    def verify(self, identity, cryptoSuite=None):
        """True iff the proposal was created and signed by ``identity`` and
        has not been altered since."""
        if self.creator != identity.serialize():
            return False
        digest = (cryptoSuite or ecies()).hash(self.proposal_bytes)
        return identity.verify(digest, self._signature)

    def __eq__(self, other):
        return (isinstance(other, Proposal) and self._header == other._header
                and self._payload == other._payload and self._signature == other._signature)

    def __hash__(self):
        return hash((self._header, self._payload, self._signature))

    def __repr__(self):
        return f'Proposal(tx_id={self.tx_id}, channel={self.channel_id}, {self.chaincode_id}.{self.function})'


def _decode_fields(header_bytes, payload_bytes):
    header = common_pb2.Header()
    header.ParseFromString(header_bytes)
    channel_header = common_pb2.ChannelHeader()
    channel_header.ParseFromString(header.channel_header)
    signature_header = common_pb2.SignatureHeader()
    signature_header.ParseFromString(header.signature_header)
    creator = common_pb2.SerializedIdentity()
    creator.ParseFromString(signature_header.creator)

    cc_payload = peer_pb2.ChaincodeProposalPayload()
    cc_payload.ParseFromString(payload_bytes)
    invocation_spec = peer_pb2.ChaincodeInvocationSpec()
    invocation_spec.ParseFromString(cc_payload.input)
    input_args = list(invocation_spec.chaincode_spec.input.args)

    timestamp = common_pb2.Timestamp()
    timestamp.CopyFrom(channel_header.timestamp)

    return {
        'channel_id': channel_header.channel_id,
        'tx_id': channel_header.tx_id,
        'timestamp': timestamp,
        'creator': signature_header.creator,
        'creator_mspid': creator.mspid,
        'nonce': signature_header.nonce,
        'signature_header': header.signature_header,
        'chaincode_id': invocation_spec.chaincode_spec.chaincode_id.name,
        'function': proto_str(input_args[0]) if input_args else '',
        'args': tuple(proto_str(arg) for arg in input_args[1:]),
    }


class ProposalBuilder(object):
    """Builds and signs endorser transaction proposals.

    Pure apart from signing. ``nonce_source`` and ``clock`` can be injected
    to make the output deterministic.
    """

    def __init__(self, cryptoSuite=None, nonce_source=None, clock=None, tls_cert_hash=None):
        self._cryptoSuite = cryptoSuite or ecies()
        self._nonce_source = nonce_source
        self._clock = clock
        self._tls_cert_hash = tls_cert_hash

    def build(self, channel_id, chaincode_id, function, args, identity, signer, transient_map=None):
        """Build a signed proposal invoking ``function(*args)`` on a chaincode.

        Args:
            channel_id: channel name
            chaincode_id: chaincode name
            function: chaincode function name
            args: list of str (bytes are passed through)
            identity: Identity of the creator
            signer: Signer holding the creator's key
            transient_map: private data sent to endorsers only
        Returns: Proposal
        """
        method = 'build'
        _logger.debug(f'{method} - start {chaincode_id}.{function}')

        if not channel_id:
            raise ValueError('Missing "channel_id" parameter')
        if not chaincode_id:
            raise ValueError('Missing "chaincode_id" parameter')
        if not function:
            raise ValueError('Missing "function" parameter')
        if not isinstance(args, (list, tuple)):
            raise TypeError(f'"args" must be a list but was {type(args)}')

        creator = identity.serialize()
        tx_id = TransactionID(creator, self._nonce_source, self._clock, self._cryptoSuite)

        channel_header = common_pb2.ChannelHeader()
        channel_header.type = common_pb2.ENDORSER_TRANSACTION
        channel_header.version = 1
        channel_header.timestamp.CopyFrom(tx_id.timestamp)
        channel_header.channel_id = channel_id
        channel_header.tx_id = tx_id.transactionID
        if self._tls_cert_hash:
            channel_header.tls_cert_hash = self._tls_cert_hash

        signature_header = common_pb2.SignatureHeader()
        signature_header.creator = creator
        signature_header.nonce = tx_id.nonce

        header = common_pb2.Header()
        header.channel_header = channel_header.SerializeToString()
        header.signature_header = signature_header.SerializeToString()

        invocation_spec = create_cc_spec(chaincode_id, [proto_b(function)] + [proto_b(arg) for arg in args])
        cc_payload = peer_pb2.ChaincodeProposalPayload()
        cc_payload.input = invocation_spec.SerializeToString()
        for key, value in (transient_map or {}).items():
            cc_payload.TransientMap[key] = proto_b(value)

        proposal = peer_pb2.Proposal()
        proposal.header = header.SerializeToString()
        proposal.payload = cc_payload.SerializeToString()

        digest = self._cryptoSuite.hash(proposal.SerializeToString())
        signature = signer.sign(digest)

        _logger.debug(f'{method} - signed proposal tx_id: {tx_id.transactionID}')
        return Proposal(proposal.header, proposal.payload, signature)
