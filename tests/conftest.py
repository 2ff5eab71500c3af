import asyncio
import datetime

import grpc
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from hfgw.fabric.msp.identity import Identity, Signer, SigningIdentity
from hfgw.fabric.transaction.proposal import Proposal
from hfgw.protos import ab_pb2, common_pb2, gateway_pb2, peer_pb2
from hfgw.util.crypto.crypto import ecies

MSP_ID = 'Org1MSP'
CHANNEL = 'mychannel'


def _name(common_name):
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def make_key():
    return ec.generate_private_key(ec.SECP256R1())


def make_cert(subject_key, common_name, issuer_key=None, issuer_name=None, ca=False):
    now = datetime.datetime.now(datetime.timezone.utc)
    builder = (x509.CertificateBuilder()
               .subject_name(_name(common_name))
               .issuer_name(issuer_name or _name(common_name))
               .public_key(subject_key.public_key())
               .serial_number(x509.random_serial_number())
               .not_valid_before(now - datetime.timedelta(days=1))
               .not_valid_after(now + datetime.timedelta(days=30))
               .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True))
    return builder.sign(issuer_key or subject_key, hashes.SHA256())


def cert_pem(cert):
    return cert.public_bytes(serialization.Encoding.PEM)


def key_pem(key):
    return key.private_bytes(serialization.Encoding.PEM, serialization.PrivateFormat.PKCS8,
                             serialization.NoEncryption())


class CertificateAuthority(object):

    def __init__(self, name='ca.org1.example.com'):
        self.key = make_key()
        self.cert = make_cert(self.key, name, ca=True)
        self.pem = cert_pem(self.cert)

    def issue(self, common_name):
        key = make_key()
        cert = make_cert(key, common_name, issuer_key=self.key, issuer_name=self.cert.subject)
        return key, cert_pem(cert)


@pytest.fixture(scope='session')
def ca():
    return CertificateAuthority()


@pytest.fixture
def crypto():
    return ecies()


@pytest.fixture
def user_material(ca):
    return ca.issue('User1@org1.example.com')


@pytest.fixture
def signing_identity(user_material, crypto):
    key, pem = user_material
    return SigningIdentity(Identity(pem, MSP_ID, crypto), Signer(crypto, key))


def write_msp_dir(root, key, pem):
    """Lay out ``root/keystore/priv_sk`` and ``root/signcerts/cert.pem``."""
    keystore = root / 'keystore'
    signcerts = root / 'signcerts'
    keystore.mkdir(parents=True)
    signcerts.mkdir(parents=True)
    (keystore / 'priv_sk').write_bytes(key_pem(key))
    (signcerts / 'cert.pem').write_bytes(pem)
    return keystore, signcerts


@pytest.fixture
def msp_dir(tmp_path, user_material):
    key, pem = user_material
    return write_msp_dir(tmp_path / 'msp', key, pem)


def endorse(proposal, key, pem, mspid=MSP_ID, status=200, payload=b'', results=b'rwset', crypto=None):
    """Build the ProposalResponse a peer holding ``key`` would return."""
    crypto = crypto or ecies()

    action = peer_pb2.ChaincodeAction()
    action.results = results
    action.response.status = status
    action.response.payload = payload
    action.chaincode_id.name = proposal.chaincode_id

    response_payload = peer_pb2.ProposalResponsePayload()
    response_payload.proposal_hash = proposal.hash(crypto)
    response_payload.extension = action.SerializeToString()

    endorser = common_pb2.SerializedIdentity()
    endorser.mspid = mspid
    endorser.id_bytes = pem

    response = peer_pb2.ProposalResponse()
    response.version = 1
    response.response.status = status
    response.response.payload = payload
    response.payload = response_payload.SerializeToString()
    response.endorsement.endorser = endorser.SerializeToString()
    response.endorsement.signature = crypto.sign(key, crypto.hash(response.payload +
                                                                  response.endorsement.endorser))
    return response


class FakePeer(object):
    """Stands in for hfgw.fabric.peer.Peer; endorses with its own key."""

    def __init__(self, name, ca, mspid=MSP_ID, delay=0, error=None, status=200, payload=b'',
                 results=b'rwset', commit_result=peer_pb2.VALID, commit_delay=0):
        self.name = name
        self.mspid = mspid
        self.key, self.pem = ca.issue(name)
        self.delay = delay
        self.error = error
        self.status = status
        self.payload = payload
        self.results = results
        self.commit_result = commit_result
        self.commit_delay = commit_delay
        self.proposals = []
        self.commit_requests = []
        self.cancelled = 0

    async def send_proposal(self, signed_proposal, timeout=None):
        self.proposals.append(signed_proposal)
        if self.delay:
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                self.cancelled += 1
                raise
        if self.error is not None:
            raise self.error
        proposal = Proposal.from_signed_proposal(signed_proposal)
        return endorse(proposal, self.key, self.pem, self.mspid, self.status, self.payload, self.results)

    async def commit_status(self, signed_request, timeout=None):
        self.commit_requests.append(signed_request)
        if self.commit_delay:
            await asyncio.sleep(self.commit_delay)
        response = gateway_pb2.CommitStatusResponse()
        response.result = self.commit_result
        response.block_number = 7
        return response


class FakeOrderer(object):

    def __init__(self, name='orderer.example.com', status=common_pb2.SUCCESS, info='', delay=0, error=None):
        self.name = name
        self.mspid = 'OrdererMSP'
        self.status = status
        self.info = info
        self.delay = delay
        self.error = error
        self.envelopes = []

    async def broadcast(self, envelope, timeout=None):
        self.envelopes.append(envelope)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        response = ab_pb2.BroadcastResponse()
        response.status = self.status
        response.info = self.info
        return response


@pytest.fixture
def peers(ca):
    return [FakePeer('peer0.org1.example.com', ca), FakePeer('peer1.org1.example.com', ca)]


@pytest.fixture
def orderer():
    return FakeOrderer()


class FakeRpcError(grpc.RpcError):
    """grpc.aio.AioRpcError look-alike carrying a status code."""

    def __init__(self, code, details=''):
        super(FakeRpcError, self).__init__(details)
        self._code = code
        self._details = details

    def code(self):
        return self._code

    def details(self):
        return self._details
