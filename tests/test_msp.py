import pytest

from conftest import MSP_ID, CertificateAuthority
from hfgw.fabric.msp.identity import Identity
from hfgw.fabric.msp.mspManager import MSPManager


@pytest.fixture
def manager(ca, crypto):
    manager = MSPManager(crypto)
    manager.loadMSPs({MSP_ID: [ca.pem], 'Org2MSP': []})
    return manager


def test_load(manager, ca):
    assert sorted(manager.getMSPs()) == [MSP_ID, 'Org2MSP']
    assert manager.getMSP(MSP_ID).root_certs[0].subject == ca.cert.subject
    assert manager.getMSP('Org3MSP') is None


def test_member_of_a_known_msp(manager, user_material):
    _, pem = user_material
    identity = manager.deserializeIdentity(MSP_ID, pem)
    assert identity == Identity(pem, MSP_ID)


def test_certificate_from_another_ca_is_rejected(manager):
    _, pem = CertificateAuthority('ca.rogue.example.com').issue('peer0.org1.example.com')
    assert manager.deserializeIdentity(MSP_ID, pem) is None


def test_msp_without_roots_and_unknown_msp_accept_any_certificate(manager):
    _, pem = CertificateAuthority('ca.org2.example.com').issue('peer0.org2.example.com')
    assert manager.deserializeIdentity('Org2MSP', pem).mspid == 'Org2MSP'
    assert manager.deserializeIdentity('Org3MSP', pem).mspid == 'Org3MSP'


def test_identity_of_another_msp_does_not_validate(manager, user_material):
    _, pem = user_material
    assert not manager.getMSP(MSP_ID).validate(Identity(pem, 'Org2MSP'))


def test_load_requires_a_mapping(crypto):
    with pytest.raises(TypeError):
        MSPManager(crypto).loadMSPs([('Org1MSP', [])])
