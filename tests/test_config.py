import pytest
import yaml

from hfgw.fabric.config.config import DEFAULT_TIMEOUTS, ENV_MSPID, ENV_PEER_ENDPOINT, Config, Timeouts
from hfgw.fabric.errors import InvalidEndpoint

PROFILE = {
    'client': {
        'mspid': 'Org1MSP',
        'channel': 'mychannel',
        'credentials': {'keystore': 'msp/keystore', 'signcerts': 'msp/signcerts'},
        'evaluate_peer': 'peer0.org1.example.com',
        'timeouts': {'endorse': 30},
    },
    'peers': {
        'peer0.org1.example.com': {
            'url': 'grpcs://peer0.org1.example.com:7051',
            'mspid': 'Org1MSP',
            'tls_ca_cert': 'tls/ca.crt',
            'ssl-target-name-override': 'peer0.org1.example.com',
        },
        'peer0.org2.example.com': {'url': 'grpcs://peer0.org2.example.com:9051', 'mspid': 'Org2MSP'},
    },
    'orderers': {
        'orderer.example.com': {'url': 'grpcs://orderer.example.com:7050', 'tls_ca_cert': '/abs/ca.crt'},
    },
    'organizations': {'Org1MSP': {'root_certs': ['msp/cacerts/ca.pem']}},
    'policy': {'min_endorsements': 2},
}


@pytest.fixture
def profile(tmp_path):
    path = tmp_path / 'network.yaml'
    path.write_text(yaml.safe_dump(PROFILE))
    return path


def test_defaults():
    config = Config(environ={})
    assert config.timeouts == DEFAULT_TIMEOUTS
    assert config.channel == 'mychannel'
    assert config.get('client.close_timeout') == 5
    assert config.peers() == {}


def test_from_file(profile, tmp_path):
    config = Config.from_file(str(profile), environ={})

    assert config.files == [str(profile)]
    assert config.mspid == 'Org1MSP'
    assert config.timeouts == Timeouts(evaluate=5, endorse=30, submit=5, commit_status=60)
    assert config.credentials == (str(tmp_path / 'msp' / 'keystore'), str(tmp_path / 'msp' / 'signcerts'))
    assert config.peers()['peer0.org1.example.com']['tls_ca_cert'] == str(tmp_path / 'tls' / 'ca.crt')
    assert config.orderers()['orderer.example.com']['tls_ca_cert'] == '/abs/ca.crt'
    assert config.get('organizations.Org1MSP.root_certs') == [str(tmp_path / 'msp' / 'cacerts' / 'ca.pem')]
    assert config.get('policy') == {'min_endorsements': 2}
    assert config.evaluate_peer == config.commit_peer == 'peer0.org1.example.com'
    config.validate()


def test_environment_overrides(profile):
    config = Config.from_file(str(profile), environ={ENV_PEER_ENDPOINT: 'secure://34.100.239.129:7051',
                                                     ENV_MSPID: 'Org2MSP'})
    assert config.mspid == 'Org2MSP'
    assert config.peers()['peer0.org1.example.com']['url'] == 'secure://34.100.239.129:7051'


def test_set_and_get():
    config = Config({'client': {'channel': 'other'}}, environ={})
    config.set('client.timeouts.evaluate', 1)
    assert config.channel == 'other'
    assert config.timeouts.evaluate == 1
    assert config.get('client.missing', 'fallback') == 'fallback'


@pytest.mark.parametrize('path, value', [
    ('client.mspid', None),
    ('client.channel', ''),
    ('peers', {}),
    ('orderers', {}),
    ('client.evaluate_peer', 'peer9.example.com'),
    ('client.commit_peer', 'peer9.example.com'),
    ('client.credentials', {'keystore': 'msp/keystore'}),
])
def test_validate_rejects(path, value):
    config = Config(PROFILE, environ={})
    config.set(path, value)
    with pytest.raises(ValueError):
        config.validate()


def test_validate_rejects_bad_url():
    config = Config(PROFILE, environ={ENV_PEER_ENDPOINT: 'peer0:7051'})
    with pytest.raises(InvalidEndpoint):
        config.validate()


def test_profile_must_be_a_mapping(tmp_path):
    path = tmp_path / 'bad.yaml'
    path.write_text('- a\n- b\n')
    with pytest.raises(ValueError):
        Config(environ={}).file(str(path))
