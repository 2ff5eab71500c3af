from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature, encode_dss_signature

from conftest import make_key
from hfgw.protos import common_pb2
from hfgw.util.crypto.crypto import _HALF_ORDER, _P256_ORDER, ecies
from hfgw.util.utils import proto_b, proto_str, timestamp_bytes


def test_signatures_are_low_s():
    crypto = ecies()
    key = make_key()
    for i in range(20):
        _, s = decode_dss_signature(crypto.sign(key, crypto.hash(bytes([i]))))
        assert s <= _HALF_ORDER


def test_high_s_signature_is_rejected():
    crypto = ecies()
    key = make_key()
    digest = crypto.hash(b'message')
    r, s = decode_dss_signature(crypto.sign(key, digest))
    high = encode_dss_signature(r, _P256_ORDER - s)

    assert crypto.verify(key.public_key(), crypto.sign(key, digest), digest)
    assert not crypto.verify(key.public_key(), high, digest)


def test_verify_rejects_garbage_and_other_keys():
    crypto = ecies()
    key = make_key()
    digest = crypto.hash(b'message')
    signature = crypto.sign(key, digest)

    assert not crypto.verify(key.public_key(), b'\x00garbage', digest)
    assert not crypto.verify(make_key().public_key(), signature, digest)
    assert not crypto.verify(key.public_key(), signature, crypto.hash(b'other'))


def test_nonce_size():
    assert len(ecies().generate_nonce()) == 24


def test_timestamp_bytes_is_fixed_width():
    timestamp = common_pb2.Timestamp(seconds=1, nanos=2)
    assert timestamp_bytes(timestamp) == b'\x00' * 7 + b'\x01' + b'\x00\x00\x00\x02'


def test_proto_conversions():
    assert proto_b('abc') == b'abc'
    assert proto_b(b'abc') == b'abc'
    assert proto_str(b'abc') == 'abc'
