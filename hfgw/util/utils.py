import logging
import time

from hfgw.protos import common_pb2

_logger = logging.getLogger(__name__)


def proto_str(x):
    return x if isinstance(x, str) else x.decode('utf-8')


def proto_b(x):
    return x if isinstance(x, bytes) else x.encode('utf-8')


def current_timestamp():
    nanos = time.time_ns()
    timestamp = common_pb2.Timestamp()
    timestamp.seconds = nanos // 1_000_000_000
    timestamp.nanos = nanos % 1_000_000_000
    return timestamp


def timestamp_bytes(timestamp):
    """Fixed-width big endian encoding of a Timestamp, used in digests."""
    return timestamp.seconds.to_bytes(8, 'big', signed=True) + timestamp.nanos.to_bytes(4, 'big', signed=True)


async def stream_envelope(envelope):
    """Async request iterator for the single-envelope Broadcast stream."""
    yield envelope
