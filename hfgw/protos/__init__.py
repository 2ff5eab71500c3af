"""Wire schema.

The ``.proto`` files next to this module are compiled when the package is
first imported (``grpc.protos_and_services``, backed by grpcio-tools), so the
generated ``*_pb2`` / ``*_pb2_grpc`` modules are never checked in. Paths are
resolved against ``sys.path``, hence the ``hfgw/protos/...`` form.
"""
import grpc

common_pb2 = grpc.protos('hfgw/protos/common/common.proto')
peer_pb2, peer_pb2_grpc = grpc.protos_and_services('hfgw/protos/peer/peer.proto')
ab_pb2, ab_pb2_grpc = grpc.protos_and_services('hfgw/protos/orderer/ab.proto')
gateway_pb2, gateway_pb2_grpc = grpc.protos_and_services('hfgw/protos/gateway/gateway.proto')
