from hfgw.protos import common_pb2, peer_pb2


def create_serialized_identity(mspid, certificate):
    serialized_identity = common_pb2.SerializedIdentity()
    serialized_identity.mspid = mspid
    serialized_identity.id_bytes = certificate
    return serialized_identity.SerializeToString()


def create_cc_spec(chaincode_id, args, cc_type='GOLANG'):
    """Create a chaincode invocation spec.

    Args:
        chaincode_id: chaincode name
        args: already encoded arguments, function name first
        cc_type: chaincode language
    Returns: ChaincodeInvocationSpec
    """
    cc_spec = peer_pb2.ChaincodeSpec()
    cc_spec.type = peer_pb2.ChaincodeSpec.Type.Value(cc_type)
    cc_spec.chaincode_id.name = chaincode_id
    cc_spec.input.args.extend(args)

    invocation_spec = peer_pb2.ChaincodeInvocationSpec()
    invocation_spec.chaincode_spec.CopyFrom(cc_spec)
    return invocation_spec


def create_envelope(signature, payload_bytes):
    envelope = common_pb2.Envelope()
    envelope.payload = payload_bytes
    envelope.signature = signature
    return envelope
