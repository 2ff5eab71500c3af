"""Error taxonomy shared by every phase of the client.

Components raise the classes below; :class:`ErrorClassifier` turns anything
else (gRPC status errors, timeouts, OS errors) into one of them, and the
gateway hands the outcome back to callers as a :class:`Result`.
"""
import asyncio
import enum
import logging

import grpc

_logger = logging.getLogger(__name__)


class ErrorKind(enum.Enum):
    CREDENTIAL_NOT_FOUND = 'CredentialNotFound'
    CREDENTIAL_INVALID = 'CredentialInvalid'
    CONFIGURATION = 'ConfigurationError'
    CONNECTION = 'ConnectionError'
    INVALID_ENDPOINT = 'InvalidEndpoint'
    TRUST_ANCHOR_NOT_FOUND = 'TrustAnchorNotFound'
    TRUST_ANCHOR_INVALID = 'TrustAnchorInvalid'
    EVALUATE = 'EvaluateError'
    ENDORSEMENT_POLICY_UNMET = 'EndorsementPolicyUnmet'
    ENDORSEMENT_MISMATCH = 'EndorsementMismatch'
    ASSEMBLY = 'AssemblyError'
    SUBMISSION = 'SubmissionError'
    SUBMISSION_REJECTED = 'SubmissionRejected'
    COMMIT_TIMEOUT = 'CommitTimeout'
    COMMIT_REJECTED = 'CommitRejected'
    COMMIT_STATUS = 'CommitStatusError'
    GATEWAY_CLOSED = 'GatewayClosed'


class Phase(enum.Enum):
    CREDENTIALS = 'credentials'
    CONNECT = 'connect'
    EVALUATE = 'evaluate'
    ENDORSE = 'endorse'
    ASSEMBLE = 'assemble'
    SUBMIT = 'submit'
    COMMIT = 'commit'


class GatewayError(Exception):
    """Base class of every classified failure.

    Attributes:
        kind: stable :class:`ErrorKind`
        phase: :class:`Phase` in which the failure happened, when known
        details: phase specific detail, e.g. per-peer endorsement outcomes
        code: gRPC status code reported by the remote, if any
        retryable: whether re-running the call (with a fresh proposal) is safe
    """

    kind = None
    retryable = False

    def __init__(self, message, phase=None, details=None, code=None):
        super(GatewayError, self).__init__(message)
        self.message = message
        self.phase = phase
        self.details = details if details is not None else []
        self.code = code

    def __str__(self):
        kind = self.kind.value if self.kind else type(self).__name__
        text = f'{kind}: {self.message}'
        if self.code is not None:
            text += f' (gRPC status: {self.code.name})'
        return text


class CredentialError(GatewayError):
    kind = ErrorKind.CREDENTIAL_INVALID


class CredentialNotFound(CredentialError):
    kind = ErrorKind.CREDENTIAL_NOT_FOUND


class CredentialInvalid(CredentialError):
    kind = ErrorKind.CREDENTIAL_INVALID


class ConfigurationError(GatewayError):
    kind = ErrorKind.CONFIGURATION


class InvalidEndpoint(ConfigurationError):
    kind = ErrorKind.INVALID_ENDPOINT


class TrustAnchorNotFound(ConfigurationError):
    kind = ErrorKind.TRUST_ANCHOR_NOT_FOUND


class TrustAnchorInvalid(ConfigurationError):
    kind = ErrorKind.TRUST_ANCHOR_INVALID


class ChannelConnectionError(GatewayError):
    kind = ErrorKind.CONNECTION


class EvaluateError(GatewayError):
    kind = ErrorKind.EVALUATE


class EndorseError(GatewayError):
    kind = ErrorKind.ENDORSEMENT_POLICY_UNMET
    retryable = True


class EndorsementPolicyUnmet(EndorseError):
    kind = ErrorKind.ENDORSEMENT_POLICY_UNMET


class EndorsementMismatch(EndorseError):
    kind = ErrorKind.ENDORSEMENT_MISMATCH


class AssemblyError(GatewayError):
    kind = ErrorKind.ASSEMBLY
    retryable = True


class SubmitError(GatewayError):
    kind = ErrorKind.SUBMISSION


class SubmissionError(SubmitError):
    kind = ErrorKind.SUBMISSION


class SubmissionRejected(SubmitError):
    kind = ErrorKind.SUBMISSION_REJECTED


class CommitError(GatewayError):
    kind = ErrorKind.COMMIT_STATUS

    def __init__(self, message, phase=None, details=None, code=None, status=None):
        super(CommitError, self).__init__(message, phase, details, code)
        self.status = status


class CommitTimeout(CommitError):
    kind = ErrorKind.COMMIT_TIMEOUT


class CommitRejected(CommitError):
    kind = ErrorKind.COMMIT_REJECTED


class CommitStatusError(CommitError):
    kind = ErrorKind.COMMIT_STATUS


class GatewayClosed(GatewayError):
    kind = ErrorKind.GATEWAY_CLOSED


def rpc_status(exc):
    """Return (code, details) of a gRPC error, or (None, None)."""
    if not isinstance(exc, grpc.RpcError):
        return None, None
    code = exc.code() if callable(getattr(exc, 'code', None)) else None
    details = exc.details() if callable(getattr(exc, 'details', None)) else None
    return code, details


class ErrorClassifier(object):
    """Maps an arbitrary exception raised during ``phase`` into the taxonomy."""

    _BY_PHASE = {
        Phase.CREDENTIALS: CredentialInvalid,
        Phase.CONNECT: ChannelConnectionError,
        Phase.EVALUATE: EvaluateError,
        Phase.ENDORSE: EndorsementPolicyUnmet,
        Phase.ASSEMBLE: AssemblyError,
        Phase.SUBMIT: SubmissionError,
        Phase.COMMIT: CommitStatusError,
    }

    @classmethod
    def classify(cls, exc, phase):
        if isinstance(exc, asyncio.CancelledError):
            raise TypeError('cancellation is not a classifiable failure')

        if isinstance(exc, GatewayError):
            if exc.phase is None:
                exc.phase = phase
            return exc

        code, details = rpc_status(exc)
        timed_out = isinstance(exc, asyncio.TimeoutError) or code == grpc.StatusCode.DEADLINE_EXCEEDED

        if phase == Phase.COMMIT and timed_out:
            error_class = CommitTimeout
        elif phase == Phase.CONNECT and isinstance(exc, ValueError):
            error_class = InvalidEndpoint
        elif phase == Phase.CREDENTIALS and isinstance(exc, FileNotFoundError):
            error_class = CredentialNotFound
        else:
            error_class = cls._BY_PHASE[phase]

        if details:
            message = details
        elif timed_out:
            message = f'{phase.value} deadline exceeded'
        else:
            message = str(exc) or type(exc).__name__

        classified = error_class(message, phase=phase, code=code)
        classified.__cause__ = exc
        _logger.debug(f'classify - {type(exc).__name__} during {phase.value} -> {classified.kind.value}')
        return classified


class Result(object):
    """Tagged outcome of a gateway call: either ``value`` or ``error`` is set.

    ``state`` is the terminal state reached (see ``SubmitState`` in
    :mod:`hfgw.fabric.gateway`) and ``transitions`` the states passed through.
    """

    __slots__ = ('_value', '_error', 'state', 'tx_id', 'transitions')

    def __init__(self, value=None, error=None, state=None, tx_id=None, transitions=()):
        if error is not None and not isinstance(error, GatewayError):
            raise TypeError('Result error must be a GatewayError')
        self._value = value
        self._error = error
        self.state = state
        self.tx_id = tx_id
        self.transitions = tuple(transitions)

    @classmethod
    def ok(cls, value, **kwargs):
        return cls(value=value, **kwargs)

    @classmethod
    def err(cls, error, **kwargs):
        return cls(error=error, **kwargs)

    @property
    def is_ok(self):
        return self._error is None

    @property
    def value(self):
        if self._error is not None:
            raise AttributeError(f'Result holds an error: {self._error}')
        return self._value

    @property
    def error(self):
        return self._error

    def unwrap(self):
        if self._error is not None:
            raise self._error
        return self._value

    def __repr__(self):
        if self.is_ok:
            return f'Result.ok({self._value!r}, state={self.state})'
        return f'Result.err({self._error!s}, state={self.state})'
