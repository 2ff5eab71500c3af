"""Client entry point.

    gateway = await Gateway.connect(Config.from_file('network.yaml'))
    contract = gateway.get_network('mychannel').get_contract('basic')
    assets = await contract.evaluate_transaction('GetAllAssets')
    status = await contract.submit_transaction('CreateAsset', 'asset1', 'blue', '10', 'Tom', '100')
    await gateway.close()

:meth:`Gateway.evaluate` and :meth:`Gateway.submit` never raise for a
classified failure; they return a :class:`~hfgw.fabric.errors.Result`.
The Contract helpers unwrap it.
"""
import asyncio
import enum
import logging

from hfgw.fabric.config.config import DEFAULT_TIMEOUTS
from hfgw.fabric.errors import (CommitRejected, CommitTimeout, ConfigurationError, ErrorClassifier, EvaluateError,
                                GatewayClosed, Phase, Result)
from hfgw.fabric.msp.credential_store import CredentialStore
from hfgw.fabric.msp.identity import SigningIdentity
from hfgw.fabric.msp.mspManager import MSPManager
from hfgw.fabric.orderer import Orderer
from hfgw.fabric.peer import Peer
from hfgw.fabric.policy import EndorsementPolicy
from hfgw.fabric.remote import ChannelManager
from hfgw.fabric.transaction.assembler import TransactionAssembler
from hfgw.fabric.transaction.commit import CommitCode, CommitObserver
from hfgw.fabric.transaction.endorsement import ERROR_STATUS_THRESHOLD, EndorsementCollector
from hfgw.fabric.transaction.proposal import ProposalBuilder
from hfgw.fabric.transaction.submitter import OrderingSubmitter
from hfgw.util.crypto.crypto import ecies

_logger = logging.getLogger(__name__)
_logger.setLevel(logging.DEBUG)


class SubmitState(enum.Enum):
    CREATED = 'CREATED'
    PROPOSED = 'PROPOSED'
    ENDORSED = 'ENDORSED'
    ASSEMBLED = 'ASSEMBLED'
    ORDERED = 'ORDERED'
    PENDING_COMMIT = 'PENDING_COMMIT'
    COMMITTED = 'COMMITTED'
    REJECTED = 'REJECTED'
    TIMED_OUT = 'TIMED_OUT'
    FAILED = 'FAILED'


TERMINAL_STATES = (SubmitState.COMMITTED, SubmitState.REJECTED, SubmitState.TIMED_OUT, SubmitState.FAILED)


class _Submission(object):
    """State trail of one submit call."""

    def __init__(self):
        self.state = SubmitState.CREATED
        self.transitions = [SubmitState.CREATED]
        self.tx_id = None

    def advance(self, state):
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f'submission already terminal: {self.state}')
        self.state = state
        self.transitions.append(state)

    def ok(self, value, state):
        self.advance(state)
        return Result.ok(value, state=state, tx_id=self.tx_id, transitions=self.transitions)

    def err(self, error, state=SubmitState.FAILED):
        self.advance(state)
        return Result.err(error, state=state, tx_id=self.tx_id, transitions=self.transitions)


def _check_invocation(chaincode_id, function, args):
    if not chaincode_id or not isinstance(chaincode_id, str):
        raise ValueError('Missing "chaincode_id" parameter')
    if not function or not isinstance(function, str):
        raise ValueError('Missing "function" parameter')
    if not isinstance(args, (list, tuple)):
        raise TypeError(f'"args" must be a list but was {type(args)}')
    for arg in args:
        if not isinstance(arg, (str, bytes)):
            raise TypeError(f'chaincode arguments must be str or bytes, got {type(arg)}')


class Gateway(object):
    """Orchestrates evaluate and submit over the configured peers and
    orderer.

    Args:
        signing_identity: SigningIdentity of the client
        channel_id: default channel
        peers: endorsing peers
        orderer: ordering node transactions are broadcast to
        policy: EndorsementPolicy, defaults to one endorsement
        evaluate_peer: peer used for evaluate, defaults to the first peer
        commit_peer: peer asked for commit status, defaults to evaluate_peer
        timeouts: per-phase deadlines in seconds (config.Timeouts)
        channel_manager: owner of the peers' and orderer's channel handles,
            closed with the gateway
    """

    def __init__(self, signing_identity, channel_id, peers, orderer, policy=None, evaluate_peer=None,
                 commit_peer=None, timeouts=DEFAULT_TIMEOUTS, msp_manager=None, channel_manager=None,
                 proposal_builder=None, cryptoSuite=None, credential_store=None, close_timeout=5):

        if not peers:
            raise ValueError('Missing peers')
        if not channel_id:
            raise ValueError('Missing channel id')

        self._cryptoSuite = cryptoSuite or ecies()
        self._signing_identity = signing_identity
        self._channel_id = channel_id
        self._peers = list(peers)
        self._orderer = orderer
        self._policy = policy or EndorsementPolicy.min_count(1)
        self._evaluate_peer = evaluate_peer or self._peers[0]
        self._commit_peer = commit_peer or self._evaluate_peer
        self._timeouts = timeouts
        self._channel_manager = channel_manager
        self._credential_store = credential_store or CredentialStore(self._cryptoSuite)
        self._close_timeout = close_timeout

        self._builder = proposal_builder or ProposalBuilder(self._cryptoSuite)
        self._collector = EndorsementCollector(msp_manager or MSPManager(self._cryptoSuite), self._cryptoSuite)
        self._assembler = TransactionAssembler()
        self._submitter = OrderingSubmitter(orderer) if orderer else None

        self._closing = False
        self._inflight = set()

        _logger.debug(f'Gateway.const - channel: {channel_id} peers: {[peer.name for peer in self._peers]}'
                      f' orderer: {orderer.name if orderer else None}')

    @classmethod
    async def connect(cls, config):
        """Load credentials and open every channel described by ``config``.

        Fails, closing whatever was opened, on any credential, configuration
        or channel error; a half-configured gateway is never returned.
        """
        method = 'connect'
        _logger.debug(f'{method} - start')

        cryptoSuite = ecies()
        try:
            config.validate()
            policy = EndorsementPolicy.from_config(config.get('policy'))
            manager = ChannelManager(config.connection_options, cryptoSuite)
            msp_manager = MSPManager(cryptoSuite)
            msp_manager.loadMSPs(config.root_certs())
        except (ValueError, OSError) as e:
            _logger.error(f'{method} - invalid configuration: {e}')
            raise ConfigurationError(str(e), phase=Phase.CONNECT) from e

        store = CredentialStore(cryptoSuite)
        keystore, signcerts = config.credentials
        identity, signer = store.load(keystore, signcerts, config.mspid)

        try:
            timeouts = config.timeouts
            peers = {}
            for name, node in config.peers().items():
                handle = cls._open(manager, node)
                peers[name] = Peer(name, handle, node.get('mspid'), timeouts.endorse)

            orderers = []
            for name, node in config.orderers().items():
                handle = cls._open(manager, node)
                orderers.append(Orderer(name, handle, node.get('mspid'), timeouts.submit))

            if config.get('client.wait_for_ready'):
                wait = config.get('client.wait_for_ready_timeout')
                await asyncio.gather(*(handle.wait_ready(wait) for handle in manager.handles))

            endorsing = [peers[name] for name, node in config.peers().items() if node.get('endorsing_peer', True)]
            gateway = cls(SigningIdentity(identity, signer), config.channel, endorsing or list(peers.values()),
                          orderers[0], policy=policy,
                          evaluate_peer=peers[config.evaluate_peer], commit_peer=peers[config.commit_peer],
                          timeouts=timeouts, msp_manager=msp_manager, channel_manager=manager,
                          cryptoSuite=cryptoSuite, credential_store=store,
                          close_timeout=config.get('client.close_timeout'))
        except BaseException:
            _logger.error(f'{method} - failed, closing {len(manager.handles)} channel(s)')
            await manager.close_all(0)
            signer.close()
            raise

        _logger.info(f'{method} - connected as {identity.mspid} on channel {config.channel}')
        return gateway

    @staticmethod
    def _open(manager, node):
        client_cert = client_key = None
        if node.get('client_cert') and node.get('client_key'):
            try:
                with open(node['client_cert'], 'rb') as f:
                    client_cert = f.read()
                with open(node['client_key'], 'rb') as f:
                    client_key = f.read()
            except OSError as e:
                raise ConfigurationError(f'TLS client credentials of {node["url"]} unreadable: {e}',
                                         phase=Phase.CONNECT) from e
        return manager.open(node['url'], node.get('tls_ca_cert'), node.get('ssl-target-name-override'),
                            client_cert, client_key)

    @property
    def identity(self):
        return self._signing_identity.identity

    @property
    def channel_id(self):
        return self._channel_id

    @property
    def timeouts(self):
        return self._timeouts

    @property
    def closed(self):
        return self._closing

    def get_network(self, channel_id=None):
        return Network(self, channel_id or self._channel_id)

    def reload_credentials(self, key_dir, cert_dir, mspid=None):
        """Load new credentials and swap them in; calls already running keep
        the identity they started with."""
        identity, signer = self._credential_store.load(key_dir, cert_dir, mspid or self.identity.mspid)
        self._signing_identity = SigningIdentity(identity, signer)
        _logger.info(f'reload_credentials - now signing as {identity}')

    def _start(self):
        task = asyncio.current_task()
        self._inflight.add(task)
        return task

    async def evaluate(self, chaincode_id, function, args=(), channel_id=None, transient_map=None):
        """Run a read-only query on the evaluate peer.

        Returns: Result holding the chaincode response payload (bytes)
        """
        method = 'evaluate'
        _logger.debug(f'{method} - start {chaincode_id}.{function}')
        _check_invocation(chaincode_id, function, args)

        if self._closing:
            return Result.err(GatewayClosed('Gateway is closed', phase=Phase.EVALUATE))

        signing = self._signing_identity
        task = self._start()
        tx_id = None
        try:
            proposal = self._builder.build(channel_id or self._channel_id, chaincode_id, function, list(args),
                                           signing.identity, signing.signer, transient_map)
            tx_id = proposal.tx_id
            deadline = self._timeouts.evaluate
            peer = self._evaluate_peer
            response = await asyncio.wait_for(peer.send_proposal(proposal.signed_proposal(), deadline), deadline)
        except Exception as e:
            error = ErrorClassifier.classify(e, Phase.EVALUATE)
            _logger.error(f'{method} - {chaincode_id}.{function} failed: {error}')
            return Result.err(error, tx_id=tx_id)
        finally:
            self._inflight.discard(task)

        if response.response.status >= ERROR_STATUS_THRESHOLD:
            error = EvaluateError(response.response.message or f'status {response.response.status}',
                                  phase=Phase.EVALUATE,
                                  details=[{'peer': peer.name, 'status': response.response.status}])
            _logger.error(f'{method} - {chaincode_id}.{function} failed: {error}')
            return Result.err(error, tx_id=tx_id)

        return Result.ok(response.response.payload, tx_id=tx_id)

    async def submit(self, chaincode_id, function, args=(), channel_id=None, transient_map=None):
        """Endorse, order and wait for commit of a transaction.

        Phases run strictly one after another, each under its own deadline.
        Returns: Result holding the CommitStatus; ``state`` is the terminal
        SubmitState and ``transitions`` the path taken.
        """
        method = 'submit'
        _logger.debug(f'{method} - start {chaincode_id}.{function}')
        _check_invocation(chaincode_id, function, args)

        submission = _Submission()
        if self._closing:
            return submission.err(GatewayClosed('Gateway is closed', phase=Phase.ENDORSE))
        if self._submitter is None:
            return submission.err(ConfigurationError('No orderer configured', phase=Phase.SUBMIT))

        channel_id = channel_id or self._channel_id
        signing = self._signing_identity
        task = self._start()
        phase = Phase.ENDORSE
        try:
            proposal = self._builder.build(channel_id, chaincode_id, function, list(args),
                                           signing.identity, signing.signer, transient_map)
            submission.tx_id = proposal.tx_id
            submission.advance(SubmitState.PROPOSED)

            endorsements = await self._collector.collect(proposal, self._peers, self._policy,
                                                         self._timeouts.endorse)
            submission.advance(SubmitState.ENDORSED)

            phase = Phase.ASSEMBLE
            transaction = self._assembler.assemble(proposal, endorsements, self._policy)
            submission.advance(SubmitState.ASSEMBLED)

            phase = Phase.SUBMIT
            await self._submitter.submit(transaction, self._timeouts.submit)
            submission.advance(SubmitState.ORDERED)

            phase = Phase.COMMIT
            submission.advance(SubmitState.PENDING_COMMIT)
            observer = CommitObserver(self._commit_peer, channel_id, signing, self._cryptoSuite)
            status = await observer.await_commit(transaction.tx_id, self._timeouts.commit_status)
        except Exception as e:
            error = ErrorClassifier.classify(e, phase)
            _logger.error(f'{method} - {chaincode_id}.{function} tx_id: {submission.tx_id} failed in'
                          f' {phase.value}: {error}')
            return submission.err(error)
        finally:
            self._inflight.discard(task)

        if status.code == CommitCode.VALID:
            _logger.debug(f'{method} - {status.tx_id} committed in block {status.block_number}')
            return submission.ok(status, SubmitState.COMMITTED)

        if status.code == CommitCode.TIMED_OUT:
            error = CommitTimeout(f'Gave up waiting for {status.tx_id} after {self._timeouts.commit_status}s;'
                                  f' query the transaction id before resubmitting', phase=Phase.COMMIT,
                                  status=status)
            return submission.err(error, SubmitState.TIMED_OUT)

        error = CommitRejected(f'Transaction {status.tx_id} failed to commit with status code'
                               f' {status.validation_code}', phase=Phase.COMMIT, status=status)
        _logger.error(f'{method} - {error}')
        return submission.err(error, SubmitState.REJECTED)

    async def close(self, timeout=None):
        """Stop admitting calls, give in-flight calls ``timeout`` seconds to
        finish, cancel the rest, then close every channel and drop the key."""
        if self._closing:
            return
        self._closing = True
        timeout = self._close_timeout if timeout is None else timeout
        current = asyncio.current_task()

        inflight = [task for task in self._inflight if task is not current]
        _logger.debug(f'close - {len(inflight)} call(s) in flight')
        if inflight:
            _, pending = await asyncio.wait(inflight, timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                _logger.warning(f'close - cancelled {len(pending)} call(s) still running after {timeout}s')
                await asyncio.gather(*pending, return_exceptions=True)

        if self._channel_manager is not None:
            await self._channel_manager.close_all(timeout)
        self._signing_identity.signer.close()
        _logger.info('close - gateway closed')

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


class Network(object):

    def __init__(self, gateway, channel_id):
        self._gateway = gateway
        self._channel_id = channel_id

    @property
    def channel_id(self):
        return self._channel_id

    def get_contract(self, chaincode_id):
        return Contract(self, chaincode_id)


class Contract(object):
    """Chaincode on a channel; raises the classified error instead of
    returning a Result."""

    def __init__(self, network, chaincode_id):
        self._network = network
        self._chaincode_id = chaincode_id

    @property
    def chaincode_id(self):
        return self._chaincode_id

    async def evaluate_transaction(self, function, *args):
        result = await self._network._gateway.evaluate(self._chaincode_id, function, args,
                                                       channel_id=self._network.channel_id)
        return result.unwrap()

    async def submit_transaction(self, function, *args):
        result = await self._network._gateway.submit(self._chaincode_id, function, args,
                                                     channel_id=self._network.channel_id)
        return result.unwrap()
