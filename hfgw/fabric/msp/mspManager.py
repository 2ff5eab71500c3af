import logging

from hfgw.fabric.msp.msp import MSP
from hfgw.util.crypto.crypto import ecies

_logger = logging.getLogger(__name__)
_logger.setLevel(logging.DEBUG)


class MSPManager(object):

    def __init__(self, cryptoSuite=None):
        self._msps = {}
        self._cryptoSuite = cryptoSuite or ecies()

    def loadMSPs(self, mspConfigs):
        """Load MSPs from ``{mspid: [root certificate PEM bytes, ...]}``."""
        method = 'loadMSPs'
        _logger.debug(f'{method} - start number of msps={len(mspConfigs)}')

        if not isinstance(mspConfigs, dict):
            raise TypeError('"mspConfigs" argument must be a mapping of mspid to root certificates')

        for mspid, root_certs in mspConfigs.items():
            self.addMSP({
                'id': mspid,
                'rootCerts': root_certs or [],
                'cryptoSuite': self._cryptoSuite,
            })

    def addMSP(self, config):
        if not config.get('cryptoSuite'):
            config['cryptoSuite'] = self._cryptoSuite

        msp = MSP(config)
        _logger.debug(f'addMSP - msp={msp.id}')
        self._msps[msp.id] = msp
        return msp

    def getMSPs(self):
        return self._msps

    def getMSP(self, id):
        return self._msps.get(id)

    def deserializeIdentity(self, mspid, certificate):
        """Build the identity of an endorser and check it against its MSP.

        Returns: the Identity, or None when the MSP is known and rejects it.
        Unknown MSP ids are accepted unvalidated, which is what a client
        without channel configuration can do.
        """
        msp = self._msps.get(mspid)
        if msp is None:
            return MSP({'id': mspid, 'cryptoSuite': self._cryptoSuite}).deserializeIdentity(mspid, certificate)

        identity = msp.deserializeIdentity(mspid, certificate)
        if not msp.validate(identity):
            return None
        return identity
