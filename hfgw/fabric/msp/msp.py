import logging

from cryptography.exceptions import InvalidSignature

from hfgw.fabric.msp.identity import Identity

_logger = logging.getLogger(__name__)
_logger.setLevel(logging.DEBUG)


class MSP(object):
    """Membership service provider known to the client: an id plus the root
    certificates its members' certificates must be issued by.

    An MSP configured without root certificates accepts any well-formed
    certificate presented under its id.
    """

    def __init__(self, config):
        _logger.debug('const - start')
        if not config:
            raise ValueError('Missing required parameter "config"')
        if not config.get('id'):
            raise ValueError('Parameter "config" missing required field "id"')
        if not config.get('cryptoSuite'):
            raise ValueError('Parameter "config" missing required field "cryptoSuite"')

        self._id = config['id']
        self.cryptoSuite = config['cryptoSuite']
        self._rootCerts = [self.cryptoSuite.load_certificate(pem) for pem in config.get('rootCerts', [])]

    @property
    def id(self):
        return self._id

    @property
    def root_certs(self):
        return list(self._rootCerts)

    def deserializeIdentity(self, mspid, certificate):
        return Identity(certificate, mspid, self.cryptoSuite)

    def validate(self, identity):
        if identity.mspid != self._id:
            _logger.debug(f'validate - identity belongs to {identity.mspid}, not {self._id}')
            return False

        if not self._rootCerts:
            return True

        for root in self._rootCerts:
            try:
                identity.x509.verify_directly_issued_by(root)
            except (ValueError, TypeError, InvalidSignature):
                continue
            return True

        _logger.debug(f'validate - certificate of {identity} not issued by any root of {self._id}')
        return False
