import logging
import os

from hfgw.fabric.errors import CredentialInvalid, CredentialNotFound, Phase
from hfgw.fabric.msp.identity import Identity, Signer, SigningIdentity
from hfgw.util.crypto.crypto import ecies

_logger = logging.getLogger(__name__)


class CredentialStore(object):
    """Loads the client identity from an MSP style directory layout::

        msp/keystore/<private key>
        msp/signcerts/<certificate>

    Each directory must hold exactly one file (dot files are ignored).
    Nothing is retried: a failure here is fatal to startup.
    """

    def __init__(self, cryptoSuite=None):
        self._cryptoSuite = cryptoSuite or ecies()

    def load(self, key_dir, cert_dir, mspid):
        """Load the identity and signer.

        Args:
            key_dir: directory containing the private key
            cert_dir: directory containing the signing certificate
            mspid: membership id the identity belongs to
        Returns: (Identity, Signer)
        Raises:
            CredentialNotFound: a directory is unset, missing or empty
            CredentialInvalid: unreadable or too many files, unparsable
                material, or a key that does not match the certificate
        """
        method = 'load'
        _logger.debug(f'{method} - start mspid: {mspid}')

        if not mspid:
            raise CredentialInvalid('Missing membership id', phase=Phase.CREDENTIALS)

        key_pem = self._read_single_file(key_dir, 'private key')
        cert_pem = self._read_single_file(cert_dir, 'signing certificate')

        try:
            identity = Identity(cert_pem, mspid, self._cryptoSuite)
        except ValueError as e:
            raise CredentialInvalid(f'Signing certificate in {cert_dir} does not parse: {e}',
                                    phase=Phase.CREDENTIALS) from e

        try:
            private_key = self._cryptoSuite.load_private_key(key_pem)
        except ValueError as e:
            raise CredentialInvalid(f'Private key in {key_dir} does not parse: {e}', phase=Phase.CREDENTIALS) from e

        if not self._cryptoSuite.public_key_matches(private_key, identity.public_key):
            raise CredentialInvalid(f'Private key in {key_dir} does not match the certificate in {cert_dir}',
                                    phase=Phase.CREDENTIALS)

        _logger.debug(f'{method} - loaded {identity}')
        return identity, Signer(self._cryptoSuite, private_key)

    def load_signing_identity(self, key_dir, cert_dir, mspid):
        return SigningIdentity(*self.load(key_dir, cert_dir, mspid))

    @staticmethod
    def _read_single_file(directory, what):
        if not directory:
            raise CredentialNotFound(f'No directory configured for {what}', phase=Phase.CREDENTIALS)
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda entry: entry.name)
        except (FileNotFoundError, NotADirectoryError) as e:
            raise CredentialNotFound(f'Directory for {what} not found: {directory}', phase=Phase.CREDENTIALS) from e
        except OSError as e:
            raise CredentialInvalid(f'Directory for {what} unreadable: {directory}: {e}',
                                    phase=Phase.CREDENTIALS) from e

        files = [entry.path for entry in entries if entry.is_file() and not entry.name.startswith('.')]

        if not files:
            raise CredentialNotFound(f"Directory '{directory}' contains no files", phase=Phase.CREDENTIALS)
        if len(files) > 1:
            raise CredentialInvalid(f"Directory '{directory}' must contain exactly one {what} file,"
                                    f' found {len(files)}', phase=Phase.CREDENTIALS)

        try:
            with open(files[0], 'rb') as f:
                return f.read()
        except FileNotFoundError as e:
            raise CredentialNotFound(f'File for {what} vanished: {files[0]}', phase=Phase.CREDENTIALS) from e
        except OSError as e:
            raise CredentialInvalid(f'File for {what} unreadable: {files[0]}: {e}', phase=Phase.CREDENTIALS) from e
