"""
Encryption of integration credentials at rest
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

from cryptography.fernet import Fernet, InvalidToken

from calsync.core.exceptions import SyncQueueError

ENCRYPTED_KEY = '__encrypted__'

logger = logging.getLogger(__name__)


class CredentialError(SyncQueueError):
    """Stored credentials could not be encrypted or decrypted"""
    pass


class CredentialCipher:
    """Seals credential dicts into Fernet tokens and opens them again"""

    def __init__(self, key: Union[str, bytes]):
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as e:
            raise CredentialError(f"Invalid credentials key: {e}") from e

    @classmethod
    def from_key_file(cls, key_file: Union[str, Path]) -> 'CredentialCipher':
        """Load the key from a file, generating one with 0600 permissions if missing"""
        path = Path(key_file)
        try:
            if path.exists():
                key = path.read_bytes().strip()
            else:
                key = Fernet.generate_key()
                path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
                path.write_bytes(key)
                os.chmod(path, 0o600)
                logger.info(f"Generated new credentials key at {path}")
        except OSError as e:
            raise CredentialError(f"Failed to initialize credentials key: {e}") from e
        return cls(key)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> Optional['CredentialCipher']:
        """Cipher for the configured key, or None when credentials stay in plain JSON"""
        security = config.get('security', {})
        if security.get('credentials_key'):
            return cls(security['credentials_key'])
        if security.get('credentials_key_file'):
            return cls.from_key_file(security['credentials_key_file'])
        return None

    def seal(self, credentials: Optional[Dict[str, Any]]) -> Optional[Dict[str, str]]:
        if not credentials:
            return None
        token = self._fernet.encrypt(json.dumps(credentials).encode())
        return {ENCRYPTED_KEY: token.decode()}

    def open(self, stored: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if not stored:
            return {}
        if not is_sealed(stored):
            return dict(stored)
        try:
            return json.loads(self._fernet.decrypt(stored[ENCRYPTED_KEY].encode()))
        except InvalidToken as e:
            raise CredentialError("Stored credentials do not match the configured key") from e


def is_sealed(stored: Optional[Dict[str, Any]]) -> bool:
    return bool(stored) and ENCRYPTED_KEY in stored
