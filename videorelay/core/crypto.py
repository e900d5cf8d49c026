"""Symmetric encryption for stored aggregator credentials.

Fernet with a key derived from the configured secret via PBKDF2-HMAC-SHA256.
"""

import base64

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

_SALT = b"videorelay-credentials-v1"
_ITERATIONS = 100_000


class CredentialDecryptError(Exception):
    """Ciphertext was tampered with or encrypted under a different key."""


class CredentialCipher:
    def __init__(self, secret: str):
        if not secret:
            raise ValueError("Encryption secret must not be empty")
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=_SALT,
            iterations=_ITERATIONS,
        )
        key = base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))
        self._fernet = Fernet(key)

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        except InvalidToken as e:
            raise CredentialDecryptError("Stored credentials could not be decrypted") from e
