"""
Encryption helpers for OAuth credentials stored at rest.

Tokens are encrypted with Fernet using TOKEN_ENCRYPTION_KEY from the app
config. The EncryptedToken column type in crm_database applies these on the
way in and out, so services only ever see plaintext tokens.
"""

from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from flask import current_app


class EncryptionError(Exception):
    """Raised when encryption or decryption of a credential fails"""
    pass


def get_fernet() -> Fernet:
    key = current_app.config.get('TOKEN_ENCRYPTION_KEY')
    if not key:
        raise EncryptionError(
            "TOKEN_ENCRYPTION_KEY not configured. "
            "Generate with: python -c 'from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())'"
        )
    if isinstance(key, str):
        key = key.encode('utf-8')
    return Fernet(key)


def encrypt_token(plaintext: Optional[str]) -> Optional[str]:
    """Encrypt a token for storage. None and empty values are stored as-is."""
    if not plaintext:
        return plaintext
    try:
        return get_fernet().encrypt(plaintext.encode('utf-8')).decode('utf-8')
    except (TypeError, ValueError) as e:
        raise EncryptionError(f"Encryption failed: {e}")


def decrypt_token(ciphertext: Optional[str]) -> Optional[str]:
    """Decrypt a stored token back to plaintext."""
    if not ciphertext:
        return ciphertext
    try:
        return get_fernet().decrypt(ciphertext.encode('utf-8')).decode('utf-8')
    except (InvalidToken, TypeError, ValueError) as e:
        raise EncryptionError(f"Decryption failed: {e}")


def generate_key() -> str:
    """Generate a new value for TOKEN_ENCRYPTION_KEY."""
    return Fernet.generate_key().decode('utf-8')
