"""Gateway credential encryption using Fernet symmetric encryption."""

from __future__ import annotations

from cryptography.fernet import Fernet, InvalidToken

from indexnow.config import get_settings

_fernet: Fernet | None = None


class CredentialDecryptionError(ValueError):
    """Stored ciphertext could not be decrypted with the configured key."""


def _get_fernet() -> Fernet:
    global _fernet
    if _fernet is None:
        key = get_settings().encryption_key
        if not key:
            raise ValueError(
                "ENCRYPTION_KEY not set. Generate one with: "
                "python -c 'from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())'"
            )
        _fernet = Fernet(key.encode())
    return _fernet


def encrypt_credential(plaintext: str) -> str:
    """Encrypt a credential, returning URL-safe base64 ciphertext."""
    return _get_fernet().encrypt(plaintext.encode()).decode()


def decrypt_credential(ciphertext: str) -> str:
    try:
        return _get_fernet().decrypt(ciphertext.encode()).decode()
    except InvalidToken as exc:
        raise CredentialDecryptionError("Stored credential cannot be decrypted") from exc


def reset_fernet() -> None:
    """Reset the cached Fernet instance (for key rotation and tests)."""
    global _fernet
    _fernet = None
