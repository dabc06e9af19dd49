from __future__ import annotations

from src.core.config import settings
from src.core.security.crypto import EncryptionError, SecurityCipher

_PLACEHOLDER_KEY = "replace_with_fernet_key"


def get_security_cipher(keys: str | None = None) -> SecurityCipher:
    """Cipher for client sessions persisted at rest.

    ``MASTER_ENCRYPTION_KEY`` may list several comma-separated Fernet keys,
    newest first, while stored sessions are being rotated.
    """
    configured = (settings.master_encryption_key if keys is None else keys) or ""
    if not configured.strip() or _PLACEHOLDER_KEY in configured:
        raise ValueError("MASTER_ENCRYPTION_KEY is not configured with a valid Fernet key")
    try:
        return SecurityCipher(configured)
    except EncryptionError as exc:
        raise ValueError(f"MASTER_ENCRYPTION_KEY is invalid: {exc}") from exc
