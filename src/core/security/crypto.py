from __future__ import annotations

from cryptography.fernet import Fernet, InvalidToken, MultiFernet


class EncryptionError(ValueError):
    pass


class SecurityCipher:
    """Fernet encryption for secrets at rest.

    ``fernet_keys`` is a comma-separated list; the first key encrypts and every
    key is tried on decrypt, so keys can be rotated without losing sessions.
    """

    def __init__(self, fernet_keys: str) -> None:
        keys = [key.strip() for key in fernet_keys.split(",") if key.strip()]
        if not keys:
            raise EncryptionError("At least one Fernet key is required")
        try:
            self._fernet = MultiFernet([Fernet(key.encode("utf-8")) for key in keys])
        except ValueError as exc:
            raise EncryptionError("Invalid Fernet key") from exc

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str, *, max_age_seconds: int | None = None) -> str:
        try:
            plaintext = self._fernet.decrypt(ciphertext.encode("utf-8"), ttl=max_age_seconds)
        except InvalidToken as exc:
            raise EncryptionError("Unable to decrypt value") from exc
        return plaintext.decode("utf-8")

    def rotate(self, ciphertext: str) -> str:
        try:
            return self._fernet.rotate(ciphertext.encode("utf-8")).decode("utf-8")
        except InvalidToken as exc:
            raise EncryptionError("Unable to re-encrypt value") from exc
