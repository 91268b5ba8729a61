"""Payload encryption collaborators.

Consumers accept any object implementing the CryptoLib protocol. Decryption
runs on the UTF-8 text of a delivery body before JSON parsing, so a failed
decrypt is handled exactly like malformed JSON.

Example:
    >>> from cryptography.fernet import Fernet
    >>> from amqpconsumer.crypto import FernetCrypto
    >>>
    >>> crypto = FernetCrypto(Fernet.generate_key())
    >>> token = await crypto.encrypt('{"id": 1}')
    >>> await crypto.decrypt(token)
    '{"id": 1}'
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from cryptography.fernet import Fernet, InvalidToken


@runtime_checkable
class CryptoLib(Protocol):
    """Asynchronous text encryption used for message payloads."""

    async def encrypt(self, plaintext: str) -> str: ...

    async def decrypt(self, ciphertext: str) -> str: ...


class FernetCrypto:
    """CryptoLib backed by ``cryptography.fernet``.

    Args:
        key: URL-safe base64 Fernet key (str or bytes).
    """

    def __init__(self, key: str | bytes) -> None:
        self._fernet = Fernet(key.encode() if isinstance(key, str) else key)

    async def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    async def decrypt(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except InvalidToken as e:
            raise ValueError("Invalid payload token") from e


__all__ = ["CryptoLib", "FernetCrypto"]
