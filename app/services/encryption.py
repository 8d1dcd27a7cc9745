"""Backup payload encryption (AES-256-GCM, PBKDF2-derived key per payload)."""

from __future__ import annotations

import base64
import json
import os
from dataclasses import dataclass
from typing import Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

ALGORITHM = "AES-256-GCM"
_SALT_BYTES = 16
_IV_BYTES = 12


class EncryptionError(RuntimeError):
    pass


@dataclass(frozen=True)
class EncryptedEnvelope:
    ciphertext: bytes
    iv: bytes
    salt: bytes
    algorithm: str = ALGORITHM

    def to_bytes(self) -> bytes:
        return json.dumps(
            {
                "algorithm": self.algorithm,
                "iv": base64.b64encode(self.iv).decode("ascii"),
                "salt": base64.b64encode(self.salt).decode("ascii"),
                "data": base64.b64encode(self.ciphertext).decode("ascii"),
            }
        ).encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes) -> EncryptedEnvelope:
        try:
            doc = json.loads(raw.decode("utf-8"))
            return cls(
                ciphertext=base64.b64decode(doc["data"]),
                iv=base64.b64decode(doc["iv"]),
                salt=base64.b64decode(doc["salt"]),
                algorithm=doc.get("algorithm", ALGORITHM),
            )
        except (ValueError, KeyError, UnicodeDecodeError) as exc:
            raise EncryptionError("Malformed encryption envelope") from exc


class PayloadCipher(Protocol):
    def encrypt(self, plaintext: bytes) -> EncryptedEnvelope: ...

    def decrypt(self, envelope: EncryptedEnvelope) -> bytes: ...


class AesGcmCipher:
    def __init__(self, master_key: str, iterations: int = 100_000):
        if not master_key:
            raise EncryptionError("Backup encryption key not configured")
        self._master_key = master_key.encode("utf-8")
        self.iterations = iterations

    def _derive(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt, iterations=self.iterations)
        return kdf.derive(self._master_key)

    def encrypt(self, plaintext: bytes) -> EncryptedEnvelope:
        salt = os.urandom(_SALT_BYTES)
        iv = os.urandom(_IV_BYTES)
        ciphertext = AESGCM(self._derive(salt)).encrypt(iv, plaintext, None)
        return EncryptedEnvelope(ciphertext=ciphertext, iv=iv, salt=salt)

    def decrypt(self, envelope: EncryptedEnvelope) -> bytes:
        if envelope.algorithm != ALGORITHM:
            raise EncryptionError(f"Unsupported algorithm {envelope.algorithm!r}")
        try:
            return AESGCM(self._derive(envelope.salt)).decrypt(envelope.iv, envelope.ciphertext, None)
        except InvalidTag as exc:
            raise EncryptionError("Backup payload failed authentication") from exc


def get_cipher() -> PayloadCipher | None:
    from app.config import settings

    if not settings.backup_encryption_key:
        return None
    return AesGcmCipher(settings.backup_encryption_key, iterations=settings.encryption_iterations)
