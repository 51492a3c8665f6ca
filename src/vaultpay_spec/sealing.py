"""Auditor sealing: results encrypted to one recipient key.

Access control is decided by addressing. A sealed output names its recipient
key; only the holder of the matching private key can derive the record key.
Nothing inside the circuits checks permissions.

Each record is ChaCha20-Poly1305 under a key expanded with HKDF-SHA256 from
the X25519 secret, salted with the output nonce. The recipient key is bound
as associated data, so a record re-addressed to another key fails to open.
"""

from __future__ import annotations

from typing import Iterable, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import x25519
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .config import NONCE_SIZE, SEAL_NONCE_SIZE
from .crypto.cipher import shared_secret, x25519_public_bytes
from .crypto.constant_time import constant_time_eq
from .errors import ErrorCode, SpecError
from .types import SealedOutput

SEAL_DOMAIN_TAG = b"vaultpay/sealed-output/v1"
_SEAL_KEY_INFO = b"vaultpay/sealed-output/key"


def _record_cipher(secret: bytes, nonce: bytes) -> ChaCha20Poly1305:
    if len(nonce) != NONCE_SIZE:
        raise SpecError(ErrorCode.INVALID_FORMAT, "nonce must be 16 bytes")
    key = HKDF(algorithm=hashes.SHA256(), length=32, salt=nonce, info=_SEAL_KEY_INFO).derive(secret)
    return ChaCha20Poly1305(key)


def _aad(recipient: bytes) -> bytes:
    return SEAL_DOMAIN_TAG + recipient


def seal(
    plaintext: bytes,
    recipient: bytes,
    sender_key: x25519.X25519PrivateKey,
    nonce: bytes,
) -> SealedOutput:
    cipher = _record_cipher(shared_secret(sender_key, recipient), nonce)
    ciphertext = cipher.encrypt(nonce[:SEAL_NONCE_SIZE], plaintext, _aad(recipient))
    return SealedOutput(recipient=recipient, nonce=nonce, ciphertext=ciphertext)


def open_sealed(
    sealed: SealedOutput,
    recipient_key: x25519.X25519PrivateKey,
    sender_public: bytes,
) -> bytes:
    recipient = x25519_public_bytes(recipient_key)
    if not constant_time_eq(recipient, sealed.recipient):
        raise SpecError(ErrorCode.UNAUTHORIZED, "sealed output is addressed to another key")
    cipher = _record_cipher(shared_secret(recipient_key, sender_public), sealed.nonce)
    try:
        return cipher.decrypt(sealed.nonce[:SEAL_NONCE_SIZE], sealed.ciphertext, _aad(recipient))
    except InvalidTag as exc:
        raise SpecError(ErrorCode.INVALID_PAYLOAD, "sealed output failed authentication") from exc


def find_sealed_for(sealed: Iterable[SealedOutput], recipient: bytes) -> Optional[SealedOutput]:
    for s in sealed:
        if constant_time_eq(s.recipient, recipient):
            return s
    return None
