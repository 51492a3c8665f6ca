"""Field cipher used by the local reference cluster.

X25519 key agreement between an ephemeral client key and the cluster key,
then a BLAKE3 keyed-XOF keystream per (nonce, field index). Every scalar
field is carried in one fixed-width ciphertext. Result records are sealed
separately, with an AEAD (see ``vaultpay_spec.sealing``).
"""

from __future__ import annotations

from blake3 import blake3
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import x25519

from ..config import ENCRYPTED_FIELD_SIZE, NONCE_SIZE, X25519_PUBKEY_SIZE
from ..errors import ErrorCode, SpecError

_KDF_CONTEXT = "vaultpay 2024 field cipher v1"


def x25519_public_bytes(key: x25519.X25519PrivateKey) -> bytes:
    return key.public_key().public_bytes(
        serialization.Encoding.Raw, serialization.PublicFormat.Raw
    )


def shared_secret(private_key: x25519.X25519PrivateKey, peer_public: bytes) -> bytes:
    if len(peer_public) != X25519_PUBKEY_SIZE:
        raise SpecError(ErrorCode.INVALID_FORMAT, "x25519 public key must be 32 bytes")
    try:
        return private_key.exchange(x25519.X25519PublicKey.from_public_bytes(peer_public))
    except ValueError as exc:
        # Low-order points produce an all-zero secret.
        raise SpecError(ErrorCode.INVALID_FORMAT, f"x25519 exchange failed: {exc}") from exc


class FieldCipher:
    def __init__(self, secret: bytes):
        self._key = blake3(secret, derive_key_context=_KDF_CONTEXT).digest()

    def _keystream(self, nonce: bytes, index: int, length: int) -> bytes:
        if len(nonce) != NONCE_SIZE:
            raise SpecError(ErrorCode.INVALID_FORMAT, "nonce must be 16 bytes")
        return blake3(nonce + index.to_bytes(4, "little"), key=self._key).digest(length=length)

    def apply(self, data: bytes, nonce: bytes, index: int = 0) -> bytes:
        """XOR with the keystream; encrypts and decrypts."""
        stream = self._keystream(nonce, index, len(data))
        return bytes(a ^ b for a, b in zip(data, stream))

    def encrypt_scalar(self, value: int, nonce: bytes, index: int) -> bytes:
        return self.apply(value.to_bytes(ENCRYPTED_FIELD_SIZE, "little"), nonce, index)

    def decrypt_scalar(self, ciphertext: bytes, nonce: bytes, index: int, bits: int) -> int:
        if len(ciphertext) != ENCRYPTED_FIELD_SIZE:
            raise SpecError(ErrorCode.INVALID_FORMAT, "ciphertext must be 32 bytes")
        value = int.from_bytes(self.apply(ciphertext, nonce, index), "little")
        if value >> bits:
            raise SpecError(ErrorCode.INVALID_PAYLOAD, f"field {index} exceeds u{bits}")
        return value
