"""Cluster output signatures (Ed25519).

The callback resolver never hardcodes who it trusts: it is handed a
``ResultVerifier`` built from the configured cluster identity.
"""

from __future__ import annotations

from typing import Protocol

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from ..config import ED25519_PUBKEY_SIZE, ED25519_SIGNATURE_SIZE
from ..encoding import encode_output_message
from ..errors import ErrorCode, SpecError
from ..types import ClusterConfig, SignedComputationOutput


class ResultVerifier(Protocol):
    def verify(self, output: SignedComputationOutput) -> bool:
        ...


def ed25519_public_bytes(key: ed25519.Ed25519PrivateKey) -> bytes:
    return key.public_key().public_bytes(
        serialization.Encoding.Raw, serialization.PublicFormat.Raw
    )


def sign_output(key: ed25519.Ed25519PrivateKey, output: SignedComputationOutput) -> bytes:
    return key.sign(encode_output_message(output))


class Ed25519ClusterVerifier:
    """Accepts outputs signed by the configured cluster key for its offset."""

    def __init__(self, cluster: ClusterConfig):
        if len(cluster.signer_pubkey) != ED25519_PUBKEY_SIZE:
            raise SpecError(ErrorCode.INVALID_FORMAT, "cluster signer key must be 32 bytes")
        self.cluster = cluster
        self._key = ed25519.Ed25519PublicKey.from_public_bytes(cluster.signer_pubkey)

    def verify(self, output: SignedComputationOutput) -> bool:
        if output.cluster_offset != self.cluster.cluster_offset:
            return False
        if len(output.signature) != ED25519_SIGNATURE_SIZE:
            return False
        try:
            message = encode_output_message(output)
        except SpecError:
            return False
        try:
            self._key.verify(output.signature, message)
        except InvalidSignature:
            return False
        return True
