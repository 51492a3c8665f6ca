"""MPC service interface and a local reference cluster.

The program only sees the service through ``MpcService.execute``: an
encrypted-input request goes in, a signed output record comes out, correlated
by the computation handle. ``LocalMpcCluster`` plays that role for tests and
fixture generation; it decrypts inputs with its X25519 key, runs the circuit
and signs the result with its Ed25519 key.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, Sequence

from blake3 import blake3
from cryptography.hazmat.primitives.asymmetric import ed25519, x25519

from . import circuits
from .config import MAX_BATCH_ENTRIES, U128_MAX
from .crypto.cipher import FieldCipher, shared_secret, x25519_public_bytes
from .crypto.signing import ed25519_public_bytes, sign_output
from .encoding import (
    encode_auditable_result,
    encode_batch_result,
    encode_transfer_validation,
    nonce_to_bytes,
    split_args,
)
from .errors import SpecError
from .sealing import open_sealed, seal
from .types import (
    AuditableTransferInput,
    BatchPayrollEntry,
    BatchPayrollInput,
    CircuitKind,
    ClusterConfig,
    ComputationRequest,
    ComputationStatus,
    ConfidentialTransferInput,
    SealedOutput,
    SignedComputationOutput,
    TransferValidation,
)

logger = logging.getLogger(__name__)


class MpcService(Protocol):
    def execute(self, request: ComputationRequest) -> SignedComputationOutput:
        ...


def _output_nonce(nonce: int) -> bytes:
    return nonce_to_bytes((nonce + 1) & U128_MAX)


class LocalMpcCluster:
    """Single-process stand-in for the MPC cluster."""

    def __init__(
        self,
        cluster_offset: int,
        signing_key: ed25519.Ed25519PrivateKey,
        encryption_key: x25519.X25519PrivateKey,
    ):
        self.cluster_offset = cluster_offset
        self._signing_key = signing_key
        self._encryption_key = encryption_key

    @classmethod
    def from_seed(cls, cluster_offset: int, seed: bytes) -> "LocalMpcCluster":
        sign_seed = blake3(seed + b"/sign").digest()
        enc_seed = blake3(seed + b"/encrypt").digest()
        return cls(
            cluster_offset,
            ed25519.Ed25519PrivateKey.from_private_bytes(sign_seed),
            x25519.X25519PrivateKey.from_private_bytes(enc_seed),
        )

    def config(self) -> ClusterConfig:
        return ClusterConfig(
            cluster_offset=self.cluster_offset,
            signer_pubkey=ed25519_public_bytes(self._signing_key),
            encryption_pubkey=x25519_public_bytes(self._encryption_key),
        )

    def execute(self, request: ComputationRequest) -> SignedComputationOutput:
        circuit = request.handle.circuit
        try:
            revealed, sealed = self._run(circuit, request.args)
        except SpecError as exc:
            logger.warning(
                "computation %d failed: %s", request.handle.computation_offset, exc
            )
            return self.fail(request)
        return self._sign(request, ComputationStatus.FINALIZED, revealed, sealed)

    def fail(self, request: ComputationRequest) -> SignedComputationOutput:
        return self._sign(request, ComputationStatus.FAILED, b"", [])

    def _sign(
        self,
        request: ComputationRequest,
        status: ComputationStatus,
        revealed: bytes,
        sealed: list[SealedOutput],
    ) -> SignedComputationOutput:
        output = SignedComputationOutput(
            computation_offset=request.handle.computation_offset,
            cluster_offset=self.cluster_offset,
            circuit=request.handle.circuit,
            status=status,
            revealed=revealed,
            sealed=sealed,
        )
        output.signature = sign_output(self._signing_key, output)
        return output

    def _run(self, circuit: CircuitKind, raw_args: bytes) -> tuple[bytes, list[SealedOutput]]:
        args = split_args(circuit, raw_args)
        nonce = nonce_to_bytes(args.nonce)
        cipher = FieldCipher(shared_secret(self._encryption_key, args.ephemeral_pubkey))
        out_nonce = _output_nonce(args.nonce)

        def u64(i: int) -> int:
            return cipher.decrypt_scalar(args.fields[i], nonce, i, 64)

        if circuit == CircuitKind.VALIDATE_TRANSFER:
            result = circuits.validate_confidential_transfer(
                ConfidentialTransferInput(amount_lamports=u64(0), sender_balance_lamports=u64(1))
            )
            revealed = encode_transfer_validation(result)
            # Owner-addressed copy back to the submitting client.
            return revealed, [seal(revealed, args.ephemeral_pubkey, self._encryption_key, out_nonce)]

        if circuit == CircuitKind.VALIDATE_AUDITABLE:
            audit = circuits.validate_auditable_transfer(
                AuditableTransferInput(
                    amount_lamports=u64(0),
                    sender_balance_lamports=u64(1),
                    payee_id=u64(2),
                    timestamp=u64(3),
                )
            )
            revealed = encode_transfer_validation(
                TransferValidation(amount_lamports=audit.amount_lamports, is_valid=audit.is_valid)
            )
            sealed = seal(encode_auditable_result(audit), args.auditor, self._encryption_key, out_nonce)
            return revealed, [sealed]

        entries = tuple(
            BatchPayrollEntry(amount_lamports=u64(2 * i), payee_id=u64(2 * i + 1))
            for i in range(MAX_BATCH_ENTRIES)
        )
        base = 2 * MAX_BATCH_ENTRIES
        batch = circuits.validate_batch_payroll(
            BatchPayrollInput(
                entries=entries,
                entry_count=cipher.decrypt_scalar(args.fields[base], nonce, base, 8),
                sender_balance_lamports=u64(base + 1),
                timestamp=u64(base + 2),
            )
        )
        revealed = encode_batch_result(batch)
        return revealed, [seal(revealed, args.auditor, self._encryption_key, out_nonce)]


class ClientEncryptor:
    """Client side of the field cipher: one ephemeral key per request."""

    def __init__(
        self,
        cluster_encryption_pubkey: bytes,
        ephemeral_key: Optional[x25519.X25519PrivateKey] = None,
    ):
        self.cluster_encryption_pubkey = cluster_encryption_pubkey
        self._key = ephemeral_key or x25519.X25519PrivateKey.generate()
        self._cipher = FieldCipher(shared_secret(self._key, cluster_encryption_pubkey))

    @property
    def public_key(self) -> bytes:
        return x25519_public_bytes(self._key)

    def encrypt(self, values: Sequence[int], nonce: int) -> list[bytes]:
        n = nonce_to_bytes(nonce)
        return [self._cipher.encrypt_scalar(v, n, i) for i, v in enumerate(values)]

    def transfer_fields(self, amount: int, balance: int, nonce: int) -> dict:
        enc_amount, enc_balance = self.encrypt([amount, balance], nonce)
        return {
            "encrypted_amount": enc_amount,
            "encrypted_balance": enc_balance,
            "ephemeral_pubkey": self.public_key,
            "nonce": nonce,
        }

    def auditable_fields(
        self, amount: int, balance: int, payee_id: int, timestamp: int, nonce: int
    ) -> dict:
        cts = self.encrypt([amount, balance, payee_id, timestamp], nonce)
        return {
            "encrypted_amount": cts[0],
            "encrypted_balance": cts[1],
            "encrypted_payee_id": cts[2],
            "encrypted_timestamp": cts[3],
            "ephemeral_pubkey": self.public_key,
            "nonce": nonce,
        }

    def batch_fields(
        self,
        entries: Sequence[tuple[int, int]],
        balance: int,
        timestamp: int,
        nonce: int,
        declared_count: Optional[int] = None,
    ) -> dict:
        """Entries are (amount, payee_id); padded with zero entries to the limit."""
        padded = list(entries) + [(0, 0)] * (MAX_BATCH_ENTRIES - len(entries))
        values: list[int] = []
        for amount, payee_id in padded[:MAX_BATCH_ENTRIES]:
            values += [amount, payee_id]
        count = len(entries) if declared_count is None else declared_count
        values += [count, balance, timestamp]
        cts = self.encrypt(values, nonce)
        base = 2 * MAX_BATCH_ENTRIES
        return {
            "encrypted_entries": [(cts[2 * i], cts[2 * i + 1]) for i in range(MAX_BATCH_ENTRIES)],
            "encrypted_count": cts[base],
            "encrypted_balance": cts[base + 1],
            "encrypted_timestamp": cts[base + 2],
            "ephemeral_pubkey": self.public_key,
            "nonce": nonce,
        }

    def open(self, sealed: SealedOutput) -> bytes:
        return open_sealed(sealed, self._key, self.cluster_encryption_pubkey)
