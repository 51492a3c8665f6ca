"""Local cluster execution."""

from __future__ import annotations

from vaultpay_spec.crypto.signing import Ed25519ClusterVerifier
from vaultpay_spec.encoding import (
    build_batch_args,
    build_transfer_args,
    decode_batch_result,
    decode_transfer_validation,
)
from vaultpay_spec.test_accounts import AUDITOR, CLUSTER, client_for
from vaultpay_spec.types import (
    CircuitKind,
    ComputationHandle,
    ComputationRequest,
    ComputationStatus,
)


def _request(circuit: CircuitKind, args: bytes) -> ComputationRequest:
    return ComputationRequest(ComputationHandle(3, CLUSTER.cluster_offset, circuit), args)


def test_execute_transfer() -> None:
    client = client_for("carol")
    f = client.transfer_fields(40, 100, 8)
    args = build_transfer_args(f["ephemeral_pubkey"], 8, f["encrypted_amount"], f["encrypted_balance"])
    output = CLUSTER.execute(_request(CircuitKind.VALIDATE_TRANSFER, args))

    assert output.status == ComputationStatus.FINALIZED
    assert output.computation_offset == 3
    assert decode_transfer_validation(output.revealed).is_valid == 1
    assert Ed25519ClusterVerifier(CLUSTER.config()).verify(output)


def test_execute_batch_seals_to_auditor() -> None:
    client = client_for("carol")
    f = client.batch_fields([(30, 1), (20, 2)], 45, 77, 8)
    args = build_batch_args(
        f["ephemeral_pubkey"],
        8,
        f["encrypted_entries"],
        f["encrypted_count"],
        f["encrypted_balance"],
        f["encrypted_timestamp"],
        AUDITOR,
    )
    output = CLUSTER.execute(_request(CircuitKind.VALIDATE_BATCH, args))
    result = decode_batch_result(output.revealed)
    assert (result.valid_bitmap, result.total_amount, result.valid_count, result.timestamp) == (0, 0, 0, 77)
    assert [s.recipient for s in output.sealed] == [AUDITOR]


def test_malformed_args_produce_signed_failure() -> None:
    output = CLUSTER.execute(_request(CircuitKind.VALIDATE_TRANSFER, b"\x02"))
    assert output.status == ComputationStatus.FAILED
    assert output.revealed == b""
    assert Ed25519ClusterVerifier(CLUSTER.config()).verify(output)


def test_wrong_circuit_layout_fails() -> None:
    client = client_for("carol")
    f = client.transfer_fields(40, 100, 8)
    args = build_transfer_args(f["ephemeral_pubkey"], 8, f["encrypted_amount"], f["encrypted_balance"])
    output = CLUSTER.execute(_request(CircuitKind.VALIDATE_BATCH, args))
    assert output.status == ComputationStatus.FAILED
