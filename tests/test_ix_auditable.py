"""Auditable transfers: sealed audit records and their recipients."""

from __future__ import annotations

import pytest

from vaultpay_spec.config import (
    AUDITABLE_RESULT_SIZE,
    LAMPORTS_PER_SOL,
    REASON_INSUFFICIENT_BALANCE,
    REASON_SUCCESS,
    SEAL_TAG_SIZE,
)
from vaultpay_spec.encoding import decode_auditable_result
from vaultpay_spec.errors import ErrorCode, SpecError
from vaultpay_spec.program import resolve_auditable_callback, resolve_transfer_callback, take_queued
from vaultpay_spec.sealing import find_sealed_for, open_sealed
from vaultpay_spec.state_transition import apply_ix
from vaultpay_spec.test_accounts import (
    ALICE,
    AUDITOR,
    AUDITOR_KEY,
    BOB,
    CLUSTER,
    OUTSIDER_KEY,
    base_state,
    client_for,
)
from vaultpay_spec.types import (
    CircuitKind,
    Instruction,
    InstructionType,
    RequestStatus,
    SealedOutput,
    TransferCompleted,
    TransferOutcome,
)

SOL = LAMPORTS_PER_SOL
FIXTURE = "ix/auditable_transfer.json"
CALLBACK_FIXTURE = "ix/auditable_callback.json"
PAYEE_ID = 4242
TIMESTAMP = 1_700_000_000


def _auditable_ix(amount: int, balance: int, auditor: bytes = AUDITOR, nonce: int = 1) -> Instruction:
    payload = client_for("alice").auditable_fields(amount, balance, PAYEE_ID, TIMESTAMP, nonce)
    payload.update(
        {
            "recipient": BOB,
            "amount_lamports": amount,
            "auditor": auditor,
            "computation_offset": 11,
        }
    )
    return Instruction(InstructionType.AUDITABLE_TRANSFER, ALICE, payload)


def _queue(state_test_group, name: str, amount: int, balance: int):
    state = base_state({ALICE: 100 * SOL})
    post, result = state_test_group(FIXTURE, name, state, _auditable_ix(amount, balance))
    assert result.ok, result.error
    assert result.handle.circuit == CircuitKind.VALIDATE_AUDITABLE
    post, queued = take_queued(post)
    return post, queued[0]


def test_auditable_transfer_records_auditor(state_test_group) -> None:
    post, request = _queue(state_test_group, "auditable_queued", 60 * SOL, 100 * SOL)
    assert post.requests[11].auditor == AUDITOR
    assert post.requests[11].status == RequestStatus.PENDING_VALIDATION
    assert request.handle.cluster_offset == CLUSTER.cluster_offset


def test_auditor_opens_sealed_record(state_test_group) -> None:
    state, request = _queue(state_test_group, "auditable_for_release", 60 * SOL, 100 * SOL)
    output = CLUSTER.execute(request)

    ix = Instruction(
        InstructionType.AUDITABLE_CALLBACK, bytes(32), {"handle": request.handle, "output": output}
    )
    post, result = state_test_group(CALLBACK_FIXTURE, "auditable_callback_release", state, ix)
    assert result.ok
    assert result.outcome == TransferOutcome.COMPLETED
    assert post.accounts[BOB].balance == 60 * SOL
    assert isinstance(post.events[-1], TransferCompleted)

    sealed = find_sealed_for(output.sealed, AUDITOR)
    record = decode_auditable_result(
        open_sealed(sealed, AUDITOR_KEY, CLUSTER.config().encryption_pubkey)
    )
    assert record.amount_lamports == 60 * SOL
    assert record.payee_id == PAYEE_ID
    assert record.timestamp == TIMESTAMP
    assert (record.is_valid, record.reason_code) == (1, REASON_SUCCESS)


def test_outsider_cannot_open_sealed_record(state_test_group) -> None:
    _, request = _queue(state_test_group, "auditable_for_outsider", 60 * SOL, 100 * SOL)
    sealed = find_sealed_for(CLUSTER.execute(request).sealed, AUDITOR)
    with pytest.raises(SpecError) as exc:
        open_sealed(sealed, OUTSIDER_KEY, CLUSTER.config().encryption_pubkey)
    assert exc.value.code == ErrorCode.UNAUTHORIZED


def test_auditable_rejection_keeps_reason_in_audit_record(state_test_group) -> None:
    state, request = _queue(state_test_group, "auditable_for_reject", 60 * SOL, 50 * SOL)
    output = CLUSTER.execute(request)
    post, result = resolve_auditable_callback(state, request.handle, output)
    assert result.ok
    assert result.outcome == TransferOutcome.REJECTED_INSUFFICIENT_BALANCE
    assert post.requests[11].status == RequestStatus.ABORTED
    assert BOB not in post.accounts

    record = decode_auditable_result(
        open_sealed(find_sealed_for(output.sealed, AUDITOR), AUDITOR_KEY, CLUSTER.config().encryption_pubkey)
    )
    assert (record.is_valid, record.reason_code) == (0, REASON_INSUFFICIENT_BALANCE)
    # The public result reveals only the transfer flag and amount.
    assert len(output.revealed) == 9


class _AcceptAll:
    def verify(self, output) -> bool:
        return True


def test_missing_auditor_copy_aborts(state_test_group) -> None:
    state, request = _queue(state_test_group, "auditable_for_missing_copy", 60 * SOL, 100 * SOL)
    output = CLUSTER.execute(request)
    output.sealed = []

    ix = Instruction(
        InstructionType.AUDITABLE_CALLBACK, bytes(32), {"handle": request.handle, "output": output}
    )
    post, result = state_test_group(CALLBACK_FIXTURE, "auditable_callback_no_copy", state, ix, _AcceptAll())
    assert result.error.code == ErrorCode.ABORTED_COMPUTATION
    assert result.outcome == TransferOutcome.ABORTED_INVALID_RESULT
    assert post is state


def test_auditor_copy_with_wrong_size_aborts() -> None:
    state = base_state({ALICE: 100 * SOL})
    state, _ = apply_ix(state, _auditable_ix(60 * SOL, 100 * SOL))
    state, queued = take_queued(state)
    output = CLUSTER.execute(queued[0])
    good = output.sealed[0]
    assert len(good.ciphertext) == AUDITABLE_RESULT_SIZE + SEAL_TAG_SIZE
    output.sealed = [SealedOutput(good.recipient, good.nonce, good.ciphertext[:-1])]

    _, result = resolve_auditable_callback(state, queued[0].handle, output, _AcceptAll())
    assert result.error.code == ErrorCode.ABORTED_COMPUTATION

    # A copy carrying the bare record without its tag is also rejected.
    output.sealed = [SealedOutput(good.recipient, good.nonce, good.ciphertext[:AUDITABLE_RESULT_SIZE])]
    _, result = resolve_auditable_callback(state, queued[0].handle, output, _AcceptAll())
    assert result.error.code == ErrorCode.ABORTED_COMPUTATION


def test_auditable_rejects_malformed_auditor_key(state_test_group) -> None:
    ix = _auditable_ix(SOL, 10 * SOL, auditor=b"\x01" * 31)
    post, result = state_test_group(FIXTURE, "auditable_short_auditor", base_state({ALICE: 10 * SOL}), ix)
    assert result.error.code == ErrorCode.INVALID_FORMAT


def test_transfer_callback_cannot_answer_auditable_handle() -> None:
    state, _ = apply_ix(base_state({ALICE: 100 * SOL}), _auditable_ix(60 * SOL, 100 * SOL))
    state, queued = take_queued(state)
    _, result = resolve_transfer_callback(state, queued[0].handle, CLUSTER.execute(queued[0]))
    assert result.error.code == ErrorCode.ABORTED_COMPUTATION
