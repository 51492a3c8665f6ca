"""Batch payroll."""

from __future__ import annotations

from vaultpay_spec.config import LAMPORTS_PER_SOL, U64_MAX
from vaultpay_spec.crypto.hash_algorithms import batch_recipient_digest, derive_escrow_id
from vaultpay_spec.encoding import decode_batch_result
from vaultpay_spec.errors import ErrorCode
from vaultpay_spec.program import initiate_batch_payroll, resolve_batch_callback, take_queued
from vaultpay_spec.sealing import find_sealed_for, open_sealed
from vaultpay_spec.test_accounts import (
    ALICE,
    AUDITOR,
    AUDITOR_KEY,
    BOB,
    CAROL,
    CLUSTER,
    DAVE,
    EVE,
    FRANK,
    GRACE,
    HEIDI,
    IVAN,
    JUDY,
    MALLORY,
    base_state,
    client_for,
)
from vaultpay_spec.types import (
    BatchPayrollCompleted,
    BatchPayrollQueued,
    Instruction,
    InstructionType,
    Payout,
    RequestStatus,
    TransferOutcome,
    TransferRejected,
)

SOL = LAMPORTS_PER_SOL
FIXTURE = "ix/batch_payroll.json"
CALLBACK_FIXTURE = "ix/batch_callback.json"
TIMESTAMP = 1_700_000_000
RECIPIENTS = [BOB, CAROL, DAVE, EVE, FRANK, GRACE, HEIDI, IVAN, JUDY, MALLORY]


def _payouts(amounts: list[int]) -> list[Payout]:
    return [
        Payout(recipient=RECIPIENTS[i], payee_id=100 + i, amount_lamports=amount)
        for i, amount in enumerate(amounts)
    ]


def _batch_ix(
    amounts: list[int],
    balance: int,
    declared_count: int | None = None,
    encrypted_count: int | None = None,
    payouts: list[Payout] | None = None,
    offset: int = 21,
) -> Instruction:
    payouts = _payouts(amounts) if payouts is None else payouts
    fields = client_for("alice").batch_fields(
        [(x.amount_lamports, x.payee_id) for x in payouts],
        balance,
        TIMESTAMP,
        nonce=1,
        declared_count=encrypted_count,
    )
    payload = dict(fields)
    payload.update(
        {
            "payouts": payouts,
            "declared_count": len(payouts) if declared_count is None else declared_count,
            "timestamp": TIMESTAMP,
            "auditor": AUDITOR,
            "computation_offset": offset,
        }
    )
    return Instruction(InstructionType.BATCH_PAYROLL, ALICE, payload)


def _queue(state_test_group, name: str, ix: Instruction):
    state = base_state({ALICE: 100 * SOL})
    post, result = state_test_group(FIXTURE, name, state, ix)
    assert result.ok, result.error
    post, queued = take_queued(post)
    return post, queued[0]


def _callback(request, output) -> Instruction:
    return Instruction(
        InstructionType.BATCH_CALLBACK, bytes(32), {"handle": request.handle, "output": output}
    )


def test_batch_locks_total_into_one_escrow(state_test_group) -> None:
    post, _ = _queue(state_test_group, "batch_queued", _batch_ix([30 * SOL, 20 * SOL, 10 * SOL], 65 * SOL))
    escrow_id = derive_escrow_id(ALICE, batch_recipient_digest([BOB, CAROL, DAVE]), 1)
    assert post.escrows[escrow_id].held_amount == 60 * SOL
    assert post.accounts[ALICE].balance == 40 * SOL

    request = post.requests[21]
    assert request.amount_lamports == 60 * SOL
    assert request.timestamp == TIMESTAMP
    assert [x.recipient for x in request.payouts] == [BOB, CAROL, DAVE]

    queued = post.events[-1]
    assert isinstance(queued, BatchPayrollQueued)
    assert queued.entry_count == 3


def test_batch_funded_releases_every_payout(state_test_group) -> None:
    state, request = _queue(
        state_test_group, "batch_for_release", _batch_ix([30 * SOL, 20 * SOL, 10 * SOL], 65 * SOL)
    )
    output = CLUSTER.execute(request)
    post, result = state_test_group(CALLBACK_FIXTURE, "batch_callback_release", state, _callback(request, output))
    assert result.ok
    assert result.outcome == TransferOutcome.COMPLETED
    assert post.accounts[BOB].balance == 30 * SOL
    assert post.accounts[CAROL].balance == 20 * SOL
    assert post.accounts[DAVE].balance == 10 * SOL
    assert post.accounts[ALICE].balance == 40 * SOL
    assert not post.escrows
    assert post.requests[21].status == RequestStatus.RELEASED
    assert post.requests[21].settled_amount == 60 * SOL

    completed = post.events[-1]
    assert isinstance(completed, BatchPayrollCompleted)
    assert (completed.valid_count, completed.total_amount) == (3, 60 * SOL)

    # The auditor receives the same summary.
    sealed = find_sealed_for(output.sealed, AUDITOR)
    summary = decode_batch_result(open_sealed(sealed, AUDITOR_KEY, CLUSTER.config().encryption_pubkey))
    assert summary.valid_bitmap == 0b111
    assert summary.timestamp == TIMESTAMP


def test_batch_underfunded_rejects_whole_batch(state_test_group) -> None:
    state, request = _queue(
        state_test_group, "batch_for_reject", _batch_ix([30 * SOL, 20 * SOL, 10 * SOL], 55 * SOL)
    )
    output = CLUSTER.execute(request)
    post, result = state_test_group(CALLBACK_FIXTURE, "batch_callback_underfunded", state, _callback(request, output))
    assert result.ok
    assert result.outcome == TransferOutcome.REJECTED_INSUFFICIENT_BALANCE
    for recipient in (BOB, CAROL, DAVE):
        assert recipient not in post.accounts
    assert post.requests[21].status == RequestStatus.ABORTED
    assert post.requests[21].resolution == ErrorCode.INSUFFICIENT_BALANCE
    assert sum(e.held_amount for e in post.escrows.values()) == 60 * SOL
    assert isinstance(post.events[-1], TransferRejected)


def test_batch_ten_entries(state_test_group) -> None:
    amounts = [(i + 1) * SOL for i in range(10)]
    state, request = _queue(state_test_group, "batch_ten_entries", _batch_ix(amounts, 55 * SOL))
    post, result = resolve_batch_callback(state, request.handle, CLUSTER.execute(request))
    assert result.outcome == TransferOutcome.COMPLETED
    assert post.accounts[MALLORY].balance == 10 * SOL


def test_batch_encrypted_count_lie_aborts(state_test_group) -> None:
    # The encrypted count covers two entries while three payouts were locked.
    state, request = _queue(
        state_test_group,
        "batch_for_count_lie",
        _batch_ix([30 * SOL, 20 * SOL, 10 * SOL], 65 * SOL, encrypted_count=2),
    )
    output = CLUSTER.execute(request)
    post, result = state_test_group(CALLBACK_FIXTURE, "batch_callback_count_lie", state, _callback(request, output))
    assert result.error.code == ErrorCode.ABORTED_COMPUTATION
    assert result.outcome == TransferOutcome.ABORTED_INVALID_RESULT
    assert post.requests[21].status == RequestStatus.PENDING_VALIDATION


def test_batch_encrypted_amount_mismatch_aborts() -> None:
    # Encrypted amounts differ from the locked plaintext payouts.
    payouts = _payouts([30 * SOL, 20 * SOL])
    fields = client_for("alice").batch_fields([(31 * SOL, 100), (20 * SOL, 101)], 100 * SOL, TIMESTAMP, nonce=1)

    state = base_state({ALICE: 100 * SOL})
    state, _ = initiate_batch_payroll(
        state,
        ALICE,
        payouts,
        fields["encrypted_entries"],
        2,
        fields["encrypted_count"],
        fields["encrypted_balance"],
        fields["encrypted_timestamp"],
        TIMESTAMP,
        AUDITOR,
        fields["ephemeral_pubkey"],
        1,
        21,
    )
    state, queued = take_queued(state)
    post, result = resolve_batch_callback(state, queued[0].handle, CLUSTER.execute(queued[0]))
    assert result.error.code == ErrorCode.ABORTED_COMPUTATION
    assert BOB not in post.accounts


def test_batch_validation_errors(state_test_group) -> None:
    state = base_state({ALICE: 100 * SOL})
    cases = [
        ("batch_empty", _batch_ix([], 100 * SOL, payouts=[]), ErrorCode.INVALID_PAYLOAD),
        ("batch_declared_count_mismatch", _batch_ix([SOL, SOL], 100 * SOL, declared_count=3), ErrorCode.INVALID_PAYLOAD),
        ("batch_zero_payout", _batch_ix([SOL, 0], 100 * SOL), ErrorCode.INVALID_AMOUNT),
        ("batch_total_overflow", _batch_ix([U64_MAX, 1], 100 * SOL), ErrorCode.OVERFLOW),
        ("batch_underfunded_lamports", _batch_ix([60 * SOL, 50 * SOL], 200 * SOL), ErrorCode.INSUFFICIENT_BALANCE),
        (
            "batch_pays_sender",
            _batch_ix([], 100 * SOL, payouts=[Payout(ALICE, 1, SOL)]),
            ErrorCode.SELF_OPERATION,
        ),
    ]
    for name, ix, code in cases:
        post, result = state_test_group(FIXTURE, name, state, ix)
        assert not result.ok, name
        assert result.error.code == code, name
        assert post is state


def test_batch_rejects_more_than_ten_payouts(state_test_group) -> None:
    ix = _batch_ix([SOL] * 10, 100 * SOL)
    ix.payload["payouts"] = ix.payload["payouts"] + [Payout(BOB, 99, SOL)]
    ix.payload["declared_count"] = 11
    post, result = state_test_group(FIXTURE, "batch_too_many_payouts", base_state({ALICE: 100 * SOL}), ix)
    assert result.error.code == ErrorCode.INVALID_PAYLOAD


def test_batch_requires_ten_encrypted_pairs(state_test_group) -> None:
    ix = _batch_ix([SOL], 100 * SOL)
    ix.payload["encrypted_entries"] = ix.payload["encrypted_entries"][:3]
    post, result = state_test_group(FIXTURE, "batch_short_encrypted_entries", base_state({ALICE: 100 * SOL}), ix)
    assert result.error.code == ErrorCode.INVALID_PAYLOAD
