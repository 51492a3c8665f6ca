"""Batch payroll orchestration."""

from __future__ import annotations

import logging
from copy import deepcopy

from ..config import (
    ENCRYPTED_FIELD_SIZE,
    MAX_BATCH_ENTRIES,
    MIN_BATCH_ENTRIES,
    U64_MAX,
    X25519_PUBKEY_SIZE,
)
from ..crypto.hash_algorithms import batch_recipient_digest, derive_escrow_id
from ..encoding import build_batch_args, nonce_to_bytes
from ..errors import ErrorCode, SpecError
from ..escrow import lock_funds, open_escrow
from ..types import (
    BatchPayrollQueued,
    CircuitKind,
    ComputationHandle,
    ComputationRequest,
    Instruction,
    InstructionType,
    Payout,
    ProgramState,
    RequestStatus,
    TransferRequest,
)
from .common import (
    address_field,
    amount_field,
    bytes_field,
    int_field,
    nonce_field,
    payload_dict,
    to_bytes,
)

logger = logging.getLogger(__name__)


def _payouts(p: dict) -> list[Payout]:
    raw = p.get("payouts")
    if not isinstance(raw, list):
        raise SpecError(ErrorCode.INVALID_PAYLOAD, "payouts must be a list")
    if not (MIN_BATCH_ENTRIES <= len(raw) <= MAX_BATCH_ENTRIES):
        raise SpecError(
            ErrorCode.INVALID_PAYLOAD,
            f"batch must have {MIN_BATCH_ENTRIES}..{MAX_BATCH_ENTRIES} payouts",
        )
    payouts = []
    for item in raw:
        if isinstance(item, Payout):
            item = {
                "recipient": item.recipient,
                "payee_id": item.payee_id,
                "amount_lamports": item.amount_lamports,
            }
        if not isinstance(item, dict):
            raise SpecError(ErrorCode.INVALID_PAYLOAD, "invalid payout entry")
        payouts.append(
            Payout(
                recipient=address_field(item, "recipient"),
                payee_id=int_field(item, "payee_id"),
                amount_lamports=amount_field(item),
            )
        )
    return payouts


def _locked_total(payouts: list[Payout]) -> int:
    total = 0
    for payout in payouts:
        total += payout.amount_lamports
        if total > U64_MAX:
            raise SpecError(ErrorCode.OVERFLOW, "batch total overflow")
    return total


def _build_args(p: dict) -> bytes:
    raw_entries = p.get("encrypted_entries")
    if not isinstance(raw_entries, (list, tuple)):
        raise SpecError(ErrorCode.INVALID_PAYLOAD, "encrypted_entries must be a list")
    entries = []
    for pair in raw_entries:
        if not isinstance(pair, (list, tuple)) or len(pair) != 2:
            raise SpecError(ErrorCode.INVALID_PAYLOAD, "encrypted entry must be (amount, payee)")
        entries.append((to_bytes(pair[0]), to_bytes(pair[1])))
    return build_batch_args(
        bytes_field(p, "ephemeral_pubkey", X25519_PUBKEY_SIZE),
        nonce_field(p),
        entries,
        bytes_field(p, "encrypted_count", ENCRYPTED_FIELD_SIZE),
        bytes_field(p, "encrypted_balance", ENCRYPTED_FIELD_SIZE),
        bytes_field(p, "encrypted_timestamp", ENCRYPTED_FIELD_SIZE),
        bytes_field(p, "auditor", X25519_PUBKEY_SIZE),
    )


def _escrow_id(sender: bytes, payouts: list[Payout], nonce: int) -> bytes:
    return derive_escrow_id(sender, batch_recipient_digest([x.recipient for x in payouts]), nonce)


def verify(state: ProgramState, ix: Instruction) -> None:
    if ix.ix_type != InstructionType.BATCH_PAYROLL:
        raise SpecError(ErrorCode.INVALID_TYPE, f"unsupported batch ix type: {ix.ix_type}")
    p = payload_dict(ix)

    payouts = _payouts(p)
    if any(x.recipient == ix.signer for x in payouts):
        raise SpecError(ErrorCode.SELF_OPERATION, "sender cannot pay itself")
    if int_field(p, "declared_count") != len(payouts):
        raise SpecError(ErrorCode.INVALID_PAYLOAD, "declared_count does not match payouts")
    total = _locked_total(payouts)
    int_field(p, "timestamp")
    offset = int_field(p, "computation_offset")
    _build_args(p)

    if state.cluster is None:
        raise SpecError(ErrorCode.CLUSTER_NOT_SET, "mpc cluster not configured")

    sender = state.accounts.get(ix.signer)
    if sender is None:
        raise SpecError(ErrorCode.ACCOUNT_NOT_FOUND, "sender not found")
    if sender.balance < total:
        raise SpecError(ErrorCode.INSUFFICIENT_BALANCE, "insufficient balance to lock batch")

    if offset in state.requests:
        raise SpecError(ErrorCode.COMPUTATION_EXISTS, "computation offset already used")
    escrow = state.escrows.get(_escrow_id(ix.signer, payouts, nonce_field(p)))
    if escrow is not None and escrow.held_amount > 0:
        raise SpecError(ErrorCode.ESCROW_IN_USE, "escrow already holds funds for a batch")


def apply(state: ProgramState, ix: Instruction) -> ProgramState:
    next_state = deepcopy(state)
    p = ix.payload
    payouts = _payouts(p)
    total = _locked_total(payouts)
    nonce = nonce_field(p)
    args = _build_args(p)

    escrow_id = _escrow_id(ix.signer, payouts, nonce)
    escrow = open_escrow(next_state, ix.signer, escrow_id)
    lock_funds(next_state, ix.signer, escrow, total)

    handle = ComputationHandle(
        computation_offset=int_field(p, "computation_offset"),
        cluster_offset=next_state.cluster.cluster_offset,
        circuit=CircuitKind.VALIDATE_BATCH,
    )
    request = TransferRequest(
        handle=handle,
        sender=ix.signer,
        recipient=batch_recipient_digest([x.recipient for x in payouts]),
        escrow_id=escrow_id,
        amount_lamports=total,
        args=args,
        # No single amount ciphertext for a batch; keep the balance snapshot.
        encrypted_amount=bytes_field(p, "encrypted_balance", ENCRYPTED_FIELD_SIZE),
        nonce=nonce,
        created_slot=next_state.slot,
        auditor=bytes_field(p, "auditor", X25519_PUBKEY_SIZE),
        payouts=payouts,
        timestamp=int_field(p, "timestamp"),
    )
    next_state.requests[handle.computation_offset] = request
    next_state.mempool.append(ComputationRequest(handle=handle, args=args))
    request.status = RequestStatus.PENDING_VALIDATION

    next_state.events.append(
        BatchPayrollQueued(
            sender=ix.signer,
            entry_count=len(payouts),
            nonce=nonce_to_bytes(nonce),
            computation_offset=handle.computation_offset,
            escrow=escrow_id,
        )
    )
    logger.debug(
        "queued batch computation %d with %d entries", handle.computation_offset, len(payouts)
    )
    return next_state
