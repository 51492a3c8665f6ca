"""State transition entrypoints for the VaultPay model."""

from __future__ import annotations

import logging
from copy import deepcopy
from typing import Optional

from .crypto.signing import ResultVerifier
from .errors import ErrorCode, SpecError
from .types import (
    ComputationHandle,
    Instruction,
    InstructionType,
    ProgramState,
    RequestStatus,
    TransferOutcome,
)
from .ix import batch as ix_batch
from .ix import callback as ix_callback
from .ix import cluster as ix_cluster
from .ix import refund as ix_refund
from .ix import transfer as ix_transfer

logger = logging.getLogger(__name__)

_TRANSFER_TYPES = frozenset({
    InstructionType.CONFIDENTIAL_TRANSFER,
    InstructionType.AUDITABLE_TRANSFER,
})

_CALLBACK_TYPES = frozenset(ix_callback.CALLBACK_CIRCUITS)


class TransitionResult:
    """Thin wrapper for verify/apply results."""

    def __init__(
        self,
        ok: bool,
        error: Optional[SpecError] = None,
        handle: Optional[ComputationHandle] = None,
        outcome: Optional[TransferOutcome] = None,
    ):
        self.ok = ok
        self.error = error
        self.handle = handle
        self.outcome = outcome

    @classmethod
    def success(
        cls,
        handle: Optional[ComputationHandle] = None,
        outcome: Optional[TransferOutcome] = None,
    ) -> "TransitionResult":
        return cls(True, None, handle, outcome)

    @classmethod
    def failure(
        cls, error: SpecError, outcome: Optional[TransferOutcome] = None
    ) -> "TransitionResult":
        return cls(False, error, None, outcome)

    def __repr__(self) -> str:
        if self.ok:
            return f"TransitionResult(ok, outcome={self.outcome})"
        return f"TransitionResult(failed, error={self.error})"


def _dispatch_verify(
    state: ProgramState, ix: Instruction, verifier: Optional[ResultVerifier]
) -> None:
    t = ix.ix_type
    if t == InstructionType.SET_CLUSTER:
        return ix_cluster.verify(state, ix)
    if t in _TRANSFER_TYPES:
        return ix_transfer.verify(state, ix)
    if t == InstructionType.BATCH_PAYROLL:
        return ix_batch.verify(state, ix)
    if t in _CALLBACK_TYPES:
        return ix_callback.verify(state, ix, verifier)
    if t == InstructionType.REFUND_ESCROW:
        return ix_refund.verify(state, ix)

    raise SpecError(ErrorCode.NOT_IMPLEMENTED, f"verify not implemented for {ix.ix_type}")


def _dispatch_apply(state: ProgramState, ix: Instruction) -> ProgramState:
    t = ix.ix_type
    if t == InstructionType.SET_CLUSTER:
        return ix_cluster.apply(state, ix)
    if t in _TRANSFER_TYPES:
        return ix_transfer.apply(state, ix)
    if t == InstructionType.BATCH_PAYROLL:
        return ix_batch.apply(state, ix)
    if t in _CALLBACK_TYPES:
        return ix_callback.apply(state, ix)
    if t == InstructionType.REFUND_ESCROW:
        return ix_refund.apply(state, ix)

    raise SpecError(ErrorCode.NOT_IMPLEMENTED, f"apply not implemented for {ix.ix_type}")


def _verify_common(state: ProgramState, ix: Instruction) -> None:
    if not isinstance(ix.ix_type, InstructionType):
        raise SpecError(ErrorCode.INVALID_TYPE, "unknown instruction type")
    if not isinstance(ix.signer, bytes) or len(ix.signer) != 32:
        raise SpecError(ErrorCode.INVALID_ADDRESS, "signer must be 32 bytes")


def _handle_of(state: ProgramState, ix: Instruction) -> Optional[ComputationHandle]:
    p = ix.payload if isinstance(ix.payload, dict) else {}
    offset = p.get("computation_offset")
    if offset is None:
        handle = p.get("handle")
        offset = handle.computation_offset if isinstance(handle, ComputationHandle) else None
    request = state.requests.get(offset) if isinstance(offset, int) else None
    return request.handle if request is not None else None


def _outcome_of(state: ProgramState, ix: Instruction) -> Optional[TransferOutcome]:
    t = ix.ix_type
    if t in _TRANSFER_TYPES or t == InstructionType.BATCH_PAYROLL:
        return TransferOutcome.QUEUED
    if t == InstructionType.REFUND_ESCROW:
        return TransferOutcome.REFUNDED
    if t in _CALLBACK_TYPES:
        handle = _handle_of(state, ix)
        status = state.requests[handle.computation_offset].status
        if status == RequestStatus.RELEASED:
            return TransferOutcome.COMPLETED
        return TransferOutcome.REJECTED_INSUFFICIENT_BALANCE
    return None


def verify_ix(
    state: ProgramState, ix: Instruction, verifier: Optional[ResultVerifier] = None
) -> TransitionResult:
    """Stateless + stateful verification for a single instruction."""
    try:
        _verify_common(state, ix)
        _dispatch_verify(state, ix, verifier)
        return TransitionResult.success()
    except SpecError as exc:
        return TransitionResult.failure(exc)


def _failure(ix: Instruction, exc: SpecError) -> TransitionResult:
    outcome = None
    name = getattr(ix.ix_type, "value", ix.ix_type)
    if ix.ix_type in _CALLBACK_TYPES and exc.code == ErrorCode.ABORTED_COMPUTATION:
        outcome = TransferOutcome.ABORTED_INVALID_RESULT
        logger.warning("%s rejected: %s", name, exc)
    else:
        logger.debug("%s failed: %s", name, exc)
    return TransitionResult.failure(exc, outcome)


def apply_ix(
    state: ProgramState, ix: Instruction, verifier: Optional[ResultVerifier] = None
) -> tuple[ProgramState, TransitionResult]:
    """Apply an instruction after verification.

    Instructions are atomic: on any failure the original state is returned
    untouched, and nothing emitted during the failed attempt survives.
    """
    try:
        _verify_common(state, ix)
        _dispatch_verify(state, ix, verifier)
    except SpecError as exc:
        return state, _failure(ix, exc)

    working = deepcopy(state)
    try:
        working = _dispatch_apply(working, ix)
    except SpecError as exc:
        return state, _failure(ix, exc)

    result = TransitionResult.success(_handle_of(working, ix), _outcome_of(working, ix))
    logger.debug("%s applied: %s", ix.ix_type.value, result.outcome)
    return working, result


def apply_instructions(
    state: ProgramState, ixs: list[Instruction], verifier: Optional[ResultVerifier] = None
) -> tuple[ProgramState, TransitionResult]:
    """Apply instructions in order; any failure rejects the whole sequence."""
    working = state
    for ix in ixs:
        working, result = apply_ix(working, ix, verifier)
        if not result.ok:
            return state, result
    return working, TransitionResult.success()
