"""Callback resolution for queued computations.

A callback carries the handle it claims to answer and the signed output from
the cluster. Before any byte of the output is decoded, the output must bind
to the recorded computation (offset, cluster, circuit) and carry a valid
cluster signature. A handle resolves at most once.

Only a verified ``is_valid = 0`` is a business rejection: the request moves
to ABORTED and its funds stay in escrow until refunded. Everything else that
goes wrong (bad signature, FAILED status, malformed or inconsistent result)
fails the instruction with ABORTED_COMPUTATION and leaves state untouched.
"""

from __future__ import annotations

import logging
from copy import deepcopy
from typing import Optional

from ..config import (
    AUDITABLE_RESULT_SIZE,
    BATCH_RESULT_SIZE,
    REASON_INSUFFICIENT_BALANCE,
    SEAL_TAG_SIZE,
)
from ..crypto.signing import Ed25519ClusterVerifier, ResultVerifier
from ..encoding import decode_batch_result, decode_transfer_validation, nonce_to_bytes
from ..errors import ErrorCode, SpecError
from ..escrow import close_escrow, escrow_authority, release_funds
from ..sealing import find_sealed_for
from ..types import (
    BatchPayrollCompleted,
    BatchPayrollResult,
    CircuitKind,
    ComputationHandle,
    ComputationStatus,
    Instruction,
    InstructionType,
    ProgramState,
    RequestStatus,
    SignedComputationOutput,
    TransferCompleted,
    TransferRejected,
    TransferRequest,
    TransferValidation,
)
from .common import payload_dict

logger = logging.getLogger(__name__)

CALLBACK_CIRCUITS = {
    InstructionType.TRANSFER_CALLBACK: CircuitKind.VALIDATE_TRANSFER,
    InstructionType.AUDITABLE_CALLBACK: CircuitKind.VALIDATE_AUDITABLE,
    InstructionType.BATCH_CALLBACK: CircuitKind.VALIDATE_BATCH,
}


def _abort(message: str) -> SpecError:
    return SpecError(ErrorCode.ABORTED_COMPUTATION, message)


def _handle_and_output(p: dict) -> tuple[ComputationHandle, SignedComputationOutput]:
    handle = p.get("handle")
    output = p.get("output")
    if not isinstance(handle, ComputationHandle):
        raise SpecError(ErrorCode.INVALID_PAYLOAD, "callback handle missing")
    if not isinstance(output, SignedComputationOutput):
        raise SpecError(ErrorCode.INVALID_PAYLOAD, "callback output missing")
    return handle, output


def _authenticate(
    state: ProgramState, ix: Instruction, verifier: Optional[ResultVerifier]
) -> tuple[TransferRequest, SignedComputationOutput]:
    circuit = CALLBACK_CIRCUITS[ix.ix_type]
    handle, output = _handle_and_output(payload_dict(ix))

    if state.cluster is None:
        raise SpecError(ErrorCode.CLUSTER_NOT_SET, "mpc cluster not configured")

    request = state.requests.get(handle.computation_offset)
    if request is None:
        raise SpecError(ErrorCode.COMPUTATION_NOT_FOUND, "no computation for handle")

    # Identity binding first, then the signature; nothing is decoded before both pass.
    if handle != request.handle or request.handle.circuit != circuit:
        raise _abort("handle does not match the recorded computation")
    if (
        output.computation_offset != handle.computation_offset
        or output.cluster_offset != handle.cluster_offset
        or output.circuit != circuit
    ):
        raise _abort("output is not bound to this computation")
    if verifier is None:
        verifier = Ed25519ClusterVerifier(state.cluster)
    if not verifier.verify(output):
        raise _abort("cluster signature verification failed")

    if request.status != RequestStatus.PENDING_VALIDATION:
        raise SpecError(ErrorCode.COMPUTATION_NOT_PENDING, "computation already resolved")
    if output.status != ComputationStatus.FINALIZED:
        raise _abort("computation did not finalize")
    return request, output


def _require_auditor_copy(request: TransferRequest, output: SignedComputationOutput, size: int) -> None:
    sealed = find_sealed_for(output.sealed, request.auditor or b"")
    if sealed is None:
        raise _abort("no output sealed to the auditor")
    # Plaintext record plus the Poly1305 tag.
    if len(sealed.ciphertext) != size + SEAL_TAG_SIZE:
        raise _abort("auditor output has unexpected size")


def _transfer_result(request: TransferRequest, output: SignedComputationOutput) -> TransferValidation:
    result = decode_transfer_validation(output.revealed)
    if request.handle.circuit == CircuitKind.VALIDATE_AUDITABLE:
        _require_auditor_copy(request, output, AUDITABLE_RESULT_SIZE)
    if result.is_valid and result.amount_lamports > request.amount_lamports:
        raise _abort("settled amount exceeds escrow custody")
    return result


def _batch_result(request: TransferRequest, output: SignedComputationOutput) -> BatchPayrollResult:
    result = decode_batch_result(output.revealed)
    _require_auditor_copy(request, output, BATCH_RESULT_SIZE)
    if result.timestamp != request.timestamp:
        raise _abort("batch timestamp not echoed")
    if result.valid_count == 0:
        if result.valid_bitmap or result.total_amount:
            raise _abort("rejected batch carries a bitmap or total")
        return result
    n = len(request.payouts)
    if (
        result.valid_count != n
        or result.valid_bitmap != (1 << n) - 1
        or result.total_amount != request.amount_lamports
    ):
        raise _abort("batch result does not cover every declared entry")
    return result


def verify(
    state: ProgramState, ix: Instruction, verifier: Optional[ResultVerifier] = None
) -> None:
    if ix.ix_type not in CALLBACK_CIRCUITS:
        raise SpecError(ErrorCode.INVALID_TYPE, f"unsupported callback ix type: {ix.ix_type}")
    request, output = _authenticate(state, ix, verifier)
    if ix.ix_type == InstructionType.BATCH_CALLBACK:
        _batch_result(request, output)
    else:
        _transfer_result(request, output)


def _reject(state: ProgramState, request: TransferRequest) -> None:
    request.status = RequestStatus.ABORTED
    request.resolution = int(ErrorCode.INSUFFICIENT_BALANCE)
    state.events.append(
        TransferRejected(
            computation_offset=request.handle.computation_offset,
            reason=REASON_INSUFFICIENT_BALANCE,
        )
    )
    logger.warning(
        "computation %d rejected: insufficient balance, funds held in escrow",
        request.handle.computation_offset,
    )


def apply(state: ProgramState, ix: Instruction) -> ProgramState:
    next_state = deepcopy(state)
    handle, output = _handle_and_output(ix.payload)
    request = next_state.requests[handle.computation_offset]
    escrow = next_state.escrows.get(request.escrow_id)
    if escrow is None:
        raise SpecError(ErrorCode.ESCROW_NOT_FOUND, "escrow not found")

    if ix.ix_type == InstructionType.BATCH_CALLBACK:
        batch = _batch_result(request, output)
        if batch.valid_count == 0:
            _reject(next_state, request)
            return next_state
        authority = escrow_authority(escrow)
        for payout in request.payouts:
            release_funds(next_state, authority, payout.recipient, payout.amount_lamports)
        close_escrow(next_state, authority)
        request.status = RequestStatus.RELEASED
        request.settled_amount = batch.total_amount
        next_state.events.append(
            BatchPayrollCompleted(
                computation_offset=handle.computation_offset,
                valid_count=batch.valid_count,
                total_amount=batch.total_amount,
            )
        )
        logger.debug("batch computation %d released", handle.computation_offset)
        return next_state

    result = _transfer_result(request, output)
    if not result.is_valid:
        _reject(next_state, request)
        return next_state

    authority = escrow_authority(escrow)
    release_funds(next_state, authority, request.recipient, result.amount_lamports)
    residual = close_escrow(next_state, authority)
    request.status = RequestStatus.RELEASED
    request.settled_amount = result.amount_lamports
    next_state.events.append(
        TransferCompleted(
            recipient=request.recipient,
            amount_lamports=result.amount_lamports,
            encrypted_amount=request.encrypted_amount,
            nonce=nonce_to_bytes(request.nonce),
        )
    )
    logger.debug(
        "computation %d released, residual %d returned to payer",
        handle.computation_offset,
        residual,
    )
    return next_state
