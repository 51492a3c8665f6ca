"""REFUND_ESCROW: return locked funds of an aborted or stalled computation."""

from __future__ import annotations

import logging
from copy import deepcopy

from ..config import COMPUTATION_TIMEOUT_SLOTS
from ..errors import ErrorCode, SpecError
from ..escrow import close_escrow, escrow_authority
from ..types import EscrowRefunded, Instruction, InstructionType, ProgramState, RequestStatus
from .common import int_field, payload_dict

logger = logging.getLogger(__name__)


def _refundable(state: ProgramState, status: RequestStatus, created_slot: int) -> bool:
    if status == RequestStatus.ABORTED:
        return True
    if status == RequestStatus.PENDING_VALIDATION:
        return state.slot >= created_slot + COMPUTATION_TIMEOUT_SLOTS
    return False


def verify(state: ProgramState, ix: Instruction) -> None:
    if ix.ix_type != InstructionType.REFUND_ESCROW:
        raise SpecError(ErrorCode.INVALID_TYPE, f"unsupported refund ix type: {ix.ix_type}")
    p = payload_dict(ix)
    request = state.requests.get(int_field(p, "computation_offset"))
    if request is None:
        raise SpecError(ErrorCode.COMPUTATION_NOT_FOUND, "no computation for offset")
    if ix.signer != request.sender:
        raise SpecError(ErrorCode.UNAUTHORIZED, "only the payer may refund")
    if not _refundable(state, request.status, request.created_slot):
        raise SpecError(ErrorCode.REFUND_NOT_AVAILABLE, "request is not refundable")
    if request.escrow_id not in state.escrows:
        raise SpecError(ErrorCode.ESCROW_NOT_FOUND, "escrow not found")


def apply(state: ProgramState, ix: Instruction) -> ProgramState:
    next_state = deepcopy(state)
    offset = int_field(ix.payload, "computation_offset")
    request = next_state.requests[offset]
    refunded = close_escrow(next_state, escrow_authority(next_state.escrows[request.escrow_id]))
    request.status = RequestStatus.REFUNDED
    next_state.events.append(
        EscrowRefunded(payer=request.sender, amount_lamports=refunded, computation_offset=offset)
    )
    logger.debug("computation %d refunded %d lamports", offset, refunded)
    return next_state
