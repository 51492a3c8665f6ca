"""Program-level operations.

Each operation builds one ``Instruction`` and runs it through
``state_transition.apply_ix``. They return ``(state, TransitionResult)``;
on failure the returned state is the one passed in.
"""

from __future__ import annotations

from copy import deepcopy
from typing import Optional, Sequence

from .config import ZERO_ADDRESS
from .crypto.signing import ResultVerifier
from .mpc import MpcService
from .state_transition import TransitionResult, apply_ix
from .types import (
    CircuitKind,
    ClusterConfig,
    ComputationHandle,
    ComputationRequest,
    Instruction,
    InstructionType,
    Payout,
    ProgramState,
    RequestStatus,
    SignedComputationOutput,
)

STATUS_PENDING = "pending"
STATUS_FINALIZED = "finalized"
STATUS_FAILED = "failed"
STATUS_NOT_FOUND = "not_found"

_CALLBACK_FOR = {
    CircuitKind.VALIDATE_TRANSFER: InstructionType.TRANSFER_CALLBACK,
    CircuitKind.VALIDATE_AUDITABLE: InstructionType.AUDITABLE_CALLBACK,
    CircuitKind.VALIDATE_BATCH: InstructionType.BATCH_CALLBACK,
}


def configure_cluster(
    state: ProgramState, authority: bytes, cluster: ClusterConfig
) -> tuple[ProgramState, TransitionResult]:
    ix = Instruction(
        ix_type=InstructionType.SET_CLUSTER,
        signer=authority,
        payload={
            "cluster_offset": cluster.cluster_offset,
            "signer_pubkey": cluster.signer_pubkey,
            "encryption_pubkey": cluster.encryption_pubkey,
        },
    )
    return apply_ix(state, ix)


def initiate_transfer(
    state: ProgramState,
    sender: bytes,
    recipient: bytes,
    amount_lamports: int,
    encrypted_amount: bytes,
    encrypted_balance: bytes,
    ephemeral_pubkey: bytes,
    nonce: int,
    computation_offset: int,
) -> tuple[ProgramState, TransitionResult]:
    """Lock ``amount_lamports`` in a fresh escrow and queue the validation."""
    ix = Instruction(
        ix_type=InstructionType.CONFIDENTIAL_TRANSFER,
        signer=sender,
        payload={
            "recipient": recipient,
            "amount_lamports": amount_lamports,
            "encrypted_amount": encrypted_amount,
            "encrypted_balance": encrypted_balance,
            "ephemeral_pubkey": ephemeral_pubkey,
            "nonce": nonce,
            "computation_offset": computation_offset,
        },
    )
    return apply_ix(state, ix)


def initiate_auditable_transfer(
    state: ProgramState,
    sender: bytes,
    recipient: bytes,
    amount_lamports: int,
    encrypted_amount: bytes,
    encrypted_balance: bytes,
    encrypted_payee_id: bytes,
    encrypted_timestamp: bytes,
    auditor_key: bytes,
    ephemeral_pubkey: bytes,
    nonce: int,
    computation_offset: int,
) -> tuple[ProgramState, TransitionResult]:
    ix = Instruction(
        ix_type=InstructionType.AUDITABLE_TRANSFER,
        signer=sender,
        payload={
            "recipient": recipient,
            "amount_lamports": amount_lamports,
            "encrypted_amount": encrypted_amount,
            "encrypted_balance": encrypted_balance,
            "encrypted_payee_id": encrypted_payee_id,
            "encrypted_timestamp": encrypted_timestamp,
            "auditor": auditor_key,
            "ephemeral_pubkey": ephemeral_pubkey,
            "nonce": nonce,
            "computation_offset": computation_offset,
        },
    )
    return apply_ix(state, ix)


def initiate_batch_payroll(
    state: ProgramState,
    sender: bytes,
    payouts: Sequence[Payout],
    encrypted_entries: Sequence[tuple[bytes, bytes]],
    declared_count: int,
    encrypted_count: bytes,
    encrypted_balance: bytes,
    encrypted_timestamp: bytes,
    timestamp: int,
    auditor_key: bytes,
    ephemeral_pubkey: bytes,
    nonce: int,
    computation_offset: int,
) -> tuple[ProgramState, TransitionResult]:
    """Lock the sum of ``payouts`` and queue the all-or-nothing batch check."""
    ix = Instruction(
        ix_type=InstructionType.BATCH_PAYROLL,
        signer=sender,
        payload={
            "payouts": list(payouts),
            "encrypted_entries": list(encrypted_entries),
            "declared_count": declared_count,
            "encrypted_count": encrypted_count,
            "encrypted_balance": encrypted_balance,
            "encrypted_timestamp": encrypted_timestamp,
            "timestamp": timestamp,
            "auditor": auditor_key,
            "ephemeral_pubkey": ephemeral_pubkey,
            "nonce": nonce,
            "computation_offset": computation_offset,
        },
    )
    return apply_ix(state, ix)


def _resolve(
    state: ProgramState,
    ix_type: InstructionType,
    handle: ComputationHandle,
    signed_output: SignedComputationOutput,
    verifier: Optional[ResultVerifier],
) -> tuple[ProgramState, TransitionResult]:
    # Callbacks are delivered by the cluster, not signed by a user.
    ix = Instruction(
        ix_type=ix_type,
        signer=ZERO_ADDRESS,
        payload={"handle": handle, "output": signed_output},
    )
    return apply_ix(state, ix, verifier)


def resolve_transfer_callback(
    state: ProgramState,
    handle: ComputationHandle,
    signed_output: SignedComputationOutput,
    verifier: Optional[ResultVerifier] = None,
) -> tuple[ProgramState, TransitionResult]:
    return _resolve(state, InstructionType.TRANSFER_CALLBACK, handle, signed_output, verifier)


def resolve_auditable_callback(
    state: ProgramState,
    handle: ComputationHandle,
    signed_output: SignedComputationOutput,
    verifier: Optional[ResultVerifier] = None,
) -> tuple[ProgramState, TransitionResult]:
    return _resolve(state, InstructionType.AUDITABLE_CALLBACK, handle, signed_output, verifier)


def resolve_batch_callback(
    state: ProgramState,
    handle: ComputationHandle,
    signed_output: SignedComputationOutput,
    verifier: Optional[ResultVerifier] = None,
) -> tuple[ProgramState, TransitionResult]:
    return _resolve(state, InstructionType.BATCH_CALLBACK, handle, signed_output, verifier)


def resolve_callback(
    state: ProgramState,
    handle: ComputationHandle,
    signed_output: SignedComputationOutput,
    verifier: Optional[ResultVerifier] = None,
) -> tuple[ProgramState, TransitionResult]:
    """Route an output to the callback matching the handle's circuit."""
    return _resolve(state, _CALLBACK_FOR[handle.circuit], handle, signed_output, verifier)


def refund_escrow(
    state: ProgramState, payer: bytes, handle: ComputationHandle
) -> tuple[ProgramState, TransitionResult]:
    ix = Instruction(
        ix_type=InstructionType.REFUND_ESCROW,
        signer=payer,
        payload={"computation_offset": handle.computation_offset},
    )
    return apply_ix(state, ix)


def computation_status(state: ProgramState, handle: ComputationHandle) -> str:
    request = state.requests.get(handle.computation_offset)
    if request is None or request.handle != handle:
        return STATUS_NOT_FOUND
    if request.status in (RequestStatus.INITIATED, RequestStatus.PENDING_VALIDATION):
        return STATUS_PENDING
    if request.status == RequestStatus.REFUNDED and request.resolution is None:
        # Refunded without a verified result: the computation timed out.
        return STATUS_FAILED
    return STATUS_FINALIZED


def take_queued(state: ProgramState) -> tuple[ProgramState, list[ComputationRequest]]:
    """Drain the computation queue for delivery to the cluster."""
    next_state = deepcopy(state)
    queued, next_state.mempool = next_state.mempool, []
    return next_state, queued


def advance_slot(state: ProgramState, slots: int = 1) -> ProgramState:
    next_state = deepcopy(state)
    next_state.slot += slots
    return next_state


def run_queued(
    state: ProgramState, service: MpcService, verifier: Optional[ResultVerifier] = None
) -> tuple[ProgramState, list[TransitionResult]]:
    """Execute every queued request on ``service`` and resolve its callback."""
    state, queued = take_queued(state)
    results = []
    for request in queued:
        output = service.execute(request)
        state, result = resolve_callback(state, request.handle, output, verifier)
        results.append(result)
    return state, results
