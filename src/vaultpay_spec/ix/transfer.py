"""Confidential transfer orchestration (plain and auditor-sealed).

Funds are locked into a per-transfer escrow before the computation request is
queued. The plaintext amount is the custody amount; the circuit only ever
sees the encrypted copy.
"""

from __future__ import annotations

import logging
from copy import deepcopy

from ..config import ENCRYPTED_FIELD_SIZE, X25519_PUBKEY_SIZE
from ..crypto.hash_algorithms import derive_escrow_id
from ..encoding import build_auditable_args, build_transfer_args, nonce_to_bytes
from ..errors import ErrorCode, SpecError
from ..escrow import lock_funds, open_escrow
from ..types import (
    CircuitKind,
    ComputationHandle,
    ComputationRequest,
    Instruction,
    InstructionType,
    ProgramState,
    RequestStatus,
    TransferQueued,
    TransferRequest,
)
from .common import address_field, amount_field, bytes_field, int_field, nonce_field, payload_dict

logger = logging.getLogger(__name__)

_TRANSFER_TYPES = {
    InstructionType.CONFIDENTIAL_TRANSFER: CircuitKind.VALIDATE_TRANSFER,
    InstructionType.AUDITABLE_TRANSFER: CircuitKind.VALIDATE_AUDITABLE,
}


def _build_args(ix: Instruction, p: dict) -> bytes:
    pubkey = bytes_field(p, "ephemeral_pubkey", X25519_PUBKEY_SIZE)
    nonce = nonce_field(p)
    amount_ct = bytes_field(p, "encrypted_amount", ENCRYPTED_FIELD_SIZE)
    balance_ct = bytes_field(p, "encrypted_balance", ENCRYPTED_FIELD_SIZE)
    if ix.ix_type == InstructionType.CONFIDENTIAL_TRANSFER:
        return build_transfer_args(pubkey, nonce, amount_ct, balance_ct)
    return build_auditable_args(
        pubkey,
        nonce,
        amount_ct,
        balance_ct,
        bytes_field(p, "encrypted_payee_id", ENCRYPTED_FIELD_SIZE),
        bytes_field(p, "encrypted_timestamp", ENCRYPTED_FIELD_SIZE),
        bytes_field(p, "auditor", X25519_PUBKEY_SIZE),
    )


def verify(state: ProgramState, ix: Instruction) -> None:
    if ix.ix_type not in _TRANSFER_TYPES:
        raise SpecError(ErrorCode.INVALID_TYPE, f"unsupported transfer ix type: {ix.ix_type}")
    p = payload_dict(ix)

    recipient = address_field(p, "recipient")
    if recipient == ix.signer:
        raise SpecError(ErrorCode.SELF_OPERATION, "sender cannot be recipient")
    amount = amount_field(p)
    offset = int_field(p, "computation_offset")
    _build_args(ix, p)

    if state.cluster is None:
        raise SpecError(ErrorCode.CLUSTER_NOT_SET, "mpc cluster not configured")

    sender = state.accounts.get(ix.signer)
    if sender is None:
        raise SpecError(ErrorCode.ACCOUNT_NOT_FOUND, "sender not found")
    if sender.balance < amount:
        raise SpecError(ErrorCode.INSUFFICIENT_BALANCE, "insufficient balance to lock")

    if offset in state.requests:
        raise SpecError(ErrorCode.COMPUTATION_EXISTS, "computation offset already used")
    escrow = state.escrows.get(derive_escrow_id(ix.signer, recipient, nonce_field(p)))
    if escrow is not None and escrow.held_amount > 0:
        raise SpecError(ErrorCode.ESCROW_IN_USE, "escrow already holds funds for a transfer")


def apply(state: ProgramState, ix: Instruction) -> ProgramState:
    next_state = deepcopy(state)
    p = ix.payload
    circuit = _TRANSFER_TYPES[ix.ix_type]
    recipient = address_field(p, "recipient")
    amount = amount_field(p)
    nonce = nonce_field(p)
    args = _build_args(ix, p)

    escrow_id = derive_escrow_id(ix.signer, recipient, nonce)
    escrow = open_escrow(next_state, ix.signer, escrow_id)
    lock_funds(next_state, ix.signer, escrow, amount)

    handle = ComputationHandle(
        computation_offset=int_field(p, "computation_offset"),
        cluster_offset=next_state.cluster.cluster_offset,
        circuit=circuit,
    )
    request = TransferRequest(
        handle=handle,
        sender=ix.signer,
        recipient=recipient,
        escrow_id=escrow_id,
        amount_lamports=amount,
        args=args,
        encrypted_amount=bytes_field(p, "encrypted_amount", ENCRYPTED_FIELD_SIZE),
        nonce=nonce,
        created_slot=next_state.slot,
        auditor=bytes_field(p, "auditor", X25519_PUBKEY_SIZE)
        if circuit == CircuitKind.VALIDATE_AUDITABLE
        else None,
    )
    next_state.requests[handle.computation_offset] = request
    next_state.mempool.append(ComputationRequest(handle=handle, args=args))
    request.status = RequestStatus.PENDING_VALIDATION

    next_state.events.append(
        TransferQueued(
            sender=ix.signer,
            recipient=recipient,
            encrypted_amount=request.encrypted_amount,
            nonce=nonce_to_bytes(nonce),
            computation_offset=handle.computation_offset,
            escrow=escrow_id,
        )
    )
    logger.debug(
        "queued %s computation %d into escrow %s",
        circuit.value,
        handle.computation_offset,
        escrow_id.hex()[:16],
    )
    return next_state
