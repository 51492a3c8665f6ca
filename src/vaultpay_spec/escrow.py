"""Escrow custody records.

Funds enter an escrow only through ``lock_funds`` (called by the transfer
orchestrators) and leave only through ``release_funds`` / ``close_escrow``,
both of which require an ``EscrowAuthority`` derived from the entry's own id
and bump.
"""

from __future__ import annotations

from dataclasses import dataclass

from .crypto.constant_time import constant_time_eq
from .crypto.hash_algorithms import create_escrow_authority, find_escrow_authority
from .errors import ErrorCode, SpecError
from .ledger import apply_balance_change, credit, debit
from .types import EscrowEntry, ProgramState


@dataclass(frozen=True)
class EscrowAuthority:
    escrow_id: bytes
    bump: int
    address: bytes


def open_escrow(state: ProgramState, payer: bytes, escrow_id: bytes) -> EscrowEntry:
    if escrow_id in state.escrows:
        raise SpecError(ErrorCode.ESCROW_IN_USE, "escrow already holds funds for a transfer")
    _, bump = find_escrow_authority(escrow_id)
    escrow = EscrowEntry(escrow_id=escrow_id, bump=bump, payer=payer, held_amount=0)
    state.escrows[escrow_id] = escrow
    return escrow


def lock_funds(state: ProgramState, payer: bytes, escrow: EscrowEntry, amount: int) -> None:
    debit(state, payer, amount)
    escrow.held_amount = apply_balance_change(escrow.held_amount, amount)


def escrow_authority(escrow: EscrowEntry) -> EscrowAuthority:
    address = create_escrow_authority(escrow.escrow_id, escrow.bump)
    return EscrowAuthority(escrow_id=escrow.escrow_id, bump=escrow.bump, address=address)


def _require_authority(state: ProgramState, authority: EscrowAuthority) -> EscrowEntry:
    escrow = state.escrows.get(authority.escrow_id)
    if escrow is None:
        raise SpecError(ErrorCode.ESCROW_NOT_FOUND, "escrow not found")
    expected = create_escrow_authority(escrow.escrow_id, escrow.bump)
    if authority.bump != escrow.bump or not constant_time_eq(expected, authority.address):
        raise SpecError(ErrorCode.INVALID_ESCROW_AUTHORITY, "authority does not sign for escrow")
    return escrow


def release_funds(
    state: ProgramState, authority: EscrowAuthority, recipient: bytes, amount: int
) -> None:
    escrow = _require_authority(state, authority)
    if amount > escrow.held_amount:
        raise SpecError(ErrorCode.ABORTED_COMPUTATION, "release exceeds escrow custody")
    escrow.held_amount -= amount
    credit(state, recipient, amount)


def close_escrow(state: ProgramState, authority: EscrowAuthority) -> int:
    """Return any residual custody to the payer and remove the record."""
    escrow = _require_authority(state, authority)
    residual = escrow.held_amount
    if residual:
        credit(state, escrow.payer, residual)
    del state.escrows[escrow.escrow_id]
    return residual
