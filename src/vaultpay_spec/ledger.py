"""Plaintext lamport bookkeeping for host accounts."""

from __future__ import annotations

from .config import ADDRESS_SIZE, U64_MAX
from .errors import ErrorCode, SpecError
from .types import AccountState, ProgramState


def apply_balance_change(balance: int, delta: int) -> int:
    """Apply +/- balance with u64 bounds."""
    new_balance = balance + delta
    if new_balance < 0:
        raise SpecError(ErrorCode.INSUFFICIENT_BALANCE, "insufficient balance")
    if new_balance > U64_MAX:
        raise SpecError(ErrorCode.OVERFLOW, "balance overflow")
    return new_balance


def debit(state: ProgramState, address: bytes, amount: int) -> None:
    account = state.accounts.get(address)
    if account is None:
        raise SpecError(ErrorCode.ACCOUNT_NOT_FOUND, "account not found")
    account.balance = apply_balance_change(account.balance, -amount)


def credit(state: ProgramState, address: bytes, amount: int) -> None:
    """Credit an account, creating it on first receipt."""
    if len(address) != ADDRESS_SIZE:
        raise SpecError(ErrorCode.INVALID_ADDRESS, "address must be 32 bytes")
    account = state.accounts.get(address)
    if account is None:
        account = AccountState(address=address, balance=0)
        state.accounts[address] = account
    account.balance = apply_balance_change(account.balance, amount)
