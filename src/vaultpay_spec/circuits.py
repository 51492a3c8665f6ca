"""Validation circuits executed by the MPC cluster over decrypted inputs.

Each circuit is a pure function: it reads its input struct and returns a new
result struct. Custody state is never touched here.
"""

from __future__ import annotations

from .config import (
    MAX_BATCH_ENTRIES,
    REASON_INSUFFICIENT_BALANCE,
    REASON_SUCCESS,
    U64_MAX,
)
from .types import (
    AuditableTransferInput,
    AuditableTransferResult,
    BatchPayrollInput,
    BatchPayrollResult,
    ConfidentialTransferInput,
    TransferValidation,
)


def saturating_add_u64(a: int, b: int) -> int:
    return min(a + b, U64_MAX)


def validate_confidential_transfer(inp: ConfidentialTransferInput) -> TransferValidation:
    is_valid = 1 if inp.sender_balance_lamports >= inp.amount_lamports else 0
    return TransferValidation(amount_lamports=inp.amount_lamports, is_valid=is_valid)


def validate_auditable_transfer(inp: AuditableTransferInput) -> AuditableTransferResult:
    """Same check as the basic circuit; payee and timestamp are passed through."""
    if inp.sender_balance_lamports >= inp.amount_lamports:
        is_valid, reason_code = 1, REASON_SUCCESS
    else:
        is_valid, reason_code = 0, REASON_INSUFFICIENT_BALANCE
    return AuditableTransferResult(
        amount_lamports=inp.amount_lamports,
        is_valid=is_valid,
        payee_id=inp.payee_id,
        timestamp=inp.timestamp,
        reason_code=reason_code,
    )


def validate_batch_payroll(inp: BatchPayrollInput) -> BatchPayrollResult:
    """All-or-nothing batch check.

    The declared count is clamped to the entry limit; entries at or past the
    count are never read. The total saturates at u64 max instead of wrapping.
    """
    count = min(inp.entry_count, MAX_BATCH_ENTRIES)

    total = 0
    for entry in inp.entries[:count]:
        total = saturating_add_u64(total, entry.amount_lamports)

    if inp.sender_balance_lamports >= total:
        bitmap = 0
        for i in range(count):
            bitmap |= 1 << i
        valid_count = count
    else:
        bitmap = 0
        total = 0
        valid_count = 0

    return BatchPayrollResult(
        valid_bitmap=bitmap,
        total_amount=total,
        valid_count=valid_count,
        timestamp=inp.timestamp,
    )
