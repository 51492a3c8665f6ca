"""Core types for the VaultPay executable model.

The model tracks the confidential escrow program surface: confidential
transfers, auditor-sealed transfers, batch payroll, the MPC callbacks that
resolve them, and the escrow refund path.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import List, Optional

from .config import (
    CIRCUIT_VALIDATE_AUDITABLE,
    CIRCUIT_VALIDATE_BATCH,
    CIRCUIT_VALIDATE_TRANSFER,
    ZERO_ADDRESS,
)


class CircuitKind(Enum):
    VALIDATE_TRANSFER = CIRCUIT_VALIDATE_TRANSFER
    VALIDATE_AUDITABLE = CIRCUIT_VALIDATE_AUDITABLE
    VALIDATE_BATCH = CIRCUIT_VALIDATE_BATCH


class InstructionType(Enum):
    SET_CLUSTER = "set_cluster"
    CONFIDENTIAL_TRANSFER = "confidential_transfer"
    AUDITABLE_TRANSFER = "auditable_transfer"
    BATCH_PAYROLL = "batch_payroll"
    TRANSFER_CALLBACK = "validate_confidential_transfer_callback"
    AUDITABLE_CALLBACK = "validate_auditable_transfer_callback"
    BATCH_CALLBACK = "validate_batch_payroll_callback"
    REFUND_ESCROW = "refund_escrow"


class RequestStatus(IntEnum):
    INITIATED = 0
    PENDING_VALIDATION = 1
    RELEASED = 2
    ABORTED = 3
    REFUNDED = 4


class ComputationStatus(IntEnum):
    FINALIZED = 2
    FAILED = 3


class TransferOutcome(Enum):
    QUEUED = "queued"
    COMPLETED = "completed"
    REJECTED_INSUFFICIENT_BALANCE = "rejected_insufficient_balance"
    ABORTED_INVALID_RESULT = "aborted_invalid_result"
    REFUNDED = "refunded"


# --- Circuit inputs / outputs ---


@dataclass(frozen=True)
class ConfidentialTransferInput:
    amount_lamports: int
    sender_balance_lamports: int


@dataclass(frozen=True)
class TransferValidation:
    amount_lamports: int
    is_valid: int


@dataclass(frozen=True)
class AuditableTransferInput:
    amount_lamports: int
    sender_balance_lamports: int
    payee_id: int
    timestamp: int


@dataclass(frozen=True)
class AuditableTransferResult:
    amount_lamports: int
    is_valid: int
    payee_id: int
    timestamp: int
    reason_code: int


@dataclass(frozen=True)
class BatchPayrollEntry:
    amount_lamports: int
    payee_id: int


@dataclass(frozen=True)
class BatchPayrollInput:
    entries: tuple[BatchPayrollEntry, ...]
    entry_count: int
    sender_balance_lamports: int
    timestamp: int


@dataclass(frozen=True)
class BatchPayrollResult:
    valid_bitmap: int
    total_amount: int
    valid_count: int
    timestamp: int


# --- MPC service records ---


@dataclass(frozen=True)
class ClusterConfig:
    cluster_offset: int
    signer_pubkey: bytes
    encryption_pubkey: bytes


@dataclass(frozen=True)
class ComputationHandle:
    computation_offset: int
    cluster_offset: int
    circuit: CircuitKind


@dataclass
class ComputationRequest:
    handle: ComputationHandle
    args: bytes


@dataclass(frozen=True)
class SealedOutput:
    recipient: bytes
    nonce: bytes
    ciphertext: bytes


@dataclass
class SignedComputationOutput:
    computation_offset: int
    cluster_offset: int
    circuit: CircuitKind
    status: ComputationStatus
    revealed: bytes
    sealed: List[SealedOutput] = field(default_factory=list)
    signature: bytes = b""


# --- Program state ---


@dataclass
class AccountState:
    address: bytes
    balance: int = 0


@dataclass
class EscrowEntry:
    escrow_id: bytes
    bump: int
    payer: bytes
    held_amount: int = 0


@dataclass
class Payout:
    recipient: bytes
    payee_id: int
    amount_lamports: int


@dataclass
class TransferRequest:
    handle: ComputationHandle
    sender: bytes
    recipient: bytes
    escrow_id: bytes
    amount_lamports: int
    args: bytes
    encrypted_amount: bytes
    nonce: int
    status: RequestStatus = RequestStatus.INITIATED
    created_slot: int = 0
    auditor: Optional[bytes] = None
    payouts: List[Payout] = field(default_factory=list)
    timestamp: Optional[int] = None
    resolution: Optional[int] = None
    settled_amount: int = 0


@dataclass
class Instruction:
    ix_type: InstructionType
    signer: bytes
    payload: dict


# --- Events (observers see ciphertext only until settlement) ---


@dataclass(frozen=True)
class TransferQueued:
    sender: bytes
    recipient: bytes
    encrypted_amount: bytes
    nonce: bytes
    computation_offset: int
    escrow: bytes


@dataclass(frozen=True)
class TransferCompleted:
    recipient: bytes
    amount_lamports: int
    encrypted_amount: bytes
    nonce: bytes


@dataclass(frozen=True)
class TransferRejected:
    computation_offset: int
    reason: int


@dataclass(frozen=True)
class BatchPayrollQueued:
    sender: bytes
    entry_count: int
    nonce: bytes
    computation_offset: int
    escrow: bytes


@dataclass(frozen=True)
class BatchPayrollCompleted:
    computation_offset: int
    valid_count: int
    total_amount: int


@dataclass(frozen=True)
class EscrowRefunded:
    payer: bytes
    amount_lamports: int
    computation_offset: int


@dataclass
class ProgramState:
    accounts: dict[bytes, AccountState] = field(default_factory=dict)
    escrows: dict[bytes, EscrowEntry] = field(default_factory=dict)
    requests: dict[int, TransferRequest] = field(default_factory=dict)
    mempool: list[ComputationRequest] = field(default_factory=list)
    cluster: Optional[ClusterConfig] = None
    authority: bytes = ZERO_ADDRESS
    slot: int = 0
    # Emitted events. Not part of conformance post_state.
    events: list = field(default_factory=list)
