"""Wire-format encoding for computation requests and results.

Request payloads are a type-tagged argument list: the tag fixes the width of
the value that follows. Result payloads are the decrypted circuit structs,
fields concatenated in declaration order, integers little-endian.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Sequence

from .config import (
    AUDITABLE_RESULT_SIZE,
    BATCH_RESULT_SIZE,
    ENCRYPTED_FIELD_SIZE,
    MAX_BATCH_ENTRIES,
    NONCE_SIZE,
    TRANSFER_RESULT_SIZE,
    U128_MAX,
    X25519_PUBKEY_SIZE,
)
from .errors import ErrorCode, SpecError
from .types import (
    AuditableTransferResult,
    BatchPayrollResult,
    CircuitKind,
    SignedComputationOutput,
    TransferValidation,
)


class ArgTag(IntEnum):
    X25519_PUBKEY = 0x01
    PLAINTEXT_U128 = 0x02
    ENCRYPTED_U64 = 0x03
    ENCRYPTED_U8 = 0x04


ARG_SIZES = {
    ArgTag.X25519_PUBKEY: X25519_PUBKEY_SIZE,
    ArgTag.PLAINTEXT_U128: NONCE_SIZE,
    ArgTag.ENCRYPTED_U64: ENCRYPTED_FIELD_SIZE,
    ArgTag.ENCRYPTED_U8: ENCRYPTED_FIELD_SIZE,
}

_U64 = ArgTag.ENCRYPTED_U64
_U8 = ArgTag.ENCRYPTED_U8

# Encrypted field order per circuit input struct.
CIRCUIT_FIELDS: dict[CircuitKind, tuple[ArgTag, ...]] = {
    # amount_lamports, sender_balance_lamports
    CircuitKind.VALIDATE_TRANSFER: (_U64, _U64),
    # amount_lamports, sender_balance_lamports, payee_id, timestamp
    CircuitKind.VALIDATE_AUDITABLE: (_U64, _U64, _U64, _U64),
    # entries[10] x (amount_lamports, payee_id), entry_count,
    # sender_balance_lamports, timestamp
    CircuitKind.VALIDATE_BATCH: (_U64, _U64) * MAX_BATCH_ENTRIES + (_U8, _U64, _U64),
}

# Circuits whose output is sealed to a second (auditor) key.
AUDITOR_ADDRESSED = frozenset({
    CircuitKind.VALIDATE_AUDITABLE,
    CircuitKind.VALIDATE_BATCH,
})

CIRCUIT_IDS = {
    CircuitKind.VALIDATE_TRANSFER: 0,
    CircuitKind.VALIDATE_AUDITABLE: 1,
    CircuitKind.VALIDATE_BATCH: 2,
}


@dataclass
class Writer:
    buf: bytearray

    def _put(self, v: int, size: int) -> None:
        try:
            self.buf.extend(int(v).to_bytes(size, "little", signed=False))
        except OverflowError:
            raise SpecError(ErrorCode.INVALID_FORMAT, f"value does not fit {size} bytes") from None

    def write_u8(self, v: int) -> None:
        self._put(v, 1)

    def write_u16(self, v: int) -> None:
        self._put(v, 2)

    def write_u64(self, v: int) -> None:
        self._put(v, 8)

    def write_bytes(self, b: bytes) -> None:
        self.buf.extend(b)


@dataclass
class Reader:
    data: bytes
    pos: int = 0

    def _take(self, n: int) -> bytes:
        if self.pos + n > len(self.data):
            raise SpecError(ErrorCode.INVALID_FORMAT, "unexpected end of data")
        out = self.data[self.pos:self.pos + n]
        self.pos += n
        return out

    def read_u8(self) -> int:
        return self._take(1)[0]

    def read_u16(self) -> int:
        return int.from_bytes(self._take(2), "little")

    def read_u64(self) -> int:
        return int.from_bytes(self._take(8), "little")

    def read_bytes(self, n: int) -> bytes:
        return self._take(n)

    def remaining(self) -> int:
        return len(self.data) - self.pos


def _expect_len(name: str, value: bytes, size: int) -> None:
    if len(value) != size:
        raise SpecError(ErrorCode.INVALID_FORMAT, f"{name} must be {size} bytes")


def nonce_to_bytes(nonce: int) -> bytes:
    if not (0 <= nonce <= U128_MAX):
        raise SpecError(ErrorCode.INVALID_FORMAT, "nonce must fit u128")
    return nonce.to_bytes(NONCE_SIZE, "little")


# --- Request arguments ---


@dataclass(frozen=True)
class Arg:
    tag: ArgTag
    value: bytes


@dataclass(frozen=True)
class CircuitArgs:
    ephemeral_pubkey: bytes
    nonce: int
    fields: tuple[bytes, ...]
    auditor: Optional[bytes] = None


class ArgBuilder:
    """Accumulates request arguments in wire order."""

    def __init__(self) -> None:
        self._args: list[Arg] = []

    def _push(self, tag: ArgTag, value: bytes) -> "ArgBuilder":
        _expect_len(tag.name.lower(), bytes(value), ARG_SIZES[tag])
        self._args.append(Arg(tag, bytes(value)))
        return self

    def x25519_pubkey(self, key: bytes) -> "ArgBuilder":
        return self._push(ArgTag.X25519_PUBKEY, key)

    def plaintext_u128(self, value: int) -> "ArgBuilder":
        return self._push(ArgTag.PLAINTEXT_U128, nonce_to_bytes(value))

    def encrypted_u64(self, ciphertext: bytes) -> "ArgBuilder":
        return self._push(ArgTag.ENCRYPTED_U64, ciphertext)

    def encrypted_u8(self, ciphertext: bytes) -> "ArgBuilder":
        return self._push(ArgTag.ENCRYPTED_U8, ciphertext)

    def build(self) -> bytes:
        w = Writer(bytearray())
        w.write_u8(len(self._args))
        for arg in self._args:
            w.write_u8(arg.tag)
            w.write_bytes(arg.value)
        return bytes(w.buf)


def decode_args(data: bytes) -> list[Arg]:
    r = Reader(bytes(data))
    count = r.read_u8()
    args: list[Arg] = []
    for _ in range(count):
        raw_tag = r.read_u8()
        try:
            tag = ArgTag(raw_tag)
        except ValueError:
            raise SpecError(ErrorCode.INVALID_FORMAT, f"unknown argument tag {raw_tag:#04x}") from None
        args.append(Arg(tag, r.read_bytes(ARG_SIZES[tag])))
    if r.remaining():
        raise SpecError(ErrorCode.INVALID_FORMAT, "trailing bytes after arguments")
    return args


def expected_arg_tags(circuit: CircuitKind) -> tuple[ArgTag, ...]:
    tags = (ArgTag.X25519_PUBKEY, ArgTag.PLAINTEXT_U128) + CIRCUIT_FIELDS[circuit]
    if circuit in AUDITOR_ADDRESSED:
        tags += (ArgTag.X25519_PUBKEY,)
    return tags


def split_args(circuit: CircuitKind, data: bytes) -> CircuitArgs:
    """Decode and check a request payload against the circuit's input layout."""
    args = decode_args(data)
    tags = tuple(a.tag for a in args)
    if tags != expected_arg_tags(circuit):
        raise SpecError(ErrorCode.INVALID_PAYLOAD, f"argument layout does not match {circuit.value}")

    n_fields = len(CIRCUIT_FIELDS[circuit])
    fields = tuple(a.value for a in args[2:2 + n_fields])
    auditor = args[-1].value if circuit in AUDITOR_ADDRESSED else None
    return CircuitArgs(
        ephemeral_pubkey=args[0].value,
        nonce=int.from_bytes(args[1].value, "little"),
        fields=fields,
        auditor=auditor,
    )


def build_transfer_args(
    pubkey: bytes, nonce: int, encrypted_amount: bytes, encrypted_balance: bytes
) -> bytes:
    return (
        ArgBuilder()
        .x25519_pubkey(pubkey)
        .plaintext_u128(nonce)
        .encrypted_u64(encrypted_amount)
        .encrypted_u64(encrypted_balance)
        .build()
    )


def build_auditable_args(
    pubkey: bytes,
    nonce: int,
    encrypted_amount: bytes,
    encrypted_balance: bytes,
    encrypted_payee_id: bytes,
    encrypted_timestamp: bytes,
    auditor: bytes,
) -> bytes:
    return (
        ArgBuilder()
        .x25519_pubkey(pubkey)
        .plaintext_u128(nonce)
        .encrypted_u64(encrypted_amount)
        .encrypted_u64(encrypted_balance)
        .encrypted_u64(encrypted_payee_id)
        .encrypted_u64(encrypted_timestamp)
        .x25519_pubkey(auditor)
        .build()
    )


def build_batch_args(
    pubkey: bytes,
    nonce: int,
    encrypted_entries: Sequence[tuple[bytes, bytes]],
    encrypted_count: bytes,
    encrypted_balance: bytes,
    encrypted_timestamp: bytes,
    auditor: bytes,
) -> bytes:
    """Entries are (amount, payee_id) ciphertext pairs, padded to 10 by the client."""
    if len(encrypted_entries) != MAX_BATCH_ENTRIES:
        raise SpecError(
            ErrorCode.INVALID_PAYLOAD, f"batch args need exactly {MAX_BATCH_ENTRIES} entries"
        )
    b = ArgBuilder().x25519_pubkey(pubkey).plaintext_u128(nonce)
    for amount_ct, payee_ct in encrypted_entries:
        b.encrypted_u64(amount_ct).encrypted_u64(payee_ct)
    return (
        b.encrypted_u8(encrypted_count)
        .encrypted_u64(encrypted_balance)
        .encrypted_u64(encrypted_timestamp)
        .x25519_pubkey(auditor)
        .build()
    )


# --- Decrypted results ---


def _abort_on_size(name: str, data: bytes, size: int) -> None:
    if len(data) != size:
        raise SpecError(
            ErrorCode.ABORTED_COMPUTATION, f"{name} must be {size} bytes, got {len(data)}"
        )


def _flag(name: str, value: int) -> int:
    if value not in (0, 1):
        raise SpecError(ErrorCode.ABORTED_COMPUTATION, f"{name} must be 0 or 1")
    return value


def encode_transfer_validation(result: TransferValidation) -> bytes:
    w = Writer(bytearray())
    w.write_u64(result.amount_lamports)
    w.write_u8(result.is_valid)
    return bytes(w.buf)


def decode_transfer_validation(data: bytes) -> TransferValidation:
    """Bytes 0..8 little-endian amount, byte 8 validity flag."""
    _abort_on_size("transfer validation", data, TRANSFER_RESULT_SIZE)
    amount = int.from_bytes(data[0:8], "little")
    return TransferValidation(amount_lamports=amount, is_valid=_flag("is_valid", data[8]))


def encode_auditable_result(result: AuditableTransferResult) -> bytes:
    w = Writer(bytearray())
    w.write_u64(result.amount_lamports)
    w.write_u8(result.is_valid)
    w.write_u64(result.payee_id)
    w.write_u64(result.timestamp)
    w.write_u8(result.reason_code)
    return bytes(w.buf)


def decode_auditable_result(data: bytes) -> AuditableTransferResult:
    _abort_on_size("auditable result", data, AUDITABLE_RESULT_SIZE)
    r = Reader(bytes(data))
    amount = r.read_u64()
    is_valid = _flag("is_valid", r.read_u8())
    return AuditableTransferResult(
        amount_lamports=amount,
        is_valid=is_valid,
        payee_id=r.read_u64(),
        timestamp=r.read_u64(),
        reason_code=r.read_u8(),
    )


def encode_batch_result(result: BatchPayrollResult) -> bytes:
    w = Writer(bytearray())
    w.write_u16(result.valid_bitmap)
    w.write_u64(result.total_amount)
    w.write_u8(result.valid_count)
    w.write_u64(result.timestamp)
    return bytes(w.buf)


def decode_batch_result(data: bytes) -> BatchPayrollResult:
    _abort_on_size("batch result", data, BATCH_RESULT_SIZE)
    r = Reader(bytes(data))
    bitmap = r.read_u16()
    if bitmap >> MAX_BATCH_ENTRIES:
        raise SpecError(ErrorCode.ABORTED_COMPUTATION, "valid_bitmap has bits beyond entry limit")
    return BatchPayrollResult(
        valid_bitmap=bitmap,
        total_amount=r.read_u64(),
        valid_count=r.read_u8(),
        timestamp=r.read_u64(),
    )


# --- Signed output message ---

OUTPUT_DOMAIN = b"vaultpay-output-v1"


def encode_output_message(output: SignedComputationOutput) -> bytes:
    """Canonical bytes covered by the cluster signature (everything but the signature)."""
    w = Writer(bytearray())
    w.write_bytes(OUTPUT_DOMAIN)
    w.write_u64(output.computation_offset)
    w.write_u64(output.cluster_offset)
    w.write_u8(CIRCUIT_IDS[output.circuit])
    w.write_u8(output.status)
    w.write_u16(len(output.revealed))
    w.write_bytes(output.revealed)
    w.write_u8(len(output.sealed))
    for sealed in output.sealed:
        _expect_len("sealed recipient", sealed.recipient, X25519_PUBKEY_SIZE)
        _expect_len("sealed nonce", sealed.nonce, NONCE_SIZE)
        w.write_bytes(sealed.recipient)
        w.write_bytes(sealed.nonce)
        w.write_u16(len(sealed.ciphertext))
        w.write_bytes(sealed.ciphertext)
    return bytes(w.buf)
