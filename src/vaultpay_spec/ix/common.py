"""Payload field readers shared by the instruction handlers."""

from __future__ import annotations

from ..config import ADDRESS_SIZE, U64_MAX, U128_MAX
from ..errors import ErrorCode, SpecError
from ..types import Instruction


def payload_dict(ix: Instruction) -> dict:
    if not isinstance(ix.payload, dict):
        raise SpecError(ErrorCode.INVALID_PAYLOAD, f"{ix.ix_type.value} payload must be dict")
    return ix.payload


def to_bytes(v: object) -> bytes:
    if isinstance(v, bytes):
        return v
    if isinstance(v, (bytearray, list, tuple)):
        return bytes(v)
    raise SpecError(ErrorCode.INVALID_FORMAT, "expected bytes")


def bytes_field(p: dict, name: str, size: int) -> bytes:
    value = p.get(name)
    if value is None:
        raise SpecError(ErrorCode.INVALID_PAYLOAD, f"missing {name}")
    value = to_bytes(value)
    if len(value) != size:
        raise SpecError(ErrorCode.INVALID_FORMAT, f"{name} must be {size} bytes")
    return value


def address_field(p: dict, name: str) -> bytes:
    value = p.get(name)
    if value is None:
        raise SpecError(ErrorCode.INVALID_PAYLOAD, f"missing {name}")
    value = to_bytes(value)
    if len(value) != ADDRESS_SIZE:
        raise SpecError(ErrorCode.INVALID_ADDRESS, f"{name} must be {ADDRESS_SIZE} bytes")
    return value


def int_field(p: dict, name: str, max_value: int = U64_MAX) -> int:
    value = p.get(name)
    if isinstance(value, bool) or not isinstance(value, int):
        raise SpecError(ErrorCode.INVALID_PAYLOAD, f"{name} must be an integer")
    if value < 0 or value > max_value:
        raise SpecError(ErrorCode.INVALID_FORMAT, f"{name} out of range")
    return value


def amount_field(p: dict, name: str = "amount_lamports") -> int:
    value = p.get(name)
    if isinstance(value, bool) or not isinstance(value, int):
        raise SpecError(ErrorCode.INVALID_PAYLOAD, f"{name} must be an integer")
    if value <= 0:
        raise SpecError(ErrorCode.INVALID_AMOUNT, f"{name} must be > 0")
    if value > U64_MAX:
        raise SpecError(ErrorCode.INVALID_AMOUNT, f"{name} exceeds u64 max")
    return value


def nonce_field(p: dict) -> int:
    return int_field(p, "nonce", U128_MAX)
