"""Hash algorithm assignments for custody derivations."""

from __future__ import annotations

from dataclasses import dataclass

from blake3 import blake3

from ..config import (
    BATCH_RECIPIENT_SEED,
    ESCROW_AUTHORITY_SEED,
    ESCROW_PDA_SEED,
    NONCE_SIZE,
)
from ..errors import ErrorCode, SpecError


HASH_SIZE = 32


@dataclass(frozen=True)
class HashAssignment:
    purpose: str
    algorithm: str
    output_size: int
    input_spec: str


ASSIGNMENTS = [
    HashAssignment("escrow_id", "BLAKE3", 32, "escrow seed || sender || recipient || nonce_le16"),
    HashAssignment("escrow_authority", "BLAKE3", 32, "authority seed || escrow_id || bump"),
    HashAssignment("batch_recipient", "BLAKE3", 32, "batch seed || recipient_0 || ... || recipient_n"),
    HashAssignment("state_digest", "BLAKE3", 32, "canonical state encoding"),
]


def blake3_hash(data: bytes) -> bytes:
    return blake3(data).digest()


def derive_escrow_id(sender: bytes, recipient: bytes, nonce: int) -> bytes:
    """Per-transfer custody identity so concurrent transfers never share a record."""
    return blake3_hash(ESCROW_PDA_SEED + sender + recipient + nonce.to_bytes(NONCE_SIZE, "little"))


def batch_recipient_digest(recipients: list[bytes]) -> bytes:
    buf = bytearray(BATCH_RECIPIENT_SEED)
    for r in recipients:
        buf += r
    return blake3_hash(bytes(buf))


def _authority_candidate(escrow_id: bytes, bump: int) -> bytes:
    return blake3_hash(ESCROW_AUTHORITY_SEED + escrow_id + bytes([bump]))


def _is_valid_authority(candidate: bytes) -> bool:
    # Stand-in for the off-curve requirement of program-derived addresses.
    return candidate[31] & 0x80 == 0


def find_escrow_authority(escrow_id: bytes) -> tuple[bytes, int]:
    """Search bumps from 255 down; the first valid candidate is canonical."""
    for bump in range(255, -1, -1):
        candidate = _authority_candidate(escrow_id, bump)
        if _is_valid_authority(candidate):
            return candidate, bump
    raise SpecError(ErrorCode.INTERNAL_ERROR, "no valid escrow authority bump")


def create_escrow_authority(escrow_id: bytes, bump: int) -> bytes:
    if not (0 <= bump <= 255):
        raise SpecError(ErrorCode.INVALID_ESCROW_AUTHORITY, "bump must fit u8")
    candidate = _authority_candidate(escrow_id, bump)
    if not _is_valid_authority(candidate):
        raise SpecError(ErrorCode.INVALID_ESCROW_AUTHORITY, "seeds do not derive an authority")
    return candidate
