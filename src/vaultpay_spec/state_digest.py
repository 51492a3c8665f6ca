"""Canonical state digest implementation (v1)."""
from __future__ import annotations

from typing import Any

from blake3 import blake3


def _hex_to_bytes(value: str | None) -> bytes:
    if value is None:
        return b""
    if not isinstance(value, str):
        raise TypeError("hex value must be string")
    v = value[2:] if value.startswith(("0x", "0X")) else value
    if v == "":
        return b""
    return bytes.fromhex(v)


def _u64_be(value: int) -> bytes:
    if value < 0:
        raise ValueError("u64 must be non-negative")
    return int(value).to_bytes(8, "big", signed=False)


def _address(value: str | None) -> bytes:
    addr = _hex_to_bytes(value)
    if len(addr) != 32:
        raise ValueError(f"address must be 32 bytes, got {len(addr)}")
    return addr


def _sized(data: bytes) -> bytes:
    return _u64_be(len(data)) + data


def _u128_be(value: int) -> bytes:
    return int(value).to_bytes(16, "big", signed=False)


def _optional(data: bytes | None) -> bytes:
    return b"\x01" + data if data is not None else b"\x00"


def compute_state_digest(post_state: dict[str, Any]) -> str:
    """Compute state digest v1 from a JSON post_state.

    Covers the slot, the program authority, the cluster identity, accounts,
    escrows and requests (including who each request pays), each collection
    sorted by key. The mempool and the event log are not part of the digest.
    Hashed with BLAKE3-256.
    """
    if not isinstance(post_state, dict):
        raise TypeError("post_state must be a dict")
    buf = bytearray()
    buf += _u64_be(int(post_state.get("slot", 0)))
    buf += _address(post_state.get("authority", "00" * 32))

    cluster = post_state.get("cluster")
    if cluster:
        buf += b"\x01"
        buf += _u64_be(int(cluster.get("cluster_offset", 0)))
        buf += _hex_to_bytes(cluster.get("signer_pubkey"))
        buf += _hex_to_bytes(cluster.get("encryption_pubkey"))
    else:
        buf += b"\x00"

    accounts = sorted(
        ((_address(a.get("address")), a) for a in post_state.get("accounts", [])),
        key=lambda x: x[0],
    )
    buf += _u64_be(len(accounts))
    for addr, acc in accounts:
        buf += addr
        buf += _u64_be(int(acc.get("balance", 0)))

    escrows = sorted(
        ((_hex_to_bytes(e.get("escrow_id")), e) for e in post_state.get("escrows", [])),
        key=lambda x: x[0],
    )
    buf += _u64_be(len(escrows))
    for escrow_id, e in escrows:
        buf += escrow_id
        buf += bytes([int(e.get("bump", 0))])
        buf += _address(e.get("payer"))
        buf += _u64_be(int(e.get("held_amount", 0)))

    requests = sorted(
        post_state.get("requests", []), key=lambda r: int(r.get("computation_offset", 0))
    )
    buf += _u64_be(len(requests))
    for r in requests:
        buf += _u64_be(int(r.get("computation_offset", 0)))
        buf += _u64_be(int(r.get("cluster_offset", 0)))
        buf += _sized(str(r.get("circuit", "")).encode())
        buf += _address(r.get("sender"))
        buf += _address(r.get("recipient"))
        buf += _hex_to_bytes(r.get("escrow_id"))
        buf += _u64_be(int(r.get("amount_lamports", 0)))
        buf += bytes([int(r.get("status", 0))])
        buf += _u64_be(int(r.get("created_slot", 0)))
        buf += _u64_be(int(r.get("resolution") or 0))
        buf += _u64_be(int(r.get("settled_amount", 0)))
        buf += _u128_be(int(r.get("nonce", 0)))
        auditor = r.get("auditor")
        buf += _optional(_address(auditor) if auditor else None)
        timestamp = r.get("timestamp")
        buf += _optional(_u64_be(int(timestamp)) if timestamp is not None else None)
        # Declared order: the result bitmap indexes payouts by position.
        payouts = r.get("payouts", [])
        buf += _u64_be(len(payouts))
        for p in payouts:
            buf += _address(p.get("recipient"))
            buf += _u64_be(int(p.get("payee_id", 0)))
            buf += _u64_be(int(p.get("amount_lamports", 0)))

    return blake3(buf).hexdigest()
