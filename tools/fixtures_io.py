"""Helpers to serialize/deserialize VaultPay fixtures."""

from __future__ import annotations

from typing import Any

from vaultpay_spec.types import (
    AccountState,
    CircuitKind,
    ClusterConfig,
    ComputationHandle,
    ComputationRequest,
    ComputationStatus,
    EscrowEntry,
    Instruction,
    InstructionType,
    Payout,
    ProgramState,
    RequestStatus,
    SealedOutput,
    SignedComputationOutput,
    TransferRequest,
)


def _hex_to_bytes(v: str) -> bytes:
    return bytes.fromhex(v)


def _bytes_to_hex(v: bytes) -> str:
    return v.hex()


def _opt_hex(v: bytes | None) -> str | None:
    return _bytes_to_hex(v) if v is not None else None


def handle_to_json(handle: ComputationHandle) -> dict[str, Any]:
    return {
        "computation_offset": handle.computation_offset,
        "cluster_offset": handle.cluster_offset,
        "circuit": handle.circuit.value,
    }


def handle_from_json(data: dict[str, Any]) -> ComputationHandle:
    return ComputationHandle(
        computation_offset=data["computation_offset"],
        cluster_offset=data["cluster_offset"],
        circuit=CircuitKind(data["circuit"]),
    )


def _payout_to_json(p: Payout) -> dict[str, Any]:
    return {
        "recipient": _bytes_to_hex(p.recipient),
        "payee_id": p.payee_id,
        "amount_lamports": p.amount_lamports,
    }


def _payout_from_json(data: dict[str, Any]) -> Payout:
    return Payout(
        recipient=_hex_to_bytes(data["recipient"]),
        payee_id=data["payee_id"],
        amount_lamports=data["amount_lamports"],
    )


def output_to_json(output: SignedComputationOutput) -> dict[str, Any]:
    return {
        "computation_offset": output.computation_offset,
        "cluster_offset": output.cluster_offset,
        "circuit": output.circuit.value,
        "status": int(output.status),
        "revealed": _bytes_to_hex(output.revealed),
        "sealed": [
            {
                "recipient": _bytes_to_hex(s.recipient),
                "nonce": _bytes_to_hex(s.nonce),
                "ciphertext": _bytes_to_hex(s.ciphertext),
            }
            for s in output.sealed
        ],
        "signature": _bytes_to_hex(output.signature),
    }


def output_from_json(data: dict[str, Any]) -> SignedComputationOutput:
    return SignedComputationOutput(
        computation_offset=data["computation_offset"],
        cluster_offset=data["cluster_offset"],
        circuit=CircuitKind(data["circuit"]),
        status=ComputationStatus(data["status"]),
        revealed=_hex_to_bytes(data.get("revealed", "")),
        sealed=[
            SealedOutput(
                recipient=_hex_to_bytes(s["recipient"]),
                nonce=_hex_to_bytes(s["nonce"]),
                ciphertext=_hex_to_bytes(s["ciphertext"]),
            )
            for s in data.get("sealed", [])
        ],
        signature=_hex_to_bytes(data.get("signature", "")),
    )


def state_to_json(state: ProgramState) -> dict[str, Any]:
    result: dict[str, Any] = {
        "slot": state.slot,
        "authority": _bytes_to_hex(state.authority),
        "cluster": None,
        "accounts": [
            {"address": _bytes_to_hex(a.address), "balance": a.balance}
            for a in state.accounts.values()
        ],
        "escrows": [
            {
                "escrow_id": _bytes_to_hex(e.escrow_id),
                "bump": e.bump,
                "payer": _bytes_to_hex(e.payer),
                "held_amount": e.held_amount,
            }
            for e in state.escrows.values()
        ],
        "requests": [],
        "mempool": [
            dict(handle_to_json(q.handle), args=_bytes_to_hex(q.args)) for q in state.mempool
        ],
    }
    if state.cluster is not None:
        result["cluster"] = {
            "cluster_offset": state.cluster.cluster_offset,
            "signer_pubkey": _bytes_to_hex(state.cluster.signer_pubkey),
            "encryption_pubkey": _bytes_to_hex(state.cluster.encryption_pubkey),
        }

    for r in state.requests.values():
        entry = handle_to_json(r.handle)
        entry.update(
            {
                "sender": _bytes_to_hex(r.sender),
                "recipient": _bytes_to_hex(r.recipient),
                "escrow_id": _bytes_to_hex(r.escrow_id),
                "amount_lamports": r.amount_lamports,
                "args": _bytes_to_hex(r.args),
                "encrypted_amount": _bytes_to_hex(r.encrypted_amount),
                "nonce": r.nonce,
                "status": int(r.status),
                "created_slot": r.created_slot,
                "auditor": _opt_hex(r.auditor),
                "payouts": [_payout_to_json(p) for p in r.payouts],
                "timestamp": r.timestamp,
                "resolution": r.resolution,
                "settled_amount": r.settled_amount,
            }
        )
        result["requests"].append(entry)
    return result


def state_from_json(data: dict[str, Any]) -> ProgramState:
    state = ProgramState(
        slot=data.get("slot", 0),
        authority=_hex_to_bytes(data.get("authority", "00" * 32)),
    )
    cluster = data.get("cluster")
    if cluster:
        state.cluster = ClusterConfig(
            cluster_offset=cluster["cluster_offset"],
            signer_pubkey=_hex_to_bytes(cluster["signer_pubkey"]),
            encryption_pubkey=_hex_to_bytes(cluster["encryption_pubkey"]),
        )

    for a in data.get("accounts", []):
        acct = AccountState(address=_hex_to_bytes(a["address"]), balance=a.get("balance", 0))
        state.accounts[acct.address] = acct

    for e in data.get("escrows", []):
        escrow = EscrowEntry(
            escrow_id=_hex_to_bytes(e["escrow_id"]),
            bump=e["bump"],
            payer=_hex_to_bytes(e["payer"]),
            held_amount=e.get("held_amount", 0),
        )
        state.escrows[escrow.escrow_id] = escrow

    for r in data.get("requests", []):
        request = TransferRequest(
            handle=handle_from_json(r),
            sender=_hex_to_bytes(r["sender"]),
            recipient=_hex_to_bytes(r["recipient"]),
            escrow_id=_hex_to_bytes(r["escrow_id"]),
            amount_lamports=r["amount_lamports"],
            args=_hex_to_bytes(r.get("args", "")),
            encrypted_amount=_hex_to_bytes(r.get("encrypted_amount", "")),
            nonce=r["nonce"],
            status=RequestStatus(r.get("status", 0)),
            created_slot=r.get("created_slot", 0),
            auditor=_hex_to_bytes(r["auditor"]) if r.get("auditor") else None,
            payouts=[_payout_from_json(p) for p in r.get("payouts", [])],
            timestamp=r.get("timestamp"),
            resolution=r.get("resolution"),
            settled_amount=r.get("settled_amount", 0),
        )
        state.requests[request.handle.computation_offset] = request

    for q in data.get("mempool", []):
        state.mempool.append(
            ComputationRequest(handle=handle_from_json(q), args=_hex_to_bytes(q.get("args", "")))
        )
    return state


def _payload_to_json(payload: Any) -> Any:
    """Recursively convert a payload value, turning bytes into hex strings."""
    if payload is None:
        return None
    if isinstance(payload, (bytes, bytearray)):
        return _bytes_to_hex(bytes(payload))
    if isinstance(payload, ComputationHandle):
        return handle_to_json(payload)
    if isinstance(payload, SignedComputationOutput):
        return output_to_json(payload)
    if isinstance(payload, Payout):
        return _payout_to_json(payload)
    if isinstance(payload, dict):
        return {k: _payload_to_json(v) for k, v in payload.items()}
    if isinstance(payload, (list, tuple)):
        return [_payload_to_json(item) for item in payload]
    return payload


_BYTES_FIELDS: set[str] = {
    "recipient", "signer_pubkey", "encryption_pubkey", "ephemeral_pubkey",
    "auditor", "encrypted_amount", "encrypted_balance", "encrypted_payee_id",
    "encrypted_timestamp", "encrypted_count",
}


def _json_to_bytes_payload(payload: dict[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in payload.items():
        if key in _BYTES_FIELDS and isinstance(value, str):
            result[key] = _hex_to_bytes(value)
        elif key == "handle" and isinstance(value, dict):
            result[key] = handle_from_json(value)
        elif key == "output" and isinstance(value, dict):
            result[key] = output_from_json(value)
        elif key == "payouts" and isinstance(value, list):
            result[key] = [_payout_from_json(p) for p in value]
        elif key == "encrypted_entries" and isinstance(value, list):
            result[key] = [tuple(_hex_to_bytes(ct) for ct in pair) for pair in value]
        else:
            result[key] = value
    return result


def ix_to_json(ix: Instruction) -> dict[str, Any]:
    return {
        "ix_type": ix.ix_type.value,
        "signer": _bytes_to_hex(ix.signer),
        "payload": _payload_to_json(ix.payload),
    }


def ix_from_json(data: dict[str, Any]) -> Instruction:
    payload = data.get("payload")
    return Instruction(
        ix_type=InstructionType(data["ix_type"]),
        signer=_hex_to_bytes(data["signer"]),
        payload=_json_to_bytes_payload(payload) if isinstance(payload, dict) else payload,
    )
