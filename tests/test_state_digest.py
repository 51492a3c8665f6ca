"""State digest and fixture serialization."""

from __future__ import annotations

import json

from vaultpay_spec.config import LAMPORTS_PER_SOL
from vaultpay_spec.program import initiate_batch_payroll, initiate_transfer, take_queued
from vaultpay_spec.state_digest import compute_state_digest
from vaultpay_spec.state_transition import apply_ix
from vaultpay_spec.test_accounts import ALICE, AUDITOR, BOB, CAROL, CLUSTER, DAVE, base_state, client_for
from vaultpay_spec.types import Instruction, InstructionType, Payout
from tools.consume import check_state_cases
from tools.fixtures_io import ix_from_json, ix_to_json, state_from_json, state_to_json

SOL = LAMPORTS_PER_SOL


def _pending_state():
    state = base_state({ALICE: 100 * SOL, CAROL: 5})
    fields = client_for("alice").transfer_fields(60 * SOL, 100 * SOL, 1)
    state, _ = initiate_transfer(state, ALICE, BOB, 60 * SOL, computation_offset=1, **fields)
    return state


def test_digest_is_deterministic_and_order_independent() -> None:
    data = state_to_json(_pending_state())
    digest = compute_state_digest(data)
    assert len(digest) == 64
    assert digest == compute_state_digest(json.loads(json.dumps(data)))

    shuffled = dict(data, accounts=list(reversed(data["accounts"])))
    assert compute_state_digest(shuffled) == digest


def test_digest_tracks_balances_and_requests() -> None:
    data = state_to_json(_pending_state())
    digest = compute_state_digest(data)

    richer = json.loads(json.dumps(data))
    richer["accounts"][0]["balance"] += 1
    assert compute_state_digest(richer) != digest

    resolved = json.loads(json.dumps(data))
    resolved["requests"][0]["status"] = 2
    assert compute_state_digest(resolved) != digest

    no_cluster = dict(data, cluster=None)
    assert compute_state_digest(no_cluster) != digest

    redirected = json.loads(json.dumps(data))
    redirected["requests"][0]["recipient"] = CAROL.hex()
    assert compute_state_digest(redirected) != digest

    renonced = json.loads(json.dumps(data))
    renonced["requests"][0]["nonce"] += 1
    assert compute_state_digest(renonced) != digest



def test_digest_binds_batch_payees_and_auditor() -> None:
    payouts = [Payout(BOB, 1, 30 * SOL), Payout(CAROL, 2, 20 * SOL)]
    fields = client_for("alice").batch_fields([(30 * SOL, 1), (20 * SOL, 2)], 100 * SOL, 77, nonce=3)
    state, result = initiate_batch_payroll(
        base_state({ALICE: 100 * SOL}),
        ALICE,
        payouts,
        fields["encrypted_entries"],
        2,
        fields["encrypted_count"],
        fields["encrypted_balance"],
        fields["encrypted_timestamp"],
        77,
        AUDITOR,
        fields["ephemeral_pubkey"],
        3,
        5,
    )
    assert result.ok
    data = state_to_json(state)
    digest = compute_state_digest(data)

    other_auditor = json.loads(json.dumps(data))
    other_auditor["requests"][0]["auditor"] = DAVE.hex()
    assert compute_state_digest(other_auditor) != digest

    other_payee = json.loads(json.dumps(data))
    other_payee["requests"][0]["payouts"][1]["recipient"] = DAVE.hex()
    assert compute_state_digest(other_payee) != digest

    swapped = json.loads(json.dumps(data))
    swapped["requests"][0]["payouts"].reverse()
    assert compute_state_digest(swapped) != digest

    later = json.loads(json.dumps(data))
    later["requests"][0]["timestamp"] = 78
    assert compute_state_digest(later) != digest

def test_digest_ignores_mempool() -> None:
    state = _pending_state()
    drained, _ = take_queued(state)
    assert compute_state_digest(state_to_json(state)) == compute_state_digest(state_to_json(drained))


def test_state_json_round_trip() -> None:
    state = _pending_state()
    data = state_to_json(state)
    restored = state_from_json(json.loads(json.dumps(data)))
    assert state_to_json(restored) == data
    assert restored.requests[1] == state.requests[1]
    assert restored.mempool == state.mempool


def test_callback_ix_json_round_trip() -> None:
    state, queued = take_queued(_pending_state())
    output = CLUSTER.execute(queued[0])
    ix = Instruction(InstructionType.TRANSFER_CALLBACK, bytes(32), {"handle": queued[0].handle, "output": output})

    restored = ix_from_json(json.loads(json.dumps(ix_to_json(ix))))
    assert restored.payload["handle"] == queued[0].handle
    assert restored.payload["output"] == output
    # The restored output still carries a valid cluster signature.
    post, result = apply_ix(state, restored)
    assert result.ok
    assert post.accounts[BOB].balance == 60 * SOL


def test_consume_replays_recorded_cases(tmp_path) -> None:
    state = base_state({ALICE: 100 * SOL})
    fields = client_for("alice").transfer_fields(SOL, 100 * SOL, 1)
    fields.update({"recipient": BOB, "amount_lamports": SOL, "computation_offset": 1})
    ix = Instruction(InstructionType.CONFIDENTIAL_TRANSFER, ALICE, fields)
    post, result = apply_ix(state, ix)

    case = {
        "name": "transfer_replay",
        "pre_state": state_to_json(state),
        "ix": ix_to_json(ix),
        "expected": {
            "ok": result.ok,
            "error": None,
            "outcome": result.outcome.value,
            "post_state": state_to_json(post),
        },
    }
    path = tmp_path / "cases.json"
    path.write_text(json.dumps({"cases": [case]}))
    assert check_state_cases(path) == []

    case["expected"]["post_state"] = state_to_json(state)
    path.write_text(json.dumps({"cases": [case]}))
    assert check_state_cases(path) == ["transfer_replay: state_mismatch"]
