"""Consume fixtures and validate them against the Python model."""

from __future__ import annotations

import json
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "src"))
sys.path.insert(0, str(ROOT / "tools"))

from vaultpay_spec.state_digest import compute_state_digest  # noqa: E402
from vaultpay_spec.state_transition import apply_ix  # noqa: E402
from fixtures_io import ix_from_json, state_from_json, state_to_json  # noqa: E402


def check_state_cases(path: Path) -> list[str]:
    failures: list[str] = []
    data = json.loads(path.read_text())

    for case in data.get("cases", []):
        pre_state = state_from_json(case["pre_state"])
        ix = ix_from_json(case["ix"])
        post_state, result = apply_ix(pre_state, ix)

        expected = case["expected"]
        if result.ok != expected["ok"]:
            failures.append(f"{case['name']}: ok_mismatch")
            continue

        actual_err = result.error.code.name if result.error else None
        if actual_err != expected["error"]:
            failures.append(f"{case['name']}: error_mismatch")
            continue

        actual_outcome = result.outcome.value if result.outcome else None
        if actual_outcome != expected.get("outcome"):
            failures.append(f"{case['name']}: outcome_mismatch")
            continue

        actual_digest = compute_state_digest(state_to_json(post_state))
        if actual_digest != compute_state_digest(expected["post_state"]):
            failures.append(f"{case['name']}: state_mismatch")

    return failures


def main() -> None:
    fixtures = ROOT / "fixtures"
    failures: list[str] = []
    checked = 0

    for path in sorted(fixtures.rglob("*.json")):
        data = json.loads(path.read_text())
        if isinstance(data, dict) and "cases" in data:
            failures.extend(check_state_cases(path))
            checked += 1

    if failures:
        for f in failures:
            print("FAIL", f)
        raise SystemExit(1)

    print(f"All fixtures passed ({checked} files)")


if __name__ == "__main__":
    main()
