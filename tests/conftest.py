"""Pytest hooks to generate fixtures (EEST-style)."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Optional

import pytest

from vaultpay_spec.crypto.signing import ResultVerifier
from vaultpay_spec.state_transition import TransitionResult, apply_ix
from vaultpay_spec.types import Instruction, ProgramState
from tools.fixtures_io import ix_to_json, state_to_json

_STATE_CASES: dict[str, list[dict[str, Any]]] = {}
_VECTOR_CASES: dict[str, list[dict[str, Any]]] = {}

StateTestGroup = Callable[..., tuple[ProgramState, TransitionResult]]


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--output",
        action="store",
        default=None,
        help="Output directory for generated fixtures",
    )


@pytest.fixture
def state_test_group() -> StateTestGroup:
    """Run an instruction, collect the case under a fixture path, return the outcome."""

    def _state_test_group(
        rel_path: str,
        name: str,
        pre_state: ProgramState,
        ix: Instruction,
        verifier: Optional[ResultVerifier] = None,
    ) -> tuple[ProgramState, TransitionResult]:
        post_state, result = apply_ix(pre_state, ix, verifier)
        case: dict[str, Any] = {
            "name": name,
            "pre_state": state_to_json(pre_state),
            "ix": ix_to_json(ix),
            "expected": {
                "ok": result.ok,
                "error": result.error.code.name if result.error else None,
                "outcome": result.outcome.value if result.outcome else None,
                "post_state": state_to_json(post_state),
            },
        }
        # Cases resolved with an injected verifier cannot be replayed from JSON.
        if verifier is not None:
            case["runnable"] = False
        _STATE_CASES.setdefault(rel_path, []).append(case)
        return post_state, result

    return _state_test_group


@pytest.fixture
def vector_test_group() -> Callable[[str, dict[str, Any]], None]:
    """Collect pre-built test_vectors under a specific fixture path."""

    def _vector_test_group(rel_path: str, vector: dict[str, Any]) -> None:
        _VECTOR_CASES.setdefault(rel_path, []).append(vector)

    return _vector_test_group


def pytest_sessionfinish(session: pytest.Session, exitstatus: int) -> None:
    output_dir = session.config.getoption("--output")
    if not output_dir:
        return

    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    for rel_path, cases in _STATE_CASES.items():
        runnable = [c for c in cases if c.get("runnable", True)]
        if not runnable:
            continue
        target = out / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps({"cases": runnable}, indent=2))

    for rel_path, vectors in _VECTOR_CASES.items():
        if not vectors:
            continue
        target = out / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps({"test_vectors": vectors}, indent=2))
