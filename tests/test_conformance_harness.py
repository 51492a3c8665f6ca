"""Conformance harness against in-process reference endpoints."""

from __future__ import annotations

import asyncio
import json

from aiohttp import test_utils, web

from comparator import EXPECTED, ComparisonResult, Divergence, ResultComparator, describe_error
from config import CANDIDATE, REFERENCE, ClientConfig, HarnessConfig
from reporter import ReportGenerator, SuiteResult, TestResult as VectorResult
from runner import ConformanceHarness, find_vector_files
from vaultpay_spec.config import LAMPORTS_PER_SOL
from vaultpay_spec.state_transition import apply_ix
from vaultpay_spec.test_accounts import ALICE, BOB, base_state, client_for
from vaultpay_spec.types import Instruction, InstructionType, ProgramState
from tools import reference_server
from tools.fixtures_io import ix_to_json, state_to_json
from tools.fixtures_to_vectors import case_to_vector
from tools.yaml_dump import write_yaml


def _vector(name: str = "transfer_queued") -> dict:
    state = base_state({ALICE: 100 * LAMPORTS_PER_SOL})
    fields = client_for("alice").transfer_fields(LAMPORTS_PER_SOL, 100 * LAMPORTS_PER_SOL, 1)
    fields.update({"recipient": BOB, "amount_lamports": LAMPORTS_PER_SOL, "computation_offset": 1})
    ix = Instruction(InstructionType.CONFIDENTIAL_TRANSFER, ALICE, fields)
    post, result = apply_ix(state, ix)
    return case_to_vector(
        {
            "name": name,
            "pre_state": state_to_json(state),
            "ix": ix_to_json(ix),
            "expected": {
                "ok": result.ok,
                "error": None,
                "outcome": result.outcome.value,
                "post_state": state_to_json(post),
            },
        }
    )


async def _always_succeeds(request: web.Request) -> web.Response:
    return web.json_response({"success": True, "error_code": 0, "outcome": "completed", "events": []})


def _lying_app() -> web.Application:
    app = web.Application()
    app[reference_server.STATE_KEY] = ProgramState()
    app.router.add_post("/state/reset", reference_server.reset_state)
    app.router.add_post("/state/load", reference_server.load_state)
    app.router.add_get("/state/digest", reference_server.state_digest)
    app.router.add_post("/ix/execute", _always_succeeds)
    return app


def _config(servers: dict[str, test_utils.TestServer], result_dir: str) -> HarnessConfig:
    config = HarnessConfig(result_dir=result_dir)
    config.clients = {
        name: ClientConfig(name=name, endpoint=f"http://{server.host}:{server.port}")
        for name, server in servers.items()
    }
    return config


async def _run(candidate_app: web.Application, vectors: list[str], result_dir: str):
    servers = {
        REFERENCE: test_utils.TestServer(reference_server.make_app()),
        CANDIDATE: test_utils.TestServer(candidate_app),
    }
    for server in servers.values():
        await server.start_server()
    harness = ConformanceHarness(_config(servers, result_dir))
    try:
        await harness.setup()
        return await harness.run_all(vectors)
    finally:
        await harness.teardown()
        for server in servers.values():
            await server.close()


def test_identical_implementations_pass(tmp_path) -> None:
    suite = tmp_path / "vectors" / "transfer.yaml"
    suite.parent.mkdir()
    write_yaml(suite, {"test_vectors": [_vector()]})
    files = find_vector_files(str(tmp_path / "vectors"))
    assert files == [str(suite)]

    report = asyncio.run(_run(reference_server.make_app(), files, str(tmp_path / "results")))
    assert report.total_tests == 1
    assert report.total_failed == 0
    assert report.total_divergences == 0


def test_recorded_expectation_checked(tmp_path) -> None:
    vector = _vector("stale_expectation")
    vector["expected"]["state_digest"] = "00" * 32
    suite = tmp_path / "transfer.yaml"
    write_yaml(suite, {"test_vectors": [vector]})

    report = asyncio.run(_run(reference_server.make_app(), [str(suite)], str(tmp_path / "results")))
    assert report.total_failed == 1
    # Both implementations agree with each other but not with the recording.
    assert {(d.client, d.field, d.reference_client) for d in report.divergences} == {
        (REFERENCE, "state_digest", EXPECTED),
        (CANDIDATE, "state_digest", EXPECTED),
    }


def test_divergent_candidate_reported(tmp_path) -> None:
    suite = tmp_path / "transfer.yaml"
    write_yaml(suite, {"test_vectors": [_vector("divergent")]})

    report = asyncio.run(_run(_lying_app(), [str(suite)], str(tmp_path / "results")))
    assert report.total_failed == 1
    # The stub reports no digest, so only the fields it does return diverge.
    assert {d.field for d in report.divergences} == {"outcome", "events"}

    path = ReportGenerator(str(tmp_path / "results")).write_summary(report)
    with open(path) as f:
        text = f.read()
    assert "divergent" in text
    assert "[FAIL] transfer" in text


def test_comparator_flags_error_code_and_digest() -> None:
    comparator = ResultComparator()
    results = {
        REFERENCE: {"success": False, "error_code": 0x0300, "state_digest": "aa", "events": []},
        CANDIDATE: {"success": False, "error_code": 0x0301, "state_digest": "bb", "events": []},
    }
    comparison = comparator.compare_results(results, "v")
    assert not comparison.success
    assert [d.field for d in comparison.divergences] == ["error_code", "state_digest"]
    assert "INSUFFICIENT_BALANCE (RESOURCE, 0x0300)" in comparison.divergences[0].details
    assert "unknown (0x0301)" in comparison.divergences[0].details


def test_comparator_single_client_trivially_passes() -> None:
    comparison = ResultComparator().compare_results({REFERENCE: {"success": True}}, "v")
    assert comparison.success
    assert comparison.clients_compared == [REFERENCE]


def test_state_digest_comparison() -> None:
    comparator = ResultComparator()
    assert comparator.compare_state_digests({REFERENCE: "aa", CANDIDATE: "aa"}, "load").success
    mismatch = comparator.compare_state_digests({REFERENCE: "aa", CANDIDATE: "bb"}, "load")
    assert mismatch.divergences[0].actual == "bb"


def test_harness_config_from_env(monkeypatch) -> None:
    monkeypatch.setenv("CANDIDATE_ENDPOINT", "http://candidate:9000")
    monkeypatch.setenv("STOP_ON_FIRST_FAILURE", "yes")
    config = HarnessConfig.from_env()
    assert config.clients[CANDIDATE].endpoint == "http://candidate:9000"
    assert config.stop_on_first_failure
    assert set(config.get_enabled_clients()) == {REFERENCE, CANDIDATE}

    config.clients[CANDIDATE].enabled = False
    assert set(config.get_enabled_clients()) == {REFERENCE}


def test_json_report_orders_divergences_by_severity(tmp_path) -> None:
    divergences = [
        Divergence("outcome", "completed", "aborted", CANDIDATE, REFERENCE, "v[0]"),
        Divergence("state_digest", "aa", "bb", CANDIDATE, REFERENCE, "v[0]"),
    ]
    vector = VectorResult("v", "refund", False, 1.0, ComparisonResult(False, divergences, [REFERENCE, CANDIDATE]))
    suite = SuiteResult("refund", 1, 0, 1, 0, 1.0, [vector])
    generator = ReportGenerator(str(tmp_path))
    report = generator.generate_report([suite], [REFERENCE, CANDIDATE], REFERENCE, 2.0)

    assert report.divergences_by_field() == [("state_digest", 1), ("outcome", 1)]
    with open(generator.write_json_report(report)) as f:
        data = json.load(f)
    assert data["total_failed"] == 1
    assert data["divergences_by_field"] == {"state_digest": 1, "outcome": 1}
    assert data["suite_results"][0]["failures"] == [{"vector_name": "v", "error": None}]
    assert data["divergences"][1]["actual"] == "bb"


def test_describe_error_names_category() -> None:
    assert describe_error(0) == "SUCCESS (SUCCESS, 0x0000)"
    assert describe_error(0x0500) == "ABORTED_COMPUTATION (COMPUTATION, 0x0500)"
