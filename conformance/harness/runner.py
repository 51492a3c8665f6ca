#!/usr/bin/env python3
"""
VaultPay Conformance Test Runner

Replays YAML vectors against a reference and a candidate implementation over
HTTP and reports every field on which they disagree.
"""

import asyncio
import glob
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiohttp
import click
import yaml

from comparator import ComparisonResult, ResultComparator
from config import CANDIDATE, REFERENCE, ClientConfig, HarnessConfig
from reporter import ConformanceReport, ReportGenerator, SuiteResult, TestResult

logger = logging.getLogger(__name__)


class ConformanceClient:
    """HTTP client for a single implementation."""

    def __init__(self, config: ClientConfig):
        self.config = config
        self.session: Optional[aiohttp.ClientSession] = None

    async def connect(self) -> None:
        timeout = aiohttp.ClientTimeout(total=self.config.timeout)
        self.session = aiohttp.ClientSession(timeout=timeout)

    async def close(self) -> None:
        if self.session:
            await self.session.close()

    async def _call(self, method: str, path: str, **kwargs: Any) -> Optional[Dict[str, Any]]:
        """One JSON round trip; None when the endpoint is unreachable."""
        try:
            async with self.session.request(method, f"{self.config.endpoint}{path}", **kwargs) as resp:
                return await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"[{self.config.name}] {method} {path} failed: {e}")
            return None

    async def reset_state(self) -> bool:
        """Reset the implementation to an empty program state."""
        data = await self._call("POST", "/state/reset")
        return bool(data and data.get("success"))

    async def load_state(self, state: Dict[str, Any]) -> Optional[str]:
        """Load a JSON program state and return its digest, or None on failure."""
        data = await self._call("POST", "/state/load", json=state)
        if data and data.get("success"):
            return data.get("state_digest")
        return None

    async def get_state_digest(self) -> Optional[str]:
        data = await self._call("GET", "/state/digest")
        return data.get("state_digest") if data else None

    async def execute_ix(self, ix: Dict[str, Any]) -> Dict[str, Any]:
        """Execute one instruction; the response carries error_code, outcome and digest."""
        data = await self._call("POST", "/ix/execute", json={"ix": ix})
        if data is None:
            return {"success": False, "error": "unreachable"}
        return data


class ConformanceHarness:
    """Main test harness for conformance testing."""

    def __init__(self, config: HarnessConfig):
        self.config = config
        self.clients: Dict[str, ConformanceClient] = {}
        self.comparator = ResultComparator(reference_client=REFERENCE)
        self.reporter = ReportGenerator(config.result_dir)

    async def setup(self) -> None:
        for name, client_config in self.config.get_enabled_clients().items():
            client = ConformanceClient(client_config)
            await client.connect()
            self.clients[name] = client
            logger.info(f"Connected to {client_config.name} at {client_config.endpoint}")

    async def teardown(self) -> None:
        for client in self.clients.values():
            await client.close()

    async def reset_all(self) -> bool:
        results = await asyncio.gather(*[
            client.reset_state()
            for client in self.clients.values()
        ])
        return all(results)

    async def load_state_all(self, state: Dict[str, Any]) -> ComparisonResult:
        """Load identical state into all clients and verify digests match."""
        digests = {}
        for name, client in self.clients.items():
            digest = await client.load_state(state)
            if digest:
                digests[name] = digest
            else:
                logger.error(f"Failed to load state in {name}")
        return self.comparator.compare_state_digests(digests, "state_load")

    async def final_digests_all(self) -> Dict[str, str]:
        names = list(self.clients)
        digests = await asyncio.gather(*[self.clients[name].get_state_digest() for name in names])
        return {name: digest for name, digest in zip(names, digests) if digest}

    async def execute_ix_all(self, ix: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
        names = list(self.clients)
        responses = await asyncio.gather(*[
            self.clients[name].execute_ix(ix) for name in names
        ])
        return dict(zip(names, responses))

    def _result(
        self,
        vector_name: str,
        start_time: float,
        passed: bool,
        comparison: Optional[ComparisonResult] = None,
        error: Optional[str] = None,
    ) -> TestResult:
        return TestResult(
            vector_name=vector_name,
            suite_name="",
            passed=passed,
            execution_time_ms=(time.time() - start_time) * 1000,
            comparison=comparison,
            error=error,
        )

    async def run_vector(self, vector: Dict[str, Any]) -> TestResult:
        """Run a single vector: load pre_state, then each instruction in order."""
        vector_name = vector.get("name", "unknown")
        start_time = time.time()

        if not await self.reset_all():
            return self._result(vector_name, start_time, False, error="Failed to reset clients")

        if "pre_state" in vector:
            loaded = await self.load_state_all(vector["pre_state"])
            if loaded.has_divergences:
                return self._result(
                    vector_name, start_time, False, loaded, "State load divergence"
                )

        comparison: Optional[ComparisonResult] = None
        results: Dict[str, Dict[str, Any]] = {}
        for index, ix in enumerate(vector.get("instructions", [])):
            results = await self.execute_ix_all(ix)
            comparison = self.comparator.compare_results(results, f"{vector_name}[{index}]")
            if comparison.has_divergences:
                return self._result(vector_name, start_time, False, comparison)

        final = await self.final_digests_all()
        drift = self.comparator.compare_state_digests(final, f"{vector_name}:final")
        if drift.has_divergences:
            return self._result(vector_name, start_time, False, drift)

        if "expected" in vector and results:
            recorded = self.comparator.compare_expected(vector["expected"], results, vector_name)
            if recorded.has_divergences:
                return self._result(vector_name, start_time, False, recorded)

        return self._result(vector_name, start_time, True, comparison)

    async def run_suite(self, suite_path: str) -> SuiteResult:
        """Run a test suite from a YAML file."""
        suite_name = Path(suite_path).stem
        logger.info(f"Running suite: {suite_name}")
        start_time = time.time()

        with open(suite_path) as f:
            suite = yaml.safe_load(f) or {}

        vectors = suite.get("test_vectors", [])
        test_results = []
        for vector in vectors:
            result = await self.run_vector(vector)
            result.suite_name = suite_name
            test_results.append(result)

            status = "PASS" if result.passed else "FAIL"
            logger.info(f"  [{status}] {result.vector_name}")

            if not result.passed and self.config.stop_on_first_failure:
                break

        passed = sum(1 for r in test_results if r.passed)
        return SuiteResult(
            suite_name=suite_name,
            total_tests=len(test_results),
            passed_tests=passed,
            failed_tests=len(test_results) - passed,
            skipped_tests=len(vectors) - len(test_results),
            execution_time_ms=(time.time() - start_time) * 1000,
            test_results=test_results,
        )

    async def run_all(self, vector_paths: List[str]) -> ConformanceReport:
        start_time = time.time()
        suite_results = []
        for path in vector_paths:
            suite_results.append(await self.run_suite(path))
            if self.config.stop_on_first_failure and suite_results[-1].failed_tests:
                break

        return self.reporter.generate_report(
            suite_results=suite_results,
            clients=list(self.clients.keys()),
            reference_client=self.comparator.reference_client,
            execution_time_ms=(time.time() - start_time) * 1000,
        )


def find_vector_files(vector_dir: str) -> List[str]:
    """Find all vector YAML files in directory."""
    patterns = [
        os.path.join(vector_dir, "**", "*.yaml"),
        os.path.join(vector_dir, "**", "*.yml"),
    ]
    files = []
    for pattern in patterns:
        files.extend(glob.glob(pattern, recursive=True))
    return sorted(files)


@click.command()
@click.option("--vectors", default=None, help="Path to vectors directory or a YAML file")
@click.option("--reference-endpoint", default=None, help="Reference implementation URL")
@click.option("--candidate-endpoint", default=None, help="Candidate implementation URL")
@click.option("--result-dir", default=None, help="Directory to write results")
@click.option("--verbose", is_flag=True, help="Enable verbose output")
@click.option("--stop-on-failure", is_flag=True, help="Stop on first test failure")
def main(
    vectors: Optional[str],
    reference_endpoint: Optional[str],
    candidate_endpoint: Optional[str],
    result_dir: Optional[str],
    verbose: bool,
    stop_on_failure: bool,
) -> None:
    """Run VaultPay conformance tests."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    # Environment first, CLI flags override
    config = HarnessConfig.from_env()
    if reference_endpoint:
        config.clients[REFERENCE].endpoint = reference_endpoint
    if candidate_endpoint:
        config.clients[CANDIDATE].endpoint = candidate_endpoint
    if result_dir:
        config.result_dir = result_dir
    if verbose:
        config.verbose = True
    if config.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    if stop_on_failure:
        config.stop_on_first_failure = True

    vector_dir = vectors or config.vector_dir
    if os.path.isfile(vector_dir):
        vector_files = [vector_dir]
    else:
        vector_files = find_vector_files(vector_dir)

    if not vector_files:
        logger.error(f"No vector files found in {vector_dir}")
        sys.exit(1)

    logger.info(f"Found {len(vector_files)} vector files")

    async def run() -> int:
        harness = ConformanceHarness(config)
        try:
            await harness.setup()
            report = await harness.run_all(vector_files)
            harness.reporter.write_json_report(report)
            harness.reporter.write_summary(report)
            harness.reporter.print_summary(report)
            return 0 if report.total_failed == 0 else 1
        finally:
            await harness.teardown()

    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
