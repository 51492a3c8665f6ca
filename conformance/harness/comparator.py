"""
Result comparison logic for VaultPay conformance testing.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from config import REFERENCE
from vaultpay_spec.errors import ErrorCode


@dataclass
class Divergence:
    """A field on which a candidate disagrees with the reference."""
    field: str
    expected: Any
    actual: Any
    client: str
    reference_client: str
    vector_name: str
    details: Optional[str] = None


@dataclass
class ComparisonResult:
    """Result of comparing outputs from every implementation."""
    success: bool
    divergences: List[Divergence]
    clients_compared: List[str]

    @property
    def has_divergences(self) -> bool:
        return len(self.divergences) > 0


def describe_error(code: int) -> str:
    """Name a wire error code, e.g. ``INSUFFICIENT_BALANCE (RESOURCE, 0x0300)``."""
    try:
        known = ErrorCode(code)
    except ValueError:
        return f"unknown (0x{code:04x})"
    return f"{known.name} ({known.category.name}, 0x{code:04x})"


# Pseudo-client name for a vector's recorded result.
EXPECTED = "expected"

# Fields of an /ix/execute response compared verbatim.
_EXACT_FIELDS = ("success", "outcome", "events")


class ResultComparator:
    """Compares instruction results against the reference implementation."""

    def __init__(self, reference_client: str = REFERENCE):
        self.reference_client = reference_client

    def _reference(self, results: Dict[str, Any]) -> Any:
        if self.reference_client not in results:
            raise ValueError(
                f"Reference client '{self.reference_client}' not in results"
            )
        return results[self.reference_client]

    def compare_results(
        self,
        results: Dict[str, Dict[str, Any]],
        vector_name: str,
    ) -> ComparisonResult:
        """
        Compare instruction results from all clients.

        Args:
            results: Dict mapping client name to its /ix/execute response
            vector_name: Name of the test vector

        Returns:
            ComparisonResult with any divergences found
        """
        clients = list(results.keys())
        if len(clients) < 2:
            return ComparisonResult(success=True, divergences=[], clients_compared=clients)

        reference = self._reference(results)
        divergences = []
        for client, result in results.items():
            if client == self.reference_client:
                continue
            divergences.extend(self._compare_single(reference, result, client, vector_name))

        return ComparisonResult(
            success=len(divergences) == 0,
            divergences=divergences,
            clients_compared=clients,
        )

    def _divergence(
        self, field: str, expected: Any, actual: Any, client: str, vector_name: str,
        details: Optional[str] = None,
    ) -> Divergence:
        return Divergence(
            field=field,
            expected=expected,
            actual=actual,
            client=client,
            reference_client=self.reference_client,
            vector_name=vector_name,
            details=details,
        )

    def _compare_single(
        self,
        reference: Dict[str, Any],
        actual: Dict[str, Any],
        client: str,
        vector_name: str,
    ) -> List[Divergence]:
        divergences = []

        ref_error = int(reference.get("error_code", 0))
        act_error = int(actual.get("error_code", 0))
        if ref_error != act_error:
            divergences.append(self._divergence(
                "error_code", ref_error, act_error, client, vector_name,
                details=f"expected {describe_error(ref_error)}, got {describe_error(act_error)}",
            ))

        ref_digest = reference.get("state_digest")
        act_digest = actual.get("state_digest")
        if ref_digest and act_digest and ref_digest != act_digest:
            divergences.append(self._divergence(
                "state_digest", ref_digest, act_digest, client, vector_name,
                details="State digest mismatch after execution",
            ))

        for name in _EXACT_FIELDS:
            if name not in reference:
                continue
            if reference.get(name) != actual.get(name):
                divergences.append(self._divergence(
                    name, reference.get(name), actual.get(name), client, vector_name,
                ))

        return divergences

    def compare_state_digests(
        self,
        digests: Dict[str, str],
        vector_name: str,
    ) -> ComparisonResult:
        """Compare post-load state digests from all clients."""
        clients = list(digests.keys())
        if len(clients) < 2:
            return ComparisonResult(success=True, divergences=[], clients_compared=clients)

        reference_digest = self._reference(digests)
        divergences = [
            self._divergence(
                "state_digest", reference_digest, digest, client, vector_name,
                details="State digest mismatch",
            )
            for client, digest in digests.items()
            if client != self.reference_client and digest != reference_digest
        ]
        return ComparisonResult(
            success=len(divergences) == 0,
            divergences=divergences,
            clients_compared=clients,
        )

    def compare_expected(
        self,
        expected: Dict[str, Any],
        results: Dict[str, Dict[str, Any]],
        vector_name: str,
    ) -> ComparisonResult:
        """Check each client's final response against the vector's recorded result.

        A missing or empty ``state_digest`` on either side is not compared.
        """
        divergences = []
        for client, result in results.items():
            checks = [
                ("success", bool(expected.get("success")), bool(result.get("success"))),
                ("error_code", int(expected.get("error_code", 0)), int(result.get("error_code", 0))),
            ]
            if expected.get("state_digest") and result.get("state_digest"):
                checks.append(("state_digest", expected["state_digest"], result["state_digest"]))
            for name, want, got in checks:
                if want == got:
                    continue
                details = None
                if name == "error_code":
                    details = f"expected {describe_error(want)}, got {describe_error(got)}"
                divergences.append(Divergence(
                    field=name,
                    expected=want,
                    actual=got,
                    client=client,
                    reference_client=EXPECTED,
                    vector_name=vector_name,
                    details=details,
                ))
        return ComparisonResult(
            success=len(divergences) == 0,
            divergences=divergences,
            clients_compared=list(results),
        )
