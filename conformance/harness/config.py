"""
Configuration management for the VaultPay conformance harness.
"""

import os
from dataclasses import dataclass, field
from typing import Dict

REFERENCE = "reference"
CANDIDATE = "candidate"

_TRUTHY = ("true", "1", "yes")


@dataclass
class ClientConfig:
    """Configuration for a single implementation endpoint."""
    name: str
    endpoint: str
    enabled: bool = True
    timeout: float = 30.0


@dataclass
class HarnessConfig:
    """Main configuration for the test harness."""
    clients: Dict[str, ClientConfig] = field(default_factory=dict)

    # Paths
    vector_dir: str = "vectors"
    result_dir: str = "results"

    # Execution settings
    stop_on_first_failure: bool = False
    verbose: bool = False

    request_timeout: float = 30.0

    @classmethod
    def from_env(cls) -> "HarnessConfig":
        """Load configuration from environment variables."""
        config = cls()
        config.clients = {
            REFERENCE: ClientConfig(
                name="VaultPay reference",
                endpoint=os.environ.get("REFERENCE_ENDPOINT", "http://localhost:8081"),
                timeout=config.request_timeout,
            ),
            CANDIDATE: ClientConfig(
                name="VaultPay candidate",
                endpoint=os.environ.get("CANDIDATE_ENDPOINT", "http://localhost:8082"),
                timeout=config.request_timeout,
            ),
        }

        config.vector_dir = os.environ.get("VECTOR_DIR", "vectors")
        config.result_dir = os.environ.get("RESULT_DIR", "results")

        config.verbose = os.environ.get("VERBOSE", "").lower() in _TRUTHY
        config.stop_on_first_failure = (
            os.environ.get("STOP_ON_FIRST_FAILURE", "").lower() in _TRUTHY
        )
        return config

    def get_enabled_clients(self) -> Dict[str, ClientConfig]:
        """Get only enabled client configurations."""
        return {
            name: client
            for name, client in self.clients.items()
            if client.enabled
        }
