"""Distribution configuration — deployment identity and signing domain.

Loaded from config/distribution_params.json. These values bind every
claim signature to one deployment: changing any of them invalidates all
previously issued signatures.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

from eth_utils import is_address

DEFAULT_CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"
PARAMS_FILENAME = "distribution_params.json"

ZERO_ADDRESS = "0x" + "0" * 40


@dataclass(frozen=True)
class DistributionConfig:
    """Signing domain and arithmetic constants for one distributor deployment."""

    system_name: str
    version: str
    chain_id: int
    verifying_contract: str
    trusted_allocator: str
    percent_precision: int = 10_000

    @classmethod
    def from_config_dir(cls, config_dir: Path = DEFAULT_CONFIG_DIR) -> DistributionConfig:
        """Load from <config_dir>/distribution_params.json."""
        return cls.from_file(config_dir / PARAMS_FILENAME)

    @classmethod
    def from_file(cls, path: Path) -> DistributionConfig:
        params = json.loads(path.read_text(encoding="utf-8"))
        domain = params["signing_domain"]
        return cls(
            system_name=domain["name"],
            version=domain["version"],
            chain_id=int(domain["chain_id"]),
            verifying_contract=domain["verifying_contract"],
            trusted_allocator=params["trusted_allocator"],
            percent_precision=int(params.get("percent_precision", 10_000)),
        )

    def validate(self) -> list[str]:
        """Check structural rules. Returns errors (empty = OK)."""
        errors: list[str] = []
        if not self.system_name:
            errors.append("signing_domain.name must be non-empty")
        if not self.version:
            errors.append("signing_domain.version must be non-empty")
        if self.chain_id <= 0:
            errors.append(f"signing_domain.chain_id must be > 0, got {self.chain_id}")
        if not is_address(self.verifying_contract):
            errors.append(
                f"signing_domain.verifying_contract is not an address: {self.verifying_contract}"
            )
        if not is_address(self.trusted_allocator):
            errors.append(f"trusted_allocator is not an address: {self.trusted_allocator}")
        elif self.trusted_allocator.lower() == ZERO_ADDRESS:
            errors.append("trusted_allocator must not be the zero address")
        if self.percent_precision <= 0:
            errors.append(f"percent_precision must be > 0, got {self.percent_precision}")
        return errors

    def to_dict(self) -> dict:
        return {
            "signing_domain": {
                "name": self.system_name,
                "version": self.version,
                "chain_id": self.chain_id,
                "verifying_contract": self.verifying_contract,
            },
            "trusted_allocator": self.trusted_allocator,
            "percent_precision": self.percent_precision,
        }
