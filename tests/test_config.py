"""Tests for distribution configuration loading and validation."""

import dataclasses
import json

from pathlib import Path

from roundclaim.config import DEFAULT_CONFIG_DIR, DistributionConfig


class TestDistributionConfig:
    def test_shipped_config_is_valid(self) -> None:
        config = DistributionConfig.from_config_dir(DEFAULT_CONFIG_DIR)
        assert config.validate() == []
        assert config.chain_id == 31337
        assert config.percent_precision == 10_000

    def test_round_trip_through_file(self, tmp_path: Path) -> None:
        config = DistributionConfig.from_config_dir(DEFAULT_CONFIG_DIR)
        path = tmp_path / "distribution_params.json"
        path.write_text(json.dumps(config.to_dict()), encoding="utf-8")
        assert DistributionConfig.from_file(path) == config

    def test_precision_defaults(self, tmp_path: Path) -> None:
        params = DistributionConfig.from_config_dir(DEFAULT_CONFIG_DIR).to_dict()
        del params["percent_precision"]
        path = tmp_path / "distribution_params.json"
        path.write_text(json.dumps(params), encoding="utf-8")
        assert DistributionConfig.from_file(path).percent_precision == 10_000

    def test_validation_errors(self) -> None:
        config = dataclasses.replace(
            DistributionConfig.from_config_dir(DEFAULT_CONFIG_DIR),
            system_name="",
            chain_id=0,
            verifying_contract="nope",
            trusted_allocator="0x" + "0" * 40,
            percent_precision=0,
        )
        errors = config.validate()
        assert len(errors) == 5
        assert any("zero address" in e for e in errors)

    def test_bad_checksum_rejected(self) -> None:
        config = dataclasses.replace(
            DistributionConfig.from_config_dir(DEFAULT_CONFIG_DIR),
            trusted_allocator="0xF39Fd6e51aad88F6F4ce6aB8827279cffFb92266",
        )
        errors = config.validate()
        assert errors == [
            "trusted_allocator is not an address: 0xF39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
        ]

    def test_lowercase_address_accepted(self) -> None:
        config = dataclasses.replace(
            DistributionConfig.from_config_dir(DEFAULT_CONFIG_DIR),
            verifying_contract="0x" + "ab" * 20,
        )
        assert config.validate() == []
