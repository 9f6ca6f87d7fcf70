"""
Unit tests for configuration loading.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError as PydanticValidationError

from accredit.config import DEFAULT_GATEWAYS, AccreditConfig, QuorumConfig, load_config


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "ACCREDIT_RPC_URL",
        "ACCREDIT_CONTRACT_ADDRESS",
        "ACCREDIT_ACCOUNT",
        "ACCREDIT_PRIVATE_KEY",
        "ACCREDIT_PINATA_API_KEY",
        "ACCREDIT_PINATA_SECRET_API_KEY",
        "ACCREDIT_APPROVAL_THRESHOLD",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestDefaults:
    def test_defaults(self, clean_env):
        config = load_config(None)
        assert config.quorum.approval_threshold == 2
        assert config.metadata.gateways == DEFAULT_GATEWAYS
        assert config.ledger.artifact_path.endswith("CredentialNFT.json")

    def test_threshold_must_be_positive(self):
        with pytest.raises(PydanticValidationError):
            QuorumConfig(approval_threshold=0)

    def test_missing_file_falls_back_to_defaults(self, clean_env, tmp_path):
        config = load_config(tmp_path / "absent.yaml")
        assert isinstance(config, AccreditConfig)


class TestYamlAndEnv:
    def test_yaml_values(self, clean_env, tmp_path):
        path = tmp_path / "accredit.yaml"
        path.write_text(
            "ledger:\n"
            "  rpc_url: http://node.test:8545\n"
            "quorum:\n"
            "  approval_threshold: 3\n"
            "metadata:\n"
            "  gateways:\n"
            "    - https://only.test/ipfs/\n"
        )
        config = load_config(path)
        assert config.ledger.rpc_url == "http://node.test:8545"
        assert config.quorum.approval_threshold == 3
        assert config.metadata.gateways == ["https://only.test/ipfs/"]

    def test_env_overrides_yaml(self, clean_env, tmp_path):
        path = tmp_path / "accredit.yaml"
        path.write_text("ledger:\n  rpc_url: http://from-yaml:8545\n")
        clean_env.setenv("ACCREDIT_RPC_URL", "http://from-env:8545")
        clean_env.setenv("ACCREDIT_APPROVAL_THRESHOLD", "4")
        clean_env.setenv("ACCREDIT_PINATA_API_KEY", "key\r\n")

        config = load_config(path)

        assert config.ledger.rpc_url == "http://from-env:8545"
        assert config.quorum.approval_threshold == 4
        assert config.metadata.pinata_api_key == "key"

    def test_private_key_stripped(self, clean_env):
        clean_env.setenv("ACCREDIT_PRIVATE_KEY", "0xabc\n")
        assert load_config(None).ledger.private_key == "0xabc"


class TestMalformedInput:
    def test_non_integer_threshold(self, clean_env):
        clean_env.setenv("ACCREDIT_APPROVAL_THRESHOLD", "two")
        with pytest.raises(ValueError, match="ACCREDIT_APPROVAL_THRESHOLD"):
            load_config(None)

    def test_yaml_top_level_must_be_mapping(self, clean_env, tmp_path):
        path = tmp_path / "accredit.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ValueError, match="mapping"):
            load_config(path)
