"""
Accredit — Configuration System

All configuration is Pydantic-validated and loaded from:
1. an optional YAML file (defaults for a deployment)
2. Environment variables (overrides, secrets)

Every tunable parameter of the workflow lives here.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Public gateways tried in order.
DEFAULT_GATEWAYS: list[str] = [
    "https://gateway.pinata.cloud/ipfs/",
    "https://ipfs.io/ipfs/",
    "https://cloudflare-ipfs.com/ipfs/",
    "https://dweb.link/ipfs/",
]

# ─── Sub-configs ──────────────────────────────────────────────────


class LedgerConfig(BaseModel):
    rpc_url: str = "http://127.0.0.1:7545"
    # Either an explicit address, or the Truffle artifact's deployment entry
    contract_address: str = ""
    artifact_path: str = "build/contracts/CredentialNFT.json"
    network_id: str | None = None  # None = latest deployment in the artifact
    # Sender. With a private key, transactions are signed locally and
    # ``account`` is derived from it; otherwise the node must hold the account.
    account: str = ""
    private_key: str = ""
    request_timeout_s: float = 30.0
    receipt_timeout_s: float = 120.0
    # Event polling
    poll_interval_s: float = 2.0
    max_block_range: int = 2_000
    max_poll_failures: int = 3

    @model_validator(mode="after")
    def _strip_secrets(self) -> LedgerConfig:
        # Secret managers can inject trailing \r\n into env vars
        if self.private_key:
            object.__setattr__(self, "private_key", self.private_key.strip())
        return self


class MetadataConfig(BaseModel):
    pin_url: str = "https://api.pinata.cloud/pinning/pinJSONToIPFS"
    pinata_api_key: str = ""
    pinata_secret_api_key: str = ""
    publish_timeout_s: float = 30.0
    # Base URLs (cid appended) or templates containing ``{cid}``
    gateways: list[str] = Field(default_factory=lambda: list(DEFAULT_GATEWAYS))
    gateway_timeout_s: float = 15.0
    placeholder_image: str = "https://via.placeholder.com/200"


class QuorumConfig(BaseModel):
    # Shared by every proposal. The deployed contract uses 2.
    approval_threshold: int = Field(default=2, ge=1)


class SyncConfig(BaseModel):
    max_concurrent_fetches: int = Field(default=8, ge=1)
    observer_timeout_s: float = 0.5


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "console"  # "console" | "json"


# ─── Root Configuration ──────────────────────────────────────────


class AccreditConfig(BaseSettings):
    """
    Root configuration. Loads from YAML, overridable by env vars.
    """

    model_config = SettingsConfigDict(
        env_prefix="ACCREDIT_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    metadata: MetadataConfig = Field(default_factory=MetadataConfig)
    quorum: QuorumConfig = Field(default_factory=QuorumConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(config_path: str | Path | None = None) -> AccreditConfig:
    """
    Load configuration from YAML file, then apply environment variable overrides.

    Raises ValueError (pydantic ValidationError included) or yaml.YAMLError
    for a malformed file or override.
    """
    raw: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                raw = yaml.safe_load(f) or {}
            if not isinstance(raw, dict):
                raise ValueError(f"{path}: top level must be a mapping")

    # Inject secrets and the common overrides from the environment
    if rpc_url := os.environ.get("ACCREDIT_RPC_URL"):
        raw.setdefault("ledger", {})["rpc_url"] = rpc_url
    if address := os.environ.get("ACCREDIT_CONTRACT_ADDRESS"):
        raw.setdefault("ledger", {})["contract_address"] = address
    if account := os.environ.get("ACCREDIT_ACCOUNT"):
        raw.setdefault("ledger", {})["account"] = account
    if private_key := os.environ.get("ACCREDIT_PRIVATE_KEY"):
        raw.setdefault("ledger", {})["private_key"] = private_key
    if pinata_key := os.environ.get("ACCREDIT_PINATA_API_KEY"):
        raw.setdefault("metadata", {})["pinata_api_key"] = pinata_key.strip()
    if pinata_secret := os.environ.get("ACCREDIT_PINATA_SECRET_API_KEY"):
        raw.setdefault("metadata", {})["pinata_secret_api_key"] = pinata_secret.strip()
    if threshold := os.environ.get("ACCREDIT_APPROVAL_THRESHOLD"):
        try:
            raw.setdefault("quorum", {})["approval_threshold"] = int(threshold)
        except ValueError as exc:
            raise ValueError(f"ACCREDIT_APPROVAL_THRESHOLD must be an integer, got {threshold!r}") from exc

    return AccreditConfig(**raw)
