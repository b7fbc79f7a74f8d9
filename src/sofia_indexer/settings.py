"""Configuration loading for the indexer.

User-editable settings live in a single JSON file (config.json at the project
root) for quick edits without touching Python. Secrets and per-deployment
overrides come from the environment, optionally via a .env file; environment
values win over the file. Every value has a default except what the chosen
chain preset cannot provide.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from sofia_indexer.core.config import (
    ChainConfig,
    NativeCurrency,
    RetryConfig,
    ScanConfig,
    StartBlock,
    VerifierConfig,
)
from sofia_indexer.core.errors import ConfigError

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))

CONFIG_PATH = os.path.join(PROJECT_ROOT, "config.json")

DEFAULT_DB_PATH = os.path.join(PROJECT_ROOT, "sofia_indexer.db")

# Same chain definitions as the browser extension.
CHAIN_PRESETS: dict[str, dict[str, Any]] = {
    "intuition-testnet": {
        "chain_id": 13579,
        "name": "Intuition Testnet",
        "network": "intuition-testnet",
        "rpc_url": "https://testnet.rpc.intuition.systems",
        "contract_address": "0xB92EA1B47E4ABD0a520E9138BB59dBd1bC6C475B",
        "explorer_url": "https://testnet.explorer.intuition.systems",
        "native_currency": {"name": "Trust", "symbol": "TRUST", "decimals": 18},
    },
}
DEFAULT_CHAIN_PRESET = "intuition-testnet"


@dataclass(frozen=True)
class Settings:
    """Everything the entry point needs to wire the indexer."""

    chain: ChainConfig
    scan: ScanConfig
    verifier: VerifierConfig
    retry: RetryConfig
    rpc_timeout_seconds: float
    db_path: str
    logging: dict = field(default_factory=dict)


def _load_json_config(path: str) -> dict:
    """Load config.json; a missing file means "all defaults"."""

    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    return data


def _pick(env: Mapping[str, str], env_name: str, section: dict, key: str, default: Any) -> Any:
    value = env.get(env_name)
    if value not in (None, ""):
        return value
    return section.get(key, default)


def _as_int(name: str, value: Any, minimum: int = 0) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from exc
    if number < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {number}")
    return number


def _as_float(name: str, value: Any, minimum: float = 0.0) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a number, got {value!r}") from exc
    if number < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {number}")
    return number


def parse_start_block(value: Any) -> StartBlock:
    """Return "latest" or a non-negative block number."""

    if isinstance(value, str) and value.strip().lower() == "latest":
        return "latest"
    return _as_int("start_block", value)


def _build_chain(env: Mapping[str, str], section: dict) -> ChainConfig:
    preset_name = _pick(env, "CHAIN_PRESET", section, "preset", DEFAULT_CHAIN_PRESET)
    if preset_name not in CHAIN_PRESETS:
        raise ConfigError(f"Unknown chain preset: {preset_name}")
    preset = CHAIN_PRESETS[preset_name]

    rpc_url = str(_pick(env, "RPC_URL", section, "rpc_url", preset["rpc_url"]) or "").strip()
    contract = str(
        _pick(env, "CONTRACT_ADDRESS", section, "contract_address", preset["contract_address"]) or ""
    ).strip()
    # Fail fast on missing endpoints to avoid a watcher that silently does nothing.
    if not rpc_url:
        raise ConfigError("Missing RPC URL (RPC_URL or chain.rpc_url)")
    if not contract:
        raise ConfigError("Missing contract address (CONTRACT_ADDRESS or chain.contract_address)")
    if not (contract.startswith("0x") and len(contract) == 42):
        raise ConfigError(f"Invalid contract address: {contract}")

    currency = {**preset["native_currency"], **section.get("native_currency", {})}
    return ChainConfig(
        chain_id=_as_int("chain_id", section.get("chain_id", preset["chain_id"])),
        name=str(section.get("name", preset["name"])),
        network=str(section.get("network", preset["network"])),
        rpc_url=rpc_url,
        contract_address=contract,
        explorer_url=section.get("explorer_url", preset.get("explorer_url")),
        native_currency=NativeCurrency(
            name=str(currency["name"]),
            symbol=str(currency["symbol"]),
            decimals=_as_int("native_currency.decimals", currency["decimals"]),
        ),
    )


def load_settings(
    config_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Build Settings from config.json and the environment.

    Raises ConfigError for anything unusable; the entry point treats that as
    fatal.
    """

    if environ is None:
        load_dotenv()
        environ = os.environ
    path = config_path or environ.get("SOFIA_CONFIG") or CONFIG_PATH
    config = _load_json_config(path)

    chain = _build_chain(environ, config.get("chain", {}))

    indexer = config.get("indexer", {})
    poll_interval_ms = _as_int(
        "poll_interval_ms", _pick(environ, "POLL_INTERVAL_MS", indexer, "poll_interval_ms", 10000), 1
    )
    scan = ScanConfig(
        poll_interval_seconds=poll_interval_ms / 1000.0,
        start_block=parse_start_block(_pick(environ, "START_BLOCK", indexer, "start_block", "latest")),
        lookback_blocks=_as_int(
            "lookback_blocks", _pick(environ, "LOOKBACK_BLOCKS", indexer, "lookback_blocks", 1000)
        ),
        max_block_range=_as_int(
            "max_block_range", _pick(environ, "MAX_BLOCK_RANGE", indexer, "max_block_range", 2000), 1
        ),
    )

    verifier_cfg = config.get("verifier", {})
    gateway_url = str(
        _pick(environ, "IPFS_GATEWAY_URL", verifier_cfg, "gateway_url", "https://ipfs.io/ipfs/")
    ).strip()
    if not gateway_url.startswith(("http://", "https://")):
        raise ConfigError(f"Invalid gateway URL: {gateway_url}")
    marker = str(_pick(environ, "SIGNATURE_MARKER", verifier_cfg, "signature_marker", "| Sofia"))
    if not marker:
        raise ConfigError("Signature marker must not be empty")
    verifier = VerifierConfig(
        gateway_url=gateway_url,
        signature_field=str(
            _pick(environ, "SIGNATURE_FIELD", verifier_cfg, "signature_field", "description")
        ),
        signature_marker=marker,
        concurrency=_as_int(
            "verifier.concurrency", _pick(environ, "VERIFIER_CONCURRENCY", verifier_cfg, "concurrency", 4), 1
        ),
        timeout_seconds=_as_float(
            "verifier.timeout_seconds",
            _pick(environ, "VERIFIER_TIMEOUT_SECONDS", verifier_cfg, "timeout_seconds", 10),
            0.1,
        ),
        max_attempts=_as_int(
            "verifier.max_attempts", _pick(environ, "VERIFIER_MAX_ATTEMPTS", verifier_cfg, "max_attempts", 3), 1
        ),
    )

    retry_cfg = config.get("retry", {})
    retry = RetryConfig(
        base_delay_seconds=_as_float(
            "retry.base_delay_seconds",
            _pick(environ, "RETRY_BASE_DELAY_SECONDS", retry_cfg, "base_delay_seconds", 2),
        ),
        max_delay_seconds=_as_float(
            "retry.max_delay_seconds",
            _pick(environ, "RETRY_MAX_DELAY_SECONDS", retry_cfg, "max_delay_seconds", 120),
        ),
    )

    db_path = str(_pick(environ, "DB_PATH", indexer, "db_path", DEFAULT_DB_PATH))
    if not os.path.isabs(db_path):
        db_path = os.path.join(PROJECT_ROOT, db_path)

    return Settings(
        chain=chain,
        scan=scan,
        verifier=verifier,
        retry=retry,
        rpc_timeout_seconds=_as_float(
            "rpc_timeout_seconds",
            _pick(environ, "RPC_TIMEOUT_SECONDS", indexer, "rpc_timeout_seconds", 20),
            0.1,
        ),
        db_path=db_path,
        logging=config.get("logging", {}),
    )
