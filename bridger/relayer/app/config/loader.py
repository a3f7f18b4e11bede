"""Config loader for the relayer project."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Optional

from web3 import Web3


class ConfigError(ValueError):
    """Raised when configuration data is invalid or missing."""


def _require_keys(data: Mapping[str, Any], keys: Iterable[str], context: str) -> None:
    missing = [key for key in keys if key not in data or data[key] in (None, "")]
    if missing:
        raise ConfigError(f"{context} missing required keys: {', '.join(missing)}")


def _to_checksum(value: str, *, field_name: str) -> str:
    try:
        return Web3.to_checksum_address(value)
    except Exception as exc:  # web3 raises ValueError for malformed inputs
        raise ConfigError(f"Invalid address for {field_name}: {value}") from exc


def _to_int(value: Any, *, field_name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{field_name} must be an integer, got {value!r}") from exc


def _to_float(value: Any, *, field_name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{field_name} must be a number, got {value!r}") from exc


@dataclass(frozen=True)
class ChainConfig:
    """Configuration for a source/destination chain running the bridge contract."""

    name: str
    chain_id: int
    display_name: str
    rpc_url: str
    bridge_address: str
    confirmations: int
    max_block_range: int
    max_gas_price_gwei: float
    start_block: Optional[int] = None

    @property
    def max_gas_price_wei(self) -> int:
        return int(Web3.to_wei(self.max_gas_price_gwei, "gwei"))


@dataclass(frozen=True)
class DefaultsConfig:
    """Default operational parameters."""

    batch_size: int = 100
    gas_limit: int = 200_000
    gas_cache_ttl: float = 10.0
    gas_price_buffer_percent: int = 20
    retry_attempts: int = 3
    retry_base_delay: float = 2.0
    retry_max_delay: float = 15.0
    retry_jitter: float = 0.3
    receipt_timeout: float = 120.0
    liquidity_backoff: float = 60.0


@dataclass(frozen=True)
class RelayerConfig:
    """Typed wrapper around the relayer configuration."""

    chains: List[ChainConfig]
    relayer_private_key: str = field(repr=False)
    database_path: Path
    dry_run: bool
    defaults: DefaultsConfig
    raw: Mapping[str, Any] = field(repr=False, default_factory=dict)

    def chain_by_id(self, chain_id: int) -> Optional[ChainConfig]:
        for chain in self.chains:
            if chain.chain_id == chain_id:
                return chain
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Return the original configuration mapping."""
        return dict(self.raw)


# Chain templates used when no config file is supplied. RPC URLs and bridge
# addresses always come from the environment.
DEFAULT_CHAINS: Dict[str, Dict[str, Any]] = {
    "kub": {
        "chain_id": 96,
        "display_name": "Bitkub Chain",
        "confirmations": 12,
        "max_block_range": 1000,
        "max_gas_price_gwei": 100,
    },
    "jbc": {
        "chain_id": 8899,
        "display_name": "JB Chain",
        "confirmations": 12,
        "max_block_range": 1000,
        "max_gas_price_gwei": 100,
    },
    "bsc": {
        "chain_id": 56,
        "display_name": "BNB Chain",
        "confirmations": 15,
        "max_block_range": 5000,
        "max_gas_price_gwei": 10,
    },
}

DEFAULT_DATABASE_PATH = "./data/relayer.db"


def _load_json(path: Path) -> MutableMapping[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Config file contains invalid JSON: {path}") from exc


def _resolve_config_path(config_path: Optional[Path], env: Mapping[str, str]) -> Optional[Path]:
    if config_path is not None:
        return Path(config_path)
    env_path = env.get("RELAYER_CONFIG", "").strip()
    if env_path:
        return Path(env_path)
    default = Path("config.json")
    return default if default.is_file() else None


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == "true"


def _validate_private_key(value: str) -> str:
    key = value.strip()
    if not key.startswith("0x"):
        raise ConfigError("RELAYER_PRIVATE_KEY must start with 0x")
    try:
        raw = bytes.fromhex(key[2:])
    except ValueError as exc:
        raise ConfigError("RELAYER_PRIVATE_KEY must be hex encoded") from exc
    if len(raw) != 32:
        raise ConfigError("RELAYER_PRIVATE_KEY must be 32 bytes")
    return key


def _build_chain(name: str, data: Mapping[str, Any], env: Mapping[str, str]) -> ChainConfig:
    merged: Dict[str, Any] = dict(data)
    suffix = name.upper()

    for env_key, field_name in (
        (f"RPC_URL_{suffix}", "rpc_url"),
        (f"BRIDGE_ADDRESS_{suffix}", "bridge_address"),
        (f"MAX_GAS_PRICE_{suffix}", "max_gas_price_gwei"),
    ):
        if env.get(env_key):
            merged[field_name] = env[env_key]

    context = f"chain {name}"
    _require_keys(
        merged,
        ["chain_id", "rpc_url", "bridge_address", "confirmations", "max_block_range", "max_gas_price_gwei"],
        context,
    )

    chain_id = _to_int(merged["chain_id"], field_name=f"{context} chain_id")
    start_env = env.get(f"START_BLOCK_{chain_id}")
    if start_env:
        merged["start_block"] = start_env

    rpc_url = str(merged["rpc_url"]).strip()
    if not rpc_url.startswith(("http://", "https://", "ws://", "wss://")):
        raise ConfigError(f"{context} rpc_url must be an http(s) or ws(s) URL: {rpc_url}")

    chain = ChainConfig(
        name=name,
        chain_id=chain_id,
        display_name=str(merged.get("display_name") or name),
        rpc_url=rpc_url,
        bridge_address=_to_checksum(str(merged["bridge_address"]), field_name=f"{context} bridge_address"),
        confirmations=_to_int(merged["confirmations"], field_name=f"{context} confirmations"),
        max_block_range=_to_int(merged["max_block_range"], field_name=f"{context} max_block_range"),
        max_gas_price_gwei=_to_float(merged["max_gas_price_gwei"], field_name=f"{context} max_gas_price_gwei"),
        start_block=(
            _to_int(merged["start_block"], field_name=f"{context} start_block")
            if merged.get("start_block") not in (None, "")
            else None
        ),
    )

    if chain.confirmations < 1:
        raise ConfigError(f"{context} confirmations must be at least 1")
    if chain.max_block_range < 100:
        raise ConfigError(f"{context} max_block_range must be at least 100")
    if chain.max_gas_price_gwei <= 0:
        raise ConfigError(f"{context} max_gas_price_gwei must be positive")
    if chain.start_block is not None and chain.start_block < 0:
        raise ConfigError(f"{context} start_block cannot be negative")
    return chain


def _build_defaults(data: Mapping[str, Any]) -> DefaultsConfig:
    base = DefaultsConfig()
    try:
        defaults = DefaultsConfig(
            batch_size=int(data.get("batch_size", base.batch_size)),
            gas_limit=int(data.get("gas_limit", base.gas_limit)),
            gas_cache_ttl=float(data.get("gas_cache_ttl", base.gas_cache_ttl)),
            gas_price_buffer_percent=int(data.get("gas_price_buffer_percent", base.gas_price_buffer_percent)),
            retry_attempts=int(data.get("retry_attempts", base.retry_attempts)),
            retry_base_delay=float(data.get("retry_base_delay", base.retry_base_delay)),
            retry_max_delay=float(data.get("retry_max_delay", base.retry_max_delay)),
            retry_jitter=float(data.get("retry_jitter", base.retry_jitter)),
            receipt_timeout=float(data.get("receipt_timeout", base.receipt_timeout)),
            liquidity_backoff=float(data.get("liquidity_backoff", base.liquidity_backoff)),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"defaults contain a non-numeric value: {exc}") from exc

    if defaults.batch_size <= 0:
        raise ConfigError("defaults.batch_size must be positive")
    if defaults.gas_limit <= 0:
        raise ConfigError("defaults.gas_limit must be positive")
    if defaults.retry_attempts < 1:
        raise ConfigError("defaults.retry_attempts must be at least 1")
    if defaults.retry_base_delay < 0 or defaults.retry_max_delay < defaults.retry_base_delay:
        raise ConfigError("defaults.retry_max_delay must be >= retry_base_delay >= 0")
    if not 0 <= defaults.retry_jitter <= 1:
        raise ConfigError("defaults.retry_jitter must be between 0 and 1")
    if defaults.gas_price_buffer_percent < 0:
        raise ConfigError("defaults.gas_price_buffer_percent cannot be negative")
    if defaults.liquidity_backoff < 0:
        raise ConfigError("defaults.liquidity_backoff cannot be negative")
    return defaults


def load_config(config_path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> RelayerConfig:
    """Load and validate relayer configuration data.

    Values from ``env`` (``os.environ`` by default) override the JSON file. When
    no file is available the built-in chain templates are used and every RPC
    URL and bridge address must come from the environment.
    """
    env = os.environ if env is None else env
    path = _resolve_config_path(config_path, env)
    data: MutableMapping[str, Any] = _load_json(path) if path is not None else {"chains": DEFAULT_CHAINS}

    _require_keys(data, ["chains"], "config")
    chains_data = data["chains"]
    if not isinstance(chains_data, Mapping) or not chains_data:
        raise ConfigError("chains must be a non-empty mapping of name to chain settings")

    chains = [_build_chain(str(name), values, env) for name, values in chains_data.items()]
    seen = set()
    for chain in chains:
        if chain.chain_id in seen:
            raise ConfigError(f"Duplicate chain_id {chain.chain_id} in chains")
        seen.add(chain.chain_id)

    private_key = env.get("RELAYER_PRIVATE_KEY") or ""
    if not private_key.strip():
        raise ConfigError("Missing required environment variable: RELAYER_PRIVATE_KEY")

    database_path = env.get("DATABASE_PATH") or data.get("database_path") or DEFAULT_DATABASE_PATH
    dry_run_value = env.get("DRY_RUN") if env.get("DRY_RUN") is not None else data.get("dry_run", False)

    defaults_data = data.get("defaults") or {}
    if not isinstance(defaults_data, Mapping):
        raise ConfigError("defaults must be a mapping")

    return RelayerConfig(
        chains=chains,
        relayer_private_key=_validate_private_key(private_key),
        database_path=Path(str(database_path)),
        dry_run=_parse_bool(dry_run_value),
        defaults=_build_defaults(defaults_data),
        raw=data,
    )


__all__ = [
    "ChainConfig",
    "ConfigError",
    "DEFAULT_CHAINS",
    "DefaultsConfig",
    "RelayerConfig",
    "load_config",
]
