"""Configuration utilities for the relayer."""

from .loader import (
    DEFAULT_CHAINS,
    ChainConfig,
    ConfigError,
    DefaultsConfig,
    RelayerConfig,
    load_config,
)

__all__ = [
    "ChainConfig",
    "ConfigError",
    "DEFAULT_CHAINS",
    "DefaultsConfig",
    "RelayerConfig",
    "load_config",
]
