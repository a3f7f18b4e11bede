"""Utility helpers shared across relayer core modules."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional, Union

from web3 import Web3

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
ROOT_LOGGER_NAME = "relayer"


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """Return a logger under the ``relayer`` hierarchy that prints to stdout."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
        root.setLevel(logging.INFO)
    return logging.getLogger(name)


def configure_logging(level: str = "info", log_file: Optional[Union[str, Path]] = None) -> logging.Logger:
    """Set the relayer log level and mirror output to an append-only ``log_file``."""
    root = get_logger(ROOT_LOGGER_NAME)
    resolved = getattr(logging, level.upper(), None)
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")
    root.setLevel(resolved)

    if log_file is not None:
        path = Path(log_file)
        already_attached = any(
            isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == path.resolve()
            for handler in root.handlers
        )
        if not already_attached:
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            root.addHandler(file_handler)
    return root


def ensure_web3_connected(web3: Web3, *, expected_chain_id: Optional[int] = None) -> None:
    """Validate that ``web3`` is connected and optionally matches the expected chain id."""
    if not web3.is_connected():
        raise ConnectionError("Failed to connect to the configured RPC endpoint")
    if expected_chain_id is not None and web3.eth.chain_id != expected_chain_id:
        raise ValueError(f"RPC chain ID mismatch: expected {expected_chain_id}, got {web3.eth.chain_id}")


def now_ms() -> int:
    """Current wall-clock time in milliseconds."""
    return int(time.time() * 1000)


__all__ = [
    "LOG_FORMAT",
    "configure_logging",
    "ensure_web3_connected",
    "get_logger",
    "now_ms",
]
