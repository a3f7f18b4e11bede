"""Contract ABIs shipped with the relayer."""

import functools
import json
from importlib import resources
from typing import Any, List

BRIDGE_ABI_FILE = "bridge_abi.json"


def load_contract_abi(filename: str) -> List[Any]:
    """Load an ABI JSON file from the contracts package."""
    with resources.files(__package__).joinpath(filename).open("r", encoding="utf-8") as fh:
        return json.load(fh)


@functools.lru_cache(maxsize=1)
def bridge_abi() -> List[Any]:
    """ABI of the bridge contract (events, releaseFunds, isNonceProcessed, custom errors)."""
    return load_contract_abi(BRIDGE_ABI_FILE)


__all__ = ["BRIDGE_ABI_FILE", "bridge_abi", "load_contract_abi"]
