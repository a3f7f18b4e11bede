"""Cross-chain bridge relayer: watches ``BridgeInitiated`` logs and releases funds on the destination chain."""

from importlib import metadata

try:
    __version__ = metadata.version("bridge-relayer")
except metadata.PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = ["__version__"]
