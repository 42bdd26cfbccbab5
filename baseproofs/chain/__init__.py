# Chain access: network configuration and log sources
from .config import (
    ChainConfig,
    NetworkPreset,
    NETWORKS,
    BASE_MAINNET,
    BASE_SEPOLIA,
    LOCALHOST,
)
from .memory import InMemoryLogSource

__all__ = [
    "ChainConfig",
    "NetworkPreset",
    "NETWORKS",
    "BASE_MAINNET",
    "BASE_SEPOLIA",
    "LOCALHOST",
    "InMemoryLogSource",
]
