"""
Chain Configuration

Network presets and environment-based settings for reading the ledger.

Environment Variables:
    BASEPROOFS_CHAIN_ID: 8453 (Base), 84532 (Base Sepolia), 31337 (localhost)
    BASEPROOFS_RPC_URL: RPC endpoint (defaults to the network preset)
    BASEPROOFS_CONTRACT_ADDRESS: Deployed ledger contract
    BASEPROOFS_FROM_BLOCK: First block to scan (default 0, the deployment block is better)
    BASEPROOFS_SCAN_CONCURRENCY: Max simultaneous transaction fetches (default 8)
    BASEPROOFS_SCAN_TIMEOUT_SECONDS: Overall deadline for one sync cycle (default 30)
    BASEPROOFS_FETCH_TIMEOUT_SECONDS: Deadline for the fetch batch (default: none)
"""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class NetworkPreset:
    """Known network."""
    chain_id: int
    name: str
    rpc_url: str
    explorer_url: Optional[str]


BASE_MAINNET = NetworkPreset(
    chain_id=8453,
    name="Base Mainnet",
    rpc_url="https://mainnet.base.org",
    explorer_url="https://basescan.org",
)
BASE_SEPOLIA = NetworkPreset(
    chain_id=84532,
    name="Base Sepolia",
    rpc_url="https://sepolia.base.org",
    explorer_url="https://sepolia.basescan.org",
)
LOCALHOST = NetworkPreset(
    chain_id=31337,
    name="Localhost",
    rpc_url="http://127.0.0.1:8545",
    explorer_url=None,
)

NETWORKS = {n.chain_id: n for n in (BASE_MAINNET, BASE_SEPOLIA, LOCALHOST)}


def _optional_float(value: Optional[str]) -> Optional[float]:
    if value is None or value.strip() == "":
        return None
    return float(value)


@dataclass
class ChainConfig:
    """Where and how to read the ledger."""
    chain_id: int = BASE_MAINNET.chain_id
    rpc_url: Optional[str] = None
    contract_address: Optional[str] = None
    from_block: int = 0
    scan_concurrency: int = 8
    scan_timeout: float = 30.0  # seconds
    fetch_timeout: Optional[float] = None

    @property
    def network(self) -> Optional[NetworkPreset]:
        return NETWORKS.get(self.chain_id)

    @property
    def effective_rpc_url(self) -> Optional[str]:
        if self.rpc_url:
            return self.rpc_url
        network = self.network
        return network.rpc_url if network else None

    @property
    def is_configured(self) -> bool:
        """A scan needs a contract address (the RPC URL can come from the preset)."""
        return bool(self.contract_address) and self.effective_rpc_url is not None

    def explorer_tx_url(self, tx_id: str) -> Optional[str]:
        """Block explorer link for a transaction, if the network has one."""
        network = self.network
        if network is None or network.explorer_url is None:
            return None
        return f"{network.explorer_url}/tx/{tx_id}"

    @classmethod
    def from_env(cls) -> "ChainConfig":
        """Load configuration from environment variables."""
        chain_id_raw = os.getenv("BASEPROOFS_CHAIN_ID", str(BASE_MAINNET.chain_id))
        # Accept the wallet-style hex form (0x2105) as well as decimal
        chain_id = int(chain_id_raw, 16) if chain_id_raw.lower().startswith("0x") else int(chain_id_raw)

        return cls(
            chain_id=chain_id,
            rpc_url=os.getenv("BASEPROOFS_RPC_URL") or None,
            contract_address=os.getenv("BASEPROOFS_CONTRACT_ADDRESS") or None,
            from_block=int(os.getenv("BASEPROOFS_FROM_BLOCK", "0")),
            scan_concurrency=int(os.getenv("BASEPROOFS_SCAN_CONCURRENCY", "8")),
            scan_timeout=float(os.getenv("BASEPROOFS_SCAN_TIMEOUT_SECONDS", "30")),
            fetch_timeout=_optional_float(os.getenv("BASEPROOFS_FETCH_TIMEOUT_SECONDS")),
        )
