"""
Web3 Log Source

Reads ProofAnchored events and transaction inputs from an EVM JSON-RPC
endpoint using web3.py's async client.

Event layout:
    event ProofAnchored(address indexed creator, bytes32 indexed proofHash, uint256 timestamp)

    topics[0] = keccak("ProofAnchored(address,bytes32,uint256)")
    topics[1] = creator (left-padded to 32 bytes)
    topics[2] = proofHash
    data      = timestamp (uint256), when the contract emits it

When the data word is missing the block timestamp is fetched instead.
Block lookups run concurrently, once per block. A block that cannot be
read gives its logs timestamp 0 rather than failing the scan.
"""

import asyncio
from typing import Any, Iterable, Optional, Sequence

from eth_utils import keccak, to_checksum_address
from web3 import AsyncHTTPProvider, AsyncWeb3

from ..core.codec import from_hex
from ..core.hasher import Hasher
from ..core.scanner import BlockRef, LogSourceError
from ..observability import get_logger
from ..schemas import AnchorLog
from .config import ChainConfig


ANCHOR_EVENT_SIGNATURE = "ProofAnchored(address,bytes32,uint256)"
ANCHOR_EVENT_TOPIC = "0x" + keccak(text=ANCHOR_EVENT_SIGNATURE).hex()

logger = get_logger(__name__)


def _as_bytes(value: Any) -> bytes:
    """HexBytes, bytes or 0x-strings → bytes."""
    if isinstance(value, str):
        return from_hex(value)
    return bytes(value)


def _as_hex(value: Any) -> str:
    return "0x" + _as_bytes(value).hex()


def _event_timestamp(raw_log: Any) -> Optional[int]:
    """The emitted timestamp word, or None when the log carries no data."""
    data = _as_bytes(raw_log.get("data", b""))
    if len(data) < 32:
        return None
    return int.from_bytes(data[:32], "big")


class Web3LogSource:
    """LogSource over JSON-RPC."""

    def __init__(
        self,
        rpc_url: str,
        request_timeout: float = 30.0,
        w3: Optional[AsyncWeb3] = None,
        max_concurrency: int = 8,
    ):
        self._rpc_url = rpc_url
        self._max_concurrency = max_concurrency
        self._w3 = w3 or AsyncWeb3(
            AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout})
        )
        self._block_timestamps: dict[int, int] = {}

    @classmethod
    def from_config(cls, config: ChainConfig) -> "Web3LogSource":
        rpc_url = config.effective_rpc_url
        if rpc_url is None:
            raise ValueError(f"No RPC URL configured for chain {config.chain_id}")
        return cls(
            rpc_url,
            request_timeout=config.scan_timeout,
            max_concurrency=config.scan_concurrency,
        )

    async def get_anchor_logs(
        self,
        contract_address: str,
        from_block: BlockRef,
        to_block: BlockRef,
    ) -> Sequence[AnchorLog]:
        try:
            raw_logs = await self._w3.eth.get_logs({
                "address": to_checksum_address(contract_address),
                "topics": [ANCHOR_EVENT_TOPIC],
                "fromBlock": from_block,
                "toBlock": to_block,
            })
        except Exception as e:
            raise LogSourceError(f"eth_getLogs failed via {self._rpc_url}: {e}") from e

        # Not our event shape; skip rather than guess
        raw_logs = [raw for raw in raw_logs if len(raw["topics"]) >= 3]
        await self._load_block_timestamps(
            int(raw["blockNumber"]) for raw in raw_logs if _event_timestamp(raw) is None
        )

        logs = []
        for raw in raw_logs:
            topics = raw["topics"]
            logs.append(
                AnchorLog(
                    creator_address=to_checksum_address(_as_bytes(topics[1])[-20:]),
                    digest=Hasher.digest_from_bytes32(_as_bytes(topics[2])),
                    block_timestamp=self._timestamp_for(raw),
                    transaction_id=_as_hex(raw["transactionHash"]),
                    block_number=int(raw["blockNumber"]),
                    log_index=int(raw.get("logIndex", 0)),
                )
            )
        return logs

    async def get_call_data(self, transaction_id: str) -> bytes:
        try:
            tx = await self._w3.eth.get_transaction(transaction_id)
        except Exception as e:
            raise LogSourceError(f"eth_getTransactionByHash failed for {transaction_id}: {e}") from e
        return _as_bytes(tx["input"])

    def _timestamp_for(self, raw_log: Any) -> int:
        timestamp = _event_timestamp(raw_log)
        if timestamp is not None:
            return timestamp
        return self._block_timestamps.get(int(raw_log["blockNumber"]), 0)

    async def _load_block_timestamps(self, block_numbers: Iterable[int]) -> None:
        missing = sorted(set(block_numbers) - self._block_timestamps.keys())
        if not missing:
            return

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def fetch(block_number: int) -> None:
            async with semaphore:
                try:
                    block = await self._w3.eth.get_block(block_number)
                except Exception as e:
                    # Not cached, so the next scan asks again
                    logger.warning(
                        "Block timestamp unavailable",
                        block=block_number,
                        error=str(e),
                    )
                    return
            self._block_timestamps[block_number] = int(block["timestamp"])

        await asyncio.gather(*(fetch(n) for n in missing))
