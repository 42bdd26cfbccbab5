"""
In-Memory Ledger

A process-local stand-in for the ledger contract. It accepts writes
(anchorProof call data) and serves them back as anchor logs, so the full
write → scan → reconcile loop works without a node.

Used in development (no RPC configured) and in tests.
"""

import time
from threading import Lock
from typing import Optional, Sequence

from eth_utils import keccak

from ..core.codec import ANCHOR_PREFIX_LENGTH, ANCHOR_SELECTOR
from ..core.hasher import Hasher
from ..core.scanner import BlockRef, LogSourceError
from ..schemas import AnchorLog


class InMemoryLogSource:
    """
    Log source and payload submitter backed by a list.

    Failure injection for tests:
    - unreachable: every log query raises LogSourceError
    - failing_transactions: call-data fetches for these ids raise
    """

    def __init__(self, contract_address: str = "0x" + "00" * 20):
        self._lock = Lock()
        self._contract_address = contract_address.lower()
        self._logs: list[AnchorLog] = []
        self._call_data: dict[str, bytes] = {}
        self._next_block = 1
        self.unreachable = False
        self.failing_transactions: set[str] = set()

    @property
    def contract_address(self) -> str:
        return self._contract_address

    # ================================================================
    # Write side
    # ================================================================

    def add_log(self, log: AnchorLog, call_data: bytes = b"") -> AnchorLog:
        """Record a pre-built log and its call data."""
        with self._lock:
            self._logs.append(log)
            self._call_data[log.transaction_id] = call_data
            self._next_block = max(self._next_block, log.block_number + 1)
        return log

    def submit(
        self,
        call_data: bytes,
        sender: str,
        block_timestamp: Optional[int] = None,
    ) -> str:
        """
        Accept an anchorProof write. Returns the transaction id.

        Raises:
            ValueError: If the call data is not an anchorProof call
        """
        if len(call_data) < ANCHOR_PREFIX_LENGTH or call_data[:4] != ANCHOR_SELECTOR:
            raise ValueError("Call data is not an anchorProof(bytes32) call")

        digest = Hasher.digest_from_bytes32(call_data[4:ANCHOR_PREFIX_LENGTH])
        timestamp = int(time.time()) if block_timestamp is None else block_timestamp

        with self._lock:
            block_number = self._next_block
            self._next_block += 1
            tx_id = "0x" + keccak(
                primitive=sender.lower().encode("ascii") + block_number.to_bytes(8, "big") + call_data
            ).hex()
            self._logs.append(
                AnchorLog(
                    creator_address=sender,
                    digest=digest,
                    block_timestamp=timestamp,
                    transaction_id=tx_id,
                    block_number=block_number,
                    log_index=0,
                )
            )
            self._call_data[tx_id] = call_data

        return tx_id

    # ================================================================
    # LogSource
    # ================================================================

    async def get_anchor_logs(
        self,
        contract_address: str,
        from_block: BlockRef,
        to_block: BlockRef,
    ) -> Sequence[AnchorLog]:
        if self.unreachable:
            raise LogSourceError("In-memory ledger marked unreachable")
        if contract_address.lower() != self._contract_address:
            return []

        low = from_block if isinstance(from_block, int) else 0
        with self._lock:
            return [
                log for log in self._logs
                if log.block_number >= low
                and (not isinstance(to_block, int) or log.block_number <= to_block)
            ]

    async def get_call_data(self, transaction_id: str) -> bytes:
        if transaction_id in self.failing_transactions:
            raise LogSourceError(f"Transaction fetch failed: {transaction_id}")
        with self._lock:
            if transaction_id not in self._call_data:
                raise LogSourceError(f"Unknown transaction: {transaction_id}")
            return self._call_data[transaction_id]
