"""
Log Scanner

Retrieves every anchor event emitted by the ledger contract in a block
range, plus the full call data of each event's transaction.

The event alone only carries the bytes32 argument. The content and status
messages live in the call data, so one extra fetch per event is required.
Those fetches are independent and read-only, so they run concurrently
under a semaphore ceiling.

FAILURE POLICY:
- One transaction fetch fails → keep the event with empty call data,
  keep scanning (content falls back to a placeholder downstream)
- The log query itself fails → failed ScanResult with no events
- Fetch deadline expires → cancel in-flight fetches, return what completed
"""

import asyncio
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, Union

from ..observability import get_logger, get_metrics
from ..schemas import AnchorLog, RawEvent

logger = get_logger(__name__)

BlockRef = Union[int, str]  # block number or a tag such as "latest"

DEFAULT_MAX_CONCURRENCY = 8


class LogSourceError(Exception):
    """Raised by log sources when the chain cannot be queried."""
    pass


class LogSource(Protocol):
    """
    External collaborator that reads the chain.

    Only two operations are needed: the matched anchor logs for a contract
    and block range, and the raw input of a transaction.
    """

    async def get_anchor_logs(
        self,
        contract_address: str,
        from_block: BlockRef,
        to_block: BlockRef,
    ) -> Sequence[AnchorLog]:
        ...

    async def get_call_data(self, transaction_id: str) -> bytes:
        ...


@dataclass(frozen=True)
class ScanResult:
    """
    Outcome of one scan.

    ok=False means the log source could not be queried at all. Callers treat
    that the same as "no chain data yet" and keep their previous state.
    """
    events: tuple[RawEvent, ...]
    ok: bool = True
    error: Optional[str] = None
    matched: int = 0
    fetch_failures: int = 0
    abandoned: int = 0

    @property
    def partial(self) -> bool:
        """True if some fetches were cut off by the deadline."""
        return self.abandoned > 0

    @classmethod
    def failed(cls, error: str) -> "ScanResult":
        return cls(events=(), ok=False, error=error)


class LogScanner:
    """
    Scans the ledger contract's anchor events.

    Result ordering is arrival-agnostic; downstream stages re-sort by
    block timestamp where order matters.
    """

    def __init__(
        self,
        source: LogSource,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        fetch_timeout: Optional[float] = None,
    ):
        """
        Args:
            source: Chain reader
            max_concurrency: Upper bound on simultaneous transaction fetches
            fetch_timeout: Seconds to wait for the whole fetch batch (None = no limit)
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._source = source
        self._max_concurrency = max_concurrency
        self._fetch_timeout = fetch_timeout

    @property
    def source(self) -> LogSource:
        return self._source

    async def scan(
        self,
        contract_address: str,
        from_block: BlockRef = 0,
        to_block: BlockRef = "latest",
    ) -> ScanResult:
        """
        Retrieve all anchor events in [from_block, to_block] with their call data.

        Never raises for source or fetch failures.
        """
        try:
            logs = list(await self._source.get_anchor_logs(contract_address, from_block, to_block))
        except Exception as e:
            get_metrics().record_scan(failed=True)
            logger.warning(
                "Anchor log query failed",
                contract=contract_address,
                from_block=str(from_block),
                to_block=str(to_block),
                error=str(e),
            )
            return ScanResult.failed(str(e) or type(e).__name__)

        if not logs:
            get_metrics().record_scan()
            logger.debug("No anchor events in range", contract=contract_address)
            return ScanResult(events=())

        semaphore = asyncio.Semaphore(self._max_concurrency)
        tasks = [asyncio.create_task(self._fetch(log, semaphore)) for log in logs]

        done, pending = await asyncio.wait(tasks, timeout=self._fetch_timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(
                "Transaction fetch deadline expired",
                completed=len(done),
                abandoned=len(pending),
            )

        results = [task.result() for task in tasks if task in done]
        events = tuple(event for event, _ in results)
        failures = sum(1 for _, failed in results if failed)
        get_metrics().record_scan(fetch_failures=failures)

        logger.info(
            "Scan complete",
            contract=contract_address,
            matched=len(logs),
            fetched=len(events) - failures,
            fetch_failures=failures,
            abandoned=len(pending),
        )

        return ScanResult(
            events=events,
            matched=len(logs),
            fetch_failures=failures,
            abandoned=len(pending),
        )

    async def _fetch(
        self,
        log: AnchorLog,
        semaphore: asyncio.Semaphore,
    ) -> tuple[RawEvent, bool]:
        """Fetch one transaction's call data. Returns (event, failed)."""
        async with semaphore:
            try:
                call_data = await self._source.get_call_data(log.transaction_id)
            except Exception as e:
                logger.warning(
                    "Transaction fetch failed; keeping event without payload",
                    tx=log.transaction_id,
                    error=str(e),
                )
                return RawEvent(**log.model_dump(), raw_call_data=b""), True

        return RawEvent(**log.model_dump(), raw_call_data=bytes(call_data or b"")), False
