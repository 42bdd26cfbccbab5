"""
Chain Sync

Runs the read pipeline end to end:

    LogScanner → classify_all → derive_chain_records → merge_with_cache

The pipeline stages are pure; this module only adds the parts that are
not: an overall deadline, the last good chain-derived snapshot, and a
background scheduler.

A scan that fails, overruns its deadline or abandons any transaction
fetch is "no fresh chain data this cycle", never an error. The previous
chain-derived snapshot stays in use so cached state remains valid and
displayed, and chain records never drop out because of a slow fetch.

CONFIGURATION:
- BASEPROOFS_SYNC_ENABLED: Enable background sync (default: false)
- BASEPROOFS_SYNC_INTERVAL_SECONDS: Seconds between scans (default: 60)

USAGE:
    sync = ChainSync(LogScanner(source), contract_address="0x...")
    result = sync.refresh(cache.load())

    scheduler = SyncScheduler(sync, cache)
    scheduler.start()
    ...
    scheduler.stop()
"""

import asyncio
import logging
import os
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Iterable, Optional

from ..observability import get_metrics
from ..schemas import PromiseRecord
from .classifier import classify_all
from .reconciler import ReconcilePolicy, derive_chain_records, merge_with_cache
from .scanner import BlockRef, LogScanner, ScanResult

if TYPE_CHECKING:
    from ..db.cache import PromiseCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one sync cycle."""
    records: tuple[PromiseRecord, ...]          # merged view
    chain_records: tuple[PromiseRecord, ...]    # chain-derived set in use
    fresh: bool
    synced_at: datetime
    error: Optional[str] = None
    scan: Optional[ScanResult] = None


class ChainSync:
    """
    Owns the chain-derived snapshot.

    Never writes to the local cache; callers own persistence.
    Sync cycles are serialized and all run on one private event loop, so
    async RPC clients keep a single loop for their sessions.
    """

    def __init__(
        self,
        scanner: LogScanner,
        contract_address: Optional[str],
        from_block: BlockRef = 0,
        to_block: BlockRef = "latest",
        policy: Optional[ReconcilePolicy] = None,
        timeout: Optional[float] = 30.0,
    ):
        self._scanner = scanner
        self._contract_address = contract_address
        self._from_block = from_block
        self._to_block = to_block
        self._policy = policy or ReconcilePolicy()
        self._timeout = timeout

        self._lock = threading.Lock()          # guards the snapshot
        self._run_lock = threading.Lock()      # one cycle at a time
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self._chain_records: tuple[PromiseRecord, ...] = ()
        self._last_attempt: Optional[datetime] = None
        self._last_success: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._last_fresh = False

    @property
    def policy(self) -> ReconcilePolicy:
        return self._policy

    @property
    def contract_address(self) -> Optional[str]:
        return self._contract_address

    @property
    def chain_records(self) -> tuple[PromiseRecord, ...]:
        """Last good chain-derived set (empty until the first successful scan)."""
        with self._lock:
            return self._chain_records

    def snapshot(self, local_records: Iterable[PromiseRecord]) -> tuple[PromiseRecord, ...]:
        """Merge the current chain snapshot under the given cache records. No scan."""
        return merge_with_cache(self.chain_records, local_records)

    # ================================================================
    # Sync cycle
    # ================================================================

    async def refresh_async(self, local_records: Iterable[PromiseRecord]) -> SyncResult:
        """One sync cycle. Never raises for chain-side failures."""
        local_records = tuple(local_records)
        start = time.perf_counter()
        now = datetime.now(timezone.utc)
        scan: Optional[ScanResult] = None
        error: Optional[str] = None

        if not self._contract_address:
            error = "No ledger contract configured"
        else:
            try:
                scan = await asyncio.wait_for(
                    self._scanner.scan(self._contract_address, self._from_block, self._to_block),
                    timeout=self._timeout,
                )
            except asyncio.TimeoutError:
                error = f"Scan exceeded {self._timeout}s deadline"
                logger.warning(f"Chain sync abandoned: {error}")

        # A partial scan is missing events, so it cannot replace the snapshot
        fresh = scan is not None and scan.ok and not scan.partial
        if scan is not None and not scan.ok:
            error = scan.error
        elif scan is not None and scan.partial:
            error = f"Fetch deadline abandoned {scan.abandoned} of {scan.matched} transactions"
            logger.warning(f"Chain sync incomplete: {error}")

        if fresh:
            classified = classify_all(scan.events)
            chain_records = derive_chain_records(classified.creations, classified.updates, self._policy)
            with self._lock:
                self._chain_records = chain_records
                self._last_success = now
            logger.info(
                f"Chain sync complete: {len(classified.creations)} creations, "
                f"{len(classified.updates)} status updates, {len(chain_records)} promises"
            )
        else:
            chain_records = self.chain_records

        with self._lock:
            self._last_attempt = now
            self._last_error = error
            self._last_fresh = fresh

        get_metrics().record_sync((time.perf_counter() - start) * 1000, fresh=fresh)

        return SyncResult(
            records=merge_with_cache(chain_records, local_records),
            chain_records=chain_records,
            fresh=fresh,
            synced_at=now,
            error=error,
            scan=scan,
        )

    def refresh(self, local_records: Iterable[PromiseRecord]) -> SyncResult:
        """Blocking sync cycle, safe to call from any thread."""
        with self._run_lock:
            if self._loop is None or self._loop.is_closed():
                self._loop = asyncio.new_event_loop()
            return self._loop.run_until_complete(self.refresh_async(local_records))

    def close(self) -> None:
        with self._run_lock:
            if self._loop is not None and not self._loop.is_closed():
                self._loop.close()
            self._loop = None

    def status(self) -> dict:
        with self._lock:
            return {
                "contract_address": self._contract_address,
                "chain_record_count": len(self._chain_records),
                "last_attempt": self._last_attempt.isoformat() if self._last_attempt else None,
                "last_success": self._last_success.isoformat() if self._last_success else None,
                "last_fresh": self._last_fresh,
                "last_error": self._last_error,
                "update_order": self._policy.update_order.value,
                "transitions": self._policy.transitions.value,
            }


# ============================================================
# Scheduler
# ============================================================

@dataclass
class SyncConfig:
    """Configuration for the sync scheduler."""
    interval_seconds: int = 60
    enabled: bool = False

    @classmethod
    def from_env(cls) -> "SyncConfig":
        """Load configuration from environment variables."""
        return cls(
            interval_seconds=int(os.environ.get("BASEPROOFS_SYNC_INTERVAL_SECONDS", "60")),
            enabled=os.environ.get("BASEPROOFS_SYNC_ENABLED", "").lower() in ("1", "true", "yes"),
        )


class SyncScheduler:
    """
    Background chain sync.

    Periodically scans the ledger and refreshes the chain snapshot,
    reading the local cache fresh on every cycle.
    """

    def __init__(
        self,
        sync: ChainSync,
        cache: "PromiseCache",
        config: Optional[SyncConfig] = None,
    ):
        self._sync = sync
        self._cache = cache
        self._config = config or SyncConfig.from_env()

        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._last_result: Optional[SyncResult] = None

    @property
    def config(self) -> SyncConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def last_result(self) -> Optional[SyncResult]:
        return self._last_result

    def start(self) -> None:
        """Start the background scheduler."""
        if not self._config.enabled:
            logger.info("Chain sync scheduler disabled (set BASEPROOFS_SYNC_ENABLED=1 to enable)")
            return

        if self._running:
            logger.warning("Chain sync scheduler already running")
            return

        self._running = True
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, daemon=True)
        self._thread.start()

        logger.info(f"Chain sync scheduler started (interval={self._config.interval_seconds}s)")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the background scheduler."""
        if not self._running:
            return

        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)

        self._running = False
        logger.info("Chain sync scheduler stopped")

    def run_once(self) -> SyncResult:
        """Run one cycle now (also used by the background loop)."""
        result = self._sync.refresh(self._cache.load())
        self._last_result = result
        return result

    def _run_loop(self) -> None:
        """Background thread main loop."""
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception as e:
                logger.exception(f"Error during chain sync: {e}")

            self._stop_event.wait(timeout=self._config.interval_seconds)
