"""
Tests for the log scanner

Per-transaction fetch failures degrade one event; a failed log query
fails the scan without raising.
"""

import asyncio

import pytest

from baseproofs.chain import InMemoryLogSource
from baseproofs.core import Hasher, LogScanner, build_call_data, encode_metadata
from baseproofs.core.scanner import LogSourceError
from baseproofs.observability import get_metrics
from baseproofs.schemas import AnchorLog, PromiseMetadata


ALICE = "0x" + "a1" * 20


def anchor(source: InMemoryLogSource, content: str, timestamp: int = 1_700_000_000) -> str:
    digest = Hasher.digest(content)
    call_data = build_call_data(digest, encode_metadata(PromiseMetadata(content=content)))
    return source.submit(call_data, ALICE, block_timestamp=timestamp)


class SlowSource:
    """Log source whose call-data fetches for some transactions never finish in time."""

    def __init__(self, logs, slow_transactions, delay=5.0):
        self._logs = logs
        self._slow = set(slow_transactions)
        self._delay = delay

    async def get_anchor_logs(self, contract_address, from_block, to_block):
        return self._logs

    async def get_call_data(self, transaction_id):
        if transaction_id in self._slow:
            await asyncio.sleep(self._delay)
        return b""


class TestLogScanner:

    @pytest.fixture
    def source(self):
        return InMemoryLogSource()

    def test_scans_all_events_with_call_data(self, source):
        tx1 = anchor(source, "first")
        tx2 = anchor(source, "second")

        result = asyncio.run(LogScanner(source).scan(source.contract_address))

        assert result.ok
        assert result.matched == 2
        assert {e.transaction_id for e in result.events} == {tx1, tx2}
        assert all(len(e.raw_call_data) > 36 for e in result.events)

    def test_empty_range(self, source):
        result = asyncio.run(LogScanner(source).scan(source.contract_address))
        assert result.ok
        assert result.events == ()

    def test_other_contract_sees_nothing(self, source):
        anchor(source, "first")
        result = asyncio.run(LogScanner(source).scan("0x" + "99" * 20))
        assert result.ok
        assert result.events == ()

    def test_fetch_failure_keeps_event_without_payload(self, source):
        ok_tx = anchor(source, "fine")
        bad_tx = anchor(source, "broken")
        source.failing_transactions.add(bad_tx)
        before = get_metrics().fetch_failures

        result = asyncio.run(LogScanner(source).scan(source.contract_address))

        assert result.ok
        assert result.fetch_failures == 1
        by_tx = {e.transaction_id: e for e in result.events}
        assert by_tx[bad_tx].raw_call_data == b""
        assert by_tx[ok_tx].raw_call_data != b""
        assert get_metrics().fetch_failures == before + 1

    def test_unreachable_source_fails_scan(self, source):
        anchor(source, "first")
        source.unreachable = True

        result = asyncio.run(LogScanner(source).scan(source.contract_address))

        assert not result.ok
        assert result.events == ()
        assert "unreachable" in result.error

    def test_block_range(self, source):
        anchor(source, "block one")
        tx2 = anchor(source, "block two")

        result = asyncio.run(LogScanner(source).scan(source.contract_address, from_block=2, to_block=2))

        assert [e.transaction_id for e in result.events] == [tx2]

    def test_fetch_deadline_returns_completed_events(self):
        logs = [
            AnchorLog(
                creator_address=ALICE,
                digest=Hasher.digest(str(i)),
                block_timestamp=i,
                transaction_id="0x" + f"{i:02x}" * 32,
                block_number=i,
            )
            for i in range(1, 4)
        ]
        slow_tx = logs[1].transaction_id
        scanner = LogScanner(SlowSource(logs, [slow_tx]), fetch_timeout=0.1)

        result = asyncio.run(scanner.scan("0x" + "00" * 20))

        assert result.ok
        assert result.partial
        assert result.abandoned == 1
        assert slow_tx not in {e.transaction_id for e in result.events}
        assert len(result.events) == 2

    def test_rejects_zero_concurrency(self, source):
        with pytest.raises(ValueError):
            LogScanner(source, max_concurrency=0)


class TestInMemoryLogSource:

    def test_submit_rejects_foreign_call_data(self):
        source = InMemoryLogSource()
        with pytest.raises(ValueError):
            source.submit(b"\x00" * 40, ALICE)

    def test_unknown_transaction_raises(self):
        source = InMemoryLogSource()
        with pytest.raises(LogSourceError):
            asyncio.run(source.get_call_data("0x" + "ee" * 32))

    def test_digest_comes_from_call_argument(self):
        source = InMemoryLogSource()
        anchor(source, "hello")
        logs = asyncio.run(source.get_anchor_logs(source.contract_address, 0, "latest"))
        assert logs[0].digest == Hasher.digest("hello")
