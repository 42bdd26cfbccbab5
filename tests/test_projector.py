"""
Tests for wall queries and stats
"""

from datetime import datetime, timedelta, timezone

import pytest

from baseproofs.core import Hasher
from baseproofs.core.projector import SortOrder, query, stats
from baseproofs.schemas import PromiseCategory, PromiseRecord, PromiseStatus


ALICE = "0x" + "a1" * 20
BOB = "0x" + "b0" * 20
BASE = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make(content, days=0, status=PromiseStatus.ACTIVE, category=PromiseCategory.OTHER, creator=ALICE, name="Ada"):
    return PromiseRecord(
        id=content,
        digest=Hasher.digest(content),
        content=content,
        creator_address=creator,
        creator_display_name=name,
        created_at=BASE + timedelta(days=days),
        status=status,
        category=category,
    )


class TestQuery:

    @pytest.fixture
    def records(self):
        return [
            make("Run a marathon", days=1, category=PromiseCategory.FITNESS),
            make("Pay off the card", days=3, status=PromiseStatus.FULFILLED, category=PromiseCategory.FINANCIAL),
            make("Ship the release", days=2, status=PromiseStatus.VOIDED, creator=BOB, name="Bob"),
        ]

    def test_newest_first_by_default(self, records):
        assert [r.id for r in query(records)] == ["Pay off the card", "Ship the release", "Run a marathon"]

    def test_oldest_first(self, records):
        assert [r.id for r in query(records, sort=SortOrder.OLDEST)][0] == "Run a marathon"

    def test_sort_by_hash(self, records):
        result = query(records, sort="hash")
        assert [r.digest for r in result] == sorted(r.digest for r in records)

    def test_search_content_case_insensitive(self, records):
        assert [r.id for r in query(records, search="MARATHON")] == ["Run a marathon"]

    def test_search_display_name(self, records):
        assert [r.id for r in query(records, search="bob")] == ["Ship the release"]

    def test_search_digest(self, records):
        prefix = Hasher.digest("Pay off the card")[:12]
        assert [r.id for r in query(records, search=prefix)] == ["Pay off the card"]

    def test_filter_category_and_status(self, records):
        assert [r.id for r in query(records, category=PromiseCategory.FITNESS)] == ["Run a marathon"]
        assert [r.id for r in query(records, status=PromiseStatus.VOIDED)] == ["Ship the release"]

    def test_filter_owner(self, records):
        assert {r.id for r in query(records, owner=BOB.upper().replace("0X", "0x"))} == {"Ship the release"}

    def test_input_untouched(self, records):
        before = list(records)
        query(records, sort=SortOrder.OLDEST)
        assert records == before


class TestStats:

    def test_empty_set_is_full_integrity(self):
        result = stats([])
        assert result.total == 0
        assert result.integrity == 100

    def test_counts(self):
        records = [
            make("a", status=PromiseStatus.FULFILLED),
            make("b", status=PromiseStatus.VOIDED),
            make("c"),
            make("d"),
        ]
        result = stats(records)
        assert (result.total, result.active, result.fulfilled, result.voided) == (4, 2, 1, 1)
        assert result.integrity == 25

    def test_half_rounds_up(self):
        # 1 of 8 is 12.5%
        records = [make("x0", status=PromiseStatus.FULFILLED)] + [make(f"x{i}") for i in range(1, 8)]
        assert stats(records).integrity == 13

    def test_two_thirds(self):
        records = [make("a", status=PromiseStatus.FULFILLED), make("b", status=PromiseStatus.FULFILLED), make("c")]
        assert stats(records).integrity == 67

    def test_to_dict(self):
        assert stats([make("a")]).to_dict() == {
            "total": 1, "active": 1, "fulfilled": 0, "voided": 0, "integrity": 0,
        }
