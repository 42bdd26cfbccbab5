"""
Projector: Read-models for the promise wall

Creates list views and summary counts from the merged record set.
Pure functions over records; nothing here touches the chain or the cache.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from ..schemas import PromiseCategory, PromiseRecord, PromiseStatus


class SortOrder(str, Enum):
    NEWEST = "newest"
    OLDEST = "oldest"
    HASH = "hash"


@dataclass(frozen=True)
class WallStats:
    """Summary counts for a set of promises."""
    total: int
    active: int
    fulfilled: int
    voided: int
    integrity: int      # fulfilled share of all promises, percent

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "active": self.active,
            "fulfilled": self.fulfilled,
            "voided": self.voided,
            "integrity": self.integrity,
        }


def _matches_search(record: PromiseRecord, needle: str) -> bool:
    return (
        needle in record.creator_display_name.lower()
        or needle in record.content.lower()
        or needle in record.digest.lower()
    )


def query(
    records: Iterable[PromiseRecord],
    search: Optional[str] = None,
    category: Optional[PromiseCategory] = None,
    status: Optional[PromiseStatus] = None,
    owner: Optional[str] = None,
    sort: SortOrder = SortOrder.NEWEST,
) -> list[PromiseRecord]:
    """
    Filter and order records for display.

    search is case-insensitive over display name, content and digest.
    owner restricts to records created by that address.
    """
    results = list(records)

    if search:
        needle = search.lower()
        results = [r for r in results if _matches_search(r, needle)]
    if category is not None:
        results = [r for r in results if r.category == category]
    if status is not None:
        results = [r for r in results if r.status == status]
    if owner:
        results = [r for r in results if r.is_owned_by(owner)]

    sort = SortOrder(sort)
    if sort == SortOrder.HASH:
        results.sort(key=lambda r: r.digest.lower())
    else:
        results.sort(key=lambda r: r.created_at, reverse=(sort == SortOrder.NEWEST))

    return results


def stats(records: Iterable[PromiseRecord]) -> WallStats:
    """Counts by status. Integrity is 100 for an empty set."""
    records = list(records)
    total = len(records)
    active = sum(1 for r in records if r.status == PromiseStatus.ACTIVE)
    fulfilled = sum(1 for r in records if r.status == PromiseStatus.FULFILLED)
    voided = sum(1 for r in records if r.status == PromiseStatus.VOIDED)

    # Half rounds up
    integrity = math.floor(fulfilled / total * 100 + 0.5) if total else 100

    return WallStats(
        total=total,
        active=active,
        fulfilled=fulfilled,
        voided=voided,
        integrity=integrity,
    )
