"""
Verifier

Answers one question: does this text match an anchored commitment?

The candidate is digested exactly as given (no trimming, no normalization)
and compared for equality against every record's digest. A single differing
character means no match. A non-match is a normal outcome, not an error.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from ..observability import get_logger, get_metrics
from ..schemas import PromiseRecord
from .hasher import Hasher

logger = get_logger(__name__)


@dataclass(frozen=True)
class VerificationResult:
    """Result of an integrity check."""
    matched: bool
    digest: str
    record: Optional[PromiseRecord] = None

    def to_dict(self) -> dict:
        return {
            "matched": self.matched,
            "digest": self.digest,
            "record": self.record.model_dump(mode="json") if self.record else None,
        }


def find_by_digest(digest: str, records: Iterable[PromiseRecord]) -> Optional[PromiseRecord]:
    """First record with this exact digest, or None."""
    target = Hasher.normalize_digest(digest)
    for record in records:
        if record.digest.lower() == target:
            return record
    return None


def verify(candidate_text: str, records: Iterable[PromiseRecord]) -> VerificationResult:
    """
    Recompute the candidate's digest and look it up.

    Returns at most one match; digest equality implies identity.
    """
    digest = Hasher.digest(candidate_text)
    record = find_by_digest(digest, records)

    get_metrics().record_verification(matched=record is not None)

    logger.info(
        "Integrity check",
        digest=Hasher.shorten(digest),
        matched=record is not None,
    )
    return VerificationResult(matched=record is not None, digest=digest, record=record)
