"""
Event Classifier

Splits raw anchor events into two streams:
- Creation: a new promise (anything that is not a status update)
- StatusUpdate: a transition referencing an existing promise by digest

For status updates the match key is the digest embedded in the STATUS
message. The write's own bytes32 argument is a nonce that only satisfies
the shape of anchorProof(bytes32); it is kept as event_digest for audit.
"""

from dataclasses import dataclass
from typing import Iterable

from ..observability import get_logger
from ..schemas import (
    ClassifiedEvent,
    Creation,
    PayloadKind,
    RawEvent,
    StatusUpdate,
)
from . import codec
from .hasher import DigestFormatError, Hasher

logger = get_logger(__name__)


@dataclass(frozen=True)
class ClassifiedEvents:
    """Both streams, each in input order."""
    creations: tuple[Creation, ...]
    updates: tuple[StatusUpdate, ...]


def _event_digest(event: RawEvent) -> str:
    try:
        return Hasher.normalize_digest(event.digest)
    except DigestFormatError:
        # Logs from a misbehaving source; keep the value as given
        return event.digest


def classify(event: RawEvent) -> ClassifiedEvent:
    """Classify one raw event."""
    decoded = codec.decode(event.raw_call_data)
    event_digest = _event_digest(event)

    if decoded.kind == PayloadKind.STATUS_UPDATE and decoded.status_update is not None:
        update = decoded.status_update
        if update.target_digest == event_digest:
            logger.debug("Status update argument equals its target", tx=event.transaction_id)
        return StatusUpdate(
            creator_address=event.creator_address,
            target_state=update.state,
            target_digest=update.target_digest,
            claimed_at_ms=update.claimed_at_ms,
            event_digest=event_digest,
            transaction_id=event.transaction_id,
            block_timestamp=event.block_timestamp,
        )

    return Creation(
        digest=event_digest,
        creator_address=event.creator_address,
        block_timestamp=event.block_timestamp,
        transaction_id=event.transaction_id,
        decoded=decoded,
    )


def classify_all(events: Iterable[RawEvent]) -> ClassifiedEvents:
    """Classify a batch, preserving input order within each stream."""
    creations: list[Creation] = []
    updates: list[StatusUpdate] = []

    for event in events:
        result = classify(event)
        if isinstance(result, StatusUpdate):
            updates.append(result)
        else:
            creations.append(result)

    return ClassifiedEvents(creations=tuple(creations), updates=tuple(updates))
