"""
Chain Event Schema

The ledger contract exposes a single write: anchorProof(bytes32).
Everything else rides in the call data after the argument.

Each anchor event is read back as:
- AnchorLog: what the log itself tells us (creator, digest, time)
- RawEvent: the log plus the full call data of its transaction

The classifier turns each RawEvent into exactly one of:
- Creation: a new promise
- StatusUpdate: a state transition for an existing promise, by digest
"""

from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .promise import PromiseStatus


# ============================================================
# Log-level types
# ============================================================

class AnchorLog(BaseModel):
    """One matched ProofAnchored log."""
    model_config = ConfigDict(frozen=True)

    creator_address: str
    digest: str = Field(
        ...,
        description="The bytes32 argument of the write (0x-prefixed hex)"
    )
    block_timestamp: int = Field(
        ...,
        ge=0,
        description="Block time in epoch seconds"
    )
    transaction_id: str
    block_number: int = 0
    log_index: int = 0


class RawEvent(AnchorLog):
    """An anchor log together with its transaction's call data."""
    raw_call_data: bytes = Field(
        default=b"",
        description="Full transaction input; empty when the fetch failed"
    )


# ============================================================
# Payload types
# ============================================================

class PayloadKind(str, Enum):
    """Outcome of decoding a call-data payload."""
    EMPTY = "empty"                     # Nothing beyond the call prefix
    METADATA = "metadata"               # Structured {"c", "a", "n"} JSON
    STATUS_UPDATE = "status_update"     # STATUS:<STATE>:<digest>:<millis>
    RAW_TEXT = "raw_text"               # Decodable text of unknown shape
    UNPARSEABLE = "unparseable"         # Bytes that are not UTF-8


class PromiseMetadata(BaseModel):
    """
    Structured metadata embedded in a creating write.

    Wire keys are deliberately short: c (content), a (anonymous), n (name).
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    content: str = Field(..., alias="c")
    is_anonymous: bool = Field(default=False, alias="a")
    display_name: Optional[str] = Field(default=None, alias="n")


class StatusUpdatePayload(BaseModel):
    """Parsed STATUS:<STATE>:<digest>:<epochMillis> message."""
    model_config = ConfigDict(frozen=True)

    state: PromiseStatus
    target_digest: str
    claimed_at_ms: int


class DecodedPayload(BaseModel):
    """
    Tagged decode result. Exactly one of the optional fields is set,
    matching the kind (none for EMPTY).
    """
    model_config = ConfigDict(frozen=True)

    kind: PayloadKind
    metadata: Optional[PromiseMetadata] = None
    status_update: Optional[StatusUpdatePayload] = None
    text: Optional[str] = None


# ============================================================
# Classified events
# ============================================================

class Creation(BaseModel):
    """A write that introduces a new promise."""
    model_config = ConfigDict(frozen=True)

    digest: str
    creator_address: str
    block_timestamp: int
    transaction_id: str
    decoded: DecodedPayload


class StatusUpdate(BaseModel):
    """
    A write that moves an existing promise to a new state.

    target_digest is the digest embedded in the status message and is the
    match key. event_digest is the write's own bytes32 argument, which for
    status updates is a per-transaction nonce.
    """
    model_config = ConfigDict(frozen=True)

    creator_address: str
    target_state: PromiseStatus
    target_digest: str
    claimed_at_ms: int
    event_digest: str
    transaction_id: str
    block_timestamp: int = 0


ClassifiedEvent = Union[Creation, StatusUpdate]
