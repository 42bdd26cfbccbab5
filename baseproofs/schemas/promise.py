"""
Canonical Promise Schema

A Promise is a piece of committed text whose digest has been anchored
to a public, append-only ledger.

The digest is the identity. Two records with the same digest are the
same promise, no matter where they came from (chain scan or local cache).
Record ids are NOT safe join keys across sources.
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PromiseStatus(str, Enum):
    """
    Current state of a promise.
    Starts ACTIVE. Status updates move it to FULFILLED or VOIDED.
    """
    ACTIVE = "active"
    FULFILLED = "fulfilled"
    VOIDED = "voided"


class PromiseCategory(str, Enum):
    """Free classification chosen by the author. Not anchored on-chain."""
    PERSONAL = "Personal"
    WORK = "Work"
    FINANCIAL = "Financial"
    FITNESS = "Fitness"
    OTHER = "Other"


class RecordOrigin(str, Enum):
    """Where a record was first built."""
    CHAIN = "chain"     # Reconstructed from a classified creation event
    LOCAL = "local"     # Created right after a successful write submission


ANONYMOUS_DISPLAY_NAME = "Anonymous"
DEFAULT_SIGNER_NAME = "Signer"


class PromiseRecord(BaseModel):
    """
    One promise, as currently known.

    Records are immutable values. Status and reveal changes produce a new
    record via model_copy(); content and digest never change.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(
        ...,
        description="Transaction id for chain-derived records, uuid4 for local ones"
    )
    digest: str = Field(
        ...,
        description="0x-prefixed keccak-256 hex digest of the exact content"
    )
    content: str = Field(
        ...,
        description="Plaintext of the promise (or a placeholder when not embedded)"
    )
    revealed: bool = Field(
        default=True,
        description="Display flag only; content is always present once known"
    )

    # Identity
    creator_address: str = Field(
        ...,
        description="Address that submitted the creating transaction (authoritative)"
    )
    creator_display_name: str = Field(
        default=ANONYMOUS_DISPLAY_NAME,
        description="Embedded display name, 'Anonymous', or the address itself"
    )
    is_anonymous: bool = False

    # Time
    created_at: datetime = Field(
        ...,
        description="Chain-supplied time of the creating transaction (UTC)"
    )
    deadline: Optional[date] = Field(
        default=None,
        description="Target date; only known for locally created records"
    )

    status: PromiseStatus = PromiseStatus.ACTIVE
    source_tx_id: Optional[str] = Field(
        default=None,
        description="Transaction that anchored the digest"
    )
    category: PromiseCategory = PromiseCategory.OTHER
    origin: RecordOrigin = RecordOrigin.CHAIN

    # Witness enrichment (non-authoritative)
    witness_statement: Optional[str] = None
    milestones: list[str] = Field(default_factory=list)
    seal_reference: Optional[str] = Field(
        default=None,
        description="Image reference returned by the witness service"
    )

    def is_owned_by(self, address: Optional[str]) -> bool:
        """Addresses compare case-insensitively (checksum casing is cosmetic)."""
        if not address:
            return False
        return self.creator_address.lower() == address.lower()

    def with_status(self, status: PromiseStatus) -> "PromiseRecord":
        return self.model_copy(update={"status": status})

    def with_revealed(self, revealed: bool) -> "PromiseRecord":
        return self.model_copy(update={"revealed": revealed})
