"""
Promise Service

The write side. Prepares the call data a wallet submits to the ledger
contract and keeps the local promise cache in step with what was sent.

RULES:
- The digest covers the exact text given. Trimming is for validation only.
- Only the creator may change a promise's status, and only while it is active.
- Status changes are themselves anchored: set_status() returns the write
  that publishes STATUS:<STATE>:<digest>:<millis> to the ledger.
- The cache is read and stored wholesale, one operation at a time.
- Recording a digest that is already cached returns the cached record.
- Chain-derived promises are adopted into the cache on their first
  local change, keeping their chain id.

Lifecycle of a new promise:

    write = service.prepare_anchor(content)          # digest + call data
    tx_id = <wallet submits write.call_data>
    record = service.record_anchored(content, sender, tx_id, ...)

or, when the service owns a submitter, anchor_promise() does all three.
"""

import secrets
import threading
import time
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Callable, Iterable, Optional, Protocol
from uuid import uuid4

from eth_utils import is_address

from ..observability import get_logger
from ..schemas import (
    ANONYMOUS_DISPLAY_NAME,
    DEFAULT_SIGNER_NAME,
    PromiseCategory,
    PromiseMetadata,
    PromiseRecord,
    PromiseStatus,
    RecordOrigin,
)
from .codec import build_call_data, encode_metadata, encode_status_update, to_hex
from .hasher import Hasher
from .witness import WitnessService

if TYPE_CHECKING:
    from ..db.cache import PromiseCache

logger = get_logger(__name__)


# ============================================================
# Exceptions
# ============================================================

class PromiseError(Exception):
    """Base exception for promise operations."""
    pass


class ValidationError(PromiseError):
    """Raised when input is rejected before anything is written."""
    pass


class AuthorizationError(PromiseError):
    """Raised when the sender may not perform the operation."""
    pass


class RecordNotFoundError(PromiseError):
    """Raised when no cached or chain-derived record has the given id."""
    pass


# ============================================================
# Writes
# ============================================================

@dataclass(frozen=True)
class PreparedWrite:
    """
    A ready-to-send anchorProof call.

    anchor_argument is the bytes32 argument: the promise digest for
    creations, a random nonce for status updates.
    """
    anchor_argument: str
    call_data: bytes

    @property
    def call_data_hex(self) -> str:
        return to_hex(self.call_data)

    def to_dict(self) -> dict:
        return {"anchor_argument": self.anchor_argument, "call_data": self.call_data_hex}


class PayloadSubmitter(Protocol):
    def submit(self, call_data: bytes, sender: str) -> str:
        """Send the call data as `sender`. Returns the transaction id."""
        ...


# ============================================================
# Service
# ============================================================

class PromiseService:
    """
    Creates promises and changes their local state.

    Args:
        cache: Local promise cache (read and stored wholesale)
        witness: Enrichment for new promises (fallback-only if None)
        submitter: Optional ledger writer for anchor_promise()
        chain_records: Returns the current chain-derived records, so
            promises seen only on chain can be changed locally
    """

    def __init__(
        self,
        cache: "PromiseCache",
        witness: Optional[WitnessService] = None,
        submitter: Optional[PayloadSubmitter] = None,
        chain_records: Optional[Callable[[], Iterable[PromiseRecord]]] = None,
    ):
        self._cache = cache
        self._witness = witness or WitnessService()
        self._submitter = submitter
        self._chain_records = chain_records or (lambda: ())
        self._lock = threading.Lock()

    @property
    def cache(self) -> "PromiseCache":
        return self._cache

    # ================================================================
    # Creation
    # ================================================================

    def prepare_anchor(
        self,
        content: str,
        is_anonymous: bool = False,
        display_name: Optional[str] = None,
    ) -> PreparedWrite:
        """
        Build the creation write for `content`.

        Raises:
            ValidationError: If content is empty or whitespace
        """
        self._validate_content(content)

        digest = Hasher.digest(content)
        payload = encode_metadata(
            PromiseMetadata(
                content=content,
                is_anonymous=is_anonymous,
                display_name=(display_name or None) if not is_anonymous else None,
            )
        )
        return PreparedWrite(anchor_argument=digest, call_data=build_call_data(digest, payload))

    def record_anchored(
        self,
        content: str,
        creator_address: str,
        tx_id: str,
        deadline: Optional[date] = None,
        display_name: Optional[str] = None,
        is_anonymous: bool = False,
        category: PromiseCategory = PromiseCategory.OTHER,
        created_at: Optional[datetime] = None,
    ) -> PromiseRecord:
        """
        Record a promise whose creation write has been submitted.

        The record lands in the cache as active and revealed. Its display
        name is "Anonymous" for anonymous promises, otherwise the given
        name, otherwise "Signer". If the digest is already cached, the
        cached record is returned unchanged.

        Raises:
            ValidationError: If content, address or transaction id is malformed
        """
        self._validate_content(content)
        self._validate_address(creator_address)
        if not Hasher.is_digest(tx_id):
            raise ValidationError(f"Invalid transaction id: {tx_id!r}")

        digest = Hasher.digest(content)
        existing = self._cached_by_digest(self._cache.load(), digest)
        if existing is not None:
            return self._already_recorded(existing, tx_id)

        report = self._witness.witness(content)

        if is_anonymous:
            creator_name = ANONYMOUS_DISPLAY_NAME
        else:
            creator_name = display_name or DEFAULT_SIGNER_NAME

        record = PromiseRecord(
            id=str(uuid4()),
            digest=digest,
            content=content,
            revealed=True,
            creator_address=creator_address,
            creator_display_name=creator_name,
            is_anonymous=is_anonymous,
            created_at=created_at or datetime.now(timezone.utc),
            deadline=deadline,
            status=PromiseStatus.ACTIVE,
            source_tx_id=Hasher.normalize_digest(tx_id),
            category=category,
            origin=RecordOrigin.LOCAL,
            witness_statement=report.statement,
            milestones=list(report.milestones),
            seal_reference=report.seal_reference,
        )

        with self._lock:
            records = tuple(self._cache.load())
            # Another request may have recorded it while the witness ran
            existing = self._cached_by_digest(records, digest)
            if existing is not None:
                return self._already_recorded(existing, tx_id)
            self._cache.store((record,) + records)

        logger.info(
            "Promise recorded",
            record_id=record.id,
            digest=Hasher.shorten(record.digest),
            tx=record.source_tx_id,
        )
        return record

    def anchor_promise(
        self,
        content: str,
        sender: str,
        deadline: Optional[date] = None,
        display_name: Optional[str] = None,
        is_anonymous: bool = False,
        category: PromiseCategory = PromiseCategory.OTHER,
    ) -> PromiseRecord:
        """
        Prepare, submit and record in one step.

        Raises:
            PromiseError: If the service has no submitter
            ValidationError: On malformed input
        """
        if self._submitter is None:
            raise PromiseError("No ledger submitter configured")
        self._validate_address(sender)

        write = self.prepare_anchor(content, is_anonymous=is_anonymous, display_name=display_name)
        tx_id = self._submitter.submit(write.call_data, sender)

        return self.record_anchored(
            content,
            creator_address=sender,
            tx_id=tx_id,
            deadline=deadline,
            display_name=display_name,
            is_anonymous=is_anonymous,
            category=category,
        )

    # ================================================================
    # Local state changes
    # ================================================================

    def set_status(
        self,
        record_id: str,
        status: PromiseStatus,
        sender: str,
        claimed_at_ms: Optional[int] = None,
    ) -> tuple[PromiseRecord, PreparedWrite]:
        """
        Mark a promise fulfilled or voided.

        Returns the updated record and the status-update write to publish.

        Raises:
            RecordNotFoundError: If neither the cache nor the chain has this id
            AuthorizationError: If sender is not the creator
            ValidationError: If the promise is no longer active, or the
                target status is not fulfilled or voided
        """
        if status == PromiseStatus.ACTIVE:
            raise ValidationError("Status can only move to fulfilled or voided")
        if claimed_at_ms is None:
            claimed_at_ms = int(time.time() * 1000)

        with self._lock:
            records = list(self._cache.load())
            index = self._locate(records, record_id)
            current = records[index]

            if not current.is_owned_by(sender):
                raise AuthorizationError(f"Only the creator may change promise {record_id}")
            if current.status != PromiseStatus.ACTIVE:
                raise ValidationError(
                    f"Promise {record_id} is already {current.status.value}"
                )

            updated = current.with_status(status)
            records[index] = updated
            self._cache.store(tuple(records))

        nonce = "0x" + secrets.token_bytes(32).hex()
        write = PreparedWrite(
            anchor_argument=nonce,
            call_data=build_call_data(
                nonce,
                encode_status_update(status, updated.digest, claimed_at_ms),
            ),
        )

        logger.info(
            "Promise status changed",
            record_id=record_id,
            digest=Hasher.shorten(updated.digest),
            status=status.value,
        )
        return updated, write

    def toggle_reveal(self, record_id: str) -> PromiseRecord:
        """
        Flip the display flag. Content is unaffected.

        Raises:
            RecordNotFoundError: If neither the cache nor the chain has this id
        """
        with self._lock:
            records = list(self._cache.load())
            index = self._locate(records, record_id)
            updated = records[index].with_revealed(not records[index].revealed)
            records[index] = updated
            self._cache.store(tuple(records))
        return updated

    # ================================================================
    # Helpers
    # ================================================================

    def _locate(self, records: list[PromiseRecord], record_id: str) -> int:
        """
        Index of `record_id` in `records`.

        A chain-derived record is looked up in the current chain snapshot
        and appended to `records` unless its digest is already cached.
        """
        for i, record in enumerate(records):
            if record.id == record_id:
                return i

        chain_record = next((r for r in self._chain_records() if r.id == record_id), None)
        if chain_record is None:
            raise RecordNotFoundError(f"Promise {record_id} not found")

        for i, record in enumerate(records):
            if record.digest == chain_record.digest:
                return i

        records.append(chain_record)
        logger.info(
            "Adopting chain promise into cache",
            record_id=record_id,
            digest=Hasher.shorten(chain_record.digest),
        )
        return len(records) - 1

    @staticmethod
    def _cached_by_digest(records: Iterable[PromiseRecord], digest: str) -> Optional[PromiseRecord]:
        for record in records:
            if record.digest == digest:
                return record
        return None

    @staticmethod
    def _already_recorded(existing: PromiseRecord, tx_id: str) -> PromiseRecord:
        logger.info(
            "Promise already recorded",
            record_id=existing.id,
            digest=Hasher.shorten(existing.digest),
            tx=tx_id,
        )
        return existing

    @staticmethod
    def _validate_content(content: str) -> None:
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Promise content must not be empty")

    @staticmethod
    def _validate_address(address: str) -> None:
        if not isinstance(address, str) or not is_address(address):
            raise ValidationError(f"Invalid address: {address!r}")
