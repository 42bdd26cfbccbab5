"""
Reconciler

Turns the two classified streams into one record per promise, then merges
that chain-derived set with the locally cached set.

Pure function of its inputs: nothing passed in is mutated, and the same
(creations, updates, local_cache, policy) always yields the same records.

RULES:
- One record per digest. Duplicate creations: earliest block timestamp wins.
- A status update applies only if its embedded digest matches a record AND
  its sender is that record's creator. Anything else is ignored silently;
  the ledger is public and anyone can emit look-alike payloads.
- Default update order is classification order: the LAST APPLIED update
  wins, not the latest claimed_at. UpdateOrder.CLAIMED_AT is available as
  the strict alternative.
- Cache records are authoritative. A chain record is only added when no
  cache record has its digest; it never replaces one.
"""

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional

from ..observability import get_logger
from ..schemas import (
    ANONYMOUS_DISPLAY_NAME,
    Creation,
    PayloadKind,
    PromiseRecord,
    PromiseStatus,
    RecordOrigin,
    StatusUpdate,
)
from .hasher import DigestFormatError, Hasher

logger = get_logger(__name__)


PLACEHOLDER_CONTENT = "Proof anchored on-chain. Original text was not embedded."
UNPARSEABLE_CONTENT = "[Unparseable payload]"


class UpdateOrder(str, Enum):
    """Order in which status updates are applied."""
    CLASSIFIED = "classified"   # As classified; last applied wins
    CLAIMED_AT = "claimed_at"   # Sorted by the claimed timestamp first


class TransitionRule(str, Enum):
    """Which status transitions an update may perform."""
    PERMISSIVE = "permissive"   # Any state may follow any state
    TERMINAL = "terminal"       # Only ACTIVE may transition; finals are final


@dataclass(frozen=True)
class ReconcilePolicy:
    """Reconciliation knobs. Defaults reproduce existing ledger behaviour."""
    update_order: UpdateOrder = UpdateOrder.CLASSIFIED
    transitions: TransitionRule = TransitionRule.PERMISSIVE

    def allows(self, current: PromiseStatus, target: PromiseStatus) -> bool:
        if self.transitions == TransitionRule.TERMINAL:
            return current == PromiseStatus.ACTIVE
        return True

    @classmethod
    def from_env(cls) -> "ReconcilePolicy":
        """
        Load policy from environment variables.

        - BASEPROOFS_UPDATE_ORDER: classified | claimed_at
        - BASEPROOFS_STATUS_TRANSITIONS: permissive | terminal
        """
        order = os.environ.get("BASEPROOFS_UPDATE_ORDER", UpdateOrder.CLASSIFIED.value).lower()
        rule = os.environ.get("BASEPROOFS_STATUS_TRANSITIONS", TransitionRule.PERMISSIVE.value).lower()
        try:
            return cls(update_order=UpdateOrder(order), transitions=TransitionRule(rule))
        except ValueError as e:
            raise ValueError(
                f"Invalid reconcile policy ({e}). "
                f"BASEPROOFS_UPDATE_ORDER: classified, claimed_at; "
                f"BASEPROOFS_STATUS_TRANSITIONS: permissive, terminal"
            ) from e


def _digest_key(digest: str) -> str:
    try:
        return Hasher.normalize_digest(digest)
    except DigestFormatError:
        return digest.lower()


# ============================================================
# Chain records
# ============================================================

def record_from_creation(creation: Creation) -> PromiseRecord:
    """Build a chain-derived record from whatever the payload revealed."""
    decoded = creation.decoded
    address = creation.creator_address
    is_anonymous = False
    display_name = address

    if decoded.kind == PayloadKind.METADATA and decoded.metadata is not None:
        content = decoded.metadata.content
        is_anonymous = decoded.metadata.is_anonymous
        if is_anonymous:
            display_name = ANONYMOUS_DISPLAY_NAME
        elif decoded.metadata.display_name:
            display_name = decoded.metadata.display_name
    elif decoded.kind == PayloadKind.RAW_TEXT and decoded.text is not None:
        content = decoded.text
    elif decoded.kind == PayloadKind.UNPARSEABLE:
        content = UNPARSEABLE_CONTENT
    else:
        content = PLACEHOLDER_CONTENT

    return PromiseRecord(
        id=creation.transaction_id,
        digest=_digest_key(creation.digest),
        content=content,
        revealed=True,
        creator_address=address,
        creator_display_name=display_name,
        is_anonymous=is_anonymous,
        created_at=datetime.fromtimestamp(creation.block_timestamp, tz=timezone.utc),
        status=PromiseStatus.ACTIVE,
        source_tx_id=creation.transaction_id,
        origin=RecordOrigin.CHAIN,
    )


def build_chain_records(creations: Iterable[Creation]) -> dict[str, PromiseRecord]:
    """One record per digest; the earliest creation wins (ties keep input order)."""
    records: dict[str, PromiseRecord] = {}
    for creation in sorted(creations, key=lambda c: c.block_timestamp):
        key = _digest_key(creation.digest)
        if key in records:
            logger.debug(
                "Duplicate creation ignored",
                digest=key,
                tx=creation.transaction_id,
                kept=records[key].id,
            )
            continue
        records[key] = record_from_creation(creation)
    return records


def apply_updates(
    records: dict[str, PromiseRecord],
    updates: Iterable[StatusUpdate],
    policy: ReconcilePolicy,
) -> dict[str, PromiseRecord]:
    """Apply authorized updates. Returns a new mapping; the input is untouched."""
    result = dict(records)

    ordered = list(updates)
    if policy.update_order == UpdateOrder.CLAIMED_AT:
        ordered.sort(key=lambda u: u.claimed_at_ms)

    for update in ordered:
        key = _digest_key(update.target_digest)
        record = result.get(key)
        if record is None:
            logger.debug("Status update for unknown digest ignored", digest=key, tx=update.transaction_id)
            continue
        if not record.is_owned_by(update.creator_address):
            logger.debug(
                "Status update from non-creator ignored",
                digest=key,
                sender=update.creator_address,
                tx=update.transaction_id,
            )
            continue
        if not policy.allows(record.status, update.target_state):
            logger.debug(
                "Status transition refused by policy",
                digest=key,
                current=record.status.value,
                target=update.target_state.value,
            )
            continue
        result[key] = record.with_status(update.target_state)

    return result


# ============================================================
# Merge
# ============================================================

def merge_with_cache(
    chain_records: Iterable[PromiseRecord],
    local_cache: Iterable[PromiseRecord],
) -> tuple[PromiseRecord, ...]:
    """
    Cache first, then every chain record whose digest the cache lacks.

    Duplicate digests inside the cache collapse to the first occurrence.
    """
    merged: list[PromiseRecord] = []
    seen: set[str] = set()

    for record in local_cache:
        key = _digest_key(record.digest)
        if key in seen:
            continue
        seen.add(key)
        merged.append(record)

    for record in chain_records:
        key = _digest_key(record.digest)
        if key in seen:
            continue
        seen.add(key)
        merged.append(record)

    return tuple(merged)


def derive_chain_records(
    creations: Iterable[Creation],
    updates: Iterable[StatusUpdate],
    policy: Optional[ReconcilePolicy] = None,
) -> tuple[PromiseRecord, ...]:
    """Chain-only reconciliation (no cache merge)."""
    policy = policy or ReconcilePolicy()
    records = apply_updates(build_chain_records(creations), updates, policy)
    return tuple(records.values())


def reconcile(
    creations: Iterable[Creation],
    updates: Iterable[StatusUpdate],
    local_cache: Iterable[PromiseRecord],
    policy: Optional[ReconcilePolicy] = None,
) -> tuple[PromiseRecord, ...]:
    """
    Full reconciliation: chain-derived records merged under the local cache.

    Output order is cache order followed by chain records by creation time.
    Callers apply their own sort and filters.
    """
    chain_records = derive_chain_records(creations, updates, policy)
    return merge_with_cache(chain_records, local_cache)
