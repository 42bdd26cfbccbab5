"""
Tests for reconciliation

One record per digest, owner-only updates, cache-first merge.
"""

import os
from datetime import datetime, timezone
from unittest import mock

import pytest

from baseproofs.core import Hasher
from baseproofs.core.reconciler import (
    PLACEHOLDER_CONTENT,
    UNPARSEABLE_CONTENT,
    ReconcilePolicy,
    TransitionRule,
    UpdateOrder,
    derive_chain_records,
    merge_with_cache,
    reconcile,
    record_from_creation,
)
from baseproofs.schemas import (
    Creation,
    DecodedPayload,
    PayloadKind,
    PromiseMetadata,
    PromiseRecord,
    PromiseStatus,
    RecordOrigin,
    StatusUpdate,
)


ALICE = "0x" + "a1" * 20
MALLORY = "0x" + "bb" * 20
CONTENT = "I will ship by Friday"
DIGEST = Hasher.digest(CONTENT)


def creation(
    digest: str = DIGEST,
    creator: str = ALICE,
    timestamp: int = 1_700_000_000,
    tx: str = "0x" + "01" * 32,
    decoded: DecodedPayload = None,
) -> Creation:
    return Creation(
        digest=digest,
        creator_address=creator,
        block_timestamp=timestamp,
        transaction_id=tx,
        decoded=decoded or DecodedPayload(kind=PayloadKind.RAW_TEXT, text=CONTENT),
    )


def update(
    state: PromiseStatus,
    target: str = DIGEST,
    sender: str = ALICE,
    claimed_at_ms: int = 1_700_000_000_000,
    tx: str = "0x" + "09" * 32,
) -> StatusUpdate:
    return StatusUpdate(
        creator_address=sender,
        target_state=state,
        target_digest=target,
        claimed_at_ms=claimed_at_ms,
        event_digest="0x" + "42" * 32,
        transaction_id=tx,
    )


def local_record(digest: str = DIGEST, content: str = CONTENT, status: PromiseStatus = PromiseStatus.ACTIVE) -> PromiseRecord:
    return PromiseRecord(
        id="local-1",
        digest=digest,
        content=content,
        creator_address=ALICE,
        creator_display_name="Ada",
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        status=status,
        origin=RecordOrigin.LOCAL,
        witness_statement="Witnessed.",
        milestones=["one", "two", "three"],
    )


class TestRecordFromCreation:

    def test_raw_text(self):
        record = record_from_creation(creation())
        assert record.content == CONTENT
        assert record.creator_display_name == ALICE
        assert record.status == PromiseStatus.ACTIVE
        assert record.revealed is True
        assert record.origin == RecordOrigin.CHAIN

    def test_id_and_time_come_from_the_transaction(self):
        record = record_from_creation(creation(timestamp=1_700_000_000, tx="0x" + "07" * 32))
        assert record.id == "0x" + "07" * 32
        assert record.source_tx_id == "0x" + "07" * 32
        assert record.created_at == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)

    def test_metadata_with_name(self):
        decoded = DecodedPayload(
            kind=PayloadKind.METADATA,
            metadata=PromiseMetadata(content="Run 5k", is_anonymous=False, display_name="Ada"),
        )
        record = record_from_creation(creation(decoded=decoded))
        assert record.content == "Run 5k"
        assert record.creator_display_name == "Ada"
        assert record.is_anonymous is False

    def test_anonymous_metadata(self):
        decoded = DecodedPayload(
            kind=PayloadKind.METADATA,
            metadata=PromiseMetadata(content="Run 5k", is_anonymous=True, display_name="Ada"),
        )
        record = record_from_creation(creation(decoded=decoded))
        assert record.creator_display_name == "Anonymous"
        assert record.is_anonymous is True
        # Creator address is still the authoritative identity
        assert record.creator_address == ALICE

    def test_metadata_without_name_shows_address(self):
        decoded = DecodedPayload(kind=PayloadKind.METADATA, metadata=PromiseMetadata(content="Run 5k"))
        assert record_from_creation(creation(decoded=decoded)).creator_display_name == ALICE

    def test_empty_payload_gets_placeholder(self):
        record = record_from_creation(creation(decoded=DecodedPayload(kind=PayloadKind.EMPTY)))
        assert record.content == PLACEHOLDER_CONTENT

    def test_unparseable_payload_gets_marker(self):
        record = record_from_creation(creation(decoded=DecodedPayload(kind=PayloadKind.UNPARSEABLE)))
        assert record.content == UNPARSEABLE_CONTENT


class TestChainRecords:

    def test_one_record_per_digest_earliest_wins(self):
        later = creation(timestamp=2_000, tx="0x" + "02" * 32, creator=MALLORY)
        earlier = creation(timestamp=1_000, tx="0x" + "01" * 32)
        records = derive_chain_records([later, earlier], [])
        assert len(records) == 1
        assert records[0].id == "0x" + "01" * 32
        assert records[0].creator_address == ALICE

    def test_owner_update_applies(self):
        records = derive_chain_records([creation()], [update(PromiseStatus.FULFILLED)])
        assert records[0].status == PromiseStatus.FULFILLED

    def test_owner_match_is_case_insensitive(self):
        records = derive_chain_records([creation()], [update(PromiseStatus.VOIDED, sender=ALICE.upper().replace("0X", "0x"))])
        assert records[0].status == PromiseStatus.VOIDED

    def test_update_from_non_creator_ignored(self):
        records = derive_chain_records([creation()], [update(PromiseStatus.VOIDED, sender=MALLORY)])
        assert records[0].status == PromiseStatus.ACTIVE

    def test_update_for_unknown_digest_changes_nothing(self):
        creations = [creation()]
        before = derive_chain_records(creations, [])
        after = derive_chain_records(creations, [update(PromiseStatus.FULFILLED, target=Hasher.digest("other"))])
        assert before == after

    def test_last_applied_wins_regardless_of_claimed_time(self):
        updates = [
            update(PromiseStatus.FULFILLED, claimed_at_ms=2_000, tx="0x" + "0a" * 32),
            update(PromiseStatus.VOIDED, claimed_at_ms=1_000, tx="0x" + "0b" * 32),
        ]
        records = derive_chain_records([creation()], updates)
        assert records[0].status == PromiseStatus.VOIDED

    def test_claimed_at_order_policy(self):
        updates = [
            update(PromiseStatus.FULFILLED, claimed_at_ms=2_000),
            update(PromiseStatus.VOIDED, claimed_at_ms=1_000),
        ]
        policy = ReconcilePolicy(update_order=UpdateOrder.CLAIMED_AT)
        records = derive_chain_records([creation()], updates, policy)
        assert records[0].status == PromiseStatus.FULFILLED

    def test_terminal_policy_keeps_first_final_state(self):
        updates = [update(PromiseStatus.FULFILLED), update(PromiseStatus.VOIDED)]
        policy = ReconcilePolicy(transitions=TransitionRule.TERMINAL)
        records = derive_chain_records([creation()], updates, policy)
        assert records[0].status == PromiseStatus.FULFILLED

    def test_inputs_are_not_mutated(self):
        creations = [creation()]
        updates = [update(PromiseStatus.FULFILLED)]
        derive_chain_records(creations, updates)
        assert creations[0].decoded.text == CONTENT
        assert updates[0].target_state == PromiseStatus.FULFILLED


class TestMerge:

    def test_cache_wins_for_same_digest(self):
        """Rich local content survives a placeholder chain record."""
        placeholder = record_from_creation(creation(decoded=DecodedPayload(kind=PayloadKind.EMPTY)))
        local = local_record(content="Rich local content")

        merged = merge_with_cache([placeholder], [local])

        assert len(merged) == 1
        assert merged[0].content == "Rich local content"
        assert merged[0].witness_statement == "Witnessed."

    def test_cache_status_wins_over_chain_status(self):
        chain = derive_chain_records([creation()], [update(PromiseStatus.VOIDED)])
        merged = merge_with_cache(chain, [local_record(status=PromiseStatus.ACTIVE)])
        assert merged[0].status == PromiseStatus.ACTIVE

    def test_cache_first_then_new_chain_records(self):
        other = creation(digest=Hasher.digest("other"), tx="0x" + "05" * 32)
        chain = derive_chain_records([creation(), other], [])
        merged = merge_with_cache(chain, [local_record()])
        assert [r.origin for r in merged] == [RecordOrigin.LOCAL, RecordOrigin.CHAIN]
        assert merged[1].digest == Hasher.digest("other")

    def test_duplicate_cache_digests_collapse(self):
        merged = merge_with_cache([], [local_record(), local_record(content="dupe")])
        assert len(merged) == 1
        assert merged[0].content == CONTENT

    def test_digest_case_does_not_split_records(self):
        local = local_record(digest=DIGEST.upper().replace("0X", "0x"))
        chain = derive_chain_records([creation()], [])
        assert len(merge_with_cache(chain, [local])) == 1


class TestReconcile:

    def test_idempotent(self):
        creations = [creation(), creation(digest=Hasher.digest("b"), tx="0x" + "06" * 32)]
        updates = [update(PromiseStatus.FULFILLED)]
        cache = [local_record(digest=Hasher.digest("c"))]

        first = reconcile(creations, updates, cache)
        second = reconcile(creations, updates, cache)
        by_digest = lambda r: r.digest
        assert sorted(first, key=by_digest) == sorted(second, key=by_digest)

    def test_empty_inputs(self):
        assert reconcile([], [], []) == ()


class TestPolicyFromEnv:

    def test_defaults(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            policy = ReconcilePolicy.from_env()
        assert policy.update_order == UpdateOrder.CLASSIFIED
        assert policy.transitions == TransitionRule.PERMISSIVE

    def test_overrides(self):
        env = {"BASEPROOFS_UPDATE_ORDER": "claimed_at", "BASEPROOFS_STATUS_TRANSITIONS": "TERMINAL"}
        with mock.patch.dict(os.environ, env, clear=True):
            policy = ReconcilePolicy.from_env()
        assert policy.update_order == UpdateOrder.CLAIMED_AT
        assert policy.transitions == TransitionRule.TERMINAL

    def test_invalid_value(self):
        with mock.patch.dict(os.environ, {"BASEPROOFS_UPDATE_ORDER": "random"}, clear=True):
            with pytest.raises(ValueError):
                ReconcilePolicy.from_env()
