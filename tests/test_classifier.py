"""
Tests for event classification

Every raw event becomes exactly one Creation or StatusUpdate.
"""

from baseproofs.core import Hasher, build_call_data, classify, classify_all, encode_metadata, encode_status_update
from baseproofs.schemas import Creation, PayloadKind, PromiseMetadata, PromiseStatus, RawEvent, StatusUpdate


ALICE = "0x" + "a1" * 20
DIGEST = Hasher.digest("Read 12 books this year")
NONCE = "0x" + "42" * 32


def raw_event(argument: str, payload: bytes = b"", tx: str = "0x" + "01" * 32, timestamp: int = 1_700_000_000) -> RawEvent:
    call_data = build_call_data(argument, payload)
    return RawEvent(
        creator_address=ALICE,
        digest=argument,
        block_timestamp=timestamp,
        transaction_id=tx,
        raw_call_data=call_data,
    )


class TestClassify:

    def test_metadata_payload_is_creation(self):
        event = raw_event(DIGEST, encode_metadata(PromiseMetadata(content="Read 12 books this year")))
        result = classify(event)
        assert isinstance(result, Creation)
        assert result.digest == DIGEST
        assert result.decoded.kind == PayloadKind.METADATA

    def test_empty_payload_is_creation(self):
        result = classify(raw_event(DIGEST))
        assert isinstance(result, Creation)
        assert result.decoded.kind == PayloadKind.EMPTY

    def test_failed_fetch_is_creation(self):
        event = RawEvent(
            creator_address=ALICE,
            digest=DIGEST,
            block_timestamp=1,
            transaction_id="0x" + "02" * 32,
            raw_call_data=b"",
        )
        result = classify(event)
        assert isinstance(result, Creation)
        assert result.decoded.kind == PayloadKind.EMPTY

    def test_status_payload_is_update(self):
        payload = encode_status_update(PromiseStatus.FULFILLED, DIGEST, 1700000000000)
        result = classify(raw_event(NONCE, payload))
        assert isinstance(result, StatusUpdate)
        assert result.target_digest == DIGEST
        assert result.event_digest == NONCE
        assert result.target_state == PromiseStatus.FULFILLED
        assert result.claimed_at_ms == 1700000000000
        assert result.creator_address == ALICE

    def test_event_digest_is_normalized(self):
        result = classify(raw_event(DIGEST.upper().replace("0X", "0x")))
        assert result.digest == DIGEST

    def test_unparseable_payload_is_creation(self):
        result = classify(raw_event(DIGEST, b"\xff\xff"))
        assert isinstance(result, Creation)
        assert result.decoded.kind == PayloadKind.UNPARSEABLE


class TestClassifyAll:

    def test_splits_streams_in_input_order(self):
        events = [
            raw_event(DIGEST, b"first", tx="0x" + "01" * 32),
            raw_event(NONCE, encode_status_update(PromiseStatus.FULFILLED, DIGEST, 1), tx="0x" + "02" * 32),
            raw_event(Hasher.digest("second"), b"second", tx="0x" + "03" * 32),
            raw_event("0x" + "43" * 32, encode_status_update(PromiseStatus.VOIDED, DIGEST, 2), tx="0x" + "04" * 32),
        ]
        result = classify_all(events)

        assert [c.transaction_id for c in result.creations] == ["0x" + "01" * 32, "0x" + "03" * 32]
        assert [u.target_state for u in result.updates] == [PromiseStatus.FULFILLED, PromiseStatus.VOIDED]

    def test_empty_input(self):
        result = classify_all([])
        assert result.creations == ()
        assert result.updates == ()
