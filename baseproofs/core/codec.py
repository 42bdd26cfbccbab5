"""
Payload Codec

Encodes and decodes the side-channel payload carried by ledger writes.

WIRE LAYOUT (bit-exact, shared with every write already on-chain):

    call_data = selector(anchorProof(bytes32))   4 bytes
              + bytes32 argument                  32 bytes
              + payload                           0..n bytes

Two payload kinds:
- Metadata:      UTF-8 JSON {"c": content, "a": anonymous, "n": name?}
- Status update: ASCII "STATUS:<FULFILLED|VOIDED>:<digest-hex>:<epoch-millis>"

DECODING is best-effort and ordered. Each attempt either returns a
DecodedPayload or None (meaning "not mine, try the next one"):

    1. empty       - nothing beyond the prefix
    2. utf-8       - bytes that do not decode are UNPARSEABLE
    3. status      - the tagged status string
    4. metadata    - the structured JSON record
    5. raw text    - anything else that decoded

decode() never raises.
"""

import json
from typing import Callable, Optional

from eth_utils import keccak
from pydantic import ValidationError as PydanticValidationError

from ..schemas import (
    DecodedPayload,
    PayloadKind,
    PromiseMetadata,
    PromiseStatus,
    StatusUpdatePayload,
)
from .hasher import DigestFormatError, Hasher


ANCHOR_FUNCTION_SIGNATURE = "anchorProof(bytes32)"
ANCHOR_SELECTOR = keccak(text=ANCHOR_FUNCTION_SIGNATURE)[:4]
ANCHOR_ARGUMENT_LENGTH = 32
ANCHOR_PREFIX_LENGTH = len(ANCHOR_SELECTOR) + ANCHOR_ARGUMENT_LENGTH  # 36 bytes

STATUS_TAG = "STATUS"
STATUS_SEPARATOR = ":"

# Only these states can be written as updates. ACTIVE is the initial state.
STATUS_WIRE_STATES = {
    "FULFILLED": PromiseStatus.FULFILLED,
    "VOIDED": PromiseStatus.VOIDED,
}


class PayloadEncodeError(ValueError):
    """Raised when a payload cannot be encoded (bad state or digest)."""
    pass


# ============================================================
# Encoding
# ============================================================

def encode_metadata(metadata: PromiseMetadata) -> bytes:
    """
    Encode creation metadata as compact UTF-8 JSON.

    Key order is c, a, n. "n" is omitted only when display_name is None;
    an empty name is written as "".
    Non-ASCII content is written as raw UTF-8, not \\u escapes.
    """
    record: dict = {"c": metadata.content, "a": metadata.is_anonymous}
    if metadata.display_name is not None:
        record["n"] = metadata.display_name
    return json.dumps(record, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def encode_status_update(state: PromiseStatus, digest: str, claimed_at_ms: int) -> bytes:
    """Encode STATUS:<STATE>:<digest>:<epochMillis> as ASCII."""
    wire_state = next(
        (name for name, value in STATUS_WIRE_STATES.items() if value == state),
        None,
    )
    if wire_state is None:
        raise PayloadEncodeError(
            f"Cannot encode status update to {state.value!r}. "
            f"Valid targets: {', '.join(s.value for s in STATUS_WIRE_STATES.values())}"
        )
    try:
        target = Hasher.normalize_digest(digest)
    except DigestFormatError as e:
        raise PayloadEncodeError(str(e)) from e
    if claimed_at_ms < 0:
        raise PayloadEncodeError("claimed_at_ms must be non-negative")

    message = STATUS_SEPARATOR.join([STATUS_TAG, wire_state, target, str(int(claimed_at_ms))])
    return message.encode("ascii")


def build_call_data(anchor_argument: str, payload: bytes = b"") -> bytes:
    """
    Build the full call data for anchorProof(bytes32) plus a payload.

    Args:
        anchor_argument: 32-byte hex value for the bytes32 argument
        payload: Encoded metadata or status update bytes
    """
    try:
        argument = bytes.fromhex(Hasher.normalize_digest(anchor_argument)[2:])
    except DigestFormatError as e:
        raise PayloadEncodeError(str(e)) from e
    return ANCHOR_SELECTOR + argument + payload


def to_hex(data: bytes) -> str:
    """0x-prefixed hex, the form wallets and RPC endpoints expect."""
    return "0x" + data.hex()


def from_hex(value: str) -> bytes:
    """Inverse of to_hex(). Raises ValueError on non-hex input."""
    body = value[2:] if value[:2].lower() == "0x" else value
    return bytes.fromhex(body)


# ============================================================
# Decoding
# ============================================================

def extract_payload(call_data: bytes) -> bytes:
    """Bytes beyond the selector and argument."""
    return call_data[ANCHOR_PREFIX_LENGTH:]


def try_empty(payload: bytes) -> Optional[DecodedPayload]:
    if len(payload) == 0:
        return DecodedPayload(kind=PayloadKind.EMPTY)
    return None


def try_status_update(text: str) -> Optional[DecodedPayload]:
    """Parse STATUS:<STATE>:<digest>:<millis>. Anything malformed is not a status update."""
    parts = text.split(STATUS_SEPARATOR)
    if len(parts) != 4 or parts[0] != STATUS_TAG:
        return None

    _, wire_state, digest, millis = parts
    state = STATUS_WIRE_STATES.get(wire_state)
    if state is None or not (millis.isascii() and millis.isdigit()):
        return None
    try:
        target = Hasher.normalize_digest(digest)
    except DigestFormatError:
        return None

    return DecodedPayload(
        kind=PayloadKind.STATUS_UPDATE,
        status_update=StatusUpdatePayload(
            state=state,
            target_digest=target,
            claimed_at_ms=int(millis),
        ),
    )


def try_metadata(text: str) -> Optional[DecodedPayload]:
    """Parse the structured {"c", "a", "n"} record."""
    try:
        raw = json.loads(text)
    except ValueError:
        return None
    if not isinstance(raw, dict) or not isinstance(raw.get("c"), str):
        return None
    if "a" in raw and not isinstance(raw["a"], bool):
        return None
    if raw.get("n") is not None and not isinstance(raw["n"], str):
        return None

    try:
        metadata = PromiseMetadata.model_validate(
            {"c": raw["c"], "a": raw.get("a", False), "n": raw.get("n")}
        )
    except PydanticValidationError:
        return None
    return DecodedPayload(kind=PayloadKind.METADATA, metadata=metadata)


def as_raw_text(text: str) -> Optional[DecodedPayload]:
    """Last resort: the decoded bytes are the content."""
    if not text:
        return DecodedPayload(kind=PayloadKind.EMPTY)
    return DecodedPayload(kind=PayloadKind.RAW_TEXT, text=text)


# Ordered text attempts. The first non-None result wins.
TEXT_DECODERS: tuple[Callable[[str], Optional[DecodedPayload]], ...] = (
    try_status_update,
    try_metadata,
    as_raw_text,
)


def decode_payload(payload: bytes) -> DecodedPayload:
    """Decode payload bytes (already stripped of the call prefix)."""
    empty = try_empty(payload)
    if empty is not None:
        return empty

    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError:
        return DecodedPayload(kind=PayloadKind.UNPARSEABLE)

    # ABI-style zero padding after the payload is not content
    text = text.rstrip("\x00")

    for attempt in TEXT_DECODERS:
        result = attempt(text)
        if result is not None:
            return result

    # as_raw_text always returns; kept for completeness of the contract
    return DecodedPayload(kind=PayloadKind.UNPARSEABLE)


def decode(call_data: bytes) -> DecodedPayload:
    """
    Decode the side-channel payload of a full transaction input.

    A call of ANCHOR_PREFIX_LENGTH bytes or fewer carries no payload.
    """
    if len(call_data) <= ANCHOR_PREFIX_LENGTH:
        return DecodedPayload(kind=PayloadKind.EMPTY)
    return decode_payload(extract_payload(call_data))
