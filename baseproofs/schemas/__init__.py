# Canonical Schemas for the Promise Ledger
# Promise records and the chain events they are reconstructed from.

from .promise import (
    PromiseRecord,
    PromiseStatus,
    PromiseCategory,
    RecordOrigin,
    ANONYMOUS_DISPLAY_NAME,
    DEFAULT_SIGNER_NAME,
)
from .events import (
    AnchorLog,
    RawEvent,
    PayloadKind,
    PromiseMetadata,
    StatusUpdatePayload,
    DecodedPayload,
    Creation,
    StatusUpdate,
    ClassifiedEvent,
)

__all__ = [
    # Promise
    "PromiseRecord",
    "PromiseStatus",
    "PromiseCategory",
    "RecordOrigin",
    "ANONYMOUS_DISPLAY_NAME",
    "DEFAULT_SIGNER_NAME",
    # Events
    "AnchorLog",
    "RawEvent",
    "PayloadKind",
    "PromiseMetadata",
    "StatusUpdatePayload",
    "DecodedPayload",
    "Creation",
    "StatusUpdate",
    "ClassifiedEvent",
]
