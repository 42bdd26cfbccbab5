# Core promise services: digest, decode, reconcile, verify
from .hasher import Hasher, DigestFormatError
from .codec import (
    ANCHOR_SELECTOR,
    ANCHOR_PREFIX_LENGTH,
    PayloadEncodeError,
    build_call_data,
    decode,
    decode_payload,
    encode_metadata,
    encode_status_update,
)
from .scanner import LogScanner, LogSource, LogSourceError, ScanResult
from .classifier import ClassifiedEvents, classify, classify_all
from .reconciler import (
    ReconcilePolicy,
    UpdateOrder,
    TransitionRule,
    derive_chain_records,
    merge_with_cache,
    reconcile,
)
from .verifier import VerificationResult, find_by_digest, verify
from .sync import ChainSync, SyncConfig, SyncResult, SyncScheduler
from .witness import WitnessReport, WitnessService, HttpWitnessProvider
from .promises import (
    PromiseService,
    PreparedWrite,
    PromiseError,
    ValidationError,
    AuthorizationError,
    RecordNotFoundError,
)

__all__ = [
    "Hasher",
    "DigestFormatError",
    "ANCHOR_SELECTOR",
    "ANCHOR_PREFIX_LENGTH",
    "PayloadEncodeError",
    "build_call_data",
    "decode",
    "decode_payload",
    "encode_metadata",
    "encode_status_update",
    "LogScanner",
    "LogSource",
    "LogSourceError",
    "ScanResult",
    "ClassifiedEvents",
    "classify",
    "classify_all",
    "ReconcilePolicy",
    "UpdateOrder",
    "TransitionRule",
    "derive_chain_records",
    "merge_with_cache",
    "reconcile",
    "VerificationResult",
    "find_by_digest",
    "verify",
    "ChainSync",
    "SyncConfig",
    "SyncResult",
    "SyncScheduler",
    "WitnessReport",
    "WitnessService",
    "HttpWitnessProvider",
    "PromiseService",
    "PreparedWrite",
    "PromiseError",
    "ValidationError",
    "AuthorizationError",
    "RecordNotFoundError",
]
