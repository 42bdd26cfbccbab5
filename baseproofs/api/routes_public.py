"""
Public API Routes

Read endpoints for the promise wall and the integrity checker, plus the
write-side helpers a wallet client needs:

Queries:
- GET  /api/promises                     - Merged view (search, category, status, owner, sort)
- GET  /api/promises/{id}                - One promise
- GET  /api/promises/by-digest/{digest}  - Lookup by digest
- GET  /api/stats                        - Wall counts and integrity percentage
- POST /api/verify                       - Does this text match an anchored promise?
- GET  /api/sync                         - Chain sync status

Commands:
- POST /api/payloads                     - Build creation call data for a wallet
- POST /api/promises                     - Record a submitted promise
- POST /api/promises/{id}/status         - Fulfil or void (returns the status write)
- POST /api/promises/{id}/reveal         - Toggle the display flag
- POST /api/sync                         - Rescan the ledger now
"""

from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from ..core import (
    AuthorizationError,
    DigestFormatError,
    PromiseError,
    RecordNotFoundError,
    ValidationError,
    find_by_digest,
    verify,
)
from ..core.projector import SortOrder, query, stats
from ..schemas import PromiseCategory, PromiseRecord, PromiseStatus


router = APIRouter(prefix="/api", tags=["Promises"])


# Default cache for public read endpoints (30 seconds)
CACHE_CONTROL_PUBLIC = "public, max-age=30"


# ============================================================
# Request/Response Models
# ============================================================

class VerifyRequest(BaseModel):
    """Candidate text, digested exactly as given."""
    text: str


class PayloadRequest(BaseModel):
    content: str
    is_anonymous: bool = False
    display_name: Optional[str] = None


class PayloadResponse(BaseModel):
    digest: str
    call_data: str


class RecordPromiseRequest(BaseModel):
    """A promise whose creation write the wallet has already submitted."""
    content: str
    creator_address: str
    tx_id: str
    deadline: Optional[date] = None
    display_name: Optional[str] = None
    is_anonymous: bool = False
    category: PromiseCategory = PromiseCategory.OTHER


class StatusRequest(BaseModel):
    status: PromiseStatus
    sender: str
    claimed_at_ms: Optional[int] = Field(default=None, ge=0)


class StatusResponse(BaseModel):
    promise: PromiseRecord
    anchor_argument: str
    call_data: str


class PromiseDetail(BaseModel):
    promise: PromiseRecord
    explorer_url: Optional[str] = None


class SyncResponse(BaseModel):
    fresh: bool
    synced_at: str
    error: Optional[str] = None
    promise_count: int
    chain_promise_count: int
    partial: bool = False


# ============================================================
# Helper Functions
# ============================================================

def get_runtime(request: Request):
    """Get runtime from app state."""
    return request.app.state.runtime


def merged_records(request: Request) -> tuple[PromiseRecord, ...]:
    """Cache records over the last chain snapshot. No scan."""
    runtime = get_runtime(request)
    return runtime.sync.snapshot(runtime.cache.load())


def http_error(e: PromiseError) -> HTTPException:
    if isinstance(e, RecordNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, AuthorizationError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    if isinstance(e, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


def _record_json(record: PromiseRecord) -> dict[str, Any]:
    return record.model_dump(mode="json")


# ============================================================
# Query Endpoints
# ============================================================

@router.get("/promises")
async def list_promises(
    request: Request,
    search: Optional[str] = None,
    category: Optional[PromiseCategory] = None,
    status: Optional[PromiseStatus] = None,
    owner: Optional[str] = None,
    sort: SortOrder = SortOrder.NEWEST,
):
    """
    List promises from the merged view (local cache first, then chain).
    """
    records = query(
        merged_records(request),
        search=search,
        category=category,
        status=status,
        owner=owner,
        sort=sort,
    )
    return JSONResponse(
        content={"promises": [_record_json(r) for r in records], "count": len(records)},
        headers={"Cache-Control": CACHE_CONTROL_PUBLIC},
    )


@router.get("/promises/by-digest/{digest}", response_model=PromiseDetail)
async def get_promise_by_digest(request: Request, digest: str):
    try:
        record = find_by_digest(digest, merged_records(request))
    except DigestFormatError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if record is None:
        raise HTTPException(status_code=404, detail="Promise not found")
    return _detail(request, record)


@router.get("/promises/{record_id}", response_model=PromiseDetail)
async def get_promise(request: Request, record_id: str):
    record = next((r for r in merged_records(request) if r.id == record_id), None)
    if record is None:
        raise HTTPException(status_code=404, detail="Promise not found")
    return _detail(request, record)


def _detail(request: Request, record: PromiseRecord) -> PromiseDetail:
    config = get_runtime(request).chain_config
    explorer_url = config.explorer_tx_url(record.source_tx_id) if record.source_tx_id else None
    return PromiseDetail(promise=record, explorer_url=explorer_url)


@router.get("/stats")
async def get_stats(request: Request, owner: Optional[str] = None):
    """Counts by status; integrity is the fulfilled percentage."""
    records = merged_records(request)
    if owner:
        records = query(records, owner=owner)
    return JSONResponse(
        content=stats(records).to_dict(),
        headers={"Cache-Control": CACHE_CONTROL_PUBLIC},
    )


@router.post("/verify")
async def verify_text(request: Request, body: VerifyRequest):
    """
    Integrity check. A single differing character means no match.
    A non-match is a normal 200 response.
    """
    return verify(body.text, merged_records(request)).to_dict()


@router.get("/sync")
async def sync_status(request: Request):
    return get_runtime(request).sync.status()


# ============================================================
# Command Endpoints
# ============================================================

@router.post("/payloads", response_model=PayloadResponse)
async def prepare_payload(request: Request, body: PayloadRequest):
    """
    Build anchorProof call data for a new promise. Nothing is stored.
    """
    try:
        write = get_runtime(request).promises.prepare_anchor(
            body.content,
            is_anonymous=body.is_anonymous,
            display_name=body.display_name,
        )
    except PromiseError as e:
        raise http_error(e)

    return PayloadResponse(digest=write.anchor_argument, call_data=write.call_data_hex)


@router.post("/promises", response_model=PromiseRecord, status_code=status.HTTP_201_CREATED)
async def record_promise(request: Request, body: RecordPromiseRequest):
    """
    Record a promise after its creation write was submitted.
    """
    promises = get_runtime(request).promises
    try:
        return await run_in_threadpool(
            promises.record_anchored,
            body.content,
            body.creator_address,
            body.tx_id,
            body.deadline,
            body.display_name,
            body.is_anonymous,
            body.category,
        )
    except PromiseError as e:
        raise http_error(e)


@router.post("/promises/{record_id}/status", response_model=StatusResponse)
async def change_status(request: Request, record_id: str, body: StatusRequest):
    """
    Mark a promise fulfilled or voided. Creator only, active promises only.

    Returns the status-update call data the creator must submit so the
    change is anchored.
    """
    try:
        record, write = get_runtime(request).promises.set_status(
            record_id,
            body.status,
            body.sender,
            claimed_at_ms=body.claimed_at_ms,
        )
    except PromiseError as e:
        raise http_error(e)

    return StatusResponse(
        promise=record,
        anchor_argument=write.anchor_argument,
        call_data=write.call_data_hex,
    )


@router.post("/promises/{record_id}/reveal", response_model=PromiseRecord)
async def toggle_reveal(request: Request, record_id: str):
    try:
        return get_runtime(request).promises.toggle_reveal(record_id)
    except PromiseError as e:
        raise http_error(e)


@router.post("/sync", response_model=SyncResponse)
async def trigger_sync(request: Request):
    """
    Rescan the ledger now. Chain trouble is reported, never raised:
    fresh=false means the previous chain view is still in use.
    """
    runtime = get_runtime(request)
    result = await run_in_threadpool(runtime.sync.refresh, runtime.cache.load())

    return SyncResponse(
        fresh=result.fresh,
        synced_at=result.synced_at.isoformat(),
        error=result.error,
        promise_count=len(result.records),
        chain_promise_count=len(result.chain_records),
        partial=bool(result.scan and result.scan.partial),
    )
