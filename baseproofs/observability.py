"""
Observability

Logging, request tracing, in-process counters and the health report.

Every log call goes through get_logger(), whose keyword arguments end up
as fields on the record: JSON output carries them as keys, text output
appends them as key=value pairs. Requests get an id (taken from
X-Request-ID when the caller sends one) that is stamped on every line
logged while the request runs.

Configuration:
- BASEPROOFS_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
- BASEPROOFS_LOG_FORMAT: json or text (default: json when BASEPROOFS_PRODUCTION is set)
- BASEPROOFS_PRODUCTION: Production mode

Usage:
    logger = get_logger(__name__)
    logger.info("Scan complete", matched=12, fetch_failures=0)
"""

import json
import logging
import os
import sys
import time
import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

request_id_var: ContextVar[str] = ContextVar("request_id", default="")


# ============================================================
# CONFIGURATION
# ============================================================

def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").lower() in ("1", "true", "yes")


def _log_level() -> int:
    level = logging.getLevelName(os.environ.get("BASEPROOFS_LOG_LEVEL", "INFO").upper())
    # getLevelName returns a "Level X" string for unknown names
    return level if isinstance(level, int) else logging.INFO


def _json_output() -> bool:
    fmt = os.environ.get("BASEPROOFS_LOG_FORMAT", "").lower()
    if fmt in ("json", "text"):
        return fmt == "json"
    return _env_flag("BASEPROOFS_PRODUCTION")


# ============================================================
# FORMATTERS
# ============================================================

# Attributes every LogRecord has; anything else came from a caller's fields
_RECORD_ATTRIBUTES = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
}


def _fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRIBUTES and not key.startswith("_")
    }


def _record_time(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


class StructuredFormatter(logging.Formatter):
    """One JSON object per line: time, level, logger, message, request id, fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": _record_time(record).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if request_id_var.get():
            entry["request_id"] = request_id_var.get()
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        for key, value in _fields(record).items():
            entry[key] = value

        # Values json can't encode fall back to their str()
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Single-line output for local runs."""

    def format(self, record: logging.LogRecord) -> str:
        parts = [
            _record_time(record).strftime("%Y-%m-%d %H:%M:%S"),
            f"{record.levelname:8}",
        ]
        if request_id_var.get():
            parts.append(f"[{request_id_var.get()[:8]}]")
        parts.append(f"{record.name}: {record.getMessage()}")
        parts.extend(f"{key}={value}" for key, value in _fields(record).items())

        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


# ============================================================
# LOGGERS
# ============================================================

_LOGGING_KWARGS = ("exc_info", "stack_info", "stacklevel", "extra")


class ContextLogger(logging.LoggerAdapter):
    """Turns arbitrary keyword arguments into record fields."""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        fields = dict(kwargs.pop("extra", None) or {})
        for key in [k for k in kwargs if k not in _LOGGING_KWARGS]:
            fields[key] = kwargs.pop(key)
        kwargs["extra"] = fields
        return msg, kwargs


def get_logger(name: str) -> ContextLogger:
    return ContextLogger(logging.getLogger(name), {})


def setup_logging() -> None:
    """Install the stdout handler on the root logger. Replaces existing handlers."""
    level = _log_level()
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(StructuredFormatter() if _json_output() else TextFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)

    for chatty in ("uvicorn.access", "httpx", "web3"):
        logging.getLogger(chatty).setLevel(logging.WARNING)


# ============================================================
# REQUEST CONTEXT MIDDLEWARE
# ============================================================

class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id, echoes it back and logs the outcome."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        token = request_id_var.set(request_id)
        logger = get_logger("baseproofs.request")
        route = f"{request.method} {request.url.path}"
        started = time.perf_counter()

        logger.debug(
            route,
            method=request.method,
            path=request.url.path,
            query=str(request.query_params) or None,
            client_ip=request.client.host if request.client else None,
        )

        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Request-ID"] = request_id
            return response
        except Exception as e:
            logger.exception(f"{route} failed", method=request.method, path=request.url.path, error=str(e))
            raise
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000
            get_metrics().record_request(elapsed_ms, success=status_code < 500)
            logger.log(
                logging.INFO if status_code < 400 else logging.WARNING,
                f"{route} -> {status_code}",
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_ms=round(elapsed_ms, 2),
            )
            request_id_var.reset(token)


# ============================================================
# METRICS
# ============================================================

_MAX_SAMPLES = 1000


def _percentile(samples: list, p: float) -> Optional[float]:
    if not samples:
        return None
    ordered = sorted(samples)
    return ordered[min(int(len(ordered) * p), len(ordered) - 1)]


@dataclass
class MetricsCollector:
    """Process-local counters and recent latency samples, served at /metrics."""

    scans_total: int = 0
    scans_failed: int = 0
    fetch_failures: int = 0
    syncs_total: int = 0
    syncs_stale: int = 0
    verifications_total: int = 0
    verifications_matched: int = 0
    requests_total: int = 0
    requests_failed: int = 0

    sync_latencies_ms: list = field(default_factory=list)
    request_latencies_ms: list = field(default_factory=list)

    @staticmethod
    def _sample(samples: list, value: float) -> None:
        samples.append(value)
        del samples[:-_MAX_SAMPLES]

    def record_scan(self, failed: bool = False, fetch_failures: int = 0) -> None:
        self.scans_total += 1
        if failed:
            self.scans_failed += 1
        self.fetch_failures += fetch_failures

    def record_verification(self, matched: bool) -> None:
        self.verifications_total += 1
        if matched:
            self.verifications_matched += 1

    def record_sync(self, latency_ms: float, fresh: bool) -> None:
        self.syncs_total += 1
        if not fresh:
            self.syncs_stale += 1
        self._sample(self.sync_latencies_ms, latency_ms)

    def record_request(self, latency_ms: float, success: bool) -> None:
        self.requests_total += 1
        if not success:
            self.requests_failed += 1
        self._sample(self.request_latencies_ms, latency_ms)

    def get_summary(self) -> Dict[str, Any]:
        counters = {
            name: getattr(self, name)
            for name in (
                "scans_total", "scans_failed", "fetch_failures",
                "syncs_total", "syncs_stale",
                "verifications_total", "verifications_matched",
                "requests_total", "requests_failed",
            )
        }
        return {
            **counters,
            "sync_latency_p50_ms": _percentile(self.sync_latencies_ms, 0.5),
            "sync_latency_p95_ms": _percentile(self.sync_latencies_ms, 0.95),
            "request_latency_p50_ms": _percentile(self.request_latencies_ms, 0.5),
            "request_latency_p95_ms": _percentile(self.request_latencies_ms, 0.95),
        }


_metrics = MetricsCollector()


def get_metrics() -> MetricsCollector:
    return _metrics


# ============================================================
# HEALTH CHECKS
# ============================================================

@dataclass
class HealthStatus:
    healthy: bool
    checks: Dict[str, Dict[str, Any]]
    duration_ms: float


def check_health(cache=None, sync=None) -> HealthStatus:
    """
    Report on the cache and the chain view.

    Only an unreadable cache makes the service unhealthy. A chain view
    that failed its last refresh shows as "degraded": cached promises are
    still served while the ledger is unreachable.
    """
    started = time.perf_counter()
    checks: Dict[str, Dict[str, Any]] = {"liveness": {"status": "healthy"}}
    healthy = True

    if cache is not None:
        try:
            checks["cache"] = {
                "status": "healthy",
                "backend": type(cache).__name__,
                "record_count": len(cache.load()),
            }
        except Exception as e:
            checks["cache"] = {"status": "unhealthy", "error": str(e)}
            healthy = False

    if sync is not None:
        status = sync.status()
        checks["chain_sync"] = {
            "status": "healthy" if status.get("last_fresh", True) else "degraded",
            **status,
        }

    return HealthStatus(
        healthy=healthy,
        checks=checks,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )
