"""
Witness Service

Enriches a new promise with a short witness statement, three milestones
and an optional seal image reference, produced by an external provider.

RULES:
- Enrichment is decoration. It never blocks a write.
- Any provider failure (or no provider at all) yields the fixed fallback.
- Nothing produced here is anchored or hashed.

CONFIGURATION:
- BASEPROOFS_WITNESS_URL: Provider endpoint (unset = fallback only)
- BASEPROOFS_WITNESS_TIMEOUT_SECONDS: Request timeout (default: 10)

Provider contract:
    POST <url> {"promise": "<content>"}
    200 {"statement": "...", "milestones": ["...", "...", "..."], "seal": "https://..."}
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional, Protocol

import httpx


logger = logging.getLogger(__name__)


FALLBACK_STATEMENT = "Your word is recorded in the silence of the ledger."
FALLBACK_MILESTONES = ("Initiate commitment", "Maintain integrity", "Complete objective")


@dataclass(frozen=True)
class WitnessReport:
    statement: str
    milestones: tuple[str, ...] = field(default_factory=tuple)
    seal_reference: Optional[str] = None

    @classmethod
    def fallback(cls) -> "WitnessReport":
        return cls(statement=FALLBACK_STATEMENT, milestones=FALLBACK_MILESTONES)


class WitnessProvider(Protocol):
    def witness(self, content: str) -> WitnessReport:
        """Return a report or raise."""
        ...


class HttpWitnessProvider:
    """Witness provider behind an HTTP endpoint."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self._url = url
        self._client = client or httpx.Client(timeout=timeout)

    @classmethod
    def from_env(cls) -> Optional["HttpWitnessProvider"]:
        url = os.environ.get("BASEPROOFS_WITNESS_URL")
        if not url:
            return None
        timeout = float(os.environ.get("BASEPROOFS_WITNESS_TIMEOUT_SECONDS", "10"))
        return cls(url, timeout=timeout)

    def witness(self, content: str) -> WitnessReport:
        response = self._client.post(self._url, json={"promise": content})
        response.raise_for_status()
        body = response.json()

        statement = body.get("statement")
        milestones = body.get("milestones")
        if not isinstance(statement, str) or not statement.strip():
            raise ValueError("Witness response missing statement")
        if not isinstance(milestones, list) or not all(isinstance(m, str) for m in milestones):
            raise ValueError("Witness response milestones must be a list of strings")

        seal = body.get("seal")
        return WitnessReport(
            statement=statement,
            milestones=tuple(milestones),
            seal_reference=seal if isinstance(seal, str) and seal else None,
        )

    def close(self) -> None:
        self._client.close()


class WitnessService:
    """Provider call with fallback. Never raises."""

    def __init__(self, provider: Optional[WitnessProvider] = None):
        self._provider = provider

    @property
    def has_provider(self) -> bool:
        return self._provider is not None

    def witness(self, content: str) -> WitnessReport:
        if self._provider is None:
            return WitnessReport.fallback()

        try:
            return self._provider.witness(content)
        except Exception as e:
            logger.warning(f"Witness provider failed, using fallback: {e}")
            return WitnessReport.fallback()
