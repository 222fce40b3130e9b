"""Signal type definitions for harvester observability."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SignalType(str, Enum):
    """All signal types emitted by a Harvester."""

    RETRY_ATTEMPT = "RETRY_ATTEMPT"
    RATE_LIMITED = "RATE_LIMITED"
    EXTRACTION_COMPLETE = "EXTRACTION_COMPLETE"
    OPERATION_FAILED = "OPERATION_FAILED"
    BATCH_PROGRESS = "BATCH_PROGRESS"
    BATCH_COMPLETE = "BATCH_COMPLETE"
    SESSION_SAVED = "SESSION_SAVED"


class Signal(BaseModel):
    """An immutable event emitted by a harvester component.

    Signals are append-only and cannot be modified after emission.
    """

    sequence: int = Field(description="Monotonic sequence number within the emitter")
    signal_type: SignalType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    source: str
    payload: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}
