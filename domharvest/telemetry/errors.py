"""Structured error telemetry helpers."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Canonical error codes for operational telemetry."""

    OPERATION_FAILED = "OPERATION_FAILED"
    ERROR_OBSERVER_FAILED = "ERROR_OBSERVER_FAILED"
    SIGNAL_SUBSCRIBER_FAILURE = "SIGNAL_SUBSCRIBER_FAILURE"
    BATCH_JOB_FAILED = "BATCH_JOB_FAILED"
    PROGRESS_CALLBACK_FAILED = "PROGRESS_CALLBACK_FAILED"
    BROWSER_CLEANUP_FAILED = "BROWSER_CLEANUP_FAILED"


def emit_structured_error(
    logger: logging.Logger,
    *,
    code: ErrorCode,
    message: str,
    suppressed: bool,
    target: str | None = None,
    operation: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Emit a structured telemetry event via logging."""
    logger.error(
        "domharvest_error",
        extra={
            "error_code": code,
            "error_message": message,
            "suppressed": suppressed,
            "target": target,
            "operation": operation,
            "details": details or {},
        },
    )
