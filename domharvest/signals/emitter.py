"""Signal emitter: emission, optional persistence, and fan-out of Signals."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from domharvest.signals.types import Signal, SignalType
from domharvest.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)


class SignalEmitter:
    """Emits, persists, and broadcasts signals for one harvester.

    Signals are:
    - Immutable once emitted
    - Assigned monotonic sequence numbers
    - Appended to a JSONL ledger when a ledger path is configured
    - Delivered to subscribers in emission order

    Only the most recent ``history_limit`` signals stay in memory; the
    ledger, when configured, keeps all of them.
    """

    def __init__(
        self, source: str, ledger_path: Path | None = None, history_limit: int = 1000
    ) -> None:
        self._source = source
        self._sequence = 0
        self._ledger_path = ledger_path
        self._subscribers: list[Callable[[Signal], Any]] = []
        self._signals: deque[Signal] = deque(maxlen=history_limit)

        if self._ledger_path:
            self._ledger_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def source(self) -> str:
        return self._source

    @property
    def signals(self) -> list[Signal]:
        """Return the retained signals, oldest first (read-only copy)."""
        return list(self._signals)

    def subscribe(self, callback: Callable[[Signal], Any]) -> None:
        """Register a subscriber. Coroutine subscribers are awaited."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[Signal], Any]) -> None:
        self._subscribers = [s for s in self._subscribers if s is not callback]

    async def emit(self, signal_type: SignalType, payload: dict[str, Any] | None = None) -> Signal:
        """Emit a signal. This is the only way signals are created."""
        # Sequence assignment has no await before the append, so it is atomic on the loop.
        self._sequence += 1
        signal = Signal(
            sequence=self._sequence,
            signal_type=signal_type,
            timestamp=datetime.now(timezone.utc),
            source=self._source,
            payload=payload or {},
        )
        self._signals.append(signal)

        if self._ledger_path:
            self._persist(signal)

        await self._broadcast(signal)
        return signal

    def _persist(self, signal: Signal) -> None:
        with open(self._ledger_path, "a") as f:
            f.write(signal.model_dump_json() + "\n")

    async def _broadcast(self, signal: Signal) -> None:
        for subscriber in self._subscribers:
            try:
                result = subscriber(signal)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                # Subscribers must not break the emitting operation
                emit_structured_error(
                    logger,
                    code=ErrorCode.SIGNAL_SUBSCRIBER_FAILURE,
                    message=str(exc),
                    suppressed=True,
                    details={"signal_type": signal.signal_type.value},
                )

    @staticmethod
    def load_ledger(ledger_path: Path) -> list[Signal]:
        """Load all signals from a JSONL ledger file."""
        signals = []
        if ledger_path.exists():
            with open(ledger_path) as f:
                for line in f:
                    line = line.strip()
                    if line:
                        signals.append(Signal.model_validate_json(line))
        return signals
