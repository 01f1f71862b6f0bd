"""
External collaborators of the simulation engine.

Scenario generation, pilot readback synthesis, telemetry and best-score
persistence are consumed through these small protocols. Default
implementations keep the engine usable offline.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional, Protocol

from .atc_system import synthesize_readback
from .scenario import ScenarioPayload


logger = logging.getLogger("sector_control.services")


class ScenarioSource(Protocol):
    """Produces an initial traffic roster for a difficulty level."""

    async def generate(self, difficulty: str) -> ScenarioPayload:
        ...


class ReadbackSynthesizer(Protocol):
    """Turns an instruction summary into a pilot acknowledgment."""

    async def readback(self, callsign: str, instruction: str) -> str:
        ...


class TelemetrySink(Protocol):
    """Fire-and-forget event notifications."""

    def track(self, event: str, payload: Dict[str, Any]) -> None:
        ...


class BestScoreStore(Protocol):
    """Persistent best score."""

    def load(self) -> int:
        ...

    def save(self, score: int) -> None:
        ...


class PhraseologyReadback:
    """Readbacks built from standard phraseology, no network involved."""

    async def readback(self, callsign: str, instruction: str) -> str:
        return synthesize_readback(callsign, instruction)


class LoggingTelemetry:
    """
    Telemetry sink that writes events to the log.

    Identical events (same name and pair/callsign/command) are throttled to
    one per `throttle_seconds`.
    """

    def __init__(self, throttle_seconds: float = 2.0, clock: Callable[[], float] = time.monotonic):
        self.throttle_seconds = throttle_seconds
        self.clock = clock
        self._last_sent: Dict[str, float] = {}

    def _event_key(self, event: str, payload: Dict[str, Any]) -> str:
        key = event
        for name in ("pair", "callsign", "command"):
            if payload.get(name):
                key += f"-{payload[name]}"
        return key

    def track(self, event: str, payload: Dict[str, Any]) -> None:
        now = self.clock()
        key = self._event_key(event, payload)
        # only keys still inside their throttle window are kept
        self._last_sent = {
            k: sent for k, sent in self._last_sent.items()
            if now - sent < self.throttle_seconds
        }
        if key in self._last_sent:
            return
        self._last_sent[key] = now
        logger.info("telemetry %s %s", event, payload)


class InMemoryBestScoreStore:
    """Best score kept for the lifetime of the process."""

    def __init__(self, initial: int = 0):
        self._best = initial

    def load(self) -> int:
        return self._best

    def save(self, score: int) -> None:
        self._best = score


def safe_track(sink: Optional[TelemetrySink], event: str, payload: Dict[str, Any]):
    """Forward an event to a sink, never letting sink errors reach the caller."""
    if sink is None:
        return
    try:
        sink.track(event, payload)
    except Exception:
        logger.exception("Telemetry sink failed for event %s", event)
