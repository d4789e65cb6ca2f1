"""Adaptive polling: batch size and poll interval follow how far behind a node is."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from warehouse_sync.core.logging import get_logger
from warehouse_sync.core.sync_config import SyncSettings

log = get_logger("phase")


class Phase(str, Enum):
    INITIAL = "initial"
    CATCHUP = "catchup"
    STEADY = "steady"


def parse_phase(value: Optional[str]) -> Phase:
    """Resume hint from a persisted phase; anything unknown restarts as initial."""
    try:
        return Phase(value)
    except ValueError:
        if value is not None:
            log.warning(f"Unknown persisted phase {value!r}; resuming as initial")
        return Phase.INITIAL


def next_phase(
    records_pulled: int,
    lag_seconds: float,
    catchup_threshold: float = 3600,
    steady_threshold: float = 300,
) -> Phase:
    if records_pulled == 0:
        return Phase.STEADY
    if lag_seconds > catchup_threshold:
        return Phase.INITIAL
    if lag_seconds > steady_threshold:
        return Phase.CATCHUP
    return Phase.STEADY


class PhaseController:
    """Holds the current phase of one engine and maps it to batch size / interval."""

    def __init__(self, settings: SyncSettings, phase: Phase = Phase.INITIAL):
        self.settings = settings
        self.phase = phase

    @property
    def batch_size(self) -> int:
        if self.phase is Phase.INITIAL:
            return self.settings.initial_batch_size
        if self.phase is Phase.CATCHUP:
            return self.settings.catchup_batch_size
        return self.settings.steady_batch_size

    @property
    def poll_interval(self) -> float:
        """Seconds to sleep before the next cycle."""
        if self.phase is Phase.INITIAL:
            return self.settings.initial_interval
        if self.phase is Phase.CATCHUP:
            return self.settings.catchup_interval
        return self.settings.poll_interval

    def update(self, records_pulled: int, lag_seconds: float) -> Phase:
        new = next_phase(
            records_pulled,
            lag_seconds,
            catchup_threshold=self.settings.catchup_threshold,
            steady_threshold=self.settings.steady_threshold,
        )
        if new is not self.phase:
            log.info(f"Phase {self.phase.value} -> {new.value} (pulled={records_pulled}, lag={lag_seconds:.0f}s)")
        self.phase = new
        return new
