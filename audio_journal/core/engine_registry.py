"""
Engine registry.
Holds one live engine per EngineKind, tracks availability, and owns the
"current engine" selection (persisted under selectedAIEngine).
"""

import logging
import threading
from typing import Optional

from audio_journal.core.error_codes import JobError
from audio_journal.core.constants import (
    ErrorCode, EngineHealthStatus, STORE_KEY_SELECTED_ENGINE, MONITOR_INTERVAL_SEC,
)
from audio_journal.core.engines import EngineKind, SummarizationEngine, build_engines
from audio_journal.core.event_bus import EventBus, EngineChanged
from audio_journal.core.models import EngineValidation, EngineHealth, HealthReport, EngineDescriptor
from audio_journal.core.ports import BlobStore

logger = logging.getLogger(__name__)


class EngineRegistry:
    """
    Registry of summarization engines.
    All mutations of the current selection and availability snapshot go
    through one RLock; readers get consistent snapshots.
    """

    def __init__(self, store: BlobStore, engines: dict[EngineKind, SummarizationEngine] | None = None,
                 config=None, bus: EventBus | None = None):
        self.store = store
        self.config = config
        self.bus = bus
        engines = engines if engines is not None else build_engines(config)
        missing = [k.name for k in EngineKind if k not in engines]
        if missing:
            raise JobError(ErrorCode.CONFIGURATION_MISSING, f"No engine registered for {missing}")
        # registry order is EngineKind declaration order
        self._engines = {kind: engines[kind] for kind in EngineKind}
        self._lock = threading.RLock()
        self._available: dict[EngineKind, bool] = {kind: False for kind in EngineKind}
        self._available[EngineKind.OFFLINE] = True
        self._current = EngineKind.OFFLINE
        self._monitor_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    # ── Lookup ────────────────────────────────────────────────────────

    @property
    def current(self) -> EngineKind:
        with self._lock:
            return self._current

    @property
    def current_engine(self) -> SummarizationEngine:
        return self._engines[self.current]

    def engine(self, kind: EngineKind) -> SummarizationEngine:
        return self._engines[kind]

    def kinds(self) -> list[EngineKind]:
        return list(self._engines)

    def is_available(self, kind: EngineKind) -> bool:
        with self._lock:
            return self._available[kind]

    def available_kinds(self) -> list[EngineKind]:
        with self._lock:
            return [k for k in self._engines if self._available[k]]

    def first_available(self) -> EngineKind:
        available = self.available_kinds()
        return available[0] if available else EngineKind.OFFLINE

    def next_available(self, after: EngineKind) -> EngineKind | None:
        """Next available engine after `after` in registry order, wrapping around."""
        kinds = self.kinds()
        start = kinds.index(after)
        with self._lock:
            for offset in range(1, len(kinds) + 1):
                candidate = kinds[(start + offset) % len(kinds)]
                if candidate != after and self._available[candidate]:
                    return candidate
        return None

    def descriptors(self) -> list[EngineDescriptor]:
        with self._lock:
            snapshot = dict(self._available)
        return [
            EngineDescriptor(
                kind=kind.name,
                name=engine.name,
                is_available=snapshot[kind],
                is_coming_soon=engine.is_coming_soon,
                requirements=[] if snapshot[kind] else engine.requirements(),
                version=engine.version,
            )
            for kind, engine in self._engines.items()
        ]

    # ── Availability ──────────────────────────────────────────────────

    def _check(self, kind: EngineKind) -> bool:
        engine = self._engines[kind]
        try:
            return bool(engine.is_available())
        except Exception as e:
            logger.warning("Availability check for %s failed: %s", engine.name, e)
            return False

    def refresh(self) -> list[EngineKind]:
        """
        Re-check every engine's availability. If the current engine became
        unavailable, switch to the first available one. Returns available kinds.
        """
        # network checks happen outside the lock
        results = {kind: self._check(kind) for kind in self._engines}
        results[EngineKind.OFFLINE] = True

        changed = None
        with self._lock:
            self._available.update(results)
            if not self._available[self._current]:
                previous = self._current
                self._current = self.first_available()
                changed = (previous, self._current)

        if changed:
            logger.warning("Engine %s became unavailable, switched to %s",
                           changed[0].value, changed[1].value)
            self._publish(changed[0], changed[1])
        return self.available_kinds()

    def initialize(self) -> EngineKind:
        """Refresh availability and restore the persisted selection if still usable."""
        self.refresh()
        saved = self.store.get(STORE_KEY_SELECTED_ENGINE)
        kind = EngineKind.from_name(saved) if saved else None

        with self._lock:
            if kind is not None and self._available[kind]:
                self._current = kind
            else:
                if saved:
                    logger.info("Saved engine %r is not available, using fallback", saved)
                self._current = self.first_available()
            current = self._current
        logger.info("Current summarization engine: %s", current.value)
        return current

    # ── Selection ─────────────────────────────────────────────────────

    def validate(self, name: str) -> EngineValidation:
        if not name or not name.strip():
            return EngineValidation(False, False, "Engine name cannot be empty")

        kind = EngineKind.from_name(name.strip())
        if kind is None:
            valid = ", ".join(k.value for k in EngineKind)
            return EngineValidation(False, False, f"Unknown engine type '{name}'. Valid engines: {valid}")

        if not self._check(kind):
            reqs = ", ".join(self._engines[kind].requirements()) or "none listed"
            return EngineValidation(True, False, f"Engine '{kind.value}' is not available. Requirements: {reqs}")

        with self._lock:
            self._available[kind] = True
        return EngineValidation(True, True, f"Engine '{kind.value}' is available")

    def set_engine(self, name: str) -> EngineKind:
        """Validate, select, persist and announce a new current engine."""
        validation = self.validate(name)
        if not validation.is_known:
            raise JobError(ErrorCode.INVALID_INPUT, validation.message)
        if not validation.is_available:
            raise JobError(ErrorCode.ENGINE_UNAVAILABLE, validation.message)

        kind = EngineKind.from_name(name.strip())
        with self._lock:
            previous = self._current
            self._current = kind
            self.store.set(STORE_KEY_SELECTED_ENGINE, kind.value)

        if previous != kind:
            logger.info("Summarization engine changed: %s -> %s", previous.value, kind.value)
            self._publish(previous, kind)
        return kind

    def _publish(self, previous: EngineKind, current: EngineKind):
        if self.bus is not None:
            self.bus.publish(EngineChanged(previous=previous.value, current=current.value))

    # ── Health ────────────────────────────────────────────────────────

    def health_report(self) -> HealthReport:
        with self._lock:
            snapshot = dict(self._available)
            current = self._current

        entries = []
        for kind, engine in self._engines.items():
            if engine.is_coming_soon:
                status, message = EngineHealthStatus.COMING_SOON, "Coming soon"
            elif snapshot[kind]:
                status, message = EngineHealthStatus.HEALTHY, "Available"
            else:
                status, message = EngineHealthStatus.UNHEALTHY, "Unavailable"
            requirements = () if snapshot[kind] else tuple(engine.requirements())
            entries.append(EngineHealth(engine.name, status, requirements, message))

        return HealthReport(
            current_engine=current.value,
            available_count=sum(1 for e in entries if e.status == EngineHealthStatus.HEALTHY),
            unavailable_count=sum(1 for e in entries if e.status == EngineHealthStatus.UNHEALTHY),
            coming_soon_count=sum(1 for e in entries if e.status == EngineHealthStatus.COMING_SOON),
            engines=tuple(entries),
        )

    # ── Monitoring ────────────────────────────────────────────────────

    def start_monitoring(self, interval: float | None = None):
        """Refresh availability on a background thread every `interval` seconds."""
        if self._monitor_thread is not None and self._monitor_thread.is_alive():
            return
        if interval is None:
            interval = self.config.monitor_interval_sec if self.config is not None else MONITOR_INTERVAL_SEC
        self._stop_event.clear()
        self._monitor_thread = threading.Thread(
            target=self._monitor_loop, args=(interval,), name="engine-monitor", daemon=True,
        )
        self._monitor_thread.start()

    def stop_monitoring(self, timeout: float = 5.0):
        self._stop_event.set()
        if self._monitor_thread is not None:
            self._monitor_thread.join(timeout)
            self._monitor_thread = None

    def is_monitoring(self) -> bool:
        return self._monitor_thread is not None and self._monitor_thread.is_alive()

    def _monitor_loop(self, interval: float):
        while not self._stop_event.wait(interval):
            try:
                self.refresh()
            except Exception as e:
                logger.error("Engine monitor refresh failed: %s", e, exc_info=True)
