"""
Integrity monitor: best-effort telemetry about leaving the assessment page.

Everything here is advisory. The counter is attached to the attempt when it
is finalized and is never consulted before a submit or finalize.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable

from pydantic import BaseModel, Field

from assess.utils import utc_now

log = logging.getLogger(__name__)

EVENT_HIDDEN = "visibility_hidden"
EVENT_FOCUS_LOST = "focus_lost"
EVENT_SHORTCUT = "shortcut_blocked"
EVENT_COPY = "copy_blocked"

TAB_WARNING = (
    "Tab switching is not allowed during the assessment. This activity has been recorded."
)
COPY_WARNING = "Copying from the problem description is not allowed."

# Modifier shortcuts that would open, close or replace the page
_BLOCKED_WITH_CTRL = {"t": "new tab", "n": "new window", "w": "close tab"}
_COPY_KEYS = {"c", "x", "p", "s"}

WarningListener = Callable[[str, int], None]


class IntegrityEvent(BaseModel):
    kind: str
    detail: str | None = None
    at: datetime


class KeyDecision(BaseModel):
    """Whether the UI should cancel a key press, and what to show."""

    blocked: bool = False
    warning: str | None = None


class IntegrityReport(BaseModel):
    tab_switch_count: int = 0
    blocked_shortcuts: int = 0
    events: list[IntegrityEvent] = Field(default_factory=list)


class IntegrityMonitor:
    def __init__(self, clock: Callable[[], datetime] = utc_now, max_events: int = 200):
        self.clock = clock
        self.max_events = max_events
        self._lock = threading.Lock()
        self._away = False
        self._tab_switch_count = 0
        self._blocked_shortcuts = 0
        self._events: list[IntegrityEvent] = []
        self._listeners: list[WarningListener] = []

    @property
    def tab_switch_count(self) -> int:
        return self._tab_switch_count

    def on_warning(self, listener: WarningListener) -> None:
        self._listeners.append(listener)

    def _record(self, kind: str, detail: str | None = None) -> None:
        self._events.append(IntegrityEvent(kind=kind, detail=detail, at=self.clock()))
        if len(self._events) > self.max_events:
            del self._events[0]

    def _warn(self, message: str) -> None:
        count = self._tab_switch_count
        for listener in list(self._listeners):
            try:
                listener(message, count)
            except Exception:
                log.exception("Integrity warning listener failed")

    def _left_page(self, kind: str, detail: str | None = None) -> int:
        # Blur and visibility change fire together for one switch; count it once
        with self._lock:
            if self._away:
                return self._tab_switch_count
            self._away = True
            self._tab_switch_count += 1
            self._record(kind, detail)
            count = self._tab_switch_count
        log.info("Tab switch detected. Total count: %d", count)
        self._warn(TAB_WARNING)
        return count

    def record_visibility_change(self, hidden: bool) -> int:
        """Page visibility changed; returns the switch counter."""
        if hidden:
            return self._left_page(EVENT_HIDDEN)
        self.record_focus_gained()
        return self._tab_switch_count

    def record_focus_lost(self) -> int:
        return self._left_page(EVENT_FOCUS_LOST)

    def record_focus_gained(self) -> None:
        with self._lock:
            self._away = False

    def handle_key(
        self,
        key: str,
        ctrl: bool = False,
        meta: bool = False,
        alt: bool = False,
        in_description: bool = False,
    ) -> KeyDecision:
        """Decide whether a key press should be cancelled."""
        lowered = key.lower()
        if alt and lowered == "tab":
            with self._lock:
                self._tab_switch_count += 1
                self._blocked_shortcuts += 1
                self._record(EVENT_SHORTCUT, "alt+tab")
            log.info("Alt+Tab blocked")
            self._warn(TAB_WARNING)
            return KeyDecision(blocked=True, warning=TAB_WARNING)

        if key == "F5":
            return self._block("F5", "refresh")

        if ctrl or meta:
            if lowered in _BLOCKED_WITH_CTRL:
                return self._block(f"ctrl+{lowered}", _BLOCKED_WITH_CTRL[lowered])
            if in_description and lowered in _COPY_KEYS:
                with self._lock:
                    self._record(EVENT_COPY, f"ctrl+{lowered}")
                return KeyDecision(blocked=True, warning=COPY_WARNING)

        return KeyDecision()

    def _block(self, combo: str, action: str) -> KeyDecision:
        with self._lock:
            self._blocked_shortcuts += 1
            self._record(EVENT_SHORTCUT, combo)
        log.info("%s (%s) blocked", combo, action)
        return KeyDecision(blocked=True)

    def report(self) -> IntegrityReport:
        with self._lock:
            return IntegrityReport(
                tab_switch_count=self._tab_switch_count,
                blocked_shortcuts=self._blocked_shortcuts,
                events=list(self._events),
            )
