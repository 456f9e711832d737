"""Duplicate-scan suppression for the camera path.

A camera re-detects the same label on consecutive frames, so the same code
seen again inside the window is dropped. Only the most recent code is kept.
Manual entry never goes through here.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

from . import log
from .constants import SCAN_DEBOUNCE_MS


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass
class ScanDebouncer:
    """Last-scan record plus the suppression rule."""

    window_ms: int = SCAN_DEBOUNCE_MS
    last_code: Optional[str] = None
    last_seen_ms: Optional[float] = None

    def should_process(self, code: str, now: Optional[float] = None) -> bool:
        """Return ``False`` when ``code`` repeats inside the window."""

        if self.last_code is None or self.last_seen_ms is None:
            return True
        if code != self.last_code:
            return True

        now = monotonic_ms() if now is None else now
        if now - self.last_seen_ms < self.window_ms:
            log.debug("Suppressing repeat scan of '%s' (%.0f ms since last)", code, now - self.last_seen_ms)
            return False
        return True

    def record(self, code: str, now: Optional[float] = None) -> None:
        self.last_code = code
        self.last_seen_ms = monotonic_ms() if now is None else now

    def clear(self) -> None:
        self.last_code = None
        self.last_seen_ms = None
