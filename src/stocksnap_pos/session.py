"""Per-session context threaded through the sale engine.

The session carries the signed-in user's scope and the scanner's last-scan
record. It is created by whatever authenticated the operator and passed to
the engine explicitly; nothing here is module-global.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from . import log
from .constants import SCAN_DEBOUNCE_MS
from .data_manager import ConfigSettings
from .debounce import ScanDebouncer


@dataclass
class SessionContext:
    """Session Gate implementation backed by an already-authenticated scope."""

    user_scope: str
    debouncer: ScanDebouncer = field(default_factory=ScanDebouncer)

    def current_user_scope(self) -> str:
        return self.user_scope

    def end(self) -> None:
        """Forget scanner state when the operator signs out or switches mode."""

        self.debouncer.clear()
        log.debug("Session for scope '%s' ended", self.user_scope)


def session_from_settings(settings: ConfigSettings) -> SessionContext:
    """Build the session used by the CLI from ``config.ini`` defaults."""

    window = settings.debounce_window_ms if settings.debounce_window_ms is not None else SCAN_DEBOUNCE_MS
    return SessionContext(
        user_scope=settings.default_user_scope,
        debouncer=ScanDebouncer(window_ms=window),
    )
