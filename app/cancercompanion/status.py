"""Process-wide record of which model provider is currently serving requests."""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable

from cancercompanion.logs import get_logger
from cancercompanion.utils import utc_now

logger = get_logger(__name__)

FALLBACK_NOTICE = "MedGemma is unreachable. Switching to backup model..."


class SourceTag(str, Enum):
    PRIMARY_ACTIVE = "primary_active"
    BACKUP_ACTIVE = "backup_active"
    CONNECTING = "connecting"
    IDLE = "idle"

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS = {
    SourceTag.PRIMARY_ACTIVE: "MedGemma (Primary)",
    SourceTag.BACKUP_ACTIVE: "Claude Sonnet (Backup)",
    SourceTag.CONNECTING: "connecting",
    SourceTag.IDLE: "idle",
}


def backup_label(model: str) -> str:
    return f"{model} via aimlapi.com (Backup)"


@dataclass(frozen=True)
class StatusSnapshot:
    status: SourceTag
    last_updated: datetime
    model: str | None = None

    @property
    def label(self) -> str:
        if self.status is SourceTag.BACKUP_ACTIVE and self.model:
            return backup_label(self.model)
        return self.status.label


StatusListener = Callable[[StatusSnapshot], None]
NoticeListener = Callable[[str], None]


class StatusReporter:
    """Single-slot status with any number of subscribers.

    Listener errors are logged and never propagate into the orchestration
    path that published the update.
    """

    def __init__(self, *, notice_window_sec: float = 10.0, clock: Callable[[], float] = time.monotonic):
        self._snapshot = StatusSnapshot(status=SourceTag.IDLE, last_updated=utc_now())
        self._listeners: list[StatusListener] = []
        self._notice_listeners: list[NoticeListener] = []
        self._notice_window_sec = notice_window_sec
        self._clock = clock
        self._last_notice_at: float | None = None

    def snapshot(self) -> StatusSnapshot:
        return self._snapshot

    @property
    def status(self) -> SourceTag:
        return self._snapshot.status

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def subscribe_notices(self, listener: NoticeListener) -> Callable[[], None]:
        self._notice_listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._notice_listeners:
                self._notice_listeners.remove(listener)

        return _unsubscribe

    def publish(self, status: SourceTag, *, model: str | None = None) -> StatusSnapshot:
        """Record the active tier; `model` names the backup model that answered."""
        snapshot = StatusSnapshot(status=status, last_updated=utc_now(), model=model)
        self._snapshot = snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("status_listener_failed", status=status.value)
        return snapshot

    def notify_fallback(self, message: str = FALLBACK_NOTICE) -> bool:
        """Announce a switch to the backup tier, at most once per notice window."""
        now = self._clock()
        if self._last_notice_at is not None and now - self._last_notice_at < self._notice_window_sec:
            return False
        self._last_notice_at = now
        logger.info("fallback_notice", notice=message)
        for listener in list(self._notice_listeners):
            try:
                listener(message)
            except Exception:
                logger.exception("notice_listener_failed")
        return True
