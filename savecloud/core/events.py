"""UI notification channel: fire-and-forget completion events."""

from __future__ import annotations

from typing import Callable, Protocol

from loguru import logger


def upload_complete_event(object_id: str, shop: str) -> str:
    return f"on-upload-complete-{object_id}-{shop}"


def download_complete_event(object_id: str, shop: str) -> str:
    return f"on-backup-download-complete-{object_id}-{shop}"


class NotificationChannel(Protocol):
    def emit(self, event_name: str) -> None: ...


class LoggingNotifier:
    """Default channel when no presentation layer is attached."""

    def emit(self, event_name: str) -> None:
        logger.info(f"Event: {event_name}")


class CallbackNotifier:
    """Fans each event out to the registered listeners."""

    def __init__(self) -> None:
        self._listeners: list[Callable[[str], None]] = []

    def subscribe(self, listener: Callable[[str], None]) -> None:
        self._listeners.append(listener)

    def emit(self, event_name: str) -> None:
        for listener in list(self._listeners):
            listener(event_name)
