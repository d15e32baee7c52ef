import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger("media_blob_store")

WARNING_KINDS = {"cleanup_failed", "collision"}


@dataclass
class StoreEvent:
    kind: str
    path: Path | None = None
    detail: str | None = None
    error: BaseException | None = None


EventObserver = Callable[[StoreEvent], None]


def log_event(event: StoreEvent) -> None:
    level = logging.WARNING if event.kind in WARNING_KINDS else logging.DEBUG
    msg = f"{event.kind} path={event.path}"
    if event.detail:
        msg += f" {event.detail}"
    if event.error is not None:
        msg += f" error={type(event.error).__name__}: {event.error}"
    logger.log(level, msg)


def emit(observer: EventObserver | None, event: StoreEvent) -> None:
    (observer or log_event)(event)
