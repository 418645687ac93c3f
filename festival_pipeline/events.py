"""Notification channel for incremental pipeline progress."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Union

from .models import Batch, BatchItem

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchEvent:
    """Published after each item reaches a terminal state (``item`` set) and
    once more for the final aggregate (``item`` is ``None``)."""

    batch: Batch
    item: Optional[BatchItem] = None

    @property
    def is_final(self) -> bool:
        return self.item is None


@dataclass(frozen=True)
class ExtractionProgress:
    """One image of a multi-image extraction has been read."""

    index: int
    total: int
    filename: str


Event = Union[BatchEvent, ExtractionProgress]
Observer = Callable[[Event], None]


class EventChannel:
    """Synchronous observer list.

    Observers only read what they receive. A failing observer is logged
    and does not interrupt the publishing pipeline.
    """

    def __init__(self) -> None:
        self._observers: list[Observer] = []

    def __len__(self) -> int:
        return len(self._observers)

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register *observer*; returns a callable that unsubscribes it."""
        self._observers.append(observer)

        def _unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _unsubscribe

    def publish(self, event: Event) -> None:
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception:
                log.exception("Observer %r failed on %s", observer, type(event).__name__)
