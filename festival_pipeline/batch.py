"""Batch suitability analysis: score user images against a contest analysis."""

from __future__ import annotations

import dataclasses
import logging
import math
import time
from typing import Any, Optional, Sequence

from .abort import USER_CANCEL_REASON, CancelToken
from .errors import AbortedByUser, InvalidInputComposition
from .events import BatchEvent, EventChannel
from .inference import InferenceService
from .models import (
    GENERAL_TOPIC,
    AnalysisContext,
    Batch,
    BatchItem,
    BatchItemInput,
    BatchItemStatus,
    InputBlob,
    ItemAnalysis,
)
from .normalizer import guess_mime
from .utils import EDITING_NOTES_MIN_SCORE, IMAGE_MIME_TYPES, MAX_IMAGES, new_id

log = logging.getLogger(__name__)


def clamp_score(value: Any, item_id: str = "") -> float:
    """Scores outside [0, 10] or non-numeric scores become 0."""
    try:
        score = float(value)
    except (TypeError, ValueError):
        log.warning("Item %s: non-numeric score %r treated as 0", item_id, value)
        return 0.0
    if math.isnan(score) or not 0 <= score <= 10:
        log.warning("Item %s: score %r out of range, treated as 0", item_id, value)
        return 0.0
    return score


def to_item_analysis(payload: dict[str, Any], item_id: str = "") -> ItemAnalysis:
    score = clamp_score(payload.get("score"), item_id)
    notes = payload.get("editing_notes")
    if not isinstance(notes, str) or not notes.strip() or score < EDITING_NOTES_MIN_SCORE:
        notes = None
    return ItemAnalysis(
        critique=str(payload.get("critique") or ""),
        score=score,
        score_reasoning=str(payload.get("reasoning") or ""),
        editing_notes=notes,
    )


class BatchSuitabilityAnalyzer:
    """Runs items strictly in order, one call in flight at a time.

    Observers on *events* get a :class:`BatchEvent` after every item's
    terminal state and once for the final aggregate.
    """

    def __init__(
        self,
        inference: InferenceService,
        events: Optional[EventChannel] = None,
        max_items: int = MAX_IMAGES,
    ) -> None:
        self.inference = inference
        self.events = events or EventChannel()
        self.max_items = max_items

    def prepare(
        self,
        items: Sequence[BatchItemInput],
        record_id: str = "",
        topic_focus: Optional[str] = None,
    ) -> Batch:
        if not items:
            raise InvalidInputComposition("no images were supplied for analysis")
        if len(items) > self.max_items:
            raise InvalidInputComposition(
                f"at most {self.max_items} images can be analysed together (got {len(items)})"
            )
        prepared: list[BatchItem] = []
        for item in items:
            image = item.image
            if not image.mime or image.mime == "application/octet-stream":
                image = InputBlob(image.filename, guess_mime(image.filename), image.data)
            if image.mime not in IMAGE_MIME_TYPES or not image.data:
                raise InvalidInputComposition(
                    f"{image.filename} ({image.mime}) is not a supported image"
                )
            prepared.append(
                BatchItem(id=new_id("item"), input=dataclasses.replace(item, image=image))
            )
        return Batch(
            id=new_id("batch"),
            record_id=record_id,
            items=prepared,
            topic_focus=topic_focus or GENERAL_TOPIC,
        )

    async def run_batch(
        self,
        items: Sequence[BatchItemInput],
        context: AnalysisContext,
        token: CancelToken,
        record_id: str = "",
        topic_focus: Optional[str] = None,
    ) -> Batch:
        batch = self.prepare(items, record_id, topic_focus)
        return await self.run(batch, context, token)

    async def run(self, batch: Batch, context: AnalysisContext, token: CancelToken) -> Batch:
        """Process a prepared batch; never raises for item-level failures."""
        t0 = time.perf_counter()
        total = len(batch.items)
        log.info("Batch %s: analysing %d item(s), focus %s", batch.id, total, batch.topic_focus)

        for index, item in enumerate(batch.items):
            if token.cancelled:
                self._cancel_remaining(batch, index)
                break

            item.transition(BatchItemStatus.RUNNING)
            item_context = dataclasses.replace(
                context,
                topic_focus=item.input.topic_focus or batch.topic_focus,
                user_note=item.input.note,
            )
            t_item = time.perf_counter()
            try:
                payload = await self.inference.analyze_item(
                    item.input.image.data, item.input.image.mime, item_context, token
                )
                item.result = to_item_analysis(payload, item.id)
                item.transition(BatchItemStatus.DONE)
            except AbortedByUser as exc:
                log.info("Batch %s item %d/%d aborted: %s", batch.id, index + 1, total, exc)
                item.error = USER_CANCEL_REASON
                item.transition(BatchItemStatus.CANCELLED)
            except Exception as exc:
                log.error("Batch %s item %d/%d failed: %s", batch.id, index + 1, total, exc)
                item.error = str(exc) or type(exc).__name__
                item.transition(BatchItemStatus.FAILED)

            log.info(
                "Batch %s item %d/%d (%s): %s in %.2fs",
                batch.id,
                index + 1,
                total,
                item.input.image.filename,
                item.status.value,
                time.perf_counter() - t_item,
            )
            self.events.publish(BatchEvent(batch, item))

        self.events.publish(BatchEvent(batch))
        log.info(
            "Batch %s %s in %.2fs: %s",
            batch.id,
            batch.status.value,
            time.perf_counter() - t0,
            batch.counts(),
        )
        return batch

    def _cancel_remaining(self, batch: Batch, start: int) -> None:
        for item in batch.items[start:]:
            if item.status is BatchItemStatus.QUEUED:
                item.error = USER_CANCEL_REASON
                item.transition(BatchItemStatus.CANCELLED)
                self.events.publish(BatchEvent(batch, item))
        log.info("Batch %s: %d item(s) cancelled before starting", batch.id, len(batch.items) - start)
