"""Stage-2: turn raw text into a validated StructuredRecord."""

from __future__ import annotations

import logging
import time
from typing import Any, Optional, Union

from .abort import CancelToken
from .errors import ValidationError
from .inference import InferenceService, StructuredPayload
from .models import StructuredRecord, dedupe_sources
from .persian import (
    format_gregorian,
    format_jalali,
    gregorian_to_jalali,
    normalize_persian_text,
    normalize_submission_method,
    parse_gregorian,
    parse_jalali,
    to_western_digits,
)
from .utils import new_id

log = logging.getLogger(__name__)


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_topics(value: Any) -> list[str]:
    """Split a comma-separated topic string (Latin or Persian comma)."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        parts = [str(v) for v in value]
    else:
        parts = str(value).replace("،", ",").split(",")
    topics: list[str] = []
    for part in parts:
        topic = normalize_persian_text(part.strip())
        if topic and topic not in topics:
            topics.append(topic)
    return topics


def parse_max_photos(value: Any) -> Optional[Union[int, str]]:
    """Return an int when the canonicalised value is purely numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else str(value)
    text = (to_western_digits(value) or "").strip()
    if not text:
        return None
    if text.isdigit():
        return int(text)
    return normalize_persian_text(text)


def resolve_deadlines(persian: Any, gregorian: Any) -> tuple[Optional[str], Optional[str]]:
    """Validate both deadlines and return a consistent ``(jalali, gregorian)`` pair.

    An invalid value is dropped, never defaulted. When only one side
    validates the other is derived from it. When both validate the
    Persian one wins and the Gregorian one is recomputed.
    """
    jalali_day = None
    gregorian_day = None
    raw_persian = _text(to_western_digits(persian))
    raw_gregorian = _text(to_western_digits(gregorian))

    if raw_persian:
        try:
            jalali_day = parse_jalali(raw_persian)
        except ValidationError as exc:
            log.warning("Dropping Persian deadline: %s", exc)
    if raw_gregorian:
        try:
            gregorian_day = parse_gregorian(raw_gregorian)
        except ValidationError as exc:
            log.warning("Dropping Gregorian deadline: %s", exc)

    if jalali_day is not None:
        derived = format_gregorian(jalali_day.togregorian())
        if gregorian_day is not None and format_gregorian(gregorian_day) != derived:
            log.warning(
                "Deadlines disagree (%s vs %s); keeping the Persian one",
                raw_persian,
                raw_gregorian,
            )
        return format_jalali(jalali_day), derived

    if gregorian_day is not None:
        gregorian_text = format_gregorian(gregorian_day)
        try:
            return gregorian_to_jalali(gregorian_text), gregorian_text
        except ValidationError as exc:
            log.warning("Dropping Gregorian deadline: %s", exc)

    return None, None


def build_record(payload: StructuredPayload, record_id: Optional[str] = None) -> StructuredRecord:
    """Normalise a raw service payload into a record (no source bookkeeping)."""
    data = payload.data
    persian, gregorian = resolve_deadlines(
        data.get("submissionDeadlinePersian"),
        data.get("submissionDeadlineGregorian"),
    )
    topics = data.get("topicsString")
    if topics is None:
        topics = data.get("topics")
    return StructuredRecord(
        id=record_id or new_id(),
        festival_name=normalize_persian_text(_text(data.get("festivalName"))),
        topics=parse_topics(topics),
        objectives=normalize_persian_text(_text(data.get("objectives"))),
        max_photos=parse_max_photos(data.get("maxPhotos")),
        deadline_persian=persian,
        deadline_gregorian=gregorian,
        image_size=normalize_persian_text(_text(data.get("imageSize"))),
        submission_method=normalize_submission_method(_text(data.get("submissionMethod"))),
        source_attributions=dedupe_sources(list(payload.sources)),
    )


class StructuredInfoExtractor:
    def __init__(self, inference: InferenceService) -> None:
        self.inference = inference

    async def structure(
        self,
        raw_text: str,
        display_name: str,
        token: CancelToken,
        record_id: Optional[str] = None,
    ) -> StructuredRecord:
        """One service call, then local normalisation.

        Raises:
            AbortedByUser: cancelled before, during or after the call.
            InferenceError: the service failed or the answer was unusable.
        """
        token.raise_if_cancelled("structuring start")
        t0 = time.perf_counter()
        payload = await self.inference.extract_structured(raw_text, display_name, token)
        token.raise_if_cancelled("structuring result")
        record = build_record(payload, record_id)
        log.info(
            "Structured %s: %r, deadline %s, %d topic(s), %d source(s) in %.2fs",
            display_name,
            record.festival_name,
            record.deadline_persian or record.deadline_gregorian or "-",
            len(record.topics),
            len(record.source_attributions),
            time.perf_counter() - t0,
        )
        return record
