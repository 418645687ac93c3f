"""Shared data models for the pipeline."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional, Union

from .errors import ValidationError, is_retryable
from .persian import (
    format_gregorian,
    format_jalali,
    gregorian_to_jalali,
    jalali_to_gregorian,
    parse_gregorian,
    parse_jalali,
)

if TYPE_CHECKING:
    from .abort import CancelToken


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


class OperationKind(str, Enum):
    EXTRACT_FILE = "extract_file"
    EXTRACT_TEXT = "extract_text"
    ANALYZE_BATCH = "analyze_batch"
    SMART_ANALYSIS = "smart_analysis"


class OperationStatus(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    RUNNING = "running"
    AWAITING_GATE = "awaiting_gate"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset(
    {OperationStatus.COMPLETED, OperationStatus.CANCELLED, OperationStatus.FAILED}
)


@dataclass
class Operation:
    """One user-initiated cancellable unit of work.

    The cancel token is owned by the operation and dropped as soon as a
    terminal status is reached.
    """

    id: str
    kind: OperationKind
    token: Optional["CancelToken"] = None
    status: OperationStatus = OperationStatus.IDLE
    error: Optional[str] = None
    retryable: bool = False
    created_at: datetime = field(default_factory=_utcnow)
    finished_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition(self, status: OperationStatus) -> None:
        if self.is_terminal:
            raise RuntimeError(
                f"Operation {self.id} is already {self.status.value}; "
                f"cannot move to {status.value}"
            )
        self.status = status
        if status in TERMINAL_STATUSES:
            self.finished_at = _utcnow()
            self.token = None

    def fail(self, exc: BaseException) -> None:
        self.error = str(exc)
        self.retryable = is_retryable(exc)
        self.transition(OperationStatus.FAILED)


# ---------------------------------------------------------------------------
# Normalised content
# ---------------------------------------------------------------------------


class ContentKind(str, Enum):
    DOCUMENT = "document"
    IMAGES = "images"
    TEXT = "text"


@dataclass(frozen=True)
class InputBlob:
    """A binary input with its declared mime type."""

    filename: str
    mime: str
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)

    def data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime};base64,{encoded}"


@dataclass(frozen=True)
class SourceDescriptor:
    filename: str
    mime: str
    preview: str = field(repr=False)


@dataclass(frozen=True)
class NormalizedContent:
    kind: ContentKind
    payload: Union[tuple[InputBlob, ...], str] = field(repr=False)
    sources: tuple[SourceDescriptor, ...]
    display_name: str

    @property
    def blobs(self) -> tuple[InputBlob, ...]:
        if isinstance(self.payload, str):
            return ()
        return self.payload

    @property
    def text(self) -> str:
        return self.payload if isinstance(self.payload, str) else ""


# ---------------------------------------------------------------------------
# Stage-1 output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QualityWarning:
    reason: str
    threshold_chars: int
    content_kind: ContentKind
    char_count: int


@dataclass
class ExtractionResult:
    raw_text: str
    content_kind: ContentKind
    per_input_texts: list[str] = field(default_factory=list)
    quality_warning: Optional[QualityWarning] = None

    @property
    def needs_acknowledgement(self) -> bool:
        return self.quality_warning is not None


# ---------------------------------------------------------------------------
# Stage-2 output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SourceAttribution:
    uri: str
    title: str

    def to_dict(self) -> dict[str, str]:
        return {"uri": self.uri, "title": self.title}


def dedupe_sources(sources: list[SourceAttribution]) -> list[SourceAttribution]:
    """Drop repeated URIs, keeping the first occurrence."""
    seen: set[str] = set()
    unique: list[SourceAttribution] = []
    for source in sources:
        if source.uri in seen:
            continue
        seen.add(source.uri)
        unique.append(source)
    return unique


@dataclass
class StructuredRecord:
    """A contest call as extracted, confirmed and stored."""

    id: str
    festival_name: Optional[str] = None
    topics: list[str] = field(default_factory=list)
    objectives: Optional[str] = None
    max_photos: Optional[Union[int, str]] = None
    deadline_persian: Optional[str] = None
    deadline_gregorian: Optional[str] = None
    image_size: Optional[str] = None
    submission_method: Optional[str] = None
    source_attributions: list[SourceAttribution] = field(default_factory=list)

    file_name: str = ""
    file_type: str = ""
    file_preview: Optional[str] = field(default=None, repr=False)
    extracted_text: str = field(default="", repr=False)

    user_notes: Optional[str] = None
    smart_analysis: Optional[str] = field(default=None, repr=False)
    analysis_sources: list[SourceAttribution] = field(default_factory=list)
    batch_id: Optional[str] = None

    @property
    def has_deadline(self) -> bool:
        return bool((self.deadline_persian or "").strip() or (self.deadline_gregorian or "").strip())

    def set_deadline_persian(self, value: Optional[str]) -> None:
        """Set the Jalali deadline and recompute the Gregorian one.

        Raises ValidationError and leaves the record untouched if *value*
        is not a valid Jalali day. ``None``/empty clears both.
        """
        if not (value or "").strip():
            self.deadline_persian = None
            self.deadline_gregorian = None
            return
        day = parse_jalali(value)
        self.deadline_persian = format_jalali(day)
        self.deadline_gregorian = format_gregorian(day.togregorian())

    def set_deadline_gregorian(self, value: Optional[str]) -> None:
        """Set the Gregorian deadline and recompute the Jalali one."""
        if not (value or "").strip():
            self.deadline_persian = None
            self.deadline_gregorian = None
            return
        gregorian = format_gregorian(parse_gregorian(value))
        self.deadline_persian = gregorian_to_jalali(gregorian)
        self.deadline_gregorian = gregorian

    def deadlines_consistent(self) -> bool:
        if not (self.deadline_persian and self.deadline_gregorian):
            return True
        try:
            return jalali_to_gregorian(self.deadline_persian) == self.deadline_gregorian
        except ValidationError:
            return False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "festivalName": self.festival_name,
            "topics": list(self.topics),
            "objectives": self.objectives,
            "maxPhotos": self.max_photos,
            "submissionDeadlinePersian": self.deadline_persian,
            "submissionDeadlineGregorian": self.deadline_gregorian,
            "imageSize": self.image_size,
            "submissionMethod": self.submission_method,
            "extractionSourceUrls": [s.to_dict() for s in self.source_attributions],
            "fileName": self.file_name,
            "fileType": self.file_type,
            "filePreview": self.file_preview,
            "extractedText": self.extracted_text,
            "userNotesForSmartAnalysis": self.user_notes,
            "smartAnalysis": self.smart_analysis,
            "analysisSourceUrls": [s.to_dict() for s in self.analysis_sources],
            "batchId": self.batch_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StructuredRecord":
        def _sources(key: str) -> list[SourceAttribution]:
            return [
                SourceAttribution(uri=s["uri"], title=s.get("title") or s["uri"])
                for s in data.get(key) or []
                if s.get("uri")
            ]

        return cls(
            id=data["id"],
            festival_name=data.get("festivalName"),
            topics=list(data.get("topics") or []),
            objectives=data.get("objectives"),
            max_photos=data.get("maxPhotos"),
            deadline_persian=data.get("submissionDeadlinePersian"),
            deadline_gregorian=data.get("submissionDeadlineGregorian"),
            image_size=data.get("imageSize"),
            submission_method=data.get("submissionMethod"),
            source_attributions=_sources("extractionSourceUrls"),
            file_name=data.get("fileName") or "",
            file_type=data.get("fileType") or "",
            file_preview=data.get("filePreview"),
            extracted_text=data.get("extractedText") or "",
            user_notes=data.get("userNotesForSmartAnalysis"),
            smart_analysis=data.get("smartAnalysis"),
            analysis_sources=_sources("analysisSourceUrls"),
            batch_id=data.get("batchId"),
        )


@dataclass(frozen=True)
class SmartAnalysis:
    text: str
    sources: list[SourceAttribution] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Batch suitability analysis
# ---------------------------------------------------------------------------


GENERAL_TOPIC = "__GENERAL__"


@dataclass(frozen=True)
class AnalysisContext:
    """What the service judges an image against.

    ``topic_focus`` equal to :data:`GENERAL_TOPIC` means holistic scoring.
    """

    smart_analysis: str
    festival_name: Optional[str] = None
    topics: tuple[str, ...] = ()
    objectives: Optional[str] = None
    topic_focus: str = GENERAL_TOPIC
    user_note: Optional[str] = None

    @property
    def has_focus(self) -> bool:
        return self.topic_focus != GENERAL_TOPIC

    @classmethod
    def from_record(cls, record: StructuredRecord) -> "AnalysisContext":
        return cls(
            smart_analysis=record.smart_analysis or "",
            festival_name=record.festival_name,
            topics=tuple(record.topics),
            objectives=record.objectives,
        )


class BatchItemStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


_ITEM_TRANSITIONS = {
    BatchItemStatus.QUEUED: {BatchItemStatus.RUNNING, BatchItemStatus.CANCELLED},
    BatchItemStatus.RUNNING: {
        BatchItemStatus.DONE,
        BatchItemStatus.FAILED,
        BatchItemStatus.CANCELLED,
    },
}


class BatchStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    PARTIALLY_FAILED = "partially_failed"


@dataclass(frozen=True)
class BatchItemInput:
    image: InputBlob
    note: Optional[str] = None
    topic_focus: Optional[str] = None


@dataclass(frozen=True)
class ItemAnalysis:
    critique: str
    score: float
    score_reasoning: str
    editing_notes: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "critique": self.critique,
            "score": self.score,
            "scoreReasoning": self.score_reasoning,
            "editingNotes": self.editing_notes,
        }


@dataclass
class BatchItem:
    id: str
    input: BatchItemInput
    status: BatchItemStatus = BatchItemStatus.QUEUED
    result: Optional[ItemAnalysis] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status not in _ITEM_TRANSITIONS

    def transition(self, status: BatchItemStatus) -> None:
        allowed = _ITEM_TRANSITIONS.get(self.status, set())
        if status not in allowed:
            raise RuntimeError(
                f"Batch item {self.id}: illegal transition "
                f"{self.status.value} -> {status.value}"
            )
        self.status = status

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "imageName": self.input.image.filename,
            "imageType": self.input.image.mime,
            "note": self.input.note,
            "topicFocus": self.input.topic_focus,
            "status": self.status.value,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BatchItem":
        result = data.get("result")
        return cls(
            id=data["id"],
            input=BatchItemInput(
                image=InputBlob(data.get("imageName", ""), data.get("imageType", ""), b""),
                note=data.get("note"),
                topic_focus=data.get("topicFocus"),
            ),
            status=BatchItemStatus(data.get("status", BatchItemStatus.QUEUED.value)),
            result=ItemAnalysis(
                critique=result["critique"],
                score=result["score"],
                score_reasoning=result["scoreReasoning"],
                editing_notes=result.get("editingNotes"),
            )
            if result
            else None,
            error=data.get("error"),
        )


@dataclass
class Batch:
    """Ordered batch items; the aggregate status is derived, never stored."""

    id: str
    record_id: str
    items: list[BatchItem] = field(default_factory=list)
    topic_focus: str = GENERAL_TOPIC

    @property
    def status(self) -> BatchStatus:
        statuses = {item.status for item in self.items}
        if statuses & {BatchItemStatus.QUEUED, BatchItemStatus.RUNNING}:
            return BatchStatus.RUNNING
        if BatchItemStatus.CANCELLED in statuses:
            return BatchStatus.CANCELLED
        if BatchItemStatus.FAILED in statuses:
            return BatchStatus.PARTIALLY_FAILED
        return BatchStatus.COMPLETED

    def counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in BatchItemStatus}
        for item in self.items:
            counts[item.status.value] += 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "recordId": self.record_id,
            "topicFocus": self.topic_focus,
            "status": self.status.value,
            "items": [item.to_dict() for item in self.items],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Batch":
        return cls(
            id=data["id"],
            record_id=data["recordId"],
            topic_focus=data.get("topicFocus") or GENERAL_TOPIC,
            items=[BatchItem.from_dict(item) for item in data.get("items") or []],
        )


# ---------------------------------------------------------------------------
# Tagged result
# ---------------------------------------------------------------------------


class OutcomeTag(str, Enum):
    OK = "ok"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass(frozen=True)
class Outcome:
    """Result of a session operation: ``ok``, ``cancelled`` or ``error``.

    Cancellation is its own variant and never carries an error.
    """

    tag: OutcomeTag
    value: Any = None
    message: Optional[str] = None
    retryable: bool = False
    operation_id: Optional[str] = None

    @classmethod
    def ok(cls, value: Any, operation_id: Optional[str] = None) -> "Outcome":
        return cls(OutcomeTag.OK, value=value, operation_id=operation_id)

    @classmethod
    def cancelled(
        cls,
        message: str = "cancelled by user",
        operation_id: Optional[str] = None,
        value: Any = None,
    ) -> "Outcome":
        return cls(OutcomeTag.CANCELLED, value=value, message=message, operation_id=operation_id)

    @classmethod
    def error(
        cls,
        exc: BaseException,
        operation_id: Optional[str] = None,
        value: Any = None,
    ) -> "Outcome":
        """*value* carries any partial result the caller should not lose."""
        return cls(
            OutcomeTag.ERROR,
            value=value,
            message=str(exc),
            retryable=is_retryable(exc),
            operation_id=operation_id,
        )

    @property
    def is_ok(self) -> bool:
        return self.tag is OutcomeTag.OK

    @property
    def is_cancelled(self) -> bool:
        return self.tag is OutcomeTag.CANCELLED

    @property
    def is_error(self) -> bool:
        return self.tag is OutcomeTag.ERROR
