"""Pipeline session: operation lifecycle, stage wiring and retry."""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

from .abort import USER_CANCEL_REASON, AbortCoordinator
from .batch import BatchSuitabilityAnalyzer
from .config import Settings
from .confirmation import ConfirmationGate
from .conversion import create_document_converter
from .errors import (
    AbortedByUser,
    InferenceError,
    InvalidInputComposition,
    PipelineError,
)
from .events import EventChannel, Observer
from .extraction import ExtractionCoordinator
from .inference import InferenceService
from .interaction import UserInteraction, WarningChoice
from .models import (
    AnalysisContext,
    BatchItemInput,
    BatchStatus,
    ExtractionResult,
    InputBlob,
    NormalizedContent,
    Operation,
    OperationKind,
    OperationStatus,
    Outcome,
    StructuredRecord,
    dedupe_sources,
)
from .normalizer import ContentNormalizer
from .store import RecordStore
from .structuring import StructuredInfoExtractor
from .utils import MAX_OPERATION_HISTORY

log = logging.getLogger(__name__)


@dataclass
class _ReplayState:
    """Inputs and intermediate results kept so a failed stage can be re-run."""

    kind: OperationKind
    error: Optional[BaseException] = None
    content: Optional[NormalizedContent] = None
    extraction: Optional[ExtractionResult] = None
    record: Optional[StructuredRecord] = None
    args: dict[str, Any] = field(default_factory=dict)


class PipelineSession:
    """Explicit context object that owns every pipeline collaborator.

    Each public operation returns an :class:`Outcome` and never raises for
    classified failures; cancellation yields ``Outcome.cancelled``.
    """

    def __init__(
        self,
        inference: InferenceService,
        store: RecordStore,
        interaction: UserInteraction,
        *,
        converter_factory: Optional[Callable[[], Any]] = None,
        settings: Optional[Settings] = None,
        events: Optional[EventChannel] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.inference = inference
        self.store = store
        self.interaction = interaction
        self.events = events or EventChannel()
        self.aborts = AbortCoordinator()
        self.normalizer = ContentNormalizer(max_images=self.settings.max_images)
        if converter_factory is None:
            converter_factory = functools.partial(
                create_document_converter, num_threads=self.settings.num_threads
            )
        self.extractor = ExtractionCoordinator(inference, converter_factory, events=self.events)
        self.structurer = StructuredInfoExtractor(inference)
        self.gate = ConfirmationGate(interaction, store)
        self.batch_analyzer = BatchSuitabilityAnalyzer(
            inference, self.events, max_items=self.settings.max_images
        )
        self._operations: dict[str, Operation] = {}
        self.max_history = MAX_OPERATION_HISTORY
        self._replay: dict[OperationKind, _ReplayState] = {}

    # ------------------------------------------------------------------
    # Introspection and control
    # ------------------------------------------------------------------

    @property
    def operations(self) -> tuple[Operation, ...]:
        return tuple(self._operations.values())

    def operation(self, operation_id: str) -> Optional[Operation]:
        return self._operations.get(operation_id)

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        return self.events.subscribe(observer)

    def cancel(self, kind: OperationKind) -> bool:
        """Cancel the live operation of *kind*; returns False if none is live."""
        return self.aborts.cancel_kind(kind, USER_CANCEL_REASON)

    def cancel_operation(self, operation_id: str) -> bool:
        return self.aborts.cancel(operation_id, USER_CANCEL_REASON)

    def can_retry(self, kind: OperationKind) -> bool:
        state = self._replay.get(kind)
        return state is not None and state.error is not None and getattr(state.error, "retryable", False)

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------

    def _begin(self, kind: OperationKind, deadline: Optional[float]) -> Operation:
        operation_id, token = self.aborts.begin_operation(kind)
        operation = Operation(id=operation_id, kind=kind, token=token)
        self._operations[operation_id] = operation
        self._prune_history()
        operation.transition(OperationStatus.PREPARING)
        timeout = deadline if deadline is not None else self.settings.request_timeout
        if timeout:
            token.add_deadline(timeout)
        log.info("Operation %s (%s) started", operation_id, kind.value)
        return operation

    def _prune_history(self) -> None:
        """Forget the oldest finished operations beyond ``max_history``; live ones stay."""
        excess = len(self._operations) - self.max_history
        if excess <= 0:
            return
        finished = [op.id for op in self._operations.values() if op.is_terminal][:excess]
        for operation_id in finished:
            del self._operations[operation_id]
        log.debug("Dropped %d finished operation(s) from history", len(finished))

    def _conclude(
        self,
        operation: Operation,
        value: Any = None,
        exc: Optional[BaseException] = None,
    ) -> Outcome:
        try:
            if exc is None:
                operation.transition(OperationStatus.COMPLETED)
                outcome = Outcome.ok(value, operation.id)
            elif isinstance(exc, AbortedByUser):
                operation.transition(OperationStatus.CANCELLED)
                outcome = Outcome.cancelled(str(exc) or USER_CANCEL_REASON, operation.id, value)
            else:
                operation.fail(exc)
                outcome = Outcome.error(exc, operation.id, value)
        finally:
            self.aborts.release(operation.id)
        elapsed = (operation.finished_at - operation.created_at).total_seconds()
        log.info(
            "Operation %s (%s) %s in %.2fs%s",
            operation.id,
            operation.kind.value,
            operation.status.value,
            elapsed,
            f": {operation.error}" if operation.error else "",
        )
        return outcome

    async def _run(
        self,
        operation: Operation,
        state: _ReplayState,
        body: Callable[[Operation, _ReplayState], Any],
    ) -> Outcome:
        """Run *body* and convert its result or exception into an Outcome."""
        self._replay.pop(state.kind, None)
        state.error = None
        try:
            value = await body(operation, state)
        except AbortedByUser as exc:
            return self._conclude(operation, exc=exc)
        except PipelineError as exc:
            state.error = exc
            self._replay[state.kind] = state
            return self._conclude(operation, state.record, exc)
        except asyncio.CancelledError:
            self._conclude(operation, exc=AbortedByUser("task cancelled"))
            raise
        except Exception as exc:
            log.exception("Unclassified failure in %s operation %s", operation.kind.value, operation.id)
            state.error = exc
            self._replay[state.kind] = state
            return self._conclude(operation, state.record, exc)
        if isinstance(value, Outcome):
            return value
        return self._conclude(operation, value)

    # ------------------------------------------------------------------
    # Extraction pipeline
    # ------------------------------------------------------------------

    async def extract_from_files(
        self, blobs: Sequence[InputBlob], *, deadline: Optional[float] = None
    ) -> Outcome:
        """Normalise *blobs*, extract, structure, confirm and commit."""
        kind = OperationKind.EXTRACT_FILE
        operation = self._begin(kind, deadline)
        try:
            content = self.normalizer.normalize_files(blobs, kind)
        except InvalidInputComposition as exc:
            self._replay.pop(kind, None)
            return self._conclude(operation, exc=exc)
        return await self._run(operation, _ReplayState(kind, content=content), self._extraction_body)

    async def extract_from_text(self, text: str, *, deadline: Optional[float] = None) -> Outcome:
        kind = OperationKind.EXTRACT_TEXT
        operation = self._begin(kind, deadline)
        try:
            content = self.normalizer.normalize_text(text, kind)
        except InvalidInputComposition as exc:
            self._replay.pop(kind, None)
            return self._conclude(operation, exc=exc)
        return await self._run(operation, _ReplayState(kind, content=content), self._extraction_body)

    async def _extraction_body(self, operation: Operation, state: _ReplayState) -> StructuredRecord:
        token = operation.token
        content = state.content
        operation.transition(OperationStatus.RUNNING)
        t0 = time.perf_counter()

        if state.record is None:
            if state.extraction is None:
                result = await self.extractor.extract(content, token)
                if result.needs_acknowledgement:
                    operation.transition(OperationStatus.AWAITING_GATE)
                    choice = await token.guard(
                        self.interaction.resolve_quality_warning(result.quality_warning)
                    )
                    token.raise_if_cancelled("quality gate")
                    if choice is WarningChoice.CANCEL:
                        raise AbortedByUser(USER_CANCEL_REASON)
                    result = await self.extractor.extract(
                        content, token, acknowledge_warning=True, previous=result
                    )
                    operation.transition(OperationStatus.RUNNING)
                state.extraction = result

            record = await self.structurer.structure(
                state.extraction.raw_text, content.display_name, token
            )
            self._attach_source(record, content, state.extraction)
            state.record = record

        record = state.record
        if not state.args.get("confirmed"):
            record = await self._confirm(operation, record)
            state.record = record
            state.args["confirmed"] = True
            operation.transition(OperationStatus.RUNNING)
        token.raise_if_cancelled("commit")
        self.gate.commit(record)
        self.normalizer.clear(operation.kind)
        log.info("Extraction pipeline for %s finished in %.2fs", content.display_name, time.perf_counter() - t0)
        return record

    async def _confirm(self, operation: Operation, record: StructuredRecord) -> StructuredRecord:
        token = operation.token
        while True:
            operation.transition(OperationStatus.AWAITING_CONFIRMATION)
            decision = await token.guard(self.gate.present_for_confirmation(record))
            token.raise_if_cancelled("confirmation")
            if decision.accepted:
                return decision.record
            record = await token.guard(self.interaction.edit_record(decision.record))
            token.raise_if_cancelled("record edit")

    @staticmethod
    def _attach_source(
        record: StructuredRecord, content: NormalizedContent, extraction: ExtractionResult
    ) -> None:
        first = content.sources[0]
        record.file_name = content.display_name
        record.file_type = first.mime
        record.file_preview = first.preview
        record.extracted_text = extraction.raw_text

    # ------------------------------------------------------------------
    # Smart analysis
    # ------------------------------------------------------------------

    async def request_smart_analysis(
        self,
        record_id: str,
        notes: Optional[str] = None,
        force: bool = False,
        *,
        deadline: Optional[float] = None,
    ) -> Outcome:
        """Produce (or reuse) the grounded contest analysis of a stored record."""
        operation = self._begin(OperationKind.SMART_ANALYSIS, deadline)
        state = _ReplayState(
            OperationKind.SMART_ANALYSIS,
            args={"record_id": record_id, "notes": notes, "force": force},
        )
        return await self._run(operation, state, self._smart_analysis_body)

    async def _smart_analysis_body(self, operation: Operation, state: _ReplayState) -> StructuredRecord:
        token = operation.token
        record = self._require_record(state.args["record_id"])
        notes = state.args["notes"]
        if record.smart_analysis and not state.args["force"]:
            log.info("Record %s already has a smart analysis; reusing it", record.id)
            return record
        if not record.festival_name:
            raise InvalidInputComposition("a festival name is required for smart analysis")

        operation.transition(OperationStatus.RUNNING)
        analysis = await self.inference.analyze_festival(record, notes, token)
        token.raise_if_cancelled("smart analysis result")
        if not analysis.text:
            raise InferenceError("the service returned an empty analysis")

        record.smart_analysis = analysis.text
        record.analysis_sources = dedupe_sources(list(analysis.sources))
        record.user_notes = notes.strip() if notes and notes.strip() else None
        state.record = record
        self.store.update(record)
        return record

    # ------------------------------------------------------------------
    # Batch suitability analysis
    # ------------------------------------------------------------------

    async def analyze_images(
        self,
        record_id: str,
        items: Sequence[BatchItemInput],
        topic_focus: Optional[str] = None,
        *,
        deadline: Optional[float] = None,
    ) -> Outcome:
        """Score *items* against the record's smart analysis, one at a time."""
        operation = self._begin(OperationKind.ANALYZE_BATCH, deadline)
        state = _ReplayState(
            OperationKind.ANALYZE_BATCH,
            args={"record_id": record_id, "items": list(items), "topic_focus": topic_focus},
        )
        return await self._run(operation, state, self._batch_body)

    async def _batch_body(self, operation: Operation, state: _ReplayState) -> Any:
        token = operation.token
        record = self._require_record(state.args["record_id"])
        if not record.smart_analysis:
            raise InvalidInputComposition(
                f"record {record.id} has no smart analysis; request one first"
            )
        topic_focus = state.args["topic_focus"]
        if topic_focus and record.topics and topic_focus not in record.topics:
            log.warning("Topic focus %r is not one of the record's topics", topic_focus)
        batch = self.batch_analyzer.prepare(state.args["items"], record.id, topic_focus)

        operation.transition(OperationStatus.RUNNING)
        batch = await self.batch_analyzer.run(batch, AnalysisContext.from_record(record), token)

        record.batch_id = batch.id
        self.store.save_batch(batch)
        self.store.update(record)
        if batch.status is BatchStatus.CANCELLED:
            reason = token.reason if token is not None and token.reason else USER_CANCEL_REASON
            return self._conclude(operation, batch, AbortedByUser(reason))
        return batch

    # ------------------------------------------------------------------
    # Retry
    # ------------------------------------------------------------------

    async def retry(self, kind: OperationKind, *, deadline: Optional[float] = None) -> Outcome:
        """Re-run exactly the stage that failed, with the same inputs.

        Non-retryable failures are refused: the original error is returned
        again without a new operation.
        """
        state = self._replay.get(kind)
        if state is None or state.error is None:
            raise LookupError(f"no failed {kind.value} operation to retry")
        if not getattr(state.error, "retryable", False):
            log.warning("Refusing to retry %s: %s", kind.value, state.error)
            return Outcome.error(state.error, value=state.record)

        log.info("Retrying %s after: %s", kind.value, state.error)
        operation = self._begin(kind, deadline)
        if kind in (OperationKind.EXTRACT_FILE, OperationKind.EXTRACT_TEXT):
            body = self._extraction_body
        elif kind is OperationKind.SMART_ANALYSIS:
            body = self._smart_analysis_body
        else:
            body = self._batch_body
        return await self._run(operation, state, body)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def _require_record(self, record_id: str) -> StructuredRecord:
        record = self.store.get(record_id)
        if record is None:
            raise InvalidInputComposition(f"no festival record with id {record_id}")
        return record
