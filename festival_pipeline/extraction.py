"""Stage-1: raw text extraction and the data-quality gate."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Optional

from .abort import CancelToken
from .conversion import convert_document, create_document_converter
from .errors import (
    AbortedByUser,
    ExtractionError,
    InferenceError,
    ServiceConfigurationError,
    TransientNetworkError,
)
from .events import EventChannel, ExtractionProgress
from .inference import InferenceService
from .models import (
    ContentKind,
    ExtractionResult,
    InputBlob,
    NormalizedContent,
    QualityWarning,
)
from .utils import (
    IMAGE_TEXT_SEPARATOR,
    MIN_CHARS_FOR_IMAGE_TEXT,
    MIN_CHARS_FOR_INPUT_TEXT,
)

log = logging.getLogger(__name__)

_PASSTHROUGH = (AbortedByUser, TransientNetworkError, ServiceConfigurationError, ExtractionError)


def quality_warning_for(raw_text: str, kind: ContentKind) -> Optional[QualityWarning]:
    """Return a warning when image- or text-sourced input is implausibly short.

    Documents are never gated here; an empty document is a hard failure.
    """
    if kind is ContentKind.IMAGES:
        threshold = MIN_CHARS_FOR_IMAGE_TEXT
        reason = "very little text could be read from the image(s)"
    elif kind is ContentKind.TEXT:
        threshold = MIN_CHARS_FOR_INPUT_TEXT
        reason = "the supplied text is very short"
    else:
        return None
    count = len(raw_text.strip())
    if count >= threshold:
        return None
    return QualityWarning(
        reason=reason,
        threshold_chars=threshold,
        content_kind=kind,
        char_count=count,
    )


class ExtractionCoordinator:
    """Runs stage-1 for one normalised content value.

    Args:
        inference: Service used for per-image text extraction.
        converter_factory: Builds the Docling converter on first document use.
        events: Optional channel receiving per-image progress.
    """

    def __init__(
        self,
        inference: InferenceService,
        converter_factory: Callable[[], Any] = create_document_converter,
        events: Optional[EventChannel] = None,
    ) -> None:
        self.inference = inference
        self._converter_factory = converter_factory
        self._converter: Any = None
        self._events = events

    async def extract(
        self,
        content: NormalizedContent,
        token: CancelToken,
        acknowledge_warning: bool = False,
        previous: Optional[ExtractionResult] = None,
    ) -> ExtractionResult:
        """Extract raw text from *content*.

        With ``acknowledge_warning`` and a *previous* warned result the same
        text is returned with the warning cleared and no new call is made.

        Raises:
            AbortedByUser: the token fired at any check point.
            ExtractionError: I/O or service failure, or an empty document.
        """
        if acknowledge_warning and previous is not None:
            log.info(
                "Quality warning acknowledged; continuing with %s chars",
                len(previous.raw_text.strip()),
            )
            return ExtractionResult(
                raw_text=previous.raw_text,
                content_kind=previous.content_kind,
                per_input_texts=list(previous.per_input_texts),
                quality_warning=None,
            )

        token.raise_if_cancelled("extraction start")
        t0 = time.perf_counter()
        try:
            if content.kind is ContentKind.DOCUMENT:
                blob = content.blobs[0]
                text = await self._extract_document(blob, token)
                if not text.strip():
                    raise ExtractionError(
                        f"no text could be extracted from {blob.filename}; "
                        "scanned documents without a text layer are not supported"
                    )
                per_input = [text]
                raw_text = text
            elif content.kind is ContentKind.IMAGES:
                per_input = await self._extract_images(content.blobs, token)
                raw_text = IMAGE_TEXT_SEPARATOR.join(t for t in per_input if t)
            else:
                per_input = [content.text]
                raw_text = content.text
        except _PASSTHROUGH:
            raise
        except (InferenceError, OSError) as exc:
            raise ExtractionError(f"text extraction failed for {content.display_name}: {exc}") from exc

        token.raise_if_cancelled("extraction end")
        warning = None if acknowledge_warning else quality_warning_for(raw_text, content.kind)
        log.info(
            "Extracted %s chars from %s (%s) in %.2fs%s",
            len(raw_text),
            content.display_name,
            content.kind.value,
            time.perf_counter() - t0,
            " [quality warning]" if warning else "",
        )
        return ExtractionResult(
            raw_text=raw_text,
            content_kind=content.kind,
            per_input_texts=per_input,
            quality_warning=warning,
        )

    # ------------------------------------------------------------------
    # Per-kind stages
    # ------------------------------------------------------------------

    async def _extract_document(self, blob: InputBlob, token: CancelToken) -> str:
        if self._converter is None:
            try:
                self._converter = await token.guard(asyncio.to_thread(self._converter_factory))
            except AbortedByUser:
                raise
            except Exception as exc:
                log.error("Document converter could not be created: %s", exc)
                raise ExtractionError(f"document converter could not be created: {exc}") from exc
        token.raise_if_cancelled("document conversion")
        return await token.guard(asyncio.to_thread(convert_document, self._converter, blob))

    async def _extract_images(self, blobs: tuple[InputBlob, ...], token: CancelToken) -> list[str]:
        texts: list[str] = []
        total = len(blobs)
        for index, blob in enumerate(blobs, 1):
            token.raise_if_cancelled(f"image {index}/{total}")
            t0 = time.perf_counter()
            text = await self.inference.extract_text(blob.data, blob.mime, token)
            # A response that lands after cancellation is discarded.
            token.raise_if_cancelled(f"image {index}/{total} result")
            texts.append((text or "").strip())
            log.debug(
                "Image %d/%d (%s): %d chars in %.2fs",
                index,
                total,
                blob.filename,
                len(texts[-1]),
                time.perf_counter() - t0,
            )
            if self._events is not None:
                self._events.publish(ExtractionProgress(index, total, blob.filename))
        return texts
