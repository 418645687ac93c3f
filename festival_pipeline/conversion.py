"""Docling document converter and document text extraction."""

from __future__ import annotations

import logging
import time
from io import BytesIO
from typing import Any

from .errors import ExtractionError
from .models import InputBlob

log = logging.getLogger(__name__)


def create_document_converter(*, num_threads: int = 4) -> Any:
    """Build a Docling ``DocumentConverter`` for text-layer extraction.

    OCR is disabled: a document without a text layer yields empty text,
    which the extraction stage treats as a hard failure.

    Args:
        num_threads: Thread count used by Docling accelerator options.
    """
    t0 = time.perf_counter()
    log.info("create_document_converter: importing docling modules ...")

    from docling.datamodel.accelerator_options import AcceleratorOptions
    from docling.datamodel.base_models import InputFormat
    from docling.datamodel.pipeline_options import PdfPipelineOptions
    from docling.document_converter import DocumentConverter, PdfFormatOption

    log.info("create_document_converter: imports done in %.2fs", time.perf_counter() - t0)

    pipeline_options = PdfPipelineOptions(
        do_ocr=False,
        accelerator_options=AcceleratorOptions(num_threads=max(1, num_threads)),
    )
    converter = DocumentConverter(
        allowed_formats=[InputFormat.PDF, InputFormat.DOCX],
        format_options={
            InputFormat.PDF: PdfFormatOption(pipeline_options=pipeline_options),
        },
    )
    log.info(
        "Docling document converter initialized in %.2fs",
        time.perf_counter() - t0,
    )
    return converter


def convert_document(converter: Any, blob: InputBlob) -> str:
    """Convert one document blob and return its text as Markdown.

    Raises:
        ExtractionError: Docling could not read the document.
    """
    from docling.datamodel.base_models import DocumentStream

    log.info("convert_document: START - %s (%s bytes)", blob.filename, blob.size)
    t0 = time.perf_counter()
    try:
        result = converter.convert(
            source=DocumentStream(name=blob.filename, stream=BytesIO(blob.data))
        )
        text = result.document.export_to_markdown()
    except Exception as exc:
        log.error("convert_document: ERROR - %s: %s", blob.filename, exc)
        raise ExtractionError(f"failed to extract text from {blob.filename}: {exc}") from exc

    log.info(
        "convert_document: DONE - %s (%s chars) in %.2fs",
        blob.filename,
        len(text),
        time.perf_counter() - t0,
    )
    return text.strip()
