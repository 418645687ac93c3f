"""Turn uploaded files or pasted text into one uniform content value."""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import Optional, Sequence

from .errors import InvalidInputComposition
from .models import (
    ContentKind,
    InputBlob,
    NormalizedContent,
    OperationKind,
    SourceDescriptor,
)
from .utils import DOCUMENT_MIME_TYPES, IMAGE_MIME_TYPES, MAX_IMAGES

log = logging.getLogger(__name__)

TEXT_INPUT_NAME = "user text input.txt"


def guess_mime(filename: str) -> str:
    mime, _ = mimetypes.guess_type(filename)
    return mime or "application/octet-stream"


def load_blob(path: Path, mime: Optional[str] = None) -> InputBlob:
    """Read *path* into an :class:`InputBlob`, guessing the mime from its name."""
    return InputBlob(filename=path.name, mime=mime or guess_mime(path.name), data=path.read_bytes())


def display_name_for(blobs: Sequence[InputBlob]) -> str:
    if len(blobs) == 1:
        return blobs[0].filename
    return f"{blobs[0].filename} (+{len(blobs) - 1} more)"


class ContentNormalizer:
    """Validates input composition and keeps the active content per kind."""

    def __init__(self, max_images: int = MAX_IMAGES) -> None:
        self.max_images = max_images
        self._active: dict[OperationKind, NormalizedContent] = {}

    def active(self, kind: OperationKind) -> Optional[NormalizedContent]:
        return self._active.get(kind)

    def clear(self, kind: OperationKind) -> None:
        self._active.pop(kind, None)

    def normalize_files(
        self,
        blobs: Sequence[InputBlob],
        kind: OperationKind = OperationKind.EXTRACT_FILE,
    ) -> NormalizedContent:
        """Accept one document, or up to ``max_images`` images.

        Raises:
            InvalidInputComposition: nothing usable, a document mixed with
                other files, unsupported types, or too many images.
        """
        self.clear(kind)
        resolved = [self._resolve_mime(blob) for blob in blobs if blob.data]
        if not resolved:
            raise InvalidInputComposition("no valid input files were supplied")

        documents = [b for b in resolved if b.mime in DOCUMENT_MIME_TYPES]
        images = [b for b in resolved if b.mime in IMAGE_MIME_TYPES]
        unsupported = [b for b in resolved if b not in documents and b not in images]

        if unsupported:
            names = ", ".join(f"{b.filename} ({b.mime})" for b in unsupported)
            raise InvalidInputComposition(f"unsupported file type(s): {names}")
        if documents and len(resolved) > 1:
            raise InvalidInputComposition(
                "a document must be submitted alone; multiple files must all be images"
            )

        if documents:
            blob = documents[0]
            content = NormalizedContent(
                kind=ContentKind.DOCUMENT,
                payload=(blob,),
                sources=(SourceDescriptor(blob.filename, blob.mime, "pdf"),),
                display_name=blob.filename,
            )
        else:
            if len(images) > self.max_images:
                raise InvalidInputComposition(
                    f"at most {self.max_images} images can be submitted together "
                    f"(got {len(images)})"
                )
            content = NormalizedContent(
                kind=ContentKind.IMAGES,
                payload=tuple(images),
                sources=tuple(
                    SourceDescriptor(b.filename, b.mime, b.data_url()) for b in images
                ),
                display_name=display_name_for(images),
            )

        self._active[kind] = content
        log.info(
            "Normalized %s input: %s file(s) as %s",
            kind.value,
            len(content.blobs),
            content.kind.value,
        )
        return content

    def normalize_text(
        self,
        text: str,
        kind: OperationKind = OperationKind.EXTRACT_TEXT,
        display_name: str = TEXT_INPUT_NAME,
    ) -> NormalizedContent:
        self.clear(kind)
        if not text or not text.strip():
            raise InvalidInputComposition("no text was supplied")
        content = NormalizedContent(
            kind=ContentKind.TEXT,
            payload=text,
            sources=(SourceDescriptor(display_name, "text/plain", "text_input"),),
            display_name=display_name,
        )
        self._active[kind] = content
        log.info("Normalized %s input: %s chars of text", kind.value, len(text))
        return content

    @staticmethod
    def _resolve_mime(blob: InputBlob) -> InputBlob:
        if blob.mime and blob.mime != "application/octet-stream":
            return blob
        return InputBlob(blob.filename, guess_mime(blob.filename), blob.data)
