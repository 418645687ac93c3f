"""Shared fixtures for the festival pipeline test suite.

The network and the user are replaced by scripted fakes: every answer
the inference service gives is queued up front by the test.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import sys
from types import SimpleNamespace
from typing import Any

import pytest

from festival_pipeline import (
    InferenceService,
    InputBlob,
    MemoryRecordStore,
    ScriptedInteraction,
    Settings,
    SmartAnalysis,
    StructuredPayload,
    StructuredRecord,
)

# ---------------------------------------------------------------------------
# Configure verbose logging for test debugging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stderr,
    force=True,
)
log = logging.getLogger("conftest")

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 32
PDF_BYTES = b"%PDF-1.4\n%fake\n"

LONG_TEXT = (
    "International Photo Festival 2024. Topics: Nature, Street, Portrait. "
    "Deadline: 1403/02/10. Submit at photofest.example.org"
)


class FakeInferenceService(InferenceService):
    """Scripted stand-in for the Gemini service.

    Each queue holds, in call order, either a value to return, an exception
    to raise, or an ``async def step(token)`` run in place of the call.
    """

    def __init__(self) -> None:
        self.texts: list[Any] = []
        self.structured: list[Any] = []
        self.items: list[Any] = []
        self.analyses: list[Any] = []
        self.calls: list[str] = []
        self.item_contexts: list[Any] = []

    async def _next(self, queue: list[Any], token: Any, default: Any) -> Any:
        await asyncio.sleep(0)
        value = queue.pop(0) if queue else default
        if inspect.iscoroutinefunction(value):
            value = await value(token)
        if isinstance(value, BaseException):
            raise value
        return value

    async def extract_text(self, image, mime, token):
        self.calls.append("extract_text")
        return await self._next(self.texts, token, "")

    async def extract_structured(self, text, display_name, token):
        self.calls.append("extract_structured")
        return await self._next(self.structured, token, StructuredPayload(data={}))

    async def analyze_item(self, image, mime, context, token):
        self.calls.append("analyze_item")
        self.item_contexts.append(context)
        return await self._next(
            self.items,
            token,
            {"critique": "ok", "score": 5, "reasoning": "fine", "editing_notes": None},
        )

    async def analyze_festival(self, record, notes, token):
        self.calls.append("analyze_festival")
        return await self._next(self.analyses, token, SmartAnalysis(text="analysis text"))


class FakeConverter:
    """Mimics ``DocumentConverter.convert(...).document.export_to_markdown()``."""

    def __init__(self, text: str = "", error: Exception | None = None) -> None:
        self.text = text
        self.error = error
        self.sources: list[Any] = []

    def convert(self, source):
        self.sources.append(source)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(document=SimpleNamespace(export_to_markdown=lambda: self.text))


async def cancel_then_hang(token):
    """Cancel the token from inside an in-flight call and wait on it."""
    asyncio.get_running_loop().call_soon(token.cancel)
    await token.guard(asyncio.sleep(30))


def make_blob(name: str, data: bytes = PNG_BYTES, mime: str | None = None) -> InputBlob:
    if mime is None:
        mime = {
            "png": "image/png",
            "jpg": "image/jpeg",
            "webp": "image/webp",
            "pdf": "application/pdf",
        }.get(name.rsplit(".", 1)[-1], "application/octet-stream")
    return InputBlob(filename=name, mime=mime, data=data)


def structured(**data: Any) -> StructuredPayload:
    return StructuredPayload(data=data)


@pytest.fixture
def fake_inference() -> FakeInferenceService:
    return FakeInferenceService()


@pytest.fixture
def store() -> MemoryRecordStore:
    return MemoryRecordStore()


@pytest.fixture
def interaction() -> ScriptedInteraction:
    return ScriptedInteraction()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(api_key="test-key", data_dir=tmp_path / "data")


@pytest.fixture
def analysed_record(store: MemoryRecordStore) -> StructuredRecord:
    record = StructuredRecord(
        id="rec-1",
        festival_name="Golden Lens",
        topics=["Nature", "Street"],
        objectives="Celebrate everyday life",
        smart_analysis="Past winners favoured candid street scenes.",
    )
    store.create(record)
    return record
