"""Inference service contract and its Gemini implementation."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from .abort import CancelToken
from .errors import (
    AbortedByUser,
    InferenceError,
    PipelineError,
    ServiceConfigurationError,
    TransientNetworkError,
)
from .models import AnalysisContext, SmartAnalysis, SourceAttribution, StructuredRecord
from .prompts import (
    ANALYSIS_NOTES_SECTION,
    FESTIVAL_ANALYSIS_PROMPT,
    IMAGE_TEXT_PROMPT,
    ITEM_ANALYSIS_PROMPT,
    ITEM_FOCUS_SECTION,
    ITEM_GENERAL_SECTION,
    ITEM_NOTE_SECTION,
    STRUCTURED_INFO_PROMPT,
)
from .utils import DEFAULT_MODEL

log = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(\w*)?\s*\n?(.*?)\n?\s*```$", re.DOTALL)

_TRANSIENT_STATUS = {408, 429, 500, 502, 503, 504}
_CONFIG_STATUS = {401, 403}


@dataclass
class StructuredPayload:
    """Raw structured-extraction answer plus any grounding sources, in order."""

    data: dict[str, Any]
    sources: list[SourceAttribution] = field(default_factory=list)


class InferenceService(ABC):
    """The three calls the pipeline needs, plus the grounded contest analysis.

    Every call takes the operation's cancel token and raises AbortedByUser
    when cancelled mid-flight.
    """

    @abstractmethod
    async def extract_text(self, image: bytes, mime: str, token: CancelToken) -> str:
        raise NotImplementedError

    @abstractmethod
    async def extract_structured(
        self, text: str, display_name: str, token: CancelToken
    ) -> StructuredPayload:
        raise NotImplementedError

    @abstractmethod
    async def analyze_item(
        self, image: bytes, mime: str, context: AnalysisContext, token: CancelToken
    ) -> dict[str, Any]:
        """Return ``{"critique", "score", "reasoning", "editing_notes"}`` (score unchecked)."""
        raise NotImplementedError

    @abstractmethod
    async def analyze_festival(
        self, record: StructuredRecord, notes: Optional[str], token: CancelToken
    ) -> SmartAnalysis:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Response helpers
# ---------------------------------------------------------------------------


def clean_json_text(text: str) -> str:
    """Strip a surrounding Markdown code fence, if any."""
    cleaned = (text or "").strip()
    match = _FENCE_RE.match(cleaned)
    if match and match.group(2):
        cleaned = match.group(2).strip()
    return cleaned


def parse_json_object(text: str, context: str) -> dict[str, Any]:
    cleaned = clean_json_text(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise InferenceError(
            f"failed to parse JSON response for {context}: {exc}. Response text: {cleaned[:500]}"
        ) from exc
    if not isinstance(data, dict):
        raise InferenceError(f"expected a JSON object for {context}, got {type(data).__name__}")
    return data


def grounding_sources(response: Any) -> list[SourceAttribution]:
    """Web sources the model consulted, in the order reported (may repeat)."""
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return []
    metadata = getattr(candidates[0], "grounding_metadata", None)
    chunks = getattr(metadata, "grounding_chunks", None) or []
    sources: list[SourceAttribution] = []
    for chunk in chunks:
        web = getattr(chunk, "web", None)
        uri = getattr(web, "uri", None)
        if uri:
            sources.append(SourceAttribution(uri=uri, title=getattr(web, "title", None) or uri))
    return sources


def classify_error(exc: BaseException, context: str) -> PipelineError:
    """Map SDK and transport failures onto the pipeline's error taxonomy."""
    import httpx
    from google.genai import errors as genai_errors

    if isinstance(exc, PipelineError):
        return exc
    message = str(exc)
    if isinstance(exc, genai_errors.APIError):
        code = exc.code or 0
        if code in _CONFIG_STATUS or "API key" in message or "API_KEY" in message:
            return ServiceConfigurationError(f"Gemini API configuration error: {message}")
        if code in _TRANSIENT_STATUS or code >= 500:
            return TransientNetworkError(f"Gemini API unavailable during {context}: {message}")
        return InferenceError(f"Gemini API error during {context}: {message}")
    if isinstance(exc, (httpx.TransportError, asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return TransientNetworkError(f"network error during {context}: {message or type(exc).__name__}")
    return InferenceError(f"Gemini API error during {context}: {message}")


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------


class GeminiInferenceService(InferenceService):
    def __init__(
        self,
        api_key: Optional[str],
        text_model: str = DEFAULT_MODEL,
        vision_model: str = DEFAULT_MODEL,
        client: Any = None,
    ) -> None:
        self.api_key = api_key
        self.text_model = text_model
        self.vision_model = vision_model
        self._client = client

    def _aio(self) -> Any:
        if self._client is None:
            if not self.api_key:
                raise ServiceConfigurationError(
                    "Gemini API key is not set; export GEMINI_API_KEY or add it to .env"
                )
            from google import genai

            self._client = genai.Client(api_key=self.api_key)
        return self._client.aio

    async def _generate(
        self,
        token: CancelToken,
        context: str,
        *,
        model: str,
        contents: Any,
        config: Any = None,
    ) -> Any:
        token.raise_if_cancelled(context)
        aio = self._aio()
        t0 = time.perf_counter()
        try:
            response = await token.guard(
                aio.models.generate_content(model=model, contents=contents, config=config)
            )
        except AbortedByUser:
            log.info("Gemini %s aborted after %.2fs", context, time.perf_counter() - t0)
            raise
        except Exception as exc:
            classified = classify_error(exc, context)
            log.error("Gemini %s failed (%s): %s", context, type(classified).__name__, exc)
            raise classified from exc
        log.debug("Gemini %s returned in %.2fs", context, time.perf_counter() - t0)
        return response

    async def extract_text(self, image: bytes, mime: str, token: CancelToken) -> str:
        from google.genai import types

        response = await self._generate(
            token,
            "image text extraction",
            model=self.vision_model,
            contents=[types.Part.from_bytes(data=image, mime_type=mime), IMAGE_TEXT_PROMPT],
        )
        return (response.text or "").strip()

    async def extract_structured(
        self, text: str, display_name: str, token: CancelToken
    ) -> StructuredPayload:
        from google.genai import types

        prompt = STRUCTURED_INFO_PROMPT.format(display_name=display_name, text=text)
        # Search grounding cannot be combined with a JSON response mime type.
        config = types.GenerateContentConfig(
            tools=[types.Tool(google_search=types.GoogleSearch())],
        )
        response = await self._generate(
            token,
            "information extraction",
            model=self.text_model,
            contents=prompt,
            config=config,
        )
        data = parse_json_object(response.text or "", "information extraction")
        return StructuredPayload(data=data, sources=grounding_sources(response))

    async def analyze_item(
        self, image: bytes, mime: str, context: AnalysisContext, token: CancelToken
    ) -> dict[str, Any]:
        from google.genai import types

        if not context.smart_analysis:
            raise InferenceError("a smart festival analysis is required to analyze an image")

        topics = ", ".join(context.topics) or "N/A"
        if context.has_focus:
            focus_clause = f" and the selected topic focus '{context.topic_focus}'"
            focus_section = ITEM_FOCUS_SECTION.format(topic_focus=context.topic_focus)
            focus_suffix = " and the selected topic"
        else:
            focus_clause = ""
            focus_section = ITEM_GENERAL_SECTION
            focus_suffix = ""
        note_section = ITEM_NOTE_SECTION.format(note=context.user_note) if context.user_note else ""

        prompt = ITEM_ANALYSIS_PROMPT.format(
            festival_name=context.festival_name or "N/A",
            topics=topics,
            objectives=context.objectives or "N/A",
            smart_analysis=context.smart_analysis,
            focus_clause=focus_clause,
            focus_section=focus_section,
            focus_suffix=focus_suffix,
            note_section=note_section,
        )
        response = await self._generate(
            token,
            "image analysis",
            model=self.vision_model,
            contents=[types.Part.from_bytes(data=image, mime_type=mime), prompt],
            config=types.GenerateContentConfig(response_mime_type="application/json"),
        )
        data = parse_json_object(response.text or "", "image analysis")
        return {
            "critique": data.get("imageCritique") or "",
            "score": data.get("suitabilityScoreOutOf10"),
            "reasoning": data.get("scoreReasoning") or "",
            "editing_notes": data.get("editingCritiqueAndSuggestions"),
        }

    async def analyze_festival(
        self, record: StructuredRecord, notes: Optional[str], token: CancelToken
    ) -> SmartAnalysis:
        from google.genai import types

        notes_section = ANALYSIS_NOTES_SECTION.format(notes=notes.strip()) if notes and notes.strip() else ""
        prompt = FESTIVAL_ANALYSIS_PROMPT.format(
            festival_name=record.festival_name,
            topics=", ".join(record.topics) or "unknown",
            objectives=record.objectives or "unknown",
            notes_section=notes_section,
        )
        response = await self._generate(
            token,
            "smart analysis",
            model=self.text_model,
            contents=prompt,
            config=types.GenerateContentConfig(
                tools=[types.Tool(google_search=types.GoogleSearch())],
            ),
        )
        return SmartAnalysis(text=(response.text or "").strip(), sources=grounding_sources(response))
