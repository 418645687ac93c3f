"""Stage-1 extraction and the quality gate."""

from __future__ import annotations

import asyncio

import pytest

from festival_pipeline import (
    AbortedByUser,
    ContentKind,
    ContentNormalizer,
    EventChannel,
    ExtractionCoordinator,
    ExtractionError,
    ExtractionProgress,
    InferenceError,
    OperationKind,
    ServiceConfigurationError,
    TransientNetworkError,
    quality_warning_for,
)
from festival_pipeline.abort import CancelToken
from festival_pipeline.utils import IMAGE_TEXT_SEPARATOR

from conftest import LONG_TEXT, PDF_BYTES, FakeConverter, cancel_then_hang, make_blob


def _token(kind: OperationKind = OperationKind.EXTRACT_FILE) -> CancelToken:
    return CancelToken("op_test", kind)


def _images(count: int):
    return ContentNormalizer().normalize_files([make_blob(f"{i}.png") for i in range(1, count + 1)])


class TestQualityWarning:
    def test_image_threshold(self):
        assert quality_warning_for("x" * 29, ContentKind.IMAGES).threshold_chars == 30
        assert quality_warning_for("x" * 30, ContentKind.IMAGES) is None

    def test_text_threshold(self):
        assert quality_warning_for("x" * 49, ContentKind.TEXT).threshold_chars == 50
        assert quality_warning_for("x" * 50, ContentKind.TEXT) is None

    def test_whitespace_does_not_count(self):
        warning = quality_warning_for("   short   ", ContentKind.IMAGES)
        assert warning.char_count == 5

    def test_documents_are_never_gated(self):
        assert quality_warning_for("x", ContentKind.DOCUMENT) is None


class TestImageExtraction:
    def test_sequential_in_order_with_separator(self, fake_inference):
        fake_inference.texts = ["first " * 5, "second " * 5, "third " * 5]
        coordinator = ExtractionCoordinator(fake_inference)

        result = asyncio.run(coordinator.extract(_images(3), _token()))

        assert result.per_input_texts == [t.strip() for t in ["first " * 5, "second " * 5, "third " * 5]]
        assert result.raw_text == IMAGE_TEXT_SEPARATOR.join(result.per_input_texts)
        assert result.quality_warning is None
        assert fake_inference.calls == ["extract_text"] * 3

    def test_short_image_text_warns(self, fake_inference):
        fake_inference.texts = ["tiny"]
        coordinator = ExtractionCoordinator(fake_inference)

        result = asyncio.run(coordinator.extract(_images(1), _token()))

        assert result.needs_acknowledgement
        assert result.quality_warning.threshold_chars == 30
        assert result.raw_text == "tiny"

    def test_acknowledge_returns_same_text_without_new_calls(self, fake_inference):
        fake_inference.texts = ["tiny"]
        coordinator = ExtractionCoordinator(fake_inference)
        content = _images(1)

        async def scenario():
            token = _token()
            warned = await coordinator.extract(content, token)
            return warned, await coordinator.extract(
                content, token, acknowledge_warning=True, previous=warned
            )

        warned, acknowledged = asyncio.run(scenario())
        assert acknowledged.raw_text == warned.raw_text
        assert acknowledged.quality_warning is None
        assert fake_inference.calls == ["extract_text"]

    def test_transient_error_at_second_image_fails_whole_extraction(self, fake_inference):
        fake_inference.texts = ["a" * 40, TransientNetworkError("unreachable"), "c" * 40]
        coordinator = ExtractionCoordinator(fake_inference)

        with pytest.raises(TransientNetworkError):
            asyncio.run(coordinator.extract(_images(3), _token()))
        assert fake_inference.calls == ["extract_text", "extract_text"]

    def test_configuration_error_keeps_its_class(self, fake_inference):
        fake_inference.texts = [ServiceConfigurationError("bad key")]
        with pytest.raises(ServiceConfigurationError):
            asyncio.run(ExtractionCoordinator(fake_inference).extract(_images(1), _token()))

    def test_other_service_errors_become_extraction_errors(self, fake_inference):
        fake_inference.texts = [InferenceError("garbled")]
        with pytest.raises(ExtractionError, match="garbled"):
            asyncio.run(ExtractionCoordinator(fake_inference).extract(_images(1), _token()))

    def test_cancelled_token_makes_no_calls(self, fake_inference):
        token = _token()
        token.cancel()
        with pytest.raises(AbortedByUser):
            asyncio.run(ExtractionCoordinator(fake_inference).extract(_images(2), token))
        assert fake_inference.calls == []

    def test_late_response_after_cancel_is_discarded(self, fake_inference):
        async def answer_after_cancel(token):
            token.cancel()
            return "a perfectly good answer that arrived too late"

        fake_inference.texts = [answer_after_cancel, "never requested"]
        with pytest.raises(AbortedByUser):
            asyncio.run(ExtractionCoordinator(fake_inference).extract(_images(2), _token()))
        assert fake_inference.calls == ["extract_text"]

    def test_cancel_mid_call_aborts(self, fake_inference):
        fake_inference.texts = [cancel_then_hang]
        with pytest.raises(AbortedByUser):
            asyncio.run(ExtractionCoordinator(fake_inference).extract(_images(2), _token()))
        assert fake_inference.calls == ["extract_text"]

    def test_progress_events(self, fake_inference):
        fake_inference.texts = ["a" * 40, "b" * 40]
        events = EventChannel()
        seen = []
        events.subscribe(seen.append)

        asyncio.run(ExtractionCoordinator(fake_inference, events=events).extract(_images(2), _token()))

        assert seen == [ExtractionProgress(1, 2, "1.png"), ExtractionProgress(2, 2, "2.png")]


class TestTextExtraction:
    def test_text_is_verbatim(self, fake_inference):
        content = ContentNormalizer().normalize_text(LONG_TEXT)
        result = asyncio.run(
            ExtractionCoordinator(fake_inference).extract(content, _token(OperationKind.EXTRACT_TEXT))
        )
        assert result.raw_text == LONG_TEXT
        assert result.quality_warning is None
        assert fake_inference.calls == []

    def test_short_text_warns(self, fake_inference):
        content = ContentNormalizer().normalize_text("Deadline 1403/02/10")
        result = asyncio.run(
            ExtractionCoordinator(fake_inference).extract(content, _token(OperationKind.EXTRACT_TEXT))
        )
        assert result.quality_warning.threshold_chars == 50


class TestDocumentExtraction:
    def test_document_text(self, fake_inference):
        converter = FakeConverter(text="  Deadline: 1403/02/10  ")
        coordinator = ExtractionCoordinator(fake_inference, converter_factory=lambda: converter)
        content = ContentNormalizer().normalize_files([make_blob("call.pdf", PDF_BYTES)])

        result = asyncio.run(coordinator.extract(content, _token()))

        assert result.raw_text == "Deadline: 1403/02/10"
        assert result.quality_warning is None
        assert converter.sources[0].name == "call.pdf"

    def test_empty_document_is_hard_failure(self, fake_inference):
        coordinator = ExtractionCoordinator(fake_inference, converter_factory=lambda: FakeConverter(text=""))
        content = ContentNormalizer().normalize_files([make_blob("scan.pdf", PDF_BYTES)])
        with pytest.raises(ExtractionError, match="no text"):
            asyncio.run(coordinator.extract(content, _token()))

    def test_converter_failure_is_extraction_error(self, fake_inference):
        converter = FakeConverter(error=RuntimeError("corrupt xref table"))
        coordinator = ExtractionCoordinator(fake_inference, converter_factory=lambda: converter)
        content = ContentNormalizer().normalize_files([make_blob("bad.pdf", PDF_BYTES)])
        with pytest.raises(ExtractionError, match="corrupt xref"):
            asyncio.run(coordinator.extract(content, _token()))

    def test_converter_factory_failure_is_extraction_error(self, fake_inference):
        attempts = []

        def factory():
            attempts.append(True)
            if len(attempts) == 1:
                raise RuntimeError("docling models could not be loaded")
            return FakeConverter(text="Some festival text")

        coordinator = ExtractionCoordinator(fake_inference, converter_factory=factory)
        content = ContentNormalizer().normalize_files([make_blob("call.pdf", PDF_BYTES)])

        with pytest.raises(ExtractionError, match="models could not be loaded") as exc_info:
            asyncio.run(coordinator.extract(content, _token()))
        assert exc_info.value.retryable is True

        result = asyncio.run(coordinator.extract(content, _token()))
        assert result.raw_text == "Some festival text"
        assert len(attempts) == 2

    def test_converter_is_built_once(self, fake_inference):
        built = []

        def factory():
            built.append(True)
            return FakeConverter(text="Some festival text")

        coordinator = ExtractionCoordinator(fake_inference, converter_factory=factory)
        content = ContentNormalizer().normalize_files([make_blob("call.pdf", PDF_BYTES)])

        async def scenario():
            await coordinator.extract(content, _token())
            await coordinator.extract(content, _token())

        asyncio.run(scenario())
        assert len(built) == 1
