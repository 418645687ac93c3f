"""Stage-2 structuring and payload normalisation."""

from __future__ import annotations

import asyncio
import dataclasses

import pytest

from festival_pipeline import (
    AbortedByUser,
    InferenceError,
    OperationKind,
    ServiceConfigurationError,
    SourceAttribution,
    StructuredInfoExtractor,
    StructuredPayload,
)
from festival_pipeline.abort import CancelToken
from festival_pipeline.structuring import (
    build_record,
    parse_max_photos,
    parse_topics,
    resolve_deadlines,
)

from conftest import cancel_then_hang, structured


def _token() -> CancelToken:
    return CancelToken("op_test", OperationKind.EXTRACT_TEXT)


class TestResolveDeadlines:
    def test_persian_only_derives_gregorian(self):
        assert resolve_deadlines("1403/02/10", None) == ("1403/02/10", "2024-04-29")

    def test_gregorian_only_derives_persian(self):
        assert resolve_deadlines(None, "2024-04-29") == ("1403/02/10", "2024-04-29")

    def test_persian_numerals_canonicalised(self):
        assert resolve_deadlines("۱۴۰۳/۰۲/۱۰", "") == ("1403/02/10", "2024-04-29")

    def test_persian_wins_on_disagreement(self):
        assert resolve_deadlines("1403/02/10", "2024-05-15") == ("1403/02/10", "2024-04-29")

    def test_invalid_persian_falls_back_to_valid_gregorian(self):
        assert resolve_deadlines("1403/14/40", "2024-04-29") == ("1403/02/10", "2024-04-29")

    def test_both_invalid_are_dropped(self):
        assert resolve_deadlines("soon", "2024-13-01") == (None, None)

    def test_out_of_range_jalali_year_dropped(self):
        assert resolve_deadlines("1200/01/01", None) == (None, None)

    def test_missing(self):
        assert resolve_deadlines(None, None) == (None, None)


class TestFieldParsing:
    def test_topics_split_and_trimmed(self):
        assert parse_topics("Nature, Street ،Portrait,, Nature") == ["Nature", "Street", "Portrait"]

    def test_topics_from_list(self):
        assert parse_topics(["A", " B "]) == ["A", "B"]

    @pytest.mark.parametrize(
        "raw, expected",
        [("۵", 5), ("12", 12), (4, 4), (3.0, 3), ("Unlimited", "Unlimited"), ("", None), (None, None)],
    )
    def test_max_photos(self, raw, expected):
        assert parse_max_photos(raw) == expected


class TestBuildRecord:
    def test_full_payload(self):
        payload = StructuredPayload(
            data={
                "festivalName": "جشنواره عكس",
                "objectives": "Promote photography",
                "topicsString": "Nature, Street",
                "maxPhotos": "۱۰",
                "submissionDeadlinePersian": "۱۴۰۳/۰۲/۱۰",
                "submissionDeadlineGregorian": None,
                "imageSize": "3000px",
                "submissionMethod": "entries@fest.org",
            },
            sources=[
                SourceAttribution("https://fest.org", "Fest"),
                SourceAttribution("https://news.org", "News"),
                SourceAttribution("https://fest.org", "Fest duplicate"),
            ],
        )
        record = build_record(payload, "rec-1")
        assert record.id == "rec-1"
        assert record.festival_name == "جشنواره عکس"
        assert record.topics == ["Nature", "Street"]
        assert record.max_photos == 10
        assert record.deadline_persian == "1403/02/10"
        assert record.deadline_gregorian == "2024-04-29"
        assert record.submission_method == "mailto:entries@fest.org"
        assert [s.uri for s in record.source_attributions] == ["https://fest.org", "https://news.org"]

    def test_empty_payload(self):
        record = build_record(StructuredPayload(data={}))
        assert record.festival_name is None
        assert record.topics == []
        assert not record.has_deadline


class TestStructuredInfoExtractor:
    def test_document_deadline_scenario(self, fake_inference):
        fake_inference.structured = [
            structured(festivalName="Spring Salon", submissionDeadlinePersian="1403/02/10")
        ]
        record = asyncio.run(
            StructuredInfoExtractor(fake_inference).structure("Deadline: 1403/02/10", "call.pdf", _token())
        )
        assert record.deadline_persian == "1403/02/10"
        assert record.deadline_gregorian == "2024-04-29"

    def test_rerun_is_idempotent(self, fake_inference):
        payload = structured(
            festivalName="Spring Salon",
            topicsString="Nature",
            submissionDeadlineGregorian="2024-04-29",
        )
        fake_inference.structured = [payload, payload]
        extractor = StructuredInfoExtractor(fake_inference)

        async def scenario():
            first = await extractor.structure("text", "call.pdf", _token())
            second = await extractor.structure("text", "call.pdf", _token())
            return first, second

        first, second = asyncio.run(scenario())
        assert dataclasses.replace(second, id=first.id) == first

    def test_service_errors_propagate(self, fake_inference):
        fake_inference.structured = [ServiceConfigurationError("API key missing")]
        with pytest.raises(ServiceConfigurationError):
            asyncio.run(StructuredInfoExtractor(fake_inference).structure("t", "n", _token()))

        fake_inference.structured = [InferenceError("not JSON")]
        with pytest.raises(InferenceError):
            asyncio.run(StructuredInfoExtractor(fake_inference).structure("t", "n", _token()))

    def test_cancelled_before_call(self, fake_inference):
        token = _token()
        token.cancel()
        with pytest.raises(AbortedByUser):
            asyncio.run(StructuredInfoExtractor(fake_inference).structure("t", "n", token))
        assert fake_inference.calls == []

    def test_cancelled_during_call(self, fake_inference):
        fake_inference.structured = [cancel_then_hang]
        with pytest.raises(AbortedByUser):
            asyncio.run(StructuredInfoExtractor(fake_inference).structure("t", "n", _token()))
