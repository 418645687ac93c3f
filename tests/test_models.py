"""Data model invariants and the Persian calendar helpers they rely on."""

from __future__ import annotations

import pytest

from festival_pipeline import (
    AbortedByUser,
    Batch,
    BatchItem,
    BatchItemInput,
    BatchItemStatus,
    BatchStatus,
    ItemAnalysis,
    Operation,
    OperationKind,
    OperationStatus,
    Outcome,
    ServiceConfigurationError,
    SourceAttribution,
    StructuredRecord,
    TransientNetworkError,
    ValidationError,
)
from festival_pipeline.models import dedupe_sources
from festival_pipeline.persian import (
    format_jalali_for_display,
    gregorian_to_jalali,
    jalali_to_gregorian,
    normalize_persian_text,
    normalize_submission_method,
    parse_jalali,
    to_western_digits,
)

from conftest import make_blob


# =========================================================================
# 1. Persian helpers
# =========================================================================


class TestDigits:
    def test_persian_digits(self):
        assert to_western_digits("۱۴۰۳/۰۲/۱۰") == "1403/02/10"

    def test_arabic_indic_digits(self):
        assert to_western_digits("٢٠٢٤-٠٤-٢٩") == "2024-04-29"

    def test_numbers_and_none(self):
        assert to_western_digits(20) == "20"
        assert to_western_digits(None) is None


class TestPersianText:
    def test_arabic_yeh_and_kaf(self):
        assert normalize_persian_text("كتاب عكاسي") == "کتاب عکاسی"


class TestSubmissionMethod:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("info@fest.org", "mailto:info@fest.org"),
            ("fest.org/submit", "https://fest.org/submit"),
            ("https://fest.org", "https://fest.org"),
            ("By post to the festival office", "By post to the festival office"),
            ("  ", ""),
        ],
    )
    def test_normalization(self, raw, expected):
        assert normalize_submission_method(raw) == expected


class TestCalendar:
    def test_known_day(self):
        assert jalali_to_gregorian("1403/02/10") == "2024-04-29"
        assert gregorian_to_jalali("2024-04-29") == "1403/02/10"

    def test_alternate_separators(self):
        assert jalali_to_gregorian("1403-02-10") == "2024-04-29"

    @pytest.mark.parametrize("value", ["1403/13/01", "1403/02/32", "abc", "", "1250/01/01"])
    def test_invalid_jalali(self, value):
        with pytest.raises(ValidationError):
            parse_jalali(value)

    def test_display_format(self):
        assert format_jalali_for_display("1403/02/10") == "10 / 02 / 1403"


# =========================================================================
# 2. Operation
# =========================================================================


class TestOperation:
    def test_terminal_transition_releases_token(self):
        op = Operation(id="op_1", kind=OperationKind.EXTRACT_FILE, token=object())
        op.transition(OperationStatus.RUNNING)
        op.transition(OperationStatus.COMPLETED)
        assert op.token is None
        assert op.finished_at is not None

    def test_cannot_leave_terminal_state(self):
        op = Operation(id="op_1", kind=OperationKind.EXTRACT_FILE)
        op.transition(OperationStatus.CANCELLED)
        with pytest.raises(RuntimeError):
            op.transition(OperationStatus.RUNNING)

    def test_fail_keeps_message_and_classification(self):
        op = Operation(id="op_1", kind=OperationKind.EXTRACT_TEXT)
        op.fail(TransientNetworkError("service unreachable"))
        assert op.status is OperationStatus.FAILED
        assert op.error == "service unreachable"
        assert op.retryable is True


# =========================================================================
# 3. StructuredRecord deadlines
# =========================================================================


class TestRecordDeadlines:
    def test_set_persian_derives_gregorian(self):
        record = StructuredRecord(id="r")
        record.set_deadline_persian("۱۴۰۳/۰۲/۱۰")
        assert record.deadline_persian == "1403/02/10"
        assert record.deadline_gregorian == "2024-04-29"
        assert record.deadlines_consistent()

    def test_set_gregorian_derives_persian(self):
        record = StructuredRecord(id="r")
        record.set_deadline_gregorian("2024-04-29")
        assert record.deadline_persian == "1403/02/10"

    def test_invalid_value_leaves_record_untouched(self):
        record = StructuredRecord(id="r")
        record.set_deadline_persian("1403/02/10")
        with pytest.raises(ValidationError):
            record.set_deadline_gregorian("2024-02-31")
        assert record.deadline_persian == "1403/02/10"
        assert record.deadline_gregorian == "2024-04-29"

    def test_empty_clears_both(self):
        record = StructuredRecord(id="r")
        record.set_deadline_persian("1403/02/10")
        record.set_deadline_persian("")
        assert record.deadline_persian is None
        assert record.deadline_gregorian is None
        assert not record.has_deadline

    def test_inconsistent_pair_detected(self):
        record = StructuredRecord(id="r", deadline_persian="1403/02/10", deadline_gregorian="2024-05-01")
        assert not record.deadlines_consistent()

    def test_dict_roundtrip(self):
        record = StructuredRecord(
            id="r",
            festival_name="Golden Lens",
            topics=["Nature"],
            max_photos=4,
            source_attributions=[SourceAttribution("https://a.org", "A")],
            batch_id="batch_1",
        )
        record.set_deadline_persian("1403/02/10")
        data = record.to_dict()
        assert data["submissionDeadlinePersian"] == "1403/02/10"
        assert data["extractionSourceUrls"] == [{"uri": "https://a.org", "title": "A"}]
        assert StructuredRecord.from_dict(data) == record


class TestDedupeSources:
    def test_first_seen_order(self):
        sources = [
            SourceAttribution("https://a.org", "A"),
            SourceAttribution("https://b.org", "B"),
            SourceAttribution("https://a.org", "A again"),
        ]
        assert [s.title for s in dedupe_sources(sources)] == ["A", "B"]


# =========================================================================
# 4. Batch items and aggregate status
# =========================================================================


def _item(status: BatchItemStatus = BatchItemStatus.QUEUED) -> BatchItem:
    item = BatchItem(id="i", input=BatchItemInput(image=make_blob("a.png")))
    item.status = status
    return item


class TestBatchItem:
    def test_monotonic_transitions(self):
        item = _item()
        item.transition(BatchItemStatus.RUNNING)
        item.transition(BatchItemStatus.DONE)
        with pytest.raises(RuntimeError):
            item.transition(BatchItemStatus.RUNNING)

    def test_queued_can_be_cancelled_directly(self):
        item = _item()
        item.transition(BatchItemStatus.CANCELLED)
        assert item.is_terminal

    def test_queued_cannot_jump_to_done(self):
        with pytest.raises(RuntimeError):
            _item().transition(BatchItemStatus.DONE)

    def test_to_dict_excludes_image_bytes(self):
        item = _item(BatchItemStatus.DONE)
        item.result = ItemAnalysis("nice", 8.0, "fits", "crop tighter")
        data = item.to_dict()
        assert "data" not in data
        assert BatchItem.from_dict(data).result == item.result


class TestBatchStatus:
    @pytest.mark.parametrize(
        "statuses, expected",
        [
            ([BatchItemStatus.DONE, BatchItemStatus.RUNNING], BatchStatus.RUNNING),
            ([BatchItemStatus.DONE, BatchItemStatus.QUEUED], BatchStatus.RUNNING),
            ([BatchItemStatus.DONE, BatchItemStatus.CANCELLED], BatchStatus.CANCELLED),
            ([BatchItemStatus.FAILED, BatchItemStatus.CANCELLED], BatchStatus.CANCELLED),
            ([BatchItemStatus.DONE, BatchItemStatus.FAILED], BatchStatus.PARTIALLY_FAILED),
            ([BatchItemStatus.DONE, BatchItemStatus.DONE], BatchStatus.COMPLETED),
        ],
    )
    def test_derived(self, statuses, expected):
        batch = Batch(id="b", record_id="r", items=[_item(s) for s in statuses])
        assert batch.status is expected


# =========================================================================
# 5. Outcome
# =========================================================================


class TestOutcome:
    def test_error_carries_retryability(self):
        assert Outcome.error(TransientNetworkError("x")).retryable is True
        assert Outcome.error(ServiceConfigurationError("x")).retryable is False

    def test_cancelled_is_not_an_error(self):
        outcome = Outcome.cancelled()
        assert outcome.is_cancelled and not outcome.is_error
        assert outcome.message == "cancelled by user"

    def test_aborted_is_never_retryable(self):
        assert AbortedByUser().retryable is False
