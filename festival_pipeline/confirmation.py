"""Deadline confirmation before a record is committed."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .errors import ValidationError
from .interaction import ConfirmChoice, UserInteraction
from .models import StructuredRecord
from .persian import format_jalali_for_display, gregorian_to_jalali, jalali_to_gregorian
from .store import RecordStore
from .structuring import resolve_deadlines

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeadlineDisplay:
    """Both calendar renderings of a record's deadline.

    ``derived`` names the side that was computed rather than extracted.
    """

    persian: Optional[str]
    gregorian: Optional[str]
    derived: Optional[str] = None

    @classmethod
    def from_record(cls, record: StructuredRecord) -> "DeadlineDisplay":
        persian = (record.deadline_persian or "").strip() or None
        gregorian = (record.deadline_gregorian or "").strip() or None
        derived = None
        if persian and not gregorian:
            try:
                gregorian = jalali_to_gregorian(persian)
                derived = "gregorian"
            except ValidationError:
                log.debug("Cannot derive Gregorian deadline from %r", persian)
        elif gregorian and not persian:
            try:
                persian = gregorian_to_jalali(gregorian)
                derived = "persian"
            except ValidationError:
                log.debug("Cannot derive Persian deadline from %r", gregorian)
        return cls(
            persian=format_jalali_for_display(persian) if persian else None,
            gregorian=gregorian,
            derived=derived,
        )


def reconcile_deadlines(record: StructuredRecord) -> None:
    """Make the deadline pair name one day again, the Persian side first.

    Editors may assign either field directly; an unparseable side is
    dropped and derived from the other, as in structuring.
    """
    if not record.has_deadline:
        return
    if record.deadline_persian and record.deadline_gregorian and record.deadlines_consistent():
        return
    persian, gregorian = resolve_deadlines(record.deadline_persian, record.deadline_gregorian)
    log.warning(
        "Record %s deadline %s / %s re-derived as %s / %s",
        record.id,
        record.deadline_persian,
        record.deadline_gregorian,
        persian,
        gregorian,
    )
    record.deadline_persian = persian
    record.deadline_gregorian = gregorian


@dataclass
class ConfirmationDecision:
    accepted: bool
    record: StructuredRecord


class ConfirmationGate:
    """Asks the user to accept the deadline, then commits to the store."""

    def __init__(self, interaction: UserInteraction, store: RecordStore) -> None:
        self.interaction = interaction
        self.store = store

    async def present_for_confirmation(self, record: StructuredRecord) -> ConfirmationDecision:
        """Block on the user's decision; records without a deadline pass straight through."""
        reconcile_deadlines(record)
        if not record.has_deadline:
            log.info("Record %s has no deadline; confirmation skipped", record.id)
            return ConfirmationDecision(accepted=True, record=record)

        display = DeadlineDisplay.from_record(record)
        choice = await self.interaction.confirm_deadline(record, display)
        accepted = choice is ConfirmChoice.ACCEPT
        log.info(
            "Deadline %s / %s %s for record %s",
            display.persian,
            display.gregorian,
            "accepted" if accepted else "sent back for editing",
            record.id,
        )
        return ConfirmationDecision(accepted=accepted, record=record)

    def commit(self, record: StructuredRecord) -> StructuredRecord:
        """Create or update *record*; PersistenceError propagates, the record stays intact."""
        reconcile_deadlines(record)
        if self.store.get(record.id) is None:
            self.store.create(record)
        else:
            self.store.update(record)
        log.info("Committed record %s (%s)", record.id, record.festival_name)
        return record
