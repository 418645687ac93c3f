"""User interaction surface: the two human decision points and record editing."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

from .errors import ValidationError
from .models import QualityWarning, StructuredRecord
from .persian import normalize_submission_method

if TYPE_CHECKING:
    from .confirmation import DeadlineDisplay

log = logging.getLogger(__name__)


class WarningChoice(str, Enum):
    CONTINUE = "continue"
    CANCEL = "cancel"


class ConfirmChoice(str, Enum):
    ACCEPT = "accept"
    EDIT = "edit"


class UserInteraction(ABC):
    """Each call suspends until the user decides; there is no timeout."""

    @abstractmethod
    async def resolve_quality_warning(self, warning: QualityWarning) -> WarningChoice:
        raise NotImplementedError

    @abstractmethod
    async def confirm_deadline(
        self, record: StructuredRecord, display: "DeadlineDisplay"
    ) -> ConfirmChoice:
        raise NotImplementedError

    @abstractmethod
    async def edit_record(self, record: StructuredRecord) -> StructuredRecord:
        raise NotImplementedError


class ConsoleInteraction(UserInteraction):
    """Prompts on stdin/stdout; blocking ``input`` runs in a worker thread."""

    def __init__(
        self,
        reader: Callable[[str], str] = input,
        writer: Callable[[str], None] = print,
    ) -> None:
        self._reader = reader
        self._writer = writer

    async def _ask(self, prompt: str) -> str:
        answer = await asyncio.to_thread(self._reader, prompt)
        return answer.strip()

    async def _choose(self, prompt: str, options: dict[str, Enum]) -> Enum:
        while True:
            answer = (await self._ask(prompt)).lower()
            if answer in options:
                return options[answer]
            self._writer(f"Please answer one of: {', '.join(options)}")

    async def resolve_quality_warning(self, warning: QualityWarning) -> WarningChoice:
        self._writer(
            f"Warning: {warning.reason} ({warning.char_count} chars, "
            f"expected at least {warning.threshold_chars})."
        )
        choice = await self._choose(
            "Continue anyway? [c]ontinue / [x] cancel: ",
            {"c": WarningChoice.CONTINUE, "continue": WarningChoice.CONTINUE,
             "x": WarningChoice.CANCEL, "cancel": WarningChoice.CANCEL},
        )
        return WarningChoice(choice)

    async def confirm_deadline(
        self, record: StructuredRecord, display: "DeadlineDisplay"
    ) -> ConfirmChoice:
        self._writer(f"Festival: {record.festival_name or '-'}")
        self._writer(f"  Deadline (Persian):   {display.persian or '-'}")
        self._writer(f"  Deadline (Gregorian): {display.gregorian or '-'}")
        if display.derived:
            self._writer(f"  ({display.derived} date was derived)")
        choice = await self._choose(
            "Is this deadline correct? [a]ccept / [e]dit: ",
            {"a": ConfirmChoice.ACCEPT, "accept": ConfirmChoice.ACCEPT,
             "e": ConfirmChoice.EDIT, "edit": ConfirmChoice.EDIT},
        )
        return ConfirmChoice(choice)

    async def edit_record(self, record: StructuredRecord) -> StructuredRecord:
        """Edit the main fields in place; an empty answer keeps the current value."""
        name = await self._ask(f"Festival name [{record.festival_name or ''}]: ")
        if name:
            record.festival_name = name
        submission = await self._ask(f"Submission method [{record.submission_method or ''}]: ")
        if submission:
            record.submission_method = normalize_submission_method(submission)

        while True:
            value = await self._ask(
                f"Persian deadline YYYY/MM/DD [{record.deadline_persian or ''}] "
                "('-' to clear, 'g' to enter a Gregorian date): "
            )
            try:
                if value == "-":
                    record.set_deadline_persian(None)
                elif value.lower() == "g":
                    record.set_deadline_gregorian(
                        await self._ask(f"Gregorian deadline YYYY-MM-DD [{record.deadline_gregorian or ''}]: ")
                    )
                elif value:
                    record.set_deadline_persian(value)
            except ValidationError as exc:
                self._writer(f"Invalid date: {exc}")
                continue
            break
        log.debug("Record %s edited: %s / %s", record.id, record.deadline_persian, record.deadline_gregorian)
        return record


class ScriptedInteraction(UserInteraction):
    """Replays pre-recorded answers; useful for non-interactive runs.

    Args:
        warning_choices: Answers to successive quality warnings.
        confirm_choices: Answers to successive deadline confirmations.
        editor: Optional callable applied to the record on each edit.
    """

    def __init__(
        self,
        warning_choices: Optional[list[WarningChoice]] = None,
        confirm_choices: Optional[list[ConfirmChoice]] = None,
        editor: Optional[Callable[[StructuredRecord], None]] = None,
    ) -> None:
        self.warning_choices = list(warning_choices or [])
        self.confirm_choices = list(confirm_choices or [])
        self.editor = editor
        self.warnings_seen: list[QualityWarning] = []
        self.displays_seen: list["DeadlineDisplay"] = []
        self.edits = 0

    async def resolve_quality_warning(self, warning: QualityWarning) -> WarningChoice:
        self.warnings_seen.append(warning)
        return self.warning_choices.pop(0) if self.warning_choices else WarningChoice.CONTINUE

    async def confirm_deadline(
        self, record: StructuredRecord, display: "DeadlineDisplay"
    ) -> ConfirmChoice:
        self.displays_seen.append(display)
        return self.confirm_choices.pop(0) if self.confirm_choices else ConfirmChoice.ACCEPT

    async def edit_record(self, record: StructuredRecord) -> StructuredRecord:
        self.edits += 1
        if self.editor is not None:
            self.editor(record)
        return record
