"""CLI entrypoint for the festival call extraction and analysis pipeline.

Usage:
    python -m festival_pipeline extract call.pdf
    python -m festival_pipeline extract poster1.jpg poster2.jpg --timeout 120
    python -m festival_pipeline extract --text-file announcement.txt
    python -m festival_pipeline smart-analysis <RECORD_ID> --notes "focus on street photography"
    python -m festival_pipeline analyze <RECORD_ID> a.jpg b.jpg --focus "Nature"
    python -m festival_pipeline list
    python -m festival_pipeline delete <RECORD_ID>
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from .config import Settings, load_settings
from .events import BatchEvent, ExtractionProgress
from .models import (
    GENERAL_TOPIC,
    Batch,
    BatchItemInput,
    BatchItemStatus,
    OperationKind,
    Outcome,
    StructuredRecord,
)
from .normalizer import load_blob

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CANCELLED = 130


def _setup_logging(
    *,
    verbose: bool,
    detailed_logging: bool,
    data_dir: Path,
    log_file: Path | None,
) -> None:
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    root_level = logging.DEBUG if verbose else logging.INFO
    root_logger.setLevel(root_level)

    console_fmt = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    detailed_fmt = (
        "%(asctime)s | %(levelname)-8s | %(name)s | "
        "%(threadName)s | %(filename)s:%(lineno)d | %(message)s"
    )
    formatter = logging.Formatter(
        detailed_fmt if detailed_logging else console_fmt,
        "%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(root_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    resolved_log_file = log_file
    if resolved_log_file is None and detailed_logging:
        resolved_log_file = data_dir / "pipeline.log"

    if resolved_log_file is not None:
        resolved_log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            resolved_log_file,
            maxBytes=20 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(detailed_fmt, "%Y-%m-%d %H:%M:%S"))
        root_logger.addHandler(file_handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("google_genai").setLevel(logging.WARNING)
    logging.getLogger("docling").setLevel(logging.WARNING)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Photography contest call extraction and suitability analysis"
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Directory holding festivals.json (default: $FESTIVAL_DATA_DIR or data/)",
    )
    parser.add_argument("--text-model", default=None, help="Gemini model for text calls")
    parser.add_argument("--vision-model", default=None, help="Gemini model for image calls")
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Cancel an operation after this many seconds",
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=0,
        help="Re-run a failed stage up to N times when the error is retryable",
    )
    parser.add_argument(
        "--yes",
        "-y",
        action="store_true",
        help="Non-interactive: continue past quality warnings and accept deadlines",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--detailed-logging",
        action="store_true",
        help="Enable detailed logging (thread, file/line, rotating log file)",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Optional log file path (default: <data-dir>/pipeline.log in detailed mode)",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    extract = sub.add_parser("extract", help="Extract a contest call from files or text")
    extract.add_argument("files", nargs="*", type=Path, help="One PDF/DOCX, or up to 10 images")
    src = extract.add_mutually_exclusive_group()
    src.add_argument("--text", help="Announcement text given inline")
    src.add_argument("--text-file", type=Path, help="Read announcement text from a file")

    smart = sub.add_parser("smart-analysis", help="Grounded analysis of a stored contest")
    smart.add_argument("record_id")
    smart.add_argument("--notes", default=None, help="Extra guidance for the analysis")
    smart.add_argument("--force", action="store_true", help="Regenerate an existing analysis")

    analyze = sub.add_parser("analyze", help="Score images against a contest's smart analysis")
    analyze.add_argument("record_id")
    analyze.add_argument("images", nargs="+", type=Path)
    analyze.add_argument(
        "--focus",
        default=None,
        help=f"Topic to weigh most (default: {GENERAL_TOPIC}, holistic)",
    )
    analyze.add_argument(
        "--note",
        action="append",
        default=[],
        help="Per-image description, given once per image in order",
    )

    sub.add_parser("list", help="List stored contests")

    show = sub.add_parser("show", help="Show one stored contest")
    show.add_argument("record_id")

    delete = sub.add_parser("delete", help="Delete a stored contest")
    delete.add_argument("record_id")

    args = parser.parse_args(argv)
    if args.command == "extract" and not (args.files or args.text or args.text_file):
        parser.error("extract needs files, --text or --text-file")
    if args.command == "extract" and args.files and (args.text or args.text_file):
        parser.error("give either files or text, not both")
    if args.command == "analyze" and len(args.note) > len(args.images):
        parser.error("more --note values than images")
    return args


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def _settings_from_args(args: argparse.Namespace) -> Settings:
    settings = load_settings()
    if args.data_dir is not None:
        settings.data_dir = args.data_dir
    if args.text_model:
        settings.text_model = args.text_model
    if args.vision_model:
        settings.vision_model = args.vision_model
    if args.timeout:
        settings.request_timeout = args.timeout
    return settings


def build_session(settings: Settings, *, interactive: bool = True) -> Any:
    from .inference import GeminiInferenceService
    from .interaction import ConsoleInteraction, ScriptedInteraction
    from .session import PipelineSession
    from .store import JsonRecordStore

    inference = GeminiInferenceService(
        settings.api_key,
        text_model=settings.text_model,
        vision_model=settings.vision_model,
    )
    interaction = ConsoleInteraction() if interactive else ScriptedInteraction()
    return PipelineSession(
        inference,
        JsonRecordStore(settings.data_dir),
        interaction,
        settings=settings,
    )


class ProgressPrinter:
    """Drives tqdm bars from pipeline events."""

    def __init__(self) -> None:
        self._bar: Any = None

    def __call__(self, event: Any) -> None:
        from tqdm import tqdm

        if isinstance(event, ExtractionProgress):
            if self._bar is None:
                self._bar = tqdm(total=event.total, desc="Reading images")
            self._bar.update(1)
            self._bar.set_postfix_str(event.filename)
            if event.index >= event.total:
                self.close()
        elif isinstance(event, BatchEvent):
            if self._bar is None:
                self._bar = tqdm(total=len(event.batch.items), desc="Analysing images")
            if event.is_final:
                self.close()
            else:
                self._bar.update(1)
                self._bar.set_postfix_str(f"{event.item.input.image.filename}: {event.item.status.value}")

    def close(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None


async def _with_retries(session: Any, kind: OperationKind, outcome: Outcome, retries: int) -> Outcome:
    attempt = 0
    while outcome.is_error and outcome.retryable and attempt < retries:
        attempt += 1
        log.warning("Attempt %d/%d: retrying %s after: %s", attempt, retries, kind.value, outcome.message)
        outcome = await session.retry(kind)
    return outcome


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _print_record(record: StructuredRecord) -> None:
    print(f"[{record.id}] {record.festival_name or '(unnamed)'}")
    print(f"  Topics:      {', '.join(record.topics) or '-'}")
    print(f"  Objectives:  {record.objectives or '-'}")
    print(f"  Max photos:  {record.max_photos if record.max_photos is not None else '-'}")
    print(f"  Deadline:    {record.deadline_persian or '-'} / {record.deadline_gregorian or '-'}")
    print(f"  Image size:  {record.image_size or '-'}")
    print(f"  Submission:  {record.submission_method or '-'}")
    for source in record.source_attributions:
        print(f"  Source:      {source.title} <{source.uri}>")
    if record.smart_analysis:
        print("\nSmart analysis:\n")
        print(record.smart_analysis)
        for source in record.analysis_sources:
            print(f"  Source: {source.title} <{source.uri}>")


def _print_batch(batch: Batch) -> None:
    print(f"Batch {batch.id}: {batch.status.value} {batch.counts()}")
    for index, item in enumerate(batch.items, 1):
        name = item.input.image.filename
        if item.status is BatchItemStatus.DONE and item.result is not None:
            print(f"  {index}. {name}: {item.result.score:g}/10")
            print(f"     {item.result.critique}")
            if item.result.editing_notes:
                print(f"     Editing: {item.result.editing_notes}")
        else:
            print(f"  {index}. {name}: {item.status.value} ({item.error or '-'})")


def _exit_code(outcome: Outcome) -> int:
    if outcome.is_ok:
        return EXIT_OK
    if outcome.is_cancelled:
        print(f"Cancelled: {outcome.message}")
        return EXIT_CANCELLED
    print(f"Error: {outcome.message}", file=sys.stderr)
    if outcome.retryable:
        print("This error may be temporary; run the command again to retry.", file=sys.stderr)
    return EXIT_ERROR


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _run_command(args: argparse.Namespace, session: Any) -> int:
    progress = ProgressPrinter()
    unsubscribe = session.subscribe(progress)
    try:
        if args.command == "extract":
            if args.files:
                blobs = [load_blob(path) for path in args.files]
                kind = OperationKind.EXTRACT_FILE
                outcome = await session.extract_from_files(blobs)
            else:
                text = args.text if args.text is not None else args.text_file.read_text(encoding="utf-8")
                kind = OperationKind.EXTRACT_TEXT
                outcome = await session.extract_from_text(text)
            outcome = await _with_retries(session, kind, outcome, args.retries)
            if outcome.is_ok:
                _print_record(outcome.value)
            return _exit_code(outcome)

        if args.command == "smart-analysis":
            outcome = await session.request_smart_analysis(
                args.record_id, notes=args.notes, force=args.force
            )
            outcome = await _with_retries(session, OperationKind.SMART_ANALYSIS, outcome, args.retries)
            if outcome.is_ok:
                _print_record(outcome.value)
            return _exit_code(outcome)

        if args.command == "analyze":
            notes = list(args.note) + [None] * (len(args.images) - len(args.note))
            items = [
                BatchItemInput(image=load_blob(path), note=note)
                for path, note in zip(args.images, notes)
            ]
            outcome = await session.analyze_images(args.record_id, items, topic_focus=args.focus)
            outcome = await _with_retries(session, OperationKind.ANALYZE_BATCH, outcome, args.retries)
            if isinstance(outcome.value, Batch):
                _print_batch(outcome.value)
            return _exit_code(outcome)
    finally:
        progress.close()
        unsubscribe()
    raise ValueError(f"unknown command {args.command!r}")


def _run_store_command(args: argparse.Namespace, settings: Settings) -> int:
    from .errors import PersistenceError
    from .store import JsonRecordStore

    store = JsonRecordStore(settings.data_dir)
    try:
        if args.command == "list":
            records = store.list()
            if not records:
                print("No festivals stored.")
            for record in records:
                deadline = record.deadline_persian or record.deadline_gregorian or "-"
                print(f"{record.id}  {deadline:<10}  {record.festival_name or '(unnamed)'}")
            return EXIT_OK
        if args.command == "show":
            record = store.get(args.record_id)
            if record is None:
                print(f"No festival with id {args.record_id}", file=sys.stderr)
                return EXIT_ERROR
            _print_record(record)
            if record.batch_id:
                batch = store.get_batch(record.batch_id)
                if batch is not None:
                    print()
                    _print_batch(batch)
            return EXIT_OK
        if store.delete(args.record_id):
            print(f"Deleted {args.record_id}")
            return EXIT_OK
        print(f"No festival with id {args.record_id}", file=sys.stderr)
        return EXIT_ERROR
    except PersistenceError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_ERROR


def main(argv: list[str] | None = None, session: Optional[Any] = None) -> int:
    """Run one CLI command and return its exit code."""
    args = parse_args(argv)
    settings = _settings_from_args(args)
    _setup_logging(
        verbose=args.verbose,
        detailed_logging=args.detailed_logging,
        data_dir=settings.data_dir,
        log_file=args.log_file,
    )
    log.debug(
        "Logging setup: verbose=%s detailed=%s log_file=%s",
        args.verbose,
        args.detailed_logging,
        args.log_file,
    )

    if args.command in ("list", "show", "delete"):
        return _run_store_command(args, settings)

    overall_t0 = time.perf_counter()
    if session is None:
        session = build_session(settings, interactive=not args.yes)
    try:
        code = asyncio.run(_run_command(args, session))
    except KeyboardInterrupt:
        print("Cancelled: interrupted")
        code = EXIT_CANCELLED
    except OSError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        code = EXIT_ERROR
    log.info("Command %s finished with exit code %s in %.1fs", args.command, code, time.perf_counter() - overall_t0)
    return code
