"""Record store: keyed festival records, last write wins."""

from __future__ import annotations

import copy
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from .errors import PersistenceError
from .models import Batch, StructuredRecord
from .utils import STORE_FILE_NAME, load_json, save_json

log = logging.getLogger(__name__)


class RecordStore(ABC):
    @abstractmethod
    def create(self, record: StructuredRecord) -> StructuredRecord:
        raise NotImplementedError

    @abstractmethod
    def update(self, record: StructuredRecord) -> StructuredRecord:
        raise NotImplementedError

    @abstractmethod
    def delete(self, record_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def get(self, record_id: str) -> Optional[StructuredRecord]:
        raise NotImplementedError

    @abstractmethod
    def list(self) -> list[StructuredRecord]:
        raise NotImplementedError

    @abstractmethod
    def save_batch(self, batch: Batch) -> None:
        raise NotImplementedError

    @abstractmethod
    def get_batch(self, batch_id: str) -> Optional[Batch]:
        raise NotImplementedError


class MemoryRecordStore(RecordStore):
    """Process-local store; records are copied in and out."""

    def __init__(self) -> None:
        self._records: dict[str, StructuredRecord] = {}
        self._batches: dict[str, Batch] = {}

    def create(self, record: StructuredRecord) -> StructuredRecord:
        self._records[record.id] = copy.deepcopy(record)
        return record

    def update(self, record: StructuredRecord) -> StructuredRecord:
        self._records[record.id] = copy.deepcopy(record)
        return record

    def delete(self, record_id: str) -> bool:
        record = self._records.pop(record_id, None)
        if record is not None and record.batch_id:
            self._batches.pop(record.batch_id, None)
        return record is not None

    def get(self, record_id: str) -> Optional[StructuredRecord]:
        record = self._records.get(record_id)
        return copy.deepcopy(record) if record is not None else None

    def list(self) -> list[StructuredRecord]:
        return [copy.deepcopy(r) for r in self._records.values()]

    def save_batch(self, batch: Batch) -> None:
        self._batches[batch.id] = copy.deepcopy(batch)

    def get_batch(self, batch_id: str) -> Optional[Batch]:
        batch = self._batches.get(batch_id)
        return copy.deepcopy(batch) if batch is not None else None


class JsonRecordStore(RecordStore):
    """All records in one ``festivals.json`` file under *data_dir*.

    The file is re-read on every call so concurrent CLI invocations see
    each other's writes; the last writer wins.
    """

    def __init__(self, data_dir: Path | str) -> None:
        self.data_dir = Path(data_dir)
        self.path = self.data_dir / STORE_FILE_NAME

    def _load(self) -> dict[str, Any]:
        try:
            data = load_json(self.path, {"festivals": [], "batches": []})
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"cannot read {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise PersistenceError(f"unexpected content in {self.path}")
        data.setdefault("festivals", [])
        data.setdefault("batches", [])
        return data

    def _save(self, data: dict[str, Any]) -> None:
        try:
            save_json(self.path, data)
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceError(f"cannot write {self.path}: {exc}") from exc
        log.debug("Saved %d record(s) to %s", len(data["festivals"]), self.path)

    def _put(self, record: StructuredRecord) -> StructuredRecord:
        data = self._load()
        entries = [e for e in data["festivals"] if e.get("id") != record.id]
        entries.insert(0, record.to_dict())
        data["festivals"] = entries
        self._save(data)
        return record

    def create(self, record: StructuredRecord) -> StructuredRecord:
        log.info("Creating record %s", record.id)
        return self._put(record)

    def update(self, record: StructuredRecord) -> StructuredRecord:
        log.info("Updating record %s", record.id)
        return self._put(record)

    def delete(self, record_id: str) -> bool:
        data = self._load()
        remaining = [e for e in data["festivals"] if e.get("id") != record_id]
        if len(remaining) == len(data["festivals"]):
            return False
        data["festivals"] = remaining
        data["batches"] = [b for b in data["batches"] if b.get("recordId") != record_id]
        self._save(data)
        log.info("Deleted record %s", record_id)
        return True

    def get(self, record_id: str) -> Optional[StructuredRecord]:
        for entry in self._load()["festivals"]:
            if entry.get("id") == record_id:
                return StructuredRecord.from_dict(entry)
        return None

    def list(self) -> list[StructuredRecord]:
        return [StructuredRecord.from_dict(e) for e in self._load()["festivals"]]

    def save_batch(self, batch: Batch) -> None:
        data = self._load()
        data["batches"] = [b for b in data["batches"] if b.get("recordId") != batch.record_id]
        data["batches"].append(batch.to_dict())
        self._save(data)

    def get_batch(self, batch_id: str) -> Optional[Batch]:
        for entry in self._load()["batches"]:
            if entry.get("id") == batch_id:
                return Batch.from_dict(entry)
        return None
