"""Recording records — the persistence boundary of the recorder.

The lifecycle only needs two calls: ``begin`` when a recording starts
and ``complete`` when it has been stopped and finalised.  Storage
failures are reported as ``PersistenceError``.
"""

import json
import logging
import os
import threading
from typing import Dict, Optional

from .errors import PersistenceError
from .models import RecordingRecord, STATUS_COMPLETED, STATUS_RECORDING

logger = logging.getLogger(__name__)


class RecordStore:
    """Interface for recording persistence."""

    def begin(self, task_id: int, file_path: str, start_time: str) -> RecordingRecord:
        raise NotImplementedError

    def complete(
        self, task_id: int, duration_seconds: int, end_time: str, file_path: str,
    ) -> RecordingRecord:
        raise NotImplementedError

    def get(self, task_id: int) -> Optional[RecordingRecord]:
        raise NotImplementedError


class InMemoryRecordStore(RecordStore):
    """Keeps the latest record per task in a dict."""

    def __init__(self) -> None:
        self._records: Dict[int, RecordingRecord] = {}
        self._lock = threading.Lock()

    def begin(self, task_id: int, file_path: str, start_time: str) -> RecordingRecord:
        rec = RecordingRecord(
            task_id=task_id, start_time=start_time,
            file_path=file_path, status=STATUS_RECORDING,
        )
        with self._lock:
            self._records[task_id] = rec
        return rec

    def complete(
        self, task_id: int, duration_seconds: int, end_time: str, file_path: str,
    ) -> RecordingRecord:
        with self._lock:
            rec = self._records.get(task_id)
            if rec is None:
                raise PersistenceError(
                    "complete recording", f"no recording found for task {task_id}"
                )
            rec.duration_seconds = duration_seconds
            rec.end_time = end_time
            rec.file_path = file_path
            rec.status = STATUS_COMPLETED
            return rec

    def get(self, task_id: int) -> Optional[RecordingRecord]:
        with self._lock:
            return self._records.get(task_id)


class JsonRecordStore(InMemoryRecordStore):
    """In-memory store mirrored to a JSON file after every change.

    The file holds ``{"recordings": [record, ...]}``; it is rewritten
    through a temp file so a crash never leaves it half-written.
    """

    def __init__(self, path: str) -> None:
        super().__init__()
        self.path = path
        self._load()

    def begin(self, task_id: int, file_path: str, start_time: str) -> RecordingRecord:
        rec = super().begin(task_id, file_path, start_time)
        self._save()
        return rec

    def complete(
        self, task_id: int, duration_seconds: int, end_time: str, file_path: str,
    ) -> RecordingRecord:
        rec = super().complete(task_id, duration_seconds, end_time, file_path)
        self._save()
        return rec

    def _load(self) -> None:
        if not os.path.isfile(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.loads(f.read())
            for d in data.get("recordings", []):
                rec = RecordingRecord.from_dict(d)
                self._records[rec.task_id] = rec
        except (OSError, ValueError, KeyError) as exc:
            raise PersistenceError("load records", f"{self.path}: {exc}") from exc
        logger.info("Loaded %d recording record(s) from %s", len(self._records), self.path)

    def _save(self) -> None:
        with self._lock:
            data = {"recordings": [r.to_dict() for r in self._records.values()]}
        tmp = self.path + ".tmp"
        try:
            parent = os.path.dirname(self.path)
            if parent:
                os.makedirs(parent, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(json.dumps(data, indent=2))
            os.replace(tmp, self.path)
        except OSError as exc:
            raise PersistenceError("save records", f"{self.path}: {exc}") from exc
