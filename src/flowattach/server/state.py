from __future__ import annotations

import re
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path

from flowattach.server.models import FlowRunRecord, FlowRunState

_BAD_SEGMENT = re.compile(r"[\\/]|^\.{1,2}$")


class FlowRunRegistry:
    """Thread-safe in-memory registry of flow runs."""

    def __init__(self) -> None:
        self._records: dict[str, FlowRunRecord] = {}
        self._lock = threading.Lock()

    def create(self, operation: str, file_name: str = "") -> FlowRunRecord:
        record = FlowRunRecord(
            flow_run_id=str(uuid.uuid4()),
            operation=operation,
            file_name=file_name,
        )
        with self._lock:
            self._records[record.flow_run_id] = record
        return record

    def get(self, flow_run_id: str) -> FlowRunRecord | None:
        with self._lock:
            return self._records.get(flow_run_id)

    def finish(self, flow_run_id: str, error: str | None = None) -> FlowRunRecord | None:
        with self._lock:
            record = self._records.get(flow_run_id)
            if record is None:
                return None
            record.state = FlowRunState.FAILED if error else FlowRunState.SUCCEEDED
            record.error = error
            return record


def _check_segment(segment: str, what: str) -> str:
    if not segment or _BAD_SEGMENT.search(segment):
        raise ValueError(f"Invalid {what}: {segment!r}")
    return segment


@dataclass
class AppState:
    """Shared state of the reference flow backend."""

    storage_dir: Path
    wrap_download: bool = False
    runs: FlowRunRegistry = field(default_factory=FlowRunRegistry)

    def folder(self, container: str, folder_name: str | None = None) -> Path:
        """Directory for *container* and an optional ``/``-separated folder path."""
        path = self.storage_dir / _check_segment(container, "container path")
        for part in (folder_name or "").split("/"):
            if part:
                path = path / _check_segment(part, "folder name")
        return path

    def file(self, container: str, folder_name: str | None, file_name: str) -> Path:
        return self.folder(container, folder_name) / _check_segment(file_name, "file name")

    def relative(self, path: Path) -> str:
        return path.relative_to(self.storage_dir).as_posix()
