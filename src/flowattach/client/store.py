from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from flowattach.client.files import LocalFile
from flowattach.client.validation import validate_file
from flowattach.models import ExistingRemoteFile, FileStatus, PendingFile, Policy

logger = logging.getLogger(__name__)

REMOVABLE = {FileStatus.PENDING, FileStatus.INVALID}


class FileStateStore:
    """Canonical list of locally known files, keyed by file name.

    All mutation goes through this class; it runs on a single event loop
    and needs no locking.
    """

    def __init__(self, listener: Callable[[PendingFile], None] | None = None) -> None:
        self._files: dict[str, PendingFile] = {}
        self._sources: dict[str, LocalFile] = {}
        self.listener = listener

    @property
    def files(self) -> list[PendingFile]:
        return list(self._files.values())

    def get(self, name: str) -> PendingFile | None:
        return self._files.get(name)

    def source(self, name: str) -> LocalFile | None:
        return self._sources.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._files

    def __len__(self) -> int:
        return len(self._files)

    def add_files(
        self,
        files: Iterable[LocalFile],
        policy: Policy,
        existing: Iterable[ExistingRemoteFile] = (),
    ) -> list[PendingFile]:
        """Append *files*, validating each against the batch accepted so far."""
        existing = list(existing)
        pending = self.files
        batch_sizes: list[int] = []
        added: list[PendingFile] = []

        for local in files:
            # Names are identity keys; a second file with the same name is
            # reported back as invalid but never stored.
            if local.name in self._files:
                logger.warning("Rejecting duplicate file name %s", local.name)
                added.append(
                    PendingFile(
                        name=local.name,
                        size=local.size,
                        content_type=local.content_type,
                        status=FileStatus.INVALID,
                        is_valid=False,
                        error=f"A file named {local.name} is already attached",
                    )
                )
                continue

            outcome = validate_file(
                local,
                policy,
                pending=pending,
                existing=existing,
                batch_sizes=batch_sizes,
            )
            entry = PendingFile(
                name=local.name,
                size=local.size,
                content_type=local.content_type,
                status=FileStatus.PENDING if outcome.is_valid else FileStatus.INVALID,
                is_valid=outcome.is_valid,
                error=outcome.error,
            )
            if outcome.is_valid:
                batch_sizes.append(local.size)
            else:
                logger.info("Rejected %s: %s", local.name, outcome.error)
            self._files[entry.name] = entry
            self._sources[entry.name] = local
            self._notify(entry)
            added.append(entry)
        return added

    def update(self, name: str, **fields: object) -> PendingFile | None:
        """Merge *fields* into the file called *name*; unknown names are ignored."""
        record = self._files.get(name)
        if record is None:
            return None

        status = fields.get("status")
        if status is not None:
            status = FileStatus(status)
            # Nothing returns to pending; invalid shares its rank.
            leaves_pending = status == FileStatus.PENDING and record.status != FileStatus.PENDING
            if status.rank < record.status.rank or leaves_pending:
                logger.warning(
                    "Ignoring update of %s: cannot move from %s back to %s",
                    name,
                    record.status.value,
                    status.value,
                )
                return record

        for key, value in fields.items():
            setattr(record, key, value)
        self._notify(record)
        return record

    def remove(self, name: str) -> bool:
        """Remove a pending or invalid file. Other states are refused."""
        record = self._files.get(name)
        if record is None:
            logger.warning("Cannot remove %s: unknown file", name)
            return False
        if record.status not in REMOVABLE:
            logger.warning("Cannot remove file %s - file is %s", name, record.status.value)
            return False
        self._drop(name)
        return True

    def purge(self, names: Iterable[str]) -> None:
        """Drop *names* regardless of status (used after reconciliation)."""
        for name in names:
            self._drop(name)

    def clear_new(self) -> None:
        self._files.clear()
        self._sources.clear()

    def pending_valid(self) -> list[PendingFile]:
        return [
            f for f in self._files.values()
            if f.status == FileStatus.PENDING and f.is_valid
        ]

    def total_valid_size(self) -> int:
        return sum(
            f.size for f in self._files.values()
            if f.is_valid and f.status != FileStatus.FAILED
        )

    def is_upload_in_progress(self) -> bool:
        return any(f.status == FileStatus.UPLOADING for f in self._files.values())

    def _drop(self, name: str) -> None:
        self._files.pop(name, None)
        self._sources.pop(name, None)

    def _notify(self, record: PendingFile) -> None:
        if self.listener is not None:
            self.listener(record)
