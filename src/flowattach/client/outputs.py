from __future__ import annotations

import logging
from collections.abc import Callable

from flowattach.models import Event, UploadStatus

logger = logging.getLogger(__name__)


class OutputBinding:
    """Keeps the last value of each host output and notifies on change.

    Hosts read the outputs as opaque JSON strings plus a numeric status code.
    """

    def __init__(self, notify: Callable[[], None] | None = None) -> None:
        self._notify = notify
        self.files_json = ""
        self.existing_files = ""
        self.upload_results = ""
        self.last_upload_status = UploadStatus.NONE

    def handle(self, event: Event) -> None:
        payload = event.to_payload()
        if "filesJSON" in payload:
            self.files_json = payload["filesJSON"]
        if "existingFiles" in payload:
            self.existing_files = payload["existingFiles"]
        if "uploadResults" in payload:
            self.upload_results = payload["uploadResults"]
        if "uploadStatus" in payload:
            try:
                self.last_upload_status = UploadStatus(payload["uploadStatus"])
            except ValueError:
                logger.warning("Unknown upload status %r", payload["uploadStatus"])
                self.last_upload_status = UploadStatus.NONE
        if self._notify is not None:
            self._notify()

    def outputs(self) -> dict[str, str]:
        return {
            "FilesAsJSON": self.files_json,
            "ExistingFiles": self.existing_files,
            "UploadResults": self.upload_results,
            "LastUploadStatus": str(self.last_upload_status.code),
        }
