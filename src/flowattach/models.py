from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

BYTES_PER_MB = 1024 * 1024


class WireModel(BaseModel):
    """Base for models exchanged with the flow endpoints (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class FileStatus(str, Enum):
    """Lifecycle states of a locally known file."""
    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"
    INVALID = "invalid"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in (FileStatus.COMPLETED, FileStatus.FAILED)


_STATUS_RANK = {
    FileStatus.PENDING: 0,
    FileStatus.INVALID: 0,
    FileStatus.UPLOADING: 1,
    FileStatus.COMPLETED: 2,
    FileStatus.FAILED: 2,
}


class UploadStatus(str, Enum):
    """Overall upload status reported to the host."""
    NONE = "None"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def code(self) -> int:
        return _UPLOAD_STATUS_CODES[self]


_UPLOAD_STATUS_CODES = {
    UploadStatus.NONE: 0,
    UploadStatus.IN_PROGRESS: 1,
    UploadStatus.COMPLETED: 2,
    UploadStatus.FAILED: 3,
}


class LoadingState(str, Enum):
    """Overall loading indicator of the orchestrator."""
    INITIAL = "initial"
    LOADING = "loading"
    LOADED = "loaded"


class PendingFile(BaseModel):
    """A file offered locally and tracked until it is uploaded or removed."""
    name: str
    size: int
    content_type: str = ""
    status: FileStatus = FileStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    is_valid: bool = True
    error: str | None = None
    remote_url: str | None = None

    model_config = {"validate_assignment": True}


class ExistingRemoteFile(WireModel):
    """A file confirmed by the list flow."""
    name: str
    size: int = 0
    url: str = ""
    last_modified: datetime | None = None
    metadata: dict[str, Any] | None = None

    @field_validator("size", "url", mode="before")
    @classmethod
    def _null_as_default(cls, value: Any, info) -> Any:
        if value is None:
            return cls.model_fields[info.field_name].default
        return value


class Policy(WireModel):
    """Type and size policy applied when files are accepted."""
    max_total_file_size_mb: int = Field(default=20, ge=0, alias="maxTotalFileSizeMB")
    allowed_file_types: str = Field(default="*", alias="allowedFileTypes")

    @property
    def max_total_size_bytes(self) -> int:
        return self.max_total_file_size_mb * BYTES_PER_MB


class BatchEntry(WireModel):
    """Minimal descriptor of a file processed in local JSON mode."""
    name: str
    size: int
    content_base64: str


class UploadResult(WireModel):
    file_name: str
    success: bool
    url: str = ""
    error: str | None = None
    flow_run_id: str | None = None


class DeleteResult(WireModel):
    file_name: str
    success: bool
    error: str | None = None
    flow_run_id: str | None = None


class DownloadedFile(BaseModel):
    """Decoded payload of the download flow."""
    file_name: str
    content_type: str
    content: bytes

    @property
    def file_size(self) -> int:
        return len(self.content)


class ViewResult(BaseModel):
    """Outcome of viewing an existing file, either by direct URL or through the flow."""
    file_name: str
    method: Literal["direct", "flow"]
    url: str | None = None
    path: str | None = None


# ---------------------------------------------------------------------------
# Flow request/response bodies
# ---------------------------------------------------------------------------


class UploadFlowRequest(WireModel):
    file_name: str
    file_content: str
    container_path: str
    folder_name: str | None = None
    file_size: int
    content_type: str


class ListFlowRequest(WireModel):
    container_path: str
    folder_name: str | None = None


class DeleteFlowRequest(WireModel):
    file_name: str
    container_path: str
    folder_name: str | None = None


class DownloadFlowRequest(WireModel):
    storage_account_name: str
    file_path: str
    file_name: str


class FlowResponse(WireModel):
    """Common fields of upload, list and delete flow responses."""
    # Flows may send null; only an explicit true counts as success.
    success: bool | None = None
    file_name: str | None = None
    error: str | None = None
    flow_run_id: str | None = None


class UploadFlowResponse(FlowResponse):
    url: str = ""

    @field_validator("url", mode="before")
    @classmethod
    def _null_url(cls, value: Any) -> Any:
        return "" if value is None else value



class DownloadPayload(WireModel):
    file_content: str
    content_type: str
    file_name: str
    file_size: int | None = None


# ---------------------------------------------------------------------------
# Outward events
# ---------------------------------------------------------------------------


def _dump_list(items: list[Any]) -> str:
    return json.dumps(
        [
            item.model_dump(by_alias=True, mode="json", exclude_none=True)
            if isinstance(item, BaseModel) else item
            for item in items
        ]
    )


class FilesChanged(BaseModel):
    kind: Literal["files_changed"] = "files_changed"
    files: list[BatchEntry] = Field(default_factory=list)

    def to_payload(self) -> dict[str, str]:
        return {"filesJSON": _dump_list(self.files)}


class ExistingFilesChanged(BaseModel):
    kind: Literal["existing_files_changed"] = "existing_files_changed"
    files: list[ExistingRemoteFile] = Field(default_factory=list)

    def to_payload(self) -> dict[str, str]:
        return {"existingFiles": _dump_list(self.files)}


class UploadStatusChanged(BaseModel):
    kind: Literal["upload_status_changed"] = "upload_status_changed"
    status: UploadStatus

    def to_payload(self) -> dict[str, str]:
        return {"uploadStatus": self.status.value}


class UploadCompleted(BaseModel):
    kind: Literal["upload_completed"] = "upload_completed"
    results: list[UploadResult]
    status: UploadStatus

    def to_payload(self) -> dict[str, str]:
        summary = [
            {
                "name": r.file_name,
                "url": r.url,
                "success": r.success,
                **({"error": r.error} if r.error else {}),
            }
            for r in self.results
        ]
        return {
            "uploadResults": _dump_list(self.results),
            "uploadStatus": self.status.value,
            "filesJSON": json.dumps(summary),
        }


class LocalBatchCompleted(BaseModel):
    kind: Literal["local_batch_completed"] = "local_batch_completed"
    files: list[BatchEntry]

    def to_payload(self) -> dict[str, str]:
        return {
            "filesJSON": _dump_list(self.files),
            "uploadStatus": UploadStatus.COMPLETED.value,
        }


class FileDeleted(BaseModel):
    kind: Literal["file_deleted"] = "file_deleted"
    file_name: str
    existing: list[ExistingRemoteFile] = Field(default_factory=list)

    def to_payload(self) -> dict[str, str]:
        return {"existingFiles": _dump_list(self.existing)}


class FileDownloaded(BaseModel):
    kind: Literal["file_downloaded"] = "file_downloaded"
    file_name: str
    file_size: int
    content_type: str
    path: str

    def to_payload(self) -> dict[str, str]:
        return {}


class FileViewed(BaseModel):
    kind: Literal["file_viewed"] = "file_viewed"
    file_name: str
    url: str

    def to_payload(self) -> dict[str, str]:
        return {}


class ContextChanged(BaseModel):
    kind: Literal["context_changed"] = "context_changed"

    def to_payload(self) -> dict[str, str]:
        return {"filesJSON": "[]"}


Event = Annotated[
    Union[
        FilesChanged,
        ExistingFilesChanged,
        UploadStatusChanged,
        UploadCompleted,
        LocalBatchCompleted,
        FileDeleted,
        FileDownloaded,
        FileViewed,
        ContextChanged,
    ],
    Field(discriminator="kind"),
]
