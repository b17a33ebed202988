"""Tests for the outward event payloads and OutputBinding."""

from __future__ import annotations

import json

from pydantic import TypeAdapter

from flowattach.client.outputs import OutputBinding
from flowattach.models import (
    BatchEntry,
    ContextChanged,
    Event,
    ExistingFilesChanged,
    ExistingRemoteFile,
    FileDeleted,
    FileViewed,
    UploadCompleted,
    UploadResult,
    UploadStatus,
    UploadStatusChanged,
)


def test_event_union_discriminates_on_kind():
    adapter = TypeAdapter(Event)
    event = adapter.validate_python({"kind": "upload_status_changed", "status": "InProgress"})
    assert isinstance(event, UploadStatusChanged)
    assert event.status == UploadStatus.IN_PROGRESS


def test_binding_tracks_last_values():
    calls = []
    binding = OutputBinding(notify=lambda: calls.append(1))
    assert binding.outputs()["LastUploadStatus"] == "0"

    binding.handle(UploadStatusChanged(status=UploadStatus.IN_PROGRESS))
    assert binding.outputs()["LastUploadStatus"] == "1"

    binding.handle(
        UploadCompleted(
            results=[
                UploadResult(file_name="a.txt", success=True, url="https://x/a.txt"),
                UploadResult(file_name="b.txt", success=False, error="nope"),
            ],
            status=UploadStatus.FAILED,
        )
    )
    out = binding.outputs()
    assert out["LastUploadStatus"] == "3"
    assert json.loads(out["FilesAsJSON"]) == [
        {"name": "a.txt", "url": "https://x/a.txt", "success": True},
        {"name": "b.txt", "url": "", "success": False, "error": "nope"},
    ]
    results = json.loads(out["UploadResults"])
    assert results[0] == {"fileName": "a.txt", "success": True, "url": "https://x/a.txt"}
    assert len(calls) == 2


def test_existing_files_and_delete_share_output():
    binding = OutputBinding()
    files = [ExistingRemoteFile(name="a.txt", size=3), ExistingRemoteFile(name="b.txt", size=4)]
    binding.handle(ExistingFilesChanged(files=files))
    assert [f["name"] for f in json.loads(binding.existing_files)] == ["a.txt", "b.txt"]

    binding.handle(FileDeleted(file_name="a.txt", existing=files[1:]))
    assert json.loads(binding.existing_files) == [{"name": "b.txt", "size": 4, "url": ""}]


def test_context_change_clears_files_json():
    binding = OutputBinding()
    binding.files_json = json.dumps([BatchEntry(name="a", size=1, content_base64="YQ==").to_wire()])
    binding.handle(ContextChanged())
    assert binding.files_json == "[]"


def test_events_without_payload_leave_outputs_alone():
    binding = OutputBinding()
    binding.handle(UploadStatusChanged(status=UploadStatus.COMPLETED))
    before = binding.outputs()
    binding.handle(FileViewed(file_name="a.txt", url="https://x/a.txt"))
    assert binding.outputs() == before
