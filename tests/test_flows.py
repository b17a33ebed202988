"""Tests for FlowClient against the reference backend and mocked flow hosts."""

from __future__ import annotations

import base64
import json

import httpx
import pytest

from flowattach.client.files import LocalFile
from flowattach.client.flows import FlowClient, extract_download_payload
from flowattach.config import FlowConfig
from flowattach.errors import (
    ConfigurationMissing,
    RemoteCallFailed,
    RemoteCallTimedOut,
    UnexpectedResponseShape,
)

from conftest import BASE_URL, make_file


def mock_client(config: FlowConfig, handler) -> FlowClient:
    """FlowClient whose HTTP calls are answered by *handler*."""
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)
    return FlowClient(config, http=http)


# ---------------------------------------------------------------------------
# Against the reference backend
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_upload_list_download_delete(http, remote_config, storage_dir):
    client = FlowClient(remote_config, http=http)
    payload = b"%PDF-1.4 hello"

    result = await client.upload_file(LocalFile.from_bytes("doc.pdf", payload), "cases/rec-42")
    assert result.success
    assert result.flow_run_id
    assert result.url.endswith("/flows/files/attachments/cases/rec-42/doc.pdf")
    assert (storage_dir / "attachments" / "cases" / "rec-42" / "doc.pdf").read_bytes() == payload

    files = await client.list_files("cases/rec-42")
    assert [f.name for f in files] == ["doc.pdf"]
    assert files[0].size == len(payload)
    assert files[0].last_modified is not None

    downloaded = await client.download_file("doc.pdf", "cases/rec-42")
    assert downloaded.content == payload
    assert downloaded.content_type == "application/pdf"
    assert downloaded.file_size == len(payload)

    deleted = await client.delete_file("doc.pdf", "cases/rec-42")
    assert deleted.success
    assert await client.list_files("cases/rec-42") == []


@pytest.mark.asyncio
async def test_list_of_missing_folder_is_empty(http, remote_config):
    client = FlowClient(remote_config, http=http)
    assert await client.list_files("nobody/here") == []


@pytest.mark.asyncio
async def test_delete_missing_file_raises_reported_error(http, remote_config):
    client = FlowClient(remote_config, http=http)
    with pytest.raises(RemoteCallFailed, match="File not found: ghost.txt"):
        await client.delete_file("ghost.txt", "cases/rec-42")


@pytest.mark.asyncio
async def test_download_unwraps_body(wrapped_http, remote_config):
    client = FlowClient(remote_config, http=wrapped_http)
    await client.upload_file(make_file("notes.txt", 5), "cases/rec-42")
    downloaded = await client.download_file("notes.txt", "cases/rec-42")
    assert downloaded.content == b"xxxxx"
    assert downloaded.content_type == "text/plain"


@pytest.mark.asyncio
async def test_token_sent_as_bearer(authed_http, remote_config):
    anonymous = FlowClient(remote_config, http=authed_http)
    with pytest.raises(RemoteCallFailed, match="401"):
        await anonymous.upload_file(make_file("a.txt"), "cases/rec-42")

    config = remote_config.model_copy(update={"auth_token": "s3cret"})
    client = FlowClient(config, http=authed_http)
    assert (await client.upload_file(make_file("a.txt"), "cases/rec-42")).success


# ---------------------------------------------------------------------------
# Mocked hosts
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_request_bodies_are_camel_case(remote_config):
    seen: dict[str, dict] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen[request.url.path] = json.loads(request.content)
        if request.url.path.endswith("/list"):
            return httpx.Response(200, json={"success": True, "files": []})
        return httpx.Response(200, json={"success": True, "url": "u"})

    client = mock_client(remote_config, handler)
    await client.upload_file(make_file("a.bin", 3), "cases/rec-42")
    await client.list_files(None)

    assert seen["/flows/upload"] == {
        "fileName": "a.bin",
        "fileContent": base64.b64encode(b"xxx").decode(),
        "containerPath": "attachments",
        "folderName": "cases/rec-42",
        "fileSize": 3,
        "contentType": "application/octet-stream",
    }
    assert seen["/flows/list"] == {"containerPath": "attachments"}


@pytest.mark.asyncio
async def test_list_with_files_array_succeeds_despite_error_status(remote_config):
    def handler(request):
        return httpx.Response(
            500,
            json={"success": False, "files": [{"name": "a.txt", "size": 2, "url": "https://x/a"}]},
        )

    files = await mock_client(remote_config, handler).list_files("cases")
    assert [(f.name, f.size, f.url) for f in files] == [("a.txt", 2, "https://x/a")]


@pytest.mark.asyncio
async def test_list_empty_files_array_is_success(remote_config):
    client = mock_client(remote_config, lambda r: httpx.Response(200, json={"files": []}))
    assert await client.list_files("cases") == []


@pytest.mark.asyncio
async def test_list_files_array_wins_over_null_fields(remote_config):
    body = {"success": None, "error": None, "flowRunId": 7, "files": []}
    client = mock_client(remote_config, lambda r: httpx.Response(500, json=body))
    assert await client.list_files("cases") == []


@pytest.mark.asyncio
async def test_list_null_success_without_files_fails(remote_config):
    client = mock_client(remote_config, lambda r: httpx.Response(200, json={"success": None}))
    with pytest.raises(RemoteCallFailed, match="List files failed: 200 OK"):
        await client.list_files("cases")


@pytest.mark.asyncio
async def test_list_entry_null_fields_take_defaults(remote_config):
    entry = {"name": "a.txt", "size": None, "url": None, "lastModified": None}
    client = mock_client(
        remote_config, lambda r: httpx.Response(200, json={"success": True, "files": [entry]})
    )
    (f,) = await client.list_files("cases")
    assert (f.name, f.size, f.url, f.last_modified) == ("a.txt", 0, "", None)


@pytest.mark.asyncio
async def test_upload_null_url_is_still_success(remote_config):
    body = {"success": True, "fileName": "a.txt", "url": None, "flowRunId": "r1"}
    client = mock_client(remote_config, lambda r: httpx.Response(200, json=body))
    result = await client.upload_file(make_file("a.txt"), "cases")
    assert (result.success, result.url, result.flow_run_id) == (True, "", "r1")


@pytest.mark.asyncio
async def test_list_without_files_reports_error(remote_config):
    client = mock_client(
        remote_config,
        lambda r: httpx.Response(200, json={"success": False, "error": "Container not found"}),
    )
    with pytest.raises(RemoteCallFailed, match="Container not found"):
        await client.list_files("cases")


@pytest.mark.asyncio
async def test_list_malformed_entries(remote_config):
    client = mock_client(
        remote_config,
        lambda r: httpx.Response(200, json={"success": True, "files": [{"size": 1}]}),
    )
    with pytest.raises(UnexpectedResponseShape):
        await client.list_files("cases")


@pytest.mark.asyncio
async def test_upload_http_error(remote_config):
    client = mock_client(remote_config, lambda r: httpx.Response(502))
    with pytest.raises(RemoteCallFailed, match="Upload failed: 502 Bad Gateway"):
        await client.upload_file(make_file("a.txt"), "cases")


@pytest.mark.asyncio
async def test_upload_success_false(remote_config):
    client = mock_client(
        remote_config,
        lambda r: httpx.Response(200, json={"success": False, "error": "Quota exceeded"}),
    )
    with pytest.raises(RemoteCallFailed, match="Quota exceeded"):
        await client.upload_file(make_file("a.txt"), "cases")

    client = mock_client(remote_config, lambda r: httpx.Response(200, json={"success": False}))
    with pytest.raises(RemoteCallFailed, match="^Upload failed$"):
        await client.upload_file(make_file("a.txt"), "cases")


@pytest.mark.asyncio
async def test_non_object_body(remote_config):
    client = mock_client(remote_config, lambda r: httpx.Response(200, json=["a"]))
    with pytest.raises(RemoteCallFailed, match="non-object"):
        await client.list_files("cases")


@pytest.mark.asyncio
async def test_timeout_maps_to_timed_out(remote_config):
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    client = mock_client(remote_config, handler)
    with pytest.raises(RemoteCallTimedOut, match="Flow execution timed out"):
        await client.upload_file(make_file("a.txt"), "cases")


@pytest.mark.asyncio
async def test_transport_error_maps_to_failed(remote_config):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    client = mock_client(remote_config, handler)
    with pytest.raises(RemoteCallFailed, match="refused"):
        await client.delete_file("a.txt", "cases")


@pytest.mark.asyncio
async def test_delete_only_success_true_counts(remote_config):
    client = mock_client(remote_config, lambda r: httpx.Response(200, json={}))
    with pytest.raises(RemoteCallFailed, match="Failed to delete file"):
        await client.delete_file("a.txt", "cases")


@pytest.mark.asyncio
async def test_download_request_and_invalid_base64(remote_config):
    seen = {}

    def handler(request):
        seen.update(json.loads(request.content))
        return httpx.Response(
            200,
            json={"fileContent": "***", "contentType": "text/plain", "fileName": "a.txt"},
        )

    client = mock_client(remote_config, handler)
    with pytest.raises(UnexpectedResponseShape, match="invalid base64"):
        await client.download_file("a.txt", "cases/rec-42")
    assert seen == {
        "storageAccountName": "attachments",
        "filePath": "cases/rec-42/a.txt",
        "fileName": "a.txt",
    }


@pytest.mark.asyncio
async def test_missing_configuration(remote_config):
    client = FlowClient(remote_config.model_copy(update={"container_path": None}))
    with pytest.raises(ConfigurationMissing):
        await client.list_files("cases")
    await client.aclose()


class TestExtractDownloadPayload:
    def test_top_level(self):
        payload = extract_download_payload(
            {"fileContent": "YQ==", "contentType": "text/plain", "fileName": "a.txt"}
        )
        assert payload.file_name == "a.txt"

    def test_body_wrapper(self):
        payload = extract_download_payload(
            {
                "statusCode": 200,
                "body": {"fileContent": "YQ==", "contentType": "text/plain", "fileName": "a.txt"},
            }
        )
        assert payload.file_content == "YQ=="

    def test_neither_reports_keys(self):
        with pytest.raises(UnexpectedResponseShape) as excinfo:
            extract_download_payload({"statusCode": 200, "body": {"error": "Blob missing"}})
        message = str(excinfo.value)
        assert "Blob missing" in message
        assert "['body', 'statusCode']" in message
        assert "['error']" in message

    def test_default_message(self):
        with pytest.raises(UnexpectedResponseShape, match="missing file content"):
            extract_download_payload({"fileName": "a.txt"})
