from __future__ import annotations

import base64
import binascii
import logging
from typing import Any

import httpx
from pydantic import TypeAdapter, ValidationError

from flowattach.client.files import LocalFile
from flowattach.config import FlowConfig
from flowattach.errors import (
    ConfigurationMissing,
    RemoteCallFailed,
    RemoteCallTimedOut,
    UnexpectedResponseShape,
)
from flowattach.models import (
    DeleteFlowRequest,
    DeleteResult,
    DownloadedFile,
    DownloadFlowRequest,
    DownloadPayload,
    ExistingRemoteFile,
    FlowResponse,
    ListFlowRequest,
    UploadFlowRequest,
    UploadFlowResponse,
    UploadResult,
    WireModel,
)

logger = logging.getLogger(__name__)

_remote_files = TypeAdapter(list[ExistingRemoteFile])


def _describe(resp: httpx.Response) -> str:
    return f"{resp.status_code} {resp.reason_phrase}".strip()


class FlowClient:
    """Calls the upload, list, delete and download flow triggers.

    Each operation is a single JSON POST. An ``httpx.AsyncClient`` may be
    injected (tests wire one to an ASGI app); otherwise one is created with
    the configured timeout and closed by :meth:`aclose`.
    """

    def __init__(self, config: FlowConfig, http: httpx.AsyncClient | None = None) -> None:
        self.config = config
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(
            timeout=httpx.Timeout(config.timeout, connect=10.0)
        )

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> FlowClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.auth_token:
            headers["Authorization"] = f"Bearer {self.config.auth_token}"
        return headers

    def _require(self, url: str | None, operation: str) -> str:
        if not url or not self.config.container_path:
            raise ConfigurationMissing(f"{operation} flow is not configured")
        return url

    async def _post(self, url: str, body: WireModel) -> httpx.Response:
        try:
            return await self._http.post(
                url,
                json=body.to_wire(),
                headers=self._headers(),
                timeout=self.config.timeout,
            )
        except httpx.TimeoutException as exc:
            raise RemoteCallTimedOut("Flow execution timed out") from exc
        except httpx.HTTPError as exc:
            raise RemoteCallFailed(f"Flow call to {url} failed: {exc}") from exc

    @staticmethod
    def _json(resp: httpx.Response, operation: str) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as exc:
            if not resp.is_success:
                raise RemoteCallFailed(f"{operation} failed: {_describe(resp)}") from exc
            raise RemoteCallFailed("Failed to parse response") from exc
        if not isinstance(data, dict):
            raise RemoteCallFailed(f"{operation} returned a non-object response")
        return data

    async def upload_file(self, file: LocalFile, folder_name: str | None = None) -> UploadResult:
        """Upload one file; raises on any failure."""
        url = self._require(self.config.upload_url, "Upload")
        request = UploadFlowRequest(
            file_name=file.name,
            file_content=await file.read_base64(),
            container_path=self.config.container_path,
            folder_name=folder_name,
            file_size=file.size,
            content_type=file.wire_content_type,
        )
        resp = await self._post(url, request)
        if not resp.is_success:
            raise RemoteCallFailed(f"Upload failed: {_describe(resp)}")

        try:
            result = UploadFlowResponse.model_validate(self._json(resp, "Upload"))
        except ValidationError as exc:
            raise RemoteCallFailed(f"Upload returned an unexpected body: {exc}") from exc
        if not result.success:
            raise RemoteCallFailed(result.error or "Upload failed")

        logger.info("Uploaded %s (flow run %s)", file.name, result.flow_run_id)
        return UploadResult(
            file_name=file.name,
            success=True,
            url=result.url,
            flow_run_id=result.flow_run_id,
        )

    async def list_files(self, folder_name: str | None = None) -> list[ExistingRemoteFile]:
        """List remote files.

        A body carrying a ``files`` array counts as success whatever the HTTP
        status or ``success`` flag says; an empty array means "no files".
        """
        url = self._require(self.config.list_url, "List files")
        resp = await self._post(
            url,
            ListFlowRequest(container_path=self.config.container_path, folder_name=folder_name),
        )
        data = self._json(resp, "List files")

        files = data.get("files")
        if not isinstance(files, list):
            if not resp.is_success or data.get("success") is not True:
                raise RemoteCallFailed(
                    data.get("error") or f"List files failed: {_describe(resp)}"
                )
            return []

        # Only the entries matter here; other fields are not checked.
        try:
            return _remote_files.validate_python(files)
        except ValidationError as exc:
            raise UnexpectedResponseShape(f"List files returned malformed entries: {exc}") from exc

    async def delete_file(self, file_name: str, folder_name: str | None = None) -> DeleteResult:
        url = self._require(self.config.delete_url, "Delete")
        resp = await self._post(
            url,
            DeleteFlowRequest(
                file_name=file_name,
                container_path=self.config.container_path,
                folder_name=folder_name or None,
            ),
        )
        if not resp.is_success:
            raise RemoteCallFailed(f"Delete failed: {_describe(resp)}")

        try:
            result = FlowResponse.model_validate(self._json(resp, "Delete"))
        except ValidationError as exc:
            raise RemoteCallFailed(f"Delete returned an unexpected body: {exc}") from exc
        if not result.success:
            raise RemoteCallFailed(result.error or "Failed to delete file")

        logger.info("Deleted %s (flow run %s)", file_name, result.flow_run_id)
        return DeleteResult(
            file_name=result.file_name or file_name,
            success=True,
            flow_run_id=result.flow_run_id,
        )

    async def download_file(self, file_name: str, folder_name: str | None = None) -> DownloadedFile:
        url = self._require(self.config.download_url, "Download")
        file_path = f"{folder_name}/{file_name}" if folder_name else file_name
        resp = await self._post(
            url,
            DownloadFlowRequest(
                storage_account_name=self.config.container_path,
                file_path=file_path,
                file_name=file_name,
            ),
        )
        if not resp.is_success:
            raise RemoteCallFailed(f"Download file failed: {_describe(resp)}")

        payload = extract_download_payload(self._json(resp, "Download"))
        try:
            content = base64.b64decode(payload.file_content, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise UnexpectedResponseShape(
                f"Download of {file_name} returned invalid base64 content"
            ) from exc
        return DownloadedFile(
            file_name=payload.file_name,
            content_type=payload.content_type,
            content=content,
        )


def _complete(candidate: Any) -> bool:
    return isinstance(candidate, dict) and all(
        candidate.get(key) for key in ("fileContent", "contentType", "fileName")
    )


def extract_download_payload(data: dict[str, Any]) -> DownloadPayload:
    """Pick the download fields from the top level or from a ``body`` wrapper."""
    for candidate in (data, data.get("body")):
        if _complete(candidate):
            try:
                return DownloadPayload.model_validate(candidate)
            except ValidationError as exc:
                raise UnexpectedResponseShape(f"Malformed download payload: {exc}") from exc

    body = data.get("body")
    nested_error = body.get("error") if isinstance(body, dict) else None
    nested_keys = sorted(body) if isinstance(body, dict) else None
    logger.error("Unexpected download response structure: keys=%s body=%s", sorted(data), nested_keys)
    message = (
        data.get("error")
        or nested_error
        or "Failed to download file - missing file content in response"
    )
    raise UnexpectedResponseShape(
        f"{message} (top-level keys: {sorted(data)}, body keys: {nested_keys})"
    )
