from __future__ import annotations

import base64
import binascii
import logging
import mimetypes
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import aiofiles
import aiofiles.os
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import FileResponse

from flowattach import __version__
from flowattach.models import (
    DeleteFlowRequest,
    DownloadFlowRequest,
    ExistingRemoteFile,
    ListFlowRequest,
    UploadFlowRequest,
)
from flowattach.server.models import FlowRunRecord, HealthResponse
from flowattach.server.state import AppState

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path


def get_state(request: Request) -> AppState:
    return request.app.state


StateDep = Depends(get_state)

logger = logging.getLogger(__name__)


def _failure(state: AppState, run: FlowRunRecord, error: str) -> dict[str, Any]:
    state.runs.finish(run.flow_run_id, error=error)
    logger.warning("Flow %s failed for %s: %s", run.operation, run.file_name, error)
    return {
        "success": False,
        "fileName": run.file_name,
        "error": error,
        "flowRunId": run.flow_run_id,
    }


def _file_url(request: Request, state: AppState, path: Path) -> str:
    return str(request.url_for("get_file", path=state.relative(path)))


def make_router(auth_dep: Callable[..., Any] | None = None) -> APIRouter:
    """Build the flow trigger router, optionally guarded by *auth_dep*."""
    dependencies = [Depends(auth_dep)] if auth_dep is not None else []
    router = APIRouter(dependencies=dependencies)

    @router.get("/health", response_model=HealthResponse)
    async def health(state: AppState = StateDep) -> HealthResponse:
        return HealthResponse(
            status="ok",
            version=__version__,
            wrap_download=state.wrap_download,
        )

    @router.get("/runs/{flow_run_id}", response_model=FlowRunRecord)
    async def flow_run(flow_run_id: str, state: AppState = StateDep) -> FlowRunRecord:
        record = state.runs.get(flow_run_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Flow run not found")
        return record

    @router.post("/upload")
    async def upload(
        body: UploadFlowRequest, request: Request, state: AppState = StateDep
    ) -> dict[str, Any]:
        """Store a base64-encoded file under container/folder/fileName."""
        run = state.runs.create("upload", body.file_name)
        try:
            target = state.file(body.container_path, body.folder_name, body.file_name)
            content = base64.b64decode(body.file_content, validate=True)
        except (ValueError, binascii.Error) as exc:
            return _failure(state, run, str(exc))

        if len(content) != body.file_size:
            logger.warning(
                "Size mismatch for %s: declared %d, received %d",
                body.file_name,
                body.file_size,
                len(content),
            )

        await aiofiles.os.makedirs(target.parent, exist_ok=True)
        async with aiofiles.open(target, "wb") as f:
            await f.write(content)

        state.runs.finish(run.flow_run_id)
        logger.info("Stored %s (%d bytes)", state.relative(target), len(content))
        return {
            "success": True,
            "fileName": body.file_name,
            "url": _file_url(request, state, target),
            "flowRunId": run.flow_run_id,
        }

    @router.post("/list")
    async def list_files(
        body: ListFlowRequest, request: Request, state: AppState = StateDep
    ) -> dict[str, Any]:
        run = state.runs.create("list")
        try:
            folder = state.folder(body.container_path, body.folder_name)
        except ValueError as exc:
            return _failure(state, run, str(exc))

        files: list[dict[str, Any]] = []
        if folder.is_dir():
            for child in sorted(folder.iterdir()):
                if not child.is_file():
                    continue
                stat = child.stat()
                entry = ExistingRemoteFile(
                    name=child.name,
                    size=stat.st_size,
                    url=_file_url(request, state, child),
                    last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                )
                files.append(entry.to_wire())

        state.runs.finish(run.flow_run_id)
        return {"success": True, "files": files, "flowRunId": run.flow_run_id}

    @router.post("/delete")
    async def delete(body: DeleteFlowRequest, state: AppState = StateDep) -> dict[str, Any]:
        run = state.runs.create("delete", body.file_name)
        try:
            target = state.file(body.container_path, body.folder_name, body.file_name)
        except ValueError as exc:
            return _failure(state, run, str(exc))
        if not target.is_file():
            return _failure(state, run, f"File not found: {body.file_name}")

        await aiofiles.os.remove(target)
        state.runs.finish(run.flow_run_id)
        logger.info("Deleted %s", state.relative(target))
        return {"success": True, "fileName": body.file_name, "flowRunId": run.flow_run_id}

    @router.post("/download")
    async def download(body: DownloadFlowRequest, state: AppState = StateDep) -> dict[str, Any]:
        """Return a file as base64, optionally wrapped under ``body``."""
        run = state.runs.create("download", body.file_name)
        folder, _, name = body.file_path.rpartition("/")
        try:
            target = state.file(body.storage_account_name, folder, name)
        except ValueError as exc:
            return _failure(state, run, str(exc))
        if not target.is_file():
            return _failure(state, run, f"File not found: {body.file_path}")

        async with aiofiles.open(target, "rb") as f:
            content = await f.read()

        state.runs.finish(run.flow_run_id)
        payload = {
            "fileName": body.file_name,
            "fileContent": base64.b64encode(content).decode("ascii"),
            "contentType": mimetypes.guess_type(name)[0] or "application/octet-stream",
            "fileSize": len(content),
        }
        if state.wrap_download:
            return {"statusCode": 200, "body": payload}
        return payload

    @router.get("/files/{path:path}", name="get_file")
    async def get_file(path: str, state: AppState = StateDep) -> FileResponse:
        """Direct link to a stored file."""
        parts = path.split("/")
        try:
            container, *folders, name = parts
            target = state.file(container, "/".join(folders), name)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if not target.is_file():
            raise HTTPException(status_code=404, detail="File not found")
        return FileResponse(target)

    return router
