from __future__ import annotations

import logging
import webbrowser
from collections.abc import Callable, Iterable
from pathlib import Path

import aiofiles
import httpx

from flowattach.client.files import LocalFile
from flowattach.client.flows import FlowClient
from flowattach.client.progress import ProgressEstimator
from flowattach.client.resolver import PolicyResolver
from flowattach.client.store import FileStateStore
from flowattach.config import FlowConfig, OrchestratorSettings
from flowattach.errors import ConfigurationMissing, FlowAttachError
from flowattach.models import (
    BatchEntry,
    ContextChanged,
    DeleteResult,
    DownloadedFile,
    Event,
    ExistingFilesChanged,
    ExistingRemoteFile,
    FileDeleted,
    FileDownloaded,
    FilesChanged,
    FileStatus,
    FileViewed,
    LoadingState,
    LocalBatchCompleted,
    PendingFile,
    UploadCompleted,
    UploadResult,
    UploadStatus,
    UploadStatusChanged,
    ViewResult,
)

logger = logging.getLogger(__name__)

EventCallback = Callable[[Event], None]


class TransferOrchestrator:
    """Drives the lifecycle of attached files against the storage flows.

    Remote mode is used when :attr:`FlowConfig.is_remote_configured`;
    otherwise files are processed locally into base64 batch entries and
    reported without any network call.
    """

    def __init__(
        self,
        config: FlowConfig,
        resolver: PolicyResolver,
        *,
        settings: OrchestratorSettings | None = None,
        client: FlowClient | None = None,
        http: httpx.AsyncClient | None = None,
        store: FileStateStore | None = None,
        estimator: ProgressEstimator | None = None,
        on_event: EventCallback | None = None,
        opener: Callable[[str], object] | None = None,
        download_dir: str | Path = ".",
    ) -> None:
        self.config = config
        self.resolver = resolver
        self.settings = settings or OrchestratorSettings()
        self.store = store or FileStateStore()
        self.progress = estimator or ProgressEstimator(self.store)
        self._owns_client = client is None
        self.client = client or FlowClient(config, http=http)
        self._on_event = on_event
        self._opener = opener or webbrowser.open
        self.download_dir = Path(download_dir)

        self.existing: list[ExistingRemoteFile] = []
        self.cumulative: list[BatchEntry] = []
        self.loading_state = LoadingState.INITIAL
        self.loading_existing = False
        self._disposed = False

    async def __aenter__(self) -> TransferOrchestrator:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.dispose()

    @property
    def is_remote_configured(self) -> bool:
        return self.config.is_remote_configured

    @property
    def files(self) -> list[PendingFile]:
        return self.store.files

    def _emit(self, event: Event) -> None:
        logger.debug("Emitting %s", event.kind)
        if self._on_event is not None:
            self._on_event(event)

    # ------------------------------------------------------------------
    # Local state
    # ------------------------------------------------------------------

    async def start(self) -> list[ExistingRemoteFile]:
        """Load the remote files for the current context."""
        return await self.load_existing()

    def add_files(self, files: Iterable[LocalFile]) -> list[PendingFile]:
        files = list(files)
        mode = self.settings.display_mode
        if not mode.accepts_files:
            logger.warning("Ignoring %d offered file(s) in %s mode", len(files), mode.name.lower())
            return []
        if not self.settings.allow_multiple_files and len(files) > 1:
            logger.warning("Multiple files are not allowed; keeping only %s", files[0].name)
            files = files[:1]
        return self.store.add_files(files, self.resolver.policy, self.existing)

    def remove_file(self, name: str) -> bool:
        removed = self.store.remove(name)
        if removed and not self.config.has_record:
            self.cumulative = [e for e in self.cumulative if e.name != name]
            self._emit(FilesChanged(files=list(self.cumulative)))
        return removed

    def clear_new(self) -> None:
        """Drop every new file; remote files are untouched."""
        self.store.clear_new()
        if not self.config.has_record:
            self.cumulative.clear()
            self._emit(FilesChanged(files=[]))

    def clear_cumulative(self) -> None:
        self.cumulative.clear()
        self._emit(FilesChanged(files=[]))

    async def change_context(self, config: FlowConfig) -> None:
        """Switch record, container, folder or endpoints.

        A change of addressing resets every piece of local state before the
        remote files of the new context are loaded.
        """
        changed = config.context_key() != self.config.context_key()
        self.config = config
        self.client.config = config
        if not changed:
            return
        for name in self.progress.active:
            self.progress.stop(name)
        self.store.clear_new()
        self.cumulative.clear()
        self.loading_state = LoadingState.INITIAL
        self._emit(ContextChanged())
        await self.load_existing()

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def upload_all(self) -> list[UploadResult]:
        """Process every pending, valid file."""
        names = [f.name for f in self.store.pending_valid()]
        if not names:
            return []
        return await self.process_files(names)

    async def process_files(self, names: Iterable[str]) -> list[UploadResult]:
        files: list[LocalFile] = []
        for name in names:
            source = self.store.source(name)
            record = self.store.get(name)
            if source is None or record is None:
                logger.warning("Skipping unknown file %s", name)
                continue
            if record.status != FileStatus.PENDING or not record.is_valid:
                logger.warning(
                    "Skipping %s: not a pending valid file (%s)", name, record.status.value
                )
                continue
            files.append(source)
        if not files:
            return []

        # Claimed before the first await so a concurrent call skips them.
        for f in files:
            self.store.update(f.name, status=FileStatus.UPLOADING, progress=0)

        if self.settings.show_action_spinner:
            self.loading_state = LoadingState.LOADING
        try:
            if self.config.is_remote_configured:
                results = await self._process_remote(files)
            else:
                results = await self._process_local(files)
        except Exception as exc:
            # The whole batch is marked failed, even files that did not cause it.
            logger.error("Error processing files: %s", exc)
            message = str(exc)
            self.loading_state = LoadingState.INITIAL
            for f in files:
                self.progress.stop(f.name)
                self.store.update(f.name, status=FileStatus.FAILED, error=message, progress=0)
            self._emit(
                UploadCompleted(
                    results=[UploadResult(file_name="Unknown", success=False, error=message)],
                    status=UploadStatus.FAILED,
                )
            )
            return [UploadResult(file_name=f.name, success=False, error=message) for f in files]

        if self.settings.show_action_spinner:
            self.loading_state = LoadingState.LOADED
        return results

    async def _process_remote(self, files: list[LocalFile]) -> list[UploadResult]:
        self._emit(UploadStatusChanged(status=UploadStatus.IN_PROGRESS))
        results = await self._upload_sequentially(files)

        succeeded = [r.file_name for r in results if r.success]
        if succeeded:
            await self.load_existing()
            # Uploaded files now show up as existing ones.
            self.store.purge(succeeded)

        status = UploadStatus.COMPLETED if len(succeeded) == len(results) else UploadStatus.FAILED
        self._emit(UploadCompleted(results=results, status=status))
        return results

    async def _upload_sequentially(self, files: list[LocalFile]) -> list[UploadResult]:
        folder = self.config.folder_path
        results: list[UploadResult] = []
        for f in files:
            self.progress.start(f.name)
            try:
                result = await self.client.upload_file(f, folder)
            except FlowAttachError as exc:
                logger.error("Failed to upload %s: %s", f.name, exc)
                result = UploadResult(file_name=f.name, success=False, error=str(exc))
            finally:
                self.progress.stop(f.name)

            if result.success:
                self.store.update(
                    f.name,
                    status=FileStatus.COMPLETED,
                    remote_url=result.url,
                    error=None,
                    progress=100,
                )
            else:
                self.store.update(f.name, status=FileStatus.FAILED, error=result.error, progress=0)
            results.append(result)
        return results

    async def _process_local(self, files: list[LocalFile]) -> list[UploadResult]:
        batch = [
            BatchEntry(name=f.name, size=f.size, content_base64=await f.read_base64())
            for f in files
        ]
        for f in files:
            self.store.update(f.name, status=FileStatus.COMPLETED, progress=100)

        if not self.config.has_record:
            self.cumulative.extend(batch)
            self._emit(LocalBatchCompleted(files=list(self.cumulative)))
        else:
            # With a record bound only the current batch is reported.
            self._emit(LocalBatchCompleted(files=batch))
            self.store.purge(f.name for f in files)
        return [UploadResult(file_name=entry.name, success=True) for entry in batch]

    # ------------------------------------------------------------------
    # Existing remote files
    # ------------------------------------------------------------------

    async def load_existing(self) -> list[ExistingRemoteFile]:
        if not self.config.is_remote_configured:
            self.existing = []
            self._emit(ExistingFilesChanged(files=[]))
            return []

        self.loading_existing = True
        try:
            files = await self.client.list_files(self.config.folder_path)
        except FlowAttachError as exc:
            logger.error("Error loading existing files: %s", exc)
            return self.existing
        finally:
            self.loading_existing = False

        self.existing = files
        self._emit(ExistingFilesChanged(files=files))
        return files

    async def delete_existing(self, name: str) -> DeleteResult:
        if not self.config.is_remote_configured:
            raise ConfigurationMissing("Cloud flow configuration is missing")

        result = await self.client.delete_file(name, self.config.folder_path)
        await self.load_existing()
        # If the refresh failed the old list is still in place.
        remaining = [f for f in self.existing if f.name != name]
        self._emit(FileDeleted(file_name=name, existing=remaining))
        return result

    async def view_existing(self, name: str) -> ViewResult:
        if not self.config.download_url:
            match = next((f for f in self.existing if f.name == name), None)
            if match is None or not match.url:
                raise ConfigurationMissing(f"No URL available for {name}")
            self._opener(match.url)
            self._emit(FileViewed(file_name=name, url=match.url))
            return ViewResult(file_name=name, method="direct", url=match.url)

        if not self.config.is_remote_configured:
            raise ConfigurationMissing("Cloud flow configuration for download is missing")

        downloaded = await self.client.download_file(name, self.config.folder_path)
        path = await self._save(downloaded)
        logger.info("Downloaded %s to %s", downloaded.file_name, path)
        self._emit(
            FileDownloaded(
                file_name=downloaded.file_name,
                file_size=downloaded.file_size,
                content_type=downloaded.content_type,
                path=str(path),
            )
        )
        return ViewResult(file_name=downloaded.file_name, method="flow", path=str(path))

    async def _save(self, downloaded: DownloadedFile) -> Path:
        self.download_dir.mkdir(parents=True, exist_ok=True)
        target = self.download_dir / Path(downloaded.file_name).name
        async with aiofiles.open(target, "wb") as f:
            await f.write(downloaded.content)
        return target

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def dispose(self) -> None:
        """Cancel every progress task and close an owned HTTP client."""
        if self._disposed:
            return
        self._disposed = True
        self.progress.cancel_all()
        if self._owns_client:
            await self.client.aclose()
