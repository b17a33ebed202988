"""Flow endpoint configuration and host setting types."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from flowattach.errors import InvalidSetting

DEFAULT_TIMEOUT = 100.0  # seconds; flow triggers can take long on cold start

FLOW_PATHS = {
    "upload_url": "/flows/upload",
    "list_url": "/flows/list",
    "delete_url": "/flows/delete",
    "download_url": "/flows/download",
}


class FlowConfig(BaseModel):
    """Endpoints and addressing used to reach the storage flows."""
    upload_url: str | None = None
    list_url: str | None = None
    delete_url: str | None = None
    download_url: str | None = None
    container_path: str | None = None
    folder_name: str | None = None
    record_uid: str | None = None
    auth_token: str | None = None
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)

    @classmethod
    def from_base_url(cls, base_url: str, **kwargs: object) -> FlowConfig:
        """Build a config whose four flow URLs hang off a single base URL."""
        base = base_url.rstrip("/")
        urls = {key: f"{base}{path}" for key, path in FLOW_PATHS.items()}
        # Explicit URLs passed by the caller take precedence.
        urls.update({k: v for k, v in kwargs.items() if k in FLOW_PATHS and v})
        rest = {k: v for k, v in kwargs.items() if k not in FLOW_PATHS}
        return cls(**urls, **rest)

    @property
    def has_record(self) -> bool:
        return bool(self.record_uid and self.record_uid.strip())

    @property
    def is_remote_configured(self) -> bool:
        """True when every prerequisite for remote mode is present.

        Remote folders are per record, so a blank record uid disables
        remote mode just like a missing endpoint does.
        """
        return bool(
            self.has_record
            and self.upload_url
            and self.list_url
            and self.delete_url
            and self.download_url
            and self.container_path
        )

    @property
    def folder_path(self) -> str:
        """Folder name and record uid joined by ``/``; either may be absent."""
        record = self.record_uid.strip() if self.has_record else ""
        folder = self.folder_name or ""
        if folder and record:
            return f"{folder}/{record}"
        return record or folder

    def context_key(self) -> tuple[str | None, ...]:
        """Values whose change resets all local state."""
        return (self.list_url, self.container_path, self.folder_name, self.record_uid)


class DisplayMode(Enum):
    """Interaction mode bound by the host."""
    EDIT = 0
    DISABLED = 1
    VIEW = 2
    ADMIN = 3

    @classmethod
    def parse(cls, raw: str | int | DisplayMode) -> DisplayMode:
        if isinstance(raw, DisplayMode):
            return raw
        key = str(raw).strip().lower()
        try:
            return _DISPLAY_MODES[key]
        except KeyError:
            raise InvalidSetting(f"Invalid display mode: {raw!r}") from None

    @property
    def accepts_files(self) -> bool:
        return self is DisplayMode.EDIT


_DISPLAY_MODES = {
    **{str(mode.value): mode for mode in DisplayMode},
    **{mode.name.lower(): mode for mode in DisplayMode},
}


class OrchestratorSettings(BaseModel):
    """Host-bound behaviour switches for the orchestrator."""
    display_mode: DisplayMode = DisplayMode.EDIT
    allow_multiple_files: bool = True
    show_action_spinner: bool = True
