from __future__ import annotations

import base64
import logging
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path

import aiofiles

from flowattach.errors import LocalReadFailed

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass
class LocalFile:
    """A file offered for attachment, backed by a path or by in-memory bytes."""

    name: str
    size: int
    content_type: str = ""
    path: Path | None = field(default=None)
    data: bytes | None = field(default=None, repr=False)

    @classmethod
    def from_path(cls, path: str | Path) -> LocalFile:
        path = Path(path)
        try:
            size = path.stat().st_size
        except OSError as exc:
            raise LocalReadFailed(f"Cannot read {path}: {exc}") from exc
        content_type, _ = mimetypes.guess_type(path.name)
        return cls(name=path.name, size=size, content_type=content_type or "", path=path)

    @classmethod
    def from_bytes(cls, name: str, data: bytes, content_type: str = "") -> LocalFile:
        if not content_type:
            content_type = mimetypes.guess_type(name)[0] or ""
        return cls(name=name, size=len(data), content_type=content_type, data=data)

    @property
    def wire_content_type(self) -> str:
        return self.content_type or DEFAULT_CONTENT_TYPE

    async def read(self) -> bytes:
        """Read the whole file into memory."""
        if self.data is not None:
            return self.data
        if self.path is None:
            raise LocalReadFailed(f"Error reading file: {self.name}")
        try:
            async with aiofiles.open(self.path, "rb") as f:
                return await f.read()
        except OSError as exc:
            logger.error("Error reading file %s: %s", self.path, exc)
            raise LocalReadFailed(f"Error reading file: {self.name}") from exc

    async def read_base64(self) -> str:
        return base64.b64encode(await self.read()).decode("ascii")


def resolve_inputs(paths: list[str], recursive: bool = False) -> list[LocalFile]:
    """Resolve files and directories into a sorted list of local files."""
    result: list[Path] = []
    for p in paths:
        path = Path(p)
        if path.is_file():
            result.append(path)
        elif path.is_dir():
            pattern = path.rglob("*") if recursive else path.glob("*")
            result.extend(child for child in pattern if child.is_file())
        else:
            logger.warning("Path does not exist: %s", path)
    if not result:
        raise FileNotFoundError("No files found in the given paths")
    return [LocalFile.from_path(p) for p in sorted(set(result))]
