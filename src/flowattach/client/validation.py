"""Type and size policy checks applied when files are offered."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from flowattach.client.files import LocalFile
from flowattach.models import BYTES_PER_MB, ExistingRemoteFile, FileStatus, PendingFile, Policy

_SEPARATORS = re.compile(r"[;,]")


@dataclass(frozen=True)
class ValidationOutcome:
    is_valid: bool
    error: str | None = None


ACCEPTED = ValidationOutcome(is_valid=True)


def parse_allowed_types(allowed: str | None) -> list[str]:
    """Split an allow-list on ``;`` or ``,`` into lower-cased patterns.

    Empty entries and bare ``*`` are dropped, so an empty result means
    every type is allowed.
    """
    if not allowed or allowed.strip() in ("", "*"):
        return []
    patterns = (p.strip().lower() for p in _SEPARATORS.split(allowed))
    return [p for p in patterns if p and p != "*"]


def _extension(name: str) -> str:
    name = name.lower()
    dot = name.rfind(".")
    return name[dot:] if dot >= 0 else ""


def matches_type(file_name: str, content_type: str, patterns: Iterable[str]) -> bool:
    extension = _extension(file_name)
    mime = (content_type or "").lower()
    for pattern in patterns:
        if "/" in pattern:
            if mime == pattern or mime.startswith(pattern.replace("*", "")):
                return True
            continue
        normalized = pattern if pattern.startswith(".") else f".{pattern}"
        if extension and extension == normalized:
            return True
    return False


def _mb(size: int) -> str:
    return f"{size / BYTES_PER_MB:.2f}"


def validate_file(
    candidate: LocalFile,
    policy: Policy,
    *,
    pending: Iterable[PendingFile] = (),
    existing: Iterable[ExistingRemoteFile] = (),
    batch_sizes: Iterable[int] = (),
) -> ValidationOutcome:
    """Decide whether *candidate* may join the files already known.

    *pending* are the store's files, *existing* the remote files and
    *batch_sizes* the sizes accepted earlier in the same batch.
    """
    patterns = parse_allowed_types(policy.allowed_file_types)
    if patterns and not matches_type(candidate.name, candidate.content_type, patterns):
        return ValidationOutcome(
            is_valid=False,
            error=f"File type not allowed. Allowed: {policy.allowed_file_types}",
        )

    if policy.max_total_file_size_mb > 0:
        current = (
            sum(f.size for f in pending if f.is_valid and f.status != FileStatus.FAILED)
            + sum(f.size for f in existing)
            + sum(batch_sizes)
        )
        if current + candidate.size > policy.max_total_size_bytes:
            return ValidationOutcome(
                is_valid=False,
                error=(
                    f"Adding this file ({_mb(candidate.size)} MB) would exceed the "
                    f"{policy.max_total_file_size_mb} MB limit. "
                    f"Current total: {_mb(current)} MB"
                ),
            )

    return ACCEPTED
