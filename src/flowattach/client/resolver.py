"""Active policy resolution: bound configuration plus a persisted admin override."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import ValidationError

from flowattach.client.validation import parse_allowed_types
from flowattach.errors import InvalidSetting
from flowattach.models import Policy

logger = logging.getLogger(__name__)

OVERRIDE_KEY = "flowattach.admin_policy"


@runtime_checkable
class KeyValueStore(Protocol):
    """Persistence port for small JSON-serialisable values."""

    def get(self, key: str) -> Any | None: ...
    def set(self, key: str, value: Any) -> None: ...


class MemoryStore:
    """In-process store, used when nothing should outlive the session."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self.data: dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Any | None:
        return self.data.get(key)

    def set(self, key: str, value: Any) -> None:
        self.data[key] = value


class JsonFileStore:
    """Keys persisted together in a single JSON document."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable state file %s: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> Any | None:
        return self._read().get(key)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")


def _load_override(raw: Any) -> Policy | None:
    if not isinstance(raw, dict):
        return None
    if not raw.get("maxTotalFileSizeMB") or "allowedFileTypes" not in raw:
        return None
    try:
        return Policy.model_validate(raw)
    except ValidationError as exc:
        logger.warning("Ignoring invalid stored policy override: %s", exc)
        return None


class PolicyResolver:
    """Merges the bound policy with the admin override; the override wins when valid."""

    def __init__(self, bound: Policy, store: KeyValueStore | None = None) -> None:
        self._store = store if store is not None else MemoryStore()
        self._bound = bound
        try:
            stored = self._store.get(OVERRIDE_KEY)
        except Exception as exc:
            logger.warning("Failed to load policy override: %s", exc)
            stored = None
        self._override = _load_override(stored) or bound.model_copy()
        self._persist()

    @property
    def bound(self) -> Policy:
        return self._bound

    @property
    def policy(self) -> Policy:
        return self._override

    def bind(self, bound: Policy) -> Policy:
        """Apply externally changed bound values; they become the new override."""
        if bound == self._bound:
            return self._override
        self._bound = bound
        self._override = bound.model_copy()
        self._persist()
        return self._override

    def set_override(
        self,
        *,
        max_total_file_size_mb: int | None = None,
        allowed_file_types: str | None = None,
    ) -> Policy:
        updates: dict[str, Any] = {}
        if max_total_file_size_mb is not None:
            if max_total_file_size_mb < 1:
                raise InvalidSetting("Maximum total size must be at least 1 MB")
            updates["max_total_file_size_mb"] = max_total_file_size_mb
        if allowed_file_types is not None:
            updates["allowed_file_types"] = allowed_file_types
        self._override = self._override.model_copy(update=updates)
        self._persist()
        return self._override

    def reset(self) -> Policy:
        """Restore the bound values."""
        self._override = self._bound.model_copy()
        self._persist()
        return self._override

    def describe_allowed_types(self, prefix: str = "Allowed") -> str:
        types = [p.removeprefix(".") for p in parse_allowed_types(self._override.allowed_file_types)]
        return f"{prefix} {','.join(types)}" if types else ""

    def _persist(self) -> None:
        try:
            self._store.set(OVERRIDE_KEY, self._override.to_wire())
        except Exception as exc:
            logger.warning("Failed to save policy override: %s", exc)
