"""Pluggable authentication for the reference flow backend."""

from __future__ import annotations

import hmac
from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from fastapi import HTTPException, Request
from pydantic import BaseModel, Field

TRIGGER_FLOWS = ("upload", "list", "delete", "download")


class Caller(BaseModel):
    """Identity of whoever triggered a flow."""

    identity: str = "anonymous"
    flow: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


@runtime_checkable
class AuthProvider(Protocol):
    """Contract that auth providers must satisfy."""

    async def authenticate(self, request: Request) -> Caller: ...


class NoAuthProvider:
    """Accepts every trigger call."""

    async def authenticate(self, request: Request) -> Caller:
        return Caller()


def trigger_flow(request: Request) -> str | None:
    """Name of the trigger flow a request targets, or None for other routes."""
    name = request.url.path.rstrip("/").rsplit("/", 1)[-1]
    return name if name in TRIGGER_FLOWS else None


class SignatureAuthProvider:
    """Checks flow trigger signatures.

    Each trigger URL carries its own ``sig`` query parameter, so *signatures*
    is either one secret shared by every flow or a mapping of flow name
    (``upload``, ``list``, ``delete``, ``download``) to that flow's secret.
    A signature only opens the flow it was issued for; routes that are not
    triggers accept any configured signature. ``Authorization: Bearer`` is
    read when no ``sig`` is given.
    """

    def __init__(self, signatures: str | Mapping[str, str]) -> None:
        if isinstance(signatures, str):
            signatures = {flow: signatures for flow in TRIGGER_FLOWS}
        unknown = set(signatures) - set(TRIGGER_FLOWS)
        if unknown:
            raise ValueError(f"Unknown flows: {', '.join(sorted(unknown))}")
        if not signatures:
            raise ValueError("At least one flow signature is required")
        self._signatures = dict(signatures)

    def _supplied(self, request: Request) -> tuple[str | None, str]:
        sig = request.query_params.get("sig")
        if sig is not None:
            return sig, "signature"
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            return auth_header.removeprefix("Bearer "), "bearer"
        return None, "anonymous"

    async def authenticate(self, request: Request) -> Caller:
        supplied, identity = self._supplied(request)
        flow = trigger_flow(request)
        if supplied is not None:
            if flow is not None:
                expected = self._signatures.get(flow)
                if expected is not None and hmac.compare_digest(supplied, expected):
                    return Caller(identity=identity, flow=flow)
            elif any(hmac.compare_digest(supplied, s) for s in self._signatures.values()):
                return Caller(identity=identity)

        raise HTTPException(status_code=401, detail="Invalid or missing flow signature")


def make_auth_dependency(provider: AuthProvider):
    """Convert an AuthProvider into a FastAPI dependency callable."""

    async def _dependency(request: Request) -> Caller:
        return await provider.authenticate(request)

    return _dependency
