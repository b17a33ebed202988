from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI

from flowattach.server.auth import AuthProvider, make_auth_dependency
from flowattach.server.routes import make_router
from flowattach.server.state import AppState

if TYPE_CHECKING:
    from collections.abc import Callable


def create_app(
    storage_dir: str = "./flow-storage",
    auth: AuthProvider | Callable[..., Any] | None = None,
    wrap_download: bool = False,
) -> FastAPI:
    """Create a reference backend exposing the four storage flow triggers.

    Args:
        storage_dir: Directory standing in for the object store.
        auth: Authentication provider, raw FastAPI dependency, or *None*
              (every caller accepted).
        wrap_download: Return download payloads under a ``body`` wrapper,
              the way some flow hosts do.
    """
    if auth is None:
        auth_dep = None
    elif isinstance(auth, AuthProvider):
        auth_dep = make_auth_dependency(auth)
    elif callable(auth):
        auth_dep = auth
    else:
        msg = f"auth must be an AuthProvider, callable, or None, got {type(auth)}"
        raise TypeError(msg)

    app = FastAPI(title="flowattach reference flows")
    root = Path(storage_dir)
    root.mkdir(parents=True, exist_ok=True)
    app.state = AppState(storage_dir=root, wrap_download=wrap_download)
    app.include_router(make_router(auth_dep=auth_dep), prefix="/flows")
    return app
