from __future__ import annotations

import random

import httpx
import pytest

from flowattach.client.files import LocalFile
from flowattach.client.orchestrator import TransferOrchestrator
from flowattach.client.progress import ProgressEstimator
from flowattach.client.resolver import MemoryStore, PolicyResolver
from flowattach.client.store import FileStateStore
from flowattach.config import FlowConfig
from flowattach.models import BYTES_PER_MB, Policy
from flowattach.server.app import create_app
from flowattach.server.auth import SignatureAuthProvider

BASE_URL = "http://flows.test"


def make_file(name: str, size: int = 16, content_type: str = "") -> LocalFile:
    """An in-memory file of *size* bytes."""
    return LocalFile.from_bytes(name, b"x" * size, content_type=content_type)


def make_mb_file(name: str, megabytes: float, content_type: str = "") -> LocalFile:
    """A file that reports *megabytes* without holding that much data."""
    return LocalFile(
        name=name,
        size=int(megabytes * BYTES_PER_MB),
        content_type=content_type,
        data=b"",
    )


@pytest.fixture()
def storage_dir(tmp_path):
    """Directory used by the reference backend as its object store."""
    d = tmp_path / "storage"
    d.mkdir()
    return d


@pytest.fixture()
def flow_app(storage_dir):
    """Reference flow backend returning download payloads at the top level."""
    return create_app(storage_dir=str(storage_dir))


@pytest.fixture()
def wrapped_app(storage_dir):
    """Reference flow backend wrapping download payloads under ``body``."""
    return create_app(storage_dir=str(storage_dir), wrap_download=True)


@pytest.fixture()
def authed_app(storage_dir):
    return create_app(storage_dir=str(storage_dir), auth=SignatureAuthProvider("s3cret"))


@pytest.fixture()
def http(flow_app):
    """httpx AsyncClient wired to the reference backend via ASGI transport."""
    transport = httpx.ASGITransport(app=flow_app)
    return httpx.AsyncClient(transport=transport, base_url=BASE_URL)


@pytest.fixture()
def wrapped_http(wrapped_app):
    transport = httpx.ASGITransport(app=wrapped_app)
    return httpx.AsyncClient(transport=transport, base_url=BASE_URL)


@pytest.fixture()
def authed_http(authed_app):
    transport = httpx.ASGITransport(app=authed_app)
    return httpx.AsyncClient(transport=transport, base_url=BASE_URL)


@pytest.fixture()
def remote_config() -> FlowConfig:
    """Config with every remote-mode prerequisite present."""
    return FlowConfig.from_base_url(
        BASE_URL,
        container_path="attachments",
        folder_name="cases",
        record_uid="rec-42",
        timeout=5.0,
    )


@pytest.fixture()
def local_config() -> FlowConfig:
    """No endpoints at all: local JSON mode."""
    return FlowConfig()


@pytest.fixture()
def resolver() -> PolicyResolver:
    return PolicyResolver(Policy(max_total_file_size_mb=10, allowed_file_types="*"), MemoryStore())


@pytest.fixture()
def events():
    return []


@pytest.fixture()
def make_orchestrator(resolver, events, tmp_path):
    """Factory for orchestrators with a fast, seeded progress estimator."""

    def _make(config: FlowConfig, http: httpx.AsyncClient | None = None, **kwargs):
        store = FileStateStore()
        estimator = ProgressEstimator(store, interval=0.001, rng=random.Random(7))
        kwargs.setdefault("download_dir", tmp_path / "downloads")
        return TransferOrchestrator(
            config,
            kwargs.pop("resolver", resolver),
            http=http,
            store=store,
            estimator=estimator,
            on_event=events.append,
            **kwargs,
        )

    return _make
