"""flowattach: attach files to records through flow-triggered object storage."""

__version__ = "0.1.0"

from flowattach.client.orchestrator import TransferOrchestrator
from flowattach.client.resolver import JsonFileStore, MemoryStore, PolicyResolver
from flowattach.config import DisplayMode, FlowConfig, OrchestratorSettings
from flowattach.models import FileStatus, Policy, UploadStatus
from flowattach.server.app import create_app
from flowattach.server.auth import SignatureAuthProvider

__all__ = [
    "__version__",
    "DisplayMode",
    "FileStatus",
    "FlowConfig",
    "JsonFileStore",
    "MemoryStore",
    "OrchestratorSettings",
    "Policy",
    "PolicyResolver",
    "SignatureAuthProvider",
    "TransferOrchestrator",
    "UploadStatus",
    "create_app",
]
