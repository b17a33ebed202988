from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class FlowRunState(str, Enum):
    """Enumeration of possible states of a flow run."""
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FlowRunRecord(BaseModel):
    """A single invocation of one of the storage flows."""
    flow_run_id: str
    operation: str
    file_name: str = ""
    state: FlowRunState = FlowRunState.RUNNING
    error: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    """Response model for the health check endpoint."""
    status: str
    version: str
    wrap_download: bool
