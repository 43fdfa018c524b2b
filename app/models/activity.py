from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ResponseRecord(BaseModel):
    """Stable response content, stored once per content hash."""

    content_hash: str
    stable_content: Dict[str, Any]


class ActivityLogEntry(BaseModel):
    """Write-once audit record for a single request."""

    id: str
    path: str
    success: bool
    request_options: Dict[str, Any] = Field(default_factory=dict)
    response_hash: Optional[str] = None
    response_metadata: Optional[Dict[str, Any]] = None
    execution_time_ms: float = 0.0
    timestamp: str

    model_config = {"frozen": True}
