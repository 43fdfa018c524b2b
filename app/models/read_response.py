from typing import Literal, Optional, Union

from app.models.base import CamelModel
from app.models.page import MetaFiles, PageMetadata


class Metrics(CamelModel):
    readable_duration: str
    duration_ms: float
    start_time_ms: float
    end_time_ms: float


class ReadSuccessResponse(CamelModel):
    success: Literal[True] = True
    cached: bool = False
    request_id: Optional[str] = None
    target_url: str
    title: Optional[str] = None
    description: Optional[str] = None
    markdown: Optional[str] = None
    cleaned_html: Optional[str] = None
    raw_html: Optional[str] = None
    metadata: Optional[PageMetadata] = None
    meta_files: Optional[MetaFiles] = None
    metrics: Optional[Metrics] = None


class ReadErrorResponse(CamelModel):
    success: Literal[False] = False
    request_id: Optional[str] = None
    target_url: str
    error: str
    timestamp: Optional[str] = None


ReadResponse = Union[ReadSuccessResponse, ReadErrorResponse]
