from typing import List, Literal, Optional, Union

from app.models.base import CamelModel
from app.models.page import MetaFiles, PageMetadata


class MediaLinks(CamelModel):
    images: Optional[List[str]] = None
    videos: Optional[List[str]] = None
    documents: Optional[List[str]] = None


class ExtractedLinks(CamelModel):
    internal: Optional[List[str]] = None
    external: Optional[List[str]] = None
    media: Optional[MediaLinks] = None


class SkippedUrl(CamelModel):
    url: str
    reason: str


class SkippedMedia(CamelModel):
    images: Optional[List[SkippedUrl]] = None
    videos: Optional[List[SkippedUrl]] = None
    documents: Optional[List[SkippedUrl]] = None


class SkippedLinks(CamelModel):
    internal: Optional[List[SkippedUrl]] = None
    external: Optional[List[SkippedUrl]] = None
    media: Optional[SkippedMedia] = None
    other: Optional[List[SkippedUrl]] = None


class TreeNode(CamelModel):
    """One page of the site tree. Root-only fields are left unset on children."""

    url: str
    root_url: Optional[str] = None
    name: str
    total_urls: Optional[int] = None
    execution_time: Optional[str] = None
    last_updated: Optional[str] = None
    last_visited: Optional[str] = None
    skipped_urls: Optional[SkippedLinks] = None
    error: Optional[str] = None
    metadata: Optional[PageMetadata] = None
    extracted_links: Optional[ExtractedLinks] = None
    cleaned_html: Optional[str] = None
    children: Optional[List["TreeNode"]] = None


class _LinksSuccessBase(CamelModel):
    success: Literal[True] = True
    cached: bool = False
    request_id: Optional[str] = None
    target_url: str
    timestamp: Optional[str] = None
    ancestors: Optional[List[str]] = None


class LinksTreeResponse(_LinksSuccessBase):
    """Tree-shaped success response; per-page data lives on the nodes."""

    tree: TreeNode


class LinksFlatResponse(_LinksSuccessBase):
    """Single-page success response, used when no tree is requested."""

    execution_time: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    metadata: Optional[PageMetadata] = None
    extracted_links: Optional[ExtractedLinks] = None
    cleaned_html: Optional[str] = None
    meta_files: Optional[MetaFiles] = None
    skipped_urls: Optional[SkippedLinks] = None


class LinksErrorResponse(CamelModel):
    success: Literal[False] = False
    request_id: Optional[str] = None
    target_url: str
    error: str
    timestamp: Optional[str] = None
    tree: Optional[TreeNode] = None


LinksSuccessResponse = Union[LinksTreeResponse, LinksFlatResponse]
LinksResponse = Union[LinksTreeResponse, LinksFlatResponse, LinksErrorResponse]
