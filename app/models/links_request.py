from typing import List, Literal, Optional

from pydantic import Field

from app.models.base import CamelModel
from app.models.page import CleaningProcessor, MetadataOptions

LinksOrder = Literal["page", "alphabetical"]


class LinkExtractionOptions(CamelModel):
    include_external: bool = False
    include_media: bool = False
    remove_query_params: bool = True
    exclude_patterns: Optional[List[str]] = Field(
        default=None,
        description="Regular expressions; matching hrefs are ignored. Invalid patterns never match.",
    )


class CacheOptions(CamelModel):
    enabled: bool = True
    expiration_ttl: Optional[int] = Field(
        default=None, ge=60, description="Cache entry lifetime in seconds (minimum 60)."
    )


class LinksOptions(CamelModel):
    url: str = Field(..., min_length=1, max_length=2048)
    tree: bool = Field(default=True, description="Return a site tree instead of a flat link list.")
    extracted_links: bool = True
    metadata: bool = True
    cleaned_html: bool = False
    robots: bool = False
    sitemap_xml: bool = Field(default=False, alias="sitemapXML")
    subdomain_as_root_url: bool = True
    folder_first: bool = True
    links_order: LinksOrder = "page"
    metadata_options: MetadataOptions = Field(default_factory=MetadataOptions)
    cleaning_processor: CleaningProcessor = "reader"
    link_extraction_options: LinkExtractionOptions = Field(default_factory=LinkExtractionOptions)
    cache_options: CacheOptions = Field(default_factory=CacheOptions)
