from pydantic import Field

from app.models.base import CamelModel
from app.models.links_request import CacheOptions
from app.models.page import CleaningProcessor, MetadataOptions


class ReadOptions(CamelModel):
    url: str = Field(..., min_length=1, max_length=2048)
    markdown: bool = True
    cleaned_html: bool = False
    raw_html: bool = False
    metadata: bool = True
    robots: bool = False
    sitemap_xml: bool = Field(default=False, alias="sitemapXML")
    metadata_options: MetadataOptions = Field(default_factory=MetadataOptions)
    cleaning_processor: CleaningProcessor = "reader"
    cache_options: CacheOptions = Field(default_factory=CacheOptions)
