from typing import List, Literal, Optional

from pydantic import Field

from app.models.base import CamelModel

CleaningProcessor = Literal["reader", "html-filter"]


class MetadataOptions(CamelModel):
    """Toggles for individual metadata fields."""

    title: bool = True
    description: bool = True
    language: bool = True
    canonical: bool = True
    robots: bool = True
    author: bool = True
    keywords: bool = True
    favicon: bool = True
    open_graph: bool = True
    twitter: bool = True
    is_iframe_allowed: bool = True


class PageMetadata(CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    language: Optional[str] = None
    canonical: Optional[str] = None
    robots: Optional[str] = None
    author: Optional[str] = None
    keywords: Optional[List[str]] = None
    favicon: Optional[str] = None
    og_title: Optional[str] = None
    og_description: Optional[str] = None
    og_image: Optional[str] = None
    og_url: Optional[str] = None
    og_type: Optional[str] = None
    og_site_name: Optional[str] = None
    twitter_card: Optional[str] = None
    twitter_site: Optional[str] = None
    twitter_creator: Optional[str] = None
    twitter_title: Optional[str] = None
    twitter_description: Optional[str] = None
    twitter_image: Optional[str] = None
    is_iframe_allowed: Optional[bool] = None


class MetaFiles(CamelModel):
    robots: Optional[str] = None
    sitemap_xml: Optional[str] = Field(default=None, alias="sitemapXML")


class ScrapeOptions(CamelModel):
    """Per-call switches for :class:`~app.services.scraper.ScrapeService`."""

    metadata: bool = True
    cleaned_html: bool = False
    robots: bool = False
    sitemap_xml: bool = Field(default=False, alias="sitemapXML")
    metadata_options: MetadataOptions = Field(default_factory=MetadataOptions)
    cleaning_processor: CleaningProcessor = "reader"
    extract_main_content: bool = True
    remove_base64_images: bool = True


class ScrapedData(CamelModel):
    url: str
    title: str = ""
    description: str = ""
    raw_html: str
    cleaned_html: Optional[str] = None
    metadata: Optional[PageMetadata] = None
    meta_files: Optional[MetaFiles] = None
    is_iframe_allowed: bool = False
