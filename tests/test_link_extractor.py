"""Tests for link collection, categorization and path resolution."""

from app.models.links_request import LinkExtractionOptions
from app.services.link_extractor import LinkExtractor, LinkSets, collect_link_values, normalize_link

extractor = LinkExtractor()


class TestCollectLinkValues:
    def test_collects_href_and_src_in_document_order(self):
        html = (
            '<a href="/a">A</a><img src="/logo.png">'
            '<video src="/clip.mp4"></video><iframe src="https://embed.example.net/x"></iframe>'
        )
        assert collect_link_values(html) == ["/a", "/logo.png", "/clip.mp4", "https://embed.example.net/x"]

    def test_empty_html(self):
        assert collect_link_values("") == []
        assert collect_link_values("   ") == []

    def test_ignores_other_attributes(self):
        assert collect_link_values('<link href="/style.css"><div data-href="/x"></div>') == []


class TestNormalizeLink:
    def test_resolves_and_strips_trailing_slash(self):
        assert normalize_link("../b/", "https://example.com/a/c") == "https://example.com/b"

    def test_drops_fragment_and_query(self):
        assert normalize_link("/p?x=1#top", "https://example.com") == "https://example.com/p"

    def test_keeps_query_when_asked(self):
        assert normalize_link("/p?x=1#top", "https://example.com", remove_query_params=False) == "https://example.com/p?x=1"


class TestCategorize:
    def test_subdomain_base_with_root_domain(self):
        links = extractor.categorize(
            ["https://example.com/y", "https://other.com/y", "https://other.com/pic.png"],
            base_url="https://a.example.com/x",
            root_url="https://example.com",
        )
        assert links.internal == ["https://example.com/y"]
        assert links.external == ["https://other.com/y"]
        assert links.media.images == ["https://other.com/pic.png"]

    def test_media_wins_over_internal(self):
        links = extractor.categorize(
            ["https://example.com/files/report.pdf"], "https://example.com", "https://example.com"
        )
        assert links.internal is None
        assert links.media.documents == ["https://example.com/files/report.pdf"]

    def test_root_path_is_not_internal(self):
        links = extractor.categorize(["https://example.com"], "https://example.com/a", "https://example.com")
        assert links.internal is None

    def test_internal_keeps_discovery_order_external_sorted(self):
        links = extractor.categorize(
            ["https://example.com/z", "https://b.org/2", "https://example.com/a", "https://a.org/1"],
            "https://example.com",
            "https://example.com",
        )
        assert links.internal == ["https://example.com/z", "https://example.com/a"]
        assert links.external == ["https://a.org/1", "https://b.org/2"]
        assert links.media is None


class TestExtract:
    def test_skips_non_navigational_hrefs(self):
        html = (
            '<a href="#top">t</a><a href="javascript:void(0)">j</a>'
            '<a href="mailto:a@example.com">m</a><a href="tel:123">p</a><a href="/real">r</a>'
        )
        links = extractor.extract(html, "https://example.com")
        assert links.internal == ["https://example.com/real"]
        assert links.external is None

    def test_skips_framework_resources(self):
        html = '<a href="/_next/static/chunk.js">x</a><a href="/wp-content/uploads/a">y</a><a href="/docs">d</a>'
        links = extractor.extract(html, "https://example.com")
        assert links.internal == ["https://example.com/docs"]

    def test_exclude_patterns(self):
        html = '<a href="/blog/a">a</a><a href="/tag/python">t</a>'
        options = LinkExtractionOptions(exclude_patterns=[r"/tag/", "([invalid"])
        links = extractor.extract(html, "https://example.com", options=options)
        assert links.internal == ["https://example.com/blog/a"]

    def test_invalid_urls_are_recorded(self):
        skipped = {}
        html = '<a href="http://localhost:3000/admin">x</a><a href="/ok">ok</a>'
        links = extractor.extract(html, "https://example.com", skipped_urls=skipped)
        assert links.internal == ["https://example.com/ok"]
        assert skipped == {"http://localhost:3000/admin": "URL is not allowed for security reasons"}

    def test_media_categorized(self):
        html = '<img src="/img/a.png"><a href="https://cdn.other.com/v.mp4">v</a>'
        links = extractor.extract(html, "https://example.com/page")
        assert links.media.images == ["https://example.com/img/a.png"]
        assert links.media.videos == ["https://cdn.other.com/v.mp4"]


class TestPaths:
    def test_root_url(self):
        assert extractor.get_root_url("https://docs.example.com/a/b") == "https://example.com"

    def test_ancestors(self):
        assert extractor.get_ancestor_paths("https://example.com/blog/2024/post") == [
            "https://example.com",
            "https://example.com/blog",
            "https://example.com/blog/2024",
        ]

    def test_ancestors_include_root_for_subdomain(self):
        assert extractor.get_ancestor_paths("https://docs.example.com/guide/intro") == [
            "https://example.com",
            "https://docs.example.com/guide",
        ]

    def test_no_ancestors_for_root(self):
        assert extractor.get_ancestor_paths("https://example.com") is None

    def test_descendants_sorted_by_depth(self):
        links = [
            "https://example.com/docs/a/b",
            "https://example.com/docs/a",
            "https://example.com/blog/x",
            "https://other.example.com/docs/z",
            "https://example.com/docs",
        ]
        assert extractor.get_descendant_paths("https://example.com/docs", links) == [
            "https://example.com/docs/a",
            "https://example.com/docs/a/b",
        ]
        assert extractor.get_descendant_paths("https://example.com/docs", links, max_steps=1) == [
            "https://example.com/docs/a",
        ]


class TestAccumulation:
    def test_merge_links(self):
        sets = LinkSets()
        first = extractor.categorize(["https://example.com/a", "https://x.org/1"], "https://example.com", "https://example.com")
        second = extractor.categorize(["https://example.com/b", "https://example.com/a"], "https://example.com", "https://example.com")
        extractor.merge_links(sets, first)
        extractor.merge_links(sets, second)
        assert list(sets.internal) == ["https://example.com/a", "https://example.com/b"]
        assert sets.external == {"https://x.org/1"}

    def test_merge_visited_keeps_newest_and_caps(self):
        existing = {"a": "2024-01-01T00:00:00.000Z", "b": "2024-01-03T00:00:00.000Z"}
        new = {"a": "2024-01-05T00:00:00.000Z", "c": "2024-01-02T00:00:00.000Z"}
        merged = extractor.merge_visited_urls(existing, new, limit=2)
        assert list(merged.items()) == [
            ("a", "2024-01-05T00:00:00.000Z"),
            ("b", "2024-01-03T00:00:00.000Z"),
        ]
