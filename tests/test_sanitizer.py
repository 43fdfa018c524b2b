"""Tests for sanitizer.filter_html and reader_clean."""

from unittest.mock import patch

from bs4 import BeautifulSoup

from app.services.sanitizer import filter_html, reader_clean

BASE = "https://example.com/docs/page"


def _text(html: str) -> str:
    return BeautifulSoup(html, "lxml").get_text()


class TestFilterHtml:
    def test_removes_script_tags(self):
        html = filter_html("<p>Text</p><script>alert('xss')</script>", BASE)
        assert "alert" not in html

    def test_removes_style_tags(self):
        html = filter_html("<style>body { color: red; }</style><p>Text</p>", BASE)
        assert "color" not in _text(html)

    def test_removes_svg_and_canvas(self):
        html = filter_html("<p>Hello</p><svg><path d='M0 0 L100 100'/></svg><canvas>fallback</canvas>", BASE)
        text = _text(html)
        assert "M0 0" not in html
        assert "fallback" not in text
        assert "Hello" in text

    def test_removes_html_comments(self):
        html = filter_html("<p>Visible</p><!-- hidden comment -->", BASE)
        assert "hidden comment" not in html

    def test_removes_display_none_elements(self):
        html = filter_html('<p>Visible</p><div style="display:none">Hidden</div>', BASE)
        assert "Hidden" not in _text(html)
        assert "Visible" in _text(html)

    def test_removes_visibility_hidden_elements(self):
        html = filter_html('<span style="visibility: hidden">Ghost</span><p>Real</p>', BASE)
        assert "Ghost" not in _text(html)
        assert "Real" in _text(html)

    def test_strips_inline_style_and_event_handlers(self):
        html = filter_html('<p style="color:red">Styled</p><a href="/page" onclick="go()">Link</a>', BASE)
        soup = BeautifulSoup(html, "lxml")
        assert soup.find("p").get("style") is None
        assert soup.find("a").get("onclick") is None

    def test_makes_links_absolute(self):
        html = filter_html('<a href="../guide">Guide</a><img src="/logo.jpg">', BASE)
        soup = BeautifulSoup(html, "lxml")
        assert soup.find("a")["href"] == "https://example.com/guide"
        assert soup.find("img")["src"] == "https://example.com/logo.jpg"

    def test_keeps_fragment_and_mailto_links(self):
        html = filter_html('<a href="#top">Top</a><a href="mailto:a@example.com">Mail</a>', BASE)
        soup = BeautifulSoup(html, "lxml")
        hrefs = [a["href"] for a in soup.find_all("a")]
        assert hrefs == ["#top", "mailto:a@example.com"]

    def test_removes_base64_images(self):
        html = filter_html('<p>Text</p><img src="data:image/png;base64,AAAA">', BASE)
        assert "base64" not in html

    def test_keeps_base64_images_when_asked(self):
        html = filter_html('<p>Text</p><img src="data:image/png;base64,AAAA">', BASE, remove_base64_images=False)
        assert "base64" in html

    def test_normal_content_preserved(self):
        html = filter_html("<h1>Title</h1><p>Paragraph <strong>bold</strong> text.</p>", BASE)
        assert "<strong>bold</strong>" in html
        assert "Title" in _text(html)


class TestFilterHtmlMainContent:
    def test_removes_nav_header_footer_aside(self):
        html = (
            "<body><header><a href='/'>Logo</a></header><nav>Menu</nav>"
            "<main><p>Article</p></main><aside>Widget</aside>"
            "<footer><p>Copyright 2024</p></footer></body>"
        )
        text = _text(filter_html(html, BASE))
        assert "Article" in text
        for noise in ("Logo", "Menu", "Widget", "Copyright 2024"):
            assert noise not in text

    def test_removes_noise_class_elements(self):
        html = "<div class='cookie-banner'>Accept</div><div class='content'>Body text</div>"
        text = _text(filter_html(html, BASE))
        assert "Accept" not in text
        assert "Body text" in text

    def test_keeps_chrome_without_main_content_extraction(self):
        html = "<nav>Menu</nav><p>Body</p>"
        text = _text(filter_html(html, BASE, extract_main_content=False))
        assert "Menu" in text
        assert "Body" in text

    def test_noise_class_on_main_is_kept(self):
        html = "<main class='menu-layout'><p>Still here</p></main>"
        assert "Still here" in _text(filter_html(html, BASE))


class TestReaderClean:
    def test_uses_extracted_article(self):
        with patch("app.services.sanitizer.trafilatura.extract", return_value="<p>Article <a href='/x'>x</a></p>"):
            html = reader_clean("<html><body>ignored</body></html>", BASE)
        assert "Article" in html
        assert "https://example.com/x" in html

    def test_falls_back_to_tag_filter(self):
        with patch("app.services.sanitizer.trafilatura.extract", return_value=None):
            html = reader_clean("<nav>Menu</nav><p>Fallback body</p>", BASE)
        assert "Fallback body" in html
        assert "Menu" not in html
