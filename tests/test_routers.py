"""Tests for the /read, /links and /logs endpoints.

Network access is replaced by patching ``app.services.fetcher.fetch_page``
with an in-memory site, so the full request path (validation, scraping,
caching and background post-processing) runs without internet access.
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from app.errors import FetchError
from app.main import app
from app.services.fetcher import FetchResult

client = TestClient(app)


@pytest.fixture(autouse=True)
def reset_state():
    """Clear rate limits, caches and the activity log before every test."""
    app.state.limiter._storage.reset()
    app.state.links_cache.clear()
    app.state.read_cache.clear()
    app.state.activity_store.clear()
    yield

# ---------------------------------------------------------------------------
# Shared site fixture
# ---------------------------------------------------------------------------

ROOT = "https://example.com"

_ARTICLE_HTML = """
<!DOCTYPE html>
<html>
<head>
  <title>Post 1</title>
  <meta name="description" content="The first post.">
</head>
<body>
  <main>
    <h1>Hello World</h1>
    <p>This is a fully server-rendered page with plenty of readable content
    that comfortably passes the minimum word count for Markdown output.</p>
    <a href="/about">About</a>
    <a href="https://other.com/x">Elsewhere</a>
  </main>
</body>
</html>
"""


def _page(title, *hrefs):
    links = "".join(f'<a href="{href}">{href}</a>' for href in hrefs)
    return f"<html><head><title>{title}</title></head><body><main>{links}</main></body></html>"


SITE = {
    ROOT: _page("Home", "/blog/post-1", "/about"),
    f"{ROOT}/blog": _page("Blog", "/blog/post-1"),
    f"{ROOT}/blog/post-1": _ARTICLE_HTML,
    f"{ROOT}/about": _page("About"),
}


async def _fake_fetch(url, **kwargs):
    if url not in SITE:
        raise FetchError(f"HTTP status 404 for URL: {url}", url=url, status_code=404)
    return FetchResult(url, SITE[url], 200, "text/html", True)


def _patched_fetch():
    return patch("app.services.fetcher.fetch_page", new=AsyncMock(side_effect=_fake_fetch))


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

def test_root_health_check():
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"message": "Hello from crawltree"}


# ---------------------------------------------------------------------------
# /read
# ---------------------------------------------------------------------------

class TestRead:
    def test_get_returns_markdown(self):
        with _patched_fetch():
            response = client.get("/read", params={"url": f"{ROOT}/blog/post-1"})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/markdown")
        assert "plenty of readable content" in response.text

    def test_post_returns_json(self):
        with _patched_fetch():
            response = client.post("/read", json={"url": f"{ROOT}/blog/post-1", "cleanedHtml": True})
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["cached"] is False
        assert data["targetUrl"] == f"{ROOT}/blog/post-1"
        assert data["title"] == "Post 1"
        assert "plenty of readable content" in data["markdown"]
        assert "cleanedHtml" in data
        assert "rawHtml" not in data
        assert data["metrics"]["durationMs"] >= 0
        assert data["requestId"]

    def test_post_second_request_is_cached(self):
        with _patched_fetch() as fetch:
            client.post("/read", json={"url": f"{ROOT}/blog/post-1"})
            response = client.post("/read", json={"url": f"{ROOT}/blog/post-1"})
        assert response.json()["cached"] is True
        assert fetch.await_count == 1

    def test_unreachable_page_returns_500(self):
        with _patched_fetch():
            response = client.post("/read", json={"url": f"{ROOT}/missing"})
        assert response.status_code == 500
        data = response.json()
        assert data["success"] is False
        assert "HTTP status 404" in data["error"]

    def test_get_unreachable_page_returns_json_error(self):
        with _patched_fetch():
            response = client.get("/read", params={"url": f"{ROOT}/missing"})
        assert response.status_code == 500
        assert response.json()["success"] is False

    @pytest.mark.parametrize("url", ["http://127.0.0.1/", "http://localhost:8080/", "not a url"])
    def test_rejected_url_returns_400(self, url):
        with _patched_fetch() as fetch:
            response = client.post("/read", json={"url": url})
        assert response.status_code == 400
        assert response.json()["success"] is False
        fetch.assert_not_awaited()

    def test_missing_url_is_a_validation_error(self):
        response = client.post("/read", json={})
        assert response.status_code == 422


# ---------------------------------------------------------------------------
# /links
# ---------------------------------------------------------------------------

class TestLinks:
    def test_post_returns_tree(self):
        with _patched_fetch():
            response = client.post("/links", json={"url": f"{ROOT}/blog/post-1"})
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["ancestors"] == [ROOT, f"{ROOT}/blog"]
        tree = data["tree"]
        assert tree["url"] == ROOT
        assert tree["rootUrl"] == ROOT
        names = [child["name"] for child in tree["children"]]
        assert "blog" in names and "about" in names

    def test_get_with_query_aliases_returns_flat_response(self):
        with _patched_fetch():
            response = client.get(
                "/links",
                params={"url": f"{ROOT}/blog/post-1", "tree": "false", "includeExternal": "true"},
            )
        assert response.status_code == 200
        data = response.json()
        assert "tree" not in data
        assert data["title"] == "Post 1"
        assert data["extractedLinks"]["internal"] == [f"{ROOT}/about"]
        assert data["extractedLinks"]["external"] == ["https://other.com/x"]

    def test_unreachable_target_returns_500(self):
        with _patched_fetch():
            response = client.post("/links", json={"url": f"{ROOT}/missing", "tree": False})
        assert response.status_code == 500
        data = response.json()
        assert data["success"] is False
        assert "scrape" in data["error"]

    def test_unsafe_target_returns_400(self):
        with _patched_fetch() as fetch:
            response = client.post("/links", json={"url": "http://192.168.1.1/admin"})
        assert response.status_code == 400
        assert response.json()["success"] is False
        fetch.assert_not_awaited()


# ---------------------------------------------------------------------------
# /logs
# ---------------------------------------------------------------------------

class TestLogs:
    def test_replays_read_response(self):
        with _patched_fetch():
            original = client.post("/read", json={"url": f"{ROOT}/blog/post-1"}).json()
        replayed = client.get(f"/logs/{original['requestId']}")
        assert replayed.status_code == 200
        assert replayed.json() == original

    def test_replays_get_read_as_markdown(self):
        with _patched_fetch():
            original = client.get("/read", params={"url": f"{ROOT}/blog/post-1"})
        (request_id,) = app.state.activity_store.entries
        replayed = client.get(f"/logs/{request_id}")
        assert replayed.status_code == 200
        assert replayed.headers["content-type"].startswith("text/markdown")
        assert replayed.text == original.text

    def test_replays_links_response(self):
        with _patched_fetch():
            original = client.post("/links", json={"url": f"{ROOT}/blog/post-1"}).json()
        replayed = client.get(f"/logs/{original['requestId']}")
        assert replayed.status_code == 200
        assert replayed.json() == original

    def test_replays_error_response(self):
        with _patched_fetch():
            original = client.post("/read", json={"url": f"{ROOT}/missing"}).json()
        replayed = client.get(f"/logs/{original['requestId']}")
        assert replayed.json() == original

    def test_identical_responses_share_one_record(self):
        store = app.state.activity_store
        with _patched_fetch():
            client.post("/read", json={"url": f"{ROOT}/blog/post-1", "cacheOptions": {"enabled": False}})
            client.post("/read", json={"url": f"{ROOT}/blog/post-1", "cacheOptions": {"enabled": False}})
        assert len(store.entries) == 2
        assert len(store.records) == 1

    def test_unknown_request_id_returns_404(self):
        response = client.get("/logs/does-not-exist")
        assert response.status_code == 404
