"""Tests for splitting responses into stable/dynamic parts and rebuilding them."""

import pytest

from app.errors import SerializationError
from app.models.activity import ActivityLogEntry, ResponseRecord
from app.models.links_response import LinksFlatResponse, LinksTreeResponse, TreeNode
from app.models.read_response import Metrics, ReadSuccessResponse
from app.services.deduplicator import (
    PATH_LINKS_GET,
    PATH_LINKS_POST,
    PATH_READ_POST,
    hash_options,
    hash_response,
    reconstruct,
    reconstruct_from_log,
    split_for_hash,
    stable_stringify,
)
from app.services.site_tree import iter_nodes

T1 = "2024-05-01T10:00:00.000Z"
T2 = "2024-05-02T10:00:00.000Z"
T3 = "2024-05-03T10:00:00.000Z"


def _tree_response() -> LinksTreeResponse:
    tree = TreeNode(
        url="https://example.com",
        root_url="https://example.com",
        name="example.com",
        total_urls=4,
        execution_time="1.20s",
        last_updated=T3,
        last_visited=T3,
        children=[
            TreeNode(
                url="https://example.com/blog",
                name="blog",
                last_updated=T1,
                children=[
                    TreeNode(url="https://example.com/blog/post-1", name="post-1", last_updated=T1, last_visited=T2),
                ],
            ),
            TreeNode(url="https://example.com/about", name="about", last_updated=T2),
        ],
    )
    return LinksTreeResponse(
        request_id="req-1",
        target_url="https://example.com/blog/post-1",
        timestamp=T3,
        ancestors=["https://example.com", "https://example.com/blog"],
        tree=tree,
    )


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------

class TestHashing:
    def test_stable_stringify_sorts_keys(self):
        assert stable_stringify({"b": 1, "a": {"d": 2, "c": 3}}) == '{"a":{"c":3,"d":2},"b":1}'

    def test_options_hash_ignores_key_order(self):
        assert hash_options({"url": "u", "tree": True}) == hash_options({"tree": True, "url": "u"})

    def test_options_hash_changes_with_values(self):
        assert hash_options({"url": "u", "tree": True}) != hash_options({"url": "u", "tree": False})

    def test_circular_value_raises(self):
        value = {}
        value["self"] = value
        with pytest.raises(SerializationError):
            stable_stringify(value)

    def test_response_hash_ignores_dynamic_fields(self):
        first = _tree_response()
        second = _tree_response()
        second.request_id = "req-2"
        second.timestamp = "2030-01-01T00:00:00.000Z"
        for node in iter_nodes(second.tree):
            node.last_visited = "2030-01-01T00:00:00.000Z"
        options_hash = hash_options({"url": first.target_url})
        hashes = {
            hash_response(r.target_url, options_hash, split_for_hash(PATH_LINKS_POST, r).stable)
            for r in (first, second)
        }
        assert len(hashes) == 1


# ---------------------------------------------------------------------------
# Split / reconstruct
# ---------------------------------------------------------------------------

class TestTreeRoundTrip:
    def test_stable_part_has_no_timestamps(self):
        stable, dynamic = split_for_hash(PATH_LINKS_POST, _tree_response())
        assert stable.timestamp is None
        assert stable.request_id is None
        assert all(n.last_updated is None and n.last_visited is None for n in iter_nodes(stable.tree))
        assert dynamic.timestamp == T3
        assert dynamic.tree_dynamics.root.last_updated == T3
        assert dynamic.tree_dynamics.children_last_updated == T1
        assert dynamic.tree_dynamics.visited_nodes == {"https://example.com/blog/post-1": T2}
        assert dynamic.tree_dynamics.updated_nodes == {"https://example.com/about": T2}

    def test_reconstruct_restores_everything_but_request_id(self):
        original = _tree_response()
        stable, dynamic = split_for_hash(PATH_LINKS_POST, original)
        rebuilt = reconstruct(stable, dynamic, PATH_LINKS_POST, request_id="req-1")
        assert rebuilt == original

    def test_split_does_not_mutate_response(self):
        original = _tree_response()
        split_for_hash(PATH_LINKS_POST, original)
        assert original == _tree_response()

    def test_round_trip_through_wire_format(self):
        original = _tree_response()
        stable, dynamic = split_for_hash(PATH_LINKS_GET, original)
        record = ResponseRecord(content_hash="h", stable_content=stable.to_wire())
        entry = ActivityLogEntry(
            id="req-1",
            path=PATH_LINKS_GET,
            success=True,
            response_hash="h",
            response_metadata=dynamic.to_wire(),
            timestamp=T3,
        )
        assert reconstruct_from_log(record, entry) == original


class TestFlatAndReadRoundTrip:
    def test_flat_links_response(self):
        original = LinksFlatResponse(
            request_id="r",
            target_url="https://example.com/a",
            timestamp=T1,
            title="A",
            execution_time="10.00ms",
        )
        stable, dynamic = split_for_hash(PATH_LINKS_POST, original)
        assert stable.timestamp is None
        assert reconstruct(stable, dynamic, PATH_LINKS_POST, request_id="r") == original

    def test_read_response(self):
        original = ReadSuccessResponse(
            request_id="r",
            target_url="https://example.com/a",
            markdown="# A",
            metrics=Metrics(readable_duration="5.00ms", duration_ms=5, start_time_ms=1, end_time_ms=6),
        )
        stable, dynamic = split_for_hash(PATH_READ_POST, original)
        assert stable.metrics is None
        assert dynamic.metrics == original.metrics
        record = ResponseRecord(content_hash="h", stable_content=stable.to_wire())
        entry = ActivityLogEntry(
            id="r", path=PATH_READ_POST, success=True, response_metadata=dynamic.to_wire(), timestamp=T1
        )
        assert reconstruct_from_log(record, entry) == original
