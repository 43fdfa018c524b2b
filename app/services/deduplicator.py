"""Response deduplication for the activity log.

A response is split into a *stable* part, which is hashed and stored once
per unique content, and a *dynamic* part (timestamps, metrics, per-node
visit state) which is kept with each log entry. :func:`reconstruct` is the
exact inverse of :func:`split_for_hash`, except for ``requestId`` which is
regenerated from the log entry id.
"""

import hashlib
import json
from collections import Counter
from typing import Any, Dict, NamedTuple, Optional, Union

from app.errors import SerializationError
from app.models.activity import ActivityLogEntry, ResponseRecord
from app.models.base import CamelModel
from app.models.links_response import LinksFlatResponse, LinksTreeResponse
from app.models.read_response import Metrics, ReadSuccessResponse
from app.services.site_tree import iter_nodes

PATH_READ_GET = "read-getMarkdown"
PATH_READ_POST = "read-readUrl"
PATH_LINKS_GET = "links-getLinks"
PATH_LINKS_POST = "links-extractLinks"

READ_PATHS = (PATH_READ_GET, PATH_READ_POST)
LINKS_PATHS = (PATH_LINKS_GET, PATH_LINKS_POST)

SuccessResponse = Union[ReadSuccessResponse, LinksTreeResponse, LinksFlatResponse]


class RootDynamics(CamelModel):
    last_updated: Optional[str] = None
    last_visited: Optional[str] = None


class TreeDynamics(CamelModel):
    root: RootDynamics
    # Most frequent child lastUpdated, restored on every child by default
    children_last_updated: Optional[str] = None
    visited_nodes: Dict[str, str] = {}
    # Children whose lastUpdated differs from children_last_updated
    updated_nodes: Dict[str, Optional[str]] = {}


class ReadDynamics(CamelModel):
    metrics: Optional[Metrics] = None


class LinksDynamics(CamelModel):
    timestamp: Optional[str] = None
    tree_dynamics: Optional[TreeDynamics] = None


Dynamics = Union[ReadDynamics, LinksDynamics]


class SplitResponse(NamedTuple):
    stable: SuccessResponse
    dynamic: Dynamics


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------

def stable_stringify(value: Any) -> str:
    """Serialize *value* as JSON with object keys sorted at every level.

    Raises:
        SerializationError: for circular or non-serializable values.
    """
    try:
        return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        raise SerializationError(f"Cannot serialize value for hashing: {exc}") from exc


def sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_options(request_options: Dict[str, Any]) -> str:
    return sha256(stable_stringify(request_options))


def hash_response(target_url: str, options_hash: str, stable: SuccessResponse) -> str:
    return sha256(f"{target_url}|{options_hash}|{stable_stringify(stable.to_wire())}")


# ---------------------------------------------------------------------------
# Split / reconstruct
# ---------------------------------------------------------------------------

def _split_tree(response: LinksTreeResponse) -> SplitResponse:
    stable = response.model_copy(update={"request_id": None, "timestamp": None}, deep=True)
    root = stable.tree
    children = list(iter_nodes(root))[1:]

    counts = Counter(node.last_updated for node in children if node.last_updated)
    most_common = counts.most_common(1)[0][0] if counts else None

    dynamics = TreeDynamics(
        root=RootDynamics(last_updated=root.last_updated, last_visited=root.last_visited),
        children_last_updated=most_common,
        visited_nodes={node.url: node.last_visited for node in children if node.last_visited},
        updated_nodes={node.url: node.last_updated for node in children if node.last_updated != most_common},
    )

    for node in iter_nodes(root):
        node.last_updated = None
        node.last_visited = None

    return SplitResponse(stable, LinksDynamics(timestamp=response.timestamp, tree_dynamics=dynamics))


def split_for_hash(path: str, response: SuccessResponse) -> SplitResponse:
    """Separate *response* into its stable and dynamic parts."""
    if isinstance(response, ReadSuccessResponse):
        stable = response.model_copy(update={"request_id": None, "metrics": None}, deep=True)
        return SplitResponse(stable, ReadDynamics(metrics=response.metrics))

    if isinstance(response, LinksTreeResponse):
        return _split_tree(response)

    if isinstance(response, LinksFlatResponse):
        stable = response.model_copy(update={"request_id": None, "timestamp": None}, deep=True)
        return SplitResponse(stable, LinksDynamics(timestamp=response.timestamp))

    raise SerializationError(f"Unsupported response type for {path}: {type(response).__name__}")


def reconstruct(
    stable: SuccessResponse,
    dynamic: Dynamics,
    path: str,
    request_id: Optional[str] = None,
) -> SuccessResponse:
    """Rebuild the original response from its stable and dynamic parts."""
    if isinstance(stable, ReadSuccessResponse):
        metrics = dynamic.metrics if isinstance(dynamic, ReadDynamics) else None
        return stable.model_copy(update={"request_id": request_id, "metrics": metrics}, deep=True)

    if not isinstance(dynamic, LinksDynamics):
        raise SerializationError(f"Dynamics for {path} must describe a links response")

    response = stable.model_copy(update={"request_id": request_id, "timestamp": dynamic.timestamp}, deep=True)
    if isinstance(response, LinksTreeResponse) and dynamic.tree_dynamics is not None:
        tree_dynamics = dynamic.tree_dynamics
        root = response.tree
        root.last_updated = tree_dynamics.root.last_updated
        root.last_visited = tree_dynamics.root.last_visited
        for node in list(iter_nodes(root))[1:]:
            node.last_updated = tree_dynamics.updated_nodes.get(node.url, tree_dynamics.children_last_updated)
            node.last_visited = tree_dynamics.visited_nodes.get(node.url)
    return response


# ---------------------------------------------------------------------------
# Stored forms
# ---------------------------------------------------------------------------

def parse_stable(path: str, content: Dict[str, Any]) -> SuccessResponse:
    if path in READ_PATHS:
        return ReadSuccessResponse.model_validate(content)
    if "tree" in content:
        return LinksTreeResponse.model_validate(content)
    return LinksFlatResponse.model_validate(content)


def parse_dynamics(path: str, content: Optional[Dict[str, Any]]) -> Dynamics:
    if path in READ_PATHS:
        return ReadDynamics.model_validate(content or {})
    return LinksDynamics.model_validate(content or {})


def reconstruct_from_log(record: ResponseRecord, entry: ActivityLogEntry) -> SuccessResponse:
    """Replay a successful request from its stored record and log entry."""
    stable = parse_stable(entry.path, record.stable_content)
    dynamic = parse_dynamics(entry.path, entry.response_metadata)
    return reconstruct(stable, dynamic, entry.path, request_id=entry.id)
