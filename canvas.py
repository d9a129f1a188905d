"""
Canvas (textdoc) reconciliation.

A canvas is created by a call addressed to canmore.create_textdoc and revised
by calls to canmore.update_textdoc. Each call is answered by a tool node whose
metadata describes the resulting version. Storage order in the node map says
nothing about chronology, so versions are rebuilt in two passes:

1. collect every (operation node, tool node) pair from the full map,
2. replay them sorted by the tool node's create_time, carrying title and type
   forward per textdoc_id, and attach each version to the turn whose
   user-visible reply follows it.
"""
import json
import logging
from collections import defaultdict
from dataclasses import dataclass

from pydantic import ValidationError

from indexer import TreeIndex, first_child_id, get_node
from schemas import CanvasSnapshot

logger = logging.getLogger(__name__)

CANVAS_RECIPIENTS = ("canmore.create_textdoc", "canmore.update_textdoc")


@dataclass
class CanvasOperation:
    node: dict
    tool_node: dict

    @property
    def create_time(self) -> float:
        create_time = self.tool_node['message'].get('create_time')
        return float(create_time) if isinstance(create_time, (int, float)) else 0.0

    @property
    def canvas_meta(self) -> dict:
        return self.tool_node['message']['metadata']['canvas']


# =============================================================================
# PASS 1: COLLECT
# =============================================================================

def _is_canvas_tool_node(tool_node: dict | None) -> bool:
    message = (tool_node or {}).get('message') or {}
    if (message.get('author') or {}).get('role') != 'tool':
        return False
    canvas = (message.get('metadata') or {}).get('canvas')
    return isinstance(canvas, dict) and not canvas.get('is_failure')


def collect_canvas_operations(mapping: dict) -> list[CanvasOperation]:
    """Find every successful create/update textdoc call in the node map."""
    operations = []
    for node_id, node in mapping.items():
        try:
            message = (node or {}).get('message') or {}
            if message.get('recipient') not in CANVAS_RECIPIENTS:
                continue
            tool_node = get_node(mapping, first_child_id(node))
            if _is_canvas_tool_node(tool_node):
                operations.append(CanvasOperation(node=node, tool_node=tool_node))
        except Exception:
            logger.exception("Error collecting canvas operation at %s", node_id)
    return operations


# =============================================================================
# PASS 2: RESOLVE
# =============================================================================

def parse_operation_body(node: dict) -> dict:
    """
    Parse the JSON body of a textdoc call.

    Raises:
        ValueError: If the body is missing or not a JSON object
    """
    content = node['message'].get('content') or {}
    parts = content.get('parts') or []
    raw = (parts[0] if parts else None) or content.get('text')
    if not raw:
        raise ValueError(f"no canvas content found for message {node.get('id')}")
    body = json.loads(raw)
    if not isinstance(body, dict):
        raise ValueError(f"canvas body for message {node.get('id')} is not an object")
    return body


def find_reply_owner(mapping: dict, tool_node: dict) -> str | None:
    """
    Walk first-child links from the tool node to the user-visible reply.

    Stops at the first assistant node addressed to "all"; if the chain ends
    first, its last node is the owner.
    """
    owner_id = tool_node.get('id')
    current = tool_node
    seen = {owner_id}
    while True:
        child_id = first_child_id(current)
        if not child_id or child_id in seen:
            break
        seen.add(child_id)
        owner_id = child_id
        current = get_node(mapping, child_id)
        if current is None:
            break
        message = current.get('message') or {}
        if (message.get('author') or {}).get('role') == 'assistant' and message.get('recipient') == 'all':
            break
    return owner_id


def body_content(body: dict) -> str:
    """Full content for creates, first replacement for updates, else empty."""
    if body.get('content'):
        return body['content']
    updates = body.get('updates')
    if isinstance(updates, list) and updates and isinstance(updates[0], dict):
        return updates[0].get('replacement') or ""
    return ""


def reconcile_canvases(mapping: dict, index: TreeIndex) -> dict[str, list[CanvasSnapshot]]:
    """
    Rebuild canvas versions in chronological order and group them by turn id.

    Title and type carry over from the latest known version of the same
    textdoc_id when an operation omits them. Versions whose reply is not
    rendered map to no turn and are dropped.
    """
    operations = collect_canvas_operations(mapping)
    operations.sort(key=lambda op: op.create_time)

    titles: dict[str, str] = {}
    types: dict[str, str] = {}
    by_turn: dict[str, list[CanvasSnapshot]] = defaultdict(list)

    for op in operations:
        try:
            meta = op.canvas_meta
            textdoc_id = meta['textdoc_id']
            body = parse_operation_body(op.node)

            doc_type = meta.get('textdoc_type') or types.get(textdoc_id)
            known_title = meta.get('title') or titles.get(textdoc_id)
            owner_id = find_reply_owner(mapping, op.tool_node)
            snapshot = CanvasSnapshot(
                textdoc_id=textdoc_id,
                version=meta.get('version'),
                title=known_title or body.get('name') or doc_type,
                type=doc_type,
                content=body_content(body),
                message_id=owner_id,
            )
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            logger.warning("Skipping canvas operation %s: %s", op.node.get('id'), e)
            continue

        # Only versions that built cleanly feed the carry-over
        if doc_type:
            types[textdoc_id] = doc_type
        if known_title:
            titles[textdoc_id] = known_title

        turn_id = index.turn_for(owner_id)
        if turn_id is None:
            logger.debug("Canvas %s v%s replies to unrendered node %s", textdoc_id, snapshot.version, owner_id)
            continue
        by_turn[turn_id].append(snapshot)

    return dict(by_turn)


def latest_canvas_versions(canvases_by_turn: dict[str, list[CanvasSnapshot]]) -> dict[str, CanvasSnapshot]:
    """Highest version of each textdoc across all turns."""
    latest: dict[str, CanvasSnapshot] = {}
    for snapshots in canvases_by_turn.values():
        for snap in snapshots:
            current = latest.get(snap.textdoc_id)
            if current is None or (snap.version or 0) >= (current.version or 0):
                latest[snap.textdoc_id] = snap
    return latest
