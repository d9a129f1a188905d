"""
Lookup tables joining the backend node map to the rendered page.

The backend map can hold hidden and regenerated branches; only the turns the
page renders define what an export contains and in which order.
"""
from dataclasses import dataclass, field

from snapshot import DomSnapshot, MessageMarker


@dataclass
class TreeIndex:
    visible_turn_ids: list[str] = field(default_factory=list)
    visible_messages: list[MessageMarker] = field(default_factory=list)
    message_to_turn: dict[str, str] = field(default_factory=dict)

    def turn_for(self, message_id: str | None) -> str | None:
        """Turn id that renders message_id, or None if it is not on the page."""
        if message_id is None:
            return None
        return self.message_to_turn.get(message_id)


def build_index(snapshot: DomSnapshot) -> TreeIndex:
    """Index the rendered turns and messages of a snapshot in document order."""
    index = TreeIndex(
        visible_turn_ids=list(snapshot.turn_ids),
        visible_messages=list(snapshot.messages),
    )
    for marker in snapshot.messages:
        # First rendering wins if a message id appears twice
        if marker.turn_id and marker.message_id not in index.message_to_turn:
            index.message_to_turn[marker.message_id] = marker.turn_id
    return index


def get_node(mapping: dict, node_id: str | None) -> dict | None:
    """Look up a node by id; None for unknown ids or non-dict entries."""
    if not node_id:
        return None
    node = mapping.get(node_id)
    return node if isinstance(node, dict) else None


def get_message(mapping: dict, node_id: str | None) -> dict | None:
    node = get_node(mapping, node_id)
    if node is None:
        return None
    message = node.get("message")
    return message if isinstance(message, dict) else None


def first_child_id(node: dict | None) -> str | None:
    if not node:
        return None
    children = node.get("children") or []
    return children[0] if children else None
