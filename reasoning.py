"""
Attach hidden reasoning ("thoughts") to the reply it explains.

A thoughts node and the final reply share a request id; the reply is the
assistant node on the "final" channel.
"""
import logging
from collections import defaultdict

from indexer import TreeIndex, get_message
from schemas import ReasoningEntry, Thought

logger = logging.getLogger(__name__)


def find_final_reply(mapping: dict, request_id: str | None) -> str | None:
    """Id of the assistant node on the final channel with this request id."""
    if not request_id:
        return None
    for node_id in mapping:
        message = get_message(mapping, node_id)
        if message is None:
            continue
        if (
            (message.get('author') or {}).get('role') == 'assistant'
            and (message.get('metadata') or {}).get('request_id') == request_id
            and message.get('channel') == 'final'
        ):
            return node_id
    return None


def attach_reasoning(mapping: dict, index: TreeIndex) -> dict[str, list[ReasoningEntry]]:
    """Group non-empty thoughts by the turn rendering their final reply."""
    by_turn: dict[str, list[ReasoningEntry]] = defaultdict(list)

    for node_id, node in mapping.items():
        try:
            message = (node or {}).get('message') or {}
            content = message.get('content') or {}
            if content.get('content_type') != 'thoughts':
                continue

            request_id = (message.get('metadata') or {}).get('request_id')
            reply_id = find_final_reply(mapping, request_id)
            if reply_id is None:
                continue

            thoughts = content.get('thoughts')
            if not isinstance(thoughts, list) or not thoughts:
                continue

            turn_id = index.turn_for(reply_id)
            if turn_id is None:
                continue
            by_turn[turn_id].append(ReasoningEntry(
                message_id=reply_id,
                thoughts=[Thought.model_validate(t) for t in thoughts],
            ))
        except Exception:
            logger.exception("Error processing reasoning data for %s", node_id)

    return dict(by_turn)
