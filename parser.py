"""
Message extraction - turns rendered message nodes into clean text

For every message the page renders, the backend node is loaded and its
content flattened to text, then:
1. citation spans are replaced with their readable alt text,
2. leftover private-use citation markers are stripped,
3. inline markdown links become numbered reference links.

A malformed node only loses its own message; siblings keep going.
"""
import logging
import re
from collections import defaultdict
from typing import Callable

from indexer import TreeIndex, get_message
from schemas import MessageEntry, Reference

logger = logging.getLogger(__name__)

# Citation spans are wrapped in U+E200 ... U+E201
CITATION_MARKER_RE = re.compile(r"\ue200.*?\ue201")
MARKDOWN_LINK_RE = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")


class MalformedMessageError(ValueError):
    """Raised when a rendered message node cannot be turned into text."""
    pass


# =============================================================================
# CONTENT VARIANTS
# =============================================================================

def extract_text_from_parts(parts: list) -> str:
    """Join string parts (and dict parts carrying text) with newlines."""
    text_pieces = []
    for part in parts:
        if isinstance(part, str):
            text_pieces.append(part)
        elif isinstance(part, dict) and isinstance(part.get('text'), str):
            text_pieces.append(part['text'])
        # Image asset pointers and other media carry no text
    return '\n'.join(text_pieces)


def _text_content(content: dict) -> str | None:
    parts = content.get('parts')
    if not isinstance(parts, list):
        raise MalformedMessageError("missing content parts")
    return extract_text_from_parts(parts)


def _code_content(content: dict) -> str | None:
    return content.get('text') or None


def _thoughts_content(content: dict) -> str | None:
    """Thoughts travel with the reply they explain, never as a message body."""
    return None


def _user_context_content(content: dict) -> str | None:
    pieces = [content.get('user_profile'), content.get('user_instructions')]
    return '\n\n'.join(p for p in pieces if p) or None


def _no_text(content: dict) -> str | None:
    return None


CONTENT_HANDLERS: dict[str, Callable[[dict], str | None]] = {
    'text': _text_content,
    'multimodal_text': _text_content,
    'code': _code_content,
    'thoughts': _thoughts_content,
    'user_editable_context': _user_context_content,
}


def content_to_text(content: dict) -> str | None:
    """Flatten a message content variant to text; unknown variants yield None."""
    handler = CONTENT_HANDLERS.get(content.get('content_type'), _no_text)
    return handler(content)


# =============================================================================
# TEXT REWRITING
# =============================================================================

def substitute_citations(text: str, content_references: list | None) -> str:
    """Replace each reference's matched_text (first occurrence) with its alt text."""
    if not isinstance(content_references, list):
        return text
    for ref in content_references:
        if not isinstance(ref, dict):
            continue
        matched = ref.get('matched_text')
        alt = ref.get('alt')
        if isinstance(matched, str) and matched and isinstance(alt, str) and alt:
            text = text.replace(matched, alt, 1)
    return text


def strip_citation_markers(text: str) -> str:
    """Remove unprocessed citation spans and trim."""
    return CITATION_MARKER_RE.sub('', text).strip()


def rewrite_reference_links(text: str) -> tuple[str, list[Reference]]:
    """
    Rewrite [label](url) as [label][n].

    Ids are 1-based and assigned per distinct url in first-seen order; a url
    that recurs reuses its id and is recorded only once.

    Returns:
        (rewritten_text, references)
    """
    url_ids: dict[str, int] = {}
    references: list[Reference] = []

    def _replace(match: re.Match) -> str:
        label, url = match.group(1), match.group(2)
        ref_id = url_ids.get(url)
        if ref_id is None:
            ref_id = len(url_ids) + 1
            url_ids[url] = ref_id
            references.append(Reference(id=ref_id, url=url))
        return f"[{label}][{ref_id}]"

    return MARKDOWN_LINK_RE.sub(_replace, text), references


# =============================================================================
# MESSAGE EXTRACTION
# =============================================================================

def extract_message(mapping: dict, message_id: str) -> MessageEntry | None:
    """
    Extract one rendered message.

    Returns None when the content variant has no text representation.

    Raises:
        MalformedMessageError: If the node or its content is missing or unusable
    """
    message = get_message(mapping, message_id)
    if message is None:
        raise MalformedMessageError(f"no message node for {message_id}")

    content = message.get('content')
    if not isinstance(content, dict):
        raise MalformedMessageError(f"no content on {message_id}")

    text = content_to_text(content)
    if text is None:
        return None

    metadata = message.get('metadata') or {}
    text = substitute_citations(text, metadata.get('content_references'))
    text = strip_citation_markers(text)
    text, references = rewrite_reference_links(text)

    return MessageEntry(
        message_id=message_id,
        role=(message.get('author') or {}).get('role'),
        text=text,
        references=references,
    )


def extract_messages(mapping: dict, index: TreeIndex) -> dict[str, list[MessageEntry]]:
    """
    Extract every rendered message, grouped by turn id in document order.

    Per-message failures are logged and the message omitted.
    """
    by_turn: dict[str, list[MessageEntry]] = defaultdict(list)
    for marker in index.visible_messages:
        try:
            entry = extract_message(mapping, marker.message_id)
        except Exception:
            logger.exception("Error processing message data for %s", marker.message_id)
            continue
        if entry is None:
            logger.debug("Message %s has no text content, skipping", marker.message_id)
            continue
        by_turn[marker.turn_id].append(entry)
    return dict(by_turn)
