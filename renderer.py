"""
Render assembled turns into the export formats.

- Markdown: header, then one "You Said" / "ChatGPT Said" section per turn with
  collapsible reasoning, reference footnotes, images and canvas code blocks.
- Full transcript: the same content per turn with reasoning in <think> tags.
- Copy transcript: message text only.
- Flat transcript: metadata plus the raw turn records.
"""
from datetime import datetime

from schemas import (
    CanvasSnapshot,
    ConversationRecord,
    CopyTurn,
    ExportMetadata,
    ImageEntry,
    MessageEntry,
    ReasoningEntry,
    TranscriptTurn,
    TurnRecord,
)

CODE_FENCE = "```"
CONVERSATION_LINK = "{base_url}/c/{conversation_id}"


# =============================================================================
# METADATA
# =============================================================================

def format_timestamp(ts: float | None) -> str:
    """Epoch seconds as a localized display string; empty when unknown."""
    if not ts:
        return ""
    try:
        return datetime.fromtimestamp(ts).strftime("%x, %X")
    except (ValueError, OSError, OverflowError):
        return ""


def build_metadata(record: ConversationRecord, conversation_id: str,
                   base_url: str = "https://chatgpt.com") -> ExportMetadata:
    return ExportMetadata(
        title=record.title or "Untitled",
        create_time=format_timestamp(record.create_time),
        update_time=format_timestamp(record.update_time),
        link=CONVERSATION_LINK.format(base_url=base_url.rstrip("/"), conversation_id=conversation_id),
    )


# =============================================================================
# TURN PIECES
# =============================================================================

def infer_turn_role(turn: TurnRecord) -> str:
    """Reasoning, canvases or images make a turn the assistant's."""
    if turn.reasoning or turn.canvases or turn.images:
        return "assistant"
    if turn.messages:
        return turn.messages[0].role or "assistant"
    return "user"


def render_thoughts(reasoning: list[ReasoningEntry]) -> str:
    blocks = []
    for entry in reasoning:
        for thought in entry.thoughts:
            pieces = []
            if thought.summary:
                pieces.append(f"*{thought.summary}*")
            if thought.content:
                pieces.append(thought.content)
            blocks.append("\n\n".join(pieces))
    return "\n\n".join(blocks)


def render_messages(messages: list[MessageEntry], append_refs: bool = True) -> str:
    """Message bodies, each followed by its reference footnotes."""
    rendered = []
    for message in messages:
        body = message.text
        if append_refs and message.references:
            body += "\n\n" + "\n".join(f"[{r.id}]: {r.url}" for r in message.references)
        rendered.append(body)
    return "\n\n".join(rendered)


def render_images(images: list[ImageEntry]) -> str:
    return "\n\n".join(f"![{img.prompt or ''}]({img.url or ''})" for img in images)


def canvas_language(canvas_type: str) -> str:
    """Fence language from a canvas type: the subtype after the slash, react as typescript."""
    parts = canvas_type.split("/")
    language = parts[1] if len(parts) > 1 else parts[0]
    if "react" in language:
        language = "typescript"
    return language


def render_canvases(canvases: list[CanvasSnapshot]) -> str:
    """Titled, fenced code block per canvas version; canvases without a type are skipped."""
    rendered = ""
    for canvas in canvases:
        if not canvas.type:
            continue
        rendered += f"\n\n**{canvas.title}** (v{canvas.version})\n\n"
        rendered += f"{CODE_FENCE}{canvas_language(canvas.type)}\n{canvas.content}\n{CODE_FENCE}\n\n"
    return rendered


def _render_turn_body(turn: TurnRecord, reasoning_open: str, reasoning_close: str) -> str:
    body = ""
    if turn.reasoning:
        body += f"{reasoning_open}{render_thoughts(turn.reasoning)}{reasoning_close}"
    if turn.messages:
        body += render_messages(turn.messages) + "\n\n"
    if turn.images:
        body += render_images(turn.images) + "\n\n"
    if turn.canvases:
        body += render_canvases(turn.canvases) + "\n\n"
    return body.strip()


# =============================================================================
# DOCUMENTS
# =============================================================================

def balance_code_fences(markdown: str) -> str:
    """Close a dangling code fence so the fence count is even."""
    if markdown.count(CODE_FENCE) % 2:
        markdown += f"\n{CODE_FENCE}"
    return markdown


def render_header(metadata: ExportMetadata) -> str:
    return "\n\n".join([
        f"# **{metadata.title}**",
        f"**Link:** {metadata.link}",
        f"**Created:** {metadata.create_time}",
        f"**Updated:** {metadata.update_time}",
        "",
    ])


def render_markdown(turns: list[TurnRecord], metadata: ExportMetadata) -> str:
    """
    Header plus one "You Said" / "ChatGPT Said" section per turn.

    Fences are balanced after every turn rather than once at the end, so an
    unclosed block in one turn cannot swallow the headings of later turns.
    The finished document has an even fence count either way.
    """
    markdown = render_header(metadata)
    for turn in turns:
        speaker = "You" if infer_turn_role(turn) == "user" else "ChatGPT"
        body = _render_turn_body(
            turn,
            "<details>\n<summary>View Reasoning</summary>\n\n",
            "\n\n</details>\n\n",
        )
        markdown += f"\n\n## **{speaker} Said**\n\n{body}\n"
        markdown = balance_code_fences(markdown)
    return markdown


def render_full_transcript(turns: list[TurnRecord]) -> list[TranscriptTurn]:
    return [
        TranscriptTurn(
            role=infer_turn_role(turn),
            content=_render_turn_body(turn, "<think>\n", "\n</think>\n\n"),
        )
        for turn in turns
    ]


def render_copy_transcript(turns: list[TurnRecord]) -> list[CopyTurn]:
    return [
        CopyTurn(id=turn.turn_id, content=render_messages(turn.messages).strip())
        for turn in turns
    ]


def render_flat_transcript(turns: list[TurnRecord], metadata: ExportMetadata) -> dict:
    return {
        **metadata.model_dump(),
        "messages": [turn.model_dump(mode="json") for turn in turns],
    }
