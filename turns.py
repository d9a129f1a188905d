"""
Turn assembly - join per-turn data into ordered TurnRecords.
"""
from schemas import (
    CanvasSnapshot,
    ImageEntry,
    MessageEntry,
    ReasoningEntry,
    TurnRecord,
)
from snapshot import DomSnapshot


def assemble_turns(
    visible_turn_ids: list[str],
    messages: dict[str, list[MessageEntry]],
    images: dict[str, list[ImageEntry]],
    canvases: dict[str, list[CanvasSnapshot]],
    reasoning: dict[str, list[ReasoningEntry]]
) -> list[TurnRecord]:
    """
    Build one TurnRecord per visible turn id, in that order.

    Data keyed by a turn id that is not visible is ignored.
    """
    return [
        TurnRecord(
            turn_id=turn_id,
            messages=messages.get(turn_id, []),
            images=images.get(turn_id, []),
            canvases=canvases.get(turn_id, []),
            reasoning=reasoning.get(turn_id, []),
        )
        for turn_id in visible_turn_ids
    ]


def build_fallback_turns(snapshot: DomSnapshot) -> list[TurnRecord]:
    """
    Reduced-fidelity turns built from the page's visible text alone.

    Used when the backend yields no visible turns. Each turn carries a single
    message with the rendered text; there are no references, images,
    canvases or reasoning.
    """
    turns = []
    for turn_text in snapshot.turn_texts:
        turns.append(TurnRecord(
            turn_id=turn_text.turn_id,
            messages=[MessageEntry(
                message_id=turn_text.turn_id,
                role=turn_text.role or "assistant",
                text=turn_text.text,
            )],
        ))
    return turns


def has_content(turns: list[TurnRecord]) -> bool:
    """True if any turn carries backend-derived data."""
    return any(t.messages or t.images or t.canvases or t.reasoning for t in turns)
