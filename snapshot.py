"""
Read-only view of what the conversation page currently renders.

The backend node map holds every branch ever generated; the page only shows
one path through it. A DomSnapshot records the rendered turn, message and
image identifiers in document order, parsed from a saved page (HTML) or from
a JSON description of the same markers.
"""
import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from bs4 import BeautifulSoup, Tag


IMAGE_ID_PREFIX = "image-"
CONVERSATION_PATH_RE = re.compile(r"/c/([0-9A-Za-z-]+)")


@dataclass(frozen=True)
class MessageMarker:
    turn_id: str | None
    message_id: str


@dataclass(frozen=True)
class ImageMarker:
    turn_id: str | None
    image_id: str


@dataclass(frozen=True)
class TurnText:
    """Visible text of one turn, used only for the reduced-fidelity fallback."""
    turn_id: str
    role: str | None
    text: str


@dataclass(frozen=True)
class DomSnapshot:
    conversation_id: str | None = None
    turn_ids: tuple[str, ...] = ()
    messages: tuple[MessageMarker, ...] = ()
    images: tuple[ImageMarker, ...] = ()
    turn_texts: tuple[TurnText, ...] = field(default=(), repr=False)

    # =========================================================================
    # CONSTRUCTORS
    # =========================================================================

    @classmethod
    def from_html(cls, html: str) -> "DomSnapshot":
        """Parse rendered markers out of a saved conversation page."""
        soup = BeautifulSoup(html or "", "html.parser")

        turn_ids = tuple(
            el["data-turn-id"] for el in soup.select("[data-turn-id]")
        )

        messages = tuple(
            MessageMarker(turn_id=_turn_id_of(el), message_id=el["data-message-id"])
            for el in soup.select("[data-message-id]")
        )

        images = tuple(
            ImageMarker(turn_id=_turn_id_of(el), image_id=el["id"][len(IMAGE_ID_PREFIX):])
            for el in soup.select(f"article div[id^='{IMAGE_ID_PREFIX}']")
        )

        turn_texts = tuple(
            TurnText(
                turn_id=el.get("data-turn-id") or f"turn-{i}",
                role=el.get("data-turn"),
                text=el.get_text("\n", strip=True),
            )
            for i, el in enumerate(soup.find_all("article"))
        )

        return cls(
            conversation_id=_conversation_id_from_soup(soup),
            turn_ids=turn_ids,
            messages=messages,
            images=images,
            turn_texts=turn_texts,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DomSnapshot":
        """
        Build a snapshot from a JSON description:

            {"conversation_id": "...",
             "turns": [{"turn_id": "...", "role": "user",
                        "message_ids": [...], "image_ids": [...], "text": "..."}]}
        """
        turns = data.get("turns") or []
        turn_ids = []
        messages = []
        images = []
        texts = []
        for turn in turns:
            turn_id = turn.get("turn_id")
            if not turn_id:
                continue
            turn_ids.append(turn_id)
            messages.extend(MessageMarker(turn_id, mid) for mid in turn.get("message_ids") or [])
            images.extend(ImageMarker(turn_id, iid) for iid in turn.get("image_ids") or [])
            if turn.get("text"):
                texts.append(TurnText(turn_id, turn.get("role"), turn["text"]))

        return cls(
            conversation_id=data.get("conversation_id"),
            turn_ids=tuple(turn_ids),
            messages=tuple(messages),
            images=tuple(images),
            turn_texts=tuple(texts),
        )


def load_snapshot(path: Path | str) -> DomSnapshot:
    """Load a snapshot from a saved .html page or a .json marker file."""
    path = Path(path)
    with open(path, 'r', encoding='utf-8') as f:
        raw = f.read()

    if path.suffix.lower() == ".json":
        return DomSnapshot.from_dict(json.loads(raw))
    return DomSnapshot.from_html(raw)


def _turn_id_of(el: Tag) -> str | None:
    article = el if el.name == "article" else el.find_parent("article")
    if article is None:
        return None
    return article.get("data-turn-id")


def _conversation_id_from_soup(soup: BeautifulSoup) -> str | None:
    for selector in ("link[rel='canonical']", "meta[property='og:url']"):
        el = soup.select_one(selector)
        if el is None:
            continue
        match = CONVERSATION_PATH_RE.search(el.get("href") or el.get("content") or "")
        if match:
            return match.group(1)
    return None
