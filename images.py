"""
Image resolution for rendered image markers.

Every marker becomes an ImageEntry. Download URLs are looked up as one
parallel batch; a failure on one image yields url=None for that image only.
"""
import asyncio
import logging
from collections import defaultdict
from typing import Awaitable, Callable

from indexer import get_message
from schemas import ImageEntry
from snapshot import ImageMarker

logger = logging.getLogger(__name__)

ASSET_POINTER_PREFIXES = ("sediment://", "file-service://")

# (file_id, conversation_id) -> download url or None
DownloadUrlResolver = Callable[[str, str], Awaitable[str | None]]


def asset_file_id(message: dict) -> str:
    """
    Return the file id behind the first content part's asset pointer.

    Raises:
        ValueError: If the message has no asset pointer
    """
    parts = (message.get('content') or {}).get('parts') or []
    first = parts[0] if parts else None
    pointer = first.get('asset_pointer') if isinstance(first, dict) else None
    if not isinstance(pointer, str) or not pointer:
        raise ValueError("image node has no asset pointer")

    for prefix in ASSET_POINTER_PREFIXES:
        if pointer.startswith(prefix):
            return pointer[len(prefix):]
    return pointer


async def resolve_image(
    mapping: dict,
    marker: ImageMarker,
    conversation_id: str,
    resolve_download_url: DownloadUrlResolver
) -> ImageEntry:
    """Resolve one marker; never raises."""
    entry = ImageEntry(image_id=marker.image_id, turn_id=marker.turn_id)
    try:
        message = get_message(mapping, marker.image_id)
        if message is None:
            raise ValueError(f"no image node for {marker.image_id}")
        entry.prompt = (message.get('metadata') or {}).get('image_gen_title')
        file_id = asset_file_id(message)
        entry.url = await resolve_download_url(file_id, conversation_id)
    except Exception:
        logger.exception("Error processing image data for %s", marker.image_id)
    return entry


async def resolve_images(
    mapping: dict,
    markers: list[ImageMarker],
    conversation_id: str,
    resolve_download_url: DownloadUrlResolver
) -> dict[str, list[ImageEntry]]:
    """
    Resolve all image markers concurrently and group them by turn id.

    Order within a turn follows marker order, not completion order.
    """
    entries = await asyncio.gather(*(
        resolve_image(mapping, marker, conversation_id, resolve_download_url)
        for marker in markers
    ))

    by_turn: dict[str, list[ImageEntry]] = defaultdict(list)
    for entry in entries:
        by_turn[entry.turn_id].append(entry)
    resolved = sum(1 for e in entries if e.url)
    if entries:
        logger.info("Resolved %d/%d image URLs", resolved, len(entries))
    return dict(by_turn)
