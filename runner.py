#!/usr/bin/env python3
"""
Export runner - orchestrates one conversation export.

Fetches the conversation (or loads a saved one), joins it with the page
snapshot, and renders Markdown plus structured transcripts.

Usage:
    python runner.py --id <uuid> --snapshot page.html
    python runner.py --input conversation.json --snapshot page.html
    python runner.py --id <uuid> --snapshot page.html --force-refresh
"""
import argparse
import asyncio
import json
import logging
import re
import sys
import time
from pathlib import Path
from typing import Awaitable, Callable

from api_client import AuthError, BackendClient, ExportError, StaleResultError
from canvas import latest_canvas_versions, reconcile_canvases
from config import load_config, validate_config
from extractor import extract_file_attachments, extract_tool_instructions, extract_user_profile
from images import resolve_images
from indexer import build_index
from parser import extract_messages
from reasoning import attach_reasoning
from renderer import (
    build_metadata,
    render_copy_transcript,
    render_flat_transcript,
    render_full_transcript,
    render_markdown,
)
from schemas import ConversationRecord, ExportResult
from snapshot import DomSnapshot, load_snapshot
from turns import assemble_turns, build_fallback_turns, has_content

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL = 5.0


# =============================================================================
# RESULT CACHE
# =============================================================================

class ResultCache:
    """Short-lived export results keyed by conversation id."""

    def __init__(self, ttl_seconds: float = DEFAULT_CACHE_TTL,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, ExportResult]] = {}

    def get(self, conversation_id: str) -> ExportResult | None:
        entry = self._entries.get(conversation_id)
        if entry is None:
            return None
        stored_at, result = entry
        if self._clock() - stored_at > self.ttl_seconds:
            del self._entries[conversation_id]
            return None
        return result

    def put(self, conversation_id: str, result: ExportResult) -> None:
        self._entries[conversation_id] = (self._clock(), result)

    def invalidate(self, conversation_id: str) -> None:
        self._entries.pop(conversation_id, None)

    def clear(self) -> None:
        self._entries.clear()


# =============================================================================
# PIPELINE
# =============================================================================

async def _no_download_url(file_id: str, conversation_id: str) -> str | None:
    return None


async def build_export(
    record: ConversationRecord,
    snapshot: DomSnapshot,
    conversation_id: str,
    resolve_download_url: Callable[[str, str], Awaitable[str | None]] = _no_download_url,
    base_url: str = "https://chatgpt.com"
) -> ExportResult:
    """
    Turn a fetched record and a page snapshot into an ExportResult.

    Graph extraction is synchronous; image URL lookups run as one batch
    alongside it and are joined before turns are assembled.
    """
    mapping = record.mapping
    index = build_index(snapshot)

    images_task = asyncio.ensure_future(
        resolve_images(mapping, list(snapshot.images), conversation_id, resolve_download_url)
    )
    try:
        messages = extract_messages(mapping, index)
        canvases = reconcile_canvases(mapping, index)
        reasoning = attach_reasoning(mapping, index)
    except Exception:
        images_task.cancel()
        raise
    images = await images_task

    turns = assemble_turns(index.visible_turn_ids, messages, images, canvases, reasoning)
    fallback = False
    if not has_content(turns) and snapshot.turn_texts:
        logger.warning("No backend data for visible turns of %s; using page text", conversation_id)
        turns = build_fallback_turns(snapshot)
        fallback = True

    metadata = build_metadata(record, conversation_id, base_url)
    return ExportResult(
        markdown=render_markdown(turns, metadata),
        full_transcript=render_full_transcript(turns),
        copy_transcript=render_copy_transcript(turns),
        flat_transcript=render_flat_transcript(turns, metadata),
        canvases_by_turn={t.turn_id: t.canvases for t in turns if t.canvases},
        metadata=metadata,
        user_profile=extract_user_profile(mapping),
        tool_instructions=extract_tool_instructions(mapping),
        attachments=extract_file_attachments(mapping),
        fallback=fallback,
    )


class Exporter:
    """
    Entry point for exporting the active conversation.

    Owns the process-scoped state: the backend client (and its memoized
    token) and the result cache.

    Args:
        backend: BackendClient (or anything with the same auth/fetch/resolve calls)
        snapshot_provider: Returns the page snapshot as rendered right now
        cache: Result cache; a fresh one with the default TTL if omitted
    """

    def __init__(self, backend, snapshot_provider: Callable[[], DomSnapshot],
                 cache: ResultCache | None = None):
        self.backend = backend
        self.snapshot_provider = snapshot_provider
        self.cache = cache if cache is not None else ResultCache()

    def current_conversation_id(self) -> str | None:
        return self.snapshot_provider().conversation_id

    async def export(self, conversation_id: str | None = None, use_cache: bool = True,
                     force_refresh: bool = False) -> ExportResult | None:
        """
        Export a conversation; None if the export fails or goes stale.

        Args:
            conversation_id: Conversation to export (defaults to the active one)
            use_cache: Allow a recent cached result to be returned
            force_refresh: Skip the cache read and fetch again
        """
        try:
            return await self._export(conversation_id, use_cache, force_refresh)
        except ExportError as e:
            logger.error("Export failed for %s: %s", conversation_id or "active conversation", e)
        except Exception:
            logger.exception("Unexpected error exporting %s", conversation_id or "active conversation")
        return None

    async def _export(self, conversation_id: str | None, use_cache: bool,
                      force_refresh: bool) -> ExportResult | None:
        conv_id = conversation_id or self.current_conversation_id()
        if not conv_id:
            logger.error("No conversation found to export")
            return None

        if use_cache and not force_refresh:
            cached = self.cache.get(conv_id)
            if cached is not None:
                logger.info("Using cached export for %s", conv_id)
                return cached

        active_at_start = self.current_conversation_id()
        token = await self.backend.auth.get_token()
        if not token:
            raise AuthError("Access token not available.")
        try:
            record = await self.backend.fetch_conversation(conv_id, token)
        except AuthError:
            self.backend.auth.clear()
            raise

        result = await build_export(
            record, self.snapshot_provider(), conv_id,
            resolve_download_url=self.backend.resolve_download_url,
            base_url=self.backend.base_url,
        )

        active_now = self.current_conversation_id()
        if active_now != active_at_start:
            raise StaleResultError(
                f"Active conversation changed from {active_at_start} to {active_now}"
            )

        if use_cache:
            self.cache.put(conv_id, result)
        return result


# =============================================================================
# OUTPUT
# =============================================================================

def slugify(text: str) -> str:
    """Convert text to URL-safe slug for filenames."""
    if not text:
        return "untitled"
    text = text.lower().strip()
    text = re.sub(r'[^\w\s-]', '', text)
    text = re.sub(r'[\s_-]+', '-', text)
    text = text.strip('-')
    return text[:50] if text else "untitled"


def save_export(result: ExportResult, output_dir: Path) -> dict[str, Path]:
    """Write the Markdown document and the three JSON transcripts."""
    output_dir.mkdir(parents=True, exist_ok=True)
    stem = slugify(result.metadata.title)
    metadata = result.metadata.model_dump()

    paths = {
        "markdown": output_dir / f"{stem}.md",
        "full": output_dir / f"{stem}.full.json",
        "copy": output_dir / f"{stem}.copy.json",
        "flat": output_dir / f"{stem}.flat.json",
    }
    with open(paths["markdown"], 'w', encoding='utf-8') as f:
        f.write(result.markdown)

    documents = {
        "full": {**metadata, "turns": [t.model_dump() for t in result.full_transcript]},
        "copy": {**metadata, "turns": [t.model_dump() for t in result.copy_transcript]},
        "flat": result.flat_transcript,
    }
    for key, document in documents.items():
        with open(paths[key], 'w', encoding='utf-8') as f:
            json.dump(document, f, indent=2, ensure_ascii=False)

    return paths


def print_summary(result: ExportResult, paths: dict[str, Path]) -> None:
    print()
    print("=" * 50)
    print("EXPORT COMPLETE")
    print("=" * 50)
    print(f"Title:         {result.metadata.title}")
    print(f"Turns:         {len(result.copy_transcript)}")
    latest = latest_canvas_versions(result.canvases_by_turn)
    print(f"Canvases:      {len(latest)}")
    for textdoc_id, canvas in latest.items():
        print(f"  - {canvas.title} (v{canvas.version})")
    print(f"Attachments:   {len(result.attachments)}")
    if result.fallback:
        print("Note: built from page text only (no references, images or canvases)")
    print()
    for key, path in paths.items():
        print(f"{key:<14} {path}")


# =============================================================================
# CLI
# =============================================================================

async def run_export(args: argparse.Namespace, config: dict) -> ExportResult | None:
    snapshot_path = Path(args.snapshot)

    def snapshot_provider() -> DomSnapshot:
        return load_snapshot(snapshot_path)

    async with BackendClient.from_config(config) as backend:
        if args.input:
            with open(args.input, 'r', encoding='utf-8') as f:
                record = ConversationRecord.model_validate(json.load(f))
            snapshot = snapshot_provider()
            conv_id = args.id or record.conversation_id or snapshot.conversation_id or "local"
            token = await backend.auth.get_token()
            resolver = backend.resolve_download_url if token else _no_download_url
            return await build_export(record, snapshot, conv_id, resolver, backend.base_url)

        exporter = Exporter(
            backend,
            snapshot_provider,
            cache=ResultCache(config.get("cache_ttl_seconds", DEFAULT_CACHE_TTL)),
        )
        return await exporter.export(
            args.id,
            use_cache=not args.no_cache,
            force_refresh=args.force_refresh,
        )


def main():
    parser = argparse.ArgumentParser(
        description="Export a ChatGPT conversation to Markdown and JSON transcripts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python runner.py --id abc123 --snapshot page.html      Fetch and export
  python runner.py --input conv.json --snapshot page.html Export a saved conversation
        """
    )
    parser.add_argument('--id', type=str, metavar='UUID',
                        help='Conversation id (defaults to the one in the snapshot)')
    parser.add_argument('--input', type=str, metavar='FILE',
                        help='Saved conversation JSON instead of fetching')
    parser.add_argument('--snapshot', type=str, metavar='FILE', required=True,
                        help='Saved page (.html) or marker file (.json)')
    parser.add_argument('--out', type=str, metavar='DIR',
                        help='Output directory (default: config output_dir)')
    parser.add_argument('--force-refresh', action='store_true',
                        help='Bypass the result cache')
    parser.add_argument('--no-cache', action='store_true',
                        help='Neither read nor store cached results')
    args = parser.parse_args()

    config = load_config()
    is_valid, error = validate_config(config)
    if not is_valid:
        print(f"Configuration error: {error}")
        sys.exit(1)

    logging.basicConfig(
        level=str(config.get("log_level", "INFO")).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    result = asyncio.run(run_export(args, config))
    if result is None:
        print("Export failed. Check the log for details.")
        sys.exit(1)

    output_dir = Path(args.out or config.get("output_dir", "data/exports"))
    paths = save_export(result, output_dir)
    print_summary(result, paths)


if __name__ == "__main__":
    main()
