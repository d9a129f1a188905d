"""
Side data carried alongside an export.

None of this is rendered into the transcripts, but it travels with the
ExportResult: the user's custom instructions, the instructions tools were
given (tool output text and image generation prompts), and file attachments.
All three scan the full node map; bad nodes are logged and skipped.
"""
import json
import logging
import re

from schemas import FileAttachment, ToolInstruction, UserProfile

logger = logging.getLogger(__name__)

SKIPPED_TOOL_AUTHORS = ("canmore.update_textdoc",)
SKIPPED_UI_CARDS = ("Processing image",)


def parse_json_response(text: str) -> dict | None:
    """
    Attempt to parse a JSON object out of model-written text.
    Handles bodies wrapped in markdown code blocks or surrounded by prose.
    """
    # Try direct parse first
    try:
        parsed = json.loads(text)
        return parsed if isinstance(parsed, dict) else None
    except json.JSONDecodeError:
        pass

    # Try to extract JSON from markdown code block
    code_block_match = re.search(r'```(?:json)?\s*([\s\S]*?)```', text)
    if code_block_match:
        try:
            parsed = json.loads(code_block_match.group(1).strip())
            return parsed if isinstance(parsed, dict) else None
        except json.JSONDecodeError:
            pass

    # Try to find JSON object in text
    brace_match = re.search(r'\{[\s\S]*\}', text)
    if brace_match:
        try:
            parsed = json.loads(brace_match.group(0))
            return parsed if isinstance(parsed, dict) else None
        except json.JSONDecodeError:
            pass

    return None


def extract_user_profile(mapping: dict) -> UserProfile | None:
    """Custom instructions from the first user_editable_context node, if any."""
    for node_id, node in mapping.items():
        try:
            content = ((node or {}).get('message') or {}).get('content')
            if not isinstance(content, dict):
                continue
            if content.get('content_type') == 'user_editable_context':
                return UserProfile(
                    user_profile=content.get('user_profile'),
                    user_instructions=content.get('user_instructions'),
                )
        except Exception:
            logger.exception("Error processing user profile data for %s", node_id)
    return None


def extract_tool_instructions(mapping: dict) -> list[ToolInstruction]:
    """
    Collect tool output text and image generation prompts.

    Failed canvas calls, canvas update acknowledgements and image progress
    cards are not instructions and are skipped.
    """
    instructions = []
    for node_id, node in mapping.items():
        try:
            message = (node or {}).get('message')
            if not message:
                continue
            content = message.get('content') or {}
            author = message.get('author') or {}
            metadata = message.get('metadata') or {}
            content_type = content.get('content_type')

            if author.get('role') == 'tool' and content_type == 'text' and content.get('parts'):
                if (
                    (metadata.get('canvas') or {}).get('is_failure')
                    or author.get('name') in SKIPPED_TOOL_AUTHORS
                    or metadata.get('ui_card_title') in SKIPPED_UI_CARDS
                ):
                    continue
                instructions.append(ToolInstruction(node_id=node_id, instruction=content['parts']))

            elif (
                author.get('role') == 'assistant'
                and content_type == 'code'
                and content.get('language') == 'json'
                and content.get('text')
            ):
                body = parse_json_response(content['text']) or {}
                if body.get('prompt'):
                    instructions.append(ToolInstruction(node_id=node_id, instruction=body['prompt']))
        except Exception:
            logger.exception("Error processing tool data for %s", node_id)
    return instructions


def extract_file_attachments(mapping: dict) -> list[FileAttachment]:
    """Every attachment listed in message metadata, tagged with its node id."""
    attachments = []
    for node_id, node in mapping.items():
        try:
            metadata = (((node or {}).get('message') or {}).get('metadata')) or {}
            for attachment in metadata.get('attachments') or []:
                attachments.append(FileAttachment(
                    node_id=node_id,
                    id=attachment.get('id'),
                    name=attachment.get('name'),
                    mime_type=attachment.get('mime_type'),
                    file_token_size=attachment.get('file_token_size'),
                    size=attachment.get('size'),
                ))
        except Exception:
            logger.exception("Error processing attachment data for %s", node_id)
    return attachments
