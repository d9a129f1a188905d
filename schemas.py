"""
Pydantic schemas for the conversation exporter.

The raw backend node map stays as plain dicts (an id-indexed table) so a single
malformed node never fails validation of the whole record. Everything the
pipeline produces is a typed model.
"""
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# BACKEND RECORD
# =============================================================================

class ConversationRecord(BaseModel):
    """A conversation as returned by the backend conversation endpoint."""
    model_config = ConfigDict(extra="allow")

    conversation_id: Optional[str] = None
    title: Optional[str] = None
    create_time: Optional[float] = None
    update_time: Optional[float] = None
    current_node: Optional[str] = None
    mapping: dict[str, Any] = Field(
        default_factory=dict,
        description="Node id -> raw node ({id, message, parent, children})"
    )


# =============================================================================
# PER-TURN ENTRIES
# =============================================================================

class Reference(BaseModel):
    """A numbered footnote standing in for an inline link, scoped to one message."""
    id: int = Field(ge=1)
    url: str


class MessageEntry(BaseModel):
    """A visible message after citation and link rewriting."""
    message_id: str
    role: Optional[str] = None
    text: str = ""
    references: list[Reference] = Field(default_factory=list)


class ImageEntry(BaseModel):
    """A rendered image; url is None when the download URL could not be resolved."""
    image_id: str
    turn_id: Optional[str] = None
    url: Optional[str] = None
    prompt: Optional[str] = None


class CanvasSnapshot(BaseModel):
    """One version of a canvas textdoc, attached to the turn that replied to it."""
    textdoc_id: str
    version: Optional[int] = None
    title: Optional[str] = None
    type: Optional[str] = None
    content: str = ""
    message_id: Optional[str] = Field(default=None, description="Owner node of this version")


class Thought(BaseModel):
    model_config = ConfigDict(extra="allow")

    summary: Optional[str] = None
    content: Optional[str] = None


class ReasoningEntry(BaseModel):
    """Hidden thoughts explaining a final-channel assistant reply."""
    message_id: str
    thoughts: list[Thought] = Field(default_factory=list)


class TurnRecord(BaseModel):
    """Everything collected for one rendered turn."""
    turn_id: str
    messages: list[MessageEntry] = Field(default_factory=list)
    images: list[ImageEntry] = Field(default_factory=list)
    canvases: list[CanvasSnapshot] = Field(default_factory=list)
    reasoning: list[ReasoningEntry] = Field(default_factory=list)


# =============================================================================
# SIDE DATA
# =============================================================================

class UserProfile(BaseModel):
    """Custom instructions stored in the user_editable_context node."""
    user_profile: Optional[str] = None
    user_instructions: Optional[str] = None


class ToolInstruction(BaseModel):
    node_id: str
    instruction: Any


class FileAttachment(BaseModel):
    node_id: str
    id: Optional[str] = None
    name: Optional[str] = None
    mime_type: Optional[str] = None
    file_token_size: Optional[int] = None
    size: Optional[int] = None


# =============================================================================
# EXPORT RESULT
# =============================================================================

class ExportMetadata(BaseModel):
    """Header fields of an export; timestamps are localized display strings."""
    title: Optional[str] = None
    create_time: str = ""
    update_time: str = ""
    link: str = ""


class TranscriptTurn(BaseModel):
    role: str
    content: str


class CopyTurn(BaseModel):
    id: str
    content: str


class ExportResult(BaseModel):
    """Complete result of one export run."""
    markdown: str
    full_transcript: list[TranscriptTurn] = Field(default_factory=list)
    copy_transcript: list[CopyTurn] = Field(default_factory=list)
    flat_transcript: dict[str, Any] = Field(default_factory=dict)
    canvases_by_turn: dict[str, list[CanvasSnapshot]] = Field(default_factory=dict)
    metadata: ExportMetadata
    user_profile: Optional[UserProfile] = None
    tool_instructions: list[ToolInstruction] = Field(default_factory=list)
    attachments: list[FileAttachment] = Field(default_factory=list)
    fallback: bool = Field(default=False, description="True when built from page text only")
