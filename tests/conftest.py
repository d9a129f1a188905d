"""
Shared pytest fixtures for exporter tests.
"""
import json
import tempfile
from pathlib import Path
from typing import Generator

import pytest

from schemas import ConversationRecord
from snapshot import DomSnapshot


CITATION = "\ue200cite\ue202turn0search0\ue201"


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_config() -> dict:
    """Sample configuration for testing."""
    return {
        "base_url": "https://chatgpt.example",
        "access_token": "test-token-12345",
        "request_timeout": 30.0,
        "cache_ttl_seconds": 5,
        "output_dir": "data/exports",
        "log_level": "INFO"
    }


def make_node(node_id, role=None, parts=None, children=None, **message_fields) -> dict:
    """Build a raw mapping node; role=None makes a message-less node."""
    node = {"id": node_id, "children": children or []}
    if role is None:
        node["message"] = None
        return node
    content = message_fields.pop("content", None) or {"content_type": "text", "parts": parts or []}
    message = {
        "id": node_id,
        "author": {"role": role, "name": message_fields.pop("author_name", None)},
        "content": content,
        "metadata": message_fields.pop("metadata", {}),
        "recipient": message_fields.pop("recipient", "all"),
    }
    message.update(message_fields)
    node["message"] = message
    return node


@pytest.fixture
def sample_mapping() -> dict:
    """
    Node map with a hidden branch, reasoning, a canvas, an image and side data.

    Rendered turns: turn-1 (u1), turn-2 (a1), turn-3 (u2), turn-4 (a2 + img1).
    """
    nodes = [
        make_node("root", children=["sys"]),
        make_node(
            "sys", "system", children=["u1"],
            content={
                "content_type": "user_editable_context",
                "user_profile": "I am a developer",
                "user_instructions": "Be brief",
            },
        ),
        make_node(
            "u1", "user", ["Hello"], children=["think1"],
            metadata={"attachments": [
                {"id": "file-1", "name": "notes.txt", "mime_type": "text/plain", "size": 12}
            ]},
        ),
        make_node(
            "think1", "assistant", children=["a1"],
            content={
                "content_type": "thoughts",
                "thoughts": [{"summary": "Planning", "content": "Consider the greeting"}],
            },
            metadata={"request_id": "req-1"},
        ),
        make_node(
            "a1", "assistant",
            [f"Hi there {CITATION} see [docs](https://docs.example.com) and [again](https://docs.example.com)"],
            children=["u2", "u2-hidden"],
            channel="final",
            metadata={
                "request_id": "req-1",
                "content_references": [
                    {"matched_text": CITATION, "alt": "([example](https://example.com))"}
                ],
            },
        ),
        make_node("u2-hidden", "user", ["An edited question nobody sees"]),
        make_node("u2", "user", ["Write a script"], children=["c1"]),
        make_node(
            "c1", "assistant",
            [json.dumps({"name": "hello_py", "type": "code/python", "content": "print('hi')"})],
            children=["t1"],
            recipient="canmore.create_textdoc",
        ),
        make_node(
            "t1", "tool", ["Successfully created text document"], children=["a2"],
            author_name="canmore.create_textdoc",
            create_time=300.0,
            metadata={"canvas": {
                "textdoc_id": "doc1", "version": 1,
                "title": "Hello Script", "textdoc_type": "code/python",
            }},
        ),
        make_node("a2", "assistant", ["Created the script."], children=["img1"]),
        make_node(
            "img1", "tool",
            content={
                "content_type": "multimodal_text",
                "parts": [{"content_type": "image_asset_pointer", "asset_pointer": "sediment://file_abc"}],
            },
            metadata={"image_gen_title": "A cat"},
        ),
    ]
    return {node["id"]: node for node in nodes}


@pytest.fixture
def sample_record(sample_mapping) -> ConversationRecord:
    return ConversationRecord(
        conversation_id="conv-123",
        title="Test Conversation",
        create_time=1703275200.0,
        update_time=1703278800.0,
        current_node="img1",
        mapping=sample_mapping,
    )


@pytest.fixture
def sample_snapshot_data() -> dict:
    return {
        "conversation_id": "conv-123",
        "turns": [
            {"turn_id": "turn-1", "role": "user", "message_ids": ["u1"], "text": "Hello"},
            {"turn_id": "turn-2", "role": "assistant", "message_ids": ["a1"], "text": "Hi there"},
            {"turn_id": "turn-3", "role": "user", "message_ids": ["u2"], "text": "Write a script"},
            {"turn_id": "turn-4", "role": "assistant", "message_ids": ["a2"],
             "image_ids": ["img1"], "text": "Created the script."},
        ],
    }


@pytest.fixture
def sample_snapshot(sample_snapshot_data) -> DomSnapshot:
    return DomSnapshot.from_dict(sample_snapshot_data)


@pytest.fixture
def sample_html() -> str:
    """Saved page markup with the same markers as sample_snapshot."""
    return """
<html><head><link rel="canonical" href="https://chatgpt.com/c/conv-123"></head>
<body><main>
  <article data-turn-id="turn-1" data-turn="user">
    <div data-message-id="u1"><p>Hello</p></div>
  </article>
  <article data-turn-id="turn-2" data-turn="assistant">
    <div data-message-id="a1"><p>Hi there</p></div>
  </article>
  <article data-turn-id="turn-3" data-turn="user">
    <div data-message-id="u2"><p>Write a script</p></div>
  </article>
  <article data-turn-id="turn-4" data-turn="assistant">
    <div data-message-id="a2"><p>Created the script.</p></div>
    <div id="image-img1"><img src="x.png"></div>
  </article>
</main></body></html>
"""


class FakeAuth:
    def __init__(self, token="test-token"):
        self.token = token
        self.cleared = False

    async def get_token(self):
        return self.token

    def clear(self):
        self.cleared = True
        self.token = None


class FakeBackend:
    """Stands in for BackendClient; records fetches instead of touching the network."""

    def __init__(self, record, token="test-token", fetch_error=None):
        self.base_url = "https://chatgpt.example"
        self.auth = FakeAuth(token)
        self.record = record
        self.fetch_error = fetch_error
        self.fetch_count = 0
        self.resolved = []

    async def fetch_conversation(self, conversation_id, token):
        self.fetch_count += 1
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.record

    async def resolve_download_url(self, file_id, conversation_id):
        self.resolved.append((file_id, conversation_id))
        return f"https://files.example/{file_id}"


@pytest.fixture
def fake_backend(sample_record) -> FakeBackend:
    return FakeBackend(sample_record)
