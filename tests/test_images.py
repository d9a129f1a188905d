"""
Tests for images.py - Image URL resolution.
"""
import pytest

from conftest import make_node
from images import asset_file_id, resolve_images
from snapshot import ImageMarker


def test_asset_file_id_strips_prefix(sample_mapping):
    """Test the storage scheme prefix is removed."""
    assert asset_file_id(sample_mapping["img1"]["message"]) == "file_abc"

    message = {"content": {"parts": [{"asset_pointer": "file-service://file-XYZ"}]}}
    assert asset_file_id(message) == "file-XYZ"


def test_asset_file_id_missing_pointer():
    """Test a message without an asset pointer raises."""
    with pytest.raises(ValueError):
        asset_file_id({"content": {"parts": ["just text"]}})


@pytest.mark.asyncio
async def test_resolve_images_groups_by_turn(sample_mapping):
    """Test resolved entries carry url and prompt under their turn."""
    calls = []

    async def resolver(file_id, conversation_id):
        calls.append((file_id, conversation_id))
        return f"https://files.example/{file_id}"

    by_turn = await resolve_images(
        sample_mapping, [ImageMarker("turn-4", "img1")], "conv-123", resolver
    )

    assert calls == [("file_abc", "conv-123")]
    [image] = by_turn["turn-4"]
    assert image.url == "https://files.example/file_abc"
    assert image.prompt == "A cat"


@pytest.mark.asyncio
async def test_resolve_images_failure_is_isolated(sample_mapping):
    """Test one failing image does not affect the others."""
    sample_mapping["img2"] = make_node(
        "img2", "tool",
        content={"content_type": "multimodal_text",
                 "parts": [{"asset_pointer": "sediment://file_bad"}]},
    )
    sample_mapping["img3"] = make_node("img3", "tool", ["no pointer here"])

    async def resolver(file_id, conversation_id):
        if file_id == "file_bad":
            raise RuntimeError("download lookup failed")
        return f"https://files.example/{file_id}"

    markers = [
        ImageMarker("turn-4", "img1"),
        ImageMarker("turn-4", "img2"),
        ImageMarker("turn-4", "img3"),
        ImageMarker("turn-4", "missing"),
    ]
    by_turn = await resolve_images(sample_mapping, markers, "conv-123", resolver)

    images = by_turn["turn-4"]
    assert [i.image_id for i in images] == ["img1", "img2", "img3", "missing"]
    assert images[0].url == "https://files.example/file_abc"
    assert [i.url for i in images[1:]] == [None, None, None]


@pytest.mark.asyncio
async def test_resolve_images_no_markers(sample_mapping):
    """Test an empty marker list resolves to nothing."""
    async def resolver(file_id, conversation_id):
        raise AssertionError("should not be called")

    assert await resolve_images(sample_mapping, [], "conv-123", resolver) == {}
