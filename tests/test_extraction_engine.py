"""Tests for the Gemini vision agent with a scripted client."""

from __future__ import annotations

import json

import pytest

from flightlog.extraction_engine import VisionAgent, detect_mime_type, parse_entries
from flightlog.errors import ParseError

from tests.conftest import gemini_response


def make_agent(client) -> VisionAgent:
    # retry_attempts=1 keeps tenacity from sleeping between attempts
    return VisionAgent(client=client, model="test-model", retry_attempts=1, timeout=5)


class TestParseEntries:
    def test_tags_source_page(self):
        entries = parse_entries('[{"date": "1995-07-25", "from": "PSP", "to": "CMH"}]', page_number=4)
        assert len(entries) == 1
        assert entries[0].from_ == "PSP"
        assert entries[0].source_page == 4

    def test_model_supplied_source_page_is_overridden(self):
        entries = parse_entries('[{"from": "PSP", "to": "CMH", "source_page": 99}]', page_number=2)
        assert entries[0].source_page == 2

    def test_alternate_keys(self):
        text = json.dumps([{"departure": "PSP", "arrival": "TEB", "tail_number": "N908JE"}])
        entry = parse_entries(text, 1)[0]
        assert (entry.from_, entry.to, entry.aircraft_registration) == ("PSP", "TEB", "N908JE")

    def test_non_string_values_coerced(self):
        text = json.dumps([{"from": "PSP", "to": "TEB", "flight_number": 123, "passengers": ["JE", "GM"]}])
        entry = parse_entries(text, 1)[0]
        assert entry.flight_number == "123"
        assert entry.passengers == "JE; GM"

    def test_non_object_items_skipped(self):
        entries = parse_entries('[{"from": "PSP", "to": "TEB"}, "junk", 7]', 1)
        assert len(entries) == 1

    def test_unparsable_raises(self):
        with pytest.raises(ParseError):
            parse_entries("sorry, unreadable", 1)


class TestDetectMimeType:
    def test_extension_fallback(self, tmp_path):
        path = tmp_path / "scan.jpg"
        path.write_bytes(b"not really an image")
        assert detect_mime_type(path) == "image/jpeg"

    def test_unknown_extension_defaults_to_png(self, tmp_path):
        path = tmp_path / "scan.qqqz"
        path.write_bytes(b"???")
        assert detect_mime_type(path) == "image/png"


class TestVisionAgentExtract:
    @pytest.mark.asyncio
    async def test_success(self, fake_client, page_image):
        payload = [
            {"date": "1995-07-25", "from": "PSP", "to": "CMH", "aircraft_registration": "N908JE", "passengers": "JE"},
            {"date": "1995-07-30", "from": "CMH", "to": "TEB"},
        ]
        fake_client.generate_content_async.return_value = gemini_response(json.dumps(payload))

        result = await make_agent(fake_client).extract(page_image, 1)

        assert result.error is None
        assert result.page_number == 1
        assert [e.to for e in result.entries] == ["CMH", "TEB"]
        assert all(e.source_page == 1 for e in result.entries)
        assert result.raw_response == json.dumps(payload)

    @pytest.mark.asyncio
    async def test_sends_prompt_and_image(self, fake_client, page_image):
        await make_agent(fake_client).extract(page_image, 1)

        content = fake_client.generate_content_async.call_args.args[0]
        assert isinstance(content[0], str)
        assert content[1]["data"] == page_image.read_bytes()
        assert content[1]["mime_type"].startswith("image/")

    @pytest.mark.asyncio
    async def test_fenced_response(self, fake_client, page_image):
        fake_client.generate_content_async.return_value = gemini_response(
            'Here are the rows:\n```json\n[{"from": "PSP", "to": "TEB"}]\n```'
        )
        result = await make_agent(fake_client).extract(page_image, 3)
        assert result.error is None
        assert len(result.entries) == 1

    @pytest.mark.asyncio
    async def test_unparsable_response_is_not_an_error(self, fake_client, page_image):
        fake_client.generate_content_async.return_value = gemini_response("I cannot read this page.")

        result = await make_agent(fake_client).extract(page_image, 2)

        assert result.error is None
        assert result.entries == []
        assert result.raw_response == "I cannot read this page."

    @pytest.mark.asyncio
    async def test_service_failure_becomes_error_result(self, fake_client, page_image):
        fake_client.generate_content_async.side_effect = RuntimeError("503 unavailable")

        result = await make_agent(fake_client).extract(page_image, 5)

        assert result.entries == []
        assert result.page_number == 5
        assert "503 unavailable" in result.error

    @pytest.mark.asyncio
    async def test_missing_image_becomes_error_result(self, fake_client, tmp_path):
        result = await make_agent(fake_client).extract(tmp_path / "missing.png", 9)

        assert result.error is not None
        assert "Failed to read image file" in result.error
        fake_client.generate_content_async.assert_not_called()
