"""
Unit tests for JSON object extraction from model output.
"""

import pytest

from morpheus.lib.json_extract import Decoded, ParseFailed, extract_json_object


class TestExtractJsonObject:
    """Test best-effort JSON extraction."""

    def test_bare_object(self):
        result = extract_json_object('{"agentName": "Web Agent", "confidence": 0.7}')
        assert isinstance(result, Decoded)
        assert result.value["agentName"] == "Web Agent"

    def test_fenced_object_with_prose(self):
        text = 'Sure! Here is the routing:\n```json\n{"agentName": "Terminal Agent"}\n```\nHope that helps.'
        result = extract_json_object(text)
        assert isinstance(result, Decoded)
        assert result.value == {"agentName": "Terminal Agent"}

    def test_braces_inside_strings_are_ignored(self):
        result = extract_json_object('prefix {"message": "use {curly} braces }", "n": 1} suffix')
        assert isinstance(result, Decoded)
        assert result.value["message"] == "use {curly} braces }"

    def test_nested_objects(self):
        result = extract_json_object('{"plan": {"steps": [{"id": "s1"}]}}')
        assert isinstance(result, Decoded)
        assert result.value["plan"]["steps"][0]["id"] == "s1"

    def test_skips_invalid_block_and_finds_next(self):
        result = extract_json_object('{not json} then {"ok": true}')
        assert isinstance(result, Decoded)
        assert result.value == {"ok": True}

    @pytest.mark.parametrize("text", [None, "", "no braces here", "{unterminated", "{'single': 'quotes'}"])
    def test_failures(self, text):
        result = extract_json_object(text)
        assert isinstance(result, ParseFailed)
        assert result.reason

    def test_only_objects_are_decoded(self):
        assert isinstance(extract_json_object("[1, 2, 3]"), ParseFailed)
