"""Unit tests for payload extraction from model responses."""

from bookbatch.core.llm.providers.openai import endpoint_from_base_url, settings_to_payload
from bookbatch.core.llm.utils.extraction import (
    best_effort_payload,
    clean_response,
    load_json_object,
    parse_translation_payload,
    remove_think_blocks,
)


class TestCleanResponse:
    """Test response cleanup."""

    def test_removes_think_blocks(self):
        assert remove_think_blocks("<think>plan</think>answer") == "answer"

    def test_removes_orphan_think_closer(self):
        assert remove_think_blocks("half a thought</think>\nanswer") == "answer"

    def test_strips_code_fence(self):
        assert clean_response('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_none(self):
        assert clean_response(None) == ""


class TestLoadJsonObject:
    """Test JSON object decoding."""

    def test_object_inside_prose(self):
        assert load_json_object('Sure! {"translations": ["x"]} Hope this helps.') == {"translations": ["x"]}

    def test_list_is_not_an_object(self):
        assert load_json_object('["x"]') is None

    def test_garbage(self):
        assert load_json_object("no json here") is None


class TestTranslationPayload:
    """Test strict and best-effort payload parsing."""

    def test_strict(self):
        payload = parse_translation_payload('{"translations": ["a", "b"], "context_summary": "s"}')

        assert payload.translations == ["a", "b"]
        assert payload.context_summary == "s"

    def test_strict_rejects_non_string_items(self):
        assert parse_translation_payload('{"translations": ["a", 2]}') is None

    def test_best_effort_single_translation(self):
        assert best_effort_payload('{"translation": "a"}').translations == ["a"]

    def test_best_effort_mixed_items(self):
        assert best_effort_payload('{"translations": ["a", {"text": "b"}]}').translations == [
            "a", '{"text": "b"}'
        ]

    def test_best_effort_bare_list(self):
        assert best_effort_payload('["a", null, "b"]').translations == ["a", "b"]

    def test_best_effort_gives_up(self):
        assert best_effort_payload("plain prose") is None


class TestProviderHelpers:
    """Test endpoint and settings normalization."""

    def test_endpoint_from_base_url(self):
        assert endpoint_from_base_url("http://gpu:8080/") == "http://gpu:8080/v1/chat/completions"
        assert endpoint_from_base_url("http://gpu:8080/v1") == "http://gpu:8080/v1/chat/completions"
        assert endpoint_from_base_url("http://gpu/v1/chat/completions") == "http://gpu/v1/chat/completions"

    def test_settings_to_payload(self):
        payload = settings_to_payload({"temperature": 1, "max_tokens": 512, "seed": True, "color": "red"})
        assert payload == {"temperature": 1.0, "max_tokens": 512}
