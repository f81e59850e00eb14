"""Tests for ModelInvocationService: caching, retry classification and parsing."""

from __future__ import annotations

import pytest
from pydantic import BaseModel, ConfigDict, Field

from docmine.errors import ModelInvocationError, SchemaValidationError, TransientModelError
from docmine.llm.models import HistoryTurn, ModelRequest, ModelResponse
from docmine.llm.service import ModelInvocationService, parse_json_payload
from tests.fakes import FakeModelClient, SleepRecorder


class Answer(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    answer: str
    confidence: float = Field(default=1.0, alias="confidenceScore")


def _request(user: str = "What is 2+2?") -> ModelRequest:
    return ModelRequest(model="test-model", system_prompt="You answer in JSON.", user_prompt=user)


class TestParseJsonPayload:
    def test_plain_json(self):
        assert parse_json_payload('{"answer": "4"}', Answer).answer == "4"

    def test_fenced_json(self):
        content = '```json\n{"answer": "4", "confidenceScore": 0.5}\n```'
        parsed = parse_json_payload(content, Answer)
        assert parsed.confidence == 0.5

    def test_malformed_json_is_transient(self):
        with pytest.raises(TransientModelError):
            parse_json_payload("{answer: 4", Answer)

    def test_schema_mismatch_is_permanent(self):
        with pytest.raises(SchemaValidationError) as info:
            parse_json_payload('{"wrong": 1}', Answer)
        assert info.value.transient is False
        assert any("answer" in error for error in info.value.errors)


class TestRequestJson:
    def test_success_counts_tokens(self):
        client = FakeModelClient([{"answer": "4"}], tokens=7)
        service = ModelInvocationService(client, attempts=1)
        result = service.request_json(_request(), Answer)
        assert result.data.answer == "4"
        assert result.cached is False
        assert service.calls == 1
        assert service.tokens_used == 7

    def test_passes_schema_hint_to_client(self):
        client = FakeModelClient([{"answer": "4"}])
        ModelInvocationService(client, attempts=1).request_json(_request(), Answer)
        assert "answer" in client.schemas[0]["properties"]

    def test_transient_errors_are_retried_with_backoff(self):
        sleeps = SleepRecorder()
        client = FakeModelClient(["", "{broken", {"answer": "4"}])
        service = ModelInvocationService(client, attempts=3, retry_base=2.0, sleep=sleeps)
        result = service.request_json(_request(), Answer)
        assert result.data.answer == "4"
        assert client.calls == 3
        assert sleeps.delays == [2.0, 4.0]

    def test_gives_up_after_attempts(self):
        client = FakeModelClient(["", "", ""])
        service = ModelInvocationService(client, attempts=3, sleep=SleepRecorder())
        with pytest.raises(TransientModelError, match="Empty response"):
            service.request_json(_request(), Answer)
        assert client.calls == 3

    def test_schema_errors_are_not_retried(self):
        client = FakeModelClient([{"wrong": 1}, {"answer": "4"}])
        service = ModelInvocationService(client, attempts=3, sleep=SleepRecorder())
        with pytest.raises(SchemaValidationError):
            service.request_json(_request(), Answer)
        assert client.calls == 1

    def test_permanent_provider_errors_are_not_retried(self):
        client = FakeModelClient([ModelInvocationError("invalid api key")])
        service = ModelInvocationService(client, attempts=3, sleep=SleepRecorder())
        with pytest.raises(ModelInvocationError, match="invalid api key"):
            service.request_json(_request(), Answer)
        assert client.calls == 1

    def test_rate_limits_are_retried(self):
        client = FakeModelClient([TransientModelError("429"), {"answer": "4"}])
        service = ModelInvocationService(client, attempts=2, sleep=SleepRecorder())
        assert service.request_json(_request(), Answer).data.answer == "4"

    def test_attempts_from_environment(self, monkeypatch):
        monkeypatch.setenv("DOCMINE_MODEL_ATTEMPTS", "5")
        assert ModelInvocationService(FakeModelClient()).attempts == 5

    def test_invalid_attempts_env_falls_back_to_default(self, monkeypatch):
        monkeypatch.setenv("DOCMINE_MODEL_ATTEMPTS", "many")
        assert ModelInvocationService(FakeModelClient()).attempts == 3


class TestCaching:
    def test_second_identical_request_is_served_from_cache(self, cache):
        client = FakeModelClient([{"answer": "4"}], tokens=9)
        service = ModelInvocationService(client, cache=cache, attempts=1)

        first = service.request_json(_request(), Answer, cache_purpose="classification", message_id="m1")
        second = service.request_json(_request(), Answer, cache_purpose="classification")

        assert client.calls == 1
        assert first.cached is False
        assert second.cached is True
        assert second.data == first.data
        assert second.response.tokens_used == 9
        assert service.cache_hits == 1
        assert cache.get(_request().prompt_text, "classification").message_id == "m1"

    def test_no_purpose_means_no_caching(self, cache):
        client = FakeModelClient([{"answer": "4"}, {"answer": "5"}])
        service = ModelInvocationService(client, cache=cache, attempts=1)
        service.request_json(_request(), Answer)
        assert service.request_json(_request(), Answer).data.answer == "5"
        assert cache.stats().total_cached == 0

    def test_different_prompts_do_not_share_entries(self, cache):
        client = FakeModelClient([{"answer": "4"}, {"answer": "6"}])
        service = ModelInvocationService(client, cache=cache, attempts=1)
        service.request_json(_request("2+2"), Answer, cache_purpose="general")
        assert service.request_json(_request("3+3"), Answer, cache_purpose="general").data.answer == "6"

    def test_unusable_cache_entry_falls_through_to_model(self, cache):
        cache.set(_request().prompt_text, '{"wrong": true}', "general")
        client = FakeModelClient([{"answer": "4"}])
        service = ModelInvocationService(client, cache=cache, attempts=1)
        result = service.request_json(_request(), Answer, cache_purpose="general")
        assert result.cached is False
        assert client.calls == 1
        assert cache.get(_request().prompt_text, "general").response == '{"answer":"4"}'

    def test_failed_calls_are_not_cached(self, cache):
        client = FakeModelClient([{"wrong": 1}])
        service = ModelInvocationService(client, cache=cache, attempts=1)
        with pytest.raises(SchemaValidationError):
            service.request_json(_request(), Answer, cache_purpose="general")
        assert cache.stats().total_cached == 0


def test_prompt_text_joins_system_and_user():
    assert _request("hi").prompt_text == "You answer in JSON.\n\nhi"


def test_history_changes_the_cache_key(cache):
    client = FakeModelClient([{"answer": "4"}, {"answer": "5"}])
    service = ModelInvocationService(client, cache=cache, attempts=1)
    earlier = _request().model_copy(update={"history": [HistoryTurn(role="user", content="Count in base 10.")]})
    later = _request().model_copy(update={"history": [HistoryTurn(role="user", content="Count in base 3.")]})

    assert earlier.prompt_text != later.prompt_text
    assert "Count in base 3." in later.prompt_text
    service.request_json(earlier, Answer, cache_purpose="general")
    assert service.request_json(later, Answer, cache_purpose="general").data.answer == "5"
    assert (client.calls, service.cache_hits) == (2, 0)


def test_model_response_accepts_camel_case():
    response = ModelResponse.model_validate({"content": "x", "modelUsed": "m", "tokensUsed": 3})
    assert (response.model_used, response.tokens_used) == ("m", 3)
