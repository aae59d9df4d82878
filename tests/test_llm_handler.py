"""
Unit tests for the Gemini retry/fallback client and JSON array parsing.
"""

import pytest
from google.api_core import exceptions as google_exceptions

import llm_handler
from data_models import ApiError, RunLog
from llm_handler import backoff_delay, is_retryable, parse_json_array

from conftest import ScriptedGemini, sequence_responder


class TestRetryPolicy:
    """Test which statuses retry and how long they wait."""

    def test_retryable_statuses(self):
        assert is_retryable(429)
        assert is_retryable(529)
        assert is_retryable(500)
        assert is_retryable(503)
        assert not is_retryable(400)
        assert not is_retryable(404)

    def test_server_errors_back_off_longer(self):
        assert backoff_delay(500, 1) == 4.0
        assert backoff_delay(429, 1) == 2.0
        assert backoff_delay(529, 2) == 4.0
        assert backoff_delay(503, 2) == 8.0

    def test_base_scales_delay(self):
        assert backoff_delay(429, 3, base_seconds=0.5) == 4.0
        assert backoff_delay(500, 1, base_seconds=0) == 0


class TestComplete:
    """Test the model chain behaviour of GeminiClient.complete."""

    def test_succeeds_on_third_attempt(self):
        """429 then 500 then 200 succeeds without touching the fallback."""
        client = ScriptedGemini(sequence_responder([429, 500, (200, "answer")]))
        result = client.complete("prompt", 100)

        assert result == "answer"
        assert len(client.calls) == 3
        assert {call[0] for call in client.calls} == {"primary-model"}
        assert client.sleeps == [2.0, 8.0]

    def test_all_failures_exhaust_both_models(self):
        """Every attempt failing gives 3 attempts per model and an ApiError."""
        client = ScriptedGemini(sequence_responder([500] * 6))
        log = RunLog()
        result = client.complete("prompt", 100, run_log=log)

        assert isinstance(result, ApiError)
        assert result.status == 500
        models = [call[0] for call in client.calls]
        assert models == ["primary-model"] * 3 + ["fallback-model"] * 3
        # No wait after the last attempt of each model
        assert len(client.sleeps) == 4
        assert sum("attempt" in entry for entry in log.entries) == 6
        assert any("Falling back" in entry for entry in log.entries)

    def test_fallback_model_rescues_call(self):
        client = ScriptedGemini(sequence_responder([503, 503, 503, (200, "from fallback")]))
        assert client.complete("prompt", 100) == "from fallback"
        assert client.calls[-1][0] == "fallback-model"

    def test_terminal_status_skips_remaining_attempts(self):
        """A 400 ends the current model at once and moves to the next one."""
        client = ScriptedGemini(sequence_responder([400, 400]))
        result = client.complete("prompt", 100)

        assert isinstance(result, ApiError)
        assert result.status == 400
        assert [call[0] for call in client.calls] == ["primary-model", "fallback-model"]
        assert client.sleeps == []

    def test_explicit_fallback_model_is_not_repeated(self):
        client = ScriptedGemini(sequence_responder([429, 429, 429]))
        result = client.complete("prompt", 100, model="fallback-model")

        assert isinstance(result, ApiError)
        assert [call[0] for call in client.calls] == ["fallback-model"] * 3

    def test_token_budget_is_forwarded(self):
        client = ScriptedGemini(sequence_responder([200]))
        client.complete("prompt", 1234)
        assert client.calls[0][1] == 1234

    def test_success_is_logged(self):
        client = ScriptedGemini(sequence_responder([200]))
        log = RunLog()
        client.complete("prompt", 10, run_log=log)
        assert log.entries == ["Gemini success with primary-model on attempt 1"]


class _FakeModel:
    def __init__(self, outcome):
        self._outcome = outcome

    def generate_content(self, prompt, generation_config=None):
        if isinstance(self._outcome, Exception):
            raise self._outcome
        return self._outcome


class _BlockedResponse:
    @property
    def text(self):
        raise ValueError("response has no parts")


class _TextResponse:
    text = "  hello  "


class TestSend:
    """Test mapping of SDK outcomes to status codes."""

    @pytest.fixture
    def client(self):
        return llm_handler.GeminiClient("test-key", "primary-model", "fallback-model")

    def _patch_model(self, monkeypatch, outcome):
        monkeypatch.setattr(llm_handler.genai, "GenerativeModel", lambda name: _FakeModel(outcome))

    def test_text_response(self, client, monkeypatch):
        self._patch_model(monkeypatch, _TextResponse())
        assert client._send("primary-model", 10, "prompt") == (200, "hello")

    def test_rate_limit_maps_to_429(self, client, monkeypatch):
        self._patch_model(monkeypatch, google_exceptions.ResourceExhausted("quota"))
        status, _ = client._send("primary-model", 10, "prompt")
        assert status == 429

    def test_server_error_maps_to_500(self, client, monkeypatch):
        self._patch_model(monkeypatch, google_exceptions.InternalServerError("boom"))
        status, _ = client._send("primary-model", 10, "prompt")
        assert status == 500

    def test_bad_request_maps_to_400(self, client, monkeypatch):
        self._patch_model(monkeypatch, google_exceptions.InvalidArgument("bad"))
        status, _ = client._send("primary-model", 10, "prompt")
        assert status == 400

    def test_transport_error_is_retryable(self, client, monkeypatch):
        self._patch_model(monkeypatch, ConnectionError("reset"))
        status, message = client._send("primary-model", 10, "prompt")
        assert status == 503
        assert "ConnectionError" in message

    def test_blocked_response_is_empty_success(self, client, monkeypatch):
        self._patch_model(monkeypatch, _BlockedResponse())
        assert client._send("primary-model", 10, "prompt") == (200, "")


class TestParseJsonArray:
    """Test the fallback-to-empty JSON parsing policy."""

    def test_plain_array(self):
        assert parse_json_array('[{"a": 1}]') == [{"a": 1}]

    def test_code_fences_are_stripped(self):
        text = '```json\n[{"job_title": "Cardiologist"}]\n```'
        assert parse_json_array(text) == [{"job_title": "Cardiologist"}]

    def test_bare_fences_are_stripped(self):
        assert parse_json_array("```\n[]\n```") == []

    def test_object_becomes_empty_list(self):
        assert parse_json_array('{"listings": []}') == []

    def test_malformed_becomes_empty_list(self):
        assert parse_json_array("Here are the listings: [{") == []

    def test_empty_text(self):
        assert parse_json_array("") == []
        assert parse_json_array(None) == []
