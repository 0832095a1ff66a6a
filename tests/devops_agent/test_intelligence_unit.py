"""Unit tests for model-output parsing, prompts and the LLM client."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.devops_agent.errors import UpstreamError
from src.devops_agent.intelligence.client import LLMClient, analyze
from src.devops_agent.intelligence.parsing import (
    RawText,
    StructuredAnalysis,
    normalize_intent,
    normalize_review,
    normalize_security,
    normalize_test_generation,
    normalize_triage,
    parse_analysis,
    strip_code_fences,
)
from src.devops_agent.intelligence.prompts import (
    MAX_CONTENT_CHARS,
    build_review_prompt,
    detect_language,
)

from fakes import FakeLLM


def run_async(coro):
    return asyncio.run(coro)


class TestParseAnalysis:
    @pytest.mark.parametrize(
        "text",
        [
            '{"score": 90}',
            '```json\n{"score": 90}\n```',
            '```\n{"score": 90}\n```',
            '  {"score": 90}  \n',
        ],
    )
    def test_json_object_is_structured(self, text):
        result = parse_analysis(text)

        assert isinstance(result, StructuredAnalysis)
        assert result.data == {"score": 90}

    def test_prose_is_raw(self):
        result = parse_analysis("Looks good to me")

        assert isinstance(result, RawText)
        assert result.text == "Looks good to me"
        assert result.error.startswith("Invalid JSON")

    def test_json_array_is_raw(self):
        result = parse_analysis("[1, 2, 3]")

        assert result.kind == "raw"
        assert "list" in result.error

    def test_strip_code_fences_leaves_plain_text(self):
        assert strip_code_fences("plain") == "plain"


class TestNormalizers:
    def test_intent_defaults(self):
        assert normalize_intent({}) == {
            "intent": "unknown",
            "entities": {},
            "confidence": 0.0,
            "suggested_actions": [],
        }

    def test_intent_is_lowercased_and_clamped(self):
        result = normalize_intent(
            {"intent": " Deploy ", "confidence": 7, "entities": ["bad"]}
        )

        assert result["intent"] == "deploy"
        assert result["confidence"] == 1.0
        assert result["entities"] == {}

    def test_review_unknown_status_and_score(self):
        result = normalize_review(
            {
                "status": "LGTM",
                "score": "250",
                "issues": [
                    {"severity": "high", "line": "12", "message": "bug"},
                    "not an issue",
                ],
                "recommendations": ["add tests", "", None],
            }
        )

        assert result["status"] == "needs_changes"
        assert result["score"] == 100
        assert len(result["issues"]) == 1
        assert result["issues"][0]["line"] is None
        assert result["issues"][0]["type"] == "logic"
        assert result["recommendations"] == ["add tests"]

    def test_review_non_numeric_score(self):
        assert normalize_review({"status": "approved", "score": "great"})["score"] == 0

    def test_test_generation_drops_unnamed_files(self):
        result = normalize_test_generation(
            {
                "tests_generated": -4,
                "test_files": [{"filename": "test_a.py", "content": "x"}, {"content": "y"}],
            }
        )

        assert result["tests_generated"] == 0
        assert result["test_files"] == [{"filename": "test_a.py", "content": "x"}]
        assert result["test_framework"] == "unknown"

    def test_security_counts_vulnerabilities(self):
        result = normalize_security(
            {"risk_level": "HIGH", "vulnerabilities": [{"type": "sqli"}, "junk"]}
        )

        assert result["risk_level"] == "high"
        assert result["total_vulnerabilities"] == 1

    def test_security_unknown_risk_defaults_to_medium(self):
        assert normalize_security({"risk_level": "spicy"})["risk_level"] == "medium"

    def test_triage_defaults(self):
        assert normalize_triage({})["root_cause"] == "undetermined"


class TestPrompts:
    @pytest.mark.parametrize(
        "path,language",
        [
            ("src/app.py", "Python"),
            ("web/index.tsx", "TypeScript"),
            ("cmd/main.go", "Go"),
            ("README.md", "unknown"),
        ],
    )
    def test_detect_language(self, path, language):
        assert detect_language(path) == language

    def test_long_diff_is_truncated(self):
        prompt = build_review_prompt("+" * (MAX_CONTENT_CHARS + 10), "acme/api")

        assert "(truncated)" in prompt
        assert "acme/api" in prompt


class TestLLMClient:
    def _client_with_chat(self, chat):
        client = LLMClient(llm_url="http://llm.local/v1", model_name="test-model")
        client._llm_for = MagicMock(return_value=chat)
        return client

    def test_complete_returns_text(self):
        chat = MagicMock()
        chat.ainvoke = AsyncMock(return_value=MagicMock(content='{"ok": true}'))
        client = self._client_with_chat(chat)

        text = run_async(client.complete("hello"))

        assert text == '{"ok": true}'
        client._llm_for.assert_called_once_with("test-model")
        messages = chat.ainvoke.call_args.args[0]
        assert messages[-1].content == "hello"

    def test_model_override(self):
        chat = MagicMock()
        chat.ainvoke = AsyncMock(return_value=MagicMock(content="x"))
        client = self._client_with_chat(chat)

        run_async(client.complete("hello", model="other-model"))

        client._llm_for.assert_called_once_with("other-model")

    def test_invocation_error_becomes_upstream_error(self):
        chat = MagicMock()
        chat.ainvoke = AsyncMock(side_effect=RuntimeError("connection reset"))
        client = self._client_with_chat(chat)

        with pytest.raises(UpstreamError, match="connection reset"):
            run_async(client.complete("hello"))

    def test_non_text_content_rejected(self):
        chat = MagicMock()
        chat.ainvoke = AsyncMock(return_value=MagicMock(content=[{"type": "image"}]))
        client = self._client_with_chat(chat)

        with pytest.raises(UpstreamError):
            run_async(client.complete("hello"))

    def test_chat_clients_are_cached_per_model(self):
        client = LLMClient(llm_url="http://llm.local/v1", model_name="test-model", api_key="k")

        assert client._llm_for("a") is client._llm_for("a")
        assert client._llm_for("a") is not client._llm_for("b")


class TestAnalyze:
    def test_structured(self):
        result = run_async(analyze(FakeLLM(default='{"a": 1}'), "prompt"))

        assert result == StructuredAnalysis(data={"a": 1})

    def test_collaborator_failure_propagates(self):
        llm = FakeLLM()
        llm.error = UpstreamError("down")

        with pytest.raises(UpstreamError):
            run_async(analyze(llm, "prompt"))
