"""Unit tests for the intent router."""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from src.devops_agent.errors import UpstreamError
from src.devops_agent.router.agent import IntentRouter
from src.devops_agent.router.models import CLARIFICATION_THRESHOLD, IntentResult

from fakes import FakeLLM


def run_async(coro):
    return asyncio.run(coro)


def _intent(intent, confidence, **entities):
    return json.dumps(
        {
            "intent": intent,
            "entities": entities,
            "confidence": confidence,
            "suggested_actions": ["check status"],
        }
    )


class TestIntentRouter:
    def test_routes_structured_output(self):
        router = IntentRouter(FakeLLM(default=_intent("rollback", 0.9, environment="prod")))

        result = run_async(router.route("roll back checkout in prod"))

        assert result.intent == "rollback"
        assert result.entities == {"environment": "prod"}
        assert result.task_kind == "rollback"
        assert not result.needs_clarification

    def test_prompt_carries_message_and_context(self):
        llm = FakeLLM(default=_intent("deploy", 0.8))
        router = IntentRouter(llm)

        run_async(router.route("ship web v2", context="release"))

        assert "ship web v2" in llm.prompts[0]
        assert "release" in llm.prompts[0]

    def test_model_override_is_passed(self):
        llm = AsyncMock()
        llm.complete.return_value = _intent("monitor", 0.7)
        router = IntentRouter(llm, model="router-model")

        run_async(router.route("how is api doing"))

        assert llm.complete.await_args.args[1] == "router-model"

    def test_unstructured_output_is_unknown(self):
        router = IntentRouter(FakeLLM(default="I think you want to deploy"))

        result = run_async(router.route("deploy please"))

        assert result == IntentResult.create_unknown()
        assert result.needs_clarification
        assert result.task_kind is None

    def test_collaborator_failure_is_unknown(self):
        llm = FakeLLM()
        llm.error = UpstreamError("llm down")
        router = IntentRouter(llm)

        result = run_async(router.route("deploy please"))

        assert result.intent == "unknown"

    def test_low_confidence_needs_clarification(self):
        router = IntentRouter(FakeLLM(default=_intent("deploy", 0.2)))

        result = run_async(router.route("maybe do something"))

        assert result.needs_clarification


class TestIntentResult:
    @pytest.mark.parametrize(
        "confidence,expected",
        [(0.0, True), (CLARIFICATION_THRESHOLD - 0.01, True), (CLARIFICATION_THRESHOLD, False), (1.0, False)],
    )
    def test_clarification_threshold(self, confidence, expected):
        result = IntentResult(intent="deploy", confidence=confidence)

        assert result.needs_clarification is expected

    @pytest.mark.parametrize(
        "intent,kind",
        [
            ("review", "code_review"),
            ("test", "test_writer"),
            ("incident_response", "incident"),
            ("greeting", None),
        ],
    )
    def test_task_kind_mapping(self, intent, kind):
        assert IntentResult(intent=intent, confidence=0.9).task_kind == kind
