"""Tests for the LLM gateway client and the assistant services."""

import json

import httpx
import pytest

from edusync.errors import (
    ConfigurationError,
    PaymentRequiredError,
    RateLimitedError,
    UpstreamError,
    ValidationError,
)
from edusync.integrations.llm import LLMGateway
from edusync.models.integrations import CompletionMessage
from edusync.services.assistant import (
    DEFAULT_ESSAY_PROMPT,
    ESSAY_PROMPTS,
    FALLBACK_ANSWER,
    RECOMMEND_TOOL,
    CourseRecommender,
    EssayChecker,
    StudyAssistant,
)
from edusync.store.catalog import CatalogStore
from edusync.store.database import Database


def _text_reply(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def _tool_reply(arguments: dict):
    return {"choices": [{"message": {
        "role": "assistant",
        "content": None,
        "tool_calls": [{
            "type": "function",
            "function": {"name": "recommend_courses", "arguments": json.dumps(arguments)},
        }],
    }}]}


def _make_gateway(responder, api_key="test-key"):
    """Gateway whose HTTP calls are answered by responder(request) -> (status, body)."""
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        status, body = responder(request)
        return httpx.Response(status, json=body)

    gateway = LLMGateway(
        "https://gateway.test/v1", api_key, transport=httpx.MockTransport(handler)
    )
    return gateway, requests


class TestLLMGateway:
    def test_text_completion(self):
        gateway, requests = _make_gateway(lambda r: (200, _text_reply("Hi there")))

        result = gateway.complete(
            [CompletionMessage(role="user", content="Hello")], temperature=0.5
        )

        assert result.content == "Hi there"
        request = requests[0]
        assert str(request.url) == "https://gateway.test/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer test-key"
        body = json.loads(request.content)
        assert body["model"] == "google/gemini-2.5-flash"
        assert body["temperature"] == 0.5
        assert "max_tokens" not in body

    def test_rate_limited(self):
        gateway, _ = _make_gateway(lambda r: (429, {"error": "slow down"}))
        with pytest.raises(RateLimitedError) as exc:
            gateway.complete([CompletionMessage(role="user", content="x")])
        assert exc.value.status_code == 429
        assert exc.value.message == "Rate limit exceeded. Please try again later."

    def test_payment_required(self):
        gateway, _ = _make_gateway(lambda r: (402, {}))
        with pytest.raises(PaymentRequiredError) as exc:
            gateway.complete([CompletionMessage(role="user", content="x")])
        assert exc.value.status_code == 402

    def test_other_errors_are_upstream_errors(self):
        gateway, requests = _make_gateway(lambda r: (503, {}))
        with pytest.raises(UpstreamError) as exc:
            gateway.complete([CompletionMessage(role="user", content="x")])
        assert exc.value.upstream_status == 503
        assert len(requests) == 1

    def test_missing_key(self):
        gateway, requests = _make_gateway(lambda r: (200, _text_reply("x")), api_key=None)
        with pytest.raises(ConfigurationError):
            gateway.complete([CompletionMessage(role="user", content="x")])
        assert requests == []

    def test_forced_tool_call(self):
        gateway, requests = _make_gateway(lambda r: (200, _tool_reply({"course_ids": ["a"]})))
        result = gateway.complete(
            [CompletionMessage(role="user", content="x")],
            tools=[RECOMMEND_TOOL],
            tool_choice=RECOMMEND_TOOL.name,
        )

        assert result.tool_arguments == {"course_ids": ["a"]}
        body = json.loads(requests[0].content)
        assert body["tool_choice"] == {"type": "function", "function": {"name": "recommend_courses"}}
        assert body["tools"][0]["function"]["name"] == "recommend_courses"


class TestStudyAssistant:
    def setup_method(self):
        self.db = Database()
        self.catalog = CatalogStore(self.db)
        self.catalog.add_course("Statistics 101", "Intro to stats", course_id="c1")
        self.catalog.add_section("c1", "Mean", "Averages", "x" * 600, order_index=0)
        self.catalog.add_section("c1", "Variance", None, None, order_index=1)

    def teardown_method(self):
        self.db.close()

    def test_context_numbers_sections_and_truncates(self):
        gateway, _ = _make_gateway(lambda r: (200, _text_reply("")))
        context = StudyAssistant(gateway, self.catalog).build_context("c1", "Extra notes")

        assert context.startswith("Course: Statistics 101\nDescription: Intro to stats\n")
        assert "\n1. Mean\n" in context
        assert "\n2. Variance\n" in context
        assert "Content: " + "x" * 500 + "...\n" in context
        assert "x" * 501 not in context
        assert context.endswith("\nAdditional Content: Extra notes")

    def test_answer_sends_history_and_question(self):
        gateway, requests = _make_gateway(lambda r: (200, _text_reply("The mean is the average.")))
        assistant = StudyAssistant(gateway, self.catalog)

        answer = assistant.answer(
            "What is a mean?", "c1",
            history=[{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}],
        )

        assert answer == "The mean is the average."
        body = json.loads(requests[0].content)
        roles = [m["role"] for m in body["messages"]]
        assert roles == ["system", "user", "assistant", "user"]
        assert '"Statistics 101"' in body["messages"][0]["content"]
        assert body["temperature"] == 0.7
        assert body["max_tokens"] == 1000

    def test_malformed_history_is_rejected(self):
        gateway, requests = _make_gateway(lambda r: (200, _text_reply("x")))
        with pytest.raises(ValidationError):
            StudyAssistant(gateway, self.catalog).answer("?", "c1", history=[{"text": "hi"}])
        assert requests == []

    def test_history_accepts_message_models(self):
        gateway, requests = _make_gateway(lambda r: (200, _text_reply("ok")))
        history = [CompletionMessage(role="user", content="hi")]
        StudyAssistant(gateway, self.catalog).answer("?", "c1", history=history)
        body = json.loads(requests[0].content)
        assert body["messages"][1] == {"role": "user", "content": "hi"}

    def test_empty_answer_falls_back(self):
        gateway, _ = _make_gateway(lambda r: (200, _text_reply(None)))
        assert StudyAssistant(gateway, self.catalog).answer("?", "c1") == FALLBACK_ANSWER

    def test_question_required(self):
        gateway, requests = _make_gateway(lambda r: (200, _text_reply("x")))
        with pytest.raises(ValidationError):
            StudyAssistant(gateway, self.catalog).answer("", "c1")
        assert requests == []


class TestEssayChecker:
    def test_prompt_per_check_type(self):
        gateway, requests = _make_gateway(lambda r: (200, _text_reply("Looks good")))
        checker = EssayChecker(gateway)

        assert checker.check("My essay", "grammar") == "Looks good"
        checker.check("My essay", "unknown")

        first = json.loads(requests[0].content)
        second = json.loads(requests[1].content)
        assert first["messages"][0]["content"] == ESSAY_PROMPTS["grammar"]
        assert first["messages"][1]["content"] == "Please analyze this essay:\n\nMy essay"
        assert first["temperature"] == 0.3
        assert second["messages"][0]["content"] == DEFAULT_ESSAY_PROMPT

    def test_rate_limit_propagates(self):
        gateway, _ = _make_gateway(lambda r: (429, {}))
        with pytest.raises(RateLimitedError):
            EssayChecker(gateway).check("My essay")


class TestCourseRecommender:
    def setup_method(self):
        self.db = Database()
        self.catalog = CatalogStore(self.db)
        self.catalog.add_course("Python", category="programming", level="intermediate",
                                tags=["python"], course_id="py")
        self.catalog.add_course("Rust", category="programming", course_id="rs")
        self.catalog.add_course("Design", category="art", course_id="ds")
        enrollment_id = self.catalog.enroll("u1", "py")
        self.catalog.complete_enrollment(enrollment_id)
        self.catalog.record_quiz_result(enrollment_id, 80)
        self.catalog.record_quiz_result(enrollment_id, 100)

    def teardown_method(self):
        self.db.close()

    def test_user_context(self):
        gateway, _ = _make_gateway(lambda r: (200, _text_reply("")))
        context = CourseRecommender(gateway, self.catalog).user_context("u1")
        assert context == {
            "completed_categories": ["programming"],
            "preferred_level": "intermediate",
            "avg_quiz_score": 90,
            "interests": ["python"],
        }

    def test_recommend_loads_and_caches_courses(self):
        gateway, requests = _make_gateway(
            lambda r: (200, _tool_reply({"course_ids": ["ds", "unknown", "rs"]}))
        )

        courses = CourseRecommender(gateway, self.catalog).recommend("u1")

        assert [c["id"] for c in courses] == ["ds", "rs"]
        assert [c["id"] for c in self.catalog.cached_recommendations("u1")] == ["ds", "rs"]
        prompt = json.loads(requests[0].content)["messages"][1]["content"]
        assert '"rs"' in prompt
        assert '"py"' not in prompt

    def test_new_user_defaults(self):
        gateway, _ = _make_gateway(lambda r: (200, _tool_reply({"course_ids": []})))
        recommender = CourseRecommender(gateway, self.catalog)
        assert recommender.user_context("u2")["preferred_level"] == "beginner"
        assert recommender.recommend("u2") == []
