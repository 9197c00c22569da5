"""
AI Assistant Services — study Q&A, essay feedback and course recommendations.

Each call builds a prompt from store data and forwards it to the LLM
gateway once. Gateway errors propagate unchanged so the API layer can
surface 429/402.
"""

import json
from typing import Dict, List, Optional, Union

import structlog
from pydantic import ValidationError as PydanticValidationError

from edusync.errors import ValidationError
from edusync.integrations.llm import LLMGateway
from edusync.models.integrations import CompletionMessage, ToolSchema
from edusync.store.catalog import CatalogStore

logger = structlog.get_logger(__name__)

SECTION_CONTENT_LIMIT = 500
FALLBACK_ANSWER = "I couldn't generate a response."

ESSAY_PROMPTS: Dict[str, str] = {
    "grammar": (
        "You are an expert grammar checker. Analyze the essay for grammatical errors, "
        "punctuation mistakes, and spelling issues. Provide specific corrections with "
        "line numbers and explanations."
    ),
    "plagiarism": (
        "You are a plagiarism detection assistant. Analyze the essay for potential "
        "plagiarism indicators, unoriginal content patterns, and provide suggestions for "
        "proper citations. Note: This is a preliminary check, not a full plagiarism scan."
    ),
    "structure": (
        "You are an essay structure expert. Analyze the essay's organization, thesis "
        "clarity, paragraph coherence, transitions, and overall flow. Provide actionable "
        "feedback on improving structure."
    ),
    "style": (
        "You are a writing style coach. Analyze the essay's tone, voice, word choice, "
        "sentence variety, and clarity. Provide suggestions to enhance writing style and "
        "engagement."
    ),
}
DEFAULT_ESSAY_PROMPT = (
    "You are a comprehensive essay reviewer. Analyze grammar, structure, style, and "
    "coherence. Provide detailed, constructive feedback with specific examples and "
    "suggestions for improvement."
)

RECOMMEND_TOOL = ToolSchema(
    name="recommend_courses",
    description="Return recommended course IDs",
    parameters={
        "type": "object",
        "properties": {
            "course_ids": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Array of recommended course IDs in order of relevance",
            }
        },
        "required": ["course_ids"],
        "additionalProperties": False,
    },
)


class StudyAssistant:
    def __init__(self, gateway: LLMGateway, catalog: CatalogStore):
        self.gateway = gateway
        self.catalog = catalog

    def build_context(self, course_id: Optional[str], extra_content: Optional[str] = None) -> str:
        course = self.catalog.get_course(course_id) if course_id else None
        title = course["title"] if course else None
        description = course["description"] if course else None
        context = f"Course: {title}\nDescription: {description}\n\n"

        sections = self.catalog.list_sections(course_id) if course_id else []
        if sections:
            context += "Course Sections:\n"
            for index, section in enumerate(sections, start=1):
                context += f"\n{index}. {section['title']}\n"
                if section.get("description"):
                    context += f"Description: {section['description']}\n"
                if section.get("content"):
                    context += f"Content: {section['content'][:SECTION_CONTENT_LIMIT]}...\n"

        if extra_content:
            context += f"\nAdditional Content: {extra_content}"
        return context

    def answer(
        self,
        question: Optional[str],
        course_id: Optional[str] = None,
        course_content: Optional[str] = None,
        history: Optional[List[Union[dict, CompletionMessage]]] = None,
    ) -> str:
        if not question:
            raise ValidationError("question is required")

        context = self.build_context(course_id, course_content)
        course = self.catalog.get_course(course_id) if course_id else None
        title = course["title"] if course else None
        system = (
            f'You are an AI study assistant helping students learn about "{title}". \n'
            "Use the following course content to answer questions accurately and helpfully.\n"
            "If you don't know the answer based on the course content, be honest about it "
            "and suggest general study strategies.\n\n"
            f"Course Context:\n{context}\n\n"
            "Guidelines:\n"
            "- Be concise but informative\n"
            "- Use examples from the course material when possible\n"
            "- Break down complex concepts into simpler terms\n"
            "- Encourage critical thinking\n"
            "- If the question is outside the course scope, politely redirect to the course topics"
        )

        messages = [CompletionMessage(role="system", content=system)]
        try:
            messages.extend(CompletionMessage.model_validate(turn) for turn in history or [])
        except PydanticValidationError:
            raise ValidationError("conversationHistory entries need a role and content")
        messages.append(CompletionMessage(role="user", content=question))

        logger.info("study_assistant_request", course_id=course_id, context_length=len(context))
        result = self.gateway.complete(messages, temperature=0.7, max_tokens=1000)
        return result.content or FALLBACK_ANSWER


class EssayChecker:
    def __init__(self, gateway: LLMGateway):
        self.gateway = gateway

    def check(self, essay: Optional[str], check_type: Optional[str] = None) -> str:
        if not essay:
            raise ValidationError("essay is required")
        system = ESSAY_PROMPTS.get(check_type or "", DEFAULT_ESSAY_PROMPT)
        result = self.gateway.complete(
            [
                CompletionMessage(role="system", content=system),
                CompletionMessage(role="user", content=f"Please analyze this essay:\n\n{essay}"),
            ],
            temperature=0.3,
        )
        return result.content or ""


class CourseRecommender:
    """Ranks unenrolled published courses with a forced tool call."""

    def __init__(self, gateway: LLMGateway, catalog: CatalogStore):
        self.gateway = gateway
        self.catalog = catalog

    def user_context(self, user_id: str) -> dict:
        enrollments = self.catalog.list_enrollments(user_id)
        percentages = self.catalog.quiz_percentages([e["id"] for e in enrollments])
        interests: List[str] = []
        for e in enrollments:
            for tag in e["tags"]:
                if tag not in interests:
                    interests.append(tag)
        return {
            "completed_categories": [e["category"] for e in enrollments if e["completed"]],
            "preferred_level": enrollments[0]["level"] if enrollments else "beginner",
            "avg_quiz_score": sum(percentages) / len(percentages) if percentages else 0,
            "interests": interests,
        }

    def recommend(self, user_id: str) -> List[dict]:
        enrollments = self.catalog.list_enrollments(user_id)
        candidates = self.catalog.list_published_courses(
            exclude_ids=[e["course_id"] for e in enrollments]
        )
        context = self.user_context(user_id)

        prompt = (
            f"User Profile:\n{json.dumps(context, indent=2)}\n\n"
            f"Available Courses:\n{json.dumps(candidates, indent=2)}\n\n"
            "Recommend 5 courses that best match this user's learning pattern, considering "
            "their completed categories, skill level, quiz performance, and interests. "
            "Return ONLY a JSON array of course IDs in order of relevance."
        )
        result = self.gateway.complete(
            [
                CompletionMessage(
                    role="system",
                    content=(
                        "You are an educational course recommender. Analyze user learning "
                        "patterns and recommend relevant courses from the available list."
                    ),
                ),
                CompletionMessage(role="user", content=prompt),
            ],
            tools=[RECOMMEND_TOOL],
            tool_choice=RECOMMEND_TOOL.name,
        )

        ids = (result.tool_arguments or {}).get("course_ids") or []
        courses = self.catalog.get_courses([str(i) for i in ids])
        self.catalog.cache_recommendations(user_id, courses)
        logger.info("recommendations_generated", user_id=user_id, count=len(courses))
        return courses
