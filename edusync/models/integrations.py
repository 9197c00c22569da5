"""Payloads exchanged with third-party gateways (LLM, video, payments)."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class CompletionMessage(BaseModel):
    role: str                               # "system" | "user" | "assistant"
    content: str


class ToolSchema(BaseModel):
    """A single function tool offered to the completion gateway."""
    name: str
    description: str
    parameters: dict


class CompletionResult(BaseModel):
    content: Optional[str] = None
    tool_arguments: Optional[dict] = None


class VideoRoom(BaseModel):
    url: str
    name: str


class VideoControlAction(str, Enum):
    TOGGLE_VIDEO = "toggle-video"
    TOGGLE_AUDIO = "toggle-audio"
    TOGGLE_SCREEN_SHARE = "toggle-screen-share"
    LEAVE_CALL = "leave-call"


class CheckoutSession(BaseModel):
    url: str
    session_id: str
    customer_id: str
