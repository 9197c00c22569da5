"""Achievements and the activities that can unlock them."""

from enum import Enum

from pydantic import BaseModel


class ActivityType(str, Enum):
    QUIZ_COMPLETED = "quiz_completed"
    COURSE_COMPLETED = "course_completed"
    STREAK_CHECK = "streak_check"


class Achievement(BaseModel):
    id: str                                 # e.g., "first-perfect-score"
    name: str
    description: str = ""
    category: str                           # "quiz" | "course" | "engagement"
    xp_reward: int = 0
