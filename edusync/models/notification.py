"""Notification — a message addressed to a single user."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class NotificationType(str, Enum):
    ACHIEVEMENT = "achievement"
    MENTOR_SESSION = "mentor_session"
    COURSE_UPDATE = "course_update"
    DEADLINE = "deadline"
    GENERAL = "general"


class NotificationRecord(BaseModel):
    """
    Created by a server-side insert, mutated (read flag) by the recipient.
    Never deleted by the application.
    """

    id: str
    user_id: str
    title: str
    message: str
    type: NotificationType
    read: bool = False
    link: Optional[str] = None
    created_at: datetime
