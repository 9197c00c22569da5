"""Caller identity as resolved by the auth provider."""

from typing import Optional

from pydantic import BaseModel


class UserIdentity(BaseModel):
    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        if self.full_name:
            return self.full_name
        if self.email:
            return self.email.split("@")[0]
        return "Anonymous"
