"""Realtime transport messages that are not broadcasts."""

from typing import Literal

from pydantic import BaseModel


class RowChange(BaseModel):
    """A row-level change emitted by the store into the realtime hub."""

    table: str
    event: Literal["INSERT", "UPDATE", "DELETE"]
    new: dict = {}
    old: dict = {}
