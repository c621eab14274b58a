from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class SessionEntriesResponse(BaseModel):
    id: str
    is_new: bool = False
    available: bool = True
    entries: dict[str, str] = Field(default_factory=dict)


class SessionValueRequest(BaseModel):
    value: Optional[str] = Field(
        default=None,
        description="Value to store under the key. Null is stored as an empty string.",
    )


class DeleteResponse(BaseModel):
    success: bool
