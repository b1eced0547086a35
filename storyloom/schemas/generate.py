from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class GenerateRequest(BaseModel):
    """Body of POST /api/novels/{id}/generate."""

    model_config = ConfigDict(populate_by_name=True)

    prompt: str = Field(min_length=1, description="本章创作要求")
    genre: Optional[str] = None
    style: Optional[str] = None
    temperature: float = Field(0.7, ge=0, le=2)
    previous_context: Optional[str] = Field(None, alias="previousContext", description="续写要求")
    max_tokens: Optional[int] = Field(None, ge=1, alias="maxTokens")
