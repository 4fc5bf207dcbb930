"""Completion models for the keyword-rewriting model."""

from pydantic import BaseModel, Field


class KeywordCompletion(BaseModel):
    """Text returned by the model for one keyword-extraction prompt.

    Attributes:
        text: The raw completion, before keyword cleanup.
        model: Model that served the request.
        total_tokens: Tokens billed for the call, 0 when the server omits usage.
    """

    text: str = Field(description="Raw completion text")
    model: str = Field(description="Model used")
    total_tokens: int = Field(default=0, ge=0, description="Total token count")
