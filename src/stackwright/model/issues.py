"""Validation issue model shared by both validation stages."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ValidationIssue(BaseModel):
    """A single violation found by a validator.

    Attributes:
        code: Stable machine-readable issue code (e.g. "self_loop")
        message: Human-readable description
        subject: Id of the component, relation or service concerned
    """

    model_config = ConfigDict(frozen=True)

    code: str = Field(description="Issue code")
    message: str = Field(description="Issue description")
    subject: str | None = Field(default=None, description="Affected element")

    def __str__(self) -> str:
        return self.message
