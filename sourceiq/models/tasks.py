from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PromptTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    dimension: str
    text: str


class PromptTask(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int
    dimension: str
    prompt_text: str
    primary_key_index: int

    @classmethod
    def build(cls, index: int, template: PromptTemplate, pool_size: int) -> "PromptTask":
        return cls(
            index=index,
            dimension=template.dimension,
            prompt_text=template.text,
            primary_key_index=index % max(1, pool_size),
        )


class TaskAttempt(BaseModel):
    key_index: int
    error_kind: Optional[str] = None
    error: Optional[str] = None
    elapsed_ms: int = 0


class TaskOutcome(BaseModel):
    index: int
    dimension: str
    success: bool
    raw_text: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    attempts: list[TaskAttempt] = Field(default_factory=list)
