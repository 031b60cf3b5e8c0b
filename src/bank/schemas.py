"""
Validated question documents.

Question JSON arrives with loosely-typed metadata. It is parsed here into a
fixed shape before anything reaches storage, so scheduling and aggregation
never see missing or malformed fields.
"""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class QuestionData(BaseModel):
    """One question document (camelCase or snake_case keys)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )

    number: int | None = Field(None, ge=1, description="Explicit exam-scoped number")
    text: str = Field(..., min_length=1)
    options: dict[str, str] = Field(..., min_length=1)
    correct: list[str] = Field(..., min_length=1)
    explanation: str | None = None
    why_wrong: dict[str, str] = Field(default_factory=dict)

    # Metadata
    section: str | None = None
    section_id: str | None = None
    tags: list[str] = Field(default_factory=list)
    confidence: Literal["high", "medium", "low"] | None = None

    # Media / source
    image_url: str | None = None
    source_url: str | None = None

    @field_validator("section_id", mode="before")
    @classmethod
    def _coerce_section_id(cls, value):
        # Section ids like 3.5 often arrive as JSON numbers
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @field_validator("section", "section_id", "explanation", "image_url", "source_url")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        return value or None

    @field_validator("options")
    @classmethod
    def _option_keys_not_blank(cls, value: dict[str, str]) -> dict[str, str]:
        cleaned = {key.strip(): text for key, text in value.items()}
        if any(not key for key in cleaned):
            raise ValueError("option keys must not be blank")
        return cleaned

    @field_validator("correct")
    @classmethod
    def _dedupe_correct(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(key.strip() for key in value))

    @model_validator(mode="after")
    def _correct_keys_are_options(self) -> QuestionData:
        unknown = [key for key in self.correct if key not in self.options]
        if unknown:
            raise ValueError(f"correct keys not among options: {unknown}")
        return self

    def to_storage_fields(self) -> dict:
        """Column values for StorageSession.add_question."""
        return {
            "text": self.text,
            "options": dict(self.options),
            "correct": sorted(self.correct),
            "explanation": self.explanation,
            "why_wrong": dict(self.why_wrong) or None,
            "section": self.section,
            "section_id": self.section_id,
            "tags": list(self.tags),
            "confidence": self.confidence,
            "image_url": self.image_url,
            "source_url": self.source_url,
        }


class ExamData(BaseModel):
    """Exam provisioning input."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(None, max_length=1000)

    @field_validator("description")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        return value or None
