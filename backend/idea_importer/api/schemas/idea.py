"""Pydantic models describing Idea payloads."""

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

Market = Literal["B2B", "B2C", "B2B2C"]


class IdeaCreate(BaseModel):
    """Validated create command handed to the record sink."""

    title: str = Field(..., min_length=1, max_length=500)
    slug: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    type: str = Field("web_app", max_length=64)
    market: Market = "B2C"
    target_audience: str | None = None
    problem: str | None = None
    solution: str | None = None
    keyword: str | None = Field(None, max_length=255)
    preview_url: str | None = Field(None, max_length=2048)
    image_url: str | None = Field(None, max_length=2048)
    opportunity_score: int | None = Field(None, ge=1, le=10)
    problem_score: int | None = Field(None, ge=1, le=10)
    feasibility_score: int | None = Field(None, ge=1, le=10)
    timing_score: int | None = Field(None, ge=1, le=10)
    revenue_potential: str | None = None
    is_published: bool = True
    is_featured: bool = False
    signal_badges: list[str] | None = None
    framework_data: dict[str, Any] | None = None
    extra_fields: dict[str, Any] = Field(
        default_factory=dict,
        description="Unrecognised spreadsheet columns kept as source data",
    )

    model_config = {"frozen": True}

    @field_validator("title", "description", "content")
    @classmethod
    def strip_required(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped


class IdeaReference(BaseModel):
    """Lightweight pointer to a created idea."""

    id: str
    slug: str

    model_config = {"frozen": True}
