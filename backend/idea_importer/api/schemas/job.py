"""Import job status payloads."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

JobStatusValue = Literal["queued", "processing", "completed", "failed"]
StopReason = Literal["cancelled", "timeout"]

TERMINAL_STATUSES = frozenset({"completed", "failed"})


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class RowError(_CamelModel):
    row: int
    error: str


class RowResult(_CamelModel):
    row: int
    id: str
    slug: str


class SourceMeta(_CamelModel):
    filename: str | None = None
    format: str | None = None
    row_count: int = 0
    column_count: int = 0
    headers: list[str] = Field(default_factory=list)


class ImportJobView(_CamelModel):
    """Consistent, immutable snapshot of one import job."""

    id: str
    status: JobStatusValue
    total_rows: int
    processed_rows: int
    successful_rows: int
    failed_rows: int
    progress: float = Field(..., description="0-1 range for UI progress bars")
    errors: list[RowError] = Field(default_factory=list)
    results: list[RowResult] = Field(default_factory=list)
    error: str | None = Field(None, description="Job-level failure message")
    stop_reason: StopReason | None = None
    cancel_requested: bool = False
    source_meta: SourceMeta = Field(default_factory=SourceMeta)
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class ImportAccepted(_CamelModel):
    job_id: str
    status: JobStatusValue


class ImportRejectedBody(_CamelModel):
    error: str
    job_id: str | None = None
