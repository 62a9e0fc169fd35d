"""Occurrence: one concrete scheduled instance of a template."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class Occurrence(BaseModel):
    """A template's scheduled instance for one period.

    ``period_start``/``period_end`` are the first and last instant of the
    period in the template's timezone.
    """

    model_config = ConfigDict(frozen=True)

    template_id: str = Field(..., description="Template this occurrence belongs to")
    period_start: datetime = Field(..., description="First instant of the period")
    period_end: datetime = Field(..., description="Last instant of the period")
    period_key: str = Field(..., description="YYYY-MM-DD, YYYY-Www or YYYY-MM")
    run_at: datetime = Field(..., description="When tasks for this period are generated")
    due_at: datetime = Field(..., description="When tasks for this period are due")
