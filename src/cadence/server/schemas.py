"""Request and response bodies shared by the API routers."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiResponse(BaseModel):
    success: bool = True
    message: str
    data: Any = None


class _CamelBody(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ScheduleNowRequest(_CamelBody):
    job_name: str = Field(min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)


class ScheduleAtRequest(ScheduleNowRequest):
    # seconds from now, "in N minutes", or an ISO-8601 timestamp
    when: float | str


class ScheduleRecurringRequest(ScheduleNowRequest):
    interval: str = Field(min_length=1)


class TestJobRequest(_CamelBody):
    job_name: str = "process-data"
    data: dict[str, Any] = Field(default_factory=dict)


class CustomTimerRequest(_CamelBody):
    cron_expression: str = Field(min_length=1)
    task_name: str = Field(min_length=1)
    description: str = ""
