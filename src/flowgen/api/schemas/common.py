"""Shared response schemas."""

from pydantic import BaseModel, ConfigDict, Field


class ProcessingResponse(BaseModel):
    """Returned with 202 when a job outlives the request deadline."""

    model_config = ConfigDict(populate_by_name=True)

    status: str = "processing"
    message: str
    request_id: str = Field(alias="requestId")
    job_id: str = Field(alias="jobId")
