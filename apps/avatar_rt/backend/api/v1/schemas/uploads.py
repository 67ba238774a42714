"""Upload endpoint response schemas."""

from pydantic import BaseModel, ConfigDict, Field


class UploadAcceptedResponse(BaseModel):
    """Returned with 202 when a likeness or voice-clone job has been started."""

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "message": "Likeness generation started",
                "jobId": "likeness_user-42_1700000000000",
                "estimatedTime": "2-3 minutes",
            }
        },
    )

    message: str
    job_id: str = Field(..., alias="jobId")
    estimated_time: str = Field(..., alias="estimatedTime")


class ErrorResponse(BaseModel):
    error: str = Field(
        ...,
        description="Human-readable error",
        json_schema_extra={"example": "userId and image file required"},
    )
