"""
RequestGuard: Error Response Schema
=====================================

What:  The JSON body every classified error renders to (AppError.to_payload()).
Why:   Documented once so OpenAPI consumers know what a failure looks like.

Only the user-facing message leaves the server; the internal message, stack
trace and wrapped exception are kept in the exception report.
"""

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    error_id: str = Field(description="Reference to quote when contacting support (UUID)")
    message: str = Field(description="User-facing message, safe to display")
    status_code: int = Field(description="HTTP status of the response")

    model_config = {
        "json_schema_extra": {
            "example": {
                "error_id": "9b2d4f0e-3c1a-4e8b-a6f2-1d7c5e9b0a34",
                "message": "The requested resource was not found.",
                "status_code": 404,
            }
        }
    }
