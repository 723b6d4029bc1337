"""
Pydantic schemas for request/response validation.

Field names of StoredCompliment are part of the public contract and are also
used for realtime pushes.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# Request Models
# =============================================================================

class ComplimentCreate(BaseModel):
    """
    Body of POST /api/compliments.

    Both fields are optional at the schema level so that a missing field is
    reported as a 400 by the handler rather than a schema error.
    """
    recipientCode: Optional[str] = Field(None, description="Recipient code the message is for")
    message: Optional[str] = Field(None, description="Message text")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"recipientCode": "ABC123", "message": "You have a great smile"}
            ]
        }
    }


# =============================================================================
# Response Models
# =============================================================================

class StoredCompliment(BaseModel):
    """A persisted compliment as returned by the datastore."""
    id: int = Field(..., description="Identifier assigned by the datastore")
    recipient_code: str = Field(..., description="Recipient code")
    message: str = Field(..., description="Message text")
    created_at: datetime = Field(..., description="Creation timestamp")

    model_config = {"from_attributes": True}

    @field_validator("created_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        """Backends without timezone storage return naive UTC values; tag them as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


class ComplimentCreatedResponse(BaseModel):
    success: bool = True
    compliment: StoredCompliment


class ComplimentsListResponse(BaseModel):
    """Compliments for one recipient code, newest first."""
    compliments: list[StoredCompliment] = Field(default_factory=list)


class RecipientCodeResponse(BaseModel):
    recipientCode: str = Field(..., description="Newly generated recipient code")


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    error: str = Field(..., description="Error description")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    message: Optional[str] = Field(None, description="Human readable status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
