"""
Common schemas used across multiple endpoints.
"""
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Error response."""
    error: str

    class Config:
        json_schema_extra = {"example": {"error": "An error occurred"}}


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    version: str = "1.0.0"
