"""
NoteKeep Backend: Shared Response Schemas
==========================================

Error envelope and health payload used by every router.
"""

from typing import Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    What:  Standardized error response format for all API errors.

    Fields:
        error: Machine-readable error code (e.g., "invalid_or_expired_code")
        message: Human-readable description for display to users
        details: Optional extra context (e.g., retry_after)
        request_id: Correlation ID for tracing this error in server logs

    Example:
        {
            "error": "duplicate_account",
            "message": "An account with this email already exists. Please sign in instead.",
            "request_id": "1f0c2a9e"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """Health check response showing service and dependency status."""
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    email: str = Field(description="Mail delivery circuit: closed, half_open, open")
    uptime_seconds: float = Field(description="Seconds since service started")
