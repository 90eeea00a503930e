"""Pydantic schemas for repository API responses."""

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Response model for errors."""
    detail: str
    code: str


class PutResponse(BaseModel):
    """Response model for chunk and manifest uploads."""
    id: str
    created: bool


class HealthResponse(BaseModel):
    """Response model for the health check."""
    status: str
    service: str
    algorithm: str
