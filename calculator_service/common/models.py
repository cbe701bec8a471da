"""Pydantic models for the /calculate request and response bodies."""
from pydantic import BaseModel, ConfigDict, Field


class CalculationRequest(BaseModel):
    """Represents a single calculation request sent by a client."""

    # Decoded once per request and never changed afterwards
    model_config = ConfigDict(frozen=True)

    problem: str = Field(default="", description="Arithmetic expression as a string")
    id: str = Field(default="", description="Client-supplied correlation identifier")
    username: str = Field(default="", description="Optional client identity label")


class CalculationResponse(BaseModel):
    """Represents the outcome of a calculation returned to the client."""

    success: bool = Field(..., description="True when answer holds a finite result")
    error: str = Field(default="", description="Failure reason, empty on success")
    answer: float = Field(default=0.0, description="Evaluated result, 0 on failure")
    id: str = Field(default="", description="Echo of the request identifier")
