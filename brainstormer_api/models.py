"""Pydantic models for API requests and responses."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# Distill API Models
# =============================================================================


class DistillRequest(BaseModel):
    """Request body for the distill endpoint.

    Unknown keys are dropped, so a client-supplied ``model`` never reaches the
    completion client.
    """

    model_config = ConfigDict(extra="ignore")

    text: str = Field(..., min_length=1, description="Raw brain-dump text")


class ActionItem(BaseModel):
    """A single actionable item."""

    id: str = Field(..., description="Item identifier")
    text: str = Field(..., description="Item text")
    completed: bool = Field(default=False, description="Completion state")


class ActionSection(BaseModel):
    """A titled group of action items."""

    id: str = Field(..., description="Section identifier")
    title: str = Field(..., description="Section title")
    items: list[ActionItem] = Field(default_factory=list, description="Items in this section")


class DistilledPlan(BaseModel):
    """Categorized task list produced from a brain dump."""

    sections: list[ActionSection] = Field(..., description="Plan sections")

    def has_items(self) -> bool:
        """True if at least one section carries at least one item."""
        return any(section.items for section in self.sections)


class ErrorResponse(BaseModel):
    """Error body returned for every non-200 response."""

    error: str = Field(..., description="User-facing error message")
    fallback: DistilledPlan | None = Field(
        default=None, description="Synthesized plan when the model reply was unparseable"
    )


# =============================================================================
# Health API Models
# =============================================================================


class HealthResponse(BaseModel):
    """Response for health check endpoint."""

    status: Literal["healthy", "degraded"] = Field(..., description="Service status")
    completion_configured: bool = Field(
        ..., description="Whether the completion service can be called"
    )
    mock_mode: bool = Field(..., description="Whether completions are served by the mock")
    tracked_clients: int = Field(..., description="Client identifiers in the rate limiter")
    version: str = Field(..., description="API version")
