"""Pydantic request/response schemas for the ClassifyX API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class PredictionItem(BaseModel):
    """A single classification label with confidence score."""

    label: str
    confidence: float = Field(ge=0.0, le=1.0)
    rank: int = Field(ge=1, description="1-based position in the ranking")


class ClassifyImageResponse(BaseModel):
    """Response for the image classification endpoint."""

    model: str
    predictions: list[PredictionItem]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    model: str
    concurrent_requests: int
    queue_depth: int


class ModelInfoResponse(BaseModel):
    """Information about the loaded model."""

    name: str
    input_shape: list[int]
    num_classes: int
    normalization: str = Field(description="Input range: 'unit' for [0, 1] or 'symmetric' for [-1, 1]")
    output_kind: str = Field(description="Model output: 'probabilities' or 'logits'")
    default_top_k: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
