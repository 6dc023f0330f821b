"""
Extraction models - Pydantic schemas for the document-understanding reply.

The vision model is asked for this exact shape. A reply that does not validate
is rejected as a whole and the extractor falls through to text scanning.
Unknown keys are ignored; null lists are read as empty. Infinite or NaN
numbers (1e999, "NaN") fail validation like any other malformed value.
"""
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _ReplyModel(BaseModel):
    model_config = ConfigDict(extra="ignore", allow_inf_nan=False)


class ExtractedPointModel(_ReplyModel):
    """One spot elevation read off the drawing."""
    id: Optional[str] = None
    x: Optional[float] = None
    y: Optional[float] = None
    z: Optional[float] = None
    type: Optional[str] = Field(None, description="ngl | design | unknown (fgl / existing accepted)")
    label: Optional[str] = None
    confidence: Optional[str] = Field(None, description="high | medium | low")
    confidenceReason: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_text(cls, v):
        if v is None or isinstance(v, str):
            return v
        return str(v)


class LevelTableEntry(_ReplyModel):
    """Row of a level table pairing a point id with its NGL and FGL values."""
    pointId: Optional[str] = None
    ngl: Optional[float] = None
    fgl: Optional[float] = None
    cutFill: Optional[float] = None
    x: Optional[float] = None
    y: Optional[float] = None
    confidence: Optional[str] = None
    confidenceReason: Optional[str] = None

    @field_validator("pointId", mode="before")
    @classmethod
    def _point_id_as_text(cls, v):
        if v is None or isinstance(v, str):
            return v
        return str(v)


class GridReference(_ReplyModel):
    originX: Optional[float] = None
    originY: Optional[float] = None
    spacing: Optional[float] = None


class DocumentExtractionModel(_ReplyModel):
    points: Optional[List[ExtractedPointModel]] = None
    levelTable: Optional[List[LevelTableEntry]] = None
    contourElevations: Optional[List[float]] = None
    gridReference: Optional[GridReference] = None
    drawingScale: Optional[Union[str, float]] = None
    notes: Optional[List[str]] = None
    overallConfidence: Optional[str] = None
    qualityNotes: Optional[List[str]] = None
