"""
Request payloads for the ingestion endpoints.

Both bodies are JSON with camelCase keys. Content fields are optional at the
schema level so that a missing or empty document is answered with the
endpoint's own 400 envelope instead of a generic validation error.
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TextDrawingRequest(BaseModel):
    """Tag-value drawing submitted as text."""
    file_content: Optional[str] = Field(None, alias="fileContent")
    file_type: Optional[str] = Field("dxf", alias="fileType")  # "dxf" | "dwg"

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "fileContent": "0\nSECTION\n2\nENTITIES\n0\nPOINT\n8\nNGL\n10\n100.0\n20\n200.0\n30\n580.5\n0\nENDSEC\n0\nEOF\n",
                "fileType": "dxf",
            }
        },
    )


class DocumentDrawingRequest(BaseModel):
    """Scanned or vector drawing submitted as base64 (optionally a data: URL)."""
    document_base64: Optional[str] = Field(None, alias="documentBase64")
    file_name: Optional[str] = Field(None, alias="fileName")

    model_config = ConfigDict(populate_by_name=True)
