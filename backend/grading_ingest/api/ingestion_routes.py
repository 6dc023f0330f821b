"""Ingestion API — drawing parse endpoints (tag-value DXF text and scanned/vector documents)."""
import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from grading_ingest.models.api_models import DocumentDrawingRequest, TextDrawingRequest
from grading_ingest.services.dxf_tag_parser import UnsupportedDrawingFormatError
from grading_ingest.services.ingestion_pipeline import ingest_document, ingest_text_drawing
from grading_ingest.services.llm_client import (
    ExtractionServiceError,
    QuotaExhaustedError,
    RateLimitedError,
)
from grading_ingest.services.point_classifier import ClassificationPolicy
from grading_ingest.services.result_assembler import build_response

logger = logging.getLogger("grading-ingestion")

router = APIRouter(prefix="/api/ingestion", tags=["Drawing Ingestion"])


def _error(status_code: int, error: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error, **extra})


# ─── Tag-value (ASCII DXF) drawings ──────────────────────────────────────────

@router.post("/parse-dxf")
def parse_dxf(body: TextDrawingRequest):
    """
    Parse an ASCII DXF drawing into classified survey points, polylines,
    annotations and terrain statistics. Binary DWG is rejected with a
    conversion hint.
    """
    file_type = (body.file_type or "dxf").strip().lower()
    try:
        if file_type != "dwg" and not (body.file_content or "").strip():
            return _error(400, "No file content provided")
        logger.info(f"Parsing {file_type.upper()} file, content length: {len(body.file_content or '')}")
        drawing = ingest_text_drawing(body.file_content or "", file_type, ClassificationPolicy.from_env())
    except UnsupportedDrawingFormatError as e:
        logger.info(f"Rejected binary drawing upload ({e.file_type})")
        return _error(400, e.error, suggestion=e.suggestion)
    except Exception as e:
        logger.exception(f"DXF parsing failed: {e}")
        return _error(500, str(e) or "Failed to parse file")

    response = build_response(drawing)
    logger.info(
        f"Parsed: {response['summary']['totalPoints']} points, "
        f"{response['summary']['polylineCount']} polylines, {response['summary']['textCount']} texts"
    )
    return response


# ─── Scanned / vector documents ──────────────────────────────────────────────

@router.post("/parse-document")
def parse_document(body: DocumentDrawingRequest):
    """
    Extract survey points and NGL/FGL levels from a drawing image or PDF
    through the vision model, with a text-scan fallback for unstructured replies.
    """
    if not (body.document_base64 or "").strip():
        return _error(400, "No document provided")

    try:
        drawing, extraction = ingest_document(
            body.document_base64,
            body.file_name or "",
            ClassificationPolicy.from_env(),
        )
    except (RateLimitedError, QuotaExhaustedError) as e:
        logger.warning(f"Document extraction refused upstream: {e.detail}")
        return _error(e.status_code, e.user_message, upstreamStatus=e.status_code)
    except ExtractionServiceError as e:
        return _error(502, e.user_message, upstreamStatus=e.status_code)
    except Exception as e:
        logger.exception(f"Document parsing failed: {e}")
        return _error(500, str(e) or "Failed to parse document")

    return build_response(
        drawing,
        extra_summary={"extractedLevels": extraction.extracted_levels},
        metadata=extraction.metadata,
        raw_extraction=extraction.raw_extraction,
    )
