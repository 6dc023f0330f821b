"""
Document understanding extractor for scanned / vector site drawings.

Pipeline:
  1. One vision LLM call with a fixed extraction instruction and the document
     attached inline (llm_client.complete_with_document).
  2. Reply handling, as a tagged result:
       StructuredExtraction    — first balanced {...} block, validated against
                                 DocumentExtractionModel
       RegexFallbackExtraction — no JSON, bad JSON, schema mismatch or no points:
                                 NGL/FGL values scanned out of the prose
       EmptyExtraction         — nothing recoverable (not an error)
  3. Conversion to the shared RawExtraction plus document metadata
     (grid / level table detection, stated scale, confidence, page count).

Points read from prose have no geometry, so they get placeholder coordinates
on a diagonal ((10, 10), (20, 20), ...).
"""
import base64
import binascii
import json
import logging
import math
import re
from dataclasses import dataclass, field
from typing import ClassVar, Optional

import fitz  # PyMuPDF
from pydantic import ValidationError

from grading_ingest import config
from grading_ingest.models.drawing import PointArena, PointKind, RawExtraction, TextAnnotation
from grading_ingest.models.extraction_schema import DocumentExtractionModel
from grading_ingest.services import llm_client

logger = logging.getLogger("grading-document-extractor")


SYSTEM_PROMPT = """You are an expert civil engineering drawing analyzer. Your task is to extract survey points, elevation levels, and grading information from scanned engineering drawings and PDFs.

When analyzing a drawing, look for:
1. **Survey Points**: Points labeled with coordinates (X, Y) and elevations (Z or EL)
2. **NGL (Natural Ground Level)**: Existing ground elevations, often labeled as NGL, EG, or "Existing"
3. **FGL (Finished Ground Level)**: Design/proposed elevations, labeled as FGL, DL, FG, or "Proposed"
4. **Contour Lines**: Lines connecting points of equal elevation
5. **Grid Lines**: Reference grid with coordinates
6. **Spot Elevations**: Individual elevation points scattered across the drawing
7. **Level Tables**: Tables showing point IDs with their NGL and FGL values
8. **Cross-Sections**: Profile views showing existing vs proposed grades

Extract and return data in this exact JSON format:
{
  "points": [
    {"id": "P1", "x": 100.0, "y": 200.0, "z": 580.50, "type": "ngl", "label": "Survey Point 1", "confidence": "high", "confidenceReason": "Clearly labeled with NGL prefix"},
    {"id": "P2", "x": 100.0, "y": 200.0, "z": 581.20, "type": "design", "label": "Design Level 1", "confidence": "medium", "confidenceReason": "Value partially obscured"}
  ],
  "levelTable": [
    {"pointId": "P1", "ngl": 580.50, "fgl": 581.20, "cutFill": 0.70, "confidence": "high"}
  ],
  "contourElevations": [580, 581, 582],
  "gridReference": {"originX": 0, "originY": 0, "spacing": 10},
  "drawingScale": "1:500",
  "notes": ["Any relevant notes from the drawing"],
  "overallConfidence": "medium",
  "qualityNotes": ["Some text was blurry", "Contour labels were clear"]
}

CONFIDENCE SCORING RULES:
- "high": Value is clearly visible, properly labeled, and unambiguous
- "medium": Value is readable but may have minor ambiguity (e.g., slightly blurry, unlabeled but contextually clear)
- "low": Value is partially obscured, estimated, or inferred from context

IMPORTANT:
- Extract ALL visible elevation values, even if partially visible (mark low confidence)
- Coordinates may be in meters or feet - note the units if visible
- If a point has both NGL and FGL, create two separate entries
- Every elevation number matters for volume calculations
- Always provide confidence scores for each extracted value"""

USER_PROMPT = (
    "Analyze this engineering drawing and extract all survey points, elevation levels "
    "(NGL and FGL), and any coordinate information. Focus on finding point coordinates "
    "and their associated elevations. Return the data in the JSON format specified."
)

_NUM = r'(\d+\.?\d*)'
_NGL_VALUE = re.compile(r'ngl\s*[:=]\s*' + _NUM, re.IGNORECASE)
_FGL_VALUE = re.compile(r'fgl\s*[:=]\s*' + _NUM, re.IGNORECASE)
# "P1: NGL=580.50, FGL=581.20"
_LEVEL_TRIPLE = re.compile(
    r'([A-Za-z]*\d+)[:\s]+ngl\s*[:=]\s*' + _NUM + r'[,;\s]+fgl\s*[:=]\s*' + _NUM,
    re.IGNORECASE,
)

_TYPE_MAP = {
    "design": PointKind.DESIGN,
    "fgl": PointKind.DESIGN,
    "ngl": PointKind.NGL,
    "existing": PointKind.NGL,
}
_CONFIDENCE_LEVELS = ("high", "medium", "low")


# ── Result variants ───────────────────────────────────────────────────────────

@dataclass
class LevelRecord:
    label: str
    value: Optional[float]
    type: str
    confidence: str

    def to_dict(self) -> dict:
        return {"label": self.label, "value": self.value, "type": self.type, "confidence": self.confidence}


@dataclass
class ReplyExtraction:
    """Base of the tagged reply variants; `source` names the variant."""
    source: ClassVar[str] = ""
    points: list = field(default_factory=list)
    levels: list = field(default_factory=list)  # LevelRecord
    raw: dict = field(default_factory=dict)
    model: Optional[DocumentExtractionModel] = None
    stated_confidence: Optional[str] = None


@dataclass
class StructuredExtraction(ReplyExtraction):
    source: ClassVar[str] = "structured"


@dataclass
class RegexFallbackExtraction(ReplyExtraction):
    source: ClassVar[str] = "regex_fallback"


@dataclass
class EmptyExtraction(ReplyExtraction):
    source: ClassVar[str] = "empty"


@dataclass
class DocumentExtraction:
    """Everything the pipeline and the endpoint need from one document."""
    raw: RawExtraction
    metadata: dict
    extracted_levels: list
    raw_extraction: dict
    source: str


# ── Reply parsing ─────────────────────────────────────────────────────────────

def find_first_json_object(text: str) -> Optional[str]:
    """
    First balanced {...} block in text, or None.
    Braces inside JSON strings (and escaped quotes) do not count.
    """
    start = text.find("{")
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:idx + 1]
    return None


def _reject_constant(name: str):
    raise ValueError(f"non-finite number {name} in model reply")


def _finite_json(value):
    """Copy of decoded JSON with overflowing numbers (1e999 → inf) replaced by None."""
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, dict):
        return {k: _finite_json(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_finite_json(v) for v in value]
    return value


def parse_structured(text: str) -> tuple[Optional[DocumentExtractionModel], dict]:
    """
    Validated model plus the decoded dict, or (None, {}) when the reply has no usable JSON.
    Non-finite numbers fail validation; the returned dict is always JSON-safe.
    """
    block = find_first_json_object(text or "")
    if block is None:
        logger.info("No JSON object found in model reply")
        return None, {}
    try:
        decoded = json.loads(block, parse_constant=_reject_constant)
    except ValueError as e:
        logger.info(f"Could not decode JSON from model reply ({e}) — falling back to text scan")
        return None, {}
    if not isinstance(decoded, dict):
        return None, {}
    try:
        return DocumentExtractionModel.model_validate(decoded), _finite_json(decoded)
    except ValidationError as e:
        logger.info(f"Model reply failed schema validation ({e.error_count()} errors) — falling back to text scan")
        return None, {}


def _confidence(value: Optional[str], default: str = "medium") -> str:
    value = (value or "").strip().lower()
    return value if value in _CONFIDENCE_LEVELS else default


class _PlaceholderSequence:
    """Diagonal placeholder coordinates for points that have no geometry."""

    def __init__(self, spacing: float = config.PLACEHOLDER_SPACING):
        self.spacing = spacing
        self.n = 0

    def next(self) -> tuple[float, float]:
        self.n += 1
        return self.n * self.spacing, self.n * self.spacing


def _layer_for(kind: PointKind) -> Optional[str]:
    if kind == PointKind.NGL:
        return config.DOCUMENT_NGL_LAYER
    if kind == PointKind.DESIGN:
        return config.DOCUMENT_DESIGN_LAYER
    return None


def build_structured(model: DocumentExtractionModel, decoded: dict) -> StructuredExtraction:
    arena = PointArena(prefix="P")
    placeholders = _PlaceholderSequence()
    levels: list[LevelRecord] = []

    for p in model.points or []:
        kind = _TYPE_MAP.get((p.type or "").strip().lower(), PointKind.UNKNOWN)
        conf = _confidence(p.confidence)
        point = arena.add(
            p.x if p.x is not None else 0.0,
            p.y if p.y is not None else 0.0,
            p.z,
            point_id=p.id,
            layer=_layer_for(kind),
            label=p.label,
            kind=kind,
            confidence=conf,
            confidence_reason=p.confidenceReason or "No reason provided",
        )
        levels.append(LevelRecord(p.id or p.label or point.id, p.z, p.type or "unknown", conf))

    for row_no, row in enumerate(model.levelTable or [], start=1):
        point_id = row.pointId or f"L{row_no}"
        conf = _confidence(row.confidence)
        reason = row.confidenceReason or "From level table"
        if row.x is not None and row.y is not None:
            x, y = row.x, row.y
        else:
            x, y = placeholders.next()
        for value, kind, suffix in ((row.ngl, PointKind.NGL, "NGL"), (row.fgl, PointKind.DESIGN, "FGL")):
            if value is None:
                continue
            arena.add(
                x, y, value,
                point_id=f"{point_id}_{suffix}",
                layer=_layer_for(kind),
                label=f"{point_id} {suffix}",
                kind=kind,
                confidence=conf,
                confidence_reason=reason,
            )
            levels.append(LevelRecord(f"{point_id} {suffix}", value, kind.value, conf))

    return StructuredExtraction(
        points=list(arena.points),
        levels=levels,
        raw=decoded,
        model=model,
        stated_confidence=model.overallConfidence,
    )


def extract_levels_from_text(text: str) -> RegexFallbackExtraction:
    """
    Recover levels from prose when the reply has no usable JSON.

    Every "NGL: v" and "FGL=v" match becomes its own low-confidence point.
    "<id>: NGL=v1, FGL=v2" rows additionally produce an NGL/FGL pair sharing
    one placeholder coordinate and a cut/fill record (fgl - ngl).
    """
    arena = PointArena(prefix="P")
    placeholders = _PlaceholderSequence()
    levels: list[LevelRecord] = []
    level_table: list[dict] = []
    reason = "Extracted via text pattern matching (fallback mode)"

    for pattern, kind, tag in ((_NGL_VALUE, PointKind.NGL, "NGL"), (_FGL_VALUE, PointKind.DESIGN, "FGL")):
        for match in pattern.finditer(text):
            x, y = placeholders.next()
            value = float(match.group(1))
            point = arena.add(
                x, y, value,
                point_id=f"{tag}_{placeholders.n}",
                layer=_layer_for(kind),
                label=f"{tag} {match.group(1)}",
                kind=kind,
                confidence="low",
                confidence_reason=reason,
            )
            levels.append(LevelRecord(point.id, value, kind.value, "low"))

    for match in _LEVEL_TRIPLE.finditer(text):
        point_id = match.group(1)
        ngl = float(match.group(2))
        fgl = float(match.group(3))
        x, y = placeholders.next()
        level_table.append({
            "pointId": point_id,
            "ngl": ngl,
            "fgl": fgl,
            "cutFill": round(fgl - ngl, 6),
            "confidence": "medium",
        })
        for value, kind, suffix in ((ngl, PointKind.NGL, "NGL"), (fgl, PointKind.DESIGN, "FGL")):
            arena.add(
                x, y, value,
                point_id=f"{point_id}_{suffix}",
                layer=_layer_for(kind),
                label=f"{point_id} {suffix}",
                kind=kind,
                confidence="medium",
                confidence_reason="Extracted from level table pattern",
            )
            levels.append(LevelRecord(f"{point_id} {suffix}", value, kind.value, "medium"))

    raw = {
        "points": [p.to_dict() for p in arena.points],
        "levelTable": level_table,
        "overallConfidence": "low",
        "qualityNotes": ["Data extracted via fallback text parsing"],
    }
    return RegexFallbackExtraction(points=list(arena.points), levels=levels, raw=raw, stated_confidence="low")


def parse_model_reply(text: str) -> ReplyExtraction:
    """Turn the model's reply text into one of the three tagged extraction variants."""
    model, decoded = parse_structured(text)
    if model is not None:
        structured = build_structured(model, decoded)
        if structured.points:
            return structured
        logger.info("Structured reply contained no points — scanning reply text for levels")

    fallback = extract_levels_from_text(text or "")
    if fallback.points:
        logger.info(f"Text scan recovered {len(fallback.points)} points")
        return fallback

    return EmptyExtraction(raw=decoded, model=model)


# ── Metadata ──────────────────────────────────────────────────────────────────

def overall_confidence(points: list, stated: Optional[str]) -> tuple[str, int]:
    """(overall confidence, number of low-confidence points)."""
    low = sum(1 for p in points if p.confidence == "low")
    if not points:
        return "low", low
    ratio = low / len(points)
    if ratio > config.LOW_CONFIDENCE_RATIO_LOW:
        return "low", low
    if ratio > config.LOW_CONFIDENCE_RATIO_MEDIUM:
        return "medium", low
    return _confidence(stated, default="high"), low


def count_pdf_pages(document_base64: str) -> Optional[int]:
    """Page count when the document is a PDF, else None."""
    payload = document_base64.split(",", 1)[1] if document_base64.startswith("data:") else document_base64
    try:
        data = base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError):
        return None
    if not data.startswith(b"%PDF"):
        return None
    try:
        with fitz.open(stream=data, filetype="pdf") as doc:
            return doc.page_count
    except (RuntimeError, ValueError) as e:
        logger.warning(f"PDF page count unavailable: {e}")
        return None


# ── Extractor ─────────────────────────────────────────────────────────────────

class DocumentExtractor:
    """
    Scanned / vector drawing → RawExtraction via one vision LLM call.
    Upstream failures propagate as llm_client.ExtractionServiceError subclasses.
    """

    def __init__(self, model: Optional[str] = None, complete=None):
        self.model = model
        self._complete = complete or llm_client.complete_with_document

    def extract(self, document_base64: str, file_name: str = "") -> DocumentExtraction:
        logger.info(f"Processing document: {file_name or '<unnamed>'}, base64 length: {len(document_base64)}")
        reply = self._complete(
            document_base64,
            file_name,
            SYSTEM_PROMPT,
            USER_PROMPT,
            model=self.model,
        )
        result = parse_model_reply(reply)
        return self.to_document_extraction(result, page_count=count_pdf_pages(document_base64))

    @staticmethod
    def to_document_extraction(result: ReplyExtraction, page_count: Optional[int] = None) -> DocumentExtraction:
        model = result.model
        notes = []
        if model is not None:
            notes = model.notes or model.qualityNotes or []
        annotations = [TextAnnotation(content=n, x=math.nan, y=math.nan) for n in notes if n]

        confidence, low_count = overall_confidence(result.points, result.stated_confidence)
        drawing_scale = model.drawingScale if model is not None else None
        metadata = {
            "pageCount": page_count,
            "hasCoordinateGrid": bool(model is not None and model.gridReference is not None),
            "hasLevelAnnotations": bool(result.levels),
            "estimatedScale": str(drawing_scale) if drawing_scale is not None else None,
            "contourElevations": list(model.contourElevations or []) if model is not None else [],
            "overallConfidence": confidence,
            "lowConfidenceCount": low_count,
            "extractionSource": result.source,
        }

        logger.info(
            f"Extracted ({result.source}): {len(result.points)} points, "
            f"{len(result.levels)} levels, confidence {confidence}"
        )
        raw = RawExtraction(
            points=list(result.points),
            annotations=annotations,
            polylines=[],
            layers=[],
            source="document",
        )
        return DocumentExtraction(
            raw=raw,
            metadata=metadata,
            extracted_levels=[lv.to_dict() for lv in result.levels],
            raw_extraction=result.raw,
            source=result.source,
        )
