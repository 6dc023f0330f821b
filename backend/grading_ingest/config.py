"""
Ingestion configuration — single source of truth for keyword sets,
thresholds, LLM routing and service defaults.

Import from here in parsers, classifiers and routes rather than hardcoding values.
Every value can be overridden through an environment variable (or a .env file
loaded by main.py).
"""
from __future__ import annotations

import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


SERVICE_NAME: str = "grading-ingest"
SERVICE_VERSION: str = "1.0.0"


# ── Logging ────────────────────────────────────────────────────────────────────

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
# "json" for production log shipping, "text" for local development
LOG_FORMAT: str = os.getenv("LOG_FORMAT", "json").lower()


# ── HTTP ───────────────────────────────────────────────────────────────────────

_cors_default = "http://localhost:3000,http://localhost:8000"
CORS_ORIGINS: list[str] = [
    o.strip() for o in os.getenv("CORS_ORIGINS", _cors_default).split(",") if o.strip()
]


# ── LLM routing ────────────────────────────────────────────────────────────────
# Document understanding needs a vision-capable model. Any litellm model id works.

LLM_VISION_MODEL: str = os.getenv("LLM_VISION_MODEL", "gemini/gemini-1.5-flash")
LLM_MAX_TOKENS: int = int(_env_float("LLM_MAX_TOKENS", 4096))
LLM_TEMPERATURE: float = _env_float("LLM_TEMPERATURE", 0.1)


# ── Point classification ───────────────────────────────────────────────────────
# Order matters: the NGL set is checked before the design set, so a layer that
# matches both ("EG-FINISH") is treated as existing ground.

NGL_KEYWORDS: tuple[str, ...] = ("ngl", "natural", "existing", "eg", "ground", "topo", "survey")
DESIGN_KEYWORDS: tuple[str, ...] = ("fgl", "design", "dl", "proposed", "finish", "grade", "fg")

# Annotation search box half-width in drawing units, applied per axis
CLASSIFIER_PROXIMITY_RADIUS: float = _env_float("CLASSIFIER_PROXIMITY_RADIUS", 5.0)

# Treat an elevation of exactly 0.0 as "not set" when computing terrain statistics
CLASSIFIER_ZERO_IS_UNSET: bool = _env_bool("CLASSIFIER_ZERO_IS_UNSET", True)

# Derive labelled spot levels from "NGL: 580.50" style annotations when
# neither layers nor nearby text labelled any point
CLASSIFIER_ENRICH_TEXT_LABELS: bool = _env_bool("CLASSIFIER_ENRICH_TEXT_LABELS", True)


# ── Tag-value (ASCII DXF) format ──────────────────────────────────────────────

DXF_ENTITY_MARKERS: frozenset[str] = frozenset({"POINT", "TEXT", "MTEXT", "LWPOLYLINE", "LINE"})

BINARY_FORMAT_ERROR: str = (
    "DWG files require conversion to DXF format. Please save as DXF (ASCII) in AutoCAD."
)
BINARY_FORMAT_SUGGESTION: str = "Use AutoCAD command: SAVEAS → DXF → 2018 ASCII"


# ── Document extraction ───────────────────────────────────────────────────────

# Layers assigned to document points that came back with an explicit type
DOCUMENT_NGL_LAYER: str = "PDF-NGL"
DOCUMENT_DESIGN_LAYER: str = "PDF-DESIGN"

# Spacing of placeholder coordinates given to points recovered from prose
PLACEHOLDER_SPACING: float = 10.0

# Share of low-confidence points above which overall confidence is downgraded
LOW_CONFIDENCE_RATIO_LOW: float = 0.3
LOW_CONFIDENCE_RATIO_MEDIUM: float = 0.1
