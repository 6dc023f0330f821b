"""
Permissive ASCII DXF (tag/value interchange) entity parser for site drawings.

Handles messy real-world survey exports:
- Streams with no ENTITIES section (empty result, not an error)
- Truncated files with no ENDSEC / EOF (everything fully read is kept)
- Non-numeric coordinate values (kept as NaN and filtered downstream)
- MTEXT inline formatting codes ({\\fArial;...}, \\P paragraph breaks)

Only the entities that carry survey information are read: POINT, TEXT, MTEXT,
LWPOLYLINE and LINE. Everything else is stepped over. Binary DWG files are
rejected up front with a conversion hint; no attempt is made to read them.
"""
import math
import re
import logging
from typing import Optional

from grading_ingest.config import (
    BINARY_FORMAT_ERROR,
    BINARY_FORMAT_SUGGESTION,
    DXF_ENTITY_MARKERS,
)
from grading_ingest.models.drawing import (
    PointArena,
    Polyline,
    RawExtraction,
    TextAnnotation,
)

logger = logging.getLogger("grading-dxf-parser")

_LINE_SPLIT = re.compile(r"\r?\n")
_SECTION_END_MARKERS = ("ENDSEC", "EOF")


class UnsupportedDrawingFormatError(Exception):
    """Raised for binary CAD containers that must be converted to ASCII DXF first."""

    def __init__(self, file_type: str):
        super().__init__(BINARY_FORMAT_ERROR)
        self.file_type = file_type
        self.error = BINARY_FORMAT_ERROR
        self.suggestion = BINARY_FORMAT_SUGGESTION


def ensure_text_format(file_type: Optional[str]) -> None:
    """Reject binary DWG uploads before any parsing happens."""
    if (file_type or "dxf").strip().lower() == "dwg":
        raise UnsupportedDrawingFormatError("dwg")


# ── Value coercion ────────────────────────────────────────────────────────────

def _to_float(value: str) -> float:
    """Parse a coordinate value; anything non-numeric becomes NaN."""
    try:
        return float(value)
    except ValueError:
        return math.nan


def _to_int(value: str) -> Optional[int]:
    """Parse a group code or flag; None when the line is not an integer."""
    value = value.strip()
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return int(float(value))
    except (ValueError, OverflowError):
        return None


def _finite_or_none(value: float) -> Optional[float]:
    return value if math.isfinite(value) else None


def _clean_mtext(raw: str) -> str:
    """Strip MTEXT inline formatting: {\\fArial;...}, \\P paragraph breaks, etc."""
    cleaned = re.sub(r'\\P', '\n', raw)  # paragraph break
    cleaned = re.sub(r'\\[fFHCcTQWAp][^;\\{}]*;', '', cleaned)
    cleaned = re.sub(r'\\[A-Za-z~]', '', cleaned)
    cleaned = re.sub(r'[{}]', '', cleaned)
    return cleaned.strip()


def _clean_text(raw: str) -> str:
    """Replace TEXT control codes (%%d degree, %%p plus/minus, %%c diameter)."""
    cleaned = re.sub(r'%%[dD]', '°', raw)
    cleaned = re.sub(r'%%[pP]', '±', cleaned)
    cleaned = re.sub(r'%%[cC]', 'Ø', cleaned)
    cleaned = re.sub(r'%%[oOuU]', '', cleaned)
    return cleaned.strip()


# ── Stream scanning ───────────────────────────────────────────────────────────

def _find_entities_section(lines: list[str]) -> int:
    """Index of the first line mentioning ENTITIES, or len(lines) if there is none."""
    for idx, line in enumerate(lines):
        if "ENTITIES" in line:
            return idx
    return len(lines)


def _read_entity_tags(lines: list[str], i: int) -> tuple[list[tuple[int, str]], int]:
    """
    Collect (group_code, value) pairs starting at lines[i] until the next
    bare "0" code line (the next entity marker) or end of input.

    Returns the pairs and the index of the line where reading stopped.
    A code line with no value after it (truncated stream) is dropped.
    """
    tags: list[tuple[int, str]] = []
    n = len(lines)
    while i < n and lines[i].strip() != "0":
        code = _to_int(lines[i])
        i += 1
        if i >= n:
            break
        value = lines[i].strip()
        i += 1
        if code is not None:
            tags.append((code, value))
    return tags, i


# ── Main parser class ─────────────────────────────────────────────────────────

class TagValueParser:
    """
    Single-pass parser from ASCII DXF text to a RawExtraction.

    A fresh instance (or a fresh parse() call) is used per request; the parser
    holds no state between calls.
    """

    def parse(self, content: str) -> RawExtraction:
        lines = _LINE_SPLIT.split(content or "")
        arena = PointArena(prefix="P")
        annotations: list[TextAnnotation] = []
        polylines: list[Polyline] = []
        layers: dict[str, None] = {}  # insertion-ordered set
        skipped_points = 0
        terminated = False

        i = _find_entities_section(lines)
        if i >= len(lines):
            logger.info("No ENTITIES section found — returning empty extraction")
            return RawExtraction(source="dxf")

        while i < len(lines):
            marker = lines[i].strip()

            if marker in DXF_ENTITY_MARKERS:
                tags, i = _read_entity_tags(lines, i + 1)
                for code, value in tags:
                    if code == 8:
                        layers.setdefault(value, None)

                if marker == "POINT":
                    if not self._add_point(tags, arena):
                        skipped_points += 1
                elif marker in ("TEXT", "MTEXT"):
                    annotation = self._build_annotation(marker, tags)
                    if annotation is not None:
                        annotations.append(annotation)
                elif marker == "LWPOLYLINE":
                    polyline = self._build_lwpolyline(tags)
                    if polyline is not None:
                        polylines.append(polyline)
                else:
                    polylines.append(self._build_line(tags))
                continue

            if marker in _SECTION_END_MARKERS:
                terminated = True
                break

            i += 1

        if not terminated:
            logger.warning("DXF stream ended without ENDSEC/EOF — keeping entities read so far")
        if skipped_points:
            logger.warning(f"Skipped {skipped_points} POINT entities with non-numeric X/Y")

        logger.info(
            f"Parsed DXF: {len(arena)} points, {len(annotations)} texts, "
            f"{len(polylines)} polylines, {len(layers)} layers"
        )
        return RawExtraction(
            points=list(arena.points),
            annotations=annotations,
            polylines=polylines,
            layers=list(layers),
            source="dxf",
        )

    # ── Entity builders ──────────────────────────────────────────────────────

    @staticmethod
    def _add_point(tags: list[tuple[int, str]], arena: PointArena) -> bool:
        x = y = math.nan
        z: Optional[float] = None
        layer: Optional[str] = None
        for code, value in tags:
            if code == 8:
                layer = value
            elif code == 10:
                x = _to_float(value)
            elif code == 20:
                y = _to_float(value)
            elif code == 30:
                z = _finite_or_none(_to_float(value))

        if not (math.isfinite(x) and math.isfinite(y)):
            return False
        arena.add(x, y, z, layer=layer)
        return True

    @staticmethod
    def _build_annotation(marker: str, tags: list[tuple[int, str]]) -> Optional[TextAnnotation]:
        content = ""
        chunks: list[str] = []  # MTEXT group 3: leading 250-char chunks
        x = y = 0.0
        layer: Optional[str] = None
        for code, value in tags:
            if code == 1:
                content = value
            elif code == 3:
                chunks.append(value)
            elif code == 8:
                layer = value
            elif code == 10:
                x = _to_float(value)
            elif code == 20:
                y = _to_float(value)

        if marker == "MTEXT":
            content = _clean_mtext("".join(chunks) + content)
        else:
            content = _clean_text(content)
        content = content.strip()
        if not content:
            return None
        return TextAnnotation(content=content, x=x, y=y, layer=layer)

    @staticmethod
    def _build_lwpolyline(tags: list[tuple[int, str]]) -> Optional[Polyline]:
        layer = ""
        closed = False
        expected_vertices: Optional[int] = None
        vertices: list[tuple[float, float, float]] = []
        current_x = 0.0
        elevation = 0.0
        for code, value in tags:
            if code == 8:
                layer = value
            elif code == 70:
                flags = _to_int(value)
                closed = bool(flags is not None and flags & 1)
            elif code == 90:
                expected_vertices = _to_int(value)
            elif code == 10:
                current_x = _to_float(value)
            elif code == 20:
                vertices.append((current_x, _to_float(value), elevation))
            elif code == 38:
                elevation = _to_float(value)

        if not vertices:
            return None
        if expected_vertices is not None and expected_vertices != len(vertices):
            logger.debug(
                f"LWPOLYLINE on layer '{layer}' declares {expected_vertices} vertices, read {len(vertices)}"
            )
        return Polyline(vertices=vertices, layer=layer, closed=closed)

    @staticmethod
    def _build_line(tags: list[tuple[int, str]]) -> Polyline:
        start = [0.0, 0.0, 0.0]
        end = [0.0, 0.0, 0.0]
        layer = ""
        targets = {
            10: (start, 0), 20: (start, 1), 30: (start, 2),
            11: (end, 0), 21: (end, 1), 31: (end, 2),
        }
        for code, value in tags:
            if code == 8:
                layer = value
            elif code in targets:
                vertex, axis = targets[code]
                vertex[axis] = _to_float(value)
        return Polyline(vertices=[tuple(start), tuple(end)], layer=layer, closed=False)


def parse_tag_value_stream(content: str) -> RawExtraction:
    """Parse ASCII DXF text into points, annotations, polylines and layers."""
    return TagValueParser().parse(content)
