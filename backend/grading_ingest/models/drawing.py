"""
Canonical drawing model shared by both ingestion front-ends.

Both the tag-value (ASCII DXF) parser and the document extractor emit a
RawExtraction; the ingestion pipeline turns any RawExtraction into a
ParsedDrawing. Nothing here is persisted; every object lives for one request.

to_dict() methods produce the camelCase JSON shape returned by the API.
Non-finite floats are serialized as null.
"""
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional


class PointKind(str, Enum):
    NGL = "ngl"
    DESIGN = "design"
    UNKNOWN = "unknown"


def _num(value: Optional[float]) -> Optional[float]:
    if value is None or not math.isfinite(value):
        return None
    return value


def is_valid_elevation(z: Optional[float], zero_is_unset: bool = True) -> bool:
    """True when z carries a usable elevation."""
    if z is None or not math.isfinite(z):
        return False
    if zero_is_unset and z == 0.0:
        return False
    return True


# ── Entities ──────────────────────────────────────────────────────────────────

@dataclass
class Point:
    id: str
    x: float
    y: float
    z: Optional[float] = None  # None: elevation missing or unparseable
    layer: Optional[str] = None
    label: Optional[str] = None
    kind: PointKind = PointKind.UNKNOWN
    confidence: Optional[str] = None  # "high" | "medium" | "low" (document points)
    confidence_reason: Optional[str] = None

    def with_kind(self, kind: PointKind) -> "Point":
        return replace(self, kind=kind)

    def to_dict(self) -> dict:
        out = {
            "id": self.id,
            "x": _num(self.x),
            "y": _num(self.y),
            "z": _num(self.z),
            "layer": self.layer,
            "label": self.label,
            "kind": self.kind.value,
        }
        if self.confidence is not None:
            out["confidence"] = self.confidence
            out["confidenceReason"] = self.confidence_reason
        return out


@dataclass
class TextAnnotation:
    content: str
    x: float = 0.0
    y: float = 0.0
    layer: Optional[str] = None

    def to_dict(self) -> dict:
        return {"content": self.content, "x": _num(self.x), "y": _num(self.y), "layer": self.layer}


@dataclass
class Polyline:
    vertices: list  # [(x, y, z), ...]
    layer: str = ""
    closed: bool = False

    def to_dict(self) -> dict:
        return {
            "vertices": [{"x": _num(x), "y": _num(y), "z": _num(z)} for x, y, z in self.vertices],
            "layer": self.layer,
            "closed": self.closed,
        }


@dataclass
class Bounds:
    min_x: float = 0.0
    max_x: float = 0.0
    min_y: float = 0.0
    max_y: float = 0.0
    min_z: float = 0.0
    max_z: float = 0.0

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def depth(self) -> float:
        return self.max_y - self.min_y

    def to_dict(self) -> dict:
        return {
            "minX": _num(self.min_x),
            "maxX": _num(self.max_x),
            "minY": _num(self.min_y),
            "maxY": _num(self.max_y),
            "minZ": _num(self.min_z),
            "maxZ": _num(self.max_z),
        }


@dataclass
class TerrainAnalysis:
    min_elevation: float
    max_elevation: float
    avg_elevation: float
    elevation_range: float
    point_count: int
    estimated_area: float

    def to_dict(self) -> dict:
        return {
            "minElevation": _num(self.min_elevation),
            "maxElevation": _num(self.max_elevation),
            "avgElevation": _num(self.avg_elevation),
            "elevationRange": _num(self.elevation_range),
            "pointCount": self.point_count,
            "estimatedArea": _num(self.estimated_area),
        }


# ── Point arena ───────────────────────────────────────────────────────────────

class PointArena:
    """
    Owned collection that points are appended to during one extraction.

    Allocates ids and guarantees they are unique within the arena. A preferred
    id that is already taken gets a numeric suffix ("P1" → "P1-2") instead of
    being reused, so uniqueness never depends on the order extraction passes run.
    """

    def __init__(self, prefix: str = "P", existing: Optional[list] = None):
        self.prefix = prefix
        self.points: list[Point] = list(existing or [])
        self._ids: set[str] = {p.id for p in self.points}

    def __len__(self) -> int:
        return len(self.points)

    def __iter__(self):
        return iter(self.points)

    def _unique_id(self, preferred: Optional[str]) -> str:
        base = preferred or f"{self.prefix}{len(self.points) + 1}"
        candidate = base
        n = 2
        while candidate in self._ids:
            candidate = f"{base}-{n}"
            n += 1
        return candidate

    def add(
        self,
        x: float,
        y: float,
        z: Optional[float] = None,
        *,
        point_id: Optional[str] = None,
        layer: Optional[str] = None,
        label: Optional[str] = None,
        kind: PointKind = PointKind.UNKNOWN,
        confidence: Optional[str] = None,
        confidence_reason: Optional[str] = None,
    ) -> Point:
        point = Point(
            id=self._unique_id(point_id),
            x=x,
            y=y,
            z=z,
            layer=layer,
            label=label,
            kind=kind,
            confidence=confidence,
            confidence_reason=confidence_reason,
        )
        self._ids.add(point.id)
        self.points.append(point)
        return point


# ── Aggregates ────────────────────────────────────────────────────────────────

@dataclass
class RawExtraction:
    """What an ingestion front-end hands to the shared pipeline."""
    points: list = field(default_factory=list)
    annotations: list = field(default_factory=list)
    polylines: list = field(default_factory=list)
    layers: list = field(default_factory=list)
    source: str = "dxf"  # "dxf" | "document"

    @property
    def is_empty(self) -> bool:
        return not (self.points or self.annotations or self.polylines)


@dataclass
class ParsedDrawing:
    points: list
    polylines: list
    annotations: list
    layers: list
    bounds: Bounds
    terrain: Optional[TerrainAnalysis] = None

    def points_of(self, kind: PointKind) -> list:
        return [p for p in self.points if p.kind == kind]

    def to_dict(self) -> dict:
        return {
            "points": [p.to_dict() for p in self.points],
            "nglPoints": [p.to_dict() for p in self.points_of(PointKind.NGL)],
            "designPoints": [p.to_dict() for p in self.points_of(PointKind.DESIGN)],
            "polylines": [pl.to_dict() for pl in self.polylines],
            "annotations": [a.to_dict() for a in self.annotations],
            "layers": list(self.layers),
            "bounds": self.bounds.to_dict(),
            "terrain": self.terrain.to_dict() if self.terrain else None,
        }
