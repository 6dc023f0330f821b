"""
Point classification: existing ground (NGL) vs design grade (FGL).

Cascade per point, first match wins:
  1. explicit kind assigned by the source (e.g. the document extractor's "type")
  2. layer name keywords (case-insensitive substring)
  3. keywords in any text annotation inside the proximity box around the point
  4. unknown

Then, once over the whole set: if nothing ended up NGL or design but points
exist, every point is treated as NGL. A drawing with points and no usable
labelling is assumed to be a plain survey import.

Keyword sets, radius and tie-break live in ClassificationPolicy so regional
naming conventions can be configured without touching the cascade.
"""
import math
import re
import logging
from dataclasses import dataclass
from typing import Optional

from grading_ingest import config
from grading_ingest.models.drawing import Point, PointArena, PointKind, TextAnnotation

logger = logging.getLogger("grading-classifier")

# "NGL: 580.50", "NGL=580.5", "ngl 580" / "FGL=581.20", "DL 581", "Design: 581.2"
_NGL_LABEL = re.compile(r'ngl[:\s=]*(\d+\.?\d*)', re.IGNORECASE)
_DESIGN_LABEL = re.compile(r'(fgl|dl|design)[:\s=]*(\d+\.?\d*)', re.IGNORECASE)


@dataclass(frozen=True)
class ClassificationPolicy:
    ngl_keywords: tuple = config.NGL_KEYWORDS
    design_keywords: tuple = config.DESIGN_KEYWORDS
    proximity_radius: float = 5.0
    # NGL keywords are checked first, so a name matching both sets is existing ground
    prefer_existing_ground: bool = True
    zero_elevation_is_unset: bool = True
    enrich_from_text_labels: bool = True

    @classmethod
    def from_env(cls) -> "ClassificationPolicy":
        return cls(
            proximity_radius=config.CLASSIFIER_PROXIMITY_RADIUS,
            zero_elevation_is_unset=config.CLASSIFIER_ZERO_IS_UNSET,
            enrich_from_text_labels=config.CLASSIFIER_ENRICH_TEXT_LABELS,
        )

    def ordered_sets(self) -> tuple:
        ngl = (PointKind.NGL, self.ngl_keywords)
        design = (PointKind.DESIGN, self.design_keywords)
        return (ngl, design) if self.prefer_existing_ground else (design, ngl)

    def match(self, text: Optional[str]) -> Optional[PointKind]:
        """Kind whose keyword set matches text, honouring the tie-break order."""
        if not text:
            return None
        lowered = text.lower()
        for kind, keywords in self.ordered_sets():
            if any(kw in lowered for kw in keywords):
                return kind
        return None


class PointClassifier:
    def __init__(self, policy: Optional[ClassificationPolicy] = None):
        self.policy = policy or ClassificationPolicy()

    def _nearby(self, point: Point, annotations: list[TextAnnotation]) -> list[TextAnnotation]:
        r = self.policy.proximity_radius
        # Per-axis box, not Euclidean. NaN coordinates never compare as near.
        return [
            a for a in annotations
            if abs(a.x - point.x) < r and abs(a.y - point.y) < r
        ]

    def classify_point(self, point: Point, annotations: list[TextAnnotation]) -> PointKind:
        if point.kind != PointKind.UNKNOWN:
            return point.kind

        by_layer = self.policy.match(point.layer)
        if by_layer is not None:
            return by_layer

        nearby = self._nearby(point, annotations)
        if nearby:
            matched = {self.policy.match(a.content) for a in nearby}
            for kind, _ in self.policy.ordered_sets():
                if kind in matched:
                    return kind

        return PointKind.UNKNOWN

    def cascade(self, points: list[Point], annotations: list[TextAnnotation]) -> list[Point]:
        """Run the per-point cascade. Returns new Point objects; inputs are untouched."""
        return [p.with_kind(self.classify_point(p, annotations)) for p in points]

    @staticmethod
    def has_labelled(points: list[Point]) -> bool:
        return any(p.kind in (PointKind.NGL, PointKind.DESIGN) for p in points)

    def apply_last_resort(self, points: list[Point]) -> list[Point]:
        if not points or self.has_labelled(points):
            return points
        logger.info(f"No NGL/design labelling recovered — treating all {len(points)} points as NGL")
        return [p.with_kind(PointKind.NGL) for p in points]

    def classify(self, points: list[Point], annotations: list[TextAnnotation]) -> list[Point]:
        """Full classification: cascade over every point, then the last-resort policy."""
        return self.apply_last_resort(self.cascade(points, annotations))


def points_from_text_labels(annotations: list[TextAnnotation], arena: PointArena) -> list[Point]:
    """
    Derive spot levels from annotations such as "NGL: 580.50" or "FGL=581.20".

    Each match becomes a labelled point at the annotation's insertion point.
    Points are appended to the given arena so ids stay unique within the parse.
    """
    derived: list[Point] = []
    ngl_n = design_n = 0
    for text in annotations:
        if not (math.isfinite(text.x) and math.isfinite(text.y)):
            continue
        ngl_match = _NGL_LABEL.search(text.content)
        if ngl_match:
            ngl_n += 1
            derived.append(arena.add(
                text.x, text.y, float(ngl_match.group(1)),
                point_id=f"NGL_{ngl_n}", layer="NGL", label=text.content, kind=PointKind.NGL,
            ))
        design_match = _DESIGN_LABEL.search(text.content)
        if design_match:
            design_n += 1
            derived.append(arena.add(
                text.x, text.y, float(design_match.group(2)),
                point_id=f"FGL_{design_n}", layer="FGL", label=text.content, kind=PointKind.DESIGN,
            ))
    return derived
