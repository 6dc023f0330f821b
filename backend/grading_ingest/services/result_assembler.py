"""
Result assembly: merge classified points, polylines, annotations, layers,
bounds and terrain statistics into the response payload. Grouping and
counting only; no geometry is computed here.
"""
from typing import Optional

from grading_ingest.models.drawing import (
    Bounds,
    ParsedDrawing,
    Point,
    PointKind,
    TerrainAnalysis,
)


def _distinct_layers(declared: list[str], points: list[Point]) -> list[str]:
    seen: dict[str, None] = dict.fromkeys(declared)
    for p in points:
        if p.layer:
            seen.setdefault(p.layer, None)
    return list(seen)


def assemble_drawing(
    points: list[Point],
    polylines: list,
    annotations: list,
    layers: list[str],
    bounds: Bounds,
    terrain: Optional[TerrainAnalysis],
) -> ParsedDrawing:
    return ParsedDrawing(
        points=list(points),
        polylines=list(polylines),
        annotations=list(annotations),
        layers=_distinct_layers(layers, points),
        bounds=bounds,
        terrain=terrain,
    )


def build_summary(drawing: ParsedDrawing) -> dict:
    counts = {kind: 0 for kind in PointKind}
    for p in drawing.points:
        counts[p.kind] += 1
    return {
        "totalPoints": len(drawing.points),
        "nglPointCount": counts[PointKind.NGL],
        "designPointCount": counts[PointKind.DESIGN],
        "unknownPointCount": counts[PointKind.UNKNOWN],
        "polylineCount": len(drawing.polylines),
        "textCount": len(drawing.annotations),
        "layerCount": len(drawing.layers),
        "layers": list(drawing.layers),
    }


def build_response(
    drawing: ParsedDrawing,
    extra_summary: Optional[dict] = None,
    metadata: Optional[dict] = None,
    raw_extraction: Optional[dict] = None,
) -> dict:
    """
    Shared response envelope for both ingestion endpoints, so downstream
    consumers never branch on where a drawing came from.
    """
    summary = build_summary(drawing)
    if extra_summary:
        summary.update(extra_summary)

    response = {
        "success": True,
        "data": drawing.to_dict(),
        "terrainAnalysis": drawing.terrain.to_dict() if drawing.terrain else None,
        "summary": summary,
    }
    if metadata is not None:
        response["metadata"] = metadata
    if raw_extraction is not None:
        response["rawExtraction"] = raw_extraction
    return response
