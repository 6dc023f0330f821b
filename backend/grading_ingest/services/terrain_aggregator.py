"""
Terrain statistics over classified points.

Bounds always cover every point (NGL, design and unknown). Elevation statistics
come from NGL points only and skip elevations that are missing, non-finite, or
exactly 0.0 while the policy treats zero as "not set".
"""
import math
import logging
from typing import Optional

from grading_ingest.models.drawing import (
    Bounds,
    Point,
    PointKind,
    TerrainAnalysis,
    is_valid_elevation,
)

logger = logging.getLogger("grading-terrain")


def compute_bounds(points: list[Point]) -> Bounds:
    """Plan and elevation extents of all points. Empty input gives all-zero bounds."""
    if not points:
        return Bounds()

    xs = [p.x for p in points]
    ys = [p.y for p in points]
    zs = [p.z for p in points if p.z is not None and math.isfinite(p.z)]

    return Bounds(
        min_x=min(xs),
        max_x=max(xs),
        min_y=min(ys),
        max_y=max(ys),
        min_z=min(zs) if zs else 0.0,
        max_z=max(zs) if zs else 0.0,
    )


def analyze_terrain(
    points: list[Point],
    bounds: Bounds,
    zero_is_unset: bool = True,
) -> Optional[TerrainAnalysis]:
    """
    Elevation summary of the existing ground.

    Returns None when no NGL point carries a usable elevation; callers must read
    that as "no terrain data", not as a site at elevation zero.

    point_count is the number of NGL-classified points, including those whose
    elevation was filtered out. estimated_area is the plan footprint of the
    bounding box over all points, not a polygon area.
    """
    ngl_points = [p for p in points if p.kind == PointKind.NGL]
    elevations = [p.z for p in ngl_points if is_valid_elevation(p.z, zero_is_unset)]

    if not elevations:
        logger.info(f"No valid NGL elevations among {len(ngl_points)} NGL points — terrain analysis skipped")
        return None

    min_z = min(elevations)
    max_z = max(elevations)
    return TerrainAnalysis(
        min_elevation=min_z,
        max_elevation=max_z,
        avg_elevation=sum(elevations) / len(elevations),
        elevation_range=max_z - min_z,
        point_count=len(ngl_points),
        estimated_area=bounds.width * bounds.depth,
    )
