"""
Ingestion pipeline: RawExtraction → ParsedDrawing.

Both front-ends (tag-value parser, document extractor) feed the same stages:
classification cascade → optional text-label enrichment → last-resort
policy → bounds → terrain statistics → assembly.
"""
import logging
from typing import Optional

from grading_ingest.models.drawing import ParsedDrawing, PointArena, RawExtraction
from grading_ingest.services.document_extractor import DocumentExtraction, DocumentExtractor
from grading_ingest.services.dxf_tag_parser import ensure_text_format, parse_tag_value_stream
from grading_ingest.services.point_classifier import (
    ClassificationPolicy,
    PointClassifier,
    points_from_text_labels,
)
from grading_ingest.services.result_assembler import assemble_drawing
from grading_ingest.services.terrain_aggregator import analyze_terrain, compute_bounds

logger = logging.getLogger("grading-pipeline")


def build_drawing(raw: RawExtraction, policy: Optional[ClassificationPolicy] = None) -> ParsedDrawing:
    policy = policy or ClassificationPolicy.from_env()
    classifier = PointClassifier(policy)
    if raw.is_empty:
        logger.info(f"No entities recovered from {raw.source} input; returning an empty drawing")

    points = classifier.cascade(raw.points, raw.annotations)

    # Spot-level text only exists as geometry-anchored annotations in DXF input
    if raw.source == "dxf" and policy.enrich_from_text_labels and not classifier.has_labelled(points):
        arena = PointArena(prefix="P", existing=points)
        derived = points_from_text_labels(raw.annotations, arena)
        if derived:
            logger.info(f"Derived {len(derived)} labelled points from text annotations")
            points = list(arena.points)

    points = classifier.apply_last_resort(points)

    bounds = compute_bounds(points)
    terrain = analyze_terrain(points, bounds, zero_is_unset=policy.zero_elevation_is_unset)
    return assemble_drawing(points, raw.polylines, raw.annotations, raw.layers, bounds, terrain)


def ingest_text_drawing(
    content: str,
    file_type: Optional[str] = "dxf",
    policy: Optional[ClassificationPolicy] = None,
) -> ParsedDrawing:
    """Raises UnsupportedDrawingFormatError for binary drawings before any parsing."""
    ensure_text_format(file_type)
    return build_drawing(parse_tag_value_stream(content), policy)


def ingest_document(
    document_base64: str,
    file_name: str = "",
    policy: Optional[ClassificationPolicy] = None,
    extractor: Optional[DocumentExtractor] = None,
) -> tuple[ParsedDrawing, DocumentExtraction]:
    extraction = (extractor or DocumentExtractor()).extract(document_base64, file_name)
    return build_drawing(extraction.raw, policy), extraction
