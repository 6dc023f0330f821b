"""
test_document_extractor.py — Unit tests for the document-understanding extractor.

Tests cover:
  - Balanced JSON block detection (braces inside strings, prose around the block)
  - Structured replies: points[], levelTable rows, type mapping, notes
  - Fallback to text scanning on missing / invalid / schema-mismatched JSON
  - Non-finite numbers rejected; unknown keys echoed as strict JSON
  - NGL/FGL independent matches and "<id>: NGL=…, FGL=…" rows
  - Empty extraction, confidence metadata, PDF page count
  - DocumentExtractor.extract with an injected completion function

The vision model is never called; replies are canned strings.
"""

import base64
import json
import math

import fitz
import pytest

from grading_ingest.models.drawing import PointKind
from grading_ingest.services.ingestion_pipeline import build_drawing
from grading_ingest.services.document_extractor import (
    DocumentExtractor,
    EmptyExtraction,
    RegexFallbackExtraction,
    StructuredExtraction,
    count_pdf_pages,
    extract_levels_from_text,
    find_first_json_object,
    overall_confidence,
    parse_model_reply,
)


STRUCTURED_REPLY = """Here is the extracted data:
```json
{
  "points": [
    {"id": "P1", "x": 100.0, "y": 200.0, "z": 580.5, "type": "ngl", "label": "SP1 {existing}", "confidence": "high", "confidenceReason": "Clearly labeled"},
    {"id": "P2", "x": 100.0, "y": 200.0, "z": 581.2, "type": "FGL", "confidence": "medium"}
  ],
  "levelTable": [
    {"pointId": "T1", "ngl": 579.0, "fgl": 580.0, "cutFill": 1.0, "confidence": "high"},
    {"pointId": 7, "ngl": 578.4, "confidence": "low"}
  ],
  "contourElevations": [579, 580, 581],
  "gridReference": {"originX": 0, "originY": 0, "spacing": 10},
  "drawingScale": "1:500",
  "notes": ["Levels in metres AHD"],
  "overallConfidence": "high"
}
```
Let me know if you need anything else."""


def _pdf_base64(pages=2):
    doc = fitz.open()
    for _ in range(pages):
        doc.new_page()
    data = doc.tobytes()
    doc.close()
    return base64.b64encode(data).decode("ascii")


# ===========================================================================
# Class 1: JSON block detection
# ===========================================================================

class TestFindJsonObject:

    def test_block_inside_prose(self):
        assert find_first_json_object('noise {"a": 1} trailing') == '{"a": 1}'

    def test_nested_and_string_braces(self):
        text = 'x {"a": {"b": "}{"}, "c": "\\"}"} y {"other": 2}'
        block = find_first_json_object(text)
        assert json.loads(block) == {"a": {"b": "}{"}, "c": '"}'}

    def test_no_block(self):
        assert find_first_json_object("NGL: 580.50 only prose") is None

    def test_unbalanced_block(self):
        assert find_first_json_object('{"a": 1') is None


# ===========================================================================
# Class 2: Structured replies
# ===========================================================================

class TestStructuredReply:

    @pytest.fixture(scope="class")
    def result(self):
        return parse_model_reply(STRUCTURED_REPLY)

    def test_variant(self, result):
        assert isinstance(result, StructuredExtraction)
        assert result.source == "structured"

    def test_points_and_level_rows(self, result):
        ids = [p.id for p in result.points]
        assert ids == ["P1", "P2", "T1_NGL", "T1_FGL", "7_NGL"]

    def test_type_mapping_and_layers(self, result):
        by_id = {p.id: p for p in result.points}
        assert by_id["P1"].kind == PointKind.NGL
        assert by_id["P1"].layer == "PDF-NGL"
        assert by_id["P2"].kind == PointKind.DESIGN
        assert by_id["P2"].layer == "PDF-DESIGN"
        assert by_id["T1_FGL"].kind == PointKind.DESIGN

    def test_confidence_carried(self, result):
        by_id = {p.id: p for p in result.points}
        assert by_id["P1"].confidence == "high"
        assert by_id["P1"].confidence_reason == "Clearly labeled"
        assert by_id["P2"].confidence_reason == "No reason provided"
        assert by_id["7_NGL"].confidence == "low"

    def test_level_rows_without_coordinates_get_placeholders(self, result):
        by_id = {p.id: p for p in result.points}
        assert (by_id["T1_NGL"].x, by_id["T1_NGL"].y) == (10.0, 10.0)
        assert (by_id["T1_FGL"].x, by_id["T1_FGL"].y) == (10.0, 10.0)
        assert (by_id["7_NGL"].x, by_id["7_NGL"].y) == (20.0, 20.0)

    def test_metadata(self, result):
        extraction = DocumentExtractor.to_document_extraction(result, page_count=None)
        meta = extraction.metadata
        assert meta["extractionSource"] == "structured"
        assert meta["hasCoordinateGrid"] is True
        assert meta["hasLevelAnnotations"] is True
        assert meta["estimatedScale"] == "1:500"
        assert meta["contourElevations"] == [579.0, 580.0, 581.0]
        # one low of five points = 20 % → medium
        assert meta["lowConfidenceCount"] == 1
        assert meta["overallConfidence"] == "medium"
        assert meta["pageCount"] is None

    def test_notes_become_unpositioned_annotations(self, result):
        extraction = DocumentExtractor.to_document_extraction(result)
        note = extraction.raw.annotations[0]
        assert [a.content for a in extraction.raw.annotations] == ["Levels in metres AHD"]
        assert math.isnan(note.x) and math.isnan(note.y)
        assert note.to_dict()["x"] is None
        assert extraction.raw.source == "document"

    def test_notes_do_not_classify_points(self):
        """A typeless point without x/y sits at (0, 0); a design-worded note must not label it."""
        reply = json.dumps({
            "points": [{"id": "S1", "z": 12.5, "type": "spot"}],
            "notes": ["Design levels per revision B"],
        })
        extraction = DocumentExtractor.to_document_extraction(parse_model_reply(reply))
        drawing = build_drawing(extraction.raw)
        # stays unknown through the cascade, then the last-resort rule makes it NGL
        assert [(p.id, p.kind) for p in drawing.points] == [("S1", PointKind.NGL)]

    def test_unknown_type_left_for_classifier(self):
        reply = json.dumps({"points": [{"id": "A", "x": 1, "y": 2, "z": 3, "type": "spot"}]})
        result = parse_model_reply(reply)
        assert result.points[0].kind == PointKind.UNKNOWN
        assert result.points[0].layer is None


# ===========================================================================
# Class 3: Text-scan fallback
# ===========================================================================

class TestRegexFallback:

    def test_independent_ngl_and_fgl_values(self):
        result = extract_levels_from_text("NGL: 580.50 near the gate, FGL=581.20 at slab")
        assert isinstance(result, RegexFallbackExtraction)
        assert [(p.kind, p.z) for p in result.points] == [
            (PointKind.NGL, 580.5),
            (PointKind.DESIGN, 581.2),
        ]
        assert all(p.confidence == "low" for p in result.points)
        assert [(p.x, p.y) for p in result.points] == [(10.0, 10.0), (20.0, 20.0)]

    def test_level_rows_share_coordinate(self):
        result = extract_levels_from_text("Table: P1: NGL=580.50, FGL=581.20")
        pair = [p for p in result.points if p.id.startswith("P1_")]
        assert [p.id for p in pair] == ["P1_NGL", "P1_FGL"]
        assert (pair[0].x, pair[0].y) == (pair[1].x, pair[1].y)
        assert all(p.confidence == "medium" for p in pair)
        row = result.raw["levelTable"][0]
        assert row["cutFill"] == pytest.approx(0.7)

    def test_level_rows_also_counted_by_independent_scan(self):
        """Row values are matched by both scans; duplicates are kept with distinct ids."""
        result = extract_levels_from_text("P1: NGL=580.50, FGL=581.20")
        assert len(result.points) == 4
        assert len({p.id for p in result.points}) == 4

    def test_no_json_falls_back(self):
        result = parse_model_reply("I could read NGL = 12.5 and FGL: 13.0 on the drawing.")
        assert isinstance(result, RegexFallbackExtraction)
        assert result.source == "regex_fallback"
        assert len(result.points) == 2

    def test_schema_mismatch_falls_back(self):
        reply = '{"points": "not a list"} NGL: 580.50'
        result = parse_model_reply(reply)
        assert isinstance(result, RegexFallbackExtraction)
        assert result.points[0].z == 580.5

    def test_invalid_json_falls_back(self):
        result = parse_model_reply('{"points": [ {"z": NaN} ]} FGL=581.20')
        assert isinstance(result, RegexFallbackExtraction)

    @pytest.mark.parametrize("bad_x", ["1e999", '"NaN"', '"-inf"'])
    def test_non_finite_coordinates_rejected(self, bad_x):
        """Overflowing literals and NaN strings fail validation instead of reaching the drawing."""
        reply = (
            '{"points": [{"id": "P1", "x": ' + bad_x + ', "y": 5, "z": 580.5, "type": "ngl"},'
            ' {"id": "P2", "x": 1, "y": 2, "z": 581.0, "type": "ngl"}]} FGL=581.20'
        )
        result = parse_model_reply(reply)
        assert isinstance(result, RegexFallbackExtraction)
        assert all(math.isfinite(p.x) and math.isfinite(p.y) for p in result.points)

    def test_non_finite_unknown_keys_echoed_as_null(self):
        """Keys outside the schema pass validation; the echoed dict must still be strict JSON."""
        reply = '{"points": [{"id": "P1", "x": 1, "y": 2, "z": 3, "type": "ngl"}], "extent": [1e999, 2.0]}'
        result = parse_model_reply(reply)
        assert isinstance(result, StructuredExtraction)
        assert result.raw["extent"] == [None, 2.0]
        json.dumps(result.raw, allow_nan=False)

    def test_structured_with_no_points_falls_back(self):
        reply = '{"points": [], "notes": ["NGL: 579.10"]}'
        result = parse_model_reply(reply)
        assert isinstance(result, RegexFallbackExtraction)
        assert result.points[0].z == 579.1

    def test_nothing_recoverable_is_empty(self):
        result = parse_model_reply("The drawing is illegible.")
        assert isinstance(result, EmptyExtraction)
        assert result.points == []
        extraction = DocumentExtractor.to_document_extraction(result)
        assert extraction.metadata["extractionSource"] == "empty"
        assert extraction.metadata["overallConfidence"] == "low"


# ===========================================================================
# Class 4: Confidence and page count
# ===========================================================================

class TestMetadataHelpers:

    def _points(self, *levels):
        result = extract_levels_from_text(" ".join(f"NGL: {i}" for i in range(len(levels))))
        for p, level in zip(result.points, levels):
            p.confidence = level
        return result.points

    def test_no_points_is_low(self):
        assert overall_confidence([], "high") == ("low", 0)

    def test_over_thirty_percent_low(self):
        assert overall_confidence(self._points("low", "low", "high"), "high")[0] == "low"

    def test_over_ten_percent_low_is_medium(self):
        points = self._points("low", "high", "high", "high", "high")
        assert overall_confidence(points, "high") == ("medium", 1)

    def test_stated_confidence_used_when_few_low(self):
        assert overall_confidence(self._points("high", "high"), "medium") == ("medium", 0)
        assert overall_confidence(self._points("high"), None) == ("high", 0)

    def test_pdf_page_count(self):
        assert count_pdf_pages(_pdf_base64(3)) == 3

    def test_pdf_page_count_from_data_url(self):
        assert count_pdf_pages("data:application/pdf;base64," + _pdf_base64(1)) == 1

    def test_non_pdf_has_no_page_count(self):
        png = base64.b64encode(b"\x89PNG\r\n\x1a\n0000").decode("ascii")
        assert count_pdf_pages(png) is None

    def test_garbage_has_no_page_count(self):
        assert count_pdf_pages("%%%not-base64%%%") is None


# ===========================================================================
# Class 5: Extractor end-to-end
# ===========================================================================

class TestDocumentExtractor:

    def test_extract_with_injected_completion(self):
        calls = []

        def fake_complete(document_base64, file_name, system_prompt, user_prompt, model=None):
            calls.append((document_base64, file_name, model))
            return STRUCTURED_REPLY

        extractor = DocumentExtractor(model="test/vision", complete=fake_complete)
        extraction = extractor.extract(_pdf_base64(2), "site.pdf")

        assert len(calls) == 1
        assert calls[0][1:] == ("site.pdf", "test/vision")
        assert extraction.source == "structured"
        assert extraction.metadata["pageCount"] == 2
        assert len(extraction.raw.points) == 5
        assert extraction.raw_extraction["drawingScale"] == "1:500"
        assert {"label", "value", "type", "confidence"} <= set(extraction.extracted_levels[0])
