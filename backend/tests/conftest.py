"""
conftest.py — Shared pytest fixtures for the grading ingest test suite.

No network or LLM fixtures are defined here. Tests that touch the vision model
monkeypatch ``llm_client.complete_with_document`` (or ``litellm.completion``)
directly.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``grading_ingest.*`` imports resolve correctly regardless of where pytest
    is invoked.
"""

import sys
import os
import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any grading_ingest imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)

# Use litellm's bundled model cost map so importing it does not start a
# network fetch thread during collection (tests run offline).
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")


# ---------------------------------------------------------------------------
# Classification fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def default_policy():
    """ClassificationPolicy with built-in keyword sets, radius 5.0, zero-is-unset on."""
    from grading_ingest.services.point_classifier import ClassificationPolicy
    return ClassificationPolicy()


@pytest.fixture(scope="session")
def classifier(default_policy):
    """PointClassifier over the default policy (stateless)."""
    from grading_ingest.services.point_classifier import PointClassifier
    return PointClassifier(default_policy)


# ---------------------------------------------------------------------------
# Tag-value document builder
# ---------------------------------------------------------------------------

class DxfText:
    """
    Minimal ASCII DXF writer for tests: ENTITIES section only, one group
    code / value pair per two lines.
    """

    def __init__(self):
        self._entities: list[list[tuple[int, object]]] = []

    def point(self, x, y, z=None, layer="0"):
        tags = [(8, layer), (10, x), (20, y)]
        if z is not None:
            tags.append((30, z))
        self._entities.append([(0, "POINT")] + tags)
        return self

    def text(self, content, x, y, layer="0"):
        self._entities.append([(0, "TEXT"), (8, layer), (10, x), (20, y), (1, content)])
        return self

    def mtext(self, content, x, y, layer="0", chunks=()):
        tags = [(0, "MTEXT"), (8, layer), (10, x), (20, y)]
        tags += [(3, c) for c in chunks]
        tags.append((1, content))
        self._entities.append(tags)
        return self

    def lwpolyline(self, vertices, layer="0", closed=False, elevation=None):
        tags = [(0, "LWPOLYLINE"), (8, layer), (90, len(vertices)), (70, 1 if closed else 0)]
        if elevation is not None:
            tags.append((38, elevation))
        for x, y in vertices:
            tags += [(10, x), (20, y)]
        self._entities.append(tags)
        return self

    def line(self, start, end, layer="0"):
        (x1, y1, z1), (x2, y2, z2) = start, end
        self._entities.append([
            (0, "LINE"), (8, layer),
            (10, x1), (20, y1), (30, z1),
            (11, x2), (21, y2), (31, z2),
        ])
        return self

    def render(self, terminate=True) -> str:
        lines = ["0", "SECTION", "2", "ENTITIES"]
        for tags in self._entities:
            for code, value in tags:
                lines += [str(code), str(value)]
        if terminate:
            lines += ["0", "ENDSEC", "0", "EOF"]
        return "\n".join(lines) + "\n"


@pytest.fixture
def dxf():
    """Fresh DxfText builder."""
    return DxfText()


@pytest.fixture
def survey_dxf():
    """
    Small site survey: three NGL points on layer NGL (580, 581, 582.5), one
    design point on layer FGL-DESIGN, a contour polyline and a spot-level note.
    Plan extents: x 0..100, y 0..50.
    """
    return (
        DxfText()
        .point(0.0, 0.0, 580.0, layer="NGL")
        .point(100.0, 0.0, 581.0, layer="NGL")
        .point(50.0, 50.0, 582.5, layer="NGL")
        .point(50.0, 25.0, 581.8, layer="FGL-DESIGN")
        .lwpolyline([(0.0, 0.0), (100.0, 0.0), (100.0, 50.0)], layer="CONTOURS", elevation=580.0)
        .text("NGL: 580.50", 200.0, 200.0, layer="NOTES")
        .render()
    )
