"""Shared fixtures for the sequence diagram tests."""

from __future__ import annotations

import pytest

from sequence_diagrams import ASCII_SIZES, AsciiTextMeasurer, layout_diagram, parse_script


@pytest.fixture
def measurer() -> AsciiTextMeasurer:
    return AsciiTextMeasurer()


@pytest.fixture
def laid_out(measurer):
    """Parse and lay out a script with text-art metrics."""

    def _layout(script: str):
        parsed = parse_script(script)
        canvas = layout_diagram(parsed.actors, parsed.events, measurer, ASCII_SIZES)
        return parsed, canvas

    return _layout
