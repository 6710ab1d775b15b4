"""Description-to-SVG pipeline."""
from __future__ import annotations

from typing import Union

from .layout import DEFAULT_LAYOUT, LayoutConfig, layout_diagram
from .metrics import DEFAULT_METRICS, TextMetrics
from .model import Diagram, parse_diagram
from .render import render_svg


def render_diagram(
    source: Union[str, Diagram],
    *,
    config: LayoutConfig = DEFAULT_LAYOUT,
    metrics: TextMetrics = DEFAULT_METRICS,
    id_prefix: str = "merman",
) -> str:
    """Convert a JSON description (or a built ``Diagram``) to SVG text."""
    diagram = source if isinstance(source, Diagram) else parse_diagram(source)
    geometry = layout_diagram(diagram, config, metrics)
    return render_svg(diagram, geometry, metrics, id_prefix=id_prefix)


__all__ = ["render_diagram"]
