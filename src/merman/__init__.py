"""Public API for merman."""
from .errors import DiagramDecodeError, LayoutOverflow, MalformedDiagram, MermanError
from .layout import DEFAULT_LAYOUT, Geometry, LayoutConfig, layout_diagram
from .metrics import DEFAULT_METRICS, FontSpec, TextMetrics
from .model import Diagram, DiagramStyle, Direction, Edge, EdgeStyle, Node, Shape, parse_diagram
from .pipeline import render_diagram
from .render import render_svg
from .scanner import ScannerConfig, transform_document

__all__ = [
    "DEFAULT_LAYOUT",
    "DEFAULT_METRICS",
    "Diagram",
    "DiagramDecodeError",
    "DiagramStyle",
    "Direction",
    "Edge",
    "EdgeStyle",
    "FontSpec",
    "Geometry",
    "LayoutConfig",
    "LayoutOverflow",
    "MalformedDiagram",
    "MermanError",
    "Node",
    "ScannerConfig",
    "Shape",
    "TextMetrics",
    "layout_diagram",
    "parse_diagram",
    "render_diagram",
    "render_svg",
    "transform_document",
]
