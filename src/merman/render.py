"""SVG serialization of a laid-out diagram."""
from __future__ import annotations

import math
import xml.etree.ElementTree as ET
from typing import Dict, List, Sequence, Tuple

from .layout import Box, Geometry, Point, heading_font, label_font
from .metrics import DEFAULT_METRICS, FontSpec, TextMetrics
from .model import Diagram, EdgeStyle, Node, Shape

SVG_NS = "http://www.w3.org/2000/svg"
ET.register_namespace("", SVG_NS)

DASH_ARRAYS = {
    EdgeStyle.DASHED: "6 4",
    EdgeStyle.DOTTED: "2 3",
}
ROUNDED_CORNER_RADIUS = 6.0


def _q(tag: str) -> str:
    return f"{{{SVG_NS}}}{tag}"


def render_svg(
    diagram: Diagram,
    geometry: Geometry,
    metrics: TextMetrics = DEFAULT_METRICS,
    *,
    id_prefix: str = "merman",
) -> str:
    """Serialize ``geometry`` for ``diagram`` into a standalone SVG document.

    ``id_prefix`` keeps element ids unique when several diagrams are inlined
    into one page.
    """
    assert len(geometry.edges) == len(diagram.edges), "geometry does not match diagram edges"
    style = diagram.style
    canvas = geometry.canvas
    svg_root = ET.Element(
        _q("svg"),
        {
            "width": _fmt(canvas.width),
            "height": _fmt(canvas.height),
            "viewBox": f"{_fmt(canvas.x)} {_fmt(canvas.y)} {_fmt(canvas.width)} {_fmt(canvas.height)}",
        },
    )

    marker_id = None
    if style.arrowheads and diagram.edges:
        marker_id = _emit_arrow_marker(svg_root, f"{id_prefix}-arrow", style.stroke)
    if style.has_background:
        ET.SubElement(
            svg_root,
            _q("rect"),
            {
                "x": _fmt(canvas.x),
                "y": _fmt(canvas.y),
                "width": _fmt(canvas.width),
                "height": _fmt(canvas.height),
                "fill": style.background,
            },
        )

    edge_group = ET.SubElement(svg_root, _q("g"), {"class": "edges"})
    for edge, route in zip(diagram.edges, geometry.edges):
        assert edge.source in geometry.nodes and edge.target in geometry.nodes, (
            f"route for {edge.source}->{edge.target} references a missing node box"
        )
        attrs = {
            "d": _points_to_path_d(route.points),
            "stroke": style.stroke,
            "stroke-width": "1.5",
            "fill": "none",
            "stroke-linejoin": "round",
        }
        dash = DASH_ARRAYS.get(diagram.style_of(edge))
        if dash:
            attrs["stroke-dasharray"] = dash
        if marker_id is not None:
            attrs["marker-end"] = f"url(#{marker_id})"
        ET.SubElement(edge_group, _q("path"), attrs)

    node_group = ET.SubElement(
        svg_root,
        _q("g"),
        {"class": "nodes", "font-family": style.font_family, "fill": style.text_color},
    )
    for node in diagram.nodes:
        box = geometry.nodes[node.id]
        wrapper = ET.SubElement(
            node_group, _q("g"), {"id": f"{id_prefix}-{node.id}", "class": "node"}
        )
        wrapper.append(_shape_element(diagram.shape_of(node), box, style.fill, style.stroke))
        wrapper.append(_node_text(diagram, node, box, metrics))

    labelled = [(edge, route) for edge, route in zip(diagram.edges, geometry.edges) if edge.label]
    if labelled:
        label_group = ET.SubElement(
            svg_root,
            _q("g"),
            {"class": "edge-labels", "font-family": style.font_family, "fill": style.text_color},
        )
        patch_fill = style.background if style.has_background else "#fff"
        font = label_font(style)
        for edge, route in labelled:
            assert route.label_box is not None, "labelled edge without a label box"
            _emit_edge_label(label_group, edge.label, route.label_box, font, metrics, patch_fill)

    return _pretty_xml(svg_root)


def _emit_arrow_marker(svg_root: ET.Element, marker_id: str, color: str) -> str:
    defs = ET.SubElement(svg_root, _q("defs"))
    marker = ET.SubElement(
        defs,
        _q("marker"),
        {
            "id": marker_id,
            "viewBox": "0 0 10 10",
            "refX": "9",
            "refY": "5",
            "markerWidth": "6",
            "markerHeight": "6",
            "orient": "auto",
        },
    )
    ET.SubElement(marker, _q("path"), {"d": "M 0 0 L 10 5 L 0 10 z", "fill": color})
    return marker_id


def _shape_element(shape: Shape, box: Box, fill: str, stroke: str) -> ET.Element:
    paint = {"fill": fill, "stroke": stroke, "stroke-width": "1.5"}
    center = box.center
    if shape is Shape.CIRCLE:
        attrs = {
            "cx": _fmt(center.x),
            "cy": _fmt(center.y),
            "r": _fmt(min(box.width, box.height) / 2.0),
        }
        return ET.Element(_q("circle"), {**attrs, **paint})
    if shape is Shape.ELLIPSE:
        attrs = {
            "cx": _fmt(center.x),
            "cy": _fmt(center.y),
            "rx": _fmt(box.width / 2.0),
            "ry": _fmt(box.height / 2.0),
        }
        return ET.Element(_q("ellipse"), {**attrs, **paint})
    if shape is Shape.DIAMOND:
        corners = [
            (center.x, box.top),
            (box.right, center.y),
            (center.x, box.bottom),
            (box.left, center.y),
        ]
        points = " ".join(f"{_fmt(x)},{_fmt(y)}" for x, y in corners)
        return ET.Element(_q("polygon"), {"points": points, **paint})
    attrs = {
        "x": _fmt(box.x),
        "y": _fmt(box.y),
        "width": _fmt(box.width),
        "height": _fmt(box.height),
    }
    if shape is Shape.ROUNDED_RECTANGLE:
        radius = min(ROUNDED_CORNER_RADIUS, box.width / 4.0, box.height / 4.0)
        attrs["rx"] = _fmt(radius)
        attrs["ry"] = _fmt(radius)
    return ET.Element(_q("rect"), {**attrs, **paint})


def _node_text(diagram: Diagram, node: Node, box: Box, metrics: TextMetrics) -> ET.Element:
    lines: List[Tuple[str, FontSpec]] = []
    if node.heading:
        head = heading_font(diagram.style)
        lines.extend((line, head) for line in node.heading.split("\n"))
    if node.label:
        body = label_font(diagram.style)
        lines.extend((line, body) for line in node.label.split("\n"))
    return _text_block(box.center, lines, label_font(diagram.style), metrics)


def _text_block(
    center: Point,
    lines: Sequence[Tuple[str, FontSpec]],
    base_font: FontSpec,
    metrics: TextMetrics,
) -> ET.Element:
    """Center ``lines`` on ``center``; one tspan per line when there are several."""
    text = ET.Element(
        _q("text"),
        {
            "x": _fmt(center.x),
            "y": _fmt(center.y),
            "font-size": _fmt(base_font.size),
            "text-anchor": "middle",
            "dominant-baseline": "central",
        },
    )
    if len(lines) == 1 and lines[0][1] == base_font:
        text.text = lines[0][0]
        return text

    total = sum(metrics.line_height(font) for _, font in lines)
    cursor = center.y - total / 2.0
    for line, font in lines:
        height = metrics.line_height(font)
        attrs: Dict[str, str] = {"x": _fmt(center.x), "y": _fmt(cursor + height / 2.0)}
        if font != base_font:
            attrs["font-size"] = _fmt(font.size)
        tspan = ET.SubElement(text, _q("tspan"), attrs)
        tspan.text = line
        cursor += height
    return text


def _emit_edge_label(
    group: ET.Element,
    label: str,
    box: Box,
    font: FontSpec,
    metrics: TextMetrics,
    patch_fill: str,
) -> None:
    ET.SubElement(
        group,
        _q("rect"),
        {
            "x": _fmt(box.x),
            "y": _fmt(box.y),
            "width": _fmt(box.width),
            "height": _fmt(box.height),
            "fill": patch_fill,
            "class": "label-patch",
        },
    )
    lines = [(line, font) for line in label.split("\n")]
    group.append(_text_block(box.center, lines, font, metrics))


def _points_to_path_d(points: Sequence[Point]) -> str:
    if not points:
        return ""
    parts = [f"M {_fmt(points[0].x)} {_fmt(points[0].y)}"]
    for point in points[1:]:
        parts.append(f"L {_fmt(point.x)} {_fmt(point.y)}")
    return " ".join(parts)


def _pretty_xml(element: ET.Element) -> str:
    ET.indent(element, space="  ")
    return ET.tostring(element, encoding="unicode")


def _fmt(value: float) -> str:
    if math.isclose(value, round(value)):
        return str(int(round(value)))
    return f"{value:.3f}".rstrip("0").rstrip(".")


__all__ = ["SVG_NS", "render_svg"]
