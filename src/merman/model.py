"""Diagram model and JSON description decoder.

A diagram is an immutable value: nodes and edges are flat tuples and edges
refer to nodes by identifier. Validation happens at construction time, so a
``Diagram`` that exists is always well-formed.
"""
from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type, TypeVar

from .errors import DiagramDecodeError, MalformedDiagram


class Direction(str, Enum):
    """Primary layout axis of a diagram."""

    TB = "TB"
    BT = "BT"
    LR = "LR"
    RL = "RL"

    @property
    def is_vertical(self) -> bool:
        return self in (Direction.TB, Direction.BT)

    @property
    def is_reversed(self) -> bool:
        return self in (Direction.BT, Direction.RL)


class Shape(str, Enum):
    RECTANGLE = "rectangle"
    ROUNDED_RECTANGLE = "rounded-rectangle"
    DIAMOND = "diamond"
    CIRCLE = "circle"
    ELLIPSE = "ellipse"


class EdgeStyle(str, Enum):
    SOLID = "solid"
    DASHED = "dashed"
    DOTTED = "dotted"


_DIRECTION_ALIASES = {
    "td": Direction.TB,
    "top-to-bottom": Direction.TB,
    "topdown": Direction.TB,
    "bottom-to-top": Direction.BT,
    "bottomup": Direction.BT,
    "left-to-right": Direction.LR,
    "leftright": Direction.LR,
    "right-to-left": Direction.RL,
    "rightleft": Direction.RL,
}

_SHAPE_ALIASES = {
    "rect": Shape.RECTANGLE,
    "rounded": Shape.ROUNDED_RECTANGLE,
}

MAX_FONT_SIZE = 1000.0

_E = TypeVar("_E", bound=Enum)


def _coerce_enum(
    enum_cls: Type[_E],
    value: Any,
    field_name: str,
    aliases: Optional[Mapping[str, _E]] = None,
) -> _E:
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        key = value.strip()
        for member in enum_cls:
            if member.value.lower() == key.lower():
                return member
        if aliases and key.lower() in aliases:
            return aliases[key.lower()]
    allowed = ", ".join(member.value for member in enum_cls)
    raise MalformedDiagram(
        "E_INVALID_VALUE",
        f'invalid {field_name} "{value}" (expected one of: {allowed})',
        field=field_name,
        value=value,
    )


@dataclass(frozen=True)
class DiagramStyle:
    """Global style defaults applied to every node and edge."""

    font_family: str = "monospace"
    font_path: Optional[str] = None
    font_size: float = 10.0
    heading_font_size: float = 12.0
    stroke: str = "#333"
    fill: str = "#fff"
    text_color: str = "#111"
    background: str = "#fff"
    shape: Shape = Shape.RECTANGLE
    edge_style: EdgeStyle = EdgeStyle.SOLID
    arrowheads: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "shape", _coerce_enum(Shape, self.shape, "shape", _SHAPE_ALIASES))
        object.__setattr__(
            self, "edge_style", _coerce_enum(EdgeStyle, self.edge_style, "edge style")
        )
        for name in ("font_size", "heading_font_size"):
            size = getattr(self, name)
            if (
                isinstance(size, bool)
                or not isinstance(size, (int, float))
                or not math.isfinite(size)
                or not 0 < size <= MAX_FONT_SIZE
            ):
                raise MalformedDiagram(
                    "E_INVALID_VALUE",
                    f"style {name} must be a number in (0, {MAX_FONT_SIZE:g}], got {size!r}",
                    field=name,
                    value=size,
                )

    @property
    def has_background(self) -> bool:
        return self.background.strip().lower() not in {"", "none", "transparent"}


@dataclass(frozen=True)
class Node:
    id: str
    label: Optional[str] = None
    shape: Optional[Shape] = None
    heading: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id:
            raise MalformedDiagram(
                "E_EMPTY_ID",
                f"node id must be a non-empty string, got {self.id!r}",
                field="id",
                value=self.id,
            )
        if self.label is None:
            object.__setattr__(self, "label", self.id)
        if self.shape is not None:
            object.__setattr__(
                self, "shape", _coerce_enum(Shape, self.shape, "shape", _SHAPE_ALIASES)
            )


@dataclass(frozen=True)
class Edge:
    source: str
    target: str
    label: Optional[str] = None
    style: Optional[EdgeStyle] = None

    def __post_init__(self) -> None:
        if self.style is not None:
            object.__setattr__(self, "style", _coerce_enum(EdgeStyle, self.style, "edge style"))

    @property
    def is_self_loop(self) -> bool:
        return self.source == self.target


@dataclass(frozen=True)
class Diagram:
    """Validated, immutable diagram description."""

    nodes: Tuple[Node, ...] = ()
    edges: Tuple[Edge, ...] = ()
    direction: Direction = Direction.TB
    style: DiagramStyle = field(default_factory=DiagramStyle)

    def __post_init__(self) -> None:
        object.__setattr__(self, "nodes", tuple(self.nodes))
        object.__setattr__(self, "edges", tuple(self.edges))
        object.__setattr__(
            self,
            "direction",
            _coerce_enum(Direction, self.direction, "direction", _DIRECTION_ALIASES),
        )
        index: Dict[str, int] = {}
        for idx, node in enumerate(self.nodes):
            if node.id in index:
                raise MalformedDiagram(
                    "E_DUPLICATE_NODE",
                    f'duplicate node id "{node.id}"',
                    field="id",
                    value=node.id,
                )
            index[node.id] = idx
        for idx, edge in enumerate(self.edges):
            for attr in ("source", "target"):
                ref = getattr(edge, attr)
                if ref not in index:
                    raise MalformedDiagram(
                        "E_UNKNOWN_NODE",
                        f'edge {idx} {attr}="{ref}" references unknown node id',
                        field=attr,
                        value=ref,
                    )
        object.__setattr__(self, "_index", index)

    def node(self, node_id: str) -> Node:
        return self.nodes[self._index[node_id]]

    def node_index(self, node_id: str) -> int:
        return self._index[node_id]

    def shape_of(self, node: Node) -> Shape:
        return node.shape if node.shape is not None else self.style.shape

    def style_of(self, edge: Edge) -> EdgeStyle:
        return edge.style if edge.style is not None else self.style.edge_style


# JSON description decoding ---------------------------------------------------

_STYLE_KEYS = {
    "fontFamily": "font_family",
    "fontPath": "font_path",
    "fontSize": "font_size",
    "headingFontSize": "heading_font_size",
    "stroke": "stroke",
    "fill": "fill",
    "textColor": "text_color",
    "background": "background",
    "shape": "shape",
    "edgeStyle": "edge_style",
    "arrowheads": "arrowheads",
}


class _JsonObject(dict):
    """dict that remembers keys which appeared more than once."""

    def __init__(self, pairs: List[Tuple[str, Any]]) -> None:
        super().__init__()
        self.duplicate_keys: List[str] = []
        for key, value in pairs:
            if key in self and key not in self.duplicate_keys:
                self.duplicate_keys.append(key)
            self[key] = value


def parse_diagram(source: str) -> Diagram:
    """Decode a JSON diagram description into a validated ``Diagram``."""
    try:
        payload = json.loads(source, object_pairs_hook=_JsonObject)
    except json.JSONDecodeError as exc:
        raise DiagramDecodeError(
            "E_PARSE_JSON",
            f"failed to parse diagram JSON: {exc.msg} at line {exc.lineno}, column {exc.colno}",
            line=exc.lineno,
            column=exc.colno,
        ) from exc
    if not isinstance(payload, dict):
        raise DiagramDecodeError("E_DESCRIPTION", "diagram description must be a JSON object")

    direction = payload.get("layoutDirection", payload.get("direction", Direction.TB))
    style = _decode_style(payload.get("style", {}))
    nodes = _decode_nodes(payload.get("nodes", []))
    edges = _decode_edges(payload.get("connections", payload.get("edges", [])))
    return Diagram(nodes=nodes, edges=edges, direction=direction, style=style)


def _decode_style(raw: Any) -> DiagramStyle:
    if not isinstance(raw, dict):
        raise DiagramDecodeError("E_DESCRIPTION", '"style" must be an object')
    kwargs: Dict[str, Any] = {}
    for key, value in raw.items():
        name = _STYLE_KEYS.get(key)
        if name is None:
            raise DiagramDecodeError("E_DESCRIPTION", f'unknown style key "{key}"')
        kwargs[name] = value
    for name in ("font_family", "font_path", "stroke", "fill", "text_color", "background"):
        if name in kwargs and not isinstance(kwargs[name], str):
            raise DiagramDecodeError("E_DESCRIPTION", f"style {name} must be a string")
    if "arrowheads" in kwargs and not isinstance(kwargs["arrowheads"], bool):
        raise DiagramDecodeError("E_DESCRIPTION", "style arrowheads must be true or false")
    return DiagramStyle(**kwargs)


def _decode_nodes(raw: Any) -> List[Node]:
    entries: List[Tuple[Any, Any]] = []
    if isinstance(raw, _JsonObject):
        if raw.duplicate_keys:
            dup = raw.duplicate_keys[0]
            raise MalformedDiagram(
                "E_DUPLICATE_NODE", f'duplicate node id "{dup}"', field="id", value=dup
            )
        entries = list(raw.items())
    elif isinstance(raw, list):
        for item in raw:
            if not isinstance(item, dict):
                raise DiagramDecodeError("E_DESCRIPTION", "each node must be an object")
            entries.append((item.get("id"), item))
    else:
        raise DiagramDecodeError("E_DESCRIPTION", '"nodes" must be an object or a list')

    nodes: List[Node] = []
    for node_id, body in entries:
        if not isinstance(body, dict):
            raise DiagramDecodeError("E_DESCRIPTION", f'node "{node_id}" must be an object')
        label = body.get("name", body.get("label"))
        heading = body.get("op", body.get("heading"))
        for name, value in (("name", label), ("op", heading)):
            if value is not None and not isinstance(value, str):
                raise DiagramDecodeError(
                    "E_DESCRIPTION", f'node "{node_id}" field "{name}" must be a string'
                )
        nodes.append(Node(id=node_id, label=label, shape=body.get("shape"), heading=heading))
    return nodes


def _decode_edges(raw: Any) -> List[Edge]:
    if not isinstance(raw, list):
        raise DiagramDecodeError("E_DESCRIPTION", '"connections" must be a list')
    edges: List[Edge] = []
    for idx, item in enumerate(raw):
        if not isinstance(item, dict):
            raise DiagramDecodeError("E_DESCRIPTION", f"connection {idx} must be an object")
        source = item.get("from")
        target = item.get("to")
        label = item.get("label")
        if not isinstance(source, str) or not isinstance(target, str):
            raise DiagramDecodeError(
                "E_DESCRIPTION", f'connection {idx} needs string "from" and "to" fields'
            )
        if label is not None and not isinstance(label, str):
            raise DiagramDecodeError("E_DESCRIPTION", f"connection {idx} label must be a string")
        edges.append(Edge(source=source, target=target, label=label, style=item.get("style")))
    return edges


__all__ = [
    "Diagram",
    "DiagramStyle",
    "Direction",
    "Edge",
    "EdgeStyle",
    "Node",
    "Shape",
    "parse_diagram",
]
