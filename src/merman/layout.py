"""Layered layout: turns a ``Diagram`` into an immutable ``Geometry``.

Layout works in (main, cross) coordinates, where the main axis is the
layering direction, and only maps to (x, y) at the end. Nodes and virtual
lane vertices live in flat lists and refer to each other by index.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import LayoutOverflow
from .metrics import DEFAULT_METRICS, FontSpec, TextMetrics
from .model import Diagram, DiagramStyle, Direction, Node, Shape


@dataclass(frozen=True)
class LayoutConfig:
    """Spacing constants and resource limits for the layout engine."""

    node_gap: float = 30.0
    rank_gap: float = 50.0
    margin: float = 20.0
    padding_x: float = 12.0
    padding_y: float = 8.0
    min_node_width: float = 60.0
    min_node_height: float = 30.0
    crossing_passes: int = 8
    edge_gap: float = 10.0
    self_loop_extent: float = 24.0
    label_padding: float = 3.0
    max_nodes: int = 2000
    max_edges: int = 8000
    max_lanes: int = 20000

    def __post_init__(self) -> None:
        for name in (
            "node_gap",
            "rank_gap",
            "margin",
            "padding_x",
            "padding_y",
            "min_node_width",
            "min_node_height",
            "edge_gap",
            "self_loop_extent",
            "label_padding",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"layout {name} must be >= 0")
        if min(self.crossing_passes, self.max_nodes, self.max_edges, self.max_lanes) < 0:
            raise ValueError("layout passes and limits must be >= 0")


DEFAULT_LAYOUT = LayoutConfig()


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class Box:
    x: float
    y: float
    width: float
    height: float

    @property
    def left(self) -> float:
        return self.x

    @property
    def top(self) -> float:
        return self.y

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> Point:
        return Point(self.x + self.width / 2.0, self.y + self.height / 2.0)

    def intersects(self, other: "Box") -> bool:
        """True when the interiors overlap; shared edges do not count."""
        return (
            self.left < other.right
            and other.left < self.right
            and self.top < other.bottom
            and other.top < self.bottom
        )

    def translated(self, dx: float, dy: float) -> "Box":
        return Box(self.x + dx, self.y + dy, self.width, self.height)


@dataclass(frozen=True)
class Route:
    points: Tuple[Point, ...]
    label_box: Optional[Box] = None

    def midpoint(self) -> Point:
        """Point halfway along the polyline by arc length."""
        lengths = [
            math.hypot(b.x - a.x, b.y - a.y) for a, b in zip(self.points, self.points[1:])
        ]
        remaining = sum(lengths) / 2.0
        for (a, b), length in zip(zip(self.points, self.points[1:]), lengths):
            if length > 0 and remaining <= length:
                t = remaining / length
                return Point(a.x + (b.x - a.x) * t, a.y + (b.y - a.y) * t)
            remaining -= length
        return self.points[-1]


@dataclass(frozen=True)
class Geometry:
    """Final positions for one diagram; index-aligned with ``Diagram.edges``."""

    nodes: Mapping[str, Box]
    ranks: Mapping[str, int]
    edges: Tuple[Route, ...]
    canvas: Box
    direction: Direction


def label_font(style: DiagramStyle) -> FontSpec:
    return FontSpec(style.font_family, style.font_size, style.font_path)


def heading_font(style: DiagramStyle) -> FontSpec:
    return FontSpec(style.font_family, style.heading_font_size, style.font_path)


def measure_node(
    diagram: Diagram,
    node: Node,
    config: LayoutConfig = DEFAULT_LAYOUT,
    metrics: TextMetrics = DEFAULT_METRICS,
) -> Tuple[float, float]:
    """Return the (width, height) of a node's shape."""
    text_w, text_h = metrics.measure(node.label or "", label_font(diagram.style))
    if node.heading:
        head_w, head_h = metrics.measure(node.heading, heading_font(diagram.style))
        text_w = max(text_w, head_w)
        text_h += head_h
    pad_x, pad_y = config.padding_x, config.padding_y
    shape = diagram.shape_of(node)
    if shape is Shape.DIAMOND:
        width, height = 2 * text_w + 2 * pad_x, 2 * text_h + 2 * pad_y
    elif shape is Shape.CIRCLE:
        width = height = math.hypot(text_w, text_h) + 2 * max(pad_x, pad_y)
    elif shape is Shape.ELLIPSE:
        width = text_w * math.sqrt(2) + 2 * pad_x
        height = text_h * math.sqrt(2) + 2 * pad_y
    else:
        width, height = text_w + 2 * pad_x, text_h + 2 * pad_y
    width = max(width, config.min_node_width)
    height = max(height, config.min_node_height)
    if shape is Shape.CIRCLE:
        width = height = max(width, height)
    return width, height


@dataclass
class _Vertex:
    seq: int
    rank: int
    main_size: float
    cross_size: float
    node_index: Optional[int] = None
    reserve: float = 0.0
    cross_start: float = 0.0

    @property
    def is_lane(self) -> bool:
        return self.node_index is None

    @property
    def cross_center(self) -> float:
        return self.cross_start + self.cross_size / 2.0


def layout_diagram(
    diagram: Diagram,
    config: LayoutConfig = DEFAULT_LAYOUT,
    metrics: TextMetrics = DEFAULT_METRICS,
) -> Geometry:
    """Place every node and route every edge of ``diagram``."""
    if len(diagram.nodes) > config.max_nodes:
        raise LayoutOverflow("nodes", len(diagram.nodes), config.max_nodes)
    if len(diagram.edges) > config.max_edges:
        raise LayoutOverflow("edges", len(diagram.edges), config.max_edges)

    direction = diagram.direction
    if not diagram.nodes:
        side = 2 * config.margin
        return Geometry(
            nodes=MappingProxyType({}),
            ranks=MappingProxyType({}),
            edges=(),
            canvas=Box(0.0, 0.0, side, side),
            direction=direction,
        )

    node_count = len(diagram.nodes)
    pairs = [
        (diagram.node_index(edge.source), diagram.node_index(edge.target))
        for edge in diagram.edges
    ]
    back_edges = find_back_edges(node_count, pairs)
    # Layering orientation: (upper, lower); back-edges are flipped here only.
    layer_pairs = [
        (v, u) if back_edges[idx] else (u, v) for idx, (u, v) in enumerate(pairs)
    ]
    ranks = assign_ranks(node_count, [p for p in layer_pairs if p[0] != p[1]])
    lane_count = sum(max(ranks[v] - ranks[u] - 1, 0) for u, v in layer_pairs if u != v)
    if lane_count > config.max_lanes:
        raise LayoutOverflow("lanes", lane_count, config.max_lanes)

    loop_counts = [0] * node_count
    for u, v in pairs:
        if u == v:
            loop_counts[u] += 1

    vertices: List[_Vertex] = []
    for idx, node in enumerate(diagram.nodes):
        width, height = measure_node(diagram, node, config, metrics)
        main_size, cross_size = (height, width) if direction.is_vertical else (width, height)
        reserve = 0.0
        if loop_counts[idx]:
            reserve = config.self_loop_extent + (loop_counts[idx] - 1) * config.edge_gap
        vertices.append(
            _Vertex(
                seq=idx,
                rank=ranks[idx],
                main_size=main_size,
                cross_size=cross_size,
                node_index=idx,
                reserve=reserve,
            )
        )

    chains: Dict[int, List[int]] = {}
    for idx, (u, v) in enumerate(layer_pairs):
        if u == v:
            continue
        chain = [u]
        for rank in range(ranks[u] + 1, ranks[v]):
            vertices.append(
                _Vertex(seq=len(vertices), rank=rank, main_size=0.0, cross_size=config.edge_gap)
            )
            chain.append(len(vertices) - 1)
        chain.append(v)
        chains[idx] = chain

    rank_count = max(ranks) + 1
    layers: List[List[int]] = [[] for _ in range(rank_count)]
    for vid, vertex in enumerate(vertices):
        layers[vertex.rank].append(vid)

    up: List[List[int]] = [[] for _ in vertices]
    down: List[List[int]] = [[] for _ in vertices]
    for idx in sorted(chains):
        chain = chains[idx]
        for a, b in zip(chain, chain[1:]):
            down[a].append(b)
            up[b].append(a)

    seqs = [vertex.seq for vertex in vertices]
    layers = order_layers(layers, up, down, seqs, config.crossing_passes)

    label_sizes: List[Optional[Tuple[float, float]]] = []
    for edge in diagram.edges:
        if edge.label:
            text_w, text_h = metrics.measure(edge.label, label_font(diagram.style))
            pad = config.label_padding
            label_sizes.append((text_w + 2 * pad, text_h + 2 * pad))
        else:
            label_sizes.append(None)

    gaps = [config.rank_gap] * max(rank_count - 1, 0)
    for idx, chain in chains.items():
        size = label_sizes[idx]
        if size is None:
            continue
        extent = (size[1] if direction.is_vertical else size[0]) + 2 * config.edge_gap
        for rank in range(vertices[chain[0]].rank, vertices[chain[-1]].rank):
            gaps[rank] = max(gaps[rank], extent)

    band_size = [0.0] * rank_count
    for vertex in vertices:
        band_size[vertex.rank] = max(band_size[vertex.rank], vertex.main_size)
    band_start = [0.0] * rank_count
    for rank in range(1, rank_count):
        band_start[rank] = band_start[rank - 1] + band_size[rank - 1] + gaps[rank - 1]

    _assign_cross_positions(layers, vertices, config)

    node_frames: List[Tuple[float, float, float, float]] = []
    for vertex in vertices[:node_count]:
        main_start = band_start[vertex.rank] + (band_size[vertex.rank] - vertex.main_size) / 2.0
        node_frames.append((main_start, vertex.cross_start, vertex.main_size, vertex.cross_size))

    shapes = [diagram.shape_of(node) for node in diagram.nodes]
    ports = _assign_ports(chains, vertices, node_frames, shapes, config)

    raw_routes: List[List[Tuple[float, float]]] = []
    loop_seen = [0] * node_count
    for idx, (u, v) in enumerate(pairs):
        if u == v:
            points = _self_loop_points(
                node_frames[u], shapes[u], loop_seen[u], loop_counts[u], config
            )
            loop_seen[u] += 1
        else:
            points = _chain_points(
                chains[idx], ports[idx], vertices, band_start, band_size
            )
            if back_edges[idx]:
                points.reverse()
        raw_routes.append(points)

    to_xy = _axis_mapper(direction)
    node_boxes = [_frame_to_box(frame, direction) for frame in node_frames]
    routes: List[Tuple[List[Point], Optional[Box]]] = []
    for idx, raw in enumerate(raw_routes):
        points = [to_xy(main, cross) for main, cross in raw]
        size = label_sizes[idx]
        label_box = None
        if size is not None:
            mid = Route(tuple(points)).midpoint()
            label_box = Box(mid.x - size[0] / 2.0, mid.y - size[1] / 2.0, size[0], size[1])
        routes.append((points, label_box))

    return _finalize(diagram, node_boxes, ranks, routes, config)


def find_back_edges(node_count: int, pairs: Sequence[Tuple[int, int]]) -> List[bool]:
    """Flag the edges that close a cycle during a depth-first traversal.

    Traversal starts from nodes without incoming edges, in index order, then
    from any node left unvisited. Self-edges are never flagged.
    """
    outgoing: List[List[int]] = [[] for _ in range(node_count)]
    indegree = [0] * node_count
    for idx, (u, v) in enumerate(pairs):
        if u == v:
            continue
        outgoing[u].append(idx)
        indegree[v] += 1

    back = [False] * len(pairs)
    state = [0] * node_count
    roots = [i for i in range(node_count) if indegree[i] == 0]
    roots.extend(range(node_count))
    for root in roots:
        if state[root] != 0:
            continue
        state[root] = 1
        stack = [(root, 0)]
        while stack:
            node, cursor = stack[-1]
            if cursor < len(outgoing[node]):
                stack[-1] = (node, cursor + 1)
                edge_idx = outgoing[node][cursor]
                target = pairs[edge_idx][1]
                if state[target] == 0:
                    state[target] = 1
                    stack.append((target, 0))
                elif state[target] == 1:
                    back[edge_idx] = True
            else:
                state[node] = 2
                stack.pop()
    return back


def assign_ranks(node_count: int, pairs: Sequence[Tuple[int, int]]) -> List[int]:
    """Longest-path layering of an acyclic edge list."""
    outgoing: List[List[int]] = [[] for _ in range(node_count)]
    indegree = [0] * node_count
    for u, v in pairs:
        outgoing[u].append(v)
        indegree[v] += 1

    queue = [i for i in range(node_count) if indegree[i] == 0]
    rank = [0] * node_count
    cursor = 0
    while cursor < len(queue):
        u = queue[cursor]
        cursor += 1
        for v in outgoing[u]:
            if rank[v] < rank[u] + 1:
                rank[v] = rank[u] + 1
            indegree[v] -= 1
            if indegree[v] == 0:
                queue.append(v)
    assert len(queue) == node_count, "layering edges must be acyclic"
    return rank


def order_layers(
    layers: Sequence[Sequence[int]],
    up: Sequence[Sequence[int]],
    down: Sequence[Sequence[int]],
    seqs: Sequence[int],
    passes: int,
) -> List[List[int]]:
    """Reduce crossings with a fixed number of median sweeps.

    Even passes sweep downward (ordering by upper neighbors), odd passes
    sweep upward. The ordering with the fewest crossings is returned; the
    earliest one wins ties.
    """
    order = [list(layer) for layer in layers]
    best = [list(layer) for layer in order]
    best_crossings = count_crossings(order, down)
    for pass_idx in range(passes):
        if best_crossings == 0:
            break
        if pass_idx % 2 == 0:
            for rank in range(1, len(order)):
                order[rank] = _median_sorted(order[rank], order[rank - 1], up, seqs)
        else:
            for rank in range(len(order) - 2, -1, -1):
                order[rank] = _median_sorted(order[rank], order[rank + 1], down, seqs)
        crossings = count_crossings(order, down)
        if crossings < best_crossings:
            best = [list(layer) for layer in order]
            best_crossings = crossings
    return best


def _median_sorted(
    layer: List[int],
    fixed: List[int],
    neighbors: Sequence[Sequence[int]],
    seqs: Sequence[int],
) -> List[int]:
    position = {vid: idx for idx, vid in enumerate(fixed)}
    priority: Dict[int, float] = {}
    for idx, vid in enumerate(layer):
        slots = sorted(position[n] for n in neighbors[vid])
        if not slots:
            priority[vid] = float(idx)
            continue
        mid = len(slots) // 2
        if len(slots) % 2 == 1:
            priority[vid] = float(slots[mid])
        else:
            priority[vid] = 0.5 * (slots[mid - 1] + slots[mid])
    return sorted(layer, key=lambda vid: (priority[vid], seqs[vid]))


def count_crossings(order: Sequence[Sequence[int]], down: Sequence[Sequence[int]]) -> int:
    total = 0
    for rank in range(len(order) - 1):
        lower_pos = {vid: idx for idx, vid in enumerate(order[rank + 1])}
        segments = []
        for upper_idx, vid in enumerate(order[rank]):
            for target in down[vid]:
                segments.append((upper_idx, lower_pos[target]))
        segments.sort()
        total += _count_inversions([lower for _, lower in segments])
    return total


def _count_inversions(values: List[int]) -> int:
    if len(values) < 2:
        return 0
    mid = len(values) // 2
    left, right = values[:mid], values[mid:]
    count = _count_inversions(left) + _count_inversions(right)
    left.sort()
    right.sort()
    j = 0
    for value in left:
        while j < len(right) and right[j] < value:
            j += 1
        count += j
    return count


def _assign_cross_positions(
    layers: Sequence[Sequence[int]], vertices: List[_Vertex], config: LayoutConfig
) -> None:
    def _gap(a: _Vertex, b: _Vertex) -> float:
        return config.edge_gap if a.is_lane or b.is_lane else config.node_gap

    spans: List[float] = []
    for layer in layers:
        span = sum(vertices[vid].cross_size + vertices[vid].reserve for vid in layer)
        span += sum(_gap(vertices[a], vertices[b]) for a, b in zip(layer, layer[1:]))
        spans.append(span)
    widest = max(spans, default=0.0)
    for layer, span in zip(layers, spans):
        cursor = (widest - span) / 2.0
        previous: Optional[_Vertex] = None
        for vid in layer:
            vertex = vertices[vid]
            if previous is not None:
                cursor += _gap(previous, vertex)
            vertex.cross_start = cursor
            cursor += vertex.cross_size + vertex.reserve
            previous = vertex


def _boundary_depth(shape: Shape, half_main: float, half_cross: float, offset: float) -> float:
    """Distance from the center to the outline along the main axis."""
    if half_cross <= 0:
        return half_main
    ratio = min(abs(offset) / half_cross, 1.0)
    if shape is Shape.DIAMOND:
        return half_main * (1.0 - ratio)
    if shape in (Shape.CIRCLE, Shape.ELLIPSE):
        return half_main * math.sqrt(max(0.0, 1.0 - ratio * ratio))
    return half_main


def _assign_ports(
    chains: Mapping[int, List[int]],
    vertices: List[_Vertex],
    node_frames: List[Tuple[float, float, float, float]],
    shapes: List[Shape],
    config: LayoutConfig,
) -> Dict[int, Tuple[Tuple[float, float], Tuple[float, float]]]:
    """Spread edge endpoints across the facing sides of each node."""
    sides: Dict[Tuple[int, int], List[Tuple[float, int]]] = {}
    for idx, chain in chains.items():
        upper, lower = chain[0], chain[-1]
        sides.setdefault((upper, 1), []).append((vertices[chain[1]].cross_center, idx))
        sides.setdefault((lower, -1), []).append((vertices[chain[-2]].cross_center, idx))

    placed: Dict[Tuple[int, int], Tuple[float, float]] = {}
    for (vid, sign), attached in sides.items():
        attached.sort()
        main_start, cross_start, main_size, cross_size = node_frames[vid]
        half_main, half_cross = main_size / 2.0, cross_size / 2.0
        center_main, center_cross = main_start + half_main, cross_start + half_cross
        step = 0.0
        if len(attached) > 1:
            step = min(config.edge_gap, cross_size * 0.6 / (len(attached) - 1))
        for slot, (_far, idx) in enumerate(attached):
            offset = (slot - (len(attached) - 1) / 2.0) * step
            depth = _boundary_depth(shapes[vid], half_main, half_cross, offset)
            placed[(idx, sign)] = (center_main + sign * depth, center_cross + offset)

    return {idx: (placed[(idx, 1)], placed[(idx, -1)]) for idx in chains}


def _chain_points(
    chain: List[int],
    ports: Tuple[Tuple[float, float], Tuple[float, float]],
    vertices: List[_Vertex],
    band_start: List[float],
    band_size: List[float],
) -> List[Tuple[float, float]]:
    upper_port, lower_port = ports
    upper_rank = vertices[chain[0]].rank
    points = [upper_port, (band_start[upper_rank] + band_size[upper_rank], upper_port[1])]
    for vid in chain[1:-1]:
        lane = vertices[vid]
        _append_gap_midpoint(points, band_start[lane.rank], lane.cross_center)
        points.append((band_start[lane.rank], lane.cross_center))
        points.append((band_start[lane.rank] + band_size[lane.rank], lane.cross_center))
    lower_rank = vertices[chain[-1]].rank
    _append_gap_midpoint(points, band_start[lower_rank], lower_port[1])
    points.append((band_start[lower_rank], lower_port[1]))
    points.append(lower_port)

    deduped = [points[0]]
    for point in points[1:]:
        if not (
            math.isclose(point[0], deduped[-1][0], abs_tol=1e-9)
            and math.isclose(point[1], deduped[-1][1], abs_tol=1e-9)
        ):
            deduped.append(point)
    if len(deduped) < 2:
        deduped.append(points[-1])
    return deduped


def _append_gap_midpoint(
    points: List[Tuple[float, float]], next_band_start: float, next_cross: float
) -> None:
    last_main, last_cross = points[-1]
    points.append(((last_main + next_band_start) / 2.0, (last_cross + next_cross) / 2.0))


def _self_loop_points(
    frame: Tuple[float, float, float, float],
    shape: Shape,
    index: int,
    count: int,
    config: LayoutConfig,
) -> List[Tuple[float, float]]:
    main_start, cross_start, main_size, cross_size = frame
    half_main, half_cross = main_size / 2.0, cross_size / 2.0
    center_main, center_cross = main_start + half_main, cross_start + half_cross
    spread = half_main * min(0.9, 0.35 + 0.5 * index / max(count, 1))
    depth = _boundary_depth(shape, half_cross, half_main, spread)
    outer = cross_start + cross_size + config.self_loop_extent + index * config.edge_gap
    return [
        (center_main - spread, center_cross + depth),
        (center_main - spread, outer),
        (center_main + spread, outer),
        (center_main + spread, center_cross + depth),
    ]


def _axis_mapper(direction: Direction):
    sign = -1.0 if direction.is_reversed else 1.0
    if direction.is_vertical:
        return lambda main, cross: Point(cross, sign * main)
    return lambda main, cross: Point(sign * main, cross)


def _frame_to_box(frame: Tuple[float, float, float, float], direction: Direction) -> Box:
    main_start, cross_start, main_size, cross_size = frame
    main_pos = -(main_start + main_size) if direction.is_reversed else main_start
    if direction.is_vertical:
        return Box(cross_start, main_pos, cross_size, main_size)
    return Box(main_pos, cross_start, main_size, cross_size)


def _finalize(
    diagram: Diagram,
    node_boxes: List[Box],
    ranks: List[int],
    routes: List[Tuple[List[Point], Optional[Box]]],
    config: LayoutConfig,
) -> Geometry:
    min_x = min(box.left for box in node_boxes)
    min_y = min(box.top for box in node_boxes)
    max_x = max(box.right for box in node_boxes)
    max_y = max(box.bottom for box in node_boxes)
    for points, label_box in routes:
        for point in points:
            min_x, max_x = min(min_x, point.x), max(max_x, point.x)
            min_y, max_y = min(min_y, point.y), max(max_y, point.y)
        if label_box is not None:
            min_x, max_x = min(min_x, label_box.left), max(max_x, label_box.right)
            min_y, max_y = min(min_y, label_box.top), max(max_y, label_box.bottom)

    dx = config.margin - min_x
    dy = config.margin - min_y
    nodes = {
        node.id: box.translated(dx, dy) for node, box in zip(diagram.nodes, node_boxes)
    }
    edges = tuple(
        Route(
            points=tuple(Point(p.x + dx, p.y + dy) for p in points),
            label_box=label_box.translated(dx, dy) if label_box is not None else None,
        )
        for points, label_box in routes
    )
    canvas = Box(
        0.0,
        0.0,
        (max_x - min_x) + 2 * config.margin,
        (max_y - min_y) + 2 * config.margin,
    )
    return Geometry(
        nodes=MappingProxyType(nodes),
        ranks=MappingProxyType({node.id: rank for node, rank in zip(diagram.nodes, ranks)}),
        edges=edges,
        canvas=canvas,
        direction=diagram.direction,
    )


__all__ = [
    "Box",
    "DEFAULT_LAYOUT",
    "Geometry",
    "LayoutConfig",
    "Point",
    "Route",
    "assign_ranks",
    "count_crossings",
    "find_back_edges",
    "heading_font",
    "label_font",
    "layout_diagram",
    "measure_node",
    "order_layers",
]
