"""Arrange the units of a family tree into a top-down diagram.

The primary path hands unit sizes and parent/child edges to Graphviz ``dot``
and reads back the ``plain`` output. Its coordinates are then corrected so
that every generation sits on one row and the children of a polygamous unit
are ordered by their mother. The fallback path needs no external program: it
packs each breadth-first level into a row centered on ``x = 0``.
"""

from __future__ import annotations

import logging
import subprocess
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import graphviz

from .domain import FamilyTree, FamilyUnit
from .models import Gender, UnitType

logger = logging.getLogger(__name__)

NODE_WIDTH = 280
NODE_HEIGHT = 140
EXTRA_PERSON_WIDTH = 140

NODE_SPACING = 50
LEVEL_SPACING = 80

HORIZONTAL_SPACING = 300
VERTICAL_SPACING = 180

# Graphviz plain output is in inches
POINTS_PER_INCH = 72

COLOR_MALE = "#3b82f6"
COLOR_FEMALE = "#ec4899"
COLOR_UNKNOWN = "#94a3b8"

ENGINES = ("auto", "graphviz", "fallback")


@dataclass
class NodeLayout:
    """Top-left placement of one unit, in pixels."""

    id: str
    x: float
    y: float
    width: float
    height: float
    level: int = 0


@dataclass
class EdgeLayout:
    id: str
    source: str
    target: str
    color: str
    source_handle: Optional[str] = None
    type: str = "family"


@dataclass
class Diagram:
    engine: str
    nodes: Dict[str, NodeLayout] = field(default_factory=dict)
    edges: List[EdgeLayout] = field(default_factory=list)


class LayoutUnavailable(RuntimeError):
    """Graphviz could not produce a layout."""


def node_size(unit: FamilyUnit) -> Tuple[float, float]:
    width = NODE_WIDTH
    if unit.type == UnitType.polygamous:
        width += EXTRA_PERSON_WIDTH * max(len(unit.persons) - 2, 1)
    return width, NODE_HEIGHT


def _mother_order(unit: FamilyUnit) -> Tuple[bool, int]:
    return (unit.mother_index is None, unit.mother_index or 0)


def ordered_children(tree: FamilyTree, children: Dict[str, List[str]], unit_id: str) -> List[str]:
    """Children of ``unit_id`` sorted by mother index; ties keep insertion order."""

    return sorted(children.get(unit_id, []), key=lambda child_id: _mother_order(tree.units[child_id]))


def compute_levels(tree: FamilyTree) -> Dict[str, int]:
    """Breadth-first distance of every reachable unit from the root."""

    children = tree.children_index()
    levels: Dict[str, int] = {}
    queue = deque([(tree.root_id, 0)])
    while queue:
        unit_id, level = queue.popleft()
        levels[unit_id] = level
        for child_id in ordered_children(tree, children, unit_id):
            queue.append((child_id, level + 1))
    return levels


# Post-processing -------------------------------------------------------------


def align_levels(nodes: Dict[str, NodeLayout], levels: Dict[str, int]) -> None:
    """Snap nodes of the same level onto the lowest y any of them received."""

    rows: Dict[int, float] = {}
    for node_id, node in nodes.items():
        level = levels.get(node_id, node.level)
        rows[level] = max(rows.get(level, node.y), node.y)
    for node_id, node in nodes.items():
        node.y = rows[levels.get(node_id, node.level)]


def reorder_polygamous_children(tree: FamilyTree, nodes: Dict[str, NodeLayout]) -> None:
    """Repack the children of each polygamous unit in mother order.

    The siblings keep the horizontal extent they already occupy and the gaps
    between them, so nodes of different widths never overlap after the swap.
    """

    children = tree.children_index()
    for unit in tree.units.values():
        if unit.type != UnitType.polygamous:
            continue
        child_ids = [child_id for child_id in ordered_children(tree, children, unit.id) if child_id in nodes]
        if len(child_ids) < 2:
            continue
        current = sorted((nodes[child_id] for child_id in child_ids), key=lambda node: node.x)
        gaps = [max(right.x - (left.x + left.width), 0) for left, right in zip(current, current[1:])]
        x = current[0].x
        for child_id, gap in zip(child_ids, gaps + [0]):
            nodes[child_id].x = x
            x += nodes[child_id].width + gap


def lineage_color(unit: FamilyUnit) -> str:
    person = unit.primary_person
    if person is None or person.gender is None:
        return COLOR_UNKNOWN
    return COLOR_MALE if person.gender == Gender.male else COLOR_FEMALE


def build_edges(tree: FamilyTree) -> List[EdgeLayout]:
    edges = []
    for unit in tree.units.values():
        if unit.parent_id is None:
            continue
        parent = tree.units.get(unit.parent_id)
        handle = None
        if parent is not None and parent.type == UnitType.polygamous and unit.mother_index is not None:
            handle = f"mother-{unit.mother_index}"
        edges.append(
            EdgeLayout(
                id=f"e-{unit.parent_id}-{unit.id}",
                source=unit.parent_id,
                target=unit.id,
                color=lineage_color(unit),
                source_handle=handle,
            )
        )
    return edges


# Graphviz --------------------------------------------------------------------


def build_graph(tree: FamilyTree, aliases: Dict[str, str]) -> graphviz.Digraph:
    """Describe the tree for ``dot``, children listed in mother order."""

    dot = graphviz.Digraph("family", format="plain")
    dot.attr(
        rankdir="TB",
        ordering="out",
        nodesep=str(NODE_SPACING / POINTS_PER_INCH),
        ranksep=str(LEVEL_SPACING / POINTS_PER_INCH),
        splines="false",
    )
    dot.attr("node", shape="box", fixedsize="true", label="")

    for unit_id, unit in tree.units.items():
        width, height = node_size(unit)
        dot.node(
            aliases[unit_id],
            width=str(width / POINTS_PER_INCH),
            height=str(height / POINTS_PER_INCH),
        )

    children = tree.children_index()
    for unit_id in tree.units:
        for child_id in ordered_children(tree, children, unit_id):
            dot.edge(aliases[unit_id], aliases[child_id])
    return dot


def render_plain(dot: graphviz.Digraph) -> str:
    """Run ``dot`` and return its ``plain`` output."""

    try:
        return dot.pipe(format="plain", encoding="utf-8")
    except graphviz.ExecutableNotFound as exc:
        raise LayoutUnavailable("Graphviz 'dot' executable not found") from exc
    except subprocess.CalledProcessError as exc:
        raise LayoutUnavailable(f"Graphviz failed: {exc}") from exc


def parse_plain(plain_text: str, names: Dict[str, str]) -> Dict[str, NodeLayout]:
    """Read node boxes from ``plain`` output.

    ``names`` maps Graphviz node names back to unit ids. Graphviz puts the
    origin bottom-left with y pointing up and reports centers; the result uses
    top-left corners with y pointing down.
    """

    graph_height = 0.0
    nodes: Dict[str, NodeLayout] = {}
    for line in plain_text.strip().splitlines():
        parts = line.split()
        if not parts:
            continue
        if parts[0] == "graph":
            graph_height = float(parts[3]) * POINTS_PER_INCH
        elif parts[0] == "node":
            unit_id = names.get(parts[1].strip('"'))
            if unit_id is None:
                continue
            cx = float(parts[2]) * POINTS_PER_INCH
            cy = graph_height - float(parts[3]) * POINTS_PER_INCH
            width = float(parts[4]) * POINTS_PER_INCH
            height = float(parts[5]) * POINTS_PER_INCH
            nodes[unit_id] = NodeLayout(
                id=unit_id, x=cx - width / 2, y=cy - height / 2, width=width, height=height
            )
        elif parts[0] == "stop":
            break
    return nodes


def graphviz_layout(tree: FamilyTree) -> Diagram:
    aliases = {unit_id: f"n{index}" for index, unit_id in enumerate(tree.units)}
    names = {alias: unit_id for unit_id, alias in aliases.items()}
    nodes = parse_plain(render_plain(build_graph(tree, aliases)), names)

    levels = compute_levels(tree)
    for node_id, node in nodes.items():
        node.level = levels.get(node_id, 0)
    align_levels(nodes, levels)
    reorder_polygamous_children(tree, nodes)
    return Diagram(engine="graphviz", nodes=nodes, edges=build_edges(tree))


# Fallback --------------------------------------------------------------------


def fallback_layout(tree: FamilyTree) -> Diagram:
    """One row per breadth-first level, each row centered on ``x = 0``."""

    children = tree.children_index()
    levels: Dict[str, int] = {}
    rows: Dict[int, List[str]] = {}
    queue = deque([(tree.root_id, 0)])
    while queue:
        unit_id, level = queue.popleft()
        levels[unit_id] = level
        rows.setdefault(level, []).append(unit_id)
        for child_id in ordered_children(tree, children, unit_id):
            queue.append((child_id, level + 1))

    # units the root does not reach still get drawn on the top row
    for unit_id in tree.units:
        if unit_id not in levels:
            levels[unit_id] = 0
            rows.setdefault(0, []).append(unit_id)

    # base-width nodes sit HORIZONTAL_SPACING apart, wider nodes push their neighbours out
    gap = HORIZONTAL_SPACING - NODE_WIDTH
    nodes: Dict[str, NodeLayout] = {}
    for level, row in rows.items():
        sizes = [node_size(tree.units[unit_id]) for unit_id in row]
        x = -(sum(width for width, _ in sizes) + gap * (len(row) - 1)) / 2
        for unit_id, (width, height) in zip(row, sizes):
            nodes[unit_id] = NodeLayout(
                id=unit_id,
                x=x,
                y=level * VERTICAL_SPACING,
                width=width,
                height=height,
                level=level,
            )
            x += width + gap

    reorder_polygamous_children(tree, nodes)
    return Diagram(engine="fallback", nodes=nodes, edges=build_edges(tree))


def layout_family_tree(tree: FamilyTree, engine: str = "auto") -> Diagram:
    """Lay out ``tree`` with the requested engine.

    ``auto`` tries Graphviz and falls back when it is unavailable;
    ``graphviz`` lets :class:`LayoutUnavailable` propagate.
    """

    if engine not in ENGINES:
        raise ValueError(f"Unknown layout engine {engine!r}")
    if engine == "fallback":
        return fallback_layout(tree)
    try:
        return graphviz_layout(tree)
    except LayoutUnavailable as exc:
        if engine == "graphviz":
            raise
        logger.warning("Falling back to simple layout for tree %s: %s", tree.id, exc)
        return fallback_layout(tree)
