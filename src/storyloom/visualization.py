"""Story graph visualization.

Renders a computed :class:`~storyloom.layout.Layout` as DOT (Graphviz) or
Mermaid markup. Both renderers take the layout rather than the raw graph,
so what they draw is exactly what the tree viewer and the editor show.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from storyloom.layout import find_orphans
from storyloom.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Collection

    from storyloom.graph.models import StoryGraph
    from storyloom.layout import Layout

log = get_logger(__name__)

_STORY_COLOR = "#ADD8E6"  # light blue
_START_COLOR = "#90EE90"  # light green
_ENDING_COLORS = {
    "good": "#98FB98",  # pale green
    "neutral": "#F0E68C",  # khaki
    "bad": "#FFB6C1",  # light pink
}
_HIGHLIGHT_COLOR = "#FF4500"  # orange-red
_LABEL_LENGTH = 40
_MERMAID_PLAIN_ID = re.compile(r"[0-9A-Za-z_]+")
_MERMAID_UNSAFE = re.compile(r"[^0-9A-Za-z_]")


@dataclass
class VizNode:
    """A vertex as drawn."""

    id: str
    label: str
    kind: str = "story"
    ending_type: str | None = None
    is_start: bool = False
    is_orphan: bool = False
    highlighted: bool = False


@dataclass
class VizEdge:
    """A choice edge as drawn."""

    from_id: str
    to_id: str
    label: str = ""
    highlighted: bool = False


@dataclass
class VizGraph:
    """Drawable data extracted from a layout."""

    nodes: list[VizNode] = field(default_factory=list)
    edges: list[VizEdge] = field(default_factory=list)


def build_viz_graph(
    layout: Layout,
    graph: StoryGraph,
    *,
    highlight: Collection[str] = (),
) -> VizGraph:
    """Extract drawable nodes and edges from a layout.

    Args:
        layout: Layout computed for *graph*.
        graph: The story graph the layout was computed from.
        highlight: Ids to draw bold, typically an ancestor path. An edge is
            highlighted when both of its ends are.

    Returns:
        VizGraph in layout order.
    """
    highlighted = set(highlight)
    orphans = {w.node_id for w in find_orphans(graph, layout.start_id)}

    nodes: list[VizNode] = []
    for placed in layout.nodes:
        if placed.kind == "ending":
            ending = graph.endings[placed.id]
            text = ending.description or placed.id
            ending_type: str | None = ending.type
        else:
            text = graph.nodes[placed.id].content or placed.id
            ending_type = None
        nodes.append(
            VizNode(
                id=placed.id,
                label=f"{placed.id}: {_truncate(text.strip(), _LABEL_LENGTH)}",
                kind=placed.kind,
                ending_type=ending_type,
                is_start=placed.id == layout.start_id,
                is_orphan=placed.id in orphans,
                highlighted=placed.id in highlighted,
            )
        )

    edges = [
        VizEdge(
            from_id=edge.from_id,
            to_id=edge.to_id,
            label=edge.label,
            highlighted=edge.from_id in highlighted and edge.to_id in highlighted,
        )
        for edge in layout.edges
    ]

    log.debug("viz_graph_built", nodes=len(nodes), edges=len(edges), highlighted=len(highlighted))
    return VizGraph(nodes=nodes, edges=edges)


def render_dot(
    layout: Layout,
    graph: StoryGraph,
    *,
    highlight: Collection[str] = (),
    no_labels: bool = False,
) -> str:
    """Render a layout as DOT (Graphviz) markup.

    Args:
        layout: Layout computed for *graph*.
        graph: The story graph.
        highlight: Ids to draw bold.
        no_labels: If True, omit choice labels on edges.

    Returns:
        DOT format string.
    """
    viz = build_viz_graph(layout, graph, highlight=highlight)

    lines = [
        "digraph story {",
        "  rankdir=LR;",
        '  node [fontname="Helvetica" fontsize=10 style="filled,solid"];',
        '  edge [fontname="Helvetica" fontsize=8];',
        "",
    ]

    for node in viz.nodes:
        attrs = _dot_node_attrs(node)
        attr_str = " ".join(f"{k}={v}" for k, v in attrs.items())
        lines.append(f'  "{_dot_escape(node.id)}" [{attr_str}];')

    lines.append("")

    for edge in viz.edges:
        edge_attrs: dict[str, str] = {}
        if not no_labels and edge.label:
            edge_attrs["label"] = f'"{_dot_escape(edge.label)}"'
        if edge.highlighted:
            edge_attrs["color"] = f'"{_HIGHLIGHT_COLOR}"'
            edge_attrs["penwidth"] = '"2.5"'
        edge_attr_str = " ".join(f"{k}={v}" for k, v in edge_attrs.items())
        suffix = f" [{edge_attr_str}]" if edge_attr_str else ""
        lines.append(f'  "{_dot_escape(edge.from_id)}" -> "{_dot_escape(edge.to_id)}"{suffix};')

    lines.append("}")
    return "\n".join(lines)


def render_mermaid(
    layout: Layout,
    graph: StoryGraph,
    *,
    highlight: Collection[str] = (),
    no_labels: bool = False,
) -> str:
    """Render a layout as Mermaid markup.

    Args:
        layout: Layout computed for *graph*.
        graph: The story graph.
        highlight: Ids to draw bold.
        no_labels: If True, omit choice labels on edges.

    Returns:
        Mermaid format string.
    """
    viz = build_viz_graph(layout, graph, highlight=highlight)
    ids = _mermaid_ids([node.id for node in viz.nodes])
    lines = ["graph LR"]

    for node in viz.nodes:
        safe_id = ids[node.id]
        label = _mermaid_escape(node.label)
        if node.kind == "ending":
            lines.append(f'  {safe_id}(["{label}"]):::{node.ending_type or "neutral"}')
        elif node.is_start:
            lines.append(f'  {safe_id}["{label}"]:::start')
        elif node.is_orphan:
            lines.append(f'  {safe_id}["{label}"]:::orphan')
        else:
            lines.append(f'  {safe_id}["{label}"]')
        if node.highlighted:
            lines.append(f"  class {safe_id} highlight")

    lines.append("")

    for edge in viz.edges:
        src = ids[edge.from_id]
        dst = ids[edge.to_id]
        arrow = "==>" if edge.highlighted else "-->"
        if not no_labels and edge.label:
            lines.append(f'  {src} {arrow}|"{_mermaid_escape(edge.label)}"| {dst}')
        else:
            lines.append(f"  {src} {arrow} {dst}")

    lines.append("")
    lines.append(f"  classDef start fill:{_START_COLOR},stroke:#333")
    for ending_type, color in _ENDING_COLORS.items():
        lines.append(f"  classDef {ending_type} fill:{color},stroke:#333")
    lines.append("  classDef orphan stroke-dasharray:5 5")
    lines.append(f"  classDef highlight stroke:{_HIGHLIGHT_COLOR},stroke-width:3px")

    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _truncate(text: str, max_len: int) -> str:
    """Truncate text with ellipsis if too long."""
    text = " ".join(text.split())
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def _dot_node_attrs(node: VizNode) -> dict[str, str]:
    """Build DOT attribute dict for a node."""
    attrs: dict[str, str] = {}

    if node.kind == "ending":
        attrs["shape"] = "octagon"
        attrs["fillcolor"] = f'"{_ENDING_COLORS.get(node.ending_type or "", _STORY_COLOR)}"'
    elif node.is_start:
        attrs["shape"] = "doubleoctagon"
        attrs["fillcolor"] = f'"{_START_COLOR}"'
    else:
        attrs["shape"] = "box"
        attrs["fillcolor"] = f'"{_STORY_COLOR}"'

    if node.is_orphan:
        attrs["style"] = '"filled,dashed"'
    if node.highlighted:
        attrs["color"] = f'"{_HIGHLIGHT_COLOR}"'
        attrs["penwidth"] = '"2.5"'

    attrs["label"] = f'"{_dot_escape(node.label)}"'
    return attrs


def _dot_escape(text: str) -> str:
    """Escape special characters for DOT strings."""
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _mermaid_ids(node_ids: list[str]) -> dict[str, str]:
    """Map node ids to distinct Mermaid identifiers.

    Plain ids become ``n_<id>`` (``end`` is reserved). Ids with other
    characters become ``x<index>_<sanitized>``, so ``a-b`` and ``a_b`` or two
    non-ASCII ids never share a vertex; the real id stays in the label.
    """
    ids: dict[str, str] = {}
    for index, node_id in enumerate(node_ids):
        if _MERMAID_PLAIN_ID.fullmatch(node_id):
            ids[node_id] = f"n_{node_id}"
        else:
            ids[node_id] = f"x{index}_" + _MERMAID_UNSAFE.sub("_", node_id)
    return ids


def _mermaid_escape(text: str) -> str:
    """Escape special characters for Mermaid labels."""
    return text.replace('"', "&quot;").replace("\n", " ")
