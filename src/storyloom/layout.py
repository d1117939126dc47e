"""Story tree layout.

Computes reachability, depth, orphan status and 2D positions from a story
graph and a start node. The player's tree view and the editor both consume
the same :class:`Layout`, so the two can never disagree about shape.

Pure graph analysis: nothing here mutates the graph.

Algorithm:
    1. Build per-node adjacency, deduplicated by canonical target and
       restricted to known node ids and ending keys.
    2. Breadth-first traversal from the start id records each vertex's
       depth and the parent that reached it first.
    3. Vertices are grouped into layers by depth. Layer 0 is sorted
       lexicographically; each later layer follows the order of the layer
       before it, grouping siblings under their parent by choice label.
    4. ``x`` follows depth; ``y`` centers each layer against the tallest one.

Story nodes that the traversal never reaches are still placed (depth 0,
layer 0) so an editor can find and prune them.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from storyloom.config import DEFAULT_MAX_ANCESTOR_STEPS, LayoutSettings
from storyloom.graph.errors import EmptyGraphError
from storyloom.graph.resolve import canonicalize_target, resolve_start_node_id
from storyloom.observability.logging import get_logger

if TYPE_CHECKING:
    from storyloom.graph.models import StoryGraph

log = get_logger(__name__)

REASON_UNREACHABLE = "unreachable from start"
REASON_NO_INCOMING = "no incoming edge"


@dataclass
class LayoutNode:
    """A positioned vertex."""

    id: str
    kind: Literal["story", "ending"]
    depth: int
    x: float
    y: float
    width: int
    height: int


@dataclass
class LayoutEdge:
    """A positioned choice edge."""

    from_id: str
    to_id: str
    label: str = ""


@dataclass
class OrphanWarning:
    """A story node an editor probably wants to prune.

    Attributes:
        node_id: The orphaned node.
        reason: Human-readable explanation.
    """

    node_id: str
    reason: str


@dataclass
class Layout:
    """Complete layout of a story graph.

    Attributes:
        start_id: Root of the traversal.
        nodes: Positioned vertices in layer order.
        edges: Choice edges between positioned vertices.
        width: Canvas width.
        height: Canvas height.
        parents: Child id → id of the vertex that reached it first.
        reachable: Ids reached by the traversal from ``start_id``.
    """

    start_id: str
    nodes: list[LayoutNode] = field(default_factory=list)
    edges: list[LayoutEdge] = field(default_factory=list)
    width: float = 0
    height: float = 0
    parents: dict[str, str] = field(default_factory=dict)
    reachable: set[str] = field(default_factory=set)

    def get(self, node_id: str) -> LayoutNode | None:
        """Look up a positioned vertex by id."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def layer(self, depth: int) -> list[str]:
        """Ids of the vertices at *depth*, in placement order."""
        return [n.id for n in self.nodes if n.depth == depth]

    @property
    def max_depth(self) -> int:
        """Deepest layer index (0 for a single layer)."""
        return max((n.depth for n in self.nodes), default=0)


def build_adjacency(graph: StoryGraph) -> dict[str, list[tuple[str, str]]]:
    """Build the visual adjacency list of every story node.

    Targets are canonicalized, deduplicated (the first choice label wins)
    and kept only if they name a node or an ending. Dangling targets are
    left out of the picture; the play session still reports them.

    Args:
        graph: Story graph.

    Returns:
        Node id → list of ``(target_id, label)`` in choice order.
    """
    adjacency: dict[str, list[tuple[str, str]]] = {}
    for node_id, node in graph.nodes.items():
        seen: set[str] = set()
        targets: list[tuple[str, str]] = []
        for choice in node.choices:
            target = canonicalize_target(choice.next_node_id)
            if target in seen or not graph.has_target(target):
                continue
            seen.add(target)
            targets.append((target, choice.text))
        adjacency[node_id] = targets
    return adjacency


def _children(
    graph: StoryGraph,
    adjacency: dict[str, list[tuple[str, str]]],
    vertex: str,
) -> list[tuple[str, str]]:
    # An id that is also an ending key is an ending in play, so it has no children.
    if vertex in graph.endings:
        return []
    return adjacency.get(vertex, [])


def traverse(
    graph: StoryGraph,
    start_id: str,
    adjacency: dict[str, list[tuple[str, str]]] | None = None,
) -> tuple[dict[str, int], dict[str, str]]:
    """Breadth-first traversal from *start_id*.

    Args:
        graph: Story graph.
        start_id: Traversal root.
        adjacency: Precomputed adjacency (built if omitted).

    Returns:
        ``(depth, parents)``: shortest-hop depth of every reached vertex and
        the vertex that reached it first.
    """
    if adjacency is None:
        adjacency = build_adjacency(graph)

    depth: dict[str, int] = {start_id: 0}
    parents: dict[str, str] = {}
    queue: deque[str] = deque([start_id])
    while queue:
        current = queue.popleft()
        for target, _label in _children(graph, adjacency, current):
            if target in depth:
                continue
            depth[target] = depth[current] + 1
            parents[target] = current
            queue.append(target)
    return depth, parents


def _order_layers(
    graph: StoryGraph,
    depth: dict[str, int],
    adjacency: dict[str, list[tuple[str, str]]],
    reachable: set[str],
) -> list[list[str]]:
    """Group vertices by depth and order each layer next to its parents."""
    max_depth = max(depth.values(), default=0)
    by_depth: list[list[str]] = [[] for _ in range(max_depth + 1)]
    for vertex, d in depth.items():
        by_depth[d].append(vertex)

    layers: list[list[str]] = [sorted(by_depth[0])]
    for d in range(1, max_depth + 1):
        members = set(by_depth[d])
        placed: list[str] = []
        placed_set: set[str] = set()
        for parent in layers[d - 1]:
            if parent not in reachable:
                continue
            children = [
                (label, target)
                for target, label in _children(graph, adjacency, parent)
                if target in members and target not in placed_set
            ]
            for _label, target in sorted(children):
                placed.append(target)
                placed_set.add(target)
        placed.extend(sorted(members - placed_set))
        layers.append(placed)
    return layers


def compute_layout(
    graph: StoryGraph,
    start_id: str | None = None,
    *,
    settings: LayoutSettings | None = None,
) -> Layout:
    """Lay out the story graph as a left-to-right tree.

    Args:
        graph: Story graph.
        start_id: Traversal root; resolved with the start-node heuristic if
            omitted or unknown.
        settings: Geometry; defaults to :class:`LayoutSettings`.

    Returns:
        Layout with positioned nodes and edges, canvas size and parent map.

    Raises:
        EmptyGraphError: If the graph has no nodes.
    """
    if not graph.nodes:
        raise EmptyGraphError("cannot lay out an empty graph")

    settings = settings or LayoutSettings()
    if not start_id or start_id not in graph.nodes:
        if start_id:
            log.warning("layout_start_unknown", start=start_id)
        start_id = resolve_start_node_id(graph)

    adjacency = build_adjacency(graph)
    depth, parents = traverse(graph, start_id, adjacency)
    reachable = set(depth)

    placement = dict(depth)
    for node_id in graph.nodes:
        placement.setdefault(node_id, 0)

    layers = _order_layers(graph, placement, adjacency, reachable)
    max_count = max(len(layer) for layer in layers)

    nodes: list[LayoutNode] = []
    for d, layer in enumerate(layers):
        offset = (max_count - len(layer)) * settings.y_step / 2
        for index, vertex in enumerate(layer):
            nodes.append(
                LayoutNode(
                    id=vertex,
                    kind="ending" if vertex in graph.endings else "story",
                    depth=d,
                    x=settings.padding + d * settings.x_step,
                    y=settings.padding + offset + index * settings.y_step,
                    width=settings.node_width,
                    height=settings.node_height,
                )
            )

    edges: list[LayoutEdge] = []
    for node in nodes:
        for target, label in _children(graph, adjacency, node.id):
            if target in placement:
                edges.append(LayoutEdge(from_id=node.id, to_id=target, label=label))

    layout = Layout(
        start_id=start_id,
        nodes=nodes,
        edges=edges,
        width=settings.padding * 2 + len(layers) * settings.x_step,
        height=settings.padding * 2 + max_count * settings.y_step,
        parents=parents,
        reachable=reachable,
    )
    log.debug(
        "layout_computed",
        start=start_id,
        nodes=len(nodes),
        edges=len(edges),
        layers=len(layers),
        unreachable=len(set(graph.nodes) - reachable),
    )
    return layout


def find_orphans(graph: StoryGraph, start_id: str | None = None) -> list[OrphanWarning]:
    """Find story nodes that are unreachable or have no incoming edge.

    Args:
        graph: Story graph.
        start_id: Traversal root; resolved with the start-node heuristic if
            omitted or unknown.

    Returns:
        Orphan warnings sorted by node id. The start node is never listed.
    """
    if not graph.nodes:
        return []
    if not start_id or start_id not in graph.nodes:
        start_id = resolve_start_node_id(graph)

    adjacency = build_adjacency(graph)
    depth, _parents = traverse(graph, start_id, adjacency)

    has_incoming: set[str] = set()
    for source, targets in adjacency.items():
        for target, _label in targets:
            if target != source and target in graph.nodes:
                has_incoming.add(target)

    orphans: list[OrphanWarning] = []
    for node_id in sorted(graph.nodes):
        if node_id == start_id:
            continue
        unreachable = node_id not in depth
        no_incoming = node_id not in has_incoming
        if no_incoming:
            reason = REASON_NO_INCOMING
        elif unreachable:
            reason = REASON_UNREACHABLE
        else:
            continue
        orphans.append(OrphanWarning(node_id=node_id, reason=reason))

    if orphans:
        log.info("orphans_found", count=len(orphans), start=start_id)
    return orphans


def ancestor_path(
    parents: dict[str, str],
    focus_id: str,
    *,
    max_steps: int = DEFAULT_MAX_ANCESTOR_STEPS,
) -> list[str]:
    """Walk parent pointers from *focus_id* towards the root.

    Used to highlight the path taken to a node (e.g. where an ending was
    reached). The walk stops at the root, on a repeated id, or after
    *max_steps* hops, whichever comes first.

    Args:
        parents: Child → parent map from :class:`Layout`.
        focus_id: Where the walk begins (included in the result).
        max_steps: Upper bound on hops taken.

    Returns:
        Ids from the focus up to the furthest ancestor reached.
    """
    path = [focus_id]
    seen = {focus_id}
    current = focus_id
    for _ in range(max(0, max_steps)):
        parent = parents.get(current)
        if parent is None or parent in seen:
            break
        path.append(parent)
        seen.add(parent)
        current = parent
    return path


class LayoutCache:
    """Reuse a computed layout until the graph is edited.

    Editor mutations bump ``StoryGraph.revision``; a changed revision,
    graph object or start id triggers recomputation.
    """

    def __init__(self, settings: LayoutSettings | None = None) -> None:
        self._settings = settings
        self._key: tuple[int, int, str | None] | None = None
        self._layout: Layout | None = None

    def get(self, graph: StoryGraph, start_id: str | None = None) -> Layout:
        """Return the cached layout or compute a fresh one."""
        key = (id(graph), graph.revision, start_id)
        if self._layout is None or key != self._key:
            self._layout = compute_layout(graph, start_id, settings=self._settings)
            self._key = key
        return self._layout

    def invalidate(self) -> None:
        """Drop the cached layout."""
        self._key = None
        self._layout = None
