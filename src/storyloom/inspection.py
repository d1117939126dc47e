"""Story document inspection.

Summary statistics for a loaded story graph: size, branching structure,
reachability and text length. Pure graph analysis, nothing is modified.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from storyloom.graph.models import END_SENTINEL
from storyloom.graph.resolve import canonicalize_target, pick_protagonist
from storyloom.layout import compute_layout, find_orphans
from storyloom.observability.logging import get_logger

if TYPE_CHECKING:
    from storyloom.graph.models import StoryGraph
    from storyloom.graph.validation_types import ValidationIssue

log = get_logger(__name__)


@dataclass
class GraphSummary:
    """High-level document statistics."""

    title: str
    start_id: str
    nodes: int
    endings: int
    characters: int
    protagonist: str | None = None
    ending_types: dict[str, int] = field(default_factory=dict)


@dataclass
class BranchingStats:
    """Branching structure metrics."""

    choices: int = 0
    terminal_nodes: int = 0
    end_choices: int = 0
    dangling_targets: int = 0
    affinity_choices: int = 0
    max_choices: int = 0
    max_depth: int = 0
    reachable_nodes: int = 0
    reachable_endings: list[str] = field(default_factory=list)
    orphans: list[str] = field(default_factory=list)


@dataclass
class TextStats:
    """Narrative length metrics, in characters (scripts without spaces count too)."""

    total_chars: int = 0
    avg_chars: float = 0.0
    min_chars: int = 0
    max_chars: int = 0
    empty_nodes: list[str] = field(default_factory=list)


@dataclass
class InspectionReport:
    """Complete document inspection report."""

    summary: GraphSummary
    branching: BranchingStats = field(default_factory=BranchingStats)
    text: TextStats = field(default_factory=TextStats)
    issues: list[ValidationIssue] = field(default_factory=list)


def inspect_graph(
    graph: StoryGraph,
    issues: list[ValidationIssue] | None = None,
) -> InspectionReport:
    """Run all inspection checks on a story graph.

    Args:
        graph: Loaded story graph (at least one node).
        issues: Load issues to carry into the report.

    Returns:
        InspectionReport with all analysis results.

    Raises:
        EmptyGraphError: If the graph has no nodes.
    """
    layout = compute_layout(graph)
    summary = GraphSummary(
        title=graph.title,
        start_id=layout.start_id,
        nodes=len(graph.nodes),
        endings=len(graph.endings),
        characters=len(graph.characters),
        protagonist=pick_protagonist(graph.characters),
        ending_types=dict(Counter(e.type for e in graph.endings.values())),
    )

    branching = _branching_stats(graph)
    branching.max_depth = max(
        (n.depth for n in layout.nodes if n.id in layout.reachable), default=0
    )
    branching.reachable_nodes = len(layout.reachable & set(graph.nodes))
    branching.reachable_endings = sorted(layout.reachable & set(graph.endings))
    branching.orphans = [w.node_id for w in find_orphans(graph, layout.start_id)]

    report = InspectionReport(
        summary=summary,
        branching=branching,
        text=_text_stats(graph),
        issues=list(issues or []),
    )
    log.info(
        "inspection_complete",
        nodes=summary.nodes,
        endings=summary.endings,
        orphans=len(branching.orphans),
    )
    return report


def _branching_stats(graph: StoryGraph) -> BranchingStats:
    stats = BranchingStats()
    for node in graph.nodes.values():
        stats.choices += len(node.choices)
        stats.max_choices = max(stats.max_choices, len(node.choices))
        if node.is_terminal:
            stats.terminal_nodes += 1
        for choice in node.choices:
            target = canonicalize_target(choice.next_node_id)
            if target == END_SENTINEL:
                stats.end_choices += 1
            elif not graph.has_target(target):
                stats.dangling_targets += 1
            if choice.affinity_effect is not None:
                stats.affinity_choices += 1
    return stats


def _text_stats(graph: StoryGraph) -> TextStats:
    lengths = {node_id: len(node.content.strip()) for node_id, node in graph.nodes.items()}
    non_empty = [n for n in lengths.values() if n]
    stats = TextStats(empty_nodes=sorted(k for k, n in lengths.items() if n == 0))
    if non_empty:
        stats.total_chars = sum(non_empty)
        stats.avg_chars = round(stats.total_chars / len(non_empty), 1)
        stats.min_chars = min(non_empty)
        stats.max_chars = max(non_empty)
    return stats
