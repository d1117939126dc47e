"""Clean-up passes for freshly generated story documents.

Generated graphs tend to come back with spelling variants of the ending
keys, duplicated scenes, loops, choices that point nowhere and affinity
effects for characters who are not in the scene. These passes repair such
documents in place so they can be played end to end.

Run order (as :func:`sanitize` does it):

1. :func:`normalize_endings` - canonical ending keys and targets.
2. :func:`sanitize_graph` - merge duplicates, break cycles, fix targets.
3. :func:`sanitize_affinity_effects` - resolve and filter affinity effects.

Each pass returns a :class:`SanitizeReport` with what it changed and bumps
``StoryGraph.revision`` when it changed anything.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import TYPE_CHECKING

from storyloom.graph.models import AFFINITY_DELTA_LIMIT, END_SENTINEL
from storyloom.graph.resolve import (
    CANONICAL_ENDING_KEYS,
    ENDING_BAD,
    ENDING_GOOD,
    ENDING_NEUTRAL,
    canonicalize_target,
    pick_protagonist,
    resolve_character_names,
)
from storyloom.observability.logging import get_logger

if TYPE_CHECKING:
    from storyloom.graph.models import StoryGraph

log = get_logger(__name__)

MAX_ENDINGS = 5
START_ID = "start"


@dataclass
class SanitizeReport:
    """Counts of the repairs made by the sanitizer passes."""

    endings_renamed: int = 0
    endings_dropped: int = 0
    targets_canonicalized: int = 0
    nodes_merged: int = 0
    cycles_broken: int = 0
    targets_redirected: int = 0
    ending_choices_cleared: int = 0
    ending_keys_assigned: int = 0
    affinity_clamped: int = 0
    affinity_dropped: int = 0

    @property
    def total(self) -> int:
        """Total number of repairs."""
        return sum(getattr(self, f.name) for f in fields(self))

    @property
    def changed(self) -> bool:
        """True if any pass modified the graph."""
        return self.total > 0

    def as_dict(self) -> dict[str, int]:
        """Counts keyed by repair name."""
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _finish(graph: StoryGraph, report: SanitizeReport, before: int, event: str) -> None:
    changes = report.total - before
    if changes:
        graph.touch()
        log.info(event, changes=changes)


def normalize_endings(graph: StoryGraph, report: SanitizeReport | None = None) -> SanitizeReport:
    """Rekey ending aliases to their canonical keys and cap the endings map.

    An alias is dropped when its canonical key already exists. Choice
    targets are canonicalized the same way. If more than five endings
    remain, the canonical three are kept first and the rest fill up in map
    order.

    Args:
        graph: Graph to repair in place.
        report: Report to accumulate into (a new one if omitted).

    Returns:
        The report.
    """
    report = report or SanitizeReport()
    before = report.total
    if not graph.endings:
        return report

    endings = dict(graph.endings)
    for key in list(graph.endings):
        canonical = canonicalize_target(key)
        if canonical == key:
            continue
        ending = endings.pop(key)
        if canonical in graph.endings or canonical in endings:
            report.endings_dropped += 1
            continue
        endings[canonical] = ending
        report.endings_renamed += 1

    for node in graph.nodes.values():
        for choice in node.choices:
            canonical = canonicalize_target(choice.next_node_id)
            if canonical != choice.next_node_id:
                choice.next_node_id = canonical
                report.targets_canonicalized += 1

    if len(endings) > MAX_ENDINGS:
        kept = {key: endings[key] for key in CANONICAL_ENDING_KEYS if key in endings}
        for key, ending in endings.items():
            if len(kept) >= MAX_ENDINGS:
                break
            kept.setdefault(key, ending)
        report.endings_dropped += len(endings) - len(kept)
        endings = kept

    graph.endings = endings
    _finish(graph, report, before, "endings_normalized")
    return report


def _cycle_fallback(graph: StoryGraph) -> str:
    for key in (ENDING_NEUTRAL, ENDING_BAD, ENDING_GOOD):
        if key in graph.endings:
            return key
    return END_SENTINEL


def _start_first(ids: list[str]) -> list[str]:
    ordered = sorted(ids)
    if START_ID in ordered:
        ordered.remove(START_ID)
        ordered.insert(0, START_ID)
    return ordered


def _merge_duplicates(graph: StoryGraph, report: SanitizeReport) -> None:
    """Fold nodes with identical content and choices into the first of them."""
    owners: dict[str, str] = {}
    redirect: dict[str, str] = {}
    for node_id in _start_first(list(graph.nodes)):
        if node_id == START_ID:
            continue
        node = graph.nodes[node_id]
        parts = sorted(f"{c.text.strip()}→{c.next_node_id.strip()}" for c in node.choices)
        signature = f"{node.content.strip()}||{'|'.join(parts)}"
        owner = owners.setdefault(signature, node_id)
        if owner != node_id:
            redirect[node_id] = owner

    if not redirect:
        return

    for node in graph.nodes.values():
        for choice in node.choices:
            target = redirect.get(choice.next_node_id)
            if target is not None:
                choice.next_node_id = target
    for ending in graph.endings.values():
        if ending.node_id in redirect:
            ending.node_id = redirect[ending.node_id]
    for duplicate, owner in redirect.items():
        ending_key = graph.nodes[duplicate].ending_key
        if ending_key and graph.nodes[owner].ending_key is None:
            graph.nodes[owner].ending_key = ending_key
        del graph.nodes[duplicate]

    report.nodes_merged += len(redirect)
    log.debug("duplicate_nodes_merged", merged=sorted(redirect))


def _break_cycles(graph: StoryGraph, fallback: str, report: SanitizeReport) -> None:
    """Point every back-edge found by depth-first search at *fallback*."""
    visiting, done = 1, 2
    state: dict[str, int] = {}

    def cut(node_id: str, target: str) -> None:
        for choice in graph.nodes[node_id].choices:
            if choice.next_node_id == target:
                choice.next_node_id = fallback
                report.cycles_broken += 1

    for root in _start_first(list(graph.nodes)):
        if root in state:
            continue
        state[root] = visiting
        stack = [(root, [c.next_node_id for c in graph.nodes[root].choices], 0)]
        while stack:
            current, targets, index = stack[-1]
            if index >= len(targets):
                state[current] = done
                stack.pop()
                continue
            stack[-1] = (current, targets, index + 1)
            target = targets[index]
            if target == current or state.get(target) == visiting:
                cut(current, target)
                continue
            if target not in graph.nodes or target in state:
                continue
            state[target] = visiting
            stack.append((target, [c.next_node_id for c in graph.nodes[target].choices], 0))


def sanitize_graph(graph: StoryGraph, report: SanitizeReport | None = None) -> SanitizeReport:
    """Repair the node graph so every path ends.

    - Nodes with the same content and choices are merged into the first
      (by sorted id); ``start`` is never merged away.
    - Cycles are broken, searching from ``start`` first and then every other
      node by sorted id; each back-edge is pointed at the neutral ending
      (else bad, else good, else ``END``).
    - Empty or dangling targets go to the neutral ending, else the first
      ending, else ``END``.
    - Nodes whose ``ending_key`` names an ending lose their choices.
    - Terminal nodes without a valid ``ending_key`` get the neutral ending's
      key when that ending exists.

    Args:
        graph: Graph to repair in place.
        report: Report to accumulate into (a new one if omitted).

    Returns:
        The report.
    """
    report = report or SanitizeReport()
    before = report.total
    if not graph.nodes:
        return report

    cycle_fallback = _cycle_fallback(graph)
    _merge_duplicates(graph, report)
    _break_cycles(graph, cycle_fallback, report)

    if cycle_fallback in graph.endings:
        target_fallback = cycle_fallback
    else:
        target_fallback = next(iter(graph.endings), END_SENTINEL)

    for node in graph.nodes.values():
        for choice in node.choices:
            target = choice.next_node_id.strip()
            if target == END_SENTINEL or (target and graph.has_target(target)):
                continue
            choice.next_node_id = target_fallback
            report.targets_redirected += 1

    for node in graph.nodes.values():
        if node.ending_key in graph.endings and node.choices:
            node.choices = []
            report.ending_choices_cleared += 1

    for node in graph.nodes.values():
        if node.choices or node.ending_key in graph.endings:
            continue
        if ENDING_NEUTRAL in graph.endings:
            node.ending_key = ENDING_NEUTRAL
            report.ending_keys_assigned += 1

    _finish(graph, report, before, "graph_sanitized")
    return report


def sanitize_affinity_effects(
    graph: StoryGraph, report: SanitizeReport | None = None
) -> SanitizeReport:
    """Resolve affinity effects to character names and drop the unusable ones.

    An effect is dropped when its character is empty, is the protagonist,
    or is not part of the node's scene. Deltas are clamped to ±20.

    Args:
        graph: Graph to repair in place.
        report: Report to accumulate into (a new one if omitted).

    Returns:
        The report.
    """
    report = report or SanitizeReport()
    before = report.total
    if not graph.nodes:
        return report

    id_to_name = graph.character_name_map()
    protagonist = pick_protagonist(graph.characters)

    for node in graph.nodes.values():
        scene = set(resolve_character_names(node.characters, id_to_name))
        for choice in node.choices:
            effect = choice.affinity_effect
            if effect is None:
                continue

            clamped = max(-AFFINITY_DELTA_LIMIT, min(AFFINITY_DELTA_LIMIT, effect.delta))
            if clamped != effect.delta:
                effect.delta = clamped
                report.affinity_clamped += 1

            raw = effect.character_id.strip()
            name = id_to_name.get(raw, raw)
            if not name or name == protagonist or name not in scene:
                choice.affinity_effect = None
                report.affinity_dropped += 1
                continue
            effect.character_id = name

    _finish(graph, report, before, "affinity_effects_sanitized")
    return report


def sanitize(graph: StoryGraph) -> SanitizeReport:
    """Run every clean-up pass in order and return the combined report."""
    report = SanitizeReport()
    normalize_endings(graph, report)
    sanitize_graph(graph, report)
    sanitize_affinity_effects(graph, report)
    log.info("sanitize_complete", **report.as_dict())
    return report
