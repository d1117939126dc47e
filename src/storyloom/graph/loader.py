"""Document loading and normalization.

``load`` is the only way a raw document enters the engine. It accepts the
shapes the content generator and older imports actually produce and turns
them into the canonical :class:`StoryGraph`, recording every change it made
as a :class:`ValidationIssue`. Nothing here raises for odd input except an
empty ``nodes`` map, which leaves no start node to play from.

Legacy shapes handled:

- ``characters`` given as a list instead of a map
- node ``content`` given as ``{"text": ..., "notes": ...}`` or a list of lines
- node ``characters`` given as a single string
- missing ``choices`` / ``endings`` / ``characters``
- non-string ids, node ``id`` missing or different from its key
- choice ``nextNodeId`` missing
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from storyloom.graph.errors import EmptyGraphError
from storyloom.graph.models import AFFINITY_DELTA_LIMIT, END_SENTINEL, StoryGraph
from storyloom.graph.resolve import canonicalize_target
from storyloom.graph.validation_types import ValidationIssue, ValidationReport
from storyloom.observability.logging import get_logger

log = get_logger(__name__)


@dataclass
class LoadResult:
    """Outcome of loading a document.

    Attributes:
        graph: The normalized story graph.
        issues: Structural defects found and normalized, in discovery order.
    """

    graph: StoryGraph
    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def summary(self) -> str:
        """One-line summary of the issues."""
        return ValidationReport(self.issues).summary


def load(document: dict[str, Any]) -> LoadResult:
    """Normalize a raw document into a StoryGraph.

    Args:
        document: Parsed JSON document (camelCase or snake_case keys).

    Returns:
        LoadResult with the graph and the non-fatal issues found.

    Raises:
        EmptyGraphError: If the document has no nodes at all.
    """
    if not isinstance(document, dict):
        raise EmptyGraphError("document is not an object")

    report = ValidationReport()
    data = dict(document)

    raw_nodes = data.get("nodes")
    if not isinstance(raw_nodes, dict) or not raw_nodes:
        raise EmptyGraphError("document.nodes is empty or missing")

    data["characters"] = _normalize_characters(data.get("characters"), report)
    data["endings"] = _normalize_endings(data.get("endings"), report)
    data["nodes"] = {
        str(key): _normalize_node(str(key), raw, report) for key, raw in raw_nodes.items()
    }
    data["meta"] = _normalize_meta(data.get("meta"), report)

    graph = StoryGraph.model_validate(data)
    _report_dangling_targets(graph, report)

    log.info(
        "graph_loaded",
        nodes=len(graph.nodes),
        endings=len(graph.endings),
        characters=len(graph.characters),
        issues=len(report.issues),
    )
    return LoadResult(graph=graph, issues=report.issues)


def dump(graph: StoryGraph) -> dict[str, Any]:
    """Serialize a graph back into its wire document."""
    return graph.to_wire()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _text(value: Any) -> str:
    """Flatten a string-or-list-of-lines field into text."""
    if value is None:
        return ""
    if isinstance(value, list):
        return "\n".join(str(v) for v in value if v is not None)
    return str(value)


def _normalize_meta(raw: Any, report: ValidationReport) -> dict[str, Any]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        report.add("meta_invalid", "meta is not an object; ignored")
        return {}
    meta = dict(raw)
    for key in ("logline", "synopsis", "genre"):
        if isinstance(meta.get(key), list):
            meta[key] = _text(meta[key])
    return meta


def _normalize_characters(raw: Any, report: ValidationReport) -> dict[str, Any]:
    if raw is None:
        report.add("characters_missing", "characters map missing; using empty map")
        return {}

    if isinstance(raw, list):
        report.add("characters_list", "characters given as a list; keyed by id or name")
        characters: dict[str, Any] = {}
        for entry in raw:
            if not isinstance(entry, dict):
                continue
            key = str(entry.get("id") or "").strip() or str(entry.get("name") or "").strip()
            if not key:
                key = f"char_{len(characters)}"
            characters[key] = _normalize_character(key, entry)
        return characters

    if not isinstance(raw, dict):
        report.add("characters_invalid", "characters is not a map or list; ignored")
        return {}

    return {
        str(key): _normalize_character(str(key), entry)
        for key, entry in raw.items()
        if isinstance(entry, dict)
    }


def _normalize_character(key: str, entry: dict[str, Any]) -> dict[str, Any]:
    character = dict(entry)
    character["id"] = str(character.get("id") or key)
    for name in ("name", "gender", "role", "background"):
        character[name] = _text(character.get(name))
    try:
        character["age"] = max(0, int(character.get("age") or 0))
    except (TypeError, ValueError):
        character["age"] = 0
    return character


def _normalize_endings(raw: Any, report: ValidationReport) -> dict[str, Any]:
    if raw is None:
        report.add("endings_missing", "endings map missing; using empty map")
        return {}
    if not isinstance(raw, dict):
        report.add("endings_invalid", "endings is not a map; ignored")
        return {}

    endings: dict[str, Any] = {}
    for key, entry in raw.items():
        if isinstance(entry, str):
            entry = {"description": entry}
        if not isinstance(entry, dict):
            report.add("ending_invalid", "ending is not an object; dropped", ref=str(key))
            continue
        ending = dict(entry)
        ending["description"] = _text(ending.get("description"))
        ending_type = str(ending.get("type") or "").strip().lower()
        if ending_type not in ("good", "neutral", "bad"):
            report.add(
                "ending_type_unknown",
                f"ending type {ending.get('type')!r} treated as neutral",
                ref=str(key),
            )
        endings[str(key)] = ending
    return endings


def _normalize_content(node_id: str, raw: Any, report: ValidationReport) -> tuple[str, str]:
    """Resolve the content union: plain text, {text, notes}, or list of lines."""
    if isinstance(raw, dict):
        report.add("content_object", "content given as {text, notes}; flattened", ref=node_id)
        return _text(raw.get("text")), _text(raw.get("notes"))
    if isinstance(raw, list):
        report.add("content_list", "content given as a list of lines; joined", ref=node_id)
    return _text(raw), ""


def _normalize_node(key: str, raw: Any, report: ValidationReport) -> dict[str, Any]:
    if not isinstance(raw, dict):
        report.add("node_invalid", "node is not an object; replaced by empty node", ref=key)
        raw = {}

    node = dict(raw)

    raw_id = node.get("id")
    if raw_id is None or str(raw_id) != key:
        report.add("node_id_mismatch", f"node id {raw_id!r} replaced by its key", ref=key)
    node["id"] = key

    content, notes = _normalize_content(key, node.get("content"), report)
    node["content"] = content
    if notes and not node.get("notes"):
        node["notes"] = notes
    elif "notes" in node:
        node["notes"] = _text(node["notes"])

    characters = node.get("characters")
    if characters is None:
        node["characters"] = []
    elif isinstance(characters, str):
        node["characters"] = [characters]
    elif isinstance(characters, list):
        node["characters"] = [str(c) for c in characters if c is not None]
    else:
        report.add("node_characters_invalid", "characters is not a list; ignored", ref=key)
        node["characters"] = []

    ending_key = node.get("endingKey", node.get("ending_key"))
    node.pop("ending_key", None)
    node["endingKey"] = str(ending_key) if ending_key not in (None, "") else None

    level = node.get("level")
    if level is not None:
        try:
            node["level"] = int(level)
        except (TypeError, ValueError):
            node["level"] = None

    choices = node.get("choices")
    if choices is None:
        report.add("choices_missing", "choices missing; node is terminal", ref=key)
        choices = []
    elif not isinstance(choices, list):
        report.add("choices_invalid", "choices is not a list; node is terminal", ref=key)
        choices = []
    node["choices"] = [
        _normalize_choice(key, index, choice, report)
        for index, choice in enumerate(choices)
        if isinstance(choice, dict)
    ]
    return node


def _normalize_choice(
    node_id: str, index: int, raw: dict[str, Any], report: ValidationReport
) -> dict[str, Any]:
    choice = dict(raw)
    ref = f"{node_id}#{index}"

    target = choice.pop("next_node_id", None)
    target = choice.get("nextNodeId", target)
    if target is None or str(target).strip() == "":
        report.add("choice_target_missing", "choice has no target; treated as END", ref=ref)
        target = END_SENTINEL
    choice["nextNodeId"] = str(target)
    choice["text"] = _text(choice.get("text"))

    effect = choice.pop("affinity_effect", None)
    effect = choice.get("affinityEffect", effect)
    if isinstance(effect, dict):
        raw_delta = effect.get("delta", 0)
        try:
            delta = int(raw_delta)
        except (TypeError, ValueError):
            delta = 0
        if abs(delta) > AFFINITY_DELTA_LIMIT:
            report.add("affinity_delta_clamped", f"affinity delta {delta} clamped", ref=ref)
        character_id = effect.get("characterId", effect.get("character_id", ""))
        choice["affinityEffect"] = {"characterId": _text(character_id), "delta": delta}
    else:
        choice["affinityEffect"] = None
    return choice


def _report_dangling_targets(graph: StoryGraph, report: ValidationReport) -> None:
    for node_id, node in graph.nodes.items():
        for index, choice in enumerate(node.choices):
            target = canonicalize_target(choice.next_node_id)
            if target == END_SENTINEL or graph.has_target(target):
                continue
            if graph.has_target(choice.next_node_id.strip()):
                # alias key used both as ending key and target
                continue
            report.add(
                "dangling_target",
                f"choice points at unknown id {target!r}",
                ref=f"{node_id}#{index}",
            )
