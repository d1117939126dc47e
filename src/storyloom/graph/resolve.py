"""Identifier resolution rules shared by the play session and the layout engine.

Pure functions: they never mutate the graph and never raise on odd input.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from storyloom.graph.models import Character, StoryGraph

ENDING_GOOD = "ending_good"
ENDING_NEUTRAL = "ending_neutral"
ENDING_BAD = "ending_bad"
CANONICAL_ENDING_KEYS = (ENDING_GOOD, ENDING_NEUTRAL, ENDING_BAD)

# Spellings the content generator has been seen to emit for the three endings.
_ENDING_ALIASES: dict[str, str] = {
    "bad_end": ENDING_BAD,
    "end_bad": ENDING_BAD,
    "bad": ENDING_BAD,
    "BAD": ENDING_BAD,
    "good_end": ENDING_GOOD,
    "end_good": ENDING_GOOD,
    "good": ENDING_GOOD,
    "GOOD": ENDING_GOOD,
    "neutral_end": ENDING_NEUTRAL,
    "end_neutral": ENDING_NEUTRAL,
    "neutral": ENDING_NEUTRAL,
    "NEUTRAL": ENDING_NEUTRAL,
}

START_NODE_CANDIDATES = ("start", "root", "1")
DECORATIVE_START_IDS = frozenset({"start", "root"})

_PROTAGONIST_KEY = re.compile(r"player|protagonist|main")
_PROTAGONIST_MARKERS = ("主角", "protagonist")
_SELF_NAME = "我"


def canonicalize_target(raw: Any) -> str:
    """Normalize a choice target, mapping legacy ending aliases.

    Args:
        raw: Target as found in the document (any type).

    Returns:
        The canonical ending key for a known alias, otherwise the trimmed
        value unchanged.
    """
    text = "" if raw is None else str(raw).strip()
    return _ENDING_ALIASES.get(text, text)


def resolve_character_names(
    raw_list: Iterable[Any] | None, id_to_name: Mapping[str, str]
) -> list[str]:
    """Resolve character references to unique display names.

    Each entry is looked up in the id → name table and kept verbatim when it
    is not a known id. Empty entries are dropped; duplicates keep their
    first position.

    Args:
        raw_list: Character ids and/or names, in scene order.
        id_to_name: Table from :meth:`StoryGraph.character_name_map`.

    Returns:
        Ordered list of unique, non-empty display names.
    """
    names: list[str] = []
    seen: set[str] = set()
    for raw in raw_list or ():
        value = "" if raw is None else str(raw).strip()
        if not value:
            continue
        name = id_to_name.get(value, value)
        if name in seen:
            continue
        seen.add(name)
        names.append(name)
    return names


def resolve_start_node_id(graph: StoryGraph) -> str:
    """Pick the node where play begins.

    Priority: ``start``, ``root``, ``1``, then the first key in map order.
    When ``start`` has no choices and ``1`` exists, ``1`` wins: generated
    documents sometimes carry a decorative title node keyed ``start``.

    Args:
        graph: Story graph.

    Returns:
        Node id, or an empty string if the graph has no nodes.
    """
    nodes = graph.nodes
    if not nodes:
        return ""

    start = nodes.get("start")
    if start is not None and not start.choices and "1" in nodes:
        return "1"

    for candidate in START_NODE_CANDIDATES:
        if candidate in nodes:
            return candidate
    return next(iter(nodes))


def _protagonist_score(key: str, character: Character) -> int:
    name = character.name.strip()
    role = character.role.lower()

    score = 0
    if _PROTAGONIST_KEY.search(f"{key} {character.id}".lower()):
        score += 5
    if name == _SELF_NAME or any(marker in name.lower() for marker in _PROTAGONIST_MARKERS):
        score += 6
    if any(marker in role for marker in _PROTAGONIST_MARKERS):
        score += 3
    if character.age > 0:
        score += 1
    return score


def pick_protagonist(characters: Mapping[str, Character]) -> str | None:
    """Guess which character the player is.

    Characters are scored on their key, name, role and age; the highest
    score wins and ties go to the first character in map order. Characters
    without a display name are skipped.

    Args:
        characters: The graph's character map.

    Returns:
        The protagonist's display name, or None if no character has a name.
    """
    best: tuple[int, str] | None = None
    for key, character in characters.items():
        name = character.name.strip()
        if not name:
            continue
        score = _protagonist_score(key, character)
        if best is None or score > best[0]:
            best = (score, name)
    return best[1] if best else None
