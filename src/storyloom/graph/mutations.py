"""Editor mutations for story graphs.

Each function edits the graph in place, keeps references consistent, and
bumps ``StoryGraph.revision`` so cached layouts are recomputed.

Reference rules:
- Renaming a node rewrites every choice target that named the old id and
  every ``Ending.node_id`` equal to it.
- Renaming an ending rewrites every choice target and node ``ending_key``
  that named the old key.
- Deleting a node redirects or drops the choices that pointed at it.
- Deleting an ending turns the choices that pointed at it into ``END``.

All mutations accept ``can_edit``; pass the sharing capability of the
current viewer and a read-only viewer gets :class:`ReadOnlyGraphError`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from storyloom.graph.errors import (
    ChoiceNotFoundError,
    NodeExistsError,
    NodeNotFoundError,
    ReadOnlyGraphError,
)
from storyloom.graph.models import END_SENTINEL, AffinityEffect, Choice, Ending, StoryNode
from storyloom.graph.resolve import canonicalize_target
from storyloom.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable

    from storyloom.graph.models import EndingType, StoryGraph

log = get_logger(__name__)


def _require_edit(can_edit: bool, operation: str) -> None:
    if not can_edit:
        raise ReadOnlyGraphError(operation)


def _require_node(graph: StoryGraph, node_id: str, context: str) -> StoryNode:
    node = graph.nodes.get(node_id)
    if node is None:
        raise NodeNotFoundError(node_id, kind="node", available=list(graph.nodes), context=context)
    return node


def _require_ending(graph: StoryGraph, key: str, context: str) -> Ending:
    ending = graph.endings.get(key)
    if ending is None:
        raise NodeNotFoundError(key, kind="ending", available=list(graph.endings), context=context)
    return ending


def _rekey(mapping: dict, old_key: str, new_key: str) -> dict:
    """Return a copy of *mapping* with one key renamed in place (order kept)."""
    return {(new_key if key == old_key else key): value for key, value in mapping.items()}


def _retarget(graph: StoryGraph, old_id: str, new_id: str) -> int:
    """Point every choice aimed at *old_id* to *new_id*. Returns the count."""
    rewritten = 0
    for node in graph.nodes.values():
        for choice in node.choices:
            if canonicalize_target(choice.next_node_id) == old_id:
                choice.next_node_id = new_id
                rewritten += 1
    return rewritten


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------


def add_node(
    graph: StoryGraph,
    node_id: str,
    *,
    content: str = "",
    characters: Iterable[str] = (),
    choices: Iterable[Choice] = (),
    can_edit: bool = True,
) -> StoryNode:
    """Create a new story node.

    Raises:
        NodeExistsError: If the id is already used by a node.
        ValueError: If the id is blank.
    """
    _require_edit(can_edit, "add_node")
    node_id = node_id.strip()
    if not node_id:
        raise ValueError("Node id must not be empty")
    if node_id in graph.nodes:
        raise NodeExistsError(node_id)

    node = StoryNode(
        id=node_id,
        content=content,
        characters=list(characters),
        choices=list(choices),
    )
    graph.nodes[node_id] = node
    graph.touch()
    log.info("node_added", node_id=node_id)
    return node


def update_node(
    graph: StoryGraph,
    node_id: str,
    *,
    content: str | None = None,
    characters: Iterable[str] | None = None,
    can_edit: bool = True,
) -> StoryNode:
    """Edit a node's text and/or scene characters."""
    _require_edit(can_edit, "update_node")
    node = _require_node(graph, node_id, "update_node")
    if content is not None:
        node.content = content
    if characters is not None:
        node.characters = list(characters)
    graph.touch()
    log.debug("node_updated", node_id=node_id)
    return node


def rename_node(
    graph: StoryGraph,
    old_id: str,
    new_id: str,
    *,
    can_edit: bool = True,
) -> int:
    """Rename a node and rewrite every reference to it.

    Args:
        graph: Graph to edit.
        old_id: Current node id.
        new_id: New node id.
        can_edit: Viewer's edit capability.

    Returns:
        Number of choice targets rewritten.

    Raises:
        NodeNotFoundError: If *old_id* is not a node.
        NodeExistsError: If *new_id* is already a node.
    """
    _require_edit(can_edit, "rename_node")
    new_id = new_id.strip()
    if not new_id:
        raise ValueError("Node id must not be empty")
    node = _require_node(graph, old_id, "rename_node")
    if new_id == old_id:
        return 0
    if new_id in graph.nodes:
        raise NodeExistsError(new_id)

    node.id = new_id
    graph.nodes = _rekey(graph.nodes, old_id, new_id)
    rewritten = _retarget(graph, old_id, new_id)
    for ending in graph.endings.values():
        if ending.node_id == old_id:
            ending.node_id = new_id

    graph.touch()
    log.info("node_renamed", old_id=old_id, new_id=new_id, choices_rewritten=rewritten)
    return rewritten


def delete_node(
    graph: StoryGraph,
    node_id: str,
    *,
    redirect_to: str | None = None,
    can_edit: bool = True,
) -> int:
    """Delete a node, redirecting or dropping the choices that led to it.

    Args:
        graph: Graph to edit.
        node_id: Node to delete.
        redirect_to: Node id, ending key or ``END`` that incoming choices
            should point at instead. If omitted those choices are removed.
        can_edit: Viewer's edit capability.

    Returns:
        Number of incoming choices redirected or removed.

    Raises:
        NodeNotFoundError: If the node (or the redirect target) is unknown.
    """
    _require_edit(can_edit, "delete_node")
    _require_node(graph, node_id, "delete_node")
    if redirect_to is not None:
        redirect_to = canonicalize_target(redirect_to)
        if redirect_to == node_id or (
            redirect_to != END_SENTINEL and not graph.has_target(redirect_to)
        ):
            raise NodeNotFoundError(
                redirect_to,
                available=[n for n in graph.nodes if n != node_id],
                context="delete_node redirect",
            )

    del graph.nodes[node_id]

    affected = 0
    for node in graph.nodes.values():
        kept: list[Choice] = []
        for choice in node.choices:
            if canonicalize_target(choice.next_node_id) != node_id:
                kept.append(choice)
                continue
            affected += 1
            if redirect_to is not None:
                choice.next_node_id = redirect_to
                kept.append(choice)
        node.choices = kept

    for ending in graph.endings.values():
        if ending.node_id == node_id:
            ending.node_id = None

    graph.touch()
    log.info("node_deleted", node_id=node_id, redirect_to=redirect_to, choices_affected=affected)
    return affected


# ---------------------------------------------------------------------------
# Endings
# ---------------------------------------------------------------------------


def add_ending(
    graph: StoryGraph,
    key: str,
    *,
    ending_type: EndingType = "neutral",
    description: str = "",
    can_edit: bool = True,
) -> Ending:
    """Create a new ending.

    Raises:
        NodeExistsError: If the key is already an ending.
    """
    _require_edit(can_edit, "add_ending")
    key = key.strip()
    if not key:
        raise ValueError("Ending key must not be empty")
    if key in graph.endings:
        raise NodeExistsError(key, kind="ending")

    ending = Ending(type=ending_type, description=description)
    graph.endings[key] = ending
    graph.touch()
    log.info("ending_added", key=key, type=ending_type)
    return ending


def rename_ending(
    graph: StoryGraph,
    old_key: str,
    new_key: str,
    *,
    can_edit: bool = True,
) -> int:
    """Rename an ending and rewrite every reference to it.

    Returns:
        Number of choice targets rewritten.
    """
    _require_edit(can_edit, "rename_ending")
    new_key = new_key.strip()
    if not new_key:
        raise ValueError("Ending key must not be empty")
    _require_ending(graph, old_key, "rename_ending")
    if new_key == old_key:
        return 0
    if new_key in graph.endings:
        raise NodeExistsError(new_key, kind="ending")

    graph.endings = _rekey(graph.endings, old_key, new_key)
    rewritten = _retarget(graph, old_key, new_key)
    for node in graph.nodes.values():
        if node.ending_key == old_key:
            node.ending_key = new_key

    graph.touch()
    log.info("ending_renamed", old_key=old_key, new_key=new_key, choices_rewritten=rewritten)
    return rewritten


def delete_ending(graph: StoryGraph, key: str, *, can_edit: bool = True) -> int:
    """Delete an ending; choices that led to it now end the story with ``END``.

    Returns:
        Number of choice targets rewritten.
    """
    _require_edit(can_edit, "delete_ending")
    _require_ending(graph, key, "delete_ending")

    del graph.endings[key]
    rewritten = _retarget(graph, key, END_SENTINEL)
    for node in graph.nodes.values():
        if node.ending_key == key:
            node.ending_key = None

    graph.touch()
    log.info("ending_deleted", key=key, choices_rewritten=rewritten)
    return rewritten


# ---------------------------------------------------------------------------
# Choices
# ---------------------------------------------------------------------------


def add_choice(
    graph: StoryGraph,
    node_id: str,
    text: str,
    next_node_id: str,
    *,
    affinity_effect: AffinityEffect | None = None,
    can_edit: bool = True,
) -> Choice:
    """Append a choice to a node.

    The target is stored canonicalized but is not required to exist yet;
    graphs may pass through transient invalid states while being edited.
    """
    _require_edit(can_edit, "add_choice")
    node = _require_node(graph, node_id, "add_choice")
    choice = Choice(
        text=text,
        next_node_id=canonicalize_target(next_node_id) or END_SENTINEL,
        affinity_effect=affinity_effect,
    )
    node.choices.append(choice)
    graph.touch()
    log.debug("choice_added", node_id=node_id, target=choice.next_node_id)
    return choice


def update_choice(
    graph: StoryGraph,
    node_id: str,
    index: int,
    *,
    text: str | None = None,
    next_node_id: str | None = None,
    affinity_effect: AffinityEffect | None = None,
    clear_affinity: bool = False,
    can_edit: bool = True,
) -> Choice:
    """Edit one choice of a node by index.

    Raises:
        ChoiceNotFoundError: If the index is out of range.
    """
    _require_edit(can_edit, "update_choice")
    node = _require_node(graph, node_id, "update_choice")
    if not 0 <= index < len(node.choices):
        raise ChoiceNotFoundError(node_id, index, len(node.choices))

    choice = node.choices[index]
    if text is not None:
        choice.text = text
    if next_node_id is not None:
        choice.next_node_id = canonicalize_target(next_node_id) or END_SENTINEL
    if clear_affinity:
        choice.affinity_effect = None
    elif affinity_effect is not None:
        choice.affinity_effect = affinity_effect

    graph.touch()
    log.debug("choice_updated", node_id=node_id, index=index)
    return choice


def remove_choice(graph: StoryGraph, node_id: str, index: int, *, can_edit: bool = True) -> Choice:
    """Remove one choice of a node by index.

    Raises:
        ChoiceNotFoundError: If the index is out of range.
    """
    _require_edit(can_edit, "remove_choice")
    node = _require_node(graph, node_id, "remove_choice")
    if not 0 <= index < len(node.choices):
        raise ChoiceNotFoundError(node_id, index, len(node.choices))

    choice = node.choices.pop(index)
    graph.touch()
    log.debug("choice_removed", node_id=node_id, index=index)
    return choice
