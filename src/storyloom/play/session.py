"""Play session state machine.

A :class:`PlaySession` tracks one player's traversal of a story graph:
where they are, how they got there, what their per-character affinity
scores are, and whether an ending has been reached.

States:
    PLAYING: the current id resolves to a story node with choices.
    ENDED: an Ending has been produced and is available as ``ending``.

Every transition is synchronous and total. A choice that points nowhere
produces a :class:`NavigationError` *value*; the session position does not
change and the player can still go ``back()``.

The session holds no global state. Hosts persist it through
:meth:`PlaySession.snapshot` and :meth:`PlaySession.restore`.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from storyloom.config import PlaySettings
from storyloom.graph.errors import EmptyGraphError
from storyloom.graph.models import END_SENTINEL, Choice, Ending, StoryNode
from storyloom.graph.resolve import (
    DECORATIVE_START_IDS,
    canonicalize_target,
    pick_protagonist,
    resolve_character_names,
    resolve_start_node_id,
)
from storyloom.observability.logging import get_logger

if TYPE_CHECKING:
    from storyloom.graph.models import StoryGraph

log = get_logger(__name__)


class PlayState(StrEnum):
    """Lifecycle state of a play session."""

    PLAYING = "playing"
    ENDED = "ended"


@dataclass
class NavigationError:
    """A choice or resume position referenced an id that does not exist.

    Attributes:
        node_id: The unresolved id.
        message: Text to show the player.
    """

    node_id: str
    message: str


@dataclass
class HistoryEntry:
    """One step of the back stack."""

    node_id: str
    player_state: dict[str, Any] = field(default_factory=dict)


@dataclass
class TurnOutcome:
    """Result of a session transition.

    Exactly one of the following holds: ``error`` is set (nothing moved),
    ``ending`` is set (state is ENDED), or neither (still PLAYING at
    ``node_id``).
    """

    state: PlayState
    node_id: str
    ending: Ending | None = None
    error: NavigationError | None = None


class HistoryEntryModel(BaseModel):
    """Serialized form of :class:`HistoryEntry`."""

    node_id: str
    player_state: dict[str, Any] = Field(default_factory=dict)


class SessionSnapshot(BaseModel):
    """Serializable session state for host persistence adapters."""

    current_node_id: str = ""
    history: list[HistoryEntryModel] = Field(default_factory=list)
    player_state: dict[str, Any] = Field(default_factory=dict)
    affinity: dict[str, int] = Field(default_factory=dict)
    ending: Ending | None = None


class PlaySession:
    """Traversal state machine for a single player.

    Construction validates the current position against the graph, exactly
    as :meth:`initialize` does on every graph reload.

    Args:
        graph: Story graph to play. Must contain at least one node.
        settings: Affinity bounds; defaults to :class:`PlaySettings`.
        current_node_id: Position to resume from, if any.
        history: Back stack to resume with.
        player_state: Opaque flags/variables to resume with.
        affinity: Affinity scores to resume with.

    Raises:
        EmptyGraphError: If the graph has no nodes.
    """

    def __init__(
        self,
        graph: StoryGraph,
        *,
        settings: PlaySettings | None = None,
        current_node_id: str | None = None,
        history: list[HistoryEntry] | None = None,
        player_state: dict[str, Any] | None = None,
        affinity: dict[str, int] | None = None,
    ) -> None:
        if not graph.nodes:
            raise EmptyGraphError("cannot start a play session")

        self._graph = graph
        self._settings = settings or PlaySettings()
        self._current_node_id = current_node_id or ""
        self._history: list[HistoryEntry] = list(history or [])
        self._player_state: dict[str, Any] = copy.deepcopy(player_state or {})
        self._affinity: dict[str, int] = dict(affinity or {})
        self._ending: Ending | None = None
        self._ended_by_choice = False
        self._error: NavigationError | None = None
        self._protagonist: str | None = None

        self.initialize()

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    @property
    def graph(self) -> StoryGraph:
        """The graph being played."""
        return self._graph

    @property
    def state(self) -> PlayState:
        """PLAYING or ENDED."""
        return PlayState.ENDED if self._ending is not None else PlayState.PLAYING

    @property
    def is_ended(self) -> bool:
        """True once an ending has been produced."""
        return self._ending is not None

    @property
    def current_node_id(self) -> str:
        """Id of the current position."""
        return self._current_node_id

    @property
    def current_node(self) -> StoryNode | None:
        """The current story node, or None if the position is an ending key."""
        return self._graph.nodes.get(self._current_node_id)

    @property
    def available_choices(self) -> list[Choice]:
        """Choices the player can pick right now (empty once ENDED)."""
        if self.is_ended:
            return []
        node = self.current_node
        return list(node.choices) if node else []

    @property
    def history_depth(self) -> int:
        """Number of steps ``back()`` can undo."""
        return len(self._history)

    @property
    def history(self) -> list[HistoryEntry]:
        """Copy of the back stack, oldest first."""
        return list(self._history)

    @property
    def player_state(self) -> dict[str, Any]:
        """Live flags/variables map. Mutate freely; history keeps deep copies."""
        return self._player_state

    @property
    def affinity(self) -> dict[str, int]:
        """Copy of the affinity scores keyed by character display name."""
        return dict(self._affinity)

    @property
    def ending(self) -> Ending | None:
        """The ending produced, once ENDED."""
        return self._ending

    @property
    def error(self) -> NavigationError | None:
        """The pending navigation error, if the last input failed."""
        return self._error

    @property
    def protagonist(self) -> str | None:
        """Display name of the character the player is assumed to be."""
        return self._protagonist

    def affinity_for(self, name: str) -> int:
        """Score for a character, falling back to the baseline."""
        return self._affinity.get(name, self._settings.affinity_baseline)

    def scene_characters(self, node: StoryNode | None = None) -> list[str]:
        """Resolved display names of the characters in a node (default: current)."""
        node = node if node is not None else self.current_node
        if node is None:
            return []
        return resolve_character_names(node.characters, self._graph.character_name_map())

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def initialize(self, graph: StoryGraph | None = None) -> TurnOutcome:
        """Validate the current position against a (possibly new) graph.

        Resets to the start node and clears history when the position no
        longer resolves to a node or an ending, then runs ending detection
        on the resulting position.

        Args:
            graph: Replacement graph, e.g. after an edit or reload.

        Returns:
            Outcome at the validated position.

        Raises:
            EmptyGraphError: If the replacement graph has no nodes.
        """
        if graph is not None:
            if not graph.nodes:
                raise EmptyGraphError("cannot re-initialize a play session")
            self._graph = graph

        self._protagonist = pick_protagonist(self._graph.characters)
        self._error = None
        self._ending = None
        self._ended_by_choice = False

        if not self._current_node_id or not self._graph.has_target(self._current_node_id):
            start_id = resolve_start_node_id(self._graph)
            log.debug(
                "session_reset_to_start",
                previous=self._current_node_id or None,
                start=start_id,
            )
            self._current_node_id = start_id
            self._history.clear()

        return self.detect_ending(self._current_node_id)

    def detect_ending(self, node_id: str) -> TurnOutcome:
        """Decide whether arriving at *node_id* ends the story.

        An ending key always wins. A story node without choices ends the
        story, except that a choiceless ``start`` or ``root`` node is
        skipped in favour of the first node that has choices.

        Args:
            node_id: Position to examine (normally the current one).

        Returns:
            Outcome; an unknown id yields a NavigationError.
        """
        ending = self._graph.endings.get(node_id)
        if ending is not None:
            return self._end(ending, ending_key=node_id, node_id=node_id)

        node = self._graph.nodes.get(node_id)
        if node is None:
            return self._fail(node_id, f"Story node '{node_id}' does not exist")

        if node.choices:
            return self._outcome()

        if node_id in DECORATIVE_START_IDS:
            for candidate_id, candidate in self._graph.nodes.items():
                if candidate.choices:
                    log.debug("decorative_start_skipped", start=node_id, target=candidate_id)
                    self._current_node_id = candidate_id
                    return self._outcome()

        if node.ending_key and node.ending_key in self._graph.endings:
            return self._end(
                self._graph.endings[node.ending_key],
                ending_key=node.ending_key,
                node_id=node_id,
            )

        return self._end(Ending(type="neutral", description=node.content), node_id=node_id)

    def choose(self, choice: Choice | int) -> TurnOutcome:
        """Apply a player's choice.

        Args:
            choice: A Choice object or an index into ``available_choices``.

        Returns:
            Outcome after the move. A target that resolves to nothing yields
            a NavigationError and leaves the session where it was.
        """
        if self.is_ended:
            return self._fail(self._current_node_id, "The story has already ended")

        if isinstance(choice, int):
            choices = self.available_choices
            if not 0 <= choice < len(choices):
                return self._fail(self._current_node_id, f"No choice number {choice + 1}")
            choice = choices[choice]

        target = canonicalize_target(choice.next_node_id)
        is_end = target == END_SENTINEL
        is_ending = not is_end and target in self._graph.endings
        is_node = not is_end and not is_ending and target in self._graph.nodes

        if not (is_end or is_ending or is_node):
            return self._fail(target, f"Choice leads to unknown node '{target}'")

        self._error = None
        self._apply_affinity(choice)

        if is_end:
            node = self.current_node
            content = node.content if node else ""
            self._ended_by_choice = True
            return self._end(
                Ending(type="neutral", description=content),
                node_id=self._current_node_id,
            )

        if is_ending:
            self._ended_by_choice = True
            return self._end(
                self._graph.endings[target],
                ending_key=target,
                node_id=self._current_node_id,
            )

        self._history.append(
            HistoryEntry(
                node_id=self._current_node_id,
                player_state=copy.deepcopy(self._player_state),
            )
        )
        log.debug("session_moved", source=self._current_node_id, target=target)
        self._current_node_id = target
        return self.detect_ending(target)

    def back(self) -> TurnOutcome:
        """Undo the last step.

        If the story ended through a choice made at the current node, the
        ending is withdrawn and the player stays at that node. Otherwise the
        last history entry is restored. With an empty history this is a
        no-op.
        """
        if self._ended_by_choice:
            self._ending = None
            self._ended_by_choice = False
            self._error = None
            return self._outcome()

        if not self._history:
            return self._outcome()

        entry = self._history.pop()
        self._current_node_id = entry.node_id
        self._player_state = entry.player_state
        self._ending = None
        self._error = None
        log.debug("session_back", target=entry.node_id, depth=len(self._history))
        return self._outcome()

    def restart(self) -> TurnOutcome:
        """Discard progress and start over from the start node."""
        self._current_node_id = ""
        self._history.clear()
        self._player_state = {}
        self._affinity.clear()
        log.info("session_restarted")
        return self.initialize()

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def snapshot(self) -> SessionSnapshot:
        """Capture the session state for persistence."""
        return SessionSnapshot(
            current_node_id=self._current_node_id,
            history=[
                HistoryEntryModel(node_id=h.node_id, player_state=copy.deepcopy(h.player_state))
                for h in self._history
            ],
            player_state=copy.deepcopy(self._player_state),
            affinity=dict(self._affinity),
            ending=self._ending.model_copy() if self._ending else None,
        )

    @classmethod
    def restore(
        cls,
        graph: StoryGraph,
        snapshot: SessionSnapshot,
        *,
        settings: PlaySettings | None = None,
    ) -> PlaySession:
        """Rebuild a session from a snapshot against a possibly changed graph.

        The position is re-validated. An ending reached through a choice is
        kept only if it still belongs to the restored position.
        """
        session = cls(
            graph,
            settings=settings,
            current_node_id=snapshot.current_node_id,
            history=[
                HistoryEntry(h.node_id, copy.deepcopy(h.player_state)) for h in snapshot.history
            ],
            player_state=snapshot.player_state,
            affinity=snapshot.affinity,
        )
        saved = snapshot.ending
        if (
            saved is not None
            and not session.is_ended
            and saved.node_id == session.current_node_id
            and session.current_node is not None
        ):
            session._ending = saved.model_copy()
            session._ended_by_choice = True
        return session

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _apply_affinity(self, choice: Choice) -> None:
        effect = choice.affinity_effect
        if effect is None:
            return

        id_to_name = self._graph.character_name_map()
        names = resolve_character_names([effect.character_id], id_to_name)
        if not names:
            return
        name = names[0]
        if name == self._protagonist or name not in self.scene_characters():
            return

        settings = self._settings
        score = self._affinity.get(name, settings.affinity_baseline) + effect.delta
        self._affinity[name] = max(settings.affinity_min, min(settings.affinity_max, score))
        log.debug(
            "affinity_changed", character=name, delta=effect.delta, score=self._affinity[name]
        )

    def _end(self, ending: Ending, *, node_id: str, ending_key: str | None = None) -> TurnOutcome:
        self._ending = ending.model_copy(
            update={
                "ending_key": ending_key,
                "node_id": node_id,
                "reached_at": datetime.now(UTC).isoformat(),
            }
        )
        log.info("ending_reached", ending_key=ending_key, node_id=node_id, type=ending.type)
        return self._outcome()

    def _fail(self, node_id: str, message: str) -> TurnOutcome:
        self._error = NavigationError(node_id=node_id, message=message)
        log.warning("navigation_error", node_id=node_id, current=self._current_node_id)
        return TurnOutcome(
            state=self.state,
            node_id=self._current_node_id,
            ending=self._ending,
            error=self._error,
        )

    def _outcome(self) -> TurnOutcome:
        return TurnOutcome(state=self.state, node_id=self._current_node_id, ending=self._ending)
