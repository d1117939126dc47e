"""Tests for the play session state machine."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from storyloom.config import PlaySettings
from storyloom.graph.errors import EmptyGraphError
from storyloom.graph.loader import load
from storyloom.graph.models import StoryGraph
from storyloom.play import PlaySession, PlayState, SessionSnapshot

if TYPE_CHECKING:
    from collections.abc import Callable


def _affinity_graph(delta: int) -> StoryGraph:
    """hub ⇄ side, each trip through hub → side adjusts Ann's affinity by *delta*."""
    return load(
        {
            "characters": {
                "player": {"id": "player", "name": "Me"},
                "c_ann": {"id": "c_ann", "name": "Ann"},
            },
            "endings": {},
            "nodes": {
                "start": {
                    "id": "start",
                    "content": "Hub",
                    "characters": ["c_ann", "player"],
                    "choices": [
                        {
                            "text": "Talk",
                            "nextNodeId": "side",
                            "affinityEffect": {"characterId": "c_ann", "delta": delta},
                        },
                        {
                            "text": "Wander off",
                            "nextNodeId": "nowhere",
                            "affinityEffect": {"characterId": "c_ann", "delta": delta},
                        },
                        {
                            "text": "Talk to yourself",
                            "nextNodeId": "side",
                            "affinityEffect": {"characterId": "player", "delta": delta},
                        },
                    ],
                },
                "side": {
                    "id": "side",
                    "content": "Side room",
                    "choices": [{"text": "Return", "nextNodeId": "start"}],
                },
            },
        }
    ).graph


class TestConstruction:
    """Construction and initialize()."""

    def test_starts_at_start_node(self, story_graph: StoryGraph) -> None:
        session = PlaySession(story_graph)
        assert session.current_node_id == "start"
        assert session.state == PlayState.PLAYING
        assert session.history_depth == 0
        assert session.protagonist == "Alex"

    def test_empty_graph_rejected(self) -> None:
        with pytest.raises(EmptyGraphError):
            PlaySession(StoryGraph())

    def test_resume_position(self, story_graph: StoryGraph) -> None:
        session = PlaySession(story_graph, current_node_id="2")
        assert session.current_node_id == "2"

    def test_unknown_resume_position_resets_to_start(self, story_graph: StoryGraph) -> None:
        session = PlaySession(
            story_graph,
            current_node_id="gone",
            history=[],
        )
        assert session.current_node_id == "start"

    def test_initialize_is_noop_on_valid_position(self, story_graph: StoryGraph) -> None:
        session = PlaySession(story_graph)
        session.choose(0)
        session.choose(0)
        history = session.history

        outcome = session.initialize()

        assert outcome.node_id == "2"
        assert session.history == history

    def test_initialize_with_new_graph_resets_lost_position(
        self, story_graph: StoryGraph, make_graph: Callable[..., StoryGraph]
    ) -> None:
        session = PlaySession(story_graph)
        session.choose(0)
        assert session.current_node_id == "1"

        session.initialize(make_graph({"root": ["x"], "x": []}))

        assert session.current_node_id == "root"
        assert session.history_depth == 0

    def test_initialize_rejects_empty_graph(self, story_graph: StoryGraph) -> None:
        session = PlaySession(story_graph)
        with pytest.raises(EmptyGraphError):
            session.initialize(StoryGraph())

    def test_choiceless_start_falls_back_to_one(
        self, make_graph: Callable[..., StoryGraph]
    ) -> None:
        session = PlaySession(make_graph({"start": [], "1": ["2"], "2": []}))
        assert session.current_node_id == "1"
        assert not session.is_ended

    def test_decorative_start_skipped(self, make_graph: Callable[..., StoryGraph]) -> None:
        """A choiceless start without a ``1`` node skips to the first node with choices."""
        session = PlaySession(make_graph({"start": [], "2": ["3"], "3": []}))
        assert session.current_node_id == "2"
        assert session.state == PlayState.PLAYING


class TestChoose:
    """Choice handling."""

    def test_moves_and_records_history(self, story_graph: StoryGraph) -> None:
        session = PlaySession(story_graph)
        outcome = session.choose(0)

        assert outcome.node_id == "1"
        assert outcome.error is None
        assert session.history[-1].node_id == "start"

    def test_choose_by_choice_object(self, story_graph: StoryGraph) -> None:
        session = PlaySession(story_graph)
        choice = session.available_choices[0]
        assert session.choose(choice).node_id == "1"

    def test_alias_target_reaches_canonical_ending(self, story_graph: StoryGraph) -> None:
        session = PlaySession(story_graph, current_node_id="3")
        outcome = session.choose(0)

        assert outcome.state == PlayState.ENDED
        assert outcome.ending is not None
        assert outcome.ending.ending_key == "ending_bad"
        assert outcome.ending.type == "bad"
        assert outcome.ending.node_id == "3"
        assert outcome.ending.reached_at
        assert session.available_choices == []

    def test_end_sentinel_synthesizes_neutral_ending(self, story_graph: StoryGraph) -> None:
        session = PlaySession(story_graph, current_node_id="3")
        ending = session.choose(1).ending

        assert ending is not None
        assert ending.type == "neutral"
        assert ending.description == "You walk out."
        assert ending.ending_key is None
        assert ending.node_id == "3"

    def test_terminal_node_synthesizes_ending(self, tree_graph: StoryGraph) -> None:
        session = PlaySession(tree_graph)
        session.choose(0)
        outcome = session.choose(0)

        assert outcome.node_id == "2"
        assert outcome.ending is not None
        assert outcome.ending.description == "Scene 2"
        assert outcome.ending.node_id == "2"

    def test_dangling_target_is_navigation_error(
        self, make_graph: Callable[..., StoryGraph]
    ) -> None:
        session = PlaySession(make_graph({"start": ["a"], "a": ["missing"], "b": []}))
        session.choose(0)
        player_state = {"seen": ["start"]}
        session.player_state.update(player_state)

        outcome = session.choose(0)

        assert outcome.error is not None
        assert outcome.error.node_id == "missing"
        assert session.error == outcome.error
        assert session.current_node_id == "a"
        assert session.history_depth == 1
        assert session.player_state == player_state
        assert session.state == PlayState.PLAYING

    def test_back_escapes_navigation_error(self, make_graph: Callable[..., StoryGraph]) -> None:
        session = PlaySession(make_graph({"start": ["a"], "a": ["missing"]}))
        session.choose(0)
        session.choose(0)

        outcome = session.back()

        assert outcome.node_id == "start"
        assert session.error is None

    def test_bad_index(self, story_graph: StoryGraph) -> None:
        session = PlaySession(story_graph)
        outcome = session.choose(5)
        assert outcome.error is not None
        assert session.current_node_id == "start"

    def test_choose_after_end_is_error(self, story_graph: StoryGraph) -> None:
        session = PlaySession(story_graph, current_node_id="3")
        session.choose(1)
        outcome = session.choose(0)
        assert outcome.error is not None
        assert session.is_ended


class TestEndingDetection:
    """Ending precedence rules."""

    def test_ending_map_wins_over_zero_choices(
        self, make_graph: Callable[..., StoryGraph]
    ) -> None:
        graph = make_graph({"start": ["n5"], "n5": []}, endings={"n5": "good"})
        session = PlaySession(graph)

        outcome = session.detect_ending("n5")

        assert outcome.ending is not None
        assert outcome.ending.type == "good"
        assert outcome.ending.ending_key == "n5"
        assert outcome.ending.description == "Ending n5"

    def test_choosing_into_shared_id_emits_ending(
        self, make_graph: Callable[..., StoryGraph]
    ) -> None:
        graph = make_graph({"start": ["n5"], "n5": []}, endings={"n5": "bad"})
        ending = PlaySession(graph).choose(0).ending
        assert ending is not None
        assert ending.type == "bad"
        assert ending.node_id == "start"

    def test_terminal_node_ending_key(self, story_graph: StoryGraph) -> None:
        story_graph.nodes["2"].choices = []
        story_graph.nodes["2"].ending_key = "ending_good"

        session = PlaySession(story_graph, current_node_id="2")

        assert session.ending is not None
        assert session.ending.type == "good"
        assert session.ending.ending_key == "ending_good"
        assert session.ending.node_id == "2"

    def test_unknown_id(self, story_graph: StoryGraph) -> None:
        session = PlaySession(story_graph)
        outcome = session.detect_ending("ghost")
        assert outcome.error is not None
        assert outcome.ending is None


class TestBack:
    """History and the back-after-choose round trip."""

    def test_round_trip_restores_position_and_state(self, story_graph: StoryGraph) -> None:
        session = PlaySession(story_graph)
        session.player_state["flags"] = {"met_lin": False}
        before: dict[str, Any] = {"flags": {"met_lin": False}}

        session.choose(0)
        session.player_state["flags"]["met_lin"] = True
        session.back()

        assert session.current_node_id == "start"
        assert session.player_state == before

    def test_round_trip_from_every_reachable_node(self, story_graph: StoryGraph) -> None:
        for node_id in ("start", "1", "2", "3"):
            session = PlaySession(story_graph, current_node_id=node_id)
            for index in range(len(session.available_choices)):
                session.choose(index)
                session.back()
                assert session.current_node_id == node_id
                assert session.state == PlayState.PLAYING

    def test_back_after_ending_withdraws_it(self, story_graph: StoryGraph) -> None:
        session = PlaySession(story_graph, current_node_id="3")
        session.choose(0)

        outcome = session.back()

        assert outcome.state == PlayState.PLAYING
        assert outcome.node_id == "3"
        assert session.ending is None

    def test_back_with_empty_history_is_noop(self, story_graph: StoryGraph) -> None:
        session = PlaySession(story_graph)
        assert session.back().node_id == "start"
        assert session.history_depth == 0

    def test_restart(self, story_graph: StoryGraph) -> None:
        session = PlaySession(story_graph)
        session.choose(0)
        session.choose(0)
        session.restart()

        assert session.current_node_id == "start"
        assert session.history_depth == 0
        assert session.affinity == {}


class TestAffinity:
    """Affinity side effects."""

    def test_in_scene_character_is_scored(self, story_graph: StoryGraph) -> None:
        session = PlaySession(story_graph, current_node_id="1")
        assert session.scene_characters() == ["Alex", "Lin"]

        session.choose(0)

        assert session.affinity == {"Lin": 65}
        assert session.affinity_for("Lin") == 65
        assert session.affinity_for("Nobody") == 50

    def test_protagonist_excluded(self, story_graph: StoryGraph) -> None:
        session = PlaySession(story_graph, current_node_id="1")
        session.choose(1)
        assert session.affinity == {}

    @pytest.mark.parametrize(("delta", "bound"), [(20, 100), (-20, 0)])
    def test_scores_stay_in_bounds(self, delta: int, bound: int) -> None:
        session = PlaySession(_affinity_graph(delta))
        for _ in range(10):
            session.choose(0)
            session.choose(0)
            score = session.affinity["Ann"]
            assert 0 <= score <= 100
        assert session.affinity["Ann"] == bound

    def test_failed_choice_does_not_score(self) -> None:
        session = PlaySession(_affinity_graph(10))
        outcome = session.choose(1)
        assert outcome.error is not None
        assert session.affinity == {}

    def test_protagonist_effect_ignored(self) -> None:
        session = PlaySession(_affinity_graph(10))
        session.choose(2)
        assert session.affinity == {}

    def test_custom_bounds(self) -> None:
        settings = PlaySettings(affinity_baseline=10, affinity_min=0, affinity_max=25)
        session = PlaySession(_affinity_graph(20), settings=settings)
        session.choose(0)
        assert session.affinity["Ann"] == 25


class TestSnapshot:
    """Persistence through snapshot/restore."""

    def test_restore_round_trip(self, story_graph: StoryGraph) -> None:
        session = PlaySession(story_graph)
        session.choose(0)
        session.choose(0)
        session.player_state["coins"] = 3

        data = session.snapshot().model_dump(mode="json")
        restored = PlaySession.restore(story_graph, SessionSnapshot.model_validate(data))

        assert restored.current_node_id == "2"
        assert restored.history_depth == 2
        assert restored.affinity == {"Lin": 65}
        assert restored.player_state == {"coins": 3}
        restored.back()
        assert restored.current_node_id == "1"

    def test_restore_keeps_choice_ending(self, story_graph: StoryGraph) -> None:
        session = PlaySession(story_graph, current_node_id="3")
        session.choose(0)

        restored = PlaySession.restore(story_graph, session.snapshot())

        assert restored.is_ended
        assert restored.ending is not None
        assert restored.ending.ending_key == "ending_bad"
        restored.back()
        assert restored.current_node_id == "3"
        assert not restored.is_ended

    def test_restore_against_changed_graph(
        self, story_graph: StoryGraph, make_graph: Callable[..., StoryGraph]
    ) -> None:
        session = PlaySession(story_graph)
        session.choose(0)

        restored = PlaySession.restore(make_graph({"x": ["y"], "y": []}), session.snapshot())

        assert restored.current_node_id == "x"
        assert restored.history_depth == 0
