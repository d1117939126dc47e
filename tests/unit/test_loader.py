"""Tests for document loading and normalization."""

from __future__ import annotations

from typing import Any

import pytest

from storyloom.graph.errors import EmptyGraphError
from storyloom.graph.loader import dump, load
from storyloom.graph.models import StoryGraph


class TestHardRejection:
    """Only an empty node map is fatal."""

    def test_missing_nodes(self) -> None:
        with pytest.raises(EmptyGraphError, match="no nodes"):
            load({"endings": {}})

    def test_empty_nodes(self) -> None:
        with pytest.raises(EmptyGraphError):
            load({"nodes": {}})

    def test_not_an_object(self) -> None:
        with pytest.raises(EmptyGraphError):
            load(["nodes"])  # type: ignore[arg-type]


class TestLoad:
    """Normalization of legacy shapes."""

    def test_clean_document_has_no_issues(self, story_document: dict[str, Any]) -> None:
        result = load(story_document)
        assert result.issues == []
        assert set(result.graph.nodes) == {"start", "1", "2", "3"}
        assert result.graph.characters["c_lin"].name == "Lin"

    def test_missing_maps_default_to_empty(self) -> None:
        result = load({"nodes": {"a": {"id": "a", "content": "x"}}})
        codes = [i.code for i in result.issues]
        assert "characters_missing" in codes
        assert "endings_missing" in codes
        assert "choices_missing" in codes
        assert result.graph.nodes["a"].choices == []
        assert result.graph.endings == {}

    def test_content_object_is_flattened(self) -> None:
        result = load(
            {
                "nodes": {"a": {"id": "a", "content": {"text": "Hello", "notes": "draft"}}},
                "endings": {},
                "characters": {},
            }
        )
        node = result.graph.nodes["a"]
        assert node.content == "Hello"
        assert node.notes == "draft"
        assert result.issues[0].code == "content_object"

    def test_content_list_is_joined(self) -> None:
        graph = load(
            {"nodes": {"a": {"id": "a", "content": ["one", "two"], "choices": []}}}
        ).graph
        assert graph.nodes["a"].content == "one\ntwo"

    def test_characters_list_keyed_by_id_or_name(self) -> None:
        result = load(
            {
                "nodes": {"a": {"id": "a", "choices": []}},
                "characters": [{"id": "c1", "name": "Ann"}, {"name": "Bo"}, {}],
                "endings": {},
            }
        )
        assert list(result.graph.characters) == ["c1", "Bo", "char_2"]
        assert result.graph.characters["Bo"].id == "Bo"
        assert "characters_list" in [i.code for i in result.issues]

    def test_node_characters_string(self) -> None:
        graph = load(
            {"nodes": {"a": {"id": "a", "characters": "Ann", "choices": []}}}
        ).graph
        assert graph.nodes["a"].characters == ["Ann"]

    def test_node_id_replaced_by_key(self) -> None:
        result = load({"nodes": {"a": {"id": "b", "choices": []}, 7: {"choices": []}}})
        assert result.graph.nodes["a"].id == "a"
        assert result.graph.nodes["7"].id == "7"
        mismatches = [i.ref for i in result.issues if i.code == "node_id_mismatch"]
        assert mismatches == ["a", "7"]

    def test_missing_target_becomes_end(self) -> None:
        result = load({"nodes": {"a": {"id": "a", "choices": [{"text": "go"}]}}})
        assert result.graph.nodes["a"].choices[0].next_node_id == "END"
        issue = next(i for i in result.issues if i.code == "choice_target_missing")
        assert issue.ref == "a#0"

    def test_dangling_target_reported_not_fatal(self) -> None:
        result = load(
            {"nodes": {"a": {"id": "a", "choices": [{"text": "go", "nextNodeId": "zz"}]}}}
        )
        assert result.graph.nodes["a"].choices[0].next_node_id == "zz"
        assert "dangling_target" in [i.code for i in result.issues]

    def test_alias_target_not_dangling(self) -> None:
        result = load(
            {
                "nodes": {"a": {"id": "a", "choices": [{"text": "x", "nextNodeId": "bad_end"}]}},
                "endings": {"ending_bad": {"type": "bad"}},
                "characters": {},
            }
        )
        assert result.issues == []

    def test_affinity_delta_clamped_and_reported(self) -> None:
        result = load(
            {
                "nodes": {
                    "a": {
                        "id": "a",
                        "choices": [
                            {
                                "text": "x",
                                "nextNodeId": "END",
                                "affinityEffect": {"characterId": "c1", "delta": 90},
                            }
                        ],
                    }
                },
                "endings": {},
                "characters": {},
            }
        )
        assert result.graph.nodes["a"].choices[0].affinity_effect.delta == 20
        assert [i.code for i in result.issues] == ["affinity_delta_clamped"]

    def test_unknown_ending_type_reported(self) -> None:
        result = load(
            {
                "nodes": {"a": {"id": "a", "choices": []}},
                "endings": {"e": {"type": "tragic"}, "f": "Plain text ending"},
                "characters": {},
            }
        )
        assert result.graph.endings["e"].type == "neutral"
        assert result.graph.endings["f"].description == "Plain text ending"
        unknown = [i.ref for i in result.issues if i.code == "ending_type_unknown"]
        assert unknown == ["e", "f"]

    def test_ending_key_on_node(self) -> None:
        graph = load(
            {"nodes": {"a": {"id": "a", "choices": [], "ending_key": "ending_good"}}}
        ).graph
        assert graph.nodes["a"].ending_key == "ending_good"


class TestDump:
    def test_round_trip(self, story_document: dict[str, Any]) -> None:
        first = load(story_document).graph
        again = load(dump(first)).graph
        assert again == first

    def test_dump_omits_nulls(self, story_graph: StoryGraph) -> None:
        node = dump(story_graph)["nodes"]["2"]
        assert "endingKey" not in node
        assert "affinityEffect" not in node["choices"][0]


class TestSummary:
    def test_clean(self, story_document: dict[str, Any]) -> None:
        assert load(story_document).summary == "no issues"

    def test_counts_by_code(self) -> None:
        result = load(
            {
                "nodes": {
                    "a": {
                        "id": "a",
                        "choices": [
                            {"text": "x", "nextNodeId": "zz"},
                            {"text": "y", "nextNodeId": "yy"},
                        ],
                    },
                    "b": {"id": "c", "choices": []},
                },
                "endings": {},
                "characters": {},
            }
        )
        assert result.summary == "3 issue(s): 2 dangling_target, 1 node_id_mismatch"
