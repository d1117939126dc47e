"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
import structlog

from storyloom.graph import StoryGraph, load


def _node(node_id: str, content: str = "", *targets: str, **extra: Any) -> dict[str, Any]:
    """Build a wire-format node whose choices lead to *targets*."""
    return {
        "id": node_id,
        "content": content or f"Scene {node_id}",
        "choices": [{"text": f"Go to {t}", "nextNodeId": t} for t in targets],
        **extra,
    }


@pytest.fixture(autouse=True)
def clear_layout_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep STORYLOOM_* overrides from the developer's shell out of tests."""
    for name in ("STORYLOOM_PADDING", "STORYLOOM_X_STEP", "STORYLOOM_Y_STEP"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def clear_log_context() -> None:
    """Drop structlog context (e.g. the bound story) left by earlier tests."""
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def story_document() -> dict[str, Any]:
    """A small complete story in wire format.

    start → 1 → {2, 3}; 2 → ending_good; 3 → bad_end (alias of ending_bad)
    or END. Choices out of 1 carry affinity effects for Lin (in scene) and
    for the protagonist.
    """
    return {
        "projectId": "p-1",
        "title": "Night Shift",
        "meta": {"logline": "One late message.", "language": "en"},
        "characters": {
            "c_player": {
                "id": "c_player",
                "name": "Alex",
                "gender": "f",
                "age": 28,
                "role": "protagonist",
                "background": "",
            },
            "c_lin": {
                "id": "c_lin",
                "name": "Lin",
                "gender": "m",
                "role": "manager",
                "background": "",
            },
        },
        "endings": {
            "ending_good": {"type": "good", "description": "You held the line."},
            "ending_bad": {"type": "bad", "description": "It fell apart."},
        },
        "nodes": {
            "start": _node("start", "The phone buzzes.", "1"),
            "1": {
                "id": "1",
                "content": "Lin is waiting in the office.",
                "characters": ["c_player", "c_lin"],
                "choices": [
                    {
                        "text": "Stand firm",
                        "nextNodeId": "2",
                        "affinityEffect": {"characterId": "c_lin", "delta": 15},
                    },
                    {
                        "text": "Give in",
                        "nextNodeId": "3",
                        "affinityEffect": {"characterId": "c_player", "delta": 5},
                    },
                ],
            },
            "2": _node("2", "Lin nods slowly.", "ending_good"),
            "3": {
                "id": "3",
                "content": "You walk out.",
                "choices": [
                    {"text": "Accept it", "nextNodeId": "bad_end"},
                    {"text": "Stop here", "nextNodeId": "END"},
                ],
            },
        },
    }


@pytest.fixture
def story_graph(story_document: dict[str, Any]) -> StoryGraph:
    """The story document loaded into a StoryGraph."""
    return load(story_document).graph


@pytest.fixture
def tree_graph() -> StoryGraph:
    """start → 1 → {2, 3}; 2 and 3 are terminal; no endings."""
    return load(
        {
            "nodes": {
                "start": _node("start", "", "1"),
                "1": _node("1", "", "2", "3"),
                "2": _node("2"),
                "3": _node("3"),
            },
            "endings": {},
            "characters": {},
        }
    ).graph


@pytest.fixture
def make_graph():
    """Factory building a graph from ``{node_id: [targets]}``."""

    def _make(
        adjacency: dict[str, list[str]],
        endings: dict[str, str] | None = None,
    ) -> StoryGraph:
        document = {
            "nodes": {
                node_id: _node(node_id, "", *targets) for node_id, targets in adjacency.items()
            },
            "endings": {
                key: {"type": ending_type, "description": f"Ending {key}"}
                for key, ending_type in (endings or {}).items()
            },
            "characters": {},
        }
        return load(document).graph

    return _make


@pytest.fixture
def story_file(tmp_path: Path, story_document: dict[str, Any]) -> Path:
    """The story document written to a JSON file."""
    path = tmp_path / "story.json"
    path.write_text(json.dumps(story_document, ensure_ascii=False), encoding="utf-8")
    return path
