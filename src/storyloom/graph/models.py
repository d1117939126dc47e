"""Story graph document models.

These models mirror the JSON document produced by the content generator
(camelCase on the wire, snake_case in Python). Models accept either
spelling on input and dump camelCase with ``to_wire()``.

Raw documents should enter through :func:`storyloom.graph.loader.load`,
which normalizes legacy shapes and reports what it changed. The models
themselves only enforce the few rules that must always hold (delta
clamping, ending type vocabulary).
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator
from pydantic.alias_generators import to_camel

END_SENTINEL = "END"
"""Choice target that ends the story at the current node."""

AFFINITY_DELTA_LIMIT = 20

EndingType = Literal["good", "neutral", "bad"]

_WIRE_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
)


class AffinityEffect(BaseModel):
    """Relationship side-effect attached to a choice."""

    model_config = _WIRE_CONFIG

    character_id: str = Field(default="", description="Character id or display name")
    delta: int = Field(default=0, description="Score change, clamped to [-20, 20]")

    @field_validator("delta", mode="before")
    @classmethod
    def clamp_delta(cls, value: Any) -> int:
        """Clamp the delta to the allowed range, coercing numeric strings."""
        try:
            delta = int(value)
        except (TypeError, ValueError):
            return 0
        return max(-AFFINITY_DELTA_LIMIT, min(AFFINITY_DELTA_LIMIT, delta))


class Choice(BaseModel):
    """A labelled edge from a node to a node, an ending, or ``END``."""

    model_config = _WIRE_CONFIG

    text: str = ""
    next_node_id: str = END_SENTINEL
    affinity_effect: AffinityEffect | None = None


class StoryNode(BaseModel):
    """A single scene of the story.

    A node with an empty ``choices`` list is terminal.
    """

    model_config = _WIRE_CONFIG

    id: str
    content: str = ""
    notes: str = Field(default="", description="Editorial notes from legacy {text, notes} content")
    ending_key: str | None = None
    level: int | None = None
    characters: list[str] = Field(default_factory=list)
    choices: list[Choice] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        """True if the node offers no choices."""
        return not self.choices


class Ending(BaseModel):
    """An ending of the story, optionally stamped with where it was reached."""

    model_config = _WIRE_CONFIG

    type: EndingType = "neutral"
    description: str = ""
    ending_key: str | None = None
    node_id: str | None = None
    reached_at: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, value: Any) -> str:
        """Map unknown or differently-cased types to the fixed vocabulary."""
        text = str(value or "").strip().lower()
        if text in ("good", "neutral", "bad"):
            return text
        return "neutral"


class Character(BaseModel):
    """A cast member. ``name`` is the canonical join key outside the raw graph."""

    model_config = _WIRE_CONFIG

    id: str = ""
    name: str = ""
    gender: str = ""
    age: int = 0
    role: str = ""
    background: str = ""
    avatar_path: str | None = None


class MetaInfo(BaseModel):
    """Document-level synopsis metadata."""

    model_config = _WIRE_CONFIG

    logline: str = ""
    synopsis: str = ""
    target_runtime_minutes: int = 0
    genre: str = ""
    language: str = ""


class Provenance(BaseModel):
    """Who created the document and when."""

    model_config = _WIRE_CONFIG

    created_by: str = ""
    created_at: str = ""


class StoryGraph(BaseModel):
    """The full story document: nodes, endings and characters.

    Nodes and endings are looked up through separate maps; the same key may
    appear in both. Unknown top-level keys are kept so that a load/save
    round trip preserves the document.

    ``revision`` counts editor mutations and is used to invalidate cached
    layouts. It is not part of the wire document.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    project_id: str = ""
    title: str = ""
    version: str = ""
    owner: str = ""
    meta: MetaInfo = Field(default_factory=MetaInfo)
    background_image_base64: str | None = None
    nodes: dict[str, StoryNode] = Field(default_factory=dict)
    endings: dict[str, Ending] = Field(default_factory=dict)
    characters: dict[str, Character] = Field(default_factory=dict)
    provenance: Provenance = Field(default_factory=Provenance)

    _revision: int = PrivateAttr(default=0)

    @property
    def revision(self) -> int:
        """Number of editor mutations applied since load."""
        return self._revision

    def touch(self) -> None:
        """Record that the graph was mutated."""
        self._revision += 1

    def has_target(self, target: str) -> bool:
        """True if *target* names a node or an ending."""
        return target in self.nodes or target in self.endings

    def character_name_map(self) -> dict[str, str]:
        """Build the id → display name table used to resolve references."""
        mapping: dict[str, str] = {}
        for key, character in self.characters.items():
            name = character.name.strip()
            if not name:
                continue
            for ref in (key.strip(), character.id.strip()):
                if ref:
                    mapping.setdefault(ref, name)
        return mapping

    def to_wire(self) -> dict[str, Any]:
        """Dump the camelCase wire document."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")
