"""Graph error types.

Editor operations raise :class:`GraphIntegrityError` subclasses when a
request would break referential integrity, similar to foreign key
violations in a database. Each error can format itself as actionable
feedback for the editor UI.

:class:`EmptyGraphError` is the single hard rejection of the engine: a
document without any nodes cannot be played or laid out.

Navigation problems during play are *not* exceptions; see
:class:`storyloom.play.session.NavigationError`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from difflib import get_close_matches
from typing import Literal


class EmptyGraphError(ValueError):
    """Raised when a document has no nodes, so no start node can be resolved."""

    def __init__(self, context: str = "") -> None:
        self.context = context
        msg = "Story graph has no nodes"
        if context:
            msg += f" ({context})"
        super().__init__(msg)


class GraphIntegrityError(Exception):
    """Base class for editor-time graph integrity violations.

    Subclasses implement to_feedback() to explain what is wrong and how to
    fix it.
    """

    def to_feedback(self) -> str:
        """Format error as actionable feedback for the editor.

        Returns:
            Human-readable error message explaining what's wrong and how to
            fix it.
        """
        raise NotImplementedError


@dataclass
class NodeNotFoundError(GraphIntegrityError):
    """Raised when an edit references a node or ending that doesn't exist.

    Attributes:
        node_id: The ID that was referenced but doesn't exist.
        kind: Whether a story node or an ending was expected.
        available: Valid IDs that could be used instead.
        context: Description of where the reference occurred.
    """

    node_id: str
    kind: Literal["node", "ending"] = "node"
    available: list[str] = field(default_factory=list)
    context: str = ""

    def __post_init__(self) -> None:
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        label = "Ending" if self.kind == "ending" else "Node"
        msg = f"{label} '{self.node_id}' not found"
        if self.context:
            msg += f" ({self.context})"
        return msg

    def suggestions(self) -> list[str]:
        """Find similar IDs that might be typos."""
        return get_close_matches(self.node_id, self.available, n=3, cutoff=0.6)

    def to_feedback(self) -> str:
        """Format as actionable feedback."""
        lines = [
            f"{self._format_message()}.",
        ]

        suggestions = self.suggestions()
        if suggestions:
            lines.append("Did you mean: " + ", ".join(f"'{s}'" for s in suggestions) + "?")

        if self.available:
            shown = sorted(self.available)[:20]
            lines.append("Valid IDs: " + ", ".join(shown))
            if len(self.available) > 20:
                lines.append(f"... and {len(self.available) - 20} more")

        return "\n".join(lines)


@dataclass
class NodeExistsError(GraphIntegrityError):
    """Raised when creating or renaming onto an ID that is already taken.

    Attributes:
        node_id: The ID that already exists.
        kind: Whether the collision is in the node or the ending map.
    """

    node_id: str
    kind: Literal["node", "ending"] = "node"

    def __post_init__(self) -> None:
        label = "Ending" if self.kind == "ending" else "Node"
        super().__init__(f"{label} '{self.node_id}' already exists")

    def to_feedback(self) -> str:
        """Format as actionable feedback."""
        return (
            f"'{self.node_id}' is already used by another {self.kind}. "
            "Pick a different ID, or edit the existing one instead."
        )


@dataclass
class ChoiceNotFoundError(GraphIntegrityError):
    """Raised when a choice index is out of range for its node.

    Attributes:
        node_id: Node owning the choice list.
        index: Requested choice index.
        count: Number of choices the node actually has.
    """

    node_id: str
    index: int
    count: int

    def __post_init__(self) -> None:
        super().__init__(
            f"Node '{self.node_id}' has no choice #{self.index} ({self.count} choice(s))"
        )

    def to_feedback(self) -> str:
        """Format as actionable feedback."""
        if self.count == 0:
            return f"Node '{self.node_id}' has no choices yet. Add one first."
        return f"Choose an index between 0 and {self.count - 1} for node '{self.node_id}'."


@dataclass
class ReadOnlyGraphError(GraphIntegrityError):
    """Raised when a mutation is attempted without the edit capability.

    Attributes:
        operation: Name of the rejected mutation.
    """

    operation: str

    def __post_init__(self) -> None:
        super().__init__(f"Graph is read-only; '{self.operation}' rejected")

    def to_feedback(self) -> str:
        """Format as actionable feedback."""
        return "You can view this story but not edit it. Make a copy to change it."
