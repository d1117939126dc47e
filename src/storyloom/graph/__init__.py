"""Graph package - the story document model and the operations on it.

A story is a directed graph of nodes (scenes) and endings joined by
choices. Raw documents enter through :func:`load`, are edited through the
mutation functions, repaired by the sanitizer, and persisted whole through
a :class:`DocumentStore`.
"""

from storyloom.graph.errors import (
    ChoiceNotFoundError,
    EmptyGraphError,
    GraphIntegrityError,
    NodeExistsError,
    NodeNotFoundError,
    ReadOnlyGraphError,
)
from storyloom.graph.loader import LoadResult, dump, load
from storyloom.graph.models import (
    END_SENTINEL,
    AffinityEffect,
    Character,
    Choice,
    Ending,
    MetaInfo,
    Provenance,
    StoryGraph,
    StoryNode,
)
from storyloom.graph.mutations import (
    add_choice,
    add_ending,
    add_node,
    delete_ending,
    delete_node,
    remove_choice,
    rename_ending,
    rename_node,
    update_choice,
    update_node,
)
from storyloom.graph.resolve import (
    CANONICAL_ENDING_KEYS,
    canonicalize_target,
    pick_protagonist,
    resolve_character_names,
    resolve_start_node_id,
)
from storyloom.graph.sanitize import (
    SanitizeReport,
    normalize_endings,
    sanitize,
    sanitize_affinity_effects,
    sanitize_graph,
)
from storyloom.graph.store import DictDocumentStore, DocumentStore, JsonDirectoryStore
from storyloom.graph.validation_types import ValidationIssue, ValidationReport

__all__ = [
    "CANONICAL_ENDING_KEYS",
    "END_SENTINEL",
    "AffinityEffect",
    "Character",
    "Choice",
    "ChoiceNotFoundError",
    "DictDocumentStore",
    "DocumentStore",
    "EmptyGraphError",
    "Ending",
    "GraphIntegrityError",
    "JsonDirectoryStore",
    "LoadResult",
    "MetaInfo",
    "NodeExistsError",
    "NodeNotFoundError",
    "Provenance",
    "ReadOnlyGraphError",
    "SanitizeReport",
    "StoryGraph",
    "StoryNode",
    "ValidationIssue",
    "ValidationReport",
    "add_choice",
    "add_ending",
    "add_node",
    "canonicalize_target",
    "delete_ending",
    "delete_node",
    "dump",
    "load",
    "normalize_endings",
    "pick_protagonist",
    "remove_choice",
    "rename_ending",
    "rename_node",
    "resolve_character_names",
    "resolve_start_node_id",
    "sanitize",
    "sanitize_affinity_effects",
    "sanitize_graph",
]
