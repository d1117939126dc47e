"""Document storage protocol and implementations.

The DocumentStore protocol is the persistence boundary of the engine:
whole story documents are saved and loaded by request id. Editing happens
on the in-memory :class:`StoryGraph`; the store only ever sees complete
wire documents (see :func:`storyloom.graph.loader.dump`).

DictDocumentStore keeps documents in memory. JsonDirectoryStore writes one
``<id>.json`` file per document.
"""

from __future__ import annotations

import copy
import json
import re
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from storyloom.observability.logging import get_logger

log = get_logger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


@runtime_checkable
class DocumentStore(Protocol):
    """Storage backend protocol for story documents.

    Implementations store and return plain JSON-compatible dicts. Methods
    raise no domain-specific errors; a missing document is ``None``.
    """

    def load(self, request_id: str) -> dict[str, Any] | None:
        """Get a document by request id, or None if not found."""
        ...

    def save(self, request_id: str, document: dict[str, Any]) -> None:
        """Store a document (create or overwrite)."""
        ...

    def delete(self, request_id: str) -> bool:
        """Delete a document. Return True if removed, False if absent."""
        ...

    def list_ids(self) -> list[str]:
        """Return all stored request ids, sorted."""
        ...


class DictDocumentStore:
    """In-memory document store.

    Documents are deep-copied on the way in and out, so callers can never
    mutate stored state by accident.
    """

    def __init__(self, documents: dict[str, dict[str, Any]] | None = None) -> None:
        self._documents: dict[str, dict[str, Any]] = copy.deepcopy(documents or {})

    def load(self, request_id: str) -> dict[str, Any] | None:
        document = self._documents.get(request_id)
        return copy.deepcopy(document) if document is not None else None

    def save(self, request_id: str, document: dict[str, Any]) -> None:
        self._documents[request_id] = copy.deepcopy(document)

    def delete(self, request_id: str) -> bool:
        return self._documents.pop(request_id, None) is not None

    def list_ids(self) -> list[str]:
        return sorted(self._documents)


class JsonDirectoryStore:
    """Directory-backed document store, one ``<id>.json`` file per document.

    Writes go to a temp file that replaces the target, so a failed save
    never leaves a truncated document behind.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def _path(self, request_id: str) -> Path:
        if not _SAFE_ID.match(request_id):
            raise ValueError(f"Invalid document id: {request_id!r}")
        return self.directory / f"{request_id}.json"

    def load(self, request_id: str) -> dict[str, Any] | None:
        path = self._path(request_id)
        if not path.exists():
            return None
        with path.open(encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Document {request_id!r} is not a JSON object")
        return data

    def save(self, request_id: str, document: dict[str, Any]) -> None:
        path = self._path(request_id)
        self.directory.mkdir(parents=True, exist_ok=True)

        tmp_path = path.with_suffix(".json.tmp")
        try:
            with tmp_path.open("w", encoding="utf-8") as f:
                json.dump(document, f, ensure_ascii=False, indent=2)
            tmp_path.replace(path)
        except BaseException:
            if tmp_path.exists():
                tmp_path.unlink()
            raise
        log.debug("document_saved", request_id=request_id, path=str(path))

    def delete(self, request_id: str) -> bool:
        path = self._path(request_id)
        if not path.exists():
            return False
        path.unlink()
        log.debug("document_deleted", request_id=request_id)
        return True

    def list_ids(self) -> list[str]:
        if not self.directory.is_dir():
            return []
        return sorted(p.stem for p in self.directory.glob("*.json"))
