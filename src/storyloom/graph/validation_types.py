"""Shared validation types used by the loader and the inspection report."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field


@dataclass
class ValidationIssue:
    """A structural defect found (and normalized) in a document.

    Attributes:
        code: Stable identifier for the kind of defect.
        message: Human-readable description.
        ref: Node, ending or character the issue is about, if any.
    """

    code: str
    message: str
    ref: str = ""


@dataclass
class ValidationReport:
    """Aggregated issues from one validation pass.

    Attributes:
        issues: List of individual issues in discovery order.
    """

    issues: list[ValidationIssue] = field(default_factory=list)

    def add(self, code: str, message: str, ref: str = "") -> None:
        """Append an issue."""
        self.issues.append(ValidationIssue(code=code, message=message, ref=ref))

    @property
    def summary(self) -> str:
        """Human-readable summary, most frequent codes first."""
        if not self.issues:
            return "no issues"
        counts = Counter(i.code for i in self.issues)
        detail = ", ".join(f"{n} {code}" for code, n in counts.most_common())
        return f"{len(self.issues)} issue(s): {detail}"
