"""Line-level diffs between an emitted artifact and its accepted correction."""

from __future__ import annotations

import difflib
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class ChangeKind(StrEnum):
    REPLACE = "replace"
    INSERT = "insert"
    DELETE = "delete"


@dataclass(frozen=True)
class ChangeDescriptor:
    kind: ChangeKind
    before_line: int | None
    after_line: int | None
    removed: tuple[str, ...] = ()
    added: tuple[str, ...] = ()

    @property
    def removed_text(self) -> str:
        return "\n".join(self.removed)

    @property
    def added_text(self) -> str:
        return "\n".join(self.added)

    def describe(self) -> str:
        line = self.before_line or self.after_line
        before = " / ".join(s.strip() for s in self.removed)
        after = " / ".join(s.strip() for s in self.added)
        return f'Line {line}: "{before}" -> "{after}"'


def describe_changes(before: str, after: str) -> list[ChangeDescriptor]:
    """Diff two texts line by line and return one descriptor per changed hunk."""
    before_lines = before.splitlines()
    after_lines = after.splitlines()
    matcher = difflib.SequenceMatcher(None, before_lines, after_lines, autojunk=False)

    changes: list[ChangeDescriptor] = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            continue
        changes.append(
            ChangeDescriptor(
                kind=ChangeKind(tag),
                before_line=i1 + 1 if i2 > i1 else None,
                after_line=j1 + 1 if j2 > j1 else None,
                removed=tuple(before_lines[i1:i2]),
                added=tuple(after_lines[j1:j2]),
            )
        )
    return changes


@dataclass
class CodeDiff:
    file_path: str
    before: str
    after: str
    author: str = "unknown"
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    changes: list[ChangeDescriptor] = field(init=False)

    def __post_init__(self) -> None:
        self.changes = describe_changes(self.before, self.after)

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_path": self.file_path,
            "author": self.author,
            "timestamp": self.timestamp.isoformat(),
            "changes": [change.describe() for change in self.changes],
        }
