"""Knowledge Store contract and the in-memory implementation."""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from typing import Any, Protocol, runtime_checkable

from .learning.rules import Rule

_TOKEN_RE = re.compile(r"[a-z0-9]+")


@dataclass
class Snippet:
    """A piece of contextual knowledge handed to workers."""

    content: str
    title: str = ""
    role: str | None = None
    tags: list[str] = field(default_factory=list)
    source: str | None = None
    score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "content": self.content,
            "role": self.role,
            "tags": list(self.tags),
            "source": self.source,
            "score": round(self.score, 4),
        }


@runtime_checkable
class KnowledgeStore(Protocol):
    async def retrieve(
        self, query: str, role_hint: str | None = None, *, limit: int = 5
    ) -> list[Snippet]: ...

    async def persist_rule(self, rule: Rule) -> None: ...

    async def load_rules(self) -> list[Rule]: ...


def tokenize(text: str) -> set[str]:
    return set(_TOKEN_RE.findall(text.lower()))


def score_snippet(snippet: Snippet, query_tokens: set[str], role_hint: str | None) -> float:
    """Keyword overlap between query and snippet, with a bonus for the role's own snippets."""
    if not query_tokens:
        return 0.0
    haystack = tokenize(" ".join([snippet.title, snippet.content, *snippet.tags]))
    overlap = len(query_tokens & haystack) / len(query_tokens)
    if overlap and role_hint and snippet.role == role_hint:
        overlap += 0.25
    return overlap


def rank_snippets(
    snippets: Iterable[Snippet], query: str, role_hint: str | None, limit: int
) -> list[Snippet]:
    query_tokens = tokenize(query)
    scored: list[Snippet] = []
    for snippet in snippets:
        if snippet.role and role_hint and snippet.role != role_hint:
            continue
        score = score_snippet(snippet, query_tokens, role_hint)
        if score > 0:
            scored.append(replace(snippet, tags=list(snippet.tags), score=score))
    scored.sort(key=lambda s: s.score, reverse=True)
    return scored[:limit]


class InMemoryKnowledgeStore:
    """Process-local store, used by tests and ``knowledge_backend=memory``."""

    def __init__(self, snippets: Sequence[Snippet] = ()) -> None:
        self._snippets: list[Snippet] = list(snippets)
        self._rules: dict[str, Rule] = {}

    def add_snippet(self, snippet: Snippet) -> None:
        self._snippets.append(snippet)

    async def retrieve(
        self, query: str, role_hint: str | None = None, *, limit: int = 5
    ) -> list[Snippet]:
        return rank_snippets(self._snippets, query, role_hint, limit)

    async def persist_rule(self, rule: Rule) -> None:
        self._rules[rule.id] = replace(rule)

    async def load_rules(self) -> list[Rule]:
        return [replace(rule) for rule in self._rules.values()]
