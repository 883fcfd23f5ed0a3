"""Learned rules and the process-wide rule store."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

logger = logging.getLogger(__name__)


class RuleCategory(StrEnum):
    STYLE = "style"
    SECURITY = "security"
    PERFORMANCE = "performance"
    BEST_PRACTICE = "best-practice"


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass
class Rule:
    """A learned pattern plus the suggestion shown when it matches."""

    pattern: str
    suggestion: str
    category: RuleCategory
    confidence: float = 0.7
    usage_count: int = 1
    id: str = field(default_factory=lambda: f"rule-{uuid4().hex[:12]}")
    created_at: datetime = field(default_factory=_now)
    last_used: datetime = field(default_factory=_now)
    origin: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.pattern, self.category.value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "pattern": self.pattern,
            "suggestion": self.suggestion,
            "category": self.category.value,
            "confidence": round(self.confidence, 4),
            "usage_count": self.usage_count,
            "created_at": self.created_at.isoformat(),
            "last_used": self.last_used.isoformat(),
            "origin": self.origin,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Rule":
        def _ts(value: Any) -> datetime:
            if isinstance(value, datetime):
                return value
            if value:
                return datetime.fromisoformat(str(value))
            return _now()

        return cls(
            id=str(data["id"]),
            pattern=str(data["pattern"]),
            suggestion=str(data.get("suggestion") or ""),
            category=RuleCategory(data.get("category") or RuleCategory.BEST_PRACTICE),
            confidence=float(data.get("confidence", 0.7)),
            usage_count=int(data.get("usage_count", 1)),
            created_at=_ts(data.get("created_at")),
            last_used=_ts(data.get("last_used")),
            origin=data.get("origin"),
        )


class RuleStore:
    """Rules keyed by id, with one writer at a time.

    Mutations go through the async methods and are serialized by a lock.
    ``snapshot()`` returns copies so readers never see a half-applied write.
    """

    def __init__(self, rules: Iterable[Rule] = ()) -> None:
        self._rules: dict[str, Rule] = {}
        self._by_key: dict[tuple[str, str], str] = {}
        self._lock = asyncio.Lock()
        for rule in rules:
            self._put(rule)

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, rule_id: str) -> bool:
        return rule_id in self._rules

    def get(self, rule_id: str) -> Rule | None:
        rule = self._rules.get(rule_id)
        return replace(rule) if rule else None

    def find(self, pattern: str, category: RuleCategory) -> Rule | None:
        rule_id = self._by_key.get((pattern, category.value))
        return self.get(rule_id) if rule_id else None

    def snapshot(self) -> list[Rule]:
        return [replace(rule) for rule in self._rules.values()]

    def _put(self, rule: Rule) -> None:
        self._rules[rule.id] = rule
        self._by_key.setdefault(rule.key, rule.id)

    async def upsert(
        self, candidate: Rule, *, step: float, cap: float
    ) -> tuple[Rule, bool]:
        """Add ``candidate`` or reinforce the equivalent stored rule.

        Returns the stored rule (a copy) and whether it was newly created.
        """
        async with self._lock:
            existing_id = self._by_key.get(candidate.key)
            if existing_id is None:
                self._put(replace(candidate))
                return replace(candidate), True

            rule = self._rules[existing_id]
            rule.usage_count += 1
            rule.last_used = _now()
            rule.confidence = min(cap, rule.confidence + step)
            return replace(rule), False

    async def add(self, candidate: Rule) -> Rule | None:
        """Store ``candidate`` unless an equivalent rule exists; never reinforces."""
        async with self._lock:
            if candidate.key in self._by_key:
                return None
            self._put(replace(candidate))
            return replace(candidate)

    async def record_usage(self, rule_ids: Iterable[str]) -> list[Rule]:
        touched: list[Rule] = []
        async with self._lock:
            now = _now()
            for rule_id in rule_ids:
                rule = self._rules.get(rule_id)
                if rule is None:
                    continue
                rule.usage_count += 1
                rule.last_used = now
                touched.append(replace(rule))
        return touched

    async def load(self, rules: Iterable[Rule]) -> int:
        """Merge persisted rules in; rules already held in memory win."""
        added = 0
        async with self._lock:
            for rule in rules:
                if rule.id in self._rules:
                    continue
                self._put(replace(rule))
                added += 1
        return added
