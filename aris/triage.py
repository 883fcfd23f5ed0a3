"""
Automated task complexity classification.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .tasks import Task

logger = logging.getLogger(__name__)


class Complexity(str, Enum):
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


@dataclass(frozen=True)
class ComplexityScore:
    """Normalized complexity score plus the factors that produced it."""

    value: float
    level: Complexity
    factors: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "score": round(self.value, 4),
            "level": self.level.value,
            "factors": {name: round(val, 4) for name, val in self.factors.items()},
        }


class ComplexityClassifier:
    """Scores task complexity from independent, normalized signals."""

    DOMAIN_TERMS = (
        "architecture",
        "scalable",
        "microservices",
        "authentication",
        "authorization",
        "database",
        "api",
        "endpoint",
        "middleware",
        "deployment",
        "production",
        "testing",
        "ci/cd",
        "containerization",
        "orchestration",
        "monitoring",
        "logging",
        "caching",
        "optimization",
        "security",
        "encryption",
        "validation",
    )

    SIMPLE_TYPES = ("rename", "format", "lint", "comment", "import")
    MEDIUM_TYPES = ("refactor", "optimize", "test", "document", "debug")
    COMPLEX_TYPES = ("design", "architect", "implement", "deploy", "integrate")

    WEIGHTS = {
        "description_length": 0.1,
        "domain_terms": 0.3,
        "task_type": 0.3,
        "payload": 0.2,
        "dependencies": 0.1,
    }

    SIMPLE_THRESHOLD = 0.3
    MEDIUM_THRESHOLD = 0.7

    def __init__(self) -> None:
        self._term_patterns = [
            re.compile(rf"(?<![a-z0-9]){re.escape(term)}(?:e?s)?(?![a-z0-9])")
            for term in self.DOMAIN_TERMS
        ]

    def classify(self, task: Task) -> ComplexityScore:
        factors = {
            "description_length": self._description_factor(task.description),
            "domain_terms": self._domain_term_factor(task.description),
            "task_type": self._task_type_factor(task.task_type),
            "payload": self._payload_factor(task.payload),
            "dependencies": min(len(task.dependencies) / 5, 1.0),
        }
        value = sum(self.WEIGHTS[name] * factor for name, factor in factors.items())
        value = max(0.0, min(1.0, value))
        return ComplexityScore(value=value, level=self.level_for(value), factors=factors)

    def level_for(self, value: float) -> Complexity:
        if value <= self.SIMPLE_THRESHOLD:
            return Complexity.SIMPLE
        if value <= self.MEDIUM_THRESHOLD:
            return Complexity.MEDIUM
        return Complexity.COMPLEX

    def _description_factor(self, description: str) -> float:
        words = len((description or "").split())
        return min(words / 50, 1.0)

    def _domain_term_factor(self, description: str) -> float:
        text = (description or "").lower()
        matched = sum(1 for pattern in self._term_patterns if pattern.search(text))
        return min(matched / 10, 1.0)

    def _task_type_factor(self, task_type: str) -> float:
        kind = (task_type or "").lower()
        if any(verb in kind for verb in self.SIMPLE_TYPES):
            return 0.2
        if any(verb in kind for verb in self.MEDIUM_TYPES):
            return 0.5
        if any(verb in kind for verb in self.COMPLEX_TYPES):
            return 0.8
        return 0.5

    def _payload_factor(self, payload: Any) -> float:
        if payload is None:
            return 0.0
        try:
            size = len(json.dumps(payload, sort_keys=True))
            depth = _structural_depth(payload)
        except (TypeError, ValueError, RecursionError) as exc:
            logger.debug("Malformed task payload treated as empty: %s", exc)
            return 0.0
        return min((size / 1000 + depth / 5) / 2, 1.0)


def _structural_depth(value: Any, depth: int = 0) -> int:
    if isinstance(value, dict):
        children = value.values()
    elif isinstance(value, (list, tuple)):
        children = value
    else:
        return depth
    max_depth = depth
    for child in children:
        max_depth = max(max_depth, _structural_depth(child, depth + 1))
    return max_depth
