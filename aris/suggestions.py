"""Named patches that fold reviewer suggestions into a design artifact."""

from __future__ import annotations

import copy
import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

PatchFn = Callable[[dict[str, Any], "re.Match[str]"], None]


@dataclass(frozen=True)
class SuggestionPatch:
    """Applies when ``pattern`` matches a suggestion; ``apply`` only fills in what is missing."""

    name: str
    pattern: re.Pattern[str]
    apply: PatchFn


@dataclass
class MergeOutcome:
    artifact: Any
    applied: list[str] = field(default_factory=list)
    unrecognized: list[str] = field(default_factory=list)


def _section(artifact: dict[str, Any], *path: str) -> dict[str, Any] | None:
    node: Any = artifact
    for key in path:
        node = node.setdefault(key, {})
        if not isinstance(node, dict):
            return None
    return node


def _policy(section: str, key: str, value: dict[str, Any]) -> PatchFn:
    def apply(artifact: dict[str, Any], match: re.Match[str]) -> None:
        target = _section(artifact, section)
        if target is not None:
            target.setdefault(key, copy.deepcopy(value))

    return apply


def _add_field(artifact: dict[str, Any], match: re.Match[str]) -> None:
    name = match.group("field") or match.group("field2")
    properties = _section(artifact, "schema", "properties")
    if properties is not None:
        properties.setdefault(name.lower(), {"type": "string"})


_FIELD_RE = re.compile(
    r"\badd\s+(?:an?\s+|the\s+)?[`'\"]?(?P<field>[A-Za-z_][A-Za-z0-9_]*)[`'\"]?\s+(?:field|property|column|attribute)\b"
    r"|\badd\s+(?:an?\s+|the\s+)?(?:field|property|column|attribute)\s+[`'\"]?(?P<field2>[A-Za-z_][A-Za-z0-9_]*)",
    re.IGNORECASE,
)


DEFAULT_PATCHES: tuple[SuggestionPatch, ...] = (
    SuggestionPatch("field-addition", _FIELD_RE, _add_field),
    SuggestionPatch(
        "rate-limiting",
        re.compile(r"\brate[- ]?limit", re.IGNORECASE),
        _policy("security", "rate_limiting", {"enabled": True, "requests_per_minute": 100}),
    ),
    SuggestionPatch(
        "input-validation",
        re.compile(r"\binput validation\b|\bvalidate (?:all )?inputs?\b", re.IGNORECASE),
        _policy("security", "input_validation", {"enabled": True}),
    ),
    SuggestionPatch(
        "caching",
        re.compile(r"\bcach(?:e|ing)\b", re.IGNORECASE),
        _policy("performance", "caching", {"enabled": True, "ttl": 300}),
    ),
    SuggestionPatch(
        "monitoring",
        re.compile(r"\bmonitoring\b", re.IGNORECASE),
        _policy("observability", "monitoring", {"enabled": True}),
    ),
    SuggestionPatch(
        "logging",
        re.compile(r"\blogging\b", re.IGNORECASE),
        _policy("observability", "logging", {"enabled": True, "level": "info"}),
    ),
    SuggestionPatch(
        "retries",
        re.compile(r"\bretr(?:y|ies)\b", re.IGNORECASE),
        _policy("resilience", "retries", {"enabled": True, "max_attempts": 3}),
    ),
    SuggestionPatch(
        "circuit-breakers",
        re.compile(r"\bcircuit[- ]breakers?\b", re.IGNORECASE),
        _policy("resilience", "circuit_breaker", {"enabled": True}),
    ),
    SuggestionPatch(
        "health-checks",
        re.compile(r"\bhealth[- ]?checks?\b", re.IGNORECASE),
        _policy("operations", "health_checks", {"enabled": True, "path": "/health"}),
    ),
)


def merge_suggestions(
    artifact: Any,
    suggestions: Iterable[str],
    patches: Sequence[SuggestionPatch] = DEFAULT_PATCHES,
) -> MergeOutcome:
    """Apply every recognised suggestion to a copy of ``artifact``.

    Re-applying the same suggestions to the result changes nothing.
    """
    merged = copy.deepcopy(artifact)
    outcome = MergeOutcome(artifact=merged)
    for suggestion in suggestions:
        matched = False
        if isinstance(merged, dict):
            for patch in patches:
                match = patch.pattern.search(suggestion)
                if match is None:
                    continue
                patch.apply(merged, match)
                matched = True
                if patch.name not in outcome.applied:
                    outcome.applied.append(patch.name)
        if not matched:
            outcome.unrecognized.append(suggestion)
    return outcome
