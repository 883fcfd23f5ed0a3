"""Resource-bounded matching for learned (untrusted) patterns."""

from __future__ import annotations

import logging

import regex

from ..errors import RulePatternError

logger = logging.getLogger(__name__)

_BACKREFERENCE = regex.compile(r"\\[1-9]|\\g<|\\k<|\(\?P=")
# A group holding an unbounded quantifier that is itself repeated, e.g. (a+)+ or (\w*\s)*
_NESTED_QUANTIFIER = regex.compile(
    r"\((?:[^()\\]|\\.)*(?:[+*]|\{\d*,\})(?:[^()\\]|\\.)*\)\s*(?:[+*]|\{\d*,\d*\})"
)


class SafeMatcher:
    """Validates learned patterns and runs them with a per-call timeout."""

    def __init__(self, *, max_length: int = 200, timeout: float = 0.25) -> None:
        self.max_length = max_length
        self.timeout = timeout
        self._compiled: dict[str, regex.Pattern[str]] = {}

    def validate(self, pattern: str) -> regex.Pattern[str]:
        """Return the compiled pattern or raise ``RulePatternError``."""
        cached = self._compiled.get(pattern)
        if cached is not None:
            return cached

        if not pattern:
            raise RulePatternError("Empty pattern")
        if len(pattern) > self.max_length:
            raise RulePatternError(f"Pattern longer than {self.max_length} characters: {pattern[:40]}...")
        if _BACKREFERENCE.search(pattern):
            raise RulePatternError(f"Backreferences are not allowed: {pattern}")
        if _NESTED_QUANTIFIER.search(pattern):
            raise RulePatternError(f"Nested unbounded quantifiers are not allowed: {pattern}")
        try:
            compiled = regex.compile(pattern)
        except regex.error as exc:
            raise RulePatternError(f"Pattern does not compile ({exc}): {pattern}") from exc

        self._compiled[pattern] = compiled
        return compiled

    def is_valid(self, pattern: str) -> bool:
        try:
            self.validate(pattern)
        except RulePatternError:
            return False
        return True

    def finditer(self, pattern: str, text: str) -> list[regex.Match[str]]:
        """All matches of ``pattern`` in ``text``; raises ``RulePatternError`` on timeout."""
        compiled = self.validate(pattern)
        try:
            return list(compiled.finditer(text, timeout=self.timeout))
        except TimeoutError as exc:
            raise RulePatternError(f"Matching timed out after {self.timeout}s: {pattern}") from exc

    def search(self, pattern: str, text: str) -> bool:
        compiled = self.validate(pattern)
        try:
            return compiled.search(text, timeout=self.timeout) is not None
        except TimeoutError as exc:
            raise RulePatternError(f"Matching timed out after {self.timeout}s: {pattern}") from exc
