"""Catalogue of pattern extractors applied to change descriptors.

Each extractor recognises one shape of correction (for example ``var``
rewritten to ``const``) and proposes the pattern that flags the
uncorrected form in future reviews.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from .diff import ChangeDescriptor
from .rules import RuleCategory

Predicate = Callable[[ChangeDescriptor], bool]


@dataclass(frozen=True)
class PatternExtractor:
    name: str
    category: RuleCategory
    pattern: str
    suggestion: str
    applies: Predicate


@dataclass(frozen=True)
class Candidate:
    extractor: str
    pattern: str
    suggestion: str
    category: RuleCategory


def _has(text: str, expr: str) -> bool:
    return re.search(expr, text) is not None


def _added_error_handling(change: ChangeDescriptor) -> bool:
    added, removed = change.added_text, change.removed_text
    gained_try = _has(added, r"\btry\b") and not _has(removed, r"\btry\b")
    return gained_try and _has(added, r"\b(catch|except)\b")


def _removed_unsafe_dom(change: ChangeDescriptor) -> bool:
    unsafe = r"innerHTML|document\.write|\beval\s*\("
    return _has(change.removed_text, unsafe) and not _has(change.added_text, unsafe)


def _foreach_to_for(change: ChangeDescriptor) -> bool:
    return _has(change.removed_text, r"\.forEach\s*\(") and _has(change.added_text, r"\bfor\s*\(")


def _range_len_to_enumerate(change: ChangeDescriptor) -> bool:
    return _has(change.removed_text, r"\brange\s*\(\s*len\s*\(") and _has(
        change.added_text, r"\benumerate\s*\("
    )


def _var_to_let_const(change: ChangeDescriptor) -> bool:
    return _has(change.removed_text, r"\bvar\s") and _has(change.added_text, r"\b(let|const)\s")


def _loose_to_strict_equality(change: ChangeDescriptor) -> bool:
    return _has(change.removed_text, r"[^=!<>]==[^=]|!=[^=]") and _has(change.added_text, r"===|!==")


def _removed_debug_output(change: ChangeDescriptor) -> bool:
    debug = r"console\.(log|debug)\s*\(|\bdebugger\b|\bbreakpoint\(\)"
    return _has(change.removed_text, debug) and not _has(change.added_text, debug)


DEFAULT_EXTRACTORS: tuple[PatternExtractor, ...] = (
    PatternExtractor(
        name="error-handling",
        category=RuleCategory.BEST_PRACTICE,
        pattern=r"try\s*\{[^}]*\}\s*catch\s*\(",
        suggestion="Add proper error handling with specific error types",
        applies=_added_error_handling,
    ),
    PatternExtractor(
        name="unsafe-dom",
        category=RuleCategory.SECURITY,
        pattern=r"innerHTML|document\.write|\beval\s*\(",
        suggestion="Use safer DOM manipulation methods (textContent, createElement) instead of innerHTML, document.write or eval",
        applies=_removed_unsafe_dom,
    ),
    PatternExtractor(
        name="foreach-loop",
        category=RuleCategory.PERFORMANCE,
        pattern=r"\.forEach\s*\(",
        suggestion="Consider using for...of for better performance",
        applies=_foreach_to_for,
    ),
    PatternExtractor(
        name="range-len-loop",
        category=RuleCategory.STYLE,
        pattern=r"\brange\s*\(\s*len\s*\(",
        suggestion="Iterate with enumerate() instead of range(len(...))",
        applies=_range_len_to_enumerate,
    ),
    PatternExtractor(
        name="var-declaration",
        category=RuleCategory.STYLE,
        pattern=r"\bvar\s+\w+",
        suggestion="Use let or const instead of var",
        applies=_var_to_let_const,
    ),
    PatternExtractor(
        name="loose-equality",
        category=RuleCategory.BEST_PRACTICE,
        pattern=r"[^=!<>]==[^=]",
        suggestion="Use strict equality (===) instead of ==",
        applies=_loose_to_strict_equality,
    ),
    PatternExtractor(
        name="debug-output",
        category=RuleCategory.BEST_PRACTICE,
        pattern=r"console\.(?:log|debug)\s*\(|\bdebugger\b",
        suggestion="Remove debug output before shipping",
        applies=_removed_debug_output,
    ),
)


def extract_candidates(
    changes: Iterable[ChangeDescriptor],
    extractors: Sequence[PatternExtractor] = DEFAULT_EXTRACTORS,
) -> list[Candidate]:
    """Run every extractor over every change; one candidate per (extractor, diff)."""
    seen: set[str] = set()
    candidates: list[Candidate] = []
    for change in changes:
        for extractor in extractors:
            if extractor.name in seen or not extractor.applies(change):
                continue
            seen.add(extractor.name)
            candidates.append(
                Candidate(
                    extractor=extractor.name,
                    pattern=extractor.pattern,
                    suggestion=extractor.suggestion,
                    category=extractor.category,
                )
            )
    return candidates
