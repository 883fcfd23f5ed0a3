"""Rule induction from accepted corrections, and rule-based review."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..config import Settings, settings as default_settings
from ..errors import RulePatternError
from ..events import EventEmitter, EventType, OrchestrationEvent
from .diff import CodeDiff
from .extractors import DEFAULT_EXTRACTORS, PatternExtractor, extract_candidates
from .matcher import SafeMatcher
from .rules import Rule, RuleStore

if TYPE_CHECKING:
    from ..knowledge import KnowledgeStore

logger = logging.getLogger(__name__)

# Built-in checks applied by audit() on top of the learned rules.
STATIC_CHECKS: dict[str, str] = {
    "hardcoded-strings": r'"[^"\n]{10,}"',
    "console-log": r"console\.log\(",
    "security-vulnerabilities": r"\beval\(|innerHTML|document\.write",
    "empty-catch": r"catch\s*\([^)]*\)\s*\{\s*\}|except[^:\n]*:\s*pass\b",
}

AUDIT_PASS_SCORE = 70


@dataclass
class LearnOutcome:
    rules_generated: int = 0
    rules_reinforced: int = 0
    total_rules: int = 0
    rules: list[Rule] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rules_generated": self.rules_generated,
            "rules_reinforced": self.rules_reinforced,
            "total_rules": self.total_rules,
            "rules": [rule.to_dict() for rule in self.rules],
        }


@dataclass
class ReviewIssue:
    rule_id: str
    category: str
    message: str
    line: int | None = None
    matches: int = 1
    severity: str = "warning"

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "category": self.category,
            "message": self.message,
            "line": self.line,
            "matches": self.matches,
            "severity": self.severity,
        }


@dataclass
class AuditReport:
    passed: bool
    score: int
    issues: list[ReviewIssue]
    suggestions: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "score": self.score,
            "issues": [issue.to_dict() for issue in self.issues],
            "suggestions": list(self.suggestions),
        }


def _line_of(text: str, offset: int) -> int:
    return text.count("\n", 0, offset) + 1


class LearningEngine:
    """Mines corrections for reusable rules and applies them during review.

    The rule store is injected so several engines (per tenant, per test) can
    live side by side. Every new or changed rule is flushed to the knowledge
    store when one is configured.
    """

    def __init__(
        self,
        store: RuleStore | None = None,
        knowledge: KnowledgeStore | None = None,
        *,
        matcher: SafeMatcher | None = None,
        extractors: Sequence[PatternExtractor] = DEFAULT_EXTRACTORS,
        settings: Settings | None = None,
        emitter: EventEmitter | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self.store = store if store is not None else RuleStore()
        self.knowledge = knowledge
        self.matcher = matcher or SafeMatcher(
            max_length=self.settings.pattern_max_length,
            timeout=self.settings.pattern_timeout,
        )
        self.extractors = tuple(extractors)
        self.emitter = emitter
        self._history: deque[CodeDiff] = deque(maxlen=self.settings.learning_history_limit)
        self._diffs_seen = 0

    @property
    def rules(self) -> list[Rule]:
        return self.store.snapshot()

    async def load(self) -> int:
        """Hydrate the rule store from the knowledge store."""
        if self.knowledge is None:
            return 0
        added = await self.store.load(await self.knowledge.load_rules())
        logger.info("Loaded %d persisted rules", added)
        return added

    async def learn(self, diff: CodeDiff) -> LearnOutcome:
        self._history.append(diff)
        self._diffs_seen += 1
        logger.debug("Learning from %s (%d changes)", diff.file_path, len(diff.changes))
        return await self._mine([diff])

    async def relearn(self) -> LearnOutcome:
        """Re-mine the retained diff history (e.g. after the extractor catalogue changed).

        Only rules missing from the store are added; existing rules are not
        reinforced.
        """
        return await self._mine(list(self._history), reinforce=False)

    async def _mine(self, diffs: Iterable[CodeDiff], *, reinforce: bool = True) -> LearnOutcome:
        outcome = LearnOutcome()
        for diff in diffs:
            for candidate in extract_candidates(diff.changes, self.extractors):
                try:
                    self.matcher.validate(candidate.pattern)
                except RulePatternError as exc:
                    logger.warning("Skipping candidate from %s: %s", candidate.extractor, exc.cause)
                    continue

                fresh = Rule(
                    pattern=candidate.pattern,
                    suggestion=candidate.suggestion,
                    category=candidate.category,
                    confidence=self.settings.rule_initial_confidence,
                    usage_count=1,
                    origin=diff.file_path,
                )
                if reinforce:
                    rule, created = await self.store.upsert(
                        fresh,
                        step=self.settings.rule_reinforcement_step,
                        cap=self.settings.rule_confidence_cap,
                    )
                else:
                    added = await self.store.add(fresh)
                    if added is None:
                        continue
                    rule, created = added, True

                if created:
                    outcome.rules_generated += 1
                else:
                    outcome.rules_reinforced += 1
                outcome.rules.append(rule)
                await self._flush(rule)
                await self._emit(
                    EventType.RULE_LEARNED if created else EventType.RULE_REINFORCED,
                    rule,
                    diff.file_path,
                )

        outcome.total_rules = len(self.store)
        return outcome

    async def review(self, text: str) -> list[ReviewIssue]:
        """Flag every stored rule that matches ``text``; advisory only."""
        rules = self.store.snapshot()
        if not rules:
            return []

        issues: list[ReviewIssue] = []
        for rule in rules:
            try:
                matches = self.matcher.finditer(rule.pattern, text)
            except RulePatternError as exc:
                logger.warning("Skipping rule %s during review: %s", rule.id, exc.cause)
                continue
            if not matches:
                continue
            issues.append(
                ReviewIssue(
                    rule_id=rule.id,
                    category=rule.category.value,
                    message=rule.suggestion,
                    line=_line_of(text, matches[0].start()),
                    matches=len(matches),
                )
            )

        for rule in await self.store.record_usage(issue.rule_id for issue in issues):
            await self._flush(rule)
        return issues

    async def audit(self, code: str) -> AuditReport:
        """Static checks plus learned rules, scored out of 100."""
        issues: list[ReviewIssue] = []
        score = 100
        for name, pattern in STATIC_CHECKS.items():
            try:
                matches = self.matcher.finditer(pattern, code)
            except RulePatternError as exc:
                logger.warning("Skipping static check %s during audit: %s", name, exc.cause)
                continue
            if matches:
                issues.append(
                    ReviewIssue(
                        rule_id=name,
                        category="static",
                        message=f"Found {name}: {len(matches)} occurrences",
                        line=_line_of(code, matches[0].start()),
                        matches=len(matches),
                    )
                )
                score -= 10

        learned = await self.review(code)
        issues.extend(learned)
        score -= 5 * len(learned)
        score = max(0, score)
        return AuditReport(
            passed=score >= AUDIT_PASS_SCORE,
            score=score,
            issues=issues,
            suggestions=self._suggestions(code),
        )

    def _suggestions(self, code: str) -> list[str]:
        suggestions: list[str] = []
        if "forEach" in code and "async" in code:
            suggestions.append("Consider using for...of with async/await for better performance")
        if "innerHTML" in code:
            suggestions.append("Use textContent instead of innerHTML for better security")
        if "var " in code:
            suggestions.append("Replace var with let or const for better scoping")
        if "console.log" in code:
            suggestions.append("Remove console.log statements for production code")
        return suggestions

    def stats(self) -> dict[str, Any]:
        rules = self.store.snapshot()
        average = sum(rule.confidence for rule in rules) / len(rules) if rules else 0.0
        return {
            "total_rules": len(rules),
            "active_rules": sum(1 for rule in rules if rule.usage_count > 0),
            "total_diffs": self._diffs_seen,
            "average_confidence": round(average, 4),
        }

    async def _flush(self, rule: Rule) -> None:
        if self.knowledge is not None:
            await self.knowledge.persist_rule(rule)

    async def _emit(self, event_type: EventType, rule: Rule, origin: str) -> None:
        if self.emitter is None:
            return
        await self.emitter.emit(
            OrchestrationEvent(
                type=event_type,
                ref=rule.id,
                message=rule.suggestion,
                data={"pattern": rule.pattern, "category": rule.category.value, "origin": origin},
            )
        )
