from .diff import ChangeDescriptor, ChangeKind, CodeDiff, describe_changes
from .engine import AuditReport, LearnOutcome, LearningEngine, ReviewIssue
from .extractors import DEFAULT_EXTRACTORS, PatternExtractor
from .matcher import SafeMatcher
from .rules import Rule, RuleCategory, RuleStore

__all__ = [
    "AuditReport",
    "ChangeDescriptor",
    "ChangeKind",
    "CodeDiff",
    "DEFAULT_EXTRACTORS",
    "LearnOutcome",
    "LearningEngine",
    "PatternExtractor",
    "ReviewIssue",
    "Rule",
    "RuleCategory",
    "RuleStore",
    "SafeMatcher",
    "describe_changes",
]
