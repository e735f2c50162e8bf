"""Heuristic detection of automated and out-of-office replies.

The classifier is a table of independent header rules. A message is ignored
when any rule matches; rule order only decides which reason is reported.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum

from .headers import HeaderLookup
from .types import ClassificationResult


class RuleKind(str, Enum):
    EQUALS = "equals"
    CONTAINS = "contains"
    PRESENT = "present"


@dataclass(frozen=True)
class HeaderRule:
    """Single header predicate.

    ``EQUALS`` and ``CONTAINS`` compare the trimmed value case-insensitively
    against ``values``; ``PRESENT`` matches on the header being sent at all,
    including with an empty value.
    """

    header: str
    kind: RuleKind
    values: tuple[str, ...] = ()

    @classmethod
    def equals(cls, header: str, *values: str) -> HeaderRule:
        return cls(header, RuleKind.EQUALS, tuple(value.strip().lower() for value in values))

    @classmethod
    def contains(cls, header: str, *fragments: str) -> HeaderRule:
        return cls(header, RuleKind.CONTAINS, tuple(value.lower() for value in fragments))

    @classmethod
    def present(cls, header: str) -> HeaderRule:
        return cls(header, RuleKind.PRESENT)

    def matches(self, headers: Mapping[str, str]) -> bool:
        if self.kind is RuleKind.PRESENT:
            return self.header in headers
        value = headers.get(self.header)
        if value is None:
            return False
        normalized = value.strip().lower()
        if self.kind is RuleKind.EQUALS:
            return normalized in self.values
        return any(fragment in normalized for fragment in self.values)

    def describe(self) -> str:
        if self.kind is RuleKind.PRESENT:
            return f"{self.header} present"
        joined = "|".join(self.values)
        return f"{self.header} {self.kind.value} {joined}"


_PRECEDENCE_VALUES = ("bulk", "auto_reply", "junk")

# Many delivery agents stamp this on every message they store.
RETURN_PATH_RULE = HeaderRule.present("Return-Path")

AUTO_REPLY_RULES: tuple[HeaderRule, ...] = (
    HeaderRule.equals("Auto-Submitted", "auto-replied", "auto-generated"),
    HeaderRule.equals("Precedence", *_PRECEDENCE_VALUES),
    HeaderRule.equals("X-Precedence", *_PRECEDENCE_VALUES),
    RETURN_PATH_RULE,
    HeaderRule.contains("Subject", "Out of Office"),
    HeaderRule.equals("X-Autoreply", "yes"),
    HeaderRule.present("X-Autorespond"),
    HeaderRule.present("X-Auto-Response-Suppress"),
)


def classify(
    headers: HeaderLookup | Mapping[str, str],
    rules: Iterable[HeaderRule] = AUTO_REPLY_RULES,
) -> ClassificationResult:
    """Return whether a message with ``headers`` should be ignored."""

    if not isinstance(headers, HeaderLookup):
        headers = HeaderLookup.from_mapping(headers)
    for rule in rules:
        if rule.matches(headers):
            return ClassificationResult(ignore=True, reason=rule.describe())
    return ClassificationResult(ignore=False)


def build_rules(extra: Iterable[HeaderRule] = ()) -> tuple[HeaderRule, ...]:
    """Return the built-in rule table followed by ``extra`` rules."""

    return AUTO_REPLY_RULES + tuple(extra)


def return_path_only(
    headers: HeaderLookup | Mapping[str, str],
    rules: Iterable[HeaderRule] = AUTO_REPLY_RULES,
) -> bool:
    """Return True when the Return-Path presence rule is the only one matching.

    Such a message may be a genuine reply whose delivery agent added the header.
    """

    if not isinstance(headers, HeaderLookup):
        headers = HeaderLookup.from_mapping(headers)
    if not RETURN_PATH_RULE.matches(headers):
        return False
    return not any(rule.matches(headers) for rule in rules if rule != RETURN_PATH_RULE)


__all__ = [
    "AUTO_REPLY_RULES",
    "RETURN_PATH_RULE",
    "HeaderRule",
    "RuleKind",
    "build_rules",
    "classify",
    "return_path_only",
]
