"""Wildcard allow-list evaluated against resolved request parameters."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Mapping, Sequence

import structlog

LOGGER = structlog.get_logger("pathproxy.allowlist")


def compile_wildcard(pattern: str) -> re.Pattern[str]:
    """Compile ``facebook*`` into an anchored matcher; only ``*`` is special."""
    body = ".*".join(re.escape(piece) for piece in pattern.split("*"))
    return re.compile(f"^{body}$", re.DOTALL)


@dataclass(frozen=True)
class AllowRule:
    """Conjunction of per-parameter wildcard constraints."""

    constraints: Mapping[str, re.Pattern[str]]

    def matches(self, params: Mapping[str, str]) -> bool:
        for name, matcher in self.constraints.items():
            value = params.get(name)
            if not value or matcher.fullmatch(value) is None:
                return False
        return True

    def describe(self) -> str:
        return "; ".join(f"{name}={matcher.pattern}" for name, matcher in self.constraints.items())


@dataclass(frozen=True)
class AllowList:
    rules: tuple[AllowRule, ...] = ()

    def is_allowed(self, params: Mapping[str, str]) -> bool:
        if not self.rules:
            return True
        return any(rule.matches(params) for rule in self.rules)

    def __len__(self) -> int:
        return len(self.rules)


def parse_allow_rules(raw: str | None) -> AllowList:
    """Parse ``owner=facebook*;repo=react,owner=twbs`` into an :class:`AllowList`.

    Rules are separated by commas and constraints inside a rule by semicolons.
    Constraints without a value are ignored, and so are rules left empty.
    """
    rules: list[AllowRule] = []
    for raw_rule in (raw or "").split(","):
        constraints: dict[str, re.Pattern[str]] = {}
        for part in raw_rule.split(";"):
            key, _, value = part.strip().partition("=")
            key = key.strip()
            value = value.strip()
            if key and value:
                constraints[key] = compile_wildcard(value)
        if constraints:
            rules.append(AllowRule(constraints=constraints))
    return AllowList(rules=tuple(rules))


def describe_rules(allow_list: AllowList) -> Sequence[str]:
    return [rule.describe() for rule in allow_list.rules]
