"""Inline ``migrationpilot-disable`` comments.

Supported forms (markers are case-insensitive, ``--`` and single-line ``/* */`` comments both work)::

    -- migrationpilot-disable MP001          disable MP001 for the next statement
    -- migrationpilot-disable MP001, MP002   several rules for the next statement
    -- migrationpilot-disable                every rule for the next statement
    -- migrationpilot-disable-file           every rule for the whole file
    /* migrationpilot-disable-file MP004 */  MP004 for the whole file

A statement directive applies to the first statement that starts on or after the directive's line. Anything that
does not parse as a directive is an ordinary comment: parsing never raises.
"""

from __future__ import annotations

import bisect
import dataclasses
import re
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from migrationpilot.rules.engine import RuleViolation

ALL: Literal["all"] = "all"
RuleIds = frozenset[str] | Literal["all"]

_LINE_COMMENT = re.compile(r"--\s*migrationpilot-disable(-file)?\s*(.*?)$", re.IGNORECASE)
_BLOCK_COMMENT = re.compile(r"/\*\s*migrationpilot-disable(-file)?\s*(.*?)\*/", re.IGNORECASE)
_ID_SEPARATOR = re.compile(r"[,\s]+")
_RULE_ID = re.compile(r"^MP\d{3}$")

STALE_FILE = "File-level disable does not suppress any violations"
STALE_NO_STATEMENT = "Disable comment has no following SQL statement"
STALE_STATEMENT = "Disable comment does not suppress any violations on the next statement"


@dataclasses.dataclass(frozen=True)
class DisableDirective:
    """A parsed disable comment.

    Attributes:
        type: ``"statement"`` for the next statement only, ``"file"`` for the whole file.
        rule_ids: Upper-cased rule ids, or ``"all"`` when the comment lists none.
        line: 1-based line of the comment.
    """

    type: Literal["statement", "file"]
    rule_ids: RuleIds
    line: int

    @property
    def blanket(self) -> bool:
        return self.rule_ids == ALL


@dataclasses.dataclass(frozen=True)
class StaleDirective:
    """A directive with rule ids that suppressed nothing.

    Attributes:
        line: Line of the directive.
        rule_ids: The ids that matched no violation.
        reason: Why the directive is stale.
    """

    line: int
    rule_ids: tuple[str, ...]
    reason: str


def parse_rule_ids(text: str) -> RuleIds:
    """Parse the id list after a marker. Blank text means ``"all"``; tokens that are not ``MPnnn`` are dropped."""
    text = text.strip()
    if not text:
        return ALL
    ids = (token.strip().upper() for token in _ID_SEPARATOR.split(text))
    return frozenset(token for token in ids if _RULE_ID.match(token))


def parse_disable_directives(source: str) -> list[DisableDirective]:
    """Return every disable directive in *source*, in line order."""
    directives: list[DisableDirective] = []
    for lineno, line in enumerate(source.split("\n"), start=1):
        for pattern in (_LINE_COMMENT, _BLOCK_COMMENT):
            match = pattern.search(line)
            if match is None:
                continue
            directives.append(
                DisableDirective(
                    type="file" if match.group(1) else "statement",
                    rule_ids=parse_rule_ids(match.group(2) or ""),
                    line=lineno,
                )
            )
    return directives


def _next_statement_line(statement_lines: Sequence[int], line: int) -> int | None:
    i = bisect.bisect_left(statement_lines, line)
    return statement_lines[i] if i < len(statement_lines) else None


def filter_disabled_violations(
    violations: Iterable[RuleViolation],
    directives: Iterable[DisableDirective],
    statement_lines: Iterable[int],
) -> list[RuleViolation]:
    """Drop the violations suppressed by *directives*.

    Args:
        violations: Violations to filter.
        directives: Directives parsed from the same file.
        statement_lines: Start line of every statement in the file.

    Returns:
        The violations whose rule is neither disabled for the file nor for the violation's statement line.
    """
    directives = list(directives)
    violations = list(violations)
    if not directives:
        return violations

    lines = sorted(set(statement_lines))
    file_disabled: set[str] = set()
    statement_disabled: dict[int, set[str] | None] = {}  # None disables every rule

    for directive in directives:
        if directive.type == "file":
            if directive.rule_ids == ALL:
                return []
            file_disabled.update(directive.rule_ids)
            continue
        target = _next_statement_line(lines, directive.line)
        if target is None:
            continue
        if directive.rule_ids == ALL or (target in statement_disabled and statement_disabled[target] is None):
            statement_disabled[target] = None
        else:
            statement_disabled.setdefault(target, set()).update(directive.rule_ids)  # type: ignore[union-attr]

    kept: list[RuleViolation] = []
    for violation in violations:
        if violation.rule_id in file_disabled:
            continue
        if violation.line in statement_disabled:
            disabled = statement_disabled[violation.line]
            if disabled is None or violation.rule_id in disabled:
                continue
        kept.append(violation)
    return kept


def find_stale_directives(
    directives: Iterable[DisableDirective],
    violations: Iterable[RuleViolation],
    statement_lines: Iterable[int],
) -> list[StaleDirective]:
    """Report directives whose rule ids suppress nothing.

    *violations* must be the unfiltered violations of the file. Blanket directives (no ids) are never stale.
    """
    violations = list(violations)
    lines = sorted(set(statement_lines))
    fired = {v.rule_id for v in violations}
    stale: list[StaleDirective] = []

    for directive in directives:
        if directive.rule_ids == ALL:
            continue
        ids = sorted(directive.rule_ids)
        if directive.type == "file":
            unused = tuple(rule_id for rule_id in ids if rule_id not in fired)
            if unused:
                stale.append(StaleDirective(line=directive.line, rule_ids=unused, reason=STALE_FILE))
            continue

        target = _next_statement_line(lines, directive.line)
        if target is None:
            stale.append(StaleDirective(line=directive.line, rule_ids=tuple(ids), reason=STALE_NO_STATEMENT))
            continue
        fired_here = {v.rule_id for v in violations if v.line == target}
        unused = tuple(rule_id for rule_id in ids if rule_id not in fired_here)
        if unused:
            stale.append(StaleDirective(line=directive.line, rule_ids=unused, reason=STALE_STATEMENT))

    return stale
