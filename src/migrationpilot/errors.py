"""Exceptions raised by migrationpilot.

The analysis core is total over well-formed input: lock classification, risk scoring and directive parsing never
raise. The exceptions below cover the three places where a caller genuinely has to react: SQL the parser rejects,
configuration that does not validate, and a rule pass in which every single rule invocation failed.
"""

from __future__ import annotations


class MigrationPilotError(Exception):
    """Base class for every exception raised by migrationpilot."""


class AnalysisError(MigrationPilotError):
    """Raised when a migration file cannot be parsed.

    Wraps the ``postgast.PgQueryError`` produced by libpg_query so callers can report the file and the parser's own
    messages without importing postgast.

    ``cursorpos`` keeps the parser's convention: a **1-based byte offset** into the file's source text, ``0`` when the
    position is unknown.

    Attributes:
        file: Path (or label) of the file that failed to parse.
        parse_errors: Parser messages, in the order they were reported.
        cursorpos: 1-based byte offset of the offending token, or ``0``.

    Example:
        >>> from migrationpilot import AnalysisError, analyze_sql
        >>> try:
        ...     analyze_sql("ALTER TABLE;", file_path="001_broken.sql")
        ... except AnalysisError as e:
        ...     print(e.file)
        001_broken.sql
    """

    def __init__(self, file: str, parse_errors: list[str], *, cursorpos: int = 0) -> None:
        """Create an AnalysisError.

        Args:
            file: Path or label of the file that failed to parse.
            parse_errors: Parser error messages.
            cursorpos: 1-based byte offset where the parser gave up.
        """
        super().__init__(f"Parse errors in {file}: {'; '.join(parse_errors)}")
        self.file = file
        self.parse_errors = parse_errors
        self.cursorpos = cursorpos


class ConfigurationError(MigrationPilotError):
    """Raised when an analysis configuration or a rule override table does not validate.

    Attributes:
        errors: One human-readable line per validation problem.
    """

    def __init__(self, message: str, *, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class RuleEvaluationError(MigrationPilotError):
    """Raised when every rule invocation of a pass failed.

    A single broken rule only loses its own contribution for the statement it failed on. When nothing succeeded at
    all the problem is systemic (a mis-wired rule set or context), and the pass fails loudly instead of reporting a
    clean file. The last underlying exception is chained as ``__cause__``.

    Attributes:
        failures: Number of failed ``Rule.check`` invocations.
    """

    def __init__(self, failures: int) -> None:
        super().__init__(f"All {failures} rule invocations failed")
        self.failures = failures
