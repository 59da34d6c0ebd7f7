"""Pydantic models for analysis configuration.

Only the in-memory shape is defined here; finding and reading configuration files is left to the caller::

    config = AnalysisConfig.from_mapping(
        {
            "pg_version": 15,
            "rules": {
                "MP004": False,
                "mp014": {"threshold": 500_000},
                "MP007": {"severity": "warning"},
            },
        }
    )
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from migrationpilot.errors import ConfigurationError
from migrationpilot.locks import DEFAULT_PG_VERSION
from migrationpilot.severity import Severity

MIN_PG_VERSION = 9


class RuleOverride(BaseModel):
    """Per-rule settings.

    A bare boolean in a rule table means ``RuleOverride(enabled=<bool>)``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = True
    severity: Severity | None = Field(
        default=None,
        description="Replace the rule's built-in severity for every violation it reports.",
    )
    threshold: int | None = Field(
        default=None,
        ge=0,
        description="Rule-specific cut-off, e.g. the minimum row count for large-table rules.",
    )


def _coerce_rule_table(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        msg = f"rule overrides must be a mapping of rule id to settings, got {type(value).__name__}"
        raise ValueError(msg)
    table: dict[str, Any] = {}
    for rule_id, setting in value.items():
        if not isinstance(rule_id, str):
            msg = f"rule id must be a string, got {rule_id!r}"
            raise ValueError(msg)
        table[rule_id.strip().upper()] = {"enabled": setting} if isinstance(setting, bool) else setting
    return table


class AnalysisConfig(BaseModel):
    """Settings for one analysis run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    pg_version: int = Field(
        default=DEFAULT_PG_VERSION,
        description="Major version of the target PostgreSQL server. Several lock decisions depend on it.",
    )
    rules: dict[str, RuleOverride] = Field(default_factory=dict)

    @field_validator("pg_version")
    @classmethod
    def validate_pg_version(cls, v: int) -> int:
        if v < MIN_PG_VERSION:
            msg = f"pg_version must be >= {MIN_PG_VERSION}, got {v}"
            raise ValueError(msg)
        return v

    @field_validator("rules", mode="before")
    @classmethod
    def normalize_rules(cls, v: Any) -> dict[str, Any]:
        return _coerce_rule_table(v)

    @classmethod
    def from_mapping(cls, data: dict[str, Any] | None = None, **kwargs: Any) -> AnalysisConfig:
        """Validate a plain mapping (as loaded from YAML, JSON or TOML) into a config.

        Raises:
            ConfigurationError: If the mapping does not validate. ``errors`` lists every problem.
        """
        try:
            return cls.model_validate({**(data or {}), **kwargs})
        except ValidationError as e:
            raise _configuration_error(e) from e

    def override_for(self, rule_id: str) -> RuleOverride | None:
        return self.rules.get(rule_id.upper())

    def threshold_for(self, rule_id: str) -> int | None:
        override = self.override_for(rule_id)
        return override.threshold if override is not None else None

    def is_enabled(self, rule_id: str) -> bool:
        override = self.override_for(rule_id)
        return override is None or override.enabled


def parse_rule_overrides(table: Any) -> dict[str, RuleOverride]:
    """Validate a rule override table (``rule id -> bool | dict | RuleOverride``).

    Raises:
        ConfigurationError: If any entry does not validate.
    """
    if table is None:
        return {}
    if isinstance(table, dict) and all(isinstance(v, RuleOverride) for v in table.values()):
        return {str(k).upper(): v for k, v in table.items()}
    try:
        return AnalysisConfig.model_validate({"rules": table}).rules
    except ValidationError as e:
        raise _configuration_error(e) from e


def _configuration_error(exc: ValidationError) -> ConfigurationError:
    errors = [f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}" for err in exc.errors()]
    return ConfigurationError(f"Invalid configuration: {errors[0]}", errors=errors)
