"""
Engine settings (``approval_config.settings``).

Responsibility
--------------
Typed runtime knobs of the approval engine: the SLA at-risk window, the
escalation chain bound, the sweep interval of the SLA monitor and the
database URL.

Settings come from an optional YAML file, then ``APPROVAL_*`` environment
variables override individual keys::

    APPROVAL_AT_RISK_HOURS=6
    APPROVAL_MAX_ESCALATION_CHAIN=3
    APPROVAL_SWEEP_INTERVAL_SECONDS=120
    APPROVAL_DATABASE_URL=postgresql://...
    APPROVAL_LOG_LEVEL=DEBUG

Failure modes
-------------
* Unknown keys in the YAML file -> ``ValueError``.
* Non-integer / non-positive numeric values -> ``ValueError``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml

ENV_PREFIX = "APPROVAL_"


@dataclass(frozen=True)
class EngineSettings:
    at_risk_hours: int = 4
    max_escalation_chain: int = 4
    sweep_interval_seconds: int = 300
    database_url: str = "sqlite:///approval_engine.db"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        for name in ("at_risk_hours", "max_escalation_chain", "sweep_interval_seconds"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be a positive integer")

    @property
    def at_risk_window(self) -> timedelta:
        return timedelta(hours=self.at_risk_hours)


_INT_FIELDS = frozenset({"at_risk_hours", "max_escalation_chain", "sweep_interval_seconds"})


def _coerce(name: str, value: Any) -> Any:
    if name in _INT_FIELDS:
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValueError(f"{name} must be an integer, got {value!r}") from None
    return str(value)


def settings_from_dict(
    data: Mapping[str, Any],
    environ: Mapping[str, str] | None = None,
) -> EngineSettings:
    """Build settings from a dict, then apply environment overrides."""
    known = {f.name for f in fields(EngineSettings)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown engine settings: {sorted(unknown)}")

    values = {name: _coerce(name, value) for name, value in data.items()}
    env = os.environ if environ is None else environ
    for name in known:
        key = ENV_PREFIX + name.upper()
        if key in env:
            values[name] = _coerce(name, env[key])
    return EngineSettings(**values)


def load_settings(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> EngineSettings:
    """Load settings from ``path`` (optional) plus environment overrides.

    The YAML document may nest the keys under an ``engine:`` section.
    """
    data: dict[str, Any] = {}
    if path is not None:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if "engine" in data:
            data = data["engine"] or {}
    return settings_from_dict(data, environ)
