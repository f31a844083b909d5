"""
Workflow Definition Loader (``approval_config.loader``).

Responsibility
--------------
Loads workflow template definitions from YAML files and parses them into
frozen ``WorkflowTemplate`` instances.  A file holds either one definition
or a ``workflows:`` list of them::

    workflows:
      - name: Standard Review
        code: std_review
        rules:
          - {condition_type: error_count, operator: greater_than, value: 5}
        steps:
          - {sequence: 1, level: supervisor}
        matrix:
          - {level: supervisor, required_role: Supervisor}

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  Uses the definition codec of
``approval_kernel.domain``; stores nothing.  Persisting loaded templates
is ``WorkflowService.publish_definition``.

Invariants enforced
-------------------
* Every parsed object is a frozen domain dataclass.
* ``compute_checksum`` is a deterministic SHA-256 of the canonical JSON
  form, so an unchanged file always yields the same checksum.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Unknown level, status or behaviour  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from uuid import UUID

import yaml

from approval_kernel.domain.codec import template_from_dict
from approval_kernel.domain.workflow import WorkflowTemplate
from approval_kernel.logging_config import get_logger

logger = get_logger("config.loader")


@dataclass(frozen=True)
class LoadedDefinitions:
    """Templates parsed from one file plus the file's checksum."""

    source: str
    checksum: str
    templates: tuple[WorkflowTemplate, ...]


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at top level, got {type(data).__name__}")
    return data


def definitions_of(data: dict[str, Any]) -> list[dict[str, Any]]:
    """The definition dicts of a loaded document."""
    if "workflows" in data:
        return list(data["workflows"] or [])
    return [data] if data else []


def parse_template(data: dict[str, Any], tenant_id: UUID | None = None) -> WorkflowTemplate:
    """Parse one definition; ``tenant_id`` overrides the document's tenant."""
    return template_from_dict(data, tenant_id=tenant_id)


def load_templates(path: Path | str, tenant_id: UUID | None = None) -> LoadedDefinitions:
    """Load and parse every definition in the YAML file at ``path``."""
    path = Path(path)
    data = load_yaml_file(path)
    templates = tuple(parse_template(d, tenant_id) for d in definitions_of(data))
    checksum = compute_checksum(data)
    logger.info("workflow_definitions_loaded", extra={
        "source": str(path),
        "template_count": len(templates),
        "checksum": checksum,
    })
    return LoadedDefinitions(source=str(path), checksum=checksum, templates=templates)


def load_directory(directory: Path | str, tenant_id: UUID | None = None) -> list[LoadedDefinitions]:
    """Load every ``*.yaml`` file of ``directory`` in name order."""
    return [
        load_templates(path, tenant_id)
        for path in sorted(Path(directory).glob("*.yaml"))
    ]


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
