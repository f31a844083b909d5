"""
approval_config -- engine settings and workflow definitions.

Responsibility:
    Single entrypoint for configuration: ``load_settings()`` for the
    engine knobs and ``load_validated_templates()`` for workflow
    definitions authored as YAML.  Definitions are parsed into frozen
    domain templates and validated before anything can publish them.

Architecture position:
    Configuration.  Depends on ``approval_kernel.domain`` for the template
    types; the kernel services receive ``EngineSettings`` by injection and
    never read files or environment variables themselves.

Failure modes:
    - ``FileNotFoundError`` -- no such definition file or directory.
    - ``ValueError`` -- parse or validation errors.
"""

from __future__ import annotations

from pathlib import Path
from uuid import UUID

from sqlalchemy.engine import Engine

from approval_config.loader import LoadedDefinitions, load_directory, load_templates
from approval_config.settings import EngineSettings, load_settings
from approval_config.validator import ConfigValidationResult, validate_templates
from approval_kernel.db.engine import create_tables, init_engine
from approval_kernel.domain.workflow import WorkflowTemplate
from approval_kernel.logging_config import configure_logging, get_logger

logger = get_logger("config")

DEFAULT_WORKFLOW_DIR = Path(__file__).parent / "workflows"


def bootstrap(settings: EngineSettings | None = None) -> Engine:
    """Configure logging and storage from ``settings`` (default: ``load_settings()``).

    Creates missing tables.  Returns the engine; sessions come from
    ``approval_kernel.db.engine.get_session_factory()``.
    """
    settings = settings or load_settings()
    configure_logging(level=settings.log_level)
    engine = init_engine(settings.database_url)
    create_tables()
    logger.info("approval_engine_bootstrapped", extra={
        "at_risk_hours": settings.at_risk_hours,
        "max_escalation_chain": settings.max_escalation_chain,
        "sweep_interval_seconds": settings.sweep_interval_seconds,
    })
    return engine


def load_validated_templates(
    path: Path | str | None = None,
    tenant_id: UUID | None = None,
) -> list[WorkflowTemplate]:
    """Load every definition under ``path`` and refuse invalid ones.

    ``path`` may be a YAML file or a directory of them; it defaults to the
    definitions shipped with the package.  Warnings are logged, errors
    raise ``ValueError`` listing every problem found.
    """
    path = Path(path) if path is not None else DEFAULT_WORKFLOW_DIR
    if path.is_dir():
        loaded = load_directory(path, tenant_id)
    else:
        loaded = [load_templates(path, tenant_id)]

    templates = [t for definitions in loaded for t in definitions.templates]
    result = validate_templates(templates)
    for warning in result.warnings:
        logger.warning("workflow_definition_warning", extra={"warning": warning})
    if not result.is_valid:
        logger.error("workflow_definitions_invalid", extra={
            "source": str(path),
            "errors": result.errors,
        })
        raise ValueError(
            "Workflow definitions failed validation:\n  " + "\n  ".join(result.errors)
        )

    logger.info("workflow_definitions_validated", extra={
        "source": str(path),
        "template_count": len(templates),
        "checksums": [d.checksum for d in loaded],
    })
    return templates


__all__ = [
    "ConfigValidationResult",
    "DEFAULT_WORKFLOW_DIR",
    "EngineSettings",
    "LoadedDefinitions",
    "bootstrap",
    "load_settings",
    "load_validated_templates",
    "validate_templates",
]
