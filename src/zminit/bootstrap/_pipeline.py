"""Bootstrap pipeline: the one-shot steps that run before any service.

Steps run in a fixed order. The first failing step stops the pipeline and
its error propagates to the caller; later steps never run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, final, runtime_checkable

from zminit.utils import get_null_logger

from ._materialize import MaterializePaths, materialize
from ._permissions import default_permission_targets, fix_permissions
from ._seed import seed_default_config

if TYPE_CHECKING:
    from collections.abc import Sequence

    from structlog.typing import FilteringBoundLogger

    from zminit.config import ContainerSettings


@dataclass(frozen=True, slots=True)
class BootstrapContext:
    """Inputs shared by every bootstrap step.

    Attributes:
        settings: Validated container settings.
        root: Filesystem root every fixed path is resolved against.
        logger: Logger for step records.
    """

    settings: ContainerSettings
    root: Path = Path("/")
    logger: FilteringBoundLogger = field(default_factory=get_null_logger)


@dataclass(frozen=True, slots=True)
class StepResult:
    """Outcome of one bootstrap step.

    Attributes:
        name: Name of the step.
        changed: Paths the step created or modified.
    """

    name: str
    changed: tuple[Path, ...] = ()


@runtime_checkable
class BootstrapStep(Protocol):
    """One ordered bootstrap step."""

    @property
    def name(self) -> str:
        """Return the step name used in logs."""
        ...

    def run(self, context: BootstrapContext) -> StepResult:
        """Run the step.

        Raises:
            BootstrapError: If the step fails.
        """
        ...


@final
class FixPermissionsStep:
    """Create the persistent directories and fix their ownership."""

    name = "fix-permissions"

    def run(self, context: BootstrapContext) -> StepResult:
        targets = default_permission_targets(context.settings, context.root)
        results = fix_permissions(targets, logger=context.logger)
        return StepResult(self.name, tuple(path for path, count in results.items() if count))


@final
class SeedConfigStep:
    """Copy missing default config files into the config volume."""

    name = "seed-config"

    def run(self, context: BootstrapContext) -> StepResult:
        copied = seed_default_config(
            context.root / "zoneminder" / "defaultconfig",
            context.root / "config",
            logger=context.logger,
        )
        return StepResult(self.name, tuple(copied))


@final
class MaterializeStep:
    """Write configuration files derived from the settings."""

    name = "materialize"

    def run(self, context: BootstrapContext) -> StepResult:
        written = materialize(
            context.settings,
            MaterializePaths.rooted(context.root),
            logger=context.logger,
        )
        return StepResult(self.name, tuple(written))


@final
class OwnConfigStep:
    """Give files seeded or written into the config volume to PUID:PGID.

    Seeding and materializing run after the permission fixer, so files
    they create would otherwise be left owned by root.
    """

    name = "own-config"

    def run(self, context: BootstrapContext) -> StepResult:
        config = context.root / "config"
        targets = [
            t
            for t in default_permission_targets(context.settings, context.root)
            if t.path == config
        ]
        results = fix_permissions(targets, logger=context.logger)
        return StepResult(self.name, tuple(path for path, count in results.items() if count))


def default_steps() -> list[BootstrapStep]:
    """Return the bootstrap steps in the order they must run."""
    return [FixPermissionsStep(), SeedConfigStep(), MaterializeStep(), OwnConfigStep()]


def run_pipeline(
    context: BootstrapContext, steps: Sequence[BootstrapStep] | None = None
) -> list[StepResult]:
    """Run ``steps`` in order.

    Returns:
        The result of every step.

    Raises:
        BootstrapError: From the first step that fails.
    """
    results: list[StepResult] = []
    for step in default_steps() if steps is None else steps:
        context.logger.debug("bootstrap_step_started", step=step.name)
        try:
            result = step.run(context)
        except Exception as e:
            context.logger.error("bootstrap_step_failed", step=step.name, error=str(e))
            raise
        context.logger.info(
            "bootstrap_step_finished", step=step.name, changed=len(result.changed)
        )
        results.append(result)
    return results
