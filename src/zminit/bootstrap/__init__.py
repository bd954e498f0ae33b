"""One-shot bootstrap: permissions, default config and materialized config."""

from ._materialize import MaterializePaths, materialize, render_files, write_if_changed
from ._permissions import (
    PermissionTarget,
    default_permission_targets,
    fix_permissions,
    fix_target,
)
from ._pipeline import (
    BootstrapContext,
    BootstrapStep,
    FixPermissionsStep,
    MaterializeStep,
    OwnConfigStep,
    SeedConfigStep,
    StepResult,
    default_steps,
    run_pipeline,
)
from ._seed import seed_default_config

__all__ = [
    "BootstrapContext",
    "BootstrapStep",
    "FixPermissionsStep",
    "MaterializePaths",
    "MaterializeStep",
    "OwnConfigStep",
    "PermissionTarget",
    "SeedConfigStep",
    "StepResult",
    "default_permission_targets",
    "default_steps",
    "fix_permissions",
    "fix_target",
    "materialize",
    "render_files",
    "run_pipeline",
    "seed_default_config",
    "write_if_changed",
]
