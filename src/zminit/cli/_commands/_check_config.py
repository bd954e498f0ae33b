# pyright: reportUnusedCallResult=false
# ruff: noqa: TC003  # Path needed at runtime for cyclopts parameter parsing
"""zminit check-config command - validate settings and service definitions."""

from pathlib import Path
from typing import Annotated, Literal

from cyclopts import App, Parameter
from rich.console import Console
from rich.table import Table

from zminit.config import default_service_specs, load_service_specs
from zminit.exceptions import ConfigError
from zminit.supervisor import DependencyGraph

from ._shared import ExitCode, exit_with_error, format_json, load_settings_or_exit

OutputFormat = Literal["table", "json"]

# Keys whose values are never printed
SECRET_KEYS = frozenset({"ZM_DB_PASS"})

app = App(
    name="check-config",
    help="Validate the environment settings and service definitions.",
    help_on_error=True,
)


def _masked_env(env: dict[str, str]) -> dict[str, str]:
    return {key: "********" if key in SECRET_KEYS else value for key, value in env.items()}


@app.default
def check_config(
    *,
    services_file: Annotated[
        Path | None,
        Parameter(help="TOML services file. Checks the built-in stack if omitted."),
    ] = None,
    format: Annotated[  # noqa: A002
        OutputFormat,
        Parameter(help="Output format."),
    ] = "table",
) -> None:
    """Validate settings and services, then print the effective values.

    Exits with status 1 naming the offending key if any value is invalid.
    """
    settings = load_settings_or_exit()
    try:
        specs = (
            load_service_specs(services_file)
            if services_file is not None
            else default_service_specs(settings)
        )
    except ConfigError as e:
        exit_with_error(str(e), ExitCode.CONFIG_ERROR)

    graph = DependencyGraph(specs)
    env = _masked_env(settings.to_env())
    console = Console()

    if format == "json":
        console.print_json(
            format_json(
                {
                    "settings": env,
                    "startup_order": list(graph.startup_order()),
                    "services": {
                        spec.name: {
                            "command": list(spec.command),
                            "depends_on": list(spec.depends_on),
                            "restart": spec.restart.value,
                            "readiness": spec.readiness.kind.value,
                            "log_stream": spec.stream_id,
                        }
                        for spec in specs
                    },
                }
            )
        )
        return

    settings_table = Table(title="Settings")
    settings_table.add_column("Key", style="bold")
    settings_table.add_column("Value")
    for key, value in env.items():
        settings_table.add_row(key, value)
    console.print(settings_table)

    services_table = Table(title="Services (start order)")
    services_table.add_column("Service", style="bold")
    services_table.add_column("Depends on")
    services_table.add_column("Restart")
    services_table.add_column("Readiness")
    services_table.add_column("Command")
    by_name = {spec.name: spec for spec in specs}
    for name in graph.startup_order():
        spec = by_name[name]
        services_table.add_row(
            name,
            ", ".join(spec.depends_on) or "-",
            spec.restart.value,
            spec.readiness.kind.value,
            " ".join(spec.command),
        )
    console.print(services_table)
