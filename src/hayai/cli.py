"""Typer-powered command line interface for ``hayai``.

Each invocation loads configuration and persisted state, performs one
command inside a structured operation scope, persists the result and exits
with a code from :class:`~hayai.exit_codes.ExitCode`.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .config import AppConfig, load_config
from .context import RuntimeContext, build_runtime
from .descriptor import service_name
from .envfile import env_var_name, project_env_file
from .errors import HayaiError, NotFoundError, ValidationError
from .exit_codes import ExitCode
from .logging import OperationScope
from .models import InstanceRecord, InstanceStatus
from .project import export_project, load_project, sync_project

console = Console()
err_console = Console(stderr=True)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to hayai's YAML config file.",
)

JSON_OPTION = typer.Option(False, "--json", help="Emit JSON instead of a table.")

app = typer.Typer(
    add_completion=False,
    help="hayai: local database instances on demand, backed by docker compose.",
)
ports_app = typer.Typer(help="Inspect port allocations.")
engines_app = typer.Typer(help="Inspect the supported database engines.")
descriptor_app = typer.Typer(help="Inspect the generated compose descriptor.")
config_app = typer.Typer(help="Inspect resolved configuration.")

app.add_typer(ports_app, name="ports")
app.add_typer(engines_app, name="engines")
app.add_typer(descriptor_app, name="descriptor")
app.add_typer(config_app, name="config")

_STATUS_STYLES = {
    InstanceStatus.RUNNING: "[green]running[/green]",
    InstanceStatus.STOPPED: "[yellow]stopped[/yellow]",
    InstanceStatus.ERROR: "[red]error[/red]",
}


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False, show_time=False)],
        force=True,
    )


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    verbose: bool = False,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    overrides: dict[str, object] = {}
    if verbose:
        overrides["log_level"] = "debug"
    try:
        config = load_config(config_file=config_file, overrides=overrides)
        _configure_logging(config.log_level)
        runtime = build_runtime(config)
    except HayaiError as exc:
        err_console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=int(exc.exit_code)) from exc
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the hayai version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"hayai {__version__}")
        raise typer.Exit(code=0)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help(), markup=False, highlight=False)
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file, verbose)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = int(ExitCode.VALIDATION),
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    err_console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _fail(op: OperationScope, exc: HayaiError, prefix: str | None = None) -> NoReturn:
    message = f"{prefix}: {exc}" if prefix else str(exc)
    _command_error(op, message, rc=int(exc.exit_code))


def _parse_env_pairs(pairs: Sequence[str]) -> dict[str, str]:
    parsed: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ValidationError(f"Invalid --env value '{pair}'; expected KEY=VALUE.")
        parsed[key.strip()] = value
    return parsed


def _record_payload(record: InstanceRecord) -> dict[str, object]:
    payload = record.to_dict()
    payload["service"] = service_name(record.name)
    payload["env_var"] = env_var_name(record.name)
    return payload


def _render_instances(records: Sequence[InstanceRecord]) -> None:
    table = Table("Name", "Engine", "Port", "Status", "Connection URI")
    for record in records:
        table.add_row(
            record.name,
            record.engine,
            str(record.port) if record.port else "-",
            _STATUS_STYLES.get(record.status, record.status.value),
            record.connection_uri,
        )
    console.print(table)


def _render_record(record: InstanceRecord) -> None:
    table = Table("Field", "Value")
    for key, value in _record_payload(record).items():
        if isinstance(value, Mapping):
            value = ", ".join(f"{k}={v}" for k, v in value.items()) or "-"
        table.add_row(key, str(value))
    console.print(table)


# ---------------------------------------------------------------------------
# Instance lifecycle
# ---------------------------------------------------------------------------


@app.command("create")
def create_instance(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Instance name (letters, digits, '-' and '_')."),
    engine: str = typer.Option(..., "--engine", "-e", help="Engine id, see `hayai engines list`."),
    port: int | None = typer.Option(None, "--port", "-p", help="Preferred host port."),
    env: list[str] | None = typer.Option(
        None,
        "--env",
        help="Environment override KEY=VALUE (repeatable).",
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """Register a new database instance."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "create",
        args={
            "engine": engine,
            "port": port,
            "env": sorted(pair.split("=", 1)[0] for pair in env or []),
        },
        target={"kind": "instance", "name": name},
    ) as op:
        try:
            overrides = _parse_env_pairs(env or [])
            record = runtime.instances.create(
                name,
                engine,
                preferred_port=port,
                env_overrides=overrides,
            )
        except HayaiError as exc:
            _fail(op, exc, f"Failed to create database '{name}'")
        op.add_step("registry.update", status="success", detail=record.name)
        op.add_step(
            "descriptor.write", status="success", detail=runtime.config.docker.compose_file
        )
        if port is not None and record.port and record.port != port:
            op.warning(
                f"Created '{name}' on port {record.port} (port {port} unavailable).",
                warnings=[f"preferred port {port} unavailable"],
                changed=1,
                context={"port": record.port},
            )
        else:
            op.success(f"Created database '{name}'.", changed=1, context={"port": record.port})

    if json_output:
        console.print_json(data=_record_payload(record))
        return
    console.print(f"[green]Created[/green] {record.engine} database '{record.name}'.")
    if record.port:
        console.print(f"Port: {record.port}")
    console.print(f"Connection URI: {record.connection_uri}")
    console.print(f"Start it with: hayai start {record.name}")


@app.command("remove")
def remove_instance(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Instance to remove."),
    force: bool = typer.Option(False, "--force", "-f", help="Skip the confirmation prompt."),
) -> None:
    """Remove an instance, its container, port and data volume."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "remove",
        args={"force": force},
        target={"kind": "instance", "name": name},
    ) as op:
        if name not in runtime.instances:
            _command_error(op, f"Database instance '{name}' not found.")
        if not force and not typer.confirm(
            f"Remove database '{name}' and delete its data?", default=False
        ):
            console.print("Aborted.")
            op.success("Removal cancelled.", changed=0)
            raise typer.Exit(code=0)
        try:
            record = runtime.instances.remove(name)
        except HayaiError as exc:
            _fail(op, exc, f"Failed to remove database '{name}'")
        if record.port:
            op.add_step("ports.release", status="success", detail=record.port)
        op.success(f"Removed database '{name}'.", changed=1)
    console.print(f"[green]Removed[/green] database '{name}'.")


@app.command("start")
def start_instance(
    ctx: typer.Context,
    name: str | None = typer.Argument(None, help="Instance to start (all when omitted)."),
) -> None:
    """Start one instance, or every instance."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "start",
        target={"kind": "instance", "name": name or "*"},
    ) as op:
        if name is None and not len(runtime.instances):
            console.print("No databases registered.")
            op.success("Nothing to start.", changed=0)
            return
        try:
            records = [runtime.instances.start(name)] if name else runtime.instances.start_all()
        except HayaiError as exc:
            _fail(op, exc)
        op.success(f"Started {len(records)} database(s).", changed=len(records))
    for record in records:
        console.print(f"[green]Started[/green] '{record.name}' ({record.connection_uri}).")


@app.command("stop")
def stop_instance(
    ctx: typer.Context,
    name: str | None = typer.Argument(None, help="Instance to stop (all when omitted)."),
) -> None:
    """Stop one instance, or every instance."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "stop",
        target={"kind": "instance", "name": name or "*"},
    ) as op:
        if name is None and not len(runtime.instances):
            console.print("No databases registered.")
            op.success("Nothing to stop.", changed=0)
            return
        try:
            records = [runtime.instances.stop(name)] if name else runtime.instances.stop_all()
        except HayaiError as exc:
            _fail(op, exc)
        op.success(f"Stopped {len(records)} database(s).", changed=len(records))
    for record in records:
        console.print(f"[yellow]Stopped[/yellow] '{record.name}'.")


@app.command("list")
def list_instances(
    ctx: typer.Context,
    status: InstanceStatus | None = typer.Option(
        None, "--status", case_sensitive=False, help="Only show instances in this state."
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """List registered instances."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "list",
        args={"status": status.value if status else None, "json": json_output},
        target={"kind": "instance", "scope": "all"},
    ) as op:
        records = runtime.instances.filter(status) if status else runtime.instances.all()
        if json_output:
            console.print_json(data={"instances": [_record_payload(r) for r in records]})
        elif not records:
            console.print("No databases registered.")
        else:
            _render_instances(records)
        op.success(f"Listed {len(records)} database(s).", changed=0)


@app.command("show")
def show_instance(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Instance to inspect."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show one instance's record."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "show",
        args={"json": json_output},
        target={"kind": "instance", "name": name},
    ) as op:
        try:
            record = runtime.instances.require(name)
        except NotFoundError as exc:
            _fail(op, exc)
        if json_output:
            console.print_json(data=_record_payload(record))
        else:
            _render_record(record)
        op.success(f"Displayed database '{name}'.", changed=0)


@app.command("logs")
def show_logs(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Instance whose container logs to show."),
    tail: int | None = typer.Option(100, "--tail", "-n", min=0, help="Number of lines."),
) -> None:
    """Print a snapshot of an instance's container logs."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "logs",
        args={"tail": tail},
        target={"kind": "instance", "name": name},
    ) as op:
        try:
            runtime.instances.require(name)
            output = runtime.reconciler.logs(
                runtime.instances.all(), service_name(name), tail=tail
            )
        except HayaiError as exc:
            _fail(op, exc, f"Failed to read logs for '{name}'")
        op.success(f"Read logs for '{name}'.", changed=0)
    typer.echo(output, nl=not output.endswith("\n"))


# ---------------------------------------------------------------------------
# Projections
# ---------------------------------------------------------------------------


@app.command("env")
def write_env(
    ctx: typer.Context,
    file: Path | None = typer.Option(
        None, "--file", dir_okay=False, help="Env file to update (defaults to config env_file)."
    ),
) -> None:
    """Write one ``<NAME>_DB_URL`` line per instance into the env file."""
    runtime = _get_runtime(ctx)
    path = file or runtime.config.env_file
    with runtime.logger.operation(
        "env",
        args={"file": path},
        target={"kind": "envfile", "path": path},
    ) as op:
        try:
            projection = project_env_file(path, runtime.instances.all())
        except HayaiError as exc:
            _fail(op, exc, "Failed to update env file")
        op.success(
            f"Updated {path}.",
            changed=projection.changed,
            context=projection.to_dict(),
        )
    for key in projection.added:
        console.print(f"[green]+[/green] {key}")
    for key in projection.updated:
        console.print(f"[yellow]~[/yellow] {key}")
    console.print(f"{path}: {projection.changed} variable(s) written.")


@app.command("export")
def export_instances(
    ctx: typer.Context,
    output: Path | None = typer.Option(
        None, "--output", "-o", dir_okay=False, help="Destination (defaults to .hayaidb)."
    ),
    project: str | None = typer.Option(None, "--project", help="Project name to record."),
) -> None:
    """Export registered instances to a project file."""
    runtime = _get_runtime(ctx)
    path = output or runtime.config.project_file
    with runtime.logger.operation(
        "export",
        args={"project": project},
        target={"kind": "project", "path": path},
    ) as op:
        try:
            document = export_project(runtime.instances, path, project=project)
        except HayaiError as exc:
            _fail(op, exc, "Failed to export project file")
        op.success(f"Exported {len(document.databases)} database(s).", changed=1)
    console.print(f"[green]Exported[/green] {len(document.databases)} database(s) to {path}.")


@app.command("sync")
def sync_instances(
    ctx: typer.Context,
    file: Path | None = typer.Option(
        None, "--file", dir_okay=False, help="Project file (defaults to .hayaidb)."
    ),
    profile: str | None = typer.Option(None, "--profile", help="Only sync this profile."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be created."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Create every database declared in the project file that is missing."""
    runtime = _get_runtime(ctx)
    path = file or runtime.config.project_file
    with runtime.logger.operation(
        "sync",
        args={"profile": profile, "dry_run": dry_run},
        target={"kind": "project", "path": path},
    ) as op:
        try:
            document = load_project(path, runtime.catalog)
            result = sync_project(runtime.instances, document, profile=profile, dry_run=dry_run)
        except HayaiError as exc:
            _fail(op, exc, "Failed to sync project file")

        if json_output:
            console.print_json(data={"dry_run": dry_run, **result.to_dict()})
        else:
            verb = "Would create" if dry_run else "Created"
            for name in result.created:
                console.print(f"[green]{verb}[/green] '{name}'.")
            for name in result.skipped:
                console.print(f"[dim]Skipped[/dim] '{name}' (already exists).")
            for name, error in result.errors.items():
                err_console.print(f"[red]Failed[/red] '{name}': {error}")

        if result.errors:
            _command_error(
                op,
                f"{len(result.errors)} database(s) failed to sync.",
                rc=int(ExitCode.VALIDATION),
                errors=[f"{name}: {error}" for name, error in result.errors.items()],
            )
        op.success(
            f"Synced {len(result.created)} database(s).",
            changed=0 if dry_run else len(result.created),
            context=result.to_dict(),
        )


# ---------------------------------------------------------------------------
# Inspection sub-commands
# ---------------------------------------------------------------------------


@ports_app.command("list")
def ports_list(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Show allocated ports and range usage."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "ports list",
        args={"json": json_output},
        target={"kind": "ports", "scope": "all"},
    ) as op:
        entries = runtime.ports.list_entries()
        if json_output:
            console.print_json(data={"ports": entries, "range": runtime.ports.range_info()})
        else:
            if entries:
                table = Table("Port", "Instance")
                for entry in entries:
                    table.add_row(str(entry["port"]), str(entry["name"]))
                console.print(table)
            else:
                console.print("No ports allocated.")
            info = runtime.ports.range_info()
            console.print(
                f"Range {info['start']}-{info['end']}: "
                f"{info['allocated']} allocated, {info['available']} available."
            )
        op.success("Listed port allocations.", changed=0)


@engines_app.command("list")
def engines_list(
    ctx: typer.Context,
    category: str | None = typer.Option(None, "--category", help="Filter by category."),
    json_output: bool = JSON_OPTION,
) -> None:
    """List the supported database engines."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "engines list",
        args={"category": category, "json": json_output},
        target={"kind": "catalog", "scope": "engines"},
    ) as op:
        specs = runtime.catalog.engines(category)
        if category and not specs:
            _command_error(
                op,
                f"Unknown category '{category}'. "
                f"Known categories: {', '.join(runtime.catalog.categories())}.",
            )
        if json_output:
            console.print_json(data={"engines": [spec.to_dict() for spec in specs]})
        else:
            table = Table("Engine", "Name", "Category", "Image", "Port")
            for spec in specs:
                table.add_row(
                    spec.id,
                    spec.name,
                    spec.category,
                    spec.image,
                    str(spec.default_port) if spec.default_port else "embedded",
                )
            console.print(table)
        op.success(f"Listed {len(specs)} engine(s).", changed=0)


@descriptor_app.command("show")
def descriptor_show(ctx: typer.Context) -> None:
    """Print the compose descriptor synthesized from the registry."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "descriptor show",
        target={"kind": "descriptor", "path": runtime.config.docker.compose_file},
    ) as op:
        try:
            text = runtime.reconciler.render_descriptor(runtime.instances.all())
        except HayaiError as exc:
            _fail(op, exc, "Failed to render descriptor")
        op.success("Rendered descriptor.", changed=0)
    typer.echo(text, nl=False)


@config_app.command("show")
def config_show(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Display the resolved configuration."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config", "scope": "resolved"},
    ) as op:
        data = runtime.config.to_dict()
        if json_output:
            console.print_json(data=data)
        else:
            _render_config(runtime.config)
        op.success("Displayed configuration.", changed=0)


def _render_config(config: AppConfig) -> None:
    table = Table("Key", "Value")
    for key, value in config.to_dict().items():
        if isinstance(value, Mapping):
            for sub_key, sub_value in value.items():
                table.add_row(f"{key}.{sub_key}", str(sub_value))
        else:
            table.add_row(key, str(value))
    console.print(table)


def main() -> None:
    """Entrypoint used by the console script."""
    app()


__all__ = ["app", "main"]
