"""Typer-powered command line for ``kiwix-hotspot``.

Running the tool without a subcommand provisions the host. The ``status`` and
``config show`` commands are read-only and safe to run unprivileged.
"""
from __future__ import annotations

import textwrap
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import ALLOWED_RESTART_POLICIES, ConfigError, ProvisionConfig, load_config
from .confirm import DeclineAll, select_confirmation_source
from .errors import ProvisionError
from .exit_codes import ExitCode
from .host import LocalHost
from .logging import OperationScope, StructuredLogger
from .provisioner import (
    PipelineResult,
    ProvisionContext,
    StepStatus,
    classify,
    provision as run_provision,
)
from .templates import TemplateEngine

console = Console()
err_console = Console(stderr=True)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to kiwix-hotspot's YAML config file.",
)

DRY_RUN_OPTION = typer.Option(
    False,
    "--dry-run",
    help="Report what would change without touching the host.",
)

RESTART_POLICY_OPTION = typer.Option(
    None,
    "--restart-policy",
    help="When to restart a running server (on-change|always).",
)

JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit the report as JSON.",
)

_STATUS_STYLE = {
    StepStatus.CHANGED: "[green]changed[/green]",
    StepStatus.UNCHANGED: "[dim]ok[/dim]",
    StepStatus.SKIPPED: "[yellow]skipped[/yellow]",
    StepStatus.PLANNED: "[cyan]planned[/cyan]",
    StepStatus.FAILED: "[red]failed[/red]",
}

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Provision a Raspberry Pi as an offline Kiwix hotspot.

        Installs kiwix-serve, keeps its systemd unit in sync, offers optional
        ZIM downloads and can switch the device into RaspAP access-point mode.
        Every run is idempotent.
        """
    ).strip(),
)
config_app = typer.Typer(help="Inspect the resolved configuration.")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: ProvisionConfig
    logger: StructuredLogger
    templates: TemplateEngine


def _build_host(config: ProvisionConfig, output: Console) -> LocalHost:
    return LocalHost(config, console=output)


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        err_console.print(f"[red]ERROR ({exc.label}): {escape(str(exc))}[/red]")
        raise typer.Exit(code=exc.exit_code) from exc

    runtime = RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        templates=TemplateEngine.with_overrides(config.templates_dir),
    )
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
        help="Show the kiwix-hotspot version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"kiwix-hotspot {__version__}")
        raise typer.Exit(code=ExitCode.OK)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        provision(ctx, dry_run=False, restart_policy=None)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    err_console.print(f"[red]{escape(message)}[/red]")
    op.error(message, rc=rc)
    raise typer.Exit(code=rc)


def _provision_error(op: OperationScope, error: ProvisionError) -> NoReturn:
    _command_error(op, f"ERROR ({error.label}): {error}", rc=error.exit_code)


def _dry_run_complete(
    op: OperationScope,
    summary: str,
    *,
    context: Mapping[str, object] | None = None,
) -> None:
    """Standardise dry-run completion messaging."""
    console.print(f"[yellow]Dry run[/yellow]: {summary}")
    op.success("Dry run complete.", changed=0, context=dict(context or {}))


def _render_outcomes(result: PipelineResult) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Step", style="bold")
    table.add_column("Status")
    table.add_column("Detail")
    for outcome in result.outcomes:
        table.add_row(outcome.step, _STATUS_STYLE[outcome.status], escape(outcome.detail))
    console.print(table)


@app.command()
def provision(
    ctx: typer.Context,
    dry_run: bool = DRY_RUN_OPTION,
    restart_policy: str | None = RESTART_POLICY_OPTION,
) -> None:
    """Install, configure and start the hotspot (the default command)."""
    runtime = _get_runtime(ctx)
    config = runtime.config
    policy = restart_policy or config.restart_policy

    with runtime.logger.operation(
        "provision",
        args={"dry_run": dry_run, "restart_policy": policy},
        target={"kind": "service", "name": config.service_name},
    ) as op:
        if policy not in ALLOWED_RESTART_POLICIES:
            allowed = ", ".join(sorted(ALLOWED_RESTART_POLICIES))
            _command_error(
                op,
                f"ERROR (config): unsupported restart policy '{policy}'. Allowed: {allowed}.",
            )

        host = _build_host(config, console)
        pipeline = ProvisionContext(
            config=config,
            observer=host,
            mutator=host,
            confirmations=DeclineAll() if dry_run else select_confirmation_source(),
            templates=runtime.templates,
            console=console,
            dry_run=dry_run,
            restart_policy=policy,
        )
        try:
            result = run_provision(pipeline, op=op)
        finally:
            host.close()

        if result.failure is not None and result.failure.error is not None:
            _provision_error(op, result.failure.error)

        context = {
            "content_fetched": result.content_fetched,
            "definition_changed": result.definition_changed,
            "fetched_archives": list(result.state.fetched_archives),
            "service_actions": list(result.state.service_actions),
        }
        if dry_run:
            _render_outcomes(result)
            planned = sum(1 for item in result.outcomes if item.status is StepStatus.PLANNED)
            _dry_run_complete(op, f"{planned} step(s) would change the host.", context=context)
            return

        pipeline.info("Done.")
        if result.serving:
            pipeline.info(
                f"Kiwix is running on port {config.port} "
                f"(serving ZIMs from {config.content_dir})."
            )
        else:
            pipeline.info(
                f"Kiwix will start on port {config.port} once {config.content_pattern} "
                f"files are added to {config.content_dir}."
            )
        warnings = list(result.state.warnings)
        if warnings:
            op.warning(
                "Provisioning completed with warnings.",
                warnings=warnings,
                changed=result.changed,
                context=context,
            )
        else:
            op.success("Provisioning complete.", changed=result.changed, context=context)


def _collect_status(config: ProvisionConfig, host: LocalHost) -> dict[str, Any]:
    packages = []
    for requirement in config.packages:
        if requirement.binary:
            present = host.binary_on_path(requirement.binary)
        else:
            present = host.package_installed(requirement.name)
        packages.append(
            {"name": requirement.name, "binary": requirement.binary, "present": present}
        )

    archives = [
        {
            "name": source.name,
            "path": str(config.archive_path(source)),
            "present": host.file_exists(config.archive_path(source)),
        }
        for source in config.archives
    ]
    content = host.list_content(config.content_dir, config.content_pattern)
    service_state = host.service_state(config.service_name)
    return {
        "packages": packages,
        "archives": archives,
        "content": [str(path) for path in content],
        "service": {
            "name": config.service_name,
            "state": service_state.value,
            "enabled": host.service_enabled(config.service_name),
            "reconcile_state": classify(len(content), service_state).value,
            "port": config.port,
        },
    }


@app.command()
def status(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Report packages, content and service state without changing anything."""
    runtime = _get_runtime(ctx)
    config = runtime.config

    with runtime.logger.operation(
        "status",
        args={"json": json_output},
        target={"kind": "service", "name": config.service_name},
    ) as op:
        host = _build_host(config, console)
        try:
            report = _collect_status(config, host)
        except ProvisionError as exc:
            _provision_error(op, exc)
        finally:
            host.close()

        if json_output:
            console.print_json(data=report)
            op.success("Rendered status as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Resource", style="bold")
        table.add_column("State")
        for package in report["packages"]:
            state = "[green]present[/green]" if package["present"] else "[red]missing[/red]"
            table.add_row(f"package {package['name']}", state)
        for archive in report["archives"]:
            state = "[green]present[/green]" if archive["present"] else "[dim]absent[/dim]"
            table.add_row(f"archive {archive['name']}", state)
        service = report["service"]
        enabled = "enabled" if service["enabled"] else "disabled"
        table.add_row(f"service {service['name']}", f"{service['state']} ({enabled})")
        table.add_row("content", f"{len(report['content'])} file(s) in {config.content_dir}")
        console.print(table)
        op.success("Rendered status table.", changed=0)


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit configuration as JSON instead of a table.",
    ),
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for key, value in data.items():
            table.add_row(key, escape(_render_value(value)))
        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def _render_value(value: object) -> str:
    if isinstance(value, Mapping):
        return "\n".join(f"{key}: {item}" for key, item in value.items())
    if isinstance(value, list):
        return "\n".join(_render_value(item) for item in value)
    return str(value)


def main() -> None:  # pragma: no cover - thin wrapper for console_scripts
    app()


__all__ = ["app", "main"]
