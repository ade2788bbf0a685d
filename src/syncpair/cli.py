"""Command line interface for the syncpair agent."""

from __future__ import annotations

import difflib
import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import click
import yaml
from click.core import ParameterSource
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from syncpair.agent import NotSignedInError, SyncAgent
from syncpair.config import (
    ConfigError,
    ConfigManager,
    SyncPairConfig,
    apply_overrides,
    resolve_with_precedence,
)
from syncpair.enrollment import EnrollmentCode, collect_device_descriptor
from syncpair.guard import SessionGuard
from syncpair.logging_setup import configure_logging
from syncpair.notifications import ConsoleSink
from syncpair.state import CredentialStore, StoreError
from syncpair.upload import UploadEvent, UploadEventKind, UploadStatus

console = Console()


def _handle_cli_error(
    message: str,
    *,
    code: str,
    json_output: bool,
    details: Any | None = None,
    original: Exception | None = None,
) -> None:
    """Emit a standardized error and terminate the command appropriately.

    Args:
        message: Human-readable error message.
        code: Machine-readable error identifier.
        json_output: Indicates whether JSON mode is active.
        details: Optional structured details to include in the payload.
        original: Original exception for chaining when not using JSON.

    Raises:
        SystemExit: When emitting JSON output to terminate the command.
        click.ClickException: For non-JSON flows to surface the error.
    """

    if json_output:
        payload: dict[str, Any] = {"error": {"code": code, "message": message}}
        if details is not None:
            payload["error"]["details"] = details
        console.print_json(data=payload)
        raise SystemExit(1)

    if isinstance(original, click.ClickException):
        raise original

    raise click.ClickException(message) from original


def _emit_message(message: Any, *, mode: str, quiet: bool) -> None:
    """Print CLI output unless quiet mode suppresses it.

    Args:
        message: Renderable or string to emit.
        mode: Output mode identifier (`detail`, `summary`, `warning`, or `error`).
        quiet: Whether quiet mode is active.
    """

    if quiet and mode != "error":
        return
    console.print(message)


def _assign_nested(target: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign a nested value within a dictionary for a dotted path.

    Args:
        target: Mapping to mutate in-place.
        path: Sequence of keys representing the nested location.
        value: Value to assign at the nested location.

    Raises:
        ConfigError: If a non-mapping value is encountered along the path.
    """

    node = target
    for segment in path[:-1]:
        existing = node.get(segment)
        if existing is None:
            existing = {}
            node[segment] = existing
        elif not isinstance(existing, dict):
            raise ConfigError(
                f"Cannot assign into '{segment}' because it is not a mapping in the config file."
            )
        node = existing
    node[path[-1]] = value


def _load_config(*, json_output: bool = False) -> SyncPairConfig:
    try:
        manager = ConfigManager()
        manager.ensure_exists()
        return manager.load()
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)
        raise  # pragma: no cover


def _state_dir(config: SyncPairConfig) -> Path:
    return Path(config.storage.state_dir).expanduser()


def _setup_logging(ctx: click.Context, config: SyncPairConfig) -> None:
    verbose = bool(ctx.find_root().params.get("verbose"))
    configure_logging(config.logging, _state_dir(config), console=verbose)


def _resolve_quiet(ctx: click.Context, quiet: bool, config: SyncPairConfig) -> bool:
    explicit_quiet = ctx.get_parameter_source("quiet") == ParameterSource.COMMANDLINE
    return quiet if explicit_quiet else config.cli.quiet_default


def _create_agent(config: SyncPairConfig) -> SyncAgent:
    return SyncAgent(config)


def _format_timestamp(value: float | None) -> str:
    if value is None:
        return "unknown"
    return datetime.fromtimestamp(value, tz=timezone.utc).isoformat().replace("+00:00", "Z")


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="syncpair")
@click.option("-v", "--verbose", is_flag=True, help="Also log to the console.")
def cli(verbose: bool) -> None:
    """syncpair pairs this machine with your organization and uploads folder changes."""


@cli.command()
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
@click.pass_context
def login(ctx: click.Context, quiet: bool) -> None:
    """Pair this device using a one-time code.

    The code refreshes periodically until it is entered on the enrollment
    page. Press Ctrl+C to abort.
    """
    config = _load_config()
    _setup_logging(ctx, config)
    quiet_enabled = _resolve_quiet(ctx, quiet, config)

    def _show_code(code: EnrollmentCode) -> None:
        suffix = " (offline; retrying)" if code.decoy else ""
        _emit_message(
            f"[bold cyan]Enrollment code: {code.display()}[/bold cyan]{suffix}",
            mode="summary",
            quiet=quiet_enabled,
        )

    agent = _create_agent(config)
    unsubscribe = agent.notifications.subscribe(ConsoleSink(console))
    stop_event = threading.Event()
    try:
        decision = agent.check_access()
        if decision.authenticated:
            name = decision.credential.organization_name if decision.credential else None
            _emit_message(
                f"[green]Already signed in{f' to {name}' if name else ''}.[/green]",
                mode="summary",
                quiet=quiet_enabled,
            )
            return

        _emit_message(
            f"Enter the code below at [underline]{config.enrollment.enroll_page_url}[/underline]",
            mode="detail",
            quiet=quiet_enabled,
        )
        try:
            decision = agent.run_enrollment(on_code=_show_code, stop_event=stop_event)
        except KeyboardInterrupt:
            stop_event.set()
            raise click.ClickException("Enrollment cancelled.") from None
    finally:
        unsubscribe()
        agent.close()

    if not decision.authenticated:
        raise click.ClickException("Enrollment did not complete.")
    name = decision.credential.organization_name if decision.credential else None
    _emit_message(
        f"[green]Device paired{f' with {name}' if name else ''}.[/green]",
        mode="summary",
        quiet=quiet_enabled,
    )


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Emit status information as JSON.")
@click.pass_context
def status(ctx: click.Context, json_output: bool) -> None:
    """Show whether this device is signed in and how uploads are configured."""
    config = _load_config(json_output=json_output)
    _setup_logging(ctx, config)
    try:
        store = CredentialStore.open(_state_dir(config))
        decision = SessionGuard(store).check_access()
        upload_config = store.load_upload_config(config.upload)
        recent = store.recent_dirs()
    except StoreError as exc:
        _handle_cli_error(str(exc), code="store_error", json_output=json_output, original=exc)
        return

    credential = decision.credential
    payload: dict[str, Any] = {
        "signed_in": decision.authenticated,
        "reason": decision.reason,
        "organization": {
            "id": credential.organization_id if credential else store.get_organization_id(),
            "name": credential.organization_name if credential else None,
            "image_url": credential.claims.organization_image_url if credential else None,
        },
        "expires_at": _format_timestamp(credential.claims.expires_at) if credential else None,
        "upload": upload_config.model_dump(mode="json"),
        "recent_dirs": recent,
    }

    if json_output:
        console.print_json(data=payload)
        return

    table = Table(title="syncpair status", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Signed in", "[green]yes[/green]" if decision.authenticated else "[red]no[/red]")
    if decision.reason:
        table.add_row("Reason", decision.reason)
    table.add_row("Organization", payload["organization"]["name"] or payload["organization"]["id"] or "-")
    if credential is not None:
        table.add_row("Expires", payload["expires_at"])
    table.add_row("Uploads", "enabled" if upload_config.enabled else "disabled")
    table.add_row("Upload server", upload_config.server_url)
    table.add_row("Recent folders", "\n".join(recent) or "-")
    console.print(table)


@cli.command()
@click.pass_context
def logout(ctx: click.Context) -> None:
    """Forget the stored credential."""
    config = _load_config()
    _setup_logging(ctx, config)
    try:
        store = CredentialStore.open(_state_dir(config))
        SessionGuard(store).sign_out()
    except StoreError as exc:
        raise click.ClickException(str(exc)) from exc
    console.print("[green]Signed out.[/green]")


@cli.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=str))
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
@click.pass_context
def watch(ctx: click.Context, path: str, quiet: bool) -> None:
    """Upload changes under PATH until interrupted."""
    config = _load_config()
    _setup_logging(ctx, config)
    quiet_enabled = _resolve_quiet(ctx, quiet, config)

    def _render(event: UploadEvent) -> None:
        if event.kind is UploadEventKind.SUCCESS:
            _emit_message(
                f"[green]Uploaded[/green] {event.relative_path}", mode="detail", quiet=quiet_enabled
            )
        elif event.kind is UploadEventKind.FAILURE:
            _emit_message(
                f"[red]Failed[/red] {event.relative_path}: {event.error}",
                mode="error",
                quiet=quiet_enabled,
            )

    agent = _create_agent(config)
    unsubscribe = agent.uploads.subscribe(_render)
    stop_event = threading.Event()
    try:
        try:
            root = agent.start_watching(Path(path))
        except NotSignedInError as exc:
            raise click.ClickException(str(exc)) from exc
        except ValueError as exc:
            raise click.ClickException(str(exc)) from exc

        _emit_message(
            f"[cyan]Watching {root}. Press Ctrl+C to stop.[/cyan]", mode="detail", quiet=quiet_enabled
        )
        try:
            agent.watcher.wait(stop_event)
        except KeyboardInterrupt:
            stop_event.set()
            progress = agent.uploads.progress
            _emit_message(
                "[yellow]Watch stopped by user request "
                f"(uploaded={progress.total_uploaded}, failed={progress.total_failed}).[/yellow]",
                mode="summary",
                quiet=quiet_enabled,
            )
    finally:
        unsubscribe()
        agent.close()


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Emit the list as JSON.")
def recent(json_output: bool) -> None:
    """List recently watched folders, most recent first."""
    config = _load_config(json_output=json_output)
    entries = CredentialStore.open(_state_dir(config)).recent_dirs()
    if json_output:
        console.print_json(data={"recent_dirs": entries})
        return
    if not entries:
        console.print("[yellow]No folders watched yet.[/yellow]")
        return
    for index, entry in enumerate(entries, start=1):
        console.print(f"{index}. {entry}")


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Emit the descriptor as JSON.")
def device(json_output: bool) -> None:
    """Show the device descriptor sent during pairing."""
    config = _load_config(json_output=json_output)
    descriptor = collect_device_descriptor(_state_dir(config))
    data = descriptor.model_dump(mode="json")
    if json_output:
        console.print_json(data=data)
        return
    table = Table(title="Device", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    for key, value in data.items():
        table.add_row(key, str(value))
    console.print(table)


@cli.group()
def upload() -> None:
    """Inspect or change the persisted upload configuration."""


@upload.command("view")
@click.option("--json", "json_output", is_flag=True, help="Emit the configuration as JSON.")
def upload_view(json_output: bool) -> None:
    config = _load_config(json_output=json_output)
    current = CredentialStore.open(_state_dir(config)).load_upload_config(config.upload)
    data = current.model_dump(mode="json")
    if json_output:
        console.print_json(data=data)
        return
    console.print(Syntax(yaml.safe_dump(data, sort_keys=False), "yaml", word_wrap=True))


@upload.command("set")
@click.argument("key")
@click.option("--value", required=True, help="YAML-literal value to assign to KEY.")
def upload_set(key: str, value: str) -> None:
    """Validate and persist one upload setting, e.g. `max_concurrent_uploads`.

    Args:
        key: Upload configuration field to change.
        value: YAML-literal value to assign.

    Raises:
        click.ClickException: If parsing or validation fails.
    """
    config = _load_config()
    try:
        parsed_value = yaml.safe_load(value)
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Unable to parse value: {exc}") from exc

    store = CredentialStore.open(_state_dir(config))
    current = store.load_upload_config(config.upload)
    try:
        updated = apply_overrides(current, {key: parsed_value})
        store.save_upload_config(updated)
    except (ConfigError, StoreError) as exc:
        raise click.ClickException(str(exc)) from exc

    console.print(f"[green]Updated upload.{key} = {json.dumps(getattr(updated, key, parsed_value))}.[/green]")


@upload.command("push")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--root",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Folder the uploaded name is relative to (defaults to the file's folder).",
)
@click.option("--timeout", type=float, default=None, help="Seconds to wait for the upload.")
@click.pass_context
def upload_push(ctx: click.Context, path: Path, root: Path | None, timeout: float | None) -> None:
    """Upload PATH now instead of waiting for a folder watch to notice it."""
    config = _load_config()
    _setup_logging(ctx, config)

    agent = _create_agent(config)
    try:
        try:
            status = agent.upload_file(path, root=root, timeout=timeout)
        except (NotSignedInError, ValueError) as exc:
            raise click.ClickException(str(exc)) from exc
    finally:
        agent.close()

    if status is UploadStatus.UPLOADED:
        console.print(f"[green]Uploaded {path.name}.[/green]")
    elif status is UploadStatus.IGNORED:
        console.print(f"[yellow]{path.name} is excluded by the upload settings.[/yellow]")
    else:
        label = status.value if status is not None else "skipped"
        raise click.ClickException(f"Upload of {path.name} did not complete ({label}).")


@cli.group()
def config() -> None:
    """Manage syncpair configuration files and overrides."""


@config.command("view")
@click.option("--no-env", is_flag=True, help="Ignore environment overrides when displaying output.")
def config_view(no_env: bool) -> None:
    """Display the effective configuration after applying precedence rules.

    Args:
        no_env: If True, ignore environment-derived overrides.

    Raises:
        click.ClickException: If configuration cannot be loaded.
    """
    manager = ConfigManager()
    try:
        manager.ensure_exists()
        loaded = manager.load(include_env=not no_env)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    yaml_text = yaml.safe_dump(loaded.model_dump(mode="python"), sort_keys=False)
    console.print(Syntax(yaml_text, "yaml", word_wrap=True))


@config.command("set")
@click.argument("key")
@click.option("--value", required=True, help="Value to assign to KEY.")
def config_set(key: str, value: str) -> None:
    """Persist a configuration value expressed as a dotted KEY.

    Args:
        key: Dotted path describing the configuration field to update.
        value: YAML-literal value to write into the configuration file.

    Raises:
        click.ClickException: If parsing, assignment, or validation fails.
    """
    manager = ConfigManager()
    manager.ensure_exists()

    before = manager.read_text().splitlines()
    segments = [segment.strip() for segment in key.split(".") if segment.strip()]
    if not segments:
        raise click.ClickException("KEY must specify a dotted path such as 'server.base_url'.")

    try:
        parsed_value = yaml.safe_load(value)
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Unable to parse value: {exc}") from exc

    try:
        file_data = manager.load_file_overrides()
        _assign_nested(file_data, segments, parsed_value)
        resolve_with_precedence(defaults=SyncPairConfig(), file_overrides=file_data)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    manager.save(file_data)
    after = manager.read_text().splitlines()

    diff = [
        line
        for line in difflib.unified_diff(
            before,
            after,
            fromfile="config.yaml (before)",
            tofile="config.yaml (after)",
            lineterm="",
        )
        if "# Last updated:" not in line
    ]
    changed = [
        line
        for line in diff
        if line.startswith(("+", "-")) and not line.startswith(("+++", "---"))
    ]
    if not changed:
        console.print("[yellow]No changes applied; value already up to date.[/yellow]")
        return

    console.print(Syntax("\n".join(diff), "diff", word_wrap=False))
    console.print(f"[green]Updated {'.'.join(segments)}.[/green]")


@config.command("edit")
def config_edit() -> None:
    """Open the configuration file in an interactive editor session.

    Raises:
        click.ClickException: If edited content is invalid or cannot be saved.
    """
    manager = ConfigManager()
    manager.ensure_exists()

    original = manager.read_text()
    edited = click.edit(original, extension=".yaml")

    if edited is None:
        console.print("[yellow]Edit cancelled; no changes applied.[/yellow]")
        return

    if edited == original:
        console.print("[yellow]No changes detected.[/yellow]")
        return

    try:
        parsed = yaml.safe_load(edited) or {}
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Invalid YAML: {exc}") from exc

    if not isinstance(parsed, dict):
        raise click.ClickException("Configuration file must contain a top-level mapping.")

    try:
        resolve_with_precedence(defaults=SyncPairConfig(), file_overrides=parsed)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    manager.save(parsed)
    console.print("[green]Configuration updated successfully.[/green]")


def main() -> None:
    """Entry point for the `syncpair` console script."""
    cli()


__all__ = ["cli", "main"]
