"""drillsync command line: root commands and subgroup registration."""

import asyncio
import json
import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Annotated, Any, TypeVar

import typer

from drillsync.application.backup import export_slices, import_slices
from drillsync.application.config import AppConfig, resolve_config
from drillsync.application.factory import Services, build_local_services, build_services
from drillsync.application.scheduler import derive_quality, validate_quality
from drillsync.application.session import SessionController
from drillsync.domain.exceptions import InvalidQualityError
from drillsync.domain.models import (
    Policy,
    QueueItem,
    SelfRating,
    SessionState,
    SessionSummary,
    SyncStatus,
)
from drillsync.domain.timefmt import format_ts

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="drillsync: spaced-repetition practice and sync for course exercises.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Subgroups
# ---------------------------------------------------------------------------

sync_app = typer.Typer(help="Sync progress with the remote server.", no_args_is_help=True)
app.add_typer(sync_app, name="sync")

backup_app = typer.Typer(help="Export and import course data.", no_args_is_help=True)
app.add_typer(backup_app, name="backup")

config_app = typer.Typer(help="Manage drillsync configuration.")
app.add_typer(config_app, name="config")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _resolve_with_overrides(ctx: typer.Context | None = None, **overrides: Any) -> AppConfig:
    if ctx is not None and ctx.obj:
        overrides.setdefault("course_slug", ctx.obj.get("course"))
        overrides.setdefault("verbose", ctx.obj.get("verbose_bonus"))
    return resolve_config(overrides)


def _run_with_services(config: AppConfig, action: Callable[[Services], T]) -> T:
    """
    Run an action against the wired services.

    When sync is configured the remote state is pulled and merged first, and
    the action's local writes are pushed once it returns. The action runs
    synchronously (practice prompts block), so the debounce timer never
    fires mid-session. If the pull fails nothing is pushed; the writes stay
    pending for the next `sync now`.
    """

    async def run() -> T:
        services = await build_services(config)
        engine = services.sync_engine
        try:
            online = engine is not None and await engine.pull_all()
            result = action(services)
            if online and engine is not None and engine.dirty:
                await engine.flush()
            return result
        finally:
            await services.close()

    return asyncio.run(run())


def _module_filter(module: int | None) -> Callable[[str], bool] | None:
    if module is None:
        return None
    prefix = f"m{module}_"
    return lambda key: key.startswith(prefix)


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def main_callback(
    ctx: typer.Context,
    course: Annotated[
        str | None, typer.Option("--course", "-c", help="Course slug to operate on.")
    ] = None,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose", "-v", count=True, help="Increase verbosity. Repeat for more detail."
        ),
    ] = 1,
):
    """Global settings for drillsync."""
    ctx.ensure_object(dict)
    ctx.obj["course"] = course
    ctx.obj["verbose_bonus"] = verbose
    if verbose >= 2:
        logging.getLogger("drillsync").setLevel(logging.DEBUG)


# ---------------------------------------------------------------------------
# Root commands
# ---------------------------------------------------------------------------


@app.command()
def review(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help="Exercise key, e.g. m1_loop_v1.")],
    grade: Annotated[str, typer.Argument(help="fail, hard, good, easy (or 0-3).")],
    label: Annotated[str | None, typer.Option(help="Display label to store.")] = None,
):
    """Record one review and show the new schedule."""
    try:
        quality = validate_quality(grade)
    except InvalidQualityError as e:
        typer.secho(str(e), fg="red")
        raise typer.Exit(2) from None

    config = _resolve_with_overrides(ctx)

    def action(services: Services):
        record = services.schedule.record_review(key, quality, label=label)
        services.activity.record_activity()
        return record

    record = _run_with_services(config, action)
    typer.echo(
        f"{key}: next review {format_ts(record.next_review)} "
        f"(interval {record.interval}d, ease {record.ease_factor:.2f}, "
        f"reps {record.repetitions})"
    )


@app.command()
def due(
    ctx: typer.Context,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """List exercises due for review, most overdue first."""
    config = _resolve_with_overrides(ctx)
    entries = _run_with_services(config, lambda services: services.schedule.due())

    if json_output:
        rows = [{"key": key, **record.to_dict()} for key, record in entries]
        typer.echo(json.dumps(rows, indent=2))
        return
    if not entries:
        typer.secho("Nothing due.", fg="green")
        return
    for key, record in entries:
        typer.echo(f"{key}  due {format_ts(record.next_review)}  ease {record.ease_factor:.2f}")


@app.command("queue")
def queue(
    ctx: typer.Context,
    mode: Annotated[
        Policy | None, typer.Option(help="Selection policy. Defaults to a suggested mode.")
    ] = None,
    count: Annotated[int | None, typer.Option(help="Maximum session size.")] = None,
    module: Annotated[int | None, typer.Option(help="Only exercises from this module.")] = None,
    catalog: Annotated[Path | None, typer.Option(help="Exercise catalog (YAML).")] = None,
    pad: Annotated[
        bool, typer.Option("--pad", help="Top up short sessions with other recorded keys.")
    ] = False,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """Build a practice queue without starting a session."""
    config = _resolve_with_overrides(ctx, catalog_path=catalog)
    is_eligible = _module_filter(module)
    size = count or config.session_size

    def action(services: Services):
        policy = mode or services.queue.preselect_mode(is_eligible)
        keys = services.queue.build(policy, size, is_eligible, pad=pad)
        return policy, services.queue.resolve(keys, services.catalog)

    policy, items = _run_with_services(config, action)

    if json_output:
        typer.echo(
            json.dumps(
                {
                    "mode": policy.value,
                    "items": [{"key": item.key, "label": item.label} for item in items],
                },
                indent=2,
            )
        )
        return

    typer.echo(f"Mode: {policy.value}")
    if not items:
        typer.secho(
            f"Not enough exercises for a {policy.value} session. Try discover mode.",
            fg="yellow",
        )
        return
    for i, item in enumerate(items, 1):
        typer.echo(f"  {i:>2}. {item.key}" + (f"  {item.label}" if item.label else ""))


class CliRenderer:
    def render(self, item: QueueItem, state: SessionState) -> None:
        typer.secho(f"\n[{state.index + 1}/{state.total}] {item.key}", bold=True)
        if item.label:
            typer.echo(f"  {item.label}")
        if item.content and item.content.get("prompt"):
            typer.echo(f"\n{item.content['prompt']}")

    def render_results(self, summary: SessionSummary) -> None:
        typer.secho("\nSession complete", fg="green", bold=True)
        typer.echo(f"  Completed: {summary.completed}/{summary.total}")
        typer.echo(f"  Skipped:   {summary.skipped}")
        typer.echo(
            f"  Got it: {summary.got_it}  Struggled: {summary.struggled}  "
            f"Peeked: {summary.peeked}"
        )


@app.command()
def practice(
    ctx: typer.Context,
    mode: Annotated[
        Policy | None, typer.Option(help="Selection policy. Defaults to a suggested mode.")
    ] = None,
    count: Annotated[int | None, typer.Option(help="Maximum session size.")] = None,
    module: Annotated[int | None, typer.Option(help="Only exercises from this module.")] = None,
    catalog: Annotated[Path | None, typer.Option(help="Exercise catalog (YAML).")] = None,
):
    """Run an interactive practice session."""
    config = _resolve_with_overrides(ctx, catalog_path=catalog)
    is_eligible = _module_filter(module)
    size = count or config.session_size

    def action(services: Services) -> bool:
        def on_completed(item: QueueItem) -> None:
            quality = derive_quality(services.progress.get(item.key))
            if quality is not None:
                services.schedule.record_review(item.key, quality, label=item.label)
            services.activity.record_activity()

        policy = mode or services.queue.preselect_mode(is_eligible)
        keys = services.queue.build(policy, size, is_eligible)
        controller = SessionController(
            CliRenderer(), progress=services.progress.load_all, on_completed=on_completed
        )
        if not controller.start(services.queue.resolve(keys, services.catalog)):
            typer.secho(
                f"Not enough exercises for a {policy.value} session. Try discover mode.",
                fg="yellow",
            )
            return False

        while controller.is_active:
            item = controller.state.current
            choice = typer.prompt("[c]omplete, [s]kip or [q]uit", default="c").strip().lower()
            if choice.startswith("q"):
                break
            if choice.startswith("s"):
                controller.skip()
                continue
            rating = typer.prompt("[1] got it  [2] struggled  [3] peeked", type=int, default=1)
            try:
                services.progress.rate(item.key, SelfRating(rating))
            except ValueError:
                typer.secho("Unknown rating; recorded without one.", fg="yellow")
                services.progress.update(item.key, status="completed")
            controller.complete()
        return True

    if not _run_with_services(config, action):
        raise typer.Exit(1)


@app.command()
def stats(ctx: typer.Context):
    """Show due count, streaks and today's activity."""
    config = _resolve_with_overrides(ctx)

    def action(services: Services) -> dict[str, int]:
        return {
            "due": services.schedule.due_count(),
            "tracked": len(services.schedule.keys()),
            "today": services.activity.today_count(),
            "streak": services.activity.current_streak(),
            "longest_streak": services.activity.longest_streak(),
        }

    data = _run_with_services(config, action)
    typer.echo(json.dumps(data, indent=2))


# ---------------------------------------------------------------------------
# Sync subgroup
# ---------------------------------------------------------------------------


def _run_sync(ctx: typer.Context, push_all: bool) -> None:
    from drillsync.main import run_sync_logic

    config = _resolve_with_overrides(ctx)
    if not config.sync_enabled:
        typer.secho("Sync is not configured. Set sync_url and auth_token.", fg="yellow")
        raise typer.Exit(1)

    status = asyncio.run(run_sync_logic(config, push_all=push_all))
    color = "green" if status == SyncStatus.SYNCED else "red"
    typer.secho(f"Sync status: {status.value}", fg=color)
    if status != SyncStatus.SYNCED:
        raise typer.Exit(1)


@sync_app.command("now")
def sync_now(ctx: typer.Context):
    """Push pending changes and pull remote progress."""
    _run_sync(ctx, push_all=False)


@sync_app.command("push-all")
def sync_push_all(ctx: typer.Context):
    """Upload every local slice, e.g. after the first login on this device."""
    _run_sync(ctx, push_all=True)


@sync_app.command("status")
def sync_status(ctx: typer.Context):
    """Show sync configuration and local slice timestamps."""
    config = _resolve_with_overrides(ctx)
    gateway = build_local_services(config).gateway
    typer.echo(f"Course: {config.course_slug}")
    typer.echo(f"Server: {config.sync_url or '(not configured)'}")
    typer.echo(f"Logged in: {'yes' if config.auth_token else 'no'}")
    for name in gateway.present():
        modified = gateway.modified_at(name)
        typer.echo(f"  {name}: {format_ts(modified) if modified else 'never modified'}")


# ---------------------------------------------------------------------------
# Backup subgroup
# ---------------------------------------------------------------------------


@backup_app.command("export")
def backup_export(
    ctx: typer.Context,
    output: Annotated[Path, typer.Argument(help="Destination JSON file.")],
):
    """Write every tracked slice to a JSON file."""
    config = _resolve_with_overrides(ctx)
    gateway = build_local_services(config).gateway
    try:
        payload = export_slices(gateway)
    except ValueError as e:
        typer.secho(str(e), fg="yellow")
        raise typer.Exit(1) from None

    output.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    typer.secho(f"Exported {len(payload) - 1} slices to {output}", fg="green")


@backup_app.command("import")
def backup_import(
    ctx: typer.Context,
    source: Annotated[Path, typer.Argument(help="JSON file produced by 'backup export'.")],
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Overwrite local data without asking.")
    ] = False,
):
    """Restore slices from a backup, overwriting local data."""
    try:
        payload = json.loads(source.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        typer.secho(f"Could not read backup: {e}", fg="red")
        raise typer.Exit(1) from None

    if not force and not typer.confirm("This will overwrite local progress. Continue?"):
        raise typer.Exit(1)

    config = _resolve_with_overrides(ctx)
    try:
        restored = _run_with_services(
            config, lambda services: import_slices(services.gateway, payload)
        )
    except ValueError as e:
        typer.secho(str(e), fg="red")
        raise typer.Exit(1) from None
    typer.secho(f"Restored {restored} slices.", fg="green")


# ---------------------------------------------------------------------------
# Config subgroup
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show():
    """Display final resolved configuration."""
    config = resolve_config()
    d = {k: str(v) if isinstance(v, Path) else v for k, v in config.model_dump().items()}
    if d.get("auth_token"):
        d["auth_token"] = "***"
    typer.echo(json.dumps(d, indent=2))
