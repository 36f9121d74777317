"""
Command-line interface for kasina-breath.

Provides commands for finding and streaming from the belt, running timed
sessions with crash recovery, and managing configuration and storage.
"""

import asyncio
import contextlib
import logging
import signal
import sys

from typing import Any

import click

from kasina_breath import __version__
from kasina_breath.config import (
    Settings,
    StorageSettings,
    get_config_path,
    load_config,
    load_settings,
    set_config_value,
    unset_config_value,
)
from kasina_breath.constants import SECONDS_PER_MINUTE, KasinaType
from kasina_breath.context import KasinaBreathContext
from kasina_breath.database.session import Database
from kasina_breath.device.connection import ConnectionManager
from kasina_breath.exceptions import (
    ConfigError,
    SensorConnectionError,
    SessionAlreadyActiveError,
)
from kasina_breath.logging_config import setup_logging
from kasina_breath.sessions.types import RecoveryReport
from kasina_breath.signal.types import BreathState

logger = logging.getLogger(__name__)

KASINA_CHOICES = [k.value for k in KasinaType]


def version_callback(ctx: click.Context, param: click.Parameter, value: bool) -> None:
    """Show version."""
    if not value or ctx.resilient_parsing:
        return
    click.echo(f"kasina-breath, version {__version__}")
    ctx.exit()


def resolve_settings(db: str | None) -> Settings:
    """Load settings, overriding the database path when --db is given."""
    settings = load_settings()
    if db:
        settings = settings.model_copy(
            update={"storage": StorageSettings(database_path=db)}
        )
    return settings


def format_breath(state: BreathState) -> str:
    bar = "#" * int(round(state.amplitude * 20))
    return f"{state.phase.value:>7}  {state.amplitude:4.2f} |{bar:<20}|  {state.rate:>2}/min"


def echo_report(report: RecoveryReport) -> None:
    if not report.anything_done and report.retry_pending == 0:
        click.echo("✓ Nothing to recover")
        return

    if report.emergency_saved:
        click.echo("✓ Saved session from emergency checkpoint")
    if report.emergency_discarded:
        click.echo("• Discarded stale or short emergency checkpoint")
    if report.active_recovered:
        click.echo("✓ Saved interrupted session")
    if report.active_discarded:
        click.echo("• Discarded stale or short interrupted session")
    if report.retried_saved:
        click.echo(f"✓ Saved {report.retried_saved} previously failed session(s)")
    if report.retry_pending:
        click.echo(f"⚠ {report.retry_pending} session(s) still waiting for retry")


@click.group()
@click.option(
    "--version",
    is_flag=True,
    callback=version_callback,
    expose_value=False,
    is_eager=True,
    help="Show version",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def cli(verbose: bool) -> None:
    """kasina-breath: Breath-driven meditation with a Go Direct respiration belt"""
    setup_logging(verbose=verbose, console_format="%(levelname)s: %(message)s")


# ============================================================================
# Belt Commands
# ============================================================================


@cli.command()
@click.option("--timeout", type=float, help="Scan duration in seconds")
def scan(timeout: float | None) -> None:
    """List nearby respiration belts."""
    settings = load_settings()
    manager = ConnectionManager(settings.device)
    timeout = timeout or settings.device.scan_timeout

    click.echo(f"Scanning for {timeout:.0f}s...")
    try:
        devices = asyncio.run(manager.scan(timeout))
    except SensorConnectionError as e:
        raise click.ClickException(e.user_message) from e

    if not devices:
        click.echo("No belts found. Make sure the belt is switched on.")
        return

    click.echo(f"\nFound {len(devices)} belt(s):\n")
    for device in devices:
        rssi = f"{device.rssi} dBm" if device.rssi is not None else "n/a"
        click.echo(f"  {device.name:<24} {device.address:<40} {rssi}")


async def _prepare_monitor(
    ctx: KasinaBreathContext, calibration_seconds: float | None, recalibrate: bool
) -> None:
    handle = await ctx.connection.connect()
    click.echo(f"✓ Connected to {handle.name}")
    ctx.connection.start_heartbeat()

    if not recalibrate and ctx.monitor.restore_profile():
        click.echo("✓ Using stored calibration")
        return

    duration = calibration_seconds or ctx.settings.calibration.duration_seconds
    click.echo(f"Calibrating for {duration:.0f}s, breathe normally...")

    last_shown = -1

    def show_progress(progress: float) -> None:
        nonlocal last_shown
        percent = int(progress * 100)
        if percent // 10 != last_shown // 10:
            click.echo(f"  {percent:3d}%")
            last_shown = percent

    profile = await ctx.monitor.calibrate(duration, on_tick=show_progress)
    if profile is None:
        raise click.ClickException("Calibration interrupted")
    if not profile.is_valid:
        reason = ctx.monitor.calibration_failure
        raise click.ClickException(
            f"Calibration failed ({reason.value if reason else 'unknown'}). "
            "Check the belt is snug and try again."
        )
    click.echo(
        f"✓ Calibrated: {profile.min_force:.2f}-{profile.max_force:.2f} N "
        f"({profile.sample_count} samples)"
    )


async def _run_monitor(
    settings: Settings, seconds: float, calibration_seconds: float | None, recalibrate: bool
) -> None:
    async with KasinaBreathContext(settings) as ctx:
        link_lost = asyncio.Event()
        ctx.monitor.on_link_lost(lambda error: link_lost.set())

        await _prepare_monitor(ctx, calibration_seconds, recalibrate)

        last_printed = 0.0

        def show(state: BreathState) -> None:
            nonlocal last_printed
            if state.timestamp - last_printed >= 1.0:
                click.echo(format_breath(state))
                last_printed = state.timestamp

        ctx.monitor.on_breath(show)
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(link_lost.wait(), timeout=seconds)

        if link_lost.is_set():
            click.echo("⚠ Connection to the belt was lost", err=True)
        elif ctx.connection.dropped_samples:
            click.echo(f"({ctx.connection.dropped_samples} samples dropped)")


@cli.command()
@click.option("--seconds", type=float, default=60.0, show_default=True, help="How long to stream")
@click.option("--calibration-seconds", type=float, help="Calibration window length")
@click.option("--recalibrate", is_flag=True, help="Ignore any stored calibration")
@click.option("--db", type=click.Path(), help="Database path")
def monitor(
    seconds: float, calibration_seconds: float | None, recalibrate: bool, db: str | None
) -> None:
    """Connect, calibrate and stream breath phase and rate."""
    settings = resolve_settings(db)
    try:
        asyncio.run(_run_monitor(settings, seconds, calibration_seconds, recalibrate))
    except SensorConnectionError as e:
        raise click.ClickException(e.user_message) from e


# ============================================================================
# Session Commands
# ============================================================================


def _install_terminate_handler(ctx: KasinaBreathContext) -> None:
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()

    def on_terminate() -> None:
        ctx.recovery.emergency_checkpoint("terminated")
        if task is not None:
            task.cancel()

    # add_signal_handler is unavailable on Windows event loops
    with contextlib.suppress(NotImplementedError, RuntimeError):
        loop.add_signal_handler(signal.SIGTERM, on_terminate)


async def _run_meditation(
    settings: Settings, kasina: str, minutes: int, sensor: bool
) -> bool:
    async with KasinaBreathContext(settings) as ctx:
        echo_report(await ctx.recovery.check_for_recovery())

        stop = asyncio.Event()
        if sensor:

            def on_link_lost(error: SensorConnectionError) -> None:
                click.echo(f"\n⚠ {error.user_message}", err=True)
                stop.set()

            ctx.monitor.on_link_lost(on_link_lost)
            await _prepare_monitor(ctx, None, recalibrate=False)

        try:
            session_id = ctx.recovery.start_session(kasina)
        except SessionAlreadyActiveError as e:
            raise click.ClickException(str(e)) from e

        _install_terminate_handler(ctx)
        click.echo(f"Meditating ({kasina}) for {minutes} minute(s). Ctrl-C to finish early.")
        logger.debug(f"Session id: {session_id}")

        total = minutes * SECONDS_PER_MINUTE
        try:
            for elapsed in range(1, total + 1):
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(stop.wait(), timeout=1.0)
                if stop.is_set():
                    break
                if elapsed % SECONDS_PER_MINUTE == 0:
                    click.echo(f"  {elapsed // SECONDS_PER_MINUTE} minute(s)")
                if sensor and elapsed % 5 == 0 and not ctx.monitor.needs_calibration:
                    click.echo(format_breath_snapshot(ctx))
        except asyncio.CancelledError:
            ctx.recovery.emergency_checkpoint("interrupted")
            click.echo("\nFinishing early...")

        saved = await ctx.recovery.complete_session()
        return saved


def format_breath_snapshot(ctx: KasinaBreathContext) -> str:
    snapshot = ctx.monitor.snapshot()
    return f"    {snapshot.phase.value:>7}  {snapshot.rate:>2}/min"


@cli.command()
@click.option(
    "--kasina",
    type=click.Choice(KASINA_CHOICES),
    default=KasinaType.BREATH.value,
    show_default=True,
    help="Practice type to log the session as",
)
@click.option("--minutes", type=click.IntRange(min=1), required=True, help="Session length")
@click.option("--sensor", is_flag=True, help="Connect the belt and show breathing")
@click.option("--db", type=click.Path(), help="Database path")
def meditate(kasina: str, minutes: int, sensor: bool, db: str | None) -> None:
    """Run a timed session that survives crashes and network failures."""
    settings = resolve_settings(db)
    try:
        saved = asyncio.run(_run_meditation(settings, kasina, minutes, sensor))
    except SensorConnectionError as e:
        raise click.ClickException(e.user_message) from e

    if saved:
        click.echo("✓ Session complete")
    else:
        click.echo("⚠ Could not save the session; it will be retried on next start", err=True)
        sys.exit(1)


async def _run_recovery(settings: Settings) -> RecoveryReport:
    async with KasinaBreathContext(settings) as ctx:
        return await ctx.recovery.check_for_recovery()


@cli.command()
@click.option("--db", type=click.Path(), help="Database path")
def recover(db: str | None) -> None:
    """Save interrupted sessions and retry failed saves."""
    settings = resolve_settings(db)
    echo_report(asyncio.run(_run_recovery(settings)))


@cli.group()
def queue() -> None:
    """Failed-session queue commands."""
    pass


@queue.command("list")
@click.option("--db", type=click.Path(), help="Database path")
def queue_list(db: str | None) -> None:
    """Show sessions waiting to be saved."""
    settings = resolve_settings(db)
    ctx = KasinaBreathContext(settings).open()
    try:
        records = ctx.recovery.queue.list()
    finally:
        ctx.close()

    if not records:
        click.echo("Queue is empty.")
        return

    click.echo(f"{len(records)} session(s) waiting for retry:\n")
    for record in records:
        click.echo(
            f"  {record.session_id}  {record.kasina_type.value:<16} "
            f"{record.duration_seconds // SECONDS_PER_MINUTE:>3} min  "
            f"failed {record.failed_at:%Y-%m-%d %H:%M}"
        )


@queue.command("retry")
@click.option("--db", type=click.Path(), help="Database path")
def queue_retry(db: str | None) -> None:
    """Retry every queued session now."""
    settings = resolve_settings(db)

    async def run() -> tuple[int, int]:
        async with KasinaBreathContext(settings) as ctx:
            saved = await ctx.recovery.retry_failed_sessions()
            return saved, len(ctx.recovery.queue)

    saved, pending = asyncio.run(run())
    click.echo(f"✓ Saved {saved} session(s), {pending} still queued")


@queue.command("clear")
@click.option("--db", type=click.Path(), help="Database path")
@click.confirmation_option(prompt="Discard every queued session?")
def queue_clear(db: str | None) -> None:
    """Discard every queued session."""
    settings = resolve_settings(db)
    ctx = KasinaBreathContext(settings).open()
    try:
        removed = ctx.recovery.queue.clear()
    finally:
        ctx.close()
    click.echo(f"✓ Removed {removed} session(s)")


# ============================================================================
# Configuration and Storage
# ============================================================================


@cli.group()
def config() -> None:
    """Configuration management commands."""
    pass


@config.command("show")
@click.option("--defaults", is_flag=True, help="Show effective settings including defaults")
def show_config_cmd(defaults: bool) -> None:
    """Show configuration settings."""
    config_path = get_config_path()

    if defaults:
        settings: dict[str, Any] = load_settings().model_dump()
        click.echo(f"Effective settings (config: {config_path}):\n")
        for section, values in settings.items():
            click.echo(f"  [{section}]")
            for key, value in values.items():
                click.echo(f"    {key} = {value!r}")
        return

    if not config_path.exists():
        click.echo(f"No config file: {config_path}")
        return

    click.echo(f"Config file: {config_path}\n")
    config_data = load_config()
    if not config_data:
        click.echo("Configuration is empty.")
        return

    click.echo("Settings:")
    for section, values in config_data.items():
        click.echo(f"  [{section}]")
        if isinstance(values, dict):
            for key, value in values.items():
                click.echo(f"    {key} = {value!r}")


@config.command("set", context_settings={"ignore_unknown_options": True})
@click.argument("key")
@click.argument("value")
def set_config_cmd(key: str, value: str) -> None:
    """Set a value, e.g. 'recovery.checkpoint_interval 15'."""
    try:
        coerced = set_config_value(key, value)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"✓ {key} = {coerced!r}")
    click.echo(f"  Config: {get_config_path()}")


@config.command("unset")
@click.argument("key")
def unset_config_cmd(key: str) -> None:
    """Remove a value so its default applies again."""
    try:
        unset_config_value(key)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"✓ Removed {key}")


@cli.group()
def db() -> None:
    """Database management commands."""
    pass


@db.command()
@click.option("--db", "db_path", type=click.Path(), help="Database path")
def init(db_path: str | None) -> None:
    """Initialize database (creates tables if needed)."""
    path = db_path or load_settings().storage.database_path
    with Database(path):
        pass
    click.echo(f"✓ Database initialized at {path}")


if __name__ == "__main__":
    cli()
