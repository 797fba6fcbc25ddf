import time
from datetime import datetime
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from kaisheng.engine import is_app_blocked, is_schedule_active
from kaisheng.limits import LimitManager
from kaisheng.manager import DowntimeMonitor, ScheduleManager
from kaisheng.motion import MotionDetector
from kaisheng.schema import AppCategory, DowntimeSchedule
from kaisheng.settings import Settings, load_settings, settings
from kaisheng.utils.logging import setup_logging
from kaisheng.utils.processes import enforce_policy
from kaisheng.utils.state import cleanup_state, is_watcher_running, write_state
from kaisheng.utils.time import format_clock, format_duration_seconds

app = typer.Typer(help="KaiSheng - downtime schedules and app limits")
limit_app = typer.Typer(help="Manage per-app daily limits")
app.add_typer(limit_app, name="limit")
console = Console()


def current_settings() -> Settings:
    return load_settings(settings.data_dir)


def split_list(values: list[str] | None) -> list[str]:
    """Processes a list of strings potentially containing commas into a clean list."""
    if not values:
        return []
    processed = []
    for value in values:
        processed.extend(x.strip() for x in value.split(",") if x.strip())
    return processed


def parse_at(value: str | None) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"Not an ISO date/time: {value}") from None


def fail(message: str) -> NoReturn:
    console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(1)


def schedule_by_index(sm: ScheduleManager, index: int) -> DowntimeSchedule:
    if index < 1 or index > len(sm.schedules):
        fail(f"Index {index} is out of range.")
    return sm.schedules[index - 1]


def describe_blocking(schedule: DowntimeSchedule) -> str:
    if schedule.block_entire_device:
        return "Entire device"
    return ", ".join(schedule.blocked_apps) or "None"


@app.command()
def add(
    name: str = typer.Argument(..., help="Schedule name"),
    start_time: str = typer.Argument(..., help="Start time (e.g. 9pm, 21:00)"),
    end_time: str = typer.Argument(..., help="End time (e.g. 7am, 07:00)"),
    days: list[str] | None = typer.Option(
        None, "--days", "-d", help="Weekdays to repeat on (comma separated, e.g. Mon,Tue)"
    ),
    apps: list[str] | None = typer.Option(
        None, "--apps", "-a", help="Apps to block (comma separated names)"
    ),
    device: bool = typer.Option(
        False, "--device", help="Block the entire device except critical apps"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Add a downtime schedule."""
    setup_logging(verbose=verbose)
    sm = ScheduleManager()

    try:
        sched = sm.add_schedule(
            name,
            start_time,
            end_time,
            recurring_days=split_list(days),
            blocked_apps=split_list(apps),
            block_entire_device=device,
        )
    except ValueError as e:
        fail(str(e))

    overnight = " (overnight)" if sched.crosses_midnight else ""
    console.print(
        f"[green]Successfully added schedule:[/green] {sched.name} "
        f"{format_clock(sched.start_time)} - {format_clock(sched.end_time)}{overnight}"
    )


@app.command(name="list")
def list_schedules(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """List all downtime schedules."""
    setup_logging(verbose=verbose)
    sm = ScheduleManager()

    if not sm.schedules:
        console.print("[yellow]No downtime schedules found.[/yellow]")
        return

    now = datetime.now()
    policy = sm.resolve_policy(now)
    enforced_id = policy.schedule.id if policy.schedule else None

    table = Table(title="Downtime Schedules")
    table.add_column("#", justify="right", style="cyan", no_wrap=True)
    table.add_column("Name", style="white")
    table.add_column("Start", style="magenta")
    table.add_column("End", style="magenta")
    table.add_column("Days", style="blue")
    table.add_column("Blocks", style="yellow")
    table.add_column("Status", style="green")

    for i, sched in enumerate(sm.schedules, 1):
        if not sched.enabled:
            status_text = "[dim]Disabled[/dim]"
        elif sched.id == enforced_id:
            status_text = "[bold red]Enforced[/bold red]"
        elif is_schedule_active(sched, now):
            status_text = "Active"
        else:
            status_text = "Inactive"

        table.add_row(
            str(i),
            sched.name,
            format_clock(sched.start_time),
            format_clock(sched.end_time),
            ", ".join(sched.recurring_days) if sched.is_recurring else "Every day",
            describe_blocking(sched),
            status_text,
        )

    console.print(table)


@app.command()
def remove(
    index: int = typer.Argument(..., help="Index of the schedule to remove"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Remove a schedule by its index in the list."""
    setup_logging(verbose=verbose)
    sm = ScheduleManager()
    target = schedule_by_index(sm, index)
    sm.remove_schedule(target.id)
    console.print(f"[green]Removed schedule:[/green] {target.name}")


@app.command()
def enable(
    index: int = typer.Argument(..., help="Index of the schedule to enable"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Enable a schedule."""
    setup_logging(verbose=verbose)
    sm = ScheduleManager()
    target = sm.set_enabled(schedule_by_index(sm, index).id, True)
    console.print(f"[green]Enabled schedule:[/green] {target.name}")


@app.command()
def disable(
    index: int = typer.Argument(..., help="Index of the schedule to disable"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Disable a schedule without removing it."""
    setup_logging(verbose=verbose)
    sm = ScheduleManager()
    target = sm.set_enabled(schedule_by_index(sm, index).id, False)
    console.print(f"[yellow]Disabled schedule:[/yellow] {target.name}")


@app.command()
def status(
    at: str | None = typer.Option(None, "--at", help="Evaluate at this ISO date/time"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Show the downtime policy in force now (or at --at)."""
    setup_logging(verbose=verbose)
    sm = ScheduleManager()
    policy = sm.resolve_policy(parse_at(at))

    console.print("[bold cyan]KaiSheng - Downtime Status[/bold cyan]")
    watcher_text = (
        "[bold green]● Running[/bold green]"
        if is_watcher_running()
        else "[bold red]○ Stopped[/bold red]"
    )
    console.print(f"Watcher: {watcher_text}")
    console.print(f"Evaluated at: {policy.at:%Y-%m-%d %H:%M}")

    if not policy.in_downtime:
        console.print("\nNo downtime currently active.")
        return

    mode = "Device Downtime" if policy.block_entire_device else "App Downtime"
    console.print(f"\n[bold yellow]⚠️ {mode}: {policy.schedule.name}[/bold yellow]")
    console.print(
        f"Ends at {policy.ends_at:%H:%M} "
        f"(in {format_duration_seconds(policy.seconds_remaining)})"
    )
    console.print(f"Blocking: [magenta]{describe_blocking(policy.schedule)}[/magenta]")

    overridden = [s.name for s in policy.active_schedules if s.id != policy.schedule.id]
    if overridden:
        console.print(f"[dim]Also active (less restrictive): {', '.join(overridden)}[/dim]")


@app.command(name="next")
def next_schedule(
    at: str | None = typer.Option(None, "--at", help="Look ahead from this ISO date/time"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Show the next downtime that will start."""
    setup_logging(verbose=verbose)
    sm = ScheduleManager()
    reference = parse_at(at) or datetime.now()
    upcoming = sm.next_start(reference)

    if upcoming is None:
        console.print("[yellow]No upcoming downtime.[/yellow]")
        return

    sched, start = upcoming
    delay = int((start - reference).total_seconds())
    console.print(
        f"Next downtime: [bold]{sched.name}[/bold] at {start:%a %H:%M} "
        f"(in {format_duration_seconds(delay)})"
    )


@app.command()
def check(
    app_name: str = typer.Argument(..., help="App to check"),
    at: str | None = typer.Option(None, "--at", help="Evaluate at this ISO date/time"),
    walking: bool = typer.Option(False, "--walking", help="The user is currently walking"),
    steps: int = typer.Option(0, "--steps", help="Steps taken since the walk started"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Check whether an app is blocked by downtime, its daily limit or walking."""
    setup_logging(verbose=verbose)
    cfg = current_settings()
    now = parse_at(at) or datetime.now()
    policy = ScheduleManager().resolve_policy(now)
    lm = LimitManager(cfg.max_app_limit_hours, cfg.limit_warning_thresholds)

    detector = MotionDetector(
        acceleration_threshold=cfg.walking_acceleration_threshold,
        step_threshold=cfg.walking_step_threshold,
    )
    if walking:
        detector.process_activity(walking=True, automotive=False, at=now)
        try:
            detector.record_steps(steps)
        except ValueError as e:
            fail(str(e))

    reasons = []
    if is_app_blocked(policy, app_name, cfg.critical_apps):
        reasons.append(f"downtime '{policy.schedule.name}'")
    if lm.should_block(app_name, now):
        reasons.append("daily limit reached")
    if detector.restricts(lm.category_for(app_name)):
        reasons.append("scrolling restricted while walking")

    if reasons:
        console.print(f"[bold red]{app_name} is blocked:[/bold red] {'; '.join(reasons)}")
    else:
        console.print(f"[green]{app_name} is allowed.[/green]")

    if lm.get_limit(app_name):
        console.print(
            f"Used {format_duration_seconds(lm.usage_for(app_name))}, "
            f"{format_duration_seconds(lm.remaining_time(app_name))} remaining today."
        )
    if lm.enforcement_suspended(now):
        console.print("[yellow]Limits are paused or overridden.[/yellow]")


@app.command()
def watch(
    enforce: bool = typer.Option(
        False, "--enforce", help="Kill blocked apps / lock the screen during downtime"
    ),
    interval: int | None = typer.Option(
        None, "--interval", "-i", help="Seconds between checks"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Watch schedules in the foreground and report downtime transitions."""
    setup_logging(verbose=verbose)
    cfg = current_settings()

    if is_watcher_running():
        fail("Another watcher is already running.")

    def enforcer(policy):
        enforce_policy(policy, cfg.critical_apps)

    monitor = DowntimeMonitor(
        ScheduleManager(),
        check_interval_seconds=interval or cfg.check_interval_seconds,
        enforcer=enforcer if enforce else None,
    )
    console.print("[bold green]KaiSheng watcher started...[/bold green]")
    console.print(f"Data directory: [cyan]{settings.data_dir}[/cyan]")
    console.print("Press Ctrl+C to stop.")

    monitor.start()
    try:
        while True:
            policy = monitor.policy
            active = None
            if policy and policy.in_downtime:
                active = {
                    "schedule_id": str(policy.schedule.id),
                    "name": policy.schedule.name,
                    "block_entire_device": policy.block_entire_device,
                    "blocked_apps": policy.blocked_apps,
                    "ends_at": policy.ends_at.isoformat(),
                }
            write_state(active)
            time.sleep(5)
    except KeyboardInterrupt:
        pass
    finally:
        console.print("\n[yellow]Stopping watcher...[/yellow]")
        monitor.stop()
        cleanup_state()


@app.command()
def config(
    interval: int | None = typer.Option(
        None, "--interval", "-i", help="Seconds between downtime checks"
    ),
    critical: list[str] | None = typer.Option(
        None, "--critical", "-c", help="Apps never blocked by device downtime (comma separated)"
    ),
    max_limit_hours: int | None = typer.Option(
        None, "--max-limit-hours", help="Largest daily limit allowed"
    ),
    step_threshold: int | None = typer.Option(
        None, "--step-threshold", help="Steps before scrolling is restricted while walking"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Configure downtime, limit and motion settings."""
    setup_logging(verbose=verbose)
    cfg = current_settings()

    if interval is not None:
        if interval < 1:
            fail("Check interval must be at least 1 second.")
        cfg.check_interval_seconds = interval
    if critical:
        cfg.critical_apps = split_list(critical)
    if max_limit_hours is not None:
        if max_limit_hours < 1:
            fail("Maximum limit must be at least 1 hour.")
        cfg.max_app_limit_hours = max_limit_hours
    if step_threshold is not None:
        cfg.walking_step_threshold = step_threshold

    cfg.save()

    table = Table(title="Current Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("Check Interval (s)", str(cfg.check_interval_seconds))
    table.add_row("Critical Apps", ", ".join(cfg.critical_apps))
    table.add_row("Max Limit (h)", str(cfg.max_app_limit_hours))
    table.add_row("Warning Thresholds (%)", ", ".join(map(str, cfg.limit_warning_thresholds)))
    table.add_row("Walking Step Threshold", str(cfg.walking_step_threshold))
    console.print(table)
    console.print("[green]Configuration saved![/green]")


@limit_app.command(name="add")
def limit_add(
    app_name: str = typer.Argument(..., help="App to limit"),
    hours: int = typer.Option(0, "--hours", "-H", help="Daily limit hours"),
    minutes: int = typer.Option(0, "--minutes", "-m", help="Daily limit minutes"),
    category: str | None = typer.Option(
        None, "--category", "-c", help="App category (guessed from the name if omitted)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Set a daily usage limit for an app."""
    setup_logging(verbose=verbose)
    cfg = current_settings()
    lm = LimitManager(cfg.max_app_limit_hours, cfg.limit_warning_thresholds)

    try:
        limit = lm.add_limit(
            app_name,
            hours * 3600 + minutes * 60,
            AppCategory.parse(category) if category else None,
        )
    except ValueError as e:
        fail(str(e))

    console.print(
        f"[green]Limit set:[/green] {limit.app_name} "
        f"{format_duration_seconds(limit.daily_limit)} per day ({limit.category.value})"
    )


@limit_app.command(name="list")
def limit_list(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """List limits and today's usage."""
    setup_logging(verbose=verbose)
    cfg = current_settings()
    lm = LimitManager(cfg.max_app_limit_hours, cfg.limit_warning_thresholds)

    if not lm.limits:
        console.print("[yellow]No app limits set.[/yellow]")
        return

    table = Table(title="App Limits")
    table.add_column("App", style="cyan")
    table.add_column("Category", style="blue")
    table.add_column("Limit", style="magenta")
    table.add_column("Used", style="yellow")
    table.add_column("Remaining", style="green")
    table.add_column("Status", style="white")

    for limit in lm.limits:
        warning = lm.warning_level(limit.app_name)
        if lm.should_block(limit.app_name):
            status_text = "[bold red]Blocked[/bold red]"
        elif warning is not None:
            status_text = f"[yellow]{warning}% used[/yellow]"
        else:
            status_text = "OK"
        table.add_row(
            limit.app_name,
            limit.category.value,
            format_duration_seconds(limit.daily_limit),
            format_duration_seconds(lm.usage_for(limit.app_name)),
            format_duration_seconds(lm.remaining_time(limit.app_name)),
            status_text,
        )

    console.print(table)


@limit_app.command(name="remove")
def limit_remove(
    app_name: str = typer.Argument(..., help="App whose limit to remove"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Remove an app's daily limit."""
    setup_logging(verbose=verbose)
    lm = LimitManager()
    try:
        lm.remove_limit(app_name)
    except LookupError as e:
        fail(str(e))
    console.print(f"[green]Removed limit:[/green] {app_name}")


@limit_app.command(name="record")
def limit_record(
    app_name: str = typer.Argument(..., help="App that was used"),
    minutes: int = typer.Option(0, "--minutes", "-m", help="Minutes of use"),
    seconds: int = typer.Option(0, "--seconds", "-s", help="Seconds of use"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Record usage time for an app."""
    setup_logging(verbose=verbose)
    cfg = current_settings()
    lm = LimitManager(cfg.max_app_limit_hours, cfg.limit_warning_thresholds)

    try:
        record = lm.record_usage(app_name, minutes * 60 + seconds)
    except ValueError as e:
        fail(str(e))

    console.print(
        f"{app_name}: {format_duration_seconds(record.usage_seconds)} used today."
    )
    if lm.should_block(app_name):
        console.print(f"[bold red]Daily limit reached for {app_name}.[/bold red]")
    else:
        warning = lm.warning_level(app_name)
        if warning is not None:
            console.print(f"[yellow]Warning:[/yellow] {warning}% of the daily limit used.")


@limit_app.command(name="reset")
def limit_reset(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Reset today's usage counters."""
    setup_logging(verbose=verbose)
    LimitManager().reset_day()
    console.print("[green]Usage reset for today.[/green]")


@limit_app.command(name="pause")
def limit_pause(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Stop enforcing every daily limit until resumed."""
    setup_logging(verbose=verbose)
    LimitManager().set_paused(True)
    console.print("[yellow]All limits paused.[/yellow]")


@limit_app.command(name="resume")
def limit_resume(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Enforce daily limits again."""
    setup_logging(verbose=verbose)
    LimitManager().set_paused(False)
    console.print("[green]All limits resumed.[/green]")


@limit_app.command(name="override")
def limit_override(
    minutes: int | None = typer.Option(
        None, "--minutes", "-m", help="Override length (defaults to the configured minutes)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Unblock every app for a few minutes."""
    setup_logging(verbose=verbose)
    cfg = current_settings()
    try:
        until = LimitManager().emergency_override(
            minutes if minutes is not None else cfg.emergency_override_minutes
        )
    except ValueError as e:
        fail(str(e))
    console.print(f"[bold yellow]Emergency override active until {until:%H:%M}.[/bold yellow]")


@limit_app.command(name="stats")
def limit_stats(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Show today's total usage, per category and the most used app."""
    setup_logging(verbose=verbose)
    stats = LimitManager().usage_stats()

    console.print(f"[bold cyan]Usage on {stats.date.isoformat()}[/bold cyan]")
    console.print(f"Total: {format_duration_seconds(stats.total_seconds)}")
    console.print(f"Most used: {stats.most_used or 'None'}")

    if not stats.by_category:
        return

    table = Table(title="By Category")
    table.add_column("Category", style="blue")
    table.add_column("Used", style="yellow")
    for category, seconds in sorted(stats.by_category.items(), key=lambda kv: -kv[1]):
        table.add_row(category.value, format_duration_seconds(seconds))
    console.print(table)
