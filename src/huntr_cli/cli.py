"""
huntr - command-line client for the Huntr job tracker.

Usage:
    huntr me                              Show the signed-in user
    huntr boards list                     List your boards
    huntr boards get <board>              Show one board
    huntr jobs list <board>               List jobs on a board
    huntr jobs get <board> <job>          Show one job
    huntr activities list <board>         Show a board's activity log
    huntr activities week-csv <board>     Last week's activity as CSV
    huntr config capture-session          Capture a Clerk session from Chrome
    huntr config test-session             Check the stored Clerk session
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Optional

import typer

from huntr_cli import __version__
from huntr_cli.api import ApiError, HuntrApiClient, HuntrPersonalApi, resolve_token
from huntr_cli.auth import (
    ClerkSessionManager,
    HuntrAuthError,
    NoCredentialAvailable,
    SessionCapture,
    TokenManager,
    extract_session_id,
)
from huntr_cli.auth.session import is_valid_session_id, strip_cookie_name
from huntr_cli.config import Settings, load_settings
from huntr_cli.models import Board, PersonalAction, PersonalJob
from huntr_cli.utils.console import (
    set_headless,
    print_header,
    print_key_values,
    print_info,
    print_success,
    print_error,
    print_warning,
    console,
)
from huntr_cli.utils.output import (
    OutputFormat,
    parse_days,
    parse_fields,
    parse_types,
    render,
    validate_fields,
)

app = typer.Typer(
    name="huntr",
    help="Command-line client for the Huntr job tracker",
    add_completion=True,
    rich_markup_mode="rich",
    no_args_is_help=True,
)
config_app = typer.Typer(help="Manage credentials and the stored Clerk session", no_args_is_help=True)
boards_app = typer.Typer(help="Job search boards", no_args_is_help=True)
jobs_app = typer.Typer(help="Jobs on a board", no_args_is_help=True)
activities_app = typer.Typer(help="Board activity log", no_args_is_help=True)

app.add_typer(config_app, name="config")
app.add_typer(boards_app, name="boards")
app.add_typer(jobs_app, name="jobs")
app.add_typer(activities_app, name="activities")

PROFILE_FIELDS = ["id", "name", "email", "created"]
BOARD_FIELDS = ["id", "name", "lists", "created"]
JOB_FIELDS = ["id", "title", "list", "url", "salary", "location", "created"]
ACTIVITY_FIELDS = ["date", "actionType", "company", "jobTitle", "fromList", "toList", "id"]
WEEK_FIELDS = ["date", "actionType", "company", "jobTitle", "status", "url", "address"]

NOISY_LOGGERS = ["aiohttp", "aiohttp.access", "aiohttp.client", "asyncio", "keyring"]


def setup_logging(verbose: bool, headless: bool):
    """Configure logging based on options."""
    level = logging.DEBUG if verbose else logging.INFO

    root_logger = logging.getLogger()

    # Clear existing handlers to allow reconfiguration
    if root_logger.handlers:
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

    if headless:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            '[%(asctime)s] %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        root_logger.addHandler(handler)
        root_logger.setLevel(level)
    else:
        from rich.logging import RichHandler

        handler = RichHandler(
            console=console,
            rich_tracebacks=True,
            show_time=verbose,
            show_path=verbose,
        )
        root_logger.addHandler(handler)
        root_logger.setLevel(level if verbose else logging.WARNING)

    logging.getLogger("huntr_cli").setLevel(level if verbose else logging.WARNING)

    # Third-party loggers stay quiet even in verbose mode
    for noisy_logger in NOISY_LOGGERS:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    set_headless(headless)


def run_async(coro) -> Any:
    """Run a coroutine, turning known failures into a red message and exit 1."""
    try:
        return asyncio.run(coro)
    except (HuntrAuthError, ApiError, ValueError) as e:
        print_error(str(e))
        raise typer.Exit(1)
    except KeyboardInterrupt:
        print_warning("Interrupted")
        raise typer.Exit(130)


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj["settings"]


@asynccontextmanager
async def open_api(ctx: typer.Context) -> AsyncIterator[HuntrPersonalApi]:
    """Resolve credentials and yield a ready personal API."""
    settings = _settings(ctx)
    provider = TokenManager(settings).get_token_provider(token=ctx.obj.get("token"))
    async with HuntrApiClient(provider, settings.api_base_url, settings.request_timeout) as client:
        yield HuntrPersonalApi(client)


def _format_option() -> Any:
    return typer.Option(OutputFormat.TABLE, "--format", "-f", help="table, json, csv, excel or pdf")


def _fields_option() -> Any:
    return typer.Option(None, "--fields", help="Comma-separated fields to include")


def _output_option() -> Any:
    return typer.Option(None, "--output", "-o", help="Write to this file instead of stdout")


def _announce(path: Optional[Path]):
    if path is not None:
        print_success(f"Wrote {path}")


@app.callback()
def main(
    ctx: typer.Context,
    token: Optional[str] = typer.Option(None, "--token", "-t", help="Huntr API token for this invocation"),
    headless: bool = typer.Option(False, "--headless", "-H", help="Plain output (for scripts/CI)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
):
    """Huntr job tracker CLI."""
    setup_logging(verbose, headless)
    ctx.ensure_object(dict)
    ctx.obj["token"] = token
    ctx.obj["headless"] = headless
    ctx.obj["settings"] = load_settings()


@app.command()
def version():
    """Show version information."""
    console.print(f"huntr-cli version {__version__}")


# =============================================================================
# DATA COMMANDS
# =============================================================================

def show_record(row: dict[str, Any], fields: list[str], fmt: OutputFormat, title: str, output: Optional[Path]):
    """One record: key/value table on screen, otherwise a single-row render."""
    if fmt == OutputFormat.TABLE and output is None:
        print_key_values(title, {name: "-" if row.get(name) in (None, "") else row[name] for name in fields})
        return
    _announce(render([row], fields, fmt, title=title, output=output))


@app.command()
def me(
    ctx: typer.Context,
    fmt: OutputFormat = _format_option(),
    output: Optional[Path] = _output_option(),
):
    """Show the signed-in user's profile."""

    async def _run():
        async with open_api(ctx) as api:
            return await api.profile()

    profile = run_async(_run())
    row = {
        "id": profile.id,
        "name": profile.full_name,
        "email": profile.email,
        "created": profile.created_at or "",
    }
    show_record(row, PROFILE_FIELDS, fmt, "Profile", output)


def board_row(board: Board) -> dict[str, Any]:
    return {
        "id": board.id,
        "name": board.name or "",
        "lists": len(board.lists),
        "created": board.created_at or "",
    }


@boards_app.command("list")
def boards_list(
    ctx: typer.Context,
    fmt: OutputFormat = _format_option(),
    fields: Optional[str] = _fields_option(),
    output: Optional[Path] = _output_option(),
):
    """List your boards."""

    async def _run():
        selected = validate_fields(BOARD_FIELDS, parse_fields(fields))
        async with open_api(ctx) as api:
            boards = await api.boards()
        return selected, [board_row(b) for b in boards]

    selected, rows = run_async(_run())
    _announce(render(rows, selected, fmt, title="Boards", output=output))


@boards_app.command("get")
def boards_get(
    ctx: typer.Context,
    board_id: str = typer.Argument(..., help="Board ID"),
    fmt: OutputFormat = _format_option(),
    fields: Optional[str] = _fields_option(),
    output: Optional[Path] = _output_option(),
):
    """Show one board and its lists."""

    async def _run():
        selected = validate_fields(BOARD_FIELDS, parse_fields(fields))
        async with open_api(ctx) as api:
            board = await api.board(board_id)
        return selected, board

    selected, board = run_async(_run())
    show_record(board_row(board), selected, fmt, "Board", output)
    if fmt == OutputFormat.TABLE and output is None and board.lists:
        render([{"id": lst.id, "name": lst.name} for lst in board.lists], ["id", "name"], title="Lists")


def job_row(job: PersonalJob, list_names: dict[str, str]) -> dict[str, Any]:
    salary = ""
    if job.salary and (job.salary.min is not None or job.salary.max is not None):
        bounds = "-".join(f"{v:g}" for v in (job.salary.min, job.salary.max) if v is not None)
        salary = f"{bounds} {job.salary.currency or ''}".strip()
    return {
        "id": job.id,
        "title": job.title,
        "list": list_names.get(job.list_id or "", job.list_id or ""),
        "url": job.url or "",
        "salary": salary,
        "location": (job.location.address or job.location.name or "") if job.location else "",
        "created": job.created_at or "",
    }


@jobs_app.command("list")
def jobs_list(
    ctx: typer.Context,
    board_id: str = typer.Argument(..., help="Board ID"),
    fmt: OutputFormat = _format_option(),
    fields: Optional[str] = _fields_option(),
    output: Optional[Path] = _output_option(),
):
    """List the jobs on a board."""

    async def _run():
        selected = validate_fields(JOB_FIELDS, parse_fields(fields))
        async with open_api(ctx) as api:
            board = await api.board(board_id)
            jobs = await api.jobs(board_id)
        list_names = {lst.id: lst.name for lst in board.lists}
        return selected, [job_row(j, list_names) for j in jobs.values()]

    selected, rows = run_async(_run())
    _announce(render(rows, selected, fmt, title="Jobs", output=output))


@jobs_app.command("get")
def jobs_get(
    ctx: typer.Context,
    board_id: str = typer.Argument(..., help="Board ID"),
    job_id: str = typer.Argument(..., help="Job ID"),
    fmt: OutputFormat = _format_option(),
    fields: Optional[str] = _fields_option(),
    output: Optional[Path] = _output_option(),
):
    """Show one job."""

    async def _run():
        selected = validate_fields(JOB_FIELDS, parse_fields(fields))
        async with open_api(ctx) as api:
            board = await api.board(board_id)
            job = await api.job(board_id, job_id)
        list_names = {lst.id: lst.name for lst in board.lists}
        return selected, job_row(job, list_names)

    selected, row = run_async(_run())
    show_record(row, selected, fmt, "Job", output)


def action_row(action: PersonalAction) -> dict[str, Any]:
    data = action.data
    return {
        "date": action.timestamp.strftime("%Y-%m-%d %H:%M"),
        "actionType": action.action_type,
        "company": data.company.name if data.company else "",
        "jobTitle": data.job.title if data.job else "",
        "fromList": data.from_list.name if data.from_list else "",
        "toList": data.to_list.name if data.to_list else "",
        "id": action.id,
    }


@activities_app.command("list")
def activities_list(
    ctx: typer.Context,
    board_id: str = typer.Argument(..., help="Board ID"),
    days: Optional[int] = typer.Option(None, "--days", "-d", help="Only the last N days (1-365)"),
    week: bool = typer.Option(False, "--week", "-w", help="Only the last 7 days"),
    types: Optional[str] = typer.Option(None, "--types", help="Comma-separated action types"),
    fmt: OutputFormat = _format_option(),
    fields: Optional[str] = _fields_option(),
    output: Optional[Path] = _output_option(),
):
    """Show a board's activity log, newest first."""

    async def _run():
        selected = validate_fields(ACTIVITY_FIELDS, parse_fields(fields))
        window = parse_days(days, week)
        since = datetime.now(timezone.utc) - timedelta(days=window) if window else None
        async with open_api(ctx) as api:
            actions = await api.actions(board_id, since=since, types=parse_types(types))
        return selected, [action_row(a) for a in actions]

    selected, rows = run_async(_run())
    _announce(render(rows, selected, fmt, title="Activities", output=output))


@activities_app.command("week-csv")
def activities_week_csv(
    ctx: typer.Context,
    board_id: str = typer.Argument(..., help="Board ID"),
    days: int = typer.Option(7, "--days", "-d", help="Window in days (1-365)"),
    output: Optional[Path] = _output_option(),
):
    """Export recent activity joined with job details as CSV."""

    async def _run():
        window = parse_days(days)
        async with open_api(ctx) as api:
            return await api.week_summary(board_id, days=window)

    rows = run_async(_run())
    _announce(render(rows, WEEK_FIELDS, OutputFormat.CSV, title="Activity", output=output))


# =============================================================================
# CONFIG COMMANDS
# =============================================================================

@config_app.command("set-token")
def config_set_token(
    ctx: typer.Context,
    token: str = typer.Argument(..., help="Static Huntr API token"),
    keychain: bool = typer.Option(False, "--keychain", "-k", help="Store in the OS keyring instead of config.json"),
):
    """Save a static API token."""
    manager = TokenManager(_settings(ctx))
    token = token.strip()
    if not token:
        print_error("Token must not be empty")
        raise typer.Exit(1)

    if keychain:
        manager.save_token(token, "keychain")
        print_success(f"Token saved to {manager.store.backend_name}")
    else:
        manager.save_token(token, "config")
        print_success(f"Token saved to {manager.config_file.path}")


@config_app.command("clear-token")
def config_clear_token(
    ctx: typer.Context,
    location: str = typer.Option("all", "--from", help="config, keychain or all"),
):
    """Remove stored static tokens."""
    if location not in ("config", "keychain", "all"):
        print_error(f"Invalid location: {location}. Must be config, keychain or all.")
        raise typer.Exit(1)
    TokenManager(_settings(ctx)).clear_token(location)  # type: ignore[arg-type]
    print_success("Token cleared")


@config_app.command("set-session")
def config_set_session(
    ctx: typer.Context,
    cookie: str = typer.Argument(..., help="Value of the __session cookie from huntr.co"),
    session_id: Optional[str] = typer.Argument(None, help="Clerk session ID (sess_...); read from the cookie if omitted"),
):
    """Store a Clerk session cookie pasted from the browser, then verify it.

    In Chrome DevTools on huntr.co: Application > Cookies > https://huntr.co,
    copy the value of [bold]__session[/bold].
    """
    cookie = strip_cookie_name(cookie)
    if not cookie:
        print_error("Session cookie must not be empty")
        raise typer.Exit(1)

    session_id = session_id.strip() if session_id else None
    sid = session_id or extract_session_id(cookie)
    if not sid or not is_valid_session_id(sid):
        print_error(
            "Could not determine the Clerk session ID from the cookie. "
            "Pass it explicitly: huntr config set-session <cookie> <sess_...>"
        )
        raise typer.Exit(1)

    manager = ClerkSessionManager(_settings(ctx))
    manager.save_session(cookie, sid)
    print_info(f"Session ID: {sid}")
    print_info(f"Saved to {manager.store.backend_name}")

    run_async(manager.get_fresh_token())
    print_success("Session stored and verified. Tokens will refresh before every command.")


@config_app.command("capture-session")
def config_capture_session(ctx: typer.Context):
    """Capture the Clerk session from a debuggable Chrome window.

    Launches Chrome with remote debugging if needed, waits for you to sign in
    to huntr.co, validates the session and stores it.
    """
    print_header("Session capture", "Chrome DevTools Protocol")
    capture = SessionCapture(_settings(ctx))
    result = run_async(capture.capture())

    print_success("Session captured and verified!")
    print_info(f"Session ID: {result.session.session_id}")
    print_info("Tokens will auto-refresh before every command.")


@config_app.command("check-cdp")
def config_check_cdp(ctx: typer.Context):
    """Check what the debug Chrome exposes, without storing anything."""
    print_header("Session check", "Chrome DevTools Protocol")
    report = run_async(SessionCapture(_settings(ctx)).check())

    if report.visible_cookies:
        print_info(f"Visible cookies: {', '.join(report.visible_cookies)}")
    if report.session_id:
        print_info(f"Session ID: {report.session_id}")
    if not report.validated:
        print_error(report.error or "Session could not be validated")
        raise typer.Exit(1)

    print_success("Clerk refresh works with the visible cookies")
    print_info(f"Refresh token preview: {report.token_preview}")


@config_app.command("test-session")
def config_test_session(ctx: typer.Context):
    """Refresh the stored Clerk session once to check that it still works."""
    manager = ClerkSessionManager(_settings(ctx))
    token = run_async(manager.get_fresh_token())
    session = manager.load_session()

    print_success("Clerk session is valid")
    if session:
        print_info(f"Session ID: {session.session_id}")
    print_info(f"Token preview: {token[:20]}...")


@config_app.command("show-token")
def config_show_token(
    ctx: typer.Context,
    reveal: bool = typer.Option(False, "--reveal", help="Print the full token (for scripts)"),
):
    """Show which credential is in use and a preview of its token."""
    manager = TokenManager(_settings(ctx))

    async def _run():
        resolved = manager.resolve(ctx.obj.get("token"))
        if resolved is None:
            raise NoCredentialAvailable("No Huntr credentials configured")
        source, provider = resolved
        return source, await resolve_token(provider)

    source, token = run_async(_run())
    if reveal:
        print(token)
        return
    print_key_values("API token", {"Source": source, "Token": f"{token[:20]}..."})


@config_app.command("clear-session")
def config_clear_session(ctx: typer.Context):
    """Remove the stored Clerk session."""
    manager = ClerkSessionManager(_settings(ctx))
    if not manager.has_session():
        print_warning("No Clerk session stored")
    manager.clear_session()
    print_success("Clerk session cleared")


@config_app.command("show")
def config_show(ctx: typer.Context):
    """Show which credential sources are configured."""
    settings = _settings(ctx)
    manager = TokenManager(settings)
    sources = manager.token_sources()
    session = manager.session.load_session()

    def mark(present: bool) -> str:
        return "✓ set" if present else "✗ not set"

    print_key_values("Credentials", {
        "HUNTR_API_TOKEN": mark(sources["env"]),
        "Clerk session": f"✓ {session.session_id}" if session else mark(False),
        "config.json token": mark(sources["config"]),
        "Keyring token": mark(sources["keychain"]),
    })
    console.print()
    print_key_values("Configuration", {
        "Config file": settings.config_file,
        "Secret storage": manager.store.backend_name,
        "API base URL": settings.api_base_url,
        "Clerk frontend API": settings.clerk_frontend_api,
        "DevTools endpoint": f"{settings.cdp_host}:{settings.cdp_port} ({settings.cdp_transport})",
        "Chrome profile": settings.cdp_profile_dir,
    })


if __name__ == "__main__":
    app()
