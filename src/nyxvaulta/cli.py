"""Command-line interface for NyxVaulta."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

import click
import httpx
import uvicorn

from .models.bookmark import Bookmark


@click.group()
@click.version_option(version="0.1.0", prog_name="nyxvaulta")
def cli():
    """NyxVaulta - personal bookmark manager with live sync."""
    pass


@cli.command()
@click.option(
    "--config-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Configuration directory (default: ~/.nyxvaulta)",
)
@click.option(
    "--supabase-url",
    type=str,
    default=None,
    help="Supabase project URL (will be saved to .env file)",
)
@click.option(
    "--anon-key",
    type=str,
    default=None,
    help="Supabase anon key (will be saved to .env file)",
)
@click.option(
    "--site-url",
    type=str,
    default=None,
    help="Public URL of this server, used for OAuth redirects",
)
def init(
    config_dir: Optional[Path],
    supabase_url: Optional[str],
    anon_key: Optional[str],
    site_url: Optional[str],
):
    """Initialize NyxVaulta configuration.

    Creates the configuration directory with default settings and a .env
    file for the Supabase project credentials.
    """
    from .config import ConfigManager, ConfigError
    from .models.config import AppConfig

    try:
        cm = ConfigManager(config_dir)

        click.echo(f"Initializing NyxVaulta at {cm.config_dir}...")

        cm.config_dir.mkdir(parents=True, exist_ok=True)

        cm.create_env_file(
            supabase_url or "https://your-project.supabase.co",
            anon_key or "your-anon-key-here",
        )
        click.echo("[OK] Created .env file")

        default_config = AppConfig(site_url=site_url)
        cm.save_app_config(default_config)
        click.echo("[OK] Created config.yaml")

        click.echo("\n" + "=" * 60)
        click.echo("[SUCCESS] NyxVaulta initialized successfully!")
        click.echo("=" * 60)

        if not supabase_url or not anon_key:
            click.echo(f"\n[WARNING] Please update your Supabase settings in: {cm.env_file}")
            click.echo("          Set SUPABASE_URL and SUPABASE_ANON_KEY for your project")

        click.echo(f"\nConfiguration directory: {cm.config_dir}")
        click.echo("\nStart the server with: nyxvaulta serve")

    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.option(
    "--host",
    type=str,
    default=None,
    help="Host to bind (default: host from config.yaml)",
)
@click.option(
    "--port",
    type=int,
    default=None,
    help="Port to bind (default: port from config.yaml, else 8000)",
)
@click.option(
    "--reload",
    is_flag=True,
    default=False,
    help="Enable auto-reload for development",
)
@click.option(
    "--config-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Configuration directory (default: ~/.nyxvaulta)",
)
def serve(host: Optional[str], port: Optional[int], reload: bool, config_dir: Optional[Path]):
    """Start the NyxVaulta API server."""
    from .config import ConfigManager, ConfigError

    try:
        cm = ConfigManager(config_dir)

        if not cm.config_file.exists():
            click.echo("Error: Configuration not found", err=True)
            click.echo(f"Run 'nyxvaulta init' to create configuration at {cm.config_dir}", err=True)
            sys.exit(1)

        try:
            app_config = cm.load_app_config()
            env_settings = cm.load_env_settings()
        except ConfigError as e:
            click.echo(f"Configuration error: {e}", err=True)
            sys.exit(1)

        if not env_settings.is_configured:
            click.echo("[WARNING] SUPABASE_URL or SUPABASE_ANON_KEY is not set; sign-in will fail")

        # Set config directory environment variable if custom
        if config_dir:
            import os
            os.environ["NYXVAULTA_CONFIG_DIR"] = str(config_dir)

        host = host or app_config.host
        port = port or app_config.port or 8000
        log_level = app_config.log_level.lower()
        logging.basicConfig(
            level=app_config.log_level.upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

        click.echo("=" * 60)
        click.echo("Starting NyxVaulta API server...")
        click.echo("=" * 60)
        click.echo(f"Config directory: {cm.config_dir}")
        click.echo(f"Server URL: http://{host}:{port}")
        click.echo(f"Dashboard: http://{host}:{port}{app_config.protected_path}")
        click.echo(f"API docs: http://{host}:{port}/docs")
        click.echo("=" * 60)
        click.echo("\nPress Ctrl+C to stop the server\n")

        uvicorn.run(
            "nyxvaulta.api:app",
            host=host,
            port=port,
            reload=reload,
            log_level=log_level,
        )

    except KeyboardInterrupt:
        click.echo("\n\nShutting down server...")
        sys.exit(0)
    except Exception as e:
        click.echo(f"Error starting server: {e}", err=True)
        sys.exit(1)


def _is_placeholder_secret(value: Optional[str]) -> bool:
    """Detect placeholder/empty secret values that should be replaced."""
    if value is None:
        return True

    normalized = value.strip().lower()
    if not normalized:
        return True

    markers = (
        "your-",
        "replace-with",
        "<random",
        "example",
        "changeme",
        "todo",
    )
    return any(marker in normalized for marker in markers)


@cli.command()
@click.option(
    "--config-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Configuration directory (default: ~/.nyxvaulta)",
)
@click.option(
    "--api-url",
    type=str,
    default=None,
    help="Optional running API URL to verify (example: http://127.0.0.1:8000)",
)
def doctor(config_dir: Optional[Path], api_url: Optional[str]):
    """Validate local setup and report actionable fixes."""
    from .config import ConfigManager, ConfigError

    cm = ConfigManager(config_dir)
    failures = 0
    warnings = 0
    app_config = None
    env_settings = None

    def report(status: str, message: str, fix: Optional[str] = None) -> None:
        click.echo(f"[{status}] {message}")
        if fix:
            click.echo(f"      Fix: {fix}")

    click.echo("=" * 60)
    click.echo("NyxVaulta doctor")
    click.echo("=" * 60)
    click.echo(f"Config directory: {cm.config_dir}")

    if cm.config_file.exists():
        report("PASS", f"Found config file: {cm.config_file}")
        try:
            app_config = cm.load_app_config()
            report("PASS", "config.yaml parsed successfully")
        except ConfigError as e:
            failures += 1
            report("FAIL", f"config.yaml validation failed: {e}")
    else:
        warnings += 1
        report("WARN", f"Missing config file: {cm.config_file}", "Run: nyxvaulta init")

    if cm.env_file.exists():
        report("PASS", f"Found env file: {cm.env_file}")
    else:
        warnings += 1
        report("WARN", f"Missing env file: {cm.env_file}", "Run: nyxvaulta init")

    try:
        env_settings = cm.load_env_settings()
    except ConfigError as e:
        failures += 1
        report("FAIL", f".env validation failed: {e}")

    if env_settings is not None:
        if _is_placeholder_secret(env_settings.supabase_url):
            failures += 1
            report(
                "FAIL",
                "SUPABASE_URL appears unset or placeholder",
                f"Set SUPABASE_URL in {cm.env_file}",
            )
        elif not env_settings.supabase_url.startswith(("http://", "https://")):
            failures += 1
            report("FAIL", f"SUPABASE_URL is not an http(s) URL: {env_settings.supabase_url}")
        else:
            report("PASS", "SUPABASE_URL looks configured")

        if _is_placeholder_secret(env_settings.supabase_anon_key):
            failures += 1
            report(
                "FAIL",
                "SUPABASE_ANON_KEY appears unset or placeholder",
                f"Set SUPABASE_ANON_KEY in {cm.env_file}",
            )
        else:
            report("PASS", "SUPABASE_ANON_KEY looks configured")

    if app_config is not None and not app_config.cookie_secure and app_config.site_url:
        if app_config.site_url.startswith("https://"):
            warnings += 1
            report(
                "WARN",
                "site_url is https but cookie_secure is false",
                "Set cookie_secure: true in config.yaml",
            )

    if (
        env_settings is not None
        and env_settings.is_configured
        and not _is_placeholder_secret(env_settings.supabase_url)
        and not _is_placeholder_secret(env_settings.supabase_anon_key)
    ):
        auth_health_url = f"{env_settings.supabase_url.rstrip('/')}/auth/v1/health"
        try:
            response = httpx.get(
                auth_health_url,
                headers={"apikey": env_settings.supabase_anon_key},
                timeout=3.0,
            )
            if response.status_code == 200:
                report("PASS", f"Supabase auth is reachable: {auth_health_url}")
            else:
                failures += 1
                report(
                    "FAIL",
                    f"Supabase auth health returned HTTP {response.status_code}: {auth_health_url}",
                    "Check SUPABASE_URL and SUPABASE_ANON_KEY",
                )
        except Exception as e:
            failures += 1
            report("FAIL", f"Supabase is not reachable at {auth_health_url} ({e})")

    if api_url:
        health_url = f"{api_url.rstrip('/')}/api/health"
        try:
            response = httpx.get(health_url, timeout=3.0)
            if response.status_code == 200:
                report("PASS", f"Server is reachable: {health_url}")
                if not response.json().get("configured", False):
                    warnings += 1
                    report("WARN", "Server reports Supabase is not configured")
            else:
                failures += 1
                report(
                    "FAIL",
                    f"Server health check returned HTTP {response.status_code}: {health_url}",
                    "Start server: nyxvaulta serve --port 8000",
                )
        except Exception as e:
            failures += 1
            report(
                "FAIL",
                f"Server is not reachable at {health_url} ({e})",
                "Start server and ensure API URL matches --api-url",
            )
    else:
        warnings += 1
        report("WARN", "Skipped server reachability check (no --api-url provided)")

    click.echo("-" * 60)
    click.echo(f"Summary: {failures} fail, {warnings} warn")

    if failures:
        sys.exit(1)
    sys.exit(0)


def _session_options(command):
    """Options shared by commands that talk to a running server."""
    command = click.option(
        "--session",
        envvar="NYXVAULTA_SESSION",
        default=None,
        help="Value of the server's sb-auth-token cookie (env: NYXVAULTA_SESSION)",
    )(command)
    command = click.option(
        "--api-url",
        type=str,
        default="http://127.0.0.1:8000",
        show_default=True,
        help="Running NyxVaulta server",
    )(command)
    return command


def _build_client(api_url: str, session: Optional[str]):
    from .client import BookmarkApiClient

    if not session:
        click.echo("Error: no session given", err=True)
        click.echo("Pass --session or set NYXVAULTA_SESSION", err=True)
        sys.exit(1)
    return BookmarkApiClient(api_url, session=session)


@cli.command()
@_session_options
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["json", "csv"], case_sensitive=False),
    default="json",
    show_default=True,
    help="Export format",
)
@click.option(
    "--output",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Output file (default: server-suggested name in the current directory)",
)
def export(
    api_url: str,
    session: Optional[str],
    fmt: str,
    output: Optional[Path],
):
    """Download all of your bookmarks as JSON or CSV."""
    from .client import ApiError

    client = _build_client(api_url, session)
    try:
        filename, content = asyncio.run(client.export(fmt.lower()))
    except ApiError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    target = output or Path(filename)
    target.write_text(content, encoding="utf-8")
    click.echo(f"[OK] Exported bookmarks to {target}")


def _render(bookmarks: List[Bookmark], stats: dict) -> None:
    click.echo("-" * 60)
    click.echo(
        f"{stats['showing']} shown | {stats['total']} total | "
        f"{stats['favorites']} favorites | {stats['tags']} tags"
    )
    for bookmark in bookmarks:
        star = "*" if bookmark.is_favorite else " "
        tags = f" [{', '.join(bookmark.tags)}]" if bookmark.tags else ""
        click.echo(f"{star} {bookmark.title} <{bookmark.url}>{tags}")


@cli.command()
@_session_options
@click.option("--search", type=str, default="", help="Only show bookmarks matching this text")
@click.option(
    "--sort",
    type=click.Choice(["newest", "oldest", "title", "title-desc"]),
    default="newest",
    show_default=True,
    help="Sort order",
)
@click.option("--favorites-only", is_flag=True, default=False, help="Only show favorites")
def watch(
    api_url: str,
    session: Optional[str],
    search: str,
    sort: str,
    favorites_only: bool,
):
    """Print your bookmarks, then reprint them every time they change."""
    from .client import ApiChangeFeed
    from .core.bookmark_sync import BookmarkSync
    from .core.bookmark_view import BookmarkView, summarize

    client = _build_client(api_url, session)
    view = BookmarkView()

    def on_change(bookmarks: List[Bookmark]) -> None:
        shown = view.derive(bookmarks, search, sort, favorites_only)
        _render(shown, summarize(bookmarks, shown))

    def notify(level: str, message: str) -> None:
        click.echo(f"[{level.upper()}] {message}", err=level == "error")

    async def run() -> None:
        feed = ApiChangeFeed(client)
        sync = BookmarkSync(client, feed, notify=notify, on_change=on_change)
        feed.on_reconnect = sync.refetch
        async with sync:
            await asyncio.Event().wait()

    click.echo(f"Watching {api_url} (Ctrl+C to stop)")
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        click.echo("\nStopped watching")


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
