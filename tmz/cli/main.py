"""tmz CLI: Teams chats from the terminal, backed by a local cache.

Usage:
    tmz auth login              Sign in through the browser
    tmz sync                    Pull chats and recent messages into the cache
    tmz chats                   List cached chats, most recent first
    tmz msg alex                Read a chat (alias, id or part of a name)
    tmz msg alex "on my way"    Send a message
    tmz search deadline         Full-text search over cached messages
    tmz teams list              Joined teams (Microsoft Graph)
    tmz service start           Keep tokens fresh and the cache synced
"""

import asyncio
import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape

from tmz.cli.config import (
    add_alias,
    config_file_path,
    load_config,
    write_default_config,
)
from tmz.cli.config import TmzConfig
from tmz.cli.factory import (
    get_cache,
    get_chat_client,
    get_credential_manager,
    get_resolver,
)
from tmz.cli.output import (
    format_auth_status,
    format_channels,
    format_conversations,
    format_daemon_status,
    format_messages,
    format_search_hits,
    format_stats,
    format_sync_report,
    format_teams,
)
from tmz.db.models import ConversationKind, is_canonical_id
from tmz.errors import AmbiguousMatchError, OtherError, TmzError, format_error
from tmz.services.resolver import filter_by_kind, parse_kind_filter
from tmz.services.sync import run_sync_pass, sync_conversation_messages
from tmz.utils.logs import configure_logging
from tmz.utils.paths import AppPaths

_log = logging.getLogger(__name__)

app = typer.Typer(
    name="tmz",
    help="Teams chats from the terminal: local cache, search, aliases and a sync daemon",
    no_args_is_help=True,
)
auth_app = typer.Typer(help="Manage sign-in and stored tokens")
service_app = typer.Typer(help="Manage the background sync daemon")
config_app = typer.Typer(help="Configuration inspection")
cache_app = typer.Typer(help="Inspect and maintain the local cache")
teams_app = typer.Typer(help="Teams and channels (via Microsoft Graph)")

app.add_typer(auth_app, name="auth")
app.add_typer(service_app, name="service")
app.add_typer(config_app, name="config")
app.add_typer(cache_app, name="cache")
app.add_typer(teams_app, name="teams")

console = Console()

# --- Global state ---
_config_path: str | None = None
_json_output: bool = False
_log_level: str | None = None


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None, "--config", help="Path to tmz config file"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only log errors"),
):
    """tmz: local-first Teams chat client."""
    global _config_path, _json_output, _log_level
    _config_path = config
    _json_output = json_output
    _log_level = "debug" if verbose else "error" if quiet else None
    configure_logging(_log_level or "warning")


def _load() -> tuple[TmzConfig, AppPaths]:
    cfg = load_config(config_path=_config_path)
    configure_logging(_log_level or cfg.logging.level or "warning", cfg.logging.log_path())
    return cfg, cfg.app_paths()


def _emit(output: str) -> None:
    typer.echo(output.rstrip("\n"))


def _parse_kind(value: Optional[str]) -> ConversationKind | None:
    if value is None:
        return None
    try:
        return parse_kind_filter(value)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--type")


@contextmanager
def _errors():
    """Print tmz errors as one actionable line and exit non-zero."""
    try:
        yield
    except AmbiguousMatchError as e:
        if e.candidates:
            _emit(format_conversations(e.candidates, as_json=_json_output, title="Candidates"))
        console.print(f"[red]Error:[/red] {escape(format_error(e))}")
        raise typer.Exit(1)
    except TmzError as e:
        console.print(f"[red]Error:[/red] {escape(format_error(e))}")
        raise typer.Exit(1)


# --- Version ---


@app.command()
def version():
    """Show tmz version."""
    from tmz import __version__

    console.print(f"[bold]tmz[/bold] v{__version__}")


@app.command()
def init(
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config file"),
):
    """Write a default config file and create data directories."""
    with _errors():
        path = config_file_path(_config_path)
        if write_default_config(path, force=force):
            console.print(f"[green]Wrote config:[/green] {path}")
        else:
            console.print(f"[yellow]Config already exists:[/yellow] {path} (use --force)")
        _, paths = _load()
        paths.ensure_directories()
        console.print(f"  data:  {paths.data_dir}")
        console.print(f"  state: {paths.state_dir}")


# --- Auth commands ---


@auth_app.command("status")
def auth_status():
    """Show credential state and expiry (tokens masked)."""
    with _errors():
        cfg, paths = _load()
        manager = get_credential_manager(cfg, paths)
        bundle = manager.stored()
        state = manager.state()
        remaining = manager.remaining_seconds(bundle) if bundle else None
        _emit(format_auth_status(state, bundle, remaining, as_json=_json_output))


@auth_app.command("login")
def auth_login(
    timeout: Optional[int] = typer.Option(
        None, "--timeout", help="Seconds to wait for the browser sign-in"
    ),
    manual: bool = typer.Option(
        False, "--manual", help="Paste tokens instead of using the browser"
    ),
):
    """Sign in through the browser and store the tokens."""
    with _errors():
        cfg, paths = _load()
        manager = get_credential_manager(cfg, paths)
        if manual:
            console.print("Paste the MSAL access tokens from the Teams web client:")
            bundle = manager.store_tokens(
                skype_token=typer.prompt("skype token (api.spaces.skype.com)", hide_input=True),
                chat_token=typer.prompt("chat token (chatsvcagg.teams.microsoft.com)", hide_input=True),
                graph_token=typer.prompt("graph token (graph.microsoft.com)", hide_input=True),
                presence_token=typer.prompt("presence token (presence.teams.microsoft.com)", hide_input=True),
            )
        else:
            console.print("Opening browser for sign-in...")
            bundle = asyncio.run(manager.login(timeout))
        console.print(
            f"[green]Logged in as {escape(bundle.user_principal_name)}[/green] "
            f"(valid for {manager.remaining_seconds(bundle) // 60} min)"
        )


@auth_app.command("refresh")
def auth_refresh():
    """Silently refresh tokens using the saved browser session."""
    with _errors():
        cfg, paths = _load()
        manager = get_credential_manager(cfg, paths)
        bundle = asyncio.run(manager.refresh())
        console.print(
            f"[green]Tokens refreshed[/green] "
            f"(valid for {manager.remaining_seconds(bundle) // 60} min)"
        )


@auth_app.command("logout")
def auth_logout():
    """Remove stored tokens."""
    with _errors():
        cfg, paths = _load()
        get_credential_manager(cfg, paths).clear()
        console.print("Logged out.")


@auth_app.command("store")
def auth_store(
    skype_token: str = typer.Option(..., "--skype-token", envvar="TMZ_SKYPE_TOKEN"),
    chat_token: str = typer.Option(..., "--chat-token", envvar="TMZ_CHAT_TOKEN"),
    graph_token: str = typer.Option(..., "--graph-token", envvar="TMZ_GRAPH_TOKEN"),
    presence_token: str = typer.Option(..., "--presence-token", envvar="TMZ_PRESENCE_TOKEN"),
):
    """Store tokens obtained elsewhere (flags or TMZ_*_TOKEN env vars)."""
    with _errors():
        cfg, paths = _load()
        manager = get_credential_manager(cfg, paths)
        bundle = manager.store_tokens(skype_token, chat_token, graph_token, presence_token)
        console.print(f"[green]Stored tokens for {escape(bundle.user_principal_name)}[/green]")


# --- Cache-backed commands ---


@app.command()
def sync(
    chats: Optional[int] = typer.Option(
        None, "--chats", "-n", help="How many recent chats to fetch messages for"
    ),
    per_chat: Optional[int] = typer.Option(
        None, "--messages", "-m", help="Messages to fetch per chat"
    ),
):
    """Pull conversations and recent messages into the local cache."""
    with _errors():
        cfg, paths = _load()
        cache = get_cache(paths)

        async def _run():
            async with get_chat_client(cfg, paths) as client:
                return await run_sync_pass(
                    client,
                    cache,
                    top_chats=cfg.daemon.sync_top_chats if chats is None else chats,
                    messages_per_chat=cfg.daemon.sync_messages_per_chat if per_chat is None else per_chat,
                )

        try:
            report = asyncio.run(_run())
        finally:
            cache.close()
        _emit(format_sync_report(report, as_json=_json_output))


@app.command("chats")
def list_chats(
    limit: int = typer.Option(30, "--limit", "-n", help="Maximum chats to show"),
    type_filter: Optional[str] = typer.Option(
        None, "--type", "-t", help="1:1, group, channel or meeting"
    ),
):
    """List cached chats, most recently active first."""
    kind = _parse_kind(type_filter)
    with _errors():
        _, paths = _load()
        cache = get_cache(paths)
        try:
            # Over-fetch when filtering so the limit applies after the filter
            conversations = cache.list_conversations(limit if kind is None else limit * 10)
        finally:
            cache.close()
        conversations = filter_by_kind(conversations, kind)[:limit]
        _emit(format_conversations(conversations, as_json=_json_output))


@app.command()
def find(
    query: str = typer.Argument(help="Part of a chat name, member name or id"),
    type_filter: Optional[str] = typer.Option(
        None, "--type", "-t", help="1:1, group, channel or meeting"
    ),
):
    """Find cached chats by name."""
    kind = _parse_kind(type_filter)
    with _errors():
        _, paths = _load()
        cache = get_cache(paths)
        try:
            matches = filter_by_kind(cache.find_conversation(query), kind)
        finally:
            cache.close()
        _emit(format_conversations(matches, as_json=_json_output, title=f"Chats matching '{query}'"))


@app.command()
def msg(
    target: str = typer.Argument(help="Alias, conversation id or part of a chat name"),
    message: Optional[str] = typer.Argument(None, help="Message to send; omit to read"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Send a file"),
    limit: int = typer.Option(30, "--limit", "-n", help="Messages to show when reading"),
    type_filter: Optional[str] = typer.Option(
        None, "--type", "-t", help="1:1, group, channel or meeting"
    ),
    live: bool = typer.Option(False, "--live", help="Fetch from the service before reading"),
):
    """Read or send messages in a chat."""
    kind = _parse_kind(type_filter)
    if file is not None and not file.is_file():
        console.print(f"[red]File not found: {file}[/red]")
        raise typer.Exit(1)

    with _errors():
        cfg, paths = _load()
        cache = get_cache(paths)
        try:
            conversation_id = get_resolver(cfg, cache).resolve(target, kind)

            if message is not None or file is not None:
                async def _send():
                    async with get_chat_client(cfg, paths) as client:
                        if file is not None:
                            await client.send_file(conversation_id, file)
                        if message is not None:
                            await client.send_message(conversation_id, message)

                try:
                    asyncio.run(_send())
                except OSError as e:
                    raise OtherError(f"cannot read {file}: {e}") from e
                console.print("[green]Sent.[/green]")
                return

            messages = [] if live else cache.get_messages(conversation_id, limit)
            if not messages:
                async def _fetch():
                    async with get_chat_client(cfg, paths) as client:
                        await sync_conversation_messages(client, cache, conversation_id, max(limit, 50))

                asyncio.run(_fetch())
                messages = cache.get_messages(conversation_id, limit)

            conversation = cache.get_conversation(conversation_id)
        finally:
            cache.close()
        title = conversation.display_name if conversation else conversation_id
        _emit(format_messages(messages, as_json=_json_output, title=title))


@app.command()
def search(
    query: str = typer.Argument(help="Words to search for"),
    chat: Optional[str] = typer.Option(
        None, "--chat", "-c", help="Restrict to one chat (alias, id or name)"
    ),
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum results"),
):
    """Full-text search over cached messages, newest first."""
    with _errors():
        cfg, paths = _load()
        cache = get_cache(paths)
        try:
            if chat:
                conversation_id = get_resolver(cfg, cache).resolve(chat)
                hits = cache.search_in_conversation(query, conversation_id, limit)
            else:
                hits = cache.search(query, limit)
        finally:
            cache.close()
        _emit(format_search_hits(hits, as_json=_json_output))


@app.command()
def alias(
    name: Optional[str] = typer.Argument(None, help="Alias name; omit to list aliases"),
    target: Optional[str] = typer.Argument(None, help="Conversation id or search term"),
    type_filter: Optional[str] = typer.Option(
        None, "--type", "-t", help="1:1, group, channel or meeting"
    ),
):
    """Create an alias for a chat, or list aliases."""
    kind = _parse_kind(type_filter)
    with _errors():
        cfg, paths = _load()
        if name is None:
            if _json_output:
                _emit(json.dumps(cfg.aliases, indent=2))
            elif not cfg.aliases:
                console.print("No aliases. Create one with 'tmz alias <name> <chat>'.")
            else:
                for key, value in cfg.aliases.items():
                    console.print(f"[bold]{escape(key)}[/bold] -> {escape(value)}")
            return
        if target is None:
            raise typer.BadParameter("missing TARGET", param_hint="TARGET")

        if is_canonical_id(target):
            conversation_id = target
        else:
            cache = get_cache(paths)
            try:
                matches = filter_by_kind(cache.find_conversation(target), kind)
            finally:
                cache.close()
            if not matches:
                raise OtherError(
                    f"no conversation matching '{target}'",
                    remediation="Run 'tmz sync' first, or pass the conversation id.",
                )
            if len(matches) > 1:
                raise AmbiguousMatchError(
                    f"'{target}' matches {len(matches)} conversations",
                    candidates=matches,
                    remediation="Narrow it with --type, a longer name, or the conversation id.",
                )
            conversation_id = matches[0].id

        add_alias(config_file_path(_config_path), name, conversation_id)
        console.print(f"[green]Alias[/green] {escape(name)} -> {escape(conversation_id)}")


# --- Cache maintenance ---


@cache_app.command("stats")
def cache_stats():
    """Show cache row counts and asset size."""
    with _errors():
        _, paths = _load()
        cache = get_cache(paths)
        try:
            stats = cache.stats()
        finally:
            cache.close()
        _emit(format_stats(stats, as_json=_json_output))


@cache_app.command("prune")
def cache_prune(
    days: int = typer.Option(30, "--days", min=0, help="Remove assets cached more than this many days ago"),
):
    """Remove old cached images and files."""
    with _errors():
        _, paths = _load()
        cache = get_cache(paths)
        try:
            removed = cache.prune_assets(days)
        finally:
            cache.close()
        console.print(f"Removed {removed} cached assets older than {days} days.")


@cache_app.command("fetch")
def cache_fetch(
    url: str = typer.Argument(help="Image or file URL from a message"),
    output: Path = typer.Option(..., "--output", "-o", help="Where to write the file"),
):
    """Download an image or file through the asset cache."""
    with _errors():
        cfg, paths = _load()
        cache = get_cache(paths)

        async def _run():
            async with get_chat_client(cfg, paths) as client:
                return await client.fetch_asset(url, cache)

        try:
            data, content_type = asyncio.run(_run())
        finally:
            cache.close()
        output.write_bytes(data)
        console.print(f"Wrote {len(data)} bytes ({content_type}) to {output}")


# --- Teams commands ---


@teams_app.command("list")
def teams_list():
    """List the teams you have joined."""
    with _errors():
        cfg, paths = _load()

        async def _run():
            async with get_chat_client(cfg, paths) as client:
                return await client.list_teams()

        _emit(format_teams(asyncio.run(_run()), as_json=_json_output))


@teams_app.command("channels")
def teams_channels(team_id: str = typer.Argument(help="Team ID from 'tmz teams list'")):
    """List the channels of a team."""
    with _errors():
        cfg, paths = _load()

        async def _run():
            async with get_chat_client(cfg, paths) as client:
                return await client.list_channels(team_id)

        _emit(format_channels(asyncio.run(_run()), as_json=_json_output))


# --- Service commands ---


@service_app.command("start")
def service_start():
    """Start the daemon in the background."""
    from tmz.cli.daemon import start_daemon

    with _errors():
        _, paths = _load()
        result = start_daemon(paths, config_path=_config_path)
        if result.started:
            console.print(f"[green]Daemon started[/green] (PID {result.pid})")
            console.print(f"  log: {paths.log_file}")
        else:
            console.print(f"[yellow]Daemon already running[/yellow] (PID {result.pid})")


@service_app.command("stop")
def service_stop():
    """Stop the daemon."""
    from tmz.cli.daemon import stop_daemon

    with _errors():
        cfg, paths = _load()
        pid = stop_daemon(paths, timeout=cfg.daemon.stop_timeout)
        if pid is not None:
            console.print(f"[green]Daemon stopped[/green] (PID {pid})")
        else:
            console.print("[yellow]Daemon is not running.[/yellow]")


@service_app.command("restart")
def service_restart():
    """Stop the daemon if running, then start it."""
    from tmz.cli.daemon import start_daemon, stop_daemon

    with _errors():
        cfg, paths = _load()
        stop_daemon(paths, timeout=cfg.daemon.stop_timeout)
        result = start_daemon(paths, config_path=_config_path)
        console.print(f"[green]Daemon restarted[/green] (PID {result.pid})")


@service_app.command("status")
def service_status():
    """Show whether the daemon is running."""
    from tmz.cli.daemon import daemon_status

    with _errors():
        _, paths = _load()
        _emit(format_daemon_status(daemon_status(paths), as_json=_json_output))


@service_app.command("run")
def service_run():
    """Run the daemon in the foreground (used by start and login services)."""
    from tmz.cli.daemon import run_foreground

    with _errors():
        cfg, paths = _load()
        code = run_foreground(cfg, paths)
    if code:
        raise typer.Exit(code)


@service_app.command("enable")
def service_enable():
    """Install a login service (systemd on Linux, launchd on macOS)."""
    from tmz.cli.daemon import enable_service

    with _errors():
        _, paths = _load()
        unit = enable_service(paths, config_path=_config_path)
        console.print(f"[green]Service enabled[/green]: {unit}")


@service_app.command("disable")
def service_disable():
    """Remove the login service."""
    from tmz.cli.daemon import disable_service

    with _errors():
        unit = disable_service()
        if unit is None:
            console.print("[yellow]No login service installed.[/yellow]")
        else:
            console.print(f"[green]Service disabled[/green]: removed {unit}")


# --- Config commands ---


@config_app.command("show")
def config_show():
    """Display the resolved configuration."""
    with _errors():
        cfg, _ = _load()
        if _json_output:
            _emit(json.dumps(cfg.model_dump(), indent=2))
            return
        console.print("[bold]Logging:[/bold]")
        console.print(f"  level: {cfg.logging.level or 'default'}")
        console.print(f"  file: {cfg.logging.file or '-'}")
        console.print("\n[bold]Auth:[/bold]")
        console.print(f"  backend: {cfg.auth.backend}")
        console.print(f"  buffer_seconds: {cfg.auth.buffer_seconds}")
        console.print(f"  refresh_timeout: {cfg.auth.refresh_timeout}")
        console.print("\n[bold]Daemon:[/bold]")
        console.print(f"  refresh_interval: {cfg.daemon.refresh_interval}s")
        console.print(f"  sync_interval: {cfg.daemon.sync_interval}s")
        console.print(f"  sync_top_chats: {cfg.daemon.sync_top_chats}")
        console.print(f"  sync_messages_per_chat: {cfg.daemon.sync_messages_per_chat}")
        console.print(f"\n[bold]Aliases ({len(cfg.aliases)}):[/bold]")
        for key, value in cfg.aliases.items():
            console.print(f"  {escape(key)} -> {escape(value)}")


@config_app.command("path")
def config_path_cmd():
    """Print the config file location."""
    typer.echo(str(config_file_path(_config_path)))


@config_app.command("paths")
def config_paths():
    """Print every file and directory tmz uses."""
    with _errors():
        _, paths = _load()
        entries = {
            "config": str(config_file_path(_config_path)),
            "data_dir": str(paths.data_dir),
            "state_dir": str(paths.state_dir),
            "cache_db": str(paths.cache_db),
            "tokens": str(paths.tokens_file),
            "pid_file": str(paths.pid_file),
            "log_file": str(paths.log_file),
        }
        if _json_output:
            _emit(json.dumps(entries, indent=2))
            return
        for key, value in entries.items():
            console.print(f"[bold]{key:<10}[/bold] {value}")


@config_app.command("schema")
def config_schema():
    """Print the JSON schema of the config file."""
    _emit(json.dumps(TmzConfig.model_json_schema(), indent=2))


@config_app.command("reset")
def config_reset():
    """Overwrite the config file with the commented defaults."""
    with _errors():
        path = config_file_path(_config_path)
        try:
            write_default_config(path, force=True)
        except OSError as e:
            raise OtherError(f"cannot write config file {path}: {e}") from e
        console.print(f"[green]Config reset:[/green] {path}")
