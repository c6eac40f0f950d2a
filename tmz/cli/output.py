"""CLI output formatters for Rich tables and JSON.

Every formatter returns a string: Rich-rendered text by default, or JSON
when as_json is set. User-supplied text (names, message bodies) is
wrapped in Text so brackets in it are never parsed as markup.
"""

import json
from datetime import datetime

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from tmz.cli.daemon import DaemonStatus
from tmz.db.models import Conversation, Message
from tmz.services.cache_store import CacheStats, SearchHit
from tmz.services.credential_store import CredentialBundle
from tmz.services.credentials import CredentialState
from tmz.services.sync import SyncReport
from tmz.utils.redaction import mask_token

console = Console()

STATE_COLORS = {
    CredentialState.valid: "green",
    CredentialState.expiring_soon: "yellow",
    CredentialState.expired: "red",
    CredentialState.absent: "dim",
}


def _render(renderable) -> str:
    with console.capture() as capture:
        console.print(renderable)
    return capture.get()


def short_time(timestamp: str) -> str:
    """'2024-05-01T09:30:12.345Z' -> '2024-05-01 09:30'."""
    if not timestamp:
        return "-"
    return timestamp.replace("T", " ")[:16]


def format_duration(seconds: int) -> str:
    """Human duration like '42m' or '1h 05m'; 'expired' when not positive."""
    if seconds <= 0:
        return "expired"
    hours, rem = divmod(seconds, 3600)
    minutes = rem // 60
    if hours:
        return f"{hours}h {minutes:02d}m"
    if minutes:
        return f"{minutes}m"
    return f"{seconds}s"


def conversation_to_dict(c: Conversation) -> dict:
    return {
        "id": c.id,
        "display_name": c.display_name,
        "kind": c.kind,
        "last_activity": c.last_activity,
        "last_message_from": c.last_message_from,
        "last_message_preview": c.last_message_preview,
    }


def message_to_dict(m: Message) -> dict:
    return {
        "id": m.message_id,
        "conversation_id": m.conversation_id,
        "from": m.sender_display_name,
        "compose_time": m.compose_time,
        "message_type": m.message_type,
        "is_from_me": m.is_self_authored,
        "content": m.body_plain,
    }


def format_conversations(
    conversations: list[Conversation], as_json: bool = False, title: str = "Chats"
) -> str:
    """Conversation list as a table or JSON."""
    if as_json:
        return json.dumps([conversation_to_dict(c) for c in conversations], indent=2)

    if not conversations:
        return "No conversations found. Run 'tmz sync' first."

    table = Table(title=title)
    table.add_column("Name", style="bold", max_width=32)
    table.add_column("Type", style="magenta")
    table.add_column("Last activity", no_wrap=True)
    table.add_column("Last message", max_width=48)
    table.add_column("ID", style="dim", overflow="fold")

    for c in conversations:
        preview = c.last_message_preview.replace("\n", " ")
        if c.last_message_from:
            preview = f"{c.last_message_from}: {preview}"
        table.add_row(
            Text(c.display_name or "-"),
            c.kind,
            short_time(c.last_activity),
            Text(preview[:120]),
            Text(c.id),
        )
    return _render(table)


def format_messages(messages: list[Message], as_json: bool = False, title: str | None = None) -> str:
    """Messages in chronological order, one block per message."""
    if as_json:
        return json.dumps([message_to_dict(m) for m in messages], indent=2)

    if not messages:
        return "No messages."

    out = Text()
    if title:
        out.append(f"{title}\n\n", style="bold")
    for m in messages:
        out.append(short_time(m.compose_time), style="dim")
        out.append("  ")
        out.append(m.sender_display_name or "?", style="green" if m.is_self_authored else "cyan")
        out.append("\n")
        out.append(m.body_plain or "")
        out.append("\n\n")
    return _render(out)


def format_search_hits(hits: list[SearchHit], as_json: bool = False) -> str:
    if as_json:
        return json.dumps(
            [{**message_to_dict(h.message), "conversation": h.conversation_name} for h in hits],
            indent=2,
        )

    if not hits:
        return "No matches."

    table = Table(title=f"{len(hits)} matches")
    table.add_column("When", no_wrap=True)
    table.add_column("Chat", style="bold", max_width=28)
    table.add_column("From", style="cyan", max_width=24)
    table.add_column("Message")
    for h in hits:
        table.add_row(
            short_time(h.message.compose_time),
            Text(h.conversation_name or "-"),
            Text(h.message.sender_display_name),
            Text(h.message.body_plain.replace("\n", " ")[:200]),
        )
    return _render(table)


def format_stats(stats: CacheStats, as_json: bool = False) -> str:
    if as_json:
        return json.dumps(stats.__dict__, indent=2)

    lines = [
        f"[bold]Conversations:[/bold] {stats.conversations}",
        f"[bold]Messages:[/bold]      {stats.messages}",
        f"[bold]Assets:[/bold]        {stats.assets} ({stats.asset_bytes / 1024:.1f} KiB)",
    ]
    return _render(Panel("\n".join(lines), title="Cache", border_style="cyan"))


def format_sync_report(report: SyncReport, as_json: bool = False) -> str:
    if as_json:
        return json.dumps(report.__dict__, indent=2)
    text = (
        f"[green]Synced[/green] {report.conversations} conversations, "
        f"{report.messages} messages from {report.chats} chats"
    )
    if report.failures:
        text += f" [yellow]({len(report.failures)} failed)[/yellow]"
    return _render(text)


def format_auth_status(
    state: CredentialState,
    bundle: CredentialBundle | None,
    remaining: int | None,
    as_json: bool = False,
) -> str:
    """Credential state with masked tokens."""
    if as_json:
        data: dict = {"state": state.value}
        if bundle is not None:
            data.update({
                "user_principal_name": bundle.user_principal_name,
                "tenant_id": bundle.tenant_id,
                "user_id": bundle.user_id,
                "expires_at": bundle.expires_at,
                "remaining_seconds": remaining,
            })
        return json.dumps(data, indent=2)

    color = STATE_COLORS[state]
    if bundle is None:
        return _render(f"[{color}]Not logged in.[/{color}] Run 'tmz auth login'.")

    expires = datetime.fromtimestamp(bundle.expires_at).strftime("%Y-%m-%d %H:%M:%S")
    lines = [
        f"[bold]State:[/bold]   [{color}]{state.value}[/{color}]",
        f"[bold]User:[/bold]    {bundle.user_principal_name}",
        f"[bold]Tenant:[/bold]  {bundle.tenant_id}",
        f"[bold]Expires:[/bold] {expires} ({format_duration(remaining or 0)})",
        "",
        f"[bold]Skype:[/bold]    {mask_token(bundle.skype_token)}",
        f"[bold]Chat:[/bold]     {mask_token(bundle.chat_token)}",
        f"[bold]Graph:[/bold]    {mask_token(bundle.graph_token)}",
        f"[bold]Presence:[/bold] {mask_token(bundle.presence_token)}",
    ]
    return _render(Panel("\n".join(lines), title="Authentication", border_style=color))


def format_daemon_status(status: DaemonStatus, as_json: bool = False) -> str:
    if as_json:
        return json.dumps(
            {
                "running": status.running,
                "pid": status.pid,
                "pid_file": str(status.pid_file),
                "log_file": str(status.log_file),
            },
            indent=2,
        )
    if status.running:
        head = f"[green]Daemon running[/green] (PID {status.pid})"
    else:
        head = "[red]Daemon not running[/red]"
    return _render(f"{head}\n  log: {status.log_file}")


def format_teams(teams: list[dict], as_json: bool = False) -> str:
    """Joined teams as returned by Graph."""
    if as_json:
        return json.dumps(teams, indent=2)

    if not teams:
        return "No teams found."

    table = Table(title="Teams")
    table.add_column("Name", style="bold", max_width=32)
    table.add_column("Description", max_width=60)
    table.add_column("ID", style="dim", overflow="fold")
    for team in teams:
        table.add_row(
            Text(team.get("displayName") or "?"),
            Text((team.get("description") or "").replace("\n", " ")[:80]),
            Text(team.get("id") or "?"),
        )
    return _render(table)


def format_channels(channels: list[dict], as_json: bool = False) -> str:
    if as_json:
        return json.dumps(channels, indent=2)

    if not channels:
        return "No channels found."

    table = Table(title="Channels")
    table.add_column("Name", style="bold", max_width=32)
    table.add_column("Type", style="magenta")
    table.add_column("ID", style="dim", overflow="fold")
    for channel in channels:
        table.add_row(
            Text(channel.get("displayName") or "?"),
            channel.get("membershipType") or "-",
            Text(channel.get("id") or "?"),
        )
    return _render(table)
