import typer
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar
from rich import print
from rich.markup import escape
from rich.table import Table
import asyncio
import json
import logging
import time

from ttt import __version__
from ttt.config import settings
from ttt.core.factory import run_with_client
from ttt.core.interfaces import StoreClient
from ttt.core.models import BatchAddItem, BatchUpdateItem, TodoList
from ttt.errors import NotFoundError, TttError
from ttt.undo.actions import execute_undo
from ttt.undo.ledger import UndoLedger

logger = logging.getLogger(__name__)

T = TypeVar("T")

APP_HELP = """
ttt: Tiny Talking Todos from the command line.

Lists and todos live in your Tiny Talking Todos account. The first command you
run starts a small background daemon that keeps the connection open, so every
command after it answers immediately. Nothing depends on the daemon: if it
cannot be reached, commands connect directly.

CORE WORKFLOW:
1. LOG IN:  Run `ttt auth set-token <token> --org-id <org>`.
2. BROWSE:  Run `ttt list ls` and `ttt todo ls --list <name>`.
3. CHANGE:  Run `ttt todo add "Buy milk" --list Groceries`, `ttt todo done <id>`.
4. REVERT:  Run `ttt history` to see recent changes and `ttt undo` to revert them.
"""

app = typer.Typer(name="ttt", help=APP_HELP, no_args_is_help=True)
list_app = typer.Typer(name="list", help="Manage lists.")
todo_app = typer.Typer(name="todo", help="Manage todos.")
daemon_app = typer.Typer(name="daemon", help="Background daemon management.")
auth_app = typer.Typer(name="auth", help="Authentication commands.")
app.add_typer(list_app, name="list")
app.add_typer(todo_app, name="todo")
app.add_typer(daemon_app, name="daemon")
app.add_typer(auth_app, name="auth")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging."),
):
    """
    Tiny Talking Todos CLI.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


# ============================================================================
# Helpers
# ============================================================================

def _run(operation: Callable[[StoreClient], Awaitable[T]]) -> T:
    """Run a store operation, turning ttt errors into a red message and exit code 1."""
    try:
        return asyncio.run(run_with_client(operation, settings))
    except TttError as e:
        print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)


def _ledger() -> UndoLedger:
    return UndoLedger(settings.history_path, max_entries=settings.undo_max_entries)


async def _resolve_list(client: StoreClient, name_or_id: str) -> TodoList:
    found = await client.find_list_by_name_or_id(name_or_id)
    if found is None:
        raise NotFoundError(f"List not found: {name_or_id}")
    return found


def _fields(**values: Any) -> Dict[str, Any]:
    """Drop options the user did not pass."""
    return {key: value for key, value in values.items() if value is not None}


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2))


# ============================================================================
# List Commands
# ============================================================================

@list_app.command("ls")
def list_ls(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """
    Show all lists.
    """
    lists = _run(lambda client: client.get_lists())

    if json_output:
        _echo_json([item.to_wire() for item in lists])
        return

    if not lists:
        print("[dim]No lists yet. Create one with `ttt list create <name>`.[/dim]")
        return

    table = Table(title="Lists")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="bold")
    table.add_column("Type", style="magenta")
    table.add_column("Colour")
    for item in lists:
        table.add_row(item.id, escape(item.name), item.type or "", item.background_colour or "")
    print(table)


@list_app.command("get")
def list_get(
    name_or_id: str = typer.Argument(..., help="List name or ID"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """
    Show one list and its todos.
    """
    async def operation(client: StoreClient):
        found = await _resolve_list(client, name_or_id)
        return found, await client.get_todos(found.id)

    found, todos = _run(operation)

    if json_output:
        _echo_json({**found.to_wire(), "todos": [todo.to_wire() for todo in todos]})
        return

    print(f"[bold]{escape(found.name)}[/bold] [dim]({found.id})[/dim]")
    if found.purpose:
        print(f"  {escape(found.purpose)}")
    _print_todos(todos)


@list_app.command("create")
def list_create(
    name: str = typer.Argument(..., help="Name of the new list"),
    color: str = typer.Option("blue", "--color", help="List colour"),
    list_type: str = typer.Option("Info", "--type", help="List type"),
    icon: Optional[str] = typer.Option(None, "--icon", help="List icon"),
):
    """
    Create a list.

    Examples:
        ttt list create Groceries
        ttt list create "Book club" --color green --icon 📚
    """
    list_id = _run(lambda client: client.create_list(name, color=color, type=list_type, icon=icon))
    _ledger().record_create_list(list_id, name)
    print(f"[green]Created list {escape(name)}[/green] [dim]({list_id})[/dim]")


@list_app.command("update")
def list_update(
    name_or_id: str = typer.Argument(..., help="List name or ID"),
    new_name: Optional[str] = typer.Option(None, "--name", help="New name"),
    color: Optional[str] = typer.Option(None, "--color", help="List colour"),
    list_type: Optional[str] = typer.Option(None, "--type", help="List type"),
    icon: Optional[str] = typer.Option(None, "--icon", help="List icon"),
    purpose: Optional[str] = typer.Option(None, "--purpose", help="What the list is for"),
):
    """
    Change a list's name, colour, type, icon or purpose.
    """
    fields = _fields(
        name=new_name,
        backgroundColour=color,
        type=list_type,
        icon=icon,
        purpose=purpose,
    )
    if not fields:
        print("[yellow]Nothing to update. Pass at least one option.[/yellow]")
        raise typer.Exit(code=1)

    async def operation(client: StoreClient):
        found = await _resolve_list(client, name_or_id)
        return found, await client.update_list(found.id, fields)

    found, result = _run(operation)
    _ledger().record_update_list(result, found.name)
    print(f"[green]Updated list {escape(found.name)}[/green]")


@list_app.command("delete")
def list_delete(
    name_or_id: str = typer.Argument(..., help="List name or ID"),
):
    """
    Delete a list. `ttt undo` brings it back.
    """
    async def operation(client: StoreClient):
        found = await _resolve_list(client, name_or_id)
        return await client.delete_list(found.id)

    deleted = _run(operation)
    _ledger().record_delete_list(deleted)
    print(f"[green]Deleted list {escape(deleted.name)}[/green]")


# ============================================================================
# Todo Commands
# ============================================================================

def _print_todos(todos) -> None:
    if not todos:
        print("[dim]No todos.[/dim]")
        return
    for todo in todos:
        mark = "[green]✓[/green]" if todo.done else "[dim]○[/dim]"
        extra = f" [dim]{escape(todo.date)}[/dim]" if todo.date else ""
        print(f"{mark} {escape(todo.text)}{extra} [dim]({todo.id})[/dim]")


@todo_app.command("ls")
def todo_ls(
    list_name: str = typer.Option(..., "--list", "-l", help="List name or ID"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """
    Show the todos in a list.
    """
    async def operation(client: StoreClient):
        found = await _resolve_list(client, list_name)
        return found, await client.get_todos(found.id)

    found, todos = _run(operation)

    if json_output:
        _echo_json([todo.to_wire() for todo in todos])
        return

    print(f"[bold]{escape(found.name)}[/bold]")
    _print_todos(todos)


@todo_app.command("add")
def todo_add(
    texts: List[str] = typer.Argument(..., help="Todo text. Several texts add several todos."),
    list_name: str = typer.Option(..., "--list", "-l", help="List name or ID"),
    notes: Optional[str] = typer.Option(None, "--notes", help="Additional notes"),
    date: Optional[str] = typer.Option(None, "--date", help="Date (e.g. 2025-02-02)"),
    time_: Optional[str] = typer.Option(None, "--time", help="Time (e.g. 15:00)"),
    url: Optional[str] = typer.Option(None, "--url", help="URL"),
    emoji: Optional[str] = typer.Option(None, "--emoji", help="Emoji"),
    email: Optional[str] = typer.Option(None, "--email", help="Email address"),
    street_address: Optional[str] = typer.Option(None, "--street-address", help="Street address"),
    number: Optional[float] = typer.Option(None, "--number", help="Number value"),
    amount: Optional[float] = typer.Option(None, "--amount", help="Amount value"),
    rating: Optional[int] = typer.Option(None, "--rating", min=1, max=5, help="Star rating (1-5)"),
    todo_type: Optional[str] = typer.Option(None, "--type", help="Type (A-E)"),
    category: Optional[str] = typer.Option(None, "--category", help="Category"),
):
    """
    Add one or more todos to a list.

    Examples:
        ttt todo add "Buy milk" --list Groceries
        ttt todo add Eggs Bread Butter --list Groceries --category dairy
    """
    fields = _fields(
        notes=notes,
        date=date,
        time=time_,
        url=url,
        emoji=emoji,
        email=email,
        streetAddress=street_address,
        number=number,
        amount=amount,
        fiveStarRating=rating,
        type=todo_type,
        category=category,
    )

    async def operation(client: StoreClient):
        found = await _resolve_list(client, list_name)
        if len(texts) == 1:
            ids = [await client.add_todo(found.id, texts[0], fields)]
        else:
            items = [BatchAddItem(text=text, fields=fields) for text in texts]
            ids = await client.batch_add_todos(found.id, items)
        return found, ids

    found, ids = _run(operation)

    ledger = _ledger()
    if len(ids) == 1:
        ledger.record_add_todo(ids[0], texts[0], found.name)
        print(f"[green]Added {escape(texts[0])} to {escape(found.name)}[/green] [dim]({ids[0]})[/dim]")
    else:
        ledger.record_batch_add(ids, found.name)
        print(f"[green]Added {len(ids)} todos to {escape(found.name)}[/green]")


@todo_app.command("done")
def todo_done(
    todo_ids: List[str] = typer.Argument(..., help="Todo ID(s)"),
):
    """
    Mark one or more todos as complete.
    """
    _set_done(todo_ids, True)


@todo_app.command("undone")
def todo_undone(
    todo_ids: List[str] = typer.Argument(..., help="Todo ID(s)"),
):
    """
    Mark one or more todos as not complete.
    """
    _set_done(todo_ids, False)


def _set_done(todo_ids: List[str], done: bool) -> None:
    if len(todo_ids) == 1:
        todo_id = todo_ids[0]
        if done:
            previous = _run(lambda client: client.mark_todo_done(todo_id))
            _ledger().record_mark_done(previous)
        else:
            previous = _run(lambda client: client.mark_todo_undone(todo_id))
            _ledger().record_mark_undone(previous)
        state = "done" if done else "not done"
        print(f"[green]Marked {escape(previous.text)} as {state}[/green]")
        return

    updates = [BatchUpdateItem(id=todo_id, fields={"done": done}) for todo_id in todo_ids]
    results = _run(lambda client: client.batch_update_todos(updates))
    if results:
        _ledger().record_batch_update(results)
    skipped = len(todo_ids) - len(results)
    print(f"[green]Updated {len(results)} todos[/green]")
    if skipped:
        print(f"[yellow]Skipped {skipped} unknown ID(s)[/yellow]")


@todo_app.command("update")
def todo_update(
    todo_id: str = typer.Argument(..., help="Todo ID"),
    text: Optional[str] = typer.Option(None, "--text", help="New text"),
    notes: Optional[str] = typer.Option(None, "--notes", help="Additional notes"),
    date: Optional[str] = typer.Option(None, "--date", help="Date (e.g. 2025-02-02)"),
    time_: Optional[str] = typer.Option(None, "--time", help="Time (e.g. 15:00)"),
    url: Optional[str] = typer.Option(None, "--url", help="URL"),
    emoji: Optional[str] = typer.Option(None, "--emoji", help="Emoji"),
    email: Optional[str] = typer.Option(None, "--email", help="Email address"),
    street_address: Optional[str] = typer.Option(None, "--street-address", help="Street address"),
    number: Optional[float] = typer.Option(None, "--number", help="Number value"),
    amount: Optional[float] = typer.Option(None, "--amount", help="Amount value"),
    rating: Optional[int] = typer.Option(None, "--rating", min=1, max=5, help="Star rating (1-5)"),
    todo_type: Optional[str] = typer.Option(None, "--type", help="Type (A-E)"),
    category: Optional[str] = typer.Option(None, "--category", help="Category"),
):
    """
    Change fields of a todo.
    """
    fields = _fields(
        text=text,
        notes=notes,
        date=date,
        time=time_,
        url=url,
        emoji=emoji,
        email=email,
        streetAddress=street_address,
        number=number,
        amount=amount,
        fiveStarRating=rating,
        type=todo_type,
        category=category,
    )
    if not fields:
        print("[yellow]Nothing to update. Pass at least one option.[/yellow]")
        raise typer.Exit(code=1)

    result = _run(lambda client: client.update_todo(todo_id, fields))
    _ledger().record_update_todo(result, text or result.previous_fields.get("text") or todo_id)
    print(f"[green]Updated {todo_id}[/green]")


@todo_app.command("delete")
def todo_delete(
    todo_id: str = typer.Argument(..., help="Todo ID"),
):
    """
    Delete a todo. `ttt undo` brings it back.
    """
    deleted = _run(lambda client: client.delete_todo(todo_id))
    _ledger().record_delete_todo(deleted)
    print(f"[green]Deleted {escape(deleted.text)}[/green]")


# ============================================================================
# Undo Commands
# ============================================================================

@app.command()
def undo(
    count: int = typer.Argument(1, min=1, help="How many operations to undo"),
):
    """
    Revert the most recent changes, newest first.

    Undone operations are removed from the history; there is no redo.
    """
    ledger = _ledger()
    if not len(ledger):
        print("[yellow]Nothing to undo[/yellow]")
        return

    undone: List = []

    async def operation(client: StoreClient):
        # An entry leaves the history only once its replay succeeded, so a
        # failure keeps it and every older entry. A retry over a direct
        # connection continues after the entries already undone.
        while len(undone) < count:
            newest = ledger.list(1)
            if not newest:
                break
            entry = newest[0]
            await execute_undo(client, entry.undo)
            ledger.remove(entry.id)
            undone.append(entry)
            print(f"[green]Undone:[/green] {escape(entry.description)}")
        return undone

    entries = _run(operation)
    if len(entries) < count:
        print(f"[dim]History had only {len(entries)} operation(s)[/dim]")


@app.command()
def history(
    limit: Optional[int] = typer.Option(None, "--limit", "-n", min=1, help="Show at most this many entries"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """
    Show undoable operations, newest first.
    """
    entries = _ledger().list(limit)

    if json_output:
        _echo_json([entry.to_wire() for entry in entries])
        return

    if not entries:
        print("[dim]No undo history[/dim]")
        return

    table = Table(title="Undo History")
    table.add_column("#", style="dim")
    table.add_column("When", style="cyan")
    table.add_column("Operation", style="magenta")
    table.add_column("Description")
    for position, entry in enumerate(entries, start=1):
        when = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(entry.timestamp / 1000))
        table.add_row(str(position), when, entry.operation, escape(entry.description))
    print(table)


# ============================================================================
# Daemon Commands
# ============================================================================

@daemon_app.command("start")
def daemon_start():
    """
    Start the background daemon.

    The daemon keeps one connection to your account open and serves every
    command over a Unix socket in ~/.ttt. It stops by itself after 30 minutes
    without requests. Commands start it automatically; this is only needed to
    warm it up ahead of time.
    """
    from ttt.daemon.manager import DaemonManager

    manager = DaemonManager(settings)
    result = asyncio.run(manager.start())

    if result["success"]:
        print(f"[green]{result['message']}[/green]")
        print(f"[dim]Log file: {settings.log_path}[/dim]")
    else:
        print(f"[red]{result['message']}[/red]")
        raise typer.Exit(code=1)


@daemon_app.command("stop")
def daemon_stop():
    """
    Stop the background daemon.
    """
    from ttt.daemon.manager import DaemonManager

    manager = DaemonManager(settings)
    result = asyncio.run(manager.stop())

    if result["success"]:
        print(f"[green]{result['message']}[/green]")
    else:
        print(f"[yellow]{result['message']}[/yellow]")


@daemon_app.command("status")
def daemon_status(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON")
):
    """
    Show daemon status.
    """
    from ttt.daemon.manager import DaemonManager

    manager = DaemonManager(settings)
    status = asyncio.run(manager.status())

    if json_output:
        _echo_json(status)
        return

    if status["running"]:
        print(f"[bold green]Daemon is running[/bold green]")
        print(f"  PID: {status.get('pid')}")

        uptime = status.get("uptime_seconds", 0)
        if uptime > 3600:
            uptime_str = f"{uptime / 3600:.1f} hours"
        elif uptime > 60:
            uptime_str = f"{uptime / 60:.1f} minutes"
        else:
            uptime_str = f"{uptime:.0f} seconds"
        print(f"  Uptime: {uptime_str}")

        version = status.get("version")
        if version != __version__:
            print(f"  Version: {version} [yellow](CLI is {__version__}; restarts on next command)[/yellow]")
        else:
            print(f"  Version: {version}")
    else:
        print(f"[dim]Daemon is not running[/dim]")
        if status.get("message"):
            print(f"  {status['message']}")


def _stop_daemon_quietly() -> None:
    """Stop a running daemon so the next command picks up new credentials."""
    from ttt.daemon.manager import DaemonManager

    if not settings.socket_path.exists() and not settings.pid_path.exists():
        return
    result = asyncio.run(DaemonManager(settings).stop())
    logger.debug(f"Daemon stop after credential change: {result['message']}")


# ============================================================================
# Auth Commands
# ============================================================================

@auth_app.command("status")
def auth_status():
    """
    Show who you are logged in as.
    """
    from ttt.credentials import load_credentials, masked_token

    creds = load_credentials(settings)
    if creds is None:
        print("[yellow]Not logged in[/yellow]")
        print("[dim]Run `ttt auth set-token <token> --org-id <org>`[/dim]")
        return

    print("[bold green]Logged in[/bold green]")
    print(f"  Org: {creds.org_id}")
    if creds.user_id:
        print(f"  User: {creds.user_id}")
    print(f"  Token: {masked_token(creds.session_token)}")
    print(f"  Server: {settings.server_url}")


@auth_app.command("set-token")
def auth_set_token(
    token: str = typer.Argument(..., help="Session token"),
    org_id: str = typer.Option(..., "--org-id", help="Organisation ID"),
    user_id: Optional[str] = typer.Option(None, "--user-id", help="User ID"),
):
    """
    Save a session token obtained from the web app.

    This saves the token to ~/.ttt/config.json (readable only by you) and
    restarts the daemon so it connects with the new session.

    Examples:
        ttt auth set-token eyJhbGciOi... --org-id org_123
    """
    from ttt.credentials import Credentials, save_credentials

    save_credentials(Credentials(session_token=token, org_id=org_id, user_id=user_id), settings)
    _stop_daemon_quietly()
    print(f"[green]Credentials saved to {settings.credentials_path}[/green]")


@auth_app.command("logout")
def auth_logout():
    """
    Forget the saved session and stop the daemon.
    """
    from ttt.credentials import clear_credentials

    removed = clear_credentials(settings)
    _stop_daemon_quietly()
    if removed:
        print("[green]Logged out[/green]")
    else:
        print("[yellow]Not logged in[/yellow]")


@auth_app.command("export")
def auth_export():
    """
    Print shell exports for the current session.

    Examples:
        eval "$(ttt auth export)"
    """
    from ttt.credentials import ORG_ID_ENV, TOKEN_ENV, load_credentials

    creds = load_credentials(settings)
    if creds is None:
        print("[red]Error: Not logged in[/red]")
        raise typer.Exit(code=1)

    typer.echo(f"export {TOKEN_ENV}={creds.session_token}")
    typer.echo(f"export {ORG_ID_ENV}={creds.org_id}")


if __name__ == "__main__":
    app()
