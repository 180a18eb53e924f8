# src/todo_timer/cli/commands.py

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from pathlib import Path
from typing import cast

from ..core.errors import ValidationError
from ..core.state import AppState
from ..services import views
from ..store.models import SessionRecord, Task
from .bootstrap import watch_owner

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], Awaitable[str]]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], Awaitable[str]]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Slash-command registry used by the console (/help, /add, /start, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        if nparams >= 3:
            h3 = cast(CommandHandler3, handler)
            return await h3(state, args, emit)

        h2 = cast(CommandHandler2, handler)
        return await h2(state, args)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _owner(state: AppState) -> str:
    if not state.owner_id:
        raise ValidationError("No user yet. Type your name first.")
    return state.owner_id


def _task_id(raw: str) -> int:
    try:
        return int(raw.lstrip("#"))
    except ValueError:
        raise ValidationError(f"Not a task id: {raw}") from None


def _fmt_task(task: Task) -> str:
    mark = "x" if task.completed else " "
    due = f" (due {task.due_date})" if task.due_date else ""
    return f"  #{task.id:<4} [{mark}] {task.title}{due}"


# ---- info ----

async def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


async def cmd_whoami(state: AppState, args: list[str]) -> str:
    owner = _owner(state)
    hello = views.greeting(datetime.now().hour)
    return f"{hello}, {owner}!"


# ---- tasks ----

async def cmd_add(state: AppState, args: list[str]) -> str:
    """
    /add <title>              -> new task at the end of the list
    /add <title> @YYYY-MM-DD  -> with a due date
    """
    owner = _owner(state)
    due = None
    if args and args[-1].startswith("@"):
        due = args[-1][1:]
        args = args[:-1]
    task = await state.tasks.add(owner, " ".join(args), due_date=due)
    return f"Added #{task.id}: {task.title}"


async def cmd_list(state: AppState, args: list[str]) -> str:
    """
    /list      -> current page of the filtered list
    /list <n>  -> page n
    """
    owner = _owner(state)
    if args:
        try:
            state.page = max(1, int(args[0]))
        except ValueError:
            return "Usage: /list [page]"

    tasks = await state.tasks.list_tasks(owner)
    filtered = views.filter_tasks(tasks, status=state.status_filter, query=state.search)
    page_size = int(getattr(state.settings, "page_size", views.DEFAULT_PAGE_SIZE))
    pages = views.page_count(len(filtered), page_size)
    page = views.paginate(filtered, state.page, page_size)

    header = f"Tasks [{state.status_filter}]"
    if state.search:
        header += f" matching '{state.search}'"
    if not page:
        return f"{header}: nothing to show."

    lines = [f"{header} - page {state.page}/{pages}:"]
    for day, items in views.partition_by_day(page, views.task_day).items():
        lines.append(day.strftime("%B %d, %Y"))
        lines.extend(_fmt_task(t) for t in items)
    return "\n".join(lines)


async def cmd_filter(state: AppState, args: list[str]) -> str:
    status = (args[0] if args else "all").lower()
    if status not in views.STATUS_FILTERS:
        return "Usage: /filter all | active | completed"
    state.status_filter = status
    state.page = 1
    return f"Showing {status} tasks."


async def cmd_search(state: AppState, args: list[str]) -> str:
    state.search = " ".join(args).strip()
    state.page = 1
    return f"Search: '{state.search}'" if state.search else "Search cleared."


async def cmd_done(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /done <id>"
    task = await state.tasks.toggle(_owner(state), _task_id(args[0]))
    if task is None:
        return f"No task {args[0]}."
    return f"#{task.id} {'completed' if task.completed else 'reopened'}."


async def cmd_rename(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        return "Usage: /rename <id> <new title>"
    ok = await state.tasks.rename(_owner(state), _task_id(args[0]), " ".join(args[1:]))
    return "Renamed." if ok else f"No task {args[0]}."


async def cmd_due(state: AppState, args: list[str]) -> str:
    """
    /due <id> YYYY-MM-DD  -> set due date
    /due <id> -           -> clear it
    """
    if not args:
        return "Usage: /due <id> <YYYY-MM-DD | ->"
    raw = args[1] if len(args) > 1 else ""
    if raw == "-":
        raw = ""
    ok = await state.tasks.set_due_date(_owner(state), _task_id(args[0]), raw)
    return "Due date updated." if ok else f"No task {args[0]}."


async def cmd_rm(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /rm <id>"
    ok = await state.tasks.delete(_owner(state), _task_id(args[0]))
    return "Deleted." if ok else f"No task {args[0]}."


async def cmd_mv(state: AppState, args: list[str]) -> str:
    """/mv <id> <position>  (positions start at 1)"""
    if len(args) != 2:
        return "Usage: /mv <id> <position>"
    try:
        position = int(args[1])
    except ValueError:
        return "Usage: /mv <id> <position>"
    ok = await state.tasks.move(_owner(state), _task_id(args[0]), position - 1)
    return "Moved." if ok else f"No task {args[0]}."


async def cmd_order(state: AppState, args: list[str]) -> str:
    """/order <id> <id> ...  (all tasks, in the new order)"""
    owner = _owner(state)
    ids = [_task_id(a) for a in args]
    current = await state.tasks.list_tasks(owner)
    if sorted(ids) != sorted(t.id for t in current):
        return "List every task exactly once (see /filter all, /list)."
    n = await state.tasks.reorder(owner, ids)
    return f"Reordered {n} tasks."


# ---- timer ----

async def cmd_start(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /start <task id>"
    owner = _owner(state)
    session = await state.timer.start(owner, _task_id(args[0]))
    if session is not None:
        return f"Timing: {session.task_title}"
    status = await state.timer.status(owner)
    if status.session is not None:
        return f"A timer is already running for: {status.session.task_title}. /stop it first."
    return "Cannot start: the task does not exist or is already completed."


async def cmd_stop(state: AppState, args: list[str]) -> str:
    record = await state.timer.stop(_owner(state))
    if record is None:
        return "No timer running."
    title = f" on {record.task_title}" if record.task_title else ""
    return f"Saved {views.format_duration(record.duration)}{title}."


async def cmd_timer(state: AppState, args: list[str]) -> str:
    status = await state.timer.status(_owner(state))
    if status.session is None:
        return "00:00:00 (idle)"
    return f"{views.format_duration(status.elapsed)} - Current task: {status.session.task_title}"


async def cmd_history(state: AppState, args: list[str]) -> str:
    """
    /history            -> today's sessions
    /history yesterday  -> yesterday's sessions
    """
    owner = _owner(state)
    which = args[0].lower() if args else "today"
    records = views.history(await _records(state, owner), which, state.clock())
    total = views.format_duration(views.total_duration(records))
    if not records:
        return f"No sessions recorded {which}. Total duration: {total}"
    lines = [f"Sessions {which} (total {total}):"]
    for r in records:
        at = datetime.fromtimestamp(r.created_at).strftime("%H:%M:%S")
        title = f"  {r.task_title}" if r.task_title else ""
        lines.append(f"  {at}  {views.format_duration(r.duration)}{title}")
    return "\n".join(lines)


async def _records(state: AppState, owner: str) -> list[SessionRecord]:
    return await asyncio.to_thread(state.store.list_records, owner)


# ---- day / data ----

async def cmd_endday(state: AppState, args: list[str]) -> str:
    """
    /endday         -> print today's summary
    /endday <file>  -> also write it to a file
    """
    owner = _owner(state)
    tasks = await state.tasks.list_tasks(owner)
    records = await _records(state, owner)
    summary = views.day_summary(owner, tasks, records, views.today(state.clock()))
    text = views.render_summary_text(summary)
    if args:
        path = await asyncio.to_thread(
            views.TextSummaryRenderer().render, summary, Path(args[0]).expanduser()
        )
        text += f"\n\nSaved to {path}"
    return text


async def cmd_export(state: AppState, args: list[str]) -> str:
    owner = _owner(state)
    directory = Path(args[0]).expanduser() if args else state.settings.backup_dir
    path = await state.backup.export_to_file(owner, directory)
    return f"Exported to {path}"


async def cmd_import(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not args:
        return "Usage: /import <backup.json>"
    owner = await state.backup.import_file(Path(args[0]).expanduser())
    logger.info("Console owner switched to %s by import", owner)
    state.owner_id = owner
    state.page = 1
    if emit is not None:
        watch_owner(state, emit)
    return f"Imported data for {owner}."


async def cmd_reset(state: AppState, args: list[str]) -> str:
    """/reset yes  -> delete all your data and forget your name"""
    owner = _owner(state)
    if not args or args[0].lower() != "yes":
        return "This deletes all your tasks and sessions. Type /reset yes to confirm."
    await state.backup.reset_owner(owner)
    state.drop_subscriptions()
    state.owner_id = None
    return "All data deleted. Type your name to start again."


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("whoami", cmd_whoami, help_text="Show the current user.")
registry.register("add", cmd_add, help_text="Add a task: /add <title> [@YYYY-MM-DD].")
registry.register("list", cmd_list, help_text="List tasks: /list [page].", aliases=["ls"])
registry.register("filter", cmd_filter, help_text="Filter list: /filter all | active | completed.")
registry.register("search", cmd_search, help_text="Search titles: /search <text> (empty clears).")
registry.register("done", cmd_done, help_text="Toggle completion: /done <id>.")
registry.register("rename", cmd_rename, help_text="Rename: /rename <id> <title>.")
registry.register("due", cmd_due, help_text="Due date: /due <id> <YYYY-MM-DD | ->.")
registry.register("rm", cmd_rm, help_text="Delete a task and its sessions: /rm <id>.")
registry.register("mv", cmd_mv, help_text="Move a task: /mv <id> <position>.")
registry.register("order", cmd_order, help_text="Set the full order: /order <id> <id> ...")
registry.register("start", cmd_start, help_text="Start the stopwatch: /start <id>.")
registry.register("stop", cmd_stop, help_text="Stop the stopwatch and save the session.")
registry.register("timer", cmd_timer, help_text="Show the running stopwatch.")
registry.register("history", cmd_history, help_text="Sessions: /history [today | yesterday].")
registry.register("endday", cmd_endday, help_text="Day summary: /endday [file].")
registry.register("export", cmd_export, help_text="Write a JSON backup: /export [dir].")
registry.register("import", cmd_import, help_text="Replace data from a backup: /import <file>.")
registry.register("reset", cmd_reset, help_text="Delete all your data: /reset yes.")
