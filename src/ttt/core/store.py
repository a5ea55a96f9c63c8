"""
Direct store client - one live connection to the remote store per process.

Used by the daemon (which keeps it open for its whole lifetime) and by the CLI
as the fallback when the daemon is unavailable.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from ..config import Settings, settings as default_settings
from ..credentials import Credentials, load_credentials
from ..errors import AuthError, NotFoundError
from .interfaces import StoreClient
from .models import (
    LIST_UPDATABLE_FIELDS,
    TODO_UPDATABLE_FIELDS,
    BatchAddItem,
    BatchUpdateItem,
    ListUpdateResult,
    Todo,
    TodoList,
    TodoUpdateResult,
    new_id,
)
from .remote import (
    Change,
    HttpTableStore,
    Row,
    TableStore,
    delete_row_change,
    set_cell_change,
    set_row_change,
)

logger = logging.getLogger(__name__)

LISTS = "lists"
TODOS = "todos"


def _list_from_row(list_id: str, row: Row) -> TodoList:
    return TodoList.model_validate({**row, "id": list_id, "name": row.get("name") or ""})


def _list_to_row(todo_list: TodoList) -> Row:
    row = todo_list.model_dump(by_alias=True, exclude_none=True)
    row.pop("id", None)
    return row


def _todo_from_row(todo_id: str, row: Row) -> Todo:
    # The remote table names the owning list column "list"
    data = {k: v for k, v in row.items() if k != "list"}
    data.update(id=todo_id, listId=row.get("list") or "", text=row.get("text") or "")
    data["done"] = bool(row.get("done", False))
    return Todo.model_validate(data)


def _todo_to_row(todo: Todo) -> Row:
    row = todo.model_dump(by_alias=True, exclude_none=True)
    row.pop("id", None)
    row["list"] = row.pop("listId")
    return row


def _check_fields(fields: Dict[str, Any], allowed: frozenset, kind: str) -> None:
    unknown = sorted(set(fields) - allowed)
    if unknown:
        raise ValueError(f"Unknown {kind} field(s): {', '.join(unknown)}")


def _field_changes(table: str, row_id: str, row: Row, fields: Dict[str, Any]):
    """Build set-cell changes and the previous values of the fields they overwrite."""
    changes: List[Change] = []
    previous: Dict[str, Any] = {}
    for field, value in fields.items():
        if value is None:
            continue
        previous[field] = row.get(field)
        changes.append(set_cell_change(table, row_id, field, value))
    return changes, previous


class DirectStoreClient(StoreClient):
    """
    StoreClient backed by a TableStore mirror.

    Pass `tables` to run against an already-built store (tests, offline use);
    otherwise connect() opens an HttpTableStore with the saved credentials.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        credentials: Optional[Credentials] = None,
        tables: Optional[TableStore] = None,
    ):
        self.settings = settings or default_settings
        self.credentials = credentials
        self.tables = tables
        self._owns_tables = tables is None

    async def connect(self) -> None:
        if self._owns_tables:
            credentials = self.credentials or load_credentials(self.settings)
            if credentials is None or not credentials.is_complete:
                raise AuthError("Not logged in. Run 'ttt auth set-token' first.")
            self.tables = HttpTableStore(
                self.settings.server_url,
                credentials,
                connect_timeout=self.settings.connect_timeout,
                reconnect_delay=self.settings.reconnect_delay,
            )

        await self.tables.connect()
        await self._wait_for_initial_data()

    async def _wait_for_initial_data(self) -> None:
        """
        Give the first sync a chance to fill the lists table.

        Best effort only: an account with no lists simply waits out the window.
        """
        if self.settings.initial_sync_timeout <= 0:
            return
        if self.tables.get_table(LISTS):
            return

        arrived = asyncio.Event()
        unsubscribe = self.tables.add_listener(
            lambda _changes: arrived.set() if self.tables.get_table(LISTS) else None
        )
        try:
            await asyncio.wait_for(arrived.wait(), timeout=self.settings.initial_sync_timeout)
            await asyncio.sleep(self.settings.sync_grace_period)
        except asyncio.TimeoutError:
            logger.debug("No lists arrived during initial sync window")
        finally:
            unsubscribe()

    async def disconnect(self) -> None:
        if self.tables is not None:
            await self.tables.close()

    # Reads ---------------------------------------------------------------------

    async def get_lists(self) -> List[TodoList]:
        return [_list_from_row(list_id, row) for list_id, row in self.tables.get_table(LISTS).items()]

    async def get_todos(self, list_id: Optional[str] = None) -> List[Todo]:
        todos = [_todo_from_row(todo_id, row) for todo_id, row in self.tables.get_table(TODOS).items()]
        if list_id:
            todos = [todo for todo in todos if todo.list_id == list_id]
        return todos

    async def find_list_by_name_or_id(self, name_or_id: str) -> Optional[TodoList]:
        key = name_or_id.lower()
        for todo_list in await self.get_lists():
            if todo_list.id == name_or_id or todo_list.name.lower() == key:
                return todo_list
        return None

    def _require_row(self, table: str, row_id: str) -> Row:
        row = self.tables.get_row(table, row_id)
        if row is None:
            kind = "List" if table == LISTS else "Todo"
            raise NotFoundError(f"{kind} not found: {row_id}")
        return row

    # Lists ---------------------------------------------------------------------

    async def create_list(
        self,
        name: str,
        color: Optional[str] = None,
        type: Optional[str] = None,
        icon: Optional[str] = None,
    ) -> str:
        list_id = new_id("list")
        await self.tables.set_row(LISTS, list_id, {
            "name": name,
            "purpose": "",
            "systemPrompt": "",
            "backgroundColour": color or "blue",
            "icon": icon or "",
            "number": 0,
            "template": "",
            "code": "",
            "type": type or "Info",
        })
        logger.debug(f"Created list {list_id}")
        return list_id

    async def update_list(self, list_id: str, fields: Dict[str, Any]) -> ListUpdateResult:
        _check_fields(fields, LIST_UPDATABLE_FIELDS, "list")
        row = self._require_row(LISTS, list_id)
        changes, previous = _field_changes(LISTS, list_id, row, fields)
        await self.tables.apply(changes)
        return ListUpdateResult(id=list_id, previous_fields=previous)

    async def delete_list(self, list_id: str) -> TodoList:
        row = self._require_row(LISTS, list_id)
        await self.tables.delete_row(LISTS, list_id)
        return _list_from_row(list_id, row)

    async def restore_list(self, todo_list: TodoList) -> None:
        await self.tables.set_row(LISTS, todo_list.id, _list_to_row(todo_list))

    # Todos ---------------------------------------------------------------------

    def _new_todo_change(self, list_id: str, text: str, fields: Dict[str, Any]) -> tuple:
        _check_fields(fields, TODO_UPDATABLE_FIELDS, "todo")
        todo_id = new_id("todo")
        row = {
            "list": list_id,
            "text": text,
            "notes": fields.get("notes") or "",
            "date": fields.get("date") or "",
            "time": fields.get("time") or "",
            "url": fields.get("url") or "",
            "emoji": fields.get("emoji") or "",
            "email": fields.get("email") or "",
            "streetAddress": fields.get("streetAddress") or "",
            "number": fields.get("number") or 0,
            "amount": fields.get("amount") or 0,
            "fiveStarRating": fields.get("fiveStarRating") or 1,
            "done": False,
            "type": fields.get("type") or "A",
            "category": fields.get("category") or "",
        }
        return todo_id, set_row_change(TODOS, todo_id, row)

    async def add_todo(
        self, list_id: str, text: str, fields: Optional[Dict[str, Any]] = None
    ) -> str:
        todo_id, change = self._new_todo_change(list_id, text, fields or {})
        await self.tables.apply([change])
        return todo_id

    async def update_todo(self, todo_id: str, fields: Dict[str, Any]) -> TodoUpdateResult:
        _check_fields(fields, TODO_UPDATABLE_FIELDS, "todo")
        row = self._require_row(TODOS, todo_id)
        changes, previous = _field_changes(TODOS, todo_id, row, fields)
        await self.tables.apply(changes)
        return TodoUpdateResult(id=todo_id, previous_fields=previous)

    async def _set_done(self, todo_id: str, done: bool) -> Todo:
        row = self._require_row(TODOS, todo_id)
        await self.tables.set_cell(TODOS, todo_id, "done", done)
        return _todo_from_row(todo_id, row)

    async def mark_todo_done(self, todo_id: str) -> Todo:
        return await self._set_done(todo_id, True)

    async def mark_todo_undone(self, todo_id: str) -> Todo:
        return await self._set_done(todo_id, False)

    async def delete_todo(self, todo_id: str) -> Todo:
        row = self._require_row(TODOS, todo_id)
        await self.tables.delete_row(TODOS, todo_id)
        return _todo_from_row(todo_id, row)

    async def batch_add_todos(self, list_id: str, items: List[BatchAddItem]) -> List[str]:
        ids: List[str] = []
        changes: List[Change] = []
        for item in items:
            todo_id, change = self._new_todo_change(list_id, item.text, item.fields)
            ids.append(todo_id)
            changes.append(change)
        await self.tables.apply(changes)
        return ids

    async def batch_update_todos(self, updates: List[BatchUpdateItem]) -> List[TodoUpdateResult]:
        results: List[TodoUpdateResult] = []
        changes: List[Change] = []
        for update in updates:
            _check_fields(update.fields, TODO_UPDATABLE_FIELDS, "todo")
            row = self.tables.get_row(TODOS, update.id)
            if row is None:
                logger.debug(f"Skipping unknown todo {update.id} in batch update")
                continue
            item_changes, previous = _field_changes(TODOS, update.id, row, update.fields)
            changes.extend(item_changes)
            results.append(TodoUpdateResult(id=update.id, previous_fields=previous))
        await self.tables.apply(changes)
        return results

    async def batch_delete_todos(self, todo_ids: List[str]) -> None:
        changes = [
            delete_row_change(TODOS, todo_id)
            for todo_id in todo_ids
            if self.tables.get_row(TODOS, todo_id) is not None
        ]
        await self.tables.apply(changes)

    async def restore_todo(self, todo: Todo) -> None:
        await self.tables.set_row(TODOS, todo.id, _todo_to_row(todo))
