"""
Undo ledger - persisted, bounded history of inverse actions.

The ledger file (undo-history.json in the config dir) holds
{"entries": [...oldest first...], "maxEntries": 50}. Every append and pop
reads the whole file, changes it, and writes it back. There is no file
locking: two CLI invocations racing on the file can lose an entry. That is
accepted for a single-user tool.

Entries are evicted oldest-first once the ledger is full, while undo pops
newest-first. Popped entries are discarded (there is no redo).
"""

import json
import logging
import time
import uuid
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError

from ..core.models import ListUpdateResult, Todo, TodoList, TodoUpdateResult, WireModel
from .actions import (
    BatchDeleteTodos,
    DeleteList,
    DeleteTodo,
    FieldRestore,
    RestoreFields,
    RestoreList,
    RestoreListFields,
    RestoreTodo,
    UndoAction,
)

logger = logging.getLogger(__name__)

MAX_ENTRIES = 50


class UndoEntry(WireModel):
    id: str
    timestamp: int
    operation: str
    description: str
    undo: UndoAction


class LedgerData(WireModel):
    entries: List[UndoEntry] = Field(default_factory=list)
    max_entries: int = MAX_ENTRIES


class UndoLedger:
    """Read-modify-write access to the ledger file."""

    def __init__(self, path: Path, max_entries: int = MAX_ENTRIES):
        self.path = Path(path)
        self.max_entries = max_entries

    def _load(self) -> LedgerData:
        if not self.path.exists():
            return LedgerData(max_entries=self.max_entries)
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = LedgerData.model_validate(json.load(f))
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"Undo history at {self.path} is unreadable, starting fresh: {e}")
            return LedgerData(max_entries=self.max_entries)
        data.max_entries = self.max_entries
        return data

    def _save(self, data: LedgerData) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data.to_wire(), f, indent=2)

    def append(self, operation: str, description: str, action: BaseModel) -> UndoEntry:
        """Record one undoable operation, evicting the oldest entries past capacity."""
        data = self._load()
        now_ms = int(time.time() * 1000)
        entry = UndoEntry(
            id=f"op_{now_ms}_{uuid.uuid4().hex[:4]}",
            timestamp=now_ms,
            operation=operation,
            description=description,
            undo=action,
        )
        data.entries.append(entry)
        if len(data.entries) > data.max_entries:
            del data.entries[: len(data.entries) - data.max_entries]
        self._save(data)
        logger.debug(f"Recorded undo entry {entry.id} ({operation})")
        return entry

    def list(self, limit: Optional[int] = None) -> List[UndoEntry]:
        """Entries newest first, without changing the ledger."""
        entries = list(reversed(self._load().entries))
        return entries[:limit] if limit is not None else entries

    def pop(self, count: int) -> List[UndoEntry]:
        """Remove up to `count` newest entries and return them newest first."""
        data = self._load()
        popped: List[UndoEntry] = []
        while len(popped) < count and data.entries:
            popped.append(data.entries.pop())
        self._save(data)
        return popped

    def remove(self, entry_id: str) -> bool:
        """Drop one entry by id. Returns False if it is no longer recorded."""
        data = self._load()
        kept = [entry for entry in data.entries if entry.id != entry_id]
        if len(kept) == len(data.entries):
            return False
        data.entries = kept
        self._save(data)
        return True

    def clear(self) -> None:
        self._save(LedgerData(max_entries=self.max_entries))

    def __len__(self) -> int:
        return len(self._load().entries)

    # Recording helpers, one per undoable command ----------------------------------

    def record_add_todo(self, todo_id: str, text: str, list_name: str) -> UndoEntry:
        return self.append("addTodo", f'Added "{text}" to {list_name}', DeleteTodo(todo_id=todo_id))

    def record_delete_todo(self, todo: Todo) -> UndoEntry:
        return self.append("deleteTodo", f'Deleted "{todo.text}"', RestoreTodo(todo=todo))

    def record_batch_add(self, todo_ids: List[str], list_name: str) -> UndoEntry:
        return self.append(
            "batchAddTodos",
            f"Added {len(todo_ids)} todos to {list_name}",
            BatchDeleteTodos(todo_ids=todo_ids),
        )

    def record_batch_update(self, results: List[TodoUpdateResult]) -> UndoEntry:
        return self.append(
            "batchUpdateTodos",
            f"Updated {len(results)} todos",
            RestoreFields(updates=[FieldRestore(id=r.id, fields=r.previous_fields) for r in results]),
        )

    def record_mark_done(self, previous: Todo) -> UndoEntry:
        return self.append(
            "markDone",
            f'Marked "{previous.text}" as done',
            RestoreFields(updates=[FieldRestore(id=previous.id, fields={"done": previous.done})]),
        )

    def record_mark_undone(self, previous: Todo) -> UndoEntry:
        return self.append(
            "markUndone",
            f'Marked "{previous.text}" as not done',
            RestoreFields(updates=[FieldRestore(id=previous.id, fields={"done": previous.done})]),
        )

    def record_update_todo(self, result: TodoUpdateResult, text: str) -> UndoEntry:
        return self.append(
            "updateTodo",
            f'Updated "{text}"',
            RestoreFields(updates=[FieldRestore(id=result.id, fields=result.previous_fields)]),
        )

    def record_create_list(self, list_id: str, name: str) -> UndoEntry:
        return self.append("createList", f'Created list "{name}"', DeleteList(list_id=list_id))

    def record_delete_list(self, todo_list: TodoList) -> UndoEntry:
        return self.append("deleteList", f'Deleted list "{todo_list.name}"', RestoreList(list=todo_list))

    def record_update_list(self, result: ListUpdateResult, name: str) -> UndoEntry:
        return self.append(
            "updateList",
            f'Updated list "{name}"',
            RestoreListFields(list_id=result.id, fields=result.previous_fields),
        )
