"""Tests for the undo ledger and inverse-action replay."""

import json
import re
from unittest.mock import patch

import pytest

from ttt.core.models import BatchAddItem, BatchUpdateItem
from ttt.core.store import DirectStoreClient
from ttt.undo.actions import DeleteTodo, RestoreTodo, execute_undo
from ttt.undo.ledger import UndoLedger


@pytest.fixture
def ledger(settings) -> UndoLedger:
    return UndoLedger(settings.history_path, max_entries=settings.undo_max_entries)


async def undo_last(ledger: UndoLedger, client: DirectStoreClient) -> None:
    [entry] = ledger.pop(1)
    await execute_undo(client, entry.undo)


class TestLedger:
    """Tests for append, list, pop and persistence."""

    def test_empty_ledger(self, ledger: UndoLedger) -> None:
        assert ledger.list() == []
        assert ledger.pop(3) == []
        assert len(ledger) == 0

    def test_append_assigns_id_and_timestamp(self, ledger: UndoLedger) -> None:
        entry = ledger.append("addTodo", 'Added "Milk" to Groceries', DeleteTodo(todo_id="todo_1"))

        assert re.fullmatch(r"op_\d+_[0-9a-f]{4}", entry.id)
        assert entry.timestamp > 0
        assert entry.undo == DeleteTodo(todo_id="todo_1")

    def test_list_is_newest_first(self, ledger: UndoLedger) -> None:
        for n in range(3):
            ledger.append("addTodo", f"entry {n}", DeleteTodo(todo_id=f"todo_{n}"))

        assert [e.description for e in ledger.list()] == ["entry 2", "entry 1", "entry 0"]
        assert [e.description for e in ledger.list(limit=2)] == ["entry 2", "entry 1"]
        assert ledger.list(limit=0) == []

    def test_oldest_entries_evicted_past_capacity(self, ledger: UndoLedger) -> None:
        for n in range(55):
            ledger.append("addTodo", f"entry {n}", DeleteTodo(todo_id=f"todo_{n}"))

        entries = ledger.list()
        assert len(entries) == 50
        assert entries[0].description == "entry 54"
        assert entries[-1].description == "entry 5"

    def test_pop_is_lifo_and_persisted(self, ledger: UndoLedger, settings) -> None:
        for n in range(5):
            ledger.append("addTodo", f"entry {n}", DeleteTodo(todo_id=f"todo_{n}"))

        popped = ledger.pop(2)

        assert [e.description for e in popped] == ["entry 4", "entry 3"]
        reopened = UndoLedger(settings.history_path)
        assert [e.description for e in reopened.list()] == ["entry 2", "entry 1", "entry 0"]

    def test_pop_more_than_available(self, ledger: UndoLedger) -> None:
        ledger.append("addTodo", "only", DeleteTodo(todo_id="todo_1"))

        assert [e.description for e in ledger.pop(5)] == ["only"]
        assert ledger.list() == []

    def test_remove_by_id(self, ledger: UndoLedger) -> None:
        older = ledger.append("addTodo", "older", DeleteTodo(todo_id="todo_1"))
        ledger.append("addTodo", "newer", DeleteTodo(todo_id="todo_2"))

        assert ledger.remove(older.id) is True
        assert ledger.remove(older.id) is False
        assert [e.description for e in ledger.list()] == ["newer"]

    def test_clear(self, ledger: UndoLedger) -> None:
        ledger.append("addTodo", "only", DeleteTodo(todo_id="todo_1"))

        ledger.clear()

        assert ledger.list() == []

    def test_file_format(self, ledger: UndoLedger, settings) -> None:
        ledger.append("addTodo", "Added", DeleteTodo(todo_id="todo_1"))

        data = json.loads(settings.history_path.read_text())

        assert data["maxEntries"] == 50
        assert data["entries"][0]["operation"] == "addTodo"
        assert data["entries"][0]["undo"] == {"type": "deleteTodo", "todoId": "todo_1"}

    def test_unreadable_file_loads_as_empty(self, ledger: UndoLedger, settings) -> None:
        settings.ensure_config_dir()
        settings.history_path.write_text("{ definitely not json")

        assert ledger.list() == []
        ledger.append("addTodo", "fresh", DeleteTodo(todo_id="todo_1"))
        assert [e.description for e in ledger.list()] == ["fresh"]

    @pytest.mark.asyncio
    async def test_full_record_survives_reload(self, ledger: UndoLedger, store: DirectStoreClient, settings) -> None:
        deleted = await store.delete_todo("todo_2")
        ledger.record_delete_todo(deleted)

        [entry] = UndoLedger(settings.history_path).list()

        assert isinstance(entry.undo, RestoreTodo)
        assert entry.undo.todo == deleted
        assert entry.description == 'Deleted "Bread"'

    def test_concurrent_writers_can_lose_an_entry(self, settings) -> None:
        """Two processes appending at once: the last writer wins and one entry is lost."""
        first = UndoLedger(settings.history_path)
        second = UndoLedger(settings.history_path)
        stale = first._load()

        second.append("addTodo", "from second", DeleteTodo(todo_id="todo_2"))
        with patch.object(first, "_load", return_value=stale):
            first.append("addTodo", "from first", DeleteTodo(todo_id="todo_1"))

        assert [e.description for e in UndoLedger(settings.history_path).list()] == ["from first"]


class TestReplay:
    """Undoing each recorded operation restores the previous state."""

    @pytest.mark.asyncio
    async def test_undo_add_todo(self, ledger: UndoLedger, store: DirectStoreClient) -> None:
        todo_id = await store.add_todo("list_1", "Eggs")
        ledger.record_add_todo(todo_id, "Eggs", "Groceries")

        await undo_last(ledger, store)

        assert todo_id not in {t.id for t in await store.get_todos()}

    @pytest.mark.asyncio
    async def test_undo_delete_todo(self, ledger: UndoLedger, store: DirectStoreClient) -> None:
        before = await store.get_todos("list_1")
        ledger.record_delete_todo(await store.delete_todo("todo_2"))

        await undo_last(ledger, store)

        assert sorted(await store.get_todos("list_1"), key=lambda t: t.id) == sorted(before, key=lambda t: t.id)

    @pytest.mark.asyncio
    async def test_undo_mark_done(self, ledger: UndoLedger, store: DirectStoreClient) -> None:
        ledger.record_mark_done(await store.mark_todo_done("todo_1"))

        await undo_last(ledger, store)

        todo = next(t for t in await store.get_todos() if t.id == "todo_1")
        assert todo.done is False

    @pytest.mark.asyncio
    async def test_undo_mark_undone(self, ledger: UndoLedger, store: DirectStoreClient) -> None:
        ledger.record_mark_undone(await store.mark_todo_undone("todo_2"))

        await undo_last(ledger, store)

        todo = next(t for t in await store.get_todos() if t.id == "todo_2")
        assert todo.done is True

    @pytest.mark.asyncio
    async def test_undo_update_todo(self, ledger: UndoLedger, store: DirectStoreClient) -> None:
        todo_id = await store.add_todo("list_1", "Milk")
        result = await store.update_todo(todo_id, {"text": "Oat milk", "url": "https://example.com"})
        ledger.record_update_todo(result, "Oat milk")

        await undo_last(ledger, store)

        todo = next(t for t in await store.get_todos() if t.id == todo_id)
        assert todo.text == "Milk"
        assert todo.url == ""

    @pytest.mark.asyncio
    async def test_undo_batch_add(self, ledger: UndoLedger, store: DirectStoreClient) -> None:
        ids = await store.batch_add_todos("list_2", [BatchAddItem(text="A"), BatchAddItem(text="B")])
        ledger.record_batch_add(ids, "Work")

        await undo_last(ledger, store)

        assert [t.id for t in await store.get_todos("list_2")] == ["todo_3"]

    @pytest.mark.asyncio
    async def test_undo_batch_update(self, ledger: UndoLedger, store: DirectStoreClient) -> None:
        results = await store.batch_update_todos([
            BatchUpdateItem(id="todo_1", fields={"done": True}),
            BatchUpdateItem(id="todo_2", fields={"done": False}),
        ])
        ledger.record_batch_update(results)

        await undo_last(ledger, store)

        todos = {t.id: t for t in await store.get_todos()}
        assert todos["todo_1"].done is False
        assert todos["todo_2"].done is True

    @pytest.mark.asyncio
    async def test_undo_create_list(self, ledger: UndoLedger, store: DirectStoreClient) -> None:
        list_id = await store.create_list("Books")
        ledger.record_create_list(list_id, "Books")

        await undo_last(ledger, store)

        assert await store.find_list_by_name_or_id(list_id) is None

    @pytest.mark.asyncio
    async def test_undo_delete_list(self, ledger: UndoLedger, store: DirectStoreClient) -> None:
        before = await store.find_list_by_name_or_id("list_2")
        ledger.record_delete_list(await store.delete_list("list_2"))

        await undo_last(ledger, store)

        assert await store.find_list_by_name_or_id("list_2") == before

    @pytest.mark.asyncio
    async def test_undo_update_list(self, ledger: UndoLedger, store: DirectStoreClient) -> None:
        result = await store.update_list("list_1", {"name": "Shopping"})
        ledger.record_update_list(result, "Groceries")

        await undo_last(ledger, store)

        assert (await store.find_list_by_name_or_id("list_1")).name == "Groceries"

    @pytest.mark.asyncio
    async def test_undo_several_in_reverse_order(self, ledger: UndoLedger, store: DirectStoreClient) -> None:
        ledger.record_mark_done(await store.mark_todo_done("todo_1"))
        ledger.record_update_todo(await store.update_todo("todo_1", {"done": False}), "Milk")

        for entry in ledger.pop(2):
            await execute_undo(store, entry.undo)

        todo = next(t for t in await store.get_todos() if t.id == "todo_1")
        assert todo.done is False

    @pytest.mark.asyncio
    async def test_unknown_action(self, store: DirectStoreClient) -> None:
        with pytest.raises(TypeError):
            await execute_undo(store, object())
