"""Unit tests for DirectStoreClient over an in-memory table mirror."""

import pytest

from ttt.core.models import BatchAddItem, BatchUpdateItem
from ttt.core.store import DirectStoreClient
from ttt.errors import NotFoundError


class TestReads:
    """Tests for list and todo queries."""

    @pytest.mark.asyncio
    async def test_get_lists(self, store: DirectStoreClient) -> None:
        lists = await store.get_lists()

        assert {item.id for item in lists} == {"list_1", "list_2"}
        groceries = next(item for item in lists if item.id == "list_1")
        assert groceries.name == "Groceries"
        assert groceries.background_colour == "green"

    @pytest.mark.asyncio
    async def test_get_todos_filters_by_list(self, store: DirectStoreClient) -> None:
        todos = await store.get_todos("list_1")

        assert {todo.id for todo in todos} == {"todo_1", "todo_2"}
        assert all(todo.list_id == "list_1" for todo in todos)

    @pytest.mark.asyncio
    async def test_get_todos_without_list_returns_all(self, store: DirectStoreClient) -> None:
        todos = await store.get_todos()

        assert len(todos) == 3

    @pytest.mark.asyncio
    async def test_find_list_by_id(self, store: DirectStoreClient) -> None:
        found = await store.find_list_by_name_or_id("list_2")

        assert found is not None
        assert found.name == "Work"

    @pytest.mark.asyncio
    async def test_find_list_by_name_is_case_insensitive(self, store: DirectStoreClient) -> None:
        found = await store.find_list_by_name_or_id("gROCERIES")

        assert found is not None
        assert found.id == "list_1"

    @pytest.mark.asyncio
    async def test_find_list_missing_returns_none(self, store: DirectStoreClient) -> None:
        assert await store.find_list_by_name_or_id("Holidays") is None


class TestLists:
    """Tests for list mutations."""

    @pytest.mark.asyncio
    async def test_create_list_applies_defaults(self, store: DirectStoreClient) -> None:
        list_id = await store.create_list("Books")

        assert list_id.startswith("list_")
        created = await store.find_list_by_name_or_id(list_id)
        assert created.name == "Books"
        assert created.background_colour == "blue"
        assert created.type == "Info"

    @pytest.mark.asyncio
    async def test_create_list_with_options(self, store: DirectStoreClient) -> None:
        list_id = await store.create_list("Books", color="red", type="Reading", icon="📚")

        created = await store.find_list_by_name_or_id(list_id)
        assert created.background_colour == "red"
        assert created.type == "Reading"
        assert created.icon == "📚"

    @pytest.mark.asyncio
    async def test_update_list_returns_previous_values(self, store: DirectStoreClient) -> None:
        result = await store.update_list("list_1", {"name": "Shopping", "backgroundColour": "red"})

        assert result.id == "list_1"
        assert result.previous_fields == {"name": "Groceries", "backgroundColour": "green"}
        updated = await store.find_list_by_name_or_id("list_1")
        assert updated.name == "Shopping"

    @pytest.mark.asyncio
    async def test_update_list_rejects_unknown_fields(self, store: DirectStoreClient) -> None:
        with pytest.raises(ValueError, match="colour"):
            await store.update_list("list_1", {"colour": "red"})

    @pytest.mark.asyncio
    async def test_update_missing_list(self, store: DirectStoreClient) -> None:
        with pytest.raises(NotFoundError, match="List not found: list_9"):
            await store.update_list("list_9", {"name": "x"})

    @pytest.mark.asyncio
    async def test_delete_list_keeps_its_todos(self, store: DirectStoreClient) -> None:
        deleted = await store.delete_list("list_1")

        assert deleted.name == "Groceries"
        assert await store.find_list_by_name_or_id("list_1") is None
        assert len(await store.get_todos("list_1")) == 2

    @pytest.mark.asyncio
    async def test_delete_then_restore_list_is_identical(self, store: DirectStoreClient) -> None:
        before = await store.find_list_by_name_or_id("list_1")

        deleted = await store.delete_list("list_1")
        await store.restore_list(deleted)

        assert await store.find_list_by_name_or_id("list_1") == before

    @pytest.mark.asyncio
    async def test_restore_of_created_list_keeps_every_column(self, store: DirectStoreClient) -> None:
        list_id = await store.create_list("Books", color="red")
        row_before = store.tables.get_row("lists", list_id)

        deleted = await store.delete_list(list_id)
        await store.restore_list(deleted)

        assert deleted.number == 0
        assert deleted.code == ""
        assert store.tables.get_row("lists", list_id) == row_before


class TestTodos:
    """Tests for todo mutations."""

    @pytest.mark.asyncio
    async def test_add_todo_applies_defaults(self, store: DirectStoreClient) -> None:
        todo_id = await store.add_todo("list_2", "Call Alex")

        assert todo_id.startswith("todo_")
        todo = next(t for t in await store.get_todos("list_2") if t.id == todo_id)
        assert todo.text == "Call Alex"
        assert todo.done is False
        assert todo.five_star_rating == 1
        assert todo.type == "A"

    @pytest.mark.asyncio
    async def test_add_todo_with_fields(self, store: DirectStoreClient) -> None:
        todo_id = await store.add_todo("list_2", "Pay invoice", {"amount": 42.5, "category": "bills"})

        todo = next(t for t in await store.get_todos("list_2") if t.id == todo_id)
        assert todo.amount == 42.5
        assert todo.category == "bills"

    @pytest.mark.asyncio
    async def test_update_todo_returns_previous_values(self, store: DirectStoreClient) -> None:
        result = await store.update_todo("todo_2", {"notes": "rye", "text": "Rye bread"})

        assert result.previous_fields == {"notes": "wholegrain", "text": "Bread"}

    @pytest.mark.asyncio
    async def test_update_todo_previous_value_of_unset_field_is_none(self, store: DirectStoreClient) -> None:
        result = await store.update_todo("todo_1", {"url": "https://example.com"})

        assert result.previous_fields == {"url": None}

    @pytest.mark.asyncio
    async def test_update_todo_skips_none_values(self, store: DirectStoreClient) -> None:
        result = await store.update_todo("todo_1", {"text": "Oat milk", "notes": None})

        assert result.previous_fields == {"text": "Milk"}

    @pytest.mark.asyncio
    async def test_update_todo_cannot_move_between_lists(self, store: DirectStoreClient) -> None:
        with pytest.raises(ValueError):
            await store.update_todo("todo_1", {"listId": "list_2"})

    @pytest.mark.asyncio
    async def test_mark_done_returns_previous_state(self, store: DirectStoreClient) -> None:
        previous = await store.mark_todo_done("todo_1")

        assert previous.done is False
        todo = next(t for t in await store.get_todos() if t.id == "todo_1")
        assert todo.done is True

    @pytest.mark.asyncio
    async def test_mark_undone_returns_previous_state(self, store: DirectStoreClient) -> None:
        previous = await store.mark_todo_undone("todo_2")

        assert previous.done is True
        todo = next(t for t in await store.get_todos() if t.id == "todo_2")
        assert todo.done is False

    @pytest.mark.asyncio
    async def test_missing_todo_raises_not_found(self, store: DirectStoreClient) -> None:
        with pytest.raises(NotFoundError, match="Todo not found: todo_9"):
            await store.mark_todo_done("todo_9")
        with pytest.raises(NotFoundError):
            await store.delete_todo("todo_9")

    @pytest.mark.asyncio
    async def test_delete_then_restore_todo_is_identical(self, store: DirectStoreClient) -> None:
        todo_id = await store.add_todo("list_1", "Cheese", {"notes": "cheddar", "amount": 3})
        before = next(t for t in await store.get_todos() if t.id == todo_id)

        deleted = await store.delete_todo(todo_id)
        assert todo_id not in {t.id for t in await store.get_todos()}

        await store.restore_todo(deleted)
        after = next(t for t in await store.get_todos() if t.id == todo_id)
        assert after == before


class TestBatches:
    """Tests for batch operations."""

    @pytest.mark.asyncio
    async def test_batch_add_returns_ids_in_order(self, store: DirectStoreClient) -> None:
        ids = await store.batch_add_todos(
            "list_2",
            [BatchAddItem(text="One"), BatchAddItem(text="Two", fields={"category": "x"})],
        )

        assert len(ids) == 2
        todos = {t.id: t for t in await store.get_todos("list_2")}
        assert todos[ids[0]].text == "One"
        assert todos[ids[1]].category == "x"

    @pytest.mark.asyncio
    async def test_batch_add_is_one_change_set(self, store: DirectStoreClient, tables) -> None:
        batches = []
        tables.add_listener(batches.append)

        await store.batch_add_todos("list_2", [BatchAddItem(text="One"), BatchAddItem(text="Two")])

        assert len(batches) == 1
        assert len(batches[0]) == 2

    @pytest.mark.asyncio
    async def test_batch_update_skips_missing_ids(self, store: DirectStoreClient) -> None:
        results = await store.batch_update_todos([
            BatchUpdateItem(id="todo_1", fields={"done": True}),
            BatchUpdateItem(id="todo_9", fields={"done": True}),
        ])

        assert [r.id for r in results] == ["todo_1"]
        assert results[0].previous_fields == {"done": False}

    @pytest.mark.asyncio
    async def test_batch_delete_skips_missing_ids(self, store: DirectStoreClient) -> None:
        await store.batch_delete_todos(["todo_1", "todo_9"])

        assert {t.id for t in await store.get_todos()} == {"todo_2", "todo_3"}
