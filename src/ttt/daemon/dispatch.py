"""
Method table for the daemon.

Each entry adapts JSON arguments from a Request into model types, calls the
daemon's StoreClient, and returns a JSON-ready result. Argument order matches
the StoreClient signatures.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..core.interfaces import StoreClient
from ..core.models import BatchAddItem, BatchUpdateItem, Todo, TodoList
from .protocol import to_wire

Handler = Callable[..., Awaitable[Any]]


async def _get_lists(client: StoreClient) -> Any:
    return to_wire(await client.get_lists())


async def _get_todos(client: StoreClient, list_id: Optional[str] = None) -> Any:
    return to_wire(await client.get_todos(list_id))


async def _find_list_by_name_or_id(client: StoreClient, name_or_id: str) -> Any:
    return to_wire(await client.find_list_by_name_or_id(name_or_id))


async def _create_list(client: StoreClient, name: str, options: Optional[Dict[str, Any]] = None) -> Any:
    options = options or {}
    return await client.create_list(
        name,
        color=options.get("color"),
        type=options.get("type"),
        icon=options.get("icon"),
    )


async def _update_list(client: StoreClient, list_id: str, fields: Dict[str, Any]) -> Any:
    return to_wire(await client.update_list(list_id, fields))


async def _delete_list(client: StoreClient, list_id: str) -> Any:
    return to_wire(await client.delete_list(list_id))


async def _restore_list(client: StoreClient, record: Dict[str, Any]) -> Any:
    await client.restore_list(TodoList.model_validate(record))
    return None


async def _add_todo(
    client: StoreClient, list_id: str, text: str, fields: Optional[Dict[str, Any]] = None
) -> Any:
    return await client.add_todo(list_id, text, fields or {})


async def _update_todo(client: StoreClient, todo_id: str, fields: Dict[str, Any]) -> Any:
    return to_wire(await client.update_todo(todo_id, fields))


async def _mark_todo_done(client: StoreClient, todo_id: str) -> Any:
    return to_wire(await client.mark_todo_done(todo_id))


async def _mark_todo_undone(client: StoreClient, todo_id: str) -> Any:
    return to_wire(await client.mark_todo_undone(todo_id))


async def _delete_todo(client: StoreClient, todo_id: str) -> Any:
    return to_wire(await client.delete_todo(todo_id))


async def _batch_add_todos(client: StoreClient, list_id: str, items: List[Dict[str, Any]]) -> Any:
    return await client.batch_add_todos(list_id, [BatchAddItem.model_validate(item) for item in items])


async def _batch_update_todos(client: StoreClient, updates: List[Dict[str, Any]]) -> Any:
    results = await client.batch_update_todos([BatchUpdateItem.model_validate(u) for u in updates])
    return to_wire(results)


async def _batch_delete_todos(client: StoreClient, todo_ids: List[str]) -> Any:
    await client.batch_delete_todos(list(todo_ids))
    return None


async def _restore_todo(client: StoreClient, record: Dict[str, Any]) -> Any:
    await client.restore_todo(Todo.model_validate(record))
    return None


STORE_METHODS: Dict[str, Handler] = {
    "getLists": _get_lists,
    "getTodos": _get_todos,
    "findListByNameOrId": _find_list_by_name_or_id,
    "createList": _create_list,
    "updateList": _update_list,
    "deleteList": _delete_list,
    "restoreList": _restore_list,
    "addTodo": _add_todo,
    "updateTodo": _update_todo,
    "markTodoDone": _mark_todo_done,
    "markTodoUndone": _mark_todo_undone,
    "deleteTodo": _delete_todo,
    "batchAddTodos": _batch_add_todos,
    "batchUpdateTodos": _batch_update_todos,
    "batchDeleteTodos": _batch_delete_todos,
    "restoreTodo": _restore_todo,
}
