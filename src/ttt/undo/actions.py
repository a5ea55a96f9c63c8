"""
Inverse actions stored in the undo ledger.

Each variant names the StoreClient call that reverses one mutating command.
The set is closed: adding an undoable command means adding a variant here,
adding it to UndoAction, and adding a branch to execute_undo().
"""

from typing import Annotated, Any, Dict, List, Literal, Union

from pydantic import Field, TypeAdapter

from ..core.interfaces import StoreClient
from ..core.models import BatchUpdateItem, Todo, TodoList, WireModel


class DeleteTodo(WireModel):
    """Undo of an add."""
    type: Literal["deleteTodo"] = "deleteTodo"
    todo_id: str


class RestoreTodo(WireModel):
    """Undo of a delete: re-insert the full record under its old id."""
    type: Literal["restoreTodo"] = "restoreTodo"
    todo: Todo


class BatchDeleteTodos(WireModel):
    type: Literal["batchDeleteTodos"] = "batchDeleteTodos"
    todo_ids: List[str]


class FieldRestore(WireModel):
    id: str
    fields: Dict[str, Any]


class RestoreFields(WireModel):
    """Undo of updates and done/undone: write back the previous field values."""
    type: Literal["restoreFields"] = "restoreFields"
    updates: List[FieldRestore]


class DeleteList(WireModel):
    type: Literal["deleteList"] = "deleteList"
    list_id: str


class RestoreList(WireModel):
    type: Literal["restoreList"] = "restoreList"
    list: TodoList


class RestoreListFields(WireModel):
    type: Literal["restoreListFields"] = "restoreListFields"
    list_id: str
    fields: Dict[str, Any]


UndoAction = Annotated[
    Union[
        DeleteTodo,
        RestoreTodo,
        BatchDeleteTodos,
        RestoreFields,
        DeleteList,
        RestoreList,
        RestoreListFields,
    ],
    Field(discriminator="type"),
]

undo_action_adapter = TypeAdapter(UndoAction)


async def execute_undo(client: StoreClient, action: UndoAction) -> None:
    """Apply one inverse action. Works the same with direct and daemon clients."""
    if isinstance(action, DeleteTodo):
        await client.delete_todo(action.todo_id)
    elif isinstance(action, RestoreTodo):
        await client.restore_todo(action.todo)
    elif isinstance(action, BatchDeleteTodos):
        await client.batch_delete_todos(action.todo_ids)
    elif isinstance(action, RestoreFields):
        await client.batch_update_todos(
            [BatchUpdateItem(id=u.id, fields=u.fields) for u in action.updates]
        )
    elif isinstance(action, DeleteList):
        await client.delete_list(action.list_id)
    elif isinstance(action, RestoreList):
        await client.restore_list(action.list)
    elif isinstance(action, RestoreListFields):
        await client.update_list(action.list_id, action.fields)
    else:
        raise TypeError(f"Unknown undo action: {action!r}")
