from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .models import (
    BatchAddItem,
    BatchUpdateItem,
    ListUpdateResult,
    Todo,
    TodoList,
    TodoUpdateResult,
)


class StoreClient(ABC):
    """
    Lists and todos in the remote store.

    Implemented by DirectStoreClient (one live connection per process) and
    DaemonClient (forwards every call to the background daemon). Callers depend
    only on this interface.
    """

    @abstractmethod
    async def connect(self) -> None: ...

    @abstractmethod
    async def disconnect(self) -> None: ...

    @abstractmethod
    async def get_lists(self) -> List[TodoList]: ...

    @abstractmethod
    async def get_todos(self, list_id: Optional[str] = None) -> List[Todo]: ...

    @abstractmethod
    async def find_list_by_name_or_id(self, name_or_id: str) -> Optional[TodoList]:
        """Exact id or case-insensitive name; first match in store order."""
        ...

    @abstractmethod
    async def create_list(
        self,
        name: str,
        color: Optional[str] = None,
        type: Optional[str] = None,
        icon: Optional[str] = None,
    ) -> str: ...

    @abstractmethod
    async def update_list(self, list_id: str, fields: Dict[str, Any]) -> ListUpdateResult: ...

    @abstractmethod
    async def delete_list(self, list_id: str) -> TodoList:
        """Remove a list and return the full deleted record."""
        ...

    @abstractmethod
    async def restore_list(self, todo_list: TodoList) -> None:
        """Re-insert a list under its previous id. Used by undo."""
        ...

    @abstractmethod
    async def add_todo(
        self, list_id: str, text: str, fields: Optional[Dict[str, Any]] = None
    ) -> str: ...

    @abstractmethod
    async def update_todo(self, todo_id: str, fields: Dict[str, Any]) -> TodoUpdateResult: ...

    @abstractmethod
    async def mark_todo_done(self, todo_id: str) -> Todo:
        """Set done and return the whole record as it was before."""
        ...

    @abstractmethod
    async def mark_todo_undone(self, todo_id: str) -> Todo: ...

    @abstractmethod
    async def delete_todo(self, todo_id: str) -> Todo: ...

    @abstractmethod
    async def batch_add_todos(self, list_id: str, items: List[BatchAddItem]) -> List[str]: ...

    @abstractmethod
    async def batch_update_todos(self, updates: List[BatchUpdateItem]) -> List[TodoUpdateResult]:
        """Unknown ids are skipped, so the result may be shorter than `updates`."""
        ...

    @abstractmethod
    async def batch_delete_todos(self, todo_ids: List[str]) -> None: ...

    @abstractmethod
    async def restore_todo(self, todo: Todo) -> None: ...
