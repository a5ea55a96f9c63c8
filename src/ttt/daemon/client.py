"""
ttt Daemon Client - StoreClient that forwards every call to the daemon.

The CLI uses this client whenever it can. connect() makes the daemon
transparent:
- A daemon is already listening: ping it and compare versions. A daemon from
  an older (or newer) install, or one that does not answer ping, is asked to
  shut down and a fresh one is spawned.
- Nothing is listening: spawn a detached daemon and wait for its readiness
  signal (unless auto_start=False, which fails with DaemonNotRunningError).

Requests are correlated by id, so responses may arrive in any order. If the
socket closes, every outstanding call fails with ConnectionClosedError and the
caller falls back to a direct connection (see ttt.core.factory).

Error responses carry only a message. Messages the store raises for missing
rows or credentials are turned back into NotFoundError and AuthError, so the
proxy fails the same way a direct client does.
"""

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .. import __version__
from ..config import Settings, settings as default_settings
from ..core.interfaces import StoreClient
from ..core.models import (
    BatchAddItem,
    BatchUpdateItem,
    ListUpdateResult,
    Todo,
    TodoList,
    TodoUpdateResult,
)
from ..errors import (
    AuthError,
    ConnectionClosedError,
    DaemonNotRunningError,
    NotFoundError,
    OperationTimeoutError,
    ProtocolError,
    RemoteCallError,
    TttError,
    VersionMismatchError,
)
from .protocol import MAX_LINE_BYTES, Request, decode_response, encode_message, to_wire

logger = logging.getLogger(__name__)

Spawner = Callable[[], Awaitable[None]]

NOT_FOUND_PREFIXES = ("List not found:", "Todo not found:")
AUTH_PREFIXES = ("Not logged in", "Session rejected")


def remote_error(message: str) -> TttError:
    """Rebuild the error a daemon response stands for from its message."""
    if message.startswith(NOT_FOUND_PREFIXES):
        return NotFoundError(message)
    if message.startswith(AUTH_PREFIXES):
        return AuthError(message)
    return RemoteCallError(message)


class DaemonClient(StoreClient):
    """
    Client for communicating with the ttt daemon over its Unix socket.

    One socket per CLI invocation; disconnect() closes only that socket and
    never stops the daemon.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        version: str = __version__,
        spawner: Optional[Spawner] = None,
    ):
        """
        Initialize daemon client.

        Args:
            settings: Paths and timeouts (default: global settings)
            version: Version the daemon must report, normally the installed package version
            spawner: Coroutine function that starts a daemon and returns once it is ready
        """
        self.settings = settings or default_settings
        self.version = version
        if spawner is None:
            from .manager import DaemonManager
            spawner = DaemonManager(self.settings).spawn
        self._spawner = spawner

        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._read_task: Optional[asyncio.Task] = None
        self._write_lock = asyncio.Lock()
        self._pending: Dict[str, asyncio.Future] = {}

    @property
    def connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    # Connection ------------------------------------------------------------------

    async def connect(self, auto_start: bool = True) -> None:
        try:
            await self._open_socket()
        except (OSError, OperationTimeoutError) as e:
            if not auto_start:
                raise DaemonNotRunningError("Daemon is not running") from e
            logger.debug(f"No daemon at {self.settings.socket_path} ({e}), spawning one")
            await self._spawner()
            await self._open_socket()
            return

        try:
            await self._check_version()
        except VersionMismatchError as e:
            logger.info(f"{e}, restarting daemon")
            await self.shutdown()
            await self.disconnect()
            # Let the old daemon finish removing its files before the new one binds
            await asyncio.sleep(self.settings.restart_delay)
        except TttError as e:
            # A daemon that cannot answer ping cannot answer shutdown either.
            # The replacement binds a fresh socket and the old one idles out.
            await self.disconnect()
            if not auto_start:
                raise DaemonNotRunningError(f"Daemon is not responding: {e}") from e
            logger.warning(f"Daemon did not answer ping ({e}), restarting daemon")
        else:
            return

        await self._spawner()
        await self._open_socket()

    async def _check_version(self) -> None:
        info = await self.ping()
        if not isinstance(info, dict):
            raise ProtocolError(f"Unexpected ping result: {info!r}")
        daemon_version = info.get("protocolVersion")
        if daemon_version != self.version:
            raise VersionMismatchError(
                f"Daemon version {daemon_version} does not match client version {self.version}"
            )

    async def _open_socket(self) -> None:
        path = str(self.settings.socket_path)
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_unix_connection(path, limit=MAX_LINE_BYTES),
                timeout=self.settings.socket_connect_timeout,
            )
        except asyncio.TimeoutError:
            raise OperationTimeoutError("Socket connect timeout") from None

        self._reader, self._writer = reader, writer
        self._read_task = asyncio.create_task(self._read_responses(reader, writer))

    async def disconnect(self) -> None:
        writer, self._writer = self._writer, None
        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass

        if self._read_task is not None:
            self._read_task.cancel()
            try:
                await self._read_task
            except asyncio.CancelledError:
                pass
            self._read_task = None

        self._reader = None
        self._fail_pending(ConnectionClosedError("Daemon connection closed"))

    async def _read_responses(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        """Route each response line to the call waiting for its id."""
        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                if not line.strip():
                    continue

                try:
                    response = decode_response(line)
                except ProtocolError as e:
                    logger.debug(f"Ignoring malformed response: {e}")
                    continue

                future = self._pending.pop(response.id, None)
                if future is None or future.done():
                    continue
                if response.error is not None:
                    future.set_exception(remote_error(response.error))
                else:
                    future.set_result(response.result)
        except (ConnectionError, ValueError) as e:
            logger.debug(f"Daemon socket error: {e}")
        finally:
            self._fail_pending(ConnectionClosedError("Daemon connection closed"))
            if self._writer is writer:
                self._writer = None
                writer.close()

    def _fail_pending(self, error: TttError) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)

    # Calls -------------------------------------------------------------------------

    async def call(self, method: str, *args: Any) -> Any:
        """
        Send one request and wait for its response.

        Raises:
            NotFoundError, AuthError: The daemon relayed a store error of that kind
            RemoteCallError: The daemon answered with any other error
            OperationTimeoutError: No answer within request_timeout
            ConnectionClosedError: Not connected, or the socket closed while waiting
        """
        writer = self._writer
        if writer is None or writer.is_closing():
            raise ConnectionClosedError("Not connected to daemon")

        request = Request(id=uuid.uuid4().hex, method=method, args=list(args))
        future = asyncio.get_running_loop().create_future()
        self._pending[request.id] = future

        try:
            async with self._write_lock:
                writer.write(encode_message(request))
                await writer.drain()
            return await asyncio.wait_for(future, timeout=self.settings.request_timeout)
        except asyncio.TimeoutError:
            raise OperationTimeoutError(f"Request timed out: {method}") from None
        except ConnectionError as e:
            raise ConnectionClosedError("Daemon connection closed") from e
        finally:
            self._pending.pop(request.id, None)

    async def ping(self) -> Dict[str, Any]:
        """Returns {pid, uptimeSeconds, protocolVersion}."""
        return await self.call("ping")

    async def shutdown(self) -> None:
        """Ask the daemon to exit."""
        try:
            await self.call("shutdown")
        except TttError as e:
            # The daemon may close the socket before the answer arrives
            logger.debug(f"Shutdown request ended with: {e}")

    # StoreClient -------------------------------------------------------------------

    async def get_lists(self) -> List[TodoList]:
        return [TodoList.model_validate(item) for item in await self.call("getLists")]

    async def get_todos(self, list_id: Optional[str] = None) -> List[Todo]:
        return [Todo.model_validate(item) for item in await self.call("getTodos", list_id)]

    async def find_list_by_name_or_id(self, name_or_id: str) -> Optional[TodoList]:
        result = await self.call("findListByNameOrId", name_or_id)
        return TodoList.model_validate(result) if result is not None else None

    async def create_list(
        self,
        name: str,
        color: Optional[str] = None,
        type: Optional[str] = None,
        icon: Optional[str] = None,
    ) -> str:
        options = {k: v for k, v in {"color": color, "type": type, "icon": icon}.items() if v is not None}
        return await self.call("createList", name, options)

    async def update_list(self, list_id: str, fields: Dict[str, Any]) -> ListUpdateResult:
        return ListUpdateResult.model_validate(await self.call("updateList", list_id, fields))

    async def delete_list(self, list_id: str) -> TodoList:
        return TodoList.model_validate(await self.call("deleteList", list_id))

    async def restore_list(self, todo_list: TodoList) -> None:
        await self.call("restoreList", to_wire(todo_list))

    async def add_todo(
        self, list_id: str, text: str, fields: Optional[Dict[str, Any]] = None
    ) -> str:
        return await self.call("addTodo", list_id, text, fields or {})

    async def update_todo(self, todo_id: str, fields: Dict[str, Any]) -> TodoUpdateResult:
        return TodoUpdateResult.model_validate(await self.call("updateTodo", todo_id, fields))

    async def mark_todo_done(self, todo_id: str) -> Todo:
        return Todo.model_validate(await self.call("markTodoDone", todo_id))

    async def mark_todo_undone(self, todo_id: str) -> Todo:
        return Todo.model_validate(await self.call("markTodoUndone", todo_id))

    async def delete_todo(self, todo_id: str) -> Todo:
        return Todo.model_validate(await self.call("deleteTodo", todo_id))

    async def batch_add_todos(self, list_id: str, items: List[BatchAddItem]) -> List[str]:
        return await self.call("batchAddTodos", list_id, to_wire(items))

    async def batch_update_todos(self, updates: List[BatchUpdateItem]) -> List[TodoUpdateResult]:
        results = await self.call("batchUpdateTodos", to_wire(updates))
        return [TodoUpdateResult.model_validate(item) for item in results]

    async def batch_delete_todos(self, todo_ids: List[str]) -> None:
        await self.call("batchDeleteTodos", list(todo_ids))

    async def restore_todo(self, todo: Todo) -> None:
        await self.call("restoreTodo", to_wire(todo))
