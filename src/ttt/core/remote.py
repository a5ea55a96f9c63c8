"""
Remote table store - the `lists` and `todos` tables mirrored locally.

The remote service is an authenticated multi-writer table database. The client
keeps a full local mirror, applies its own writes to the mirror first (so a
process always reads its own writes), and pushes them to the server. Changes
made by other writers arrive over a long-lived NDJSON stream.

Change messages (stream and push use the same shapes):
- {"op": "snapshot", "tables": {"lists": {...}, "todos": {...}}}
- {"op": "setRow", "table": "todos", "rowId": "...", "row": {...}}
- {"op": "setCell", "table": "todos", "rowId": "...", "cell": "done", "value": true}
- {"op": "delRow", "table": "todos", "rowId": "..."}

There is no server-side completion signal for "initial sync finished"; the
first stream message is treated as initial data.

The hosted worker that `server_url` defaults to uses a WebSocket sync protocol,
not this stream. Point `TTT_SERVER_URL` at a server that serves
`GET /sync/<org>/stream` and `POST /sync/<org>/changes`.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional

import httpx

from ..credentials import Credentials
from ..errors import AuthError, OperationTimeoutError, ProtocolError, TttError

logger = logging.getLogger(__name__)

TABLES = ("lists", "todos")

Row = Dict[str, Any]
Change = Dict[str, Any]
Listener = Callable[[List[Change]], None]


def set_row_change(table: str, row_id: str, row: Row) -> Change:
    return {"op": "setRow", "table": table, "rowId": row_id, "row": row}


def set_cell_change(table: str, row_id: str, cell: str, value: Any) -> Change:
    return {"op": "setCell", "table": table, "rowId": row_id, "cell": cell, "value": value}


def delete_row_change(table: str, row_id: str) -> Change:
    return {"op": "delRow", "table": table, "rowId": row_id}


class TableStore:
    """
    Local mirror of the remote tables.

    This base class is purely in-memory (used offline and in tests);
    HttpTableStore adds the live connection.
    """

    def __init__(self, tables: Optional[Dict[str, Dict[str, Row]]] = None):
        self._tables: Dict[str, Dict[str, Row]] = {name: {} for name in TABLES}
        self._listeners: List[Listener] = []
        if tables:
            self._replace(tables)

    async def connect(self) -> None:
        """Open the connection. The in-memory store has nothing to open."""

    async def close(self) -> None:
        """Close the connection."""

    # Reads -------------------------------------------------------------------

    def get_tables(self) -> Dict[str, Dict[str, Row]]:
        return {name: self.get_table(name) for name in self._tables}

    def get_table(self, table: str) -> Dict[str, Row]:
        return {row_id: dict(row) for row_id, row in self._tables.get(table, {}).items()}

    def get_row(self, table: str, row_id: str) -> Optional[Row]:
        row = self._tables.get(table, {}).get(row_id)
        return dict(row) if row is not None else None

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Subscribe to change batches. Returns a function that unsubscribes."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # Writes ------------------------------------------------------------------

    async def set_row(self, table: str, row_id: str, row: Row) -> None:
        await self.apply([set_row_change(table, row_id, row)])

    async def set_cell(self, table: str, row_id: str, cell: str, value: Any) -> None:
        await self.apply([set_cell_change(table, row_id, cell, value)])

    async def delete_row(self, table: str, row_id: str) -> None:
        await self.apply([delete_row_change(table, row_id)])

    async def apply(self, changes: List[Change]) -> None:
        """Apply changes as one unit locally, then push them."""
        if not changes:
            return
        self._apply_local(changes)
        await self._push(changes)

    async def _push(self, changes: List[Change]) -> None:
        pass

    # Internals ---------------------------------------------------------------

    def _replace(self, tables: Dict[str, Dict[str, Row]]) -> None:
        self._tables = {name: {} for name in TABLES}
        for name, rows in tables.items():
            self._tables[name] = {
                row_id: {k: v for k, v in row.items() if v is not None}
                for row_id, row in rows.items()
            }

    def _apply_local(self, changes: List[Change]) -> None:
        for change in changes:
            op = change.get("op")
            if op == "snapshot":
                self._replace(change.get("tables") or {})
                continue

            table = self._tables.setdefault(change["table"], {})
            row_id = change["rowId"]
            if op == "setRow":
                table[row_id] = {k: v for k, v in change["row"].items() if v is not None}
            elif op == "setCell":
                row = table.setdefault(row_id, {})
                if change["value"] is None:
                    row.pop(change["cell"], None)
                else:
                    row[change["cell"]] = change["value"]
            elif op == "delRow":
                table.pop(row_id, None)
            else:
                raise ProtocolError(f"Unknown change op: {op}")

        for listener in list(self._listeners):
            listener(changes)


class MemoryTableStore(TableStore):
    """Mirror with no server behind it. Seed it with `tables`."""


class HttpTableStore(TableStore):
    """
    Live connection to the remote store over one persistent httpx.AsyncClient.

    connect() returns once the first stream message has been applied. If the
    stream drops later it is re-opened after `reconnect_delay`.
    """

    def __init__(
        self,
        server_url: str,
        credentials: Credentials,
        connect_timeout: float = 10.0,
        reconnect_delay: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__()
        self.base_url = f"{server_url.rstrip('/')}/sync/{credentials.org_id}"
        self.connect_timeout = connect_timeout
        self.reconnect_delay = reconnect_delay
        self._token = credentials.session_token
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._stream_task: Optional[asyncio.Task] = None
        self._ready: Optional[asyncio.Event] = None
        self._failure: Optional[Exception] = None
        self._closed = False

    async def connect(self) -> None:
        self._closed = False
        self._failure = None
        self._ready = asyncio.Event()
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=30.0,
            headers={
                "Authorization": f"Bearer {self._token}",
                "Content-Type": "application/json",
            },
            transport=self._transport,
        )
        self._stream_task = asyncio.create_task(self._run_stream())

        try:
            await asyncio.wait_for(self._ready.wait(), timeout=self.connect_timeout)
        except asyncio.TimeoutError:
            await self.close()
            raise OperationTimeoutError("Connection timeout") from None

        if self._failure is not None:
            failure = self._failure
            await self.close()
            raise failure

        logger.info(f"Connected to {self.base_url}")

    async def close(self) -> None:
        self._closed = True
        if self._stream_task and not self._stream_task.done():
            self._stream_task.cancel()
            try:
                await self._stream_task
            except asyncio.CancelledError:
                pass
        self._stream_task = None
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _run_stream(self) -> None:
        stream_timeout = httpx.Timeout(self.connect_timeout, read=None)
        while not self._closed:
            try:
                async with self._client.stream("GET", "/stream", timeout=stream_timeout) as response:
                    if response.status_code in (401, 403):
                        raise AuthError("Session rejected by the server. Run 'ttt auth set-token' again.")
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        self._apply_local([_parse_message(line)])
                        self._ready.set()
                logger.warning("Remote stream ended, reconnecting")
            except AuthError as e:
                self._fail(e)
                return
            except (httpx.HTTPError, ProtocolError, KeyError) as e:
                if not self._ready.is_set():
                    self._fail(TttError(f"Connection to {self.base_url} failed: {e}"))
                    return
                logger.warning(f"Remote stream error, reconnecting: {e}")

            await asyncio.sleep(self.reconnect_delay)

    def _fail(self, error: Exception) -> None:
        self._failure = error
        self._ready.set()

    async def _push(self, changes: List[Change]) -> None:
        if self._client is None:
            raise TttError("Not connected to the remote store")
        try:
            response = await self._client.post("/changes", json={"changes": changes})
        except httpx.HTTPError as e:
            raise TttError(f"Failed to push changes: {e}") from e

        if response.status_code in (401, 403):
            raise AuthError("Session rejected by the server. Run 'ttt auth set-token' again.")
        if response.is_error:
            raise TttError(f"Failed to push changes: HTTP {response.status_code}: {response.text[:100]}")


def _parse_message(line: str) -> Change:
    try:
        message = json.loads(line)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Malformed stream message: {e}") from e
    if not isinstance(message, dict) or "op" not in message:
        raise ProtocolError("Stream message without op")
    return message
