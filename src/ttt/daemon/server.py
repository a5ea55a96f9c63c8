"""
ttt Daemon Server - background process holding one live store connection.

The daemon listens on a Unix socket in the config directory and serves
newline-delimited JSON requests (see protocol.py) from short-lived CLI
invocations, so each command skips the connect-and-sync cost.

Lifecycle:
- Startup: connect the store, remove any stale socket file, bind, write the
  PID and version files, then signal readiness to the spawning CLI through the
  pipe named by TTT_DAEMON_READY_FD.
- Requests run as independent tasks, so pipelined requests on one connection
  may be answered out of order; the correlation id links them.
- Shutdown (SIGTERM, SIGINT, idle timeout, or the `shutdown` method) is
  idempotent: stop accepting, close the store, remove socket/PID/version files.

All mutable daemon state lives in one DaemonState owned by run_daemon() and
passed to every handler.
"""

import asyncio
import logging
import os
import signal
import sys
import time
from typing import Optional, Set

from .. import __version__
from ..config import Settings, settings as default_settings
from ..core.interfaces import StoreClient
from ..core.store import DirectStoreClient
from ..errors import ProtocolError, TttError
from .dispatch import STORE_METHODS
from .protocol import (
    MAX_LINE_BYTES,
    Request,
    Response,
    decode_request,
    encode_message,
    request_id_of,
)

logger = logging.getLogger(__name__)

READY_FD_ENV = "TTT_DAEMON_READY_FD"
READY_MESSAGE = b"ready\n"


# =============================================================================
# Daemon State
# =============================================================================

class DaemonState:
    """Everything the running daemon mutates."""

    def __init__(self, client: StoreClient, settings: Settings, version: str = __version__):
        self.settings = settings
        self.client = client
        self.version = version
        self.start_time: float = time.time()
        self.last_activity: float = time.monotonic()
        self.server: Optional[asyncio.AbstractServer] = None
        self.socket_inode: Optional[int] = None
        self.connections: Set[asyncio.StreamWriter] = set()
        self.tasks: Set[asyncio.Task] = set()
        self.stopped: asyncio.Event = asyncio.Event()
        self.shutting_down: bool = False

    @property
    def uptime_seconds(self) -> int:
        return int(time.time() - self.start_time)

    @property
    def idle_seconds(self) -> float:
        return time.monotonic() - self.last_activity

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    def spawn(self, coro) -> asyncio.Task:
        """Run a background task, keeping a reference until it finishes."""
        task = asyncio.get_running_loop().create_task(coro)
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task


# =============================================================================
# Request Handling
# =============================================================================

async def handle_request(state: DaemonState, request: Request) -> Response:
    """Run one request and build its response. Never raises."""
    state.touch()

    if request.method == "ping":
        return Response(id=request.id, result={
            "pid": os.getpid(),
            "uptimeSeconds": state.uptime_seconds,
            "protocolVersion": state.version,
        })

    if request.method == "shutdown":
        # Answer first; the delay lets the response reach the client
        asyncio.get_running_loop().call_later(
            state.settings.shutdown_flush_delay, lambda: state.spawn(shutdown(state))
        )
        return Response(id=request.id, result={"ok": True})

    handler = STORE_METHODS.get(request.method)
    if handler is None:
        return Response(id=request.id, error=f"Unknown method: {request.method}")

    try:
        result = await handler(state.client, *request.args)
    except Exception as e:
        logger.debug(f"{request.method} failed: {e}")
        return Response(id=request.id, error=str(e) or type(e).__name__)

    return Response(id=request.id, result=result)


async def _send(writer: asyncio.StreamWriter, lock: asyncio.Lock, response: Response) -> None:
    async with lock:
        if writer.is_closing():
            return
        writer.write(encode_message(response))
        try:
            await writer.drain()
        except ConnectionError as e:
            logger.debug(f"Client went away before response {response.id}: {e}")


async def _respond(state: DaemonState, request: Request, writer: asyncio.StreamWriter, lock: asyncio.Lock) -> None:
    response = await handle_request(state, request)
    await _send(writer, lock, response)


async def handle_connection(state: DaemonState, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    """Serve one client connection until it closes."""
    state.connections.add(writer)
    lock = asyncio.Lock()
    in_flight: Set[asyncio.Task] = set()

    try:
        while True:
            try:
                line = await reader.readline()
            except ValueError:
                logger.warning("Request line exceeds limit, closing connection")
                break
            except ConnectionError:
                break

            if not line:
                break
            if not line.strip():
                continue

            try:
                request = decode_request(line)
            except ProtocolError as e:
                await _send(writer, lock, Response(id=request_id_of(line), error=str(e)))
                continue

            task = state.spawn(_respond(state, request, writer, lock))
            in_flight.add(task)
            task.add_done_callback(in_flight.discard)

        # Client stopped sending; finish what it already asked for
        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)
    finally:
        state.connections.discard(writer)
        writer.close()


# =============================================================================
# Lifecycle
# =============================================================================

async def start_daemon(state: DaemonState) -> None:
    """Bind the socket and write the PID and version files."""
    settings = state.settings
    settings.ensure_config_dir()
    socket_path = settings.socket_path

    # Stale socket from a daemon that did not shut down cleanly
    socket_path.unlink(missing_ok=True)

    state.server = await asyncio.start_unix_server(
        lambda r, w: handle_connection(state, r, w),
        path=str(socket_path),
        limit=MAX_LINE_BYTES,
    )
    os.chmod(socket_path, 0o600)
    state.socket_inode = socket_path.stat().st_ino

    settings.pid_path.write_text(str(os.getpid()))
    settings.version_path.write_text(state.version)
    logger.info(f"ttt daemon {state.version} listening on {socket_path} (pid {os.getpid()})")


def _pid_file_is_ours(state: DaemonState) -> bool:
    try:
        content = state.settings.pid_path.read_text().strip()
    except FileNotFoundError:
        return True
    return content == str(os.getpid())


def _remove_files(state: DaemonState) -> None:
    if state.socket_inode is None:
        # Never bound: the files on disk belong to some other daemon
        return

    socket_path = state.settings.socket_path
    try:
        if socket_path.stat().st_ino == state.socket_inode:
            socket_path.unlink(missing_ok=True)
    except FileNotFoundError:
        pass

    if _pid_file_is_ours(state):
        state.settings.pid_path.unlink(missing_ok=True)
        state.settings.version_path.unlink(missing_ok=True)


async def shutdown(state: DaemonState) -> None:
    """Stop the daemon. Safe to call from several triggers at once."""
    if state.shutting_down:
        return
    state.shutting_down = True
    logger.info("ttt daemon shutting down...")

    if state.server is not None:
        state.server.close()
    for writer in list(state.connections):
        writer.close()

    try:
        await state.client.disconnect()
    except Exception as e:
        logger.warning(f"Error closing store connection: {e}")

    try:
        _remove_files(state)
    except OSError as e:
        logger.warning(f"Error removing daemon files: {e}")

    state.stopped.set()


async def check_idle(state: DaemonState) -> bool:
    """Shut down if no request arrived within idle_timeout. Returns True if it did."""
    idle = state.idle_seconds
    if idle < state.settings.idle_timeout:
        return False
    logger.info(f"Idle for {idle:.0f}s, shutting down")
    await shutdown(state)
    return True


async def watch_idle(state: DaemonState) -> None:
    """Periodic idle check; runs until the daemon stops."""
    while not state.stopped.is_set():
        try:
            await asyncio.wait_for(
                state.stopped.wait(),
                timeout=state.settings.idle_check_interval,
            )
            break
        except asyncio.TimeoutError:
            pass
        await check_idle(state)


def signal_ready(fd: int) -> None:
    """Tell the spawning process we are accepting connections."""
    try:
        os.write(fd, READY_MESSAGE)
    finally:
        os.close(fd)


async def run_daemon(settings: Optional[Settings] = None, client: Optional[StoreClient] = None) -> int:
    """
    Run the daemon until it shuts down.

    Returns:
        Process exit code: 0 after a normal shutdown, 1 if startup failed.
    """
    settings = settings or default_settings
    state = DaemonState(client or DirectStoreClient(settings), settings)

    try:
        await state.client.connect()
    except TttError as e:
        logger.error(f"Daemon failed to connect to the store: {e}")
        return 1

    try:
        await start_daemon(state)
    except OSError as e:
        logger.error(f"Daemon failed to bind {settings.socket_path}: {e}")
        await shutdown(state)
        return 1

    ready_fd = os.environ.pop(READY_FD_ENV, None)
    if ready_fd:
        signal_ready(int(ready_fd))

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(signum, lambda: state.spawn(shutdown(state)))

    state.spawn(watch_idle(state))
    await state.stopped.wait()

    logger.info("ttt daemon stopped")
    return 0


# =============================================================================
# Entry Point
# =============================================================================

def main() -> None:
    """Run the daemon process (spawned as `python -m ttt.daemon`)."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    sys.exit(asyncio.run(run_daemon()))


if __name__ == "__main__":
    main()
