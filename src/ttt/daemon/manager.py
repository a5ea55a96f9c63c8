"""
ttt Daemon Manager - Process lifecycle management for the daemon.

Spawns the daemon as a detached background process, and provides the
start/stop/status operations behind `ttt daemon ...`. The daemon writes its
PID and version next to its socket; this manager reads them for status and
cleans them up when the process is gone.
"""

import asyncio
import logging
import os
import signal
import subprocess
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config import Settings, settings as default_settings
from ..errors import DaemonSpawnError, OperationTimeoutError, TttError
from .server import READY_FD_ENV, READY_MESSAGE

logger = logging.getLogger(__name__)


class DaemonManager:
    """
    Manages the ttt daemon process lifecycle.

    The daemon runs as a background process in its own session so it outlives
    the CLI invocation that started it.
    """

    def __init__(self, settings: Optional[Settings] = None, command: Optional[List[str]] = None):
        """
        Initialize daemon manager.

        Args:
            settings: Paths and timeouts (default: global settings)
            command: Daemon command line (default: this interpreter running ttt.daemon)
        """
        self.settings = settings or default_settings
        self.command = command or [sys.executable, "-m", "ttt.daemon"]

    def _read_pid(self) -> Optional[int]:
        """Read PID from file, returns None if not found or invalid."""
        pid_file = self.settings.pid_path
        if not pid_file.exists():
            return None

        try:
            with open(pid_file, "r") as f:
                pid_str = f.read().strip()
                if pid_str:
                    return int(pid_str)
        except (ValueError, IOError) as e:
            logger.debug(f"Error reading PID file: {e}")

        return None

    def _read_version(self) -> Optional[str]:
        try:
            return self.settings.version_path.read_text().strip() or None
        except OSError:
            return None

    def _remove_stale_files(self) -> None:
        for path in (self.settings.pid_path, self.settings.version_path):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.debug(f"Error removing {path}: {e}")

    def _is_process_running(self, pid: int) -> bool:
        """Check if a process with given PID is running."""
        try:
            os.kill(pid, 0)  # Signal 0 doesn't kill, just checks
            return True
        except OSError:
            return False

    async def spawn(self) -> None:
        """
        Start a detached daemon and wait for its readiness signal.

        The daemon writes READY_MESSAGE to an inherited pipe once it is
        listening. The child's stdout/stderr go to the daemon log, never to
        the pipe.

        Raises:
            OperationTimeoutError: No readiness signal within spawn_timeout
            DaemonSpawnError: The process could not start or exited first
        """
        self.settings.ensure_config_dir()
        read_fd, write_fd = os.pipe()

        try:
            with open(self.settings.log_path, "a") as log:
                log.write(f"\n{'=' * 60}\n")
                log.write(f"Starting daemon at {time.strftime('%Y-%m-%d %H:%M:%S')}\n")
                log.write(f"Command: {' '.join(self.command)}\n")
                log.write(f"{'=' * 60}\n")
                log.flush()

                process = subprocess.Popen(
                    self.command,
                    stdout=log,
                    stderr=log,
                    stdin=subprocess.DEVNULL,
                    start_new_session=True,  # Detach from parent
                    cwd=str(Path.home()),
                    pass_fds=(write_fd,),
                    env={**os.environ, READY_FD_ENV: str(write_fd)},
                )
        except OSError as e:
            os.close(read_fd)
            raise DaemonSpawnError(f"Failed to spawn daemon: {e}") from e
        finally:
            # Only the child keeps the write end; EOF then means it exited
            os.close(write_fd)

        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        transport, _ = await loop.connect_read_pipe(
            lambda: asyncio.StreamReaderProtocol(reader),
            os.fdopen(read_fd, "rb", buffering=0),
        )

        try:
            line = await asyncio.wait_for(reader.readline(), timeout=self.settings.spawn_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Daemon (pid {process.pid}) not ready after {self.settings.spawn_timeout}s")
            process.terminate()
            try:
                process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()
            raise OperationTimeoutError("Daemon spawn timeout") from None
        finally:
            transport.close()

        if line != READY_MESSAGE:
            code = process.poll()
            raise DaemonSpawnError(
                f"Daemon exited during startup with code {code}. Check {self.settings.log_path}"
            )

        logger.info(f"Daemon started (pid {process.pid})")

    async def start(self) -> Dict[str, Any]:
        """
        Start the daemon if needed.

        Returns:
            Dict with success, message, and pid.
        """
        from .client import DaemonClient

        client = DaemonClient(self.settings, spawner=self.spawn)
        try:
            await client.connect()
            info = await client.ping()
        except TttError as e:
            return {
                "success": False,
                "message": f"Failed to start daemon: {e}",
                "pid": None,
            }
        finally:
            await client.disconnect()

        return {
            "success": True,
            "message": f"Daemon running (pid {info['pid']})",
            "pid": info["pid"],
        }

    async def stop(self) -> Dict[str, Any]:
        """
        Stop the daemon process.

        Asks the daemon to shut down over its socket. If the socket is gone but
        the PID file names a live process, sends SIGTERM instead.

        Returns:
            Dict with success and message.
        """
        from .client import DaemonClient

        client = DaemonClient(self.settings, spawner=self.spawn)
        try:
            await client.connect(auto_start=False)
            await client.shutdown()
            return {"success": True, "message": "Daemon stopped"}
        except TttError as e:
            logger.debug(f"Daemon socket unavailable: {e}")
        finally:
            await client.disconnect()

        pid = self._read_pid()
        if not pid:
            return {
                "success": False,
                "message": "Daemon is not running",
            }

        if not self._is_process_running(pid):
            self._remove_stale_files()
            return {
                "success": True,
                "message": "Daemon was not running (cleaned up stale PID file)",
            }

        try:
            os.kill(pid, signal.SIGTERM)
        except OSError as e:
            return {
                "success": False,
                "message": f"Failed to send SIGTERM: {e}",
            }

        return {
            "success": True,
            "message": f"Sent SIGTERM to daemon (pid {pid})",
        }

    async def status(self) -> Dict[str, Any]:
        """
        Get daemon status without starting one.

        Returns:
            Dict with running state and details.
        """
        from .client import DaemonClient

        client = DaemonClient(self.settings, spawner=self.spawn)
        try:
            await client.connect(auto_start=False)
            info = await client.ping()
            return {
                "running": True,
                "pid": info.get("pid"),
                "uptime_seconds": info.get("uptimeSeconds", 0),
                "version": info.get("protocolVersion"),
            }
        except TttError as e:
            logger.debug(f"Daemon not reachable: {e}")
        finally:
            await client.disconnect()

        pid = self._read_pid()
        if pid and self._is_process_running(pid):
            return {
                "running": False,
                "pid": pid,
                "version": self._read_version(),
                "message": "Process exists but not responding",
            }

        if pid:
            self._remove_stale_files()
            return {
                "running": False,
                "pid": None,
                "stale_pid": pid,
                "message": "Daemon not running",
            }

        return {
            "running": False,
            "pid": None,
            "message": "Daemon not running",
        }
