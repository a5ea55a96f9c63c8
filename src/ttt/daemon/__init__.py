"""
ttt Daemon Package - Long-lived store connection shared by CLI invocations.

The daemon provides:
- One live connection to the remote store (no connect/sync cost per CLI call)
- A Unix socket speaking newline-delimited JSON
- Idle shutdown after 30 minutes without requests

Key principle: every command works without the daemon; the CLI falls back to a
direct connection whenever it cannot be reached.

Components:
- server.py: socket server and request handling
- dispatch.py: wire method name -> StoreClient call
- protocol.py: request/response framing
- client.py: StoreClient that forwards calls to the daemon
- manager.py: process lifecycle management (spawn/start/stop/status)
"""

from .client import DaemonClient
from .manager import DaemonManager

__all__ = ["DaemonClient", "DaemonManager"]
