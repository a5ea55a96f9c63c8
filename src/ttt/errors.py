"""Exceptions raised by the ttt client, daemon and undo ledger."""


class TttError(Exception):
    """Base class for all ttt errors."""


class AuthError(TttError):
    """No usable credentials, or the remote store rejected them."""


class NotFoundError(TttError):
    """A list or todo id does not exist."""


class OperationTimeoutError(TttError):
    """A connect, request or daemon spawn did not finish in time."""


class ConnectionClosedError(TttError):
    """The daemon socket closed while requests were outstanding."""


class ProtocolError(TttError):
    """A wire message could not be decoded."""


class VersionMismatchError(TttError):
    """The running daemon speaks a different version than this client."""


class DaemonNotRunningError(TttError):
    """No daemon is listening and auto-start was disabled."""


class DaemonSpawnError(TttError):
    """The daemon process exited before it signalled readiness."""


class RemoteCallError(TttError):
    """The daemon answered a request with an error message."""
