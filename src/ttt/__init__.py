"""ttt: command-line client for lists and todos, with a background sync daemon."""

__version__ = "0.3.0"
