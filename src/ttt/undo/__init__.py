"""Undo ledger: bounded, persisted history of inverse actions."""

from .actions import UndoAction, execute_undo
from .ledger import UndoEntry, UndoLedger

__all__ = ["UndoAction", "UndoEntry", "UndoLedger", "execute_undo"]
