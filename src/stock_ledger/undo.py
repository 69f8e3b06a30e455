"""Bounded stack of whole-state snapshots used to undo ledger mutations."""

from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from . import log
from .constants import DEFAULT_UNDO_LIMIT
from .ledger import InventoryState, _resolve_timestamp


@dataclass(frozen=True)
class Snapshot:
    """A deep copy of the state taken right before a mutation."""

    state: InventoryState
    reason: str
    taken_at: datetime


class UndoStack:
    """Keep the last ``limit`` snapshots; the oldest is dropped on overflow.

    Snapshots are deep copies, so nothing mutable is shared between the live
    state and any stored snapshot.
    """

    def __init__(self, limit: int = DEFAULT_UNDO_LIMIT, snapshots: Iterable[Snapshot] = ()) -> None:
        if limit < 1:
            raise ValueError("Undo limit must be at least 1")
        self.limit = limit
        self._snapshots: List[Snapshot] = list(snapshots)[-limit:]

    def __len__(self) -> int:
        return len(self._snapshots)

    def push(self, state: InventoryState, reason: str = "", *, taken_at: Optional[datetime] = None) -> Snapshot:
        snapshot = Snapshot(
            state=copy.deepcopy(state),
            reason=reason,
            taken_at=_resolve_timestamp(taken_at),
        )
        self._snapshots.append(snapshot)
        del self._snapshots[: -self.limit]
        log.debug("Pushed undo snapshot '%s' (%d stored)", reason, len(self._snapshots))
        return snapshot

    def pop(self) -> Optional[Snapshot]:
        if not self._snapshots:
            return None
        return self._snapshots.pop()

    def peek(self) -> Optional[Snapshot]:
        return self._snapshots[-1] if self._snapshots else None

    def snapshots(self) -> List[Snapshot]:
        """Return the stored snapshots, oldest first."""

        return list(self._snapshots)

    def clear(self) -> None:
        self._snapshots.clear()


__all__ = ["Snapshot", "UndoStack"]
