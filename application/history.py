from typing import List, Optional, Tuple

from application.domain import ScheduledClass

Snapshot = Tuple[ScheduledClass, ...]


class HistoryStack:
    """
    Linear undo/redo over full schedule snapshots.

    Pushing while not at the top drops everything after the current index;
    there is no redo branching.
    """

    def __init__(self):
        self._snapshots: List[Snapshot] = []
        self._index = -1

    def push(self, snapshot):
        del self._snapshots[self._index + 1:]
        self._snapshots.append(tuple(snapshot))
        self._index = len(self._snapshots) - 1

    def undo(self) -> Optional[Snapshot]:
        if not self.can_undo:
            return None
        self._index -= 1
        return self._snapshots[self._index]

    def redo(self) -> Optional[Snapshot]:
        if not self.can_redo:
            return None
        self._index += 1
        return self._snapshots[self._index]

    def clear(self):
        self._snapshots = []
        self._index = -1

    @property
    def current(self) -> Optional[Snapshot]:
        if self._index < 0:
            return None
        return self._snapshots[self._index]

    @property
    def index(self):
        return self._index

    @property
    def can_undo(self):
        return self._index > 0

    @property
    def can_redo(self):
        return self._index < len(self._snapshots) - 1

    def __len__(self):
        return len(self._snapshots)
