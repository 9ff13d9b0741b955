from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Tuple

from application.domain import ScheduledClass, SlotKey


class ConflictRegistry:
    """Occupied (day, time, location) slots for one schedule snapshot"""

    def __init__(self):
        self._slots: Dict[SlotKey, List[str]] = defaultdict(list)

    @classmethod
    def from_classes(cls, classes: Iterable[ScheduledClass]):
        registry = cls()
        for scheduled in classes:
            registry.register(scheduled)
        return registry

    def is_occupied(self, slot: SlotKey) -> bool:
        return bool(self._slots.get(slot))

    def occupants(self, slot: SlotKey) -> List[str]:
        return list(self._slots.get(slot, []))

    def register(self, scheduled: ScheduledClass):
        self._slots[scheduled.slot].append(scheduled.id)

    def double_booked(self) -> Dict[SlotKey, List[str]]:
        return {slot: list(ids) for slot, ids in self._slots.items() if len(ids) > 1}

    def __len__(self):
        return sum(1 for ids in self._slots.values() if ids)


class TeacherLedger:
    """Cumulative hours and class count per teacher for one schedule snapshot"""

    def __init__(self):
        self._hours: Dict[str, float] = defaultdict(float)
        self._classes: Dict[str, int] = defaultdict(int)

    @classmethod
    def from_classes(cls, classes: Iterable[ScheduledClass]):
        ledger = cls()
        for scheduled in classes:
            ledger.add(scheduled.teacher_key, scheduled.duration)
        return ledger

    def add(self, key, duration):
        # Unassigned classes carry no teacher hours
        if key is None:
            return
        self._hours[key] += duration
        self._classes[key] += 1

    def hours(self, key) -> float:
        return self._hours.get(key, 0.0)

    def classes(self, key) -> int:
        return self._classes.get(key, 0)

    def projected(self, key, duration) -> float:
        return self.hours(key) + duration

    def over(self, limit) -> List[Tuple[str, float]]:
        """Teachers strictly above limit, highest first"""
        offending = [(key, round(hours, 2)) for key, hours in self._hours.items() if hours > limit + 1e-9]
        return sorted(offending, key=lambda item: (-item[1], item[0]))

    def all_at_least(self, keys, threshold) -> bool:
        keys = list(keys)
        return bool(keys) and all(self.hours(key) >= threshold for key in keys)

    def as_dict(self):
        return {key: {'hours': round(hours, 2), 'classes': self._classes[key]}
                for key, hours in sorted(self._hours.items())}

    def __contains__(self, key):
        return key in self._hours


@dataclass(frozen=True)
class LockSet:
    """
    Class ids and teacher keys the optimizer must leave untouched.

    Locks that reference nothing in the current snapshot are ignored.
    """
    class_ids: FrozenSet[str] = field(default_factory=frozenset)
    teacher_keys: FrozenSet[str] = field(default_factory=frozenset)

    def is_locked(self, scheduled: ScheduledClass) -> bool:
        if scheduled.id in self.class_ids:
            return True
        return scheduled.teacher_key is not None and scheduled.teacher_key in self.teacher_keys

    def is_teacher_locked(self, key) -> bool:
        return key in self.teacher_keys

    def locked_entries(self, snapshot) -> Tuple[ScheduledClass, ...]:
        return tuple(cls for cls in snapshot if self.is_locked(cls))

    def with_classes(self, ids):
        return LockSet(self.class_ids | frozenset(ids), self.teacher_keys)

    def with_teachers(self, keys):
        return LockSet(self.class_ids, self.teacher_keys | frozenset(k for k in keys if k))

    def without_classes(self):
        return LockSet(frozenset(), self.teacher_keys)

    def without_teachers(self):
        return LockSet(self.class_ids, frozenset())

    def lock_all_classes(self, snapshot):
        return self.with_classes(cls.id for cls in snapshot)

    def lock_all_teachers(self, snapshot):
        return self.with_teachers(cls.teacher_key for cls in snapshot)

    def prune(self, snapshot, known_teachers=None):
        """
        Drop class locks absent from snapshot and teacher locks for unknown
        teachers. Without known_teachers, only teachers in snapshot are known.
        """
        ids = {cls.id for cls in snapshot}
        if known_teachers is None:
            known_teachers = {cls.teacher_key for cls in snapshot}
        return LockSet(self.class_ids & ids, self.teacher_keys & frozenset(known_teachers))

    def __bool__(self):
        return bool(self.class_ids or self.teacher_keys)
