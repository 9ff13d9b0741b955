import logging
import uuid
from collections import Counter, defaultdict
from dataclasses import dataclass, field, replace
from typing import Any, Dict

from application.domain import DAYS, ScheduledClass, Teacher, build_teacher_directory, class_duration, teacher_key
from application.history import HistoryStack
from application.ledger import ConflictRegistry, LockSet, TeacherLedger
from application.performance import PerformanceIndex
from application.policy import DEFAULT_POLICY, SchedulingPolicy
from application.populator import TopPerformerPopulator
from application.scheduler import (
    HourCapViolation, ScheduleOptimizer, validate_ids, validate_placement, validate_snapshot,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommitResult:
    accepted: bool
    snapshot: tuple
    message: str = ''
    violation: Any = None
    requires_confirmation: bool = False
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self):
        payload = {
            'success': self.accepted,
            'message': self.message,
            'requiresConfirmation': self.requires_confirmation,
            'schedule': [cls.to_dict() for cls in self.snapshot],
        }
        if self.violation is not None:
            payload['violation'] = self.violation.to_dict()
        payload.update(self.details)
        return payload


class ScheduleWorkspace:
    """
    One scheduling session: the uploaded history, the current snapshot with
    its undo/redo history, the lock set and the optimizer iteration counter.

    Every change goes through commit(), which rejects any snapshot that puts
    a teacher over the hard cap and leaves the current one in place.
    """

    def __init__(self, records=(), schedule=(), teachers=None, unavailable=None, locks=None,
                 policy: SchedulingPolicy = DEFAULT_POLICY, store=None):
        self.records = tuple(records)
        self.index = PerformanceIndex(self.records)
        self.teachers: Dict[str, Teacher] = build_teacher_directory(self.records)
        self.teachers.update(teachers or {})
        self.unavailable = {key: set(days) for key, days in (unavailable or {}).items()}
        self.locks = locks or LockSet()
        self.policy = policy
        self.store = store
        self.iteration = 0

        self.history = HistoryStack()
        self.history.push(tuple(schedule))

    @classmethod
    def from_store(cls, store, policy: SchedulingPolicy = DEFAULT_POLICY):
        records, schedule, teachers, unavailable = store.load()
        workspace = cls(records, schedule, teachers, unavailable, store.load_locks(), policy, store)
        # Stored locks may point at classes or teachers that are gone
        pruned = workspace.locks.prune(workspace.schedule, workspace.teachers)
        if pruned != workspace.locks:
            workspace.locks = pruned
            workspace._save_locks()
        return workspace

    # ------------------------------------------------------------------ #
    # State
    # ------------------------------------------------------------------ #
    @property
    def schedule(self):
        return self.history.current

    def ledger(self):
        return TeacherLedger.from_classes(self.schedule)

    def _save(self, snapshot):
        if self.store is not None:
            self.store.save(snapshot)

    def _save_locks(self):
        if self.store is not None:
            self.store.save_locks(self.locks)

    def commit(self, snapshot, message='', details=None) -> CommitResult:
        """
        Make snapshot current. A rejected snapshot, or one the store fails to
        save, leaves the history untouched.
        """
        snapshot = tuple(snapshot)
        violation = validate_ids(snapshot) or validate_snapshot(snapshot, self.policy)
        if violation is not None:
            logger.warning("Rejected snapshot: %s", violation.message.replace('\n', '; '))
            return CommitResult(False, self.schedule, violation.message, violation, details=details or {})

        self._save(snapshot)
        self.history.push(snapshot)
        return CommitResult(True, snapshot, message, details=details or {})

    # ------------------------------------------------------------------ #
    # Bulk operations
    # ------------------------------------------------------------------ #
    def optimize(self, cancel_event=None) -> CommitResult:
        if not self.records:
            return CommitResult(False, self.schedule, 'Please upload class history first')

        optimizer = ScheduleOptimizer(self.index, self.policy, self.teachers, self.unavailable)
        result = optimizer.optimize(self.schedule, self.locks, self.iteration, cancel_event)
        self.iteration += 1

        message = f"Generated optimized schedule (iteration {self.iteration}) with {len(result.snapshot)} classes"
        return self.commit(result.snapshot, message, {'optimization': result.summary()})

    def populate_top_performers(self, attribute_teacher=False) -> CommitResult:
        if not self.records:
            return CommitResult(False, self.schedule, 'Please upload class history first')

        populator = TopPerformerPopulator(self.index, self.policy, self.teachers, self.unavailable)
        result = populator.populate(self.schedule, attribute_teacher, locks=self.locks)
        message = (f"Added {len(result.entries)} top performing classes "
                   f"(avg > {self.policy.top_performer_floor:g} participants)")
        return self.commit(self.schedule + result.entries, message,
                           {'population': result.to_dict(self.teachers)})

    def clear_all(self) -> CommitResult:
        self.locks = LockSet()
        self._save_locks()
        return self.commit((), 'Schedule cleared')

    # ------------------------------------------------------------------ #
    # Manual edits
    # ------------------------------------------------------------------ #
    def build_class(self, day, time, location, format, teacher=None, is_private=False,
                    class_id=None) -> ScheduledClass:
        key = teacher_key(teacher)
        directory_entry = self.teachers.get(key) if key else None
        if key and directory_entry is None:
            directory_entry = Teacher.from_name(teacher)
        expected = self.index.group_average(format, day, time, location)
        if not expected.has_evidence and key:
            # Fall back to how this teacher did with the format on that day and location
            expected = self.index.teacher_average(format, day, location, key)

        return ScheduledClass(
            id=class_id or f"manual-{uuid.uuid4().hex[:12]}",
            day=day,
            time=time,
            location=location,
            format=format,
            teacher_key=key,
            teacher_first_name=directory_entry.first_name if directory_entry else '',
            teacher_last_name=directory_entry.last_name if directory_entry else '',
            duration=class_duration(format),
            participants=expected.participants,
            revenue=expected.revenue,
            is_private=is_private,
        )

    def add_class(self, new_class: ScheduledClass, confirmed=False, allow_double_booking=False) -> CommitResult:
        return self._place(new_class, None, confirmed, allow_double_booking)

    def update_class(self, class_id, confirmed=False, allow_double_booking=False, **changes) -> CommitResult:
        existing = self.get_class(class_id)
        teacher = changes.pop('teacher', None)
        if teacher is not None:
            edited = self.build_class(
                changes.get('day', existing.day), changes.get('time', existing.time),
                changes.get('location', existing.location), changes.get('format', existing.format),
                teacher, changes.get('is_private', existing.is_private), class_id=existing.id)
            edited = replace(edited, is_top_performer=existing.is_top_performer)
        else:
            edited = replace(existing, **changes)
            if 'format' in changes:
                edited = replace(edited, duration=class_duration(edited.format))
        return self._place(edited, class_id, confirmed, allow_double_booking)

    def _place(self, scheduled, replacing, confirmed, allow_double_booking) -> CommitResult:
        check = validate_placement(self.schedule, scheduled, self.policy, replacing, allow_double_booking)
        if check.conflict is not None:
            return CommitResult(False, self.schedule, check.conflict.message, check.conflict)
        if check.error is not None:
            violation = HourCapViolation(
                cap=self.policy.hard_cap_hours,
                teachers=((scheduled.teacher_key, scheduled.teacher_name, check.projected_hours),),
            )
            return CommitResult(False, self.schedule, check.error, violation,
                                details={'projectedHours': check.projected_hours})
        if check.needs_confirmation and not confirmed:
            return CommitResult(False, self.schedule, f"{check.warning}. Do you want to proceed?",
                                requires_confirmation=True, details={'projectedHours': check.projected_hours})

        if replacing is None:
            snapshot = self.schedule + (scheduled,)
        else:
            snapshot = tuple(scheduled if cls.id == replacing else cls for cls in self.schedule)
        return self.commit(snapshot, 'Class scheduled', {'class': scheduled.to_dict()})

    def remove_class(self, class_id) -> CommitResult:
        self.get_class(class_id)
        return self.commit(tuple(cls for cls in self.schedule if cls.id != class_id), 'Class removed')

    def get_class(self, class_id) -> ScheduledClass:
        for scheduled in self.schedule:
            if scheduled.id == class_id:
                return scheduled
        raise KeyError(class_id)

    # ------------------------------------------------------------------ #
    # History
    # ------------------------------------------------------------------ #
    def undo(self):
        snapshot = self.history.undo()
        if snapshot is not None:
            try:
                self._save(snapshot)
            except Exception:
                self.history.redo()
                raise
        return snapshot

    def redo(self):
        snapshot = self.history.redo()
        if snapshot is not None:
            try:
                self._save(snapshot)
            except Exception:
                self.history.undo()
                raise
        return snapshot

    # ------------------------------------------------------------------ #
    # Locks
    # ------------------------------------------------------------------ #
    def set_classes_locked(self, locked: bool):
        self.locks = self.locks.lock_all_classes(self.schedule) if locked else self.locks.without_classes()
        self._save_locks()
        return self.locks

    def set_teachers_locked(self, locked: bool):
        self.locks = self.locks.lock_all_teachers(self.schedule) if locked else self.locks.without_teachers()
        self._save_locks()
        return self.locks

    def lock_class(self, class_id, locked=True):
        if locked:
            self.locks = self.locks.with_classes([class_id])
        else:
            self.locks = LockSet(self.locks.class_ids - {class_id}, self.locks.teacher_keys)
        self._save_locks()
        return self.locks

    def lock_teacher(self, name_or_key, locked=True):
        key = teacher_key(name_or_key)
        if locked:
            self.locks = self.locks.with_teachers([key])
        else:
            self.locks = LockSet(self.locks.class_ids, self.locks.teacher_keys - {key})
        self._save_locks()
        return self.locks

    def set_unavailable(self, key, days):
        if days:
            self.unavailable[key] = set(days)
        else:
            self.unavailable.pop(key, None)

    # ------------------------------------------------------------------ #
    # Reporting
    # ------------------------------------------------------------------ #
    def teacher_hours(self):
        ledger = self.ledger()
        keys = list(self.teachers) + [key for key in ledger.as_dict() if key not in self.teachers]
        hours = []
        for key in keys:
            total = round(ledger.hours(key), 2)
            if total > self.policy.hard_cap_hours:
                status = 'over'
            elif total > self.policy.soft_warn_hours:
                status = 'near'
            else:
                status = 'ok'
            teacher = self.teachers.get(key)
            hours.append({
                'key': key,
                'name': teacher.full_name if teacher else key,
                'hours': total,
                'classes': ledger.classes(key),
                'limit': self.policy.hard_cap_hours,
                'status': status,
                'locked': self.locks.is_teacher_locked(key),
                'unavailableDays': sorted(self.unavailable.get(key, ()), key=DAYS.index),
            })
        hours.sort(key=lambda item: (-item['hours'], item['name']))
        return hours

    def recommendations(self, day, time, location, limit=3):
        return self.index.recommend_formats(day, time, location, limit)

    def analytics(self):
        by_format = Counter(cls.format for cls in self.schedule)
        by_day = defaultdict(Counter)
        for cls in self.schedule:
            by_day[(cls.location, cls.day)][cls.format] += 1

        total_revenue = sum(record.revenue for record in self.records)
        return {
            'classDistribution': dict(by_format.most_common()),
            'dailyFormatCounts': [{
                'location': location, 'day': day, 'formats': dict(counts),
            } for (location, day), counts in sorted(by_day.items(), key=lambda i: (i[0][0], DAYS.index(i[0][1])))],
            'historicalRevenue': round(total_revenue, 2),
            'averageClassRevenue': round(total_revenue / len(self.records), 2) if self.records else 0.0,
            'expectedParticipants': round(sum(cls.participants for cls in self.schedule), 1),
            'expectedRevenue': round(sum(cls.revenue for cls in self.schedule), 2),
            'unassignedClasses': sum(1 for cls in self.schedule if not cls.is_assigned),
            'doubleBookedSlots': [{
                'day': slot.day, 'time': slot.time, 'location': slot.location, 'classes': ids,
            } for slot, ids in ConflictRegistry.from_classes(self.schedule).double_booked().items()],
        }

    def state(self):
        return {
            'schedule': [cls.to_dict() for cls in self.schedule],
            'teacherHours': self.teacher_hours(),
            'locks': {
                'classes': sorted(self.locks.class_ids),
                'teachers': sorted(self.locks.teacher_keys),
            },
            'canUndo': self.history.can_undo,
            'canRedo': self.history.can_redo,
            'iteration': self.iteration,
            'records': len(self.records),
        }
