import hashlib
import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Tuple

from application.domain import CandidateKey, ScheduledClass, Teacher, build_teacher_directory, make_class
from application.ledger import ConflictRegistry, LockSet, TeacherLedger
from application.performance import PerformanceIndex
from application.policy import DEFAULT_POLICY, SchedulingPolicy
from application.scheduler import TeacherSelector

logger = logging.getLogger(__name__)

SKIP_CONFLICT = 'conflict'
SKIP_HOUR_CAP = 'hour_cap'


@dataclass(frozen=True)
class SkippedPlacement:
    key: CandidateKey
    teacher_key: Optional[str]
    reason: str
    projected_hours: float = 0.0

    def describe(self, teachers=None):
        where = f"{self.key.format} on {self.key.day} {self.key.time} at {self.key.location}"
        if self.reason == SKIP_HOUR_CAP:
            teacher = (teachers or {}).get(self.teacher_key)
            name = teacher.full_name if teacher else self.teacher_key
            return f"{where}: {name} would reach {self.projected_hours:.1f}h"
        return f"{where}: slot already taken"


@dataclass(frozen=True)
class PopulationResult:
    entries: Tuple[ScheduledClass, ...]
    skipped: Tuple[SkippedPlacement, ...] = ()

    def to_dict(self, teachers=None):
        return {
            'added': len(self.entries),
            'entries': [cls.to_dict() for cls in self.entries],
            'skipped': [{
                'format': s.key.format, 'day': s.key.day, 'time': s.key.time, 'location': s.key.location,
                'teacherKey': s.teacher_key, 'reason': s.reason,
                'projectedHours': round(s.projected_hours, 2), 'message': s.describe(teachers),
            } for s in self.skipped],
        }


class TopPerformerPopulator:
    """
    Adds every historical combination whose mean attendance beats its
    location's average and the absolute floor. Not iterative: each composite
    key is considered exactly once, in input order.
    """

    def __init__(self, index: PerformanceIndex, policy: SchedulingPolicy = DEFAULT_POLICY,
                 teachers: Optional[Mapping[str, Teacher]] = None,
                 unavailable: Optional[Mapping[str, Iterable[str]]] = None):
        self.index = index
        self.policy = policy
        self.teachers = dict(teachers) if teachers else build_teacher_directory(index.records)
        self.selector = TeacherSelector(index, policy, unavailable)

    def top_performers(self, attribute_teacher=False):
        """First pass: threshold filter with duplicate suppression by composite key"""
        seen = set()
        qualifying = []
        for composite, agg in self.index.composite_groups(include_teacher=attribute_teacher):
            if composite in seen:
                continue
            seen.add(composite)

            location_avg = self.index.location_average(composite[3]).checked_in
            if agg.checked_in > location_avg and agg.checked_in >= self.policy.top_performer_floor:
                teacher = composite[4] if attribute_teacher else None
                qualifying.append((CandidateKey(*composite[:4]), teacher, agg))
        return qualifying

    def populate(self, current_schedule=(), attribute_teacher=False, enforce_cap=True,
                 staff=True, locks: LockSet = LockSet()) -> PopulationResult:
        """
        Without attribute_teacher each entry is staffed with the best eligible
        historical teacher (staff=True), or left unassigned when nobody
        qualifies. Ids already in current_schedule are never reused.
        """
        current_schedule = tuple(current_schedule)
        registry = ConflictRegistry.from_classes(current_schedule)
        ledger = TeacherLedger.from_classes(current_schedule)
        ids = {cls.id for cls in current_schedule}

        entries = []
        skipped = []
        for key, teacher_key, agg in self.top_performers(attribute_teacher):
            if registry.is_occupied(key.slot):
                skipped.append(SkippedPlacement(key, teacher_key, SKIP_CONFLICT))
                continue

            # Second pass: the hard cap only matters once classes carry a teacher
            if not attribute_teacher and staff:
                teacher_key = self.selector.select(key, ledger, locks).teacher_key

            new_class = make_class(
                class_id=_unused_id(top_performer_id(key, teacher_key), ids),
                key=key,
                teacher=self._teacher(teacher_key),
                participants=agg.participants,
                revenue=agg.revenue,
                is_top_performer=True,
            )
            if attribute_teacher and enforce_cap and new_class.is_assigned:
                projected = ledger.projected(teacher_key, new_class.duration)
                if projected > self.policy.hard_cap_hours + 1e-9:
                    skipped.append(SkippedPlacement(key, teacher_key, SKIP_HOUR_CAP, projected))
                    continue

            entries.append(new_class)
            ids.add(new_class.id)
            registry.register(new_class)
            ledger.add(new_class.teacher_key, new_class.duration)

        logger.info("Top performers: %d added, %d skipped (attribute_teacher=%s)",
                    len(entries), len(skipped), attribute_teacher)
        for skip in skipped:
            logger.debug("Skipped top performer %s", skip.describe(self.teachers))

        return PopulationResult(entries=tuple(entries), skipped=tuple(skipped))

    def _teacher(self, key):
        if key is None:
            return None
        return self.teachers.get(key) or Teacher(key=key, first_name=key)


def top_performer_id(key: CandidateKey, teacher_key=None) -> str:
    digest = hashlib.sha1(repr(tuple(key) + (teacher_key,)).encode('utf-8')).hexdigest()
    return f"top-{digest[:12]}"


def _unused_id(class_id, taken) -> str:
    # A moved top performer keeps its id, so the same key can come round again
    if class_id not in taken:
        return class_id
    n = 2
    while f"{class_id}-{n}" in taken:
        n += 1
    return f"{class_id}-{n}"
