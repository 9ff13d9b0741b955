import hashlib
import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, Mapping, Optional, Tuple

from application.domain import (
    CandidateKey, ScheduledClass, Teacher, build_teacher_directory, class_duration, make_class,
)
from application.ledger import ConflictRegistry, LockSet, TeacherLedger
from application.performance import PerformanceIndex
from application.policy import DEFAULT_POLICY, SchedulingPolicy
from application.ranking import Candidate, CandidateRanker

logger = logging.getLogger(__name__)

# Selection outcomes
SELECTED = 'selected'
NO_HISTORY = 'no_history'
AT_CAP = 'at_cap'
LOCKED = 'locked'
UNAVAILABLE = 'unavailable'

# Candidate skip reasons
EXCLUDED = 'excluded'
CONFLICT = 'conflict'


@dataclass(frozen=True)
class Selection:
    teacher_key: Optional[str]
    reason: str
    average: float = 0.0

    @property
    def selected(self):
        return self.teacher_key is not None


class TeacherSelector:
    """
    Picks the best eligible teacher for a candidate from historical
    teacher-level performance at the same format, day and location.
    """

    def __init__(self, index: PerformanceIndex, policy: SchedulingPolicy = DEFAULT_POLICY,
                 unavailable: Optional[Mapping[str, Iterable[str]]] = None):
        self.index = index
        self.policy = policy
        self.unavailable = {key: set(days) for key, days in (unavailable or {}).items()}

    def select(self, candidate: CandidateKey, ledger: TeacherLedger, locks: LockSet = LockSet(),
               duration: Optional[float] = None) -> Selection:
        if duration is None:
            duration = class_duration(candidate.format)

        historical = self.index.teachers_for(candidate.format, candidate.day, candidate.location)
        if not historical:
            return Selection(None, NO_HISTORY)

        eligible = []
        rejected = Counter()
        for key, agg in historical.items():
            if locks.is_teacher_locked(key):
                rejected[LOCKED] += 1
            elif candidate.day in self.unavailable.get(key, ()):
                rejected[UNAVAILABLE] += 1
            elif ledger.projected(key, duration) > self.policy.hard_cap_hours + 1e-9:
                rejected[AT_CAP] += 1
            else:
                eligible.append((key, agg))

        if not eligible:
            for reason in (AT_CAP, UNAVAILABLE, LOCKED):
                if rejected[reason]:
                    return Selection(None, reason)

        key, agg = min(eligible, key=lambda item: (-item[1].checked_in, -item[1].count, item[0]))
        return Selection(key, SELECTED, agg.checked_in)


@dataclass
class OptimizationResult:
    snapshot: Tuple[ScheduledClass, ...]
    iteration: int
    placed: int = 0
    unassigned: int = 0
    preserved: int = 0
    skipped: Counter = field(default_factory=Counter)
    unstaffed: Counter = field(default_factory=Counter)
    cancelled: bool = False
    stopped_early: bool = False

    def summary(self):
        return {
            'iteration': self.iteration,
            'total_classes': len(self.snapshot),
            'placed': self.placed,
            'unassigned': self.unassigned,
            'preserved': self.preserved,
            'skipped': dict(self.skipped),
            'unstaffed': dict(self.unstaffed),
            'cancelled': self.cancelled,
            'stopped_early': self.stopped_early,
        }


class ScheduleOptimizer:
    """
    Greedy schedule builder.

    Algorithm Overview:
    1. Keep locked entries of the base snapshot verbatim
    2. Walk candidates in ranked order (rotated by the iteration counter)
    3. Skip late weekend slots and slots already taken
    4. Staff each slot with the best eligible teacher, or leave it unassigned
    5. Stop once every historical teacher has reached the soft threshold
    """

    def __init__(self, index: PerformanceIndex, policy: SchedulingPolicy = DEFAULT_POLICY,
                 teachers: Optional[Mapping[str, Teacher]] = None,
                 unavailable: Optional[Mapping[str, Iterable[str]]] = None):
        self.index = index
        self.policy = policy
        self.teachers = dict(teachers) if teachers else build_teacher_directory(index.records)
        self.selector = TeacherSelector(index, policy, unavailable)
        self.ranker = CandidateRanker(index)

    def optimize(self, base: Iterable[ScheduledClass] = (), locks: LockSet = LockSet(), iteration: int = 0,
                 cancel_event=None, candidates=None) -> OptimizationResult:
        """
        Build a new snapshot. Never raises on thin data; a sparse history just
        yields a smaller schedule. cancel_event (anything with is_set()) is
        only checked between candidates.
        """
        preserved = locks.locked_entries(tuple(base))
        schedule = list(preserved)
        ids = {cls.id for cls in preserved}
        registry = ConflictRegistry.from_classes(preserved)
        ledger = TeacherLedger.from_classes(preserved)
        result = OptimizationResult(snapshot=(), iteration=iteration, preserved=len(preserved))

        if candidates is None:
            candidates = self.ranker.rank(iteration)
        logger.info("Optimizing iteration %d: %d candidates, %d locked entries kept",
                    iteration, len(candidates), len(preserved))

        for position, candidate in enumerate(candidates):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Optimization cancelled after %d candidates", position)
                result.cancelled = True
                break

            placed = self._place(candidate, registry, ledger, locks, iteration, result)
            if placed is not None:
                if placed.id in ids:
                    placed = replace(placed, id=f"{placed.id}-{position}")
                ids.add(placed.id)
                schedule.append(placed)
                registry.register(placed)
                ledger.add(placed.teacher_key, placed.duration)

            if ledger.all_at_least(self.index.teacher_keys, self.policy.soft_warn_hours):
                logger.info("Every historical teacher reached %.1fh, stopping early", self.policy.soft_warn_hours)
                result.stopped_early = True
                break

        result.snapshot = tuple(schedule)
        logger.info("Optimization produced %d classes (%d new, %d unassigned)",
                    len(schedule), result.placed, result.unassigned)
        return result

    def _place(self, candidate: Candidate, registry, ledger, locks, iteration, result) -> Optional[ScheduledClass]:
        key = candidate.key
        if self.policy.is_excluded(key.day, key.time):
            result.skipped[EXCLUDED] += 1
            return None

        if registry.is_occupied(key.slot):
            result.skipped[CONFLICT] += 1
            return None

        selection = self.selector.select(key, ledger, locks)
        if not selection.selected:
            if not self.policy.assign_unstaffed:
                result.skipped[selection.reason] += 1
                return None
            result.unstaffed[selection.reason] += 1

        teacher = self._teacher(selection.teacher_key)
        if teacher is None:
            result.unassigned += 1
        result.placed += 1

        return make_class(
            class_id=optimized_class_id(iteration, key),
            key=key,
            teacher=teacher,
            participants=candidate.participants,
            revenue=candidate.revenue,
        )

    def _teacher(self, key) -> Optional[Teacher]:
        if key is None:
            return None
        return self.teachers.get(key) or Teacher(key=key, first_name=key)


def optimized_class_id(iteration, key: CandidateKey) -> str:
    digest = hashlib.sha1(repr((iteration,) + tuple(key)).encode('utf-8')).hexdigest()
    return f"opt-{digest[:12]}"


# ============================================================
# Commit-time and manual placement validation
# ============================================================

@dataclass(frozen=True)
class HourCapViolation:
    cap: float
    teachers: Tuple[Tuple[str, str, float], ...]  # (teacher key, display name, total hours)

    @property
    def message(self):
        lines = [f"{name}: {hours:.1f}h" for _, name, hours in self.teachers]
        return f"The following teachers would exceed {self.cap:g} hours:\n" + '\n'.join(lines)

    def to_dict(self):
        return {
            'type': 'hour_cap',
            'cap': self.cap,
            'message': self.message,
            'teachers': [{'key': key, 'name': name, 'hours': hours} for key, name, hours in self.teachers],
        }


@dataclass(frozen=True)
class ConflictViolation:
    slot: tuple
    occupants: Tuple[str, ...]

    @property
    def message(self):
        day, time, location = self.slot
        return f"{location} already has a class on {day} at {time}"

    def to_dict(self):
        return {'type': 'conflict', 'message': self.message, 'slot': list(self.slot),
                'occupants': list(self.occupants)}


@dataclass(frozen=True)
class DuplicateIdViolation:
    ids: Tuple[str, ...]

    @property
    def message(self):
        return f"Class ids must be unique, found duplicates: {', '.join(self.ids)}"

    def to_dict(self):
        return {'type': 'duplicate_id', 'message': self.message, 'ids': list(self.ids)}


def validate_ids(snapshot) -> Optional[DuplicateIdViolation]:
    counts = Counter(cls.id for cls in snapshot)
    duplicates = tuple(sorted(class_id for class_id, n in counts.items() if n > 1))
    if duplicates:
        return DuplicateIdViolation(duplicates)
    return None


def _display_names(snapshot) -> Dict[str, str]:
    names = {}
    for scheduled in snapshot:
        if scheduled.is_assigned:
            names.setdefault(scheduled.teacher_key, scheduled.teacher_name)
    return names


def validate_snapshot(snapshot, policy: SchedulingPolicy = DEFAULT_POLICY) -> Optional[HourCapViolation]:
    """Authoritative hour-cap check run before a snapshot becomes current"""
    ledger = TeacherLedger.from_classes(snapshot)
    offending = ledger.over(policy.hard_cap_hours)
    if not offending:
        return None

    names = _display_names(snapshot)
    return HourCapViolation(
        cap=policy.hard_cap_hours,
        teachers=tuple((key, names.get(key, key), hours) for key, hours in offending),
    )


@dataclass(frozen=True)
class PlacementCheck:
    error: Optional[str] = None
    warning: Optional[str] = None
    conflict: Optional[ConflictViolation] = None
    projected_hours: float = 0.0

    @property
    def ok(self):
        return self.error is None and self.conflict is None

    @property
    def needs_confirmation(self):
        return self.ok and self.warning is not None


def validate_placement(snapshot, new_class: ScheduledClass, policy: SchedulingPolicy = DEFAULT_POLICY,
                       replacing: Optional[str] = None, allow_double_booking=False) -> PlacementCheck:
    """
    Check a manual add or edit against the slot and hour rules. replacing is
    the id of the entry being edited, which is left out of the totals.
    """
    others = [cls for cls in snapshot if cls.id != replacing]

    conflict = None
    occupants = tuple(cls.id for cls in others if cls.slot == new_class.slot)
    if occupants and not allow_double_booking:
        conflict = ConflictViolation(slot=tuple(new_class.slot), occupants=occupants)

    if not new_class.is_assigned:
        return PlacementCheck(conflict=conflict)

    ledger = TeacherLedger.from_classes(others)
    projected = round(ledger.projected(new_class.teacher_key, new_class.duration), 2)
    name = new_class.teacher_name

    if projected > policy.hard_cap_hours + 1e-9:
        return PlacementCheck(
            error=f"{name} would be scheduled for {projected:.1f} hours, above the {policy.hard_cap_hours:g}h limit",
            conflict=conflict, projected_hours=projected)

    warning = None
    if projected > policy.soft_warn_hours + 1e-9:
        warning = f"{name} would be scheduled for {projected:.1f} hours (over {policy.soft_warn_hours:g}h)"
    return PlacementCheck(warning=warning, conflict=conflict, projected_hours=projected)
