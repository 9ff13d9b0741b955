import threading
import unittest
from collections import Counter

from application.domain import CandidateKey
from application.ledger import LockSet, TeacherLedger
from application.performance import PerformanceIndex
from application.policy import SchedulingPolicy
from application.scheduler import (
    AT_CAP, CONFLICT, EXCLUDED, LOCKED, NO_HISTORY, SELECTED, UNAVAILABLE,
    ScheduleOptimizer, TeacherSelector, validate_placement, validate_snapshot,
)
from schedule_factories import record, scheduled, teacher_week

WEEKDAYS = ['Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday']


def busy_history():
    """20 strong classes for Mia and one weak class for Noah, all at LocationA"""
    records = []
    n = 0
    for day in WEEKDAYS:
        for hour in (7, 8, 9, 10):
            records.append(record('Barre', day, f"{hour:02d}:00", 'LocationA', 'Mia Park', 20 + n))
            n += 1
    records.append(record('Cycle', 'Saturday', '09:00', 'LocationA', 'Noah Reid', 1))
    return records


class CancelAfter:
    def __init__(self, checks):
        self.checks = checks
        self.calls = 0

    def is_set(self):
        self.calls += 1
        return self.calls > self.checks


class TestTeacherSelector(unittest.TestCase):

    def setUp(self):
        self.index = PerformanceIndex([
            record('Barre', 'Monday', '09:00', 'LocationA', 'Zoe Hart', 8),
            record('Barre', 'Monday', '10:00', 'LocationA', 'Zoe Hart', 8),
            record('Barre', 'Monday', '11:00', 'LocationA', 'Amy Fox', 8),
            record('Cycle', 'Monday', '09:00', 'LocationA', 'Amy Fox', 6),
            record('Cycle', 'Monday', '09:00', 'LocationA', 'Ben Cole', 6),
            record('Mat', 'Monday', '09:00', 'LocationA', 'Unassigned', 6),
        ])
        self.barre = CandidateKey('Barre', 'Monday', '09:00', 'LocationA')
        self.cycle = CandidateKey('Cycle', 'Monday', '09:00', 'LocationA')

    def test_ties_prefer_more_appearances(self):
        selection = TeacherSelector(self.index).select(self.barre, TeacherLedger())
        self.assertEqual(selection.teacher_key, 'zoe hart')
        self.assertEqual(selection.reason, SELECTED)

    def test_ties_then_prefer_key_order(self):
        selection = TeacherSelector(self.index).select(self.cycle, TeacherLedger())
        self.assertEqual(selection.teacher_key, 'amy fox')

    def test_no_history(self):
        selection = TeacherSelector(self.index).select(CandidateKey('Mat', 'Monday', '09:00', 'LocationA'), TeacherLedger())
        self.assertFalse(selection.selected)
        self.assertEqual(selection.reason, NO_HISTORY)

    def test_locked_teacher_is_not_selected(self):
        locks = LockSet(teacher_keys=frozenset({'zoe hart'}))
        selection = TeacherSelector(self.index).select(self.barre, TeacherLedger(), locks)
        self.assertEqual(selection.teacher_key, 'amy fox')

        locks = locks.with_teachers(['amy fox'])
        self.assertEqual(TeacherSelector(self.index).select(self.barre, TeacherLedger(), locks).reason, LOCKED)

    def test_unavailable_teacher_is_not_selected(self):
        selector = TeacherSelector(self.index, unavailable={'zoe hart': {'Monday'}, 'amy fox': {'Monday'}})
        self.assertEqual(selector.select(self.barre, TeacherLedger()).reason, UNAVAILABLE)

    def test_teacher_at_cap_is_not_selected(self):
        # 14.5h already, the next 1h class would make 15.5h
        ledger = TeacherLedger.from_classes(teacher_week('Zoe Hart', 14.5) + teacher_week('Amy Fox', 14.5, prefix='amy'))
        selection = TeacherSelector(self.index).select(self.barre, ledger)
        self.assertFalse(selection.selected)
        self.assertEqual(selection.reason, AT_CAP)

    def test_exactly_at_cap_is_allowed(self):
        ledger = TeacherLedger.from_classes(teacher_week('Zoe Hart', 14))
        self.assertEqual(TeacherSelector(self.index).select(self.barre, ledger).teacher_key, 'zoe hart')


class TestScheduleOptimizer(unittest.TestCase):

    def assertNoDoubleBooking(self, snapshot):
        slots = Counter(cls.slot for cls in snapshot)
        self.assertEqual([slot for slot, n in slots.items() if n > 1], [])

    def assertWithinCap(self, snapshot, cap=15.0):
        ledger = TeacherLedger.from_classes(snapshot)
        self.assertEqual(ledger.over(cap), [])

    def test_hour_cap_leaves_slot_unassigned(self):
        base = teacher_week('Ava Stone', 14.5)
        index = PerformanceIndex([record('Strength', 'Tuesday', '10:00', 'LocationA', 'Ava Stone', 12)])
        locks = LockSet().lock_all_classes(base)

        result = ScheduleOptimizer(index).optimize(base, locks)

        new = [cls for cls in result.snapshot if cls.format == 'Strength']
        self.assertEqual(len(new), 1)
        self.assertFalse(new[0].is_assigned)
        self.assertEqual(result.unstaffed[AT_CAP], 1)
        self.assertEqual(TeacherLedger.from_classes(result.snapshot).hours('ava stone'), 14.5)

    def test_busy_teacher_never_exceeds_cap(self):
        result = ScheduleOptimizer(PerformanceIndex(busy_history())).optimize()

        ledger = TeacherLedger.from_classes(result.snapshot)
        self.assertEqual(ledger.hours('mia park'), 15.0)
        self.assertEqual(ledger.hours('noah reid'), 1.0)
        self.assertEqual(result.unassigned, 5)
        self.assertEqual(len(result.snapshot), 21)
        self.assertFalse(result.stopped_early)
        self.assertNoDoubleBooking(result.snapshot)
        self.assertWithinCap(result.snapshot)

    def test_locked_entries_are_kept_unchanged(self):
        index = PerformanceIndex([
            record('Barre', 'Monday', '09:00', 'LocationA', 'Ava Stone', 10),
            record('Cycle', 'Tuesday', '10:00', 'LocationA', 'Ava Stone', 9),
            record('Mat', 'Wednesday', '11:00', 'LocationA', 'Ben Cole', 8),
        ])
        keep = scheduled('keep-1', 'Monday', '09:00', 'LocationA', 'Pilates', 'Ben Cole')
        drop = scheduled('drop-1', 'Friday', '12:00', 'LocationB', 'Pilates', 'Ben Cole')

        result = ScheduleOptimizer(index).optimize([keep, drop], LockSet(class_ids=frozenset({'keep-1'})))

        self.assertEqual(result.snapshot[0], keep)
        self.assertNotIn('drop-1', [cls.id for cls in result.snapshot])
        self.assertEqual(result.skipped[CONFLICT], 1)
        self.assertEqual(result.preserved, 1)
        self.assertEqual(len(result.snapshot), 3)
        self.assertNoDoubleBooking(result.snapshot)

    def test_teacher_lock_keeps_their_classes(self):
        index = PerformanceIndex([record('Barre', 'Monday', '09:00', 'LocationA', 'Ava Stone', 10)])
        kept = scheduled('ava-1', 'Friday', '12:00', 'LocationB', 'Pilates', 'Ava Stone')
        locks = LockSet().lock_all_teachers([kept])

        result = ScheduleOptimizer(index).optimize([kept], locks)

        self.assertIn(kept, result.snapshot)
        barre = [cls for cls in result.snapshot if cls.format == 'Barre'][0]
        self.assertFalse(barre.is_assigned)
        self.assertEqual(result.unstaffed[LOCKED], 1)

    def test_same_inputs_give_same_output(self):
        index = PerformanceIndex(busy_history())
        optimizer = ScheduleOptimizer(index)
        self.assertEqual(optimizer.optimize(iteration=3).snapshot, optimizer.optimize(iteration=3).snapshot)

    def test_every_iteration_respects_invariants(self):
        optimizer = ScheduleOptimizer(PerformanceIndex(busy_history()))
        first = optimizer.optimize(iteration=0).snapshot
        second = optimizer.optimize(iteration=1).snapshot

        self.assertNotEqual([cls.id for cls in first], [cls.id for cls in second])
        for snapshot in (first, second):
            self.assertNoDoubleBooking(snapshot)
            self.assertWithinCap(snapshot)

    def test_late_weekend_slots_are_skipped(self):
        index = PerformanceIndex([
            record('Barre', 'Saturday', '18:00', 'LocationA', 'Ava Stone', 10),
            record('Barre', 'Sunday', '17:00', 'LocationA', 'Ava Stone', 10),
            record('Barre', 'Friday', '19:00', 'LocationA', 'Ava Stone', 10),
        ])
        result = ScheduleOptimizer(index).optimize()
        self.assertEqual(sorted(cls.day for cls in result.snapshot), ['Friday', 'Sunday'])
        self.assertEqual(result.skipped[EXCLUDED], 1)

        no_exclusion = SchedulingPolicy(weekend_exclusion_hour=None)
        self.assertEqual(len(ScheduleOptimizer(index, no_exclusion).optimize().snapshot), 3)

    def test_stops_once_every_teacher_reaches_soft_threshold(self):
        records = [record('Barre', day, f"{hour:02d}:00", 'LocationA', 'Mia Park', 10)
                   for day in WEEKDAYS for hour in (7, 8, 9)]
        result = ScheduleOptimizer(PerformanceIndex(records)).optimize()

        self.assertTrue(result.stopped_early)
        self.assertEqual(len(result.snapshot), 12)

    def test_cancel_between_candidates(self):
        result = ScheduleOptimizer(PerformanceIndex(busy_history())).optimize(cancel_event=CancelAfter(3))
        self.assertTrue(result.cancelled)
        self.assertEqual(len(result.snapshot), 3)
        self.assertNoDoubleBooking(result.snapshot)

    def test_cancel_with_threading_event(self):
        event = threading.Event()
        event.set()
        result = ScheduleOptimizer(PerformanceIndex(busy_history())).optimize(cancel_event=event)
        self.assertTrue(result.cancelled)
        self.assertEqual(result.snapshot, ())

    def test_unstaffed_slots_can_be_dropped(self):
        index = PerformanceIndex([record('Mat', 'Monday', '09:00', 'LocationA', 'Unassigned', 6)])
        self.assertEqual(len(ScheduleOptimizer(index).optimize().snapshot), 1)

        policy = SchedulingPolicy(assign_unstaffed=False)
        result = ScheduleOptimizer(index, policy).optimize()
        self.assertEqual(result.snapshot, ())
        self.assertEqual(result.skipped[NO_HISTORY], 1)

    def test_empty_history_gives_empty_schedule(self):
        result = ScheduleOptimizer(PerformanceIndex([])).optimize()
        self.assertEqual(result.snapshot, ())


class TestValidation(unittest.TestCase):

    def test_snapshot_over_cap_lists_every_teacher(self):
        snapshot = teacher_week('Ava Stone', 16) + teacher_week('Ben Cole', 15.5, location='LocationC', prefix='ben')
        violation = validate_snapshot(snapshot)

        self.assertEqual([t[0] for t in violation.teachers], ['ava stone', 'ben cole'])
        self.assertEqual(violation.teachers[0][2], 16.0)
        self.assertTrue(violation.message.startswith('The following teachers would exceed 15 hours'))
        self.assertIn('Ben Cole: 15.5h', violation.message)

    def test_snapshot_at_cap_is_valid(self):
        self.assertIsNone(validate_snapshot(teacher_week('Ava Stone', 15)))

    def test_placement_warning_above_soft_threshold(self):
        snapshot = teacher_week('Ava Stone', 12)
        check = validate_placement(snapshot, scheduled('new', 'Monday', '12:00', 'LocationA', 'Barre', 'Ava Stone'))
        self.assertTrue(check.needs_confirmation)
        self.assertEqual(check.projected_hours, 13.0)

    def test_placement_error_above_hard_cap(self):
        snapshot = teacher_week('Ava Stone', 14.5)
        check = validate_placement(snapshot, scheduled('new', 'Monday', '12:00', 'LocationA', 'Barre', 'Ava Stone'))
        self.assertFalse(check.ok)
        self.assertIn('15.5', check.error)

    def test_edit_does_not_count_the_replaced_class(self):
        snapshot = teacher_week('Ava Stone', 15)
        edited = scheduled('base-0', 'Monday', '12:00', 'LocationA', 'Barre', 'Ava Stone')
        self.assertTrue(validate_placement(snapshot, edited, replacing='base-0').ok)

    def test_placement_conflict_and_override(self):
        snapshot = [scheduled('a', 'Monday', '09:00', 'LocationA', 'Barre')]
        clash = scheduled('b', 'Monday', '09:00', 'LocationA', 'Cycle')
        self.assertIsNotNone(validate_placement(snapshot, clash).conflict)
        self.assertIsNone(validate_placement(snapshot, clash, allow_double_booking=True).conflict)


if __name__ == '__main__':
    unittest.main()
