import unittest

from application.domain import DAYS
from application.ledger import LockSet
from application.workspace import ScheduleWorkspace
from schedule_factories import record, scheduled, teacher_week


class RecordingStore:
    """In-memory stand-in for the SQL store"""

    def __init__(self, records=(), schedule=()):
        self.records = list(records)
        self.saved = [tuple(schedule)]
        self.locks = LockSet()
        self.fail = False

    def load(self):
        return self.records, self.saved[-1], {}, {}

    def save(self, snapshot):
        if self.fail:
            raise RuntimeError("database is locked")
        self.saved.append(tuple(snapshot))

    def save_locks(self, locks):
        self.locks = locks

    def load_locks(self):
        return self.locks


def history():
    return [
        record('Barre', 'Monday', '09:00', 'LocationA', 'Ava Stone', 10, 150),
        record('Barre', 'Monday', '09:00', 'LocationA', 'Ava Stone', 8, 110),
        record('Cycle', 'Tuesday', '07:00', 'LocationA', 'Ben Cole', 9, 120),
        record('Mat', 'Wednesday', '12:00', 'LocationA', 'Unassigned', 4, 40),
    ]


class TestScheduleWorkspace(unittest.TestCase):

    def setUp(self):
        self.store = RecordingStore(history())
        self.workspace = ScheduleWorkspace.from_store(self.store)

    def test_optimize_commits_and_advances_iteration(self):
        result = self.workspace.optimize()

        self.assertTrue(result.accepted)
        self.assertEqual(self.workspace.iteration, 1)
        self.assertEqual(len(self.workspace.schedule), 3)
        self.assertEqual(self.store.saved[-1], self.workspace.schedule)
        self.assertTrue(self.workspace.history.can_undo)

    def test_optimize_without_history(self):
        result = ScheduleWorkspace().optimize()
        self.assertFalse(result.accepted)
        self.assertIn('upload', result.message)

    def test_rejected_commit_changes_nothing(self):
        before = self.workspace.schedule
        result = self.workspace.commit(teacher_week('Ava Stone', 16))

        self.assertFalse(result.accepted)
        self.assertEqual(result.violation.teachers[0][2], 16.0)
        self.assertEqual(self.workspace.schedule, before)
        self.assertEqual(len(self.workspace.history), 1)
        self.assertEqual(len(self.store.saved), 1)

    def test_undo_redo(self):
        self.workspace.optimize()
        optimized = self.workspace.schedule

        self.assertEqual(self.workspace.undo(), ())
        self.assertIsNone(self.workspace.undo())
        self.assertEqual(self.workspace.redo(), optimized)
        self.assertIsNone(self.workspace.redo())

    def test_populate_top_performers(self):
        result = self.workspace.populate_top_performers()
        self.assertTrue(result.accepted)
        self.assertEqual([cls.format for cls in self.workspace.schedule], ['Barre', 'Cycle'])
        self.assertTrue(all(cls.is_top_performer for cls in self.workspace.schedule))

    def test_add_class_asks_for_confirmation_above_soft_threshold(self):
        workspace = ScheduleWorkspace(history(), teacher_week('Ava Stone', 12))
        new_class = workspace.build_class('Monday', '09:00', 'LocationA', 'Barre', 'Ava Stone')

        pending = workspace.add_class(new_class)
        self.assertFalse(pending.accepted)
        self.assertTrue(pending.requires_confirmation)
        self.assertEqual(len(workspace.schedule), 12)

        confirmed = workspace.add_class(new_class, confirmed=True)
        self.assertTrue(confirmed.accepted)
        self.assertEqual(len(workspace.schedule), 13)
        self.assertEqual(workspace.schedule[-1].participants, 9.0)

    def test_add_class_over_hard_cap_is_refused(self):
        workspace = ScheduleWorkspace(history(), teacher_week('Ava Stone', 14.5))
        result = workspace.add_class(workspace.build_class('Monday', '09:00', 'LocationA', 'Barre', 'Ava Stone'),
                                     confirmed=True)

        self.assertFalse(result.accepted)
        self.assertEqual(result.violation.to_dict()['type'], 'hour_cap')
        self.assertEqual(len(workspace.schedule), 15)

    def test_add_class_into_taken_slot(self):
        workspace = ScheduleWorkspace(history(), [scheduled('a', 'Monday', '09:00', 'LocationA', 'Barre')])
        clash = workspace.build_class('Monday', '09:00', 'LocationA', 'Cycle')

        self.assertEqual(workspace.add_class(clash).violation.to_dict()['type'], 'conflict')
        self.assertTrue(workspace.add_class(clash, allow_double_booking=True).accepted)

    def test_update_and_remove_class(self):
        workspace = ScheduleWorkspace(history(), [scheduled('a', 'Monday', '09:00', 'LocationA', 'Barre')])

        result = workspace.update_class('a', teacher='Ben Cole', time='10:00')
        self.assertTrue(result.accepted)
        self.assertEqual(workspace.get_class('a').teacher_name, 'Ben Cole')
        self.assertEqual(workspace.get_class('a').time, '10:00')

        self.assertTrue(workspace.remove_class('a').accepted)
        self.assertEqual(workspace.schedule, ())
        with self.assertRaises(KeyError):
            workspace.remove_class('a')

    def test_lock_toggles(self):
        self.workspace.optimize()
        ids = {cls.id for cls in self.workspace.schedule}

        self.workspace.set_classes_locked(True)
        self.assertEqual(self.workspace.locks.class_ids, ids)
        self.assertEqual(self.store.locks.class_ids, ids)

        self.workspace.set_teachers_locked(True)
        self.assertEqual(self.workspace.locks.teacher_keys, {'ava stone', 'ben cole'})

        self.workspace.set_classes_locked(False)
        self.assertEqual(self.workspace.locks.class_ids, frozenset())

    def test_locked_classes_survive_reoptimization(self):
        self.workspace.optimize()
        first = self.workspace.schedule
        self.workspace.set_classes_locked(True)

        self.workspace.optimize()
        self.assertEqual(self.workspace.schedule[:len(first)], first)

    def test_clear_all_also_clears_locks(self):
        self.workspace.optimize()
        self.workspace.set_classes_locked(True)

        result = self.workspace.clear_all()
        self.assertTrue(result.accepted)
        self.assertEqual(self.workspace.schedule, ())
        self.assertFalse(self.workspace.locks)

    def test_teacher_hours(self):
        workspace = ScheduleWorkspace(history(), teacher_week('Ava Stone', 13))
        hours = {item['key']: item for item in workspace.teacher_hours()}

        self.assertEqual(hours['ava stone']['hours'], 13.0)
        self.assertEqual(hours['ava stone']['status'], 'near')
        self.assertEqual(hours['ben cole']['hours'], 0.0)
        self.assertEqual(hours['ben cole']['status'], 'ok')

    def test_unavailable_teacher_is_skipped_by_optimizer(self):
        self.workspace.set_unavailable('ava stone', ['Monday'])
        self.workspace.optimize()
        barre = [cls for cls in self.workspace.schedule if cls.format == 'Barre'][0]
        self.assertFalse(barre.is_assigned)

    def test_analytics(self):
        self.workspace.optimize()
        analytics = self.workspace.analytics()

        self.assertEqual(analytics['classDistribution'], {'Barre': 1, 'Cycle': 1, 'Mat': 1})
        self.assertEqual(analytics['historicalRevenue'], 420.0)
        self.assertEqual(analytics['averageClassRevenue'], 105.0)
        self.assertEqual(analytics['unassignedClasses'], 1)
        self.assertEqual([d['day'] for d in analytics['dailyFormatCounts']], ['Monday', 'Tuesday', 'Wednesday'])
        self.assertTrue(all(d['day'] in DAYS for d in analytics['dailyFormatCounts']))

    def test_recommendations(self):
        recommendations = self.workspace.recommendations('Monday', '09:00', 'LocationA')
        self.assertEqual(recommendations[0]['format'], 'Barre')
        self.assertEqual(recommendations[0]['score'], 9.0)

    def test_repopulating_after_moving_a_top_performer(self):
        self.workspace.populate_top_performers()
        barre = [cls for cls in self.workspace.schedule if cls.format == 'Barre'][0]
        self.workspace.update_class(barre.id, time='10:00')

        result = self.workspace.populate_top_performers()
        self.assertTrue(result.accepted)
        ids = [cls.id for cls in self.workspace.schedule]
        self.assertEqual(len(ids), 3)
        self.assertEqual(len(set(ids)), 3)

        self.workspace.remove_class(barre.id)
        self.assertEqual(len(self.workspace.schedule), 2)

    def test_duplicate_ids_are_rejected(self):
        before = self.workspace.schedule
        result = self.workspace.commit([scheduled('a'), scheduled('a', time='10:00')])

        self.assertFalse(result.accepted)
        self.assertEqual(result.violation.to_dict()['ids'], ['a'])
        self.assertEqual(self.workspace.schedule, before)
        self.assertEqual(len(self.store.saved), 1)

    def test_failed_save_leaves_history_untouched(self):
        self.store.fail = True
        with self.assertRaises(RuntimeError):
            self.workspace.optimize()

        self.assertEqual(self.workspace.schedule, ())
        self.assertEqual(len(self.workspace.history), 1)
        self.assertFalse(self.workspace.history.can_undo)

    def test_failed_save_during_undo_keeps_position(self):
        self.workspace.optimize()
        optimized = self.workspace.schedule

        self.store.fail = True
        with self.assertRaises(RuntimeError):
            self.workspace.undo()
        self.assertEqual(self.workspace.schedule, optimized)
        self.assertFalse(self.workspace.history.can_redo)

    def test_stale_locks_are_dropped_on_load(self):
        store = RecordingStore(history(), [scheduled('a', 'Monday', '09:00', 'LocationA', 'Barre')])
        store.locks = LockSet(frozenset({'a', 'gone'}), frozenset({'ava stone', 'nobody'}))

        workspace = ScheduleWorkspace.from_store(store)
        self.assertEqual(workspace.locks, LockSet(frozenset({'a'}), frozenset({'ava stone'})))
        self.assertEqual(store.locks, workspace.locks)

    def test_manual_class_falls_back_to_teacher_average(self):
        new_class = self.workspace.build_class('Monday', '10:00', 'LocationA', 'Barre', 'Ava Stone')
        self.assertEqual(new_class.participants, 9.0)

        unknown = self.workspace.build_class('Monday', '10:00', 'LocationA', 'Barre')
        self.assertEqual(unknown.participants, 0.0)

    def test_analytics_reports_double_booking(self):
        workspace = ScheduleWorkspace(history(), [
            scheduled('a', 'Monday', '09:00', 'LocationA', 'Barre'),
            scheduled('b', 'Monday', '09:00', 'LocationA', 'Cycle'),
        ])
        self.assertEqual(workspace.analytics()['doubleBookedSlots'], [
            {'day': 'Monday', 'time': '09:00', 'location': 'LocationA', 'classes': ['a', 'b']},
        ])


if __name__ == '__main__':
    unittest.main()
