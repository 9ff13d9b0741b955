import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Tuple

import pandas as pd

from application.domain import CandidateKey, HistoricalRecord

logger = logging.getLogger(__name__)

RECORD_COLUMNS = ['format', 'day', 'time', 'location', 'teacher_key', 'checked_in', 'revenue', 'participants']


@dataclass(frozen=True)
class Aggregate:
    """Mean performance over a group of historical rows. count == 0 means no evidence."""
    checked_in: float = 0.0
    revenue: float = 0.0
    participants: float = 0.0
    count: int = 0

    @property
    def has_evidence(self):
        return self.count > 0


NO_EVIDENCE = Aggregate()


class PerformanceIndex:
    """
    Aggregate statistics over an immutable sequence of historical class records.

    Group-bys keep first-appearance order, so iterating any of the indexes
    follows the order of the input rows.
    """

    def __init__(self, records: Iterable[HistoricalRecord]):
        self.records: Tuple[HistoricalRecord, ...] = tuple(records)
        self.frame = pd.DataFrame(
            [[getattr(r, col) for col in RECORD_COLUMNS] for r in self.records],
            columns=RECORD_COLUMNS,
        )

        self._groups = self._aggregate(self.frame, ['format', 'day', 'time', 'location'])
        self._locations = self._aggregate(self.frame, ['location'])

        assigned = self.frame[self.frame['teacher_key'].notna()]
        self._teachers = self._aggregate(assigned, ['format', 'day', 'location', 'teacher_key'])
        self._slot_teachers = self._aggregate(assigned, ['format', 'day', 'time', 'location', 'teacher_key'])
        self.teacher_keys = tuple(dict.fromkeys(assigned['teacher_key']))

        self._teachers_by_placement = {}
        for (fmt, day, location, key), agg in self._teachers.items():
            self._teachers_by_placement.setdefault((fmt, day, location), {})[key] = agg

        logger.debug("Indexed %d records: %d candidate groups, %d locations, %d teachers",
                     len(self.records), len(self._groups), len(self._locations), len(self.teacher_keys))

    @staticmethod
    def _aggregate(frame, keys) -> Dict[tuple, Aggregate]:
        if frame.empty:
            return {}

        grouped = frame.groupby(keys, sort=False).agg(
            checked_in=('checked_in', 'mean'),
            revenue=('revenue', 'mean'),
            participants=('participants', 'mean'),
            count=('checked_in', 'size'),
        )

        result = {}
        for key, row in grouped.iterrows():
            if not isinstance(key, tuple):
                key = (key,)
            result[key] = Aggregate(
                checked_in=float(row['checked_in']),
                revenue=float(row['revenue']),
                participants=float(row['participants']),
                count=int(row['count']),
            )
        return result

    # ------------------------------------------------------------------ #
    # Lookups
    # ------------------------------------------------------------------ #
    def group_average(self, format, day, time, location) -> Aggregate:
        return self._groups.get((format, day, time, location), NO_EVIDENCE)

    def teacher_average(self, format, day, location, teacher_key, time=None) -> Aggregate:
        # Time is relaxed by default to surface teachers who taught the format
        # at a nearby time on the same day and location
        if time is not None:
            return self._slot_teachers.get((format, day, time, location, teacher_key), NO_EVIDENCE)
        return self._teachers.get((format, day, location, teacher_key), NO_EVIDENCE)

    def location_average(self, location) -> Aggregate:
        return self._locations.get((location,), NO_EVIDENCE)

    def teachers_for(self, format, day, location) -> Dict[str, Aggregate]:
        return dict(self._teachers_by_placement.get((format, day, location), {}))

    def groups(self) -> List[Tuple[CandidateKey, Aggregate]]:
        return [(CandidateKey(*key), agg) for key, agg in self._groups.items()]

    def composite_groups(self, include_teacher=False) -> List[Tuple[tuple, Aggregate]]:
        """
        Groups by (format, day, time, location) or, with include_teacher, by
        (format, day, time, location, teacher_key). Unassigned rows form their
        own group with teacher_key None.
        """
        if not include_teacher:
            return [(key, agg) for key, agg in self._groups.items()]

        frame = self.frame.assign(teacher_key=self.frame['teacher_key'].fillna(''))
        grouped = self._aggregate(frame, ['format', 'day', 'time', 'location', 'teacher_key'])
        return [(key[:4] + (key[4] or None,), agg) for key, agg in grouped.items()]

    def locations(self):
        return [key[0] for key in self._locations]

    def recommend_formats(self, day, time, location, limit=3):
        """Best formats historically run at a slot, for advisory display only"""
        matches = [(key.format, agg) for key, agg in self.groups()
                   if (key.day, key.time, key.location) == (day, time, location)]
        matches.sort(key=lambda item: (-item[1].checked_in, -item[1].count, item[0]))

        return [{
            'format': fmt,
            'score': round(agg.checked_in, 1),
            'reason': f"Historical average: {agg.checked_in:.1f} attendees",
            'priority': rank,
        } for rank, (fmt, agg) in enumerate(matches[:limit], start=1)]
