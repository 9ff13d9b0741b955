from dataclasses import dataclass
from typing import List, Sequence

from application.domain import CandidateKey, HistoricalRecord
from application.performance import PerformanceIndex


@dataclass(frozen=True)
class Candidate:
    key: CandidateKey
    average: float
    count: int
    revenue: float = 0.0
    participants: float = 0.0

    @property
    def slot(self):
        return self.key.slot


class CandidateRanker:
    """Orders historical (format, day, time, location) groups by mean attendance"""

    def __init__(self, index: PerformanceIndex):
        self.index = index

    def ranked(self) -> List[Candidate]:
        candidates = [
            Candidate(key=key, average=agg.checked_in, count=agg.count,
                      revenue=agg.revenue, participants=agg.participants)
            for key, agg in self.index.groups()
        ]
        # Mean desc, then more evidence, then key so equal inputs always rank alike
        candidates.sort(key=lambda c: (-c.average, -c.count, c.key))
        return candidates

    def rank(self, iteration: int = 0) -> List[Candidate]:
        """
        Ranked candidates rotated by iteration mod len, so repeated optimizer
        runs start from a different point of the same ordering.
        """
        candidates = self.ranked()
        if not candidates:
            return candidates

        offset = iteration % len(candidates)
        return candidates[offset:] + candidates[:offset]


def rank_records(records: Sequence[HistoricalRecord], iteration: int = 0) -> List[Candidate]:
    return CandidateRanker(PerformanceIndex(records)).rank(iteration)


def rank_in_background(executor, records: Sequence[HistoricalRecord], iteration: int = 0):
    """
    Submit the grouping and ranking pass to an executor. The worker gets its
    own immutable copy of the records and returns the ranked list.
    """
    return executor.submit(rank_records, tuple(records), iteration)
