from dataclasses import dataclass, fields, replace
from typing import Optional, Tuple

from application.domain import hour_of


@dataclass(frozen=True)
class SchedulingPolicy:
    """
    Studio policy constants shared by the optimizer, the populator and the
    commit check.
    """

    # ==================== EDITABLE CONFIGURATION ====================

    hard_cap_hours: float = 15.0          # Max weekly hours per teacher (never exceeded on commit)
    soft_warn_hours: float = 12.0         # Hours at which a human confirmation is requested
    weekend_exclusion_hour: Optional[int] = 18  # No weekend class starting at/after this hour; None disables
    weekend_days: Tuple[str, ...] = ('Saturday', 'Sunday')
    top_performer_floor: float = 6.0      # Absolute attendance floor for top performers
    assign_unstaffed: bool = True         # Emit slots without an eligible teacher as unassigned

    # ==================== END EDITABLE CONFIGURATION ====================

    def __post_init__(self):
        if self.hard_cap_hours <= 0:
            raise ValueError("hard_cap_hours must be positive")
        if not 0 < self.soft_warn_hours <= self.hard_cap_hours:
            raise ValueError("soft_warn_hours must be positive and not above hard_cap_hours")
        if self.weekend_exclusion_hour is not None and not 0 <= self.weekend_exclusion_hour <= 24:
            raise ValueError("weekend_exclusion_hour must be between 0 and 24")

    @classmethod
    def from_mapping(cls, mapping=None, **overrides):
        """
        Build a policy from any mapping whose keys match the field names in
        any case, e.g. a Flask config (HARD_CAP_HOURS) or a JSON body
        (hard_cap_hours). Unknown keys are ignored.
        """
        values = {}
        names = {f.name for f in fields(cls)}
        for key, value in dict(mapping or {}, **overrides).items():
            name = str(key).lower()
            if name not in names:
                continue
            if value is None and name != 'weekend_exclusion_hour':
                continue
            values[name] = tuple(value) if name == 'weekend_days' else value
        return cls(**values)

    def updated(self, **changes):
        return replace(self, **changes)

    def is_excluded(self, day, time) -> bool:
        """Late weekend slots are never scheduled by the optimizer"""
        if self.weekend_exclusion_hour is None:
            return False
        return day in self.weekend_days and hour_of(time) >= self.weekend_exclusion_hour

    def as_dict(self):
        return {f.name: getattr(self, f.name) for f in fields(self)}


DEFAULT_POLICY = SchedulingPolicy()
