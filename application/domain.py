from dataclasses import dataclass, field
from typing import Dict, NamedTuple, Optional, Tuple
import enum
import numbers

UNASSIGNED = 'Unassigned'
UNASSIGNED_NAMES = {'', 'unassigned', 'tbd', 'nan', 'none'}


class DayOfWeek(enum.IntEnum):
    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @property
    def label(self):
        return self.name.capitalize()

    @classmethod
    def parse(cls, value):
        """Accepts 'Monday', 'mon', 'MON' or an integer index."""
        if isinstance(value, numbers.Integral):
            return cls(value)
        text = str(value).strip().upper()
        for day in cls:
            if day.name == text or day.name[:3] == text:
                return day
        raise ValueError(f"Unknown day of week: {value!r}")


DAYS = tuple(day.label for day in DayOfWeek)


class SlotKey(NamedTuple):
    """A (day, time, location) triple, the atomic unit of scheduling."""
    day: str
    time: str
    location: str


class CandidateKey(NamedTuple):
    format: str
    day: str
    time: str
    location: str

    @property
    def slot(self):
        return SlotKey(self.day, self.time, self.location)


def class_duration(format_name: str) -> float:
    """Duration in hours derived from the class format name"""
    name = format_name.lower()
    if 'express' in name:
        return 0.75
    if 'recovery' in name or 'sweat in 30' in name:
        return 0.5
    return 1.0


def teacher_key(name) -> Optional[str]:
    """Stable teacher identifier, or None for unassigned rows"""
    if name is None:
        return None
    normalized = ' '.join(str(name).split())
    if normalized.lower() in UNASSIGNED_NAMES:
        return None
    return normalized.casefold()


def hour_of(time_str: str) -> int:
    return int(time_str.split(':')[0])


@dataclass(frozen=True)
class Teacher:
    key: str
    first_name: str
    last_name: str = ''

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def from_name(cls, name):
        key = teacher_key(name)
        if key is None:
            return None
        first, _, last = ' '.join(str(name).split()).partition(' ')
        return cls(key=key, first_name=first, last_name=last)


@dataclass(frozen=True)
class HistoricalRecord:
    format: str
    day: str
    time: str
    location: str
    teacher: str = UNASSIGNED
    checked_in: int = 0
    revenue: float = 0.0
    participants: Optional[int] = None
    teacher_key: Optional[str] = field(default=None)

    def __post_init__(self):
        # Decided once here so nothing downstream re-derives it from the name
        if self.teacher_key is None:
            object.__setattr__(self, 'teacher_key', teacher_key(self.teacher))
        if self.participants is None:
            object.__setattr__(self, 'participants', self.checked_in)

    @property
    def candidate_key(self):
        return CandidateKey(self.format, self.day, self.time, self.location)

    @property
    def slot(self):
        return SlotKey(self.day, self.time, self.location)

    @property
    def duration(self):
        return class_duration(self.format)


@dataclass(frozen=True)
class ScheduledClass:
    id: str
    day: str
    time: str
    location: str
    format: str
    teacher_key: Optional[str] = None
    teacher_first_name: str = ''
    teacher_last_name: str = ''
    duration: float = 1.0
    participants: float = 0.0
    revenue: float = 0.0
    is_top_performer: bool = False
    is_private: bool = False

    @property
    def slot(self):
        return SlotKey(self.day, self.time, self.location)

    @property
    def is_assigned(self):
        return self.teacher_key is not None

    @property
    def teacher_name(self):
        if not self.is_assigned:
            return UNASSIGNED
        return f"{self.teacher_first_name} {self.teacher_last_name}".strip()

    def to_dict(self):
        return {
            'id': self.id,
            'day': self.day,
            'time': self.time,
            'location': self.location,
            'format': self.format,
            'teacherKey': self.teacher_key,
            'teacherFirstName': self.teacher_first_name,
            'teacherLastName': self.teacher_last_name,
            'teacher': self.teacher_name,
            'duration': self.duration,
            'participants': round(self.participants, 2),
            'revenue': round(self.revenue, 2),
            'isTopPerformer': self.is_top_performer,
            'isPrivate': self.is_private,
        }


ScheduleSnapshot = Tuple[ScheduledClass, ...]


def build_teacher_directory(records) -> Dict[str, Teacher]:
    """First spelling of each teacher's name wins"""
    directory = {}
    for record in records:
        if record.teacher_key is not None and record.teacher_key not in directory:
            directory[record.teacher_key] = Teacher.from_name(record.teacher)
    return directory


def make_class(class_id, key: CandidateKey, teacher: Optional[Teacher], participants=0.0,
               revenue=0.0, is_top_performer=False, is_private=False) -> ScheduledClass:
    return ScheduledClass(
        id=class_id,
        day=key.day,
        time=key.time,
        location=key.location,
        format=key.format,
        teacher_key=teacher.key if teacher else None,
        teacher_first_name=teacher.first_name if teacher else '',
        teacher_last_name=teacher.last_name if teacher else '',
        duration=class_duration(key.format),
        participants=float(participants),
        revenue=float(revenue),
        is_top_performer=is_top_performer,
        is_private=is_private,
    )
