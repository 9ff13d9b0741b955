import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Set, Tuple

import numpy as np
import pandas as pd

from application import db
from application.domain import DAYS, DayOfWeek, HistoricalRecord, ScheduledClass, Teacher, build_teacher_directory
from application.ledger import LockSet
from application.models import ClassRecord, ScheduleLock, Teacher as TeacherRow, TeacherOffday, Timetable, TimetableEntry

logger = logging.getLogger(__name__)

# Column names of the class history export
FORMAT_COL = 'Cleaned Class'
DAY_COL = 'Day of the Week'
TIME_COL = 'Class Time'
LOCATION_COL = 'Location'
TEACHER_COL = 'Teacher Name'
CHECKED_IN_COL = 'Checked in'
REVENUE_COL = 'Total Revenue'
PARTICIPANTS_COL = 'Participants'
VARIANT_COL = 'Variant Name'

REQUIRED_COLUMNS = [FORMAT_COL, DAY_COL, TIME_COL, LOCATION_COL, TEACHER_COL, CHECKED_IN_COL, REVENUE_COL]
TIME_FORMATS = ['%H:%M', '%H:%M:%S', '%I:%M %p', '%I:%M:%S %p', '%I:%M%p', '%I %p', '%I%p']


@dataclass
class LoadReport:
    rows: int = 0
    loaded: int = 0
    hosted: int = 0
    invalid: int = 0

    def to_dict(self):
        return {'rows': self.rows, 'loaded': self.loaded, 'hosted': self.hosted, 'invalid': self.invalid}


# =============================================================
# ======================= History loader ======================
# =============================================================

def parse_time(value):
    """Normalize a class time to HH:MM, or None when it cannot be parsed"""
    if value is None or pd.isna(value):
        return None
    text = str(value).strip().upper()
    for fmt in TIME_FORMATS:
        try:
            return datetime.strptime(text, fmt).strftime('%H:%M')
        except ValueError:
            continue
    return None


def parse_day(value):
    if value is None or pd.isna(value):
        return None
    try:
        return DayOfWeek.parse(value).label
    except ValueError:
        return None


def _numeric(series):
    # Revenue exports carry currency symbols and thousands separators
    cleaned = series.astype(str).str.replace(r'[^0-9.\-]', '', regex=True)
    return pd.to_numeric(cleaned, errors='coerce')


def read_history_file(file, filename=None):
    """Read an uploaded export into a DataFrame. Excel files go through openpyxl."""
    name = (filename or getattr(file, 'filename', None) or getattr(file, 'name', '') or '').lower()
    if name.endswith(('.xlsx', '.xlsm')):
        return pd.read_excel(file, engine='openpyxl')
    return pd.read_csv(file)


def records_from_frame(df) -> Tuple[List[HistoricalRecord], LoadReport]:
    """
    Turn an export DataFrame into historical records.

    Rows whose variant mentions "hosted" or is blank (when the column exists)
    are dropped, as are rows whose day, time or attendance cannot be parsed.
    Missing revenue counts as 0.
    """
    if df.empty:
        raise ValueError("CSV file is empty")

    df = df.rename(columns=lambda c: str(c).strip())
    missing_columns = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing_columns:
        raise ValueError(f"Missing required columns: {', '.join(missing_columns)}")

    report = LoadReport(rows=len(df))

    unlabelled = 0
    if VARIANT_COL in df.columns:
        variant = df[VARIANT_COL].fillna('').astype(str).str.strip()
        hosted = variant.str.lower().str.contains('hosted')
        # Exports that carry the column label every real class, so blank rows are dropped
        blank = variant == ''
        report.hosted = int(hosted.sum())
        unlabelled = int(blank.sum())
        df = df[~hosted & ~blank]

    frame = pd.DataFrame({
        'format': df[FORMAT_COL].astype('string').str.strip(),
        'day': df[DAY_COL].map(parse_day),
        'time': df[TIME_COL].map(parse_time),
        'location': df[LOCATION_COL].astype('string').str.strip(),
        'teacher': df[TEACHER_COL].fillna('Unassigned').astype(str).str.strip(),
        'checked_in': _numeric(df[CHECKED_IN_COL]),
        'revenue': _numeric(df[REVENUE_COL]).fillna(0.0),
    })
    if PARTICIPANTS_COL in df.columns:
        frame['participants'] = _numeric(df[PARTICIPANTS_COL])
    else:
        frame['participants'] = np.nan

    frame = frame.replace({'format': {'': pd.NA}, 'location': {'': pd.NA}})
    valid = frame[['format', 'day', 'time', 'location', 'checked_in']].notna().all(axis=1)
    report.invalid = unlabelled + int((~valid).sum())
    frame = frame[valid].copy()

    frame['checked_in'] = frame['checked_in'].clip(lower=0).round().astype(int)
    frame['revenue'] = frame['revenue'].clip(lower=0).astype(float)
    frame['participants'] = frame['participants'].fillna(frame['checked_in']).clip(lower=0).round().astype(int)

    records = [
        HistoricalRecord(
            format=str(row.format),
            day=row.day,
            time=row.time,
            location=str(row.location),
            teacher=row.teacher or 'Unassigned',
            checked_in=int(row.checked_in),
            revenue=float(row.revenue),
            participants=int(row.participants),
        )
        for row in frame.itertuples(index=False)
    ]
    report.loaded = len(records)

    logger.info("Loaded %d of %d history rows (%d hosted, %d invalid)",
                report.loaded, report.rows, report.hosted, report.invalid)
    return records, report


def load_history(file, filename=None):
    return records_from_frame(read_history_file(file, filename))


# =============================================================
# ======================= SQL storage =========================
# =============================================================

class SqlScheduleStore:
    """
    Persists the uploaded history, the teacher directory, the active
    timetable and the locks through Flask-SQLAlchemy. Must be used inside
    an application context.
    """

    def load(self):
        rows = ClassRecord.query.order_by(ClassRecord.id).all()
        records = [HistoricalRecord(
            format=row.format,
            day=DAYS[row.day],
            time=row.time,
            location=row.location,
            teacher=row.teacher_name,
            checked_in=row.checked_in,
            revenue=row.revenue,
            participants=row.participants,
            teacher_key=row.teacher.key if row.teacher else None,
        ) for row in rows]

        teachers = {}
        availability: Dict[str, Set[str]] = {}
        for row in TeacherRow.query.order_by(TeacherRow.id).all():
            teachers[row.key] = Teacher(key=row.key, first_name=row.first_name, last_name=row.last_name)
            if row.offdays:
                availability[row.key] = {DAYS[offday.day] for offday in row.offdays}

        return records, self.load_schedule(), teachers, availability

    def load_schedule(self):
        timetable = Timetable.query.filter(Timetable.active == True).first()
        if not timetable:
            return ()

        return tuple(ScheduledClass(
            id=entry.class_id,
            day=DAYS[entry.day],
            time=entry.time,
            location=entry.location,
            format=entry.format,
            teacher_key=entry.teacher.key if entry.teacher else None,
            teacher_first_name=entry.teacher.first_name if entry.teacher else '',
            teacher_last_name=entry.teacher.last_name if entry.teacher else '',
            duration=entry.duration,
            participants=entry.participants,
            revenue=entry.revenue,
            is_top_performer=entry.is_top_performer,
            is_private=entry.is_private,
        ) for entry in timetable.entries)

    def _teacher_rows(self, teachers):
        """Get or create a row for each Teacher, keyed by teacher key"""
        existing = {row.key: row for row in TeacherRow.query.all()}
        for teacher in teachers:
            if teacher.key not in existing:
                row = TeacherRow(key=teacher.key, first_name=teacher.first_name, last_name=teacher.last_name)
                db.session.add(row)
                existing[teacher.key] = row
        db.session.flush()
        return existing

    def save_history(self, records):
        """Replace the stored history with a freshly uploaded one"""
        records = list(records)
        teacher_rows = self._teacher_rows(build_teacher_directory(records).values())

        deleted_count = db.session.query(ClassRecord).delete()
        logger.info("Deleted %d existing class records", deleted_count)

        for record in records:
            db.session.add(ClassRecord(
                format=record.format,
                day=DAYS.index(record.day),
                time=record.time,
                location=record.location,
                teacher_name=record.teacher,
                checked_in=record.checked_in,
                revenue=record.revenue,
                participants=record.participants,
                teacher_id=teacher_rows[record.teacher_key].id if record.teacher_key else None,
            ))
        db.session.commit()

    def save(self, snapshot):
        snapshot = tuple(snapshot)
        teacher_rows = self._teacher_rows(
            Teacher(key=cls.teacher_key, first_name=cls.teacher_first_name, last_name=cls.teacher_last_name)
            for cls in snapshot if cls.is_assigned
        )

        timetable = Timetable.query.filter(Timetable.active == True).first()
        if not timetable:
            timetable = Timetable(active=True)
            db.session.add(timetable)
            db.session.flush()

        TimetableEntry.query.filter(TimetableEntry.timetable_id == timetable.id).delete()
        db.session.flush()
        db.session.expire(timetable, ['entries'])

        for position, cls in enumerate(snapshot):
            db.session.add(TimetableEntry(
                timetable_id=timetable.id,
                position=position,
                class_id=cls.id,
                teacher_id=teacher_rows[cls.teacher_key].id if cls.is_assigned else None,
                format=cls.format,
                location=cls.location,
                day=DAYS.index(cls.day),
                time=cls.time,
                duration=cls.duration,
                participants=cls.participants,
                revenue=cls.revenue,
                is_top_performer=cls.is_top_performer,
                is_private=cls.is_private,
            ))
        db.session.commit()
        logger.debug("Saved %d timetable entries to timetable %d", len(snapshot), timetable.id)

    def save_locks(self, locks: LockSet):
        db.session.query(ScheduleLock).delete()
        for class_id in sorted(locks.class_ids):
            db.session.add(ScheduleLock(kind='class', value=class_id))
        for key in sorted(locks.teacher_keys):
            db.session.add(ScheduleLock(kind='teacher', value=key))
        db.session.commit()

    def load_locks(self) -> LockSet:
        rows = ScheduleLock.query.all()
        return LockSet(
            class_ids=frozenset(row.value for row in rows if row.kind == 'class'),
            teacher_keys=frozenset(row.value for row in rows if row.kind == 'teacher'),
        )

    def save_offdays(self, teacher: Teacher, days, reason=None):
        """Replace the days a teacher cannot work on"""
        row = self._teacher_rows([teacher])[teacher.key]
        TeacherOffday.query.filter_by(teacher_id=row.id).delete()
        for day in days:
            db.session.add(TeacherOffday(teacher_id=row.id, day=DAYS.index(day), reason=reason))
        db.session.commit()
