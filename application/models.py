from application import db
from datetime import datetime

# =============================================================
# ==================== Relational Entities ====================
# =============================================================

class Teacher(db.Model):
    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    key = db.Column(db.String(64), nullable=False, unique=True)  # Normalized name, decided once at load time
    first_name = db.Column(db.String(32), nullable=False)
    last_name = db.Column(db.String(32), nullable=False, default='')

    offdays = db.relationship('TeacherOffday', back_populates='teacher', cascade='all, delete-orphan')

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

# Handles which days a teacher cannot work on
class TeacherOffday(db.Model):
    __tablename__ = 'teacher_offday'

    teacher_id = db.Column(db.Integer, db.ForeignKey('teacher.id'), primary_key=True)
    day = db.Column(db.Integer, primary_key=True)  # 0 = Monday, 6 = Sunday
    reason = db.Column(db.String(64), nullable=True)

    teacher = db.relationship('Teacher', back_populates='offdays')

# =============================================================
# ===================== Uploaded History ======================
# =============================================================

class ClassRecord(db.Model):
    __tablename__ = 'class_record'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    format = db.Column(db.String(64), nullable=False)
    day = db.Column(db.Integer, nullable=False)
    time = db.Column(db.String(5), nullable=False)  # HH:MM
    location = db.Column(db.String(64), nullable=False)
    teacher_name = db.Column(db.String(64), nullable=False, default='Unassigned')
    checked_in = db.Column(db.Integer, nullable=False, default=0)
    revenue = db.Column(db.Float, nullable=False, default=0.0)
    participants = db.Column(db.Integer, nullable=False, default=0)
    uploaded_at = db.Column(db.DateTime, nullable=False, default=datetime.now)

    teacher_id = db.Column(db.Integer, db.ForeignKey('teacher.id'), nullable=True)
    teacher = db.relationship('Teacher')

# =============================================================
# ==================== Generated Timetable ====================
# =============================================================

class Timetable(db.Model):
    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    active = db.Column(db.Boolean, nullable=False, default=False)
    date_created = db.Column(db.DateTime, nullable=False, default=datetime.now)

    entries = db.relationship('TimetableEntry', back_populates='timetable', cascade='all, delete-orphan',
                              order_by='TimetableEntry.position')


class TimetableEntry(db.Model):
    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    position = db.Column(db.Integer, nullable=False)  # Snapshot order
    class_id = db.Column(db.String(64), nullable=False)

    teacher_id = db.Column(db.Integer, db.ForeignKey('teacher.id'), nullable=True)
    format = db.Column(db.String(64), nullable=False)
    location = db.Column(db.String(64), nullable=False)
    day = db.Column(db.Integer, nullable=False)
    time = db.Column(db.String(5), nullable=False)
    duration = db.Column(db.Float, nullable=False)
    participants = db.Column(db.Float, nullable=False, default=0.0)
    revenue = db.Column(db.Float, nullable=False, default=0.0)
    is_top_performer = db.Column(db.Boolean, nullable=False, default=False)
    is_private = db.Column(db.Boolean, nullable=False, default=False)

    timetable_id = db.Column(db.Integer, db.ForeignKey('timetable.id'), nullable=False)

    teacher = db.relationship('Teacher')
    timetable = db.relationship('Timetable', back_populates='entries')

    __table_args__ = (
        db.UniqueConstraint('timetable_id', 'class_id', name='unique_entry'),
    )


class ScheduleLock(db.Model):
    __tablename__ = 'schedule_lock'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    kind = db.Column(db.String(16), nullable=False)  # 'class' or 'teacher'
    value = db.Column(db.String(64), nullable=False)

    __table_args__ = (
        db.UniqueConstraint('kind', 'value', name='unique_lock'),
    )
