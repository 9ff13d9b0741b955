from flask_wtf import FlaskForm
from flask_wtf.file import FileField, FileAllowed, FileRequired
from wtforms.fields import StringField, IntegerField, FloatField, SelectField, BooleanField, SubmitField
from wtforms.validators import DataRequired, Length, NumberRange, Optional, Regexp, ValidationError

from application.domain import DAYS

DAY_CHOICES = [(day, day) for day in DAYS]

class HistoryUploadForm(FlaskForm):
    history_file = FileField(
        'Class History CSV',
        validators=[FileRequired(), FileAllowed(['csv', 'xlsx'], 'CSV or Excel files only!')]
    )
    submit = SubmitField('Upload File')

class ClassForm(FlaskForm):
    """Form for adding/editing a scheduled class"""
    day = SelectField('Day', choices=DAY_CHOICES, validators=[DataRequired()])
    time = StringField('Time', validators=[
        DataRequired(),
        Regexp(r'^([01]\d|2[0-3]):[0-5]\d$', message='Time must be in HH:MM format')
    ])
    location = StringField('Location', validators=[
        DataRequired(),
        Length(max=64, message='Location must be at most 64 characters')
    ])
    format = StringField('Class Format', validators=[
        DataRequired(),
        Length(max=64, message='Class format must be at most 64 characters')
    ])
    teacher = StringField('Teacher', validators=[Optional(), Length(max=64)])
    is_private = BooleanField('Private Class', default=False)

    # A human has confirmed the soft hour warning
    confirmed = BooleanField('Confirmed', default=False)
    allow_double_booking = BooleanField('Allow Double Booking', default=False)
    submit = SubmitField('Save Class')

class PolicyConfigForm(FlaskForm):
    hard_cap_hours = FloatField("Weekly Hour Limit",
                                validators=[DataRequired(), NumberRange(min=1, max=60)],
                                default=15,
                                description="Maximum hours a teacher can be scheduled per week")

    soft_warn_hours = FloatField("Warning Threshold",
                                 validators=[DataRequired(), NumberRange(min=1, max=60)],
                                 default=12,
                                 description="Hours at which adding a class asks for confirmation")

    weekend_exclusion_hour = IntegerField("Weekend Cut-off Hour",
                                          validators=[Optional(), NumberRange(min=0, max=24)],
                                          default=18,
                                          description="No weekend classes are generated from this hour on (blank disables)")

    top_performer_floor = FloatField("Top Performer Minimum",
                                     validators=[DataRequired(), NumberRange(min=0)],
                                     default=6,
                                     description="Minimum average attendance for a top performing class")

    assign_unstaffed = BooleanField("Keep Unstaffed Slots", default=True,
                                    description="Emit slots without an eligible teacher as unassigned classes")

    def validate_soft_warn_hours(self, field):
        if self.hard_cap_hours.data is not None and field.data is not None and field.data > self.hard_cap_hours.data:
            raise ValidationError('Warning threshold cannot be above the weekly hour limit')

class OffdayForm(FlaskForm):
    days = StringField('Days Off', validators=[Optional()])  # Comma separated day names
    reason = StringField('Reason', validators=[Optional(), Length(max=64)])

    def validate_days(self, field):
        for day in self.day_list():
            if day not in DAYS:
                raise ValidationError(f'Unknown day: {day}')

    def day_list(self):
        if not self.days.data:
            return []
        return [day.strip().capitalize() for day in self.days.data.split(',') if day.strip()]
