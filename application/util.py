import logging

import pandas as pd

from application.domain import DAYS

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = [
    'Location', 'Day', 'Time', 'Class', 'Teacher', 'Duration (min)',
    'Expected Participants', 'Expected Revenue', 'Top Performer', 'Private',
]

def class_payload_defaults(scheduled):
    """Form data for an existing class, so edits can send only the changed fields"""
    return {
        'day': scheduled.day,
        'time': scheduled.time,
        'location': scheduled.location,
        'format': scheduled.format,
        'teacher': scheduled.teacher_name if scheduled.is_assigned else '',
        'is_private': scheduled.is_private,
    }

def format_teacher_hours(hours, policy):
    """Summary counts for the teacher hours panel"""
    return {
        'teachers': len(hours),
        'over_limit': sum(1 for item in hours if item['status'] == 'over'),
        'near_limit': sum(1 for item in hours if item['status'] == 'near'),
        'total_hours': round(sum(item['hours'] for item in hours), 2),
        'hard_cap_hours': policy.hard_cap_hours,
        'soft_warn_hours': policy.soft_warn_hours,
    }

def schedule_to_frame(snapshot):
    """Flat table of a snapshot ordered by location, day and time"""
    rows = [{
        'Location': cls.location,
        'Day': cls.day,
        'Time': cls.time,
        'Class': cls.format,
        'Teacher': cls.teacher_name,
        'Duration (min)': int(round(cls.duration * 60)),
        'Expected Participants': round(cls.participants, 1),
        'Expected Revenue': round(cls.revenue, 2),
        'Top Performer': 'Yes' if cls.is_top_performer else 'No',
        'Private': 'Yes' if cls.is_private else 'No',
    } for cls in snapshot]

    df = pd.DataFrame(rows, columns=EXPORT_COLUMNS)
    if df.empty:
        return df

    df['_day_order'] = df['Day'].map(DAYS.index)
    df = df.sort_values(['Location', '_day_order', 'Time'], kind='stable').drop(columns='_day_order')
    return df.reset_index(drop=True)

def transform_schedule_for_grid(snapshot):
    """
    Group a snapshot by location for the weekly grid export.

    Expected format:
    {
        "Location1": {
            "teachers": ["Teacher1", "Teacher2"],
            "schedule": {
                "Monday": {
                    "Teacher1": [
                        {"name": "Barre", "start_time": "0900", "duration": 4}
                    ]
                }
            }
        }
    }
    """
    processed_data = {}

    for cls in snapshot:
        location = processed_data.setdefault(cls.location, {'teachers': [], 'schedule': {}})
        teacher = cls.teacher_name

        if teacher not in location['teachers']:
            location['teachers'].append(teacher)

        location['schedule'].setdefault(cls.day, {}).setdefault(teacher, []).append({
            'name': cls.format,
            'start_time': cls.time.replace(':', ''),
            # Duration in 15-minute blocks, at least one
            'duration': max(1, int(round(cls.duration * 4))),
        })

    # Sort teacher names for consistent display
    for location in processed_data.values():
        location['teachers'].sort()

    logger.debug("Grouped %d classes into %d locations", len(snapshot), len(processed_data))
    return processed_data
