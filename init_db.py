"""
Reset the database and seed it from a class history export.

    python init_db.py path/to/history.csv [--offdays path/to/offdays.csv]

The optional offdays file has the columns teacher, day and reason.
"""
import argparse
import logging

import pandas as pd

from application import create_app, db
from application.data_processor import SqlScheduleStore, load_history, parse_day
from application.domain import Teacher, build_teacher_directory, teacher_key

logger = logging.getLogger('application.init_db')

def main(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument('history', help='Class history CSV or Excel export')
    parser.add_argument('--offdays', help='CSV of teacher days off (teacher, day, reason)')
    parser.add_argument('--config', default='default', help='Configuration name from config.py')
    args = parser.parse_args(argv)

    app = create_app(args.config)
    with app.app_context():
        db.drop_all()
        db.create_all()

        store = SqlScheduleStore()

        logger.info("Loading class history from %s", args.history)
        records, report = load_history(args.history, args.history)
        store.save_history(records)
        logger.info("Stored %d classes (%s)", len(records), report.to_dict())

        if args.offdays:
            directory = build_teacher_directory(records)
            offdays_df = pd.read_csv(args.offdays)
            offdays_df['day'] = offdays_df['day'].map(parse_day)
            offdays_df = offdays_df.dropna(subset=['teacher', 'day'])

            for name, rows in offdays_df.groupby('teacher', sort=False):
                key = teacher_key(name)
                if key is None:
                    continue
                teacher = directory.get(key) or Teacher.from_name(name)
                reasons = rows['reason'].dropna() if 'reason' in rows else []
                store.save_offdays(teacher, list(rows['day']), reasons.iloc[0] if len(reasons) else None)
                logger.info("Set %d days off for %s", len(rows), teacher.full_name)

if __name__ == '__main__':
    main()
