from flask import Flask, current_app
from flask_sqlalchemy import SQLAlchemy
from config import config, DevelopmentConfig
import logging

db = SQLAlchemy()

WORKSPACE_EXTENSION = 'schedule_workspace'

def create_app(config_name='default'):
    app = Flask(__name__)
    app.config.from_object(config.get(config_name, DevelopmentConfig))

    logging.basicConfig(format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    logging.getLogger('application').setLevel(app.config['LOG_LEVEL'])
    app.logger.setLevel(app.config['LOG_LEVEL'])

    db.init_app(app)

    with app.app_context():
        from .models import Teacher, TeacherOffday, ClassRecord, Timetable, TimetableEntry, ScheduleLock
        db.create_all()
        db.session.commit()

    from application.routes.api import api_bp
    from application.routes.timetable import timetable_bp

    app.register_blueprint(api_bp)
    app.register_blueprint(timetable_bp)

    return app

def get_workspace():
    """The scheduling session of the running app, loaded from the database on first use"""
    workspace = current_app.extensions.get(WORKSPACE_EXTENSION)
    if workspace is None:
        workspace = reload_workspace()
    return workspace

def reload_workspace():
    from application.data_processor import SqlScheduleStore
    from application.policy import SchedulingPolicy
    from application.workspace import ScheduleWorkspace

    policy = SchedulingPolicy.from_mapping(current_app.config)
    workspace = ScheduleWorkspace.from_store(SqlScheduleStore(), policy)
    current_app.extensions[WORKSPACE_EXTENSION] = workspace
    current_app.logger.info(f"Loaded workspace: {len(workspace.records)} records, {len(workspace.schedule)} classes")
    return workspace
