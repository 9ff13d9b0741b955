from flask import Blueprint, request, jsonify, current_app

from application import db, get_workspace, reload_workspace
from application.data_processor import SqlScheduleStore, load_history
from application.domain import Teacher, teacher_key
from application.forms import HistoryUploadForm, ClassForm, PolicyConfigForm, OffdayForm
from application.util import class_payload_defaults, format_teacher_hours

api_bp = Blueprint('apis', __name__, url_prefix='/api')

def _commit_response(result):
    """Accepted changes answer 200, hour cap and slot violations 409, other refusals 400"""
    if result.accepted:
        return jsonify(result.to_dict()), 200
    if result.violation is not None or result.requires_confirmation:
        return jsonify(result.to_dict()), 409
    return jsonify(result.to_dict()), 400

def _error(message, status=400, **extra):
    return jsonify({'success': False, 'message': message, **extra}), status

###########
# HISTORY #
###########

@api_bp.route('/history/upload', methods=['POST'])
def upload_history():
    form = HistoryUploadForm(meta={'csrf': False})

    if not form.validate():
        return _error('Form validation failed. Please check your file and try again.', errors=form.errors)

    upload = form.history_file.data
    try:
        records, report = load_history(upload.stream, upload.filename)
    except ValueError as e:
        current_app.logger.warning(f"Rejected history upload {upload.filename}: {e}")
        return _error(str(e))

    if not records:
        return _error('No usable rows found in the uploaded file', report=report.to_dict())

    try:
        SqlScheduleStore().save_history(records)
        workspace = reload_workspace()
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception("Error saving class history")
        return _error(f"Error saving class history: {str(e)}", 500)

    return jsonify({
        'success': True,
        'message': f"Loaded {report.loaded} classes from {upload.filename}",
        'report': report.to_dict(),
        'teachers': len(workspace.teachers),
        'locations': workspace.index.locations(),
    }), 201

############
# SCHEDULE #
############

@api_bp.route('/schedule', methods=['GET'])
def get_schedule():
    return jsonify({'success': True, **get_workspace().state()})

@api_bp.route('/schedule/optimize', methods=['POST'])
def optimize_schedule():
    workspace = get_workspace()
    try:
        result = workspace.optimize()
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception("Error optimizing schedule")
        return _error(f"Error optimizing schedule: {str(e)}", 500)

    current_app.logger.info(result.message)
    return _commit_response(result)

@api_bp.route('/schedule/populate', methods=['POST'])
def populate_schedule():
    data = request.get_json(silent=True) or {}
    workspace = get_workspace()
    try:
        result = workspace.populate_top_performers(attribute_teacher=bool(data.get('attribute_teacher', False)))
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception("Error adding top performers")
        return _error(f"Error adding top performers: {str(e)}", 500)

    return _commit_response(result)

@api_bp.route('/schedule/undo', methods=['POST'])
def undo():
    workspace = get_workspace()
    try:
        snapshot = workspace.undo()
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception("Error saving undone schedule")
        return _error(f"Error saving undone schedule: {str(e)}", 500)

    if snapshot is None:
        return _error('Nothing to undo')
    return jsonify({'success': True, 'message': 'Undone', **workspace.state()})

@api_bp.route('/schedule/redo', methods=['POST'])
def redo():
    workspace = get_workspace()
    try:
        snapshot = workspace.redo()
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception("Error saving redone schedule")
        return _error(f"Error saving redone schedule: {str(e)}", 500)

    if snapshot is None:
        return _error('Nothing to redo')
    return jsonify({'success': True, 'message': 'Redone', **workspace.state()})

@api_bp.route('/schedule/clear', methods=['POST'])
def clear_schedule():
    result = get_workspace().clear_all()
    return _commit_response(result)

###########
# CLASSES #
###########

@api_bp.route('/classes', methods=['POST'])
def add_class():
    data = request.get_json(silent=True)
    if not data:
        return _error('No JSON data provided or invalid JSON format')

    form = ClassForm(formdata=None, data=data, meta={'csrf': False})
    if not form.validate():
        return _error('Invalid class details', errors=form.errors)

    workspace = get_workspace()
    new_class = workspace.build_class(
        day=form.day.data,
        time=form.time.data,
        location=form.location.data.strip(),
        format=form.format.data.strip(),
        teacher=form.teacher.data,
        is_private=form.is_private.data,
    )
    result = workspace.add_class(new_class, confirmed=form.confirmed.data,
                                 allow_double_booking=form.allow_double_booking.data)
    if result.accepted:
        return jsonify(result.to_dict()), 201
    return _commit_response(result)

@api_bp.route('/classes/<class_id>', methods=['PUT'])
def update_class(class_id):
    data = request.get_json(silent=True)
    if not data:
        return _error('No JSON data provided or invalid JSON format')

    workspace = get_workspace()
    try:
        existing = workspace.get_class(class_id)
    except KeyError:
        return _error(f"Class with ID {class_id} not found", 404)

    form = ClassForm(formdata=None, data={**class_payload_defaults(existing), **data}, meta={'csrf': False})
    if not form.validate():
        return _error('Invalid class details', errors=form.errors)

    result = workspace.update_class(
        class_id,
        confirmed=form.confirmed.data,
        allow_double_booking=form.allow_double_booking.data,
        day=form.day.data,
        time=form.time.data,
        location=form.location.data.strip(),
        format=form.format.data.strip(),
        teacher=form.teacher.data or 'Unassigned',
        is_private=form.is_private.data,
    )
    return _commit_response(result)

@api_bp.route('/classes/<class_id>', methods=['DELETE'])
def delete_class(class_id):
    try:
        result = get_workspace().remove_class(class_id)
    except KeyError:
        return _error(f"Class with ID {class_id} not found", 404)
    return _commit_response(result)

#########
# LOCKS #
#########

@api_bp.route('/locks', methods=['GET'])
def get_locks():
    return jsonify({'success': True, **get_workspace().state()['locks']})

@api_bp.route('/locks/classes', methods=['POST'])
def toggle_class_locks():
    data = request.get_json(silent=True) or {}
    workspace = get_workspace()
    if 'class_id' in data:
        workspace.lock_class(data['class_id'], bool(data.get('locked', True)))
    else:
        workspace.set_classes_locked(bool(data.get('locked', True)))
    return jsonify({'success': True, **workspace.state()['locks']})

@api_bp.route('/locks/teachers', methods=['POST'])
def toggle_teacher_locks():
    data = request.get_json(silent=True) or {}
    workspace = get_workspace()
    if 'teacher' in data:
        workspace.lock_teacher(data['teacher'], bool(data.get('locked', True)))
    else:
        workspace.set_teachers_locked(bool(data.get('locked', True)))
    return jsonify({'success': True, **workspace.state()['locks']})

############
# TEACHERS #
############

@api_bp.route('/teachers/hours', methods=['GET'])
def get_teacher_hours():
    workspace = get_workspace()
    hours = workspace.teacher_hours()
    return jsonify({
        'success': True,
        'teachers': hours,
        'summary': format_teacher_hours(hours, workspace.policy),
    })

@api_bp.route('/teachers/<name>/offdays', methods=['PUT'])
def update_offdays(name):
    data = request.get_json(silent=True) or {}
    form = OffdayForm(formdata=None, data=data, meta={'csrf': False})
    if not form.validate():
        return _error('Invalid days', errors=form.errors)

    key = teacher_key(name)
    if key is None:
        return _error(f"Invalid teacher name: {name}")

    workspace = get_workspace()
    teacher = workspace.teachers.get(key) or Teacher.from_name(name)
    days = form.day_list()
    try:
        SqlScheduleStore().save_offdays(teacher, days, form.reason.data)
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception("Error updating teacher offdays")
        return _error(f"Error updating teacher offdays: {str(e)}", 500)

    workspace.set_unavailable(key, days)
    return jsonify({'success': True, 'message': f"Updated days off for {teacher.full_name}", 'days': days})

############
# INSIGHTS #
############

@api_bp.route('/recommendations', methods=['GET'])
def get_recommendations():
    day, time, location = (request.args.get(arg) for arg in ('day', 'time', 'location'))
    if not all((day, time, location)):
        return _error('Missing required parameters: day, time, location')

    limit = request.args.get('limit', 3, type=int)
    return jsonify({
        'success': True,
        'recommendations': get_workspace().recommendations(day, time, location, limit),
    })

@api_bp.route('/analytics', methods=['GET'])
def get_analytics():
    return jsonify({'success': True, **get_workspace().analytics()})

##########
# POLICY #
##########

@api_bp.route('/policy', methods=['GET'])
def get_policy():
    policy = get_workspace().policy
    return jsonify({'success': True, 'policy': policy.as_dict()})

@api_bp.route('/policy', methods=['PUT'])
def update_policy():
    data = request.get_json(silent=True)
    if not data:
        return _error('No JSON data provided or invalid JSON format')

    workspace = get_workspace()
    form = PolicyConfigForm(formdata=None, data={**workspace.policy.as_dict(), **data}, meta={'csrf': False})
    if not form.validate():
        return _error('Invalid policy', errors=form.errors)

    try:
        policy = workspace.policy.updated(**{
            name: field.data for name, field in form._fields.items()
        })
    except ValueError as e:
        return _error(str(e))

    workspace.policy = policy
    current_app.logger.info(f"Scheduling policy updated: {policy.as_dict()}")
    return jsonify({'success': True, 'message': 'Policy updated', 'policy': policy.as_dict()})
