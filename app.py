"""
Flask Web Application for the form runtime

JSON API for building forms, filling them in and reading responses.

Session state is not kept on the server: every session call returns the
state and the client sends it back with the next command.
"""

from flask import Flask, request, jsonify, send_from_directory
import json
import logging
import os

from formflow.attachments import LocalAttachmentStore, encode_data_uri
from formflow.commands import (
    SessionState, StartForm, NextQuestion, PrevQuestion, GoToQuestion, GoToSection,
    SetAnswer, SetAttachment, SubmitForm, ResetForm,
)
from formflow.contracts import Capabilities, Form
from formflow.core.form_builder import check_rules, validate_for_save
from formflow.core.form_session import FormSession
from formflow.core.navigation import NavigationEngine
from formflow.core.statistics import build_statistics
from formflow.persistence import (
    AccessDenied, FormRepository, JsonFileStore, MemoryStore, PersistenceFailure,
    ResponseRepository,
)
from formflow.results import IllegalCommand
from formflow.utils.helpers import generate_id
from formflow.utils.policy import RuntimePolicy

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize Flask app
app = Flask(__name__)
app.config['SECRET_KEY'] = os.environ.get('FORMFLOW_SECRET_KEY', 'formflow-dev-secret-key')
app.config['FORMFLOW_DATA_DIR'] = os.environ.get('FORMFLOW_DATA_DIR', 'outputs/store')
app.config['FORMFLOW_ATTACHMENT_DIR'] = os.environ.get('FORMFLOW_ATTACHMENT_DIR', 'outputs/attachments')
app.config['FORMFLOW_POLICY'] = RuntimePolicy()
# Profile used when a request carries no X-Formflow-Profile header.
# None means anonymous: may fill in forms and view results, nothing else.
app.config['FORMFLOW_DEFAULT_PROFILE'] = None

# Session command names accepted by /api/session/command
COMMANDS = {
    'start': StartForm,
    'next': NextQuestion,
    'prev': PrevQuestion,
    'go_to_question': GoToQuestion,
    'go_to_section': GoToSection,
    'set_answer': SetAnswer,
    'set_attachment': SetAttachment,
    'submit': SubmitForm,
    'reset': ResetForm,
}

# Repositories (created lazily so tests can swap the store)
storage = {
    'forms': None,
    'responses': None,
    'attachments': None,
}


def init_storage(store=None, attachment_dir=None):
    """
    Build repositories over an entity store.

    Args:
        store: EntityStore to use (default: JsonFileStore under FORMFLOW_DATA_DIR)
        attachment_dir: Attachment directory (default: FORMFLOW_ATTACHMENT_DIR)
    """
    store = store or JsonFileStore(app.config['FORMFLOW_DATA_DIR'])
    attachments = LocalAttachmentStore(attachment_dir or app.config['FORMFLOW_ATTACHMENT_DIR'])

    storage['forms'] = FormRepository(store)
    # Session-local fallback keeps a submission if the primary store fails
    storage['responses'] = ResponseRepository(store, attachment_store=attachments, fallback=MemoryStore())
    storage['attachments'] = attachments
    logger.info("Storage initialized")


def get_storage():
    if storage['forms'] is None:
        init_storage()
    return storage


def current_capabilities():
    """Capabilities for the profile in the X-Formflow-Profile header."""
    header = request.headers.get('X-Formflow-Profile')
    if not header:
        profile = app.config['FORMFLOW_DEFAULT_PROFILE']
        return Capabilities.for_profile(profile) if profile else Capabilities()
    try:
        return Capabilities.for_profile(json.loads(header))
    except ValueError:
        logger.warning("Ignoring malformed X-Formflow-Profile header")
        return Capabilities()


def error_response(message, status):
    return jsonify({
        'success': False,
        'error': message
    }), status


def session_payload(engine, result):
    """JSON body for an accepted session command."""
    state = result.state
    return {
        'success': True,
        'changed': result.changed,
        'state': state.to_json(),
        'notices': [n.to_dict() for n in result.notices],
        'questions': [view.to_dict() for view in engine.describe(state)],
        'sections': engine.section_status(state),
        'progress': engine.progress(state),
    }


# =============================================================================
# Forms
# =============================================================================

@app.route('/api/forms', methods=['GET'])
def list_forms():
    """List forms, newest first"""
    try:
        published_only = request.args.get('published') in ('1', 'true')
        forms = get_storage()['forms'].list_forms(
            owner_id=request.args.get('owner'),
            published_only=published_only
        )
        return jsonify({
            'success': True,
            'forms': [form.to_dict() for form in forms]
        })

    except PersistenceFailure as e:
        logger.error(f"Error listing forms: {e}")
        return error_response(str(e), 503)


@app.route('/api/forms', methods=['POST'])
def create_form():
    """Create a form from its JSON design"""
    data = request.get_json(silent=True) or {}
    data.setdefault('id', generate_id())
    return save_form(data, creating=True)


@app.route('/api/forms/<form_id>', methods=['GET'])
def get_form(form_id):
    try:
        form = get_storage()['forms'].load_form(form_id)
    except PersistenceFailure as e:
        logger.error(f"Error loading form {form_id}: {e}")
        return error_response(str(e), 503)

    if form is None:
        return error_response('Form not found', 404)

    return jsonify({
        'success': True,
        'form': form.to_dict()
    })


@app.route('/api/forms/<form_id>', methods=['PUT'])
def update_form(form_id):
    """Replace a form's design wholesale"""
    data = request.get_json(silent=True) or {}
    data['id'] = form_id
    return save_form(data, creating=False)


def save_form(data, creating):
    forms = get_storage()['forms']

    try:
        form = Form.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        return error_response(f"Invalid form: {e}", 400)

    problems = validate_for_save(form)
    if problems:
        return jsonify({
            'success': False,
            'error': problems[0],
            'problems': problems
        }), 400

    try:
        if not creating and forms.load_form(form.id) is None:
            return error_response('Form not found', 404)
        saved = forms.save_form(form, current_capabilities())
    except AccessDenied as e:
        return error_response(str(e), 403)
    except PersistenceFailure as e:
        logger.error(f"Error saving form {form.id}: {e}")
        return error_response(str(e), 503)

    # Rule problems are reported, not enforced
    issues = [
        {'ownerId': i.owner_id, 'ruleId': i.rule_id, 'problem': i.problem}
        for i in check_rules(saved)
    ]

    return jsonify({
        'success': True,
        'form': saved.to_dict(),
        'ruleIssues': issues
    }), 201 if creating else 200


@app.route('/api/forms/<form_id>', methods=['DELETE'])
def delete_form(form_id):
    try:
        deleted = get_storage()['forms'].delete_form(form_id, current_capabilities())
    except AccessDenied as e:
        return error_response(str(e), 403)
    except PersistenceFailure as e:
        logger.error(f"Error deleting form {form_id}: {e}")
        return error_response(str(e), 503)

    if not deleted:
        return error_response('Form not found', 404)

    return jsonify({'success': True})


@app.route('/api/forms/<form_id>/publish', methods=['POST'])
def publish_form(form_id):
    """Publish (or unpublish with {"published": false}) a form"""
    data = request.get_json(silent=True) or {}
    published = bool(data.get('published', True))

    try:
        found = get_storage()['forms'].set_published(form_id, published, current_capabilities())
    except AccessDenied as e:
        return error_response(str(e), 403)
    except PersistenceFailure as e:
        logger.error(f"Error publishing form {form_id}: {e}")
        return error_response(str(e), 503)

    if not found:
        return error_response('Form not found', 404)

    return jsonify({
        'success': True,
        'published': published
    })


# =============================================================================
# Sessions
# =============================================================================

def load_published_form(form_id):
    form = get_storage()['forms'].load_form(form_id)
    if form is None or not form.published:
        return None
    return form


def build_session(form):
    engine = NavigationEngine(form, policy=app.config['FORMFLOW_POLICY'])
    return FormSession(engine, get_storage()['responses'])


@app.route('/api/forms/<form_id>/session/start', methods=['POST'])
def start_session(form_id):
    """Open a new session on the form's cover"""
    try:
        form = load_published_form(form_id)
    except PersistenceFailure as e:
        logger.error(f"Error loading form {form_id}: {e}")
        return error_response(str(e), 503)

    if form is None:
        return error_response('Form not available', 404)

    session = build_session(form)
    state = session.new_session()

    return jsonify({
        'success': True,
        'state': state.to_json(),
        'form': {
            'id': form.id,
            'title': form.title,
            'description': form.description,
            'cover': form.cover.to_dict() if form.cover else None,
        },
        'sections': session.engine.section_status(state)
    })


@app.route('/api/session/command', methods=['POST'])
def session_command():
    """
    Apply one session command.

    Body:
        {"command": "next", "state": {...}}
        {"command": "set_answer", "state": {...}, "questionId": "q1", "value": "Yes"}
        {"command": "set_attachment", "state": {...}, "questionId": "q1", "reference": "data:..."}
        {"command": "go_to_question" | "go_to_section", "state": {...}, "index": 2}
    """
    data = request.get_json(silent=True) or {}
    command_class = COMMANDS.get(data.get('command'))

    if command_class is None:
        return error_response(f"Unknown command: {data.get('command')}", 400)

    try:
        state = SessionState.from_json(data.get('state') or {})
    except (KeyError, TypeError, ValueError) as e:
        return error_response(f"Invalid session state: {e}", 400)

    try:
        form = load_published_form(state.form_id)
    except PersistenceFailure as e:
        logger.error(f"Error loading form {state.form_id}: {e}")
        return error_response(str(e), 503)

    if form is None:
        return error_response('Form not available', 404)

    try:
        command = build_command(command_class, state, data)
    except (KeyError, TypeError, ValueError) as e:
        return error_response(f"Invalid command arguments: {e}", 400)

    session = build_session(form)
    result = session.dispatch(command)

    if isinstance(result, IllegalCommand):
        return error_response(result.reason, 409)

    return jsonify(session_payload(session.engine, result))


def build_command(command_class, state, data):
    if command_class in (GoToQuestion, GoToSection):
        return command_class(state=state, index=int(data['index']))
    if command_class is SetAnswer:
        return SetAnswer(state=state, question_id=data['questionId'], value=data.get('value'))
    if command_class is SetAttachment:
        return SetAttachment(state=state, question_id=data['questionId'], reference=data.get('reference'))
    return command_class(state=state)


@app.route('/api/attachments', methods=['POST'])
def upload_attachment():
    """
    Turn an uploaded file into an inline reference for set_attachment.

    Files are only written to the attachment store when the response is
    submitted.
    """
    uploaded = request.files.get('file')
    if uploaded is None:
        return error_response('No file uploaded', 400)

    data = uploaded.read()
    mime = uploaded.mimetype or 'application/octet-stream'

    return jsonify({
        'success': True,
        'reference': encode_data_uri(data, mime),
        'fileName': uploaded.filename,
        'fileSize': len(data)
    })


@app.route('/attachments/<path:reference>')
def serve_attachment(reference):
    """Serve a stored attachment file"""
    attachments = get_storage()['attachments']
    if not attachments.exists(reference):
        return error_response('File not found', 404)
    return send_from_directory(os.path.abspath(attachments.base_dir), reference)


# =============================================================================
# Responses
# =============================================================================

@app.route('/api/forms/<form_id>/responses', methods=['GET'])
def list_responses(form_id):
    try:
        responses = get_storage()['responses'].list_responses(form_id, current_capabilities())
    except AccessDenied as e:
        return error_response(str(e), 403)
    except PersistenceFailure as e:
        logger.error(f"Error listing responses for {form_id}: {e}")
        return error_response(str(e), 503)

    attachments = get_storage()['attachments']
    payload = []
    for response in responses:
        item = response.to_dict()
        item['attachments'] = {
            q_id: attachments.to_display_url(ref) for q_id, ref in response.attachments.items()
        }
        payload.append(item)

    return jsonify({
        'success': True,
        'responses': payload
    })


@app.route('/api/responses/<response_id>', methods=['PUT'])
def update_response(response_id):
    """Replace a stored response's answers (and attachments if given)"""
    if not current_capabilities().can_edit_forms:
        return error_response('Not allowed to edit responses', 403)

    data = request.get_json(silent=True) or {}
    answers = data.get('answers')
    if not isinstance(answers, dict):
        return error_response('answers must be an object', 400)

    try:
        found = get_storage()['responses'].update_response(response_id, answers, data.get('attachments'))
    except PersistenceFailure as e:
        logger.error(f"Error updating response {response_id}: {e}")
        return error_response(str(e), 503)

    if not found:
        return error_response('Response not found', 404)

    return jsonify({'success': True})


@app.route('/api/responses/<response_id>', methods=['DELETE'])
def delete_response(response_id):
    if not current_capabilities().can_delete_forms:
        return error_response('Not allowed to delete responses', 403)

    try:
        found = get_storage()['responses'].delete_response(response_id)
    except PersistenceFailure as e:
        logger.error(f"Error deleting response {response_id}: {e}")
        return error_response(str(e), 503)

    if not found:
        return error_response('Response not found', 404)

    return jsonify({'success': True})


@app.route('/api/forms/<form_id>/statistics', methods=['GET'])
def form_statistics(form_id):
    """Per-question answer counts"""
    try:
        form = get_storage()['forms'].load_form(form_id)
        if form is None:
            return error_response('Form not found', 404)
        responses = get_storage()['responses'].list_responses(form_id, current_capabilities())
    except AccessDenied as e:
        return error_response(str(e), 403)
    except PersistenceFailure as e:
        logger.error(f"Error building statistics for {form_id}: {e}")
        return error_response(str(e), 503)

    stats = build_statistics(form, responses)
    return jsonify({
        'success': True,
        'statistics': stats.to_dict()
    })


if __name__ == '__main__':
    init_storage()

    print("\n" + "="*60)
    print("FORMFLOW - FORM RUNTIME API")
    print("="*60)
    print("\nServer starting...")
    print("API available at: http://localhost:5000/api/forms")
    print("\nPress Ctrl+C to stop the server")
    print("="*60 + "\n")

    app.run(debug=True, host='0.0.0.0', port=5000)
