"""
Flask routes for the POA Builder application.

JSON API only:
- Validation and creation of financial and healthcare POAs
- Listing, draft edits and deletion, assembly retry and document download
- Revisions of executed POAs
- Agent acceptance, notarized upload and its removal, revocation
- Wizard sessions with autosaved progress
- Reference data (states, power categories)
"""

import io

from flask import Blueprint, request, jsonify, send_file, current_app, g

from poa_builder import services
from poa_builder.power_catalog import catalog_to_dict
from poa_builder.rules_catalog import list_states
from poa_builder.security import (
    csrf, identity_required, rate_limit, sanitize_payload, get_client_ip
)
from poa_builder.validation import validate_payload


api_bp = Blueprint('api', __name__, url_prefix='/api')

# Authenticated by the identity headers, not by browser sessions
csrf.exempt(api_bp)

MAX_NOTARIZED_UPLOAD_BYTES = 20 * 1024 * 1024


def _missing_payload():
    return jsonify({
        'ok': False,
        'errors': [{'field': '', 'message': 'No JSON payload provided', 'code': 'missing_payload'}]
    }), 400


def _json_body():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return None
    return sanitize_payload(payload)


@api_bp.errorhandler(services.ServiceError)
def handle_service_error(error):
    return jsonify(error.to_dict()), error.status_code


def _assembly_response(poa, outcome, status_code=200):
    """201/200 when the document exists; 503 when assembly failed but may be retried."""
    body = {'ok': outcome.ok, 'poa': poa.to_dict(), 'assembly': outcome.to_dict()}
    if outcome.ok:
        return jsonify(body), status_code
    body['errors'] = [{'field': '', 'message': outcome.error or 'Document assembly failed',
                       'code': 'assembly_failed'}]
    return jsonify(body), 503 if outcome.retryable else 422


# Reference data

@api_bp.route('/poa/states', methods=['GET'])
def api_states():
    return jsonify({'ok': True, 'states': list_states()}), 200


@api_bp.route('/poa/categories', methods=['GET'])
def api_categories():
    return jsonify({'ok': True, 'categories': catalog_to_dict()}), 200


# POA

@api_bp.route('/poa/validate', methods=['POST'])
@rate_limit('validate')
def api_validate():
    """
    Validate a POA payload.

    Query args:
        mode: 'full' (default) or 'step'
        step: wizard step id in step mode
    """
    payload = _json_body()
    if payload is None:
        return _missing_payload()

    mode = request.args.get('mode', 'full')
    step_id = request.args.get('step')
    if mode not in ('full', 'step'):
        return jsonify({
            'ok': False,
            'errors': [{'field': 'mode', 'message': 'mode must be "full" or "step"', 'code': 'enum'}]
        }), 400

    try:
        result = validate_payload(payload, mode=mode, step_id=step_id)
    except Exception as e:
        current_app.logger.error(f'Validation error from {get_client_ip()}: {str(e)}')
        return jsonify({
            'ok': False,
            'errors': [{'field': '', 'message': 'Internal validation error', 'code': 'internal_error'}]
        }), 500

    if result.is_valid:
        return jsonify({'ok': True, 'errors': [], 'warnings': [w.to_dict() for w in result.warnings]}), 200
    return jsonify(result.to_dict()), 422


@api_bp.route('/poa', methods=['GET'])
@identity_required
def api_list():
    """List the tenant's POAs; ?all=1 includes superseded revisions."""
    poas = services.list_poas(g.identity, latest_only=request.args.get('all') != '1')
    return jsonify({'ok': True, 'poas': [poa.to_dict() for poa in poas]}), 200


@api_bp.route('/poa', methods=['POST'])
@rate_limit('create')
@identity_required
def api_create():
    """
    Create a POA and assemble its document.

    Returns 201 with the POA when the document was produced. When only
    assembly failed the POA still exists as a DRAFT and 503 is returned
    with the POA id so the client can retry.
    """
    payload = _json_body()
    if payload is None:
        return _missing_payload()

    created = services.create_poa(payload, g.identity)
    return _assembly_response(created.poa, created.assembly, 201)


@api_bp.route('/poa/<int:poa_id>', methods=['GET'])
@identity_required
def api_get(poa_id: int):
    poa = services.get_poa(poa_id, g.identity)
    include_payload = request.args.get('payload') == '1'
    return jsonify({'ok': True, 'poa': poa.to_dict(include_payload=include_payload)}), 200


@api_bp.route('/poa/<int:poa_id>', methods=['PUT'])
@rate_limit('create')
@identity_required
def api_update(poa_id: int):
    payload = _json_body()
    if payload is None:
        return _missing_payload()

    poa, outcome = services.update_draft(poa_id, payload, g.identity)
    if outcome is None:
        return jsonify({'ok': True, 'poa': poa.to_dict(), 'assembly': None}), 200
    return _assembly_response(poa, outcome)


@api_bp.route('/poa/<int:poa_id>', methods=['DELETE'])
@rate_limit('lifecycle')
@identity_required
def api_delete(poa_id: int):
    services.delete_draft(poa_id, g.identity)
    return jsonify({'ok': True, 'deleted': poa_id}), 200


@api_bp.route('/poa/<int:poa_id>/revisions', methods=['POST'])
@rate_limit('create')
@identity_required
def api_create_revision(poa_id: int):
    created = services.create_revision(poa_id, g.identity)
    return _assembly_response(created.poa, created.assembly, 201)


@api_bp.route('/poa/<int:poa_id>/assemble', methods=['POST'])
@rate_limit('assemble')
@identity_required
def api_assemble(poa_id: int):
    outcome = services.retry_assembly(poa_id, g.identity)
    poa = services.get_poa(poa_id, g.identity)
    return _assembly_response(poa, outcome)


@api_bp.route('/poa/<int:poa_id>/document', methods=['GET'])
@identity_required
def api_document(poa_id: int):
    content, filename = services.read_document(poa_id, g.identity)
    return send_file(
        io.BytesIO(content),
        mimetype='application/pdf',
        as_attachment=True,
        download_name=filename
    )


@api_bp.route('/poa/<int:poa_id>/notarized', methods=['POST'])
@rate_limit('lifecycle')
@identity_required
def api_notarized(poa_id: int):
    """Upload the executed, notarized PDF (multipart field 'document' or a raw PDF body)."""
    upload = request.files.get('document')
    content = upload.read() if upload is not None else request.get_data()

    if len(content) > MAX_NOTARIZED_UPLOAD_BYTES:
        return jsonify({
            'ok': False,
            'errors': [{'field': 'document', 'message': 'Upload is too large', 'code': 'max_length'}]
        }), 413

    poa, result = services.record_notarized_upload(poa_id, g.identity, content)
    return jsonify({'ok': True, 'poa': poa.to_dict(), 'result': result.to_dict()}), 200


@api_bp.route('/poa/<int:poa_id>/notarized', methods=['DELETE'])
@rate_limit('lifecycle')
@identity_required
def api_delete_notarized(poa_id: int):
    poa, result = services.delete_notarized_upload(poa_id, g.identity)
    return jsonify({'ok': True, 'poa': poa.to_dict(), 'result': result.to_dict()}), 200


@api_bp.route('/poa/<int:poa_id>/revoke', methods=['POST'])
@rate_limit('lifecycle')
@identity_required
def api_revoke(poa_id: int):
    body = _json_body() or {}
    poa, result = services.revoke(poa_id, g.identity, reason=body.get('reason', ''))
    return jsonify({'ok': True, 'poa': poa.to_dict(), 'result': result.to_dict()}), 200


@api_bp.route('/poa/agents/<int:agent_id>/accept', methods=['POST'])
@rate_limit('lifecycle')
@identity_required
def api_agent_accept(agent_id: int):
    agent, result = services.record_agent_response(agent_id, g.identity, accept=True)
    return jsonify({'ok': True, 'agent': agent.to_dict(), 'result': result.to_dict()}), 200


@api_bp.route('/poa/agents/<int:agent_id>/decline', methods=['POST'])
@rate_limit('lifecycle')
@identity_required
def api_agent_decline(agent_id: int):
    body = _json_body() or {}
    agent, result = services.record_agent_response(agent_id, g.identity, accept=False,
                                                   reason=body.get('reason', ''))
    return jsonify({'ok': True, 'agent': agent.to_dict(), 'result': result.to_dict()}), 200


# Wizard

def _wizard_body(progress, session, transition=None):
    body = {
        'ok': True,
        'session': progress.session_key,
        'wizard': session.wizard.id,
        'currentSection': {'id': session.current_section.id, 'title': session.current_section.title},
        'currentStep': {'id': session.current_step.id, 'title': session.current_step.title},
        'progress': session.progress().to_dict(),
        'snapshot': session.serialize(),
        'errors': [],
    }
    if transition is not None:
        body['moved'] = transition.moved
        body['reason'] = transition.reason
        body['changes'] = [{'kind': c.kind, 'payload': c.payload} for c in transition.changes]
        if transition.errors:
            body['ok'] = False
            body['errors'] = [e.to_dict() for e in transition.errors]
    return body


def _wizard_step(session_key: str, action):
    progress, session = services.load_wizard(session_key, g.identity)
    transition = action(session)
    services.save_wizard(progress, session)
    body = _wizard_body(progress, session, transition)
    return jsonify(body), 200 if body['ok'] else 422


@api_bp.route('/wizard', methods=['POST'])
@rate_limit('wizard')
@identity_required
def api_wizard_start():
    body = _json_body() or {}
    form_data = body.get('formData') or {}
    if not isinstance(form_data, dict):
        return jsonify({
            'ok': False,
            'errors': [{'field': 'formData', 'message': 'formData must be an object', 'code': 'type'}]
        }), 400

    progress, session = services.start_wizard(g.identity, body.get('wizard', 'financial'), form_data)
    return jsonify(_wizard_body(progress, session)), 201


@api_bp.route('/wizard/<session_key>', methods=['GET'])
@identity_required
def api_wizard_get(session_key: str):
    progress, session = services.load_wizard(session_key, g.identity)
    return jsonify(_wizard_body(progress, session)), 200


@api_bp.route('/wizard/<session_key>/data', methods=['POST'])
@rate_limit('wizard')
@identity_required
def api_wizard_data(session_key: str):
    body = _json_body()
    if body is None:
        return _missing_payload()
    changes = body.get('changes', body)
    if not isinstance(changes, dict):
        return jsonify({
            'ok': False,
            'errors': [{'field': 'changes', 'message': 'changes must be an object', 'code': 'type'}]
        }), 400
    return _wizard_step(session_key, lambda session: session.update(changes))


@api_bp.route('/wizard/<session_key>/next', methods=['POST'])
@rate_limit('wizard')
@identity_required
def api_wizard_next(session_key: str):
    return _wizard_step(session_key, lambda session: session.next())


@api_bp.route('/wizard/<session_key>/previous', methods=['POST'])
@rate_limit('wizard')
@identity_required
def api_wizard_previous(session_key: str):
    return _wizard_step(session_key, lambda session: session.previous())


@api_bp.route('/wizard/<session_key>/complete', methods=['POST'])
@rate_limit('wizard')
@identity_required
def api_wizard_complete(session_key: str):
    body = _json_body() or {}
    return _wizard_step(session_key, lambda session: session.mark_step_complete(body.get('stepId')))


@api_bp.route('/wizard/<session_key>/submit', methods=['POST'])
@rate_limit('create')
@identity_required
def api_wizard_submit(session_key: str):
    """Create a POA from a completed interview; each session submits once."""
    _, created = services.submit_wizard(session_key, g.identity)
    return _assembly_response(created.poa, created.assembly, 201)
