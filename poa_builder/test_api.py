"""
HTTP API tests through the Flask test client.
"""

import io
import re
from urllib.parse import urlsplit

from flask import render_template_string

from poa_builder import services
from poa_builder.assembler import RenderError
from poa_builder.models import PowerOfAttorney
from poa_builder.notifications import (
    AGENT_DESIGNATION_TEXT, NotificationDispatcher, _template_vars, init_notifications
)
from poa_builder.sample_payloads import (
    PRINCIPAL_EMAIL, make_durable_payload, make_healthcare_payload, make_limited_payload
)


class CapturingDispatcher(NotificationDispatcher):
    def __init__(self):
        self.bodies = []

    def send_agent_designation(self, agent, poa):
        self.bodies.append(render_template_string(AGENT_DESIGNATION_TEXT, **_template_vars(agent, poa)))
        return True, None


def create(client, headers, payload=None):
    response = client.post('/api/poa', json=payload or make_limited_payload(), headers=headers)
    assert response.status_code == 201, response.get_json()
    return response.get_json()['poa']


class TestReferenceData:
    def test_states(self, client):
        response = client.get('/api/poa/states')
        data = response.get_json()
        assert response.status_code == 200
        florida = next(s for s in data['states'] if s['code'] == 'FL')
        assert florida['allows_springing'] is False
        assert florida['financial']['notary_required'] is True

    def test_categories(self, client):
        data = client.get('/api/poa/categories').get_json()
        assert [c['id'] for c in data['categories']] == list('ABCDEFGHIJKLMN')
        assert {c['id'] for c in data['categories'] if c['has_hot_powers']} == {'G', 'H', 'L'}

    def test_security_headers_present(self, client):
        response = client.get('/api/poa/states')
        assert response.headers['X-Content-Type-Options'] == 'nosniff'


class TestValidateEndpoint:
    def test_valid_payload(self, client):
        response = client.post('/api/poa/validate', json=make_durable_payload('FL'))
        assert response.status_code == 200
        assert response.get_json()['ok'] is True

    def test_invalid_payload(self, client):
        payload = make_durable_payload('FL')
        payload['agents'] = []
        response = client.post('/api/poa/validate', json=payload)
        assert response.status_code == 422
        data = response.get_json()
        assert data['ok'] is False
        assert any(e['field'] == 'agents' for e in data['errors'])

    def test_step_mode(self, client):
        response = client.post('/api/poa/validate?mode=step&step=document-type',
                               json={'poaType': 'DURABLE', 'state': 'FL'})
        assert response.status_code == 200

    def test_unknown_step(self, client):
        response = client.post('/api/poa/validate?mode=step&step=payment', json={'poaType': 'DURABLE'})
        assert response.status_code == 422
        assert response.get_json()['errors'][0]['code'] == 'unknown_step'

    def test_bad_mode(self, client):
        response = client.post('/api/poa/validate?mode=partial', json={})
        assert response.status_code == 400

    def test_missing_body(self, client):
        response = client.post('/api/poa/validate', data='not json', content_type='text/plain')
        assert response.status_code == 400
        assert response.get_json()['errors'][0]['code'] == 'missing_payload'


class TestPOAEndpoints:
    def test_requires_identity(self, client):
        response = client.post('/api/poa', json=make_limited_payload())
        assert response.status_code == 401

    def test_create_and_fetch(self, client, principal_headers):
        poa = create(client, principal_headers, make_durable_payload('FL'))
        assert poa['status'] == 'DRAFT'
        assert poa['has_document'] is True
        assert len(poa['agents']) == 2

        response = client.get(f'/api/poa/{poa["id"]}?payload=1', headers=principal_headers)
        assert response.status_code == 200
        assert response.get_json()['poa']['id'] == poa['id']

    def test_create_invalid(self, client, principal_headers):
        payload = make_limited_payload()
        del payload['specificPurpose']
        response = client.post('/api/poa', json=payload, headers=principal_headers)
        assert response.status_code == 422

    def test_other_tenant_gets_404(self, client, principal_headers):
        poa = create(client, principal_headers)
        response = client.get(f'/api/poa/{poa["id"]}',
                              headers={'X-Tenant-Id': 'tenant-2', 'X-User-Email': PRINCIPAL_EMAIL})
        assert response.status_code == 404

    def test_download_document(self, client, principal_headers):
        poa = create(client, principal_headers, make_healthcare_payload())
        response = client.get(f'/api/poa/{poa["id"]}/document', headers=principal_headers)
        assert response.status_code == 200
        assert response.mimetype == 'application/pdf'
        assert response.data[:4] == b'%PDF'
        assert poa['document_filename'] in response.headers['Content-Disposition']

    def test_assembly_failure_then_retry(self, client, principal_headers, monkeypatch):
        def broken(*args, **kwargs):
            raise RenderError('renderer crashed')

        monkeypatch.setattr(services, 'assemble_with_timeout', broken)
        response = client.post('/api/poa', json=make_limited_payload(), headers=principal_headers)
        assert response.status_code == 503
        data = response.get_json()
        assert data['poa']['status'] == 'DRAFT'
        assert data['poa']['has_document'] is False
        assert data['assembly']['retryable'] is True

        poa_id = data['poa']['id']
        assert client.get(f'/api/poa/{poa_id}/document', headers=principal_headers).status_code == 404

        monkeypatch.undo()
        response = client.post(f'/api/poa/{poa_id}/assemble', headers=principal_headers)
        assert response.status_code == 200
        assert response.get_json()['poa']['has_document'] is True

    def test_update_draft(self, client, principal_headers):
        poa = create(client, principal_headers)
        payload = make_limited_payload()
        payload['specificPurpose'] = 'Selling the lake cabin.'
        response = client.put(f'/api/poa/{poa["id"]}', json=payload, headers=principal_headers)
        assert response.status_code == 200
        updated = response.get_json()['poa']
        assert updated['has_document'] is True
        assert updated['document_filename'] != poa['document_filename']


    def test_list_and_delete(self, client, principal_headers):
        kept = create(client, principal_headers)
        dropped = create(client, principal_headers, make_healthcare_payload())

        listed = client.get('/api/poa', headers=principal_headers).get_json()['poas']
        assert [p['id'] for p in listed] == [dropped['id'], kept['id']]

        response = client.delete(f'/api/poa/{dropped["id"]}', headers=principal_headers)
        assert response.status_code == 200
        assert client.get(f'/api/poa/{dropped["id"]}', headers=principal_headers).status_code == 404
        listed = client.get('/api/poa', headers=principal_headers).get_json()['poas']
        assert [p['id'] for p in listed] == [kept['id']]


class TestLifecycleEndpoints:
    def test_agent_accepts_twice(self, client, principal_headers, agent_headers):
        poa = create(client, principal_headers)
        agent_id = poa['agents'][0]['id']

        first = client.post(f'/api/poa/agents/{agent_id}/accept', headers=agent_headers)
        second = client.post(f'/api/poa/agents/{agent_id}/accept', headers=agent_headers)
        assert first.status_code == 200
        assert first.get_json()['agent']['acceptance_status'] == 'accepted'
        assert second.status_code == 200
        assert second.get_json()['result']['changed'] is False

    def test_decline_after_accept_conflicts(self, client, principal_headers, agent_headers):
        poa = create(client, principal_headers)
        agent_id = poa['agents'][0]['id']
        client.post(f'/api/poa/agents/{agent_id}/accept', headers=agent_headers)
        response = client.post(f'/api/poa/agents/{agent_id}/decline', json={'reason': 'Changed my mind'},
                               headers=agent_headers)
        assert response.status_code == 409

    def test_designation_email_links_respond(self, app, client, principal_headers, agent_headers):
        capture = CapturingDispatcher()
        init_notifications(app, capture)
        create(client, principal_headers)

        body = capture.bodies[0]
        accept_path = urlsplit(re.search(r'Accept: (\S+)', body).group(1)).path
        decline_path = urlsplit(re.search(r'Decline: (\S+)', body).group(1)).path
        assert decline_path.endswith('/decline')

        response = client.post(accept_path, headers=agent_headers)
        assert response.status_code == 200
        assert response.get_json()['agent']['acceptance_status'] == 'accepted'
        assert client.post(decline_path, headers=agent_headers).status_code == 409

    def test_principal_cannot_accept_for_agent(self, client, principal_headers):
        poa = create(client, principal_headers)
        response = client.post(f'/api/poa/agents/{poa["agents"][0]["id"]}/accept', headers=principal_headers)
        assert response.status_code == 403

    def test_notarized_upload(self, client, principal_headers):
        poa = create(client, principal_headers)
        response = client.post(
            f'/api/poa/{poa["id"]}/notarized',
            data={'document': (io.BytesIO(b'%PDF-1.4 signed'), 'signed.pdf')},
            content_type='multipart/form-data',
            headers=principal_headers,
        )
        assert response.status_code == 200
        assert response.get_json()['poa']['status'] == 'ACTIVE'

    def test_remove_notarized_then_revise(self, client, principal_headers):
        poa = create(client, principal_headers)
        url = f'/api/poa/{poa["id"]}/notarized'
        client.post(url, data=b'%PDF-1.4 signed', content_type='application/pdf', headers=principal_headers)

        response = client.delete(url, headers=principal_headers)
        assert response.status_code == 200
        assert response.get_json()['poa']['status'] == 'DRAFT'
        assert client.delete(url, headers=principal_headers).status_code == 409

        assert client.post(f'/api/poa/{poa["id"]}/revisions', headers=principal_headers).status_code == 409
        client.post(url, data=b'%PDF-1.4 signed', content_type='application/pdf', headers=principal_headers)
        response = client.post(f'/api/poa/{poa["id"]}/revisions', headers=principal_headers)
        assert response.status_code == 201
        revision = response.get_json()['poa']
        assert revision['version_number'] == 2
        assert revision['parent_poa_id'] == poa['id']
        assert client.delete(f'/api/poa/{poa["id"]}', headers=principal_headers).status_code == 409

    def test_revoke(self, client, principal_headers, agent_headers):
        poa = create(client, principal_headers)
        url = f'/api/poa/{poa["id"]}/revoke'

        assert client.post(url, json={}, headers=agent_headers).status_code == 403

        response = client.post(url, json={'reason': 'No longer needed'}, headers=principal_headers)
        assert response.status_code == 200
        assert response.get_json()['poa']['status'] == 'REVOKED'

        assert client.post(url, json={}, headers=principal_headers).status_code == 409


class TestWizardEndpoints:
    def start(self, client, headers, form_data):
        response = client.post('/api/wizard', json={'wizard': 'financial', 'formData': form_data},
                               headers=headers)
        assert response.status_code == 201
        return response.get_json()

    def test_navigation_and_autosave(self, client, principal_headers):
        data = self.start(client, principal_headers, {})
        key = data['session']
        assert data['currentStep']['id'] == 'document-type'

        response = client.post(f'/api/wizard/{key}/next', headers=principal_headers)
        assert response.status_code == 422
        assert response.get_json()['moved'] is False

        client.post(f'/api/wizard/{key}/data', json={'changes': {'poaType': 'DURABLE', 'state': 'FL'}},
                    headers=principal_headers)
        response = client.post(f'/api/wizard/{key}/next', headers=principal_headers)
        assert response.status_code == 200
        assert response.get_json()['currentStep']['id'] == 'principal-info'

        restored = client.get(f'/api/wizard/{key}', headers=principal_headers).get_json()
        assert restored['currentStep']['id'] == 'principal-info'
        assert restored['snapshot']['formData']['state'] == 'FL'

        response = client.post(f'/api/wizard/{key}/previous', headers=principal_headers)
        assert response.get_json()['currentStep']['id'] == 'document-type'

    def test_wizard_private_to_user(self, client, principal_headers, agent_headers):
        key = self.start(client, principal_headers, {})['session']
        assert client.get(f'/api/wizard/{key}', headers=agent_headers).status_code == 404

    def test_unknown_wizard(self, client, principal_headers):
        response = client.post('/api/wizard', json={'wizard': 'estate'}, headers=principal_headers)
        assert response.status_code == 400
        assert response.get_json()['errors'][0]['code'] == 'unknown_wizard'

    def walk_to_end(self, client, headers, key):
        for _ in range(20):
            response = client.post(f'/api/wizard/{key}/next', headers=headers)
            assert response.status_code == 200, response.get_json()
            if response.get_json()['reason'] == 'at_last_step':
                return response.get_json()
        raise AssertionError('wizard never reached its last step')

    def finished_payload(self):
        payload = make_durable_payload('FL')
        payload.update(disclaimerAccepted=True, finalConfirmation=True)
        return payload

    def test_submit_creates_poa(self, client, principal_headers):
        key = self.start(client, principal_headers, self.finished_payload())['session']
        final = self.walk_to_end(client, principal_headers, key)
        assert final['currentStep']['id'] == 'review'
        assert final['progress']['percent'] == 100

        response = client.post(f'/api/wizard/{key}/submit', headers=principal_headers)
        assert response.status_code == 201
        poa = response.get_json()['poa']
        assert poa['principal_name'] == 'Jane Principal'
        assert poa['has_document'] is True

    def test_submit_twice_creates_one_poa(self, app, client, principal_headers):
        key = self.start(client, principal_headers, self.finished_payload())['session']
        self.walk_to_end(client, principal_headers, key)
        assert client.post(f'/api/wizard/{key}/submit', headers=principal_headers).status_code == 201

        response = client.post(f'/api/wizard/{key}/submit', headers=principal_headers)
        assert response.status_code == 409
        assert response.get_json()['errors'][0]['code'] == 'already_submitted'
        assert PowerOfAttorney.query.count() == 1

    def test_submit_before_review_rejected(self, app, client, principal_headers):
        key = self.start(client, principal_headers, self.finished_payload())['session']
        client.post(f'/api/wizard/{key}/next', headers=principal_headers)

        response = client.post(f'/api/wizard/{key}/submit', headers=principal_headers)
        assert response.status_code == 409
        assert response.get_json()['errors'][0]['code'] == 'wizard_incomplete'
        assert PowerOfAttorney.query.count() == 0
