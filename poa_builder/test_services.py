"""
Service layer tests: creation, assembly retry, draft edits and lifecycle
events against an in-memory database.
"""

from datetime import datetime

import pytest
from sqlalchemy.exc import OperationalError

from poa_builder import db, services
from poa_builder.assembler import RenderError, UnvalidatedPayloadError, assemble
from poa_builder.models import PowerOfAttorney
from poa_builder.notifications import NotificationDispatcher, init_notifications
from poa_builder.security import Identity
from poa_builder.storage import StorageError, get_storage
from poa_builder.validation import validate_payload
from poa_builder.sample_payloads import (
    PRIMARY_AGENT_EMAIL, PRINCIPAL_EMAIL, SUCCESSOR_AGENT_EMAIL, make_agent, make_durable_payload,
    make_healthcare_payload, make_limited_payload
)

GENERATED_AT = datetime(2026, 4, 1, 12, 0, 0)


class FailingDispatcher(NotificationDispatcher):
    def send_agent_designation(self, agent, poa):
        raise ConnectionError('mail relay unreachable')


def primary_agent(poa):
    return next(a for a in poa.agents if a.agent_type == 'primary')


class TestCreate:
    def test_create_persists_and_assembles(self, app, principal_identity):
        created = services.create_poa(make_durable_payload('FL'), principal_identity)
        poa = created.poa

        assert created.assembly.ok is True
        assert created.assembly.attempts == 1
        assert poa.status == 'DRAFT'
        assert poa.has_document
        assert poa.document_path == f'poa/tenant_1/{poa.id}/{poa.document_filename}'
        assert get_storage().exists(poa.document_path)
        assert get_storage().read(poa.document_path)[:4] == b'%PDF'
        assert [a.agent_type for a in poa.agents] == ['primary', 'successor']
        assert len(poa.granted_powers) == 14
        assert len(poa.witnesses) == 2
        assert poa.notary.full_name == 'Nora Notary'
        assert poa.created_by == 'user-1'

    def test_agents_notified(self, app, principal_identity):
        created = services.create_poa(make_durable_payload('FL'), principal_identity)
        sent = app.extensions['poa_notifications'].sent
        assert sorted(email for _, email in sent) == sorted(a.email for a in created.poa.agents)
        assert all(a.notified_at is not None for a in created.poa.agents)

    def test_document_matches_direct_assembly(self, app, principal_identity):
        payload = make_healthcare_payload('TX')
        created = services.create_poa(payload, principal_identity, generation_timestamp=GENERATED_AT)
        expected = assemble(validate_payload(payload).normalized, GENERATED_AT)
        assert created.poa.document_sha256 == expected.sha256
        assert created.poa.document_filename == expected.filename

    def test_invalid_payload_persists_nothing(self, app, principal_identity):
        payload = make_durable_payload('FL')
        del payload['notaryPublic']
        with pytest.raises(services.InvalidPayloadError) as excinfo:
            services.create_poa(payload, principal_identity)
        assert excinfo.value.status_code == 422
        assert excinfo.value.to_dict()['errors'][0]['code'] == 'notary_required'
        assert PowerOfAttorney.query.count() == 0

    def test_notification_failure_does_not_block_creation(self, app, principal_identity):
        init_notifications(app, FailingDispatcher())
        created = services.create_poa(make_limited_payload(), principal_identity)
        assert created.assembly.ok
        assert created.notifications[0]['sent'] is False
        assert 'unreachable' in created.poa.agents[0].notification_error


class TestAssemblyFailure:
    def test_failure_keeps_draft_without_document(self, app, principal_identity, monkeypatch):
        def broken(*args, **kwargs):
            raise RenderError('renderer crashed')

        monkeypatch.setattr(services, 'assemble_with_timeout', broken)
        created = services.create_poa(make_limited_payload(), principal_identity)
        poa = created.poa

        assert created.assembly.ok is False
        assert created.assembly.retryable is True
        assert created.assembly.exhausted is True
        assert created.assembly.attempts == app.config['ASSEMBLY_MAX_ATTEMPTS']
        assert poa.status == 'DRAFT'
        assert poa.document_path is None
        assert 'renderer crashed' in poa.assembly_error

        monkeypatch.undo()
        outcome = services.retry_assembly(poa.id, principal_identity)
        assert outcome.ok is True
        assert poa.has_document
        assert poa.assembly_error is None
        assert poa.assembly_attempts == app.config['ASSEMBLY_MAX_ATTEMPTS'] + 1

    def test_unvalidated_failure_is_not_retried(self, app, principal_identity, monkeypatch):
        calls = []

        def rejecting(*args, **kwargs):
            calls.append(1)
            raise UnvalidatedPayloadError('missing primary agent')

        monkeypatch.setattr(services, 'assemble_with_timeout', rejecting)
        created = services.create_poa(make_limited_payload(), principal_identity)
        assert created.assembly.retryable is False
        assert len(calls) == 1

    def test_link_failure_with_undeletable_blob(self, app, principal_identity, monkeypatch):
        app.config['REGENERATE_ON_EDIT'] = False
        created = services.create_poa(make_limited_payload(), principal_identity)
        poa, _ = services.update_draft(created.poa.id, make_limited_payload(), principal_identity)

        real_commit = db.session.commit
        commits = []

        def fail_first_commit():
            commits.append(1)
            if len(commits) == 1:
                raise OperationalError('UPDATE', {}, Exception('database is locked'))
            real_commit()

        def refuse(path):
            raise StorageError(f'cannot delete {path}')

        monkeypatch.setattr(db.session, 'commit', fail_first_commit)
        monkeypatch.setattr(get_storage(), 'delete', refuse)
        outcome = services.retry_assembly(poa.id, principal_identity)

        assert outcome.ok is False
        assert outcome.retryable is True
        assert 'Failed to link document' in outcome.error
        assert not poa.has_document

    def test_retry_on_existing_document_is_a_no_op(self, app, principal_identity):
        created = services.create_poa(make_limited_payload(), principal_identity)
        path = created.poa.document_path
        outcome = services.retry_assembly(created.poa.id, principal_identity)
        assert outcome.ok and outcome.attempts == 0
        assert created.poa.document_path == path


class TestAccess:
    def test_other_tenant_cannot_see_poa(self, app, principal_identity):
        created = services.create_poa(make_limited_payload(), principal_identity)
        outsider = Identity(tenant_id='tenant-2', user_id='user-1', email=PRINCIPAL_EMAIL)
        with pytest.raises(services.NotFoundError):
            services.get_poa(created.poa.id, outsider)

    def test_read_document(self, app, principal_identity):
        created = services.create_poa(make_limited_payload(), principal_identity)
        content, filename = services.read_document(created.poa.id, principal_identity)
        assert content[:4] == b'%PDF'
        assert filename == created.poa.document_filename

    def test_tampered_document_rejected(self, app, principal_identity):
        poa = services.create_poa(make_limited_payload(), principal_identity).poa
        get_storage().upload(poa.document_path, b'%PDF-1.4 altered')
        with pytest.raises(services.ConflictError) as excinfo:
            services.read_document(poa.id, principal_identity)
        assert excinfo.value.code == 'integrity_error'


class TestUpdateDraft:
    def test_edit_regenerates_and_removes_stale_document(self, app, principal_identity):
        created = services.create_poa(make_limited_payload(), principal_identity,
                                      generation_timestamp=GENERATED_AT)
        poa = created.poa
        old_path = poa.document_path
        old_agent_id = poa.agents[0].id

        payload = make_limited_payload()
        payload['specificPurpose'] = 'Refinancing the mortgage on 100 Main Street.'
        payload['agents'].append(make_agent('successor', 'Sam Successor', SUCCESSOR_AGENT_EMAIL, order=1))

        poa, outcome = services.update_draft(poa.id, payload, principal_identity)
        assert outcome.ok
        assert poa.generation_timestamp != GENERATED_AT
        assert poa.document_path != old_path
        assert not get_storage().exists(old_path)
        assert poa.specific_purpose.startswith('Refinancing')
        assert poa.agents[0].id == old_agent_id

        sent = [email for _, email in app.extensions['poa_notifications'].sent]
        assert sent.count(SUCCESSOR_AGENT_EMAIL) == 1

    def test_reordered_agents_keep_acceptance(self, app, principal_identity, agent_identity):
        poa = services.create_poa(make_durable_payload('FL'), principal_identity).poa
        accepted = primary_agent(poa)
        services.record_agent_response(accepted.id, agent_identity, accept=True)

        payload = make_durable_payload('FL')
        payload['agents'] = list(reversed(payload['agents']))
        poa, outcome = services.update_draft(poa.id, payload, principal_identity)

        assert outcome.ok
        assert primary_agent(poa).id == accepted.id
        assert primary_agent(poa).acceptance_status == 'accepted'
        assert [a.email for a in poa.agents] == [SUCCESSOR_AGENT_EMAIL, PRIMARY_AGENT_EMAIL]
        sent = [email for _, email in app.extensions['poa_notifications'].sent]
        assert sent.count(PRIMARY_AGENT_EMAIL) == 1

    def test_stale_document_delete_failure_is_not_fatal(self, app, principal_identity, monkeypatch):
        created = services.create_poa(make_limited_payload(), principal_identity)
        storage = get_storage()

        def refuse(path):
            raise StorageError(f'cannot delete {path}')

        monkeypatch.setattr(storage, 'delete', refuse)
        poa, outcome = services.update_draft(created.poa.id, make_limited_payload(), principal_identity)
        assert outcome.ok
        assert poa.has_document

    def test_edit_without_regeneration(self, app, principal_identity):
        app.config['REGENERATE_ON_EDIT'] = False
        created = services.create_poa(make_limited_payload(), principal_identity)
        poa, outcome = services.update_draft(created.poa.id, make_limited_payload(), principal_identity)
        assert outcome is None
        assert not poa.has_document

    def test_invalid_edit_leaves_draft_untouched(self, app, principal_identity):
        created = services.create_poa(make_limited_payload(), principal_identity)
        payload = make_limited_payload()
        payload['agents'] = []
        with pytest.raises(services.InvalidPayloadError):
            services.update_draft(created.poa.id, payload, principal_identity)
        assert created.poa.has_document

    def test_only_drafts_can_be_edited(self, app, principal_identity):
        created = services.create_poa(make_limited_payload(), principal_identity)
        services.record_notarized_upload(created.poa.id, principal_identity, b'%PDF-notarized')
        with pytest.raises(services.ConflictError):
            services.update_draft(created.poa.id, make_limited_payload(), principal_identity)

    def test_agent_cannot_edit(self, app, principal_identity, agent_identity):
        created = services.create_poa(make_limited_payload(), principal_identity)
        with pytest.raises(services.ForbiddenError):
            services.update_draft(created.poa.id, make_limited_payload(), agent_identity)


class TestListingAndDeletion:
    def test_list_is_tenant_scoped_newest_first(self, app, principal_identity):
        first = services.create_poa(make_limited_payload(), principal_identity).poa
        second = services.create_poa(make_healthcare_payload('TX'), principal_identity).poa
        outsider = Identity(tenant_id='tenant-2', user_id='user-9', email='other@example.com')
        services.create_poa(make_limited_payload(), outsider)

        assert [p.id for p in services.list_poas(principal_identity)] == [second.id, first.id]

    def test_delete_draft_removes_row_and_document(self, app, principal_identity):
        poa = services.create_poa(make_limited_payload(), principal_identity).poa
        poa_id, path = poa.id, poa.document_path

        services.delete_draft(poa_id, principal_identity)
        assert PowerOfAttorney.query.count() == 0
        assert not get_storage().exists(path)
        with pytest.raises(services.NotFoundError):
            services.get_poa(poa_id, principal_identity)

    def test_active_poa_cannot_be_deleted(self, app, principal_identity):
        poa = services.create_poa(make_limited_payload(), principal_identity).poa
        services.record_notarized_upload(poa.id, principal_identity, b'%PDF-notarized')
        with pytest.raises(services.ConflictError):
            services.delete_draft(poa.id, principal_identity)

    def test_agent_cannot_delete(self, app, principal_identity, agent_identity):
        poa = services.create_poa(make_limited_payload(), principal_identity).poa
        with pytest.raises(services.ForbiddenError):
            services.delete_draft(poa.id, agent_identity)


class TestRevisions:
    def executed(self, principal_identity, agent_identity):
        poa = services.create_poa(make_durable_payload('FL'), principal_identity).poa
        services.record_agent_response(primary_agent(poa).id, agent_identity, accept=True)
        services.record_notarized_upload(poa.id, principal_identity, b'%PDF-notarized')
        return poa

    def test_revision_copies_and_resets_acceptance(self, app, principal_identity, agent_identity):
        original = self.executed(principal_identity, agent_identity)
        created = services.create_revision(original.id, principal_identity)
        revision = created.poa

        assert created.assembly.ok
        assert revision.id != original.id
        assert revision.status == 'DRAFT'
        assert revision.version_number == 2
        assert revision.parent_poa_id == original.id
        assert revision.is_latest_version is True
        assert original.is_latest_version is False
        assert original.status == 'ACTIVE'
        assert [a.email for a in revision.agents] == [a.email for a in original.agents]
        assert {a.acceptance_status for a in revision.agents} == {'pending'}
        assert revision.get_payload() == original.get_payload()

        assert [p.id for p in services.list_poas(principal_identity)] == [revision.id]
        assert len(services.list_poas(principal_identity, latest_only=False)) == 2

    def test_superseded_version_cannot_be_revised(self, app, principal_identity, agent_identity):
        original = self.executed(principal_identity, agent_identity)
        services.create_revision(original.id, principal_identity)
        with pytest.raises(services.ConflictError) as excinfo:
            services.create_revision(original.id, principal_identity)
        assert excinfo.value.code == 'superseded'

    def test_draft_is_edited_not_revised(self, app, principal_identity):
        poa = services.create_poa(make_limited_payload(), principal_identity).poa
        with pytest.raises(services.ConflictError):
            services.create_revision(poa.id, principal_identity)

    def test_deleting_revision_restores_latest(self, app, principal_identity, agent_identity):
        original = self.executed(principal_identity, agent_identity)
        revision = services.create_revision(original.id, principal_identity).poa
        services.delete_draft(revision.id, principal_identity)
        assert original.is_latest_version is True
        assert [p.id for p in services.list_poas(principal_identity)] == [original.id]


class TestAgentResponses:
    def test_accept_twice_is_idempotent(self, app, principal_identity, agent_identity):
        poa = services.create_poa(make_limited_payload(), principal_identity).poa
        agent_id = primary_agent(poa).id

        agent, first = services.record_agent_response(agent_id, agent_identity, accept=True)
        responded_at = agent.responded_at
        agent, second = services.record_agent_response(agent_id, agent_identity, accept=True)

        assert first.changed is True
        assert second.ok is True and second.changed is False
        assert agent.acceptance_status == 'accepted'
        assert agent.responded_at == responded_at

    def test_decline_after_accept_conflicts(self, app, principal_identity, agent_identity):
        poa = services.create_poa(make_limited_payload(), principal_identity).poa
        agent_id = primary_agent(poa).id
        services.record_agent_response(agent_id, agent_identity, accept=True)
        with pytest.raises(services.ConflictError):
            services.record_agent_response(agent_id, agent_identity, accept=False)

    def test_decline_records_reason(self, app, principal_identity, agent_identity):
        poa = services.create_poa(make_limited_payload(), principal_identity).poa
        agent, result = services.record_agent_response(primary_agent(poa).id, agent_identity,
                                                       accept=False, reason='Moving abroad')
        assert agent.acceptance_status == 'declined'
        assert agent.decline_reason == 'Moving abroad'

    def test_only_named_agent_may_respond(self, app, principal_identity):
        poa = services.create_poa(make_limited_payload(), principal_identity).poa
        with pytest.raises(services.ForbiddenError):
            services.record_agent_response(primary_agent(poa).id, principal_identity, accept=True)

    def test_unknown_agent(self, app, agent_identity):
        with pytest.raises(services.NotFoundError):
            services.record_agent_response(9999, agent_identity, accept=True)


class TestNotarizedUploadAndRevocation:
    def test_upload_activates(self, app, principal_identity):
        poa = services.create_poa(make_limited_payload(), principal_identity).poa
        poa, result = services.record_notarized_upload(poa.id, principal_identity, b'%PDF-signed')
        assert result.changed is True
        assert poa.status == 'ACTIVE'
        assert get_storage().read(poa.notarized_document_path) == b'%PDF-signed'

        poa, again = services.record_notarized_upload(poa.id, principal_identity, b'%PDF-signed')
        assert again.ok is True and again.changed is False

    def test_empty_upload_rejected(self, app, principal_identity):
        poa = services.create_poa(make_limited_payload(), principal_identity).poa
        with pytest.raises(services.ServiceError):
            services.record_notarized_upload(poa.id, principal_identity, b'')
        assert poa.status == 'DRAFT'

    def test_delete_notarized_returns_to_draft(self, app, principal_identity):
        poa = services.create_poa(make_limited_payload(), principal_identity).poa
        poa, _ = services.record_notarized_upload(poa.id, principal_identity, b'%PDF-signed')
        path = poa.notarized_document_path

        poa, result = services.delete_notarized_upload(poa.id, principal_identity)
        assert result.changed is True
        assert poa.status == 'DRAFT'
        assert poa.notarized_document_path is None
        assert poa.notarized_at is None
        assert poa.has_document
        assert not get_storage().exists(path)

    def test_delete_notarized_without_upload(self, app, principal_identity):
        poa = services.create_poa(make_limited_payload(), principal_identity).poa
        with pytest.raises(services.ConflictError) as excinfo:
            services.delete_notarized_upload(poa.id, principal_identity)
        assert excinfo.value.code == 'not_applicable'

    def test_revoked_keeps_notarized_copy(self, app, principal_identity):
        poa = services.create_poa(make_limited_payload(), principal_identity).poa
        services.record_notarized_upload(poa.id, principal_identity, b'%PDF-signed')
        services.revoke(poa.id, principal_identity)
        with pytest.raises(services.ConflictError):
            services.delete_notarized_upload(poa.id, principal_identity)
        assert get_storage().exists(poa.notarized_document_path)

    def test_revoke_generates_notice(self, app, principal_identity):
        poa = services.create_poa(make_durable_payload('FL'), principal_identity).poa
        poa, result = services.revoke(poa.id, principal_identity, reason='Replaced by a new instrument')
        assert result.status == 'REVOKED'
        assert poa.status == 'REVOKED'
        assert poa.revocation_reason == 'Replaced by a new instrument'
        assert get_storage().read(poa.revocation_document_path)[:4] == b'%PDF'

    def test_revoke_twice_conflicts(self, app, principal_identity):
        poa = services.create_poa(make_limited_payload(), principal_identity).poa
        services.revoke(poa.id, principal_identity)
        with pytest.raises(services.ConflictError):
            services.revoke(poa.id, principal_identity)

    def test_only_principal_may_revoke(self, app, principal_identity, agent_identity):
        poa = services.create_poa(make_limited_payload(), principal_identity).poa
        with pytest.raises(services.ForbiddenError):
            services.revoke(poa.id, agent_identity)

    def test_agent_cannot_respond_after_revocation(self, app, principal_identity, agent_identity):
        poa = services.create_poa(make_limited_payload(), principal_identity).poa
        agent_id = primary_agent(poa).id
        services.revoke(poa.id, principal_identity)
        with pytest.raises(services.ConflictError):
            services.record_agent_response(agent_id, agent_identity, accept=True)


class TestWizardProgress:
    def test_start_load_and_save(self, app, principal_identity):
        progress, session = services.start_wizard(principal_identity, 'financial', {'poaType': 'DURABLE'})
        session.update({'state': 'FL'})
        session.next()
        services.save_wizard(progress, session)

        _, restored = services.load_wizard(progress.session_key, principal_identity)
        assert restored.current_step.id == 'principal-info'
        assert restored.form_data == {'poaType': 'DURABLE', 'state': 'FL'}

    def test_other_user_cannot_load(self, app, principal_identity, agent_identity):
        progress, _ = services.start_wizard(principal_identity, 'healthcare')
        with pytest.raises(services.NotFoundError):
            services.load_wizard(progress.session_key, agent_identity)

    def test_unknown_wizard(self, app, principal_identity):
        with pytest.raises(services.ServiceError) as excinfo:
            services.start_wizard(principal_identity, 'estate')
        assert excinfo.value.code == 'unknown_wizard'

    def test_corrupt_snapshot(self, app, principal_identity):
        progress, _ = services.start_wizard(principal_identity, 'financial')
        progress.set_snapshot({'version': 0})
        with pytest.raises(services.ConflictError):
            services.load_wizard(progress.session_key, principal_identity)
