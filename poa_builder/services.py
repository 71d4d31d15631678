"""
POA Services Module

Orchestrates validation, persistence, document assembly, notifications and
lifecycle events. Routes stay thin and call into this module.

Creation is two-phase:
  1. Validate, then persist the POA and all child rows in one transaction
  2. Outside that transaction, notify agents and assemble the document

A failure in phase 2 never rolls back phase 1: the POA stays a DRAFT with
no document reference and records why, so assembly can be retried.
"""

import json
import secrets
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from poa_builder import db
from poa_builder.assembler import (
    AssemblyError, UnvalidatedPayloadError, assemble_revocation, assemble_with_timeout,
    build_storage_path
)
from poa_builder.context_builder import POAContext, build_context
from poa_builder.lifecycle import (
    CODE_CONFLICT, CODE_FORBIDDEN, CODE_NOT_APPLICABLE, LifecycleResult, POAStatus,
    accept_agent, activate_poa, decline_agent, revoke_poa, withdraw_notarization
)
from poa_builder.models import (
    GrantedPowerRecord, NotaryRecord, POAAgent, POAWitness, PowerOfAttorney, WizardProgress
)
from poa_builder.notifications import get_dispatcher
from poa_builder.pdf_generator import verify_pdf_integrity
from poa_builder.storage import StorageError, get_storage
from poa_builder.utils import utcnow
from poa_builder.validation import ValidationResult, validate_payload
from poa_builder.wizard import WizardSession, get_wizard

class ServiceError(Exception):
    """Base for errors the HTTP layer maps onto a status code."""
    status_code = 400
    code = 'error'

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        return {'ok': False, 'errors': [{'field': '', 'message': self.message, 'code': self.code}]}


class NotFoundError(ServiceError):
    status_code = 404
    code = 'not_found'


class ForbiddenError(ServiceError):
    status_code = 403
    code = CODE_FORBIDDEN


class ConflictError(ServiceError):
    status_code = 409
    code = CODE_CONFLICT


class InvalidPayloadError(ServiceError):
    status_code = 422
    code = 'validation_failed'

    def __init__(self, result: ValidationResult):
        super().__init__('The power of attorney failed validation')
        self.result = result

    def to_dict(self) -> Dict[str, Any]:
        return self.result.to_dict()


LIFECYCLE_ERRORS = {
    CODE_FORBIDDEN: ForbiddenError,
    CODE_CONFLICT: ConflictError,
    CODE_NOT_APPLICABLE: ConflictError,
}


def _raise_for_lifecycle(result: LifecycleResult):
    if not result.ok:
        error_class = LIFECYCLE_ERRORS.get(result.code, ConflictError)
        raise error_class(result.message, code=result.code)


@dataclass
class AssemblyOutcome:
    """Result of one assemble_document call."""
    ok: bool
    poa_id: int
    attempts: int = 0
    retryable: bool = False
    exhausted: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ok': self.ok,
            'poa_id': self.poa_id,
            'attempts': self.attempts,
            'retryable': self.retryable,
            'exhausted': self.exhausted,
            'error': self.error,
        }


@dataclass
class CreateResult:
    poa: PowerOfAttorney
    assembly: AssemblyOutcome
    notifications: List[Dict[str, Any]] = field(default_factory=list)


# Record materialization

def _address_json(address) -> Optional[str]:
    data = address.to_dict()
    if not any(data[k] for k in ('street', 'city', 'zipCode')):
        return None
    return json.dumps(data, sort_keys=True)


def _apply_context(poa: PowerOfAttorney, context: POAContext, payload: Dict[str, Any]):
    """Copy a validated context onto the POA and rebuild its child rows."""
    poa.poa_type = context.poa_type
    poa.state = context.state
    poa.principal_name = context.principal.full_name
    poa.principal_email = context.principal.email
    poa.is_durable = context.is_durable
    poa.is_springing = context.is_springing
    poa.is_limited = context.is_limited
    poa.effective_date = context.effective_date
    poa.expiration_date = context.expiration_date
    poa.springing_condition = context.springing_condition or None
    poa.number_of_physicians = context.number_of_physicians
    poa.specific_purpose = context.specific_purpose or None
    poa.set_payload(payload)

    # Matched by email (unique per POA); surviving agents keep their acceptance state
    previous = {a.email.lower(): a for a in poa.agents}
    agents = []
    for position, agent in enumerate(context.agents):
        record = previous.get(agent.email)
        if record is None:
            record = POAAgent(email=agent.email)
        record.agent_key = agent.id
        record.position = position
        record.agent_type = agent.agent_type
        record.order = agent.order
        record.full_name = agent.full_name
        record.phone = agent.phone or None
        record.relationship = agent.relationship or None
        record.address_json = _address_json(agent.address)
        agents.append(record)
    poa.agents = agents

    poa.granted_powers = [
        GrantedPowerRecord(
            category_id=power.category_id,
            category_name=power.category_name,
            all_sub_powers=power.all_sub_powers,
            sub_power_ids_json=json.dumps(power.sub_power_ids),
        )
        for power in context.granted_powers
    ]

    poa.witnesses = [
        POAWitness(
            position=position,
            full_name=witness.full_name,
            relationship=witness.relationship or None,
            address_json=_address_json(witness.address),
        )
        for position, witness in enumerate(context.witnesses)
    ]

    if context.notary is not None:
        # Updated in place; poa_id is unique on the notary table
        notary = poa.notary or NotaryRecord()
        notary.full_name = context.notary.full_name
        notary.commission_number = context.notary.commission_number or None
        notary.commission_expiration = context.notary.commission_expiration
        notary.county = context.notary.county or None
        notary.state = context.notary.state or None
        poa.notary = notary
    else:
        poa.notary = None


def _commit():
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise


# Lookups and ownership

def get_poa(poa_id: int, identity) -> PowerOfAttorney:
    """Load a POA visible to the caller's tenant."""
    poa = db.session.get(PowerOfAttorney, poa_id)
    if poa is None or poa.tenant_id != identity.tenant_id:
        raise NotFoundError(f'Power of attorney {poa_id} not found')
    return poa


def _is_owner(poa: PowerOfAttorney, identity) -> bool:
    return identity.email == poa.principal_email or (
        poa.created_by is not None and identity.user_id == poa.created_by
    )


def _require_owner(poa: PowerOfAttorney, identity):
    if not _is_owner(poa, identity):
        raise ForbiddenError('Only the principal may change this power of attorney')


def list_poas(identity, latest_only: bool = True) -> List[PowerOfAttorney]:
    """POAs in the caller's tenant, newest first; superseded revisions only on request."""
    query = PowerOfAttorney.query.filter_by(tenant_id=identity.tenant_id)
    if latest_only:
        query = query.filter_by(is_latest_version=True)
    return query.order_by(PowerOfAttorney.created_at.desc(), PowerOfAttorney.id.desc()).all()


# Creation and assembly

def create_poa(payload: Dict[str, Any], identity, generation_timestamp=None) -> CreateResult:
    """
    Validate and create a POA, then notify agents and assemble its document.

    Args:
        payload: Sanitized POA payload
        identity: Caller Identity (tenant and creator)
        generation_timestamp: Fixed timestamp for rendering; defaults to now

    Raises:
        InvalidPayloadError: If full validation fails (nothing is persisted)
    """
    return _create(payload, identity, generation_timestamp)


def _create(payload: Dict[str, Any], identity, generation_timestamp=None,
            parent: Optional[PowerOfAttorney] = None) -> CreateResult:
    result = validate_payload(payload, mode='full')
    if not result.is_valid:
        raise InvalidPayloadError(result)

    poa = PowerOfAttorney(
        tenant_id=identity.tenant_id,
        created_by=identity.user_id,
        status=POAStatus.DRAFT.value,
        generation_timestamp=generation_timestamp or utcnow(),
        version_number=parent.version_number + 1 if parent else 1,
        parent_poa_id=parent.id if parent else None,
        is_latest_version=True,
    )
    _apply_context(poa, result.normalized, payload)
    db.session.add(poa)
    if parent is not None:
        parent.is_latest_version = False
    _commit()

    current_app.logger.info(f'Created POA {poa.id} ({poa.poa_type}, {poa.state}) for tenant {poa.tenant_id}')

    notifications = notify_agents(poa)
    outcome = assemble_document(poa)
    return CreateResult(poa=poa, assembly=outcome, notifications=notifications)


def notify_agents(poa: PowerOfAttorney, agents: Optional[List[POAAgent]] = None) -> List[Dict[str, Any]]:
    """Send designation notices; failures are recorded on the agent and never raised."""
    dispatcher = get_dispatcher()
    report = []
    for agent in agents if agents is not None else poa.agents:
        try:
            sent, error = dispatcher.send_agent_designation(agent, poa)
        except Exception as e:
            current_app.logger.exception(f'Notification dispatcher failed for agent {agent.id}')
            sent, error = False, str(e)

        if sent:
            agent.notified_at = utcnow()
            agent.notification_error = None
        else:
            agent.notification_error = error
            current_app.logger.warning(f'Agent {agent.id} on POA {poa.id} was not notified: {error}')
        report.append({'agent_id': agent.id, 'sent': sent, 'error': error})

    try:
        _commit()
    except SQLAlchemyError:
        current_app.logger.exception(f'Failed to record notification status for POA {poa.id}')
    return report


def _discard_blob(path: str, poa_id: int):
    try:
        get_storage().delete(path)
    except StorageError:
        current_app.logger.exception(f'Failed to delete {path} for POA {poa_id}')


def _record_assembly_failure(poa: PowerOfAttorney, outcome: AssemblyOutcome) -> AssemblyOutcome:
    poa.clear_document()
    poa.assembly_error = outcome.error
    poa.assembly_retryable = outcome.retryable
    _commit()
    current_app.logger.warning(
        f'Assembly failed for POA {poa.id} after {outcome.attempts} attempt(s): {outcome.error}'
    )
    return outcome


def assemble_document(poa: PowerOfAttorney, max_attempts: Optional[int] = None) -> AssemblyOutcome:
    """
    Assemble, upload and link the document for a draft POA.

    The stored payload is revalidated first. Retryable failures are retried
    up to ASSEMBLY_MAX_ATTEMPTS times within this call.

    Returns:
        AssemblyOutcome (the POA keeps no document reference on failure)
    """
    config = current_app.config
    max_attempts = max_attempts or config['ASSEMBLY_MAX_ATTEMPTS']

    result = validate_payload(poa.get_payload(), mode='full')
    if not result.is_valid:
        messages = '; '.join(f'{e.field}: {e.message}' for e in result.errors[:5])
        return _record_assembly_failure(poa, AssemblyOutcome(
            ok=False, poa_id=poa.id, retryable=False, error=f'Stored payload is no longer valid: {messages}'
        ))

    document = None
    attempts = 0
    last_error = None
    while attempts < max_attempts:
        attempts += 1
        poa.assembly_attempts += 1
        try:
            document = assemble_with_timeout(
                result.normalized,
                poa.generation_timestamp,
                timeout=config['ASSEMBLY_TIMEOUT_SECONDS'],
                tz_name=config['DOCUMENT_TIMEZONE'],
            )
            break
        except UnvalidatedPayloadError as e:
            return _record_assembly_failure(poa, AssemblyOutcome(
                ok=False, poa_id=poa.id, attempts=attempts, retryable=False, error=str(e)
            ))
        except AssemblyError as e:
            last_error = e
            current_app.logger.warning(f'Assembly attempt {attempts} for POA {poa.id} failed: {e}')

    if document is None:
        return _record_assembly_failure(poa, AssemblyOutcome(
            ok=False, poa_id=poa.id, attempts=attempts, retryable=True, exhausted=True,
            error=str(last_error)
        ))

    storage = get_storage()
    path = build_storage_path(poa.tenant_id, poa.id, document.filename)
    try:
        storage.upload(path, document.content)
    except StorageError as e:
        return _record_assembly_failure(poa, AssemblyOutcome(
            ok=False, poa_id=poa.id, attempts=attempts, retryable=True, error=str(e)
        ))

    previous_path = poa.document_path
    poa.link_document(path, document.filename, document.sha256, document.page_count, document.generated_at)
    poa.assembly_retryable = True
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        _discard_blob(path, poa.id)
        return _record_assembly_failure(poa, AssemblyOutcome(
            ok=False, poa_id=poa.id, attempts=attempts, retryable=True,
            error=f'Failed to link document: {e}'
        ))

    if previous_path and previous_path != path:
        _discard_blob(previous_path, poa.id)

    current_app.logger.info(f'Assembled POA {poa.id}: {document.filename} ({document.page_count} pages)')
    return AssemblyOutcome(ok=True, poa_id=poa.id, attempts=attempts)


def retry_assembly(poa_id: int, identity) -> AssemblyOutcome:
    """Repeat only the assembly phase for a draft without a document."""
    poa = get_poa(poa_id, identity)
    _require_owner(poa, identity)

    if poa.status != POAStatus.DRAFT.value:
        raise ConflictError(f'A {poa.status.lower()} power of attorney cannot be reassembled')
    if poa.has_document:
        return AssemblyOutcome(ok=True, poa_id=poa.id)
    return assemble_document(poa)


def update_draft(poa_id: int, payload: Dict[str, Any], identity) -> Tuple[PowerOfAttorney, Optional[AssemblyOutcome]]:
    """
    Replace a draft's payload.

    Any generated document is deleted and its reference cleared. With
    REGENERATE_ON_EDIT the document is rebuilt at once under a fresh
    generation timestamp.

    Raises:
        InvalidPayloadError: If the new payload fails validation
        ConflictError: If the POA is no longer a draft
    """
    poa = get_poa(poa_id, identity)
    _require_owner(poa, identity)
    if poa.status != POAStatus.DRAFT.value:
        raise ConflictError(f'Only a draft can be edited; this power of attorney is {poa.status.lower()}')

    result = validate_payload(payload, mode='full')
    if not result.is_valid:
        raise InvalidPayloadError(result)

    known_agents = {a.id for a in poa.agents if a.id is not None}
    stale_path = poa.document_path
    poa.clear_document()
    _apply_context(poa, result.normalized, payload)
    poa.generation_timestamp = utcnow()
    poa.assembly_attempts = 0
    poa.assembly_error = None
    _commit()

    if stale_path:
        _discard_blob(stale_path, poa.id)

    new_agents = [a for a in poa.agents if a.id not in known_agents]
    if new_agents:
        notify_agents(poa, new_agents)

    outcome = None
    if current_app.config['REGENERATE_ON_EDIT']:
        outcome = assemble_document(poa)
    return poa, outcome


def delete_draft(poa_id: int, identity):
    """
    Delete a draft and its stored document.

    Active instruments must be revoked instead. Deleting a draft revision
    makes the version it replaced the latest again, and any interview that
    produced the draft may be submitted again.
    """
    poa = get_poa(poa_id, identity)
    _require_owner(poa, identity)
    if poa.status != POAStatus.DRAFT.value:
        raise ConflictError(f'Only a draft can be deleted; revoke this {poa.status.lower()} power of attorney instead')

    paths = [poa.document_path, poa.notarized_document_path]
    if poa.parent_poa_id is not None:
        parent = db.session.get(PowerOfAttorney, poa.parent_poa_id)
        if parent is not None:
            parent.is_latest_version = True
    WizardProgress.query.filter_by(poa_id=poa.id).update({'poa_id': None})
    db.session.delete(poa)
    _commit()

    for path in paths:
        if path:
            _discard_blob(path, poa_id)
    current_app.logger.info(f'Deleted draft POA {poa_id}')


def create_revision(poa_id: int, identity) -> CreateResult:
    """
    Start a new version of an executed POA.

    The revision is a fresh draft built from the stored payload: version
    number plus one, agents asked again to accept, its own document. The
    original stays untouched apart from no longer being the latest version.

    Raises:
        ConflictError: If the POA is a draft or has already been revised
        InvalidPayloadError: If the stored payload no longer validates
    """
    poa = get_poa(poa_id, identity)
    _require_owner(poa, identity)
    if poa.status == POAStatus.DRAFT.value:
        raise ConflictError('Edit the draft instead of revising it')
    if not poa.is_latest_version:
        raise ConflictError(f'Power of attorney {poa.id} has already been revised', code='superseded')

    created = _create(poa.get_payload(), identity, parent=poa)
    current_app.logger.info(
        f'POA {created.poa.id} is version {created.poa.version_number} of POA {poa.id}'
    )
    return created


def read_document(poa_id: int, identity) -> Tuple[bytes, str]:
    poa = get_poa(poa_id, identity)
    if not poa.has_document:
        raise NotFoundError('No document has been generated for this power of attorney')
    try:
        content = get_storage().read(poa.document_path)
    except StorageError:
        current_app.logger.exception(f'Stored document for POA {poa.id} could not be read')
        raise NotFoundError('The generated document is unavailable')
    if not verify_pdf_integrity(content, poa.document_sha256):
        current_app.logger.error(f'Stored document for POA {poa.id} does not match its recorded hash')
        raise ConflictError('The generated document failed its integrity check', code='integrity_error')
    return content, poa.document_filename


# Lifecycle events

def record_agent_response(agent_id: int, identity, accept: bool, reason: str = '') -> Tuple[POAAgent, LifecycleResult]:
    """Apply an agent's accept or decline; the caller must be that agent."""
    agent = db.session.get(POAAgent, agent_id)
    if agent is None or agent.poa.tenant_id != identity.tenant_id:
        raise NotFoundError(f'Agent {agent_id} not found')

    poa_status = agent.poa.current_status()
    respond = accept_agent if accept else decline_agent
    result = respond(agent.acceptance_status, agent.email, identity.email, poa_status)
    _raise_for_lifecycle(result)

    if result.changed:
        agent.acceptance_status = result.status
        agent.responded_at = utcnow()
        if not accept:
            agent.decline_reason = reason or None
        _commit()
        current_app.logger.info(f'Agent {agent.id} on POA {agent.poa_id} {result.status}')
    return agent, result


def record_notarized_upload(poa_id: int, identity, content: bytes) -> Tuple[PowerOfAttorney, LifecycleResult]:
    """Store the executed, notarized copy and activate the POA."""
    poa = get_poa(poa_id, identity)
    _require_owner(poa, identity)

    result = activate_poa(poa.status, poa.poa_type, poa.expiration_date, utcnow().date())
    _raise_for_lifecycle(result)
    if not result.changed:
        return poa, result

    if not poa.has_document:
        raise ConflictError('The document must be generated before a notarized copy is uploaded')
    if not content:
        raise ServiceError('The notarized document is empty', code='empty_upload')

    storage = get_storage()
    path = build_storage_path(poa.tenant_id, poa.id, f'notarized_{poa.document_filename}')
    try:
        storage.upload(path, content)
    except StorageError as e:
        raise ServiceError(str(e), code='storage_error')

    poa.notarized_document_path = path
    poa.notarized_at = utcnow()
    poa.status = result.status
    try:
        _commit()
    except SQLAlchemyError:
        _discard_blob(path, poa.id)
        raise

    current_app.logger.info(f'POA {poa.id} activated from notarized upload')
    return poa, result


def delete_notarized_upload(poa_id: int, identity) -> Tuple[PowerOfAttorney, LifecycleResult]:
    """Remove the notarized copy of an active POA, returning it to DRAFT."""
    poa = get_poa(poa_id, identity)
    _require_owner(poa, identity)

    result = withdraw_notarization(poa.status, poa.poa_type, poa.expiration_date, utcnow().date())
    _raise_for_lifecycle(result)

    path = poa.notarized_document_path
    poa.notarized_document_path = None
    poa.notarized_at = None
    poa.status = result.status
    _commit()

    if path:
        _discard_blob(path, poa.id)
    current_app.logger.info(f'Notarized copy of POA {poa.id} removed; back to draft')
    return poa, result


def revoke(poa_id: int, identity, reason: str = '') -> Tuple[PowerOfAttorney, LifecycleResult]:
    """
    Revoke a POA. Only the principal may revoke.

    A revocation notice is generated when the instrument had a document;
    a failure there is logged and does not block the revocation.
    """
    poa = get_poa(poa_id, identity)
    if identity.email != poa.principal_email:
        raise ForbiddenError('Only the principal may revoke this power of attorney')

    revoked_at = utcnow()
    result = revoke_poa(poa.status, poa.poa_type, poa.expiration_date, revoked_at.date())
    _raise_for_lifecycle(result)

    poa.status = result.status
    poa.revoked_at = revoked_at
    poa.revocation_reason = reason or None

    if poa.has_document:
        context = build_context(poa.get_payload())
        executed_on = (poa.notarized_at or poa.generated_at).date()
        try:
            notice = assemble_revocation(context, executed_on, revoked_at, reason,
                                         tz_name=current_app.config['DOCUMENT_TIMEZONE'])
            path = build_storage_path(poa.tenant_id, poa.id, notice.filename)
            get_storage().upload(path, notice.content)
            poa.revocation_document_path = path
        except (AssemblyError, StorageError):
            current_app.logger.exception(f'Failed to produce revocation notice for POA {poa.id}')

    _commit()
    current_app.logger.info(f'POA {poa.id} revoked')
    return poa, result


# Wizard progress

def _session_key() -> str:
    return secrets.token_urlsafe(24)


def start_wizard(identity, wizard_id: str, form_data: Optional[Dict[str, Any]] = None) -> Tuple[WizardProgress, WizardSession]:
    """Begin an interview and persist its first snapshot."""
    try:
        wizard = get_wizard(wizard_id)
    except ValueError as e:
        raise ServiceError(str(e), code='unknown_wizard')

    session = WizardSession(wizard, form_data=form_data)
    progress = WizardProgress(
        session_key=_session_key(),
        tenant_id=identity.tenant_id,
        user_id=identity.user_id,
        wizard_id=wizard.id,
    )
    progress.set_snapshot(session.serialize())
    db.session.add(progress)
    _commit()
    return progress, session


def load_wizard(session_key: str, identity) -> Tuple[WizardProgress, WizardSession]:
    progress = WizardProgress.query.filter_by(session_key=session_key).first()
    if progress is None or progress.tenant_id != identity.tenant_id or progress.user_id != identity.user_id:
        raise NotFoundError('Wizard session not found')
    try:
        session = WizardSession.deserialize(progress.get_snapshot())
    except ValueError as e:
        raise ConflictError(f'Saved wizard progress cannot be restored: {e}')
    return progress, session


def save_wizard(progress: WizardProgress, session: WizardSession):
    progress.set_snapshot(session.serialize())
    _commit()


def submit_wizard(session_key: str, identity) -> Tuple[WizardProgress, CreateResult]:
    """
    Create a POA from a finished interview.

    Every applicable step, review included, must have been completed, and
    a session yields at most one POA.

    Raises:
        ConflictError: If the session was already submitted or is unfinished
        InvalidPayloadError: If the collected data fails full validation
    """
    progress, session = load_wizard(session_key, identity)
    if progress.poa_id is not None:
        raise ConflictError(f'This interview already created power of attorney {progress.poa_id}',
                            code='already_submitted')

    report = session.progress()
    if report.completed < report.total:
        raise ConflictError(f'Complete every step before submitting ({report.completed} of {report.total} done)',
                            code='wizard_incomplete')

    created = create_poa(session.form_data, identity)
    progress.poa_id = created.poa.id
    save_wizard(progress, session)
    return progress, created
