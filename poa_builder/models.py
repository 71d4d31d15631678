"""
Database models for the POA Builder application.

- PowerOfAttorney aggregate with its agents, granted powers, witnesses and notary
- Generation timestamp stored once for deterministic re-rendering
- Wizard progress snapshots for autosave/resume
"""

import json
from datetime import date

from poa_builder import db
from poa_builder.lifecycle import AgentStatus, POAStatus, effective_status
from poa_builder.utils import utcnow


class PowerOfAttorney(db.Model):
    """
    A power of attorney instrument and its lifecycle.

    The document_* columns are populated only after assembly and upload both
    succeed; a POA without them is a recoverable DRAFT.
    """
    __tablename__ = 'powers_of_attorney'

    id = db.Column(db.Integer, primary_key=True)

    # Ownership (from the identity collaborator)
    tenant_id = db.Column(db.String(100), nullable=False, index=True)
    created_by = db.Column(db.String(100), nullable=True)
    principal_email = db.Column(db.String(254), nullable=False)
    principal_name = db.Column(db.String(100), nullable=False)

    # Type and jurisdiction
    poa_type = db.Column(db.String(20), nullable=False)
    state = db.Column(db.String(2), nullable=False)
    status = db.Column(db.String(20), default=POAStatus.DRAFT.value, nullable=False)

    is_durable = db.Column(db.Boolean, default=False, nullable=False)
    is_springing = db.Column(db.Boolean, default=False, nullable=False)
    is_limited = db.Column(db.Boolean, default=False, nullable=False)

    effective_date = db.Column(db.Date, nullable=True)
    expiration_date = db.Column(db.Date, nullable=True)
    springing_condition = db.Column(db.Text, nullable=True)
    number_of_physicians = db.Column(db.Integer, nullable=True)
    specific_purpose = db.Column(db.Text, nullable=True)

    # Validated payload (stable key ordering)
    payload_json = db.Column(db.Text, nullable=False)

    # Generation timestamp for determinism
    # This is set once at creation and used for all rendering
    generation_timestamp = db.Column(db.DateTime, nullable=False, default=utcnow)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Generated document
    document_path = db.Column(db.String(500), nullable=True)
    document_filename = db.Column(db.String(255), nullable=True)
    document_sha256 = db.Column(db.String(64), nullable=True)
    page_count = db.Column(db.Integer, nullable=True)
    generated_at = db.Column(db.DateTime, nullable=True)

    # Assembly tracking
    assembly_attempts = db.Column(db.Integer, default=0, nullable=False)
    assembly_error = db.Column(db.Text, nullable=True)
    assembly_retryable = db.Column(db.Boolean, default=True, nullable=False)

    # Execution
    notarized_document_path = db.Column(db.String(500), nullable=True)
    notarized_at = db.Column(db.DateTime, nullable=True)

    # Revisions; each revision is a new POA pointing at the one it replaces
    version_number = db.Column(db.Integer, default=1, nullable=False)
    parent_poa_id = db.Column(db.Integer, db.ForeignKey('powers_of_attorney.id'), nullable=True)
    is_latest_version = db.Column(db.Boolean, default=True, nullable=False, index=True)

    # Revocation
    revoked_at = db.Column(db.DateTime, nullable=True)
    revocation_reason = db.Column(db.Text, nullable=True)
    revocation_document_path = db.Column(db.String(500), nullable=True)

    agents = db.relationship('POAAgent', backref='poa', lazy=True, cascade='all, delete-orphan',
                             order_by='POAAgent.position')
    granted_powers = db.relationship('GrantedPowerRecord', backref='poa', lazy=True,
                                     cascade='all, delete-orphan', order_by='GrantedPowerRecord.category_id')
    witnesses = db.relationship('POAWitness', backref='poa', lazy=True, cascade='all, delete-orphan',
                                order_by='POAWitness.position')
    notary = db.relationship('NotaryRecord', backref='poa', uselist=False, cascade='all, delete-orphan')

    def __repr__(self):
        return f'<PowerOfAttorney {self.id} {self.poa_type} {self.state} - {self.status}>'

    def get_payload(self):
        """Deserialize the JSON payload."""
        return json.loads(self.payload_json)

    def set_payload(self, payload):
        """Serialize the payload to JSON with stable ordering."""
        self.payload_json = json.dumps(payload, indent=2, sort_keys=True)

    @property
    def has_document(self) -> bool:
        return self.document_path is not None

    def current_status(self, today: date = None) -> str:
        """Status with expiry derived on read."""
        today = today or utcnow().date()
        return effective_status(self.poa_type, self.status, self.expiration_date, today).value

    def link_document(self, path, filename, sha256, page_count, generated_at):
        self.document_path = path
        self.document_filename = filename
        self.document_sha256 = sha256
        self.page_count = page_count
        self.generated_at = generated_at
        self.assembly_error = None

    def clear_document(self):
        """Drop the generated document reference (the blob is deleted by the caller)."""
        self.document_path = None
        self.document_filename = None
        self.document_sha256 = None
        self.page_count = None
        self.generated_at = None

    def to_dict(self, include_payload=False):
        """Convert to dictionary for API responses."""
        data = {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'poa_type': self.poa_type,
            'state': self.state,
            'status': self.current_status(),
            'is_durable': self.is_durable,
            'is_springing': self.is_springing,
            'is_limited': self.is_limited,
            'principal_name': self.principal_name,
            'effective_date': self.effective_date.isoformat() if self.effective_date else None,
            'expiration_date': self.expiration_date.isoformat() if self.expiration_date else None,
            'generation_timestamp': self.generation_timestamp.isoformat() if self.generation_timestamp else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'has_document': self.has_document,
            'document_filename': self.document_filename,
            'document_sha256': self.document_sha256,
            'page_count': self.page_count,
            'assembly_attempts': self.assembly_attempts,
            'assembly_error': self.assembly_error,
            'notarized_at': self.notarized_at.isoformat() if self.notarized_at else None,
            'revoked_at': self.revoked_at.isoformat() if self.revoked_at else None,
            'version_number': self.version_number,
            'parent_poa_id': self.parent_poa_id,
            'is_latest_version': self.is_latest_version,
            'agents': [a.to_dict() for a in self.agents],
            'granted_powers': [p.to_dict() for p in self.granted_powers],
            'witnesses': [w.to_dict() for w in self.witnesses],
            'notary': self.notary.to_dict() if self.notary else None,
        }
        if include_payload:
            data['payload'] = self.get_payload()
        return data


class POAAgent(db.Model):
    """An agent named on a POA, with acceptance tracking."""
    __tablename__ = 'poa_agents'

    id = db.Column(db.Integer, primary_key=True)
    poa_id = db.Column(db.Integer, db.ForeignKey('powers_of_attorney.id'), nullable=False, index=True)

    agent_key = db.Column(db.String(100), nullable=False)  # Stable id from the normalized model
    position = db.Column(db.Integer, nullable=False, default=0)
    agent_type = db.Column(db.String(20), nullable=False)
    order = db.Column(db.Integer, nullable=True)

    full_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(254), nullable=False)
    phone = db.Column(db.String(20), nullable=True)
    relationship = db.Column(db.String(100), nullable=True)
    address_json = db.Column(db.Text, nullable=True)

    acceptance_status = db.Column(db.String(20), default=AgentStatus.PENDING.value, nullable=False)
    responded_at = db.Column(db.DateTime, nullable=True)
    decline_reason = db.Column(db.Text, nullable=True)

    notified_at = db.Column(db.DateTime, nullable=True)
    notification_error = db.Column(db.Text, nullable=True)

    def __repr__(self):
        return f'<POAAgent {self.id} {self.agent_type} - {self.acceptance_status}>'

    def to_dict(self):
        return {
            'id': self.id,
            'agent_key': self.agent_key,
            'type': self.agent_type,
            'order': self.order,
            'full_name': self.full_name,
            'email': self.email,
            'relationship': self.relationship,
            'address': json.loads(self.address_json) if self.address_json else None,
            'acceptance_status': self.acceptance_status,
            'responded_at': self.responded_at.isoformat() if self.responded_at else None,
        }


class GrantedPowerRecord(db.Model):
    """A granted power category, materialized from the catalog projection."""
    __tablename__ = 'poa_granted_powers'

    id = db.Column(db.Integer, primary_key=True)
    poa_id = db.Column(db.Integer, db.ForeignKey('powers_of_attorney.id'), nullable=False, index=True)
    category_id = db.Column(db.String(2), nullable=False)
    category_name = db.Column(db.String(100), nullable=False)
    all_sub_powers = db.Column(db.Boolean, default=True, nullable=False)
    sub_power_ids_json = db.Column(db.Text, nullable=False, default='[]')

    def to_dict(self):
        return {
            'category_id': self.category_id,
            'category_name': self.category_name,
            'all_sub_powers': self.all_sub_powers,
            'sub_power_ids': json.loads(self.sub_power_ids_json or '[]'),
        }


class POAWitness(db.Model):
    __tablename__ = 'poa_witnesses'

    id = db.Column(db.Integer, primary_key=True)
    poa_id = db.Column(db.Integer, db.ForeignKey('powers_of_attorney.id'), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    full_name = db.Column(db.String(100), nullable=False)
    relationship = db.Column(db.String(100), nullable=True)
    address_json = db.Column(db.Text, nullable=True)

    def to_dict(self):
        return {
            'full_name': self.full_name,
            'relationship': self.relationship,
            'address': json.loads(self.address_json) if self.address_json else None,
        }


class NotaryRecord(db.Model):
    __tablename__ = 'poa_notaries'

    id = db.Column(db.Integer, primary_key=True)
    poa_id = db.Column(db.Integer, db.ForeignKey('powers_of_attorney.id'), nullable=False, unique=True)
    full_name = db.Column(db.String(100), nullable=False)
    commission_number = db.Column(db.String(50), nullable=True)
    commission_expiration = db.Column(db.Date, nullable=True)
    county = db.Column(db.String(100), nullable=True)
    state = db.Column(db.String(2), nullable=True)

    def to_dict(self):
        return {
            'full_name': self.full_name,
            'commission_number': self.commission_number,
            'commission_expiration': (
                self.commission_expiration.isoformat() if self.commission_expiration else None
            ),
            'county': self.county,
            'state': self.state,
        }


class WizardProgress(db.Model):
    """
    Autosaved wizard snapshot.

    One row per interview session; the snapshot is replaced on every save.
    """
    __tablename__ = 'wizard_progress'

    id = db.Column(db.Integer, primary_key=True)
    session_key = db.Column(db.String(64), unique=True, nullable=False)
    tenant_id = db.Column(db.String(100), nullable=False, index=True)
    user_id = db.Column(db.String(100), nullable=True)
    wizard_id = db.Column(db.String(20), nullable=False)
    snapshot_json = db.Column(db.Text, nullable=False)
    poa_id = db.Column(db.Integer, db.ForeignKey('powers_of_attorney.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f'<WizardProgress {self.session_key} {self.wizard_id}>'

    def get_snapshot(self):
        return json.loads(self.snapshot_json)

    def set_snapshot(self, snapshot):
        self.snapshot_json = json.dumps(snapshot, sort_keys=True)
