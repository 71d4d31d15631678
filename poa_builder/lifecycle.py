"""
Agent & POA Lifecycle Module

Pure transition functions for post-creation events. Each returns a
LifecycleResult describing the new status; callers persist it.

Transition Rules:
=================

Agent acceptance (pending -> accepted | declined)
  - Only the agent themself (matching email) may respond
  - Repeating the same response is an idempotent no-op (ok, unchanged)
  - Switching an existing response is a conflict
  - No responses once the POA is revoked or expired

POA status (DRAFT -> ACTIVE -> REVOKED, EXPIRED derived)
  - Notarized upload activates a DRAFT; repeating it on ACTIVE is a no-op
  - DRAFT or ACTIVE may be revoked; revoking twice is a conflict
  - Withdrawing the notarized copy returns an ACTIVE POA to DRAFT
  - EXPIRED is never stored: an ACTIVE limited POA past its expiration
    date reads as EXPIRED
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Dict, Optional

from poa_builder.rules_catalog import POAType, normalize_poa_type


class POAStatus(str, Enum):
    DRAFT = 'DRAFT'
    ACTIVE = 'ACTIVE'
    REVOKED = 'REVOKED'
    EXPIRED = 'EXPIRED'


class AgentStatus(str, Enum):
    PENDING = 'pending'
    ACCEPTED = 'accepted'
    DECLINED = 'declined'


CODE_CONFLICT = 'conflict'
CODE_FORBIDDEN = 'forbidden'
CODE_NOT_APPLICABLE = 'not_applicable'


@dataclass(frozen=True)
class LifecycleResult:
    ok: bool
    status: str
    changed: bool = False
    code: Optional[str] = None
    message: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ok': self.ok,
            'status': self.status,
            'changed': self.changed,
            'code': self.code,
            'message': self.message,
        }


def _same_person(agent_email: str, actor_email: str) -> bool:
    if not agent_email or not actor_email:
        return False
    return agent_email.strip().lower() == actor_email.strip().lower()


def effective_status(poa_type: Any, status: Any, expiration_date: Optional[date], today: date) -> POAStatus:
    """Status as it should be reported on read; expiry is derived, never written."""
    current = POAStatus(status)
    if (current == POAStatus.ACTIVE
            and normalize_poa_type(poa_type) == POAType.LIMITED
            and expiration_date is not None
            and today > expiration_date):
        return POAStatus.EXPIRED
    return current


def _respond(target: AgentStatus, agent_status: Any, agent_email: str, actor_email: str,
             poa_status: Optional[Any]) -> LifecycleResult:
    current = AgentStatus(agent_status)

    if not _same_person(agent_email, actor_email):
        return LifecycleResult(False, current.value, code=CODE_FORBIDDEN,
                               message='Only the named agent may respond to this appointment')

    if poa_status is not None and POAStatus(poa_status) in (POAStatus.REVOKED, POAStatus.EXPIRED):
        return LifecycleResult(False, current.value, code=CODE_NOT_APPLICABLE,
                               message=f'This power of attorney is {POAStatus(poa_status).value.lower()}')

    if current == target:
        return LifecycleResult(True, current.value, changed=False,
                               message=f'Appointment already {target.value}')

    if current != AgentStatus.PENDING:
        return LifecycleResult(False, current.value, code=CODE_CONFLICT,
                               message=f'Appointment was already {current.value}')

    return LifecycleResult(True, target.value, changed=True, message=f'Appointment {target.value}')


def accept_agent(agent_status: Any, agent_email: str, actor_email: str,
                 poa_status: Optional[Any] = None) -> LifecycleResult:
    """
    Record an agent's acceptance.

    Args:
        agent_status: Current AgentStatus
        agent_email: Email on the agent record
        actor_email: Email of the authenticated caller
        poa_status: Stored (or effective) status of the owning POA
    """
    return _respond(AgentStatus.ACCEPTED, agent_status, agent_email, actor_email, poa_status)


def decline_agent(agent_status: Any, agent_email: str, actor_email: str,
                  poa_status: Optional[Any] = None) -> LifecycleResult:
    """Record an agent declining the appointment."""
    return _respond(AgentStatus.DECLINED, agent_status, agent_email, actor_email, poa_status)


def activate_poa(status: Any, poa_type: Any, expiration_date: Optional[date], today: date) -> LifecycleResult:
    """Apply a notarized upload: DRAFT becomes ACTIVE."""
    current = POAStatus(status)

    if current == POAStatus.ACTIVE:
        if effective_status(poa_type, current, expiration_date, today) == POAStatus.EXPIRED:
            return LifecycleResult(False, POAStatus.EXPIRED.value, code=CODE_CONFLICT,
                                   message='This power of attorney has expired')
        return LifecycleResult(True, current.value, changed=False, message='Already active')

    if current in (POAStatus.REVOKED, POAStatus.EXPIRED):
        return LifecycleResult(False, current.value, code=CODE_CONFLICT,
                               message=f'A {current.value.lower()} power of attorney cannot be activated')

    if normalize_poa_type(poa_type) == POAType.LIMITED and expiration_date is not None and today > expiration_date:
        return LifecycleResult(False, current.value, code=CODE_CONFLICT,
                               message='This power of attorney expired before it was activated')

    return LifecycleResult(True, POAStatus.ACTIVE.value, changed=True, message='Activated')


def revoke_poa(status: Any, poa_type: Any, expiration_date: Optional[date], today: date) -> LifecycleResult:
    """Revoke a draft or active POA."""
    current = effective_status(poa_type, status, expiration_date, today)

    if current == POAStatus.REVOKED:
        return LifecycleResult(False, current.value, code=CODE_CONFLICT,
                               message='This power of attorney is already revoked')

    if current == POAStatus.EXPIRED:
        return LifecycleResult(False, current.value, code=CODE_CONFLICT,
                               message='An expired power of attorney cannot be revoked')

    return LifecycleResult(True, POAStatus.REVOKED.value, changed=True, message='Revoked')


def withdraw_notarization(status: Any, poa_type: Any, expiration_date: Optional[date], today: date) -> LifecycleResult:
    """Remove the notarized copy: ACTIVE goes back to DRAFT."""
    current = effective_status(poa_type, status, expiration_date, today)

    if current == POAStatus.ACTIVE:
        return LifecycleResult(True, POAStatus.DRAFT.value, changed=True, message='Returned to draft')

    if current == POAStatus.DRAFT:
        return LifecycleResult(False, current.value, code=CODE_NOT_APPLICABLE,
                               message='There is no notarized copy to remove')

    return LifecycleResult(False, current.value, code=CODE_CONFLICT,
                           message=f'The notarized copy of a {current.value.lower()} power of attorney is kept')
