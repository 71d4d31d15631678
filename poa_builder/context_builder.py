"""
Context Builder Module

Transforms a validated POA payload into a normalized context object with derived flags.
All derived flags are computed in one place only.

Agents carry stable identifiers: the payload's own id when supplied,
otherwise agent-<n> from their position in the submitted list. Agent
lists are always ordered primary, successors by order, then co-agents.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

from poa_builder.power_catalog import (
    GrantedPower, build_granted_powers, granted_hot_power_keys
)
from poa_builder.rules_catalog import (
    POAType, FAMILY_HEALTHCARE, FAMILY_FINANCIAL, normalize_poa_type, normalize_state
)
from poa_builder.utils import format_address, parse_date


AGENT_PRIMARY = 'primary'
AGENT_SUCCESSOR = 'successor'
AGENT_CO_AGENT = 'co_agent'

AGENT_TYPE_ALIASES = {
    'primary': AGENT_PRIMARY,
    'successor': AGENT_SUCCESSOR,
    'alternate': AGENT_SUCCESSOR,
    'co_agent': AGENT_CO_AGENT,
    'co-agent': AGENT_CO_AGENT,
    'coagent': AGENT_CO_AGENT,
}

_ROLE_RANK = {AGENT_PRIMARY: 0, AGENT_SUCCESSOR: 1, AGENT_CO_AGENT: 2}


def normalize_agent_type(value: Any) -> str:
    if not isinstance(value, str):
        return ''
    return AGENT_TYPE_ALIASES.get(value.strip().lower(), '')


def _text(value: Any) -> str:
    if value is None:
        return ''
    return str(value).strip()


def _dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _list(value: Any) -> list:
    return value if isinstance(value, list) else []


@dataclass
class Address:
    """Structured postal address."""
    street: str = ''
    city: str = ''
    state: str = ''
    zip_code: str = ''
    country: str = 'US'

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Address':
        if not data or not isinstance(data, dict):
            return cls()
        return cls(
            street=_text(data.get('street')),
            city=_text(data.get('city')),
            state=_text(data.get('state')).upper(),
            zip_code=_text(data.get('zipCode')),
            country=_text(data.get('country')).upper() or 'US',
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            'street': self.street,
            'city': self.city,
            'state': self.state,
            'zipCode': self.zip_code,
            'country': self.country,
        }

    def to_single_line(self) -> str:
        return format_address(self.to_dict())


@dataclass
class Principal:
    """The person granting authority."""
    full_name: str = ''
    email: str = ''
    phone: str = ''
    date_of_birth: Optional[date] = None
    address: Address = field(default_factory=Address)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Principal':
        if not data or not isinstance(data, dict):
            return cls()
        return cls(
            full_name=_text(data.get('fullName')),
            email=_text(data.get('email')).lower(),
            phone=_text(data.get('phone')),
            date_of_birth=parse_date(data.get('dateOfBirth')),
            address=Address.from_dict(data.get('address')),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'full_name': self.full_name,
            'email': self.email,
            'phone': self.phone,
            'date_of_birth': self.date_of_birth.isoformat() if self.date_of_birth else None,
            'address': self.address.to_dict(),
        }


@dataclass
class Agent:
    """A person granted authority, identified by a stable id."""
    id: str
    agent_type: str
    full_name: str = ''
    email: str = ''
    phone: str = ''
    relationship: str = ''
    order: Optional[int] = None
    address: Address = field(default_factory=Address)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], index: int) -> 'Agent':
        agent_type = normalize_agent_type(data.get('type'))
        order = data.get('order') if agent_type == AGENT_SUCCESSOR else None
        return cls(
            id=_text(data.get('id')) or f'agent-{index + 1}',
            agent_type=agent_type,
            full_name=_text(data.get('fullName')),
            email=_text(data.get('email')).lower(),
            phone=_text(data.get('phone')),
            relationship=_text(data.get('relationship')),
            order=int(order) if isinstance(order, int) and not isinstance(order, bool) else None,
            address=Address.from_dict(data.get('address')),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.agent_type,
            'full_name': self.full_name,
            'email': self.email,
            'phone': self.phone,
            'relationship': self.relationship,
            'order': self.order,
            'address': self.address.to_dict(),
        }


@dataclass
class Witness:
    full_name: str = ''
    relationship: str = ''
    address: Address = field(default_factory=Address)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Witness':
        if not data or not isinstance(data, dict):
            return cls()
        return cls(
            full_name=_text(data.get('fullName')),
            relationship=_text(data.get('relationship')),
            address=Address.from_dict(data.get('address')),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'full_name': self.full_name,
            'relationship': self.relationship,
            'address': self.address.to_dict(),
        }


@dataclass
class NotaryPublic:
    full_name: str = ''
    commission_number: str = ''
    commission_expiration: Optional[date] = None
    county: str = ''
    state: str = ''

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'NotaryPublic':
        if not data or not isinstance(data, dict):
            return cls()
        return cls(
            full_name=_text(data.get('fullName')),
            commission_number=_text(data.get('commissionNumber')),
            commission_expiration=parse_date(data.get('commissionExpiration')),
            county=_text(data.get('county')),
            state=_text(data.get('state')).upper(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'full_name': self.full_name,
            'commission_number': self.commission_number,
            'commission_expiration': (
                self.commission_expiration.isoformat() if self.commission_expiration else None
            ),
            'county': self.county,
            'state': self.state,
        }


HEALTHCARE_POWER_KEYS = (
    'medicalTreatment',
    'mentalHealthTreatment',
    'endOfLifeDecisions',
    'organDonation',
    'autopsyDecision',
    'dispositionOfRemains',
)


@dataclass
class HealthcareDirectives:
    """Healthcare decision matrix and treatment preferences."""
    powers: Dict[str, bool] = field(default_factory=dict)
    life_sustaining_treatment: str = ''
    organ_donation_preference: str = ''
    additional_directives: str = ''

    @property
    def granted_keys(self) -> List[str]:
        return [k for k in HEALTHCARE_POWER_KEYS if self.powers.get(k)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'powers': {k: bool(self.powers.get(k)) for k in HEALTHCARE_POWER_KEYS},
            'life_sustaining_treatment': self.life_sustaining_treatment,
            'organ_donation_preference': self.organ_donation_preference,
            'additional_directives': self.additional_directives,
        }


@dataclass
class POAContext:
    """
    Normalized power of attorney: all entities plus derived flags.

    Only the validation engine marks a context validated; the assembler
    refuses anything else.
    """
    poa_type: str = ''
    family: str = ''
    state: str = ''

    is_durable: bool = False
    is_springing: bool = False
    is_limited: bool = False

    effective_date: Optional[date] = None
    expiration_date: Optional[date] = None

    springing_condition: str = ''
    number_of_physicians: Optional[int] = None
    specific_purpose: str = ''

    principal: Principal = field(default_factory=Principal)
    agents: List[Agent] = field(default_factory=list)
    co_agents_act_jointly: bool = True

    grant_all_powers: bool = False
    grant_all_sub_powers: bool = True
    granted_powers: List[GrantedPower] = field(default_factory=list)
    hot_powers: List[str] = field(default_factory=list)
    hot_power_consents: Dict[str, bool] = field(default_factory=dict)

    special_instructions: str = ''
    agent_compensation: bool = False
    compensation_details: str = ''

    healthcare: Optional[HealthcareDirectives] = None

    witnesses: List[Witness] = field(default_factory=list)
    notary: Optional[NotaryPublic] = None

    # Derived flags (computed in build_context)
    is_financial: bool = False
    is_healthcare: bool = False
    has_durability: bool = False
    has_successors: bool = False
    has_co_agents: bool = False
    has_hot_powers: bool = False
    has_special_instructions: bool = False
    has_witnesses: bool = False
    has_notary: bool = False

    validated: bool = False

    @property
    def primary_agent(self) -> Optional[Agent]:
        for agent in self.agents:
            if agent.agent_type == AGENT_PRIMARY:
                return agent
        return None

    @property
    def successor_agents(self) -> List[Agent]:
        return [a for a in self.agents if a.agent_type == AGENT_SUCCESSOR]

    @property
    def co_agents(self) -> List[Agent]:
        return [a for a in self.agents if a.agent_type == AGENT_CO_AGENT]

    def get_agent(self, agent_id: str) -> Optional[Agent]:
        for agent in self.agents:
            if agent.id == agent_id:
                return agent
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Canonical dictionary form; stable ordering makes it hashable for filenames."""
        return {
            'poa_type': self.poa_type,
            'family': self.family,
            'state': self.state,
            'is_durable': self.is_durable,
            'is_springing': self.is_springing,
            'is_limited': self.is_limited,
            'effective_date': self.effective_date.isoformat() if self.effective_date else None,
            'expiration_date': self.expiration_date.isoformat() if self.expiration_date else None,
            'springing_condition': self.springing_condition,
            'number_of_physicians': self.number_of_physicians,
            'specific_purpose': self.specific_purpose,
            'principal': self.principal.to_dict(),
            'agents': [a.to_dict() for a in self.agents],
            'co_agents_act_jointly': self.co_agents_act_jointly,
            'grant_all_powers': self.grant_all_powers,
            'grant_all_sub_powers': self.grant_all_sub_powers,
            'granted_powers': [p.to_dict() for p in self.granted_powers],
            'hot_powers': list(self.hot_powers),
            'special_instructions': self.special_instructions,
            'agent_compensation': self.agent_compensation,
            'compensation_details': self.compensation_details,
            'healthcare': self.healthcare.to_dict() if self.healthcare else None,
            'witnesses': [w.to_dict() for w in self.witnesses],
            'notary': self.notary.to_dict() if self.notary else None,
            'derived_flags': {
                'is_financial': self.is_financial,
                'is_healthcare': self.is_healthcare,
                'has_durability': self.has_durability,
                'has_successors': self.has_successors,
                'has_co_agents': self.has_co_agents,
                'has_hot_powers': self.has_hot_powers,
                'has_special_instructions': self.has_special_instructions,
                'has_witnesses': self.has_witnesses,
                'has_notary': self.has_notary,
            },
        }


def resolve_type_flags(payload: Dict[str, Any]) -> Dict[str, bool]:
    """
    Derive isDurable / isSpringing / isLimited from poaType and explicit flags.

    Explicit flags win when present; otherwise the type decides. Durable
    and springing instruments default to surviving incapacity, limited
    ones only when isDurable is set.
    """
    poa_type = normalize_poa_type(payload.get('poaType'))

    def flag(key: str, default: bool) -> bool:
        value = payload.get(key)
        return value if isinstance(value, bool) else default

    if poa_type == POAType.HEALTHCARE:
        return {'is_durable': True, 'is_springing': False, 'is_limited': False}

    return {
        'is_durable': flag('isDurable', poa_type in (POAType.DURABLE, POAType.SPRINGING)),
        'is_springing': flag('isSpringing', poa_type == POAType.SPRINGING),
        'is_limited': flag('isLimited', poa_type == POAType.LIMITED),
    }


def _agent_sort_key(agent: Agent, index: int):
    order = agent.order if agent.order is not None else 0
    return (_ROLE_RANK.get(agent.agent_type, 3), order, index)


def build_context(payload: Dict[str, Any], validated: bool = False) -> POAContext:
    """
    Build the normalized POA context from a payload.

    This is the single source of truth for all derived flags.

    Args:
        payload: Validated form payload (camelCase keys)
        validated: Set only by the validation engine after a full pass

    Returns:
        POAContext with all entities and derived flags
    """
    context = POAContext()

    poa_type = normalize_poa_type(payload.get('poaType'))
    context.poa_type = poa_type.value if poa_type else ''
    context.state = normalize_state(payload.get('state'))
    context.is_healthcare = poa_type == POAType.HEALTHCARE
    context.is_financial = poa_type is not None and not context.is_healthcare
    context.family = FAMILY_HEALTHCARE if context.is_healthcare else FAMILY_FINANCIAL

    flags = resolve_type_flags(payload)
    context.is_durable = flags['is_durable']
    context.is_springing = flags['is_springing']
    context.is_limited = flags['is_limited']

    if not context.is_springing:
        context.effective_date = parse_date(payload.get('effectiveDate'))
    context.expiration_date = parse_date(payload.get('expirationDate'))

    if context.is_springing:
        context.springing_condition = _text(payload.get('springingCondition'))
        physicians = payload.get('numberOfPhysiciansRequired')
        if isinstance(physicians, int) and not isinstance(physicians, bool):
            context.number_of_physicians = physicians

    if context.is_limited:
        context.specific_purpose = _text(payload.get('specificPurpose'))

    # Principal
    context.principal = Principal.from_dict(payload.get('principal'))

    # Agents, in role order with stable ids
    agents_data = _list(payload.get('agents'))
    agents = [
        Agent.from_dict(a, i) for i, a in enumerate(agents_data) if isinstance(a, dict)
    ]
    indexed = sorted(enumerate(agents), key=lambda pair: _agent_sort_key(pair[1], pair[0]))
    context.agents = [agent for _, agent in indexed]
    context.has_successors = len(context.successor_agents) > 0
    context.has_co_agents = len(context.co_agents) > 0
    if context.has_co_agents:
        context.co_agents_act_jointly = payload.get('coAgentsMustActJointly') is not False

    # Powers
    if context.is_financial:
        granted = _dict(payload.get('grantedPowers'))
        context.grant_all_powers = granted.get('grantAllPowers') is True
        context.grant_all_sub_powers = (
            context.grant_all_powers or granted.get('grantAllSubPowers', True) is not False
        )
        context.granted_powers = build_granted_powers(granted)
        context.hot_powers = granted_hot_power_keys(granted)
        context.has_hot_powers = len(context.hot_powers) > 0

        consents = _dict(payload.get('hotPowersConsent'))
        context.hot_power_consents = {k: consents.get(k) is True for k in context.hot_powers}

        context.agent_compensation = payload.get('agentCompensation') is True
        if context.agent_compensation:
            context.compensation_details = _text(payload.get('compensationDetails'))

    if context.is_healthcare:
        powers = _dict(payload.get('healthcarePowers'))
        context.healthcare = HealthcareDirectives(
            powers={k: powers.get(k) is True for k in HEALTHCARE_POWER_KEYS},
            additional_directives=_text(payload.get('additionalDirectives')),
        )
        if context.healthcare.powers.get('endOfLifeDecisions'):
            context.healthcare.life_sustaining_treatment = _text(payload.get('lifeSustainingTreatment'))
        if context.healthcare.powers.get('organDonation'):
            context.healthcare.organ_donation_preference = _text(payload.get('organDonationPreference'))

    context.special_instructions = _text(payload.get('specialInstructions'))
    context.has_special_instructions = bool(context.special_instructions)

    # Execution
    witnesses_data = _list(payload.get('witnesses'))
    context.witnesses = [Witness.from_dict(w) for w in witnesses_data if isinstance(w, dict)]
    context.has_witnesses = len(context.witnesses) > 0

    notary_data = payload.get('notaryPublic')
    if isinstance(notary_data, dict) and _text(notary_data.get('fullName')):
        context.notary = NotaryPublic.from_dict(notary_data)
    context.has_notary = context.notary is not None

    context.has_durability = context.is_financial and context.is_durable

    context.validated = validated
    return context
