"""
Validation engine for power of attorney payloads.

Validation Rules Documentation:
===============================

Validation runs in four phases per wizard step, in order: structural,
cross-field, set, jurisdictional. Every error carries the wizard step id
as its section so the caller can route it back to the owning screen.

1. DOCUMENT TYPE (document-type)
   - poaType: required, one of DURABLE / SPRINGING / LIMITED / HEALTHCARE
   - state: required two-letter code
   - isDurable / isSpringing / isLimited: optional booleans, must agree with poaType
   - Rules Catalog: the (type, state) pair must be permitted; unknown pairs
     require legal review
   - Fields the type forbids must be absent
   - effectiveDate / expirationDate ordering (non-limited types)

2. PRINCIPAL (principal-info)
   - fullName: required, max 100 chars, no HTML
   - email: required, valid format
   - phone: optional, 7-20 chars of digits/spaces/-/+/()
   - dateOfBirth: optional, must be 18+
   - address: street, city, state, zipCode required; postal format by country

3. SPRINGING (springing-details, only when springing)
   - springingCondition: required, max 1000 chars
   - numberOfPhysiciansRequired: required integer, 1..3, at least the state minimum

4. LIMITED (limited-details, only when limited)
   - specificPurpose: required
   - expirationDate: required; after effectiveDate, or in the future when
     effectiveDate is absent

5. AGENTS (agent-selection)
   - at least one agent; each with type, fullName, email, address
   - exactly one primary agent
   - emails pairwise distinct (case-insensitive) and different from the principal's
   - successor order values distinct and contiguous from 1

6. AGENT HIERARCHY (agent-hierarchy, only with co-agents)
   - coAgentsMustActJointly: required boolean

7. POWERS (power-categories, financial only)
   - at least one category unless grantAllPowers
   - category and sub-power ids must exist in the catalog

8. HOT POWERS (hot-powers)
   - every granted hot power needs explicit consent in hotPowersConsent

9. ADDITIONAL TERMS (additional-terms)
   - compensationDetails required when agentCompensation is true

10. HEALTHCARE (healthcare-powers, end-of-life, organ-donation)
    - at least one healthcare power
    - lifeSustainingTreatment required with endOfLifeDecisions
    - organDonationPreference required with organDonation

11. EXECUTION (execution-requirements)
    - witnesses / notary as mandated by the state
    - witnesses may not be the principal or an agent, and must be distinct

12. REVIEW (review, step mode only)
    - disclaimerAccepted and finalConfirmation must be true
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from poa_builder.context_builder import (
    AGENT_CO_AGENT, AGENT_PRIMARY, AGENT_SUCCESSOR, HEALTHCARE_POWER_KEYS,
    build_context, normalize_agent_type, resolve_type_flags
)
from poa_builder.power_catalog import (
    CATEGORY_INDEX, HOT_POWER_LABELS, SUB_POWER_INDEX, granted_hot_power_keys
)
from poa_builder.rules_catalog import (
    JurisdictionRule, POAType, get_rule, normalize_poa_type, poa_family
)
from poa_builder.utils import age_on, parse_date


@dataclass
class ValidationError:
    """Represents a single validation error with precise field path."""
    field: str
    message: str
    code: str
    section: str = ''  # Wizard step that owns the field

    def to_dict(self) -> Dict[str, str]:
        return {'field': self.field, 'message': self.message, 'code': self.code, 'section': self.section}


@dataclass
class ValidationResult:
    """Container for validation results."""
    errors: List[ValidationError] = field(default_factory=list)
    is_valid: bool = True
    warnings: List[ValidationError] = field(default_factory=list)  # Non-blocking issues
    normalized: Optional[Any] = None  # POAContext, set on a successful full validation

    def add_error(self, field: str, message: str, code: str = 'invalid', section: str = ''):
        """Add a validation error."""
        self.errors.append(ValidationError(field, message, code, section))
        self.is_valid = False

    def add_warning(self, field: str, message: str, code: str = 'warning', section: str = ''):
        """Add a non-blocking warning."""
        self.warnings.append(ValidationError(field, message, code, section))

    def has_error_for(self, field: str) -> bool:
        return any(e.field == field for e in self.errors)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return {
            'ok': self.is_valid,
            'errors': [e.to_dict() for e in self.errors],
            'warnings': [w.to_dict() for w in self.warnings],
        }

    def get_errors_by_section(self) -> Dict[str, List[ValidationError]]:
        """Group errors by section for UI display."""
        by_section = {}
        for error in self.errors:
            section = error.section or 'general'
            if section not in by_section:
                by_section[section] = []
            by_section[section].append(error)
        return by_section


# Constants for validation
MAX_NAME_LENGTH = 100
MAX_RELATIONSHIP_LENGTH = 100
MAX_ADDRESS_LENGTH = 200
MAX_CONDITION_LENGTH = 1000
MAX_PURPOSE_LENGTH = 1000
MAX_INSTRUCTIONS_LENGTH = 2000
MAX_COMPENSATION_LENGTH = 500
MAX_AGENTS = 10
MAX_WITNESSES = 4
MIN_PRINCIPAL_AGE = 18

# Regex patterns
EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')
PHONE_PATTERN = re.compile(r'^[0-9\s\-+().]{7,20}$')
STATE_CODE_PATTERN = re.compile(r'^[A-Z]{2}$')
HTML_TAG_PATTERN = re.compile(r'<[^>]+>')

POSTAL_CODE_PATTERNS = {
    'US': (re.compile(r'^\d{5}(-\d{4})?$'), 'Please enter a valid ZIP code (12345 or 12345-6789)'),
    'CA': (re.compile(r'^[A-Za-z]\d[A-Za-z][ -]?\d[A-Za-z]\d$'), 'Please enter a valid postal code (A1A 1A1)'),
}
GENERIC_POSTAL_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9 \-]{0,11}$')

# Enums - strictly enforced
POA_TYPES = [t.value for t in POAType]
AGENT_TYPES = [AGENT_PRIMARY, AGENT_SUCCESSOR, AGENT_CO_AGENT]
LIFE_SUSTAINING_OPTIONS = ['prolong_life', 'comfort_care_only', 'agent_decides', 'not_specified']
ORGAN_DONATION_OPTIONS = ['any_needed', 'transplant_only', 'research_only', 'not_specified']

# Wizard step ids
STEP_DOCUMENT_TYPE = 'document-type'
STEP_PRINCIPAL = 'principal-info'
STEP_SPRINGING = 'springing-details'
STEP_LIMITED = 'limited-details'
STEP_AGENTS = 'agent-selection'
STEP_AGENT_HIERARCHY = 'agent-hierarchy'
STEP_POWERS = 'power-categories'
STEP_HOT_POWERS = 'hot-powers'
STEP_ADDITIONAL_TERMS = 'additional-terms'
STEP_HEALTHCARE_POWERS = 'healthcare-powers'
STEP_END_OF_LIFE = 'end-of-life'
STEP_ORGAN_DONATION = 'organ-donation'
STEP_EXECUTION = 'execution-requirements'
STEP_REVIEW = 'review'

# Which step owns each catalog-driven field
FIELD_SECTIONS = {
    'effectiveDate': STEP_DOCUMENT_TYPE,
    'springingCondition': STEP_SPRINGING,
    'numberOfPhysiciansRequired': STEP_SPRINGING,
    'expirationDate': STEP_LIMITED,
    'specificPurpose': STEP_LIMITED,
    'grantedPowers': STEP_POWERS,
    'healthcarePowers': STEP_HEALTHCARE_POWERS,
}


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ''
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


def _today() -> date:
    return datetime.now(timezone.utc).date()


def validate_boolean(value: Any, field_name: str, result: ValidationResult,
                     required: bool = True, section: str = '') -> bool:
    """Validate a boolean field with strict type checking."""
    if value is None or value == '':
        if required:
            result.add_error(field_name, 'This field is required', 'required', section)
        return False

    if not isinstance(value, bool):
        result.add_error(field_name, 'Must be true or false', 'type', section)
        return False

    return True


def validate_string(value: Any, field_name: str, result: ValidationResult,
                    required: bool = True, max_length: int = MAX_NAME_LENGTH,
                    allow_html: bool = False, section: str = '') -> bool:
    """Validate a string field."""
    if value is None or str(value).strip() == '':
        if required:
            result.add_error(field_name, 'This field is required', 'required', section)
        return False

    if not isinstance(value, str):
        result.add_error(field_name, 'Must be text', 'type', section)
        return False

    str_value = value.strip()

    if len(str_value) > max_length:
        result.add_error(field_name, f'Maximum {max_length} characters allowed', 'max_length', section)
        return False

    if not allow_html and HTML_TAG_PATTERN.search(str_value):
        result.add_error(field_name, 'HTML tags are not allowed', 'invalid_chars', section)
        return False

    return True


def validate_email(value: Any, field_name: str, result: ValidationResult,
                   required: bool = True, section: str = '') -> bool:
    """Validate an email address."""
    if value is None or str(value).strip() == '':
        if required:
            result.add_error(field_name, 'This field is required', 'required', section)
        return False

    str_value = str(value).strip()

    if len(str_value) > 254:
        result.add_error(field_name, 'Email address is too long', 'max_length', section)
        return False

    if not EMAIL_PATTERN.match(str_value):
        result.add_error(field_name, 'Please enter a valid email address', 'format', section)
        return False

    return True


def validate_phone(value: Any, field_name: str, result: ValidationResult,
                   required: bool = True, section: str = '') -> bool:
    """Validate a phone number."""
    if value is None or str(value).strip() == '':
        if required:
            result.add_error(field_name, 'This field is required', 'required', section)
        return False

    str_value = str(value).strip()

    if not PHONE_PATTERN.match(str_value):
        result.add_error(field_name, 'Please enter a valid phone number', 'format', section)
        return False

    return True


def validate_date(value: Any, field_name: str, result: ValidationResult,
                  required: bool = True, section: str = '', min_age: int = None,
                  reference_date: Optional[date] = None) -> bool:
    """Validate a date field (YYYY-MM-DD or ISO 8601)."""
    if value is None or str(value).strip() == '':
        if required:
            result.add_error(field_name, 'This field is required', 'required', section)
        return False

    parsed_date = parse_date(value) if isinstance(value, (str, date)) else None
    if parsed_date is None:
        result.add_error(field_name, 'Please enter a valid date (YYYY-MM-DD)', 'format', section)
        return False

    # Check minimum age if specified
    if min_age is not None:
        if age_on(parsed_date, reference_date or _today()) < min_age:
            result.add_error(field_name, f'Must be at least {min_age} years old', 'min_age', section)
            return False

    return True


def validate_enum(value: Any, field_name: str, allowed: List[str],
                  result: ValidationResult, required: bool = True, section: str = '') -> bool:
    """Validate an enum field with strict matching."""
    if value is None or str(value).strip() == '':
        if required:
            result.add_error(field_name, 'This field is required', 'required', section)
        return False

    str_value = str(value).strip()

    if str_value not in allowed:
        result.add_error(field_name, f'Must be one of: {", ".join(allowed)}', 'enum', section)
        return False

    return True


def validate_integer(value: Any, field_name: str, result: ValidationResult,
                     required: bool = True, min_value: Optional[int] = None,
                     max_value: Optional[int] = None, section: str = '') -> bool:
    """Validate a whole number within optional bounds."""
    if value is None or value == '':
        if required:
            result.add_error(field_name, 'This field is required', 'required', section)
        return False

    if isinstance(value, bool) or not isinstance(value, int):
        result.add_error(field_name, 'Must be a whole number', 'type', section)
        return False

    if min_value is not None and value < min_value:
        result.add_error(field_name, f'Must be at least {min_value}', 'min_value', section)
        return False

    if max_value is not None and value > max_value:
        result.add_error(field_name, f'Must not exceed {max_value}', 'max_value', section)
        return False

    return True


def validate_postal_code(value: Any, country: str, field_name: str,
                         result: ValidationResult, section: str = '') -> bool:
    """Validate a postal code against the format used by its country."""
    if value is None or str(value).strip() == '':
        result.add_error(field_name, 'Postal code is required', 'required', section)
        return False

    str_value = str(value).strip()
    pattern, message = POSTAL_CODE_PATTERNS.get(
        country, (GENERIC_POSTAL_PATTERN, 'Please enter a valid postal code')
    )
    if not pattern.match(str_value):
        result.add_error(field_name, message, 'format', section)
        return False

    return True


def validate_address(address: Dict[str, Any], field_name: str,
                     result: ValidationResult, required: bool = True, section: str = '') -> bool:
    """Validate a structured address."""
    if address is None or not isinstance(address, dict) or not address:
        if required:
            result.add_error(field_name, 'Address is required', 'required', section)
        return False

    valid = True
    valid &= validate_string(address.get('street'), f'{field_name}.street', result,
                             max_length=MAX_ADDRESS_LENGTH, section=section)
    valid &= validate_string(address.get('city'), f'{field_name}.city', result,
                             max_length=100, section=section)

    country = str(address.get('country') or 'US').strip().upper()
    state = address.get('state')
    if validate_string(state, f'{field_name}.state', result, max_length=50, section=section):
        if country == 'US' and not STATE_CODE_PATTERN.match(str(state).strip().upper()):
            result.add_error(f'{field_name}.state', 'Please enter a two-letter state code', 'format', section)
            valid = False
    else:
        valid = False

    valid &= validate_postal_code(address.get('zipCode'), country, f'{field_name}.zipCode',
                                  result, section=section)
    return bool(valid)


@dataclass
class _Scope:
    """Resolved facts shared by every step validator in one run."""
    poa_type: Optional[POAType]
    rule: JurisdictionRule
    flags: Dict[str, bool]
    today: date
    family: Optional[str] = None

    @property
    def is_springing(self) -> bool:
        return self.flags['is_springing']

    @property
    def is_limited(self) -> bool:
        return self.flags['is_limited']

    @property
    def is_healthcare(self) -> bool:
        return self.poa_type == POAType.HEALTHCARE

    @property
    def is_financial(self) -> bool:
        return self.poa_type is not None and not self.is_healthcare


def _build_scope(payload: Dict[str, Any], reference_date: Optional[date],
                 family: Optional[str]) -> _Scope:
    poa_type = normalize_poa_type(payload.get('poaType'))
    return _Scope(
        poa_type=poa_type,
        rule=get_rule(poa_type or payload.get('poaType'), payload.get('state')),
        flags=resolve_type_flags(payload),
        today=reference_date or _today(),
        family=family,
    )


def _require_field(payload: Dict[str, Any], result: ValidationResult, field_name: str,
                   label: str, section: str) -> bool:
    if _is_blank(payload.get(field_name)):
        if not result.has_error_for(field_name):
            result.add_error(field_name, f'{label} is required', 'required', section)
        return False
    return True


def _field_present(payload: Dict[str, Any], field_name: str) -> bool:
    value = payload.get(field_name)
    if field_name == 'grantedPowers' and isinstance(value, dict):
        return bool(value.get('categoryIds')) or value.get('grantAllPowers') is True
    return not _is_blank(value)


def _validate_document_type(payload: Dict[str, Any], result: ValidationResult, scope: _Scope):
    """Validate POA type, state, type flags and jurisdiction."""
    section = STEP_DOCUMENT_TYPE

    raw_type = payload.get('poaType')
    if _is_blank(raw_type):
        result.add_error('poaType', 'Please choose a power of attorney type', 'required', section)
    elif scope.poa_type is None:
        result.add_error('poaType', f'Must be one of: {", ".join(POA_TYPES)}', 'enum', section)
    elif scope.family and poa_family(scope.poa_type) != scope.family:
        result.add_error('poaType', f'This interview only supports {scope.family} powers of attorney',
                         'type_mismatch', section)

    state_ok = False
    raw_state = payload.get('state')
    if validate_string(raw_state, 'state', result, max_length=2, section=section):
        if STATE_CODE_PATTERN.match(raw_state.strip().upper()):
            state_ok = True
        else:
            result.add_error('state', 'Please enter a two-letter state code', 'format', section)

    for flag in ('isDurable', 'isSpringing', 'isLimited'):
        validate_boolean(payload.get(flag), flag, result, required=False, section=section)

    if scope.poa_type is not None:
        expected = {
            'isSpringing': scope.poa_type == POAType.SPRINGING,
            'isLimited': scope.poa_type == POAType.LIMITED,
        }
        for flag, expected_value in expected.items():
            value = payload.get(flag)
            if isinstance(value, bool) and value != expected_value:
                result.add_error(flag, f'{flag} does not match a {scope.poa_type.value} power of attorney',
                                 'type_mismatch', section)
        if scope.poa_type == POAType.DURABLE and payload.get('isDurable') is False:
            result.add_error('isDurable', 'A durable power of attorney must survive incapacity',
                             'type_mismatch', section)

    # Jurisdictional
    if scope.poa_type is not None and state_ok:
        rule = scope.rule
        if rule.requires_legal_review:
            result.add_error('state', f'{rule.reason}; this combination requires legal review',
                             'requires_legal_review', section)
        elif not rule.permitted:
            result.add_error('poaType', rule.reason, 'not_permitted', section)

    if scope.poa_type is not None:
        for forbidden in scope.rule.forbidden_fields:
            if _field_present(payload, forbidden):
                result.add_error(forbidden, f'{forbidden} does not apply to a {scope.poa_type.value} '
                                 'power of attorney', 'forbidden_field', section)

    if not scope.is_limited:
        _validate_dates(payload, result, scope, section)


def _validate_dates(payload: Dict[str, Any], result: ValidationResult, scope: _Scope, section: str):
    """Cross-field checks on effective and expiration dates."""
    effective = None
    if not scope.is_springing:
        if validate_date(payload.get('effectiveDate'), 'effectiveDate', result,
                         required=False, section=section):
            effective = parse_date(payload.get('effectiveDate'))

    if not validate_date(payload.get('expirationDate'), 'expirationDate', result,
                         required=False, section=section):
        return
    expiration = parse_date(payload.get('expirationDate'))

    if effective is not None:
        if expiration <= effective:
            result.add_error('expirationDate', 'Expiration date must be after the effective date',
                             'date_order', section)
    elif expiration <= scope.today:
        result.add_error('expirationDate', 'Expiration date must be in the future',
                         'date_past', section)


def _validate_principal(payload: Dict[str, Any], result: ValidationResult, scope: _Scope):
    """Validate the principal's identity and contact details."""
    section = STEP_PRINCIPAL
    principal = payload.get('principal')

    if not isinstance(principal, dict) or not principal:
        result.add_error('principal', 'Principal details are required', 'required', section)
        return

    validate_string(principal.get('fullName'), 'principal.fullName', result, section=section)
    validate_email(principal.get('email'), 'principal.email', result, section=section)
    validate_phone(principal.get('phone'), 'principal.phone', result, required=False, section=section)
    validate_date(principal.get('dateOfBirth'), 'principal.dateOfBirth', result, required=False,
                  min_age=MIN_PRINCIPAL_AGE, reference_date=scope.today, section=section)
    validate_address(principal.get('address'), 'principal.address', result, section=section)


def _validate_springing(payload: Dict[str, Any], result: ValidationResult, scope: _Scope):
    """Validate the trigger condition and physician certification count."""
    if not scope.is_springing:
        return
    section = STEP_SPRINGING

    if _require_field(payload, result, 'springingCondition', 'The triggering condition', section):
        validate_string(payload.get('springingCondition'), 'springingCondition', result,
                        max_length=MAX_CONDITION_LENGTH, section=section)

    if not _require_field(payload, result, 'numberOfPhysiciansRequired',
                          'The number of certifying physicians', section):
        return

    count = payload.get('numberOfPhysiciansRequired')
    if not validate_integer(count, 'numberOfPhysiciansRequired', result, min_value=1,
                            max_value=scope.rule.max_physicians, section=section):
        return

    if count < scope.rule.min_physicians:
        result.add_error('numberOfPhysiciansRequired',
                         f'{scope.rule.state} requires certification by at least '
                         f'{scope.rule.min_physicians} physicians', 'physician_count', section)


def _validate_limited(payload: Dict[str, Any], result: ValidationResult, scope: _Scope):
    """Validate purpose and mandatory expiration of a limited POA."""
    if not scope.is_limited:
        return
    section = STEP_LIMITED

    if _require_field(payload, result, 'specificPurpose', 'The specific purpose', section):
        validate_string(payload.get('specificPurpose'), 'specificPurpose', result,
                        max_length=MAX_PURPOSE_LENGTH, section=section)

    _require_field(payload, result, 'expirationDate', 'An expiration date', section)
    _validate_dates(payload, result, scope, section)


def _validate_agents(payload: Dict[str, Any], result: ValidationResult, scope: _Scope):
    """Validate each agent, then the agent set as a whole."""
    section = STEP_AGENTS
    agents = payload.get('agents')

    if not isinstance(agents, list) or not agents:
        result.add_error('agents', 'At least one agent is required', 'required', section)
        return

    if len(agents) > MAX_AGENTS:
        result.add_error('agents', f'No more than {MAX_AGENTS} agents may be named', 'max_length', section)

    allowed_types = [AGENT_PRIMARY, AGENT_SUCCESSOR] if scope.is_healthcare else AGENT_TYPES
    typed = []

    for i, agent in enumerate(agents):
        prefix = f'agents[{i}]'
        if not isinstance(agent, dict):
            result.add_error(prefix, 'Agent details are required', 'type', section)
            continue

        agent_type = normalize_agent_type(agent.get('type'))
        if _is_blank(agent.get('type')):
            result.add_error(f'{prefix}.type', 'This field is required', 'required', section)
        elif agent_type not in allowed_types:
            result.add_error(f'{prefix}.type', f'Must be one of: {", ".join(allowed_types)}', 'enum', section)

        validate_string(agent.get('fullName'), f'{prefix}.fullName', result, section=section)
        validate_email(agent.get('email'), f'{prefix}.email', result, section=section)
        validate_phone(agent.get('phone'), f'{prefix}.phone', result, required=False, section=section)
        validate_string(agent.get('relationship'), f'{prefix}.relationship', result, required=False,
                        max_length=MAX_RELATIONSHIP_LENGTH, section=section)
        validate_address(agent.get('address'), f'{prefix}.address', result, section=section)

        if agent_type == AGENT_SUCCESSOR:
            validate_integer(agent.get('order'), f'{prefix}.order', result, min_value=1, section=section)

        typed.append((i, agent, agent_type))

    # Set validation
    primary_count = sum(1 for _, _, t in typed if t == AGENT_PRIMARY)
    if primary_count != 1:
        result.add_error('agents', f'Exactly one primary agent is required (found {primary_count})',
                         'primary_count', section)

    principal = payload.get('principal') if isinstance(payload.get('principal'), dict) else {}
    principal_email = str(principal.get('email') or '').strip().lower()

    seen_emails = {}
    for i, agent, _ in typed:
        email = str(agent.get('email') or '').strip().lower()
        if not email:
            continue
        if email in seen_emails:
            result.add_error(f'agents[{i}].email',
                             f'This email is already used by agent {seen_emails[email] + 1}',
                             'duplicate_email', section)
        else:
            seen_emails[email] = i
        if principal_email and email == principal_email:
            result.add_error(f'agents[{i}].email', 'An agent cannot share the principal\'s email address',
                             'agent_is_principal', section)

    seen_orders = {}
    orders = []
    for i, agent, agent_type in typed:
        order = agent.get('order')
        if agent_type != AGENT_SUCCESSOR or isinstance(order, bool) or not isinstance(order, int):
            continue
        if order in seen_orders:
            result.add_error(f'agents[{i}].order',
                             f'Successor order {order} is already used by agent {seen_orders[order] + 1}',
                             'duplicate_order', section)
        else:
            seen_orders[order] = i
        orders.append(order)

    if orders and len(set(orders)) == len(orders) and sorted(orders) != list(range(1, len(orders) + 1)):
        result.add_error('agents', 'Successor agents must be numbered 1, 2, 3... without gaps',
                         'order_sequence', section)


def _has_co_agents(payload: Dict[str, Any]) -> bool:
    agents = payload.get('agents')
    if not isinstance(agents, list):
        return False
    return any(
        isinstance(a, dict) and normalize_agent_type(a.get('type')) == AGENT_CO_AGENT for a in agents
    )


def _validate_agent_hierarchy(payload: Dict[str, Any], result: ValidationResult, scope: _Scope):
    """Co-agents must say whether they act jointly or independently."""
    if not _has_co_agents(payload):
        return
    validate_boolean(payload.get('coAgentsMustActJointly'), 'coAgentsMustActJointly', result,
                     section=STEP_AGENT_HIERARCHY)


def _validate_powers(payload: Dict[str, Any], result: ValidationResult, scope: _Scope):
    """Validate granted categories and sub-powers against the catalog."""
    if not scope.is_financial:
        return
    section = STEP_POWERS
    granted = payload.get('grantedPowers')

    if not isinstance(granted, dict):
        result.add_error('grantedPowers', 'Please choose the powers to grant', 'required', section)
        return

    validate_boolean(granted.get('grantAllPowers'), 'grantedPowers.grantAllPowers', result,
                     required=False, section=section)
    validate_boolean(granted.get('grantAllSubPowers'), 'grantedPowers.grantAllSubPowers', result,
                     required=False, section=section)

    grant_all = granted.get('grantAllPowers') is True
    category_ids = granted.get('categoryIds')
    if category_ids is not None and not isinstance(category_ids, list):
        result.add_error('grantedPowers.categoryIds', 'Must be a list', 'type', section)
        return
    sub_power_ids = granted.get('subPowerIds')
    if sub_power_ids is not None and not isinstance(sub_power_ids, list):
        result.add_error('grantedPowers.subPowerIds', 'Must be a list', 'type', section)
        return

    if grant_all:
        return

    if not category_ids:
        result.add_error('grantedPowers.categoryIds', 'Grant at least one power category',
                         'no_powers', section)
        return

    known = []
    for i, category_id in enumerate(category_ids):
        key = str(category_id).strip().upper()
        if key not in CATEGORY_INDEX:
            result.add_error(f'grantedPowers.categoryIds[{i}]', f'Unknown power category "{category_id}"',
                             'unknown_category', section)
        else:
            known.append(key)

    if granted.get('grantAllSubPowers', True) is not False:
        return

    if sub_power_ids is None:
        result.add_error('grantedPowers.subPowerIds', 'Choose the specific powers to grant',
                         'required', section)
        return

    covered = set()
    for i, sub_power_id in enumerate(sub_power_ids):
        sub_power = SUB_POWER_INDEX.get(str(sub_power_id).strip().upper())
        if sub_power is None:
            result.add_error(f'grantedPowers.subPowerIds[{i}]', f'Unknown power "{sub_power_id}"',
                             'unknown_sub_power', section)
        elif sub_power.category_id not in known:
            result.add_error(f'grantedPowers.subPowerIds[{i}]',
                             f'Power "{sub_power_id}" belongs to a category that is not granted',
                             'unknown_sub_power', section)
        else:
            covered.add(sub_power.category_id)

    for category_id in known:
        if category_id not in covered:
            result.add_error('grantedPowers.subPowerIds',
                             f'Choose at least one power in {CATEGORY_INDEX[category_id].name}',
                             'no_sub_powers', section)


def _well_formed_grant(granted: Dict[str, Any]) -> bool:
    """True when the id lists in a grantedPowers block are lists (or absent)."""
    return all(
        granted.get(key) is None or isinstance(granted.get(key), list)
        for key in ('categoryIds', 'subPowerIds')
    )


def _validate_hot_powers(payload: Dict[str, Any], result: ValidationResult, scope: _Scope):
    """Each granted hot power needs the principal's explicit consent."""
    if not scope.is_financial or not isinstance(payload.get('grantedPowers'), dict):
        return
    if not _well_formed_grant(payload['grantedPowers']):
        return
    section = STEP_HOT_POWERS
    consents = payload.get('hotPowersConsent')
    if not isinstance(consents, dict):
        consents = {}

    for key in granted_hot_power_keys(payload['grantedPowers']):
        if consents.get(key) is not True:
            result.add_error(f'hotPowersConsent.{key}',
                             f'Confirm that your agent may: {HOT_POWER_LABELS[key].lower()}',
                             'consent_required', section)


def _validate_additional_terms(payload: Dict[str, Any], result: ValidationResult, scope: _Scope):
    """Special instructions and agent compensation."""
    section = STEP_ADDITIONAL_TERMS
    validate_string(payload.get('specialInstructions'), 'specialInstructions', result, required=False,
                    max_length=MAX_INSTRUCTIONS_LENGTH, section=section)
    validate_boolean(payload.get('agentCompensation'), 'agentCompensation', result,
                     required=False, section=section)
    if payload.get('agentCompensation') is True:
        validate_string(payload.get('compensationDetails'), 'compensationDetails', result,
                        max_length=MAX_COMPENSATION_LENGTH, section=section)


def _validate_healthcare_powers(payload: Dict[str, Any], result: ValidationResult, scope: _Scope):
    """Healthcare decision matrix: at least one power must be granted."""
    if not scope.is_healthcare:
        return
    section = STEP_HEALTHCARE_POWERS
    powers = payload.get('healthcarePowers')

    if not isinstance(powers, dict) or not powers:
        result.add_error('healthcarePowers', 'Choose the healthcare decisions your agent may make',
                         'required', section)
        return

    for key in HEALTHCARE_POWER_KEYS:
        validate_boolean(powers.get(key), f'healthcarePowers.{key}', result, required=False, section=section)

    if not any(powers.get(k) is True for k in HEALTHCARE_POWER_KEYS):
        result.add_error('healthcarePowers', 'Grant at least one healthcare power', 'no_powers', section)

    validate_string(payload.get('additionalDirectives'), 'additionalDirectives', result, required=False,
                    max_length=MAX_INSTRUCTIONS_LENGTH, section=section)
    validate_string(payload.get('specialInstructions'), 'specialInstructions', result, required=False,
                    max_length=MAX_INSTRUCTIONS_LENGTH, section=section)


def _healthcare_power(payload: Dict[str, Any], key: str) -> bool:
    powers = payload.get('healthcarePowers')
    return isinstance(powers, dict) and powers.get(key) is True


def _validate_end_of_life(payload: Dict[str, Any], result: ValidationResult, scope: _Scope):
    if scope.is_healthcare and _healthcare_power(payload, 'endOfLifeDecisions'):
        validate_enum(payload.get('lifeSustainingTreatment'), 'lifeSustainingTreatment',
                      LIFE_SUSTAINING_OPTIONS, result, section=STEP_END_OF_LIFE)


def _validate_organ_donation(payload: Dict[str, Any], result: ValidationResult, scope: _Scope):
    if scope.is_healthcare and _healthcare_power(payload, 'organDonation'):
        validate_enum(payload.get('organDonationPreference'), 'organDonationPreference',
                      ORGAN_DONATION_OPTIONS, result, section=STEP_ORGAN_DONATION)


def _normalized_name(value: Any) -> str:
    return ' '.join(str(value or '').lower().split())


def _validate_execution(payload: Dict[str, Any], result: ValidationResult, scope: _Scope):
    """Witness and notary details, checked against the state's formalities."""
    section = STEP_EXECUTION

    witnesses = payload.get('witnesses')
    if witnesses is None:
        witnesses = []
    if not isinstance(witnesses, list):
        result.add_error('witnesses', 'Must be a list', 'type', section)
        witnesses = []
    if len(witnesses) > MAX_WITNESSES:
        result.add_error('witnesses', f'No more than {MAX_WITNESSES} witnesses may be listed',
                         'max_length', section)

    complete_witnesses = 0
    for i, witness in enumerate(witnesses):
        prefix = f'witnesses[{i}]'
        if not isinstance(witness, dict):
            result.add_error(prefix, 'Witness details are required', 'type', section)
            continue
        name_ok = validate_string(witness.get('fullName'), f'{prefix}.fullName', result, section=section)
        address_ok = validate_address(witness.get('address'), f'{prefix}.address', result, section=section)
        validate_string(witness.get('relationship'), f'{prefix}.relationship', result, required=False,
                        max_length=MAX_RELATIONSHIP_LENGTH, section=section)
        if name_ok and address_ok:
            complete_witnesses += 1

    has_notary = False
    notary = payload.get('notaryPublic')
    if isinstance(notary, dict) and notary:
        has_notary = validate_string(notary.get('fullName'), 'notaryPublic.fullName', result, section=section)
        validate_string(notary.get('commissionNumber'), 'notaryPublic.commissionNumber', result,
                        required=False, max_length=50, section=section)
        validate_string(notary.get('county'), 'notaryPublic.county', result, required=False, section=section)
        notary_state = notary.get('state')
        if validate_string(notary_state, 'notaryPublic.state', result, required=False,
                           max_length=2, section=section):
            if not STATE_CODE_PATTERN.match(notary_state.strip().upper()):
                result.add_error('notaryPublic.state', 'Please enter a two-letter state code', 'format', section)
        expiry = notary.get('commissionExpiration')
        if validate_date(expiry, 'notaryPublic.commissionExpiration', result, required=False, section=section):
            if parse_date(expiry) < scope.today:
                result.add_warning('notaryPublic.commissionExpiration',
                                   'The notary commission appears to have expired', 'expired_commission', section)
    elif notary is not None and not isinstance(notary, dict):
        result.add_error('notaryPublic', 'Notary details must be an object', 'type', section)

    # Jurisdictional formalities
    rule = scope.rule
    if scope.poa_type is not None and not rule.requires_legal_review:
        state = rule.state
        if rule.notary_or_witnesses:
            if not has_notary and complete_witnesses < rule.witness_count:
                result.add_error('witnesses',
                                 f'{state} requires {rule.witness_count} witnesses or a notary public',
                                 'witnesses_required', section)
        else:
            if rule.witnesses_required and complete_witnesses < rule.witness_count:
                result.add_error('witnesses', f'{state} requires {rule.witness_count} witness(es)',
                                 'witnesses_required', section)
            if rule.notary_required and not has_notary:
                result.add_error('notaryPublic', f'{state} requires notarization', 'notary_required', section)

    # Witness independence
    principal = payload.get('principal') if isinstance(payload.get('principal'), dict) else {}
    excluded = {_normalized_name(principal.get('fullName')): 'the principal'}
    for agent in payload.get('agents') or []:
        if isinstance(agent, dict) and agent.get('fullName'):
            excluded[_normalized_name(agent.get('fullName'))] = 'an agent'
    excluded.pop('', None)

    seen = set()
    for i, witness in enumerate(witnesses):
        if not isinstance(witness, dict):
            continue
        name = _normalized_name(witness.get('fullName'))
        if not name:
            continue
        if name in excluded:
            result.add_error(f'witnesses[{i}].fullName', f'A witness cannot be {excluded[name]}',
                             'witness_conflict', section)
        if name in seen:
            result.add_error(f'witnesses[{i}].fullName', 'Each witness must be a different person',
                             'duplicate_witness', section)
        seen.add(name)


def _validate_review(payload: Dict[str, Any], result: ValidationResult, scope: _Scope):
    """Final acknowledgements collected on the review screen."""
    section = STEP_REVIEW
    if payload.get('disclaimerAccepted') is not True:
        result.add_error('disclaimerAccepted', 'Please acknowledge that this is not legal advice',
                         'acknowledgement_required', section)
    if payload.get('finalConfirmation') is not True:
        result.add_error('finalConfirmation', 'Please confirm the information is accurate',
                         'acknowledgement_required', section)


StepValidator = Callable[[Dict[str, Any], ValidationResult, _Scope], None]

STEP_VALIDATORS: Dict[str, List[StepValidator]] = {
    STEP_DOCUMENT_TYPE: [_validate_document_type],
    STEP_PRINCIPAL: [_validate_principal],
    STEP_SPRINGING: [_validate_springing],
    STEP_LIMITED: [_validate_limited],
    STEP_AGENTS: [_validate_agents],
    STEP_AGENT_HIERARCHY: [_validate_agent_hierarchy],
    STEP_POWERS: [_validate_powers],
    STEP_HOT_POWERS: [_validate_hot_powers],
    STEP_ADDITIONAL_TERMS: [_validate_additional_terms],
    STEP_HEALTHCARE_POWERS: [_validate_healthcare_powers],
    STEP_END_OF_LIFE: [_validate_end_of_life],
    STEP_ORGAN_DONATION: [_validate_organ_donation],
    STEP_EXECUTION: [_validate_execution],
    STEP_REVIEW: [_validate_review],
}

FULL_SEQUENCE_FINANCIAL = [
    STEP_DOCUMENT_TYPE, STEP_PRINCIPAL, STEP_SPRINGING, STEP_LIMITED, STEP_AGENTS,
    STEP_AGENT_HIERARCHY, STEP_POWERS, STEP_HOT_POWERS, STEP_ADDITIONAL_TERMS, STEP_EXECUTION,
]

FULL_SEQUENCE_HEALTHCARE = [
    STEP_DOCUMENT_TYPE, STEP_PRINCIPAL, STEP_AGENTS, STEP_HEALTHCARE_POWERS,
    STEP_END_OF_LIFE, STEP_ORGAN_DONATION, STEP_EXECUTION,
]


def validate_payload(payload: Dict[str, Any], mode: str = 'full', step_id: Optional[str] = None,
                     reference_date: Optional[date] = None, family: Optional[str] = None) -> ValidationResult:
    """
    Main validation entry point.

    Args:
        payload: The POA payload (camelCase keys)
        mode: 'full' validates everything; 'step' validates only the fields owned by step_id
        step_id: Wizard step to validate in step mode
        reference_date: "Today" for date comparisons (defaults to the current UTC date)
        family: Restrict poaType to 'financial' or 'healthcare'

    Returns:
        ValidationResult; on a successful full pass, normalized holds the validated POAContext
    """
    result = ValidationResult()

    if not isinstance(payload, dict):
        result.add_error('', 'Payload must be a JSON object', 'type', 'general')
        return result

    if mode not in ('full', 'step'):
        result.add_error('', f'Unknown validation mode "{mode}"', 'invalid', 'general')
        return result

    scope = _build_scope(payload, reference_date, family)

    if mode == 'step':
        validators = STEP_VALIDATORS.get(step_id)
        if validators is None:
            result.add_error('', f'Unknown step "{step_id}"', 'unknown_step', 'general')
            return result
        for validator in validators:
            validator(payload, result, scope)
        return result

    sequence = FULL_SEQUENCE_HEALTHCARE if scope.is_healthcare else FULL_SEQUENCE_FINANCIAL
    for current_step in sequence:
        for validator in STEP_VALIDATORS[current_step]:
            validator(payload, result, scope)

    # Catalog-required fields not already covered by a step validator
    if scope.poa_type is not None:
        for required_field in scope.rule.required_fields:
            _require_field(payload, result, required_field, required_field,
                           FIELD_SECTIONS.get(required_field, STEP_DOCUMENT_TYPE))

    if result.is_valid:
        result.normalized = build_context(payload, validated=True)

    return result


def validate_step(payload: Dict[str, Any], step_id: str, family: Optional[str] = None,
                  reference_date: Optional[date] = None) -> ValidationResult:
    """Validate only the fields owned by one wizard step."""
    return validate_payload(payload, mode='step', step_id=step_id,
                            reference_date=reference_date, family=family)
