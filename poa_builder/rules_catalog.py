"""
Rules Catalog Module

Data-driven jurisdiction rules for power of attorney instruments.

Every per-state and per-type legal constraint lives in the tables below.
Adding a state or adjusting a formality is a data change only; the
validation engine and assembler read rules exclusively through get_rule().

Lookup Rules:
=============

1. Type rules (TYPE_FIELD_RULES) list the fields each POA type requires
   and the fields it must not carry.
2. State rules (STATE_RULES) give execution formalities per family
   (financial / healthcare), whether springing instruments are allowed,
   and the minimum number of certifying physicians.
3. Unknown (type, state) combinations fail closed: the rule is marked
   not permitted and requiring legal review, with the strictest
   formalities, rather than silently permitting the instrument.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class POAType(str, Enum):
    """Power of attorney type discriminator."""
    DURABLE = 'DURABLE'
    SPRINGING = 'SPRINGING'
    LIMITED = 'LIMITED'
    HEALTHCARE = 'HEALTHCARE'


FINANCIAL_TYPES = (POAType.DURABLE, POAType.SPRINGING, POAType.LIMITED)

FAMILY_FINANCIAL = 'financial'
FAMILY_HEALTHCARE = 'healthcare'

MAX_PHYSICIANS = 3
DEFAULT_MIN_PHYSICIANS = 1


@dataclass(frozen=True)
class ExecutionFormality:
    """Signing formalities for one document family in one state."""
    notary: bool
    witnesses: int
    either: bool = False  # notary OR the witnesses satisfies execution


@dataclass(frozen=True)
class StateRules:
    """Per-state rules, split by document family."""
    code: str
    name: str
    financial: Optional[ExecutionFormality]
    healthcare: Optional[ExecutionFormality]
    allows_springing: bool = True
    min_physicians: int = DEFAULT_MIN_PHYSICIANS
    notes: str = ''


@dataclass(frozen=True)
class TypeFieldRule:
    """Conditionally required and forbidden payload fields for a POA type."""
    required: Tuple[str, ...] = ()
    forbidden: Tuple[str, ...] = ()


@dataclass(frozen=True)
class JurisdictionRule:
    """Resolved rule for a (POA type, state) pair."""
    poa_type: str
    state: str
    permitted: bool
    requires_legal_review: bool
    notary_required: bool
    witnesses_required: bool
    witness_count: int
    notary_or_witnesses: bool = False
    required_fields: Tuple[str, ...] = ()
    forbidden_fields: Tuple[str, ...] = ()
    min_physicians: int = DEFAULT_MIN_PHYSICIANS
    max_physicians: int = MAX_PHYSICIANS
    reason: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'poa_type': self.poa_type,
            'state': self.state,
            'permitted': self.permitted,
            'requires_legal_review': self.requires_legal_review,
            'notary_required': self.notary_required,
            'witnesses_required': self.witnesses_required,
            'witness_count': self.witness_count,
            'notary_or_witnesses': self.notary_or_witnesses,
            'required_fields': list(self.required_fields),
            'forbidden_fields': list(self.forbidden_fields),
            'min_physicians': self.min_physicians,
            'max_physicians': self.max_physicians,
            'reason': self.reason,
        }


SPRINGING_FIELDS = ('springingCondition', 'numberOfPhysiciansRequired')

TYPE_FIELD_RULES: Dict[POAType, TypeFieldRule] = {
    POAType.DURABLE: TypeFieldRule(
        required=(),
        forbidden=SPRINGING_FIELDS,
    ),
    POAType.SPRINGING: TypeFieldRule(
        required=SPRINGING_FIELDS,
        forbidden=('effectiveDate',),
    ),
    POAType.LIMITED: TypeFieldRule(
        required=('expirationDate', 'specificPurpose'),
        forbidden=SPRINGING_FIELDS,
    ),
    POAType.HEALTHCARE: TypeFieldRule(
        required=('healthcarePowers',),
        forbidden=SPRINGING_FIELDS + ('grantedPowers',),
    ),
}


STATE_RULES: Dict[str, StateRules] = {
    'AZ': StateRules(
        code='AZ', name='Arizona',
        financial=ExecutionFormality(notary=True, witnesses=1),
        healthcare=ExecutionFormality(notary=True, witnesses=1, either=True),
    ),
    'CA': StateRules(
        code='CA', name='California',
        financial=ExecutionFormality(notary=True, witnesses=2, either=True),
        healthcare=ExecutionFormality(notary=True, witnesses=2, either=True),
        min_physicians=2,
        notes='Incapacity must be certified by two licensed physicians.',
    ),
    'FL': StateRules(
        code='FL', name='Florida',
        financial=ExecutionFormality(notary=True, witnesses=2),
        healthcare=ExecutionFormality(notary=True, witnesses=2),
        allows_springing=False,
        notes='Springing powers of attorney executed after October 1, 2011 are invalid.',
    ),
    'GA': StateRules(
        code='GA', name='Georgia',
        financial=ExecutionFormality(notary=True, witnesses=1),
        healthcare=ExecutionFormality(notary=False, witnesses=2),
    ),
    'IL': StateRules(
        code='IL', name='Illinois',
        financial=ExecutionFormality(notary=True, witnesses=1),
        healthcare=ExecutionFormality(notary=False, witnesses=1),
    ),
    'MA': StateRules(
        code='MA', name='Massachusetts',
        financial=ExecutionFormality(notary=True, witnesses=0),
        healthcare=ExecutionFormality(notary=False, witnesses=2),
    ),
    'NC': StateRules(
        code='NC', name='North Carolina',
        financial=ExecutionFormality(notary=True, witnesses=0),
        healthcare=ExecutionFormality(notary=True, witnesses=2),
    ),
    'NY': StateRules(
        code='NY', name='New York',
        financial=ExecutionFormality(notary=True, witnesses=2),
        healthcare=ExecutionFormality(notary=False, witnesses=2),
        min_physicians=2,
        notes='Statutory short form; gifting requires explicit authorization.',
    ),
    'OH': StateRules(
        code='OH', name='Ohio',
        financial=ExecutionFormality(notary=True, witnesses=0),
        healthcare=ExecutionFormality(notary=True, witnesses=2, either=True),
    ),
    'PA': StateRules(
        code='PA', name='Pennsylvania',
        financial=ExecutionFormality(notary=True, witnesses=2),
        healthcare=ExecutionFormality(notary=True, witnesses=2),
    ),
    'TX': StateRules(
        code='TX', name='Texas',
        financial=ExecutionFormality(notary=True, witnesses=0),
        healthcare=ExecutionFormality(notary=True, witnesses=2, either=True),
        min_physicians=1,
    ),
    'WA': StateRules(
        code='WA', name='Washington',
        financial=ExecutionFormality(notary=True, witnesses=2, either=True),
        healthcare=ExecutionFormality(notary=True, witnesses=2, either=True),
    ),
}


def normalize_poa_type(value: Any) -> Optional[POAType]:
    """Map a payload poaType value (any case) to POAType, or None."""
    if isinstance(value, POAType):
        return value
    if not isinstance(value, str):
        return None
    try:
        return POAType(value.strip().upper())
    except ValueError:
        return None


def poa_family(poa_type: Any) -> Optional[str]:
    """Return 'financial' or 'healthcare' for a type, None if unknown."""
    resolved = normalize_poa_type(poa_type)
    if resolved is None:
        return None
    return FAMILY_HEALTHCARE if resolved == POAType.HEALTHCARE else FAMILY_FINANCIAL


def normalize_state(value: Any) -> str:
    if not isinstance(value, str):
        return ''
    return value.strip().upper()


def _fail_closed(poa_type: str, state: str, required: Tuple[str, ...],
                 forbidden: Tuple[str, ...], reason: str) -> JurisdictionRule:
    return JurisdictionRule(
        poa_type=poa_type,
        state=state,
        permitted=False,
        requires_legal_review=True,
        notary_required=True,
        witnesses_required=True,
        witness_count=2,
        required_fields=required,
        forbidden_fields=forbidden,
        reason=reason,
    )


def get_rule(poa_type: Any, state: Any) -> JurisdictionRule:
    """
    Resolve the jurisdiction rule for a POA type in a state.

    Args:
        poa_type: POA type (enum or string, any case)
        state: Two-letter state code (any case)

    Returns:
        JurisdictionRule; unknown combinations are never permitted
    """
    resolved_type = normalize_poa_type(poa_type)
    state_code = normalize_state(state)
    type_label = resolved_type.value if resolved_type else str(poa_type or '')

    if resolved_type is None:
        return _fail_closed(type_label, state_code, (), (),
                            f'Unknown power of attorney type "{type_label}"')

    type_rule = TYPE_FIELD_RULES[resolved_type]
    state_rules = STATE_RULES.get(state_code)

    if state_rules is None:
        return _fail_closed(type_label, state_code, type_rule.required, type_rule.forbidden,
                            f'No rules are on file for state "{state_code}"')

    family = poa_family(resolved_type)
    formality = state_rules.healthcare if family == FAMILY_HEALTHCARE else state_rules.financial

    if formality is None:
        return _fail_closed(type_label, state_code, type_rule.required, type_rule.forbidden,
                            f'No {family} rules are on file for {state_rules.name}')

    permitted = True
    reason = ''
    if resolved_type == POAType.SPRINGING and not state_rules.allows_springing:
        permitted = False
        reason = f'{state_rules.name} does not permit springing powers of attorney'

    return JurisdictionRule(
        poa_type=type_label,
        state=state_code,
        permitted=permitted,
        requires_legal_review=False,
        notary_required=formality.notary,
        witnesses_required=formality.witnesses > 0,
        witness_count=formality.witnesses,
        notary_or_witnesses=formality.either,
        required_fields=type_rule.required,
        forbidden_fields=type_rule.forbidden,
        min_physicians=state_rules.min_physicians,
        max_physicians=MAX_PHYSICIANS,
        reason=reason,
    )


def list_states() -> List[Dict[str, Any]]:
    """Summarize supported states for the states endpoint."""
    states = []
    for code in sorted(STATE_RULES):
        rules = STATE_RULES[code]
        states.append({
            'code': code,
            'name': rules.name,
            'allows_springing': rules.allows_springing,
            'min_physicians': rules.min_physicians,
            'financial': get_rule(POAType.DURABLE, code).to_dict(),
            'healthcare': get_rule(POAType.HEALTHCARE, code).to_dict(),
            'notes': rules.notes,
        })
    return states
