"""
Clause Logic Module

Determines which clauses appear in the instrument and their order.
All clause selection is based on explicit triggers from the context.

Clause Dependency Rules:
========================

1. TITLE: Always included (first)
2. PRINCIPAL_IDENTIFICATION: Always included
3. EFFECTIVE_DATE: Always included
4. DURABILITY: Included if has_durability is True (financial, survives incapacity)
5. SPRINGING_TRIGGER: Included if is_springing is True
6. LIMITED_PURPOSE: Included if is_limited is True
7. AGENT_DESIGNATION: Always included
8. SUCCESSOR_AGENTS: Included if has_successors is True
9. CO_AGENTS: Included if has_co_agents is True
10. GRANTED_POWERS: Included if is_financial is True
11. HOT_POWERS: Included if has_hot_powers is True
12. HEALTHCARE_DIRECTIVES: Included if is_healthcare is True
13. SPECIAL_INSTRUCTIONS: Included if has_special_instructions is True
14. AGENT_DUTIES: Always included
15. COMPENSATION: Included if is_financial is True
16. REVOCATION_AMENDMENT: Always included
17. GOVERNING_LAW: Always included
18. PRINCIPAL_SIGNATURE: Always included
19. WITNESS_ATTESTATION: Included if has_witnesses is True
20. NOTARY_ACKNOWLEDGMENT: Included if has_notary is True
21. AGENT_ACCEPTANCE: Always included (last)

Conflict Prevention:
====================
- No clause appears more than once
- Clause order is fixed and stable
- Financial powers and healthcare directives never appear together
"""

from typing import List, Dict
from dataclasses import dataclass
from enum import Enum

from poa_builder.context_builder import POAContext


class ClauseId(str, Enum):
    """Stable clause identifiers."""
    TITLE = 'title'
    PRINCIPAL_IDENTIFICATION = 'principal_identification'
    EFFECTIVE_DATE = 'effective_date'
    DURABILITY = 'durability'
    SPRINGING_TRIGGER = 'springing_trigger'
    LIMITED_PURPOSE = 'limited_purpose'
    AGENT_DESIGNATION = 'agent_designation'
    SUCCESSOR_AGENTS = 'successor_agents'
    CO_AGENTS = 'co_agents'
    GRANTED_POWERS = 'granted_powers'
    HOT_POWERS = 'hot_powers'
    HEALTHCARE_DIRECTIVES = 'healthcare_directives'
    SPECIAL_INSTRUCTIONS = 'special_instructions'
    AGENT_DUTIES = 'agent_duties'
    COMPENSATION = 'compensation'
    REVOCATION_AMENDMENT = 'revocation_amendment'
    GOVERNING_LAW = 'governing_law'
    PRINCIPAL_SIGNATURE = 'principal_signature'
    WITNESS_ATTESTATION = 'witness_attestation'
    NOTARY_ACKNOWLEDGMENT = 'notary_acknowledgment'
    AGENT_ACCEPTANCE = 'agent_acceptance'


# Fixed clause order - this never changes
CLAUSE_ORDER: List[ClauseId] = list(ClauseId)

# Clauses whose signature lines must never be split across pages
SIGNATURE_CLAUSES = frozenset({
    ClauseId.PRINCIPAL_SIGNATURE,
    ClauseId.WITNESS_ATTESTATION,
    ClauseId.NOTARY_ACKNOWLEDGMENT,
    ClauseId.AGENT_ACCEPTANCE,
})


@dataclass
class ClauseDependency:
    """Defines dependencies for a clause."""
    clause_id: ClauseId
    required_flags: List[str]  # All must be True
    notes: str = ''


def _dependency(clause_id: ClauseId, flags: List[str], notes: str) -> ClauseDependency:
    return ClauseDependency(clause_id=clause_id, required_flags=flags, notes=notes)


# Clause dependency definitions
CLAUSE_DEPENDENCIES: Dict[ClauseId, ClauseDependency] = {
    d.clause_id: d for d in [
        _dependency(ClauseId.TITLE, [], 'Always included - must be first'),
        _dependency(ClauseId.PRINCIPAL_IDENTIFICATION, [], 'Always included'),
        _dependency(ClauseId.EFFECTIVE_DATE, [], 'Always included'),
        _dependency(ClauseId.DURABILITY, ['has_durability'],
                    'Financial instruments that survive incapacity'),
        _dependency(ClauseId.SPRINGING_TRIGGER, ['is_springing'],
                    'Springing instruments: trigger and physician certification'),
        _dependency(ClauseId.LIMITED_PURPOSE, ['is_limited'],
                    'Limited instruments: purpose and expiration'),
        _dependency(ClauseId.AGENT_DESIGNATION, [], 'Always included - every POA has a primary agent'),
        _dependency(ClauseId.SUCCESSOR_AGENTS, ['has_successors'], 'Only if successor agents are named'),
        _dependency(ClauseId.CO_AGENTS, ['has_co_agents'], 'Only if co-agents are named'),
        _dependency(ClauseId.GRANTED_POWERS, ['is_financial'], 'Financial instruments only'),
        _dependency(ClauseId.HOT_POWERS, ['has_hot_powers'],
                    'Only if a power requiring express consent is granted'),
        _dependency(ClauseId.HEALTHCARE_DIRECTIVES, ['is_healthcare'], 'Healthcare instruments only'),
        _dependency(ClauseId.SPECIAL_INSTRUCTIONS, ['has_special_instructions'],
                    'Only if special instructions were entered'),
        _dependency(ClauseId.AGENT_DUTIES, [], 'Always included'),
        _dependency(ClauseId.COMPENSATION, ['is_financial'], 'Financial instruments only'),
        _dependency(ClauseId.REVOCATION_AMENDMENT, [], 'Always included'),
        _dependency(ClauseId.GOVERNING_LAW, [], 'Always included'),
        _dependency(ClauseId.PRINCIPAL_SIGNATURE, [], 'Always included'),
        _dependency(ClauseId.WITNESS_ATTESTATION, ['has_witnesses'], 'One block per listed witness'),
        _dependency(ClauseId.NOTARY_ACKNOWLEDGMENT, ['has_notary'], 'Only if a notary is present'),
        _dependency(ClauseId.AGENT_ACCEPTANCE, [], 'Always included - must be last'),
    ]
}


def get_context_flags(context: POAContext) -> Dict[str, bool]:
    """
    Extract all boolean flags from context for dependency checking.

    Args:
        context: The POA context

    Returns:
        Dictionary of flag names to boolean values
    """
    return {
        'is_financial': context.is_financial,
        'is_healthcare': context.is_healthcare,
        'is_durable': context.is_durable,
        'is_springing': context.is_springing,
        'is_limited': context.is_limited,
        'has_durability': context.has_durability,
        'has_successors': context.has_successors,
        'has_co_agents': context.has_co_agents,
        'has_hot_powers': context.has_hot_powers,
        'has_special_instructions': context.has_special_instructions,
        'has_witnesses': context.has_witnesses,
        'has_notary': context.has_notary,
    }


def check_clause_dependencies(clause_id: ClauseId, context: POAContext) -> bool:
    """
    Check if a clause's dependencies are satisfied.

    Args:
        clause_id: The clause to check
        context: The POA context

    Returns:
        True if clause should be included
    """
    dependency = CLAUSE_DEPENDENCIES.get(clause_id)
    if not dependency:
        return False

    flags = get_context_flags(context)
    return all(flags.get(flag_name, False) for flag_name in dependency.required_flags)


def select_clauses(context: POAContext) -> List[ClauseId]:
    """
    Select which clauses should appear in the instrument based on context flags.

    Args:
        context: The POA context with all derived flags

    Returns:
        Ordered list of clause IDs to include
    """
    return [clause_id for clause_id in CLAUSE_ORDER if check_clause_dependencies(clause_id, context)]


def get_clause_title(clause_id: ClauseId) -> str:
    """
    Get the display title for a clause.

    Args:
        clause_id: The clause identifier

    Returns:
        Human-readable clause title
    """
    titles = {
        ClauseId.TITLE: 'Title',
        ClauseId.PRINCIPAL_IDENTIFICATION: 'Designation of Principal',
        ClauseId.EFFECTIVE_DATE: 'Effective Date',
        ClauseId.DURABILITY: 'Durability',
        ClauseId.SPRINGING_TRIGGER: 'Springing Power and Determination of Incapacity',
        ClauseId.LIMITED_PURPOSE: 'Limited Purpose and Expiration',
        ClauseId.AGENT_DESIGNATION: 'Designation of Agent',
        ClauseId.SUCCESSOR_AGENTS: 'Designation of Successor Agents',
        ClauseId.CO_AGENTS: 'Co-Agents',
        ClauseId.GRANTED_POWERS: 'Grant of General Authority',
        ClauseId.HOT_POWERS: 'Grant of Specific Authority',
        ClauseId.HEALTHCARE_DIRECTIVES: 'Healthcare Decisions',
        ClauseId.SPECIAL_INSTRUCTIONS: 'Special Instructions',
        ClauseId.AGENT_DUTIES: 'Duties of Agent',
        ClauseId.COMPENSATION: 'Compensation and Reimbursement',
        ClauseId.REVOCATION_AMENDMENT: 'Amendment and Revocation',
        ClauseId.GOVERNING_LAW: 'Governing Law and Reliance',
        ClauseId.PRINCIPAL_SIGNATURE: 'Signature of Principal',
        ClauseId.WITNESS_ATTESTATION: 'Statement of Witnesses',
        ClauseId.NOTARY_ACKNOWLEDGMENT: 'Acknowledgment of Notary Public',
        ClauseId.AGENT_ACCEPTANCE: "Agent's Acceptance of Appointment",
    }

    return titles.get(clause_id, clause_id.value.replace('_', ' ').title())


def validate_clause_order(clauses: List[ClauseId]) -> bool:
    """
    Validate that clause order follows the defined order.

    Args:
        clauses: List of clause IDs to validate

    Returns:
        True if order is valid
    """
    last_index = -1
    for clause in clauses:
        try:
            current_index = CLAUSE_ORDER.index(clause)
            if current_index <= last_index:
                return False
            last_index = current_index
        except ValueError:
            return False  # Unknown clause

    return True


def check_for_conflicts(selected_clauses: List[ClauseId]) -> List[str]:
    """
    Check for conflicting clauses in the selection.

    Args:
        selected_clauses: List of selected clause IDs

    Returns:
        List of conflict messages (empty if no conflicts)
    """
    conflicts = []

    seen = set()
    for clause in selected_clauses:
        if clause in seen:
            conflicts.append(f'Duplicate clause: {clause.value}')
        seen.add(clause)

    if ClauseId.GRANTED_POWERS in seen and ClauseId.HEALTHCARE_DIRECTIVES in seen:
        conflicts.append('Financial powers and healthcare directives cannot appear in one instrument')

    if ClauseId.SPRINGING_TRIGGER in seen and ClauseId.LIMITED_PURPOSE in seen:
        conflicts.append('An instrument cannot be both springing and limited')

    if selected_clauses and selected_clauses[-1] != ClauseId.AGENT_ACCEPTANCE:
        conflicts.append('Agent acceptance clause must be last')

    if selected_clauses and selected_clauses[0] != ClauseId.TITLE:
        conflicts.append('Title clause must be first')

    return conflicts

