"""
Sample POA payloads.

Complete, valid payloads for each instrument type, used by the test suite
and handy when exercising the API by hand. Every builder returns a fresh
dict so callers may mutate it freely.
"""

from datetime import date, timedelta
from typing import Any, Dict, Optional

PRINCIPAL_EMAIL = 'jane.principal@example.com'
PRIMARY_AGENT_EMAIL = 'alex.agent@example.com'
SUCCESSOR_AGENT_EMAIL = 'sam.successor@example.com'


def make_address(street: str = '100 Main Street', city: str = 'Orlando',
                 state: str = 'FL', zip_code: str = '32801') -> Dict[str, str]:
    return {'street': street, 'city': city, 'state': state, 'zipCode': zip_code}


def make_principal(state: str = 'FL') -> Dict[str, Any]:
    return {
        'fullName': 'Jane Principal',
        'email': PRINCIPAL_EMAIL,
        'phone': '(407) 555-0100',
        'dateOfBirth': '1960-04-12',
        'address': make_address(state=state),
    }


def make_agent(agent_type: str = 'primary', name: str = 'Alex Agent',
               email: str = PRIMARY_AGENT_EMAIL, order: Optional[int] = None,
               state: str = 'FL') -> Dict[str, Any]:
    agent = {
        'type': agent_type,
        'fullName': name,
        'email': email,
        'relationship': 'Sibling',
        'address': make_address('200 Oak Avenue', state=state),
    }
    if order is not None:
        agent['order'] = order
    return agent


def make_notary(state: str = 'FL') -> Dict[str, Any]:
    return {
        'fullName': 'Nora Notary',
        'commissionNumber': 'NP-123456',
        'commissionExpiration': (date.today() + timedelta(days=365 * 3)).isoformat(),
        'county': 'Orange',
        'state': state,
    }


def make_witnesses(state: str = 'FL'):
    return [
        {'fullName': 'Walter Witness', 'address': make_address('1 Elm Street', state=state)},
        {'fullName': 'Wendy Witness', 'address': make_address('2 Elm Street', state=state)},
    ]


def make_durable_payload(state: str = 'FL') -> Dict[str, Any]:
    """Durable financial POA granting every category, with all hot-power consents."""
    return {
        'poaType': 'DURABLE',
        'state': state,
        'isDurable': True,
        'principal': make_principal(state),
        'agents': [
            make_agent(state=state),
            make_agent('successor', 'Sam Successor', SUCCESSOR_AGENT_EMAIL, order=1, state=state),
        ],
        'grantedPowers': {'grantAllPowers': True},
        'hotPowersConsent': {'gifting': True, 'trustModification': True, 'beneficiaryChanges': True},
        'specialInstructions': 'My agent shall keep my residence available to me.',
        'agentCompensation': False,
        'witnesses': make_witnesses(state),
        'notaryPublic': make_notary(state),
    }


def make_springing_payload(state: str = 'TX') -> Dict[str, Any]:
    """Springing POA over real property and banking, effective on certified incapacity."""
    return {
        'poaType': 'SPRINGING',
        'state': state,
        'principal': make_principal(state),
        'agents': [make_agent(state=state)],
        'springingCondition': 'My incapacity as certified in writing by my attending physician.',
        'numberOfPhysiciansRequired': 1,
        'grantedPowers': {'categoryIds': ['A', 'E'], 'grantAllSubPowers': True},
        'notaryPublic': make_notary(state),
    }


def make_limited_payload(state: str = 'TX') -> Dict[str, Any]:
    """Limited POA for a single real estate closing."""
    today = date.today()
    return {
        'poaType': 'LIMITED',
        'state': state,
        'principal': make_principal(state),
        'agents': [make_agent(state=state)],
        'effectiveDate': (today + timedelta(days=1)).isoformat(),
        'expirationDate': (today + timedelta(days=90)).isoformat(),
        'specificPurpose': 'Closing the sale of 100 Main Street.',
        'grantedPowers': {'categoryIds': ['A']},
        'notaryPublic': make_notary(state),
    }


def make_healthcare_payload(state: str = 'TX') -> Dict[str, Any]:
    """Healthcare POA with end-of-life preferences and one successor."""
    return {
        'poaType': 'HEALTHCARE',
        'state': state,
        'principal': make_principal(state),
        'agents': [
            make_agent(state=state),
            make_agent('successor', 'Sam Successor', SUCCESSOR_AGENT_EMAIL, order=1, state=state),
        ],
        'healthcarePowers': {'medicalTreatment': True, 'endOfLifeDecisions': True},
        'lifeSustainingTreatment': 'comfort_care_only',
        'notaryPublic': make_notary(state),
    }
