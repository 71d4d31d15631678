"""
Unit tests for validation module.
"""

from datetime import date, timedelta

import pytest
from poa_builder.validation import (
    validate_payload, validate_step, ValidationResult,
    validate_email, validate_address, validate_integer, validate_postal_code
)
from poa_builder.sample_payloads import (
    PRINCIPAL_EMAIL, make_agent, make_durable_payload, make_healthcare_payload,
    make_limited_payload, make_springing_payload
)


def error_codes(result, field=None):
    return [e.code for e in result.errors if field is None or e.field == field]


class TestValidationResult:
    def test_initially_valid(self):
        result = ValidationResult()
        assert result.is_valid is True
        assert len(result.errors) == 0

    def test_add_error(self):
        result = ValidationResult()
        result.add_error('field', 'message', 'code', 'principal-info')
        assert result.is_valid is False
        assert result.errors[0].field == 'field'
        assert result.errors[0].code == 'code'
        assert result.errors[0].section == 'principal-info'

    def test_warnings_do_not_invalidate(self):
        result = ValidationResult()
        result.add_warning('field', 'message')
        assert result.is_valid is True
        assert result.to_dict()['warnings'][0]['field'] == 'field'

    def test_to_dict(self):
        result = ValidationResult()
        result.add_error('field', 'message', 'code')
        d = result.to_dict()
        assert d['ok'] is False
        assert len(d['errors']) == 1

    def test_errors_grouped_by_section(self):
        result = ValidationResult()
        result.add_error('a', 'm', 'c', 'agent-selection')
        result.add_error('b', 'm', 'c')
        grouped = result.get_errors_by_section()
        assert set(grouped) == {'agent-selection', 'general'}


class TestFieldValidators:
    def test_valid_email(self):
        result = ValidationResult()
        assert validate_email('test@example.com', 'email', result) is True

    def test_invalid_email(self):
        result = ValidationResult()
        assert validate_email('not-an-email', 'email', result) is False
        assert result.errors[0].code == 'format'

    def test_integer_rejects_booleans(self):
        result = ValidationResult()
        assert validate_integer(True, 'count', result) is False
        assert result.errors[0].code == 'type'

    def test_integer_bounds(self):
        result = ValidationResult()
        assert validate_integer(4, 'count', result, min_value=1, max_value=3) is False
        assert result.errors[0].code == 'max_value'

    @pytest.mark.parametrize('zip_code', ['32801', '32801-1234'])
    def test_us_zip_codes(self, zip_code):
        result = ValidationResult()
        assert validate_postal_code(zip_code, 'US', 'zip', result) is True

    def test_bad_us_zip_code(self):
        result = ValidationResult()
        assert validate_postal_code('3280', 'US', 'zip', result) is False

    def test_address_requires_all_parts(self):
        result = ValidationResult()
        assert validate_address({'street': '1 Main St'}, 'address', result) is False
        fields = {e.field for e in result.errors}
        assert {'address.city', 'address.state', 'address.zipCode'} <= fields

    def test_address_rejects_long_state_name(self):
        result = ValidationResult()
        address = {'street': '1 Main St', 'city': 'Austin', 'state': 'Texas', 'zipCode': '73301'}
        assert validate_address(address, 'address', result) is False
        assert result.errors[0].field == 'address.state'


class TestDurablePayload:
    def test_durable_florida_one_primary_agent_is_valid(self):
        payload = make_durable_payload('FL')
        payload['agents'] = [make_agent()]
        result = validate_payload(payload)
        assert result.is_valid, result.to_dict()

        context = result.normalized
        assert context.validated is True
        assert context.is_durable and context.has_durability
        assert not context.is_springing and not context.is_limited
        assert len(context.granted_powers) == 14

    def test_missing_poa_type(self):
        payload = make_durable_payload()
        del payload['poaType']
        result = validate_payload(payload)
        assert 'required' in error_codes(result, 'poaType')

    def test_unknown_state_fails_closed(self):
        payload = make_durable_payload('ZZ')
        result = validate_payload(payload)
        assert 'requires_legal_review' in error_codes(result, 'state')
        assert result.normalized is None

    def test_flag_disagreeing_with_type(self):
        payload = make_durable_payload()
        payload['isSpringing'] = True
        result = validate_payload(payload)
        assert 'type_mismatch' in error_codes(result, 'isSpringing')

    def test_springing_fields_forbidden_on_durable(self):
        payload = make_durable_payload()
        payload['numberOfPhysiciansRequired'] = 2
        result = validate_payload(payload)
        errors = [e for e in result.errors if e.field == 'numberOfPhysiciansRequired']
        assert errors and errors[0].code == 'forbidden_field'
        assert errors[0].section == 'document-type'

    def test_florida_requires_two_witnesses(self):
        payload = make_durable_payload('FL')
        payload['witnesses'] = payload['witnesses'][:1]
        result = validate_payload(payload)
        assert 'witnesses_required' in error_codes(result, 'witnesses')

    def test_florida_requires_notary(self):
        payload = make_durable_payload('FL')
        del payload['notaryPublic']
        result = validate_payload(payload)
        assert 'notary_required' in error_codes(result, 'notaryPublic')

    def test_witness_cannot_be_an_agent(self):
        payload = make_durable_payload('FL')
        payload['witnesses'][0]['fullName'] = 'alex  AGENT'
        result = validate_payload(payload)
        assert 'witness_conflict' in error_codes(result, 'witnesses[0].fullName')

    def test_witnesses_must_be_distinct(self):
        payload = make_durable_payload('FL')
        payload['witnesses'][1]['fullName'] = payload['witnesses'][0]['fullName']
        result = validate_payload(payload)
        assert 'duplicate_witness' in error_codes(result, 'witnesses[1].fullName')

    def test_expired_notary_commission_is_a_warning(self):
        payload = make_durable_payload('FL')
        payload['notaryPublic']['commissionExpiration'] = '2001-01-01'
        result = validate_payload(payload)
        assert result.is_valid
        assert result.warnings[0].code == 'expired_commission'


class TestSpringingPayload:
    def test_valid_springing_texas(self):
        result = validate_payload(make_springing_payload('TX'))
        assert result.is_valid, result.to_dict()
        assert result.normalized.is_springing is True
        assert result.normalized.effective_date is None

    def test_missing_physician_count(self):
        payload = make_springing_payload('TX')
        del payload['numberOfPhysiciansRequired']
        result = validate_payload(payload)
        assert not result.is_valid
        errors = [e for e in result.errors if e.field == 'numberOfPhysiciansRequired']
        assert errors[0].code == 'required'
        assert errors[0].section == 'springing-details'

    def test_physician_count_below_state_minimum(self):
        payload = make_springing_payload('CA')
        result = validate_payload(payload)
        assert 'physician_count' in error_codes(result, 'numberOfPhysiciansRequired')

    def test_physician_count_above_maximum(self):
        payload = make_springing_payload('TX')
        payload['numberOfPhysiciansRequired'] = 4
        result = validate_payload(payload)
        assert 'max_value' in error_codes(result, 'numberOfPhysiciansRequired')

    def test_springing_not_permitted_in_florida(self):
        payload = make_springing_payload('FL')
        result = validate_payload(payload)
        assert 'not_permitted' in error_codes(result, 'poaType')

    def test_effective_date_forbidden(self):
        payload = make_springing_payload('TX')
        payload['effectiveDate'] = date.today().isoformat()
        result = validate_payload(payload)
        assert 'forbidden_field' in error_codes(result, 'effectiveDate')


class TestLimitedPayload:
    def test_valid_limited(self):
        result = validate_payload(make_limited_payload())
        assert result.is_valid, result.to_dict()
        assert result.normalized.is_limited is True
        assert result.normalized.is_durable is False

    def test_expiration_before_effective(self):
        payload = make_limited_payload()
        payload['effectiveDate'] = (date.today() + timedelta(days=30)).isoformat()
        payload['expirationDate'] = (date.today() + timedelta(days=10)).isoformat()
        result = validate_payload(payload)
        errors = [e for e in result.errors if e.field == 'expirationDate']
        assert errors[0].code == 'date_order'
        assert errors[0].section == 'limited-details'

    def test_expiration_required(self):
        payload = make_limited_payload()
        del payload['expirationDate']
        result = validate_payload(payload)
        assert error_codes(result, 'expirationDate') == ['required']

    def test_past_expiration_without_effective_date(self):
        payload = make_limited_payload()
        del payload['effectiveDate']
        payload['expirationDate'] = '2020-01-01'
        result = validate_payload(payload)
        assert 'date_past' in error_codes(result, 'expirationDate')

    def test_purpose_required(self):
        payload = make_limited_payload()
        payload['specificPurpose'] = '   '
        result = validate_payload(payload)
        assert 'required' in error_codes(result, 'specificPurpose')


class TestAgentValidation:
    def test_duplicate_successor_order(self):
        payload = make_durable_payload()
        payload['agents'] = [
            make_agent(),
            make_agent('successor', 'First Successor', 'first@example.com', order=1),
            make_agent('successor', 'Second Successor', 'second@example.com', order=1),
        ]
        result = validate_payload(payload)
        assert 'duplicate_order' in error_codes(result, 'agents[2].order')

    def test_successor_order_gap(self):
        payload = make_durable_payload()
        payload['agents'][1]['order'] = 2
        result = validate_payload(payload)
        assert 'order_sequence' in error_codes(result, 'agents')

    def test_exactly_one_primary(self):
        payload = make_durable_payload()
        payload['agents'][1] = make_agent(name='Other Primary', email='other@example.com')
        result = validate_payload(payload)
        assert 'primary_count' in error_codes(result, 'agents')

    def test_duplicate_agent_email(self):
        payload = make_durable_payload()
        payload['agents'][1]['email'] = payload['agents'][0]['email'].upper()
        result = validate_payload(payload)
        assert 'duplicate_email' in error_codes(result, 'agents[1].email')

    def test_agent_cannot_be_principal(self):
        payload = make_durable_payload()
        payload['agents'][0]['email'] = PRINCIPAL_EMAIL
        result = validate_payload(payload)
        assert 'agent_is_principal' in error_codes(result, 'agents[0].email')

    def test_no_agents(self):
        payload = make_durable_payload()
        payload['agents'] = []
        result = validate_payload(payload)
        assert 'required' in error_codes(result, 'agents')

    def test_co_agents_must_state_how_they_act(self):
        payload = make_durable_payload()
        payload['agents'].append(make_agent('co_agent', 'Casey Coagent', 'casey@example.com'))
        result = validate_payload(payload)
        errors = [e for e in result.errors if e.field == 'coAgentsMustActJointly']
        assert errors[0].section == 'agent-hierarchy'

        payload['coAgentsMustActJointly'] = False
        result = validate_payload(payload)
        assert result.is_valid, result.to_dict()
        assert result.normalized.co_agents_act_jointly is False

    def test_healthcare_rejects_co_agents(self):
        payload = make_healthcare_payload()
        payload['agents'].append(make_agent('co_agent', 'Casey Coagent', 'casey@example.com'))
        result = validate_payload(payload)
        assert 'enum' in error_codes(result, 'agents[2].type')

    def test_stable_agent_ids_and_role_order(self):
        payload = make_durable_payload()
        payload['agents'].reverse()
        context = validate_payload(payload).normalized
        assert [a.agent_type for a in context.agents] == ['primary', 'successor']
        assert context.primary_agent.id == 'agent-2'


class TestPowersValidation:
    def test_no_categories(self):
        payload = make_springing_payload()
        payload['grantedPowers'] = {'categoryIds': []}
        result = validate_payload(payload)
        assert 'no_powers' in error_codes(result, 'grantedPowers.categoryIds')

    def test_unknown_category(self):
        payload = make_springing_payload()
        payload['grantedPowers'] = {'categoryIds': ['A', 'Z']}
        result = validate_payload(payload)
        assert 'unknown_category' in error_codes(result, 'grantedPowers.categoryIds[1]')

    def test_hot_power_requires_consent(self):
        payload = make_springing_payload()
        payload['grantedPowers'] = {'categoryIds': ['H'], 'grantAllSubPowers': False, 'subPowerIds': ['H2']}
        result = validate_payload(payload)
        errors = [e for e in result.errors if e.field == 'hotPowersConsent.trustModification']
        assert errors[0].code == 'consent_required'
        assert errors[0].section == 'hot-powers'
        assert not result.has_error_for('hotPowersConsent.gifting')

    def test_grant_all_needs_every_consent(self):
        payload = make_durable_payload()
        payload['hotPowersConsent']['beneficiaryChanges'] = False
        result = validate_payload(payload)
        assert error_codes(result) == ['consent_required']

    def test_sub_power_outside_granted_category(self):
        payload = make_springing_payload()
        payload['grantedPowers'] = {'categoryIds': ['A'], 'grantAllSubPowers': False,
                                    'subPowerIds': ['A1', 'E1']}
        result = validate_payload(payload)
        assert 'unknown_sub_power' in error_codes(result, 'grantedPowers.subPowerIds[1]')

    def test_category_ids_not_a_list(self):
        payload = make_springing_payload()
        payload['grantedPowers'] = {'categoryIds': 5}
        result = validate_payload(payload)
        assert error_codes(result, 'grantedPowers.categoryIds') == ['type']
        assert not any(e.section == 'hot-powers' for e in result.errors)

    def test_sub_power_ids_not_a_list(self):
        payload = make_springing_payload()
        payload['grantedPowers'] = {'categoryIds': ['A'], 'grantAllSubPowers': False, 'subPowerIds': 7}
        result = validate_payload(payload)
        assert error_codes(result, 'grantedPowers.subPowerIds') == ['type']

    def test_malformed_grant_in_step_mode(self):
        payload = {'poaType': 'DURABLE', 'state': 'TX', 'grantedPowers': {'categoryIds': 'GH'}}
        assert validate_step(payload, 'hot-powers').is_valid
        assert 'type' in error_codes(validate_step(payload, 'power-categories'))

    def test_compensation_details_required(self):
        payload = make_springing_payload()
        payload['agentCompensation'] = True
        result = validate_payload(payload)
        assert 'required' in error_codes(result, 'compensationDetails')


class TestHealthcarePayload:
    def test_valid_healthcare(self):
        result = validate_payload(make_healthcare_payload())
        assert result.is_valid, result.to_dict()
        context = result.normalized
        assert context.is_healthcare and not context.is_financial
        assert context.healthcare.life_sustaining_treatment == 'comfort_care_only'

    def test_granted_powers_forbidden(self):
        payload = make_healthcare_payload()
        payload['grantedPowers'] = {'categoryIds': ['A']}
        result = validate_payload(payload)
        assert 'forbidden_field' in error_codes(result, 'grantedPowers')

    def test_end_of_life_choice_required(self):
        payload = make_healthcare_payload()
        del payload['lifeSustainingTreatment']
        result = validate_payload(payload)
        assert 'required' in error_codes(result, 'lifeSustainingTreatment')

    def test_texas_accepts_witnesses_instead_of_notary(self):
        payload = make_healthcare_payload('TX')
        del payload['notaryPublic']
        assert 'witnesses_required' in error_codes(validate_payload(payload), 'witnesses')

        payload['witnesses'] = [
            {'fullName': 'Walter Witness', 'address': payload['principal']['address']},
            {'fullName': 'Wendy Witness', 'address': payload['principal']['address']},
        ]
        assert validate_payload(payload).is_valid


class TestStepMode:
    def test_step_only_checks_its_own_fields(self):
        payload = {'poaType': 'DURABLE', 'state': 'FL'}
        assert validate_step(payload, 'document-type').is_valid
        assert not validate_step(payload, 'principal-info').is_valid

    def test_unknown_step(self):
        result = validate_payload({}, mode='step', step_id='nope')
        assert error_codes(result) == ['unknown_step']

    def test_review_acknowledgements(self):
        result = validate_step({}, 'review')
        assert error_codes(result) == ['acknowledgement_required', 'acknowledgement_required']
        result = validate_step({'disclaimerAccepted': True, 'finalConfirmation': True}, 'review')
        assert result.is_valid

    def test_family_restriction(self):
        result = validate_step({'poaType': 'HEALTHCARE', 'state': 'TX'}, 'document-type', family='financial')
        assert 'type_mismatch' in error_codes(result, 'poaType')

    def test_non_dict_payload(self):
        result = validate_payload(['not', 'a', 'dict'])
        assert error_codes(result) == ['type']
