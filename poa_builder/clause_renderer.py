"""
Clause Renderer Module

Renders the selected clauses into a unified document plan: an ordered list
of clauses, each made of typed content blocks that the PDF layer lays out.

Block types: heading1, paragraph, bullet_item, numbered_item,
initials_item (a line for the principal's initials), signature_block.
"""

from typing import List, Any, Optional
from dataclasses import dataclass, field

from poa_builder.context_builder import AGENT_CO_AGENT, AGENT_SUCCESSOR, POAContext, Agent
from poa_builder.clause_logic import ClauseId, select_clauses, get_clause_title
from poa_builder.power_catalog import CATEGORY_INDEX, HOT_POWER_LABELS, SUB_POWER_INDEX
from poa_builder.rules_catalog import STATE_RULES
from poa_builder.utils import format_date, number_to_words, ordinal


@dataclass
class ContentBlock:
    """A block of content within a clause."""
    type: str  # 'heading1', 'paragraph', 'bullet_item', 'numbered_item', 'initials_item', 'signature_block'
    content: Any
    style: str = 'normal'
    indent_level: int = 0


@dataclass
class DocumentPlanItem:
    """A clause in the document plan."""
    id: str
    title: str
    numbering_level: int  # 0 for the unnumbered title, 1 for clauses
    content_blocks: List[ContentBlock] = field(default_factory=list)
    clause_number: int = 0


HEALTHCARE_POWER_TEXT = {
    'medicalTreatment': 'Consent to, refuse, or withdraw any care, treatment, service, or procedure '
                        'to maintain, diagnose, or treat a physical condition',
    'mentalHealthTreatment': 'Consent to, refuse, or withdraw mental health treatment, '
                             'to the extent permitted by law',
    'endOfLifeDecisions': 'Make decisions about life-sustaining treatment, including artificial '
                          'nutrition and hydration',
    'organDonation': 'Make an anatomical gift of my organs, tissues, or body parts',
    'autopsyDecision': 'Authorize an autopsy',
    'dispositionOfRemains': 'Direct the disposition of my remains',
}

LIFE_SUSTAINING_TEXT = {
    'prolong_life': 'I want my life to be prolonged as long as possible within the limits of '
                    'generally accepted healthcare standards.',
    'comfort_care_only': 'If I have an incurable and irreversible condition that will result in my '
                         'death within a relatively short time, or I become permanently unconscious, '
                         'I do not want my life to be prolonged. I want only treatment that keeps me '
                         'comfortable and relieves pain.',
    'agent_decides': 'My agent shall decide whether to provide, withhold, or withdraw life-sustaining '
                     'treatment, based on my known values or, if unknown, my best interest.',
    'not_specified': 'I have not stated a preference about life-sustaining treatment. My agent shall '
                     'decide based on my known values or, if unknown, my best interest.',
}

ORGAN_DONATION_TEXT = {
    'any_needed': 'Upon my death, I give any needed organs, tissues, or parts.',
    'transplant_only': 'Upon my death, I give my organs, tissues, or parts for transplantation only.',
    'research_only': 'Upon my death, I give my organs, tissues, or parts for research or education only.',
    'not_specified': 'I have not stated a preference about anatomical gifts. My agent may decide.',
}


def render_document_plan(context: POAContext) -> List[DocumentPlanItem]:
    """
    Render the complete document plan from context.

    The title is unnumbered; every following clause is numbered from 1.

    Args:
        context: The POA context with all entities and flags

    Returns:
        List of document plan items (clauses with content blocks)
    """
    document_plan = []
    clause_number = 0
    for clause_id in select_clauses(context):
        if clause_id == ClauseId.TITLE:
            number = 0
        else:
            clause_number += 1
            number = clause_number
        item = _render_clause(clause_id, context, number)
        if item:
            document_plan.append(item)

    return document_plan


def _render_clause(clause_id: ClauseId, context: POAContext, clause_number: int) -> Optional[DocumentPlanItem]:
    renderers = {
        ClauseId.TITLE: _render_title,
        ClauseId.PRINCIPAL_IDENTIFICATION: _render_principal_identification,
        ClauseId.EFFECTIVE_DATE: _render_effective_date,
        ClauseId.DURABILITY: _render_durability,
        ClauseId.SPRINGING_TRIGGER: _render_springing_trigger,
        ClauseId.LIMITED_PURPOSE: _render_limited_purpose,
        ClauseId.AGENT_DESIGNATION: _render_agent_designation,
        ClauseId.SUCCESSOR_AGENTS: _render_successor_agents,
        ClauseId.CO_AGENTS: _render_co_agents,
        ClauseId.GRANTED_POWERS: _render_granted_powers,
        ClauseId.HOT_POWERS: _render_hot_powers,
        ClauseId.HEALTHCARE_DIRECTIVES: _render_healthcare_directives,
        ClauseId.SPECIAL_INSTRUCTIONS: _render_special_instructions,
        ClauseId.AGENT_DUTIES: _render_agent_duties,
        ClauseId.COMPENSATION: _render_compensation,
        ClauseId.REVOCATION_AMENDMENT: _render_revocation_amendment,
        ClauseId.GOVERNING_LAW: _render_governing_law,
        ClauseId.PRINCIPAL_SIGNATURE: _render_principal_signature,
        ClauseId.WITNESS_ATTESTATION: _render_witness_attestation,
        ClauseId.NOTARY_ACKNOWLEDGMENT: _render_notary_acknowledgment,
        ClauseId.AGENT_ACCEPTANCE: _render_agent_acceptance,
    }

    renderer = renderers.get(clause_id)
    if not renderer:
        return None

    return DocumentPlanItem(
        id=clause_id.value,
        title=get_clause_title(clause_id),
        numbering_level=0 if clause_id == ClauseId.TITLE else 1,
        content_blocks=renderer(context),
        clause_number=clause_number,
    )


def _paragraph(text: str) -> ContentBlock:
    return ContentBlock(type='paragraph', content=text, style='normal')


def _state_name(context: POAContext) -> str:
    rules = STATE_RULES.get(context.state)
    return rules.name if rules else context.state


def _join_names(names: List[str]) -> str:
    if len(names) <= 1:
        return ''.join(names)
    if len(names) == 2:
        return f'{names[0]} and {names[1]}'
    return ', '.join(names[:-1]) + f', and {names[-1]}'


def _agent_word(context: POAContext) -> str:
    return 'healthcare agent' if context.is_healthcare else 'agent'


def document_title(context: POAContext) -> str:
    if context.is_healthcare:
        return 'HEALTHCARE POWER OF ATTORNEY'
    if context.is_springing:
        return 'SPRINGING DURABLE FINANCIAL POWER OF ATTORNEY' if context.is_durable \
            else 'SPRINGING FINANCIAL POWER OF ATTORNEY'
    if context.is_limited:
        return 'LIMITED DURABLE FINANCIAL POWER OF ATTORNEY' if context.is_durable \
            else 'LIMITED FINANCIAL POWER OF ATTORNEY'
    return 'DURABLE FINANCIAL POWER OF ATTORNEY'


def _render_title(context: POAContext) -> List[ContentBlock]:
    return [
        ContentBlock(type='heading1', content=f'STATE OF {_state_name(context).upper()}', style='subtitle'),
        ContentBlock(type='heading1', content=document_title(context), style='title'),
    ]


def _render_principal_identification(context: POAContext) -> List[ContentBlock]:
    principal = context.principal
    purpose = (
        'to make healthcare decisions for me if I cannot make them myself'
        if context.is_healthcare else
        'to act for me and in my name, in any lawful way I could act in person'
    )
    return [_paragraph(
        f'I, {principal.full_name}, of {principal.address.to_single_line()}, as Principal, '
        f'appoint the {_agent_word(context)} named in this instrument {purpose}.'
    )]


def _render_effective_date(context: POAContext) -> List[ContentBlock]:
    if context.is_springing:
        text = ('This power of attorney becomes effective only upon my disability or incapacity, '
                'determined as provided in this instrument.')
    elif context.effective_date:
        text = f'This power of attorney becomes effective on {format_date(context.effective_date)}.'
    elif context.is_healthcare:
        text = ('This power of attorney becomes effective when I am unable to make or communicate '
                'my own healthcare decisions.')
    else:
        text = 'This power of attorney is effective immediately upon execution.'

    blocks = [_paragraph(text)]
    if context.expiration_date and not context.is_limited:
        blocks.append(_paragraph(
            f'This power of attorney terminates on {format_date(context.expiration_date)}.'
        ))
    return blocks


def _render_durability(context: POAContext) -> List[ContentBlock]:
    return [_paragraph(
        'This power of attorney is DURABLE. It shall not be affected by my subsequent disability '
        'or incapacity, or by lapse of time, and shall continue in effect until revoked by me.'
    )]


def _render_springing_trigger(context: POAContext) -> List[ContentBlock]:
    count = context.number_of_physicians or 1
    physicians = 'physician' if count == 1 else 'physicians'
    return [
        _paragraph('My agent\'s authority begins upon the occurrence of the following condition:'),
        ContentBlock(type='bullet_item', content=context.springing_condition, style='bullet_item', indent_level=1),
        _paragraph(
            f'The condition shall be established by the written certification of '
            f'{number_to_words(count)} ({count}) licensed {physicians} who have examined me, '
            f'stating that I am unable to manage my property and financial affairs. '
            f'Any third party may rely on that certification.'
        ),
    ]


def _render_limited_purpose(context: POAContext) -> List[ContentBlock]:
    return [
        _paragraph('This power of attorney is granted solely for the following purpose:'),
        ContentBlock(type='bullet_item', content=context.specific_purpose, style='bullet_item', indent_level=1),
        _paragraph(
            f'My agent has no authority beyond this purpose. This power of attorney expires on '
            f'{format_date(context.expiration_date)}, unless revoked earlier.'
        ),
    ]


def _agent_details(agent: Agent) -> str:
    text = f'{agent.full_name}, of {agent.address.to_single_line()}'
    if agent.relationship:
        text += f' ({agent.relationship})'
    return text


def _render_agent_designation(context: POAContext) -> List[ContentBlock]:
    agent = context.primary_agent
    blocks = [_paragraph(f'I designate the following person as my {_agent_word(context)}:')]
    blocks.append(ContentBlock(type='bullet_item', content=_agent_details(agent), style='bullet_item',
                               indent_level=1))

    contact = [c for c in (agent.email, agent.phone) if c]
    if contact:
        blocks.append(ContentBlock(type='bullet_item', content=f'Contact: {", ".join(contact)}',
                                   style='bullet_item', indent_level=1))
    return blocks


def _render_successor_agents(context: POAContext) -> List[ContentBlock]:
    blocks = [_paragraph(
        f'If my {_agent_word(context)} dies, becomes incapacitated, resigns, or refuses to act, '
        f'I designate the following successors, to serve one at a time in the order listed:'
    )]
    for i, agent in enumerate(context.successor_agents, start=1):
        blocks.append(ContentBlock(
            type='numbered_item',
            content=f'{ordinal(i).capitalize()} successor: {_agent_details(agent)}',
            style='numbered_item',
            indent_level=1,
        ))
    return blocks


def _render_co_agents(context: POAContext) -> List[ContentBlock]:
    blocks = [_paragraph('I designate the following persons to serve as co-agents with my agent:')]
    for agent in context.co_agents:
        blocks.append(ContentBlock(type='bullet_item', content=_agent_details(agent),
                                   style='bullet_item', indent_level=1))

    names = _join_names([context.primary_agent.full_name] + [a.full_name for a in context.co_agents])
    if context.co_agents_act_jointly:
        blocks.append(_paragraph(f'{names} must act jointly and unanimously.'))
    else:
        blocks.append(_paragraph(f'{names} may each act independently of the others.'))
    return blocks


def _render_granted_powers(context: POAContext) -> List[ContentBlock]:
    blocks = []

    if context.grant_all_powers:
        blocks.append(_paragraph(
            'I grant my agent general authority to act for me with respect to all of the following '
            'subjects, as defined in the Uniform Power of Attorney Act:'
        ))
    else:
        blocks.append(_paragraph(
            'I grant my agent general authority to act for me with respect to the following '
            'subjects only, as defined in the Uniform Power of Attorney Act:'
        ))

    for power in context.granted_powers:
        category = CATEGORY_INDEX[power.category_id]
        blocks.append(ContentBlock(
            type='numbered_item',
            content=f'({category.id}) {category.name}. {category.statutory_definition}',
            style='numbered_item',
            indent_level=1,
        ))
        if not power.all_sub_powers:
            for sub_power_id in power.sub_power_ids:
                blocks.append(ContentBlock(
                    type='bullet_item',
                    content=SUB_POWER_INDEX[sub_power_id].text,
                    style='bullet_item',
                    indent_level=2,
                ))

    return blocks


def _render_hot_powers(context: POAContext) -> List[ContentBlock]:
    blocks = [_paragraph(
        'My agent MAY NOT do any of the following unless I have initialed the specific authority '
        'below. I have initialed each power I intend to grant:'
    )]
    for key in context.hot_powers:
        blocks.append(ContentBlock(type='initials_item', content=HOT_POWER_LABELS[key],
                                   style='numbered_item', indent_level=1))
    return blocks


def _render_healthcare_directives(context: POAContext) -> List[ContentBlock]:
    directives = context.healthcare
    blocks = [_paragraph(
        'My healthcare agent is authorized to make the following decisions for me, in accordance '
        'with my instructions below:'
    )]
    for key in directives.granted_keys:
        blocks.append(ContentBlock(type='bullet_item', content=HEALTHCARE_POWER_TEXT[key],
                                   style='bullet_item', indent_level=1))

    if directives.life_sustaining_treatment:
        blocks.append(_paragraph('End-of-life decisions:'))
        blocks.append(_paragraph(LIFE_SUSTAINING_TEXT.get(directives.life_sustaining_treatment,
                                                          LIFE_SUSTAINING_TEXT['not_specified'])))

    if directives.organ_donation_preference:
        blocks.append(_paragraph('Anatomical gifts:'))
        blocks.append(_paragraph(ORGAN_DONATION_TEXT.get(directives.organ_donation_preference,
                                                         ORGAN_DONATION_TEXT['not_specified'])))

    if directives.additional_directives:
        blocks.append(_paragraph('Additional directions to my healthcare agent:'))
        for line in directives.additional_directives.splitlines():
            if line.strip():
                blocks.append(_paragraph(line.strip()))

    blocks.append(_paragraph(
        'This designation remains in effect during my incapacity and ends at my death, except for '
        'decisions about anatomical gifts, autopsy, and disposition of remains I have authorized.'
    ))
    return blocks


def _render_special_instructions(context: POAContext) -> List[ContentBlock]:
    blocks = [_paragraph(f'The authority of my {_agent_word(context)} is subject to the following instructions:')]
    for line in context.special_instructions.splitlines():
        if line.strip():
            blocks.append(ContentBlock(type='bullet_item', content=line.strip(), style='bullet_item',
                                       indent_level=1))
    return blocks


def _render_agent_duties(context: POAContext) -> List[ContentBlock]:
    if context.is_healthcare:
        return [_paragraph(
            'My healthcare agent shall make decisions in accordance with my instructions and other '
            'wishes to the extent known. Otherwise, my agent shall act in my best interest, '
            'considering my personal values to the extent known.'
        )]
    return [_paragraph(
        'My agent must act in good faith and in my best interest, use reasonable care, competence, '
        'and diligence, keep my property separate and identifiable, keep records of all receipts, '
        'disbursements, and transactions, and act only within the scope of authority granted in '
        'this instrument.'
    )]


def _render_compensation(context: POAContext) -> List[ContentBlock]:
    blocks = [_paragraph(
        'My agent is entitled to reimbursement of reasonable expenses incurred in exercising the '
        'powers granted in this instrument.'
    )]
    if context.agent_compensation:
        blocks.append(_paragraph(
            f'My agent is entitled to compensation as follows: {context.compensation_details}'
        ))
    else:
        blocks.append(_paragraph(
            'My agent shall serve without compensation beyond reimbursement of expenses.'
        ))
    return blocks


def _render_revocation_amendment(context: POAContext) -> List[ContentBlock]:
    return [_paragraph(
        f'I may amend or revoke this power of attorney by a writing delivered to my '
        f'{_agent_word(context)}. An amendment or revocation is not effective as to a third party '
        f'until that third party has actual notice of it.'
    )]


def _render_governing_law(context: POAContext) -> List[ContentBlock]:
    return [
        _paragraph(f'This power of attorney is governed by the laws of the State of {_state_name(context)}.'),
        _paragraph('Photocopies and electronically transmitted copies of this signed instrument may be '
                   'relied upon as though they were originals.'),
    ]


def _render_principal_signature(context: POAContext) -> List[ContentBlock]:
    return [
        _paragraph('IN WITNESS WHEREOF, I have signed this power of attorney on the date written below.'),
        ContentBlock(
            type='signature_block',
            content={
                'label': 'Principal',
                'lines': [
                    ('Signature', ''),
                    ('Printed Name', context.principal.full_name),
                    ('Date', ''),
                ],
            },
            style='signature',
        ),
    ]


def _render_witness_attestation(context: POAContext) -> List[ContentBlock]:
    blocks = [_paragraph(
        'I declare that the Principal signed or acknowledged this power of attorney in my presence, '
        'appears to be of sound mind and under no duress, fraud, or undue influence, and that I am '
        'not the Principal or an agent designated in this instrument.'
    )]
    for i, witness in enumerate(context.witnesses, start=1):
        blocks.append(ContentBlock(
            type='signature_block',
            content={
                'label': f'Witness {i}',
                'lines': [
                    ('Signature', ''),
                    ('Printed Name', witness.full_name),
                    ('Address', witness.address.to_single_line()),
                    ('Date', ''),
                ],
            },
            style='signature',
        ))
    return blocks


def _render_notary_acknowledgment(context: POAContext) -> List[ContentBlock]:
    notary = context.notary
    county = notary.county or '____________________'
    commission_expires = format_date(notary.commission_expiration) if notary.commission_expiration else ''
    return [
        _paragraph(f'STATE OF {_state_name(context).upper()}'),
        _paragraph(f'COUNTY OF {county.upper()}'),
        _paragraph(
            f'On this date, before me personally appeared {context.principal.full_name}, known to me or '
            f'satisfactorily proven to be the person whose name is subscribed to this instrument, who '
            f'acknowledged signing it as a free and voluntary act for the purposes stated in it.'
        ),
        ContentBlock(
            type='signature_block',
            content={
                'label': 'Notary Public',
                'lines': [
                    ('Signature', ''),
                    ('Printed Name', notary.full_name),
                    ('Commission No.', notary.commission_number),
                    ('Commission Expires', commission_expires),
                    ('Date', ''),
                ],
            },
            style='signature',
        ),
    ]


def _render_agent_acceptance(context: POAContext) -> List[ContentBlock]:
    blocks = [_paragraph(
        f'By signing below, each {_agent_word(context)} accepts appointment and acknowledges the '
        f'duties stated in this instrument. Agents named as successors accept only when their '
        f'authority begins.'
    )]
    for agent in context.agents:
        blocks.append(ContentBlock(
            type='signature_block',
            content={
                'label': _acceptance_label(agent),
                'lines': [
                    ('Signature', ''),
                    ('Printed Name', agent.full_name),
                    ('Date', ''),
                ],
            },
            style='signature',
        ))
    return blocks


def _acceptance_label(agent: Agent) -> str:
    if agent.agent_type == AGENT_SUCCESSOR:
        return f'Successor Agent ({ordinal(agent.order or 1).capitalize()})'
    if agent.agent_type == AGENT_CO_AGENT:
        return 'Co-Agent'
    return 'Agent'


def render_revocation_plan(context: POAContext, executed_on: Any, revoked_on: Any,
                           reason: str = '') -> List[DocumentPlanItem]:
    """
    Document plan for a notice revoking a previously generated instrument.

    Args:
        context: The POA context of the instrument being revoked
        executed_on: Date the instrument was generated
        revoked_on: Date the revocation takes effect
        reason: Optional reason given by the principal
    """
    principal = context.principal
    agent_names = _join_names([a.full_name for a in context.agents])
    title = document_title(context).title()

    body = [
        _paragraph(
            f'I, {principal.full_name}, of {principal.address.to_single_line()}, revoke the {title} '
            f'dated {format_date(executed_on)}, in which I designated {agent_names}, and all authority '
            f'granted under it.'
        ),
        _paragraph(f'This revocation is effective on {format_date(revoked_on)}.'),
        _paragraph(f'Reason for revocation: {reason.strip() if reason and reason.strip() else "Not specified"}'),
        _paragraph('I direct that a copy of this revocation be delivered to each person named above and '
                   'to any third party known to have relied on the revoked instrument.'),
    ]

    return [
        DocumentPlanItem(
            id='revocation_title',
            title='Title',
            numbering_level=0,
            content_blocks=[
                ContentBlock(type='heading1', content=f'STATE OF {_state_name(context).upper()}', style='subtitle'),
                ContentBlock(type='heading1', content='REVOCATION OF POWER OF ATTORNEY', style='title'),
            ],
        ),
        DocumentPlanItem(id='revocation', title='Revocation', numbering_level=1,
                         content_blocks=body, clause_number=1),
        DocumentPlanItem(
            id=ClauseId.PRINCIPAL_SIGNATURE.value,
            title=get_clause_title(ClauseId.PRINCIPAL_SIGNATURE),
            numbering_level=1,
            content_blocks=_render_principal_signature(context),
            clause_number=2,
        ),
    ]
