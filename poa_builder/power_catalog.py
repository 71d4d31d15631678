"""
Power Catalog Module

Read-only Uniform Power of Attorney Act taxonomy: fourteen categories
(A-N), each with ordered sub-powers. Some sub-powers are "hot powers"
that the UPOAA only allows when the principal expressly consents.

"Grant all powers" is never stored as separate state: resolve_category_ids()
projects the flag onto the catalog, so granted rows always match it.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple


# Consent keys for hot powers, in display order
HOT_POWER_GIFTING = 'gifting'
HOT_POWER_TRUSTS = 'trustModification'
HOT_POWER_BENEFICIARIES = 'beneficiaryChanges'

HOT_POWER_KEYS = (HOT_POWER_GIFTING, HOT_POWER_TRUSTS, HOT_POWER_BENEFICIARIES)

HOT_POWER_LABELS = {
    HOT_POWER_GIFTING: 'Make gifts of my property, including disclaimers of property',
    HOT_POWER_TRUSTS: 'Create, amend, revoke, or terminate an inter vivos trust',
    HOT_POWER_BENEFICIARIES: 'Create or change a beneficiary designation or right of survivorship',
}


@dataclass(frozen=True)
class SubPower:
    id: str
    category_id: str
    text: str
    hot_power: Optional[str] = None


@dataclass(frozen=True)
class PowerCategory:
    id: str
    name: str
    statutory_definition: str
    sub_powers: Tuple[SubPower, ...] = ()

    @property
    def has_hot_powers(self) -> bool:
        return any(sp.hot_power for sp in self.sub_powers)


@dataclass
class GrantedPower:
    """A category granted on a POA, with all or an explicit subset of its sub-powers."""
    category_id: str
    category_name: str = ''
    all_sub_powers: bool = True
    sub_power_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'category_id': self.category_id,
            'category_name': self.category_name,
            'all_sub_powers': self.all_sub_powers,
            'sub_power_ids': list(self.sub_power_ids),
        }


def _category(letter: str, name: str, definition: str,
              powers: Iterable[Tuple[str, Optional[str]]]) -> PowerCategory:
    sub_powers = tuple(
        SubPower(id=f'{letter}{i}', category_id=letter, text=text, hot_power=hot)
        for i, (text, hot) in enumerate(powers, start=1)
    )
    return PowerCategory(id=letter, name=name, statutory_definition=definition, sub_powers=sub_powers)


CATEGORIES: Tuple[PowerCategory, ...] = (
    _category('A', 'Real Property Transactions',
              'To lease, buy, sell, mortgage, and otherwise deal with real property.', [
                  ('Buy, sell, or exchange real property', None),
                  ('Mortgage, refinance, or encumber real property', None),
                  ('Lease real property as landlord or tenant', None),
                  ('Release, assign, satisfy, or enforce mortgages', None),
                  ('Grant easements or rights of way', None),
              ]),
    _category('B', 'Tangible Personal Property',
              'To buy, sell, and otherwise deal with tangible personal property.', [
                  ('Buy, sell, exchange, or lease tangible personal property', None),
                  ('Accept, receive, or deliver tangible personal property', None),
                  ('Insure tangible personal property', None),
              ]),
    _category('C', 'Stock and Bond Transactions',
              'To buy, sell, and otherwise deal with stocks, bonds, mutual funds, and other securities.', [
                  ('Buy, sell, exchange stocks, bonds, and securities', None),
                  ('Vote shares and exercise shareholder rights', None),
                  ('Receive dividends and interest', None),
              ]),
    _category('D', 'Commodity and Option Transactions',
              'To buy, sell, and otherwise deal with commodities and commodity futures and options.', [
                  ('Buy, sell, exchange commodities and futures', None),
                  ('Trade options and derivatives', None),
              ]),
    _category('E', 'Banking and Financial Institution Transactions',
              'To conduct banking and other financial institution transactions.', [
                  ('Open, close, and manage bank accounts', None),
                  ('Make deposits and withdrawals', None),
                  ('Write checks and transfer funds', None),
                  ('Access safe deposit boxes', None),
              ]),
    _category('F', 'Business Operating Transactions',
              'To operate, buy, sell, merge, dissolve, or otherwise deal with a business interest.', [
                  ('Operate business and make business decisions', None),
                  ('Buy, sell, or dissolve business interests', None),
                  ('Hire, fire, and manage employees', None),
                  ('Sign contracts and bind business to obligations', None),
              ]),
    _category('G', 'Insurance and Annuity Transactions',
              'To buy, borrow against, cash in, and otherwise deal with insurance and annuity policies.', [
                  ('Buy, maintain, or cancel insurance policies', None),
                  ('Pay premiums and file claims', None),
                  ('Borrow against or surrender policies', None),
                  ('Change beneficiaries on policies', HOT_POWER_BENEFICIARIES),
              ]),
    _category('H', 'Estate, Trust, and Beneficiary Transactions',
              'To create, amend, revoke trusts; make gifts; change beneficiaries; disclaim property; '
              'and deal with estate planning matters.', [
                  ("Make gifts of principal's property (including to agent)", HOT_POWER_GIFTING),
                  ('Create, amend, or revoke trusts', HOT_POWER_TRUSTS),
                  ('Change beneficiaries on any accounts or policies', HOT_POWER_BENEFICIARIES),
                  ('Disclaim or refuse inheritances', HOT_POWER_GIFTING),
              ]),
    _category('I', 'Claims and Litigation',
              'To pursue, settle, or abandon claims and lawsuits.', [
                  ('Assert, prosecute, and settle claims', None),
                  ('Defend against claims and lawsuits', None),
                  ('Hire attorneys and represent principal', None),
              ]),
    _category('J', 'Personal and Family Maintenance',
              "To provide for the support, maintenance, health, and education of the principal "
              "and the principal's dependents.", [
                  ('Pay for food, clothing, shelter, and necessities', None),
                  ('Pay medical, dental, and healthcare expenses', None),
                  ('Support spouse, children, and dependents', None),
                  ('Employ household staff and caregivers', None),
              ]),
    _category('K', 'Government Benefits',
              'To apply for and receive government benefits such as Social Security, Medicare, '
              'Medicaid, and veterans benefits.', [
                  ('Apply for Social Security and SSI benefits', None),
                  ('Manage Medicare and Medicaid', None),
                  ('Apply for and manage veterans benefits', None),
                  ('Apply for government assistance programs', None),
              ]),
    _category('L', 'Retirement Plan Transactions',
              'To deal with retirement plans including 401(k)s, IRAs, pensions, and other '
              'retirement accounts.', [
                  ('Contribute to and manage retirement accounts', None),
                  ('Take distributions from retirement accounts', None),
                  ('Change beneficiaries on retirement accounts', HOT_POWER_BENEFICIARIES),
                  ('Rollover and transfer retirement accounts', None),
              ]),
    _category('M', 'Tax Matters',
              'To prepare, sign, and file tax returns and deal with tax authorities.', [
                  ('Prepare and file federal, state, and local tax returns', None),
                  ('Pay taxes and estimated taxes', None),
                  ('Represent principal before tax authorities', None),
                  ('Sign tax returns and tax documents', None),
              ]),
    _category('N', 'Digital Assets',
              'To access, manage, and control digital assets including email, social media, '
              'cryptocurrency, and online accounts.', [
                  ('Access email and online accounts', None),
                  ('Manage social media and digital content', None),
                  ('Buy, sell, and transfer cryptocurrency', None),
                  ('Access cloud storage and digital files', None),
              ]),
)

CATEGORY_INDEX: Dict[str, PowerCategory] = {c.id: c for c in CATEGORIES}
SUB_POWER_INDEX: Dict[str, SubPower] = {
    sp.id: sp for c in CATEGORIES for sp in c.sub_powers
}


def all_category_ids() -> List[str]:
    return [c.id for c in CATEGORIES]


def get_category(category_id: str) -> Optional[PowerCategory]:
    return CATEGORY_INDEX.get(str(category_id).strip().upper()) if category_id else None


def resolve_category_ids(grant_all: bool, category_ids: Optional[Iterable[Any]]) -> List[str]:
    """
    Project the grant-all flag and explicit ids onto the catalog.

    Returns known category ids in catalog order, without duplicates.
    """
    if grant_all:
        return all_category_ids()

    if not isinstance(category_ids, (list, tuple)):
        return []
    wanted = {str(cid).strip().upper() for cid in category_ids if cid}
    return [c.id for c in CATEGORIES if c.id in wanted]


def resolve_sub_power_ids(category_id: str, all_sub_powers: bool,
                          sub_power_ids: Optional[Iterable[Any]]) -> List[str]:
    """Sub-power ids granted within one category, in catalog order."""
    category = get_category(category_id)
    if category is None:
        return []
    if all_sub_powers:
        return [sp.id for sp in category.sub_powers]
    if not isinstance(sub_power_ids, (list, tuple)):
        return []
    wanted = {str(sid).strip().upper() for sid in sub_power_ids if sid}
    return [sp.id for sp in category.sub_powers if sp.id in wanted]


def build_granted_powers(granted: Dict[str, Any]) -> List[GrantedPower]:
    """
    Materialize GrantedPower rows from a grantedPowers payload block.

    Args:
        granted: {'categoryIds', 'subPowerIds', 'grantAllPowers', 'grantAllSubPowers'}

    Returns:
        GrantedPower list in catalog order
    """
    if not isinstance(granted, dict):
        return []

    grant_all = granted.get('grantAllPowers') is True
    all_sub_powers = grant_all or granted.get('grantAllSubPowers', True) is not False
    sub_power_ids = granted.get('subPowerIds') or []

    powers = []
    for category_id in resolve_category_ids(grant_all, granted.get('categoryIds')):
        category = CATEGORY_INDEX[category_id]
        powers.append(GrantedPower(
            category_id=category_id,
            category_name=category.name,
            all_sub_powers=all_sub_powers,
            sub_power_ids=resolve_sub_power_ids(category_id, all_sub_powers, sub_power_ids),
        ))
    return powers


def granted_hot_power_keys(granted: Dict[str, Any]) -> List[str]:
    """Consent keys triggered by the hot sub-powers a grantedPowers block includes."""
    keys = set()
    for power in build_granted_powers(granted):
        for sub_power_id in power.sub_power_ids:
            hot = SUB_POWER_INDEX[sub_power_id].hot_power
            if hot:
                keys.add(hot)
    return [k for k in HOT_POWER_KEYS if k in keys]


def catalog_to_dict() -> List[Dict[str, Any]]:
    """Serialize the catalog for the categories endpoint."""
    return [
        {
            'id': c.id,
            'name': c.name,
            'statutory_definition': c.statutory_definition,
            'has_hot_powers': c.has_hot_powers,
            'sub_powers': [
                {'id': sp.id, 'text': sp.text, 'hot_power': sp.hot_power}
                for sp in c.sub_powers
            ],
        }
        for c in CATEGORIES
    ]
