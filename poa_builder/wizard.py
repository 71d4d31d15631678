"""
Wizard State Machine Module

Drives the guided interview: ordered sections of ordered steps, per-step
completion, accumulated form data and resumable snapshots.

Navigation Rules:
=================

1. NextStep validates the current step only (step-scoped validation). On
   failure the position does not change and the errors are returned.
2. PreviousStep always succeeds, regardless of validity.
3. Steps with a skip_when predicate that holds for the current form data are
   not applicable and are passed over in both directions.
4. If a data update (or a restored snapshot) makes the current step
   inapplicable, the position falls forward to the nearest applicable step,
   or back to the last applicable one when nothing follows.
5. NextStep on the last step validates and marks it complete but does not
   move (reason 'at_last_step').

transition() is a pure function of (wizard, state, event). WizardSession is
the stateful adapter that applies transitions and notifies subscribers.
"""

import copy
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple

from poa_builder.context_builder import AGENT_CO_AGENT, normalize_agent_type, resolve_type_flags
from poa_builder.power_catalog import granted_hot_power_keys
from poa_builder.rules_catalog import FAMILY_FINANCIAL, FAMILY_HEALTHCARE
from poa_builder.validation import ValidationError, ValidationResult, validate_step

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1

# Change kinds emitted to subscribers
CHANGE_STEP = 'step_changed'
CHANGE_SECTION = 'section_changed'
CHANGE_COMPLETED = 'step_completed'
CHANGE_DATA = 'data_changed'


FormData = Dict[str, Any]
StepValidator = Callable[..., ValidationResult]


@dataclass(frozen=True)
class StepDefinition:
    id: str
    title: str
    skip_when: Optional[Callable[[FormData], bool]] = None

    def is_applicable(self, form_data: FormData) -> bool:
        return self.skip_when is None or not self.skip_when(form_data)


@dataclass(frozen=True)
class SectionDefinition:
    id: str
    title: str
    steps: Tuple[StepDefinition, ...]


@dataclass(frozen=True)
class WizardDefinition:
    """Static layout of one interview."""
    id: str
    family: str
    sections: Tuple[SectionDefinition, ...]

    def ordered_steps(self) -> List[Tuple[str, StepDefinition]]:
        return [(section.id, step) for section in self.sections for step in section.steps]

    def step_ids(self) -> List[str]:
        return [step.id for _, step in self.ordered_steps()]

    def has_step(self, step_id: str) -> bool:
        return step_id in self.step_ids()

    def get_step(self, step_id: str) -> Optional[StepDefinition]:
        for _, step in self.ordered_steps():
            if step.id == step_id:
                return step
        return None

    def get_section(self, section_id: str) -> Optional[SectionDefinition]:
        for section in self.sections:
            if section.id == section_id:
                return section
        return None

    def applicable_steps(self, form_data: FormData) -> List[Tuple[str, StepDefinition]]:
        return [(sid, step) for sid, step in self.ordered_steps() if step.is_applicable(form_data)]

    def next_applicable(self, step_id: str, form_data: FormData) -> Optional[Tuple[str, StepDefinition]]:
        ordered = self.ordered_steps()
        index = self.step_ids().index(step_id)
        for section_id, step in ordered[index + 1:]:
            if step.is_applicable(form_data):
                return section_id, step
        return None

    def previous_applicable(self, step_id: str, form_data: FormData) -> Optional[Tuple[str, StepDefinition]]:
        ordered = self.ordered_steps()
        index = self.step_ids().index(step_id)
        for section_id, step in reversed(ordered[:index]):
            if step.is_applicable(form_data):
                return section_id, step
        return None

    def resolve_position(self, step_id: Optional[str], form_data: FormData) -> Tuple[str, StepDefinition]:
        """
        Nearest applicable position for step_id under form_data.

        The step itself if applicable; otherwise the next applicable step,
        then the previous one. Unknown ids resolve to the first applicable step.
        """
        if step_id is not None and self.has_step(step_id):
            step = self.get_step(step_id)
            if step.is_applicable(form_data):
                return self._section_id_of(step_id), step
            position = self.next_applicable(step_id, form_data) or self.previous_applicable(step_id, form_data)
            if position is not None:
                return position

        applicable = self.applicable_steps(form_data)
        if not applicable:
            raise ValueError(f'Wizard "{self.id}" has no applicable steps')
        return applicable[0]

    def _section_id_of(self, step_id: str) -> str:
        for section_id, step in self.ordered_steps():
            if step.id == step_id:
                return section_id
        raise KeyError(step_id)


# Skip predicates

def _not_springing(data: FormData) -> bool:
    return not resolve_type_flags(data)['is_springing']


def _not_limited(data: FormData) -> bool:
    return not resolve_type_flags(data)['is_limited']


def _no_co_agents(data: FormData) -> bool:
    agents = data.get('agents')
    if not isinstance(agents, list):
        return True
    return not any(
        isinstance(a, dict) and normalize_agent_type(a.get('type')) == AGENT_CO_AGENT for a in agents
    )


def _no_hot_powers(data: FormData) -> bool:
    return not granted_hot_power_keys(data.get('grantedPowers'))


def _healthcare_power_off(key: str) -> Callable[[FormData], bool]:
    def predicate(data: FormData) -> bool:
        powers = data.get('healthcarePowers')
        return not (isinstance(powers, dict) and powers.get(key) is True)
    return predicate


FINANCIAL_WIZARD = WizardDefinition(
    id=FAMILY_FINANCIAL,
    family=FAMILY_FINANCIAL,
    sections=(
        SectionDefinition('basic-information', 'Basic Information', (
            StepDefinition('document-type', 'Document Type'),
            StepDefinition('principal-info', 'About You'),
            StepDefinition('springing-details', 'Springing Condition', skip_when=_not_springing),
            StepDefinition('limited-details', 'Purpose and Expiration', skip_when=_not_limited),
        )),
        SectionDefinition('agent-management', 'Agents', (
            StepDefinition('agent-selection', 'Choose Your Agents'),
            StepDefinition('agent-hierarchy', 'How Co-Agents Act', skip_when=_no_co_agents),
        )),
        SectionDefinition('power-configuration', 'Powers', (
            StepDefinition('power-categories', 'Powers to Grant'),
            StepDefinition('hot-powers', 'Powers Requiring Consent', skip_when=_no_hot_powers),
            StepDefinition('additional-terms', 'Additional Terms'),
        )),
        SectionDefinition('execution', 'Signing', (
            StepDefinition('execution-requirements', 'Witnesses and Notary'),
            StepDefinition('review', 'Review'),
        )),
    ),
)

HEALTHCARE_WIZARD = WizardDefinition(
    id=FAMILY_HEALTHCARE,
    family=FAMILY_HEALTHCARE,
    sections=(
        SectionDefinition('basic-information', 'Basic Information', (
            StepDefinition('document-type', 'Document Type'),
            StepDefinition('principal-info', 'About You'),
        )),
        SectionDefinition('agent-management', 'Agents', (
            StepDefinition('agent-selection', 'Choose Your Healthcare Agent'),
        )),
        SectionDefinition('healthcare-directives', 'Healthcare Decisions', (
            StepDefinition('healthcare-powers', 'Decisions Your Agent May Make'),
            StepDefinition('end-of-life', 'End-of-Life Care',
                           skip_when=_healthcare_power_off('endOfLifeDecisions')),
            StepDefinition('organ-donation', 'Organ Donation',
                           skip_when=_healthcare_power_off('organDonation')),
        )),
        SectionDefinition('execution', 'Signing', (
            StepDefinition('execution-requirements', 'Witnesses and Notary'),
            StepDefinition('review', 'Review'),
        )),
    ),
)

WIZARDS = {w.id: w for w in (FINANCIAL_WIZARD, HEALTHCARE_WIZARD)}


def get_wizard(wizard_id: str) -> WizardDefinition:
    try:
        return WIZARDS[wizard_id]
    except KeyError:
        raise ValueError(f'Unknown wizard "{wizard_id}"')


@dataclass(frozen=True)
class WizardState:
    """Immutable interview position; transitions return a new instance."""
    section_id: str
    step_id: str
    completed_steps: FrozenSet[str] = frozenset()
    form_data: FormData = field(default_factory=dict)


@dataclass(frozen=True)
class NextStep:
    pass


@dataclass(frozen=True)
class PreviousStep:
    pass


@dataclass(frozen=True)
class UpdateData:
    changes: FormData


@dataclass(frozen=True)
class MarkStepComplete:
    step_id: Optional[str] = None


@dataclass(frozen=True)
class Change:
    kind: str
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Transition:
    state: WizardState
    moved: bool
    errors: List[ValidationError] = field(default_factory=list)
    changes: List[Change] = field(default_factory=list)
    reason: str = ''


@dataclass(frozen=True)
class ProgressReport:
    completed: int
    total: int

    @property
    def fraction(self) -> float:
        return self.completed / self.total if self.total else 0.0

    @property
    def percent(self) -> int:
        return int(round(self.fraction * 100))

    def to_dict(self) -> Dict[str, Any]:
        return {'completed': self.completed, 'total': self.total, 'percent': self.percent}


def default_validator(form_data: FormData, step_id: str, family: Optional[str] = None) -> ValidationResult:
    return validate_step(form_data, step_id, family=family)


def initial_state(wizard: WizardDefinition, form_data: Optional[FormData] = None) -> WizardState:
    data = dict(form_data or {})
    section_id, step = wizard.resolve_position(None, data)
    return WizardState(section_id=section_id, step_id=step.id, form_data=data)


def _position_changes(before: WizardState, after: WizardState) -> List[Change]:
    changes = []
    if before.step_id != after.step_id:
        changes.append(Change(CHANGE_STEP, {'from': before.step_id, 'to': after.step_id}))
    if before.section_id != after.section_id:
        changes.append(Change(CHANGE_SECTION, {'from': before.section_id, 'to': after.section_id}))
    return changes


def _move_to(state: WizardState, position: Tuple[str, StepDefinition]) -> WizardState:
    section_id, step = position
    return replace(state, section_id=section_id, step_id=step.id)


def transition(wizard: WizardDefinition, state: WizardState, event: Any,
               validator: Optional[StepValidator] = None) -> Transition:
    """
    Apply one event to a wizard state.

    Args:
        wizard: Wizard layout
        state: Current state (never mutated)
        event: NextStep, PreviousStep, UpdateData or MarkStepComplete
        validator: Step validator, called as validator(form_data, step_id, family=...)

    Returns:
        Transition with the resulting state, whether the position moved,
        validation errors and the change notifications to emit
    """
    validator = validator or default_validator

    if isinstance(event, NextStep):
        result = validator(state.form_data, state.step_id, family=wizard.family)
        if not result.is_valid:
            return Transition(state, False, list(result.errors), [], 'invalid')

        changes = []
        completed = state.completed_steps
        if state.step_id not in completed:
            completed = completed | {state.step_id}
            changes.append(Change(CHANGE_COMPLETED, {'step_id': state.step_id}))
        advanced = replace(state, completed_steps=completed)

        position = wizard.next_applicable(state.step_id, state.form_data)
        if position is None:
            return Transition(advanced, False, [], changes, 'at_last_step')

        new_state = _move_to(advanced, position)
        return Transition(new_state, True, [], changes + _position_changes(state, new_state))

    if isinstance(event, PreviousStep):
        position = wizard.previous_applicable(state.step_id, state.form_data)
        if position is None:
            return Transition(state, False, [], [], 'at_first_step')
        new_state = _move_to(state, position)
        return Transition(new_state, True, [], _position_changes(state, new_state))

    if isinstance(event, UpdateData):
        merged = dict(state.form_data)
        merged.update(event.changes or {})
        updated = replace(state, form_data=merged)
        changes = [Change(CHANGE_DATA, {'keys': sorted(event.changes or {})})]

        new_state = _move_to(updated, wizard.resolve_position(state.step_id, merged))
        changes += _position_changes(state, new_state)
        return Transition(new_state, new_state.step_id != state.step_id, [], changes)

    if isinstance(event, MarkStepComplete):
        step_id = event.step_id or state.step_id
        if not wizard.has_step(step_id):
            return Transition(state, False, [], [], 'unknown_step')

        result = validator(state.form_data, step_id, family=wizard.family)
        if not result.is_valid:
            return Transition(state, False, list(result.errors), [], 'invalid')
        if step_id in state.completed_steps:
            return Transition(state, False, [], [])

        new_state = replace(state, completed_steps=state.completed_steps | {step_id})
        return Transition(new_state, False, [], [Change(CHANGE_COMPLETED, {'step_id': step_id})])

    raise TypeError(f'Unsupported wizard event: {event!r}')


def progress(wizard: WizardDefinition, state: WizardState) -> ProgressReport:
    """Completed applicable steps over all applicable steps."""
    applicable = [step.id for _, step in wizard.applicable_steps(state.form_data)]
    completed = len(set(applicable) & set(state.completed_steps))
    return ProgressReport(completed=completed, total=len(applicable))


class WizardSession:
    """
    Stateful adapter over transition() with change subscriptions.

    Subscribers receive each Change after the state has been updated. A
    failing subscriber is logged and does not affect the session.
    """

    def __init__(self, wizard: WizardDefinition, form_data: Optional[FormData] = None,
                 validator: Optional[StepValidator] = None, state: Optional[WizardState] = None):
        self.wizard = wizard
        self._validator = validator or default_validator
        self._state = state if state is not None else initial_state(wizard, form_data)
        self._subscribers: List[Callable[[Change], None]] = []

    @property
    def state(self) -> WizardState:
        return self._state

    @property
    def current_step(self) -> StepDefinition:
        return self.wizard.get_step(self._state.step_id)

    @property
    def current_section(self) -> SectionDefinition:
        return self.wizard.get_section(self._state.section_id)

    @property
    def form_data(self) -> FormData:
        return copy.deepcopy(self._state.form_data)

    @property
    def completed_steps(self) -> FrozenSet[str]:
        return self._state.completed_steps

    def dispatch(self, event: Any) -> Transition:
        result = transition(self.wizard, self._state, event, self._validator)
        self._state = result.state
        self._notify(result.changes)
        return result

    def next(self) -> Transition:
        return self.dispatch(NextStep())

    def previous(self) -> Transition:
        return self.dispatch(PreviousStep())

    def update(self, changes: FormData) -> Transition:
        return self.dispatch(UpdateData(dict(changes)))

    def mark_step_complete(self, step_id: Optional[str] = None) -> Transition:
        return self.dispatch(MarkStepComplete(step_id))

    def progress(self) -> ProgressReport:
        return progress(self.wizard, self._state)

    def subscribe(self, callback: Callable[[Change], None]) -> Callable[[], None]:
        """Register a change listener; returns a function that unregisters it."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, changes: List[Change]):
        for change in changes:
            for callback in list(self._subscribers):
                try:
                    callback(change)
                except Exception:
                    logger.exception(f'Wizard subscriber failed on {change.kind}')

    def serialize(self) -> Dict[str, Any]:
        """Snapshot for autosave; completed steps are listed in wizard order."""
        completed = [sid for sid in self.wizard.step_ids() if sid in self._state.completed_steps]
        return {
            'version': SNAPSHOT_VERSION,
            'wizard': self.wizard.id,
            'currentSectionId': self._state.section_id,
            'currentStepId': self._state.step_id,
            'completedSteps': completed,
            'formData': copy.deepcopy(self._state.form_data),
        }

    @classmethod
    def deserialize(cls, snapshot: Dict[str, Any],
                    validator: Optional[StepValidator] = None) -> 'WizardSession':
        """
        Restore a session from a snapshot.

        The saved position is kept only if that step is still applicable to
        the restored data; otherwise it falls forward to the nearest one.

        Raises:
            ValueError: If the snapshot is malformed or from another version
        """
        if not isinstance(snapshot, dict):
            raise ValueError('Wizard snapshot must be an object')
        if snapshot.get('version') != SNAPSHOT_VERSION:
            raise ValueError(f'Unsupported wizard snapshot version: {snapshot.get("version")!r}')

        wizard = get_wizard(snapshot.get('wizard'))
        form_data = snapshot.get('formData') or {}
        if not isinstance(form_data, dict):
            raise ValueError('Wizard snapshot formData must be an object')

        completed = frozenset(
            sid for sid in (snapshot.get('completedSteps') or []) if wizard.has_step(sid)
        )
        section_id, step = wizard.resolve_position(snapshot.get('currentStepId'), form_data)
        state = WizardState(
            section_id=section_id,
            step_id=step.id,
            completed_steps=completed,
            form_data=copy.deepcopy(form_data),
        )
        return cls(wizard, validator=validator, state=state)
