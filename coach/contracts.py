"""
Semantic contracts for the curriculum coach conversation engine.

This module defines the closed vocabularies and immutable value objects
shared by every other module. These are NOT validators beyond basic shape
checks - they define the language the engine speaks.

Design principles:
- String-based enums (JSON serialization without adapters)
- Frozen dataclasses (immutable after creation)
- No dependencies on other coach modules
- Definition layer only

Contents:
- Stage: the three curriculum stages, in visiting order
- Phase: the conversation's finite-state-machine state
- ActionKind: the closed set of actions the engine accepts
- Card: a suggestion card offered by a Suggestion Provider
- SeedData: wizard intake parameters consumed opaquely

Usage:
    from coach.contracts import Stage, Phase, ActionKind, Card, SeedData
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class Stage(str, Enum):
    """
    Top-level curriculum stages.

    IDEATION:
        Conceptual foundation - Big Idea, Essential Question, Challenge.

    JOURNEY:
        Learning progression - Phases, Activities, Resources.

    DELIVERABLES:
        Assessment and impact - Milestones, Rubric, Impact Plan.

    Stages are visited strictly in declaration order. There is no skipping
    and no revisiting once the next stage has been entered.
    """
    IDEATION = "IDEATION"
    JOURNEY = "JOURNEY"
    DELIVERABLES = "DELIVERABLES"

    @property
    def key_prefix(self) -> str:
        """Lowercase prefix used for captured-data keys (e.g. 'ideation')"""
        return self.value.lower()


class Phase(str, Enum):
    """
    Conversation phase, layered on top of (Stage, step).

    STAGE_INIT:
        Stage has just been entered; no step has started.
        Exit: start -> STEP_ENTRY (step 1)

    STEP_ENTRY:
        Prompt for the current step emitted, waiting for input.
        Exit: text / card_select -> STEP_CONFIRM

    STEP_CONFIRM:
        Candidate value held, waiting for confirmation.
        Exit: continue -> STEP_ENTRY (next step) or STAGE_CLARIFY
              refine -> STEP_ENTRY (same step)

    STAGE_CLARIFY:
        All three steps confirmed, waiting for acknowledgement.
        Exit: proceed -> next stage (STEP_ENTRY, step 1) or COMPLETE

    COMPLETE:
        Terminal. No further actions accepted.
    """
    STAGE_INIT = "stage_init"
    STEP_ENTRY = "step_entry"
    STEP_CONFIRM = "step_confirm"
    STAGE_CLARIFY = "stage_clarify"
    COMPLETE = "complete"


class ActionKind(str, Enum):
    """Closed vocabulary of user actions accepted by the engine"""
    START = "start"
    TEXT = "text"
    CONTINUE = "continue"
    REFINE = "refine"
    IDEAS = "ideas"
    WHATIF = "whatif"
    CARD_SELECT = "card_select"
    HELP = "help"
    PROCEED = "proceed"


# Single source of truth for ordering and sizes
STAGE_ORDER = (Stage.IDEATION, Stage.JOURNEY, Stage.DELIVERABLES)
STEPS_PER_STAGE = 3
TOTAL_STEPS = len(STAGE_ORDER) * STEPS_PER_STAGE

# Actions that ask the Suggestion Provider for cards
SUGGESTION_ACTIONS = frozenset({ActionKind.IDEAS, ActionKind.WHATIF})


def next_stage(stage: Stage) -> Optional[Stage]:
    """
    Return the stage after `stage`, or None if it is the last one.

    Examples:
        >>> next_stage(Stage.IDEATION)
        <Stage.JOURNEY: 'JOURNEY'>
        >>> next_stage(Stage.DELIVERABLES) is None
        True
    """
    index = STAGE_ORDER.index(stage)
    if index + 1 < len(STAGE_ORDER):
        return STAGE_ORDER[index + 1]
    return None


@dataclass(frozen=True)
class Card:
    """
    Suggestion card returned by a Suggestion Provider.

    The engine treats cards as opaque payloads: only `title` is ever
    written into the conversation (as the candidate value on card_select).

    Attributes:
        id: Identifier unique within one offered card set
        title: Short candidate value shown on the card
        description: One-sentence elaboration (display only)
        kind: 'ideas' or 'whatif' - which action produced the card
    """
    id: str
    title: str
    description: str = ""
    kind: str = "ideas"

    def to_json(self) -> dict:
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'kind': self.kind
        }

    @staticmethod
    def from_json(data: Dict[str, Any]) -> "Card":
        return Card(
            id=str(data['id']),
            title=data['title'],
            description=data.get('description', ''),
            kind=data.get('kind', 'ideas')
        )


@dataclass(frozen=True)
class SeedData:
    """
    Wizard intake parameters that seed a session.

    Consumed opaquely: the engine only interpolates these into prompt
    templates and uses `subject` to pick static suggestion tables.

    Attributes:
        subject: Subject area (e.g. 'Physical Education')
        age_group: Grade level / age band (e.g. 'Elementary (K-5)')
        location: School or community context
        duration: Planned project length (free text)
        extras: Any other intake fields, carried through untouched
    """
    subject: str = "your subject"
    age_group: str = "your"
    location: str = "your community"
    duration: str = ""
    extras: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> dict:
        return {
            'subject': self.subject,
            'ageGroup': self.age_group,
            'location': self.location,
            'duration': self.duration,
            **self.extras
        }

    @staticmethod
    def from_json(data: Optional[Dict[str, Any]]) -> "SeedData":
        """
        Build SeedData from wizard output.

        Accepts both the wizard's camelCase keys and snake_case keys.
        Unknown keys are kept in `extras`.
        """
        data = dict(data or {})
        known = {'subject', 'ageGroup', 'age_group', 'gradeLevel', 'grade_level',
                 'location', 'duration'}
        defaults = SeedData()
        return SeedData(
            subject=data.get('subject') or defaults.subject,
            age_group=(data.get('ageGroup') or data.get('age_group')
                       or data.get('gradeLevel') or data.get('grade_level')
                       or defaults.age_group),
            location=data.get('location') or defaults.location,
            duration=data.get('duration') or defaults.duration,
            extras={k: v for k, v in data.items() if k not in known}
        )
