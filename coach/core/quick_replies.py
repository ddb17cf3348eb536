"""
Quick-Reply Resolver - which actions are legal right now

Pure functions of (phase, step_index). The same inputs always produce the
same output, so the resolver doubles as the authority the engine consults
before honoring an action and as the source of UI buttons.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from coach.contracts import ActionKind, Phase, STEPS_PER_STAGE


_LEGAL_ACTIONS: Dict[Phase, Tuple[ActionKind, ...]] = {
    Phase.STAGE_INIT: (ActionKind.START, ActionKind.HELP),
    Phase.STEP_ENTRY: (
        ActionKind.START,
        ActionKind.TEXT,
        ActionKind.IDEAS,
        ActionKind.WHATIF,
        ActionKind.CARD_SELECT,
        ActionKind.HELP,
    ),
    Phase.STEP_CONFIRM: (ActionKind.CONTINUE, ActionKind.REFINE, ActionKind.HELP),
    Phase.STAGE_CLARIFY: (ActionKind.PROCEED, ActionKind.HELP),
    Phase.COMPLETE: (),
}

# Free-form inputs: legal, but never rendered as buttons
_INPUT_ACTIONS = frozenset({ActionKind.TEXT, ActionKind.CARD_SELECT})

# Phases where a step is active and step_index must be 1..STEPS_PER_STAGE
_STEP_PHASES = frozenset({Phase.STEP_ENTRY, Phase.STEP_CONFIRM})


@dataclass(frozen=True)
class QuickReply:
    """Button description for the presentation layer"""
    id: str
    label: str
    action: ActionKind
    icon: Optional[str] = None
    variant: str = "secondary"

    def to_json(self) -> dict:
        return {
            'id': self.id,
            'label': self.label,
            'action': self.action.value,
            'icon': self.icon,
            'variant': self.variant
        }


_BUTTONS: Dict[Phase, Dict[ActionKind, QuickReply]] = {
    Phase.STAGE_INIT: {
        ActionKind.START: QuickReply('start', "Let's Begin", ActionKind.START, 'Rocket', 'primary'),
    },
    Phase.STEP_ENTRY: {
        ActionKind.IDEAS: QuickReply('ideas', 'Ideas', ActionKind.IDEAS, 'Lightbulb', 'suggestion'),
        ActionKind.WHATIF: QuickReply('whatif', 'What-If', ActionKind.WHATIF, 'RefreshCw', 'suggestion'),
    },
    Phase.STEP_CONFIRM: {
        ActionKind.CONTINUE: QuickReply('continue', 'Continue', ActionKind.CONTINUE, 'Check', 'primary'),
        ActionKind.REFINE: QuickReply('refine', 'Refine', ActionKind.REFINE, 'Edit', 'secondary'),
    },
    Phase.STAGE_CLARIFY: {
        ActionKind.PROCEED: QuickReply('proceed', 'Proceed', ActionKind.PROCEED, 'ArrowRight', 'primary'),
    },
}

_HELP_BUTTON = QuickReply('help', 'Help', ActionKind.HELP, 'HelpCircle', 'tertiary')


def legal_actions(phase: Phase, step_index: int) -> List[ActionKind]:
    """
    Actions legal in (phase, step_index).

    Args:
        phase: Current phase
        step_index: Current step (1-indexed; ignored outside step phases)

    Returns:
        list: ActionKinds in display order (fresh list on every call)

    Raises:
        ValueError: If a step phase is paired with an out-of-range step
    """
    phase = Phase(phase)
    if phase in _STEP_PHASES and not 1 <= step_index <= STEPS_PER_STAGE:
        raise ValueError(f"Phase {phase.value} requires step 1..{STEPS_PER_STAGE}, got {step_index}")
    return list(_LEGAL_ACTIONS[phase])


def is_legal(action: ActionKind, phase: Phase, step_index: int) -> bool:
    return action in legal_actions(phase, step_index)


def quick_replies_for(phase: Phase, step_index: int) -> List[QuickReply]:
    """
    Button records for the legal, non-input actions of (phase, step_index).

    START in step_entry is legal but only re-emits the prompt, so it gets
    no button there.
    """
    phase = Phase(phase)
    buttons = _BUTTONS.get(phase, {})
    replies = []
    for action in legal_actions(phase, step_index):
        if action in _INPUT_ACTIONS:
            continue
        if action == ActionKind.HELP:
            replies.append(_HELP_BUTTON)
        elif action in buttons:
            replies.append(buttons[action])
    return replies
