"""
Inbound action envelope for ConversationEngine.

Actions are the ONLY way to mutate a session. Unknown action strings are
rejected here, at the boundary, before they reach the state machine.
"""

from dataclasses import dataclass
from typing import Any, Optional, Union

from coach.contracts import ActionKind, Card
from coach.errors import UnknownActionError


@dataclass(frozen=True)
class Action:
    """
    A single user action with its optional payload.

    Payload shapes:
    - TEXT: free-form string
    - CARD_SELECT: Card, dict with 'id' and/or 'title', or a bare title string
    - everything else: None (any payload is ignored)
    """
    kind: ActionKind
    payload: Any = None

    def describe(self) -> str:
        """Short human-readable form for logs and traces"""
        if self.payload is None:
            return self.kind.value
        return f"{self.kind.value}({describe_payload(self.payload)})"


def parse_action(action: Union[ActionKind, str]) -> ActionKind:
    """
    Convert an action name into an ActionKind.

    Args:
        action: ActionKind or its string value (case-insensitive)

    Returns:
        ActionKind

    Raises:
        UnknownActionError: If the string is not in the vocabulary
    """
    if isinstance(action, ActionKind):
        return action

    if not isinstance(action, str):
        raise UnknownActionError(
            f"Action must be a string, got {type(action).__name__}"
        )

    try:
        return ActionKind(action.strip().lower())
    except ValueError:
        raise UnknownActionError(f"Unknown action '{action}'") from None


def build_action(action: Union[ActionKind, str], payload: Any = None) -> Action:
    """Parse and wrap an (action, payload) pair"""
    return Action(kind=parse_action(action), payload=payload)


def card_reference(payload: Any) -> tuple:
    """
    Extract (card_id, title) from a card_select payload.

    Returns:
        tuple: (Optional[str], Optional[str]) - either may be None.
            Ids may arrive as str or int; anything else is dropped, and a
            non-string title is dropped.
    """
    if isinstance(payload, Card):
        return payload.id, payload.title
    if isinstance(payload, dict):
        card_id = payload.get('id')
        title = payload.get('title')
        if isinstance(card_id, bool) or not isinstance(card_id, (str, int)):
            card_id = None
        return (str(card_id) if card_id is not None else None), (title if isinstance(title, str) else None)
    if isinstance(payload, str):
        return None, payload
    return None, None


def describe_payload(payload: Any, limit: int = 60) -> Optional[str]:
    """Truncated repr of a payload for log lines"""
    if payload is None:
        return None
    if isinstance(payload, Card):
        text = payload.title
    elif isinstance(payload, dict):
        text = str(payload.get('title') or payload.get('id') or payload)
    else:
        text = str(payload)
    return text if len(text) <= limit else text[:limit - 3] + "..."
