"""
Result types returned by ConversationEngine.process()

These are the ONLY return types from the action handler. Rejections are
results too, never exceptions: the engine has no fatal error class.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from coach.contracts import ActionKind, Card
from coach.core.conversation_state import ConversationStateSnapshot


@dataclass(frozen=True)
class ActionResult:
    """
    Outcome of one process() call.

    Attributes:
        action: Action name as received (string, even if it was unknown)
        accepted: False if the action was rejected
        system_output: Text to display (prompt, confirmation, help, recap,
            or the rejection message)
        state: Snapshot taken after the action
        quick_replies: Legal actions after the action
        cards: Cards offered by an ideas/whatif action (empty otherwise)
        error: Error kind for rejections (see coach.errors), None if accepted
        debug: Free-form diagnostics (provider name, card count, etc.)
    """
    action: str
    accepted: bool
    system_output: str
    state: ConversationStateSnapshot
    quick_replies: Tuple[ActionKind, ...]
    cards: Tuple[Card, ...] = ()
    error: Optional[str] = None
    debug: Dict[str, Any] = field(default_factory=dict)

    @property
    def rejected(self) -> bool:
        return not self.accepted

    def to_json(self) -> dict:
        return {
            'action': self.action,
            'accepted': self.accepted,
            'systemOutput': self.system_output,
            'error': self.error,
            'cards': [card.to_json() for card in self.cards],
            'quickReplies': [action.value for action in self.quick_replies],
            'state': self.state.to_json(),
            'debug': self.debug
        }


@dataclass(frozen=True)
class ProviderCall:
    """
    Record of one Suggestion Provider call.

    Attributes:
        kind: 'ideas' or 'whatif'
        provider: Provider class name
        succeeded: False if the provider raised
        card_count: Number of cards returned (0 on failure)
        error: Error message on failure
        elapsed_ms: Wall-clock duration of the await
    """
    kind: str
    provider: str
    succeeded: bool
    card_count: int = 0
    error: Optional[str] = None
    elapsed_ms: float = 0.0


@dataclass(frozen=True)
class TraceRecord:
    """
    Structured trace entry written by the engine for every process() call.

    Replaces log scraping: test harnesses inspect these directly.
    """
    sequence: int
    action: str
    payload: Any
    pre_state: ConversationStateSnapshot
    post_state: ConversationStateSnapshot
    accepted: bool
    error: Optional[str] = None
    provider_calls: Tuple[ProviderCall, ...] = ()
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def changed_position(self) -> bool:
        """True if stage, step, phase or pending value changed"""
        return self.pre_state.position() != self.post_state.position()

    def to_json(self) -> dict:
        return {
            'sequence': self.sequence,
            'action': self.action,
            'payload': self.payload if isinstance(self.payload, (str, int, float, bool, type(None), dict))
            else str(self.payload),
            'preState': self.pre_state.position(),
            'postState': self.post_state.position(),
            'accepted': self.accepted,
            'error': self.error,
            'providerCalls': [vars(call) for call in self.provider_calls],
            'timestamp': self.timestamp
        }


def trace_to_json(trace: List[TraceRecord]) -> List[dict]:
    return [record.to_json() for record in trace]
