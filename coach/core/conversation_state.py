"""
Conversation State - the mutable record of where a session is

Responsibilities:
- Track current stage, step, phase, pending value and completed steps
- Own the Captured-Data Store for the session
- Track the processing flag and the offered suggestion cards
- Produce immutable snapshots for inspection, traces and persistence
- Rehydrate from a serialized snapshot

Design principles:
- Dumb container: transitions are decided by ConversationEngine, not here
- Steps are 1-indexed; step_index == 0 means "no step started" (stage_init)
- Snapshots are frozen and JSON-serializable (sets become ordered lists)
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from coach.contracts import Card, Phase, Stage, STAGE_ORDER
from coach.core.captured_data import CapturedDataStore

logger = logging.getLogger(__name__)


def _step_sort_key(entry: Tuple[Stage, int]) -> Tuple[int, int]:
    stage, step = entry
    return STAGE_ORDER.index(stage), step


@dataclass(frozen=True)
class ConversationStateSnapshot:
    """
    Read-only view of a ConversationState at one instant.

    Attributes:
        stage: Current stage
        step_index: Current step (0 before the first start of a stage)
        phase: Current phase
        pending_value: Unconfirmed candidate (step_confirm only)
        completed_steps: (stage, step) pairs confirmed so far, curriculum order
        is_processing: True while a suggestion fetch is in flight
        captured_data: Detached copy of the Captured-Data Store
        offered_cards: Cards from the last successful ideas/whatif call
        refinement_count: refine actions taken on the current step
    """
    stage: Stage
    step_index: int
    phase: Phase
    pending_value: Optional[str]
    completed_steps: Tuple[Tuple[Stage, int], ...]
    is_processing: bool
    captured_data: Dict[str, Any]
    offered_cards: Tuple[Card, ...] = ()
    refinement_count: int = 0

    @property
    def is_complete(self) -> bool:
        return self.phase == Phase.COMPLETE

    def position(self) -> Dict[str, Any]:
        """Stage/step/phase/pending only - what a trace compares"""
        return {
            'stage': self.stage.value,
            'step_index': self.step_index,
            'phase': self.phase.value,
            'pending_value': self.pending_value
        }

    def to_json(self) -> dict:
        """
        Serialize to a JSON-safe dict (deep copy).

        Returns:
            dict: camelCase keys, matching what the presentation layer reads
        """
        return {
            'stage': self.stage.value,
            'stepIndex': self.step_index,
            'phase': self.phase.value,
            'pendingValue': self.pending_value,
            'completedSteps': [[stage.value, step] for stage, step in self.completed_steps],
            'isProcessing': self.is_processing,
            'capturedData': copy.deepcopy(self.captured_data),
            'offeredCards': [card.to_json() for card in self.offered_cards],
            'refinementCount': self.refinement_count
        }

    @staticmethod
    def from_json(data: dict) -> "ConversationStateSnapshot":
        """
        Deserialize from to_json() output.

        Raises:
            ValueError: If stage or phase strings are not recognised
        """
        try:
            return ConversationStateSnapshot(
                stage=Stage(data['stage']),
                step_index=int(data.get('stepIndex', 0)),
                phase=Phase(data['phase']),
                pending_value=data.get('pendingValue'),
                completed_steps=tuple(
                    (Stage(stage), int(step)) for stage, step in data.get('completedSteps', [])
                ),
                is_processing=bool(data.get('isProcessing', False)),
                captured_data=copy.deepcopy(data.get('capturedData', {})),
                offered_cards=tuple(Card.from_json(c) for c in data.get('offeredCards', [])),
                refinement_count=int(data.get('refinementCount', 0))
            )
        except KeyError as e:
            raise ValueError(f"Snapshot missing required field {e}") from None


@dataclass
class ConversationState:
    """Mutable per-session state, owned by exactly one ConversationEngine"""

    stage: Stage = Stage.IDEATION
    step_index: int = 0
    phase: Phase = Phase.STAGE_INIT
    pending_value: Optional[str] = None
    completed_steps: Set[Tuple[Stage, int]] = field(default_factory=set)
    is_processing: bool = False
    captured: CapturedDataStore = field(default_factory=CapturedDataStore)
    offered_cards: List[Card] = field(default_factory=list)
    refinement_count: int = 0

    def snapshot(self) -> ConversationStateSnapshot:
        return ConversationStateSnapshot(
            stage=self.stage,
            step_index=self.step_index,
            phase=self.phase,
            pending_value=self.pending_value,
            completed_steps=tuple(sorted(self.completed_steps, key=_step_sort_key)),
            is_processing=self.is_processing,
            captured_data=self.captured.snapshot(),
            offered_cards=tuple(self.offered_cards),
            refinement_count=self.refinement_count
        )

    @classmethod
    def from_snapshot(cls, snapshot: ConversationStateSnapshot) -> "ConversationState":
        """
        Rehydrate a live state from a snapshot.

        The processing flag is never restored: a fetch cannot survive a
        restart, so a restored session is always idle.
        """
        if snapshot.is_processing:
            logger.warning("Restoring snapshot taken mid-fetch; processing flag cleared")

        return cls(
            stage=snapshot.stage,
            step_index=snapshot.step_index,
            phase=snapshot.phase,
            pending_value=snapshot.pending_value,
            completed_steps=set(snapshot.completed_steps),
            is_processing=False,
            captured=CapturedDataStore.from_snapshot(snapshot.captured_data),
            offered_cards=list(snapshot.offered_cards),
            refinement_count=snapshot.refinement_count
        )

    def enter_step(self, step: int) -> None:
        """Move to step_entry for `step`, clearing per-step scratch data"""
        self.step_index = step
        self.phase = Phase.STEP_ENTRY
        self.pending_value = None
        self.offered_cards = []
        self.refinement_count = 0

    def enter_stage(self, stage: Stage) -> None:
        """Move to stage_init of `stage`"""
        self.stage = stage
        self.step_index = 0
        self.phase = Phase.STAGE_INIT
        self.pending_value = None
        self.offered_cards = []
        self.refinement_count = 0
