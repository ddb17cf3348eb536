"""
Conversation Engine - stage/step progression for one authoring session

Responsibilities:
- Accept the closed action vocabulary through a single async process() entry point
- Decide legality per phase (via the Quick-Reply Resolver)
- Drive transitions between stage_init, step_entry, step_confirm,
  stage_clarify and complete
- Commit confirmed values to the Captured-Data Store
- Fetch suggestion cards from the Suggestion Provider, guarded by the
  processing flag
- Save a store snapshot at every stage boundary
- Record a structured trace of every call

Design principles:
- One engine per session; the engine owns its ConversationState
- Every call returns an ActionResult; rejections never raise
- A rejected action never mutates state
- Busy calls are rejected, never queued (also across threads sharing one engine)
- Thin orchestration layer (prompts in StageCatalog, legality in quick_replies)
"""

import logging
import threading
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from coach.commands import Action, build_action, card_reference, describe_payload
from coach.config import EngineConfig
from coach.contracts import (
    ActionKind, Card, Phase, SeedData, Stage, STAGE_ORDER, STEPS_PER_STAGE,
    SUGGESTION_ACTIONS, next_stage
)
from coach.core.conversation_state import ConversationState, ConversationStateSnapshot
from coach.core.quick_replies import QuickReply, is_legal, legal_actions, quick_replies_for
from coach.core.stage_catalog import StageCatalog
from coach.core.suggestion_provider import StaticSuggestionProvider
from coach.errors import (
    BusyRejection, CoachError, IllegalActionError, ProviderFailure, ValidationError
)
from coach.results import ActionResult, ProviderCall, TraceRecord
from coach.utils.helpers import generate_session_id

logger = logging.getLogger(__name__)

# (system_output, cards, debug)
HandlerOutput = Tuple[str, Tuple[Card, ...], Dict[str, Any]]

_STEP_PHASES = (Phase.STEP_ENTRY, Phase.STEP_CONFIRM)


class ConversationEngine:
    """
    Finite state machine over (Stage, step, Phase).

    Usage:
        engine = ConversationEngine(seed=SeedData(subject="Science"))
        result = await engine.process("start")
        result = await engine.process("text", "Systems and Connections")
        engine.get_state().phase   # Phase.STEP_CONFIRM
    """

    EMPTY_TEXT_MESSAGE = "Please share your thoughts before continuing - your response can't be empty."
    NO_CARDS_MESSAGE = "There are no suggestion cards to choose from yet. Try 'Ideas' or 'What-If' first."
    BUSY_MESSAGE = "Still working on your suggestions - please wait a moment."

    def __init__(
        self,
        seed: Optional[SeedData] = None,
        suggestion_provider=None,
        persistence=None,
        config: Optional[EngineConfig] = None,
        session_id: Optional[str] = None,
        initial_state: Optional[ConversationStateSnapshot] = None
    ):
        """
        Args:
            seed: Wizard intake data (templates and static suggestion tables)
            suggestion_provider: Object with async fetch_suggestions()
                (default: StaticSuggestionProvider for the seed)
            persistence: Object with save(captured_snapshot, stage), or None
            config: Engine configuration (default: EngineConfig())
            session_id: Session identifier (generated if omitted)
            initial_state: Snapshot to resume from (default: IDEATION stage_init)

        Raises:
            TypeError: If a collaborator lacks its required method
        """
        self.seed = seed or SeedData()
        self.config = config or EngineConfig()
        self.session_id = session_id or generate_session_id()
        self.catalog = StageCatalog(self.seed)

        if suggestion_provider is None:
            suggestion_provider = StaticSuggestionProvider(self.seed, self.catalog)
        self._validate_collaborators(suggestion_provider, persistence)

        self.suggestion_provider = suggestion_provider
        self.persistence = persistence

        if initial_state is not None:
            self._state = ConversationState.from_snapshot(initial_state)
        else:
            self._state = ConversationState()

        self._trace: List[TraceRecord] = []
        self._dispatch_lock = threading.Lock()
        self._handlers: Dict[ActionKind, Callable[[Action, List[ProviderCall]], Awaitable[HandlerOutput]]] = {
            ActionKind.START: self._handle_start,
            ActionKind.TEXT: self._handle_text,
            ActionKind.CONTINUE: self._handle_continue,
            ActionKind.REFINE: self._handle_refine,
            **{kind: self._handle_suggestions for kind in SUGGESTION_ACTIONS},
            ActionKind.CARD_SELECT: self._handle_card_select,
            ActionKind.HELP: self._handle_help,
            ActionKind.PROCEED: self._handle_proceed,
        }

        logger.info(
            f"Conversation engine initialized (session={self.session_id}, "
            f"subject={self.seed.subject}, provider={type(suggestion_provider).__name__})"
        )

    def _validate_collaborators(self, suggestion_provider, persistence) -> None:
        if not callable(getattr(suggestion_provider, 'fetch_suggestions', None)):
            raise TypeError("suggestion_provider must have callable fetch_suggestions() method")
        if persistence is not None and not callable(getattr(persistence, 'save', None)):
            raise TypeError("persistence must have callable save() method")

    @classmethod
    def resume(cls, persistence, seed: Optional[SeedData] = None,
               config: Optional[EngineConfig] = None, **kwargs) -> "ConversationEngine":
        """
        Rebuild an engine from the latest stage snapshot in persistence.

        The session resumes at step 1 of the first stage whose steps are
        not all captured, or at 'complete' when every step is.

        Args:
            persistence: SessionPersistence bound to the session
            seed: Wizard intake data
            config: Engine configuration
            **kwargs: Passed through to the constructor

        Returns:
            ConversationEngine (fresh if nothing was saved)
        """
        captured = persistence.load_latest()
        session_id = getattr(persistence, 'session_id', None)

        if not captured:
            return cls(seed=seed, persistence=persistence, config=config,
                       session_id=session_id, **kwargs)

        catalog = StageCatalog(seed)
        completed = []
        resume_stage = None
        for stage in STAGE_ORDER:
            steps = range(1, STEPS_PER_STAGE + 1)
            if all(catalog.canonical_key_for(stage, step) in captured for step in steps):
                completed.extend((stage, step) for step in steps)
            else:
                resume_stage = stage
                break

        if resume_stage is None:
            snapshot = ConversationStateSnapshot(
                stage=STAGE_ORDER[-1], step_index=STEPS_PER_STAGE, phase=Phase.COMPLETE,
                pending_value=None, completed_steps=tuple(completed),
                is_processing=False, captured_data=dict(captured)
            )
        else:
            snapshot = ConversationStateSnapshot(
                stage=resume_stage, step_index=1, phase=Phase.STEP_ENTRY,
                pending_value=None, completed_steps=tuple(completed),
                is_processing=False, captured_data=dict(captured)
            )

        logger.info(f"Resuming session {session_id} at {snapshot.stage.value}/{snapshot.phase.value}")
        return cls(seed=seed, persistence=persistence, config=config,
                   session_id=session_id, initial_state=snapshot, **kwargs)

    # ========================
    # Inspection
    # ========================

    def get_state(self) -> ConversationStateSnapshot:
        """Immutable snapshot of the current state (always available, even when busy)"""
        return self._state.snapshot()

    def get_quick_replies(self) -> List[ActionKind]:
        return legal_actions(self._state.phase, self._state.step_index)

    def get_quick_reply_buttons(self) -> List[QuickReply]:
        return quick_replies_for(self._state.phase, self._state.step_index)

    @property
    def trace(self) -> Tuple[TraceRecord, ...]:
        return tuple(self._trace)

    @property
    def is_processing(self) -> bool:
        return self._state.is_processing

    def current_message(self) -> str:
        """
        The message that belongs to the current position.

        Used by presentation layers to render a session that was just
        created or restored, without sending an action.
        """
        state = self._state
        captured = state.captured.snapshot()
        if state.phase == Phase.STAGE_INIT:
            return self.catalog.stage_intro(state.stage)
        if state.phase == Phase.STEP_ENTRY:
            return self.catalog.prompt_for(state.stage, state.step_index, captured)
        if state.phase == Phase.STEP_CONFIRM:
            return self.catalog.confirmation_for(state.stage, state.step_index, state.pending_value or "")
        if state.phase == Phase.STAGE_CLARIFY:
            return self.catalog.stage_recap(state.stage, captured)
        return self.catalog.completion_message()

    # ========================
    # Dispatch
    # ========================

    async def process(self, action: Union[ActionKind, str], payload: Any = None) -> ActionResult:
        """
        Apply one action.

        Args:
            action: ActionKind or its string value
            payload: Text for 'text', a card reference for 'card_select',
                ignored otherwise

        Returns:
            ActionResult: accepted=False with an error kind on rejection
                (busy, unknown/illegal action, validation, provider failure)
        """
        action_name = action.value if isinstance(action, ActionKind) else str(action)
        provider_calls: List[ProviderCall] = []

        # Held for the whole call; a second caller (same loop or another
        # thread) fails the non-blocking acquire and is rejected as busy
        acquired = self._dispatch_lock.acquire(blocking=False)
        pre_state = self._state.snapshot()

        try:
            if not acquired or self._state.is_processing:
                raise BusyRejection(self.BUSY_MESSAGE)

            parsed = build_action(action, payload)

            if not is_legal(parsed.kind, self._state.phase, self._state.step_index):
                raise IllegalActionError(
                    f"'{parsed.kind.value}' is not available during {self._state.phase.value}"
                )

            logger.debug(f"[{self.session_id}] Dispatching {parsed.describe()}")
            output, cards, debug = await self._handlers[parsed.kind](parsed, provider_calls)

            return self._finish(
                action_name, payload, pre_state, provider_calls,
                accepted=True, output=output, cards=cards, debug=debug
            )

        except CoachError as e:
            return self._finish(
                action_name, payload, pre_state, provider_calls,
                accepted=False, output=str(e), error=e.kind
            )

        finally:
            if acquired:
                self._dispatch_lock.release()

    def _finish(
        self,
        action_name: str,
        payload: Any,
        pre_state: ConversationStateSnapshot,
        provider_calls: List[ProviderCall],
        accepted: bool,
        output: str,
        cards: Tuple[Card, ...] = (),
        error: Optional[str] = None,
        debug: Optional[Dict[str, Any]] = None
    ) -> ActionResult:
        """Build the result, append the trace record and log the outcome"""
        post_state = self._state.snapshot()

        record = TraceRecord(
            sequence=len(self._trace) + 1,
            action=action_name,
            payload=payload,
            pre_state=pre_state,
            post_state=post_state,
            accepted=accepted,
            error=error,
            provider_calls=tuple(provider_calls)
        )
        self._trace.append(record)

        position = f"{post_state.stage.value}/{post_state.step_index}/{post_state.phase.value}"
        detail = describe_payload(payload)
        label = f"{action_name}({detail})" if detail else action_name
        if accepted:
            logger.info(f"[{self.session_id}] #{record.sequence} {label} -> {position}")
        else:
            logger.warning(f"[{self.session_id}] #{record.sequence} {label} rejected ({error}): {output}")

        return ActionResult(
            action=action_name,
            accepted=accepted,
            system_output=output,
            state=post_state,
            quick_replies=tuple(legal_actions(post_state.phase, post_state.step_index)),
            cards=cards,
            error=error,
            debug=debug or {}
        )

    # ========================
    # Handlers
    # ========================

    async def _handle_start(self, action: Action, provider_calls: List[ProviderCall]) -> HandlerOutput:
        state = self._state
        if state.phase == Phase.STEP_ENTRY:
            # Prompt already showing: re-emit it, nothing moves
            prompt = self.catalog.prompt_for(state.stage, state.step_index, state.captured.snapshot())
            return prompt, (), {'reemitted': True}

        state.enter_step(1)
        prompt = self.catalog.prompt_for(state.stage, 1, state.captured.snapshot())
        return prompt, (), {}

    def _stage_candidate(self, value: str) -> str:
        """Hold a candidate value and move to step_confirm"""
        state = self._state
        state.pending_value = value
        state.phase = Phase.STEP_CONFIRM
        state.offered_cards = []
        return self.catalog.confirmation_for(state.stage, state.step_index, value)

    async def _handle_text(self, action: Action, provider_calls: List[ProviderCall]) -> HandlerOutput:
        text = action.payload
        if not isinstance(text, str) or not text.strip():
            raise ValidationError(self.EMPTY_TEXT_MESSAGE)

        return self._stage_candidate(text.strip()), (), {}

    async def _handle_continue(self, action: Action, provider_calls: List[ProviderCall]) -> HandlerOutput:
        state = self._state
        if not state.pending_value:
            raise IllegalActionError("There is no response waiting to be confirmed")

        key = self.catalog.canonical_key_for(state.stage, state.step_index)
        state.captured.set(key, state.pending_value)
        state.completed_steps.add((state.stage, state.step_index))
        debug = {'committed_key': key}

        if state.step_index < STEPS_PER_STAGE:
            state.enter_step(state.step_index + 1)
            prompt = self.catalog.prompt_for(state.stage, state.step_index, state.captured.snapshot())
            return prompt, (), debug

        state.phase = Phase.STAGE_CLARIFY
        state.pending_value = None
        state.offered_cards = []
        state.refinement_count = 0
        return self.catalog.stage_recap(state.stage, state.captured.snapshot()), (), debug

    async def _handle_refine(self, action: Action, provider_calls: List[ProviderCall]) -> HandlerOutput:
        state = self._state
        limit = self.config.max_refinements
        if limit is not None and state.refinement_count >= limit:
            raise IllegalActionError(
                f"Refinement limit reached ({limit}) for this step; please continue"
            )

        state.refinement_count += 1
        state.pending_value = None
        state.phase = Phase.STEP_ENTRY
        state.offered_cards = []

        label = self.catalog.label_for(state.stage, state.step_index)
        prompt = self.catalog.prompt_for(state.stage, state.step_index, state.captured.snapshot())
        output = f"Let's refine your {label}.\n\n{prompt}"
        return output, (), {'refinement_count': state.refinement_count}

    async def _handle_suggestions(self, action: Action, provider_calls: List[ProviderCall]) -> HandlerOutput:
        state = self._state
        kind = action.kind.value
        provider_name = type(self.suggestion_provider).__name__

        state.is_processing = True
        start_time = time.perf_counter()
        try:
            raw_cards = await self.suggestion_provider.fetch_suggestions(
                kind, state.stage, state.step_index, state.captured.snapshot()
            )
            cards = tuple(c if isinstance(c, Card) else Card.from_json(c) for c in raw_cards or ())
            if not cards:
                raise ProviderFailure("No suggestions are available right now. Please try again.")
        except ProviderFailure as e:
            provider_calls.append(ProviderCall(
                kind=kind, provider=provider_name, succeeded=False, error=str(e),
                elapsed_ms=(time.perf_counter() - start_time) * 1000
            ))
            raise
        except Exception as e:
            logger.error(f"Suggestion provider failed: {type(e).__name__} - {e}")
            provider_calls.append(ProviderCall(
                kind=kind, provider=provider_name, succeeded=False, error=str(e),
                elapsed_ms=(time.perf_counter() - start_time) * 1000
            ))
            raise ProviderFailure(
                "I couldn't fetch suggestions just now. You can try again or type your own response."
            ) from e
        finally:
            state.is_processing = False

        provider_calls.append(ProviderCall(
            kind=kind, provider=provider_name, succeeded=True, card_count=len(cards),
            elapsed_ms=(time.perf_counter() - start_time) * 1000
        ))
        state.offered_cards = list(cards)

        label = self.catalog.label_for(state.stage, state.step_index)
        if action.kind == ActionKind.IDEAS:
            output = f"Here are some {label} ideas to spark your thinking. Select one or write your own."
        else:
            output = f"Here are some What-If scenarios for your {label}. Select one or write your own."
        return output, cards, {'provider': provider_name, 'card_count': len(cards)}

    async def _handle_card_select(self, action: Action, provider_calls: List[ProviderCall]) -> HandlerOutput:
        state = self._state
        if not state.offered_cards:
            raise IllegalActionError(self.NO_CARDS_MESSAGE)

        card = self._resolve_card(action.payload)
        if card is None:
            raise ValidationError("That card isn't one of the current suggestions. Please pick again.")

        return self._stage_candidate(card.title), (), {'card_id': card.id}

    def _resolve_card(self, payload: Any) -> Optional[Card]:
        """Match a card reference against offered cards: id first, then title"""
        card_id, title = card_reference(payload)
        offered = self._state.offered_cards

        if card_id is not None:
            for card in offered:
                if card.id == card_id:
                    return card
        if title:
            wanted = title.strip().casefold()
            for card in offered:
                if card.title.strip().casefold() == wanted:
                    return card
        return None

    async def _handle_help(self, action: Action, provider_calls: List[ProviderCall]) -> HandlerOutput:
        state = self._state
        step = state.step_index if state.phase in _STEP_PHASES else None
        return self.catalog.help_for(state.stage, step, state.captured.snapshot()), (), {}

    async def _handle_proceed(self, action: Action, provider_calls: List[ProviderCall]) -> HandlerOutput:
        state = self._state
        finished_stage = state.stage
        debug = {'saved_path': self._save_stage(finished_stage)}

        following = next_stage(finished_stage)
        if following is None:
            state.phase = Phase.COMPLETE
            state.pending_value = None
            state.offered_cards = []
            logger.info(f"[{self.session_id}] Session complete")
            return self.catalog.completion_message(), (), debug

        state.enter_stage(following)
        logger.info(f"[{self.session_id}] Entered stage {following.value}")
        state.enter_step(1)

        output = (
            f"{self.catalog.stage_intro(following)}\n\n"
            f"{self.catalog.prompt_for(following, 1, state.captured.snapshot())}"
        )
        return output, (), debug

    def _save_stage(self, stage: Stage) -> Optional[str]:
        """Persist the store at a stage boundary; failures are logged, never raised"""
        if self.persistence is None:
            return None
        try:
            return self.persistence.save(self._state.captured.snapshot(), stage)
        except Exception as e:
            logger.error(f"Failed to save {stage.value} snapshot for {self.session_id}: {e}")
            return None
