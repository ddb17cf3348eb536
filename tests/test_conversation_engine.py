"""
Unit tests for ConversationEngine

Tests the stage/step state machine with mocked providers and persistence
"""

import asyncio
import threading
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from coach.config import EngineConfig
from coach.contracts import ActionKind, Card, Phase, SeedData, Stage
from coach.core.conversation_engine import ConversationEngine
from coach.core.conversation_state import ConversationStateSnapshot
from coach.errors import SuggestionProviderError


# ========================
# Mock Modules
# ========================

class MockSuggestionProvider:
    """Returns a fixed card list and records calls"""

    def __init__(self, cards=None):
        self.cards = cards if cards is not None else [
            Card(id='1', title='Systems and Connections', description='How parts make wholes'),
            Card(id='2', title='Change Over Time', description='Patterns of growth'),
            Card(id='3', title='Community Impact', description='Local difference'),
        ]
        self.calls = []

    async def fetch_suggestions(self, kind, stage, step, captured):
        self.calls.append((kind, stage, step, dict(captured)))
        return list(self.cards)


class FailingSuggestionProvider:
    """Always raises"""

    async def fetch_suggestions(self, kind, stage, step, captured):
        raise SuggestionProviderError("model offline")


class BlockingSuggestionProvider:
    """Blocks until release() so tests can observe the processing flag"""

    def __init__(self):
        self.event = None

    def release(self):
        self.event.set()

    async def fetch_suggestions(self, kind, stage, step, captured):
        self.event = asyncio.Event()
        await self.event.wait()
        return [Card(id='1', title='Late card')]


class MockPersistence:
    """Records saves; optionally raises"""

    def __init__(self, fail=False):
        self.fail = fail
        self.saves = []

    def save(self, captured_snapshot, stage):
        if self.fail:
            raise OSError("disk full")
        self.saves.append((dict(captured_snapshot), stage))
        return f"/tmp/{stage.value}.json"


# ========================
# Helpers
# ========================

def run(engine, *actions):
    """Apply (action, payload) pairs or bare action names in one event loop"""
    async def _run():
        results = []
        for item in actions:
            if isinstance(item, tuple):
                results.append(await engine.process(*item))
            else:
                results.append(await engine.process(item))
        return results
    return asyncio.run(_run())


def complete_stage(prefix):
    """Actions that confirm three steps from step_entry step 1"""
    return [
        ('text', f'{prefix} one'), 'continue',
        ('text', f'{prefix} two'), 'continue',
        ('text', f'{prefix} three'), 'continue',
    ]


def make_engine(**kwargs):
    kwargs.setdefault('seed', SeedData(subject='Science', age_group='Middle School', location='Riverside'))
    kwargs.setdefault('suggestion_provider', MockSuggestionProvider())
    return ConversationEngine(**kwargs)


# ========================
# Initialization
# ========================

def test_initial_state():
    """New engine starts at IDEATION stage_init with an empty store"""
    engine = make_engine()
    state = engine.get_state()

    assert state.stage == Stage.IDEATION
    assert state.step_index == 0
    assert state.phase == Phase.STAGE_INIT
    assert state.pending_value is None
    assert state.completed_steps == ()
    assert state.is_processing is False
    assert state.captured_data == {}
    assert engine.get_quick_replies() == [ActionKind.START, ActionKind.HELP]
    assert "Ideation" in engine.current_message()


def test_rejects_provider_without_fetch():
    with pytest.raises(TypeError):
        ConversationEngine(suggestion_provider=object())


def test_rejects_persistence_without_save():
    with pytest.raises(TypeError):
        ConversationEngine(persistence=object())


def test_session_id_generated_when_missing():
    assert len(make_engine().session_id) == 8
    assert make_engine(session_id='abc').session_id == 'abc'


# ========================
# Transitions
# ========================

def test_start_enters_first_step():
    engine = make_engine()
    [result] = run(engine, 'start')

    assert result.accepted
    assert result.state.phase == Phase.STEP_ENTRY
    assert result.state.step_index == 1
    assert "Science" in result.system_output


def test_start_in_step_entry_reemits_prompt():
    engine = make_engine()
    first, second = run(engine, 'start', 'start')

    assert second.accepted
    assert second.system_output == first.system_output
    assert second.state.position() == first.state.position()
    assert second.debug.get('reemitted') is True


def test_text_holds_trimmed_pending_value():
    engine = make_engine()
    _, result = run(engine, 'start', ('text', '  Systems and Connections  '))

    assert result.state.phase == Phase.STEP_CONFIRM
    assert result.state.pending_value == 'Systems and Connections'
    assert 'Big Idea' in result.system_output
    assert result.state.captured_data == {}


@pytest.mark.parametrize('payload', ['', '   ', '\n\t', None])
def test_empty_text_rejected_without_store_write(payload):
    engine = make_engine()
    _, result = run(engine, 'start', ('text', payload))

    assert result.rejected
    assert result.error == 'validation_error'
    state = engine.get_state()
    assert state.phase == Phase.STEP_ENTRY
    assert state.pending_value is None
    assert state.captured_data == {}


def test_continue_commits_and_advances():
    engine = make_engine()
    *_, result = run(engine, 'start', ('text', 'Systems and Connections'), 'continue')

    state = result.state
    assert state.phase == Phase.STEP_ENTRY
    assert state.step_index == 2
    assert state.pending_value is None
    assert state.captured_data == {'ideation.bigIdea': 'Systems and Connections'}
    assert state.completed_steps == ((Stage.IDEATION, 1),)
    assert result.debug['committed_key'] == 'ideation.bigIdea'


def test_third_continue_reaches_stage_clarify_with_recap():
    engine = make_engine()
    results = run(engine, 'start', *complete_stage('Idea'))
    recap = results[-1]

    assert recap.state.phase == Phase.STAGE_CLARIFY
    assert recap.state.step_index == 3
    assert 'Idea one' in recap.system_output
    assert 'Idea three' in recap.system_output
    assert engine.get_quick_replies() == [ActionKind.PROCEED, ActionKind.HELP]


def test_refine_returns_to_same_step():
    engine = make_engine()
    *_, result = run(engine, 'start', ('text', 'First try'), 'refine')

    assert result.accepted
    assert result.state.phase == Phase.STEP_ENTRY
    assert result.state.step_index == 1
    assert result.state.pending_value is None
    assert result.state.refinement_count == 1
    assert result.state.captured_data == {}


def test_repeated_refine_never_advances():
    engine = make_engine()
    actions = ['start']
    for attempt in range(5):
        actions.extend([('text', f'Attempt {attempt}'), 'refine'])
    run(engine, *actions)

    state = engine.get_state()
    assert state.stage == Stage.IDEATION
    assert state.step_index == 1
    assert state.phase == Phase.STEP_ENTRY
    assert state.completed_steps == ()
    assert state.refinement_count == 5


def test_refinement_limit():
    engine = make_engine(config=EngineConfig(max_refinements=1))
    results = run(engine, 'start', ('text', 'a'), 'refine', ('text', 'b'), 'refine')

    assert results[2].accepted
    assert results[4].rejected
    assert results[4].error == 'illegal_action'
    assert engine.get_state().phase == Phase.STEP_CONFIRM
    assert engine.get_state().pending_value == 'b'


def test_refinement_count_resets_on_next_step():
    engine = make_engine(config=EngineConfig(max_refinements=1))
    results = run(engine, 'start', ('text', 'a'), 'refine', ('text', 'b'), 'continue',
                  ('text', 'c'), 'refine')

    assert results[-1].accepted
    assert engine.get_state().step_index == 2


def test_proceed_saves_and_enters_next_stage():
    persistence = MockPersistence()
    engine = make_engine(persistence=persistence)
    *_, result = run(engine, 'start', *complete_stage('Idea'), 'proceed')

    state = result.state
    assert state.stage == Stage.JOURNEY
    assert state.phase == Phase.STEP_ENTRY
    assert state.step_index == 1
    assert len(persistence.saves) == 1
    saved, stage = persistence.saves[0]
    assert stage == Stage.IDEATION
    assert saved['ideation.challenge'] == 'Idea three'
    assert result.debug['saved_path'] == '/tmp/IDEATION.json'
    assert 'Journey' in result.system_output


def test_proceed_survives_persistence_failure():
    engine = make_engine(persistence=MockPersistence(fail=True))
    *_, result = run(engine, 'start', *complete_stage('Idea'), 'proceed')

    assert result.accepted
    assert result.state.stage == Stage.JOURNEY
    assert result.debug['saved_path'] is None


def test_happy_path_ends_at_journey_step_one():
    engine = make_engine()
    run(engine,
        'start', 'start',
        ('text', 'Big'), 'continue',
        'start', ('text', 'Question'), 'continue',
        'start', ('text', 'Challenge'), 'continue',
        'proceed')

    state = engine.get_state()
    assert (state.stage, state.phase, state.step_index) == (Stage.JOURNEY, Phase.STEP_ENTRY, 1)
    assert len(state.captured_data) == 3


def test_full_session_completes_and_preserves_context():
    persistence = MockPersistence()
    engine = make_engine(persistence=persistence)
    actions = ['start', ('text', 'Systems and Connections'), 'continue',
               ('text', 'How do parts work together?'), 'continue',
               ('text', 'Design a local solution'), 'continue', 'proceed']
    actions += complete_stage('Journey') + ['proceed']
    actions += [('text', 'Milestones'), 'continue', ('text', 'Rubric'), 'continue',
                ('text', 'Community fair for Systems and Connections'), 'continue', 'proceed']
    results = run(engine, *actions)

    assert all(r.accepted for r in results)
    state = engine.get_state()
    assert state.is_complete
    assert len(state.completed_steps) == 9
    assert state.captured_data['ideation.bigIdea'] == 'Systems and Connections'
    assert state.captured_data['ideation.bigIdea'] in state.captured_data['deliverables.impact']
    assert [stage for _, stage in persistence.saves] == [Stage.IDEATION, Stage.JOURNEY, Stage.DELIVERABLES]
    assert results[-1].system_output.startswith('**Congratulations!**')


def test_completed_steps_always_have_values():
    engine = make_engine()
    run(engine, 'start', *complete_stage('Idea'), 'proceed', ('text', 'Phases'), 'continue')

    state = engine.get_state()
    catalog = engine.catalog
    for stage, step in state.completed_steps:
        assert state.captured_data[catalog.canonical_key_for(stage, step)]


def test_journey_prompt_references_captured_challenge():
    engine = make_engine()
    run(engine, 'start', ('text', 'Big'), 'continue', ('text', 'Question'), 'continue',
        ('text', 'river cleanup plan'), 'continue', 'proceed', ('text', 'Phases'))
    [result] = run(engine, 'continue')

    assert 'river cleanup plan' in result.system_output


# ========================
# Legality
# ========================

@pytest.mark.parametrize('action', ['text', 'continue', 'refine', 'ideas', 'whatif', 'card_select', 'proceed'])
def test_illegal_in_stage_init(action):
    engine = make_engine()
    before = engine.get_state()
    [result] = run(engine, (action, 'x'))

    assert result.rejected
    assert result.error == 'illegal_action'
    assert engine.get_state() == before


def test_step_entry_legal_set():
    engine = make_engine()
    run(engine, 'start')

    assert set(engine.get_quick_replies()) == {
        ActionKind.START, ActionKind.TEXT, ActionKind.IDEAS,
        ActionKind.WHATIF, ActionKind.CARD_SELECT, ActionKind.HELP
    }


def test_unknown_action_rejected():
    engine = make_engine()
    [result] = run(engine, 'dance')

    assert result.rejected
    assert result.error == 'unknown_action'
    assert result.action == 'dance'
    assert engine.get_state().phase == Phase.STAGE_INIT


def test_action_names_case_insensitive():
    engine = make_engine()
    [result] = run(engine, 'START')
    assert result.accepted


def test_complete_is_terminal():
    engine = make_engine()
    actions = ['start'] + complete_stage('I') + ['proceed'] + complete_stage('J') + ['proceed']
    actions += complete_stage('D') + ['proceed']
    run(engine, *actions)
    final = engine.get_state()
    assert final.is_complete
    assert engine.get_quick_replies() == []

    results = run(engine, 'start', ('text', 'more'), 'continue', 'refine', 'ideas',
                  'whatif', ('card_select', '1'), 'help', 'proceed')

    assert all(r.rejected and r.error == 'illegal_action' for r in results)
    assert engine.get_state() == final


# ========================
# Help
# ========================

@pytest.mark.parametrize('setup', [
    [],
    ['start'],
    ['start', ('text', 'Candidate')],
    ['start'] + complete_stage('Idea'),
])
def test_help_is_idempotent(setup):
    engine = make_engine()
    run(engine, *setup)
    before = engine.get_state()

    first, second = run(engine, 'help', 'help')

    assert first.accepted and second.accepted
    assert first.system_output == second.system_output
    assert engine.get_state().position() == before.position()
    assert engine.get_state().captured_data == before.captured_data


def test_help_is_step_specific():
    engine = make_engine()
    run(engine, 'start')
    [step_one] = run(engine, 'help')
    run(engine, ('text', 'x'), 'continue')
    [step_two] = run(engine, 'help')

    assert 'Big Ideas' in step_one.system_output
    assert 'Essential Questions' in step_two.system_output


# ========================
# Suggestions
# ========================

def test_ideas_returns_cards_without_phase_change():
    provider = MockSuggestionProvider()
    engine = make_engine(suggestion_provider=provider)
    _, result = run(engine, 'start', 'ideas')

    assert result.accepted
    assert [c.title for c in result.cards] == ['Systems and Connections', 'Change Over Time', 'Community Impact']
    assert result.state.phase == Phase.STEP_ENTRY
    assert result.state.is_processing is False
    assert len(result.state.offered_cards) == 3
    assert provider.calls[0][:3] == ('ideas', Stage.IDEATION, 1)


def test_whatif_passes_kind_to_provider():
    provider = MockSuggestionProvider()
    engine = make_engine(suggestion_provider=provider)
    run(engine, 'start', 'whatif')

    assert provider.calls[0][0] == 'whatif'


def test_provider_receives_captured_data():
    provider = MockSuggestionProvider()
    engine = make_engine(suggestion_provider=provider)
    run(engine, 'start', ('text', 'Big'), 'continue', 'ideas')

    assert provider.calls[0][3] == {'ideation.bigIdea': 'Big'}


def test_provider_failure_leaves_phase_unchanged():
    engine = make_engine(suggestion_provider=FailingSuggestionProvider())
    _, result = run(engine, 'start', 'ideas')

    assert result.rejected
    assert result.error == 'provider_failure'
    state = engine.get_state()
    assert state.phase == Phase.STEP_ENTRY
    assert state.is_processing is False
    assert state.offered_cards == ()

    call = engine.trace[-1].provider_calls[0]
    assert call.succeeded is False
    assert 'model offline' in call.error


def test_empty_card_list_is_provider_failure():
    engine = make_engine(suggestion_provider=MockSuggestionProvider(cards=[]))
    _, result = run(engine, 'start', 'ideas')

    assert result.error == 'provider_failure'


def test_busy_rejection_while_fetching():
    provider = BlockingSuggestionProvider()
    engine = make_engine(suggestion_provider=provider)
    run(engine, 'start')

    async def scenario():
        task = asyncio.create_task(engine.process('ideas'))
        for _ in range(100):
            if engine.is_processing:
                break
            await asyncio.sleep(0)

        busy_state = engine.get_state()
        busy_replies = engine.get_quick_replies()
        busy = await engine.process('help')
        busy_text = await engine.process('text', 'sneaky')

        provider.release()
        done = await task
        return busy_state, busy_replies, busy, busy_text, done

    busy_state, busy_replies, busy, busy_text, done = asyncio.run(scenario())

    assert busy_state.is_processing is True
    assert ActionKind.IDEAS in busy_replies
    assert busy.error == 'busy'
    assert busy_text.error == 'busy'
    assert done.accepted
    assert [c.title for c in done.cards] == ['Late card']

    state = engine.get_state()
    assert state.is_processing is False
    assert state.pending_value is None
    assert state.phase == Phase.STEP_ENTRY


class BlockingPersistence:
    """save() blocks the calling thread until released"""

    def __init__(self):
        self.entered = threading.Event()
        self.released = threading.Event()
        self.saves = []

    def save(self, captured_snapshot, stage):
        self.entered.set()
        self.released.wait(timeout=5)
        self.saves.append(stage)
        return f"/tmp/{stage.value}.json"


def test_busy_rejection_across_threads():
    persistence = BlockingPersistence()
    engine = make_engine(persistence=persistence)
    run(engine, 'start', *complete_stage('Idea'))

    outcome = {}
    worker = threading.Thread(target=lambda: outcome.update(result=asyncio.run(engine.process('proceed'))))
    worker.start()
    assert persistence.entered.wait(timeout=5)

    [rejected] = run(engine, 'help')
    persistence.released.set()
    worker.join(timeout=5)

    assert rejected.error == 'busy'
    assert outcome['result'].accepted
    assert outcome['result'].state.stage == Stage.JOURNEY
    assert persistence.saves == [Stage.IDEATION]
    assert [r.error for r in engine.trace[-2:]] == ['busy', None]

    [after] = run(engine, 'help')
    assert after.accepted


# ========================
# Card selection
# ========================

def test_card_select_without_cards_is_illegal():
    engine = make_engine()
    _, result = run(engine, 'start', ('card_select', {'title': 'Systems and Connections'}))

    assert result.error == 'illegal_action'
    assert engine.get_state().phase == Phase.STEP_ENTRY


@pytest.mark.parametrize('payload', [
    {'id': '2'},
    {'title': 'Change Over Time'},
    {'title': '  change over time '},
    'Change Over Time',
    Card(id='2', title='Change Over Time'),
])
def test_card_select_resolves_by_id_or_title(payload):
    engine = make_engine()
    *_, result = run(engine, 'start', 'ideas', ('card_select', payload))

    assert result.accepted
    assert result.state.phase == Phase.STEP_CONFIRM
    assert result.state.pending_value == 'Change Over Time'
    assert result.state.offered_cards == ()


def test_card_select_unknown_card_is_validation_error():
    engine = make_engine()
    *_, result = run(engine, 'start', 'ideas', ('card_select', {'title': 'Not offered'}))

    assert result.error == 'validation_error'
    assert engine.get_state().phase == Phase.STEP_ENTRY
    assert len(engine.get_state().offered_cards) == 3


@pytest.mark.parametrize('payload', [
    {'title': 5},
    {'title': ['Change Over Time']},
    {'id': ['2']},
    {'id': {'value': '2'}, 'title': None},
    {'id': True},
])
def test_card_select_malformed_reference_is_validation_error(payload):
    engine = make_engine()
    *_, result = run(engine, 'start', 'ideas', ('card_select', payload))

    assert result.accepted is False
    assert result.error == 'validation_error'
    assert engine.get_state().phase == Phase.STEP_ENTRY
    assert len(engine.get_state().offered_cards) == 3
    assert engine.trace[-1].action == 'card_select'
    assert engine.trace[-1].error == 'validation_error'


def test_card_select_accepts_integer_id():
    engine = make_engine()
    *_, result = run(engine, 'start', 'ideas', ('card_select', {'id': 2}))

    assert result.accepted
    assert result.state.pending_value == 'Change Over Time'


def test_offered_cards_cleared_on_step_change():
    engine = make_engine()
    run(engine, 'start', 'ideas', ('text', 'Own idea'), 'continue')

    assert engine.get_state().offered_cards == ()
    [result] = run(engine, ('card_select', {'id': '1'}))
    assert result.error == 'illegal_action'


# ========================
# Trace and restore
# ========================

def test_trace_records_every_call():
    engine = make_engine()
    run(engine, 'start', ('text', ''), ('text', 'Big'), 'proceed')

    trace = engine.trace
    assert [r.sequence for r in trace] == [1, 2, 3, 4]
    assert [r.accepted for r in trace] == [True, False, True, False]
    assert trace[1].error == 'validation_error'
    assert trace[2].pre_state.phase == Phase.STEP_ENTRY
    assert trace[2].post_state.phase == Phase.STEP_CONFIRM
    assert trace[2].changed_position()
    assert not trace[1].changed_position()
    assert trace[3].to_json()['preState']['phase'] == 'step_confirm'


def test_restore_from_snapshot():
    engine = make_engine()
    run(engine, 'start', ('text', 'Big'), 'continue', ('text', 'Question'))
    data = engine.get_state().to_json()

    restored = make_engine(initial_state=ConversationStateSnapshot.from_json(data))
    [result] = run(restored, 'continue')

    assert result.state.step_index == 3
    assert result.state.captured_data == {
        'ideation.bigIdea': 'Big',
        'ideation.essentialQuestion': 'Question'
    }


def test_resume_from_persistence(tmp_path):
    from coach.persistence import SessionPersistence

    persistence = SessionPersistence('resume01', str(tmp_path))
    engine = make_engine(persistence=persistence, session_id='resume01')
    run(engine, 'start', *complete_stage('Idea'), 'proceed')

    resumed = ConversationEngine.resume(SessionPersistence('resume01', str(tmp_path)))
    state = resumed.get_state()

    assert resumed.session_id == 'resume01'
    assert state.stage == Stage.JOURNEY
    assert state.phase == Phase.STEP_ENTRY
    assert state.step_index == 1
    assert len(state.completed_steps) == 3
    assert state.captured_data['ideation.bigIdea'] == 'Idea one'


def test_resume_without_snapshots_starts_fresh(tmp_path):
    from coach.persistence import SessionPersistence

    resumed = ConversationEngine.resume(SessionPersistence('empty01', str(tmp_path)))
    assert resumed.get_state().phase == Phase.STAGE_INIT
