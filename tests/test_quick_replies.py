"""
Unit tests for the Quick-Reply Resolver and the action boundary
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from coach.commands import build_action, card_reference, describe_payload, parse_action
from coach.contracts import ActionKind, Card, Phase
from coach.core.quick_replies import is_legal, legal_actions, quick_replies_for
from coach.errors import IllegalActionError, UnknownActionError


def test_legal_actions_table():
    assert legal_actions(Phase.STAGE_INIT, 0) == [ActionKind.START, ActionKind.HELP]
    assert legal_actions(Phase.STEP_CONFIRM, 2) == [ActionKind.CONTINUE, ActionKind.REFINE, ActionKind.HELP]
    assert legal_actions(Phase.STAGE_CLARIFY, 3) == [ActionKind.PROCEED, ActionKind.HELP]
    assert legal_actions(Phase.COMPLETE, 3) == []


@pytest.mark.parametrize('step', [1, 2, 3])
def test_step_entry_set_is_step_independent(step):
    assert set(legal_actions(Phase.STEP_ENTRY, step)) == {
        ActionKind.START, ActionKind.TEXT, ActionKind.IDEAS,
        ActionKind.WHATIF, ActionKind.CARD_SELECT, ActionKind.HELP
    }


def test_deterministic_and_fresh():
    first = legal_actions(Phase.STEP_ENTRY, 1)
    first.append(ActionKind.PROCEED)
    assert ActionKind.PROCEED not in legal_actions(Phase.STEP_ENTRY, 1)


@pytest.mark.parametrize('phase,step', [
    (Phase.STEP_ENTRY, 0), (Phase.STEP_ENTRY, 4), (Phase.STEP_CONFIRM, -1)
])
def test_out_of_range_step_raises(phase, step):
    with pytest.raises(ValueError):
        legal_actions(phase, step)


def test_accepts_phase_strings():
    assert legal_actions('stage_clarify', 3) == [ActionKind.PROCEED, ActionKind.HELP]
    assert is_legal(ActionKind.HELP, 'stage_init', 0)
    assert not is_legal(ActionKind.TEXT, Phase.STAGE_INIT, 0)


def test_buttons_omit_free_form_inputs():
    buttons = quick_replies_for(Phase.STEP_ENTRY, 1)
    assert [b.label for b in buttons] == ['Ideas', 'What-If', 'Help']
    assert all(b.action not in (ActionKind.TEXT, ActionKind.CARD_SELECT) for b in buttons)


def test_button_labels():
    assert [b.label for b in quick_replies_for(Phase.STAGE_INIT, 0)] == ["Let's Begin", 'Help']
    assert [b.label for b in quick_replies_for(Phase.STEP_CONFIRM, 1)] == ['Continue', 'Refine', 'Help']
    assert [b.label for b in quick_replies_for(Phase.STAGE_CLARIFY, 3)] == ['Proceed', 'Help']
    assert quick_replies_for(Phase.COMPLETE, 3) == []
    assert quick_replies_for(Phase.STAGE_INIT, 0)[0].to_json()['action'] == 'start'


class TestActionBoundary:

    def test_parse_action(self):
        assert parse_action('Ideas') == ActionKind.IDEAS
        assert parse_action(' whatif ') == ActionKind.WHATIF
        assert parse_action(ActionKind.HELP) == ActionKind.HELP

    @pytest.mark.parametrize('value', ['dance', '', 42, None])
    def test_unknown_actions(self, value):
        with pytest.raises(UnknownActionError):
            parse_action(value)

    def test_unknown_is_illegal(self):
        assert issubclass(UnknownActionError, IllegalActionError)
        assert UnknownActionError.kind == 'unknown_action'

    def test_build_action_describe(self):
        assert build_action('text', 'hello').describe() == 'text(hello)'
        assert build_action('help').describe() == 'help'

    def test_card_reference_shapes(self):
        assert card_reference(Card(id='3', title='T')) == ('3', 'T')
        assert card_reference({'id': 3}) == ('3', None)
        assert card_reference({'title': 'T'}) == (None, 'T')
        assert card_reference('T') == (None, 'T')
        assert card_reference(7) == (None, None)

    def test_card_reference_drops_non_string_fields(self):
        assert card_reference({'title': 5}) == (None, None)
        assert card_reference({'id': ['2'], 'title': 'T'}) == (None, 'T')
        assert card_reference({'id': False}) == (None, None)

    def test_describe_payload_truncates(self):
        assert describe_payload(None) is None
        assert describe_payload('x' * 100).endswith('...')
        assert len(describe_payload('x' * 100)) == 60
