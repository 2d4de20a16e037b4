"""
Test Navigation Engine - cursor transitions, gating, submission

Every transition is tested in isolation: build a state, send one command,
inspect the result.

Run with: pytest tests/test_navigation.py
"""

import dataclasses

import pytest

from formflow.commands import (
    Phase, SessionState, StartForm, NextQuestion, PrevQuestion, GoToQuestion,
    GoToSection, SetAnswer, SetAttachment, SubmitForm, ConfirmSubmission, ResetForm,
)
from formflow.core.navigation import (
    EMPTY_FORM, REQUIRED_QUESTION, REQUIRED_SECTION, SECTION_LOCKED, SUBMIT_BLOCKED,
    SUBMITTED, NavigationEngine,
)
from formflow.results import IllegalCommand, SubmitResponse, TransitionResult
from formflow.utils.policy import RuntimePolicy


def answering(engine, section=0, question=0, **answers):
    """State in phase ANSWERING at the given cursor"""
    return SessionState(
        form_id=engine.form.id,
        phase=Phase.ANSWERING,
        section_index=section,
        question_index=question,
        answers=answers,
    )


# ========================
# Lifecycle
# ========================

def test_new_session_on_cover(single_section_form):
    engine = NavigationEngine(single_section_form)
    state = engine.new_session()

    assert state.phase == Phase.COVER
    assert state.cursor == (0, 0)
    assert state.answers == {}


def test_start_form(single_section_form):
    engine = NavigationEngine(single_section_form)
    result = engine.handle(StartForm(state=engine.new_session()))

    assert isinstance(result, TransitionResult)
    assert result.state.phase == Phase.ANSWERING
    assert result.state.cursor == (0, 0)
    assert result.changed is True


def test_engine_rejects_non_form():
    with pytest.raises(TypeError, match="Form"):
        NavigationEngine({'id': 'form-1'})


def test_commands_rejected_in_wrong_phase(single_section_form):
    engine = NavigationEngine(single_section_form)
    cover = engine.new_session()

    result = engine.handle(NextQuestion(state=cover))
    assert isinstance(result, IllegalCommand)
    assert result.command_type == 'NextQuestion'
    assert "cover" in result.reason

    submitted = dataclasses.replace(cover, phase=Phase.SUBMITTED)
    assert isinstance(engine.handle(SubmitForm(state=submitted)), IllegalCommand)
    assert isinstance(engine.handle(StartForm(state=submitted)), IllegalCommand)


def test_state_for_another_form_rejected(single_section_form):
    engine = NavigationEngine(single_section_form)
    state = SessionState(form_id='other-form', phase=Phase.ANSWERING)

    result = engine.handle(NextQuestion(state=state))
    assert isinstance(result, IllegalCommand)
    assert 'other-form' in result.reason


def test_unknown_command(single_section_form):
    @dataclasses.dataclass(frozen=True)
    class Teleport:
        state: SessionState

    engine = NavigationEngine(single_section_form)
    result = engine.handle(Teleport(state=answering(engine)))

    assert isinstance(result, IllegalCommand)
    assert result.reason == "Unknown command Teleport"


@pytest.mark.parametrize("section,question", [(7, 0), (-1, 0), (0, 5), (1, -1)])
def test_cursor_outside_form_rejected(two_section_form, section, question):
    engine = NavigationEngine(two_section_form)
    state = answering(engine, section, question, q1='Ada')

    for command in (NextQuestion(state=state), PrevQuestion(state=state), SubmitForm(state=state)):
        result = engine.handle(command)
        assert isinstance(result, IllegalCommand)
        assert "outside" in result.reason

    # Reset is the way back to a usable state
    assert engine.handle(ResetForm(state=state)).state == engine.new_session()


def test_empty_form_accepts_origin_cursor(make_form):
    engine = NavigationEngine(make_form([]))

    result = engine.handle(NextQuestion(state=answering(engine)))
    assert isinstance(result, TransitionResult)
    assert result.state.cursor == (0, 0)

    assert isinstance(engine.handle(NextQuestion(state=answering(engine, 1, 0))), IllegalCommand)


def test_carried_answers_rechecked(single_section_form):
    """Answers sent back inside the state get the same checks as SetAnswer"""
    engine = NavigationEngine(single_section_form)

    bad_shape = answering(engine, q1={'nested': [1, 2]})
    bad_option = answering(engine, q1='Ada', q2=['Skydiving'])
    unknown = answering(engine, q1='Ada', zzz='injected')

    for state in (bad_shape, bad_option, unknown):
        result = engine.handle(SubmitForm(state=state))
        assert isinstance(result, IllegalCommand)
        assert result.command_type == 'SubmitForm'

    assert "unknown question zzz" in engine.handle(NextQuestion(state=unknown)).reason


def test_carried_answers_coerced_before_submit(single_section_form):
    engine = NavigationEngine(single_section_form)
    state = answering(engine, q1='Ada', q2='Golf')

    result = engine.handle(SubmitForm(state=state))

    assert result.effects == (
        SubmitResponse(form_id='form-1', answers={'q1': 'Ada', 'q2': ['Golf']}, attachments={}),
    )


def test_carried_attachments_rechecked(survey_form):
    engine = NavigationEngine(survey_form)
    state = answering(engine, returning='Yes')

    wrong_question = dataclasses.replace(state, attachments={'returning': 'data:image/png;base64,AA=='})
    not_a_reference = dataclasses.replace(state, attachments={'why': {'bytes': 1}})
    stray_error = dataclasses.replace(state, validation_errors=('ghost',))

    for bad in (wrong_question, not_a_reference, stray_error):
        assert isinstance(engine.handle(NextQuestion(state=bad)), IllegalCommand)


def test_reset_from_any_phase(single_section_form):
    engine = NavigationEngine(single_section_form)
    done = dataclasses.replace(
        answering(engine, 0, 1, q1='Ada'),
        phase=Phase.SUBMITTED, response_id='resp-1',
    )

    result = engine.handle(ResetForm(state=done))

    assert result.state == engine.new_session()
    assert result.changed is True

    fresh = engine.new_session()
    assert engine.handle(ResetForm(state=fresh)).changed is False


def test_confirm_submission(single_section_form):
    engine = NavigationEngine(single_section_form)
    result = engine.handle(ConfirmSubmission(state=answering(engine, q1='Ada'), response_id='resp-1'))

    assert result.state.phase == Phase.SUBMITTED
    assert result.state.response_id == 'resp-1'
    assert result.notices == (SUBMITTED,)
    assert result.rejected is False


# ========================
# Answers
# ========================

def test_set_answer_is_immutable(single_section_form):
    engine = NavigationEngine(single_section_form)
    before = answering(engine)

    result = engine.handle(SetAnswer(state=before, question_id='q1', value='hello'))

    assert result.state.answers == {'q1': 'hello'}
    assert before.answers == {}
    assert result.state.cursor == (0, 0)


def test_set_answer_clears_error(single_section_form):
    engine = NavigationEngine(single_section_form)
    state = dataclasses.replace(answering(engine), validation_errors=('q1',))

    result = engine.handle(SetAnswer(state=state, question_id='q1', value='hello'))
    assert result.state.validation_errors == ()

    # An empty answer leaves the error in place
    result = engine.handle(SetAnswer(state=state, question_id='q1', value=''))
    assert result.state.validation_errors == ('q1',)


def test_set_answer_none_removes(single_section_form):
    engine = NavigationEngine(single_section_form)
    state = answering(engine, q1='Ada')

    result = engine.handle(SetAnswer(state=state, question_id='q1', value=None))
    assert 'q1' not in result.state.answers


def test_set_answer_rejects_unknown_question_and_bad_value(single_section_form):
    engine = NavigationEngine(single_section_form)
    state = answering(engine)

    unknown = engine.handle(SetAnswer(state=state, question_id='nope', value='x'))
    bad_option = engine.handle(SetAnswer(state=state, question_id='q2', value=['Skydiving']))

    assert isinstance(unknown, IllegalCommand)
    assert isinstance(bad_option, IllegalCommand)
    assert bad_option.command_type == 'SetAnswer'


def test_set_attachment(survey_form):
    engine = NavigationEngine(survey_form)
    state = answering(engine, 2, 0)

    result = engine.handle(SetAttachment(state=state, question_id='why', reference='data:image/png;base64,AA=='))
    assert result.state.attachments == {'why': 'data:image/png;base64,AA=='}

    cleared = engine.handle(SetAttachment(state=result.state, question_id='why', reference=None))
    assert cleared.state.attachments == {}

    refused = engine.handle(SetAttachment(state=state, question_id='rating', reference='x'))
    assert isinstance(refused, IllegalCommand)


# ========================
# NextQuestion / PrevQuestion
# ========================

def test_next_blocks_on_unanswered_required(single_section_form):
    """Unanswered required question: stay put and flag it; answered: advance"""
    engine = NavigationEngine(single_section_form)
    state = engine.handle(StartForm(state=engine.new_session())).state

    result = engine.handle(NextQuestion(state=state))
    assert result.state.cursor == (0, 0)
    assert result.state.validation_errors == ('q1',)
    assert result.notices == (REQUIRED_QUESTION,)
    assert result.rejected is True

    state = engine.handle(SetAnswer(state=result.state, question_id='q1', value='hello')).state
    result = engine.handle(NextQuestion(state=state))
    assert result.state.cursor == (0, 1)
    assert result.state.validation_errors == ()
    assert result.notices == ()


def test_next_does_not_duplicate_errors(single_section_form):
    engine = NavigationEngine(single_section_form)
    state = dataclasses.replace(answering(engine), validation_errors=('q1',))

    result = engine.handle(NextQuestion(state=state))
    assert result.state.validation_errors == ('q1',)
    assert result.changed is False


def test_next_crosses_into_next_section(two_section_form):
    engine = NavigationEngine(two_section_form)
    result = engine.handle(NextQuestion(state=answering(engine, q1='Ada')))

    assert result.state.cursor == (1, 0)


def test_next_at_section_end_sends_back_to_missing(single_section_form):
    """The last question checks the whole section"""
    engine = NavigationEngine(single_section_form)
    state = answering(engine, 0, 1)

    result = engine.handle(NextQuestion(state=state))

    assert result.state.cursor == (0, 0)
    assert result.state.validation_errors == ('q1',)
    assert result.notices == (REQUIRED_SECTION,)


def test_next_holds_on_last_question(two_section_form):
    engine = NavigationEngine(two_section_form)
    state = answering(engine, 1, 1, q1='Ada')

    result = engine.handle(NextQuestion(state=state))

    assert result.state == state
    assert result.changed is False
    assert result.notices == ()


def test_next_through_empty_section(make_form):
    form = make_form([
        {'id': 'empty', 'questions': []},
        {'id': 's2', 'questions': [{'id': 'q1'}]},
    ])
    engine = NavigationEngine(form)

    result = engine.handle(NextQuestion(state=answering(engine)))
    assert result.state.cursor == (1, 0)


def test_rating_zero_blocks_next(make_form):
    """A rating of 0 counts as unanswered unless the policy says otherwise"""
    form = make_form([{
        'id': 's1',
        'questions': [
            {'id': 'rate', 'type': 'rating', 'ratingScale': 5, 'required': True},
            {'id': 'q2'},
        ],
    }])
    engine = NavigationEngine(form)
    state = engine.handle(SetAnswer(state=answering(engine), question_id='rate', value=0)).state

    assert state.answers == {'rate': 0}
    assert engine.handle(NextQuestion(state=state)).state.cursor == (0, 0)

    lenient = NavigationEngine(form, RuntimePolicy(numeric_zero_is_answer=True))
    assert lenient.handle(NextQuestion(state=state)).state.cursor == (0, 1)


def test_prev_question(survey_form):
    engine = NavigationEngine(survey_form)

    assert engine.handle(PrevQuestion(state=answering(engine, 1, 1))).state.cursor == (1, 0)
    # Crosses into the previous section's last question
    assert engine.handle(PrevQuestion(state=answering(engine, 1, 0))).state.cursor == (0, 1)

    first = answering(engine)
    result = engine.handle(PrevQuestion(state=first))
    assert result.state == first
    assert result.changed is False


def test_prev_into_empty_section(make_form):
    form = make_form([
        {'id': 'empty', 'questions': []},
        {'id': 's2', 'questions': [{'id': 'q1'}]},
    ])
    engine = NavigationEngine(form)

    assert engine.handle(PrevQuestion(state=answering(engine, 1, 0))).state.cursor == (0, 0)


def test_navigation_ignores_visibility(survey_form):
    """Hidden questions are still stepped onto"""
    engine = NavigationEngine(survey_form)
    state = answering(engine, returning='No')

    result = engine.handle(NextQuestion(state=state))
    assert result.state.cursor == (0, 1)
    assert engine.describe(result.state)[1].visible is False


# ========================
# Jumps
# ========================

def test_jump_rules_ignored_by_default(survey_form):
    engine = NavigationEngine(survey_form)
    result = engine.handle(NextQuestion(state=answering(engine, 0, 1, returning='No')))

    assert result.state.cursor == (1, 0)


def test_jump_rules_followed_with_policy(survey_form):
    engine = NavigationEngine(survey_form, RuntimePolicy(follow_jump_rules=True))

    jumped = engine.handle(NextQuestion(state=answering(engine, 0, 1, returning='No')))
    assert jumped.state.cursor == (1, 1)

    # Condition does not hold: sequential step
    stepped = engine.handle(NextQuestion(state=answering(engine, 0, 1, returning='Yes')))
    assert stepped.state.cursor == (1, 0)


def test_forward_jump_obeys_section_gate(make_form):
    form = make_form([
        {'id': 's1', 'questions': [
            {'id': 'q1', 'type': 'radio', 'options': ['A', 'B'], 'conditionalLogic': [
                {'id': 'r1', 'sourceQuestionId': 'q1', 'condition': 'equals', 'value': 'B',
                 'action': 'jump_to', 'targetQuestionId': 'q3'},
            ]},
            {'id': 'q2', 'required': True},
        ]},
        {'id': 's2', 'questions': [{'id': 'q3'}]},
    ])
    engine = NavigationEngine(form, RuntimePolicy(follow_jump_rules=True))
    state = answering(engine, q1='B')

    result = engine.handle(NextQuestion(state=state))

    assert result.state.cursor == (0, 0)
    assert result.notices == (SECTION_LOCKED,)


def test_jump_to_missing_target_steps(make_form, caplog):
    form = make_form([{'id': 's1', 'questions': [
        {'id': 'q1', 'conditionalLogic': [
            {'id': 'r1', 'sourceQuestionId': 'q1', 'condition': 'equals', 'value': 'x',
             'action': 'jump_to', 'targetQuestionId': 'deleted'},
        ]},
        {'id': 'q2'},
    ]}])
    engine = NavigationEngine(form, RuntimePolicy(follow_jump_rules=True))

    result = engine.handle(NextQuestion(state=answering(engine, q1='x')))

    assert result.state.cursor == (0, 1)
    assert "not in form" in caplog.text


# ========================
# GoToQuestion / GoToSection
# ========================

def test_go_to_question(two_section_form):
    engine = NavigationEngine(two_section_form)
    state = answering(engine, 1, 0)

    assert engine.handle(GoToQuestion(state=state, index=1)).state.cursor == (1, 1)

    for index in (-1, 2, 99):
        result = engine.handle(GoToQuestion(state=state, index=index))
        assert result.state == state


def test_go_to_current_question_is_noop(two_section_form):
    engine = NavigationEngine(two_section_form)
    state = answering(engine, 1, 1)

    result = engine.handle(GoToQuestion(state=state, index=1))

    assert result.state == state
    assert not result.changed
    assert result.notices == ()


def test_go_to_section_locked(two_section_form):
    """Forward move with the current section incomplete is refused"""
    engine = NavigationEngine(two_section_form)
    state = answering(engine)

    result = engine.handle(GoToSection(state=state, index=1))

    assert result.state.cursor == (0, 0)
    assert result.notices == (SECTION_LOCKED,)
    assert result.notices[0].level == 'warning'
    assert result.changed is False


def test_go_to_section_forward_when_complete(two_section_form):
    engine = NavigationEngine(two_section_form)
    result = engine.handle(GoToSection(state=answering(engine, q1='Ada'), index=1))

    assert result.state.cursor == (1, 0)


def test_go_to_section_backward_always_allowed(two_section_form):
    engine = NavigationEngine(two_section_form)
    result = engine.handle(GoToSection(state=answering(engine, 1, 1), index=0))

    assert result.state.cursor == (0, 0)
    assert result.notices == ()


def test_go_to_section_checks_only_up_to_current(survey_form):
    """Sections between the current one and the target are not checked"""
    engine = NavigationEngine(survey_form)
    state = answering(engine, returning='No')

    result = engine.handle(GoToSection(state=state, index=2))
    assert result.state.cursor == (2, 0)


def test_go_to_section_noop_cases(two_section_form):
    engine = NavigationEngine(two_section_form)
    state = answering(engine, 1, 1, q1='Ada')

    for index in (1, -1, 5):
        result = engine.handle(GoToSection(state=state, index=index))
        assert result.state == state
        assert result.changed is False


# ========================
# Submission
# ========================

def test_submit_blocked_relocates_to_first_offender(survey_form):
    engine = NavigationEngine(survey_form)
    state = answering(engine, 2, 0, returning='Yes')

    result = engine.handle(SubmitForm(state=state))

    assert result.state.cursor == (1, 0)
    assert result.state.validation_errors == ('rating',)
    assert result.notices == (SUBMIT_BLOCKED,)
    assert result.effects == ()


def test_submit_replaces_error_set(survey_form):
    engine = NavigationEngine(survey_form)
    state = dataclasses.replace(
        answering(engine, returning='Yes'),
        validation_errors=('returning', 'nps'),
    )

    result = engine.handle(SubmitForm(state=state))
    assert result.state.validation_errors == ('rating',)


def test_submit_emits_effect(survey_form):
    engine = NavigationEngine(survey_form)
    state = answering(engine, 1, 1, returning='No', rating=4)

    result = engine.handle(SubmitForm(state=state))

    assert result.changed is False
    assert result.state.phase == Phase.ANSWERING
    assert result.effects == (
        SubmitResponse(form_id='survey-1', answers={'returning': 'No', 'rating': 4}, attachments={}),
    )


def test_submit_hidden_required_question_blocks(make_form):
    """Hidden by a rule but required: submission is still blocked"""
    form = make_form([{'id': 's1', 'questions': [
        {'id': 'q1'},
        {'id': 'q2', 'required': True, 'conditionalLogic': [
            {'id': 'r1', 'sourceQuestionId': 'q1', 'condition': 'equals', 'value': 'skip',
             'action': 'hide'},
        ]},
    ]}])
    engine = NavigationEngine(form)
    state = answering(engine, q1='skip')

    assert engine.describe(state)[1].visible is False

    result = engine.handle(SubmitForm(state=state))
    assert result.state.validation_errors == ('q2',)
    assert result.effects == ()

    lenient = NavigationEngine(form, RuntimePolicy(skip_hidden_questions=True))
    assert len(lenient.handle(SubmitForm(state=state)).effects) == 1


def test_submit_empty_form(make_form):
    engine = NavigationEngine(make_form([{'id': 's1', 'questions': []}]))
    result = engine.handle(SubmitForm(state=answering(engine)))

    assert result.notices == (EMPTY_FORM,)
    assert result.effects == ()


# ========================
# Determinism and rendering
# ========================

def test_same_command_same_result(survey_form):
    engine = NavigationEngine(survey_form)
    commands = [
        NextQuestion(state=answering(engine)),
        GoToSection(state=answering(engine), index=2),
        SubmitForm(state=answering(engine, returning='No')),
        SetAnswer(state=answering(engine), question_id='nps', value='8'),
    ]

    for command in commands:
        assert engine.handle(command) == engine.handle(command)


def test_describe(survey_form):
    engine = NavigationEngine(survey_form)
    state = dataclasses.replace(answering(engine, returning='Yes'), validation_errors=('visits',))

    views = engine.describe(state)

    assert [v.question_id for v in views] == ['returning', 'visits']
    assert views[0].value == 'Yes'
    assert views[0].options == ('Yes', 'No')
    assert views[1].required is True
    assert views[1].visible is True
    assert views[1].has_error is True
    assert views[1].to_dict()['hasError'] is True


def test_section_status_and_progress(survey_form):
    engine = NavigationEngine(survey_form)
    state = answering(engine, 1, 0, returning='No')

    status = engine.section_status(state)

    assert [s['complete'] for s in status] == [True, False, True]
    assert [s['accessible'] for s in status] == [True, True, False]
    assert [s['current'] for s in status] == [False, True, False]
    # Show-only rule: the section stays visible while nothing matches
    assert status[2]['visible'] is True

    progress = engine.progress(state)
    assert progress['overall'] == 40.0
    assert progress['section'] == 50.0
