"""
Navigation Engine - section-gated cursor state machine (Functional Core)

Responsibilities:
- Move the (section, question) cursor in response to commands
- Gate forward motion on required answers
- Record validation errors for the rendering layer
- Emit the submission effect once the whole form validates

Design principles:
- Command in, TransitionResult out; no session state held between commands
- Every failure is local: a no-op, an IllegalCommand, or errors + a notice
- Never raises for well-typed commands
- The state a command carries is re-checked against the form: a cursor
  outside it, or answers that SetAnswer would refuse, give IllegalCommand
- Visibility is exposed for rendering but does not steer the cursor

Transitions (phase ANSWERING unless noted):
- StartForm          COVER -> ANSWERING, cursor unchanged
- NextQuestion       validate current; step, or validate section and cross
- PrevQuestion       step back, crossing into the previous section's last question
- GoToQuestion(i)    within current section; out of range ignored
- GoToSection(i)     backward always; forward gated on sections 0..current
- SubmitForm         validate all; relocate to first offender or emit SubmitResponse
- ConfirmSubmission  -> SUBMITTED
- ResetForm          any phase -> COVER with a fresh state
"""

import dataclasses
import logging
from typing import List, Optional, Tuple, Union

from formflow.commands import (
    Phase, SessionState, StartForm, NextQuestion, PrevQuestion, GoToQuestion,
    GoToSection, SetAnswer, SetAttachment, SubmitForm, ConfirmSubmission, ResetForm,
)
from formflow.contracts import Form, Question, QuestionView
from formflow.core.hierarchy import (
    flatten, locate, is_section_complete, is_section_accessible, required_questions,
    overall_progress, section_progress,
)
from formflow.core.logic_resolver import is_visible, is_required, is_section_visible, jump_target
from formflow.core.validation import validate_one, validate_all
from formflow.results import IllegalCommand, Notice, SubmitResponse, TransitionResult
from formflow.utils.answers import coerce_answer, is_answered
from formflow.utils.policy import DEFAULT_POLICY, RuntimePolicy

logger = logging.getLogger(__name__)


REQUIRED_QUESTION = Notice(
    'error', 'Required question',
    'Please answer this question before continuing.'
)
REQUIRED_SECTION = Notice(
    'error', 'Required questions',
    'Please answer all required questions before moving on.'
)
SECTION_LOCKED = Notice(
    'warning', 'Complete the current section',
    'Please answer all required questions before moving to the next section.'
)
SUBMIT_BLOCKED = Notice(
    'error', 'Required questions',
    'Please answer all required questions before submitting the form.'
)
EMPTY_FORM = Notice('error', 'Error', 'This form has no questions.')
SUBMITTED = Notice('info', 'Success!', 'Form submitted successfully.')


class NavigationEngine:
    """
    Cursor state machine for one form.

    Functional core design:
    - The form and policy are cached (immutable)
    - handle() transforms the state carried by the command deterministically
    - Identical commands always produce identical results
    """

    # Phases in which each command is accepted
    ALLOWED_PHASES = {
        StartForm: (Phase.COVER,),
        NextQuestion: (Phase.ANSWERING,),
        PrevQuestion: (Phase.ANSWERING,),
        GoToQuestion: (Phase.ANSWERING,),
        GoToSection: (Phase.ANSWERING,),
        SetAnswer: (Phase.ANSWERING,),
        SetAttachment: (Phase.ANSWERING,),
        SubmitForm: (Phase.ANSWERING,),
        ConfirmSubmission: (Phase.ANSWERING,),
        ResetForm: (Phase.COVER, Phase.ANSWERING, Phase.SUBMITTED),
    }

    def __init__(self, form: Form, policy: RuntimePolicy = DEFAULT_POLICY):
        """
        Initialize engine for a loaded form.

        Args:
            form: Form with its sections and questions
            policy: Runtime policy flags

        Raises:
            TypeError: If form is not a Form
        """
        if not isinstance(form, Form):
            raise TypeError("form must be a formflow.contracts.Form")

        self.form = form
        self.policy = policy
        self.sections = form.sections
        self.flat = flatten(form.sections)
        self._questions = {item.id: item.question for item in self.flat}

        logger.info(
            f"Navigation engine ready for form {form.id} "
            f"({len(self.sections)} sections, {len(self.flat)} questions)"
        )

    # =========================================================================
    # Public API
    # =========================================================================

    def new_session(self) -> SessionState:
        """Fresh session on the cover screen with the cursor at (0, 0)."""
        return SessionState(form_id=self.form.id)

    def handle(self, command) -> Union[TransitionResult, IllegalCommand]:
        """
        Apply one command.

        Args:
            command: Any formflow.commands command

        Returns:
            TransitionResult, or IllegalCommand if the command does not
            apply to this form or phase
        """
        command_type = type(command).__name__
        allowed = self.ALLOWED_PHASES.get(type(command))

        if allowed is None:
            return IllegalCommand(reason=f"Unknown command {command_type}", command_type=command_type)

        state = command.state
        if state.form_id != self.form.id:
            return IllegalCommand(
                reason=f"State belongs to form {state.form_id}, not {self.form.id}",
                command_type=command_type,
            )

        if state.phase not in allowed:
            return IllegalCommand(
                reason=f"{command_type} not allowed in phase '{state.phase.value}'",
                command_type=command_type,
            )

        # Reset discards the state, so it is the one way out of a bad one
        if not isinstance(command, ResetForm):
            checked, reason = self._check_state(state)
            if checked is None:
                return IllegalCommand(reason=reason, command_type=command_type)
            if checked is not state:
                command = dataclasses.replace(command, state=checked)

        handler = getattr(self, f"_handle_{_snake(command_type)}")
        return handler(command)

    def current_question(self, state: SessionState) -> Optional[Question]:
        """Question under the cursor, None for an empty section."""
        questions = self._section_questions(state.section_index)
        if 0 <= state.question_index < len(questions):
            return questions[state.question_index]
        return None

    def describe(self, state: SessionState) -> List[QuestionView]:
        """
        Rendering contract for every question of the active section.

        Returns:
            list[QuestionView]: One view per question, section order
        """
        views = []
        for question in self._section_questions(state.section_index):
            views.append(QuestionView(
                question_id=question.id,
                type=question.type,
                title=question.title,
                visible=is_visible(question, state.answers),
                required=is_required(question, state.answers),
                value=state.answers.get(question.id),
                has_error=question.id in state.validation_errors,
                options=question.options,
                allow_attachments=question.allow_attachments,
                attachment=state.attachments.get(question.id),
            ))
        return views

    def section_status(self, state: SessionState) -> List[dict]:
        """Per-section flags for a section navigator."""
        return [
            {
                'index': index,
                'id': section.id,
                'title': section.title,
                'visible': is_section_visible(section, state.answers),
                'complete': is_section_complete(index, self.sections, state.answers, self.policy),
                'accessible': is_section_accessible(
                    index, state.section_index, self.sections, state.answers, self.policy
                ),
                'current': index == state.section_index,
            }
            for index, section in enumerate(self.sections)
        ]

    def progress(self, state: SessionState) -> dict:
        """Overall and in-section progress percentages."""
        section_pct = 0.0
        if 0 <= state.section_index < len(self.sections):
            section_pct = section_progress(state.question_index, self.sections[state.section_index])
        return {
            'overall': overall_progress(state.section_index, state.question_index, self.sections, self.flat),
            'section': section_pct,
        }

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _handle_start_form(self, command: StartForm) -> TransitionResult:
        return self._result(command.state, phase=Phase.ANSWERING)

    def _handle_reset_form(self, command: ResetForm) -> TransitionResult:
        fresh = self.new_session()
        return TransitionResult(state=fresh, changed=fresh != command.state)

    def _handle_confirm_submission(self, command: ConfirmSubmission) -> TransitionResult:
        logger.info(f"Response {command.response_id} stored for form {self.form.id}")
        return self._result(
            command.state,
            notices=(SUBMITTED,),
            phase=Phase.SUBMITTED,
            response_id=command.response_id,
        )

    # =========================================================================
    # Answers
    # =========================================================================

    def _handle_set_answer(self, command: SetAnswer):
        question = self._questions.get(command.question_id)
        if question is None:
            return IllegalCommand(
                reason=f"Unknown question {command.question_id}",
                command_type='SetAnswer',
            )

        try:
            value = coerce_answer(question, command.value)
        except ValueError as e:
            return IllegalCommand(reason=str(e), command_type='SetAnswer')

        state = command.state
        answers = dict(state.answers)
        if value is None:
            answers.pop(question.id, None)
        else:
            answers[question.id] = value

        errors = state.validation_errors
        if is_answered(value, question, self.policy) and question.id in errors:
            errors = tuple(e for e in errors if e != question.id)

        return self._result(state, answers=answers, validation_errors=errors)

    def _handle_set_attachment(self, command: SetAttachment):
        question = self._questions.get(command.question_id)
        if question is None or not question.allow_attachments:
            return IllegalCommand(
                reason=f"Question {command.question_id} does not accept attachments",
                command_type='SetAttachment',
            )

        attachments = dict(command.state.attachments)
        if command.reference is None:
            attachments.pop(question.id, None)
        else:
            attachments[question.id] = command.reference

        return self._result(command.state, attachments=attachments)

    # =========================================================================
    # Cursor movement
    # =========================================================================

    def _handle_next_question(self, command: NextQuestion) -> TransitionResult:
        state = command.state
        current = self.current_question(state)

        if not validate_one(current, state.answers, self.policy):
            return self._result(
                state,
                notices=(REQUIRED_QUESTION,),
                validation_errors=_merge(state.validation_errors, [current.id]),
            )

        if self.policy.follow_jump_rules and current is not None:
            target = jump_target(current, state.answers)
            if target is not None:
                jumped = self._jump(state, target)
                if jumped is not None:
                    return jumped

        return self._step_forward(state)

    def _step_forward(self, state: SessionState) -> TransitionResult:
        questions = self._section_questions(state.section_index)

        if state.question_index < len(questions) - 1:
            return self._result(state, question_index=state.question_index + 1)

        # Last question of the section: the whole section must be satisfied
        section = None
        if 0 <= state.section_index < len(self.sections):
            section = self.sections[state.section_index]
        missing = []
        if section is not None:
            missing = [
                q.id for q in required_questions(section, state.answers, self.policy)
                if not is_answered(state.answers.get(q.id), q, self.policy)
            ]

        if missing:
            first_index = next(i for i, q in enumerate(questions) if q.id in missing)
            return self._result(
                state,
                notices=(REQUIRED_SECTION,),
                question_index=first_index,
                validation_errors=_merge(state.validation_errors, missing),
            )

        if state.section_index < len(self.sections) - 1:
            return self._result(state, section_index=state.section_index + 1, question_index=0)

        # Last section: hold the cursor, submission is the way forward
        return self._result(state)

    def _jump(self, state: SessionState, target_id: str) -> Optional[TransitionResult]:
        position = locate(self.sections, target_id)
        if position is None:
            logger.warning(f"Jump target {target_id} is not in form {self.form.id}")
            return None

        section_index, question_index = position
        if section_index > state.section_index and not self._forward_allowed(state):
            return self._result(state, notices=(SECTION_LOCKED,))

        return self._result(state, section_index=section_index, question_index=question_index)

    def _handle_prev_question(self, command: PrevQuestion) -> TransitionResult:
        state = command.state

        if state.question_index > 0:
            return self._result(state, question_index=state.question_index - 1)

        if state.section_index > 0:
            previous = self._section_questions(state.section_index - 1)
            return self._result(
                state,
                section_index=state.section_index - 1,
                question_index=max(len(previous) - 1, 0),
            )

        return self._result(state)

    def _handle_go_to_question(self, command: GoToQuestion) -> TransitionResult:
        state = command.state
        questions = self._section_questions(state.section_index)

        if 0 <= command.index < len(questions):
            return self._result(state, question_index=command.index)

        return self._result(state)

    def _handle_go_to_section(self, command: GoToSection) -> TransitionResult:
        state = command.state
        target = command.index

        if target < 0 or target >= len(self.sections) or target == state.section_index:
            return self._result(state)

        if target > state.section_index and not self._forward_allowed(state):
            return self._result(state, notices=(SECTION_LOCKED,))

        return self._result(state, section_index=target, question_index=0)

    def _forward_allowed(self, state: SessionState) -> bool:
        # Sections 0..current inclusive must be complete; sections between
        # current and the target are not checked
        return all(
            is_section_complete(i, self.sections, state.answers, self.policy)
            for i in range(state.section_index + 1)
        )

    # =========================================================================
    # Submission
    # =========================================================================

    def _handle_submit_form(self, command: SubmitForm) -> TransitionResult:
        state = command.state

        if not self.flat:
            return self._result(state, notices=(EMPTY_FORM,))

        report = validate_all(self.flat, state.answers, self.policy)

        if not report.is_valid:
            changes = {'validation_errors': report.invalid_ids}
            position = locate(self.sections, report.first_invalid.id)
            if position is not None:
                changes['section_index'], changes['question_index'] = position
            return self._result(state, notices=(SUBMIT_BLOCKED,), **changes)

        effect = SubmitResponse(
            form_id=self.form.id,
            answers=dict(state.answers),
            attachments=dict(state.attachments),
        )
        return TransitionResult(state=state, effects=(effect,), changed=False)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _check_state(self, state: SessionState) -> Tuple[Optional[SessionState], Optional[str]]:
        """
        Re-check a state that came back from the client.

        The cursor must point into this form (an empty section or form only
        allows index 0), every answer and attachment must belong to one of
        its questions, and answers are coerced to their stored shapes the
        same way SetAnswer does.

        Returns:
            (state, None) with answers coerced, or (None, reason)
        """
        if not 0 <= state.section_index < max(len(self.sections), 1):
            return None, f"Section index {state.section_index} is outside form {self.form.id}"

        questions = self._section_questions(state.section_index)
        if not 0 <= state.question_index < max(len(questions), 1):
            return None, (
                f"Question index {state.question_index} is outside "
                f"section {state.section_index} of form {self.form.id}"
            )

        answers = {}
        for q_id, value in state.answers.items():
            question = self._questions.get(q_id)
            if question is None:
                return None, f"Answer for unknown question {q_id}"
            try:
                answers[q_id] = coerce_answer(question, value)
            except ValueError as e:
                return None, str(e)

        for q_id, reference in state.attachments.items():
            question = self._questions.get(q_id)
            if question is None or not question.allow_attachments:
                return None, f"Question {q_id} does not accept attachments"
            if not isinstance(reference, str):
                return None, f"Attachment for question {q_id} must be a reference string"

        unknown = [q_id for q_id in state.validation_errors if q_id not in self._questions]
        if unknown:
            return None, f"Validation errors name unknown questions {unknown}"

        if answers == state.answers:
            return state, None
        return dataclasses.replace(state, answers=answers), None

    def _section_questions(self, section_index: int) -> Tuple[Question, ...]:
        if 0 <= section_index < len(self.sections):
            return self.sections[section_index].questions
        return ()

    def _result(self, state: SessionState, notices=(), **changes) -> TransitionResult:
        new_state = dataclasses.replace(state, **changes) if changes else state
        return TransitionResult(state=new_state, notices=tuple(notices), changed=new_state != state)


def _merge(errors: Tuple[str, ...], new_ids) -> Tuple[str, ...]:
    """Append ids to the error set, keeping first-seen order and no duplicates."""
    merged = list(errors)
    for q_id in new_ids:
        if q_id not in merged:
            merged.append(q_id)
    return tuple(merged)


def _snake(name: str) -> str:
    out = []
    for i, ch in enumerate(name):
        if ch.isupper() and i:
            out.append('_')
        out.append(ch.lower())
    return ''.join(out)
