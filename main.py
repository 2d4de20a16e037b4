"""
Console harness for the form runtime

Fill in a form from a JSON design file without the web layer.

Usage:
    python main.py path/to/form.json

Commands:
    <text>        answer the current question (checkbox: comma separated)
    n / next      next question
    p / prev      previous question
    g <i>         go to question i of this section
    s <i>         go to section i
    submit        validate and submit
    reset         start over
    quit          stop
"""

import json
import logging
import sys

from formflow.commands import (
    Phase, StartForm, NextQuestion, PrevQuestion, GoToQuestion, GoToSection,
    SetAnswer, SubmitForm, ResetForm,
)
from formflow.contracts import Form
from formflow.core.form_session import FormSession
from formflow.core.navigation import NavigationEngine
from formflow.persistence import JsonFileStore, ResponseRepository
from formflow.results import IllegalCommand

logging.basicConfig(
    level=logging.WARNING,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


def print_separator(char="=", length=60):
    """Print visual separator"""
    print(char * length)


def print_question(engine, state):
    """Show the question under the cursor with its section context"""
    if not engine.sections:
        print("\n(this form has no sections)")
        return

    section = engine.sections[state.section_index]
    question = engine.current_question(state)
    progress = engine.progress(state)

    print(f"\n[Section {state.section_index + 1}/{len(engine.sections)}: {section.title}]"
          f"  {progress['overall']:.0f}% complete")

    if question is None:
        print("(this section has no questions)")
        return

    view = next(v for v in engine.describe(state) if v.question_id == question.id)
    marker = " *" if view.required else ""
    hidden = "  (hidden)" if not view.visible else ""
    print(f"Q{state.question_index + 1}. {view.title}{marker}{hidden}")
    if view.options:
        print("   Options: " + " | ".join(view.options))
    if view.value not in (None, ''):
        print(f"   Current answer: {view.value}")
    if view.has_error:
        print("   ! This question needs an answer")


def print_notices(result):
    for notice in result.notices:
        print(f"\n[{notice.level.upper()}] {notice.title}: {notice.message}")


def parse_input(user_input, engine, state):
    """Map one console line to a command (None for unknown input)"""
    words = user_input.split()
    keyword = words[0].lower()

    if keyword in ('n', 'next'):
        return NextQuestion(state=state)
    if keyword in ('p', 'prev'):
        return PrevQuestion(state=state)
    if keyword == 'g' and len(words) == 2 and words[1].isdigit():
        return GoToQuestion(state=state, index=int(words[1]) - 1)
    if keyword == 's' and len(words) == 2 and words[1].isdigit():
        return GoToSection(state=state, index=int(words[1]) - 1)
    if keyword == 'submit':
        return SubmitForm(state=state)
    if keyword == 'reset':
        return ResetForm(state=state)

    question = engine.current_question(state)
    if question is None:
        return None

    value = user_input
    if question.type == 'checkbox':
        value = [part.strip() for part in user_input.split(',') if part.strip()]
    return SetAnswer(state=state, question_id=question.id, value=value)


def main(argv=None):
    """Run console session"""
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) != 1:
        print("Usage: python main.py path/to/form.json")
        return 1

    try:
        with open(argv[0], 'r', encoding='utf-8') as f:
            form = Form.from_dict(json.load(f))

        engine = NavigationEngine(form)
        session = FormSession(engine, ResponseRepository(JsonFileStore("outputs/store")))

    except (OSError, KeyError, TypeError, ValueError) as e:
        print(f"\nFailed to load form: {e}")
        return 1

    print_separator()
    print(form.title.upper() or "FORM")
    print_separator()
    if form.cover and form.cover.description:
        print(form.cover.description)
    elif form.description:
        print(form.description)

    # State is external - we hold it in this loop
    state = session.new_session()
    state = session.dispatch(StartForm(state=state)).state
    print_question(engine, state)

    while state.phase != Phase.SUBMITTED:
        try:
            user_input = input("> ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nSession interrupted by user")
            break

        if not user_input:
            continue
        if user_input.lower() in ('quit', 'exit', 'stop'):
            break

        command = parse_input(user_input, engine, state)
        if command is None:
            print("Unknown command")
            continue

        result = session.dispatch(command)
        if isinstance(result, IllegalCommand):
            print(f"\n[REJECTED] {result.reason}")
            continue

        state = result.state
        print_notices(result)

        # Answers keep the cursor where it is; move on after recording one
        if isinstance(command, SetAnswer):
            result = session.dispatch(NextQuestion(state=state))
            state = result.state
            print_notices(result)

        if state.phase == Phase.ANSWERING:
            print_question(engine, state)

    if state.phase == Phase.SUBMITTED:
        print_separator()
        print(f"RESPONSE STORED: {state.response_id}")
        print_separator()

    return 0


if __name__ == '__main__':
    sys.exit(main())
