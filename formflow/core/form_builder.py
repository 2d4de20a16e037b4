"""
Form Builder - editing operations on the form design

Responsibilities:
- Add, update and remove sections and questions
- Attach conditional logic to questions and sections
- Pre-save checks (title, at least one question)
- Rule integrity checks and optional cycle detection

Design principles:
- Every operation returns a new Form; the input is never modified
- Refusals raise BuilderError (the builder UI turns them into notices)
- Rules stay plain data edges; nothing here assumes the rule graph is acyclic
"""

import dataclasses
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set

from formflow.contracts import Form, FormSection, Question, Rule
from formflow.utils.helpers import generate_id, utc_now

logger = logging.getLogger(__name__)

DEFAULT_SECTION_TITLE = 'Default section'
NEW_SECTION_TITLE = 'New section'


class BuilderError(Exception):
    """Builder refused an edit."""


@dataclass(frozen=True)
class RuleIssue:
    """
    One integrity problem in a form's conditional logic.

    Attributes:
        owner_id: Question or section carrying the rule
        rule_id: Offending rule
        problem: self_reference, unknown_source, missing_target, unknown_target
    """
    owner_id: str
    rule_id: str
    problem: str


# =============================================================================
# Form and sections
# =============================================================================

def new_form(title: str = '', description: str = '', owner_id: Optional[str] = None) -> Form:
    """Draft form with one empty default section."""
    now = utc_now()
    return Form(
        id=generate_id(),
        title=title,
        description=description,
        sections=(FormSection(id=generate_id(), title=DEFAULT_SECTION_TITLE),),
        owner_id=owner_id,
        created_at=now,
        updated_at=now,
    )


def add_section(form: Form, title: str = NEW_SECTION_TITLE) -> Form:
    section = FormSection(id=generate_id(), title=title)
    return dataclasses.replace(form, sections=form.sections + (section,))


def update_section(form: Form, section_id: str, **updates) -> Form:
    """
    Replace fields of one section (title, description, is_open, ...).

    Raises:
        BuilderError: If the section does not exist or a field is unknown
    """
    _section_index(form, section_id)
    if 'id' in updates or 'questions' in updates:
        raise BuilderError("Section id and questions are not editable through update_section")
    try:
        return _replace_section(form, section_id, lambda s: dataclasses.replace(s, **updates))
    except TypeError as e:
        raise BuilderError(str(e)) from e


def remove_section(form: Form, section_id: str) -> Form:
    """
    Raises:
        BuilderError: If this is the form's only section
    """
    _section_index(form, section_id)
    if len(form.sections) == 1:
        raise BuilderError("A form needs at least one section")
    return dataclasses.replace(form, sections=tuple(s for s in form.sections if s.id != section_id))


def toggle_section(form: Form, section_id: str) -> Form:
    _section_index(form, section_id)
    return _replace_section(form, section_id, lambda s: dataclasses.replace(s, is_open=not s.is_open))


# =============================================================================
# Questions
# =============================================================================

def add_question(form: Form, section_id: str, question: Optional[Question] = None) -> Form:
    """Append a question (default: optional, untitled text question)."""
    _section_index(form, section_id)
    question = question or Question(id=generate_id())
    if question.id in _question_ids(form):
        raise BuilderError(f"Duplicate question id '{question.id}'")
    return _replace_section(
        form, section_id, lambda s: dataclasses.replace(s, questions=s.questions + (question,))
    )


def update_question(form: Form, section_id: str, question_id: str, **updates) -> Form:
    """
    Replace fields of one question.

    Changing the type drops configuration that does not belong to the new
    type (options, rating or score settings).

    Raises:
        BuilderError: If the section/question does not exist or a field is unknown
    """
    _question_index(form, section_id, question_id)
    if 'id' in updates:
        raise BuilderError("Question id is not editable")

    def edit(question):
        try:
            updated = dataclasses.replace(question, **updates)
        except TypeError as e:
            raise BuilderError(str(e)) from e
        try:
            return Question.from_dict(updated.to_dict())
        except ValueError as e:
            raise BuilderError(str(e)) from e

    return _replace_question(form, section_id, question_id, edit)


def remove_question(form: Form, section_id: str, question_id: str) -> Form:
    _question_index(form, section_id, question_id)
    return _replace_section(
        form, section_id,
        lambda s: dataclasses.replace(s, questions=tuple(q for q in s.questions if q.id != question_id)),
    )


def set_question_logic(form: Form, question_id: str, rules: Sequence[Rule]) -> Form:
    """
    Replace a question's conditional logic.

    Raises:
        BuilderError: If the question does not exist or a rule tests the
            question's own answer
    """
    section_id = _owning_section(form, question_id)
    for rule in rules:
        if rule.source_question_id == question_id:
            raise BuilderError(f"Rule {rule.id} cannot depend on its own question")
    return _replace_question(
        form, section_id, question_id,
        lambda q: dataclasses.replace(q, conditional_logic=tuple(rules)),
    )


def set_section_logic(form: Form, section_id: str, rules: Sequence[Rule]) -> Form:
    """Replace a section's conditional logic (only show/hide take effect)."""
    _section_index(form, section_id)
    ignored = [r.id for r in rules if r.action not in ('show', 'hide')]
    if ignored:
        logger.warning(f"Section {section_id} rules {ignored} have no effect on sections")
    return _replace_section(
        form, section_id, lambda s: dataclasses.replace(s, conditional_logic=tuple(rules))
    )


# =============================================================================
# Checks
# =============================================================================

def validate_for_save(form: Form) -> List[str]:
    """
    Pre-save checks.

    Returns:
        list[str]: Error messages, empty if the form can be saved
    """
    errors = []
    if not form.title.strip():
        errors.append("Form title is required")
    if not any(section.questions for section in form.sections):
        errors.append("Add at least one question")
    if not form.sections:
        errors.append("A form needs at least one section")
    return errors


def check_rules(form: Form) -> List[RuleIssue]:
    """
    Find rules pointing at questions that do not exist or at their owner.

    Such rules are tolerated at runtime (they see an empty answer), so this is a
    reporting pass for the builder, not a gate.
    """
    question_ids = _question_ids(form)
    issues = []

    owners = [(q.id, q.conditional_logic) for s in form.sections for q in s.questions]
    owners += [(s.id, s.conditional_logic) for s in form.sections]

    for owner_id, rules in owners:
        for rule in rules:
            if rule.source_question_id == owner_id:
                issues.append(RuleIssue(owner_id, rule.id, 'self_reference'))
            elif rule.source_question_id not in question_ids:
                issues.append(RuleIssue(owner_id, rule.id, 'unknown_source'))

            if rule.action == 'jump_to':
                if not rule.target_question_id:
                    issues.append(RuleIssue(owner_id, rule.id, 'missing_target'))
                elif rule.target_question_id not in question_ids:
                    issues.append(RuleIssue(owner_id, rule.id, 'unknown_target'))

    return issues


def find_cycles(form: Form) -> List[List[str]]:
    """
    Optional cycle detection over the question rule graph.

    Edges:
        source question -> owner question   (owner depends on source's answer)
        owner question  -> jump target      (navigation edge)

    Returns:
        list[list[str]]: Each cycle as question ids, first id repeated at the
        end; empty when the graph is acyclic
    """
    graph: Dict[str, List[str]] = {q.id: [] for s in form.sections for q in s.questions}
    for section in form.sections:
        for question in section.questions:
            for rule in question.conditional_logic:
                if rule.source_question_id in graph:
                    graph[rule.source_question_id].append(question.id)
                if rule.action == 'jump_to' and rule.target_question_id in graph:
                    graph[question.id].append(rule.target_question_id)

    cycles = []
    seen_cycles: Set[frozenset] = set()
    visited: Set[str] = set()

    # Iterative depth-first search: rule chains can outgrow the recursion limit
    for start in graph:
        if start in visited:
            continue
        visited.add(start)
        path = [start]
        on_path = {start}
        pending = [iter(graph[start])]

        while pending:
            nxt = next(pending[-1], None)
            if nxt is None:
                pending.pop()
                on_path.discard(path.pop())
            elif nxt in on_path:
                cycle = path[path.index(nxt):] + [nxt]
                key = frozenset(cycle)
                if key not in seen_cycles:
                    seen_cycles.add(key)
                    cycles.append(cycle)
            elif nxt not in visited:
                visited.add(nxt)
                on_path.add(nxt)
                path.append(nxt)
                pending.append(iter(graph[nxt]))

    if cycles:
        logger.warning(f"Form {form.id} has {len(cycles)} rule cycle(s)")
    return cycles


# =============================================================================
# Helpers
# =============================================================================

def _question_ids(form: Form) -> Set[str]:
    return {q.id for s in form.sections for q in s.questions}


def _section_index(form: Form, section_id: str) -> int:
    for index, section in enumerate(form.sections):
        if section.id == section_id:
            return index
    raise BuilderError(f"Unknown section '{section_id}'")


def _question_index(form: Form, section_id: str, question_id: str) -> int:
    section = form.sections[_section_index(form, section_id)]
    for index, question in enumerate(section.questions):
        if question.id == question_id:
            return index
    raise BuilderError(f"Unknown question '{question_id}' in section '{section_id}'")


def _owning_section(form: Form, question_id: str) -> str:
    for section in form.sections:
        if any(q.id == question_id for q in section.questions):
            return section.id
    raise BuilderError(f"Unknown question '{question_id}'")


def _replace_section(form: Form, section_id: str, edit) -> Form:
    sections = tuple(edit(s) if s.id == section_id else s for s in form.sections)
    return dataclasses.replace(form, sections=sections, updated_at=utc_now())


def _replace_question(form: Form, section_id: str, question_id: str, edit) -> Form:
    return _replace_section(
        form, section_id,
        lambda s: dataclasses.replace(
            s, questions=tuple(edit(q) if q.id == question_id else q for q in s.questions)
        ),
    )
