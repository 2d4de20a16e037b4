"""
Logic Resolver - effective visibility and requiredness from conditional logic

Responsibilities:
- Decide whether a question or section is visible for the current answers
- Decide whether a question is required (base flag or escalated by a rule)
- Report the jump target of a question (data only, no cursor effect)

Design principles:
- Stateless: all state comes from the answers mapping
- Deterministic: rules are evaluated in list order
- Side-effect free: the Navigation Engine owns cursor movement

Evaluation order:
- show/hide: first rule whose condition holds wins; no match means visible
- required: union over every required rule, no short circuit
- jump_to: first rule whose condition holds wins
"""

import logging
from typing import Iterable, List, Mapping, Optional, Sequence

from formflow.contracts import FormSection, Question, Rule
from formflow.core.condition_evaluator import evaluate

logger = logging.getLogger(__name__)

VISIBILITY_ACTIONS = ('show', 'hide')


def rule_holds(rule: Rule, answers: Mapping) -> bool:
    """
    Evaluate a rule's condition against its source question's answer.

    A rule pointing at a question that does not exist sees None, which
    normalises to '' and simply fails to match.
    """
    return evaluate(rule.condition, answers.get(rule.source_question_id), rule.value)


def _resolve_visibility(rules: Iterable[Rule], answers: Mapping) -> bool:
    # Phase 1: first show/hide rule whose condition holds decides.
    # Phase 2: nothing matched, so the owner is visible.
    #
    # Consequence for form authors: a show rule can never hide anything.
    # "Show Q2 if Q1 equals yes" leaves Q2 visible while Q1 is unanswered,
    # because no rule matches and the default is visible. Only hide rules
    # (or a hide rule ordered after a show rule) make something disappear.
    # Later rules are unreachable once an earlier one matches.
    for rule in rules:
        if rule.action not in VISIBILITY_ACTIONS:
            continue
        if rule_holds(rule, answers):
            return rule.action == 'show'
    return True


def is_visible(question: Question, answers: Mapping) -> bool:
    """
    Effective visibility of a question.

    Args:
        question: Question with optional conditional logic
        answers: question_id -> stored answer

    Returns:
        bool: True unless a hide rule is the first matching show/hide rule
    """
    if not question.conditional_logic:
        return True
    return _resolve_visibility(question.conditional_logic, answers)


def is_section_visible(section: FormSection, answers: Mapping) -> bool:
    """Effective visibility of a section (show/hide rules only)."""
    if not section.conditional_logic:
        return True
    return _resolve_visibility(section.conditional_logic, answers)


def is_required(question: Question, answers: Mapping) -> bool:
    """
    Effective requiredness of a question.

    The base flag wins immediately. Otherwise every required rule is
    checked and any match makes the question required.
    """
    if question.required:
        return True

    for rule in question.conditional_logic:
        if rule.action == 'required' and rule_holds(rule, answers):
            return True

    return False


def jump_target(question: Question, answers: Mapping) -> Optional[str]:
    """
    Target question id of the first matching jump_to rule.

    Returns:
        str or None if no jump_to rule matches (or the matching rule
        names no target)
    """
    for rule in question.conditional_logic:
        if rule.action != 'jump_to':
            continue
        if rule_holds(rule, answers):
            if not rule.target_question_id:
                logger.warning(f"jump_to rule {rule.id} on question {question.id} has no target")
            return rule.target_question_id or None
    return None


def visible_questions(questions: Sequence[Question], answers: Mapping) -> List[Question]:
    """Questions that are visible for the current answers, order preserved."""
    return [q for q in questions if is_visible(q, answers)]


def visible_sections(sections: Sequence[FormSection], answers: Mapping) -> List[FormSection]:
    """Sections that are visible for the current answers, order preserved."""
    return [s for s in sections if is_section_visible(s, answers)]

