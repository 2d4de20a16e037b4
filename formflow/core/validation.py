"""
Validation Engine - required-answer checks for one question or the whole form

Responsibilities:
- Check a single question before stepping forward
- Check every question of a section at the end of the section
- Check the whole flattened form before submission

Design principles:
- Returns reports, never raises
- Offender order follows the flattened question order
- Visibility is not consulted unless RuntimePolicy.skip_hidden_questions is set:
  a required question hidden by conditional logic still blocks submission
"""

import logging
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence, Tuple

from formflow.contracts import Question
from formflow.core.hierarchy import FlatQuestion
from formflow.core.logic_resolver import is_visible
from formflow.utils.answers import is_answered
from formflow.utils.policy import DEFAULT_POLICY, RuntimePolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationReport:
    """
    Outcome of whole-form validation.

    Attributes:
        valid_ids: Question ids that passed, flattened order
        invalid_ids: Question ids that failed, flattened order
        first_invalid: Earliest offender (for focus jumping), None if valid
    """
    valid_ids: Tuple[str, ...]
    invalid_ids: Tuple[str, ...]
    first_invalid: Optional[FlatQuestion] = None

    @property
    def is_valid(self) -> bool:
        return not self.invalid_ids


def validate_one(
    question: Optional[Question],
    answers: Mapping,
    policy: RuntimePolicy = DEFAULT_POLICY
) -> bool:
    """
    Check one question.

    Fails only when the question's base `required` flag is set and its answer
    is unanswered (None, '', [], or 0 under the default policy). A missing
    question (empty section) passes.
    """
    if question is None or not question.required:
        return True
    return is_answered(answers.get(question.id), question, policy)


def unanswered_required(
    questions: Sequence[Question],
    answers: Mapping,
    policy: RuntimePolicy = DEFAULT_POLICY
) -> List[str]:
    """Ids of required, unanswered questions in the given order."""
    return [q.id for q in questions if not validate_one(q, answers, policy)]


def validate_all(
    flat: Sequence[FlatQuestion],
    answers: Mapping,
    policy: RuntimePolicy = DEFAULT_POLICY
) -> ValidationReport:
    """
    Check every question of the flattened form.

    Args:
        flat: Output of hierarchy.flatten()
        answers: question_id -> stored answer
        policy: Runtime policy flags

    Returns:
        ValidationReport
    """
    valid_ids = []
    invalid_ids = []
    first_invalid = None

    for item in flat:
        if policy.skip_hidden_questions and not is_visible(item.question, answers):
            valid_ids.append(item.id)
            continue

        if validate_one(item.question, answers, policy):
            valid_ids.append(item.id)
        else:
            invalid_ids.append(item.id)
            if first_invalid is None:
                first_invalid = item

    if invalid_ids:
        logger.info(f"Validation failed for {len(invalid_ids)} question(s): {invalid_ids}")

    return ValidationReport(
        valid_ids=tuple(valid_ids),
        invalid_ids=tuple(invalid_ids),
        first_invalid=first_invalid,
    )
