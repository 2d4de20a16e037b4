"""
Hierarchy utilities - section/question traversal, completeness and progress

Responsibilities:
- Flatten sections into one addressable question sequence
- Locate a question by id as (section_index, question_index)
- Section completeness and accessibility (forward gating)
- Overall and per-section progress

Design principles:
- Pure functions over already-loaded Form values
- Section indexes are 0-based list positions
- Out-of-range indexes are answered, never raised on

CRITICAL: completeness vs requiredness
- is_section_complete() looks at the base `required` flag only
- logic_resolver.is_required() also honours conditional escalation
- RuntimePolicy.conditional_required_in_sections switches completeness to
  the resolver's definition
"""

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from formflow.contracts import FormSection, Question
from formflow.core.logic_resolver import is_required
from formflow.utils.answers import is_answered
from formflow.utils.policy import DEFAULT_POLICY, RuntimePolicy


@dataclass(frozen=True)
class FlatQuestion:
    """A question tagged with the id of the section that owns it."""
    question: Question
    section_id: str

    @property
    def id(self) -> str:
        return self.question.id


def flatten(sections: Sequence[FormSection]) -> List[FlatQuestion]:
    """
    Concatenate every section's questions in section order.

    Args:
        sections: Ordered form sections

    Returns:
        list[FlatQuestion]: Questions tagged with their section id
    """
    return [
        FlatQuestion(question=question, section_id=section.id)
        for section in sections
        for question in section.questions
    ]


def regroup(flat: Sequence[FlatQuestion]) -> Dict[str, List[Question]]:
    """
    Inverse of flatten(): section_id -> questions, order preserved.

    Sections without questions do not appear in a flattened list, so they
    do not appear here either.
    """
    grouped: Dict[str, List[Question]] = {}
    for item in flat:
        grouped.setdefault(item.section_id, []).append(item.question)
    return grouped


def locate(sections: Sequence[FormSection], question_id: str) -> Optional[Tuple[int, int]]:
    """
    Find a question's cursor position.

    Returns:
        (section_index, question_index) or None if no section holds it
    """
    for section_index, section in enumerate(sections):
        for question_index, question in enumerate(section.questions):
            if question.id == question_id:
                return section_index, question_index
    return None


def section_index_of(sections: Sequence[FormSection], section_id: str) -> Optional[int]:
    for index, section in enumerate(sections):
        if section.id == section_id:
            return index
    return None


def required_questions(
    section: FormSection,
    answers: Mapping,
    policy: RuntimePolicy = DEFAULT_POLICY
) -> List[Question]:
    """Questions counted as required for section completeness."""
    if policy.conditional_required_in_sections:
        return [q for q in section.questions if is_required(q, answers)]
    return [q for q in section.questions if q.required]


def is_section_complete(
    section_index: int,
    sections: Sequence[FormSection],
    answers: Mapping,
    policy: RuntimePolicy = DEFAULT_POLICY
) -> bool:
    """
    Whether every required question in a section has an answer.

    A section with no required questions is trivially complete. An
    index outside the form is never complete.
    """
    if section_index < 0 or section_index >= len(sections):
        return False

    required = required_questions(sections[section_index], answers, policy)
    if not required:
        return True

    return all(is_answered(answers.get(q.id), q, policy) for q in required)


def is_section_accessible(
    section_index: int,
    current_section: int,
    sections: Sequence[FormSection],
    answers: Mapping,
    policy: RuntimePolicy = DEFAULT_POLICY
) -> bool:
    """
    Whether the respondent may open a section.

    Sections at or before the current one are always accessible. A later
    section needs every section before it complete, checked from section 0
    rather than just the immediate predecessor.
    """
    if section_index <= current_section:
        return True

    for i in range(section_index):
        if not is_section_complete(i, sections, answers, policy):
            return False

    return True


def overall_progress(
    current_section: int,
    current_question: int,
    sections: Sequence[FormSection],
    flat: Sequence[FlatQuestion]
) -> float:
    """
    Progress across the whole form as a percentage in [0, 100].

    Questions in every section before the current one count as done, plus
    the cursor's index within the active section.

    Returns:
        float: 0 when the form has no sections or no questions
    """
    if not sections:
        return 0.0

    total = len(flat)
    if total == 0:
        return 0.0

    completed = sum(len(s.questions) for s in sections[:max(current_section, 0)])

    in_section = 0
    if 0 <= current_section < len(sections) and sections[current_section].questions:
        in_section = max(current_question, 0)

    percentage = (completed + in_section) / total * 100
    return min(max(percentage, 0.0), 100.0)


def section_progress(current_question: int, section: FormSection) -> float:
    """Progress bar within the active section: (index + 1) / count * 100."""
    count = len(section.questions)
    if count == 0:
        return 0.0
    return min((current_question + 1) / count * 100, 100.0)
