"""
Command types for NavigationEngine control flow.

Commands are the ONLY public interface to NavigationEngine.
Each command carries the session state it applies to; the engine holds
no session state between commands.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class Phase(str, Enum):
    """
    Session lifecycle phase.

    COVER:
        Splash screen. Only StartForm and ResetForm are accepted.

        Entry: New session, ResetForm
        Exit: StartForm -> ANSWERING

    ANSWERING:
        Respondent is moving through sections and answering.

        Entry: StartForm
        Exit: ConfirmSubmission -> SUBMITTED, ResetForm -> COVER

    SUBMITTED:
        Response stored. Only ResetForm is accepted.
    """
    COVER = "cover"
    ANSWERING = "answering"
    SUBMITTED = "submitted"


@dataclass(frozen=True)
class SessionState:
    """
    Immutable snapshot of one respondent's session.

    Transitions never mutate a state; they return a new one built with
    dataclasses.replace(). answers and attachments are copied on every
    transition, so holding on to an old state is safe.

    Attributes:
        form_id: Form being answered
        phase: Lifecycle phase
        section_index: Cursor section (0-based)
        question_index: Cursor question within the section (0-based)
        answers: question_id -> stored answer
        attachments: question_id -> attachment reference
        validation_errors: Offending question ids, first error first
        response_id: Id assigned by the store once submitted
    """
    form_id: str
    phase: Phase = Phase.COVER
    section_index: int = 0
    question_index: int = 0
    answers: Dict[str, Any] = field(default_factory=dict)
    attachments: Dict[str, str] = field(default_factory=dict)
    validation_errors: Tuple[str, ...] = ()
    response_id: Optional[str] = None

    @property
    def cursor(self) -> Tuple[int, int]:
        return self.section_index, self.question_index

    def to_json(self) -> dict:
        """
        Serialize to JSON-safe dict (deep copy).

        Returns:
            dict: Deep copy of the session state
        """
        return {
            'form_id': self.form_id,
            'phase': self.phase.value,
            'section_index': self.section_index,
            'question_index': self.question_index,
            'answers': copy.deepcopy(self.answers),
            'attachments': dict(self.attachments),
            'validation_errors': list(self.validation_errors),
            'response_id': self.response_id,
        }

    @staticmethod
    def from_json(data: dict) -> "SessionState":
        """
        Deserialize from JSON dict.

        Deep copies so no external reference can mutate the snapshot.

        Raises:
            KeyError: If form_id is missing
            ValueError: If phase is not a known phase
            TypeError: If answers or attachments is not an object
        """
        answers = data.get('answers') or {}
        attachments = data.get('attachments') or {}
        if not isinstance(answers, dict) or not isinstance(attachments, dict):
            raise TypeError("answers and attachments must be objects keyed by question id")

        return SessionState(
            form_id=data['form_id'],
            phase=Phase(data.get('phase', Phase.COVER.value)),
            section_index=int(data.get('section_index', 0)),
            question_index=int(data.get('question_index', 0)),
            answers=copy.deepcopy(answers),
            attachments=dict(attachments),
            validation_errors=tuple(data.get('validation_errors') or ()),
            response_id=data.get('response_id'),
        )


# Command types

@dataclass(frozen=True)
class StartForm:
    """Dismiss the cover screen. Cursor unchanged."""
    state: SessionState


@dataclass(frozen=True)
class NextQuestion:
    """
    Step forward.

    Validates the current question; at the end of a section validates the
    whole section before moving to the next one.
    """
    state: SessionState


@dataclass(frozen=True)
class PrevQuestion:
    """Step back, crossing into the previous section's last question."""
    state: SessionState


@dataclass(frozen=True)
class GoToQuestion:
    """Jump within the current section. Out-of-range indexes are ignored."""
    state: SessionState
    index: int


@dataclass(frozen=True)
class GoToSection:
    """
    Open another section.

    Backward moves always succeed; forward moves need every section up to
    and including the current one complete.
    """
    state: SessionState
    index: int


@dataclass(frozen=True)
class SetAnswer:
    """Record an answer. value is coerced to the question type's shape."""
    state: SessionState
    question_id: str
    value: Any


@dataclass(frozen=True)
class SetAttachment:
    """Record (or clear, with None) an uploaded attachment reference."""
    state: SessionState
    question_id: str
    reference: Optional[str]


@dataclass(frozen=True)
class SubmitForm:
    """
    Validate the whole form.

    Returns: TransitionResult with a SubmitResponse effect on success.
    The phase only changes on ConfirmSubmission.
    """
    state: SessionState


@dataclass(frozen=True)
class ConfirmSubmission:
    """The store accepted the response; move to SUBMITTED."""
    state: SessionState
    response_id: str


@dataclass(frozen=True)
class ResetForm:
    """Clear answers, attachments and errors; back to the cover."""
    state: SessionState


# Command union type for type hints
Command = (
    StartForm | NextQuestion | PrevQuestion | GoToQuestion | GoToSection
    | SetAnswer | SetAttachment | SubmitForm | ConfirmSubmission | ResetForm
)
