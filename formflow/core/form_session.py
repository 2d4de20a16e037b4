"""
Form Session - runs navigation commands and performs their effects (Imperative Shell)

Responsibilities:
- Pass commands to the NavigationEngine
- Perform SubmitResponse effects against the response repository
- Turn store failures into notices instead of exceptions

Design principles:
- Holds no session state; state travels in and out with each command
- Thin orchestration layer (business logic in NavigationEngine)
- No retries: a failed save leaves the session answering so the
  respondent can submit again
"""

import logging
from typing import Union

from formflow.commands import ConfirmSubmission, SessionState
from formflow.persistence import PersistenceFailure
from formflow.results import IllegalCommand, Notice, SubmitResponse, TransitionResult

logger = logging.getLogger(__name__)

SAVE_FAILED = Notice(
    'error', 'Error',
    'An error occurred while submitting the form. Please try again.'
)


class FormSession:
    """
    Couples a NavigationEngine with a response repository.

    Functional core, imperative shell:
    - NavigationEngine decides (pure)
    - FormSession performs the writes the engine asks for
    """

    def __init__(self, engine, responses):
        """
        Args:
            engine: NavigationEngine instance (stateless, safe to cache)
            responses: ResponseRepository instance

        Raises:
            TypeError: If either module lacks the required interface
        """
        self._validate_modules(engine, responses)
        self.engine = engine
        self.responses = responses
        logger.info(f"Form session ready for form {engine.form.id}")

    def _validate_modules(self, engine, responses):
        """Validate module interfaces"""
        if not (hasattr(engine, 'handle') and callable(getattr(engine, 'handle', None))):
            raise TypeError("engine must have callable handle() method")

        if not (hasattr(engine, 'new_session') and callable(getattr(engine, 'new_session', None))):
            raise TypeError("engine must have callable new_session() method")

        if not (hasattr(responses, 'save_response') and callable(getattr(responses, 'save_response', None))):
            raise TypeError("responses must have callable save_response() method")

    def new_session(self) -> SessionState:
        return self.engine.new_session()

    def dispatch(self, command) -> Union[TransitionResult, IllegalCommand]:
        """
        Apply a command and perform any effect it produces.

        Returns:
            TransitionResult or IllegalCommand. A submission that the store
            accepted comes back in phase SUBMITTED; one it rejected comes
            back unchanged with an error notice.
        """
        result = self.engine.handle(command)

        if isinstance(result, IllegalCommand):
            logger.warning(f"Rejected {result.command_type}: {result.reason}")
            return result

        for effect in result.effects:
            if isinstance(effect, SubmitResponse):
                return self._submit(result, effect)

        return result

    def _submit(self, result: TransitionResult, effect: SubmitResponse):
        try:
            response_id = self.responses.save_response(
                effect.form_id, effect.answers, effect.attachments
            )
        except PersistenceFailure as e:
            logger.error(f"Error submitting form {effect.form_id}: {e}")
            return TransitionResult(
                state=result.state,
                notices=result.notices + (SAVE_FAILED,),
                changed=result.changed,
            )

        return self.engine.handle(ConfirmSubmission(state=result.state, response_id=response_id))
