"""Validation and submission of chat responses."""

from config import DEFAULT_USER_NAME, get_logger
from errors import EmptyInputError, NoActiveContentError, NoUserError, ResponsesNotSupportedError
from models import SubmissionResult, SubmitResponseRequest
from sync_listeners import RealtimeSyncListeners

logger = get_logger(__name__)


class ResponseSubmitter:
    """Submits responses to the current content through the backend callable.

    The client never writes response documents itself, so ``respondedAt`` is
    always assigned by the server.
    """

    def __init__(self, functions_client, listeners: RealtimeSyncListeners, identity_provider):
        self.functions_client = functions_client
        self.listeners = listeners
        self.identity_provider = identity_provider

    def build_request(self, text: str) -> SubmitResponseRequest:
        """Validate a submission locally.

        Raises:
            ResponsesNotSupportedError: If this content kind has no responses
            EmptyInputError: If the trimmed text is empty
            NoUserError: If no identity can be resolved
            NoActiveContentError: If there is no current content
        """
        if not self.listeners.kind.supports_responses:
            raise ResponsesNotSupportedError(self.listeners.kind.value)

        trimmed = (text or "").strip()
        if not trimmed:
            raise EmptyInputError()

        identity = self.identity_provider.current_identity()
        if identity is None:
            raise NoUserError()

        current = self.listeners.snapshot.current_content
        if current is None or not current.id:
            raise NoActiveContentError()

        return SubmitResponseRequest(
            content_id=current.id,
            text=trimmed,
            user_name=identity.display_name or DEFAULT_USER_NAME,
            user_id=identity.user_id,
        )

    async def submit(self, text: str) -> SubmissionResult:
        """Submit a response for the current content.

        Raises:
            SubmissionValidationError: On local validation failure, without a network call
            CallableError: If the submission callable fails
        """
        request = self.build_request(text)
        couple_id = self.listeners.couple_id
        identity = self.identity_provider.current_identity()

        result = await self.functions_client.submit_response(request, identity.id_token if identity else None)

        if self.listeners.couple_id != couple_id:
            logger.warning(f"Response {result.response_id} acknowledged after couple {couple_id} was detached")
        elif result.success:
            logger.info(f"Response submitted for content: {request.content_id}")
        else:
            logger.warning(f"Response submission rejected for content: {request.content_id}")
        return result
