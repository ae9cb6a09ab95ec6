"""Exception taxonomy for the daily content engine."""

from typing import Optional


class Love2LoveError(Exception):
    """Base class for every error raised by the engine."""


class SubmissionValidationError(Love2LoveError):
    """A response was rejected locally, before any network call."""


class EmptyInputError(SubmissionValidationError):
    def __init__(self):
        super().__init__("Response text is empty")


class NoActiveContentError(SubmissionValidationError):
    def __init__(self):
        super().__init__("No active content to respond to")


class NoUserError(SubmissionValidationError):
    def __init__(self):
        super().__init__("No user available to submit the response")


class ResponsesNotSupportedError(SubmissionValidationError):
    def __init__(self, kind: str):
        super().__init__(f"Content kind '{kind}' does not accept responses")


class CallableError(Love2LoveError):
    """A backend callable failed or answered with an unusable payload."""

    def __init__(self, function_name: str, message: str, status: Optional[str] = None):
        super().__init__(f"{function_name}: {message}")
        self.function_name = function_name
        self.message = message
        self.status = status


class GenerationError(CallableError):
    """The generation callable answered but reported failure."""


class SessionInitializationError(Love2LoveError):
    """The session cannot start, e.g. no identity could be resolved."""
