"""Custom exceptions for the conversation engine.

All exceptions are namespaced to avoid shadowing Python builtins
(``StreamTimeoutError`` rather than ``TimeoutError``, ``TransportError``
rather than ``ConnectionError``).

Pattern: Namespaced Custom Exceptions
"""

from typing import Any


class ChorusError(Exception):
    """Base exception for all engine errors.

    All engine exceptions inherit from this class to enable
    catching any engine error with a single except clause.
    """

    def __init__(self, message: str, model_id: str | None = None) -> None:
        """Initialize engine error.

        Args:
            message: Error description
            model_id: Model the error relates to, if any
        """
        self.model_id = model_id
        super().__init__(message)


class ConfigurationError(ChorusError):
    """Raised for respondent preconditions: unknown model id, empty respondent list.

    Fails the affected respondent only; other respondents proceed.
    """


class TransportError(ChorusError):
    """Raised when the streaming chat-completion call fails.

    Covers connection failures, non-2xx responses and error payloads
    delivered inside the event stream.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        model_id: str | None = None,
    ) -> None:
        """Initialize transport error.

        Args:
            message: Error description
            status_code: HTTP status code if applicable
            model_id: Model whose call failed
        """
        self.status_code = status_code
        super().__init__(message, model_id)


class StreamTimeoutError(ChorusError):
    """Raised when a call exceeds its budget.

    Distinct from Python's built-in TimeoutError to avoid
    exception shadowing.
    """

    def __init__(
        self,
        message: str,
        timeout_seconds: float | None = None,
        model_id: str | None = None,
    ) -> None:
        """Initialize timeout error.

        Args:
            message: Error description
            timeout_seconds: The budget that was exceeded
            model_id: Model whose call timed out
        """
        self.timeout_seconds = timeout_seconds
        super().__init__(message, model_id)


class InvalidStateTransitionError(ChorusError):
    """Raised when a response controller is driven through an invalid transition."""

    def __init__(self, message: str, from_state: str, to_state: str) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(message)


class ChatNotFoundError(ChorusError):
    """Raised when a conversation id is not present in the store."""

    def __init__(self, chat_id: str) -> None:
        self.chat_id = chat_id
        super().__init__(f"Chat with ID {chat_id} not found")


class DSLValidationError(ChorusError):
    """Raised when a DSL document fails parsing or validation.

    Attributes:
        errors: One dict per problem with ``field``, ``message`` and
            optionally ``phase`` (0-based).
    """

    def __init__(
        self,
        message: str,
        errors: list[dict[str, Any]] | None = None,
    ) -> None:
        self.errors = errors or []
        super().__init__(message)
