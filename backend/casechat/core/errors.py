"""Exception hierarchy for the chat-session core.

Every failure an operation can report is one of these types, so callers
can tell "already ended" apart from "never existed". The API layer maps
them to HTTP responses in one place (see ``casechat.main``).
"""
from __future__ import annotations


class CaseChatError(Exception):
    """Base exception for all typed chat-session failures."""

    status_code = 500
    code = "error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(CaseChatError):
    """Session, model, scenario or evaluation does not exist."""

    status_code = 404
    code = "not_found"

    def __init__(self, kind: str, identifier: object):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class InvalidStateError(CaseChatError):
    """Operation is not valid from the session's current status."""

    status_code = 400
    code = "invalid_state"

    def __init__(self, session_id: str, status: str, action: str):
        self.session_id = session_id
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} chat {session_id} with status '{status}'")


class ConflictError(CaseChatError):
    """Duplicate completion, duplicate live session, or similar race."""

    status_code = 409
    code = "conflict"


class ValidationError(CaseChatError):
    """Malformed or out-of-range input."""

    status_code = 422
    code = "validation_error"


class UpstreamUnavailableError(CaseChatError):
    """An AI provider could not serve the request after the retry budget.

    ``message`` is safe to show to a student; the provider's own error text
    stays in ``detail`` and in the logs.
    """

    status_code = 503
    code = "upstream_unavailable"

    def __init__(self, message: str, detail: str | None = None):
        self.detail = detail
        super().__init__(message)


class ProviderCallError(Exception):
    """A single provider call failed.

    Raised by the model router after the failed call has been recorded.
    ``transient`` marks rate-limit, overload and connectivity failures that
    are worth one retry.
    """

    def __init__(self, provider: str, model_id: str, transient: bool, cause: BaseException):
        self.provider = provider
        self.model_id = model_id
        self.transient = transient
        self.cause = cause
        super().__init__(f"{provider} call for {model_id} failed: {cause}")
