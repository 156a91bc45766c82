"""
Exceptions raised by the completion request pipeline.
The session store turns them into assistant-message state; the API layer
turns the rest into HTTP responses.
"""


class ChatRequestError(Exception):
    """Base exception for all completion request errors."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class UnauthorizedError(ChatRequestError):
    """Raised when the upstream rejects our credentials (HTTP 401)."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, status_code=401)


class StreamError(ChatRequestError):
    """Raised for non-success responses and transport failures."""
    pass


class RequestTimeoutError(StreamError):
    """Raised when no response headers arrive within the request timeout."""
    pass


class AbortedError(ChatRequestError):
    """Raised when a request is cancelled through its handle."""

    def __init__(self, message: str = "The request was aborted"):
        super().__init__(message)


class StreamParseError(ChatRequestError):
    """Raised when unparsable stream data exceeds the reassembly bound."""
    pass


class SummarizationError(Exception):
    """Raised when a background topic or memory summarization fails."""
    pass
