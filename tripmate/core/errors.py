"""
Application errors for clean API error handling.

Use ServiceUnavailableError when a dependency (vector store, embeddings, LLM)
is misconfigured or unreachable so the API can return 503 with a user-facing message.
"""


class ServiceUnavailableError(Exception):
    """Raised when a required service (e.g. vector store, embeddings API) is unavailable or misconfigured."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidRequestError(Exception):
    """Raised when a chat request body cannot be accepted. malformed_json separates bad JSON from bad fields."""

    def __init__(self, message: str, malformed_json: bool = False) -> None:
        self.message = message
        self.malformed_json = malformed_json
        super().__init__(message)


class OperationCancelled(Exception):
    """Raised at a suspension point when the request's cancellation token has fired."""
