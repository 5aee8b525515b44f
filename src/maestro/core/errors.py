"""Exceptions shared by the generation engine."""


class GenerationError(RuntimeError):
    """A generation could not complete.  Reported through the error callback."""


class TransportError(GenerationError):
    """The model endpoint could not be reached or the connection broke."""


class ProviderResponseError(GenerationError):
    """The model endpoint answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"Ollama error {status_code}: {body}")
        self.status_code = status_code
        self.body = body


class MalformedStreamError(GenerationError):
    """The response stream ended without a final record."""


class PlanParseError(RuntimeError):
    """The planner output is not a usable plan."""


class GenerationCancelled(Exception):
    """
    A generation was stopped by its cancellation token.

    Deliberately not a ``GenerationError``: a user-initiated stop is never reported as a failure.
    """
