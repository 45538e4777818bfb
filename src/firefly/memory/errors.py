"""Error types raised by the memory engine."""


class FireflyMemoryError(Exception):
    """Base class for memory engine errors."""


class ValidationError(FireflyMemoryError, ValueError):
    """A candidate operation or query parameter is malformed.

    Raised before anything touches the store.
    """

    def __init__(self, message: str, errors: list[dict] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class StoreError(FireflyMemoryError):
    """The persistence layer failed.

    The underlying exception is available as `__cause__`.
    """

    def __init__(self, message: str, operation: str | None = None) -> None:
        super().__init__(message)
        self.operation = operation


class CapabilityError(FireflyMemoryError):
    """An external capability (embeddings, chat completion) is unavailable."""
