"""Engine error taxonomy.

Callers correct their input on ``ValidationError``, surface ``NotFoundError``
as-is, and decide retry policy themselves on ``StorageError``.
"""


class EngineError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(EngineError):
    """Input outside the accepted domain (ratings, effectiveness, id lists)."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class NotFoundError(EngineError):
    """A risk, framework or control identifier does not resolve."""

    def __init__(self, entity: str, identifier):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} {identifier!r} not found")


class StorageError(EngineError):
    """The storage collaborator failed; never retried inside the engine."""
