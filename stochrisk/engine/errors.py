"""Typed request errors raised by the engine.

Degenerate numerics are never errors: they surface as 0 / -inf / +inf
sentinels on the result objects. These exceptions are reserved for requests
the engine cannot serve at all and are non-retryable from the caller's side.
"""


class EngineError(Exception):
    """Base class for all engine request errors."""


class InvalidInputError(EngineError, ValueError):
    """Input violates a documented precondition (unknown enum value, too few models, ...)."""


class NotFoundError(EngineError, LookupError):
    """A lookup produced nothing to compute on (no matched records, unknown registry id)."""


class DegenerateInputError(InvalidInputError):
    """A single fit cannot be computed from the given data.

    Raised by individual model fits; selectors catch it, log a warning and
    drop the candidate instead of failing the whole request.
    """
