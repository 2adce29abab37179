"""
Error taxonomy for the PostgreSQL module.

Every exception carries a ``kind`` so callers (the host HTTP layer) can map a
failure to a response without inspecting messages.
"""

from typing import Optional


class PostgresqlError(Exception):
    """Base exception for PostgreSQL module errors."""

    kind = "internal"


class CommandIllegalError(PostgresqlError):
    """Administrative input contains shell or statement metacharacters."""

    kind = "validation"

    def __init__(self, message: str = "ErrCmdIllegal: parameter contains illegal characters"):
        super().__init__(message)


class InvalidParamsError(PostgresqlError):
    """Request parameters are well-formed but not acceptable."""

    kind = "validation"


class RecordExistError(PostgresqlError):
    """A logical database with the same engine/name/origin already exists."""

    kind = "conflict"

    def __init__(self, message: str = "ErrRecordExist: record already exists"):
        super().__init__(message)


class RecordNotFoundError(PostgresqlError):
    """Engine instance, logical database, app install or file is missing."""

    kind = "not_found"


class StructTransformError(PostgresqlError):
    """A catalog row could not be mapped to its external representation."""

    kind = "transform"


class SecretError(PostgresqlError):
    """Stored secret could not be encrypted or decrypted."""

    kind = "internal"


class EngineError(PostgresqlError):
    """Administrative command or connection to the engine failed."""

    kind = "engine"


class EngineTimeoutError(EngineError):
    """Administrative command exceeded its timeout budget."""

    def __init__(self, operation: str, timeout: float):
        super().__init__(f"{operation} timed out after {timeout}s")
        self.operation = operation
        self.timeout = timeout


class PartialFailureError(PostgresqlError):
    """
    The engine-side change succeeded but a dependent step failed.

    The engine and the catalog (or linked app credentials) may now disagree;
    ``applied`` lists the linked app installs that were already rewritten.
    """

    kind = "partial_failure"

    def __init__(self, message: str, applied: Optional[list[str]] = None):
        super().__init__(message)
        self.applied = list(applied or [])
