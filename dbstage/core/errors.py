"""
Error taxonomy for stage construction and finalization.

UsageError and ConfigError are ValueErrors so callers that already catch
ValueError around parameter handling keep working.
"""


class StageError(Exception):
    """Base class for every error raised or delivered by dbstage."""

    pass


class UsageError(StageError, ValueError):
    """Bad SQL, bad parameters, a reused Stage, or a missing callback."""

    pass


class ConfigError(StageError, ValueError):
    """Null or malformed connection configuration."""

    pass


class DriverError(StageError):
    """Pool, connection, statement or transaction failure reported by the driver."""

    pass


class ShutdownError(StageError, RuntimeError):
    """Finalization attempted after curtains() was called."""

    pass
