"""
Error types shared by the care (health) and cleanup paths.

Two propagation classes run through the operator:
  - minor   -> retried by the polling loop until its deadline
  - severe  -> aborts the current check / cleanup stage immediately
"""

from typing import Dict, Optional


class ShootOperatorError(Exception):
    """Base error type for the shoot operator."""


class ConfigError(ShootOperatorError):
    """Raised when settings or annotations cannot be parsed."""


class MinorError(ShootOperatorError):
    """A recoverable failure; the polling loop retries the same operation."""

    def __init__(self, cause: Exception):
        super().__init__(str(cause))
        self.cause = cause


class SevereError(ShootOperatorError):
    """A fatal failure; the polling loop stops and re-raises the cause."""

    def __init__(self, cause: Exception):
        super().__init__(str(cause))
        self.cause = cause


class RetryTimeoutError(ShootOperatorError):
    """Raised when a polling loop hits its deadline. Carries the last-known error."""

    def __init__(self, last_error: Optional[Exception] = None):
        self.last_error = last_error
        if last_error is None:
            super().__init__("retry deadline exceeded")
        else:
            super().__init__(f"retry deadline exceeded, last error: {last_error}")


class ObjectsRemainingError(ShootOperatorError):
    """Raised by the cleaner while matching objects still exist."""

    def __init__(self, kind: str, names: list[str]):
        self.kind = kind
        self.names = sorted(names)
        shown = ", ".join(self.names[:10])
        if len(self.names) > 10:
            shown += f", ... ({len(self.names) - 10} more)"
        super().__init__(f"{len(self.names)} {kind} object(s) still remaining: {shown}")


class MultiError(ShootOperatorError):
    """Aggregates the errors of independently executed tasks, keyed by task name."""

    def __init__(self, errors: Dict[str, Exception]):
        self.errors = dict(errors)
        lines = [f"{name}: {err}" for name, err in sorted(self.errors.items())]
        super().__init__(f"{len(self.errors)} error(s) occurred:\n  * " + "\n  * ".join(lines))


class CleanupError(MultiError):
    """Raised when one or more cleanup stages did not converge."""

    @property
    def failed_stages(self) -> list[str]:
        return sorted(self.errors)


def is_objects_remaining(err: Exception) -> bool:
    """Unwrap retry wrappers and report whether objects were still remaining."""
    seen = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        if isinstance(err, ObjectsRemainingError):
            return True
        if isinstance(err, (MinorError, SevereError)):
            err = err.cause
        elif isinstance(err, RetryTimeoutError):
            err = err.last_error
        else:
            return False
    return False
