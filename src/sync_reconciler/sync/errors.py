"""Exception taxonomy for the reconciliation engine.

Object-level errors (``MappingError``, ``RuleError``, ``TransientError``
raised while handling one object) are caught by the engine and recorded as
``FAILED`` contract-log entries; they never abort a run.  ``RuleAbortRun``
is the only error that ends a run early.
"""

from __future__ import annotations


class ReconcileError(Exception):
    """Base class for all reconciliation errors."""


class TransientError(ReconcileError):
    """Source or target unreachable, timed out, or answered with a 5xx."""


class RateLimitedError(TransientError):
    """The remote side asked us to back off.

    Attributes:
        reset: Value of the ``X-RateLimit-Reset`` (or ``Retry-After``)
            header, when the remote supplied one.
    """

    def __init__(self, message: str, reset: str | int | None = None) -> None:
        super().__init__(message)
        self.reset = reset


class MappingError(ReconcileError):
    """A mapping step could not be applied to one object.

    Attributes:
        path: Dotted target path the failure relates to.
        cast: Name of the attempted cast, if the failure is a cast failure.
        value: The offending value.
    """

    def __init__(
        self,
        message: str,
        path: str | None = None,
        cast: str | None = None,
        value: object = None,
    ) -> None:
        super().__init__(message)
        self.path = path
        self.cast = cast
        self.value = value

    @classmethod
    def cast_failed(
        cls, path: str, cast: str, value: object
    ) -> "MappingError":
        shown = repr(value)
        if len(shown) > 80:
            shown = shown[:77] + "..."
        return cls(
            f"Cannot cast field '{path}' to {cast}: {shown}",
            path=path,
            cast=cast,
            value=value,
        )


class RuleError(ReconcileError):
    """A rule failed.  ``policy`` decides what happens to the object."""

    def __init__(
        self,
        message: str,
        rule_id: str | None = None,
        policy: str = "abort-object",
        code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.rule_id = rule_id
        self.policy = policy
        self.code = code


class RuleAbortRun(RuleError):
    """A rule with the ``abort-run`` policy failed; the run stops."""

    def __init__(
        self,
        message: str,
        rule_id: str | None = None,
        code: int | None = None,
    ) -> None:
        super().__init__(
            message, rule_id=rule_id, policy="abort-run", code=code
        )


class LockedError(ReconcileError):
    """The object is locked by another reconciliation."""


class ContractConflictError(ReconcileError):
    """A concurrent writer saved the same contract first."""


class ObjectNotFoundError(ReconcileError):
    """The provider does not know the requested object."""


class SynchronizationNotFoundError(ReconcileError):
    """No synchronization with the given id is configured."""
