"""Error taxonomy for the batch assignment engine.

Domain rule violations (invalid status transitions, unapproved orders) raise
protean's ValidationError and missing records raise ObjectNotFoundError, the
same way the rest of the domain does. The classes here cover the failures
that are specific to batching under concurrency and to storage.

Retryable errors leave the order unassigned; the periodic sweep picks it up
again later.
"""


class DispatchError(Exception):
    """Base class for engine failures."""

    retryable = False

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.context = context


class TransientContention(DispatchError):
    """A lock could not be taken in time, or batch creation lost a race twice."""

    retryable = True


class RepositoryUnavailable(DispatchError):
    """The underlying storage (or the order store) failed."""

    retryable = True


class CapacityExceeded(DispatchError):
    """A weight change would push a batch past its maximum capacity.

    Candidate search filters on capacity, so reaching this is a logic error.
    """


class BatchConflict(DispatchError):
    """Batch creation raced with a concurrent create or a freed candidate.

    Raised by repositories and handled inside the assignment engine.
    """

    retryable = True
