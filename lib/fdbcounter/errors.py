"""Exceptions raised by the counter layer and its stores."""


class CounterError(Exception):
    pass


class TransientConflict(CounterError):
    """A transaction conflicted with a concurrent commit and may be retried."""


class CommitFailed(CounterError):
    """A transaction could not be committed within the store's retry policy."""


class InvalidEncoding(CounterError, ValueError):
    """A stored value is not a valid 4-byte integer."""
