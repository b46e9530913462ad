"""High contention counter layer for transactional key-value stores."""

from fdbcounter.counter import COALESCE_LIMIT, COALESCE_PROBABILITY, Counter, new_counter
from fdbcounter.errors import CommitFailed, CounterError, InvalidEncoding, TransientConflict
from fdbcounter.subspace import Subspace

__all__ = [
    'COALESCE_LIMIT',
    'COALESCE_PROBABILITY',
    'CommitFailed',
    'Counter',
    'CounterError',
    'InvalidEncoding',
    'Subspace',
    'TransientConflict',
    'new_counter',
]
