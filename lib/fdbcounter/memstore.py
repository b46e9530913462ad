"""In-Memory Transactional Key-Value Store.

Provides MemoryDatabase, an in-process store offering the part of the
FoundationDB transaction interface the counter layer relies on:

     - ordered byte-string keys with forward and reverse range reads
     - snapshot reads, which never cause a transaction to conflict
     - read-your-writes within a transaction
     - optimistic concurrency, checked when a transaction commits
     - commits returning a future, optionally completed on an executor

Every committed version of every key is kept so that a transaction reads a
consistent view as of its read version, and the write set of every commit is
logged for conflict checks. None of this is ever pruned: memory grows with
the number of commits, and a commit scans the log from its read version
onward. Nothing is persisted; the store is meant for tests and short-lived
local use.

"""

import bisect
import collections
import concurrent.futures
import logging
import random
import threading
import time

from fdbcounter.errors import CommitFailed, CounterError, TransientConflict

logger = logging.getLogger(__name__)

RETRY_LIMIT = 100
BACKOFF_MIN = 0.0005 # seconds
BACKOFF_MAX = 0.05

KeyValue = collections.namedtuple('KeyValue', ['key', 'value'])


def _slice_bounds(s):
    begin = b'' if s.start is None else s.start
    end = b'\xff' if s.stop is None else s.stop
    return begin, end


class MemoryFuture(object):
    """Outcome of a commit, with the wait/on_ready surface of fdb.Future."""

    def __init__(self):
        self._future = concurrent.futures.Future()

    def _settle(self, error=None):
        if error is None:
            self._future.set_result(None)
        else:
            self._future.set_exception(error)

    def is_ready(self):
        return self._future.done()

    def block_until_ready(self):
        concurrent.futures.wait([self._future])

    def wait(self):
        return self._future.result()

    def on_ready(self, callback):
        # runs at once, in this thread, if the future has already settled
        self._future.add_done_callback(lambda _: callback(self))


class Snapshot(object):
    """Read methods of a transaction that add no read conflicts."""

    def __init__(self, tr):
        self._tr = tr

    def get(self, key):
        return self._tr._get(key, snapshot=True)

    def get_range(self, begin, end, limit=0, reverse=False):
        return self._tr._get_range(begin, end, limit, reverse, snapshot=True)

    def __getitem__(self, key):
        if isinstance(key, slice):
            return self.get_range(*_slice_bounds(key))
        return self.get(key)


class Transaction(object):

    def __init__(self, db):
        self.db = db
        self.snapshot = Snapshot(self)
        self._read_version = None
        self._read_keys = set()
        self._read_ranges = []
        self._writes = {} # key -> value, or None for a cleared key
        self._clears = []
        self._committed = False

    def _version(self):
        # taken lazily, so write-only transactions never hold a read version
        if self._read_version is None:
            self._read_version = self.db._current_version()
        return self._read_version

    def _cleared(self, key):
        for begin, end in self._clears:
            if begin <= key < end:
                return True
        return False

    def _get(self, key, snapshot):
        if not snapshot:
            self._read_keys.add(key)
        if key in self._writes:
            return self._writes[key]
        if self._cleared(key):
            return None
        return self.db._read(key, self._version())

    def _get_range(self, begin, end, limit, reverse, snapshot):
        if not snapshot:
            self._read_ranges.append((begin, end))
        found = dict((k, v) for k, v in self.db._read_range(begin, end, self._version())
                     if not self._cleared(k))
        for k, v in self._writes.items():
            if not begin <= k < end:
                continue
            if v is None:
                found.pop(k, None)
            else:
                found[k] = v
        keys = sorted(found, reverse=reverse)
        if limit:
            keys = keys[:limit]
        return [KeyValue(k, found[k]) for k in keys]

    def get(self, key):
        return self._get(key, snapshot=False)

    def get_range(self, begin, end, limit=0, reverse=False):
        return self._get_range(begin, end, limit, reverse, snapshot=False)

    def __getitem__(self, key):
        if isinstance(key, slice):
            return self.get_range(*_slice_bounds(key))
        return self.get(key)

    def set(self, key, value):
        self._writes[bytes(key)] = bytes(value)

    def __setitem__(self, key, value):
        self.set(key, value)

    def clear(self, key):
        self._writes[bytes(key)] = None

    def clear_range(self, begin, end):
        for key in [k for k in self._writes if begin <= k < end]:
            del self._writes[key]
        self._clears.append((begin, end))

    def __delitem__(self, key):
        if isinstance(key, slice):
            self.clear_range(*_slice_bounds(key))
        else:
            self.clear(key)

    def commit(self):
        """
        Start committing the transaction and return a MemoryFuture for the
        result. A conflict is reported through the future, never raised here.
        """
        if self._committed:
            raise CounterError('Transaction has already been committed')
        self._committed = True
        future = MemoryFuture()
        if self.db.executor is None:
            self.db._commit(self, future)
        else:
            self.db.executor.submit(self.db._commit, self, future)
        return future


class MemoryDatabase(object):
    """An in-process, multi-version key-value store."""

    def __init__(self, retry_limit=RETRY_LIMIT, executor=None):
        """
        Create an empty database.

        retry_limit bounds how many times run() retries a conflicting
        transaction (None retries forever). When executor is given, commits
        are carried out on it and commit() returns without waiting.
        """
        self.retry_limit = retry_limit
        self.executor = executor
        self._lock = threading.Lock()
        self._version = 0
        self._history = {} # key -> [(version, value or None)]
        self._live = [] # sorted keys holding a value at the latest version
        self._deleted = [] # (version, key), in commit order
        self._log = [] # (written keys, cleared ranges) of version i+1 at index i

    def __repr__(self):
        return 'MemoryDatabase(version=%d, keys=%d)' % (self._version, len(self._live))

    def create_transaction(self):
        return Transaction(self)

    def run(self, func, *args, **kwargs):
        """
        Call func(tr, *args, **kwargs) with a new transaction and commit it,
        retrying from scratch whenever the commit conflicts. Returns what
        func returned.
        """
        retries = 0
        while True:
            tr = self.create_transaction()
            try:
                result = func(tr, *args, **kwargs)
                tr.commit().wait()
                return result
            except TransientConflict as e:
                if self.retry_limit is not None and retries >= self.retry_limit:
                    raise CommitFailed('Transaction not committed after %d retries' % retries) from e
                retries += 1
                logger.debug('transaction conflicted, retry %d', retries)
                time.sleep(random.uniform(0, min(BACKOFF_MAX, BACKOFF_MIN * 2 ** retries)))

# private functions, called by Transaction

    def _current_version(self):
        with self._lock:
            return self._version

    def _value_at(self, key, version):
        for v, value in reversed(self._history.get(key, ())):
            if v <= version:
                return value
        return None

    def _read(self, key, version):
        with self._lock:
            return self._value_at(key, version)

    def _read_range(self, begin, end, version):
        with self._lock:
            keys = set(self._live[bisect.bisect_left(self._live, begin):
                                  bisect.bisect_left(self._live, end)])
            # keys deleted since version may still be visible at version
            for _, key in self._deleted[bisect.bisect_left(self._deleted, (version + 1,)):]:
                if begin <= key < end:
                    keys.add(key)
            result = []
            for key in sorted(keys):
                value = self._value_at(key, version)
                if value is not None:
                    result.append((key, value))
            return result

    def _conflicts(self, tr):
        if tr._read_version is None:
            return False
        if not tr._read_keys and not tr._read_ranges:
            return False
        for written, cleared in self._log[tr._read_version:]:
            for key in tr._read_keys:
                if key in written:
                    return True
                for begin, end in cleared:
                    if begin <= key < end:
                        return True
            for rbegin, rend in tr._read_ranges:
                for key in written:
                    if rbegin <= key < rend:
                        return True
                for begin, end in cleared:
                    if begin < rend and rbegin < end:
                        return True
        return False

    def _remove_live(self, key):
        i = bisect.bisect_left(self._live, key)
        if i < len(self._live) and self._live[i] == key:
            del self._live[i]

    def _apply(self, tr):
        self._version += 1
        version = self._version
        for begin, end in tr._clears:
            lo = bisect.bisect_left(self._live, begin)
            hi = bisect.bisect_left(self._live, end)
            for key in self._live[lo:hi]:
                self._history[key].append((version, None))
                self._deleted.append((version, key))
            del self._live[lo:hi]
        for key, value in tr._writes.items():
            history = self._history.setdefault(key, [])
            was_live = bool(history) and history[-1][1] is not None
            history.append((version, value))
            if value is None:
                if was_live:
                    self._remove_live(key)
                    self._deleted.append((version, key))
            elif not was_live:
                bisect.insort(self._live, key)
        self._log.append((frozenset(tr._writes), tuple(tr._clears)))

    def _commit(self, tr, future):
        error = None
        with self._lock:
            if self._conflicts(tr):
                error = TransientConflict('Transaction read keys written by a later commit')
            else:
                self._apply(tr)
        future._settle(error)
