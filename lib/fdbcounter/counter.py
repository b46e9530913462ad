"""FoundationDB High Contention Counter.

Provides the Counter class, which represents an integer value in the
database which can be incremented, added to, or subtracted from by many
clients at once without conflict.

"""

import functools
import logging
import os
import random
import threading

from fdbcounter.encoding import decode_int32, encode_int32
from fdbcounter.errors import InvalidEncoding
from fdbcounter.subspace import Subspace

logger = logging.getLogger(__name__)

COALESCE_PROBABILITY = 0.1 # chance that an add() is followed by a coalesce pass
COALESCE_LIMIT = 20 # shards merged by one coalesce pass, at most

_local = threading.local()

# Transactions of coalesce passes whose commits nobody waits on. Each one
# stays here until its commit settles, so it cannot be reclaimed (and its
# commit cancelled) while in flight.
_inflight = set()


def _thread_random():
    rng = getattr(_local, 'random', None)
    if rng is None:
        rng = _local.random = random.Random(os.urandom(16))
    return rng


def rand_id(rng):
    """Draw a shard id uniformly from the signed 32-bit range."""
    return rng.getrandbits(32) - 0x80000000


def transactional(func):
    """
    Run func(self, tr, ...) in the transaction passed as the tr keyword or,
    without one, in a new transaction on self.db that is retried until it
    commits.
    """
    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        tr = kwargs.pop('tr', None)
        if tr is not None:
            return func(self, tr, *args, **kwargs)
        return self.db.run(lambda tr: func(self, tr, *args, **kwargs))
    return wrapper


###########
# Counter #
###########

class Counter(object):
    """Represents an integer value which can be incremented without conflict.

    Uses a sharded representation (which scales with contention) along
    with background coalescing.

    """

    def __init__(self, db, subspace, rng=None,
                 coalesce_probability=COALESCE_PROBABILITY,
                 coalesce_limit=COALESCE_LIMIT):
        if not isinstance(subspace, Subspace):
            subspace = Subspace(subspace)
        self.db = db
        self.subspace = subspace
        self.rng = rng
        self.coalesce_probability = coalesce_probability
        self.coalesce_limit = coalesce_limit

    def __repr__(self):
        return 'Counter(%r)' % (self.subspace,)

    def _random(self):
        return self.rng if self.rng is not None else _thread_random()

    def _sum(self, shards):
        total = 0
        for k, v in shards:
            total += decode_int32(v)
        return total

    @transactional
    def _write_shard(self, tr, value, shard_id):
        tr[self.subspace.pack(shard_id)] = value

    def coalesce(self, limit):
        """
        Merge up to limit shards into one, preserving their sum.

        The commit is started but not waited on, and is not retried. Any
        failure means only that this pass did nothing; no error is ever
        raised. Returns the commit future, or None when nothing was
        committed.
        """
        if limit < 2:
            return None

        rng = self._random()
        try:
            tr = self.db.create_transaction()

            # read up to limit shards from a random place in id space
            loc = self.subspace.pack(rand_id(rng))
            r = self.subspace.range()
            if rng.random() < 0.5:
                shards = tr.snapshot.get_range(loc, r.stop, limit=limit)
            else:
                shards = tr.snapshot.get_range(r.start, loc, limit=limit, reverse=True)

            # remove read shards
            total = 0
            merged = 0
            for k, v in shards:
                total += decode_int32(v)
                tr[k] # real read for isolation
                del tr[k]
                merged += 1

            if merged < 2:
                return None

            tr[self.subspace.pack(rand_id(rng))] = encode_int32(total)
            c = tr.commit()
        except InvalidEncoding as e:
            logger.warning('coalesce of %r abandoned, corrupt shard: %s', self.subspace, e)
            return None
        except Exception as e:
            logger.debug('coalesce of %r abandoned: %s', self.subspace, e)
            return None

        logger.debug('coalescing %d shards of %r', merged, self.subspace)
        _inflight.add(tr)

        def settled(f, tr=tr):
            _inflight.discard(tr)
            try:
                f.wait()
            except Exception as e:
                logger.debug('coalesce commit of %r failed: %s', self.subspace, e)

        c.on_ready(settled)
        return c

    @transactional
    def get_transactional(self, tr):
        """Get the value of the counter.

        Not recommended for use with read/write transactions when the counter
        is being frequently updated (conflicts will be very likely).
        """
        return self._sum(tr[self.subspace.range()])

    @transactional
    def get_snapshot(self, tr):
        """
        Get the value of the counter with snapshot isolation (no
        transaction conflicts).
        """
        return self._sum(tr.snapshot[self.subspace.range()])

    @transactional
    def shard_count(self, tr):
        """Count the shards currently holding parts of the value."""
        return len(list(tr.snapshot[self.subspace.range()]))

    def add(self, x, tr=None):
        """
        Add the value x to the counter.

        x must fit in a signed 32-bit integer. Without tr, returns once the
        new shard is committed; with tr, the shard is written in tr and the
        caller commits it.
        """
        rng = self._random()
        self._write_shard(encode_int32(x), rand_id(rng), tr=tr)

        # Sometimes, coalesce the counter shards
        if rng.random() < self.coalesce_probability:
            self.coalesce(self.coalesce_limit)

    @transactional
    def set_total(self, tr, x):
        """Set the counter to value x.

        The current value is read with snapshot isolation, so the result is
        only exact when no other client updates the counter meanwhile.
        """
        value = self.get_snapshot(tr=tr)
        self.add(x - value, tr=tr)

    @transactional
    def clear(self, tr):
        """Delete every shard of the counter."""
        del tr[self.subspace.range()]


def new_counter(db, prefix):
    """Bind the keys starting with prefix (bytes or a Subspace) to a Counter."""
    return Counter(db, prefix)
