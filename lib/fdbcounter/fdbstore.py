"""FoundationDB store for the counter layer.

Opens a FoundationDB database and wraps it in FDBDatabase, which adds the
run() entry point the counter uses for managed retry. Transactions handed
out are plain fdb transactions.

Importing this module selects the FoundationDB API version, which loads
the FoundationDB client library.

"""

import logging
import os

import fdb
import fdb.tuple

from fdbcounter.errors import CommitFailed
from fdbcounter.subspace import Subspace

API_VERSION = int(os.getenv("FDBCOUNTER_API_VERSION", 630))
RETRY_LIMIT = int(os.getenv("FDBCOUNTER_RETRY_LIMIT", 100))
TIMEOUT_MS = int(os.getenv("FDBCOUNTER_TIMEOUT_MS", 0)) # 0 disables the timeout

fdb.api_version(API_VERSION)

logger = logging.getLogger(__name__)


class FDBDatabase(object):

    def __init__(self, db):
        self.db = db

    def __repr__(self):
        return 'FDBDatabase(%r)' % (self.db,)

    def create_transaction(self):
        return self.db.create_transaction()

    def run(self, func, *args, **kwargs):
        """
        Call func(tr, *args, **kwargs) in a transaction retried by the
        FoundationDB client until it commits. Errors the client gives up on
        are raised as CommitFailed.
        """
        @fdb.transactional
        def attempt(tr):
            return func(tr, *args, **kwargs)

        try:
            return attempt(self.db)
        except fdb.FDBError as e:
            raise CommitFailed('Transaction not committed: %s (%d)' % (e.description, e.code)) from e


def open(cluster_file=None, retry_limit=RETRY_LIMIT, timeout_ms=TIMEOUT_MS):
    """
    Open the FoundationDB database described by cluster_file (or the
    client's default cluster file) for use by counters.
    """
    db = fdb.open(cluster_file)
    db.options.set_transaction_retry_limit(retry_limit)
    if timeout_ms:
        db.options.set_transaction_timeout(timeout_ms)
    logger.info('opened FoundationDB database (API version %d, cluster file %s)',
                API_VERSION, cluster_file or 'default')
    return FDBDatabase(db)


def subspace(*items):
    """Return a Subspace whose prefix is the tuple-layer packing of items."""
    return Subspace(fdb.tuple.pack(items))
