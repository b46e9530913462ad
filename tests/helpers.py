"""Deterministic stand-ins for the random source and the commit executor."""

import itertools


class ScriptedRandom(object):
    """
    Random source handing out the given shard ids and coin flips in order.
    Once a script runs out, ids count up from 1000 and coins land on 0.99.
    """

    def __init__(self, ids=(), coins=()):
        self.ids = list(ids)
        self.coins = list(coins)
        self._next_id = itertools.count(1000)

    def getrandbits(self, k):
        shard_id = self.ids.pop(0) if self.ids else next(self._next_id)
        return shard_id + 0x80000000

    def random(self):
        return self.coins.pop(0) if self.coins else 0.99


class ManualExecutor(object):
    """Runs submitted commits at once, or queues them while held."""

    def __init__(self):
        self.held = False
        self.queue = []

    def submit(self, fn, *args):
        if self.held:
            self.queue.append((fn, args))
        else:
            fn(*args)

    def release(self):
        self.held = False
        queue, self.queue = self.queue, []
        for fn, args in queue:
            fn(*args)
