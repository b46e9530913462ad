''' Counter Subspace Class

Provides a Subspace class that owns every key starting with a raw byte
prefix. Shard ids are packed after the prefix with an order-preserving
encoding, so that a slice of the subspace between two packed ids holds
exactly the shards whose ids fall between them.
'''

from fdbcounter.encoding import decode_ordered, encode_ordered


def strinc(key):
    """Return the first key that does not start with key."""
    key = key.rstrip(b'\xff')
    if not key:
        raise ValueError('Key must contain at least one byte not equal to 0xFF')
    return key[:-1] + bytes([key[-1] + 1])


class Subspace (object):

    def __init__(self, rawPrefix=b''):
        self.rawPrefix = bytes(rawPrefix)

    def __repr__(self):
        return 'Subspace(rawPrefix=' + repr(self.rawPrefix) + ')'

    def __eq__(self, other):
        return isinstance(other, Subspace) and self.rawPrefix == other.rawPrefix

    def __hash__(self):
        return hash(self.rawPrefix)

    def key(self):
        return self.rawPrefix

    def pack(self, shard_id):
        return self.rawPrefix + encode_ordered(shard_id)

    def unpack(self, key):
        if not self.contains(key):
            raise ValueError('%r is not in %r' % (key, self))
        return decode_ordered(key[len(self.rawPrefix):])

    def range(self):
        # the empty prefix stops short of the system keys
        if not self.rawPrefix:
            return slice(b'', b'\xff')
        return slice(self.rawPrefix, strinc(self.rawPrefix))

    def contains(self, key):
        return key.startswith(self.rawPrefix)
