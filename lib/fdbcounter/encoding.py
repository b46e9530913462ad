"""Fixed-width integer encodings for shard keys and values.

Shard values are 4-byte big-endian two's complement integers. Shard ids
use the same width with the sign bit flipped, so that byte order of the
encoded ids matches their numeric order and range scans split at an id
behave as expected across the sign boundary.

"""

import struct

from fdbcounter.errors import InvalidEncoding

INT32_MIN = -0x80000000
INT32_MAX = 0x7fffffff

_SIGN_BIT = 0x80000000


def _check_range(v):
    if not INT32_MIN <= v <= INT32_MAX:
        raise ValueError('%d does not fit in a signed 32-bit integer' % v)


def _check_length(s):
    if len(s) != 4:
        raise InvalidEncoding('expected 4 bytes, got %d: %r' % (len(s), s))


def encode_int32(v):
    _check_range(v)
    return struct.pack('>i', v)


def decode_int32(s):
    _check_length(s)
    return struct.unpack('>i', s)[0]


def encode_ordered(i):
    _check_range(i)
    return struct.pack('>I', i + _SIGN_BIT)


def decode_ordered(s):
    _check_length(s)
    return struct.unpack('>I', s)[0] - _SIGN_BIT
