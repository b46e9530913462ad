import pytest

from fdbcounter.encoding import INT32_MAX, INT32_MIN
from fdbcounter.subspace import Subspace, strinc


@pytest.mark.parametrize('key, expected', [
    (b'a', b'b'),
    (b'abc', b'abd'),
    (b'a\xff', b'b'),
    (b'a\xff\xff', b'b'),
    (b'\x00', b'\x01'),
])
def test_strinc(key, expected):
    assert strinc(key) == expected


@pytest.mark.parametrize('key', [b'', b'\xff', b'\xff\xff'])
def test_strinc_without_successor(key):
    with pytest.raises(ValueError):
        strinc(key)


def test_range_covers_exactly_the_prefix():
    s = Subspace(b'count')
    r = s.range()
    assert r.start == b'count'
    assert r.stop == b'coun\x75'
    for shard_id in (INT32_MIN, -1, 0, 1, INT32_MAX):
        assert r.start <= s.pack(shard_id) < r.stop
    assert not r.start <= b'counu' < r.stop
    assert not r.start <= b'coun' < r.stop


def test_empty_prefix_range_stops_at_system_keys():
    assert Subspace().range() == slice(b'', b'\xff')


def test_pack_unpack():
    s = Subspace(b'p/')
    key = s.pack(-42)
    assert key.startswith(b'p/')
    assert s.contains(key)
    assert s.unpack(key) == -42


def test_unpack_foreign_key():
    with pytest.raises(ValueError):
        Subspace(b'p/').unpack(b'q/\x00\x00\x00\x00')


def test_packed_keys_sort_by_shard_id():
    s = Subspace(b'p/')
    ids = [5, -5, 0, INT32_MIN, INT32_MAX, -1]
    assert sorted(ids, key=s.pack) == sorted(ids)


def test_equality_and_repr():
    assert Subspace(b'x') == Subspace(bytearray(b'x'))
    assert Subspace(b'x') != Subspace(b'y')
    assert repr(Subspace(b'x')) == "Subspace(rawPrefix=b'x')"
