"""Tests for value_model.py"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / 'tools'))

from value_model import ValueKind, describe, is_kind, kind_of, semantically_equal


class TestKindOf:

    @pytest.mark.parametrize('value,kind', [
        (None, ValueKind.NULL),
        (True, ValueKind.BOOL),
        (False, ValueKind.BOOL),
        (0, ValueKind.INT),
        (-2**70, ValueKind.INT),
        (1.5, ValueKind.FLOAT),
        ('', ValueKind.STRING),
        (b'\x00', ValueKind.BYTES),
        (bytearray(b'ab'), ValueKind.BYTES),
        (memoryview(b'ab'), ValueKind.BYTES),
        ([], ValueKind.LIST),
        ((1, 2), ValueKind.LIST),
        ({}, ValueKind.RECORD),
    ])
    def test_kinds(self, value, kind):
        assert kind_of(value) == kind

    def test_unsupported(self):
        with pytest.raises(TypeError):
            kind_of({1, 2})

    def test_is_kind(self):
        assert is_kind(1, ValueKind.INT)
        assert not is_kind(True, ValueKind.INT)
        assert not is_kind(object(), ValueKind.RECORD)


class TestSemanticEquality:

    def test_record_key_order_ignored(self):
        assert semantically_equal({'a': 1, 'b': 2}, {'b': 2, 'a': 1})

    def test_list_order_matters(self):
        assert not semantically_equal([1, 2], [2, 1])

    def test_int_and_float(self):
        assert semantically_equal(1, 1.0)
        assert not semantically_equal(1, 1.5)

    def test_bool_is_not_int(self):
        assert not semantically_equal(True, 1)
        assert not semantically_equal(0, False)

    def test_bytes_types(self):
        assert semantically_equal(b'ab', bytearray(b'ab'))

    def test_nested(self):
        a = {'items': [{'q': 1, 'p': 'x'}], 'meta': None}
        b = {'meta': None, 'items': [{'p': 'x', 'q': 1.0}]}
        assert semantically_equal(a, b)

    def test_missing_key(self):
        assert not semantically_equal({'a': 1}, {'a': 1, 'b': None})

    def test_nan_equals_nan(self):
        assert semantically_equal(float('nan'), float('nan'))
        assert semantically_equal({'d': [float('nan')]}, {'d': [float('nan')]})
        assert not semantically_equal(float('nan'), 0.0)


class TestDescribe:

    def test_scalars(self):
        assert describe('abc') == "'abc'"
        assert describe(None) == 'None'

    def test_long_text_is_clipped(self):
        text = describe('x' * 100, limit=20)
        assert len(text) == 20
        assert text.endswith('...')

    def test_containers(self):
        assert describe({'a': 1}) == 'record with 1 key(s)'
        assert describe([1, 2]) == 'list of 2 item(s)'
        assert describe(b'abc') == '3 byte(s)'

    def test_foreign_object(self):
        assert describe(object()) == '<object>'
