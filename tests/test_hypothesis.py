"""
test_hypothesis.py - Property-based testing with Hypothesis

Covers:
- Round trip: decode(encode(v)) == v for every valid value
- Decoder safety: arbitrary bytes either decode or raise WireError
- Validator safety: arbitrary values never raise, and never short-circuit
- Encoding determinism

Run with:
    pytest tests/test_hypothesis.py -v
    HYPOTHESIS_PROFILE=ci pytest tests/test_hypothesis.py
"""

import sys
from pathlib import Path

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

sys.path.insert(0, str(Path(__file__).parent.parent / 'tools'))
from schema_errors import WireError
from schema_resolver import MessageUnit, resolve_units
from schema_validator import ValidationResult, ViolationKind, validate_config, validate_message
from value_model import semantically_equal
from wire_codec import WireCodec, decode_varint, encode_varint


# =============================================================================
# Test Schema
# =============================================================================

DEMO_DECL = {
    'package': 'demo',
    'messages': [
        {'name': 'Reading', 'fields': [
            {'name': 'sensor', 'type': 'string', 'number': 1},
            {'name': 'level', 'type': 'int32', 'number': 2},
            {'name': 'delta', 'type': 'sint64', 'number': 3},
            {'name': 'counter', 'type': 'uint32', 'number': 4},
            {'name': 'serial', 'type': 'fixed64', 'number': 5},
            {'name': 'offset', 'type': 'sfixed32', 'number': 6},
            {'name': 'ratio', 'type': 'float', 'number': 7},
            {'name': 'value', 'type': 'double', 'number': 8},
            {'name': 'ok', 'type': 'bool', 'number': 9},
            {'name': 'raw', 'type': 'bytes', 'number': 10},
            {'name': 'state', 'type': 'State', 'number': 11},
            {'name': 'samples', 'type': 'sint32', 'number': 12, 'modifier': 'repeated'},
            {'name': 'tags', 'type': 'string', 'number': 13, 'modifier': 'repeated'},
            {'name': 'unit_name', 'type': 'string', 'number': 14, 'oneof': 'unit'},
            {'name': 'unit_code', 'type': 'uint32', 'number': 15, 'oneof': 'unit'},
            {'name': 'origin', 'type': 'Node', 'number': 16},
        ]},
        {'name': 'Node', 'fields': [
            {'name': 'label', 'type': 'string', 'number': 1},
            {'name': 'children', 'type': 'Node', 'number': 2, 'modifier': 'repeated'},
        ]},
    ],
    'enums': [{'name': 'State', 'values': [{'name': 'IDLE', 'number': 0},
                                           {'name': 'ACTIVE', 'number': 1},
                                           {'name': 'FAULT', 'number': 2}]}],
}

GRAPH = resolve_units(MessageUnit.from_declarations('demo.proto', DEMO_DECL))


# =============================================================================
# Strategies for generating test data
# =============================================================================

int32_values = st.integers(min_value=-2**31, max_value=2**31 - 1)
int64_values = st.integers(min_value=-2**63, max_value=2**63 - 1)
uint32_values = st.integers(min_value=0, max_value=2**32 - 1)
uint64_values = st.integers(min_value=0, max_value=2**64 - 1)

# Unknown enum numbers survive as ints; declared ones travel by name
state_values = st.one_of(
    st.sampled_from(['IDLE', 'ACTIVE', 'FAULT']),
    int32_values.filter(lambda n: n not in (0, 1, 2)),
)

node_values = st.recursive(
    st.fixed_dictionaries({}, optional={'label': st.text(max_size=8)}),
    lambda children: st.fixed_dictionaries({}, optional={
        'label': st.text(max_size=8),
        'children': st.lists(children, min_size=1, max_size=3),
    }),
    max_leaves=8,
)

reading_fields = st.fixed_dictionaries({}, optional={
    'sensor': st.text(),
    'level': int32_values,
    'delta': int64_values,
    'counter': uint32_values,
    'serial': uint64_values,
    'offset': int32_values,
    'ratio': st.floats(width=32),
    'value': st.floats(),
    'ok': st.booleans(),
    'raw': st.binary(max_size=32),
    'state': state_values,
    'samples': st.lists(int32_values, min_size=1, max_size=8),
    'tags': st.lists(st.text(max_size=8), min_size=1, max_size=4),
    'origin': node_values,
})

unit_choice = st.one_of(
    st.just({}),
    st.builds(lambda s: {'unit_name': s}, st.text(max_size=8)),
    st.builds(lambda n: {'unit_code': n}, uint32_values),
)


@st.composite
def readings(draw):
    value = draw(reading_fields)
    value.update(draw(unit_choice))
    return value


json_values = st.recursive(
    st.none() | st.booleans() | st.integers() | st.floats(allow_nan=False) | st.text(max_size=8),
    lambda children: st.lists(children, max_size=4)
    | st.dictionaries(st.text(max_size=8), children, max_size=4),
    max_leaves=12,
)


# =============================================================================
# Round trip
# =============================================================================

class TestRoundtrip:
    """decode(encode(v)) == v for every value the validator accepts."""

    @given(readings(), st.booleans())
    @settings(max_examples=300, suppress_health_check=[HealthCheck.too_slow])
    def test_reading_round_trip(self, value, packed):
        codec = WireCodec(GRAPH, packed=packed)
        assert validate_message(GRAPH, 'Reading', value).valid
        decoded = codec.decode('Reading', codec.encode('Reading', value))
        assert semantically_equal(decoded, value)

    @given(st.floats() | st.integers(min_value=-2**30, max_value=2**30))
    @settings(max_examples=500)
    def test_float_field_rejects_or_round_trips(self, number):
        """A double-width number either fails validation or survives float32 exactly."""
        value = {'ratio': number}
        result = validate_message(GRAPH, 'Reading', value)
        if not result.valid:
            assert result.kinds() == [ViolationKind.OUT_OF_RANGE]
            return
        codec = WireCodec(GRAPH)
        assert semantically_equal(codec.decode('Reading', codec.encode('Reading', value)), value)

    @given(readings())
    @settings(max_examples=200)
    def test_packed_and_unpacked_decode_alike(self, value):
        packed = WireCodec(GRAPH, packed=True).encode('Reading', value)
        plain = WireCodec(GRAPH).encode('Reading', value)
        codec = WireCodec(GRAPH)
        assert semantically_equal(codec.decode('Reading', packed), codec.decode('Reading', plain))

    @given(readings())
    @settings(max_examples=200)
    def test_key_order_does_not_change_bytes(self, value):
        codec = WireCodec(GRAPH)
        reordered = dict(reversed(list(value.items())))
        assert codec.encode('Reading', value) == codec.encode('Reading', reordered)

    @given(uint64_values)
    @settings(max_examples=500)
    def test_varint(self, value):
        data = encode_varint(value)
        assert len(data) <= 10
        assert decode_varint(data, 0) == (value, len(data))


# =============================================================================
# Decoder safety
# =============================================================================

class TestDecoderSafety:
    """Arbitrary input never crashes the decoder with anything but WireError."""

    @given(st.binary(max_size=256))
    @settings(max_examples=1000, suppress_health_check=[HealthCheck.too_slow])
    def test_random_bytes(self, data):
        codec = WireCodec(GRAPH)
        try:
            result = codec.decode('Reading', data)
        except WireError:
            return
        assert isinstance(result, dict)

    @given(st.binary(max_size=64))
    @settings(max_examples=500)
    def test_report_never_raises(self, data):
        report = WireCodec(GRAPH).decode_report('Reading', data)
        if report.success:
            assert report.bytes_consumed == len(data)
        else:
            assert report.data == {}
            assert report.errors

    @given(readings(), st.data())
    @settings(max_examples=200)
    def test_truncated_encoding(self, value, data):
        """A cut encoding either fails or decodes to a subset of the fields."""
        payload = WireCodec(GRAPH).encode('Reading', value)
        if len(payload) < 2:
            return
        cut = data.draw(st.integers(min_value=1, max_value=len(payload) - 1))
        report = WireCodec(GRAPH).decode_report('Reading', payload[:cut])
        if report.success:
            # A cut on a field boundary is a valid shorter message
            assert set(report.data) <= set(value)


# =============================================================================
# Validator safety
# =============================================================================

class TestValidatorSafety:

    @given(json_values)
    @settings(max_examples=500)
    def test_config_validator_never_raises(self, mqtt_schema, value):
        result = validate_config(mqtt_schema, value)
        assert isinstance(result, ValidationResult)

    @given(json_values)
    @settings(max_examples=500)
    def test_message_validator_never_raises(self, value):
        result = validate_message(GRAPH, 'Reading', value)
        assert isinstance(result, ValidationResult)

    @given(st.dictionaries(st.text(min_size=1, max_size=6).filter(
        lambda k: k not in ('topic', 'qos', 'type')), st.integers(), min_size=1, max_size=5))
    @settings(max_examples=200)
    def test_open_root_accepts_unknown_keys(self, mqtt_schema, extra):
        value = {'topic': 't', 'type': {}}
        value.update(extra)
        assert validate_config(mqtt_schema, value).valid

    @given(st.lists(int32_values, min_size=1, max_size=5),
           st.integers(min_value=2**31 + 1, max_value=2**40))
    @settings(max_examples=200)
    def test_every_violation_reported(self, good, bad):
        """Each out-of-range element is reported; nothing stops at the first."""
        samples = good + [bad, -bad]
        result = validate_message(GRAPH, 'Reading', {'samples': samples})
        paths = [v.path for v in result.violations]
        assert paths == [('samples', len(good)), ('samples', len(good) + 1)]


@pytest.mark.slow
class TestConcurrency:

    @given(st.lists(readings(), min_size=4, max_size=12))
    @settings(max_examples=20, deadline=None)
    def test_shared_graph_across_threads(self, values):
        from concurrent.futures import ThreadPoolExecutor

        codec = WireCodec(GRAPH)
        with ThreadPoolExecutor(max_workers=4) as pool:
            decoded = list(pool.map(
                lambda v: codec.decode('Reading', codec.encode('Reading', v)), values))
        assert all(semantically_equal(d, v) for d, v in zip(decoded, values))
