#!/usr/bin/env python3
"""
wire_codec.py - Field-tagged binary encoding for message-family schemas

Wire Format:
    Every present field is a tag followed by its payload:

        tag = varint((field_number << 3) | wire_kind)

    Wire kinds:
        0 VARINT  int32 int64 uint32 uint64 sint32 sint64 bool enum
        1 I64     fixed64 sfixed64 double      (8 bytes, little-endian)
        2 LEN     string bytes message, packed repeated numerics
        5 I32     fixed32 sfixed32 float       (4 bytes, little-endian)

    LEN payloads are varint(length) + bytes. Nested messages are the
    recursive encoding of the nested value. Repeated fields emit one
    tag+payload per element in list order, or one packed LEN payload
    when the codec is created with packed=True.

    Absent fields are not emitted. Fields are written in ascending field
    number order, so equal values always encode to equal bytes.

Decoding skips unknown field numbers, rejects a known field arriving
with an incompatible wire kind, rejects messages nested deeper than
MAX_NESTING_DEPTH, and never returns a partial value.

Usage:
    from wire_codec import WireCodec

    codec = WireCodec(graph)
    payload = codec.encode('online_store.Order', {'order_id': 'A1'})
    value = codec.decode('online_store.Order', payload)
"""

import logging
import struct
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple, Union

from schema_errors import (
    MalformedMessageError, MessageValidationError, TruncatedMessageError,
    WireError, WireTypeMismatchError,
)
from schema_graph import (
    EnumRef, FieldSpec, MessageRef, MessageType, ScalarKind, SchemaGraph, WireKind,
)
from schema_validator import MessageValidator

logger = logging.getLogger(__name__)

UINT64_MASK = (1 << 64) - 1
UINT32_MASK = (1 << 32) - 1
MAX_VARINT_BYTES = 10
MAX_NESTING_DEPTH = 100

# ScalarKind -> struct format for fixed-width kinds
FIXED_FORMATS = {
    ScalarKind.FIXED32: '<I',
    ScalarKind.SFIXED32: '<i',
    ScalarKind.FLOAT: '<f',
    ScalarKind.FIXED64: '<Q',
    ScalarKind.SFIXED64: '<q',
    ScalarKind.DOUBLE: '<d',
}

VALID_WIRE_KINDS = {int(k) for k in WireKind}


@dataclass
class DecodeResult:
    """Result of decoding a payload."""
    data: Dict[str, Any]
    bytes_consumed: int
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0


# =============================================================================
# Primitive encoders
# =============================================================================

def encode_varint(value: int) -> bytes:
    """Encode a non-negative integer below 2**64 as a base-128 varint."""
    if value < 0 or value > UINT64_MASK:
        raise WireError(f"Varint out of range: {value}")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_varint(buf: bytes, pos: int, end: int = None) -> Tuple[int, int]:
    """Read a varint at pos. Returns (value, new_pos)."""
    if end is None:
        end = len(buf)
    result = 0
    shift = 0
    start = pos
    while True:
        if pos >= end:
            raise TruncatedMessageError('varint', start, pos - start + 1, end - start)
        byte = buf[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            break
        shift += 7
        if pos - start >= MAX_VARINT_BYTES:
            raise MalformedMessageError(f"Varint longer than {MAX_VARINT_BYTES} bytes at pos {start}")
    if result > UINT64_MASK:
        raise MalformedMessageError(f"Varint overflows 64 bits at pos {start}")
    return result, pos


def zigzag_encode(value: int, bits: int) -> int:
    return (value << 1) ^ (value >> (bits - 1))


def zigzag_decode(value: int) -> int:
    return (value >> 1) ^ -(value & 1)


def _signed(value: int, bits: int) -> int:
    value &= (1 << bits) - 1
    if value >= 1 << (bits - 1):
        value -= 1 << bits
    return value


def make_tag(number: int, wire_kind: WireKind) -> bytes:
    return encode_varint((number << 3) | int(wire_kind))


# =============================================================================
# Codec
# =============================================================================

class WireCodec:
    """Encodes and decodes values for the message types of one graph."""

    def __init__(self, graph: SchemaGraph, packed: bool = False):
        self.graph = graph
        self.packed = packed
        self._validator = MessageValidator(graph)

    def _message(self, message: Union[str, MessageType]) -> MessageType:
        if isinstance(message, MessageType):
            return message
        return self.graph.message(message)

    # -------------------------------------------------------------------------
    # Encoding
    # -------------------------------------------------------------------------

    def encode(self, message: Union[str, MessageType], value: Dict[str, Any],
               validate: bool = True) -> bytes:
        """
        Encode a value of the given message type.

        Args:
            message: MessageType or its (fully qualified or unique short) name
            value: Record conforming to the message type
            validate: run the validator first and raise MessageValidationError
                on any violation

        Returns:
            Encoded bytes
        """
        msg = self._message(message)
        if validate:
            result = self._validator.validate(msg, value)
            if not result.valid:
                raise MessageValidationError(msg.name, result.violations)
        return bytes(self._encode_message(msg, value, msg.name))

    def _encode_message(self, msg: MessageType, value: Dict[str, Any], path: str) -> bytearray:
        if not isinstance(value, dict):
            raise WireError(f"{path}: expected a record for {msg.name}")

        specs = []
        for key in value:
            spec = msg.field_named(key)
            if spec is None:
                raise WireError(f"{path}: {msg.name} has no field '{key}'")
            specs.append(spec)

        out = bytearray()
        for spec in sorted(specs, key=lambda s: s.number):
            item = value[spec.name]
            where = f"{path}.{spec.name}"
            if item is None:
                raise WireError(f"{where}: None is not a field value; omit the field instead")
            if not spec.repeated:
                out += self._encode_field(spec, item, where)
                continue
            if not isinstance(item, (list, tuple)):
                raise WireError(f"{where}: repeated field expects a list")
            if not item:
                continue
            if self.packed and spec.packable:
                payload = bytearray()
                for i, element in enumerate(item):
                    payload += self._encode_payload(spec, element, f"{where}[{i}]")
                out += make_tag(spec.number, WireKind.LEN)
                out += encode_varint(len(payload))
                out += payload
            else:
                for i, element in enumerate(item):
                    out += self._encode_field(spec, element, f"{where}[{i}]")
        return out

    def _encode_field(self, spec: FieldSpec, value: Any, path: str) -> bytes:
        return make_tag(spec.number, spec.wire_kind) + self._encode_payload(spec, value, path)

    def _encode_payload(self, spec: FieldSpec, value: Any, path: str) -> bytes:
        """Encode one element of a field, without its tag."""
        ftype = spec.type

        if isinstance(ftype, MessageRef):
            nested = self._encode_message(self.graph.resolve_field_message(spec), value, path)
            return encode_varint(len(nested)) + bytes(nested)

        if isinstance(ftype, EnumRef):
            if isinstance(value, str):
                number = self.graph.resolve_field_enum(spec).number_of(value)
                if number is None:
                    raise WireError(f"{path}: '{value}' is not a member of {ftype.name}")
                value = number
            return encode_varint(value & UINT64_MASK)

        try:
            if ftype in FIXED_FORMATS:
                return struct.pack(FIXED_FORMATS[ftype], value)
            if ftype == ScalarKind.STRING:
                data = value.encode('utf-8')
                return encode_varint(len(data)) + data
            if ftype == ScalarKind.BYTES:
                data = bytes(value)
                return encode_varint(len(data)) + data
            if ftype == ScalarKind.BOOL:
                return b'\x01' if value else b'\x00'
            if ftype in (ScalarKind.SINT32, ScalarKind.SINT64):
                bits = 32 if ftype == ScalarKind.SINT32 else 64
                return encode_varint(zigzag_encode(value, bits))
            if ftype in (ScalarKind.UINT32, ScalarKind.UINT64):
                return encode_varint(value)
            # int32 / int64: negatives are sign-extended to 64 bits
            return encode_varint(value & UINT64_MASK)
        except (struct.error, AttributeError, TypeError, OverflowError) as e:
            raise WireError(f"{path}: cannot encode {value!r} as {ftype.value}: {e}") from e

    # -------------------------------------------------------------------------
    # Decoding
    # -------------------------------------------------------------------------

    def decode(self, message: Union[str, MessageType], data: bytes) -> Dict[str, Any]:
        """Decode bytes into a record; raises WireError on fatal problems."""
        msg = self._message(message)
        buf = bytes(data)
        return self._decode_message(msg, buf, 0, len(buf), [], 0)

    def decode_report(self, message: Union[str, MessageType], data: bytes) -> DecodeResult:
        """
        Decode bytes and report instead of raising.

        Skipped unknown fields are listed as warnings. On a fatal error the
        result carries the error and empty data.
        """
        msg = self._message(message)
        buf = bytes(data)
        result = DecodeResult(data={}, bytes_consumed=0)
        try:
            result.data = self._decode_message(msg, buf, 0, len(buf), result.warnings, 0)
            result.bytes_consumed = len(buf)
        except WireError as e:
            result.errors.append(str(e))
        return result

    def _decode_message(self, msg: MessageType, buf: bytes, pos: int, end: int,
                        warnings: List[str], depth: int) -> Dict[str, Any]:
        if depth > MAX_NESTING_DEPTH:
            raise MalformedMessageError(f"{msg.name}: messages nested deeper than "
                                        f"{MAX_NESTING_DEPTH} levels at pos {pos}")
        out: Dict[str, Any] = {}
        oneofs = msg.oneofs

        while pos < end:
            tag_pos = pos
            key, pos = decode_varint(buf, pos, end)
            number, wire = key >> 3, key & 0x07
            if number == 0:
                raise MalformedMessageError(f"{msg.name}: field number 0 at pos {tag_pos}")
            if wire not in VALID_WIRE_KINDS or wire in (WireKind.SGROUP, WireKind.EGROUP):
                raise MalformedMessageError(f"{msg.name}: unsupported wire kind {wire} "
                                            f"at pos {tag_pos}")
            wire = WireKind(wire)

            spec = msg.field_numbered(number)
            if spec is None:
                pos = self._skip(buf, pos, end, wire)
                note = f"{msg.name}: skipped unknown field #{number} ({wire.name})"
                warnings.append(note)
                logger.debug(note)
                continue

            if spec.packable and wire == WireKind.LEN:
                length, pos = decode_varint(buf, pos, end)
                stop = self._require(buf, pos, length, end, f"packed field {msg.name}.{spec.name}")
                values = out.setdefault(spec.name, [])
                while pos < stop:
                    value, pos = self._decode_payload(spec, spec.wire_kind, buf, pos, stop,
                                                      warnings, depth)
                    values.append(value)
                continue

            if wire != spec.wire_kind:
                raise WireTypeMismatchError(msg.name, spec.name, number,
                                            spec.wire_kind.name, wire.name)

            value, pos = self._decode_payload(spec, wire, buf, pos, end, warnings, depth)
            if spec.repeated:
                out.setdefault(spec.name, []).append(value)
            else:
                if spec.oneof:
                    # Last member of a oneof on the wire wins
                    for member in oneofs[spec.oneof]:
                        out.pop(member, None)
                out[spec.name] = value

        return out

    def _require(self, buf: bytes, pos: int, length: int, end: int, what: str) -> int:
        if pos + length > end:
            raise TruncatedMessageError(what, pos, length, end - pos)
        return pos + length

    def _skip(self, buf: bytes, pos: int, end: int, wire: WireKind) -> int:
        if wire == WireKind.VARINT:
            _, pos = decode_varint(buf, pos, end)
            return pos
        if wire == WireKind.I64:
            return self._require(buf, pos, 8, end, 'unknown fixed64 field')
        if wire == WireKind.I32:
            return self._require(buf, pos, 4, end, 'unknown fixed32 field')
        length, pos = decode_varint(buf, pos, end)
        return self._require(buf, pos, length, end, 'unknown length-delimited field')

    def _decode_payload(self, spec: FieldSpec, wire: WireKind, buf: bytes, pos: int,
                        end: int, warnings: List[str], depth: int) -> Tuple[Any, int]:
        ftype = spec.type
        what = f"field {spec.name} (#{spec.number})"

        if wire == WireKind.LEN:
            length, pos = decode_varint(buf, pos, end)
            stop = self._require(buf, pos, length, end, what)
            if isinstance(ftype, MessageRef):
                nested = self.graph.resolve_field_message(spec)
                return self._decode_message(nested, buf, pos, stop, warnings, depth + 1), stop
            raw = buf[pos:stop]
            if ftype == ScalarKind.STRING:
                try:
                    return raw.decode('utf-8'), stop
                except UnicodeDecodeError as e:
                    raise MalformedMessageError(f"{what}: invalid UTF-8: {e}") from e
            return bytes(raw), stop

        if wire in (WireKind.I32, WireKind.I64):
            size = 4 if wire == WireKind.I32 else 8
            stop = self._require(buf, pos, size, end, what)
            return struct.unpack(FIXED_FORMATS[ftype], buf[pos:stop])[0], stop

        raw, pos = decode_varint(buf, pos, end)

        if isinstance(ftype, EnumRef):
            number = _signed(raw, 32)
            name = self.graph.resolve_field_enum(spec).name_of(number)
            return (name if name is not None else number), pos

        if ftype == ScalarKind.BOOL:
            return raw != 0, pos
        if ftype == ScalarKind.INT32:
            return _signed(raw, 32), pos
        if ftype == ScalarKind.INT64:
            return _signed(raw, 64), pos
        if ftype == ScalarKind.UINT32:
            return raw & UINT32_MASK, pos
        if ftype == ScalarKind.SINT32:
            return zigzag_decode(raw & UINT32_MASK), pos
        if ftype == ScalarKind.SINT64:
            return zigzag_decode(raw), pos
        return raw, pos


def encode_message(graph: SchemaGraph, message: Union[str, MessageType],
                   value: Dict[str, Any]) -> bytes:
    """Convenience function to encode a value."""
    return WireCodec(graph).encode(message, value)


def decode_message(graph: SchemaGraph, message: Union[str, MessageType],
                   data: bytes) -> Dict[str, Any]:
    """Convenience function to decode bytes."""
    return WireCodec(graph).decode(message, data)
