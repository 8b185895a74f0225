#!/usr/bin/env python3
"""
schema_validator.py - Validate values against configuration schemas and message types

All violations are collected in one walk; nothing short-circuits on the
first error. Each violation is a (path, kind, detail) triple where path
is a tuple of property names and list indices from the root.

Violation kinds:
    MissingRequiredError      required property absent
    UnexpectedPropertyError   key outside a closed object / message
    TypeMismatchError         value kind does not fit the declared type
    EnumViolationError        string not in the allowed set
    NoVariantMatchedError     oneOf / type list: no option matched
    AmbiguousVariantError     oneOf: two or more options matched (type lists
                              accept any match)
    OutOfRangeError           number not representable in the declared width

Usage:
    from schema_validator import validate_config, validate_message

    result = validate_config(graph.config('mqtt_table.json'), value)
    if not result.valid:
        for v in result.violations:
            print(v)
"""

import math
import struct
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from schema_graph import (
    ArraySchema, ConfigSchema, EnumRef, EnumSchema, FLOAT_KINDS, FieldSpec,
    MessageRef, MessageType, ObjectSchema, PrimitiveKind, PrimitiveSchema,
    SCALAR_INFO, ScalarKind, SchemaGraph, VariantSchema,
)
from value_model import ValueKind, describe, kind_of

PathPart = Union[str, int]
Path = Tuple[PathPart, ...]


class ViolationKind(Enum):
    MISSING_REQUIRED = 'MissingRequiredError'
    UNEXPECTED_PROPERTY = 'UnexpectedPropertyError'
    TYPE_MISMATCH = 'TypeMismatchError'
    ENUM_VIOLATION = 'EnumViolationError'
    NO_VARIANT_MATCHED = 'NoVariantMatchedError'
    AMBIGUOUS_VARIANT = 'AmbiguousVariantError'
    OUT_OF_RANGE = 'OutOfRangeError'


def format_path(path: Path) -> str:
    """Render ('items', 0, 'quantity') as 'items[0].quantity'; root is '$'."""
    if not path:
        return '$'
    out = ''
    for part in path:
        if isinstance(part, int):
            out += f"[{part}]"
        else:
            out += f".{part}" if out else str(part)
    return out


@dataclass(frozen=True)
class Violation:
    path: Path
    kind: ViolationKind
    detail: str
    causes: Tuple['Violation', ...] = ()

    @property
    def path_str(self) -> str:
        return format_path(self.path)

    def __str__(self) -> str:
        return f"{self.path_str}: {self.kind.value}: {self.detail}"

    def to_dict(self) -> Dict[str, Any]:
        out = {
            'path': list(self.path),
            'location': self.path_str,
            'kind': self.kind.value,
            'detail': self.detail,
        }
        if self.causes:
            out['causes'] = [c.to_dict() for c in self.causes]
        return out


@dataclass
class ValidationResult:
    """Result of validating one value."""
    violations: List[Violation] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return len(self.violations) == 0

    def kinds(self) -> List[ViolationKind]:
        return [v.kind for v in self.violations]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'valid': self.valid,
            'violations': [v.to_dict() for v in self.violations],
        }


def _kind(value: Any) -> Optional[ValueKind]:
    try:
        return kind_of(value)
    except TypeError:
        return None


def _kind_label(value: Any) -> str:
    kind = _kind(value)
    return kind.value if kind else type(value).__name__


# =============================================================================
# Configuration family
# =============================================================================

PRIMITIVE_ACCEPTS = {
    PrimitiveKind.STRING: {ValueKind.STRING},
    PrimitiveKind.NUMBER: {ValueKind.INT, ValueKind.FLOAT},
    PrimitiveKind.INTEGER: {ValueKind.INT},
    PrimitiveKind.BOOLEAN: {ValueKind.BOOL},
    PrimitiveKind.NULL: {ValueKind.NULL},
}


class ConfigValidator:
    """Walks a value against a ConfigSchema node."""

    def validate(self, schema: ConfigSchema, value: Any, path: Path = ()) -> ValidationResult:
        result = ValidationResult()
        self._walk(schema, value, path, result.violations)
        return result

    def _walk(self, schema: ConfigSchema, value: Any, path: Path, out: List[Violation]) -> None:
        if isinstance(schema, ObjectSchema):
            self._walk_object(schema, value, path, out)
        elif isinstance(schema, VariantSchema):
            self._walk_variant(schema, value, path, out)
        elif isinstance(schema, EnumSchema):
            self._walk_enum(schema, value, path, out)
        elif isinstance(schema, PrimitiveSchema):
            self._walk_primitive(schema, value, path, out)
        elif isinstance(schema, ArraySchema):
            self._walk_array(schema, value, path, out)
        else:
            raise TypeError(f"Not a configuration schema node: {type(schema).__name__}")

    def _walk_object(self, schema: ObjectSchema, value: Any, path: Path,
                     out: List[Violation]) -> None:
        if _kind(value) != ValueKind.RECORD:
            out.append(Violation(path, ViolationKind.TYPE_MISMATCH,
                                 f"expected object, got {_kind_label(value)}"))
            return

        for name in schema.required:
            if name not in value:
                out.append(Violation(path + (name,), ViolationKind.MISSING_REQUIRED,
                                     f"required property '{name}' is missing"))

        for key, item in value.items():
            sub = schema.properties.get(key)
            if sub is not None:
                self._walk(sub, item, path + (key,), out)
            elif schema.closed:
                out.append(Violation(path + (key,), ViolationKind.UNEXPECTED_PROPERTY,
                                     f"property '{key}' is not allowed"))
            elif schema.additional is not None:
                self._walk(schema.additional, item, path + (key,), out)

    def _walk_variant(self, schema: VariantSchema, value: Any, path: Path,
                      out: List[Violation]) -> None:
        if schema.base is not None:
            self._walk_object(schema.base, value, path, out)

        # oneOf tries every option; first-match is never taken on its own
        matched: List[int] = []
        failures: List[Violation] = []
        for i, option in enumerate(schema.options):
            attempt = self.validate(option, value, path)
            if attempt.valid:
                matched.append(i)
                if not schema.exclusive:
                    return
            else:
                name = schema.option_name(i)
                failures.extend(
                    Violation(v.path, v.kind, f"[{name}] {v.detail}", v.causes)
                    for v in attempt.violations)

        if not matched:
            names = ', '.join(schema.option_name(i) for i in range(len(schema.options)))
            out.append(Violation(path, ViolationKind.NO_VARIANT_MATCHED,
                                 f"value matched none of the options ({names})",
                                 tuple(failures)))
        elif len(matched) > 1:
            names = ', '.join(schema.option_name(i) for i in matched)
            out.append(Violation(path, ViolationKind.AMBIGUOUS_VARIANT,
                                 f"value matched {len(matched)} options ({names}); "
                                 f"exactly one is allowed"))

    def _walk_enum(self, schema: EnumSchema, value: Any, path: Path,
                   out: List[Violation]) -> None:
        if _kind(value) == ValueKind.STRING and value in schema.allowed_set:
            return
        allowed = ', '.join(schema.allowed)
        out.append(Violation(path, ViolationKind.ENUM_VIOLATION,
                             f"{describe(value)} is not one of: {allowed}"))

    def _walk_primitive(self, schema: PrimitiveSchema, value: Any, path: Path,
                        out: List[Violation]) -> None:
        if _kind(value) not in PRIMITIVE_ACCEPTS[schema.kind]:
            out.append(Violation(path, ViolationKind.TYPE_MISMATCH,
                                 f"expected {schema.kind.value}, got {_kind_label(value)}"))

    def _walk_array(self, schema: ArraySchema, value: Any, path: Path,
                    out: List[Violation]) -> None:
        if _kind(value) != ValueKind.LIST:
            out.append(Violation(path, ViolationKind.TYPE_MISMATCH,
                                 f"expected array, got {_kind_label(value)}"))
            return
        if schema.items is not None:
            for i, item in enumerate(value):
                self._walk(schema.items, item, path + (i,), out)


# =============================================================================
# Message family
# =============================================================================

SCALAR_ACCEPTS = {
    ScalarKind.BOOL: {ValueKind.BOOL},
    ScalarKind.STRING: {ValueKind.STRING},
    ScalarKind.BYTES: {ValueKind.BYTES},
}


def _fits_float(scalar: ScalarKind, value: Any) -> bool:
    """True when the value survives the field's width unchanged."""
    if isinstance(value, int):
        try:
            converted = float(value)
        except OverflowError:
            return False
        if converted != value:
            return False
        value = converted
    if scalar != ScalarKind.FLOAT or math.isinf(value) or math.isnan(value):
        return True
    try:
        narrowed = struct.unpack('<f', struct.pack('<f', value))[0]
    except OverflowError:
        return False
    return narrowed == value


class MessageValidator:
    """Walks a value against a MessageType from a resolved graph."""

    def __init__(self, graph: SchemaGraph):
        self.graph = graph

    def validate(self, message: Union[str, MessageType], value: Any,
                 path: Path = ()) -> ValidationResult:
        if isinstance(message, str):
            message = self.graph.message(message)
        result = ValidationResult()
        self._walk_message(message, value, path, result.violations)
        return result

    def _walk_message(self, message: MessageType, value: Any, path: Path,
                      out: List[Violation]) -> None:
        if _kind(value) != ValueKind.RECORD:
            out.append(Violation(path, ViolationKind.TYPE_MISMATCH,
                                 f"expected message {message.name}, got {_kind_label(value)}"))
            return

        for key, item in value.items():
            spec = message.field_named(key)
            if spec is None:
                out.append(Violation(path + (key,), ViolationKind.UNEXPECTED_PROPERTY,
                                     f"{message.name} has no field '{key}'"))
                continue

            if spec.repeated:
                if _kind(item) != ValueKind.LIST:
                    out.append(Violation(path + (key,), ViolationKind.TYPE_MISMATCH,
                                         f"repeated field expects a list, "
                                         f"got {_kind_label(item)}"))
                    continue
                for i, element in enumerate(item):
                    self._walk_field(spec, element, path + (key, i), out)
            else:
                self._walk_field(spec, item, path + (key,), out)

        for group, members in message.oneofs.items():
            present = [m for m in members if m in value]
            if len(present) > 1:
                out.append(Violation(path, ViolationKind.AMBIGUOUS_VARIANT,
                                     f"oneof '{group}' has {len(present)} members set "
                                     f"({', '.join(present)}); at most one is allowed"))

    def _walk_field(self, spec: FieldSpec, value: Any, path: Path,
                    out: List[Violation]) -> None:
        if isinstance(spec.type, MessageRef):
            self._walk_message(self.graph.resolve_field_message(spec), value, path, out)
            return

        if isinstance(spec.type, EnumRef):
            enum = self.graph.resolve_field_enum(spec)
            kind = _kind(value)
            if kind == ValueKind.STRING:
                if enum.number_of(value) is None:
                    allowed = ', '.join(name for name, _ in enum.values)
                    out.append(Violation(path, ViolationKind.ENUM_VIOLATION,
                                         f"{describe(value)} is not a member of "
                                         f"{enum.name} ({allowed})"))
            elif kind == ValueKind.INT:
                # Unknown numbers are kept as ints; known ones must use their name
                if enum.name_of(value) is not None:
                    out.append(Violation(path, ViolationKind.ENUM_VIOLATION,
                                         f"{value} is declared as "
                                         f"'{enum.name_of(value)}'; use the member name"))
                elif not -2**31 <= value < 2**31:
                    out.append(Violation(path, ViolationKind.OUT_OF_RANGE,
                                         f"{value} does not fit an enum (int32)"))
            else:
                out.append(Violation(path, ViolationKind.TYPE_MISMATCH,
                                     f"expected {enum.name} member name, "
                                     f"got {_kind_label(value)}"))
            return

        kind = _kind(value)
        scalar = spec.type
        _, bounds = SCALAR_INFO[scalar]

        if bounds is not None:
            if kind != ValueKind.INT:
                out.append(Violation(path, ViolationKind.TYPE_MISMATCH,
                                     f"expected {scalar.value}, got {_kind_label(value)}"))
            elif not bounds[0] <= value <= bounds[1]:
                out.append(Violation(path, ViolationKind.OUT_OF_RANGE,
                                     f"{value} outside {scalar.value} range "
                                     f"{bounds[0]}..{bounds[1]}"))
            return

        if scalar in FLOAT_KINDS:
            # Integers widen to floating point; the reverse is not allowed
            if kind not in (ValueKind.INT, ValueKind.FLOAT):
                out.append(Violation(path, ViolationKind.TYPE_MISMATCH,
                                     f"expected {scalar.value}, got {_kind_label(value)}"))
            elif not _fits_float(scalar, value):
                out.append(Violation(path, ViolationKind.OUT_OF_RANGE,
                                     f"{describe(value)} is not representable as {scalar.value}"))
            return

        if kind not in SCALAR_ACCEPTS[scalar]:
            out.append(Violation(path, ViolationKind.TYPE_MISMATCH,
                                 f"expected {scalar.value}, got {_kind_label(value)}"))


def validate_config(schema: ConfigSchema, value: Any) -> ValidationResult:
    """Convenience function to validate a value against a configuration schema."""
    return ConfigValidator().validate(schema, value)


def validate_message(graph: SchemaGraph, message: Union[str, MessageType],
                     value: Any) -> ValidationResult:
    """Convenience function to validate a value against a message type."""
    return MessageValidator(graph).validate(message, value)
