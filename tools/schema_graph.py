#!/usr/bin/env python3
"""
schema_graph.py - Resolved, immutable schema graph

Two schema families share one graph:

Message family (protobuf-like):
    MessageType   named record with numbered fields
    FieldSpec     name, number, type, repeated flag, optional oneof group
    EnumType      named integer enumeration

    Field types are a ScalarKind, a MessageRef or an EnumRef. References
    hold fully qualified names; the graph is an arena keyed by name, so
    a message may refer to itself through a repeated field without
    creating an object cycle.

Configuration family (JSON-Schema-like):
    ObjectSchema     properties, required names, closed/open policy
    VariantSchema    oneOf: exactly one option must match (anyOf for type lists)
    EnumSchema       closed set of strings
    PrimitiveSchema  string / number / integer / boolean / null
    ArraySchema      list of items

All nodes are frozen dataclasses built once by the resolver and shared
read-only afterwards.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from types import MappingProxyType
from typing import Dict, FrozenSet, Mapping, Optional, Tuple, Union

from schema_errors import UnresolvedReferenceError


class WireKind(IntEnum):
    """Wire type codes carried in the low 3 bits of every field tag."""
    VARINT = 0
    I64 = 1
    LEN = 2
    SGROUP = 3
    EGROUP = 4
    I32 = 5


class ScalarKind(Enum):
    DOUBLE = 'double'
    FLOAT = 'float'
    INT32 = 'int32'
    INT64 = 'int64'
    UINT32 = 'uint32'
    UINT64 = 'uint64'
    SINT32 = 'sint32'
    SINT64 = 'sint64'
    FIXED32 = 'fixed32'
    FIXED64 = 'fixed64'
    SFIXED32 = 'sfixed32'
    SFIXED64 = 'sfixed64'
    BOOL = 'bool'
    STRING = 'string'
    BYTES = 'bytes'


INT32_RANGE = (-2**31, 2**31 - 1)
INT64_RANGE = (-2**63, 2**63 - 1)
UINT32_RANGE = (0, 2**32 - 1)
UINT64_RANGE = (0, 2**64 - 1)

# ScalarKind -> (wire kind, integer range or None)
SCALAR_INFO = {
    ScalarKind.DOUBLE: (WireKind.I64, None),
    ScalarKind.FLOAT: (WireKind.I32, None),
    ScalarKind.INT32: (WireKind.VARINT, INT32_RANGE),
    ScalarKind.INT64: (WireKind.VARINT, INT64_RANGE),
    ScalarKind.UINT32: (WireKind.VARINT, UINT32_RANGE),
    ScalarKind.UINT64: (WireKind.VARINT, UINT64_RANGE),
    ScalarKind.SINT32: (WireKind.VARINT, INT32_RANGE),
    ScalarKind.SINT64: (WireKind.VARINT, INT64_RANGE),
    ScalarKind.FIXED32: (WireKind.I32, UINT32_RANGE),
    ScalarKind.FIXED64: (WireKind.I64, UINT64_RANGE),
    ScalarKind.SFIXED32: (WireKind.I32, INT32_RANGE),
    ScalarKind.SFIXED64: (WireKind.I64, INT64_RANGE),
    ScalarKind.BOOL: (WireKind.VARINT, None),
    ScalarKind.STRING: (WireKind.LEN, None),
    ScalarKind.BYTES: (WireKind.LEN, None),
}

SCALAR_NAMES = {kind.value: kind for kind in ScalarKind}

INTEGER_KINDS = frozenset(k for k, (_, rng) in SCALAR_INFO.items() if rng is not None)
FLOAT_KINDS = frozenset({ScalarKind.DOUBLE, ScalarKind.FLOAT})

# Field numbers
MAX_FIELD_NUMBER = 2**29 - 1
RESERVED_NUMBERS = range(19000, 20000)


@dataclass(frozen=True)
class MessageRef:
    name: str


@dataclass(frozen=True)
class EnumRef:
    name: str


FieldType = Union[ScalarKind, MessageRef, EnumRef]


@dataclass(frozen=True)
class FieldSpec:
    """One numbered field of a message type."""
    name: str
    number: int
    type: FieldType
    repeated: bool = False
    oneof: Optional[str] = None

    @property
    def wire_kind(self) -> WireKind:
        if isinstance(self.type, MessageRef):
            return WireKind.LEN
        if isinstance(self.type, EnumRef):
            return WireKind.VARINT
        return SCALAR_INFO[self.type][0]

    @property
    def packable(self) -> bool:
        """Repeated numeric scalars and enums may use packed encoding."""
        return self.repeated and self.wire_kind != WireKind.LEN

    @property
    def type_label(self) -> str:
        if isinstance(self.type, (MessageRef, EnumRef)):
            label = self.type.name
        else:
            label = self.type.value
        return f"repeated {label}" if self.repeated else label


@dataclass(frozen=True)
class MessageType:
    name: str
    fields: Tuple[FieldSpec, ...]
    unit: str = ''
    _by_name: Mapping[str, FieldSpec] = field(init=False, repr=False, compare=False)
    _by_number: Mapping[int, FieldSpec] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, '_by_name',
                           MappingProxyType({f.name: f for f in self.fields}))
        object.__setattr__(self, '_by_number',
                           MappingProxyType({f.number: f for f in self.fields}))

    def field_named(self, name: str) -> Optional[FieldSpec]:
        return self._by_name.get(name)

    def field_numbered(self, number: int) -> Optional[FieldSpec]:
        return self._by_number.get(number)

    @property
    def oneofs(self) -> Dict[str, Tuple[str, ...]]:
        """oneof group name -> member field names, in declaration order."""
        groups: Dict[str, Tuple[str, ...]] = {}
        for f in self.fields:
            if f.oneof:
                groups[f.oneof] = groups.get(f.oneof, ()) + (f.name,)
        return groups


@dataclass(frozen=True)
class EnumType:
    name: str
    values: Tuple[Tuple[str, int], ...]
    unit: str = ''

    def number_of(self, member: str) -> Optional[int]:
        for name, number in self.values:
            if name == member:
                return number
        return None

    def name_of(self, number: int) -> Optional[str]:
        # First declared alias wins
        for name, value in self.values:
            if value == number:
                return name
        return None


# =============================================================================
# Configuration family
# =============================================================================

class PrimitiveKind(Enum):
    STRING = 'string'
    NUMBER = 'number'
    INTEGER = 'integer'
    BOOLEAN = 'boolean'
    NULL = 'null'


@dataclass(frozen=True)
class ObjectSchema:
    properties: Mapping[str, 'ConfigSchema']
    required: Tuple[str, ...] = ()
    closed: bool = False
    additional: Optional['ConfigSchema'] = None
    title: Optional[str] = None


@dataclass(frozen=True)
class VariantSchema:
    """oneOf when exclusive (exactly one option matches), else anyOf."""
    options: Tuple['ConfigSchema', ...]
    base: Optional[ObjectSchema] = None
    title: Optional[str] = None
    exclusive: bool = True

    def option_name(self, index: int) -> str:
        title = getattr(self.options[index], 'title', None)
        return title or f"option[{index}]"


@dataclass(frozen=True)
class EnumSchema:
    allowed: Tuple[str, ...]
    title: Optional[str] = None

    @property
    def allowed_set(self) -> FrozenSet[str]:
        return frozenset(self.allowed)


@dataclass(frozen=True)
class PrimitiveSchema:
    kind: PrimitiveKind
    title: Optional[str] = None


@dataclass(frozen=True)
class ArraySchema:
    items: Optional['ConfigSchema'] = None
    title: Optional[str] = None


ConfigSchema = Union[ObjectSchema, VariantSchema, EnumSchema, PrimitiveSchema, ArraySchema]


# =============================================================================
# Graph
# =============================================================================

@dataclass(frozen=True)
class SchemaGraph:
    """Arena of resolved nodes, keyed by fully qualified name or unit name."""
    messages: Mapping[str, MessageType] = field(default_factory=lambda: MappingProxyType({}))
    enums: Mapping[str, EnumType] = field(default_factory=lambda: MappingProxyType({}))
    configs: Mapping[str, ConfigSchema] = field(default_factory=lambda: MappingProxyType({}))

    def _lookup(self, table: Mapping, name: str, what: str):
        name = name.lstrip('.')
        if name in table:
            return table[name]
        # Unique short-name match: 'Order' finds 'online_store.Order'
        matches = [key for key in table if key.endswith('.' + name)]
        if len(matches) == 1:
            return table[matches[0]]
        if matches:
            raise UnresolvedReferenceError(name, what, f"ambiguous: {', '.join(sorted(matches))}")
        raise UnresolvedReferenceError(name, what)

    def message(self, name: str) -> MessageType:
        return self._lookup(self.messages, name, 'message lookup')

    def enum(self, name: str) -> EnumType:
        return self._lookup(self.enums, name, 'enum lookup')

    def config(self, name: str) -> ConfigSchema:
        if name not in self.configs:
            raise UnresolvedReferenceError(name, 'config lookup')
        return self.configs[name]

    def resolve_field_message(self, spec: FieldSpec) -> MessageType:
        """Follow a resolved MessageRef; the name is always fully qualified."""
        return self.messages[spec.type.name]

    def resolve_field_enum(self, spec: FieldSpec) -> EnumType:
        return self.enums[spec.type.name]
