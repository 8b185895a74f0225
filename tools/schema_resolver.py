#!/usr/bin/env python3
"""
schema_resolver.py - Resolve schema units into an immutable SchemaGraph

Message-family units are parsed declarations (see proto_parser.py):

    {
        'package': 'online_store',
        'imports': ['address.proto'],
        'messages': [
            {'name': 'Order', 'fields': [
                {'name': 'order_id', 'type': 'string', 'number': 1},
                {'name': 'items', 'type': 'OrderItem', 'number': 3,
                 'modifier': 'repeated'},
                {'name': 'shipping_address', 'type': 'proto_common.Address',
                 'number': 8},
            ]},
        ],
        'enums': [{'name': 'Status', 'values': [{'name': 'NEW', 'number': 0}]}],
    }

Configuration-family units are JSON-Schema-like documents (type,
properties, required, additionalProperties, enum, oneOf, items, $ref).

Resolution is pure: identical units always produce an equal graph.
Imports missing from the supplied units are requested from an optional
loader callable.

Usage:
    from schema_resolver import SchemaResolver, MessageUnit, ConfigUnit

    resolver = SchemaResolver(loader=my_loader)
    graph = resolver.resolve([
        MessageUnit.from_declarations('orders.proto', parsed_orders),
        ConfigUnit('mqtt_table.json', mqtt_doc),
    ])
    order = graph.message('online_store.Order')
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from schema_errors import (
    DuplicateFieldNameError, DuplicateFieldNumberError, DuplicateTypeNameError,
    InvalidSchemaError, SchemaCycleError, UnresolvedReferenceError,
)
from schema_graph import (
    ArraySchema, ConfigSchema, EnumRef, EnumSchema, EnumType, FieldSpec,
    MAX_FIELD_NUMBER, MessageRef, MessageType, ObjectSchema, PrimitiveKind,
    PrimitiveSchema, RESERVED_NUMBERS, SCALAR_NAMES, SchemaGraph, VariantSchema,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MessageUnit:
    """One message-family schema file, already parsed into declarations."""
    name: str
    package: str = ''
    imports: Tuple[str, ...] = ()
    messages: Tuple[Dict[str, Any], ...] = ()
    enums: Tuple[Dict[str, Any], ...] = ()

    @classmethod
    def from_declarations(cls, name: str, decl: Dict[str, Any]) -> 'MessageUnit':
        return cls(
            name=name,
            package=decl.get('package') or '',
            imports=tuple(decl.get('imports', [])),
            messages=tuple(decl.get('messages', [])),
            enums=tuple(decl.get('enums', [])),
        )


@dataclass(frozen=True)
class ConfigUnit:
    """One configuration-family schema document."""
    name: str
    document: Dict[str, Any] = field(default_factory=dict)


SchemaUnit = Union[MessageUnit, ConfigUnit]
UnitLoader = Callable[[str], Optional[SchemaUnit]]


def _qualify(package: str, name: str) -> str:
    return f"{package}.{name}" if package else name


class SchemaResolver:
    """Builds a SchemaGraph from message and configuration units."""

    def __init__(self, loader: Optional[UnitLoader] = None):
        self.loader = loader

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def resolve(self, units: Iterable[SchemaUnit]) -> SchemaGraph:
        index: Dict[str, SchemaUnit] = {}
        for unit in units:
            if unit.name in index:
                raise InvalidSchemaError(f"Schema unit '{unit.name}' supplied twice")
            index[unit.name] = unit

        self._load_imports(index)

        message_units = [u for u in index.values() if isinstance(u, MessageUnit)]
        messages, enums = self._resolve_messages(message_units, index)

        # Units pulled in by a cross-file $ref are definition libraries, not roots
        config_units = [u for u in index.values() if isinstance(u, ConfigUnit)]
        configs: Dict[str, ConfigSchema] = {}
        for unit in config_units:
            configs[unit.name] = _ConfigBuilder(self, index).build_unit(unit)

        logger.debug("Resolved %d unit(s): %d message type(s), %d enum(s), %d config(s)",
                     len(index), len(messages), len(enums), len(configs))

        return SchemaGraph(
            messages=MappingProxyType(messages),
            enums=MappingProxyType(enums),
            configs=MappingProxyType(configs),
        )

    def _fetch(self, name: str, referrer: str) -> SchemaUnit:
        """Obtain a unit that was not supplied up front."""
        unit = None
        if self.loader is not None:
            try:
                unit = self.loader(name)
            except FileNotFoundError:
                unit = None
        if unit is None:
            raise UnresolvedReferenceError(name, referrer, 'schema unit not found')
        logger.debug("Loaded unit '%s' for %s", name, referrer)
        return unit

    def _load_imports(self, index: Dict[str, SchemaUnit]) -> None:
        pending = [u for u in index.values() if isinstance(u, MessageUnit)]
        while pending:
            unit = pending.pop()
            for imported in unit.imports:
                if imported in index:
                    continue
                loaded = self._fetch(imported, unit.name)
                if not isinstance(loaded, MessageUnit):
                    raise InvalidSchemaError(f"{unit.name}: import '{imported}' "
                                             f"is not a message schema")
                index[imported] = loaded
                pending.append(loaded)

    # -------------------------------------------------------------------------
    # Message family
    # -------------------------------------------------------------------------

    def _resolve_messages(self, units: List[MessageUnit], index: Dict[str, SchemaUnit]
                          ) -> Tuple[Dict[str, MessageType], Dict[str, EnumType]]:
        # Pass 1: declare every type name
        owners: Dict[str, str] = {}
        kinds: Dict[str, str] = {}
        for unit in sorted(units, key=lambda u: u.name):
            for kind, decls in (('message', unit.messages), ('enum', unit.enums)):
                for decl in decls:
                    name = decl.get('name')
                    if not name:
                        raise InvalidSchemaError(f"{unit.name}: {kind} without a name")
                    fq = _qualify(unit.package, name)
                    if fq in owners:
                        raise DuplicateTypeNameError(fq, [owners[fq], unit.name])
                    owners[fq] = unit.name
                    kinds[fq] = kind

        # Pass 2: build enums and bind field types
        enums: Dict[str, EnumType] = {}
        messages: Dict[str, MessageType] = {}
        for unit in sorted(units, key=lambda u: u.name):
            visible = {unit.name, *unit.imports}
            for decl in unit.enums:
                fq = _qualify(unit.package, decl['name'])
                enums[fq] = self._build_enum(fq, decl, unit)
            for decl in unit.messages:
                fq = _qualify(unit.package, decl['name'])
                messages[fq] = self._build_message(fq, decl, unit, owners, kinds, visible)

        self._check_cycles(messages)
        return dict(sorted(messages.items())), dict(sorted(enums.items()))

    def _build_enum(self, fq: str, decl: Dict[str, Any], unit: MessageUnit) -> EnumType:
        values = []
        seen = set()
        for item in decl.get('values', []):
            name, number = item.get('name'), item.get('number')
            if not name or not isinstance(number, int) or isinstance(number, bool):
                raise InvalidSchemaError(f"{fq}: enum member needs a name and an integer number")
            if name in seen:
                raise DuplicateFieldNameError(fq, name)
            seen.add(name)
            values.append((name, number))
        if not values:
            raise InvalidSchemaError(f"{fq}: enum declares no values")
        return EnumType(name=fq, values=tuple(values), unit=unit.name)

    def _build_message(self, fq: str, decl: Dict[str, Any], unit: MessageUnit,
                       owners: Dict[str, str], kinds: Dict[str, str],
                       visible: set) -> MessageType:
        fields: List[FieldSpec] = []
        by_number: Dict[int, str] = {}
        names = set()

        for fdecl in decl.get('fields', []):
            name = fdecl.get('name')
            number = fdecl.get('number')
            type_name = fdecl.get('type')
            if not name or not type_name:
                raise InvalidSchemaError(f"{fq}: field needs a name and a type")
            if not isinstance(number, int) or isinstance(number, bool):
                raise InvalidSchemaError(f"{fq}.{name}: field number must be an integer")
            if number < 1 or number > MAX_FIELD_NUMBER:
                raise InvalidSchemaError(f"{fq}.{name}: field number {number} out of range "
                                         f"1..{MAX_FIELD_NUMBER}")
            if number in RESERVED_NUMBERS:
                raise InvalidSchemaError(f"{fq}.{name}: field number {number} is reserved")
            if number in by_number:
                raise DuplicateFieldNumberError(fq, number, by_number[number], name)
            if name in names:
                raise DuplicateFieldNameError(fq, name)
            by_number[number] = name
            names.add(name)

            repeated = fdecl.get('modifier') == 'repeated' or bool(fdecl.get('is_repeated'))
            oneof = fdecl.get('oneof')
            if repeated and oneof:
                raise InvalidSchemaError(f"{fq}.{name}: oneof members cannot be repeated")

            if type_name in SCALAR_NAMES:
                ftype = SCALAR_NAMES[type_name]
            else:
                target = self._lookup_type(type_name, fq, unit, owners, visible)
                ftype = MessageRef(target) if kinds[target] == 'message' else EnumRef(target)

            fields.append(FieldSpec(name=name, number=number, type=ftype,
                                    repeated=repeated, oneof=oneof))

        return MessageType(name=fq, fields=tuple(fields), unit=unit.name)

    def _lookup_type(self, ref: str, scope: str, unit: MessageUnit,
                     owners: Dict[str, str], visible: set) -> str:
        """
        Find the declaration a type reference names.

        '.pkg.Type' is fully qualified. Otherwise the reference is tried
        relative to the innermost enclosing scope first, then each outer
        scope, then as written.
        """
        if ref.startswith('.'):
            candidates = [ref[1:]]
        else:
            parts = scope.split('.')
            candidates = ['.'.join(parts[:i] + [ref]) for i in range(len(parts), 0, -1)]
            candidates.append(ref)

        for candidate in candidates:
            owner = owners.get(candidate)
            if owner is None:
                continue
            if owner not in visible:
                raise UnresolvedReferenceError(
                    ref, f"{scope} ({unit.name})",
                    f"declared in '{owner}', which is not imported")
            return candidate

        raise UnresolvedReferenceError(ref, f"{scope} ({unit.name})")

    def _check_cycles(self, messages: Dict[str, MessageType]) -> None:
        """
        Reject a message that reaches itself through non-repeated message
        fields. Paths through repeated fields terminate in an empty list, so
        they are not followed.
        """
        edges: Dict[str, List[Tuple[str, str]]] = {}
        for name, msg in messages.items():
            edges[name] = [(f.name, f.type.name) for f in msg.fields
                           if isinstance(f.type, MessageRef) and not f.repeated]

        done = set()
        for root in sorted(messages):
            if root in done:
                continue
            # Iterative DFS; stack holds (message, iterator over its edges)
            path: List[str] = [root]
            on_path = {root: 0}
            via: List[str] = []
            iters = [iter(edges[root])]
            while iters:
                step = next(iters[-1], None)
                if step is None:
                    iters.pop()
                    finished = path.pop()
                    del on_path[finished]
                    done.add(finished)
                    if via:
                        via.pop()
                    continue
                field_name, target = step
                if target in on_path:
                    start = on_path[target]
                    links = via[start:] + [field_name]
                    chain = [f"{m}.{f}" for m, f in zip(path[start:], links)]
                    raise SchemaCycleError(chain + [target])
                if target in done:
                    continue
                on_path[target] = len(path)
                path.append(target)
                via.append(field_name)
                iters.append(iter(edges[target]))


# =============================================================================
# Configuration family
# =============================================================================

PRIMITIVE_NAMES = {kind.value: kind for kind in PrimitiveKind}


class _ConfigBuilder:
    """Materializes one configuration document, following $ref eagerly."""

    def __init__(self, resolver: SchemaResolver, index: Dict[str, SchemaUnit]):
        self.resolver = resolver
        self.index = index
        self.stack: List[str] = []

    def build_unit(self, unit: ConfigUnit) -> ConfigSchema:
        return self.build(unit.document, unit, '#')

    def build(self, node: Any, unit: ConfigUnit, path: str) -> ConfigSchema:
        where = f"{unit.name}{path}"
        if not isinstance(node, dict):
            raise InvalidSchemaError(f"{where}: schema must be an object")

        if '$ref' in node:
            return self._follow_ref(node['$ref'], unit, path)

        title = node.get('title')

        if 'oneOf' in node:
            options = node['oneOf']
            if not isinstance(options, list) or not options:
                raise InvalidSchemaError(f"{where}: oneOf must be a non-empty list")
            built = tuple(self.build(opt, unit, f"{path}/oneOf/{i}")
                          for i, opt in enumerate(options))
            base = None
            if 'properties' in node or 'required' in node:
                base = self._build_object(node, unit, path)
            return VariantSchema(options=built, base=base, title=title)

        if 'enum' in node:
            allowed = node['enum']
            if not isinstance(allowed, list) or not allowed:
                raise InvalidSchemaError(f"{where}: enum must be a non-empty list")
            if not all(isinstance(v, str) for v in allowed):
                raise InvalidSchemaError(f"{where}: enum members must be strings")
            return EnumSchema(allowed=tuple(dict.fromkeys(allowed)), title=title)

        type_name = node.get('type')
        if type_name is None and 'properties' in node:
            type_name = 'object'

        if isinstance(type_name, list):
            # type: [string, null] matches any of the listed types
            options = tuple(self.build({'type': t}, unit, f"{path}/type/{i}")
                            for i, t in enumerate(type_name))
            return VariantSchema(options=options, title=title, exclusive=False)

        if type_name == 'object':
            return self._build_object(node, unit, path)

        if type_name == 'array':
            items = None
            if 'items' in node:
                items = self.build(node['items'], unit, f"{path}/items")
            return ArraySchema(items=items, title=title)

        if type_name in PRIMITIVE_NAMES:
            return PrimitiveSchema(kind=PRIMITIVE_NAMES[type_name], title=title)

        if type_name is None:
            raise InvalidSchemaError(f"{where}: schema has no type")
        raise InvalidSchemaError(f"{where}: unknown type '{type_name}'")

    def _build_object(self, node: Dict[str, Any], unit: ConfigUnit, path: str) -> ObjectSchema:
        where = f"{unit.name}{path}"
        props = node.get('properties', {}) or {}
        if not isinstance(props, dict):
            raise InvalidSchemaError(f"{where}: properties must be an object")
        properties = {name: self.build(sub, unit, f"{path}/properties/{name}")
                      for name, sub in props.items()}

        required = node.get('required', []) or []
        if not isinstance(required, list) or not all(isinstance(r, str) for r in required):
            raise InvalidSchemaError(f"{where}: required must be a list of names")

        extra = node.get('additionalProperties', True)
        closed = extra is False
        additional = None
        if isinstance(extra, dict):
            additional = self.build(extra, unit, f"{path}/additionalProperties")
        elif not isinstance(extra, bool):
            raise InvalidSchemaError(f"{where}: additionalProperties must be a boolean or a schema")

        return ObjectSchema(
            properties=MappingProxyType(properties),
            required=tuple(dict.fromkeys(required)),
            closed=closed,
            additional=additional,
            title=node.get('title'),
        )

    def _follow_ref(self, ref: Any, unit: ConfigUnit, path: str) -> ConfigSchema:
        if not isinstance(ref, str):
            raise InvalidSchemaError(f"{unit.name}{path}: $ref must be a string")

        file_part, _, fragment = ref.partition('#')
        target_unit = unit
        if file_part:
            target_unit = self.index.get(file_part)
            if target_unit is None:
                target_unit = self.resolver._fetch(file_part, f"{unit.name}{path}")
                self.index[file_part] = target_unit
            if not isinstance(target_unit, ConfigUnit):
                raise InvalidSchemaError(f"{unit.name}{path}: $ref '{ref}' does not name "
                                         f"a configuration schema")

        key = f"{target_unit.name}#{fragment}"
        if key in self.stack:
            chain = self.stack[self.stack.index(key):] + [key]
            raise SchemaCycleError(chain)

        target = self._navigate(target_unit.document, fragment, ref, f"{unit.name}{path}")
        self.stack.append(key)
        try:
            return self.build(target, target_unit, f"#{fragment}" if fragment else '#')
        finally:
            self.stack.pop()

    def _navigate(self, document: Dict[str, Any], pointer: str, ref: str, referrer: str) -> Any:
        """Follow a JSON pointer such as /definitions/sink."""
        current: Any = document
        for part in [p for p in pointer.split('/') if p]:
            part = part.replace('~1', '/').replace('~0', '~')
            if isinstance(current, dict) and part in current:
                current = current[part]
            elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
                current = current[int(part)]
            else:
                raise UnresolvedReferenceError(ref, referrer)
        return current


def resolve_units(*units: SchemaUnit, loader: Optional[UnitLoader] = None) -> SchemaGraph:
    """Convenience function to resolve units into a graph."""
    return SchemaResolver(loader=loader).resolve(units)
