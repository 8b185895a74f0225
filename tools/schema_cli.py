#!/usr/bin/env python3
"""
schema_cli.py - Resolve schemas, validate values, encode and decode messages

Usage:
    python tools/schema_cli.py resolve orders.proto mqtt_table.json
    python tools/schema_cli.py validate mqtt_table.json table.yaml
    python tools/schema_cli.py validate orders.proto order.yaml --message Order
    python tools/schema_cli.py encode orders.proto order.yaml --message Order
    python tools/schema_cli.py decode orders.proto "0A 02 41 31" --message Order

Options:
    -L/--library DIR   extra search path for imports and $ref targets
                       (the schema file's own directory is searched first)
    --json             machine-readable output
    -v/--verbose       debug logging
"""

import argparse
import base64
import json
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional

import yaml

from logging_utils import configure_cli_logging
from schema_errors import SchemaError
from schema_graph import (
    ArraySchema, EnumSchema, ObjectSchema, PrimitiveSchema, SchemaGraph, VariantSchema,
)
from schema_loader import SchemaLoader
from schema_resolver import SchemaResolver
from schema_validator import ValidationResult, validate_config, validate_message
from wire_codec import WireCodec

logger = logging.getLogger('schema_cli')


def parse_payload(payload: str) -> bytes:
    """Parse hex payload text ('0A 02', '0x0a,0x02', '0a02') to bytes."""
    clean = payload.replace(' ', '').replace('0x', '').replace(',', '')
    return bytes.fromhex(clean)


def _json_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode('ascii')
    raise TypeError(f"Not JSON serializable: {type(value).__name__}")


def load_graph(paths: List[Path], library: List[Path]) -> SchemaGraph:
    """Load schema files and resolve them, with imports found on the library path."""
    search = []
    for path in paths:
        if path.parent not in search:
            search.append(path.parent)
    search.extend(library)
    loader = SchemaLoader(library_paths=search)
    units = [loader.load_file(p) for p in paths]
    graph = SchemaResolver(loader=loader).resolve(units)
    logger.info("Resolved %d message type(s) and %d config schema(s)",
                len(graph.messages), len(graph.configs))
    return graph


def describe_config(node: Any) -> str:
    if isinstance(node, ObjectSchema):
        policy = 'closed' if node.closed else 'open'
        return (f"object ({policy}, {len(node.properties)} properties, "
                f"required: {', '.join(node.required) or '-'})")
    if isinstance(node, VariantSchema):
        names = ', '.join(node.option_name(i) for i in range(len(node.options)))
        keyword = 'oneOf' if node.exclusive else 'anyOf'
        return f"{keyword} [{names}]"
    if isinstance(node, EnumSchema):
        return f"enum [{', '.join(node.allowed)}]"
    if isinstance(node, PrimitiveSchema):
        return node.kind.value
    if isinstance(node, ArraySchema):
        return 'array'
    return type(node).__name__


def print_graph(graph: SchemaGraph) -> None:
    for name, msg in graph.messages.items():
        print(f"message {name} ({msg.unit})")
        for f in msg.fields:
            oneof = f"  [oneof {f.oneof}]" if f.oneof else ''
            print(f"  {f.number:>4}  {f.name}: {f.type_label}{oneof}")
    for name, enum in graph.enums.items():
        members = ', '.join(f"{n}={v}" for n, v in enum.values)
        print(f"enum {name}: {members}")
    for name, node in graph.configs.items():
        print(f"config {name}: {describe_config(node)}")
        if isinstance(node, ObjectSchema):
            for prop, sub in node.properties.items():
                print(f"  {prop}: {describe_config(sub)}")


def print_violations(result: ValidationResult) -> None:
    if result.valid:
        print("Value: VALID")
        return
    print(f"Value: INVALID ({len(result.violations)} violation(s))")
    for v in result.violations:
        print(f"  - {v}")
        for cause in v.causes:
            print(f"      {cause}")


def graph_to_dict(graph: SchemaGraph) -> dict:
    return {
        'messages': {
            name: [{'name': f.name, 'number': f.number, 'type': f.type_label,
                    'oneof': f.oneof} for f in msg.fields]
            for name, msg in graph.messages.items()
        },
        'enums': {name: dict(enum.values) for name, enum in graph.enums.items()},
        'configs': {name: describe_config(node) for name, node in graph.configs.items()},
    }


# =============================================================================
# Commands
# =============================================================================

def cmd_resolve(args: argparse.Namespace) -> int:
    graph = load_graph(args.schemas, args.library)
    if args.json:
        print(json.dumps(graph_to_dict(graph), indent=2))
    else:
        print_graph(graph)
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    graph = load_graph([args.schema], args.library)
    value = SchemaLoader().load_value(args.value)
    if args.message:
        result = validate_message(graph, args.message, value)
    else:
        result = validate_config(graph.config(args.schema.name), value)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(f"Validating: {args.value}")
        print("=" * 50)
        print_violations(result)
    return 0 if result.valid else 1


def cmd_encode(args: argparse.Namespace) -> int:
    graph = load_graph([args.schema], args.library)
    value = SchemaLoader().load_value(args.value)
    payload = WireCodec(graph, packed=args.packed).encode(args.message, value)
    if args.json:
        print(json.dumps({'message': args.message, 'hex': payload.hex().upper(),
                          'length': len(payload)}))
    else:
        print(payload.hex().upper())
    return 0


def cmd_decode(args: argparse.Namespace) -> int:
    graph = load_graph([args.schema], args.library)
    report = WireCodec(graph).decode_report(args.message, parse_payload(args.payload))
    for warning in report.warnings:
        logger.warning(warning)
    if not report.success:
        for error in report.errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1
    print(json.dumps(report.data, indent=2 if args.json else None, default=_json_default))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Resolve schemas, validate values and encode/decode messages'
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('-L', '--library', type=Path, action='append', default=[],
                        help='Additional search path for imports and $ref targets')
    common.add_argument('--json', action='store_true', help='Output results as JSON')
    common.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')

    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('resolve', parents=[common], help='Resolve schema files')
    p.add_argument('schemas', type=Path, nargs='+', help='Schema files (.proto, .json, .yaml)')
    p.set_defaults(func=cmd_resolve)

    p = sub.add_parser('validate', parents=[common], help='Validate a value file')
    p.add_argument('schema', type=Path, help='Schema file')
    p.add_argument('value', type=Path, help='Value file (YAML or JSON)')
    p.add_argument('--message', help='Validate against this message type')
    p.set_defaults(func=cmd_validate)

    p = sub.add_parser('encode', parents=[common], help='Encode a value file to hex')
    p.add_argument('schema', type=Path, help='Message schema file')
    p.add_argument('value', type=Path, help='Value file (YAML or JSON)')
    p.add_argument('--message', required=True, help='Message type to encode')
    p.add_argument('--packed', action='store_true', help='Pack repeated numeric fields')
    p.set_defaults(func=cmd_encode)

    p = sub.add_parser('decode', parents=[common], help='Decode a hex payload')
    p.add_argument('schema', type=Path, help='Message schema file')
    p.add_argument('payload', help='Payload as hex')
    p.add_argument('--message', required=True, help='Message type to decode')
    p.set_defaults(func=cmd_decode)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    # decode and encode write their payload to stdout even without --json
    machine_output = args.json or args.command in ('decode', 'encode')
    configure_cli_logging(verbose=args.verbose, machine_output=machine_output)

    try:
        return args.func(args)
    except (SchemaError, OSError, yaml.YAMLError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
