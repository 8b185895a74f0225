#!/usr/bin/env python3
"""
proto_parser.py - Parse .proto text into message-family declarations

Produces the declaration structure consumed by schema_resolver.MessageUnit:

    {
        'syntax': 'proto3',
        'package': 'online_store',
        'imports': ['address.proto'],
        'messages': [{'name': 'Order', 'fields': [...]}, ...],
        'enums': [{'name': 'Status', 'values': [...]}, ...],
    }

Nested messages and enums are flattened with qualified names
('Outer.Inner'). oneof members become ordinary fields tagged with their
group name. Options, reserved statements and services are skipped.

Usage:
    from proto_parser import parse_proto_file

    decl = parse_proto_file(Path('orders.proto').read_text())
"""

import re
from typing import Any, Dict, List, Optional

from schema_errors import InvalidSchemaError

TOKEN_RE = re.compile(r'''
    (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
  | (?P<number>[-+]?(?:0[xX][0-9a-fA-F]+
                     |(?:\d+\.\d*|\.\d+)(?:[eE][-+]?\d+)?
                     |\d+[eE][-+]?\d+
                     |\d+))
  | (?P<ident>\.?[A-Za-z_][\w.]*)
  | (?P<symbol>[{}=;<>,\[\]()])
''', re.VERBOSE)

COMMENT_RE = re.compile(r'//[^\n]*|/\*.*?\*/', re.DOTALL)

MODIFIERS = ('optional', 'repeated', 'required')


class ProtoSyntaxError(InvalidSchemaError):
    """Raised when .proto text cannot be parsed."""
    pass


def tokenize(content: str) -> List[str]:
    content = COMMENT_RE.sub(' ', content)
    tokens = []
    pos = 0
    for match in TOKEN_RE.finditer(content):
        gap = content[pos:match.start()]
        if gap.strip():
            raise ProtoSyntaxError(f"Unexpected text: {gap.strip()[:20]!r}")
        tokens.append(match.group(0))
        pos = match.end()
    if content[pos:].strip():
        raise ProtoSyntaxError(f"Unexpected text: {content[pos:].strip()[:20]!r}")
    return tokens


class _Parser:
    def __init__(self, tokens: List[str]):
        self.tokens = tokens
        self.pos = 0
        self.result: Dict[str, Any] = {
            'syntax': 'proto3',
            'package': None,
            'imports': [],
            'messages': [],
            'enums': [],
        }

    def peek(self) -> Optional[str]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def next(self) -> str:
        tok = self.peek()
        if tok is None:
            raise ProtoSyntaxError("Unexpected end of input")
        self.pos += 1
        return tok

    def expect(self, want: str) -> None:
        tok = self.next()
        if tok != want:
            raise ProtoSyntaxError(f"Expected '{want}', got '{tok}'")

    def ident(self) -> str:
        tok = self.next()
        if not re.match(r'\.?[A-Za-z_]', tok):
            raise ProtoSyntaxError(f"Expected identifier, got '{tok}'")
        return tok

    def number(self) -> int:
        """Integer literal: decimal, 0x hex or leading-zero octal."""
        tok = self.next()
        digits = tok.lstrip('+-')
        sign = -1 if tok.startswith('-') else 1
        try:
            if digits[:2] in ('0x', '0X'):
                return sign * int(digits[2:], 16)
            if len(digits) > 1 and digits.startswith('0'):
                return sign * int(digits, 8)
            return sign * int(digits)
        except ValueError:
            raise ProtoSyntaxError(f"Expected number, got '{tok}'") from None

    def skip_statement(self) -> None:
        """Skip to the end of a statement or a balanced block."""
        depth = 0
        while True:
            tok = self.next()
            if tok == '{':
                depth += 1
            elif tok == '}':
                depth -= 1
                if depth == 0:
                    return
            elif tok == ';' and depth == 0:
                return

    # -------------------------------------------------------------------------

    def parse(self) -> Dict[str, Any]:
        while self.peek() is not None:
            tok = self.next()
            if tok == 'syntax':
                self.expect('=')
                self.result['syntax'] = self.next().strip('"\'')
                self.expect(';')
            elif tok == 'package':
                self.result['package'] = self.ident()
                self.expect(';')
            elif tok == 'import':
                target = self.next()
                if target in ('public', 'weak'):
                    target = self.next()
                self.result['imports'].append(target.strip('"\''))
                self.expect(';')
            elif tok == 'message':
                self.parse_message('')
            elif tok == 'enum':
                self.parse_enum('')
            elif tok in ('option', 'service', 'extend'):
                self.skip_statement()
            elif tok == ';':
                continue
            else:
                raise ProtoSyntaxError(f"Unexpected top-level token '{tok}'")
        return self.result

    def parse_message(self, scope: str) -> None:
        name = scope + self.ident()
        self.expect('{')
        fields: List[Dict[str, Any]] = []
        self.result['messages'].append({'name': name, 'fields': fields})

        while True:
            tok = self.peek()
            if tok == '}':
                self.next()
                return
            if tok == 'message':
                self.next()
                self.parse_message(name + '.')
            elif tok == 'enum':
                self.next()
                self.parse_enum(name + '.')
            elif tok == 'oneof':
                self.next()
                group = self.ident()
                self.expect('{')
                while self.peek() != '}':
                    if self.peek() == 'option':
                        self.skip_statement()
                        continue
                    fields.append(self.parse_field(oneof=group))
                self.expect('}')
            elif tok in ('option', 'reserved', 'extensions', 'extend'):
                self.skip_statement()
            elif tok == 'map':
                raise ProtoSyntaxError(f"{name}: map fields are not supported")
            elif tok == ';':
                self.next()
            else:
                fields.append(self.parse_field())

    def parse_field(self, oneof: Optional[str] = None) -> Dict[str, Any]:
        modifier = ''
        if self.peek() in MODIFIERS:
            modifier = self.next()
        field_type = self.ident()
        field_name = self.ident()
        self.expect('=')
        field_num = self.number()
        if self.peek() == '[':
            # Field options such as [packed = true]
            while self.next() != ']':
                pass
        self.expect(';')
        return {
            'modifier': modifier,
            'type': field_type,
            'name': field_name,
            'number': field_num,
            'is_repeated': modifier == 'repeated',
            'is_optional': modifier == 'optional',
            'oneof': oneof,
        }

    def parse_enum(self, scope: str) -> None:
        name = scope + self.ident()
        self.expect('{')
        values = []
        while self.peek() != '}':
            if self.peek() in ('option', 'reserved'):
                self.skip_statement()
                continue
            if self.peek() == ';':
                self.next()
                continue
            value_name = self.ident()
            self.expect('=')
            number = self.number()
            if self.peek() == '[':
                while self.next() != ']':
                    pass
            self.expect(';')
            values.append({'name': value_name, 'number': number})
        self.expect('}')
        self.result['enums'].append({'name': name, 'values': values})


def parse_proto_file(content: str) -> Dict[str, Any]:
    """Parse proto file text and extract its declarations."""
    return _Parser(tokenize(content)).parse()
