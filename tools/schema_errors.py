"""Exceptions raised by schema resolution, message validation and the wire codec."""

from typing import List, Sequence


class SchemaError(Exception):
    """Base exception for schema related errors."""
    pass


# =============================================================================
# Resolution errors (fatal: no schema graph is produced)
# =============================================================================

class ResolutionError(SchemaError):
    """Raised when schema units cannot be resolved into a schema graph."""
    pass


class UnresolvedReferenceError(ResolutionError):
    """A type, import or $ref names something no supplied unit declares."""

    def __init__(self, reference: str, referrer: str = '', hint: str = ''):
        self.reference = reference
        self.referrer = referrer
        message = f"Unresolved reference '{reference}'"
        if referrer:
            message += f" in {referrer}"
        if hint:
            message += f" ({hint})"
        super().__init__(message)


class SchemaCycleError(ResolutionError):
    """A type reaches itself through non-repeated fields or $ref links."""

    def __init__(self, chain: Sequence[str]):
        self.chain = list(chain)
        super().__init__("Schema cycle: " + ' -> '.join(self.chain))


class DuplicateFieldNumberError(ResolutionError):
    """Two fields of one message share a field number."""

    def __init__(self, message_name: str, number: int, first: str, second: str):
        self.message_name = message_name
        self.number = number
        super().__init__(f"{message_name}: field number {number} used by both "
                         f"'{first}' and '{second}'")


class DuplicateFieldNameError(ResolutionError):
    """Two fields of one message share a name."""

    def __init__(self, message_name: str, field_name: str):
        self.message_name = message_name
        self.field_name = field_name
        super().__init__(f"{message_name}: duplicate field name '{field_name}'")


class DuplicateTypeNameError(ResolutionError):
    """A fully qualified type name is declared more than once."""

    def __init__(self, type_name: str, units: Sequence[str] = ()):
        self.type_name = type_name
        message = f"Duplicate type name '{type_name}'"
        if units:
            message += f" (declared in {', '.join(units)})"
        super().__init__(message)


class InvalidSchemaError(ResolutionError):
    """A declaration is malformed (bad field number, unknown type keyword, ...)."""
    pass


# =============================================================================
# Wire errors (fatal to a single decode call)
# =============================================================================

class WireError(SchemaError):
    """Raised when bytes cannot be decoded or a value cannot be encoded."""
    pass


class WireTypeMismatchError(WireError):
    """A declared field arrived with a wire kind its type cannot use."""

    def __init__(self, message_name: str, field_name: str, number: int,
                 expected: str, actual: str):
        self.field_name = field_name
        self.number = number
        super().__init__(f"{message_name}.{field_name} (#{number}): expected wire "
                         f"kind {expected}, got {actual}")


class TruncatedMessageError(WireError):
    """The input ended before a declared payload was complete."""

    def __init__(self, what: str, pos: int, needed: int, available: int):
        self.pos = pos
        self.needed = needed
        self.available = available
        super().__init__(f"Truncated {what} at pos {pos}: need {needed} bytes, "
                         f"{available} available")


class MalformedMessageError(WireError):
    """Bytes that no encoder could have produced."""
    pass


# =============================================================================
# Encode-time validation
# =============================================================================

class MessageValidationError(SchemaError):
    """Raised by the encoder when a value does not conform to its message type."""

    def __init__(self, message_name: str, violations: List):
        self.message_name = message_name
        self.violations = list(violations)
        lines = [f"{message_name}: {len(self.violations)} violation(s)"]
        lines.extend(f"  {v}" for v in self.violations)
        super().__init__('\n'.join(lines))
