#!/usr/bin/env python3
"""
schema_loader.py - Load schema units and value documents from disk

.proto files become MessageUnits (via proto_parser); .yaml, .yml and
.json files become ConfigUnits. Import names and cross-file $ref targets
are searched in the library paths, in order.

An instance is callable, so it can be handed to SchemaResolver as the
lazy loader for imports that were not supplied up front.

Usage:
    from schema_loader import SchemaLoader
    from schema_resolver import SchemaResolver

    loader = SchemaLoader(library_paths=[Path('schemas')])
    unit = loader.load_file(Path('schemas/orders.proto'))
    graph = SchemaResolver(loader=loader).resolve([unit])
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from proto_parser import parse_proto_file
from schema_errors import InvalidSchemaError
from schema_resolver import ConfigUnit, MessageUnit, SchemaUnit

logger = logging.getLogger(__name__)

PROTO_SUFFIXES = {'.proto'}
DOCUMENT_SUFFIXES = {'.yaml', '.yml', '.json'}


def load_document(path: Path) -> Any:
    """Load a YAML or JSON document."""
    with open(path, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f)


class SchemaLoader:
    """Loads and caches schema units, searching library paths for imports."""

    def __init__(self, library_paths: Optional[List[Path]] = None):
        self.library_paths = [Path(p) for p in (library_paths or [])]
        self.cache: Dict[str, SchemaUnit] = {}

    def _resolve_file_path(self, ref_path: str) -> Optional[Path]:
        for lib_path in self.library_paths:
            candidate = lib_path / ref_path
            if candidate.exists():
                return candidate.resolve()
        return None

    def load_file(self, path: Path, name: Optional[str] = None) -> SchemaUnit:
        """Load one schema file; the unit is named after the file unless given a name."""
        path = Path(path)
        unit_name = name or path.name
        key = f"{path.resolve()}::{unit_name}"
        if key in self.cache:
            return self.cache[key]

        suffix = path.suffix.lower()
        if suffix in PROTO_SUFFIXES:
            decl = parse_proto_file(path.read_text(encoding='utf-8'))
            unit: SchemaUnit = MessageUnit.from_declarations(unit_name, decl)
        elif suffix in DOCUMENT_SUFFIXES:
            document = load_document(path)
            if not isinstance(document, dict):
                raise InvalidSchemaError(f"{path}: configuration schema must be a mapping")
            unit = ConfigUnit(unit_name, document)
        else:
            raise InvalidSchemaError(f"{path}: unsupported schema file type '{suffix}'")

        logger.debug("Loaded %s unit '%s' from %s", type(unit).__name__, unit_name, path)
        self.cache[key] = unit
        return unit

    def __call__(self, name: str) -> Optional[SchemaUnit]:
        """Lazy loader hook: find a unit by import name in the library paths."""
        path = self._resolve_file_path(name)
        if path is None:
            logger.debug("Unit '%s' not found in %d library path(s)", name, len(self.library_paths))
            return None
        return self.load_file(path, name=name)

    def load_value(self, path: Path) -> Any:
        return load_document(Path(path))
