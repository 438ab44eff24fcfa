"""
stepchain Type Generation

Provides:
- ProvenanceTypeEmitter: TypedDict declarations with provenance tags
- annotation_to_source: typing-expression rendering of annotations
- load_protocol / write_protocol_types: module loading and file output
"""

from .annotations import annotation_to_source
from .emitter import (
    ProvenanceTypeEmitter,
    collect_tagged_outputs,
    generate_protocol_types,
    to_pascal_case,
)
from .loader import (
    generate_protocol_types_from_module,
    load_protocol,
    write_protocol_types,
)

__all__ = [
    "annotation_to_source",
    "ProvenanceTypeEmitter",
    "collect_tagged_outputs",
    "generate_protocol_types",
    "to_pascal_case",
    "generate_protocol_types_from_module",
    "load_protocol",
    "write_protocol_types",
]
