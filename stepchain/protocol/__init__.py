"""
stepchain Protocol Engine

Provides:
- Step model: step, dependent_step, mapped_step, protocol, from_step
- Dependency graph: validation and topological ordering
- Field mappings: resolution and exact-value schema derivation
- ProtocolSession: dependency-gated, validated step execution
- Interchange: x-protocol extension for API description documents
"""

from .schemas import (
    NeverSchema,
    PydanticSchema,
    ValidationResult,
    as_schema,
    never,
)
from .steps import (
    AnyStep,
    DependentStep,
    FieldMapping,
    MappedStep,
    Protocol,
    Step,
    StepKind,
    dependent_step,
    from_step,
    get_step_names,
    is_field_mapping,
    mapped_step,
    protocol,
    step,
)
from .graph import (
    ProtocolValidation,
    build_dependency_graph,
    dependency_digraph,
    get_step_dependencies,
    topological_sort,
    validate_protocol,
)
from .mapping import (
    UNRESOLVED,
    PinnedSchema,
    derive_schema_with_literals,
    get_nested_value,
    resolve_mapping,
    values_equal,
)
from .session import (
    ExecuteResult,
    ExecutionContext,
    MockExecutor,
    ProtocolSession,
    create_session,
)
from .interchange import (
    EXTENSION_KEY,
    EXTENSION_LIST_KEY,
    add_protocol_to_spec,
    add_protocols_to_spec,
    protocol_to_interchange,
)

__all__ = [
    # Schemas
    "NeverSchema",
    "PydanticSchema",
    "ValidationResult",
    "as_schema",
    "never",
    # Steps
    "AnyStep",
    "DependentStep",
    "FieldMapping",
    "MappedStep",
    "Protocol",
    "Step",
    "StepKind",
    "dependent_step",
    "from_step",
    "get_step_names",
    "is_field_mapping",
    "mapped_step",
    "protocol",
    "step",
    # Graph
    "ProtocolValidation",
    "build_dependency_graph",
    "dependency_digraph",
    "get_step_dependencies",
    "topological_sort",
    "validate_protocol",
    # Mapping
    "UNRESOLVED",
    "PinnedSchema",
    "derive_schema_with_literals",
    "get_nested_value",
    "resolve_mapping",
    "values_equal",
    # Session
    "ExecuteResult",
    "ExecutionContext",
    "MockExecutor",
    "ProtocolSession",
    "create_session",
    # Interchange
    "EXTENSION_KEY",
    "EXTENSION_LIST_KEY",
    "add_protocol_to_spec",
    "add_protocols_to_spec",
    "protocol_to_interchange",
]
