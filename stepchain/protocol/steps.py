"""
protocol/steps.py - Step model

Defines the three step variants and the protocol container. All of them are
plain, immutable data created once at protocol-definition time.

- Step: static request and response schemas, no dependencies
- DependentStep: request schema computed from a prior step's response
- MappedStep: static request schema with fields pinned to prior outputs
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from ..contracts.protocols import SchemaValidatorProtocol
from .schemas import PydanticSchema, as_schema


class StepKind(str, Enum):
    """Discriminant for the step variants."""
    STEP = "step"
    DEPENDENT = "dependent_step"
    MAPPED = "mapped_step"


# =============================================================================
# FIELD MAPPING
# =============================================================================

@dataclass(frozen=True)
class FieldMapping:
    """
    Reference to a field of a prior step's response.

    ``path`` is dot-separated and may traverse nested objects.
    """
    step: str
    path: str

    def to_dict(self) -> Dict[str, str]:
        return {"step": self.step, "path": self.path}


def from_step(step: str, path: str) -> FieldMapping:
    """
    Create a field mapping.

    Example:
        from_step("authorize", "code")       # top-level field
        from_step("exchange", "data.token")  # nested field
    """
    return FieldMapping(step=step, path=path)


def is_field_mapping(value: Any) -> bool:
    """Check whether a value is a FieldMapping."""
    return isinstance(value, FieldMapping)


# =============================================================================
# STEP VARIANTS
# =============================================================================

@dataclass(frozen=True)
class Step:
    """Independent step with static request and response schemas."""
    name: str
    request: SchemaValidatorProtocol
    response: SchemaValidatorProtocol
    description: Optional[str] = None

    kind = StepKind.STEP


@dataclass(frozen=True)
class DependentStep:
    """
    Step whose request schema is derived from its dependency's response.

    ``request`` is an opaque callable: it receives the validated response of
    ``depends_on`` and returns a schema.
    """
    name: str
    depends_on: str
    request: Callable[[Any], Any]
    response: SchemaValidatorProtocol
    description: Optional[str] = None

    kind = StepKind.DEPENDENT


@dataclass(frozen=True)
class MappedStep:
    """
    Step with a static request schema and declaratively pinned fields.

    Only the fields in ``request_mapping`` are constrained to exact values;
    sources may be steps other than ``depends_on``.
    """
    name: str
    depends_on: str
    request_mapping: Mapping[str, FieldMapping]
    request_schema: SchemaValidatorProtocol
    response: SchemaValidatorProtocol
    description: Optional[str] = None

    kind = StepKind.MAPPED


AnyStep = Union[Step, DependentStep, MappedStep]


# =============================================================================
# PROTOCOL
# =============================================================================

@dataclass(frozen=True)
class Protocol:
    """A named collection of steps with an initial and optional terminal steps."""
    name: str
    steps: Mapping[str, AnyStep]
    initial: str
    terminal: Tuple[str, ...] = ()
    description: Optional[str] = None

    def get_step(self, name: str) -> Optional[AnyStep]:
        return self.steps.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self.steps


# =============================================================================
# BUILDERS
# =============================================================================

def step(
    name: str,
    request: Any,
    response: Any,
    description: Optional[str] = None,
) -> Step:
    """
    Create an independent step.

    Example:
        login = step(
            name="login",
            request=LoginRequest,
            response=LoginResponse,
        )
    """
    return Step(
        name=name,
        request=as_schema(request),
        response=as_schema(response),
        description=description,
    )


def dependent_step(
    name: str,
    depends_on: str,
    request: Callable[[Any], Any],
    response: Any,
    description: Optional[str] = None,
) -> DependentStep:
    """
    Create a step whose request schema depends on a prior response.

    Example:
        exchange = dependent_step(
            name="exchange",
            depends_on="authorize",
            request=lambda prev: exchange_request_for(prev.code),
            response=TokenResponse,
        )
    """
    if not callable(request):
        raise TypeError(f'Step "{name}": request must be callable for a dependent step')
    return DependentStep(
        name=name,
        depends_on=depends_on,
        request=request,
        response=as_schema(response),
        description=description,
    )


def mapped_step(
    name: str,
    depends_on: str,
    request_mapping: Mapping[str, FieldMapping],
    request_schema: Any,
    response: Any,
    description: Optional[str] = None,
) -> MappedStep:
    """
    Create a step whose request fields are pinned to prior outputs.

    Example:
        profile = mapped_step(
            name="profile",
            depends_on="login",
            request_mapping={"token": from_step("login", "token")},
            request_schema=ProfileRequest,
            response=ProfileResponse,
        )
    """
    for field_name, mapping in request_mapping.items():
        if not is_field_mapping(mapping):
            raise TypeError(
                f'Step "{name}": mapping for field "{field_name}" must be a '
                f"FieldMapping, got {type(mapping).__name__}"
            )
    schema = as_schema(request_schema)
    # Pinned fields need an object-shaped pydantic schema
    if isinstance(schema, PydanticSchema) and schema.model is None:
        raise TypeError(
            f'Step "{name}": request_schema must be a pydantic model or a custom '
            f"validator, got {schema!r}"
        )
    return MappedStep(
        name=name,
        depends_on=depends_on,
        request_mapping=MappingProxyType(dict(request_mapping)),
        request_schema=schema,
        response=as_schema(response),
        description=description,
    )


def protocol(
    name: str,
    steps: Union[Mapping[str, AnyStep], Iterable[AnyStep]],
    initial: str,
    terminal: Optional[Iterable[str]] = None,
    description: Optional[str] = None,
) -> Protocol:
    """
    Create a protocol definition.

    ``steps`` is either a mapping of step name to step, or an iterable of
    steps keyed by their own names. Declaration order is preserved.
    """
    if isinstance(steps, Mapping):
        step_map = dict(steps)
    else:
        step_map = {s.name: s for s in steps}
    return Protocol(
        name=name,
        steps=MappingProxyType(step_map),
        initial=initial,
        terminal=tuple(terminal or ()),
        description=description,
    )


def get_step_names(proto: Protocol) -> List[str]:
    """All step names in declaration order."""
    return list(proto.steps.keys())
