"""
protocol/mapping.py - Declarative field mappings

Resolves ``(step, path)`` references against a session's recorded responses
and derives the request schema a mapped step is actually validated against:
the static schema with every resolved field pinned to its exact value.
"""

from __future__ import annotations
from enum import Enum
from typing import Annotated, Any, Callable, Dict, List, Mapping, Sequence, Union
import logging

from pydantic import AfterValidator, BaseModel, create_model

from ..contracts.protocols import SchemaValidatorProtocol
from ..errors.taxonomy import ValidationIssue
from .schemas import PydanticSchema, ValidationResult, is_schema_validator
from .steps import FieldMapping

logger = logging.getLogger(__name__)


class _Unresolved:
    """Sentinel for a mapping whose source value does not exist (yet)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNRESOLVED"

    def __bool__(self) -> bool:
        return False


UNRESOLVED = _Unresolved()

_MISSING = object()


# =============================================================================
# PATH NAVIGATION
# =============================================================================

def _child(current: Any, key: str) -> Any:
    if isinstance(current, Mapping):
        return current.get(key, _MISSING)
    if isinstance(current, BaseModel):
        if key in type(current).model_fields:
            return getattr(current, key)
        extra = current.model_extra or {}
        return extra.get(key, _MISSING)
    if isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
        try:
            return current[int(key)]
        except (ValueError, IndexError):
            return _MISSING
    return _MISSING


def get_nested_value(obj: Any, path: str, default: Any = None) -> Any:
    """
    Get a nested value by dot-separated path.

    Walks mappings, model attributes and (for integer segments) sequences.
    Returns ``default`` as soon as a segment cannot be followed; never raises.

    Example:
        get_nested_value({"data": {"token": "abc"}}, "data.token")  # "abc"
    """
    current = obj
    for key in path.split("."):
        current = _child(current, key)
        if current is _MISSING:
            return default
    return current


def resolve_mapping(
    request_mapping: Mapping[str, FieldMapping],
    responses: Mapping[str, Any],
) -> Dict[str, Any]:
    """
    Resolve each mapped field to the value recorded by its source step.

    Fields whose source step has not run, or whose path does not exist in
    the recorded response, resolve to ``UNRESOLVED``.
    """
    resolved: Dict[str, Any] = {}
    for field_name, mapping in request_mapping.items():
        if mapping.step not in responses:
            logger.debug(
                f"Field '{field_name}' unresolved: step '{mapping.step}' has no response"
            )
            resolved[field_name] = UNRESOLVED
            continue
        resolved[field_name] = get_nested_value(
            responses[mapping.step], mapping.path, UNRESOLVED
        )
    return resolved


# =============================================================================
# LITERAL SCHEMA DERIVATION
# =============================================================================

def _normalize(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump()
    if isinstance(value, Enum):
        return value.value
    return value


def values_equal(actual: Any, expected: Any) -> bool:
    """Exact-value comparison used for pinned fields (bool never equals int)."""
    actual, expected = _normalize(actual), _normalize(expected)
    if isinstance(actual, bool) != isinstance(expected, bool):
        return False
    return actual == expected


_UNAVAILABLE_MESSAGE = "source value is not available; its step has not produced it"


def _exact_value(expected: Any) -> Callable[[Any], Any]:
    def check(value: Any) -> Any:
        if expected is UNRESOLVED:
            raise ValueError(_UNAVAILABLE_MESSAGE)
        if not values_equal(value, expected):
            raise ValueError(f"must equal {expected!r}")
        return value
    return check


class PinnedSchema:
    """
    Exact-value pinning over a validator that cannot be subclassed.

    Validates against the base schema first, then compares each pinned
    top-level field of the validated data with its expected value.
    """

    def __init__(self, base: SchemaValidatorProtocol, resolved: Mapping[str, Any]):
        self.base = base
        self.resolved = dict(resolved)

    def validate(self, value: Any) -> ValidationResult:
        result = self.base.validate(value)
        if not result.valid:
            return result

        issues: List[ValidationIssue] = []
        for key, expected in self.resolved.items():
            actual = _child(result.data, key)
            if actual is _MISSING:
                issues.append(ValidationIssue(path=key, message="Field required"))
            elif expected is UNRESOLVED:
                issues.append(ValidationIssue(path=key, message=_UNAVAILABLE_MESSAGE))
            elif not values_equal(actual, expected):
                issues.append(ValidationIssue(path=key, message=f"must equal {expected!r}"))

        if issues:
            return ValidationResult.fail(issues)
        return result

    def __repr__(self) -> str:
        return f"PinnedSchema({self.base!r}, {sorted(self.resolved)})"


def _object_model(schema: Any) -> Any:
    if isinstance(schema, PydanticSchema):
        return schema.model
    if isinstance(schema, type) and issubclass(schema, BaseModel):
        return schema
    return None


def derive_schema_with_literals(
    base: Any,
    resolved: Mapping[str, Any],
) -> Union[PydanticSchema, PinnedSchema]:
    """
    Derive a request schema with resolved fields pinned to exact values.

    For a pydantic model, every field named in ``resolved`` is replaced by an
    exact-value constraint; other fields keep their original constraint and
    keys that are not fields of the model are ignored. Any other validator is
    wrapped in a ``PinnedSchema`` that checks every key of ``resolved``.

    Raises:
        TypeError: if ``base`` is a pydantic schema that is not a model
    """
    model = _object_model(base)
    if model is None:
        if is_schema_validator(base) and not isinstance(base, PydanticSchema):
            return PinnedSchema(base, resolved)
        raise TypeError(
            f"Cannot pin fields on non-object schema {base!r}; a pydantic model is required"
        )

    overrides: Dict[str, Any] = {}
    for key in model.model_fields:
        if key in resolved:
            overrides[key] = (Annotated[Any, AfterValidator(_exact_value(resolved[key]))], ...)

    if not overrides:
        return PydanticSchema(model)

    derived = create_model(model.__name__, __base__=model, **overrides)
    return PydanticSchema(derived)
