"""
protocol/schemas.py - Schema validators

Adapts pydantic to the schema-validator contract. The session engine only
ever calls ``validate(value)``; any object with that method can stand in for
a pydantic-backed schema.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Type, get_origin
import logging

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..contracts.protocols import SchemaValidatorProtocol
from ..errors.taxonomy import ValidationIssue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating one value against a schema."""
    valid: bool
    data: Any = None
    errors: List[ValidationIssue] = field(default_factory=list)

    @classmethod
    def ok(cls, data: Any) -> "ValidationResult":
        return cls(valid=True, data=data)

    @classmethod
    def fail(cls, errors: Sequence[ValidationIssue]) -> "ValidationResult":
        return cls(valid=False, errors=list(errors))


def issues_from_pydantic(exc: PydanticValidationError) -> List[ValidationIssue]:
    """One issue per pydantic error, path joined from its ``loc``."""
    return [
        ValidationIssue(
            path=".".join(str(part) for part in error.get("loc", ())),
            message=error.get("msg", "invalid value"),
        )
        for error in exc.errors()
    ]


class PydanticSchema:
    """
    Schema backed by a pydantic ``TypeAdapter``.

    Accepts anything pydantic can validate: model classes, unions of models
    (discriminated or not), primitives and containers.
    """

    def __init__(self, annotation: Any):
        self.annotation = annotation
        self._adapter = TypeAdapter(annotation)

    @property
    def model(self) -> Optional[Type[BaseModel]]:
        """The model class when this schema is object-shaped, else None."""
        if isinstance(self.annotation, type) and issubclass(self.annotation, BaseModel):
            return self.annotation
        return None

    def validate(self, value: Any) -> ValidationResult:
        try:
            data = self._adapter.validate_python(value)
        except PydanticValidationError as exc:
            return ValidationResult.fail(issues_from_pydantic(exc))
        return ValidationResult.ok(data)

    def __repr__(self) -> str:
        name = getattr(self.annotation, "__name__", None) or repr(self.annotation)
        return f"PydanticSchema({name})"


class NeverSchema:
    """Schema that rejects every value."""

    def validate(self, value: Any) -> ValidationResult:
        return ValidationResult.fail([ValidationIssue(path="", message="No value is accepted")])

    def __repr__(self) -> str:
        return "NeverSchema()"


def never() -> NeverSchema:
    """Schema for a step that is illegal given the prior response."""
    return NeverSchema()


def is_schema_validator(obj: Any) -> bool:
    """
    True for objects that already satisfy the validator contract.

    Classes and typing constructs are excluded: pydantic models expose a
    legacy ``validate`` classmethod that does not follow the contract.
    """
    if isinstance(obj, type) or get_origin(obj) is not None:
        return False
    return isinstance(obj, SchemaValidatorProtocol)


def as_schema(obj: Any) -> SchemaValidatorProtocol:
    """Coerce a pydantic type (or an existing validator) into a validator."""
    if is_schema_validator(obj):
        return obj
    return PydanticSchema(obj)
