"""
errors/ - Error Taxonomy

Categorised exceptions for protocol definition, step availability,
schema validation and mock execution.
"""

from .taxonomy import (
    ErrorCategory,
    ErrorCode,
    ValidationIssue,
    StepchainError,
    ProtocolDefinitionError,
    ProtocolNotFoundError,
    StepUnavailableError,
    UnknownStepError,
    SchemaValidationError,
    RequestValidationError,
    ResponseValidationError,
    MockResponseMissingError,
)

__all__ = [
    "ErrorCategory",
    "ErrorCode",
    "ValidationIssue",
    "StepchainError",
    "ProtocolDefinitionError",
    "ProtocolNotFoundError",
    "StepUnavailableError",
    "UnknownStepError",
    "SchemaValidationError",
    "RequestValidationError",
    "ResponseValidationError",
    "MockResponseMissingError",
]
