"""
errors/taxonomy.py - Error classification for protocol definition and execution.

Every error raised by stepchain carries a category and a numeric code so
callers can branch on the failure kind without string matching.
Executor exceptions are never wrapped; they propagate as raised.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence


class ErrorCategory(Enum):
    """Error categories."""
    # Malformed protocol (1xxx)
    DEFINITION = "definition"

    # Step gated on an unmet dependency (2xxx)
    AVAILABILITY = "availability"

    # Request/response schema mismatch (3xxx)
    VALIDATION = "validation"

    # Executor-side failures raised by stepchain itself (4xxx)
    EXECUTOR = "executor"


class ErrorCode(Enum):
    """Specific error codes."""

    # Definition (1xxx)
    DEF_INVALID_PROTOCOL = 1001
    DEF_UNKNOWN_PROTOCOL_TARGET = 1002

    # Availability (2xxx)
    AVL_DEPENDENCY_PENDING = 2001
    AVL_UNKNOWN_STEP = 2002

    # Validation (3xxx)
    VAL_REQUEST = 3001
    VAL_RESPONSE = 3002

    # Executor (4xxx)
    EXE_MOCK_MISSING = 4001


@dataclass(frozen=True)
class ValidationIssue:
    """One offending field path reported by a schema validator."""
    path: str
    message: str

    def __str__(self) -> str:
        if self.path:
            return f"{self.path}: {self.message}"
        return self.message

    def to_dict(self) -> Dict[str, str]:
        return {"path": self.path, "message": self.message}


class StepchainError(Exception):
    """Base exception for all stepchain errors."""

    code: ErrorCode = ErrorCode.DEF_INVALID_PROTOCOL
    category: ErrorCategory = ErrorCategory.DEFINITION

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "category": self.category.value,
            "message": self.message,
        }


# =============================================================================
# DEFINITION ERRORS
# =============================================================================

class ProtocolDefinitionError(StepchainError):
    """Raised when an operation refuses to proceed on an invalid protocol."""

    def __init__(self, protocol_name: str, errors: Sequence[str]):
        self.protocol_name = protocol_name
        self.errors: List[str] = list(errors)
        super().__init__(
            f'Invalid protocol "{protocol_name}": {", ".join(self.errors)}'
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["protocol"] = self.protocol_name
        data["errors"] = self.errors
        return data


class ProtocolNotFoundError(StepchainError):
    """Raised when a module holds no loadable protocol definition."""

    code = ErrorCode.DEF_UNKNOWN_PROTOCOL_TARGET


# =============================================================================
# AVAILABILITY ERRORS
# =============================================================================

class StepUnavailableError(StepchainError):
    """Raised when a step is executed before its dependency has a response."""

    code = ErrorCode.AVL_DEPENDENCY_PENDING
    category = ErrorCategory.AVAILABILITY

    def __init__(self, step_name: str, missing: Optional[str] = None, message: Optional[str] = None):
        self.step_name = step_name
        self.missing = missing
        if message is None:
            message = (
                f'Cannot execute "{step_name}": dependency "{missing}" not satisfied'
            )
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["step"] = self.step_name
        data["missing"] = self.missing
        return data


class UnknownStepError(StepUnavailableError):
    """Raised when a step name is not declared by the protocol."""

    code = ErrorCode.AVL_UNKNOWN_STEP

    def __init__(self, step_name: str):
        super().__init__(step_name, message=f"Unknown step: {step_name}")


# =============================================================================
# VALIDATION ERRORS
# =============================================================================

class SchemaValidationError(StepchainError):
    """Base for request/response schema mismatches."""

    category = ErrorCategory.VALIDATION
    direction = "payload"

    def __init__(self, step_name: str, issues: Sequence[ValidationIssue]):
        self.step_name = step_name
        self.issues: List[ValidationIssue] = list(issues)
        detail = "; ".join(str(issue) for issue in self.issues) or "validation failed"
        super().__init__(f'Invalid {self.direction} for "{step_name}": {detail}')

    @property
    def paths(self) -> List[str]:
        """Offending field paths, one per issue."""
        return [issue.path for issue in self.issues]

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["step"] = self.step_name
        data["issues"] = [issue.to_dict() for issue in self.issues]
        return data


class RequestValidationError(SchemaValidationError):
    """Request rejected before the executor was called."""

    code = ErrorCode.VAL_REQUEST
    direction = "request"


class ResponseValidationError(SchemaValidationError):
    """
    Response rejected after the executor ran.

    The executor's side effect has already happened and is not undone.
    """

    code = ErrorCode.VAL_RESPONSE
    direction = "response"


# =============================================================================
# EXECUTOR ERRORS
# =============================================================================

class MockResponseMissingError(StepchainError):
    """Raised by MockExecutor for a step with no configured response."""

    code = ErrorCode.EXE_MOCK_MISSING
    category = ErrorCategory.EXECUTOR

    def __init__(self, step_name: str):
        self.step_name = step_name
        super().__init__(f"No mock response configured for step: {step_name}")
