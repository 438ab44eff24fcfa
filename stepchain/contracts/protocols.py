"""
stepchain/contracts/protocols.py - Collaborator Protocol Definitions

Structural interfaces for the two collaborators the session engine calls
into: the per-schema validator and the caller-supplied step executor.
"""

from typing import Any, Protocol, TYPE_CHECKING, runtime_checkable

if TYPE_CHECKING:
    from stepchain.protocol.schemas import ValidationResult
    from stepchain.protocol.session import ExecutionContext

__all__ = [
    'SchemaValidatorProtocol',
    'StepExecutorProtocol',
]


@runtime_checkable
class SchemaValidatorProtocol(Protocol):
    """
    Protocol for request/response schemas.

    Any object with a conforming ``validate`` is accepted; the engine never
    looks behind this method.
    """

    def validate(self, value: Any) -> 'ValidationResult':
        """
        Validate a raw value.

        Returns:
            ValidationResult with ``data`` on success, or one issue per
            offending field path on failure.
        """
        ...


@runtime_checkable
class StepExecutorProtocol(Protocol):
    """
    Protocol for the effect boundary of a session.

    Implementations typically perform a network call. The engine awaits the
    result and validates it against the step's response schema.
    """

    async def execute(
        self,
        step_name: str,
        request: Any,
        context: 'ExecutionContext',
    ) -> Any:
        """
        Perform a step.

        Args:
            step_name: Name of the step being executed
            request: Request already validated against the step's schema
            context: Protocol name, history and recorded responses
        """
        ...
