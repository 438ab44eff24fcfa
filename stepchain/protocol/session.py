"""
protocol/session.py - Session execution engine

Dependency-gated, schema-validated execution of protocol steps.

A ProtocolSession never changes: each successful ``execute`` returns a new
session holding one more response and one more history entry. Any earlier
session stays usable, so callers can retry or fork from a checkpoint, and
concurrent executions from the same session do not interfere.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Tuple, Union
import inspect
import logging

from ..config import SessionConfig
from ..contracts.protocols import SchemaValidatorProtocol, StepExecutorProtocol
from ..errors.taxonomy import (
    MockResponseMissingError,
    ProtocolDefinitionError,
    RequestValidationError,
    ResponseValidationError,
    StepUnavailableError,
    UnknownStepError,
)
from .graph import validate_protocol
from .mapping import derive_schema_with_literals, resolve_mapping
from .schemas import as_schema
from .steps import DependentStep, MappedStep, Protocol, Step

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionContext:
    """What the executor sees about the session it runs in."""
    protocol_name: str
    history: Tuple[str, ...]
    responses: Mapping[str, Any]


@dataclass(frozen=True)
class ExecuteResult:
    """Validated response plus the session that records it."""
    response: Any
    session: "ProtocolSession"


# =============================================================================
# PROTOCOL SESSION
# =============================================================================

@dataclass(frozen=True)
class ProtocolSession:
    """
    Immutable accumulator of completed steps.

    State is the set of step names with a recorded response. ``responses``
    keeps only the most recent validated response per step; ``history``
    records every execution in order, repeats included.
    """
    protocol: Protocol
    executor: StepExecutorProtocol = field(repr=False)
    responses: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    history: Tuple[str, ...] = ()
    config: SessionConfig = field(default_factory=SessionConfig, repr=False)

    @property
    def completed(self) -> FrozenSet[str]:
        """Names of steps with a recorded response."""
        return frozenset(self.responses)

    def can_execute(self, step_name: str) -> bool:
        """
        Check whether a step is available.

        Independent steps are always available; dependent and mapped steps
        once their ``depends_on`` step has a response. Other mapping sources
        are not required here.
        """
        step = self.protocol.steps.get(step_name)
        if step is None:
            return False
        if isinstance(step, Step):
            return True
        return step.depends_on in self.responses

    def available_steps(self) -> List[str]:
        """All currently executable steps, in declaration order."""
        return [name for name in self.protocol.steps if self.can_execute(name)]

    def is_terminal(self) -> bool:
        """True when the most recent step is a declared terminal step."""
        if not self.history:
            return False
        return self.history[-1] in self.protocol.terminal

    def request_schema_for(self, step_name: str) -> SchemaValidatorProtocol:
        """
        Resolve the schema a step's request is validated against.

        Raises:
            UnknownStepError: step not declared
            StepUnavailableError: dependency has no response yet
        """
        step = self.protocol.steps.get(step_name)
        if step is None:
            raise UnknownStepError(step_name)
        if not self.can_execute(step_name):
            raise StepUnavailableError(step_name, step.depends_on)

        if isinstance(step, Step):
            return step.request

        if isinstance(step, DependentStep):
            prior = self.responses[step.depends_on]
            return as_schema(step.request(prior))

        resolved = resolve_mapping(step.request_mapping, self.responses)
        logger.debug(f"Resolved mapping for '{step_name}': {sorted(resolved)}")
        return derive_schema_with_literals(step.request_schema, resolved)

    async def execute(self, step_name: str, request: Any) -> ExecuteResult:
        """
        Execute a step and return its response with the successor session.

        Steps:
        1. Check availability
        2. Resolve and apply the request schema
        3. Await the executor
        4. Validate the response and record it in a new session

        Raises:
            StepUnavailableError: step unknown or dependency not satisfied
            RequestValidationError: request rejected; executor not called
            ResponseValidationError: response rejected; executor already ran
        """
        schema = self.request_schema_for(step_name)

        checked = schema.validate(request)
        if not checked.valid:
            logger.debug(f"Request for '{step_name}' rejected: {len(checked.errors)} issue(s)")
            raise RequestValidationError(step_name, checked.errors)

        if self.config.log_payloads:
            logger.debug(f"Request for '{step_name}': {checked.data!r}")

        context = ExecutionContext(
            protocol_name=self.protocol.name,
            history=self.history,
            responses=self.responses,
        )
        raw = await self.executor.execute(step_name, checked.data, context)

        step = self.protocol.steps[step_name]
        result = step.response.validate(raw)
        if not result.valid:
            logger.warning(
                f"Response from '{step_name}' failed validation after execution; "
                f"side effect not undone"
            )
            raise ResponseValidationError(step_name, result.errors)

        if self.config.log_payloads:
            logger.debug(f"Response from '{step_name}': {result.data!r}")

        session = self._advance(step_name, result.data)
        logger.info(
            f"Step '{step_name}' completed in protocol '{self.protocol.name}' "
            f"({len(session.history)} step(s) executed)"
        )
        return ExecuteResult(response=result.data, session=session)

    def _advance(self, step_name: str, response: Any) -> "ProtocolSession":
        responses = dict(self.responses)
        responses[step_name] = response
        return ProtocolSession(
            protocol=self.protocol,
            executor=self.executor,
            responses=MappingProxyType(responses),
            history=self.history + (step_name,),
            config=self.config,
        )

    def get_summary(self) -> Dict[str, Any]:
        """Get session summary."""
        return {
            "protocol": self.protocol.name,
            "history": list(self.history),
            "completed": sorted(self.completed),
            "available": self.available_steps(),
            "terminal": self.is_terminal(),
        }


def create_session(
    proto: Protocol,
    executor: StepExecutorProtocol,
    config: Optional[SessionConfig] = None,
) -> ProtocolSession:
    """
    Create an empty session.

    Raises:
        ProtocolDefinitionError: protocol invalid and validation on create enabled
    """
    config = config or SessionConfig()
    if config.validate_on_create:
        validation = validate_protocol(proto)
        if not validation.valid:
            raise ProtocolDefinitionError(proto.name, validation.errors)
    return ProtocolSession(protocol=proto, executor=executor, config=config)


# =============================================================================
# MOCK EXECUTOR
# =============================================================================

MockResponse = Union[Any, Callable[[Any], Any]]


class MockExecutor:
    """
    Executor returning configured responses, for tests and demos.

    Each configured response is either a static value or a callable taking
    the validated request (sync or async). Every call is recorded.
    """

    def __init__(self, responses: Mapping[str, MockResponse]):
        self._responses = dict(responses)
        self.calls: List[Tuple[str, Any, ExecutionContext]] = []

    async def execute(self, step_name: str, request: Any, context: ExecutionContext) -> Any:
        self.calls.append((step_name, request, context))
        if step_name not in self._responses:
            raise MockResponseMissingError(step_name)

        response = self._responses[step_name]
        if callable(response):
            response = response(request)
            if inspect.isawaitable(response):
                response = await response
        return response

    def calls_for(self, step_name: str) -> List[Any]:
        """Requests received for one step."""
        return [request for name, request, _ in self.calls if name == step_name]
