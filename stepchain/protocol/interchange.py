"""
protocol/interchange.py - Protocol interchange format

Projects a validated protocol onto a plain step-graph description for
embedding in API description documents under the ``x-protocol`` extension:

    x-protocol:
      name: OAuth2AuthorizationCode
      initial: authorize
      terminal: [revoke]
      steps:
        - name: authorize
          next: [exchange]
        - name: exchange
          dependsOn: authorize
          next: [refresh, revoke]

Empty fields are omitted rather than emitted as null.
"""

from __future__ import annotations
from typing import Any, Dict, Iterable, List
import logging

from ..errors.taxonomy import ProtocolDefinitionError
from .graph import dependency_digraph, validate_protocol
from .steps import DependentStep, MappedStep, Protocol

logger = logging.getLogger(__name__)

EXTENSION_KEY = "x-protocol"
EXTENSION_LIST_KEY = "x-protocols"


def protocol_to_interchange(proto: Protocol) -> Dict[str, Any]:
    """
    Convert a protocol to the interchange structure.

    Raises:
        ProtocolDefinitionError: if the protocol does not validate
    """
    validation = validate_protocol(proto)
    if not validation.valid:
        raise ProtocolDefinitionError(proto.name, validation.errors)

    # next = reverse dependency edges
    graph = dependency_digraph(proto)

    steps: List[Dict[str, Any]] = []
    for name, step in proto.steps.items():
        entry: Dict[str, Any] = {"name": name}
        if isinstance(step, (DependentStep, MappedStep)):
            entry["dependsOn"] = step.depends_on
        next_steps = list(graph.successors(name))
        if next_steps:
            entry["next"] = next_steps
        if step.description:
            entry["description"] = step.description
        steps.append(entry)

    result: Dict[str, Any] = {"name": proto.name}
    if proto.description:
        result["description"] = proto.description
    result["initial"] = proto.initial
    if proto.terminal:
        result["terminal"] = list(proto.terminal)
    result["steps"] = steps

    logger.debug(f'Converted protocol "{proto.name}" to interchange: {len(steps)} steps')
    return result


def add_protocol_to_spec(document: Dict[str, Any], proto: Protocol) -> Dict[str, Any]:
    """Return a copy of an API description document with ``x-protocol`` set."""
    return {**document, EXTENSION_KEY: protocol_to_interchange(proto)}


def add_protocols_to_spec(document: Dict[str, Any], protocols: Iterable[Protocol]) -> Dict[str, Any]:
    """Return a copy of an API description document with ``x-protocols`` set."""
    return {
        **document,
        EXTENSION_LIST_KEY: [protocol_to_interchange(p) for p in protocols],
    }
