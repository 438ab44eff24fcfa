"""
protocol/graph.py - Step dependency graph

Computes per-step dependencies, orders steps topologically and validates
protocol structure (referential integrity and acyclicity).

A mapped step depends on its ``depends_on`` step and on every step its
request mapping reads from, so diamond-shaped protocols show both edges.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Set

import networkx as nx
import logging

from .steps import AnyStep, DependentStep, MappedStep, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProtocolValidation:
    """Result of validating a protocol definition."""
    valid: bool
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "errors": list(self.errors)}


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_step_dependencies(step: AnyStep) -> List[str]:
    """
    Get the steps a step depends on.

    Independent steps have none, dependent steps have their ``depends_on``,
    mapped steps add every mapping source (deduplicated, ``depends_on`` first).
    """
    if isinstance(step, DependentStep):
        return [step.depends_on]
    if isinstance(step, MappedStep):
        deps = [step.depends_on]
        for mapping in step.request_mapping.values():
            if mapping.step not in deps:
                deps.append(mapping.step)
        return deps
    return []


def build_dependency_graph(proto: Protocol) -> Dict[str, List[str]]:
    """Map each step name to its dependency list, in declaration order."""
    return {
        name: get_step_dependencies(step)
        for name, step in proto.steps.items()
    }


def dependency_digraph(proto: Protocol) -> nx.DiGraph:
    """
    Project the dependency graph onto a networkx DiGraph.

    Edges point from a dependency to its dependent. Nodes and edges are
    added in declaration order; edges to undeclared steps are skipped.
    """
    graph = nx.DiGraph(name=proto.name)
    graph.add_nodes_from(proto.steps.keys())
    for name, deps in build_dependency_graph(proto).items():
        for dep in deps:
            if dep in proto.steps:
                graph.add_edge(dep, name)
    return graph


def topological_sort(proto: Protocol) -> List[str]:
    """
    Order steps so every dependency precedes its dependents.

    Depth-first post-order over the dependency graph; ties follow
    declaration order.
    """
    graph = build_dependency_graph(proto)
    visited: Set[str] = set()
    result: List[str] = []

    def visit(name: str) -> None:
        if name in visited:
            return
        visited.add(name)

        for dep in graph.get(name, []):
            if dep in graph:
                visit(dep)

        result.append(name)

    for name in graph:
        visit(name)

    return result


# =============================================================================
# VALIDATION
# =============================================================================

def _find_cycle(graph: Dict[str, List[str]]) -> List[str]:
    """Return the first cycle found as a closed path, or [] if acyclic."""
    visiting: Set[str] = set()
    visited: Set[str] = set()
    stack: List[str] = []

    def dfs(name: str) -> List[str]:
        if name in visiting:
            start = stack.index(name)
            return stack[start:] + [name]
        if name in visited:
            return []

        visiting.add(name)
        stack.append(name)
        for dep in graph.get(name, []):
            if dep not in graph:
                continue
            cycle = dfs(dep)
            if cycle:
                return cycle
        stack.pop()
        visiting.discard(name)
        visited.add(name)
        return []

    for name in graph:
        cycle = dfs(name)
        if cycle:
            return cycle
    return []


def validate_protocol(proto: Protocol) -> ProtocolValidation:
    """
    Validate that a protocol is well-formed.

    Never raises; callers needing fail-fast behaviour check ``valid``.
    """
    errors: List[str] = []

    if proto.initial not in proto.steps:
        errors.append(f'Initial step "{proto.initial}" not found in steps')

    for term in proto.terminal:
        if term not in proto.steps:
            errors.append(f'Terminal step "{term}" not found in steps')

    for name, step in proto.steps.items():
        if isinstance(step, (DependentStep, MappedStep)):
            if step.depends_on not in proto.steps:
                errors.append(
                    f'Step "{name}" depends on "{step.depends_on}" which doesn\'t exist'
                )
        if isinstance(step, MappedStep):
            for field_name, mapping in step.request_mapping.items():
                if mapping.step not in proto.steps:
                    errors.append(
                        f'Step "{name}" maps field "{field_name}" from '
                        f'"{mapping.step}" which doesn\'t exist'
                    )

    cycle = _find_cycle(build_dependency_graph(proto))
    if cycle:
        errors.append(
            f'Circular dependency detected involving "{cycle[0]}": {" -> ".join(cycle)}'
        )

    if errors:
        logger.info(f'Protocol "{proto.name}" is invalid: {len(errors)} error(s)')
    else:
        logger.debug(f'Protocol "{proto.name}" validated: {len(proto.steps)} steps')

    return ProtocolValidation(valid=not errors, errors=errors)
