"""
typegen/loader.py - Load protocols from modules and write generated types.
"""

from __future__ import annotations
from pathlib import Path
from types import ModuleType
from typing import Optional, Union
import importlib
import importlib.util
import logging
import sys

from ..config import EmitterConfig
from ..errors.taxonomy import ProtocolNotFoundError
from ..protocol.steps import Protocol
from .emitter import generate_protocol_types

logger = logging.getLogger(__name__)

DEFAULT_ATTRIBUTE = "protocol"


def _import_target(target: Union[str, Path]) -> ModuleType:
    path = Path(target)
    if path.suffix == ".py":
        if not path.is_file():
            raise ProtocolNotFoundError(f"Protocol module not found: {path}")
        module_name = f"_stepchain_protocol_{path.stem}"
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise ProtocolNotFoundError(f"Cannot load protocol module: {path}")
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        spec.loader.exec_module(module)
        return module
    return importlib.import_module(str(target))


def load_protocol(target: Union[str, Path], attribute: Optional[str] = None) -> Protocol:
    """
    Load a protocol from a dotted module name or a ``.py`` file.

    Lookup order: ``attribute`` if given, then a module-level ``protocol``,
    then the single module-level Protocol instance.
    """
    module = _import_target(target)

    if attribute is not None:
        value = getattr(module, attribute, None)
        if not isinstance(value, Protocol):
            raise ProtocolNotFoundError(
                f"{target}: attribute '{attribute}' is not a Protocol"
            )
        return value

    value = getattr(module, DEFAULT_ATTRIBUTE, None)
    if isinstance(value, Protocol):
        return value

    candidates = [v for v in vars(module).values() if isinstance(v, Protocol)]
    if len(candidates) == 1:
        return candidates[0]
    if not candidates:
        raise ProtocolNotFoundError(f"{target}: no Protocol defined at module level")
    raise ProtocolNotFoundError(
        f"{target}: {len(candidates)} Protocols defined; pass the attribute name"
    )


def generate_protocol_types_from_module(
    target: Union[str, Path],
    attribute: Optional[str] = None,
    config: Optional[EmitterConfig] = None,
) -> str:
    """Load a protocol from a module and generate its declarations."""
    proto = load_protocol(target, attribute)
    return generate_protocol_types(proto, config)


def write_protocol_types(
    proto: Protocol,
    path: Union[str, Path],
    config: Optional[EmitterConfig] = None,
) -> Path:
    """Generate declarations for a protocol and write them to ``path``."""
    output = Path(path)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(generate_protocol_types(proto, config), encoding="utf-8")
    logger.info(f'Wrote types for protocol "{proto.name}" to {output}')
    return output
