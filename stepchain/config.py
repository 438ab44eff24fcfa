"""
stepchain/config.py - Library configuration

Provides configuration for session execution and type generation, loaded
from environment variables or defaults.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict
import keyword
import os
import logging

logger = logging.getLogger(__name__)


_TRUE_VALUES = ("true", "1", "yes")


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


@dataclass
class SessionConfig:
    """Session engine configuration."""

    # Refuse to create sessions over invalid protocols
    validate_on_create: bool = True

    # Log request/response bodies at DEBUG
    log_payloads: bool = False

    @classmethod
    def from_env(cls) -> "SessionConfig":
        return cls(
            validate_on_create=_env_flag("STEPCHAIN_VALIDATE_ON_CREATE", True),
            log_payloads=_env_flag("STEPCHAIN_LOG_PAYLOADS", False),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "validate_on_create": self.validate_on_create,
            "log_payloads": self.log_payloads,
        }


@dataclass
class EmitterConfig:
    """Provenance type emitter configuration."""

    # Name of the generated tag class
    tag_type_name: str = "StepOutput"

    # Emit TAGGED_FIELDS and check_tags()
    emit_runtime_checks: bool = True

    # Emit the "Generated types for protocol" comment
    header: bool = True

    def __post_init__(self):
        """Validate configuration."""
        if not self.tag_type_name.isidentifier() or keyword.iskeyword(self.tag_type_name):
            raise ValueError(
                f"tag_type_name must be a valid identifier, got {self.tag_type_name!r}"
            )

    @classmethod
    def from_env(cls) -> "EmitterConfig":
        return cls(
            tag_type_name=os.getenv("STEPCHAIN_TAG_TYPE_NAME", "StepOutput"),
            emit_runtime_checks=_env_flag("STEPCHAIN_EMIT_RUNTIME_CHECKS", True),
            header=_env_flag("STEPCHAIN_EMIT_HEADER", True),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tag_type_name": self.tag_type_name,
            "emit_runtime_checks": self.emit_runtime_checks,
            "header": self.header,
        }


@dataclass
class StepchainConfig:
    """Complete library configuration."""

    session: SessionConfig = field(default_factory=SessionConfig)
    emitter: EmitterConfig = field(default_factory=EmitterConfig)

    @classmethod
    def from_env(cls) -> "StepchainConfig":
        config = cls(
            session=SessionConfig.from_env(),
            emitter=EmitterConfig.from_env(),
        )
        logger.debug(f"Loaded configuration from environment: {config.to_dict()}")
        return config

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session": self.session.to_dict(),
            "emitter": self.emitter.to_dict(),
        }
