"""
stepchain Contracts Module

Structural interfaces for:
- Schema validators
- Step executors
"""

from stepchain.contracts.protocols import (
    SchemaValidatorProtocol,
    StepExecutorProtocol,
)

__all__ = [
    "SchemaValidatorProtocol",
    "StepExecutorProtocol",
]
