"""
stepchain - Multi-step request/response protocols

Declare protocols whose later steps require values from specific earlier
responses, execute them with dependency gating and schema validation, and
generate declarations that tag each forwarded value with its origin.
"""

__version__ = "0.1.0"
