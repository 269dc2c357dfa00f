"""
Runtime for managed callables.

- Define callables from source text
- Load them from their latest stored version
- Log every call (self-logging)
- Version every source change
"""

from .callable_runtime import CallableNotFoundError, CallableRuntime, ManagedCallable

__all__ = [
    "CallableNotFoundError",
    "CallableRuntime",
    "ManagedCallable",
]
