"""
Core primitives of the Callable Primitive System.

- Compiler: turns source text into a function (the single choke point)
- DeferredCallable: source text and the function compiled from it
- SelfLogger: per-callable TSV logs
- VersionManager: versioned storage of serial forms

These primitives must be rock solid. Everything else builds on them.
"""

from .compiler import CompileError, Compiler, PythonCompiler, get_default_compiler
from .deferred import DeferredCallable, SerialFormError
from .self_logger import SelfLogger
from .version_manager import (
    InvalidCallableIdError,
    VersionError,
    VersionIntegrityError,
    VersionManager,
    VersionNotFoundError,
)

__all__ = [
    "CompileError",
    "Compiler",
    "DeferredCallable",
    "InvalidCallableIdError",
    "PythonCompiler",
    "SelfLogger",
    "SerialFormError",
    "VersionError",
    "VersionIntegrityError",
    "VersionManager",
    "VersionNotFoundError",
    "get_default_compiler",
]
