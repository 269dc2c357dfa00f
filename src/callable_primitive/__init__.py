"""
Callable Primitive: functions that outlive the process that made them.

A callable primitive pairs source text with the function compiled from it.
The source is the durable form: it is what gets saved, shipped, and
versioned. The function is always rebuilt from the source, never stored.

The Callable Primitive System provides:
- DeferredCallable: source text + live function, kept in sync
- Pluggable compilation backends (PythonCompiler by default)
- Serial forms ({"source": ...}) via JSON and pickle
- Versioned, self-logging managed callables (CallableRuntime)
- HTTP push/pull of serial forms

Example:
    >>> from callable_primitive import DeferredCallable
    >>>
    >>> square = DeferredCallable('|i| i ** 2')
    >>> square(3)
    9
    >>> form = square.serialize()          # {'source': '|i| i ** 2'}
    >>> DeferredCallable.deserialize(form)(4)
    16

Philosophy:
    The source text is the truth. The compiled function is a cache of it.
    The two never diverge: every executable comes from compiling the
    current source, in one place.
"""

__version__ = "0.1.0"
__license__ = "MIT"

from .core.compiler import CompileError, Compiler, PythonCompiler, get_default_compiler
from .core.deferred import DeferredCallable, SerialFormError
from .runtime.callable_runtime import CallableNotFoundError, CallableRuntime, ManagedCallable

__all__ = [
    "__version__",
    "CallableNotFoundError",
    "CallableRuntime",
    "CompileError",
    "Compiler",
    "DeferredCallable",
    "ManagedCallable",
    "PythonCompiler",
    "SerialFormError",
    "get_default_compiler",
]
