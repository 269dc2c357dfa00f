"""
Deferred Callable

A function that can be saved, shipped, and rebuilt from its source text.

A DeferredCallable holds two things:
- source: the text of a function (`|i| i ** 2`), the durable form
- executable: the function compiled from that text, the fast form

Only the source is ever serialized. The executable is always rederived
by compiling the source, so a rebuilt object behaves exactly like the
original one did.

Example:
    >>> square = DeferredCallable('|i| i ** 2')
    >>> square(3)
    9
    >>> list(filter(DeferredCallable('|i| i % 3 == 0'), range(1, 11)))
    [3, 6, 9]
    >>> DeferredCallable.deserialize(square.serialize())(4)
    16

Not thread-safe for writers. Readers always see a matching source and
executable: both live in one tuple that is replaced in a single assignment.
"""

import json
from typing import Any, Callable, Dict, Mapping, Optional

from .compiler import Compiler, get_default_compiler


SerialForm = Dict[str, str]

SERIAL_FIELDS = ('source',)


class SerialFormError(ValueError):
    """Raised when a serial form is malformed"""
    pass


class DeferredCallable:
    """
    Callable built from source text.

    Args:
        source: Source text (`|params| body`)
        compiler: Compilation backend (default: the process-wide PythonCompiler)

    Raises:
        CompileError: If source is not a valid function body
    """

    def __init__(self, source: str, compiler: Optional[Compiler] = None):
        self._compiler = compiler
        self._state = (source, self._compile(source))

    @property
    def source(self) -> str:
        """The source text the executable was compiled from"""
        return self._state[0]

    @source.setter
    def source(self, value: str) -> None:
        self.set_source(value)

    @property
    def compiler(self) -> Compiler:
        """The compilation backend"""
        return self._compiler or get_default_compiler()

    def set_source(self, value: str) -> str:
        """
        Replace the source and recompile.

        Compiles before committing: if compilation fails, the previous
        source and executable stay in place.

        Returns:
            The new source
        """
        self._state = (value, self._compile(value))
        return value

    def refresh(self) -> Callable[..., Any]:
        """
        Recompile the executable from the current source.

        Returns:
            The new executable
        """
        source = self._state[0]
        executable = self._compile(source, reload=True)
        self._state = (source, executable)
        return executable

    def call(self, *args, **kwargs) -> Any:
        """Call the executable; errors propagate unchanged"""
        return self._state[1](*args, **kwargs)

    __call__ = call

    def as_callable(self) -> Callable[..., Any]:
        """Return the current executable as a plain function"""
        return self._state[1]

    def serialize(self) -> SerialForm:
        """Return the serial form: the source and nothing else"""
        return {'source': self._state[0]}

    @classmethod
    def deserialize(
        cls,
        form: Mapping[str, Any],
        compiler: Optional[Compiler] = None,
    ) -> 'DeferredCallable':
        """
        Rebuild a DeferredCallable from a serial form.

        Raises:
            SerialFormError: If form is not a {'source': str} mapping
            CompileError: If the stored source doesn't compile
        """
        if not isinstance(form, Mapping):
            raise SerialFormError(f'Serial form must be a mapping, not {type(form).__name__}')

        if 'source' not in form:
            raise SerialFormError('Serial form is missing "source"')

        extra = sorted(set(form) - set(SERIAL_FIELDS))
        if extra:
            raise SerialFormError(f'Unexpected fields in serial form: {extra}')

        source = form['source']
        if not isinstance(source, str):
            raise SerialFormError(f'"source" must be a string, not {type(source).__name__}')

        return cls(source, compiler=compiler)

    def to_json(self) -> str:
        """Serial form as a JSON object"""
        return json.dumps(self.serialize())

    @classmethod
    def from_json(cls, text: str, compiler: Optional[Compiler] = None) -> 'DeferredCallable':
        """Rebuild from to_json() output"""
        try:
            form = json.loads(text)
        except json.JSONDecodeError as e:
            raise SerialFormError(f'Invalid JSON: {e}') from e
        return cls.deserialize(form, compiler=compiler)

    def __reduce__(self):
        # Pickle the serial form; the default backend is not stored
        return (_rebuild, (type(self), self.serialize(), self._compiler))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DeferredCallable):
            return NotImplemented
        return self.source == other.source

    __hash__ = None

    def __repr__(self) -> str:
        return f'{type(self).__name__}({self.source!r})'

    def _compile(self, source: str, reload: bool = False) -> Callable[..., Any]:
        """The only path from source text to an executable"""
        return self.compiler.compile(source, reload=reload)


def _rebuild(cls, form: SerialForm, compiler: Optional[Compiler]) -> DeferredCallable:
    """Unpickle hook: rebuild through deserialize()"""
    return cls.deserialize(form, compiler=compiler)
