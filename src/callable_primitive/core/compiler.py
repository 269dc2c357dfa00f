"""
Compiler

Turns source text into a live Python function.

Source text is a parameter header followed by a body:

    |i| i ** 2
    |a, b=2| a * b
    |items|
        total = sum(items)
        total / len(items)

Design principles:
- One choke point: every executable is produced by Compiler.compile()
- The source is dropped into a minimal `def` template and compiled once
- A trailing expression statement is returned (implicit return)
- Each executable gets fresh globals (no captured environment)
- Code objects are cached by source text; functions never are
"""

import ast
import builtins
import hashlib
import linecache
import textwrap
import types
from typing import Any, Callable, Dict, Optional, Tuple


# Name of the function in the generated template
TEMPLATE_NAME = '__deferred__'

# Templates kept in linecache by a compiler whose code cache is off
LINECACHE_LIMIT = 256


class CompileError(Exception):
    """Raised when source text can't be compiled into a function"""

    def __init__(self, reason: str, source: str, lineno: Optional[int] = None):
        self.reason = reason
        self.source = source
        self.lineno = lineno

        location = f' (line {lineno})' if lineno is not None else ''
        super().__init__(f'Cannot compile {source!r}{location}: {reason}')


class Compiler:
    """
    Compilation backend interface.

    Subclasses turn source text into a callable or raise CompileError.
    Backends used with pickling must themselves be picklable.
    """

    def compile(self, source: str, reload: bool = False) -> Callable[..., Any]:
        raise NotImplementedError


class PythonCompiler(Compiler):
    """
    Default backend: compiles source text with the built-in compile()/exec().

    Args:
        cache: Cache compiled code objects by source text (default: True)
    """

    def __init__(self, cache: bool = True):
        self.cache_enabled = cache
        self._code_cache: Dict[str, Tuple[types.CodeType, str]] = {}
        self._cache_stats = {'hits': 0, 'misses': 0}
        # linecache filenames this compiler registered, oldest first
        self._registered: Dict[str, None] = {}

    def compile(self, source: str, reload: bool = False) -> Callable[..., Any]:
        """
        Compile source text into a function.

        Args:
            source: Source text (`|params| body`)
            reload: If True, bypass the code cache and compile again

        Returns:
            A new function object with its own globals

        Raises:
            TypeError: If source is not a string
            CompileError: If source is not a valid function body
        """
        if not isinstance(source, str):
            raise TypeError(f'source must be a string, not {type(source).__name__}')

        # Check cache (unless reload=True)
        if self.cache_enabled and not reload and source in self._code_cache:
            self._cache_stats['hits'] += 1
            code, filename = self._code_cache[source]
        else:
            self._cache_stats['misses'] += 1
            code, filename = self._compile_code(source)
            if self.cache_enabled:
                self._code_cache[source] = (code, filename)

        return self._make_function(code, filename, source)

    def clear_cache(self) -> None:
        """Clear the code cache and the templates registered with linecache"""
        self._code_cache.clear()
        self._cache_stats = {'hits': 0, 'misses': 0}

        for filename in self._registered:
            linecache.cache.pop(filename, None)
        self._registered.clear()

    def get_cache_stats(self) -> Dict[str, int]:
        """
        Get cache statistics.

        Returns:
            Dict with 'hits', 'misses', 'size'
        """
        return {
            'hits': self._cache_stats['hits'],
            'misses': self._cache_stats['misses'],
            'size': len(self._code_cache),
        }

    def _compile_code(self, source: str) -> Tuple[types.CodeType, str]:
        """Build the template, parse it and compile the module code"""
        params, body, body_line = split_source(source)
        template = render_template(params, body)
        filename = f'<deferred:{hashlib.sha256(source.encode()).hexdigest()[:12]}>'

        try:
            tree = ast.parse(template, filename=filename, mode='exec')
            function_def = tree.body[0]
            _return_trailing_expression(function_def)
            ast.fix_missing_locations(tree)
            code = compile(tree, filename, 'exec')
        except SyntaxError as e:
            raise CompileError(
                e.msg or 'invalid syntax',
                source,
                _source_lineno(e.lineno, body_line),
            ) from e
        except ValueError as e:
            # e.g. null bytes in source
            raise CompileError(str(e), source) from e

        self._register_lines(filename, template)

        return code, filename

    def _register_lines(self, filename: str, template: str) -> None:
        """Let tracebacks and inspect show the template lines"""
        linecache.cache[filename] = (
            len(template),
            None,
            template.splitlines(True),
            filename,
        )

        self._registered.pop(filename, None)
        self._registered[filename] = None

        # Cached code keeps its lines until clear_cache(); otherwise keep the newest
        if not self.cache_enabled:
            while len(self._registered) > LINECACHE_LIMIT:
                oldest = next(iter(self._registered))
                del self._registered[oldest]
                linecache.cache.pop(oldest, None)

    def _make_function(self, code: types.CodeType, filename: str, source: str) -> Callable[..., Any]:
        """Execute the module code once in fresh globals and pick out the function"""
        namespace = {
            '__builtins__': builtins,
            '__name__': filename,
        }

        # Parameter defaults are evaluated here, when the def runs
        try:
            exec(code, namespace)
        except Exception as e:
            raise CompileError(
                f'evaluating parameter defaults failed: {type(e).__name__}: {e}',
                source,
                1,
            ) from e

        function = namespace[TEMPLATE_NAME]
        function.__name__ = '<deferred>'
        function.__qualname__ = '<deferred>'
        return function

    def __getstate__(self) -> Dict[str, Any]:
        # Code objects don't pickle; the cache rebuilds itself
        return {'cache_enabled': self.cache_enabled}

    def __setstate__(self, state: Dict[str, Any]) -> None:
        self.__init__(cache=state['cache_enabled'])


def split_source(source: str) -> Tuple[str, str, int]:
    """
    Split source text into (parameters, body, first body line).

    The header is optional. It closes at the first `|` that leaves a valid
    Python parameter list between the pipes, so defaults may contain `|`.

    If the body starts on the header line, the lines after it are used as
    written. If the header line is otherwise empty, the body below it is
    dedented as a block.

    The first body line is the 1-based line of `source` where the body
    starts; it maps template line numbers back onto the source.
    """
    params = ''
    rest = source
    first_line = 1

    stripped = source.lstrip()
    if stripped.startswith('|'):
        close = stripped.find('|', 1)
        while close != -1:
            candidate = stripped[1:close]
            if _is_parameter_list(candidate):
                params = candidate.strip()
                rest = stripped[close + 1:]
                first_line = source[:len(source) - len(stripped)].count('\n') + 1
                break
            close = stripped.find('|', close + 1)

    first, newline, remaining = rest.partition('\n')
    if first.strip():
        return params, first.lstrip() + newline + remaining, first_line

    return params, textwrap.dedent(remaining), first_line + 1


def render_template(params: str, body: str) -> str:
    """Insert parameters and body into the function template"""
    if not body.strip():
        body = 'pass'
    return f'def {TEMPLATE_NAME}({params}):\n' + textwrap.indent(body, '    ') + '\n'


def _is_parameter_list(text: str) -> bool:
    """Check whether text is valid between the parentheses of a def"""
    if '\n' in text:
        return False
    try:
        ast.parse(f'def _({text}): pass')
    except SyntaxError:
        return False
    return True


def _return_trailing_expression(function_def: ast.FunctionDef) -> None:
    """Helper: Turn a trailing expression statement into a return"""
    last = function_def.body[-1]
    if isinstance(last, ast.Expr):
        function_def.body[-1] = ast.copy_location(ast.Return(value=last.value), last)


def _source_lineno(template_lineno: Optional[int], body_line: int) -> Optional[int]:
    """Helper: Map a template line number back to the source line number"""
    if template_lineno is None:
        return None
    if template_lineno <= 1:
        # The def line holds the parameter header
        return 1
    return body_line + template_lineno - 2


# Process-wide default backend (lazy loaded)
_default_compiler = None


def get_default_compiler() -> PythonCompiler:
    """
    Get the default compilation backend.

    A plain PythonCompiler; it never reads configuration. The runtime
    applies the compile_cache setting by passing its own compiler.
    """
    global _default_compiler
    if _default_compiler is None:
        _default_compiler = PythonCompiler()
    return _default_compiler
