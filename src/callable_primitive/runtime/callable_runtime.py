"""
Callable Runtime

Manages named DeferredCallables on disk.

A managed callable is:
- Code (a DeferredCallable)
- Logs (self-logging)
- Versions (every source change is versioned)

The runtime:
- Defines callables from source text
- Loads callables from their latest stored version
- Calls them and logs every call
- Versions source updates and rollbacks
- Provides introspection
"""

import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from ..config import get_config
from ..core.compiler import CompileError, Compiler, PythonCompiler
from ..core.deferred import DeferredCallable, SerialForm
from ..core.self_logger import SelfLogger
from ..core.version_manager import VersionManager, VersionNotFoundError


class CallableNotFoundError(Exception):
    """Raised when no callable with the given ID has been defined"""
    pass


class CallableRuntime:
    """
    Runtime for managed callables.

    Args:
        base_dir: Base directory for logs and versions
        compiler: Compilation backend (None = default, or an uncached
            PythonCompiler when compile_cache is off in config)
        max_log_size: Log rotation size in bytes (None = from config)
    """

    def __init__(
        self,
        base_dir: Path | str,
        compiler: Optional[Compiler] = None,
        max_log_size: Optional[int] = None,
    ):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

        if compiler is None and not get_config().compile_cache:
            compiler = PythonCompiler(cache=False)
        self.compiler = compiler
        self.max_log_size = max_log_size

        self.versions = VersionManager(base_dir=self.base_dir)

        # Loaded callables cache
        self._callables: Dict[str, 'ManagedCallable'] = {}

    def define(
        self,
        callable_id: str,
        source: str,
        author: str = 'system',
        message: str = 'Initial version',
    ) -> 'ManagedCallable':
        """
        Define a callable from source text.

        Compiles before writing anything. Defining an existing ID updates
        its source as a new version.

        Raises:
            CompileError: If source doesn't compile (nothing is written)
        """
        if callable_id in self.list_callables():
            managed = self.load(callable_id)
            managed.update_source(source, author=author, message=message)
            return managed

        deferred = DeferredCallable(source, compiler=self.compiler)
        version_id = self.versions.save_version(
            callable_id=callable_id,
            deferred=deferred,
            author=author,
            message=message,
        )

        managed = ManagedCallable(callable_id, deferred, runtime=self)
        managed.logger.info(
            'Callable defined',
            author=author,
            commit_message=message,
            version=version_id,
        )

        self._callables[callable_id] = managed
        return managed

    def load(self, callable_id: str) -> 'ManagedCallable':
        """
        Load a callable from its latest version.

        Raises:
            CallableNotFoundError: If callable_id was never defined
            VersionIntegrityError: If the latest version's file is missing or altered
        """
        if callable_id in self._callables:
            return self._callables[callable_id]

        if self.versions.get_version(callable_id) is None:
            raise CallableNotFoundError(f"Callable not found: {callable_id}")

        deferred = self.versions.load_callable(callable_id, compiler=self.compiler)
        managed = ManagedCallable(callable_id, deferred, runtime=self)

        self._callables[callable_id] = managed
        return managed

    def import_callable(
        self,
        callable_id: str,
        form: SerialForm,
        author: str = 'system',
        message: str = 'Imported',
    ) -> 'ManagedCallable':
        """Define a callable from a serial form"""
        deferred = DeferredCallable.deserialize(form, compiler=self.compiler)
        return self.define(callable_id, deferred.source, author=author, message=message)

    def list_callables(self) -> List[str]:
        """Get IDs of all defined callables"""
        return self.versions.list_callables()


class ManagedCallable:
    """
    A named, versioned, self-logging DeferredCallable.
    """

    def __init__(
        self,
        callable_id: str,
        deferred: DeferredCallable,
        runtime: CallableRuntime,
    ):
        self.callable_id = callable_id
        self.deferred = deferred
        self.runtime = runtime

        self.logger = SelfLogger(
            callable_id=callable_id,
            base_dir=runtime.base_dir,
            max_log_size=runtime.max_log_size,
        )

    @property
    def source(self) -> str:
        return self.deferred.source

    def call(self, *args, **kwargs) -> Any:
        """
        Call the callable.

        Every call is logged. Errors from the body are logged and
        re-raised unchanged.
        """
        self.logger.info(
            'Calling',
            args=_describe(args),
            kwargs=_describe(kwargs) if kwargs else None,
        )

        try:
            result = self.deferred.call(*args, **kwargs)
        except Exception as e:
            self.logger.error(
                f'Call failed: {type(e).__name__}: {e}',
                status='error',
                error=type(e).__name__,
            )
            raise

        self.logger.debug(
            'Call completed successfully',
            status='success',
            result=_describe(result),
        )

        return result

    __call__ = call

    def as_callable(self) -> Callable[..., Any]:
        """Plain function for the current source (calls through it are not logged)"""
        return self.deferred.as_callable()

    def serialize(self) -> SerialForm:
        return self.deferred.serialize()

    def refresh(self) -> Callable[..., Any]:
        """Recompile from the current source"""
        executable = self.deferred.refresh()
        self.logger.debug('Executable refreshed')
        return executable

    def update_source(self, new_source: str, author: str, message: str) -> int:
        """
        Update the callable's source.

        The new source is compiled first; if that fails nothing is saved
        and the callable keeps its old source.

        Returns:
            New version ID

        Raises:
            CompileError: If new_source doesn't compile
        """
        try:
            self.deferred.set_source(new_source)
        except CompileError as e:
            self.logger.error(
                'Source update rejected',
                author=author,
                commit_message=message,
                error=e.reason,
            )
            raise

        version_id = self.runtime.versions.save_version(
            callable_id=self.callable_id,
            deferred=self.deferred,
            author=author,
            message=message,
        )

        self.logger.warning(
            'Source updated',
            author=author,
            commit_message=message,
            version=version_id,
        )

        return version_id

    def rollback_to_version(
        self,
        version_id: int,
        author: str,
        message: str,
    ) -> int:
        """
        Rollback to a previous version.

        Returns:
            New version ID (rollback creates new version)

        Raises:
            VersionNotFoundError: If version_id doesn't exist
        """
        version = self.get_version(version_id)
        if version is None:
            raise VersionNotFoundError(
                f"Version {version_id} not found for callable {self.callable_id}"
            )

        self.deferred.set_source(version['source'])

        new_version_id = self.runtime.versions.save_version(
            callable_id=self.callable_id,
            deferred=self.deferred,
            author=author,
            message=message,
        )

        self.logger.critical(
            f'Rolled back to version {version_id}',
            author=author,
            commit_message=message,
            from_version=version_id,
            to_version=new_version_id,
        )

        return new_version_id

    def get_logs(
        self,
        level: Optional[str] = None,
        limit: Optional[int] = None,
        **filters,
    ) -> List[Dict[str, Any]]:
        """Get callable's logs"""
        return self.logger.get_logs(level=level, limit=limit, **filters)

    def get_version_history(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Get version history"""
        return self.runtime.versions.get_history(self.callable_id, limit=limit)

    def get_version(self, version_id: int) -> Optional[Dict[str, Any]]:
        """Get specific version"""
        return self.runtime.versions.get_version(self.callable_id, version_id=version_id)

    def get_metadata(self) -> Dict[str, Any]:
        """Get callable metadata"""
        history = self.get_version_history()
        return {
            'callable_id': self.callable_id,
            'source': self.source,
            'version': history[0]['version_id'] if history else None,
            'version_count': len(history),
            'log_count': len(self.get_logs()),
        }


def _describe(value: Any) -> str:
    """Helper: Render a value for a log column"""
    try:
        return json.dumps(value, default=repr)
    except (TypeError, ValueError):
        return repr(value)
