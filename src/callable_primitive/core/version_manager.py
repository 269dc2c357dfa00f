"""
Version Manager

Keeps every source a callable has ever had.

On disk, per callable:
    versions/{callable_id}/metadata.tsv   one row per version
    versions/{callable_id}/v{N}.json      the serial form of version N

metadata.tsv columns: version_id, timestamp, author, message, hash.
The hash is the SHA-256 of the source and is checked on every read, so a
hand-edited or truncated v{N}.json is reported instead of being run.

Nothing is ever deleted. A rollback copies an old source forward as a
new version.

Only serial forms ({"source": ...}) touch the disk. Loading goes through
DeferredCallable.deserialize, so a loaded callable is compiled exactly
like a freshly constructed one.
"""

import csv
import hashlib
import json
from datetime import datetime
from itertools import islice
from pathlib import Path
from typing import Any, Dict, List, Optional

from .compiler import Compiler
from .deferred import DeferredCallable


METADATA_FIELDS = ['version_id', 'timestamp', 'author', 'message', 'hash']


class VersionError(Exception):
    """Base class for store errors"""
    pass


class VersionNotFoundError(VersionError):
    """Raised when a callable or one of its versions isn't stored"""
    pass


class VersionIntegrityError(VersionError):
    """Raised when a stored version is missing or no longer matches its hash"""
    pass


class InvalidCallableIdError(ValueError):
    """Raised when a callable ID can't be used as a directory name"""
    pass


class VersionManager:
    """
    Versioned store of serial forms.

    Args:
        base_dir: Data directory; versions go in base_dir/versions
    """

    def __init__(self, base_dir: Path | str):
        self.base_dir = Path(base_dir)
        self.versions_dir = self.base_dir / 'versions'
        self.versions_dir.mkdir(parents=True, exist_ok=True)

    def save_version(
        self,
        callable_id: str,
        deferred: DeferredCallable,
        author: str,
        message: str,
    ) -> int:
        """
        Store the callable's current serial form as the next version.

        The form is written before its metadata row, so a row always
        points at a complete file.

        Returns:
            The new version ID (IDs start at 1)
        """
        form = deferred.serialize()
        history_dir = self._history_dir(callable_id)
        history_dir.mkdir(parents=True, exist_ok=True)

        version_id = self._get_next_version_id(callable_id)
        self._form_path(callable_id, version_id).write_text(json.dumps(form), encoding='utf-8')

        metadata_file = self._metadata_path(callable_id)
        write_header = not metadata_file.exists()

        with open(metadata_file, 'a', newline='') as f:
            writer = csv.DictWriter(f, fieldnames=METADATA_FIELDS, delimiter='\t')
            if write_header:
                writer.writeheader()
            writer.writerow({
                'version_id': version_id,
                'timestamp': datetime.now().isoformat(),
                'author': author,
                'message': message,
                'hash': compute_hash(form['source']),
            })

        return version_id

    def get_version(self, callable_id: str, version_id: Optional[int] = None) -> Optional[Dict[str, Any]]:
        """
        Metadata plus 'source' for one version (None = latest).

        Returns None when the callable or version isn't stored.

        Raises:
            VersionIntegrityError: If v{N}.json is missing, unreadable or
                doesn't match the recorded hash
        """
        rows = self._read_metadata(callable_id)
        if version_id is not None:
            rows = [row for row in rows if row['version_id'] == version_id]
        if not rows:
            return None

        row = rows[-1]
        form_path = self._form_path(callable_id, row['version_id'])
        label = f"version {row['version_id']} of {callable_id}"

        if not form_path.exists():
            raise VersionIntegrityError(f'{label} is recorded but {form_path.name} is missing')

        try:
            form = json.loads(form_path.read_text(encoding='utf-8'))
        except json.JSONDecodeError as e:
            raise VersionIntegrityError(f'{label} is not valid JSON: {e}') from e

        source = form.get('source') if isinstance(form, dict) else None
        if not isinstance(source, str) or compute_hash(source) != row['hash']:
            raise VersionIntegrityError(f'{label} does not match its hash')

        return {**row, 'source': source}

    def load_callable(
        self,
        callable_id: str,
        version_id: Optional[int] = None,
        compiler: Optional[Compiler] = None,
    ) -> DeferredCallable:
        """
        Rebuild a stored version as a DeferredCallable.

        Raises:
            VersionNotFoundError: If the version isn't stored
            VersionIntegrityError: If the stored source doesn't match its hash
            CompileError: If the stored source doesn't compile
        """
        version = self.get_version(callable_id, version_id)
        if version is None:
            which = 'latest version' if version_id is None else f'version {version_id}'
            raise VersionNotFoundError(f'No {which} for callable {callable_id}')

        return DeferredCallable.deserialize({'source': version['source']}, compiler=compiler)

    def get_history(
        self,
        callable_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """Metadata rows (no source), most recent first"""
        newest_first = reversed(self._read_metadata(callable_id))
        stop = None if limit is None else offset + limit
        return list(islice(newest_first, offset, stop))

    def rollback(
        self,
        callable_id: str,
        to_version: int,
        author: str,
        message: str,
        compiler: Optional[Compiler] = None,
    ) -> int:
        """
        Copy an old version forward as a new one.

        Returns:
            The new version ID

        Raises:
            VersionNotFoundError: If to_version isn't stored
        """
        old = self.load_callable(callable_id, to_version, compiler=compiler)
        return self.save_version(callable_id, old, author=author, message=message)

    def list_callables(self) -> List[str]:
        """IDs with at least one stored version"""
        return sorted(
            path.name for path in self.versions_dir.iterdir()
            if (path / 'metadata.tsv').exists()
        )

    def _history_dir(self, callable_id: str) -> Path:
        return self.versions_dir / check_callable_id(callable_id)

    def _metadata_path(self, callable_id: str) -> Path:
        return self._history_dir(callable_id) / 'metadata.tsv'

    def _form_path(self, callable_id: str, version_id: int) -> Path:
        return self._history_dir(callable_id) / f'v{version_id}.json'

    def _read_metadata(self, callable_id: str) -> List[Dict[str, Any]]:
        """All rows, oldest first, with integer version IDs"""
        metadata_file = self._metadata_path(callable_id)
        if not metadata_file.exists():
            return []

        with open(metadata_file, 'r', newline='') as f:
            rows = list(csv.DictReader(f, delimiter='\t'))
        for row in rows:
            row['version_id'] = int(row['version_id'])
        return rows

    def _get_next_version_id(self, callable_id: str) -> int:
        rows = self._read_metadata(callable_id)
        return max((row['version_id'] for row in rows), default=0) + 1


def compute_hash(source: str) -> str:
    """SHA-256 hex digest of source text"""
    return hashlib.sha256(source.encode()).hexdigest()


def check_callable_id(callable_id: str) -> str:
    """
    Make sure an ID names a single directory under the data directory.

    Returns:
        The ID unchanged

    Raises:
        InvalidCallableIdError: If the ID is empty or '.', or contains a path
            separator, '..' or a NUL byte
    """
    if (
        not isinstance(callable_id, str)
        or callable_id.strip() in ('', '.')
        or '..' in callable_id
        or any(sep in callable_id for sep in ('/', '\\', '\0'))
    ):
        raise InvalidCallableIdError(f'Invalid callable ID: {callable_id!r}')
    return callable_id
