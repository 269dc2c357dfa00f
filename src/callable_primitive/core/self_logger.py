"""
Self-Logger

A managed callable keeps its own log, next to its versions, instead of
writing to a shared logging system.

Layout:
    logs/{callable_id}/log.tsv                     current file
    logs/{callable_id}/log-20250101-120000-000000.tsv   rotated files

Every row has timestamp, level and message; any keyword passed to log()
becomes a column. Files are TSV so `cut`, `grep` and `sort` work on them.
Rows are only ever appended; a file is renamed aside once it reaches
max_log_size.

The DeferredCallable core never logs. Only the runtime around it does.
"""

import csv
from datetime import datetime
from itertools import islice
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from .version_manager import check_callable_id


LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')

BASE_FIELDS = ['timestamp', 'level', 'message']


class SelfLogger:
    """
    Per-callable TSV log.

    Args:
        callable_id: ID of the callable that owns the log (one path segment)
        base_dir: Data directory (the log lives in base_dir/logs/callable_id)
        max_log_size: Rotate once the current file reaches this many bytes
            (None = max_log_size from config)
    """

    def __init__(
        self,
        callable_id: str,
        base_dir: Path | str,
        max_log_size: Optional[int] = None,
    ):
        if max_log_size is None:
            from ..config import get_config
            max_log_size = get_config().max_log_size

        self.callable_id = callable_id
        self.base_dir = Path(base_dir)
        self.max_log_size = max_log_size

        self.log_dir = self.base_dir / 'logs' / check_callable_id(callable_id)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.log_file = self.log_dir / 'log.tsv'

    def log(self, level: str, message: str, **fields: Any) -> None:
        """
        Append one row.

        Fields whose value is None are left out. A field the current file
        has no column for widens its header first.

        Raises:
            ValueError: If level is not one of LEVELS
        """
        if level not in LEVELS:
            raise ValueError(f"Unknown log level {level!r}, expected one of {LEVELS}")

        if self._should_rotate():
            self._rotate()

        row = {'timestamp': datetime.now().isoformat(), 'level': level, 'message': message}
        row.update((key, value) for key, value in fields.items() if value is not None)

        self._append(row)

    def debug(self, message: str, **fields: Any) -> None:
        self.log('DEBUG', message, **fields)

    def info(self, message: str, **fields: Any) -> None:
        self.log('INFO', message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self.log('WARNING', message, **fields)

    def error(self, message: str, **fields: Any) -> None:
        self.log('ERROR', message, **fields)

    def critical(self, message: str, **fields: Any) -> None:
        self.log('CRITICAL', message, **fields)

    def get_logs(
        self,
        level: Optional[Union[str, Sequence[str]]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        **filters: Any,
    ) -> List[Dict[str, str]]:
        """
        Read rows back, oldest first, rotated files included.

        Args:
            level: Keep only this level (or any of these levels)
            limit: Return at most this many rows
            offset: Skip this many matching rows first
            **filters: Keep rows whose column equals str(value),
                e.g. status='error' or version=2

        Returns:
            Rows as dicts; empty columns are omitted
        """
        levels = {level} if isinstance(level, str) else set(level or ())
        wanted = {key: str(value) for key, value in filters.items()}

        matching = (
            row for row in self._read_rows()
            if (not levels or row.get('level') in levels)
            and all(row.get(key) == value for key, value in wanted.items())
        )

        stop = None if limit is None else offset + limit
        return list(islice(matching, offset, stop))

    def _files(self) -> List[Path]:
        """Rotated files by age, then the current file"""
        files = sorted(self.log_dir.glob('log-*.tsv'))
        if self.log_file.exists():
            files.append(self.log_file)
        return files

    def _read_rows(self) -> Iterator[Dict[str, str]]:
        for path in self._files():
            with open(path, 'r', newline='') as f:
                for row in csv.DictReader(f, delimiter='\t'):
                    # Columns added after this row was written read back empty
                    yield {key: value for key, value in row.items() if value not in (None, '')}

    def _header(self) -> List[str]:
        if not self.log_file.exists():
            return []
        with open(self.log_file, 'r', newline='') as f:
            return next(csv.reader(f, delimiter='\t'), [])

    def _append(self, row: Dict[str, Any]) -> None:
        header = self._header()
        columns = list(header or BASE_FIELDS)
        columns += [key for key in row if key not in columns]

        if header and columns != header:
            self._widen(columns)

        with open(self.log_file, 'a', newline='') as f:
            writer = csv.DictWriter(f, fieldnames=columns, delimiter='\t')
            if not header:
                writer.writeheader()
            writer.writerow(row)

    def _widen(self, columns: List[str]) -> None:
        """Rewrite the current file under a wider header"""
        with open(self.log_file, 'r', newline='') as f:
            rows = list(csv.DictReader(f, delimiter='\t'))

        staging = self.log_file.with_suffix('.tmp')
        with open(staging, 'w', newline='') as f:
            writer = csv.DictWriter(f, fieldnames=columns, delimiter='\t')
            writer.writeheader()
            writer.writerows(rows)
        staging.replace(self.log_file)

    def _should_rotate(self) -> bool:
        return self.log_file.exists() and self.log_file.stat().st_size >= self.max_log_size

    def _rotate(self) -> None:
        stamp = datetime.now().strftime('%Y%m%d-%H%M%S-%f')
        self.log_file.rename(self.log_dir / f'log-{stamp}.tsv')
