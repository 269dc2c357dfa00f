"""
Runtime configuration loader

Reads callable_primitive.tsv (key<TAB>value, # comments) for runtime settings.
Environment variables (CALLABLE_PRIMITIVE_<KEY>) override the file.
Falls back to defaults for anything not set.
"""

import os
import csv
from pathlib import Path
from typing import Any, Dict, Optional


ENV_PREFIX = 'CALLABLE_PRIMITIVE_'

DEFAULTS: Dict[str, str] = {
    'data_dir': 'data',
    'max_log_size': str(10 * 1024 * 1024),  # 10MB
    'compile_cache': 'true',
    'default_author': 'system',
    'http_timeout': '10',
}


class ConfigError(Exception):
    """Raised when a config value can't be parsed"""
    pass


class RuntimeConfig:
    """Load and manage runtime configuration"""

    def __init__(self, config_file: str | Path = "callable_primitive.tsv"):
        self.config_file = Path(config_file)
        self.values: Dict[str, str] = {}
        self.sources: Dict[str, str] = {}
        self._load()

    def _load(self):
        """Load defaults, then the TSV file, then environment overrides"""
        for key, value in DEFAULTS.items():
            self.values[key] = value
            self.sources[key] = 'default'

        if self.config_file.exists():
            with open(self.config_file, 'r', encoding='utf-8') as f:
                reader = csv.reader(
                    (line for line in f if not line.startswith('#')),
                    delimiter='\t'
                )

                for row in reader:
                    # Skip empty rows
                    if not row or not row[0].strip():
                        continue
                    if len(row) < 2:
                        raise ConfigError(f"Missing value for {row[0].strip()!r} in {self.config_file}")

                    key = row[0].strip()
                    self.values[key] = row[1].strip()
                    self.sources[key] = 'file'

        for key in list(self.values):
            env_value = os.environ.get(ENV_PREFIX + key.upper())
            if env_value is not None:
                self.values[key] = env_value
                self.sources[key] = 'env'

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get a raw config value"""
        return self.values.get(key, default)

    def get_int(self, key: str) -> int:
        """Get a config value as int"""
        value = self.values[key]
        try:
            return int(value)
        except ValueError:
            raise ConfigError(f"{key} must be an integer, got {value!r}")

    def get_float(self, key: str) -> float:
        """Get a config value as float"""
        value = self.values[key]
        try:
            return float(value)
        except ValueError:
            raise ConfigError(f"{key} must be a number, got {value!r}")

    def get_bool(self, key: str) -> bool:
        """Get a config value as bool (true/false, yes/no, 1/0, on/off)"""
        value = self.values[key].strip().lower()
        if value in ('true', 'yes', '1', 'on'):
            return True
        if value in ('false', 'no', '0', 'off'):
            return False
        raise ConfigError(f"{key} must be a boolean, got {value!r}")

    @property
    def data_dir(self) -> Path:
        return Path(self.values['data_dir'])

    @property
    def max_log_size(self) -> int:
        return self.get_int('max_log_size')

    @property
    def compile_cache(self) -> bool:
        return self.get_bool('compile_cache')

    @property
    def default_author(self) -> str:
        return self.values['default_author']

    @property
    def http_timeout(self) -> float:
        return self.get_float('http_timeout')

    def as_dict(self) -> Dict[str, Any]:
        """Get all values with where each came from"""
        return {
            key: {'value': value, 'source': self.sources[key]}
            for key, value in self.values.items()
        }


# Global instance (lazy loaded)
_config = None


def get_config() -> RuntimeConfig:
    """Get the global runtime configuration"""
    global _config
    if _config is None:
        _config = RuntimeConfig()
    return _config


def reload_config():
    """Reload configuration from file and environment"""
    global _config
    _config = RuntimeConfig()
