"""
Configuration — loads settings from .chunkpress.yaml, environment variables,
and built-in defaults (in that priority order: CLI args > env > YAML > defaults).
"""

import os

import yaml

from .errors import ConfigError


_DEFAULTS = {
    "chunk_size": 50,
    "retries": 3,
    "retry_delay": 1.0,
    "output_directory": "./",
    "log_level": "off",
    "response_format": "xml",
    "temperature": 0.0,
    "max_tokens": 8192,
    "system_prompt": "You are a helpful assistant",
    "model": "deepseek-chat",
    "base_url": "https://api.deepseek.com",
    "api_key": None,
    "max_file_size": 10 * 1024 * 1024,
    "preprocess": True,
}

RESPONSE_FORMATS = ("xml", "json")
LOG_LEVELS = ("debug", "info", "warning", "warn", "error", "off")

# Config file search locations
_CONFIG_FILENAMES = [".chunkpress.yaml", ".chunkpress.yml"]

# Output subdirectory holding staged files, logs and snapshots
PRESS_OUTPUT_DIRNAME = "press.output"


def _find_config_file(explicit_path: str | None = None) -> str | None:
    """Find the config file. Checks explicit path, CWD, then user home."""
    if explicit_path:
        if os.path.isfile(explicit_path):
            return explicit_path
        return None

    # Search CWD first, then home directory
    search_dirs = [os.getcwd(), os.path.expanduser("~")]
    for d in search_dirs:
        for name in _CONFIG_FILENAMES:
            path = os.path.join(d, name)
            if os.path.isfile(path):
                return path
    return None


def _load_yaml(path: str) -> dict:
    """Load YAML file, returns empty dict on failure."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return {}


def _to_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


class Config:
    """Application configuration.

    Settings are resolved in priority order:
    1. CLI arguments (handled by caller)
    2. Environment variables
    3. .chunkpress.yaml config file
    4. Built-in defaults

    A ``Config`` is passed explicitly to the pipeline; nothing reads it
    from module state.
    """

    def __init__(self, yaml_data: dict | None = None, path: str | None = None):
        yd = yaml_data or {}
        self.path = path

        # Helper: env var > yaml > default
        def _get(env_key: str | None, yaml_key: str, cast=str):
            env_val = os.getenv(env_key) if env_key else None
            if env_val is not None:
                return cast(env_val)
            yaml_val = yd.get(yaml_key)
            if yaml_val is not None:
                return cast(yaml_val)
            default = _DEFAULTS[yaml_key]
            return cast(default) if default is not None else None

        try:
            self.chunk_size = _get("CHUNK_SIZE", "chunk_size", cast=int)
            self.retries = _get("PRESS_RETRIES", "retries", cast=int)
            self.retry_delay = _get("PRESS_RETRY_DELAY", "retry_delay", cast=float)
            self.output_directory = _get("PRESS_OUTPUT_DIRECTORY", "output_directory")
            self.log_level = _get("PRESS_LOG_LEVEL", "log_level").lower()
            self.response_format = _get("PRESS_RESPONSE_FORMAT",
                                        "response_format").lower()
            self.temperature = _get("PRESS_TEMPERATURE", "temperature", cast=float)
            self.max_tokens = _get("PRESS_MAX_TOKENS", "max_tokens", cast=int)
            self.system_prompt = _get("PRESS_SYSTEM_PROMPT", "system_prompt")
            self.model = _get("PRESS_MODEL", "model")
            self.base_url = _get("PRESS_BASE_URL", "base_url")
            self.api_key = _get("DEEPSEEK_API_KEY", "api_key")
            self.max_file_size = _get(None, "max_file_size", cast=int)
            self.preprocess = _get("PRESS_PREPROCESS", "preprocess", cast=_to_bool)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid configuration value: {exc}") from exc

    @property
    def press_output_dir(self) -> str:
        """Directory holding staged files, logs, rollback and checkpoint data."""
        return os.path.join(self.output_directory, PRESS_OUTPUT_DIRNAME)

    def validate(self) -> None:
        """Reject obviously wrong values before any work starts."""
        if self.chunk_size < 0:
            raise ConfigError(f"Chunk size cannot be negative: {self.chunk_size}")
        if self.retries < 0:
            raise ConfigError(f"Retries cannot be negative: {self.retries}")
        if not 0.0 <= self.temperature <= 2.0:
            raise ConfigError("Temperature must be between 0.0 and 2.0")
        if self.response_format not in RESPONSE_FORMATS:
            raise ConfigError(
                f"Unknown response format {self.response_format!r} "
                f"(expected one of {', '.join(RESPONSE_FORMATS)})")
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"Unknown log level {self.log_level!r}")

    def update(self, **values) -> list[str]:
        """Set the given attributes (``None`` values are skipped).

        Returns the names that changed.
        """
        changed = []
        for key, value in values.items():
            if value is None:
                continue
            if key not in _DEFAULTS:
                raise ConfigError(f"Unknown config key: {key}")
            setattr(self, key, value)
            changed.append(key)
        return changed

    def to_dict(self) -> dict:
        return {key: getattr(self, key) for key in _DEFAULTS}

    def save(self, path: str | None = None) -> str:
        """Write the current settings to YAML and return the file path."""
        target = path or self.path or os.path.join(
            os.path.expanduser("~"), _CONFIG_FILENAMES[0])
        data = {k: v for k, v in self.to_dict().items() if v is not None}
        with open(target, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, sort_keys=True)
        self.path = target
        return target

    @classmethod
    def load(cls, config_path: str | None = None) -> "Config":
        """Load config from YAML file (if found) + env vars + defaults."""
        path = _find_config_file(config_path)
        yaml_data = _load_yaml(path) if path else {}
        return cls(yaml_data, path=path or config_path)
