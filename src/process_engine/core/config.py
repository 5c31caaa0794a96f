"""
Configuration loader for the process execution engine.

Configuration is resolved in three layers:
1. Built-in defaults
2. An optional YAML file (``--config`` or ``ENGINE_CONFIG``)
3. Environment variable overrides (a repo-root ``.env`` is loaded first,
   existing shell variables take precedence)
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

try:
    import yaml
except ImportError:
    yaml = None

from .exceptions import EngineConfigError


logger = logging.getLogger(__name__)
_DOTENV_LOADED = False

DEFAULT_DIMENSIONS: Tuple[int, ...] = (384, 768, 1536)

_DEFAULTS: Dict[str, Any] = {
    "database": {
        "backend": "sqlite",
        "sqlite_path": "local/state/journey_engine.db",
        "sqlserver": {
            "host": "localhost",
            "port": 1433,
            "database": "Journeys",
            "user": "sa",
            "password": "",
            "driver": "ODBC Driver 18 for SQL Server",
            "schema": "engine",
            "connection_string": None,
            "trust_server_certificate": True,
        },
    },
    "worker": {
        "poll_seconds": 5.0,
        "batch_size": 10,
        "worker_id": None,
    },
    "ollama": {
        "base_url": "http://localhost:11434",
        "embedding_model": "nomic-embed-text",
        "chat_model": "llama3.2",
        "timeout_seconds": 120,
    },
    "vector": {
        "dimensions": list(DEFAULT_DIMENSIONS),
    },
    "logging": {
        "level": "INFO",
        "structured": False,
    },
}


def _load_dotenv_if_present() -> None:
    """
    Load .env into process env for local runs.

    Existing shell environment variables take precedence.
    """
    global _DOTENV_LOADED
    if _DOTENV_LOADED:
        return

    # config.py -> core -> process_engine -> src -> repo root
    env_path = Path(__file__).resolve().parents[3] / ".env"
    if not env_path.exists():
        _DOTENV_LOADED = True
        return

    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip("'").strip('"')
        if key and os.environ.get(key) is None:
            os.environ[key] = value

    _DOTENV_LOADED = True


def _first_non_empty_env(*keys: str) -> Optional[str]:
    """Return the first non-empty env var value for the given keys."""
    for key in keys:
        value = os.environ.get(key)
        if value is not None and value.strip() != "":
            return value
    return None


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def parse_dimensions(value: Union[str, List[int], Tuple[int, ...]]) -> Tuple[int, ...]:
    """
    Parse a dimension list from config.

    Accepts a comma separated string ("384,768") or a sequence of ints.

    Raises:
        EngineConfigError: If any dimension is not a positive integer
    """
    if isinstance(value, str):
        parts = [p.strip() for p in value.split(",") if p.strip()]
    else:
        parts = list(value)

    try:
        dims = tuple(sorted({int(p) for p in parts}))
    except (TypeError, ValueError) as e:
        raise EngineConfigError(f"Invalid vector dimensions: {value!r}") from e

    if not dims or any(d <= 0 for d in dims):
        raise EngineConfigError(f"Vector dimensions must be positive integers: {value!r}")
    return dims


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


class EngineConfig:
    """
    Configuration for the process engine, worker and embedding store.

    Example:
        >>> config = EngineConfig.load(Path("config/engine.yaml"))
        >>> config.get("worker.batch_size")
        10
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize configuration from an already-parsed mapping.

        Args:
            config: Partial configuration merged over the defaults
        """
        self.config = _merge(copy.deepcopy(_DEFAULTS), config or {})
        self._validate()

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "EngineConfig":
        """
        Load configuration from YAML (optional) and the environment.

        Args:
            config_path: Path to YAML config file. Falls back to the
                ENGINE_CONFIG environment variable when omitted.

        Raises:
            EngineConfigError: If the file is missing or cannot be parsed
        """
        _load_dotenv_if_present()

        if config_path is None:
            env_path = _first_non_empty_env("ENGINE_CONFIG")
            config_path = Path(env_path) if env_path else None

        raw: Dict[str, Any] = {}
        if config_path is not None:
            raw = cls._read_yaml(Path(config_path))

        _apply_env_overrides(raw)
        return cls(raw)

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Create config from defaults, ENGINE_CONFIG and environment variables."""
        return cls.load()

    @staticmethod
    def _read_yaml(config_path: Path) -> Dict[str, Any]:
        if yaml is None:
            raise ImportError(
                "pyyaml is required for config loading. "
                "Install with: pip install pyyaml"
            )

        if not config_path.exists():
            raise EngineConfigError(f"Config file not found: {config_path}")

        logger.info(f"Loading config from: {config_path}")

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise EngineConfigError(f"Invalid YAML in {config_path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise EngineConfigError(f"Config root must be a mapping: {config_path}")
        return data

    def _validate(self) -> None:
        backend = str(self.get("database.backend", "sqlite")).lower()
        if backend not in ("sqlite", "sqlserver"):
            raise EngineConfigError(
                f"Unknown database backend: {backend}. "
                "Supported backends: 'sqlite', 'sqlserver'"
            )
        self.config["database"]["backend"] = backend

        try:
            poll = float(self.get("worker.poll_seconds"))
            batch = int(self.get("worker.batch_size"))
        except (TypeError, ValueError) as e:
            raise EngineConfigError(f"Invalid worker settings: {e}") from e
        if poll <= 0:
            raise EngineConfigError("worker.poll_seconds must be positive")
        if batch <= 0:
            raise EngineConfigError("worker.batch_size must be positive")
        self.config["worker"]["poll_seconds"] = poll
        self.config["worker"]["batch_size"] = batch

        self.config["vector"]["dimensions"] = list(
            parse_dimensions(self.get("vector.dimensions"))
        )

    @property
    def backend(self) -> str:
        return self.config["database"]["backend"]

    @property
    def sqlite_path(self) -> Path:
        return Path(self.config["database"]["sqlite_path"])

    @property
    def poll_seconds(self) -> float:
        return self.config["worker"]["poll_seconds"]

    @property
    def batch_size(self) -> int:
        return self.config["worker"]["batch_size"]

    @property
    def worker_id(self) -> Optional[str]:
        return self.config["worker"].get("worker_id")

    @property
    def dimensions(self) -> Tuple[int, ...]:
        return tuple(self.config["vector"]["dimensions"])

    def get_ollama_config(self) -> Dict[str, Any]:
        """Get Ollama provider configuration."""
        return self.config.get("ollama", {})

    def get_sqlserver_connection_string(self) -> str:
        """Build the ODBC connection string for the SQL Server backend."""
        sql = self.config["database"]["sqlserver"]
        if sql.get("connection_string"):
            return sql["connection_string"]

        trust_cert = "yes" if sql.get("trust_server_certificate", True) else "no"
        return (
            f"Driver={{{sql['driver']}}};"
            f"Server={sql['host']},{sql['port']};"
            f"Database={sql['database']};"
            f"UID={sql['user']};"
            f"PWD={sql.get('password') or ''};"
            f"Encrypt=no;"
            f"TrustServerCertificate={trust_cert}"
        )

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by dotted key."""
        keys = key.split(".")
        value = self.config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default

        return value if value is not None else default


def _apply_env_overrides(raw: Dict[str, Any]) -> None:
    """Apply environment variable overrides to a raw config mapping."""
    database = raw.setdefault("database", {})
    sqlserver = database.setdefault("sqlserver", {})
    worker = raw.setdefault("worker", {})
    ollama = raw.setdefault("ollama", {})
    vector = raw.setdefault("vector", {})
    log_cfg = raw.setdefault("logging", {})

    backend = _first_non_empty_env("ENGINE_DB_BACKEND")
    if backend:
        database["backend"] = backend.lower()

    sqlite_path = _first_non_empty_env("ENGINE_SQLITE_PATH")
    if sqlite_path:
        database["sqlite_path"] = sqlite_path

    conn_str = _first_non_empty_env("ENGINE_SQLSERVER_CONN_STR")
    if conn_str:
        sqlserver["connection_string"] = conn_str

    for field_name, keys in (
        ("host", ("ENGINE_SQLSERVER_HOST",)),
        ("database", ("ENGINE_SQLSERVER_DATABASE", "MSSQL_DATABASE")),
        ("user", ("ENGINE_SQLSERVER_USER",)),
        ("password", ("ENGINE_SQLSERVER_PASSWORD", "MSSQL_SA_PASSWORD")),
        ("driver", ("ENGINE_SQLSERVER_DRIVER",)),
        ("schema", ("ENGINE_SQLSERVER_SCHEMA",)),
    ):
        value = _first_non_empty_env(*keys)
        if value:
            sqlserver[field_name] = value

    port = _first_non_empty_env("ENGINE_SQLSERVER_PORT")
    if port:
        try:
            sqlserver["port"] = int(port)
        except ValueError as e:
            raise EngineConfigError(f"Invalid ENGINE_SQLSERVER_PORT: {port}") from e

    poll = _first_non_empty_env("WORKER_POLL_SECONDS")
    if poll:
        worker["poll_seconds"] = poll
    batch = _first_non_empty_env("WORKER_BATCH_SIZE")
    if batch:
        worker["batch_size"] = batch
    worker_id = _first_non_empty_env("WORKER_ID")
    if worker_id:
        worker["worker_id"] = worker_id

    for field_name, key in (
        ("base_url", "OLLAMA_BASE_URL"),
        ("embedding_model", "OLLAMA_EMBED_MODEL"),
        ("chat_model", "OLLAMA_MODEL"),
    ):
        value = _first_non_empty_env(key)
        if value:
            ollama[field_name] = value
    timeout = _first_non_empty_env("OLLAMA_TIMEOUT_SECONDS")
    if timeout:
        try:
            ollama["timeout_seconds"] = int(timeout)
        except ValueError as e:
            raise EngineConfigError(f"Invalid OLLAMA_TIMEOUT_SECONDS: {timeout}") from e

    dims = _first_non_empty_env("VECTOR_DIMENSIONS")
    if dims:
        vector["dimensions"] = dims

    level = _first_non_empty_env("LOG_LEVEL")
    if level:
        log_cfg["level"] = level.upper()
    structured = _first_non_empty_env("LOG_STRUCTURED")
    if structured:
        log_cfg["structured"] = _parse_bool(structured)
