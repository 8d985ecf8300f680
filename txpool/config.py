import os
import sys
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, ConfigDict, field_validator


ENV_PREFIX = "TXPOOL_"

_ENV_LOADED = False

# settings consumed by the manager itself, never forwarded to the driver
_POOL_FIELDS = {"poolsize", "metadata", "reconnect_attempts", "reconnect_delay", "log"}


def _load_env_file(path: str, allow_override: bool = False) -> None:
    """
    Minimal .env loader: loads KEY=VALUE pairs into os.environ.
    - Ignores empty lines and lines starting with '#'
    - Supports values wrapped in single or double quotes
    - By default, does not override existing environment variables
    """
    if not path or not os.path.exists(path):
        return
    try:
        with open(path, "r", encoding="utf-8") as f:
            for raw_line in f:
                line = raw_line.strip()
                if not line or line.startswith("#"):
                    continue
                if line.startswith("export "):
                    line = line[len("export "):].strip()
                if "=" not in line:
                    continue
                key, value = line.split("=", 1)
                key = key.strip()
                value = value.strip()
                if (value.startswith('"') and value.endswith('"')) or (value.startswith("'") and value.endswith("'")):
                    value = value[1:-1]
                if allow_override or key not in os.environ:
                    os.environ[key] = value
    except PermissionError as e:
        print(f"FATAL: Permission denied reading environment file {path}: {e}", file=sys.stderr)
        raise


def load_env_if_present(force_reload: bool = False) -> None:
    """
    Load environment variables from .env files in order of precedence:
    1. TXPOOL_ENV_FILE when set (only that file)
    2. .env.local
    3. .env
    """
    global _ENV_LOADED
    if _ENV_LOADED and not force_reload:
        return

    custom = os.environ.get("TXPOOL_ENV_FILE")
    if custom:
        _load_env_file(custom, allow_override=False)
    else:
        for env_file in ('.env.local', '.env'):
            _load_env_file(env_file, allow_override=False)

    _ENV_LOADED = True


class Settings(BaseModel):
    """
    Transaction manager settings.

    Pool options are consumed by the manager; every other field, including
    unknown extra keys, is passed verbatim to the driver's connect().
    """
    model_config = ConfigDict(extra="allow", arbitrary_types_allowed=True, validate_assignment=True)

    poolsize: int = Field(default=3, ge=0, description="Number of pooled transactional connections")
    metadata: bool = Field(default=True, description="Convert result rows using column metadata")
    reconnect_attempts: int = Field(default=3, ge=0)
    reconnect_delay: float = Field(default=1.0, ge=0.0)

    # Connection parameters (forwarded to the driver)
    host: Optional[str] = None
    port: Optional[int] = None
    user: Optional[str] = None
    password: Optional[str] = None
    dbname: Optional[str] = None
    charset: Optional[str] = None

    # Logging sink with info/warning/error methods; defaults to the module logger
    log: Optional[Any] = Field(default=None, exclude=True)

    @field_validator('metadata', mode='before')
    def coerce_bool(cls, v):
        if isinstance(v, bool):
            return v
        if v is None:
            return True
        if isinstance(v, (int, float)):
            return bool(v)
        if not isinstance(v, str):
            raise ValueError("Expected string for boolean field")
        val = v.strip().lower()
        if val in ("true", "1", "yes", "y", "on"):
            return True
        if val in ("false", "0", "no", "n", "off"):
            return False
        raise ValueError(f"Invalid boolean value: {v}")

    @field_validator('poolsize', 'reconnect_attempts', 'port', mode='before')
    def coerce_int(cls, v):
        if v is None or isinstance(v, int):
            return v
        if isinstance(v, str):
            return int(v.strip())
        raise ValueError("Expected integer-compatible value")

    @field_validator('log')
    def validate_log(cls, v):
        if v is None:
            return v
        for method in ("info", "warning", "error"):
            if not callable(getattr(v, method, None)):
                raise ValueError(f"Logger must provide a callable '{method}' method")
        return v

    def driver_config(self) -> Dict[str, Any]:
        """Connection parameters handed to Driver.connect()."""
        data = self.model_dump(exclude=_POOL_FIELDS, exclude_none=True)
        return data

    @classmethod
    def from_env(cls, **overrides) -> "Settings":
        """
        Build settings from TXPOOL_* environment variables.
        TXPOOL_POOLSIZE=5 -> poolsize=5, TXPOOL_HOST=db -> host="db".
        Keyword overrides win over the environment.
        """
        load_env_if_present()
        values: Dict[str, Any] = {}
        for key, value in os.environ.items():
            if not key.startswith(ENV_PREFIX):
                continue
            name = key[len(ENV_PREFIX):].lower()
            if name in ("env_file", "log_level", "log_json", "log"):
                continue
            values[name] = value
        values.update(overrides)
        return cls(**values)
