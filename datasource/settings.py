"""Datasource configuration loading and logging setup."""
from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

import yaml

from .core import ACCESS_MODES, DIRECT, PROXY, ConstantBinding

BASE_DIR = Path(__file__).resolve().parents[1]
LOG_FILE = BASE_DIR / "logs" / "datasource.log"
CONFIG_ENV = "DATASOURCE_CONFIG"
DEFAULT_PROXY_URL = "http://127.0.0.1:8000"

_INITIAL_ENV_KEYS = set(os.environ.keys())
_ENV_FILES_LOADED: set[Path] = set()
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z0-9_]+)\}")

logger = logging.getLogger(__name__)


class ConfigurationError(RuntimeError):
    """Raised when the datasource configuration is invalid."""


@dataclass(slots=True)
class DataSourceSettings:
    base_url: str = ""
    access: str = DIRECT
    constants: List[ConstantBinding] = field(default_factory=list)
    macros: List[ConstantBinding] = field(default_factory=list)
    proxy_url: str = DEFAULT_PROXY_URL
    timeout_s: float = 30.0

    def __post_init__(self) -> None:
        self.access = str(self.access or DIRECT).lower()
        if self.access not in ACCESS_MODES:
            raise ConfigurationError(f"Unsupported access mode '{self.access}'; use one of {', '.join(ACCESS_MODES)}")
        if self.access == DIRECT and not self.base_url:
            raise ConfigurationError("`base_url` is required in direct access mode")
        if self.access == PROXY and not self.proxy_url:
            raise ConfigurationError("`proxy_url` is required in proxy access mode")
        if self.timeout_s <= 0:
            raise ConfigurationError("`timeout_s` must be positive")

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "DataSourceSettings":
        return cls(
            base_url=str(raw.get("base_url") or raw.get("path") or ""),
            access=str(raw.get("access") or raw.get("accessMode") or DIRECT),
            constants=parse_bindings(raw.get("constants", raw.get("const")), kind="constant"),
            macros=parse_bindings(raw.get("macros", raw.get("macro")), kind="macro"),
            proxy_url=str(raw.get("proxy_url") or DEFAULT_PROXY_URL),
            timeout_s=float(raw.get("timeout_s", 30.0)),
        )


def parse_bindings(raw: Any, *, kind: str) -> List[ConstantBinding]:
    """Parse ``[{name, value}]`` or ``{name: value}``; later names replace earlier ones."""
    if not raw:
        return []
    if isinstance(raw, Mapping):
        entries: Iterable[Any] = [{"name": key, "value": value} for key, value in raw.items()]
    elif isinstance(raw, list):
        entries = raw
    else:
        raise ConfigurationError(f"Invalid {kind} list: expected a list or mapping")

    bindings: List[ConstantBinding] = []
    positions: Dict[str, int] = {}
    for entry in entries:
        if not isinstance(entry, Mapping) or not entry.get("name"):
            raise ConfigurationError(f"Each {kind} requires a `name`")
        binding = ConstantBinding(name=str(entry["name"]), value=str(entry.get("value", "")))
        if binding.name in positions:
            bindings[positions[binding.name]] = binding
            continue
        positions[binding.name] = len(bindings)
        bindings.append(binding)
    return bindings


def _load_env_file(path: Path) -> None:
    resolved = path.resolve()
    if resolved in _ENV_FILES_LOADED or not resolved.exists():
        return
    with resolved.open("r", encoding="utf-8") as handle:
        for raw_line in handle:
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("export "):
                line = line[7:].lstrip()
            key, sep, value = line.partition("=")
            if not sep:
                continue
            key = key.strip()
            if not key or key in _INITIAL_ENV_KEYS:
                continue
            value = value.strip()
            if value and len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
                value = value[1:-1]
            os.environ[key] = value
    _ENV_FILES_LOADED.add(resolved)


def _expand_env_values(value: object, *, source: Optional[Path] = None) -> object:
    if isinstance(value, dict):
        return {key: _expand_env_values(val, source=source) for key, val in value.items()}
    if isinstance(value, list):
        return [_expand_env_values(item, source=source) for item in value]
    if isinstance(value, str):
        def replacer(match: re.Match[str]) -> str:
            var_name = match.group(1)
            if var_name not in os.environ:
                location = f" in config '{source}'" if source else ""
                raise ConfigurationError(f"Environment variable '{var_name}' referenced{location} is not set")
            return os.environ[var_name]

        return _ENV_VAR_PATTERN.sub(replacer, value)
    return value


def _load_file(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()
    try:
        if suffix in {".yaml", ".yml"}:
            data = yaml.safe_load(text) or {}
        elif suffix == ".json":
            data = json.loads(text)
        else:
            raise ConfigurationError("Unsupported configuration format; use YAML or JSON")
    except ConfigurationError:
        raise
    except (yaml.YAMLError, ValueError) as exc:
        raise ConfigurationError(f"Invalid configuration format in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration {path} must contain a mapping")
    return data


def load_datasource_config(path: Optional[Path | str] = None) -> Dict[str, Any]:
    """Return the raw configuration mapping with ``${VAR}`` references expanded."""
    config_path = Path(path) if path else None
    env_candidates: List[Path] = [BASE_DIR / ".env", Path(".env")]
    if config_path is not None:
        env_candidates.append(config_path.resolve().parent / ".env")
    for candidate in dict.fromkeys(env_candidates):
        _load_env_file(candidate)

    candidates: List[Path] = []
    if config_path is not None:
        if not config_path.exists():
            raise ConfigurationError(f"Configuration file {config_path} does not exist")
        candidates.append(config_path)
    env_path = os.getenv(CONFIG_ENV)
    if env_path:
        candidates.append(Path(env_path))
    candidates.append(Path("config") / "datasource.yaml")
    candidates.append(Path("config") / "datasource.yml")
    for candidate in candidates:
        if candidate.exists():
            logger.debug("Loading datasource configuration from %s", candidate)
            return _expand_env_values(_load_file(candidate), source=candidate)  # type: ignore[return-value]
    return {}


def load_settings(path: Optional[Path | str] = None, **overrides: Any) -> DataSourceSettings:
    raw = load_datasource_config(path)
    raw.update({key: value for key, value in overrides.items() if value is not None})
    if not raw:
        raise ConfigurationError("No datasource configuration found")
    return DataSourceSettings.from_mapping(raw)


def setup_logging(level: int = logging.INFO, log_file: Optional[Path] = None) -> None:
    """Configure a rotating file logger plus console echo."""
    target = log_file or LOG_FILE
    target.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        target,
        maxBytes=1_000_000,
        backupCount=3,
        encoding="utf-8",
    )
    console_handler = logging.StreamHandler()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        handlers=[handler, console_handler],
        force=True,
    )
