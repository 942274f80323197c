"""User configuration loading and validation."""

import json
import os
import tempfile
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

from .paths import get_config_path


class ConfigError(Exception):
    """Raised when config loading or parsing fails.

    Syntax errors include the line number, column and a caret under the
    offending character.
    """
    pass


@dataclass
class EngineSettings:
    """Tunables for health polling, concurrency and checkpoint retention."""
    health_check_attempts: int = 8
    health_check_base_delay: float = 1.0
    health_check_max_delay: float = 15.0
    service_timeout: float = 120.0
    run_timeout: float = 1800.0
    max_workers: int = 4
    checkpoint_retention: int | None = None
    event_queue_size: int = 256

    def __post_init__(self):
        if self.health_check_attempts < 1:
            raise ValueError("health_check_attempts must be at least 1")
        if self.health_check_base_delay < 0 or self.health_check_max_delay < 0:
            raise ValueError("health check delays must not be negative")
        if self.service_timeout <= 0:
            raise ValueError("service_timeout must be positive")
        if self.run_timeout <= 0:
            raise ValueError("run_timeout must be positive")
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if self.checkpoint_retention is not None and self.checkpoint_retention < 1:
            raise ValueError("checkpoint_retention must be at least 1 or null")
        if self.event_queue_size < 1:
            raise ValueError("event_queue_size must be at least 1")

    def backoff_delay(self, attempt: int) -> float:
        """Delay before health probe number ``attempt`` (0-based)."""
        if attempt == 0:
            return 0.0
        return min(
            self.health_check_base_delay * (2 ** (attempt - 1)),
            self.health_check_max_delay,
        )


@dataclass
class UserConfig:
    """Root configuration: default profile selection plus configuration values."""
    profiles: list[str] = field(default_factory=list)
    configuration: dict[str, str] = field(default_factory=dict)
    engine: EngineSettings = field(default_factory=EngineSettings)

    def to_dict(self) -> dict[str, Any]:
        return {
            "profiles": list(self.profiles),
            "configuration": dict(self.configuration),
            "engine": asdict(self.engine),
        }


_TOP_LEVEL_KEYS = {"profiles", "configuration", "engine"}


def _scalar_to_str(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def validate_config(data: dict) -> UserConfig:
    """Validate and convert a raw dict to UserConfig.

    Configuration values may be strings, numbers or booleans; they are
    normalised to strings since they end up as service environment values.

    Raises:
        ConfigError: If validation fails, naming the offending field path
    """
    if not isinstance(data, dict):
        raise ConfigError(f"Config must be a JSON object, got {type(data).__name__}")

    unknown = sorted(set(data) - _TOP_LEVEL_KEYS)
    if unknown:
        raise ConfigError(f"Unknown config field: {unknown[0]}")

    profiles = data.get("profiles", [])
    if not isinstance(profiles, list):
        raise ConfigError(f"profiles must be a list, got {type(profiles).__name__}")
    for i, profile_id in enumerate(profiles):
        if not isinstance(profile_id, str) or not profile_id.strip():
            raise ConfigError(f"profiles[{i}] must be a non-empty string")

    raw_values = data.get("configuration", {})
    if not isinstance(raw_values, dict):
        raise ConfigError(
            f"configuration must be an object, got {type(raw_values).__name__}"
        )
    values = {}
    for key, value in raw_values.items():
        if not isinstance(value, (str, int, float, bool)):
            raise ConfigError(
                f"configuration.{key} must be a string, number or boolean, "
                f"got {type(value).__name__}"
            )
        values[key] = _scalar_to_str(value)

    raw_engine = data.get("engine", {})
    if not isinstance(raw_engine, dict):
        raise ConfigError(f"engine must be an object, got {type(raw_engine).__name__}")
    known = {f.name for f in fields(EngineSettings)}
    for key in raw_engine:
        if key not in known:
            raise ConfigError(f"Unknown engine setting: {key}")
    try:
        engine = EngineSettings(**raw_engine)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"engine: {e}")

    return UserConfig(profiles=list(profiles), configuration=values, engine=engine)


def _skip_blank(text: str, pos: int) -> int:
    """Return index of the next character that is not whitespace or a // comment."""
    n = len(text)
    while pos < n:
        if text[pos] in " \t\r\n":
            pos += 1
        elif text.startswith("//", pos):
            newline = text.find("\n", pos)
            pos = n if newline == -1 else newline
        else:
            break
    return pos


def preprocess_jsonish(text: str) -> str:
    """
    Turn JSON-ish text into strict JSON.

    ``//`` line comments and trailing commas before ``]`` or ``}`` are
    replaced by spaces so line and column numbers in parse errors still
    point at the original text.
    """
    out = list(text)
    in_string = False
    escaped = False
    i = 0
    n = len(text)

    while i < n:
        char = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            i += 1
            continue

        if char == '"':
            in_string = True
        elif text.startswith("//", i):
            end = text.find("\n", i)
            end = n if end == -1 else end
            for j in range(i, end):
                out[j] = " "
            i = end
            continue
        elif char == ",":
            nxt = _skip_blank(text, i + 1)
            if nxt < n and text[nxt] in "]}":
                out[i] = " "
        i += 1

    return "".join(out)


def _format_syntax_error(original_text: str, error: json.JSONDecodeError) -> str:
    lines = original_text.split("\n")
    parts = [f"Config syntax error at line {error.lineno}, col {error.colno}: {error.msg}"]
    if 1 <= error.lineno <= len(lines):
        parts.append(lines[error.lineno - 1])
        parts.append(" " * (error.colno - 1) + "^")
    return "\n".join(parts)


def load_config(path_or_text: Path | str) -> dict:
    """Load and parse a JSON-ish document from a path or raw text.

    Raises:
        ConfigError: If the file cannot be read or contains syntax errors.
        TypeError: If path_or_text is neither Path nor str.
    """
    if isinstance(path_or_text, Path):
        try:
            original_text = path_or_text.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise ConfigError(f"Config file not found: {path_or_text}")
        except PermissionError:
            raise ConfigError(f"Permission denied reading config file: {path_or_text}")
        except UnicodeDecodeError:
            raise ConfigError(f"Config file is not valid UTF-8: {path_or_text}")
        except OSError as e:
            raise ConfigError(f"Error reading config file {path_or_text}: {e}")
    elif isinstance(path_or_text, str):
        original_text = path_or_text
    else:
        raise TypeError(
            f"path_or_text must be Path or str, got {type(path_or_text).__name__}"
        )

    try:
        result = json.loads(preprocess_jsonish(original_text))
    except json.JSONDecodeError as e:
        raise ConfigError(_format_syntax_error(original_text, e)) from e

    if not isinstance(result, dict):
        raise ConfigError(f"Config must be a JSON object, got {type(result).__name__}")
    return result


def load_user_config(path: Path | None = None) -> UserConfig:
    """Load the user config, returning defaults when the file does not exist."""
    path = path or get_config_path()
    if not path.exists():
        return UserConfig()
    return validate_config(load_config(path))


def save_user_config(config: UserConfig, path: Path | None = None) -> Path:
    path = path or get_config_path()
    write_json_atomic(path, config.to_dict())
    return path


def write_json_atomic(path: Path, data: Any) -> None:
    """Write JSON to ``path`` via a temp file and rename, so readers never see
    a partially written document."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=False)
            f.write("\n")
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def parse_assignments(assignments: tuple[str, ...] | list[str]) -> dict[str, str]:
    """Parse ``KEY=VALUE`` strings from the command line."""
    values = {}
    for item in assignments:
        key, sep, value = item.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ConfigError(f"Expected KEY=VALUE, got '{item}'")
        values[key] = value
    return values


__all__ = [
    "ConfigError",
    "EngineSettings",
    "UserConfig",
    "validate_config",
    "preprocess_jsonish",
    "load_config",
    "load_user_config",
    "save_user_config",
    "write_json_atomic",
    "parse_assignments",
]
