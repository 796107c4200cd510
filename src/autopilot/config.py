"""YAML configuration loading and coercion into typed pipeline settings."""

from __future__ import annotations

import copy
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional, Tuple

import yaml

from .context_builder import DEFAULT_ALLOWED_SUFFIXES
from .models.claude import DEFAULT_MODEL

DEFAULT_CONFIG_NAME = "autopilot.yaml"

PipelineMode = Literal["local", "remote"]

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "project": {
        "name": "",
        "repo_root": ".",
        "base_branch": "main",
        "remote": "origin",
    },
    "pipeline": {
        "mode": "local",
        "max_attempts": 3,
        "max_tokens": 16000,
        "reset_on_exhaustion": True,
        "publish_exhausted": False,
    },
    "context": {
        "allowed_suffixes": list(DEFAULT_ALLOWED_SUFFIXES),
        "max_keywords": 5,
        "max_search_keywords": 2,
        "max_results_per_keyword": 2,
        "max_extra_files": 3,
        "guidance": [
            "Match the existing code style and project layout.",
            "Add or update tests alongside every behaviour change.",
            "Never commit secrets or credentials.",
        ],
    },
    "validation": {
        "command": [],
        "success_marker": "",
        "timeout": 120,
        "max_errors": 10,
        "max_warnings": 5,
    },
    "models": {
        "default": DEFAULT_MODEL,
        "base_url": "https://api.anthropic.com/v1/messages",
        "timeout": 300,
    },
    "github": {
        "owner": "",
        "repo": "",
        "api_url": "https://api.github.com",
        "search_extension": "",
    },
    "linear": {
        "api_url": "https://api.linear.app/graphql",
    },
    "paths": {
        "data": "data",
    },
    "feedback": {
        "triggers": ["@autopilot", "/autopilot"],
    },
}


class ConfigError(RuntimeError):
    """Raised when the configuration file is missing or malformed."""


def copy_config_template() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def write_config(config_path: Path, config_data: Mapping[str, Any]) -> None:
    """Persist configuration data to disk with stable formatting."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(dict(config_data), handle, sort_keys=False)


def load_config(config_path: Path) -> Dict[str, Any]:
    """Load YAML configuration from disk and return it as a dictionary."""
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config: {error}") from error
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level.")
    return data


@dataclass(frozen=True, slots=True)
class PipelineSettings:
    """Typed view of ``autopilot.yaml`` with defaults applied."""

    config_path: Path
    repo_root: Path
    data_root: Path
    project_name: str = ""
    base_branch: str = "main"
    remote: Optional[str] = "origin"
    mode: PipelineMode = "local"
    max_attempts: int = 3
    max_tokens: int = 16000
    reset_on_exhaustion: bool = True
    publish_exhausted: bool = False
    allowed_suffixes: Tuple[str, ...] = DEFAULT_ALLOWED_SUFFIXES
    max_keywords: int = 5
    max_search_keywords: int = 2
    max_results_per_keyword: int = 2
    max_extra_files: int = 3
    guidance: Tuple[str, ...] = ()
    validation_command: Tuple[str, ...] = ()
    success_marker: Optional[str] = None
    validation_timeout: float = 120.0
    max_errors: int = 10
    max_warnings: int = 5
    model: str = DEFAULT_MODEL
    model_base_url: Optional[str] = None
    model_timeout: Optional[float] = None
    github_owner: str = ""
    github_repo: str = ""
    github_api_url: str = "https://api.github.com"
    github_search_extension: Optional[str] = None
    linear_api_url: str = "https://api.linear.app/graphql"
    feedback_triggers: Tuple[str, ...] = ("@autopilot", "/autopilot")

    @property
    def transcripts_root(self) -> Path:
        return self.data_root / "transcripts"

    @property
    def has_github(self) -> bool:
        return bool(self.github_owner and self.github_repo)


def _section(config: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = config.get(name)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Config section '{name}' must be a mapping.")
    return value


def _as_int(value: Any, default: int, *, minimum: int = 0) -> int:
    if value is None:
        return default
    try:
        candidate = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Expected an integer, got {value!r}") from None
    return max(candidate, minimum)


def _as_float(value: Any, default: Optional[float]) -> Optional[float]:
    if value is None:
        return default
    try:
        candidate = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Expected a number, got {value!r}") from None
    return candidate if candidate > 0 else default


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    if isinstance(value, (int, float)):
        return bool(value)
    raise ConfigError(f"Expected a boolean, got {value!r}")


def _as_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _as_strings(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value.strip(),) if value.strip() else ()
    if isinstance(value, (list, tuple)):
        return tuple(str(item).strip() for item in value if str(item).strip())
    raise ConfigError(f"Expected a list of strings, got {value!r}")


def _as_command(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(shlex.split(value))
    return _as_strings(value)


def _resolve_path(value: Any, anchor: Path, default: str) -> Path:
    raw = _as_text(value) or default
    candidate = Path(raw)
    if not candidate.is_absolute():
        candidate = (anchor / candidate).resolve()
    return candidate


def resolve_settings(config: Mapping[str, Any], config_path: Path) -> PipelineSettings:
    """Coerce raw configuration into :class:`PipelineSettings`."""
    project = _section(config, "project")
    pipeline = _section(config, "pipeline")
    context = _section(config, "context")
    validation = _section(config, "validation")
    models = _section(config, "models")
    github = _section(config, "github")
    linear = _section(config, "linear")
    paths = _section(config, "paths")
    feedback = _section(config, "feedback")

    config_path = config_path.resolve()
    repo_root = _resolve_path(project.get("repo_root"), config_path.parent, ".")
    data_root = _resolve_path(paths.get("data"), repo_root, "data")

    mode = str(pipeline.get("mode") or "local").strip().lower()
    if mode not in {"local", "remote"}:
        raise ConfigError(f"pipeline.mode must be 'local' or 'remote', got {mode!r}")

    suffixes = _as_strings(context.get("allowed_suffixes")) or DEFAULT_ALLOWED_SUFFIXES
    triggers = _as_strings(feedback.get("triggers")) or ("@autopilot", "/autopilot")

    return PipelineSettings(
        config_path=config_path,
        repo_root=repo_root,
        data_root=data_root,
        project_name=_as_text(project.get("name")) or repo_root.name,
        base_branch=_as_text(project.get("base_branch")) or "main",
        remote=_as_text(project.get("remote")),
        mode=mode,  # type: ignore[arg-type]
        max_attempts=_as_int(pipeline.get("max_attempts"), 3, minimum=1),
        max_tokens=_as_int(pipeline.get("max_tokens"), 16000, minimum=1),
        reset_on_exhaustion=_as_bool(pipeline.get("reset_on_exhaustion"), True),
        publish_exhausted=_as_bool(pipeline.get("publish_exhausted"), False),
        allowed_suffixes=tuple(suffix if suffix.startswith(".") else f".{suffix}" for suffix in suffixes),
        max_keywords=_as_int(context.get("max_keywords"), 5),
        max_search_keywords=_as_int(context.get("max_search_keywords"), 2),
        max_results_per_keyword=_as_int(context.get("max_results_per_keyword"), 2),
        max_extra_files=_as_int(context.get("max_extra_files"), 3),
        guidance=_as_strings(context.get("guidance")),
        validation_command=_as_command(validation.get("command")),
        success_marker=_as_text(validation.get("success_marker")),
        validation_timeout=_as_float(validation.get("timeout"), 120.0) or 120.0,
        max_errors=_as_int(validation.get("max_errors"), 10, minimum=1),
        max_warnings=_as_int(validation.get("max_warnings"), 5),
        model=_as_text(models.get("default")) or DEFAULT_MODEL,
        model_base_url=_as_text(models.get("base_url")),
        model_timeout=_as_float(models.get("timeout"), None),
        github_owner=_as_text(github.get("owner")) or "",
        github_repo=_as_text(github.get("repo")) or "",
        github_api_url=_as_text(github.get("api_url")) or "https://api.github.com",
        github_search_extension=_as_text(github.get("search_extension")),
        linear_api_url=_as_text(linear.get("api_url")) or "https://api.linear.app/graphql",
        feedback_triggers=triggers,
    )


def load_settings(config_path: Path) -> PipelineSettings:
    return resolve_settings(load_config(config_path), config_path)


__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "PipelineMode",
    "PipelineSettings",
    "copy_config_template",
    "load_config",
    "load_settings",
    "resolve_settings",
    "write_config",
]
