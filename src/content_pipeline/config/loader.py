"""PipelineConfig loading.

Priority (highest to lowest):
1. Environment variables (``CONTENT_PIPELINE_*``)
2. Explicit path argument, or ``$CONTENT_PIPELINE_CONFIG``
3. Project TOML config (./content-pipeline.toml or ./.content-pipeline.toml)
4. XDG config (~/.config/content-pipeline/config.toml)
5. Default values

Layers are merged table by table before the dataclasses are built, so a
project file only needs the keys it overrides.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # Python < 3.11 fallback

from content_pipeline.config.pipeline import PipelineConfig
from content_pipeline.core.errors import ConfigValidationError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "CONTENT_PIPELINE_CONFIG"
PROJECT_CONFIG_NAMES = ("content-pipeline.toml", ".content-pipeline.toml")

# env var -> (table, key)
_ENV_OVERRIDES: Dict[str, Tuple[str, str]] = {
    "CONTENT_PIPELINE_LOG_LEVEL": ("pipeline", "log_level"),
    "CONTENT_PIPELINE_GENERATION_TIMEOUT": ("pipeline", "generation_timeout"),
    "CONTENT_PIPELINE_MAX_FIXER_ITERATIONS": ("recovery", "max_fixer_iterations"),
    "CONTENT_PIPELINE_MAX_PLAN_RETRIES": ("recovery", "max_plan_retries"),
    "CONTENT_PIPELINE_PLAN_RETRY_SEVERITIES": ("recovery", "plan_retry_severities"),
    "CONTENT_PIPELINE_RETRY_MAX_RETRIES": ("retry", "max_retries"),
    "CONTENT_PIPELINE_RETRY_INITIAL_DELAY": ("retry", "initial_delay"),
    "CONTENT_PIPELINE_RETRY_MAX_DELAY": ("retry", "max_delay"),
    "CONTENT_PIPELINE_FETCH_ENABLED": ("fetch", "enabled"),
    "CONTENT_PIPELINE_FETCH_MAX_SIZE_BYTES": ("fetch", "max_size_bytes"),
    "CONTENT_PIPELINE_FETCH_TIMEOUT": ("fetch", "timeout"),
    "CONTENT_PIPELINE_FETCH_MAX_RETRIES": ("fetch", "max_retries"),
    "CONTENT_PIPELINE_FETCH_MAX_CONCURRENT": ("fetch", "max_concurrent_downloads"),
    "CONTENT_PIPELINE_FETCH_REQUIRE_HTTPS": ("fetch", "require_https"),
    "CONTENT_PIPELINE_TRUSTED_HTTP_HOSTS": ("fetch", "trusted_http_hosts"),
    "CONTENT_PIPELINE_MIN_PHRASE_OCCURRENCES": ("coverage", "min_phrase_occurrences"),
}


def _read_toml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigValidationError(str(path), f"invalid TOML: {e}") from e


def _merge(base: Dict[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _merge(dict(merged[key]), value)
        else:
            merged[key] = value
    return merged


def _candidate_paths(explicit: Optional[Path], environ: Mapping[str, str]) -> list[Path]:
    """Config files to merge, lowest priority first."""
    if explicit is not None:
        return [explicit]
    if env_path := environ.get(CONFIG_ENV_VAR):
        return [Path(env_path)]

    paths: list[Path] = []
    xdg_config_home = environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    paths.append(Path(xdg_config_home) / "content-pipeline" / "config.toml")
    for name in PROJECT_CONFIG_NAMES:
        candidate = Path(name)
        if candidate.exists():
            paths.append(candidate)
            break
    return paths


def _env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for env_var, (table, key) in _ENV_OVERRIDES.items():
        if (value := environ.get(env_var)) is not None:
            overrides.setdefault(table, {})[key] = value
    return overrides


def load_config(
    path: Optional[str | os.PathLike[str]] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> PipelineConfig:
    """Load a PipelineConfig from TOML layers and environment overrides.

    Args:
        path: Explicit config file; must exist when given.
        environ: Environment mapping (default: ``os.environ``).

    Raises:
        ConfigValidationError: Missing explicit file, bad TOML, or invalid values.
    """
    env = os.environ if environ is None else environ
    explicit = Path(path) if path is not None else None
    if explicit is not None and not explicit.exists():
        raise ConfigValidationError(str(explicit), "config file not found")

    data: Dict[str, Any] = {}
    for candidate in _candidate_paths(explicit, env):
        if not candidate.exists():
            if candidate == explicit or str(candidate) == env.get(CONFIG_ENV_VAR):
                logger.warning("Config file not found: %s", candidate)
            continue
        data = _merge(data, _read_toml(candidate))
        logger.debug("Loaded config from %s", candidate)

    data = _merge(data, _env_overrides(env))

    try:
        return PipelineConfig.from_toml_dict(data)
    except (TypeError, ValueError) as e:
        if isinstance(e, ConfigValidationError):
            raise
        raise ConfigValidationError("config", str(e)) from e
