"""Configuration for content-pipeline."""

from content_pipeline.config.loader import CONFIG_ENV_VAR, load_config
from content_pipeline.config.pipeline import (
    FetchConfig,
    PipelineConfig,
    RecoveryConfig,
    RetryConfig,
    ValidationConfig,
    coverage_config_from_toml_dict,
)
from content_pipeline.core.coverage import CoverageConfig

__all__ = [
    "CONFIG_ENV_VAR",
    "load_config",
    "CoverageConfig",
    "FetchConfig",
    "PipelineConfig",
    "RecoveryConfig",
    "RetryConfig",
    "ValidationConfig",
    "coverage_config_from_toml_dict",
]
