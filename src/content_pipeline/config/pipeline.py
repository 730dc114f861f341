"""Pipeline configuration dataclasses.

One explicit ``PipelineConfig`` object is built per process (or per test) and
passed into the orchestrator. Nothing here is global or mutable after
construction; every section validates itself in ``__post_init__``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Mapping, Tuple

from content_pipeline.config.parsing import (
    VALID_SEVERITIES,
    _parse_bool,
    _parse_severities,
    _parse_str_list,
)
from content_pipeline.core.coverage import (
    DEFAULT_FILLER_DETERMINERS,
    DEFAULT_FILLER_PHRASES,
    DEFAULT_GENERIC_NOUNS,
    CoverageConfig,
)
from content_pipeline.core.errors import ConfigValidationError
from content_pipeline.core.resilience import RetryPolicy

DEFAULT_SEVERITY_WEIGHTS: Mapping[str, int] = {"critical": 100, "major": 10, "minor": 1}


def _require(condition: bool, field_name: str, message: str) -> None:
    if not condition:
        raise ConfigValidationError(field_name, message)


@dataclass(frozen=True)
class RetryConfig:
    """Backoff for collaborator (research/plan/write/review/fix) calls.

    Attributes:
        max_retries: Retries after the first attempt.
        initial_delay: Delay before the first retry (seconds).
        max_delay: Cap on any single delay (seconds).
        backoff_multiplier: Growth factor per retry.
        jitter: Fractional jitter around each delay.
    """

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    jitter: float = 0.25

    def __post_init__(self) -> None:
        _require(self.max_retries >= 0, "retry.max_retries", "must be >= 0")
        _require(self.initial_delay >= 0, "retry.initial_delay", "must be >= 0")
        _require(
            self.initial_delay <= self.max_delay,
            "retry.initial_delay",
            f"cannot be greater than retry.max_delay ({self.max_delay})",
        )
        _require(self.backoff_multiplier >= 1.0, "retry.backoff_multiplier", "must be >= 1.0")
        _require(0.0 <= self.jitter < 1.0, "retry.jitter", "must be in [0, 1)")

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay=self.initial_delay,
            max_delay=self.max_delay,
            backoff_multiplier=self.backoff_multiplier,
            jitter=self.jitter,
        )

    @classmethod
    def from_toml_dict(cls, data: Dict[str, Any]) -> "RetryConfig":
        """Create config from TOML dict (typically [retry] section)."""
        return cls(
            max_retries=int(data.get("max_retries", 3)),
            initial_delay=float(data.get("initial_delay", 1.0)),
            max_delay=float(data.get("max_delay", 10.0)),
            backoff_multiplier=float(data.get("backoff_multiplier", 2.0)),
            jitter=float(data.get("jitter", 0.25)),
        )


@dataclass(frozen=True)
class RecoveryConfig:
    """Budgets for the review/repair loop.

    Attributes:
        max_fixer_iterations: Fixer iterations allowed per draft.
        max_plan_retries: Full re-plans allowed per run.
        max_direct_edits_per_iteration: Cap on ``direct_edit`` fixes per iteration.
        plan_retry_severities: Outstanding severities that justify a re-plan.
        severity_weights: Weights used to rank drafts by their issues.
    """

    max_fixer_iterations: int = 2
    max_plan_retries: int = 1
    max_direct_edits_per_iteration: int = 3
    plan_retry_severities: FrozenSet[str] = frozenset({"critical", "major"})
    severity_weights: Mapping[str, int] = field(default_factory=lambda: dict(DEFAULT_SEVERITY_WEIGHTS))

    def __post_init__(self) -> None:
        _require(self.max_fixer_iterations >= 0, "recovery.max_fixer_iterations", "must be >= 0")
        _require(self.max_plan_retries >= 0, "recovery.max_plan_retries", "must be >= 0")
        _require(
            self.max_direct_edits_per_iteration >= 1,
            "recovery.max_direct_edits_per_iteration",
            "must be >= 1",
        )
        unknown = set(self.plan_retry_severities) - VALID_SEVERITIES
        _require(not unknown, "recovery.plan_retry_severities", f"unknown severities {sorted(unknown)}")
        negative = [k for k, v in self.severity_weights.items() if v < 0]
        _require(not negative, "recovery.severity_weights", f"negative weights for {negative}")

    def weight_for(self, severity: str) -> int:
        return int(self.severity_weights.get(severity, 1))

    @classmethod
    def from_toml_dict(cls, data: Dict[str, Any]) -> "RecoveryConfig":
        """Create config from TOML dict (typically [recovery] section)."""
        weights = dict(DEFAULT_SEVERITY_WEIGHTS)
        weights.update({str(k): int(v) for k, v in (data.get("severity_weights") or {}).items()})
        severities = data.get("plan_retry_severities")
        return cls(
            max_fixer_iterations=int(data.get("max_fixer_iterations", 2)),
            max_plan_retries=int(data.get("max_plan_retries", 1)),
            max_direct_edits_per_iteration=int(data.get("max_direct_edits_per_iteration", 3)),
            plan_retry_severities=(
                _parse_severities(severities) if severities is not None else frozenset({"critical", "major"})
            ),
            severity_weights=weights,
        )


@dataclass(frozen=True)
class FetchConfig:
    """Secure image fetch settings.

    Attributes:
        enabled: Fetch image references after generation.
        max_size_bytes: Largest accepted image.
        check_size_first: HEAD probe before each download.
        timeout: Total transfer budget per attempt (seconds).
        connect_timeout: Connect timeout per connection (seconds).
        max_retries: Transient-failure retries per image.
        initial_delay: Backoff before the first retry (seconds).
        backoff_multiplier: Growth factor per retry.
        max_delay: Cap on any single backoff (seconds).
        max_concurrent_downloads: Parallel downloads per run.
        require_https: Refuse plain http except for trusted hosts.
        trusted_http_hosts: Hosts allowed over plain http.
        resolve_dns: Validate every resolved address of a hostname.
        user_agent: User-Agent header for downloads.
    """

    enabled: bool = True
    max_size_bytes: int = 10 * 1024 * 1024
    check_size_first: bool = True
    timeout: float = 30.0
    connect_timeout: float = 10.0
    max_retries: int = 2
    initial_delay: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay: float = 10.0
    max_concurrent_downloads: int = 4
    require_https: bool = True
    trusted_http_hosts: Tuple[str, ...] = ()
    resolve_dns: bool = True
    user_agent: str = "content-pipeline/0.1 ImageFetcher"

    def __post_init__(self) -> None:
        _require(self.max_size_bytes > 0, "fetch.max_size_bytes", "must be positive")
        _require(self.timeout > 0, "fetch.timeout", "must be positive")
        _require(self.connect_timeout > 0, "fetch.connect_timeout", "must be positive")
        _require(self.max_retries >= 0, "fetch.max_retries", "must be >= 0")
        _require(self.max_concurrent_downloads >= 1, "fetch.max_concurrent_downloads", "must be >= 1")

    @classmethod
    def from_toml_dict(cls, data: Dict[str, Any]) -> "FetchConfig":
        """Create config from TOML dict (typically [fetch] section)."""
        defaults = cls()
        return cls(
            enabled=_parse_bool(data.get("enabled", defaults.enabled)),
            max_size_bytes=int(data.get("max_size_bytes", defaults.max_size_bytes)),
            check_size_first=_parse_bool(data.get("check_size_first", defaults.check_size_first)),
            timeout=float(data.get("timeout", defaults.timeout)),
            connect_timeout=float(data.get("connect_timeout", defaults.connect_timeout)),
            max_retries=int(data.get("max_retries", defaults.max_retries)),
            initial_delay=float(data.get("initial_delay", defaults.initial_delay)),
            backoff_multiplier=float(data.get("backoff_multiplier", defaults.backoff_multiplier)),
            max_delay=float(data.get("max_delay", defaults.max_delay)),
            max_concurrent_downloads=int(data.get("max_concurrent_downloads", defaults.max_concurrent_downloads)),
            require_https=_parse_bool(data.get("require_https", defaults.require_https)),
            trusted_http_hosts=tuple(_parse_str_list(data.get("trusted_http_hosts"))),
            resolve_dns=_parse_bool(data.get("resolve_dns", defaults.resolve_dns)),
            user_agent=str(data.get("user_agent", defaults.user_agent)),
        )


@dataclass(frozen=True)
class ValidationConfig:
    """Thresholds for structural draft validation."""

    min_sections: int = 3
    min_section_length: int = 100
    placeholder_markers: Tuple[str, ...] = ("TODO", "Lorem ipsum", "[insert", "TBD")

    def __post_init__(self) -> None:
        _require(self.min_sections >= 0, "validation.min_sections", "must be >= 0")
        _require(self.min_section_length >= 0, "validation.min_section_length", "must be >= 0")

    @classmethod
    def from_toml_dict(cls, data: Dict[str, Any]) -> "ValidationConfig":
        """Create config from TOML dict (typically [validation] section)."""
        markers = data.get("placeholder_markers")
        return cls(
            min_sections=int(data.get("min_sections", 3)),
            min_section_length=int(data.get("min_section_length", 100)),
            placeholder_markers=(
                tuple(_parse_str_list(markers)) if markers is not None else cls().placeholder_markers
            ),
        )


def coverage_config_from_toml_dict(data: Dict[str, Any]) -> CoverageConfig:
    """Build a ``CoverageConfig`` from a [coverage] section.

    ``filler_phrases`` and ``generic_nouns`` extend the built-in lists unless
    ``replace_defaults = true``.
    """
    replace = _parse_bool(data.get("replace_defaults", False))

    def merged(key: str, defaults: FrozenSet[str]) -> FrozenSet[str]:
        extra = {item.lower() for item in _parse_str_list(data.get(key))}
        return frozenset(extra) if replace else defaults | extra

    config = CoverageConfig(
        min_topic_length=int(data.get("min_topic_length", 2)),
        max_topic_length=int(data.get("max_topic_length", 60)),
        min_phrase_occurrences=int(data.get("min_phrase_occurrences", 3)),
        filler_phrases=merged("filler_phrases", DEFAULT_FILLER_PHRASES),
        filler_determiners=merged("filler_determiners", DEFAULT_FILLER_DETERMINERS),
        generic_nouns=merged("generic_nouns", DEFAULT_GENERIC_NOUNS),
        max_topics_per_section=int(data.get("max_topics_per_section", 10)),
        max_defined_terms=int(data.get("max_defined_terms", 15)),
    )
    validate_coverage_config(config)
    return config


def validate_coverage_config(config: CoverageConfig) -> None:
    _require(config.min_topic_length >= 1, "coverage.min_topic_length", "must be >= 1")
    _require(
        config.max_topic_length >= config.min_topic_length,
        "coverage.max_topic_length",
        "must be >= coverage.min_topic_length",
    )
    _require(config.min_phrase_occurrences >= 1, "coverage.min_phrase_occurrences", "must be >= 1")


@dataclass(frozen=True)
class PipelineConfig:
    """Complete configuration for one orchestrator.

    Attributes:
        recovery: Review/repair budgets.
        retry: Backoff for collaborator calls.
        fetch: Secure image fetch settings.
        coverage: Topic extraction heuristics.
        validation: Structural draft checks.
        generation_timeout: Overall run budget in seconds (0 disables).
        log_level: Logging level applied by the CLI.
    """

    recovery: RecoveryConfig = field(default_factory=RecoveryConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    coverage: CoverageConfig = field(default_factory=CoverageConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    generation_timeout: float = 0.0
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        _require(self.generation_timeout >= 0, "generation_timeout", "must be >= 0")
        validate_coverage_config(self.coverage)

    @classmethod
    def from_toml_dict(cls, data: Dict[str, Any]) -> "PipelineConfig":
        """Create config from a parsed content-pipeline.toml document."""
        pipeline = data.get("pipeline", {})
        return cls(
            recovery=RecoveryConfig.from_toml_dict(data.get("recovery", {})),
            retry=RetryConfig.from_toml_dict(data.get("retry", {})),
            fetch=FetchConfig.from_toml_dict(data.get("fetch", {})),
            coverage=coverage_config_from_toml_dict(data.get("coverage", {})),
            validation=ValidationConfig.from_toml_dict(data.get("validation", {})),
            generation_timeout=float(pipeline.get("generation_timeout", 0.0)),
            log_level=str(pipeline.get("log_level", "INFO")).upper(),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Plain-data view for display (sets become sorted lists)."""
        return {
            "pipeline": {"generation_timeout": self.generation_timeout, "log_level": self.log_level},
            "recovery": {
                "max_fixer_iterations": self.recovery.max_fixer_iterations,
                "max_plan_retries": self.recovery.max_plan_retries,
                "max_direct_edits_per_iteration": self.recovery.max_direct_edits_per_iteration,
                "plan_retry_severities": sorted(self.recovery.plan_retry_severities),
                "severity_weights": dict(self.recovery.severity_weights),
            },
            "retry": {
                "max_retries": self.retry.max_retries,
                "initial_delay": self.retry.initial_delay,
                "max_delay": self.retry.max_delay,
                "backoff_multiplier": self.retry.backoff_multiplier,
                "jitter": self.retry.jitter,
            },
            "fetch": {
                "enabled": self.fetch.enabled,
                "max_size_bytes": self.fetch.max_size_bytes,
                "check_size_first": self.fetch.check_size_first,
                "timeout": self.fetch.timeout,
                "connect_timeout": self.fetch.connect_timeout,
                "max_retries": self.fetch.max_retries,
                "max_concurrent_downloads": self.fetch.max_concurrent_downloads,
                "require_https": self.fetch.require_https,
                "trusted_http_hosts": list(self.fetch.trusted_http_hosts),
                "resolve_dns": self.fetch.resolve_dns,
            },
            "coverage": {
                "min_topic_length": self.coverage.min_topic_length,
                "max_topic_length": self.coverage.max_topic_length,
                "min_phrase_occurrences": self.coverage.min_phrase_occurrences,
                "max_topics_per_section": self.coverage.max_topics_per_section,
                "max_defined_terms": self.coverage.max_defined_terms,
            },
            "validation": {
                "min_sections": self.validation.min_sections,
                "min_section_length": self.validation.min_section_length,
                "placeholder_markers": list(self.validation.placeholder_markers),
            },
        }
