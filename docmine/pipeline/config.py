"""Pipeline configuration: models, defaults, loading and validation.

Layout under the config root::

    defaults/pipelines/default.json        shared default (optional)
    <instance>/pipelines/<pipeline>.json   instance override (optional)
    <instance>/domain.yaml                 categories, security, project framing
    <instance>/prompts/*.yaml              prompt overrides

An instance file that supplies ``steps`` replaces the default step list
wholesale. ``errorHandling`` and ``performance`` merge key by key.
"""

from __future__ import annotations

import threading
import time
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from docmine.errors import ConfigError
from docmine.lib.json import JSONDecodeError, loads
from docmine.lib.log import get_logger
from docmine.pipeline.context import DomainConfig

logger = get_logger(__name__)

CONFIG_CACHE_TTL_SECONDS = 3600.0


class StepType(str, Enum):
    FILTER = "filter"
    CLASSIFY = "classify"
    ENRICH = "enrich"
    GENERATE = "generate"
    VALIDATE = "validate"
    CONDENSE = "condense"


class _ConfigModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class StepConfig(_ConfigModel):
    step_id: str = Field(alias="stepId", min_length=1)
    step_type: str = Field(alias="stepType", min_length=1)
    enabled: bool = True
    config: dict[str, Any] = Field(default_factory=dict)


class ErrorHandlingConfig(_ConfigModel):
    stop_on_error: bool = Field(default=False, alias="stopOnError")
    retry_attempts: int = Field(default=3, ge=0, le=10, alias="retryAttempts")
    retry_delay_ms: int = Field(default=5000, ge=0, alias="retryDelayMs")


class PerformanceConfig(_ConfigModel):
    max_concurrent_steps: int = Field(default=1, ge=1, le=10, alias="maxConcurrentSteps")
    timeout_ms: int = Field(default=300_000, ge=1000, alias="timeoutMs")
    enable_caching: bool = Field(default=True, alias="enableCaching")


class PipelineConfig(_ConfigModel):
    instance_id: str = Field(alias="instanceId", min_length=1)
    pipeline_id: str = Field(alias="pipelineId", min_length=1)
    description: str | None = None
    steps: list[StepConfig] = Field(min_length=1)
    error_handling: ErrorHandlingConfig = Field(default_factory=ErrorHandlingConfig, alias="errorHandling")
    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)

    def enabled_steps(self) -> list[StepConfig]:
        return [step for step in self.steps if step.enabled]

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


DEFAULT_PIPELINE: dict[str, Any] = {
    "instanceId": "default",
    "pipelineId": "default-v1",
    "description": "Default documentation analysis pipeline",
    "steps": [
        {
            "stepId": "keyword-filter",
            "stepType": "filter",
            "enabled": True,
            "config": {"includeKeywords": [], "excludeKeywords": [], "caseSensitive": False},
        },
        {
            "stepId": "batch-classify",
            "stepType": "classify",
            "enabled": True,
            "config": {"promptId": "thread-classification", "temperature": 0.2, "maxTokens": 32768},
        },
        {
            "stepId": "rag-enrich",
            "stepType": "enrich",
            "enabled": True,
            "config": {"topK": 5, "minSimilarity": 0.7, "deduplicateTranslations": True},
        },
        {
            "stepId": "proposal-generate",
            "stepType": "generate",
            "enabled": True,
            "config": {
                "promptId": "changeset-generation",
                "temperature": 0.4,
                "maxTokens": 32768,
                "maxProposalsPerThread": 5,
            },
        },
        {
            "stepId": "content-validate",
            "stepType": "validate",
            "enabled": False,
            "config": {
                "maxRetries": 2,
                "promptId": "content-reformat",
                "temperature": 0.2,
                "maxTokens": 8192,
                "skipPatterns": [],
            },
        },
        {
            "stepId": "length-reduce",
            "stepType": "condense",
            "enabled": False,
            "config": {
                "defaultMaxLength": 3000,
                "defaultTargetLength": 2000,
                "priorityTiers": [
                    {"minPriority": 70, "maxLength": 5000, "targetLength": 3500},
                    {"minPriority": 40, "maxLength": 3500, "targetLength": 2500},
                    {"minPriority": 0, "maxLength": 2000, "targetLength": 1500},
                ],
                "promptId": "content-condense",
                "temperature": 0.3,
                "maxTokens": 8192,
            },
        },
    ],
    "errorHandling": {"stopOnError": False, "retryAttempts": 3, "retryDelayMs": 5000},
    "performance": {"maxConcurrentSteps": 1, "timeoutMs": 300000, "enableCaching": True},
}


def default_pipeline_config() -> PipelineConfig:
    return PipelineConfig.model_validate(DEFAULT_PIPELINE)


def _format_errors(exc: ValidationError) -> list[str]:
    return [f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()]


def validate_pipeline_config(payload: Any) -> tuple[bool, list[str]]:
    """Check a raw (already parsed) config. Returns ``(valid, errors)``."""
    try:
        PipelineConfig.model_validate(payload)
    except ValidationError as exc:
        return False, _format_errors(exc)
    return True, []


def _read_json(path: Path) -> dict[str, Any] | None:
    if not path.exists():
        return None
    try:
        payload = loads(path.read_bytes())
    except (OSError, JSONDecodeError) as exc:
        raise ConfigError(f"Cannot read pipeline config {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError(f"Pipeline config {path} must contain a JSON object")
    return payload


def merge_pipeline_payloads(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Overlay an instance payload onto a default payload.

    ``steps`` replace wholesale; ``errorHandling`` and ``performance`` merge
    shallowly; scalar keys take the override when present.
    """
    merged = dict(base)
    for key, value in override.items():
        if key in ("errorHandling", "performance") and isinstance(value, dict):
            merged[key] = {**base.get(key, {}), **value}
        elif value is not None:
            merged[key] = value
    return merged


class PipelineConfigLoader:
    """Loads pipeline configs from a config root with a per-key TTL cache."""

    def __init__(self, config_root: Path, *, ttl_seconds: float = CONFIG_CACHE_TTL_SECONDS) -> None:
        self.config_root = Path(config_root)
        self.ttl_seconds = ttl_seconds
        self._cache: dict[tuple[str, str], tuple[float, PipelineConfig]] = {}
        self._lock = threading.Lock()

    def load(self, instance_id: str, pipeline_id: str | None = None) -> PipelineConfig:
        config_id = pipeline_id or "default"
        key = (instance_id, config_id)
        now = time.monotonic()
        with self._lock:
            cached = self._cache.get(key)
            if cached and now - cached[0] < self.ttl_seconds:
                logger.debug("using cached pipeline config", instance_id=instance_id, pipeline=config_id)
                return cached[1].model_copy(deep=True)

        logger.info("loading pipeline config", instance_id=instance_id, pipeline=config_id)
        payload = _read_json(self.config_root / "defaults" / "pipelines" / "default.json") or DEFAULT_PIPELINE
        instance_path = self.config_root / instance_id / "pipelines" / f"{config_id}.json"
        override = _read_json(instance_path)
        if override is not None:
            payload = merge_pipeline_payloads(payload, override)
            logger.debug("applied instance pipeline config", path=str(instance_path))
        payload = {**payload, "instanceId": instance_id}

        try:
            config = PipelineConfig.model_validate(payload)
        except ValidationError as exc:
            raise ConfigError(
                f"Invalid pipeline config for {instance_id}/{config_id}: {'; '.join(_format_errors(exc))}"
            ) from exc

        with self._lock:
            self._cache[key] = (now, config)
        return config.model_copy(deep=True)

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
        logger.info("pipeline config cache cleared")

    def list_pipelines(self, instance_id: str) -> list[str]:
        """Pipeline ids available to an instance (defaults first, no duplicates)."""
        found: list[str] = []
        for directory in (self.config_root / "defaults" / "pipelines", self.config_root / instance_id / "pipelines"):
            if directory.is_dir():
                for path in sorted(directory.glob("*.json")):
                    if path.stem not in found:
                        found.append(path.stem)
        return found

    def load_domain(self, instance_id: str) -> DomainConfig:
        path = self.config_root / instance_id / "domain.yaml"
        if not path.exists():
            return DomainConfig()
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
            return DomainConfig.model_validate(payload)
        except (OSError, yaml.YAMLError, ValidationError) as exc:
            raise ConfigError(f"Invalid domain config {path}: {exc}") from exc

    def prompts_dir(self, instance_id: str) -> Path:
        return self.config_root / instance_id / "prompts"


__all__ = [
    "DEFAULT_PIPELINE",
    "ErrorHandlingConfig",
    "PerformanceConfig",
    "PipelineConfig",
    "PipelineConfigLoader",
    "StepConfig",
    "StepType",
    "default_pipeline_config",
    "merge_pipeline_payloads",
    "validate_pipeline_config",
]
