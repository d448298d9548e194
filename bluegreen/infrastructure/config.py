"""
Configuration Module

Architectural Intent:
- Centralized configuration loading from a JSON file
- Provides typed access to every orchestrator setting
- Falls back to sensible defaults when the config file is absent
- Environment variables override file-based config

Design Decisions:
- Config is a frozen dataclass for immutability after load
- Nested config sections map to sub-dataclasses
- String values (from the environment) are coerced by the field's annotation
"""

from __future__ import annotations
import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import json
import logging
import os

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceConfig:
    """The service being deployed and the listeners in front of it."""
    name: str = "web"
    repository: str = ""
    production_listener: str = "production"
    test_listener: str = "test"
    cpu: int = 256
    memory: int = 512
    container_port: int = 8080
    desired_count: int = 2


@dataclass(frozen=True)
class PipelineConfig:
    """Pipeline stage retries, manifest output, queueing and the coordination lease."""
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0
    artifacts_dir: str = ""
    queue_policy: str = "run_each"
    lease_seconds: float = 30.0
    poll_interval: float = 1.0


@dataclass(frozen=True)
class DeploymentConfig:
    """State machine timings and traffic controller limits."""
    shift_mode: str = "all_at_once"
    bake_seconds: float = 300.0
    rollback_on_alarm: bool = True
    provision_timeout: float = 600.0
    poll_interval: float = 5.0
    traffic_validation_window: float = 60.0
    probe_interval: float = 5.0
    probe_timeout: float = 10.0
    alarm_poll_interval: float = 10.0
    drain_seconds: float = 30.0
    listener_timeout: float = 10.0
    max_attempts: int = 3
    base_delay: float = 0.5


@dataclass(frozen=True)
class HealthConfig:
    """Health validation debouncing."""
    interval_seconds: float = 10.0
    healthy_windows: int = 3
    failure_threshold: int = 3
    unknown_retry_budget: int = 5
    timeout_seconds: float = 600.0


@dataclass(frozen=True)
class AutoscalerConfig:
    enabled: bool = True
    interval_seconds: float = 60.0
    target_utilization: float = 60.0
    min_count: int = 1
    max_count: int = 10
    window_seconds: int = 300
    gain: float = 0.5
    tolerance: float = 0.1


@dataclass(frozen=True)
class StorageConfig:
    db_path: str = "bluegreen.db"


@dataclass(frozen=True)
class ProbeConfig:
    """Synthetic checks through the test listener. Empty url disables them."""
    url: str = ""
    expected_status: int = 200


@dataclass(frozen=True)
class BlueGreenConfig:
    """Root configuration for the orchestrator."""
    service: ServiceConfig = field(default_factory=ServiceConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    deployment: DeploymentConfig = field(default_factory=DeploymentConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    autoscaler: AutoscalerConfig = field(default_factory=AutoscalerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    probe: ProbeConfig = field(default_factory=ProbeConfig)
    log_level: str = "WARNING"


_TOP_LEVEL_KEYS = ("log_level",)


def _env_override(data: dict, prefix: str = "BLUEGREEN") -> dict:
    """Override config values with environment variables.

    Environment variables follow the pattern BLUEGREEN_SECTION_KEY.
    For example: BLUEGREEN_SERVICE_NAME=api, BLUEGREEN_DEPLOYMENT_BAKE_SECONDS=60
    """
    for key, value in os.environ.items():
        if not key.startswith(f"{prefix}_"):
            continue
        rest = key[len(prefix) + 1:].lower()
        if rest in _TOP_LEVEL_KEYS:
            data[rest] = value
            continue
        parts = rest.split("_", 1)
        if len(parts) == 2:
            section, field_name = parts
            if not isinstance(data.get(section), dict):
                data[section] = {}
            data[section][field_name] = value
        elif len(parts) == 1:
            data[parts[0]] = value
    return data


def _parse_config_file(path: Path) -> dict:
    """Parse a JSON config file. Returns empty dict on failure."""
    try:
        with open(path) as f:
            return json.load(f)
    except FileNotFoundError:
        logger.debug("Config file not found: %s", path)
        return {}
    except json.JSONDecodeError as e:
        logger.warning("Invalid config file %s: %s", path, e)
        return {}


def _build_sub_config(cls, data: dict):
    """Build a sub-config dataclass from a dict, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(cls)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}

    for f in dataclasses.fields(cls):
        if f.name not in filtered:
            continue
        val = filtered[f.name]
        if isinstance(val, str):
            if f.type == "int":
                filtered[f.name] = int(val)
            elif f.type == "float":
                filtered[f.name] = float(val)
            elif f.type == "bool":
                filtered[f.name] = val.lower() in ("true", "1", "yes")
        elif f.type == "float" and isinstance(val, int) and not isinstance(val, bool):
            filtered[f.name] = float(val)

    return cls(**filtered)


def load_config(
    path: Optional[str] = None,
    env_prefix: str = "BLUEGREEN",
) -> BlueGreenConfig:
    """Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables (BLUEGREEN_SECTION_KEY)
    2. Config file values
    3. Defaults

    Args:
        path: Path to config file (JSON). Defaults to bluegreen.json in CWD.
        env_prefix: Environment variable prefix. Defaults to BLUEGREEN.
    """
    config_path = Path(path) if path else Path("bluegreen.json")
    data = _parse_config_file(config_path)
    data = _env_override(data, env_prefix)

    return BlueGreenConfig(
        service=_build_sub_config(ServiceConfig, data.get("service", {})),
        pipeline=_build_sub_config(PipelineConfig, data.get("pipeline", {})),
        deployment=_build_sub_config(DeploymentConfig, data.get("deployment", {})),
        health=_build_sub_config(HealthConfig, data.get("health", {})),
        autoscaler=_build_sub_config(AutoscalerConfig, data.get("autoscaler", {})),
        storage=_build_sub_config(StorageConfig, data.get("storage", {})),
        probe=_build_sub_config(ProbeConfig, data.get("probe", {})),
        log_level=data.get("log_level", "WARNING"),
    )
