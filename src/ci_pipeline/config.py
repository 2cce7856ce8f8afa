"""Configuration dataclasses and loader for the CI pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings

from src.ci_pipeline.exceptions import ConfigurationError
from src.ci_shared import constants as c


@dataclass
class EnvironmentConfig:
    """Configuration for the Rust build environment."""

    base_image: str = c.RUST_IMAGE
    system_packages: list[str] = field(default_factory=lambda: list(c.RUST_SYSTEM_PACKAGES))
    workdir: str = c.WORKDIR
    source_excludes: list[str] = field(default_factory=lambda: list(c.SOURCE_EXCLUDES))
    env: dict[str, str] = field(default_factory=lambda: dict(c.RUST_ENV))


@dataclass
class CacheConfig:
    """Names of the persistent cache volumes.

    ``namespace`` prefixes every volume name so that concurrent pipelines
    can be isolated.  Empty means the shared, unprefixed names.
    """

    namespace: str = ""
    cargo_registry: str = c.CACHE_CARGO_REGISTRY
    cargo_git: str = c.CACHE_CARGO_GIT
    cargo_target: str = c.CACHE_CARGO_TARGET
    npm: str = c.CACHE_NPM

    def volume(self, name: str) -> str:
        """Return the resolved volume name for *name*."""
        return f"{self.namespace}-{name}" if self.namespace else name


@dataclass
class DatabaseConfig:
    """Configuration for the ephemeral integration database."""

    image: str = c.POSTGRES_IMAGE
    name: str = c.POSTGRES_DB
    user: str = c.POSTGRES_USER
    password: str = c.POSTGRES_PASSWORD
    port: int = c.POSTGRES_PORT
    alias: str = c.DB_ALIAS

    @property
    def url(self) -> str:
        return f"postgres://{self.user}:{self.password}@{self.alias}:{self.port}/{self.name}"


@dataclass
class ReadinessConfig:
    """Bounded readiness polling for bound services."""

    max_attempts: int = c.READINESS_MAX_ATTEMPTS
    interval_seconds: float = c.READINESS_INTERVAL_SECONDS
    strict: bool = False


@dataclass
class IntegrationConfig:
    """Configuration for the module lifecycle integration test."""

    server_package: str = c.SERVER_PACKAGE
    binary: str = c.SERVER_BINARY
    base_module: str = c.BASE_MODULE
    module: str = c.LIFECYCLE_MODULE
    table: str = c.LIFECYCLE_TABLE
    rust_log: str = c.RUST_LOG_LEVEL
    strict_lifecycle: bool = False


@dataclass
class ModuleLintConfig:
    """Paths and limits for the module validation engine."""

    modules_dir: str = c.MODULES_DIR
    manifest_file: str = c.MANIFEST_FILE
    source_roots: list[str] = field(default_factory=lambda: list(c.LINT_SOURCE_ROOTS))
    xml_subdirs: list[str] = field(default_factory=lambda: list(c.XML_SUBDIRS))
    max_sql_matches: int = c.MAX_SQL_MATCHES_PER_FILE
    max_abort_matches: int = c.MAX_ABORT_MATCHES


@dataclass
class FrontendConfig:
    """Configuration for the Tailwind CSS build."""

    image: str = c.NODE_IMAGE
    static_dir: str = c.STATIC_DIR
    input_css: str = "css/input.css"
    output_css: str = "css/main.css"


@dataclass
class PipelineConfig:
    """Top-level configuration composing all sub-configs."""

    environment: EnvironmentConfig = field(default_factory=EnvironmentConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    readiness: ReadinessConfig = field(default_factory=ReadinessConfig)
    integration: IntegrationConfig = field(default_factory=IntegrationConfig)
    module_lint: ModuleLintConfig = field(default_factory=ModuleLintConfig)
    frontend: FrontendConfig = field(default_factory=FrontendConfig)
    stage_timeout: float | None = None
    docker_binary: str = "docker"


class RuntimeSettings(BaseSettings):
    """Environment-variable overrides applied on top of the YAML config."""

    config_path: str = Field(default="", validation_alias="CI_CONFIG")
    log_level: str = Field(default="INFO", validation_alias="CI_LOG_LEVEL")
    cache_namespace: str = Field(default="", validation_alias="CI_CACHE_NAMESPACE")
    docker_binary: str = Field(default="", validation_alias="CI_DOCKER_BINARY")

    model_config = {
        "populate_by_name": True,
        "extra": "ignore",
    }


_SECTIONS: dict[str, type] = {
    "environment": EnvironmentConfig,
    "cache": CacheConfig,
    "database": DatabaseConfig,
    "readiness": ReadinessConfig,
    "integration": IntegrationConfig,
    "module_lint": ModuleLintConfig,
    "frontend": FrontendConfig,
}


def _pick(data: dict[str, Any], cls: type) -> dict[str, Any]:
    """Filter *data* to only keys accepted by *cls*."""
    valid = {f.name for f in cls.__dataclass_fields__.values()}
    return {k: v for k, v in data.items() if k in valid}


def load_config(
    path: Path | str | None = None,
    settings: RuntimeSettings | None = None,
) -> PipelineConfig:
    """Load pipeline configuration from a YAML file.

    Missing sections fall back to defaults.  Unknown keys are silently
    ignored so that forward-compatible config files work.  Environment
    overrides from *settings* are applied last.

    Args:
        path: Path to config YAML.  If ``None`` or the file does not
              exist, returns full defaults.
        settings: Optional environment overrides.

    Returns:
        Populated configuration dataclass.

    Raises:
        ConfigurationError: If the file is not valid YAML, or the file or
            one of its sections is not a mapping.
    """
    raw: dict[str, Any] = {}
    if path is not None and Path(path).exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid config file {path}: {exc}") from exc
        if not isinstance(loaded, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")
        raw = loaded

    for key in _SECTIONS:
        if raw.get(key) is not None and not isinstance(raw[key], dict):
            raise ConfigurationError(f"Config section {key!r} must be a mapping")

    sections = {
        key: cls(**_pick(raw.get(key) or {}, cls)) for key, cls in _SECTIONS.items()
    }
    top_level = _pick(raw, PipelineConfig)
    for key in _SECTIONS:
        top_level.pop(key, None)

    cfg = PipelineConfig(**sections, **top_level)

    if settings is not None:
        if settings.cache_namespace:
            cfg.cache.namespace = settings.cache_namespace
        if settings.docker_binary:
            cfg.docker_binary = settings.docker_binary
    return cfg
