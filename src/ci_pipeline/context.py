"""Execution context builders.

Pure construction only: nothing here touches Docker or the filesystem.
Side effects happen when a backend materialises the context.
"""

from __future__ import annotations

from pathlib import Path

from src.ci_pipeline.config import PipelineConfig
from src.ci_shared.constants import (
    CARGO_GIT_PATH,
    CARGO_REGISTRY_PATH,
    NODE_MODULES_PATH,
)
from src.ci_shared.models import ExecutionContext, ServiceSpec


def rust_base(source: Path | str, config: PipelineConfig | None = None) -> ExecutionContext:
    """Return a Rust context with build dependencies and cargo caches.

    Args:
        source: Host path of the Rust workspace.
        config: Pipeline configuration; defaults when omitted.

    Returns:
        A fresh ExecutionContext with no stage commands.
    """
    config = config or PipelineConfig()
    env_cfg = config.environment
    cache = config.cache

    ctx = (
        ExecutionContext(base_image=env_cfg.base_image)
        .with_setup("apt-get", "update")
        .with_setup("apt-get", "install", "-y", *env_cfg.system_packages)
        .with_mounted_cache(CARGO_REGISTRY_PATH, cache.volume(cache.cargo_registry))
        .with_mounted_cache(CARGO_GIT_PATH, cache.volume(cache.cargo_git))
        .with_mounted_cache(
            env_cfg.env.get("CARGO_TARGET_DIR", f"{env_cfg.workdir}/target"),
            cache.volume(cache.cargo_target),
        )
        .with_workdir(env_cfg.workdir)
        .with_directory(env_cfg.workdir, source, env_cfg.source_excludes)
    )
    for name, value in env_cfg.env.items():
        ctx = ctx.with_env_variable(name, value)
    return ctx


def node_base(source: Path | str, config: PipelineConfig | None = None) -> ExecutionContext:
    """Return a Node context over the static front-end directory."""
    config = config or PipelineConfig()
    frontend = config.frontend
    cache = config.cache
    static_dir = Path(source) / frontend.static_dir

    return (
        ExecutionContext(base_image=frontend.image)
        .with_mounted_cache(NODE_MODULES_PATH, cache.volume(cache.npm))
        .with_workdir("/app")
        .with_directory("/app", static_dir)
    )


def postgres_service(config: PipelineConfig | None = None) -> ServiceSpec:
    """Return the PostgreSQL service used by integration tests."""
    db = (config or PipelineConfig()).database
    return ServiceSpec(
        image=db.image,
        port=db.port,
        env=(
            ("POSTGRES_DB", db.name),
            ("POSTGRES_USER", db.user),
            ("POSTGRES_PASSWORD", db.password),
        ),
    )
