"""Shared constants for the CI pipeline."""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Stage names
# ---------------------------------------------------------------------------
STAGE_CHECK = "check"
STAGE_FMT = "fmt"
STAGE_LINT = "lint"
STAGE_TEST = "test"
STAGE_INTEGRATION = "integration-test"
STAGE_MODULE_LINT = "module-lint"
STAGE_TAILWIND = "tailwind-build"
STAGE_SECURITY = "security-audit"
STAGE_ALL = "all"

# Stages composed by ``all``, in execution order.  The integration test
# is deliberately absent.
ALL_STAGES = [
    STAGE_CHECK,
    STAGE_LINT,
    STAGE_TEST,
    STAGE_MODULE_LINT,
]

# ---------------------------------------------------------------------------
# Rust build environment
# ---------------------------------------------------------------------------
RUST_IMAGE = "rust:1.85-bookworm"
RUST_SYSTEM_PACKAGES = [
    "libpq-dev",
    "pkg-config",
    "build-essential",
    "postgresql-client",
]
WORKDIR = "/app"
CARGO_TARGET_DIR = "/app/target"

SOURCE_EXCLUDES = [
    "target/",
    ".git/",
    "ci/",
    "erp_web/static/node_modules/",
]

RUST_ENV: dict[str, str] = {
    "CARGO_TARGET_DIR": CARGO_TARGET_DIR,
    "RUST_BACKTRACE": "1",
}

# ---------------------------------------------------------------------------
# Cache volumes -- names must stay stable across runs
# ---------------------------------------------------------------------------
CACHE_CARGO_REGISTRY = "cargo-registry"
CACHE_CARGO_GIT = "cargo-git"
CACHE_CARGO_TARGET = "cargo-target"
CACHE_NPM = "npm-cache"

CARGO_REGISTRY_PATH = "/usr/local/cargo/registry"
CARGO_GIT_PATH = "/usr/local/cargo/git"

# ---------------------------------------------------------------------------
# Front-end environment
# ---------------------------------------------------------------------------
NODE_IMAGE = "node:22-slim"
STATIC_DIR = "erp_web/static"
NODE_MODULES_PATH = "/app/node_modules"

# ---------------------------------------------------------------------------
# Integration database
# ---------------------------------------------------------------------------
POSTGRES_IMAGE = "postgres:18-alpine"
POSTGRES_DB = "erp_test"
POSTGRES_USER = "erp"
POSTGRES_PASSWORD = "erp_password"
POSTGRES_PORT = 5432
DB_ALIAS = "db"

READINESS_MAX_ATTEMPTS = 30
READINESS_INTERVAL_SECONDS = 1.0

# ---------------------------------------------------------------------------
# Integration lifecycle
# ---------------------------------------------------------------------------
SERVER_PACKAGE = "erp_server"
SERVER_BINARY = "./target/release/erp-server"
BASE_MODULE = "base"
LIFECYCLE_MODULE = "todo_list"
LIFECYCLE_TABLE = "todo_task"
RUST_LOG_LEVEL = "info"

# ---------------------------------------------------------------------------
# Module lint
# ---------------------------------------------------------------------------
MODULES_DIR = "modules"
MANIFEST_FILE = "manifest.toml"
LINT_SOURCE_ROOTS = ["modules/*/src", "erp_core/src"]
XML_SUBDIRS = ["data", "views", "security"]
MAX_SQL_MATCHES_PER_FILE = 3
MAX_ABORT_MATCHES = 5

# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------
RESULT_SEPARATOR = "\n---\n"
PIPELINE_COMPLETE_BANNER = "\n=== Full CI Pipeline Complete ===\n"
CONFIG_FILE = "ci-pipeline.yaml"
