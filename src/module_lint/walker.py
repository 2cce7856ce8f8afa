"""File discovery helpers shared by the lint passes.

File walking uses ``pathlib`` globbing exclusively and returns sorted
paths so that transcripts are deterministic.
"""

from __future__ import annotations

from pathlib import Path

from src.ci_pipeline.config import ModuleLintConfig

RUST_SUFFIX = ".rs"


def display_path(path: Path, root: Path) -> str:
    """Return *path* relative to *root* in posix form, for transcripts."""
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return path.as_posix()


def module_dirs(root: Path, config: ModuleLintConfig) -> list[Path]:
    """Return every module directory under the modules dir."""
    modules = root / config.modules_dir
    if not modules.is_dir():
        return []
    return sorted(p for p in modules.iterdir() if p.is_dir())


def manifest_files(root: Path, config: ModuleLintConfig) -> list[Path]:
    """Return every ``<module>/manifest.toml``."""
    return sorted(
        p
        for p in (root / config.modules_dir).glob(f"*/{config.manifest_file}")
        if p.is_file()
    )


def xml_files(root: Path, config: ModuleLintConfig) -> list[Path]:
    """Return the XML data/view/security files, grouped by subdirectory."""
    files: list[Path] = []
    for subdir in config.xml_subdirs:
        files.extend(
            sorted(
                p
                for p in (root / config.modules_dir).glob(f"*/{subdir}/*.xml")
                if p.is_file()
            )
        )
    return files


def rust_source_files(root: Path, config: ModuleLintConfig) -> list[Path]:
    """Return every Rust file below the configured source roots, recursively."""
    seen: set[Path] = set()
    for pattern in config.source_roots:
        for source_root in root.glob(pattern):
            if not source_root.is_dir():
                continue
            for path in source_root.rglob(f"*{RUST_SUFFIX}"):
                if path.is_file():
                    seen.add(path)
    return sorted(seen)


def read_text(path: Path) -> str | None:
    """Read a file as text, or None if it cannot be read."""
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
