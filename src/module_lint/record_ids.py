"""Duplicate record ID check (pass 3)."""

from __future__ import annotations

import re
from collections import Counter
from pathlib import Path

from src.ci_pipeline.config import ModuleLintConfig
from src.ci_shared.models import Severity, ValidationFinding
from src.module_lint.walker import display_path, module_dirs, read_text

CHECK_DUPLICATE_IDS = "duplicate_ids"

# Matches id="..." but not model_id="..." or data-id="...".
_RECORD_ID_PATTERN: re.Pattern[str] = re.compile(r'(?<![\w-])id="([^"]*)"')


def collect_record_ids(module_dir: Path) -> Counter[str]:
    """Count every ``id="..."`` attribute in the module, recursively."""
    counts: Counter[str] = Counter()
    for path in sorted(module_dir.rglob("*")):
        if not path.is_file():
            continue
        text = read_text(path)
        if text is None:
            continue
        counts.update(_RECORD_ID_PATTERN.findall(text))
    return counts


def check_duplicate_ids(root: Path, config: ModuleLintConfig) -> list[ValidationFinding]:
    """Pass 3: one warning per module that declares an ID more than once."""
    findings: list[ValidationFinding] = []
    for module_dir in module_dirs(root, config):
        counts = collect_record_ids(module_dir)
        duplicates = sorted(record_id for record_id, n in counts.items() if n > 1)
        if not duplicates:
            continue
        findings.append(
            ValidationFinding(
                severity=Severity.WARNING,
                check=CHECK_DUPLICATE_IDS,
                message=(
                    f"Duplicate record IDs in {module_dir.name}: "
                    + " ".join(duplicates)
                ),
                file_path=display_path(module_dir, root),
            )
        )
    return findings
