"""Rust source pattern checks (passes 4 and 5).

All regex patterns are compiled at module level.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Iterator

from src.ci_pipeline.config import ModuleLintConfig
from src.ci_shared.models import Severity, ValidationFinding
from src.module_lint.walker import display_path, read_text, rust_source_files

CHECK_UNSAFE_SQL = "unsafe_sql"
CHECK_ABORT_MACROS = "abort_macros"

# format!("...SELECT...") builds SQL by string interpolation.
_FORMAT_SQL_PATTERN: re.Pattern[str] = re.compile(
    r'format!\s*\(\s*"[^"]*(?:SELECT|INSERT|UPDATE|DELETE)'
)
# Same-line evidence of parameter binding or a safe execution API.
_SAFE_SQL_PATTERN: re.Pattern[str] = re.compile(r"bind|\.execute|sql_query")

_ABORT_MACRO_PATTERN: re.Pattern[str] = re.compile(r"panic!|todo!|unimplemented!")
_TODO_COMMENT = "// TODO"
_CFG_TEST_ATTR = "#[cfg(test)]"


def find_unsafe_sql(lines: list[str]) -> list[tuple[int, str]]:
    """Return ``(line_no, line)`` for every interpolated SQL statement."""
    return [
        (line_no, line)
        for line_no, line in enumerate(lines, start=1)
        if _FORMAT_SQL_PATTERN.search(line) and not _SAFE_SQL_PATTERN.search(line)
    ]


def non_test_lines(lines: list[str]) -> Iterator[tuple[int, str]]:
    """Yield ``(line_no, line)`` outside items annotated ``#[cfg(test)]``.

    The annotated item ends when its braces balance, or at a ``;`` before
    any brace opens (``#[cfg(test)] use foo;``).
    """
    in_test = False
    depth = 0
    opened = False
    for line_no, line in enumerate(lines, start=1):
        if not in_test:
            if _CFG_TEST_ATTR not in line:
                yield line_no, line
                continue
            in_test = True
            depth = 0
            opened = False
            line = line.split(_CFG_TEST_ATTR, 1)[1]

        depth += line.count("{") - line.count("}")
        if "{" in line:
            opened = True
        if (opened and depth <= 0) or (not opened and line.rstrip().endswith(";")):
            in_test = False


def find_abort_macros(lines: list[str]) -> list[tuple[int, str]]:
    """Return ``(line_no, line)`` for abort macros in non-test code."""
    return [
        (line_no, line)
        for line_no, line in non_test_lines(lines)
        if _ABORT_MACRO_PATTERN.search(line) and _TODO_COMMENT not in line
    ]


def check_unsafe_sql(root: Path, config: ModuleLintConfig) -> list[ValidationFinding]:
    """Pass 4: one warning per file with unparameterised SQL."""
    findings: list[ValidationFinding] = []
    for path in rust_source_files(root, config):
        text = read_text(path)
        if text is None:
            continue
        matches = find_unsafe_sql(text.splitlines())
        if not matches:
            continue
        shown = display_path(path, root)
        findings.append(
            ValidationFinding(
                severity=Severity.WARNING,
                check=CHECK_UNSAFE_SQL,
                message=f"Possible unparameterized SQL in {shown}",
                file_path=shown,
                details=[
                    f"{line_no}:{line}"
                    for line_no, line in matches[: config.max_sql_matches]
                ],
            )
        )
    return findings


def check_abort_macros(root: Path, config: ModuleLintConfig) -> list[ValidationFinding]:
    """Pass 5: a single warning if any abort macro appears in non-test code."""
    details: list[str] = []
    total = 0
    for path in rust_source_files(root, config):
        text = read_text(path)
        if text is None:
            continue
        shown = display_path(path, root)
        for line_no, line in find_abort_macros(text.splitlines()):
            total += 1
            if len(details) < config.max_abort_matches:
                details.append(f"{shown}:{line_no}:{line}")
    if not total:
        return []
    return [
        ValidationFinding(
            severity=Severity.WARNING,
            check=CHECK_ABORT_MACROS,
            message="Found panic!/todo!/unimplemented! macros in non-test code",
            details=details,
        )
    ]
