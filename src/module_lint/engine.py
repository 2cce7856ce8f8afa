"""Module lint engine.

Runs the five validation passes in order, renders their findings into a
transcript, and tallies errors and warnings.  Only errors fail the run;
any number of warnings is advisory.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from src.ci_pipeline.config import ModuleLintConfig
from src.ci_shared.models import ModuleLintReport, Severity, ValidationFinding
from src.module_lint.code_patterns import check_abort_macros, check_unsafe_sql
from src.module_lint.manifests import check_manifests, check_xml_files
from src.module_lint.record_ids import check_duplicate_ids

logger = logging.getLogger(__name__)

LintPass = Callable[[Path, ModuleLintConfig], list[ValidationFinding]]

DEFAULT_PASSES: list[tuple[str, LintPass]] = [
    ("Checking module manifests", check_manifests),
    ("Checking XML data files", check_xml_files),
    ("Checking for duplicate record IDs", check_duplicate_ids),
    ("Checking for unsafe SQL patterns", check_unsafe_sql),
    ("Checking for panic patterns", check_abort_macros),
]

HEADER = "=== Module Lint ==="
FOOTER = "=== Module Lint Complete ==="


def render_finding(finding: ValidationFinding) -> list[str]:
    """Render a finding as transcript lines: matched lines, then the verdict."""
    label = "ERROR" if finding.severity is Severity.ERROR else "WARNING"
    return [*finding.details, f"{label}: {finding.message}"]


class ModuleLintEngine:
    """Runs all lint passes over a source tree."""

    def __init__(
        self,
        config: ModuleLintConfig | None = None,
        passes: list[tuple[str, LintPass]] | None = None,
    ) -> None:
        self.config = config or ModuleLintConfig()
        self.passes = passes if passes is not None else DEFAULT_PASSES

    def run(self, root: Path | str) -> ModuleLintReport:
        """Lint the tree rooted at *root*.

        Returns:
            ModuleLintReport with counters, findings, and the transcript.
        """
        root = Path(root)
        report = ModuleLintReport()
        lines = [HEADER]
        total = len(self.passes)

        for index, (title, lint_pass) in enumerate(self.passes, start=1):
            lines.append(f"[{index}/{total}] {title}...")
            findings = lint_pass(root, self.config)
            logger.debug("Pass %d/%d produced %d finding(s)", index, total, len(findings))
            for finding in findings:
                if finding.severity is Severity.ERROR:
                    report.errors += 1
                else:
                    report.warnings += 1
                lines.extend(render_finding(finding))
            report.findings.extend(findings)

        lines.extend(["", FOOTER, f"Errors: {report.errors}, Warnings: {report.warnings}"])
        report.transcript = "\n".join(lines) + "\n"
        logger.info(
            "Module lint finished: %d error(s), %d warning(s)",
            report.errors, report.warnings,
        )
        return report
