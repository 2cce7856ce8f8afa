"""Manifest and XML data-file checks (passes 1 and 2).

Manifest checks are textual on purpose: a manifest must carry a line
starting with ``[module]`` and a ``name =`` key, and every quoted
``*.xml`` / ``*.csv`` reference must resolve relative to the module
directory.
"""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from pathlib import Path

from src.ci_pipeline.config import ModuleLintConfig
from src.ci_shared.models import Severity, ValidationFinding
from src.module_lint.walker import display_path, manifest_files, read_text, xml_files

CHECK_MANIFEST = "manifest"
CHECK_XML = "xml"

_MODULE_SECTION_PATTERN: re.Pattern[str] = re.compile(r"^\[module\]", re.MULTILINE)
_NAME_KEY_PATTERN: re.Pattern[str] = re.compile(r"name\s*=")

DATA_FILE_EXTENSIONS = ("xml", "csv")

_DATA_REF_PATTERNS: dict[str, re.Pattern[str]] = {
    ext: re.compile(rf'(?<=")[^"]+\.{ext}(?=")') for ext in DATA_FILE_EXTENSIONS
}


def _error(check: str, message: str, file_path: str) -> ValidationFinding:
    return ValidationFinding(
        severity=Severity.ERROR, check=check, message=message, file_path=file_path
    )


def check_manifest(manifest: Path, root: Path) -> list[ValidationFinding]:
    """Validate one manifest file."""
    shown = display_path(manifest, root)
    text = read_text(manifest)
    if text is None:
        return [_error(CHECK_MANIFEST, f"{shown} could not be read", shown)]

    findings: list[ValidationFinding] = []
    if not _MODULE_SECTION_PATTERN.search(text):
        findings.append(_error(CHECK_MANIFEST, f"{shown} missing [module] section", shown))
    if not _NAME_KEY_PATTERN.search(text):
        findings.append(_error(CHECK_MANIFEST, f"{shown} missing 'name' key", shown))

    module_dir = manifest.parent
    for ext in DATA_FILE_EXTENSIONS:
        for datafile in _DATA_REF_PATTERNS[ext].findall(text):
            if not (module_dir / datafile).is_file():
                findings.append(
                    _error(
                        CHECK_MANIFEST,
                        f"{shown} declares '{datafile}' but file not found",
                        shown,
                    )
                )
    return findings


def check_manifests(root: Path, config: ModuleLintConfig) -> list[ValidationFinding]:
    """Pass 1: validate every module manifest."""
    findings: list[ValidationFinding] = []
    for manifest in manifest_files(root, config):
        findings.extend(check_manifest(manifest, root))
    return findings


def check_xml_files(root: Path, config: ModuleLintConfig) -> list[ValidationFinding]:
    """Pass 2: every data/view/security XML file must be well-formed."""
    findings: list[ValidationFinding] = []
    for xml_file in xml_files(root, config):
        shown = display_path(xml_file, root)
        try:
            ET.parse(xml_file)
        except (ET.ParseError, OSError):
            findings.append(_error(CHECK_XML, f"{shown} is not well-formed XML", shown))
    return findings
