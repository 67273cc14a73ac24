"""Safety gate run before anything is published.

The gate looks at the union of files modified across all iterations and
answers one question: may this change leave the machine? It checks file
count, size, extension, forbidden locations, test coverage of code changes,
dependency manifests and environment files, and folds the answers into a
:class:`SafetyReport`.

The individual checks are plain functions so they can be used and tested on
their own; :class:`SafetyGate` composes them.
"""

import json
import os
import re
from collections.abc import Iterable, Sequence
from functools import lru_cache
from pathlib import Path

import structlog

from ticket_pilot.config.settings import SafetyConfig
from ticket_pilot.models.domain import FileValidation, IterationResult, SafetyReport, TestRequirements

log = structlog.get_logger(__name__)

CODE_EXTENSIONS = (".py", ".ts", ".js", ".tsx", ".jsx")
DEPENDENCY_MANIFESTS = ("pyproject.toml", "package.json", "setup.py", "setup.cfg", "Pipfile")
PACKAGE_JSON_DANGEROUS_FIELDS = ("scripts.preinstall", "scripts.install", "scripts.postinstall", "bin")


@lru_cache(maxsize=128)
def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate a ``**``-aware glob into a regex matched against a whole path.

    ``**/`` matches zero or more directories, ``**`` anything, ``*`` and ``?``
    stay within one path component.
    """
    parts = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            parts.append("[^/]")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(parts))


def _relative(path: str, base_path: Path) -> str:
    full = Path(path) if Path(path).is_absolute() else base_path / path
    return Path(os.path.relpath(full, base_path)).as_posix()


def _extension(path: str) -> str:
    name = path.rsplit("/", 1)[-1]
    dot = name.rfind(".")
    return name[dot:] if dot >= 0 else ""


def _is_test_file(path: str) -> bool:
    name = path.rsplit("/", 1)[-1]
    return (
        ".test." in name
        or ".spec." in name
        or "__tests__/" in path
        or name.startswith("test_")
        or name.endswith("_test.py")
        or path.startswith("tests/")
        or "/tests/" in path
    )


def _is_forbidden_path(rel: str, forbidden_paths: Iterable[str]) -> bool:
    components = rel.split("/")
    for forbidden in forbidden_paths:
        forbidden = forbidden.rstrip("/")
        if rel == forbidden or rel.startswith(f"{forbidden}/") or forbidden in components:
            return True
    return False


def validate_single_file(path: str, base_path: Path, config: SafetyConfig) -> list[str]:
    """Errors for one file; empty when the file is acceptable."""
    rel = _relative(path, base_path)
    full = base_path / rel
    errors = []

    # Deleted files have no size.
    try:
        if full.is_file() and full.stat().st_size > config.max_file_size:
            errors.append(f"File too large: {rel} exceeds {config.max_file_size} bytes")
    except OSError as e:
        errors.append(f"Validation failed for {rel}: {e}")

    if ".*" not in config.allowed_extensions and _extension(rel) not in config.allowed_extensions:
        errors.append(f"Forbidden file extension: {rel}")

    if _is_forbidden_path(rel, config.forbidden_paths):
        errors.append(f"Forbidden path: {rel}")

    if any(glob_to_regex(pattern).fullmatch(rel) for pattern in config.forbidden_patterns):
        errors.append(f"Matches forbidden pattern: {rel}")

    return errors


def validate_files(paths: Sequence[str], base_path: Path, config: SafetyConfig) -> FileValidation:
    """Validate every modified file.

    Too many files is reported as an invalid result with a
    ``MAX_FILES_EXCEEDED`` error rather than raised.
    """
    if len(paths) > config.max_files_modified:
        return FileValidation(
            valid=False,
            errors=(
                f"MAX_FILES_EXCEEDED: Too many files modified: {len(paths)} "
                f"exceeds limit of {config.max_files_modified}",
            ),
            files_validated=0,
        )

    errors: list[str] = []
    for path in paths:
        errors.extend(validate_single_file(path, base_path, config))

    return FileValidation(valid=not errors, errors=tuple(errors), files_validated=len(paths))


def check_test_requirements(
    paths: Sequence[str],
    config: SafetyConfig,
    tests_were_run: bool = False,
) -> TestRequirements:
    if not config.require_tests:
        return TestRequirements(satisfied=True, reason="Test requirements disabled")

    code_files = [p for p in paths if _extension(p) in CODE_EXTENSIONS and not _is_test_file(p)]
    if not code_files:
        return TestRequirements(satisfied=True, reason="No code files modified")

    if tests_were_run:
        return TestRequirements(
            satisfied=True,
            reason=f"Tests were executed by agent for {len(code_files)} modified code file(s)",
        )

    test_files = [p for p in paths if _is_test_file(p)]
    if not test_files:
        return TestRequirements(
            satisfied=False,
            reason=f"Code files modified but no test files found. Modified: {', '.join(code_files)}",
        )

    return TestRequirements(
        satisfied=True,
        reason=f"Found {len(test_files)} test files for {len(code_files)} code files",
    )


def _is_dependency_manifest(rel: str) -> bool:
    name = rel.rsplit("/", 1)[-1]
    return name in DEPENDENCY_MANIFESTS or (name.startswith("requirements") and name.endswith(".txt"))


def package_json_warnings(package_json: Path) -> list[str]:
    """Install-time hooks and binaries declared by a package.json."""
    try:
        data = json.loads(package_json.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        return [f"Failed to validate {package_json.name}: {e}"]

    warnings = []
    for dotted in PACKAGE_JSON_DANGEROUS_FIELDS:
        current = data
        for part in dotted.split("."):
            current = current.get(part) if isinstance(current, dict) else None
        if current is not None:
            warnings.append(f"Potentially dangerous field detected: {dotted}")
    return warnings


def check_dependency_manifests(paths: Sequence[str], base_path: Path, config: SafetyConfig) -> bool:
    manifests = [rel for rel in (_relative(p, base_path) for p in paths) if _is_dependency_manifest(rel)]
    if not manifests:
        return True
    if not config.allow_dependency_manifest_changes:
        log.warning("dependency_manifest_modified", files=manifests)
        return False

    for rel in manifests:
        full = base_path / rel
        if rel.rsplit("/", 1)[-1] == "package.json" and full.exists():
            warnings = package_json_warnings(full)
            if warnings:
                log.warning("package_json_dangerous_fields", file=rel, warnings=warnings)
                return False
    return True


def check_env_files(paths: Sequence[str], config: SafetyConfig) -> bool:
    env_files = [p for p in paths if p.rsplit("/", 1)[-1].startswith(".env")]
    if env_files and not config.allow_env_file_changes:
        log.warning("env_file_modified", files=env_files)
        return False
    return True


def create_safety_report(
    file_validation: FileValidation,
    test_requirements: TestRequirements,
    additional_checks: dict[str, bool] | None = None,
) -> SafetyReport:
    checks = dict(additional_checks or {})
    summary_lines = [
        f"Files: {'✅' if file_validation.valid else '❌'} ({file_validation.files_validated} validated)",
        f"Tests: {'✅' if test_requirements.satisfied else '❌'} ({test_requirements.reason})",
        *(f"{name}: {'✅' if passed else '❌'}" for name, passed in checks.items()),
        *(f"  - {error}" for error in file_validation.errors),
    ]
    return SafetyReport(
        overall=file_validation.valid and test_requirements.satisfied and all(checks.values()),
        file_validation=file_validation,
        test_requirements=test_requirements,
        additional_checks=checks,
        summary="\n".join(summary_lines),
    )


class SafetyGate:
    """Evaluates a change against a :class:`SafetyConfig`."""

    def __init__(self, config: SafetyConfig) -> None:
        self.config = config

    def evaluate(
        self,
        paths: Sequence[str],
        base_path: Path,
        results: Sequence[IterationResult] = (),
        skip_tests: bool = False,
    ) -> SafetyReport:
        """Build the safety report for the union of modified files.

        Args:
            paths: Modified files, relative to ``base_path`` or absolute.
            base_path: Workspace root.
            results: Iteration results; tests count as run when every
                iteration succeeded.
            skip_tests: Treat the test requirement as disabled.
        """
        base_path = Path(base_path)
        config = self.config.model_copy(update={"require_tests": False}) if skip_tests else self.config
        tests_were_run = bool(results) and all(r.success for r in results)

        report = create_safety_report(
            validate_files(paths, base_path, config),
            check_test_requirements(paths, config, tests_were_run),
            {
                "dependency_manifest": check_dependency_manifests(paths, base_path, config),
                "env_files": check_env_files(paths, config),
            },
        )
        log.info(
            "safety_evaluated",
            overall=report.overall,
            files=len(paths),
            file_errors=len(report.file_validation.errors),
            tests_satisfied=report.test_requirements.satisfied,
        )
        return report


def union_of_modified_files(results: Iterable[IterationResult]) -> list[str]:
    """Files touched by any iteration, in first-seen order."""
    return list(dict.fromkeys(path for result in results for path in result.files_modified))
