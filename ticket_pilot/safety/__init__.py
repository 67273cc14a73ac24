"""Pre-publish safety checks."""

from ticket_pilot.safety.gate import (
    SafetyGate,
    check_test_requirements,
    create_safety_report,
    union_of_modified_files,
    validate_files,
)

__all__ = [
    "SafetyGate",
    "check_test_requirements",
    "create_safety_report",
    "union_of_modified_files",
    "validate_files",
]
