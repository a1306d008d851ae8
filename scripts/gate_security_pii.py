#!/usr/bin/env python3
"""Gate G2: Security & PII check for source files.

Fails if:
- print( found in runtime code (src/**)
- A logger call mentions guest or payment payload data without redaction
- A logger call passes extra fields that did not go through safe_log_context

Logger calls are checked as a whole, across line breaks.

Usage:
    python scripts/gate_security_pii.py
"""

import re
import sys
from pathlib import Path

# Keywords that must not appear in logger calls without redaction
SENSITIVE_KEYWORDS = (
    "payload",
    "request.json",
    "body",
    "guest",
    "email",
    "card",
    "phone",
)

# Pattern for print statements
PRINT_PATTERN = re.compile(r"\bprint\s*\(")

# Pattern for logger calls: logger.info/debug/warning/error/critical(...)
LOGGER_CALL_PATTERN = re.compile(
    r"\b(?:logger|log)\.(debug|info|warning|error|critical|exception)\s*\("
)

# Patterns that indicate proper redaction usage
REDACTION_PATTERNS = (
    "safe_log_context",
    "redact_value",
    "redact_string",
)


def _call_text(lines: list[str], start: int) -> str:
    """Return the source of the call opening on lines[start], up to its closing paren."""
    depth = 0
    collected = []
    for line in lines[start:]:
        code = line.split("#")[0]
        collected.append(code)
        depth += code.count("(") - code.count(")")
        if depth <= 0:
            break
    return "\n".join(collected)


def _message_literal(call: str) -> str:
    """First string literal of a logger call (the event name)."""
    match = re.search(r"\(\s*[\"']([^\"']*)[\"']", call)
    return match.group(1) if match else ""


def check_source(content: str, filename: str = "<string>") -> list[str]:
    """Check source text for violations. Returns list of error messages."""
    errors = []
    lines = content.splitlines()

    for index, line in enumerate(lines):
        lineno = index + 1
        stripped = line.lstrip()

        # Skip comments
        if stripped.startswith("#"):
            continue

        code_part = line.split("#")[0]
        if PRINT_PATTERN.search(code_part):
            errors.append(f"{filename}:{lineno}: print() not allowed in runtime code")

        if not LOGGER_CALL_PATTERN.search(code_part):
            continue

        call = _call_text(lines, index)
        has_redaction = any(rp in call for rp in REDACTION_PATTERNS)

        # Event names are constant strings and may mention anything.
        message = _message_literal(call)
        call_lower = call.replace(message, "", 1).lower() if message else call.lower()
        for keyword in SENSITIVE_KEYWORDS:
            if keyword in call_lower and not has_redaction:
                errors.append(
                    f"{filename}:{lineno}: logger call with '{keyword}' "
                    "must use redaction (safe_log_context/redact_value)"
                )

        if "extra=" in call and not has_redaction:
            errors.append(
                f"{filename}:{lineno}: logger extra fields must be built "
                "with safe_log_context"
            )

    return errors


def check_file(filepath: Path) -> list[str]:
    """Check a single file for violations. Returns list of error messages."""
    try:
        content = filepath.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return []  # Skip binary files
    return check_source(content, str(filepath))


def main() -> int:
    """Run gate check on src directory."""
    src_dir = Path("src")

    if not src_dir.exists():
        # Try from project root
        src_dir = Path(__file__).parent.parent / "src"

    if not src_dir.exists():
        sys.stderr.write("Error: src directory not found\n")
        return 1

    all_errors: list[str] = []

    for pyfile in sorted(src_dir.rglob("*.py")):
        all_errors.extend(check_file(pyfile))

    if all_errors:
        sys.stderr.write("Gate G2 FAILED - Security/PII violations found:\n")
        for err in all_errors:
            sys.stderr.write(f"  {err}\n")
        return 1

    sys.stdout.write("Gate G2 PASSED - No security/PII violations found\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
