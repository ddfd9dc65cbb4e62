"""Classification of extraction-time diagnostics.

makemkvcon reports problems as free-text MSG lines. This module turns those
lines into ErrorRecords and decides whether a failure is localized (one
damaged file, a bad sector) or fatal to the backup.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

UNKNOWN_ERROR_LABEL = "Unknown error"

# Informational message codes that may contain words like "failed" in
# their parameters but never indicate an error.
SUCCESS_MESSAGE_CODES = frozenset({5010, 5011, 5070, 5072, 5081, 5085})

_ERROR_WORDS = ("error", "failed", "cannot", "unable")
_WARNING_WORDS = ("warning", "skipped")

# Ordered: first match wins
_LABEL_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("hash check failed",), "Hash check failed"),
    (("read error", "error reading"), "Read error"),
    (("failed to save",), "Failed to save"),
)

RECOVERABLE_PATTERNS = (
    "hash check failed",
    "read error",
    "error reading",
    "scsi error",
    "operation was cancelled",
    "bad sector",
)

# Checked before RECOVERABLE_PATTERNS
FATAL_PATTERNS = (
    "out of memory",
    "disk full",
    "cannot create",
    "permission denied",
    "access denied",
    "destination folder",
    "invalid",
    "fatal",
)

_FILE_PATTERN = re.compile(r"(?:file|title)\s+(\d+\.m2ts|\w+\.\w+)", re.IGNORECASE)
_OFFSET_PATTERNS = (
    re.compile(r"offset[:\s]+(\d+)", re.IGNORECASE),
    re.compile(r"at\s+(\d+)\s+bytes", re.IGNORECASE),
)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ErrorRecord:
    """One extraction diagnostic, broken into its parts.

    Attributes:
        message: The original message text (None if none was given).
        file: Affected file name, e.g. "00800.m2ts", if one was named.
        error: Short label such as "Hash check failed".
        offset: Byte offset named in the message, as a digit string.
        timestamp: ISO-8601 UTC time the record was created.
    """

    message: str | None
    file: str | None = None
    error: str = UNKNOWN_ERROR_LABEL
    offset: str | None = None
    timestamp: str = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def parse_error_message(line: Any) -> ErrorRecord:
    """Break a diagnostic line into an ErrorRecord.

    Total: never raises. Non-string and empty input yield a record whose
    message is None (or the empty string) and whose error is
    "Unknown error".

    Example:
        >>> r = parse_error_message(
        ...     "Hash check failed for file 00800.m2ts at offset 13637904384")
        >>> r.file, r.error, r.offset
        ('00800.m2ts', 'Hash check failed', '13637904384')
    """
    if not isinstance(line, str):
        return ErrorRecord(message=None)
    if not line:
        return ErrorRecord(message=line)

    lower = line.lower()
    label = UNKNOWN_ERROR_LABEL
    for needles, rule_label in _LABEL_RULES:
        if any(needle in lower for needle in needles):
            label = rule_label
            break

    file_match = _FILE_PATTERN.search(line)
    offset: str | None = None
    for pattern in _OFFSET_PATTERNS:
        offset_match = pattern.search(line)
        if offset_match:
            offset = offset_match.group(1)
            break

    return ErrorRecord(
        message=line,
        file=file_match.group(1) if file_match else None,
        error=label,
        offset=offset,
    )


def is_recoverable_error(line: str | None) -> bool:
    """Return True if the diagnostic describes a localized failure.

    Fatal keywords win over recoverable ones; anything unrecognized is
    treated as fatal.
    """
    if not line:
        return False
    lower = line.lower()
    if any(pattern in lower for pattern in FATAL_PATTERNS):
        return False
    return any(pattern in lower for pattern in RECOVERABLE_PATTERNS)


def is_error_message(code: int, text: str) -> bool:
    """Return True if a MSG line reports an error.

    Message flags are not reliable, so the text is inspected. Known
    success codes are never errors.
    """
    if code in SUCCESS_MESSAGE_CODES:
        return False
    lower = text.lower()
    return any(word in lower for word in _ERROR_WORDS)


def is_warning_message(text: str) -> bool:
    """Return True if a MSG line reads as a warning."""
    lower = text.lower()
    return any(word in lower for word in _WARNING_WORDS)


def compute_recovery_percent(successful: int, failed: int) -> float:
    """Return the share of files recovered, in percent.

    With no files counted at all nothing was lost, so the result is 100.0.
    """
    total = successful + failed
    if total <= 0:
        return 100.0
    return successful * 100 / total
