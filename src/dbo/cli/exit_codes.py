"""Process exit codes for the dbo CLI.

Codes are grouped by category so scripts can branch on ranges:
0 success, 1-9 general, 10-19 configuration, 20-29 targets,
30-39 external tools, 40-49 operations.
"""

from enum import IntEnum


class ExitCode(IntEnum):
    SUCCESS = 0
    GENERAL_ERROR = 1
    INTERRUPTED = 2

    CONFIG_ERROR = 11
    INVALID_ARGUMENTS = 12

    TARGET_NOT_FOUND = 20
    TARGET_BUSY = 21

    TOOL_NOT_AVAILABLE = 30

    OPERATION_FAILED = 40
    PARTIAL_SUCCESS = 41
