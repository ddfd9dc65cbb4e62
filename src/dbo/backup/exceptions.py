"""Exceptions raised during disc extraction."""


class BackupError(Exception):
    """Base exception for extraction failures."""

    pass


class BackupCancelledError(BackupError):
    """Raised when an extraction is cancelled or its process is killed."""

    def __init__(self, message: str = "Backup cancelled by user") -> None:
        super().__init__(message)


class ToolNotFoundError(BackupError):
    """Raised when a required executable is not installed."""

    def __init__(self, tool: str, detail: str | None = None) -> None:
        self.tool = tool
        message = f"{tool} executable not found"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class BackupProcessingError(BackupError):
    """Raised when moving or unpacking a finished extraction fails."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"Backup processing failed: {detail}")
