"""Disc Backup Orchestrator - parallel optical disc backups around makemkvcon."""

__version__ = "0.4.0"
