"""Shared utilities used across DBO."""
