"""makemkvcon integration: robot-output protocol, error classification and
the backup adapter."""
