"""HTTP service exposing drives, backups and the live event stream."""
