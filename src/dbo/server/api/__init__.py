"""JSON and Server-Sent Events API handlers."""
