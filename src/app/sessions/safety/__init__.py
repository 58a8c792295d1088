"""Content-safety detection and operator escalation."""
