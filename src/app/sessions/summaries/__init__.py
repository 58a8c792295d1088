"""Session summary generation and "summary ready" notifications."""
