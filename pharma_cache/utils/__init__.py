"""In-process storage helpers."""
