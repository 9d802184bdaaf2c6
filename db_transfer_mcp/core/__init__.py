"""Core infrastructure: configuration, remote execution, persistence and strategies."""
