"""Core infrastructure: configuration, logging, errors, shared types."""
