"""Core infrastructure for jr: configuration, errors, logging."""
