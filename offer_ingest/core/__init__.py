"""Core infrastructure: configuration, exceptions and the base HTTP client."""
