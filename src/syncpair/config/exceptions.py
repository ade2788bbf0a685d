"""Configuration-specific exceptions."""


class ConfigError(Exception):
    """Raised when configuration data cannot be parsed, validated, or applied."""
