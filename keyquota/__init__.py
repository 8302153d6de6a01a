"""keyquota: encrypted local store for API keys with usage-quota checks."""

__version__ = "0.3.0"
