"""Project-specific exception types for clearer error semantics."""

class ConfigError(ValueError):
    """Configuration or command-line override validation errors."""
    pass

class ResolutionError(Exception):
    """Target hostname could not be resolved to a usable address."""

    def __init__(self, hostname: str, code: int = 0, reason: str = ""):
        self.hostname = hostname
        self.code = code
        self.reason = reason
        super().__init__(f"unknown host {hostname} (error {code})")
