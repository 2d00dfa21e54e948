class ShrinkError(Exception):
    """Base exception class for the task shrinking service."""
    pass

class ConfigError(ShrinkError):
    """Raised when there is an error in a configuration file or the environment."""
    pass

class ProviderError(ShrinkError):
    """Raised when a text-generation backend call fails."""

    def __init__(self, message: str, provider: str = "", status_code: int = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code

class TransientProviderError(ProviderError):
    """Raised for backend failures that are worth retrying (429, 5xx, dropped connections)."""
    pass

class NoProviderAvailableError(ShrinkError):
    """Raised when none of the configured providers passes its liveness probe."""

    def __init__(self, message: str = "No AI provider available"):
        super().__init__(message)

class CostLimitExceededError(ShrinkError):
    """Raised when a request would exceed the per-request, daily or monthly budget."""

    def __init__(self, limit_type: str = "request"):
        super().__init__(f"Cost limit exceeded ({limit_type})")
        self.limit_type = limit_type

class QueueClearedError(ShrinkError):
    """Raised for every pending job when the request queue is cleared."""

    def __init__(self, message: str = "Queue cleared"):
        super().__init__(message)
