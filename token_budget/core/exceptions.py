"""
Exceptions raised by the budgeting subsystem
"""


class ModelNotFoundError(LookupError):
    """Raised when a (provider, model) pair has no registered limits."""

    def __init__(self, provider: str, model: str):
        self.provider = provider
        self.model = model
        super().__init__(f"No limits registered for {provider}:{model}")
