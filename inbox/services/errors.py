class ProviderUnavailableError(Exception):
    """Transport-level failure talking to the messaging provider."""

    def __init__(self, message: str, endpoint: str = ""):
        self.message = message
        self.endpoint = endpoint
        super().__init__(message)


class LLMError(Exception):
    """Reply generation failed (transport error or non-200 response)."""

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ConversationActionError(Exception):
    """Staff command could not be applied to a conversation."""

    def __init__(self, message: str, code: str = "invalid_action", status_code: int = 422):
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(message)
