from typing import Any, Optional


class OpenRouterError(Exception):
    """Base error for every failure of a chat completion call.

    ``code`` is a stable identifier persisted on failed generations.
    """

    def __init__(self, message: str, code: str = "OPENROUTER_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class OpenRouterConfigError(OpenRouterError):
    def __init__(self, message: str):
        super().__init__(message, "CONFIG_ERROR")


class OpenRouterAuthError(OpenRouterError):
    def __init__(self, message: str = "Invalid OpenRouter API key"):
        super().__init__(message, "AUTH_ERROR")


class OpenRouterBadRequestError(OpenRouterError):
    def __init__(self, message: str, details: Any = None):
        super().__init__(message, "BAD_REQUEST")
        self.details = details


class OpenRouterRateLimitError(OpenRouterError):
    def __init__(
        self,
        message: str = "OpenRouter rate limit exceeded",
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, "RATE_LIMIT")
        self.retry_after = retry_after


class OpenRouterServerError(OpenRouterError):
    def __init__(self, message: str, status_code: int):
        super().__init__(message, "SERVER_ERROR")
        self.status_code = status_code


class OpenRouterNetworkError(OpenRouterError):
    def __init__(self, message: str):
        super().__init__(message, "NETWORK_ERROR")


class OpenRouterParseError(OpenRouterError):
    def __init__(self, message: str, raw_response: Optional[str] = None):
        super().__init__(message, "PARSE_ERROR")
        self.raw_response = raw_response
