from app.modules.openrouter.client import (
    OpenRouterClient,
    StructuredCompletion,
    TextCompletion,
    Usage,
)
from app.modules.openrouter.errors import (
    OpenRouterAuthError,
    OpenRouterBadRequestError,
    OpenRouterConfigError,
    OpenRouterError,
    OpenRouterNetworkError,
    OpenRouterParseError,
    OpenRouterRateLimitError,
    OpenRouterServerError,
)
from app.modules.openrouter.health import HealthSnapshot, HealthState, ServiceHealth

__all__ = [
    "OpenRouterClient",
    "StructuredCompletion",
    "TextCompletion",
    "Usage",
    "OpenRouterError",
    "OpenRouterConfigError",
    "OpenRouterAuthError",
    "OpenRouterBadRequestError",
    "OpenRouterRateLimitError",
    "OpenRouterServerError",
    "OpenRouterNetworkError",
    "OpenRouterParseError",
    "ServiceHealth",
    "HealthSnapshot",
    "HealthState",
]
