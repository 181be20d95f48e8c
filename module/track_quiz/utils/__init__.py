# Utils module
from .errors import (
    QuizError,
    ProviderUnavailable,
    RateLimited,
    NoPlayableSource,
    AllProvidersFailed,
    ConnectionTimeout,
    StaleConnection,
    InvalidInput,
    ConfigurationError,
)
from .decorators import handle_errors, log_operation
from .retry import RetryPolicy
from .telemetry import ResolutionTelemetry

__all__ = [
    # Errors
    "QuizError",
    "ProviderUnavailable",
    "RateLimited",
    "NoPlayableSource",
    "AllProvidersFailed",
    "ConnectionTimeout",
    "StaleConnection",
    "InvalidInput",
    "ConfigurationError",
    # Decorators
    "handle_errors",
    "log_operation",
    # Retry / telemetry
    "RetryPolicy",
    "ResolutionTelemetry",
]
