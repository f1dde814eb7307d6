"""Provider clients, collaborator protocols and error types."""

from .consent import StaticConsentGate
from .errors import (
    AuthenticationError,
    ConsentError,
    ErrorKind,
    ProviderError,
    RateLimitError,
    RecordError,
    TransientProviderError,
    classify_error,
)
from .mock_provider import MockProviderClient
from .protocols import (
    ConsentGate,
    ConsentType,
    LocationEnricher,
    Permission,
    ProviderClient,
    Store,
)

__all__ = [
    # Protocols
    "ConsentGate",
    "ConsentType",
    "LocationEnricher",
    "Permission",
    "ProviderClient",
    "Store",
    # Implementations
    "MockProviderClient",
    "StaticConsentGate",
    # Errors
    "AuthenticationError",
    "ConsentError",
    "ErrorKind",
    "ProviderError",
    "RateLimitError",
    "RecordError",
    "TransientProviderError",
    "classify_error",
]
