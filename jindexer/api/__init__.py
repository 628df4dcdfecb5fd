from .provider_cache import Provider, ProviderLookupError, ProviderResolver
from .server import create_app

__all__ = [
    "Provider",
    "ProviderLookupError",
    "ProviderResolver",
    "create_app",
]
